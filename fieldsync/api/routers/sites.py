from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from fieldsync.api.deps import Storage, handle_storage_error
from fieldsync.domain.models import Site, SiteCreate
from fieldsync.infra.local_store import LocalStoreError
from fieldsync.services.storage_service import NotFoundError

router = APIRouter()


@router.get("", response_model=list[Site], response_model_exclude_none=True)
def list_sites(storage: Storage) -> list[Site]:
    return storage.get_sites()


@router.post(
    "",
    response_model=Site,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_site(payload: SiteCreate, storage: Storage) -> Site:
    try:
        return await storage.create_site(payload)
    except LocalStoreError as exc:
        handle_storage_error(exc)
        raise


@router.get("/{site_id}", response_model=Site, response_model_exclude_none=True)
def get_site(site_id: str, storage: Storage) -> Site:
    try:
        return storage.get_site(site_id)
    except NotFoundError as exc:
        handle_storage_error(exc)
        raise


@router.put("/{site_id}", response_model=Site, response_model_exclude_none=True)
async def save_site(site_id: str, payload: Site, storage: Storage) -> Site:
    if payload.id != site_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="site id does not match path")
    try:
        return await storage.save_site(payload)
    except LocalStoreError as exc:
        handle_storage_error(exc)
        raise


@router.delete("/{site_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_site(site_id: str, storage: Storage) -> None:
    try:
        removed = await storage.delete_site(site_id)
    except LocalStoreError as exc:
        handle_storage_error(exc)
        raise
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="site not found")
