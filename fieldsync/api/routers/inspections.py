from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from fieldsync.api.deps import Storage, handle_storage_error
from fieldsync.domain.models import InspectionLog, InspectionLogCreate, InspectionSaveResult
from fieldsync.infra.local_store import LocalStoreError
from fieldsync.services.storage_service import NotFoundError

router = APIRouter()


@router.get("", response_model=list[InspectionLog], response_model_exclude_none=True)
def list_inspections(
    storage: Storage,
    order: Annotated[str, Query(pattern="^(stored|newest)$")] = "newest",
) -> list[InspectionLog]:
    return storage.list_inspections(newest_first=order == "newest")


@router.post(
    "",
    response_model=InspectionSaveResult,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def complete_inspection(payload: InspectionLogCreate, storage: Storage) -> InspectionSaveResult:
    # The local write has finished before this returns; 507 means it did not.
    try:
        return await storage.complete_inspection(payload)
    except LocalStoreError as exc:
        handle_storage_error(exc)
        raise


@router.get("/{log_id}", response_model=InspectionLog, response_model_exclude_none=True)
def get_inspection(log_id: str, storage: Storage) -> InspectionLog:
    try:
        return storage.get_inspection(log_id)
    except NotFoundError as exc:
        handle_storage_error(exc)
        raise
