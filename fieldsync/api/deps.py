from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, status

from fieldsync.infra.local_store import LocalStoreError
from fieldsync.infra.runtime import Runtime, get_runtime
from fieldsync.services.storage_service import NotFoundError, StorageService
from fieldsync.services.sync_service import SyncService


def get_storage_service(runtime: Annotated[Runtime, Depends(get_runtime)]) -> StorageService:
    return runtime.storage


def get_sync_service(runtime: Annotated[Runtime, Depends(get_runtime)]) -> SyncService:
    return runtime.sync


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]
Storage = Annotated[StorageService, Depends(get_storage_service)]
Sync = Annotated[SyncService, Depends(get_sync_service)]


def handle_storage_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, LocalStoreError):
        raise HTTPException(
            status_code=status.HTTP_507_INSUFFICIENT_STORAGE,
            detail=f"local save failed: {exc}",
        ) from exc
    raise exc
