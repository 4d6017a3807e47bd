from __future__ import annotations

from fastapi import APIRouter

from fieldsync.api.deps import RuntimeDep, Storage, Sync
from fieldsync.domain.models import ConnectivityRead, ConnectivityUpdate, SyncResult, SyncStatusRead

router = APIRouter()


@router.get("/status", response_model=SyncStatusRead)
def sync_status(runtime: RuntimeDep, storage: Storage) -> SyncStatusRead:
    pending_sites, pending_inspections = storage.pending_counts()
    return SyncStatusRead(
        online=runtime.connectivity.is_online(),
        remote_configured=runtime.remote.is_configured,
        pending_inspections=pending_inspections,
        pending_sites=pending_sites,
    )


@router.post("", response_model=SyncResult)
async def sync_now(sync: Sync) -> SyncResult:
    return await sync.sync_pending_data(force=True)


@router.put("/connectivity", response_model=ConnectivityRead)
async def update_connectivity(payload: ConnectivityUpdate, runtime: RuntimeDep) -> ConnectivityRead:
    changed, outcome = await runtime.connectivity.set_online(payload.online)
    return ConnectivityRead(
        online=runtime.connectivity.is_online(),
        changed=changed,
        sync=outcome if isinstance(outcome, SyncResult) else None,
    )
