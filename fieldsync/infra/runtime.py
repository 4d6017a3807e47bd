from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from fieldsync.adapters.base import NullRemoteAdapter, RemoteAdapter
from fieldsync.adapters.rest_adapter import RestRemoteAdapter
from fieldsync.adapters.sql_adapter import SqlRemoteAdapter
from fieldsync.infra.connectivity import ConnectivityMonitor
from fieldsync.infra.local_store import LocalStore, build_backend
from fieldsync.services.storage_service import StorageService
from fieldsync.services.sync_service import SyncService

REMOTE_BACKEND = os.getenv("REMOTE_BACKEND", "rest")


def build_remote_adapter(kind: str = REMOTE_BACKEND) -> RemoteAdapter:
    if kind == "rest":
        return RestRemoteAdapter()
    if kind == "sql":
        return SqlRemoteAdapter()
    if kind == "none":
        return NullRemoteAdapter()
    raise ValueError(f"unknown REMOTE_BACKEND: {kind}")


@dataclass
class Runtime:
    store: LocalStore
    remote: RemoteAdapter
    connectivity: ConnectivityMonitor
    storage: StorageService
    sync: SyncService


def build_runtime(
    store: LocalStore,
    remote: RemoteAdapter,
    connectivity: ConnectivityMonitor | None = None,
) -> Runtime:
    monitor = connectivity or ConnectivityMonitor()
    storage = StorageService(store, remote, is_online=monitor.is_online)
    sync = SyncService(store, remote, is_online=monitor.is_online)
    monitor.on_online(sync.sync_pending_data)
    return Runtime(store=store, remote=remote, connectivity=monitor, storage=storage, sync=sync)


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    return build_runtime(LocalStore(build_backend()), build_remote_adapter())
