from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass

from fieldsync.adapters.base import RemoteAdapter
from fieldsync.domain.models import SyncResult
from fieldsync.infra.connectivity import always_online
from fieldsync.infra.events import EventBus, event_bus
from fieldsync.infra.local_store import LocalStore, LocalStoreError

logger = logging.getLogger(__name__)

SYNC_BACKOFF_BASE_SECONDS = float(os.getenv("SYNC_BACKOFF_BASE_SECONDS", "2"))
SYNC_BACKOFF_MAX_SECONDS = float(os.getenv("SYNC_BACKOFF_MAX_SECONDS", "300"))
SYNC_MAX_ATTEMPTS = int(os.getenv("SYNC_MAX_ATTEMPTS", "10"))


@dataclass
class RetryState:
    attempts: int = 0
    next_attempt_at: float = 0.0
    last_error: str | None = None


class SyncService:
    """Reconciles the local store with the remote store.

    A pass pushes pending inspection logs, then pending sites (tombstones as
    remote deletes), then appends remote sites that are unknown locally.
    Records are handled one at a time; a failing record is logged, scheduled
    for a later retry and skipped. ``sync_pending_data`` never raises.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteAdapter,
        *,
        is_online: Callable[[], bool] = always_online,
        clock: Callable[[], float] = time.monotonic,
        backoff_base_seconds: float = SYNC_BACKOFF_BASE_SECONDS,
        backoff_max_seconds: float = SYNC_BACKOFF_MAX_SECONDS,
        max_attempts: int = SYNC_MAX_ATTEMPTS,
        bus: EventBus = event_bus,
    ) -> None:
        self._store = store
        self._remote = remote
        self._is_online = is_online
        self._clock = clock
        self._backoff_base_seconds = max(backoff_base_seconds, 0.0)
        self._backoff_max_seconds = max(backoff_max_seconds, self._backoff_base_seconds)
        self._max_attempts = max(max_attempts, 1)
        self._bus = bus
        self._retries: dict[str, RetryState] = {}

    def _due(self, key: str, force: bool) -> bool:
        state = self._retries.get(key)
        if state is None or force:
            return True
        if state.attempts >= self._max_attempts:
            return False
        return self._clock() >= state.next_attempt_at

    def _record_failure(self, key: str, exc: BaseException, result: SyncResult) -> None:
        state = self._retries.setdefault(key, RetryState())
        state.attempts += 1
        state.last_error = str(exc)
        delay = min(self._backoff_base_seconds * 2 ** (state.attempts - 1), self._backoff_max_seconds)
        state.next_attempt_at = self._clock() + delay
        result.failed.append(key)
        if state.attempts >= self._max_attempts:
            logger.error("%s dead-lettered after %s attempts: %s", key, state.attempts, exc)
        else:
            logger.warning("%s failed to sync (attempt %s, retry in %.0fs): %s", key, state.attempts, delay, exc)
        self._bus.publish_dict("sync.record.failed", {"key": key, "attempts": state.attempts, "error": str(exc)})

    def retry_state(self, key: str) -> RetryState | None:
        return self._retries.get(key)

    def dead_letters(self) -> list[str]:
        return sorted(key for key, state in self._retries.items() if state.attempts >= self._max_attempts)

    async def sync_pending_data(self, force: bool = False) -> SyncResult:
        """Run one reconciliation pass.

        ``force`` ignores backoff and dead-letter state (the manual "sync
        now" action). ``syncedCount`` in the result counts inspection logs
        only; site work is reported in its own fields.
        """
        result = SyncResult()
        if not self._remote.is_configured or not self._is_online():
            return result
        try:
            await self._push_inspections(result, force)
            await self._push_sites(result, force)
            await self._pull_sites(result)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("sync pass stopped early")
        logger.info(
            "sync pass: %s logs, %s sites, %s pulled, %s deleted, %s failed",
            result.synced_count,
            result.synced_sites,
            result.pulled_sites,
            result.deleted_sites,
            len(result.failed),
        )
        self._bus.publish_dict("sync.pass.completed", result.to_json_dict())
        return result

    async def _push_inspections(self, result: SyncResult, force: bool) -> None:
        pending = [log for log in self._store.read_inspections() if log.is_pending]
        for log in pending:
            key = f"inspection:{log.id}"
            if not self._due(key, force):
                continue
            try:
                await self._remote.upsert_inspection(log)
                flipped = self._store.mark_inspection_synced(log.id, log.revision)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._record_failure(key, exc, result)
                continue
            self._retries.pop(key, None)
            if flipped:
                result.synced_count += 1
                self._bus.publish_dict("sync.inspection.synced", {"log_id": log.id, "revision": log.revision})

    async def _push_sites(self, result: SyncResult, force: bool) -> None:
        pending = [site for site in self._store.read_sites() if site.is_pending]
        for site in pending:
            key = f"site:{site.id}"
            if not self._due(key, force):
                continue
            try:
                if site.is_tombstone:
                    await self._remote.delete_site(site.id)
                    done = self._store.drop_site_tombstone(site.id)
                else:
                    await self._remote.upsert_site(site)
                    done = self._store.mark_site_synced(site.id, site.revision)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._record_failure(key, exc, result)
                continue
            self._retries.pop(key, None)
            if not done:
                continue
            if site.is_tombstone:
                result.deleted_sites += 1
            else:
                result.synced_sites += 1
                self._bus.publish_dict("sync.site.synced", {"site_id": site.id, "revision": site.revision})

    async def _pull_sites(self, result: SyncResult) -> None:
        try:
            remote_sites = await self._remote.list_sites()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("could not pull remote sites: %s", exc)
            return
        try:
            added = self._store.append_sites_if_absent(remote_sites)
        except LocalStoreError as exc:
            logger.error("pulled %s remote sites but could not merge them locally: %s", len(remote_sites), exc)
            return
        result.pulled_sites = len(added)
