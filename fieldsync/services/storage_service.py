from __future__ import annotations

import logging
from collections.abc import Callable

from fieldsync.adapters.base import RemoteAdapter, RemoteError
from fieldsync.domain.ids import new_entity_id, new_inspection_id
from fieldsync.domain.models import (
    InspectionLog,
    InspectionLogCreate,
    InspectionSaveResult,
    Site,
    SiteCreate,
)
from fieldsync.infra.connectivity import always_online
from fieldsync.infra.events import EventBus, event_bus
from fieldsync.infra.local_store import LocalStore, LocalStoreError

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class NotFoundError(StorageError):
    pass


class StorageService:
    """Read/write contract used by the checklist runner and the site editor.

    Every save lands in the local store before anything else happens; the
    remote upload afterwards is best effort. Only a failing local write is
    raised to the caller, and that includes a collection the store cannot
    read back before writing.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteAdapter,
        *,
        is_online: Callable[[], bool] = always_online,
        bus: EventBus = event_bus,
    ) -> None:
        self._store = store
        self._remote = remote
        self._is_online = is_online
        self._bus = bus

    def remote_available(self) -> bool:
        return self._remote.is_configured and self._is_online()

    def get_sites(self) -> list[Site]:
        return [site for site in self._store.read_sites() if not site.is_tombstone]

    def get_site(self, site_id: str) -> Site:
        for site in self.get_sites():
            if site.id == site_id:
                return site
        raise NotFoundError("site not found")

    async def create_site(self, payload: SiteCreate) -> Site:
        taken = {site.id for site in self._store.read_sites()}
        site_id = new_entity_id()
        while site_id in taken:
            site_id = new_entity_id()
        return await self.save_site(Site(id=site_id, name=payload.name, areas=payload.areas))

    async def save_site(self, site: Site) -> Site:
        stored = self._store.upsert_site(site)
        self._bus.publish_dict("storage.site.saved", {"site_id": stored.id, "revision": stored.revision})
        if not self.remote_available():
            return stored
        try:
            await self._remote.upsert_site(stored)
        except RemoteError as exc:
            logger.warning("site %s saved locally only: %s", stored.id, exc)
            return stored
        try:
            if self._store.mark_site_synced(stored.id, stored.revision):
                stored = stored.model_copy(update={"synced": True})
        except LocalStoreError:
            logger.exception("site %s uploaded but the synced flag could not be written", stored.id)
        return stored

    async def delete_site(self, site_id: str) -> bool:
        tombstone = self._store.tombstone_site(site_id)
        if tombstone is None:
            return False
        self._bus.publish_dict("storage.site.deleted", {"site_id": site_id})
        if not self.remote_available():
            return True
        try:
            await self._remote.delete_site(site_id)
        except RemoteError as exc:
            logger.warning("site %s deleted locally, remote delete pending: %s", site_id, exc)
            return True
        try:
            self._store.drop_site_tombstone(site_id)
        except LocalStoreError:
            logger.exception("site %s deleted remotely but its tombstone could not be dropped", site_id)
        return True

    def get_inspections(self) -> list[InspectionLog]:
        return self._store.read_inspections()

    def get_inspection(self, log_id: str) -> InspectionLog:
        for log in self._store.read_inspections():
            if log.id == log_id:
                return log
        raise NotFoundError("inspection not found")

    def list_inspections(self, newest_first: bool = True) -> list[InspectionLog]:
        logs = self._store.read_inspections()
        if newest_first:
            logs.sort(key=lambda log: log.date, reverse=True)
        return logs

    async def save_inspection(self, log: InspectionLog) -> bool:
        """Persist ``log`` locally, then try to upload it.

        Returns whether the upload succeeded. The local copy is already safe
        either way; the flag is only for user feedback.
        """
        stored = self._store.upsert_inspection(log)
        self._bus.publish_dict(
            "storage.inspection.saved",
            {"log_id": stored.id, "revision": stored.revision, "defects": stored.defect_count},
        )
        if not self.remote_available():
            return False
        try:
            await self._remote.upsert_inspection(stored)
        except RemoteError as exc:
            logger.warning("inspection %s saved locally, upload failed: %s", stored.id, exc)
            return False
        try:
            self._store.mark_inspection_synced(stored.id, stored.revision)
        except LocalStoreError:
            logger.exception("inspection %s uploaded but the synced flag could not be written", stored.id)
        return True

    async def complete_inspection(self, draft: InspectionLogCreate) -> InspectionSaveResult:
        log_id = draft.id or new_inspection_id(log.id for log in self._store.read_inspections())
        log = InspectionLog.model_validate({**draft.model_dump(exclude={"id"}), "id": log_id})
        uploaded = await self.save_inspection(log)
        return InspectionSaveResult(log=self.get_inspection(log_id), uploaded=uploaded)

    def pending_counts(self) -> tuple[int, int]:
        return self._store.pending_counts()
