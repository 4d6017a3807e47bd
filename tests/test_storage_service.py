from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import UTC, datetime

import pytest

from fieldsync.adapters.base import NullRemoteAdapter
from fieldsync.adapters.fake_adapter import FakeRemoteAdapter
from fieldsync.domain.models import (
    Answer,
    Area,
    EventEnvelope,
    InspectionLog,
    InspectionLogCreate,
    InspectionPoint,
    Site,
    SiteCreate,
)
from fieldsync.infra.events import EventBus
from fieldsync.infra.local_store import LocalStore, LocalStoreError, LocalStoreWriteError, MemoryBackend
from fieldsync.services.storage_service import NotFoundError, StorageService
from fieldsync.services.sync_service import SyncService


def _answer(ok: bool = True) -> Answer:
    return Answer(
        point_id="pt-1",
        point_name="Extintor Principal",
        question="¿El extintor está cargado?",
        area_name="Caseta de Control",
        is_ok=ok,
        photo_url="data:image/jpeg;base64,AAAA" if not ok else None,
        timestamp=1_760_000_000_000,
    )


def _log(log_id: str, *, ok: bool = True, day: int = 17) -> InspectionLog:
    return InspectionLog(
        id=log_id,
        site_id="site-1",
        site_name="Cantera Los Álamos (Demo)",
        date=datetime(2026, 10, day, 9, 30, tzinfo=UTC),
        inspector_name="Ana Ruiz",
        inspector_dni="12345678Z",
        inspector_email="ana@example.com",
        answers=[_answer(ok)],
    )


def _site(site_id: str, name: str) -> Site:
    return Site(
        id=site_id,
        name=name,
        areas=[
            Area(
                id="a1",
                name="Acceso",
                points=[
                    InspectionPoint(
                        id="p1",
                        name="Valla",
                        question="¿Valla cerrada?",
                        requires_photo=True,
                        photo_instruction="Foto del candado",
                    )
                ],
            )
        ],
    )


class _FullBackend(MemoryBackend):
    def set(self, key: str, value: str) -> None:
        raise LocalStoreWriteError("quota exceeded")


def _service(remote: object, online: dict[str, bool] | None = None) -> tuple[StorageService, LocalStore]:
    store = LocalStore(MemoryBackend())
    state = online if online is not None else {"value": True}
    service = StorageService(store, remote, is_online=lambda: state["value"], bus=EventBus())  # type: ignore[arg-type]
    return service, store


def _same_content(left: InspectionLog, right: InspectionLog) -> bool:
    ignored = {"synced", "revision"}
    return left.model_dump(exclude=ignored) == right.model_dump(exclude=ignored)


def test_saved_inspection_is_readable_when_upload_fails() -> None:
    remote = FakeRemoteAdapter(fail_all=True)
    service, _ = _service(remote)
    log = _log("insp-1", ok=False)

    uploaded = asyncio.run(service.save_inspection(log))

    assert uploaded is False
    stored = service.get_inspections()
    assert len(stored) == 1
    assert _same_content(stored[0], log)
    assert stored[0].synced is False


def test_saved_inspection_is_readable_while_upload_hangs() -> None:
    remote = FakeRemoteAdapter(force_timeout=True)
    service, _ = _service(remote)
    log = _log("insp-1")

    async def _run() -> list[InspectionLog]:
        task = asyncio.create_task(service.save_inspection(log))
        for _ in range(10):
            await asyncio.sleep(0)
            if service.get_inspections():
                break
        seen = service.get_inspections()
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        return seen

    seen = asyncio.run(_run())
    assert [item.id for item in seen] == ["insp-1"]
    assert _same_content(seen[0], log)
    assert seen[0].synced is False


def test_saving_same_id_twice_keeps_one_record_with_second_content() -> None:
    service, _ = _service(NullRemoteAdapter())

    asyncio.run(service.save_inspection(_log("insp-1", ok=True)))
    asyncio.run(service.save_inspection(_log("insp-1", ok=False)))

    stored = service.get_inspections()
    assert [item.id for item in stored] == ["insp-1"]
    assert stored[0].answers[0].is_ok is False
    assert stored[0].answers[0].photo_url == "data:image/jpeg;base64,AAAA"


def test_successful_upload_marks_inspection_synced() -> None:
    remote = FakeRemoteAdapter()
    service, _ = _service(remote)

    uploaded = asyncio.run(service.save_inspection(_log("insp-1")))

    assert uploaded is True
    assert service.get_inspections()[0].synced is True
    assert "synced" not in remote.inspections["insp-1"]["data"]
    assert remote.inspections["insp-1"]["site_name"] == "Cantera Los Álamos (Demo)"


def test_offline_or_unconfigured_save_skips_remote() -> None:
    remote = FakeRemoteAdapter()
    service, _ = _service(remote, online={"value": False})
    assert asyncio.run(service.save_inspection(_log("insp-1"))) is False
    assert remote.calls.inspection_upserts == []

    unconfigured = FakeRemoteAdapter(configured=False)
    service, _ = _service(unconfigured)
    assert asyncio.run(service.save_inspection(_log("insp-2"))) is False
    assert unconfigured.calls.inspection_upserts == []


def test_interleaved_save_survives_synced_flag_write() -> None:
    remote = FakeRemoteAdapter()
    service, store = _service(remote)
    remote.hold("insp-1")

    async def _run() -> bool:
        first = asyncio.create_task(service.save_inspection(_log("insp-1")))
        await remote.wait_until_parked("insp-1")
        assert await service.save_inspection(_log("insp-2")) is True
        remote.release("insp-1")
        return await first

    assert asyncio.run(_run()) is True
    logs = {log.id: log for log in store.read_inspections()}
    assert set(logs) == {"insp-1", "insp-2"}
    assert logs["insp-1"].synced is True
    assert logs["insp-2"].synced is True


def test_resave_during_upload_stays_pending() -> None:
    remote = FakeRemoteAdapter()
    online = {"value": True}
    service, store = _service(remote, online=online)
    remote.hold("insp-1")

    async def _run() -> bool:
        first = asyncio.create_task(service.save_inspection(_log("insp-1", ok=True)))
        await remote.wait_until_parked("insp-1")
        online["value"] = False
        await service.save_inspection(_log("insp-1", ok=False))
        remote.release("insp-1")
        return await first

    assert asyncio.run(_run()) is True
    stored = store.read_inspections()
    assert len(stored) == 1
    assert stored[0].answers[0].is_ok is False
    assert stored[0].synced is False


def test_local_write_failure_propagates_to_caller() -> None:
    store = LocalStore(_FullBackend())
    service = StorageService(store, FakeRemoteAdapter(), bus=EventBus())

    with pytest.raises(LocalStoreWriteError):
        asyncio.run(service.save_inspection(_log("insp-1")))
    with pytest.raises(LocalStoreWriteError):
        asyncio.run(service.save_site(_site("s-1", "Cantera Sur")))


def test_complete_inspection_assigns_non_colliding_id() -> None:
    service, _ = _service(FakeRemoteAdapter())
    draft = InspectionLogCreate(
        site_id="site-1",
        site_name="Cantera Los Álamos (Demo)",
        inspector_name="Ana Ruiz",
        inspector_dni="12345678Z",
        inspector_email="ana@example.com",
        answers=[_answer()],
    )

    first = asyncio.run(service.complete_inspection(draft))
    second = asyncio.run(service.complete_inspection(draft))

    assert first.log.id.startswith("insp-")
    assert first.log.id != second.log.id
    assert first.uploaded is True
    assert first.log.synced is True
    assert len(service.get_inspections()) == 2


def test_list_inspections_newest_first() -> None:
    service, _ = _service(NullRemoteAdapter())
    asyncio.run(service.save_inspection(_log("old", day=1)))
    asyncio.run(service.save_inspection(_log("new", day=20)))
    asyncio.run(service.save_inspection(_log("mid", day=10)))

    assert [log.id for log in service.list_inspections()] == ["new", "mid", "old"]
    assert [log.id for log in service.list_inspections(newest_first=False)] == ["old", "new", "mid"]
    with pytest.raises(NotFoundError):
        service.get_inspection("missing")


def test_save_site_upserts_and_marks_synced() -> None:
    remote = FakeRemoteAdapter()
    service, _ = _service(remote)
    service.get_sites()

    saved = asyncio.run(service.save_site(_site("s-1", "Cantera Sur")))
    renamed = asyncio.run(service.save_site(saved.model_copy(update={"name": "Cantera Sur II"})))

    sites = service.get_sites()
    assert [site.id for site in sites] == ["site-1", "s-1"]
    assert sites[1].name == "Cantera Sur II"
    assert sites[1].synced is True
    assert renamed.synced is True
    assert sites[1].areas[0].points[0].photo_instruction == "Foto del candado"
    assert remote.sites["s-1"]["data"]["name"] == "Cantera Sur II"


def test_save_site_offline_stays_pending() -> None:
    remote = FakeRemoteAdapter()
    service, _ = _service(remote, online={"value": False})

    saved = asyncio.run(service.save_site(_site("s-1", "Cantera Sur")))

    assert saved.synced is False
    assert service.get_site("s-1").synced is False
    assert remote.calls.site_upserts == []


def test_create_site_generates_id() -> None:
    service, _ = _service(NullRemoteAdapter())
    created = asyncio.run(service.create_site(SiteCreate(name="Nueva Cantera")))

    assert len(created.id) == 7
    assert service.get_site(created.id).name == "Nueva Cantera"
    assert created.areas == []


def test_delete_site_online_removes_everywhere() -> None:
    remote = FakeRemoteAdapter()
    service, store = _service(remote)
    asyncio.run(service.save_site(_site("s-1", "Cantera Sur")))

    assert asyncio.run(service.delete_site("s-1")) is True

    assert "s-1" not in {site.id for site in store.read_sites()}
    assert "s-1" not in remote.sites
    assert asyncio.run(service.delete_site("s-1")) is False


def test_delete_site_with_failed_remote_leaves_hidden_tombstone() -> None:
    remote = FakeRemoteAdapter()
    service, store = _service(remote)
    asyncio.run(service.save_site(_site("s-1", "Cantera Sur")))
    remote.failing_ids.add("s-1")

    assert asyncio.run(service.delete_site("s-1")) is True

    assert "s-1" not in {site.id for site in service.get_sites()}
    tombstones = [site for site in store.read_sites() if site.is_tombstone]
    assert [site.id for site in tombstones] == ["s-1"]
    assert tombstones[0].synced is False
    with pytest.raises(NotFoundError):
        service.get_site("s-1")


def test_saves_publish_events() -> None:
    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_type)

    bus.subscribe("*", handler)
    service = StorageService(LocalStore(MemoryBackend()), NullRemoteAdapter(), bus=bus)
    asyncio.run(service.save_inspection(_log("insp-1")))
    asyncio.run(service.save_site(_site("s-1", "Cantera Sur")))
    asyncio.run(service.delete_site("s-1"))

    assert seen == ["storage.inspection.saved", "storage.site.saved", "storage.site.deleted"]


def test_saved_event_carries_defect_count() -> None:
    bus = EventBus()
    seen: list[EventEnvelope] = []
    bus.subscribe("storage.inspection.saved", seen.append)
    service = StorageService(LocalStore(MemoryBackend()), NullRemoteAdapter(), bus=bus)
    log = _log("insp-1", ok=False).model_copy(update={"answers": [_answer(False), _answer(True), _answer(False)]})

    asyncio.run(service.save_inspection(log))

    assert seen[0].payload == {"log_id": "insp-1", "revision": 1, "defects": 2}


class _FlakyBackend(MemoryBackend):
    failing_reads = 0

    def get(self, key: str) -> str | None:
        if self.failing_reads:
            self.failing_reads -= 1
            raise LocalStoreError("transient read failure")
        return super().get(key)


def test_save_after_transient_read_failure_keeps_existing_logs() -> None:
    backend = _FlakyBackend()
    service = StorageService(LocalStore(backend), NullRemoteAdapter(), bus=EventBus())
    asyncio.run(service.save_inspection(_log("insp-1")))

    backend.failing_reads = 1
    assert service.get_inspections() == []
    backend.failing_reads = 1
    with pytest.raises(LocalStoreError):
        asyncio.run(service.save_inspection(_log("insp-2")))

    assert [log.id for log in service.get_inspections()] == ["insp-1"]
    asyncio.run(service.save_inspection(_log("insp-2")))
    assert [log.id for log in service.get_inspections()] == ["insp-1", "insp-2"]


def test_history_orders_naive_and_aware_dates_together() -> None:
    service, _ = _service(NullRemoteAdapter())
    base = _log("x").to_json_dict()
    dated = [
        ("aware", "2026-10-17T09:00:00.000Z"),
        ("naive", "2026-10-17T10:00:00"),
        ("offset", "2026-10-17T10:30:00+02:00"),
    ]
    for log_id, stamp in dated:
        asyncio.run(service.save_inspection(InspectionLog.model_validate({**base, "id": log_id, "date": stamp})))

    listed = service.list_inspections()

    assert [log.id for log in listed] == ["naive", "aware", "offset"]
    assert all(log.date.tzinfo is not None for log in listed)
    assert listed[2].date == datetime(2026, 10, 17, 8, 30, tzinfo=UTC)


def test_services_share_the_always_online_default() -> None:
    remote = FakeRemoteAdapter()
    store = LocalStore(MemoryBackend())
    storage = StorageService(store, remote, bus=EventBus())
    sync = SyncService(store, remote, bus=EventBus())

    assert storage.remote_available() is True
    asyncio.run(storage.save_inspection(_log("insp-1")))
    store.upsert_inspection(_log("insp-2"))
    assert asyncio.run(sync.sync_pending_data()).synced_count == 1
