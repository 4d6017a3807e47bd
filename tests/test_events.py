from __future__ import annotations

from fieldsync.domain.models import EventEnvelope
from fieldsync.infra.events import EventBus


def test_event_bus_publish_and_subscribe() -> None:
    bus = EventBus()
    seen: list[str] = []
    wildcard: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    bus.subscribe("sync.inspection.synced", handler)
    bus.subscribe("*", lambda event: wildcard.append(event.event_type))

    event = bus.publish_dict("sync.inspection.synced", {"log_id": "insp-1"})
    bus.publish_dict("sync.pass.completed", {"syncedCount": 1})

    assert seen == [event.event_id]
    assert wildcard == ["sync.inspection.synced", "sync.pass.completed"]

    bus.unsubscribe("sync.inspection.synced", handler)
    bus.publish_dict("sync.inspection.synced", {"log_id": "insp-2"})
    assert seen == [event.event_id]


def test_failing_handler_does_not_reach_publisher() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(event: EventEnvelope) -> None:
        raise RuntimeError("handler bug")

    bus.subscribe("storage.site.saved", broken)
    bus.subscribe("storage.site.saved", lambda event: seen.append(event.payload["site_id"]))

    bus.publish_dict("storage.site.saved", {"site_id": "s-1"})

    assert seen == ["s-1"]
