from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from fieldsync.adapters.base import RemoteError, inspection_row, site_from_row, site_row
from fieldsync.domain.models import InspectionLog, Site


@dataclass
class FakeCallLog:
    site_upserts: list[str] = field(default_factory=list)
    site_deletes: list[str] = field(default_factory=list)
    inspection_upserts: list[str] = field(default_factory=list)
    site_lists: int = 0


class FakeRemoteAdapter:
    """In-memory remote with switchable failures, delays and gates.

    ``hold(record_id)`` parks the next upload of that record until
    ``release(record_id)`` is called, which lets tests interleave local writes
    with an upload that is still in flight.
    """

    def __init__(
        self,
        *,
        configured: bool = True,
        delay_seconds: float = 0.0,
        force_timeout: bool = False,
        fail_all: bool = False,
    ) -> None:
        self._configured = configured
        self._delay_seconds = max(delay_seconds, 0.0)
        self._force_timeout = force_timeout
        self.fail_all = fail_all
        self.failing_ids: set[str] = set()
        self.fail_list_sites = False
        self.sites: dict[str, dict[str, Any]] = {}
        self.inspections: dict[str, dict[str, Any]] = {}
        self.calls = FakeCallLog()
        self._gates: dict[str, asyncio.Event] = {}
        self._held: set[str] = set()

    @property
    def is_configured(self) -> bool:
        return self._configured

    def hold(self, record_id: str) -> None:
        self._held.add(record_id)

    def release(self, record_id: str) -> None:
        self._held.discard(record_id)
        gate = self._gates.pop(record_id, None)
        if gate is not None:
            gate.set()

    async def wait_until_parked(self, record_id: str) -> None:
        while record_id not in self._gates:
            await asyncio.sleep(0)

    async def _simulate(self, record_id: str) -> None:
        if self._delay_seconds > 0:
            await asyncio.sleep(self._delay_seconds)
        if self._force_timeout:
            # Simulate a remote that never answers.
            await asyncio.sleep(3600)
        if record_id in self._held:
            gate = asyncio.Event()
            self._gates[record_id] = gate
            await gate.wait()
        if self.fail_all or record_id in self.failing_ids:
            raise RemoteError(f"FAKE failure for {record_id}")

    async def upsert_site(self, site: Site) -> None:
        self.calls.site_upserts.append(site.id)
        await self._simulate(site.id)
        self.sites[site.id] = site_row(site)

    async def delete_site(self, site_id: str) -> None:
        self.calls.site_deletes.append(site_id)
        await self._simulate(site_id)
        self.sites.pop(site_id, None)

    async def list_sites(self) -> list[Site]:
        self.calls.site_lists += 1
        if self.fail_all or self.fail_list_sites:
            raise RemoteError("FAKE failure listing sites")
        return [site_from_row(row) for row in self.sites.values()]

    async def upsert_inspection(self, log: InspectionLog) -> None:
        self.calls.inspection_upserts.append(log.id)
        await self._simulate(log.id)
        self.inspections[log.id] = inspection_row(log)

    async def aclose(self) -> None:
        return None
