from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any

import httpx

from fieldsync.infra.events import EventBus, event_bus

logger = logging.getLogger(__name__)

CONNECTIVITY_PROBE_URL = os.getenv("CONNECTIVITY_PROBE_URL", "")
CONNECTIVITY_PROBE_INTERVAL_SECONDS = float(os.getenv("CONNECTIVITY_PROBE_INTERVAL_SECONDS", "15"))
START_ONLINE = os.getenv("START_ONLINE", "true").lower() not in {"0", "false", "no"}

OnlineCallback = Callable[[], Awaitable[Any]]


def always_online() -> bool:
    """Default reachability check for services built without a monitor."""
    return True


class ConnectivityMonitor:
    """Tracks the host's online/offline signal and triggers sync on reconnect.

    The flag is fed either by ``set_online`` (a host event) or by the optional
    probe loop, which issues a GET against ``probe_url`` every interval.
    """

    def __init__(
        self,
        *,
        online: bool = START_ONLINE,
        probe_url: str = CONNECTIVITY_PROBE_URL,
        probe_interval_seconds: float = CONNECTIVITY_PROBE_INTERVAL_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        bus: EventBus = event_bus,
    ) -> None:
        self._online = online
        self._probe_url = probe_url
        self._probe_interval_seconds = max(probe_interval_seconds, 0.1)
        self._transport = transport
        self._bus = bus
        self._callbacks: list[OnlineCallback] = []
        self._task: asyncio.Task[None] | None = None
        self._startup_task: asyncio.Task[Any] | None = None

    def is_online(self) -> bool:
        return self._online

    def on_online(self, callback: OnlineCallback) -> None:
        self._callbacks.append(callback)

    async def _fire(self) -> Any:
        result: Any = None
        for callback in self._callbacks:
            try:
                result = await callback()
            except Exception:
                logger.exception("online callback failed")
        return result

    async def set_online(self, online: bool) -> tuple[bool, Any]:
        """Apply a connectivity signal; returns ``(changed, callback_result)``."""
        changed = online != self._online
        self._online = online
        if not changed:
            return False, None
        logger.info("connectivity changed: %s", "online" if online else "offline")
        self._bus.publish_dict("connectivity.changed", {"online": online})
        if not online:
            return True, None
        return True, await self._fire()

    async def probe_once(self) -> bool:
        if not self._probe_url:
            return self._online
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=5.0) as client:
                response = await client.get(self._probe_url)
            reachable = response.status_code < 500
        except httpx.HTTPError as exc:
            logger.debug("connectivity probe failed: %s", exc)
            reachable = False
        await self.set_online(reachable)
        return reachable

    async def _probe_loop(self) -> None:
        while True:
            await asyncio.sleep(self._probe_interval_seconds)
            await self.probe_once()

    @property
    def startup_task(self) -> asyncio.Task[Any] | None:
        return self._startup_task

    async def start(self) -> None:
        """Schedule the start-up sync (when online) and the probe loop; returns at once."""
        if self._online and self._startup_task is None:
            self._startup_task = asyncio.create_task(self._fire())
        if self._probe_url and self._task is None:
            self._task = asyncio.create_task(self._probe_loop())

    async def stop(self) -> None:
        tasks = [task for task in (self._startup_task, self._task) if task is not None]
        self._startup_task = None
        self._task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
