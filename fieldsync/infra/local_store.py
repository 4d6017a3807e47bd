"""Durable local store for sites and inspection logs.

Each collection lives under one key as a JSON array and is always rewritten
whole: read the full collection, mutate it in memory, write it back. Readers
therefore see either the previous or the next collection, never a mix.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol, TypeVar

from pydantic import ValidationError
from redis import Redis
from redis.exceptions import RedisError

from fieldsync.domain.models import Area, CamelModel, InspectionLog, InspectionPoint, Site

logger = logging.getLogger(__name__)

SITES_KEY = "sp_sites"
INSPECTIONS_KEY = "sp_inspections"

LOCAL_STORE_BACKEND = os.getenv("LOCAL_STORE_BACKEND", "file")
LOCAL_STORE_DIR = os.getenv("LOCAL_STORE_DIR", "data")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "fieldsync:")

M = TypeVar("M", Site, InspectionLog)


class LocalStoreError(Exception):
    pass


class LocalStoreWriteError(LocalStoreError):
    pass


class LocalStoreCorruptError(LocalStoreError):
    pass


class KeyValueBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryBackend:
    def __init__(self, entries: dict[str, str] | None = None) -> None:
        self.entries: dict[str, str] = dict(entries or {})

    def get(self, key: str) -> str | None:
        return self.entries.get(key)

    def set(self, key: str, value: str) -> None:
        self.entries[key] = value


class FileBackend:
    """One ``<key>.json`` file per entry, replaced atomically on write."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LocalStoreError(f"cannot read {key}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        target = self._path(key)
        tmp_name: str | None = None
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._directory,
                prefix=f".{key}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(value)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, target)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise LocalStoreWriteError(f"cannot write {key}: {exc}") from exc


class RedisBackend:
    def __init__(self, client: Redis | None = None, prefix: str = REDIS_KEY_PREFIX) -> None:
        self._client = client if client is not None else Redis.from_url(REDIS_URL, decode_responses=True)
        self._prefix = prefix

    def get(self, key: str) -> str | None:
        try:
            value = self._client.get(f"{self._prefix}{key}")
        except RedisError as exc:
            raise LocalStoreError(f"cannot read {key}: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        try:
            self._client.set(f"{self._prefix}{key}", value)
        except RedisError as exc:
            raise LocalStoreWriteError(f"cannot write {key}: {exc}") from exc


def build_backend(kind: str = LOCAL_STORE_BACKEND) -> KeyValueBackend:
    if kind == "file":
        return FileBackend(LOCAL_STORE_DIR)
    if kind == "redis":
        return RedisBackend()
    if kind == "memory":
        return MemoryBackend()
    raise ValueError(f"unknown LOCAL_STORE_BACKEND: {kind}")


def seed_sites() -> list[Site]:
    return [
        Site(
            id="site-1",
            name="Cantera Los Álamos (Demo)",
            areas=[
                Area(
                    id="area-1",
                    name="Caseta de Control",
                    points=[
                        InspectionPoint(
                            id="pt-1",
                            name="Extintor Principal",
                            question="¿El extintor está cargado?",
                            requires_photo=True,
                            photo_instruction="Foto manómetro",
                        )
                    ],
                )
            ],
        )
    ]


def _entry_id(entry: Any) -> Any:
    if isinstance(entry, CamelModel):
        return getattr(entry, "id", None)
    if isinstance(entry, dict):
        return entry.get("id")
    return None


def _entry_revision(entry: Any) -> int:
    if isinstance(entry, (Site, InspectionLog)):
        return entry.revision
    if isinstance(entry, dict) and isinstance(entry.get("revision"), int):
        return entry["revision"]
    return 0


def _validated(model: type[M], key: str, items: list[Any]) -> list[M | Any]:
    """Validate record by record; unreadable records are kept as stored."""
    entries: list[M | Any] = []
    for position, item in enumerate(items):
        try:
            entries.append(model.model_validate(item))
        except ValidationError as exc:
            logger.error("%s[%s] (id=%s) is unreadable, kept as stored: %s", key, position, _entry_id(item), exc)
            entries.append(item)
    return entries


def _dumps(entries: Sequence[Any]) -> str:
    return json.dumps(
        [entry.to_json_dict() if isinstance(entry, CamelModel) else entry for entry in entries],
        ensure_ascii=False,
    )


class LocalStore:
    """Whole-collection reads and writes over a ``KeyValueBackend``.

    ``read_sites`` / ``read_inspections`` are the display reads and never
    raise. Every mutation goes through a strict read instead: a backend
    failure or an unparseable payload raises ``LocalStoreError`` rather than
    writing a fallback over the stored collection, and records that fail
    validation are written back untouched.
    """

    def __init__(self, backend: KeyValueBackend) -> None:
        self._backend = backend

    def _load(self, key: str, *, wrap_single: bool = False) -> list[Any] | None:
        raw = self._backend.get(key)
        if not raw:
            return None
        try:
            parsed: Any = json.loads(raw)
        except ValueError as exc:
            raise LocalStoreCorruptError(f"{key} is not valid JSON") from exc
        if wrap_single and isinstance(parsed, dict) and parsed.get("id"):
            logger.warning("%s held a single object, recovering it as a list", key)
            return [parsed]
        if not isinstance(parsed, list):
            raise LocalStoreCorruptError(f"{key} is not an array ({type(parsed).__name__})")
        return parsed

    def _site_entries(self) -> list[Site | Any]:
        items = self._load(SITES_KEY)
        if items is None:
            return list(seed_sites())
        return _validated(Site, SITES_KEY, items)

    def _inspection_entries(self) -> list[InspectionLog | Any]:
        items = self._load(INSPECTIONS_KEY, wrap_single=True)
        if items is None:
            return []
        return _validated(InspectionLog, INSPECTIONS_KEY, items)

    def read_sites(self) -> list[Site]:
        """Readable sites, tombstones included.

        Never raises: an unreadable collection yields the seed and is logged.
        An empty store is seeded and the seed persisted.
        """
        try:
            items = self._load(SITES_KEY)
        except LocalStoreError as exc:
            logger.error("stored sites unreadable, falling back to seed data: %s", exc)
            return seed_sites()
        if items is None:
            seeded = seed_sites()
            try:
                self.write_sites(seeded)
            except LocalStoreWriteError:
                logger.exception("could not persist seed sites")
            return seeded
        return [entry for entry in _validated(Site, SITES_KEY, items) if isinstance(entry, Site)]

    def read_inspections(self) -> list[InspectionLog]:
        try:
            items = self._load(INSPECTIONS_KEY, wrap_single=True)
        except LocalStoreError as exc:
            logger.error("stored inspections unreadable, returning empty list: %s", exc)
            return []
        if items is None:
            return []
        entries = _validated(InspectionLog, INSPECTIONS_KEY, items)
        return [entry for entry in entries if isinstance(entry, InspectionLog)]

    def write_sites(self, sites: Sequence[Site | Any]) -> None:
        self._backend.set(SITES_KEY, _dumps(sites))

    def write_inspections(self, logs: Sequence[InspectionLog | Any]) -> None:
        self._backend.set(INSPECTIONS_KEY, _dumps(logs))

    def upsert_site(self, site: Site) -> Site:
        """Replace in place or append; the stored copy is pending at a new revision."""
        entries = self._site_entries()
        index = next((i for i, entry in enumerate(entries) if _entry_id(entry) == site.id), -1)
        previous = _entry_revision(entries[index]) if index >= 0 else 0
        stored = site.model_copy(
            update={"synced": False, "deleted": None, "revision": max(previous, site.revision) + 1}
        )
        if index >= 0:
            entries[index] = stored
        else:
            entries.append(stored)
        self.write_sites(entries)
        return stored

    def upsert_inspection(self, log: InspectionLog) -> InspectionLog:
        entries = self._inspection_entries()
        index = next((i for i, entry in enumerate(entries) if _entry_id(entry) == log.id), -1)
        previous = _entry_revision(entries[index]) if index >= 0 else 0
        stored = log.model_copy(update={"synced": False, "revision": max(previous, log.revision) + 1})
        if index >= 0:
            entries[index] = stored
        else:
            entries.append(stored)
        self.write_inspections(entries)
        return stored

    def tombstone_site(self, site_id: str) -> Site | None:
        entries = self._site_entries()
        for index, entry in enumerate(entries):
            if isinstance(entry, Site) and entry.id == site_id and not entry.is_tombstone:
                tombstone = entry.model_copy(
                    update={"deleted": True, "synced": False, "areas": [], "revision": entry.revision + 1}
                )
                entries[index] = tombstone
                self.write_sites(entries)
                return tombstone
        return None

    def drop_site_tombstone(self, site_id: str) -> bool:
        entries = self._site_entries()
        remaining = [
            entry
            for entry in entries
            if not (isinstance(entry, Site) and entry.id == site_id and entry.is_tombstone)
        ]
        if len(remaining) == len(entries):
            return False
        self.write_sites(remaining)
        return True

    # The flag flips below always follow a network round-trip, so they re-read
    # the collection and only touch the one record, and only when its revision
    # is still the one that was uploaded.

    def mark_site_synced(self, site_id: str, revision: int) -> bool:
        entries = self._site_entries()
        for index, entry in enumerate(entries):
            if not isinstance(entry, Site) or entry.id != site_id:
                continue
            if entry.revision != revision:
                logger.info("site %s changed during upload (rev %s -> %s), left pending", site_id, revision, entry.revision)
                return False
            entries[index] = entry.model_copy(update={"synced": True})
            self.write_sites(entries)
            return True
        return False

    def mark_inspection_synced(self, log_id: str, revision: int) -> bool:
        entries = self._inspection_entries()
        for index, entry in enumerate(entries):
            if not isinstance(entry, InspectionLog) or entry.id != log_id:
                continue
            if entry.revision != revision:
                logger.info(
                    "inspection %s changed during upload (rev %s -> %s), left pending", log_id, revision, entry.revision
                )
                return False
            entries[index] = entry.model_copy(update={"synced": True})
            self.write_inspections(entries)
            return True
        return False

    def append_sites_if_absent(self, incoming: list[Site]) -> list[Site]:
        """Append remote sites whose id is unknown locally. Never overwrites."""
        entries = self._site_entries()
        known = {_entry_id(entry) for entry in entries}
        added: list[Site] = []
        for site in incoming:
            if site.id in known or site.is_tombstone:
                continue
            stored = site.model_copy(update={"synced": True})
            entries.append(stored)
            known.add(site.id)
            added.append(stored)
        if added:
            self.write_sites(entries)
        return added

    def pending_counts(self) -> tuple[int, int]:
        sites = sum(1 for site in self.read_sites() if site.is_pending)
        logs = sum(1 for log in self.read_inspections() if log.is_pending)
        return sites, logs

    def check_ready(self) -> bool:
        try:
            self._backend.get(SITES_KEY)
            return True
        except LocalStoreError:
            return False
