from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, create_engine, select

from fieldsync.adapters.base import RemoteError, inspection_row, site_from_row, site_row
from fieldsync.domain.models import InspectionLog, RemoteInspectionRecord, RemoteSiteRecord, Site

logger = logging.getLogger(__name__)

REMOTE_DATABASE_URL = os.getenv("REMOTE_DATABASE_URL", "")

T = TypeVar("T")


def build_engine(database_url: str = REMOTE_DATABASE_URL) -> Engine:
    return create_engine(database_url, pool_pre_ping=True)


class SqlRemoteAdapter:
    """Remote tables reached through SQLAlchemy.

    The blocking driver calls run in a worker thread so the event loop stays
    free for local store operations while an upload is in flight.
    """

    def __init__(self, engine: Engine | None = None) -> None:
        if engine is None and REMOTE_DATABASE_URL:
            engine = build_engine()
        self._engine = engine

    @property
    def is_configured(self) -> bool:
        return self._engine is not None

    def _session(self) -> Session:
        if self._engine is None:
            raise RemoteError("remote database is not configured")
        return Session(self._engine, expire_on_commit=False)

    async def _run(self, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except SQLAlchemyError as exc:
            raise RemoteError(str(exc)) from exc

    def _upsert_site_sync(self, site: Site) -> None:
        row = site_row(site)
        with self._session() as session:
            record = session.get(RemoteSiteRecord, row["id"])
            if record is None:
                record = RemoteSiteRecord(id=row["id"], data=row["data"])
            else:
                record.data = row["data"]
            session.add(record)
            session.commit()

    def _delete_site_sync(self, site_id: str) -> None:
        with self._session() as session:
            record = session.get(RemoteSiteRecord, site_id)
            if record is not None:
                session.delete(record)
                session.commit()

    def _list_sites_sync(self) -> list[Site]:
        with self._session() as session:
            records = session.exec(select(RemoteSiteRecord).order_by(RemoteSiteRecord.created_at)).all()
        sites: list[Site] = []
        for record in records:
            try:
                sites.append(site_from_row({"id": record.id, "data": record.data}))
            except ValueError as exc:
                logger.warning("skipping unreadable remote site %s: %s", record.id, exc)
        return sites

    def _upsert_inspection_sync(self, log: InspectionLog) -> None:
        row = inspection_row(log)
        with self._session() as session:
            record = session.get(RemoteInspectionRecord, row["id"])
            if record is None:
                record = RemoteInspectionRecord(
                    id=row["id"],
                    site_name=row["site_name"],
                    inspector_name=row["inspector_name"],
                    date=log.date,
                    data=row["data"],
                )
            else:
                record.site_name = row["site_name"]
                record.inspector_name = row["inspector_name"]
                record.date = log.date
                record.data = row["data"]
            session.add(record)
            session.commit()

    async def upsert_site(self, site: Site) -> None:
        await self._run(lambda: self._upsert_site_sync(site))

    async def delete_site(self, site_id: str) -> None:
        await self._run(lambda: self._delete_site_sync(site_id))

    async def list_sites(self) -> list[Site]:
        return await self._run(self._list_sites_sync)

    async def upsert_inspection(self, log: InspectionLog) -> None:
        await self._run(lambda: self._upsert_inspection_sync(log))

    async def aclose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
