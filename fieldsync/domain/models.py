from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StoredModel(CamelModel):
    # Fields written by other clients survive a local read/write round-trip.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class InspectionStatus(StrEnum):
    COMPLETED = "completed"
    DRAFT = "draft"


class InspectionPoint(StoredModel):
    id: str
    name: str
    question: str
    requires_photo: bool = False
    photo_instruction: str | None = None


class Area(StoredModel):
    id: str
    name: str
    points: list[InspectionPoint] = PydanticField(default_factory=list)


class Site(StoredModel):
    id: str
    name: str
    areas: list[Area] = PydanticField(default_factory=list)
    synced: bool | None = None
    revision: int = 0
    deleted: bool | None = None

    @property
    def is_pending(self) -> bool:
        return not self.synced

    @property
    def is_tombstone(self) -> bool:
        return bool(self.deleted)


class Answer(StoredModel):
    point_id: str
    point_name: str
    question: str
    area_name: str
    is_ok: bool
    photo_url: str | None = None
    timestamp: int


class InspectionLog(StoredModel):
    id: str
    site_id: str
    site_name: str
    date: datetime
    inspector_name: str
    inspector_dni: str
    inspector_email: str
    answers: list[Answer] = PydanticField(default_factory=list)
    status: InspectionStatus = InspectionStatus.COMPLETED
    synced: bool | None = None
    revision: int = 0

    @field_validator("date")
    @classmethod
    def date_as_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def is_pending(self) -> bool:
        return not self.synced

    @property
    def defect_count(self) -> int:
        return sum(1 for answer in self.answers if not answer.is_ok)


class InspectionLogCreate(StoredModel):
    id: str | None = None
    site_id: str
    site_name: str
    date: datetime = PydanticField(default_factory=now_utc)
    inspector_name: str
    inspector_dni: str
    inspector_email: str
    answers: list[Answer] = PydanticField(default_factory=list)
    status: InspectionStatus = InspectionStatus.COMPLETED

    @field_validator("date")
    @classmethod
    def date_as_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class SiteCreate(CamelModel):
    name: str
    areas: list[Area] = PydanticField(default_factory=list)


class InspectionSaveResult(CamelModel):
    log: InspectionLog
    uploaded: bool


class SyncResult(CamelModel):
    synced_count: int = 0
    synced_sites: int = 0
    pulled_sites: int = 0
    deleted_sites: int = 0
    failed: list[str] = PydanticField(default_factory=list)


class SyncStatusRead(CamelModel):
    online: bool
    remote_configured: bool
    pending_inspections: int
    pending_sites: int


class ConnectivityUpdate(CamelModel):
    online: bool


class ConnectivityRead(CamelModel):
    online: bool
    changed: bool
    sync: SyncResult | None = None


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    payload: dict[str, Any]


class RemoteSiteRecord(SQLModel, table=True):
    __tablename__ = "sites"

    id: str = Field(primary_key=True)
    data: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RemoteInspectionRecord(SQLModel, table=True):
    __tablename__ = "inspections"

    id: str = Field(primary_key=True)
    site_name: str = Field(index=True)
    inspector_name: str = Field(index=True)
    date: datetime = Field(index=True)
    data: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
