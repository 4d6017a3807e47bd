from __future__ import annotations

from typing import Any, Protocol

from fieldsync.domain.models import InspectionLog, Site


class RemoteError(Exception):
    pass


class RemoteUnavailableError(RemoteError):
    pass


class RemoteAdapter(Protocol):
    @property
    def is_configured(self) -> bool: ...

    async def upsert_site(self, site: Site) -> None: ...

    async def delete_site(self, site_id: str) -> None: ...

    async def list_sites(self) -> list[Site]: ...

    async def upsert_inspection(self, log: InspectionLog) -> None: ...

    async def aclose(self) -> None: ...


class NullRemoteAdapter:
    """Remote with no credentials: every call is refused."""

    @property
    def is_configured(self) -> bool:
        return False

    async def upsert_site(self, site: Site) -> None:
        raise RemoteUnavailableError("remote store is not configured")

    async def delete_site(self, site_id: str) -> None:
        raise RemoteUnavailableError("remote store is not configured")

    async def list_sites(self) -> list[Site]:
        raise RemoteUnavailableError("remote store is not configured")

    async def upsert_inspection(self, log: InspectionLog) -> None:
        raise RemoteUnavailableError("remote store is not configured")

    async def aclose(self) -> None:
        return None


def site_row(site: Site) -> dict[str, Any]:
    data = site.to_json_dict()
    data.pop("synced", None)
    return {"id": site.id, "data": data}


def inspection_row(log: InspectionLog) -> dict[str, Any]:
    data = log.to_json_dict()
    data.pop("synced", None)
    return {
        "id": log.id,
        "site_name": log.site_name,
        "inspector_name": log.inspector_name,
        "date": data["date"],
        "data": data,
    }


def site_from_row(row: dict[str, Any]) -> Site:
    data = dict(row.get("data") or {})
    data.setdefault("id", row.get("id"))
    data["synced"] = True
    return Site.model_validate(data)
