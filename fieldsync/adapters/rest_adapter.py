from __future__ import annotations

import logging
import os

import httpx

from fieldsync.adapters.base import RemoteError, inspection_row, site_from_row, site_row
from fieldsync.domain.models import InspectionLog, Site

logger = logging.getLogger(__name__)

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
REMOTE_TIMEOUT_SECONDS = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "10"))


def credentials_look_valid(base_url: str, api_key: str) -> bool:
    return base_url.startswith("http") and len(api_key) > 20


class RestRemoteAdapter:
    """PostgREST (Supabase) tables ``sites`` and ``inspections``.

    Every write is an upsert on ``id`` so a retried upload after a dropped
    response lands on the same row.
    """

    def __init__(
        self,
        *,
        base_url: str = SUPABASE_URL,
        api_key: str = SUPABASE_ANON_KEY,
        timeout_seconds: float = REMOTE_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._configured = credentials_look_valid(base_url, api_key)
        self._client: httpx.AsyncClient | None = None
        if self._configured:
            self._client = httpx.AsyncClient(
                base_url=f"{base_url.rstrip('/')}/rest/v1",
                headers={
                    "apikey": api_key,
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                timeout=timeout_seconds,
                transport=transport,
            )

    @property
    def is_configured(self) -> bool:
        return self._configured

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RemoteError("remote store is not configured")
        return self._client

    async def _request(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        client = self._require_client()
        try:
            response = await client.request(method, path, **kwargs)  # type: ignore[arg-type]
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteError(
                f"{method} {path} failed with {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc
        return response

    async def _upsert(self, table: str, row: dict[str, object]) -> None:
        await self._request(
            "POST",
            f"/{table}",
            params={"on_conflict": "id"},
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            json=row,
        )

    async def upsert_site(self, site: Site) -> None:
        await self._upsert("sites", site_row(site))

    async def delete_site(self, site_id: str) -> None:
        await self._request("DELETE", "/sites", params={"id": f"eq.{site_id}"})

    async def list_sites(self) -> list[Site]:
        response = await self._request("GET", "/sites", params={"select": "id,data"})
        rows = response.json()
        if not isinstance(rows, list):
            raise RemoteError("unexpected sites payload")
        sites: list[Site] = []
        for row in rows:
            try:
                sites.append(site_from_row(row))
            except ValueError as exc:
                logger.warning("skipping unreadable remote site %s: %s", row.get("id"), exc)
        return sites

    async def upsert_inspection(self, log: InspectionLog) -> None:
        await self._upsert("inspections", inspection_row(log))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
