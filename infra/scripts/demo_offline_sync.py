from __future__ import annotations

import asyncio
import os
import time
from datetime import UTC, datetime
from typing import Any

import httpx

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000")


def assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


async def wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
        except httpx.HTTPError:
            pass
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}")


def build_log(site: dict[str, Any], inspector: str) -> dict[str, Any]:
    answers = []
    for area in site["areas"]:
        for point in area["points"]:
            answers.append(
                {
                    "pointId": point["id"],
                    "pointName": point["name"],
                    "question": point["question"],
                    "areaName": area["name"],
                    "isOk": True,
                    "timestamp": int(time.time() * 1000),
                }
            )
    return {
        "siteId": site["id"],
        "siteName": site["name"],
        "date": datetime.now(UTC).isoformat(),
        "inspectorName": inspector,
        "inspectorDni": "00000000T",
        "inspectorEmail": "demo@example.com",
        "answers": answers,
        "status": "completed",
    }


async def main() -> None:
    async with httpx.AsyncClient(base_url=APP_BASE_URL, timeout=30.0) as client:
        await wait_ok(client, "/healthz")

        resp = await client.put("/api/sync/connectivity", json={"online": False})
        assert_status(resp, 200)

        resp = await client.get("/api/sites")
        assert_status(resp, 200)
        site = resp.json()[0]

        resp = await client.post("/api/inspections", json=build_log(site, "Demo Inspector"))
        assert_status(resp, 201)
        saved = resp.json()
        print(f"saved offline: {saved['log']['id']} uploaded={saved['uploaded']}")

        resp = await client.get("/api/sync/status")
        assert_status(resp, 200)
        print(f"status while offline: {resp.json()}")

        resp = await client.put("/api/sync/connectivity", json={"online": True})
        assert_status(resp, 200)
        print(f"reconnected: {resp.json()}")

        resp = await client.get("/api/sync/status")
        assert_status(resp, 200)
        print(f"status after reconnect: {resp.json()}")


if __name__ == "__main__":
    asyncio.run(main())
