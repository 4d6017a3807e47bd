from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException

from fieldsync.api.routers import inspections, sites, sync
from fieldsync.infra.runtime import Runtime, get_runtime

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    runtime = get_runtime()
    runtime.storage.get_sites()
    await runtime.connectivity.start()
    try:
        yield
    finally:
        await runtime.connectivity.stop()
        await runtime.remote.aclose()


app = FastAPI(
    title="fieldsync",
    description="Offline-first store and sync engine for site inspections.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(sites.router, prefix="/api/sites", tags=["sites"])
app.include_router(inspections.router, prefix="/api/inspections", tags=["inspections"])
app.include_router(sync.router, prefix="/api/sync", tags=["sync"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz(runtime: Runtime = Depends(get_runtime)) -> dict[str, object]:
    store_ok = runtime.store.check_ready()
    checks = {
        "local_store": "ok" if store_ok else "fail",
        "remote": "configured" if runtime.remote.is_configured else "unconfigured",
        "network": "online" if runtime.connectivity.is_online() else "offline",
    }
    if not store_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
