from __future__ import annotations

import time

from fastapi import APIRouter, Request

from weathercache.config import settings

router = APIRouter()

_start_time = time.time()
_VERSION = "0.1.0"


@router.get("/healthz")
async def healthz(request: Request):
    coordinator = request.app.state.coordinator
    return {
        "status": "ok",
        "version": _VERSION,
        "uptime_seconds": round(time.time() - _start_time),
        "inflight_fetches": coordinator.inflight_count,
        "upstream_configured": bool(settings.OPENWEATHERMAP_API_KEY),
        "store": type(request.app.state.store).__name__,
    }
