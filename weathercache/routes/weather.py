from __future__ import annotations

from fastapi import APIRouter, Request

from weathercache.config import settings
from weathercache.models import parse_query

router = APIRouter(prefix="/api")


@router.get("/weather")
async def get_weather(request: Request):
    """Resolve one weather query. Errors are rendered by the app's handler."""
    query = parse_query(request.query_params)
    coordinator = request.app.state.coordinator
    result = await coordinator.resolve(query, ttl=settings.ttl_for(query.kind))
    return result.model_dump(mode="json", by_alias=True)
