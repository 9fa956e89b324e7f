"""Weather cache gateway: cached, deduplicated access to OpenWeatherMap."""
from __future__ import annotations

import asyncio
import functools
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from weathercache.cache import MemoryResultCache, ResultCache
from weathercache.config import Settings, settings
from weathercache.coordinator import FetchCoordinator, Fetcher, utcnow
from weathercache.errors import WeatherCacheError
from weathercache.routes import health
from weathercache.routes import weather as weather_routes
from weathercache.services import weather
from weathercache.storage import SqlResultCache

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("weathercache")


async def _expiry_loop(store: ResultCache, interval: int, initial_delay: float = 0.0):
    """Storage-side reclamation of rows whose expires_at has passed."""
    if initial_delay:
        await asyncio.sleep(initial_delay)
    while True:
        try:
            removed = await store.purge_expired(utcnow())
            log.debug("Expiry sweep removed %d rows", removed)
        except asyncio.CancelledError:
            break
        except Exception as e:
            log.warning("Expiry sweep failed: %s", e)
        await asyncio.sleep(interval)


def open_store(url: str) -> ResultCache:
    if url == "memory://":
        return MemoryResultCache()
    return SqlResultCache.from_url(url)


def create_app(
    *,
    store: ResultCache | None = None,
    fetcher: Fetcher | None = None,
    api_key: str | None = None,
) -> FastAPI:
    """Build the app. Overrides exist so tests can swap out I/O."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Settings.validate()

        client = httpx.AsyncClient(timeout=httpx.Timeout(settings.UPSTREAM_TIMEOUT))
        key = settings.OPENWEATHERMAP_API_KEY if api_key is None else api_key
        result_store = store if store is not None else open_store(settings.DATABASE_URL)
        upstream = fetcher or functools.partial(weather.fetch_report, client, api_key=key)

        coordinator = FetchCoordinator(result_store, upstream, api_key=key)
        app.state.http = client
        app.state.store = result_store
        app.state.coordinator = coordinator

        sweeper = asyncio.create_task(
            _expiry_loop(result_store, settings.CACHE_PURGE_INTERVAL, initial_delay=1)
        )
        log.info(
            "Weather cache started: store=%s, ttl current=%ss forecast=%ss",
            type(result_store).__name__,
            settings.CACHE_TTL_CURRENT,
            settings.CACHE_TTL_FORECAST,
        )
        yield

        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
        await coordinator.aclose()
        await client.aclose()
        if isinstance(result_store, SqlResultCache) and store is None:
            result_store.dispose()
        log.info("Weather cache shutdown complete")

    app = FastAPI(title="Weather Cache", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(WeatherCacheError)
    async def weather_error_handler(request: Request, exc: WeatherCacheError):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(health.router)
    app.include_router(weather_routes.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "weathercache.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
