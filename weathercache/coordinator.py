"""Cache-then-dedupe-then-fetch orchestration.

Per key the coordinator is either idle or has exactly one upstream fetch in
flight. Callers arriving while a fetch is pending attach to it and share its
outcome, success or failure; nothing but successes is ever written to the
result store.

    resolve(q)
      ├─ fresh row in store?        -> source=cache
      ├─ fetch in flight for key?   -> await it
      └─ register future, re-check store, fetch, upsert, release
"""
from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from weathercache.cache import ResultCache
from weathercache.errors import ConfigurationError
from weathercache.models import Query, Source, WeatherResult
from weathercache.normalizer import normalize

log = logging.getLogger(__name__)

Fetcher = Callable[[Query], Awaitable[Any]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FetchCoordinator:
    """Serves weather documents from the store, or from one shared upstream call.

    Usage:
        coordinator = FetchCoordinator(store, fetcher, api_key=key)
        result = await coordinator.resolve(query, ttl=timedelta(minutes=5))

    ``fetcher`` performs the upstream GET and raises the gateway's error
    types; the coordinator never retries it.

    A coordinator is bound to the event loop of its first ``resolve`` call:
    in-flight futures belong to that loop, so calls from any other loop are
    rejected with RuntimeError. Run one coordinator per loop.
    """

    def __init__(
        self,
        store: ResultCache,
        fetcher: Fetcher,
        *,
        api_key: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._api_key = api_key
        self._clock = clock
        # key -> future of the single pending fetch for that key
        self._inflight: dict[str, asyncio.Future[WeatherResult]] = {}
        # Guards insert-if-absent and release only; never held across an await
        self._lock = threading.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def is_inflight(self, key: str) -> bool:
        return key in self._inflight

    async def resolve(self, query: Query, ttl: timedelta) -> WeatherResult:
        if not self._api_key:
            raise ConfigurationError("OpenWeatherMap API key not configured")
        if ttl <= timedelta(0):
            raise ConfigurationError(f"Cache TTL must be positive, got {ttl}")

        loop = asyncio.get_running_loop()
        with self._lock:
            if self._loop is None:
                self._loop = loop
        if self._loop is not loop:
            raise RuntimeError("FetchCoordinator is bound to a different event loop")

        key = normalize(query)

        entry = await self._store.lookup(key, query.kind)
        if entry is not None and entry.is_fresh(self._clock()):
            log.debug("Cache hit for %s", key)
            return WeatherResult(source=Source.CACHE, fetched_at=entry.fetched_at, data=entry.data)

        candidate: asyncio.Future[WeatherResult] = loop.create_future()
        with self._lock:
            pending = self._inflight.setdefault(key, candidate)

        if pending is candidate:
            log.debug("Cache miss for %s, fetching upstream", key)
            task = loop.create_task(self._fetch(key, query, ttl, candidate))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            log.debug("Awaiting in-flight request for %s", key)

        # One impatient caller must not cancel the fetch the others share
        return await asyncio.shield(pending)

    async def _fetch(
        self,
        key: str,
        query: Query,
        ttl: timedelta,
        future: asyncio.Future[WeatherResult],
    ) -> None:
        try:
            # Our own lookup may have read the store before a fetch for this
            # key finished and released it; check again now that we own it.
            entry = await self._store.lookup(key, query.kind)
            if entry is not None and entry.is_fresh(self._clock()):
                log.debug("Cache filled while registering %s", key)
                future.set_result(
                    WeatherResult(source=Source.CACHE, fetched_at=entry.fetched_at, data=entry.data)
                )
                return

            data = await self._fetcher(query)
            fetched_at = self._clock()
            await self._store.upsert(
                key,
                query.kind,
                query.params(),
                data,
                fetched_at,
                fetched_at + ttl,
            )
            future.set_result(WeatherResult(source=Source.LIVE, fetched_at=fetched_at, data=data))
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            log.warning("Upstream fetch for %s failed: %s", key, exc)
            future.set_exception(exc)
        finally:
            self._release(key, future)

    def _release(self, key: str, future: asyncio.Future[WeatherResult]) -> None:
        with self._lock:
            if self._inflight.get(key) is future:
                del self._inflight[key]
        # Retrieve the outcome so an unobserved failure is not reported as
        # "Future exception was never retrieved"
        if future.done() and not future.cancelled():
            future.exception()

    async def aclose(self) -> None:
        """Cancel outstanding fetches; attached callers see CancelledError."""
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
