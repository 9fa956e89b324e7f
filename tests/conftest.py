"""
Shared fixtures: an in-memory store, a controllable clock, and a fake
upstream that counts calls and can be held open to force overlap.
"""
from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

# Keep the app from picking up a developer's .env / database during tests
os.environ.setdefault("DATABASE_URL", "memory://")

from weathercache.cache import MemoryResultCache  # noqa: E402
from weathercache.models import Query  # noqa: E402


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeUpstream:
    """Async callable standing in for the OpenWeatherMap fetch.

    Set ``gate`` to hold every call until the test releases it, and
    ``error`` to make calls fail.
    """

    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[Query] = []
        self.error = error
        self.gate: asyncio.Event | None = None

    async def __call__(self, query: Query) -> dict[str, Any]:
        self.calls.append(query)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return {"call": len(self.calls), "units": query.units.value, "kind": query.kind.value}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> MemoryResultCache:
    return MemoryResultCache()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def london() -> Query:
    return Query(location_mode="city", name="London, GB", units="metric", kind="current")
