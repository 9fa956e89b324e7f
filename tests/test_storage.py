"""SqlResultCache against SQLite."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pydantic
import pytest
from sqlalchemy import func, select

from weathercache.models import ReportKind
from weathercache.storage import SqlResultCache, WeatherCacheRow

pytestmark = pytest.mark.asyncio

NOW = datetime(2024, 6, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


@pytest.fixture
def sql_store():
    store = SqlResultCache.from_url("sqlite://")
    yield store
    store.dispose()


def _row_count(store: SqlResultCache) -> int:
    with store._sessions() as db:
        return db.execute(select(func.count()).select_from(WeatherCacheRow)).scalar_one()


async def test_lookup_miss(sql_store):
    assert await sql_store.lookup("k", ReportKind.CURRENT) is None


async def test_round_trip_keeps_utc_timestamps(sql_store):
    doc = {"name": "London", "main": {"temp": 14.2}, "weather": [{"id": 800}]}
    await sql_store.upsert("k", ReportKind.CURRENT, {"city": "London"}, doc, NOW, NOW + timedelta(minutes=5))

    entry = await sql_store.lookup("k", ReportKind.CURRENT)
    assert entry.data == doc
    assert entry.query_params == {"city": "London"}
    assert entry.fetched_at == NOW
    assert entry.fetched_at.tzinfo is not None
    assert entry.expires_at == NOW + timedelta(minutes=5)


async def test_non_utc_input_is_stored_as_utc(sql_store):
    cet = timezone(timedelta(hours=2))
    local = NOW.astimezone(cet)
    await sql_store.upsert("k", ReportKind.CURRENT, {}, {}, local, local + timedelta(minutes=5))

    entry = await sql_store.lookup("k", ReportKind.CURRENT)
    assert entry.fetched_at == NOW


async def test_upsert_replaces_existing_row(sql_store):
    await sql_store.upsert("k", ReportKind.CURRENT, {}, {"v": 1}, NOW, NOW + timedelta(minutes=5))
    later = NOW + timedelta(minutes=6)
    await sql_store.upsert("k", ReportKind.CURRENT, {}, {"v": 2}, later, later + timedelta(minutes=5))

    entry = await sql_store.lookup("k", ReportKind.CURRENT)
    assert entry.data == {"v": 2}
    assert entry.fetched_at == later
    assert _row_count(sql_store) == 1


async def test_one_row_per_key_and_kind(sql_store):
    await sql_store.upsert("k", ReportKind.CURRENT, {}, "c", NOW, NOW + timedelta(minutes=5))
    await sql_store.upsert("k", ReportKind.FORECAST, {}, "f", NOW, NOW + timedelta(minutes=30))

    assert _row_count(sql_store) == 2
    assert (await sql_store.lookup("k", ReportKind.FORECAST)).data == "f"


async def test_rejects_expiry_before_fetch(sql_store):
    with pytest.raises(pydantic.ValidationError):
        await sql_store.upsert("k", ReportKind.CURRENT, {}, {}, NOW, NOW - timedelta(seconds=1))
    assert _row_count(sql_store) == 0


async def test_purge_removes_only_expired(sql_store):
    await sql_store.upsert("old", ReportKind.CURRENT, {}, 1, NOW, NOW + timedelta(minutes=5))
    await sql_store.upsert("new", ReportKind.FORECAST, {}, 2, NOW, NOW + timedelta(minutes=30))

    removed = await sql_store.purge_expired(NOW + timedelta(minutes=10))

    assert removed == 1
    assert await sql_store.lookup("old", ReportKind.CURRENT) is None
    assert await sql_store.lookup("new", ReportKind.FORECAST) is not None


async def test_concurrent_upserts_leave_one_row(tmp_path):
    store = SqlResultCache.from_url(f"sqlite:///{tmp_path / 'cache.db'}")
    try:
        await asyncio.gather(
            *(
                store.upsert("k", ReportKind.CURRENT, {}, {"writer": i}, NOW, NOW + timedelta(minutes=5))
                for i in range(4)
            )
        )
        entry = await store.lookup("k", ReportKind.CURRENT)
        assert entry.data["writer"] in range(4)
        assert _row_count(store) == 1
    finally:
        store.dispose()
