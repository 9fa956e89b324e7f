"""SQL-backed result store.

Table:  weather_cache, one row per (location_key, report_kind)
Expiry: rows past expires_at are deleted by purge_expired(), which the app
        runs on a timer. Readers never rely on that sweep; they compare
        expires_at themselves.

SQLAlchemy sessions are blocking, so every public method hops onto a worker
thread with asyncio.to_thread.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    BigInteger,
    Column,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from weathercache.models import CacheEntry, ReportKind

log = logging.getLogger(__name__)

Base = declarative_base()


class WeatherCacheRow(Base):
    __tablename__ = "weather_cache"
    __table_args__ = (
        UniqueConstraint("location_key", "report_kind", name="uq_weather_cache_key_kind"),
        Index("ix_weather_cache_expires_at", "expires_at"),
    )

    # SQLite only autoincrements INTEGER PRIMARY KEY
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    location_key = Column(Text, nullable=False)
    report_kind = Column(Text, nullable=False)
    query_params = Column(JSON, nullable=False)
    data = Column(JSON, nullable=False)
    fetched_at = Column(TIMESTAMP(timezone=True), nullable=False)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)


def make_engine(url: str) -> Engine:
    """Create an engine usable from worker threads."""
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise each thread sees an empty DB
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_entry(row: WeatherCacheRow) -> CacheEntry:
    return CacheEntry(
        key=row.location_key,
        kind=ReportKind(row.report_kind),
        query_params=row.query_params or {},
        data=row.data,
        fetched_at=_as_utc(row.fetched_at),
        expires_at=_as_utc(row.expires_at),
    )


class SqlResultCache:
    """ResultCache backed by any SQLAlchemy-supported database."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str) -> SqlResultCache:
        store = cls(make_engine(url))
        store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self._engine)

    def dispose(self) -> None:
        self._engine.dispose()

    # ---- blocking implementations ------------------------------------

    def _lookup(self, key: str, kind: ReportKind) -> CacheEntry | None:
        with self._sessions() as db:
            row = db.execute(
                select(WeatherCacheRow).where(
                    WeatherCacheRow.location_key == key,
                    WeatherCacheRow.report_kind == kind.value,
                )
            ).scalar_one_or_none()
            return _to_entry(row) if row is not None else None

    def _write(self, db: Session, key: str, kind: ReportKind, values: dict[str, Any]) -> None:
        row = db.execute(
            select(WeatherCacheRow).where(
                WeatherCacheRow.location_key == key,
                WeatherCacheRow.report_kind == kind.value,
            )
        ).scalar_one_or_none()
        if row is None:
            db.add(WeatherCacheRow(location_key=key, report_kind=kind.value, **values))
        else:
            for field, value in values.items():
                setattr(row, field, value)

    def _upsert(self, key: str, kind: ReportKind, values: dict[str, Any]) -> None:
        try:
            with self._sessions.begin() as db:
                self._write(db, key, kind, values)
        except IntegrityError:
            # A concurrent writer inserted the row first; overwrite it
            log.debug("Upsert race on %s/%s, retrying as update", key, kind.value)
            with self._sessions.begin() as db:
                self._write(db, key, kind, values)

    def _purge_expired(self, now: datetime) -> int:
        with self._sessions.begin() as db:
            result = db.execute(
                delete(WeatherCacheRow).where(WeatherCacheRow.expires_at <= now)
            )
            return result.rowcount or 0

    # ---- ResultCache -------------------------------------------------

    async def lookup(self, key: str, kind: ReportKind) -> CacheEntry | None:
        return await asyncio.to_thread(self._lookup, key, kind)

    async def upsert(
        self,
        key: str,
        kind: ReportKind,
        query_params: dict[str, Any],
        data: Any,
        fetched_at: datetime,
        expires_at: datetime,
    ) -> None:
        # Validates expires_at > fetched_at before anything touches the DB
        entry = CacheEntry(
            key=key,
            kind=kind,
            query_params=query_params,
            data=data,
            fetched_at=fetched_at,
            expires_at=expires_at,
        )
        values = {
            "query_params": entry.query_params,
            "data": entry.data,
            "fetched_at": _as_utc(entry.fetched_at),
            "expires_at": _as_utc(entry.expires_at),
        }
        await asyncio.to_thread(self._upsert, key, kind, values)

    async def purge_expired(self, now: datetime) -> int:
        removed = await asyncio.to_thread(self._purge_expired, _as_utc(now))
        if removed:
            log.info("Purged %d expired cache rows", removed)
        return removed
