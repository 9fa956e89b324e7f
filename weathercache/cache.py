from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Protocol

from weathercache.models import CacheEntry, ReportKind


class ResultCache(Protocol):
    """Persisted key -> document store with an explicit expiry per entry.

    ``lookup`` returns whatever is stored, fresh or not; freshness is the
    caller's call. ``upsert`` replaces the row for ``(key, kind)`` as a
    whole, last writer wins.
    """

    async def lookup(self, key: str, kind: ReportKind) -> CacheEntry | None: ...

    async def upsert(
        self,
        key: str,
        kind: ReportKind,
        query_params: dict[str, Any],
        data: Any,
        fetched_at: datetime,
        expires_at: datetime,
    ) -> None: ...

    async def purge_expired(self, now: datetime) -> int: ...


class MemoryResultCache:
    """In-process ResultCache for tests and database-less runs.

    Entries are immutable models, so swapping one in under the lock is
    enough to keep readers from seeing a half-written row.
    """

    def __init__(self) -> None:
        self._store: dict[tuple[str, ReportKind], CacheEntry] = {}
        self._lock = threading.Lock()

    async def lookup(self, key: str, kind: ReportKind) -> CacheEntry | None:
        return self._store.get((key, kind))

    async def upsert(
        self,
        key: str,
        kind: ReportKind,
        query_params: dict[str, Any],
        data: Any,
        fetched_at: datetime,
        expires_at: datetime,
    ) -> None:
        entry = CacheEntry(
            key=key,
            kind=kind,
            query_params=query_params,
            data=data,
            fetched_at=fetched_at,
            expires_at=expires_at,
        )
        with self._lock:
            self._store[(key, kind)] = entry

    async def purge_expired(self, now: datetime) -> int:
        with self._lock:
            stale = [k for k, v in self._store.items() if not v.is_fresh(now)]
            for k in stale:
                del self._store[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._store)

    def keys(self) -> list[tuple[str, ReportKind]]:
        return list(self._store.keys())
