"""Canonical cache keys for weather queries.

Key format:  {kind}:{location}:{units}

    current:city:london, gb:metric
    forecast:coords:51.51,-0.13:imperial
    current:zip:94040,us:metric

Units are part of the key because metric and imperial documents carry
different values, and the report kind because current and forecast payloads
are unrelated and expire on different schedules.
"""
from __future__ import annotations

from weathercache.models import LocationMode, Query

# ~1.1 km: nearby GPS fixes share one cache entry
COORD_PRECISION = 2


def _coord(value: float) -> str:
    text = f"{value:.{COORD_PRECISION}f}"
    # -0.001 and 0.001 are the same place
    if float(text) == 0:
        return f"{0:.{COORD_PRECISION}f}"
    return text


def location_fragment(query: Query) -> str:
    mode = query.location_mode
    if mode is LocationMode.CITY:
        return f"city:{query.name.strip().lower()}"
    if mode is LocationMode.COORDS:
        return f"coords:{_coord(query.lat)},{_coord(query.lon)}"
    return f"zip:{query.postal_code.strip()}"


def normalize(query: Query) -> str:
    """Return the cache/deduplication key for a validated query."""
    return f"{query.kind.value}:{location_fragment(query)}:{query.units.value}"
