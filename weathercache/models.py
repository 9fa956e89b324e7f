from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from weathercache.errors import ValidationError


class LocationMode(str, Enum):
    CITY = "city"
    COORDS = "coords"
    ZIP = "zip"


class UnitSystem(str, Enum):
    METRIC = "metric"
    IMPERIAL = "imperial"


class ReportKind(str, Enum):
    CURRENT = "current"
    FORECAST = "forecast"


class Source(str, Enum):
    """Where a WeatherResult came from."""

    CACHE = "cache"
    LIVE = "live"


class Query(BaseModel):
    """A validated weather request.

    Field aliases are the wire names used by the HTTP layer
    (``locationType``, ``city``, ``zip``, ``type``).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    location_mode: LocationMode = Field(LocationMode.CITY, alias="locationType")
    name: str | None = Field(None, alias="city")
    lat: float | None = Field(None, ge=-90.0, le=90.0)
    lon: float | None = Field(None, ge=-180.0, le=180.0)
    postal_code: str | None = Field(None, alias="zip")
    units: UnitSystem = UnitSystem.METRIC
    kind: ReportKind = Field(ReportKind.CURRENT, alias="type")

    @model_validator(mode="after")
    def _require_location_fields(self) -> Query:
        mode = self.location_mode
        if mode is LocationMode.CITY and not (self.name and self.name.strip()):
            raise ValueError("city is required when locationType is 'city'")
        if mode is LocationMode.COORDS and (self.lat is None or self.lon is None):
            raise ValueError("lat and lon are required when locationType is 'coords'")
        if mode is LocationMode.ZIP and not (self.postal_code and self.postal_code.strip()):
            raise ValueError("zip is required when locationType is 'zip'")
        return self

    def params(self) -> dict[str, Any]:
        """Wire-form parameters, kept alongside cache rows for diagnostics."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_query(raw: Mapping[str, Any]) -> Query:
    """Build a Query from loose request parameters.

    Raises ValidationError with per-field details instead of pydantic's own
    exception, so callers only ever see the gateway's taxonomy.
    """
    try:
        return Query.model_validate(dict(raw))
    except pydantic.ValidationError as exc:
        details = [
            {
                "field": ".".join(str(p) for p in err["loc"]) or "query",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        raise ValidationError("Invalid weather query", details=details) from exc


class CacheEntry(BaseModel):
    """One persisted upstream document for a (key, report kind) pair."""

    key: str
    kind: ReportKind
    query_params: dict[str, Any] = Field(default_factory=dict)
    data: Any = None
    fetched_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def _expiry_after_fetch(self) -> CacheEntry:
        if self.expires_at <= self.fetched_at:
            raise ValueError("expires_at must be later than fetched_at")
        return self

    def is_fresh(self, now: datetime) -> bool:
        return self.expires_at > now


class WeatherResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    source: Source
    fetched_at: datetime = Field(alias="fetchedAt")
    data: Any = None

    @field_serializer("fetched_at")
    def _iso(self, value: datetime) -> str:
        return value.isoformat()
