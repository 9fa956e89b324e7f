"""Caller-facing error taxonomy.

Every failure the gateway reports is one of a closed set of kinds, each with
its own HTTP status so callers can tell "try another location" apart from
"try again later" and "fix the deployment".
"""
from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    THROTTLED = "throttled"
    UPSTREAM = "upstream"


class WeatherCacheError(Exception):
    """Base class for every error the gateway surfaces."""

    kind: ErrorKind = ErrorKind.UPSTREAM
    status_code: int = 502

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.kind.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(WeatherCacheError):
    """Missing or rejected upstream credential. Needs operator action."""

    kind = ErrorKind.CONFIGURATION
    status_code = 500


class ValidationError(WeatherCacheError):
    """Malformed query; the caller's fault."""

    kind = ErrorKind.VALIDATION
    status_code = 400


class NotFoundError(WeatherCacheError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ThrottledError(WeatherCacheError):
    kind = ErrorKind.THROTTLED
    status_code = 429


class UpstreamError(WeatherCacheError):
    """Network failure, timeout, or an upstream response we don't recognise."""

    kind = ErrorKind.UPSTREAM
    status_code = 502
