from __future__ import annotations

import logging
import os
from datetime import timedelta

from dotenv import load_dotenv

from weathercache.models import ReportKind

load_dotenv()

log = logging.getLogger(__name__)


def _int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("Env var %s=%r is not an integer, using %d", key, raw, default)
        return default


def mask_key(key: str) -> str:
    """Render an API key safe for logs: first and last four characters."""
    if not key:
        return "NOT SET"
    if len(key) <= 8:
        return "****"
    return f"{key[:4]}...{key[-4:]}"


class Settings:
    # --- Server ---
    HOST: str = os.getenv("WEATHERCACHE_HOST", "0.0.0.0")
    PORT: int = _int("WEATHERCACHE_PORT", 8100)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # --- Upstream (OpenWeatherMap) ---
    # Trimmed: keys pasted into .env often carry stray whitespace
    OPENWEATHERMAP_API_KEY: str = os.getenv("OPENWEATHERMAP_API_KEY", "").strip()
    OWM_BASE_URL: str = os.getenv(
        "OWM_BASE_URL", "https://api.openweathermap.org/data/2.5"
    ).rstrip("/")
    UPSTREAM_TIMEOUT: float = float(_int("UPSTREAM_TIMEOUT", 10))

    # --- Cache TTLs (seconds) ---
    CACHE_TTL_CURRENT: int = _int("CACHE_TTL_CURRENT", 300)
    CACHE_TTL_FORECAST: int = _int("CACHE_TTL_FORECAST", 1800)

    # --- Storage ---
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./weathercache.db")
    CACHE_PURGE_INTERVAL: int = _int("CACHE_PURGE_INTERVAL", 60)

    @classmethod
    def ttl_for(cls, kind: ReportKind) -> timedelta:
        """Current conditions go stale faster than forecasts."""
        if kind is ReportKind.CURRENT:
            return timedelta(seconds=max(cls.CACHE_TTL_CURRENT, 1))
        return timedelta(seconds=max(cls.CACHE_TTL_FORECAST, 1))

    @classmethod
    def validate(cls) -> None:
        """Log warnings for missing or nonsensical settings.

        Never exits: a missing credential is reported per request as a
        ConfigurationError so the health endpoint stays reachable.
        """
        if not cls.OPENWEATHERMAP_API_KEY:
            log.warning(
                "Missing env var OPENWEATHERMAP_API_KEY; every weather request will fail"
            )
        for name in ("CACHE_TTL_CURRENT", "CACHE_TTL_FORECAST"):
            if getattr(cls, name) <= 0:
                log.warning("%s must be positive, clamping to 1 second", name)
        if cls.UPSTREAM_TIMEOUT <= 0:
            log.warning("UPSTREAM_TIMEOUT must be positive")


settings = Settings()
