"""OpenWeatherMap 2.5 client (current conditions + 5 day forecast).

The response body is returned untouched; only the status code class is
interpreted, and mapped onto the gateway's error taxonomy.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from weathercache.config import mask_key, settings
from weathercache.errors import (
    ConfigurationError,
    NotFoundError,
    ThrottledError,
    UpstreamError,
)
from weathercache.models import LocationMode, Query, ReportKind

log = logging.getLogger(__name__)

ENDPOINTS = {
    ReportKind.CURRENT: "/weather",
    ReportKind.FORECAST: "/forecast",
}


def build_params(query: Query, api_key: str) -> dict[str, str]:
    """Upstream query string for *query*. Coordinates are sent unrounded."""
    params = {"appid": api_key, "units": query.units.value}
    if query.location_mode is LocationMode.CITY:
        params["q"] = query.name.strip()
    elif query.location_mode is LocationMode.COORDS:
        params["lat"] = str(query.lat)
        params["lon"] = str(query.lon)
    else:
        params["zip"] = query.postal_code.strip()
    return params


def _upstream_message(resp: httpx.Response) -> str:
    """OWM error bodies look like {"cod": "404", "message": "city not found"}."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return resp.reason_phrase


def raise_for_upstream_status(resp: httpx.Response) -> None:
    """Translate a non-2xx upstream response into a gateway error."""
    if resp.is_success:
        return
    status = resp.status_code
    message = _upstream_message(resp)
    log.warning("OWM error: status=%d message=%s", status, message)
    if status == 401:
        raise ConfigurationError(
            "Upstream rejected the API key. New OpenWeatherMap keys can take up "
            f'to 2 hours to activate. OpenWeatherMap says: "{message}"'
        )
    if status == 404:
        raise NotFoundError(f"Location not found: {message}")
    if status == 429:
        raise ThrottledError("Upstream rate limit exceeded, try again later")
    raise UpstreamError(f"Weather API error ({status}): {message}")


async def fetch_report(
    client: httpx.AsyncClient,
    query: Query,
    *,
    api_key: str,
    base_url: str | None = None,
    timeout: float | None = None,
) -> Any:
    """GET the report for *query* and return the decoded JSON document."""
    url = f"{base_url or settings.OWM_BASE_URL}{ENDPOINTS[query.kind]}"
    log.info("Fetching from OWM: %s (API key: %s)", url, mask_key(api_key))
    try:
        resp = await client.get(
            url,
            params=build_params(query, api_key),
            timeout=timeout or settings.UPSTREAM_TIMEOUT,
        )
    except httpx.TimeoutException as exc:
        raise UpstreamError(f"Weather API timed out: {url}") from exc
    except httpx.HTTPError as exc:
        raise UpstreamError(f"Weather API unreachable: {exc}") from exc

    raise_for_upstream_status(resp)
    try:
        return resp.json()
    except ValueError as exc:
        raise UpstreamError("Weather API returned a non-JSON body") from exc
