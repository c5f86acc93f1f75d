"""AfterShip Tracking API transport.

Responsibility:
- Authenticated HTTP calls against the versioned Tracking API.
- Unwrap the `{"meta": ..., "data": ...}` envelope.
- Map error statuses to the `AfterShipApiError` hierarchy.
- Retry transient failures (429, 5xx, network) with bounded backoff.

No caching or filtering happens here; see `core.services.tracking_client`.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any
from urllib.parse import quote

import httpx

from aftership_cli.adapters.http_client import build_async_client
from aftership_cli.core.config import AppSettings, require_api_key
from aftership_cli.core.errors import (
    AfterShipApiError,
    AuthenticationError,
    RateLimitError,
    TrackingNotFoundError,
)

logger = logging.getLogger(__name__)

API_KEY_HEADER = "as-api-key"


def _safe_retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _error_from_response(response: httpx.Response) -> AfterShipApiError:
    status = response.status_code
    meta: dict[str, Any] = {}
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("meta"), dict):
        meta = body["meta"]

    message = meta.get("message") or f"AfterShip API error (HTTP {status})"
    details = {"status_code": status, "code": meta.get("code"), "error_type": meta.get("type")}

    if status in (401, 403):
        return AuthenticationError(message, **details)
    if status == 404:
        return TrackingNotFoundError(message, **details)
    if status == 429:
        return RateLimitError(message, retry_after=_safe_retry_after_seconds(response), **details)
    return AfterShipApiError(message, **details)


def _unwrap(response: httpx.Response) -> dict[str, Any]:
    if response.status_code >= 400:
        raise _error_from_response(response)
    if response.status_code == 204 or not response.content:
        return {}
    try:
        body = response.json()
    except ValueError as exc:
        raise AfterShipApiError(
            "Unexpected non-JSON response from AfterShip",
            status_code=response.status_code,
        ) from exc
    data = body.get("data") if isinstance(body, dict) else None
    return data if isinstance(data, dict) else {}


def _backoff_seconds(attempt: int) -> float:
    return 1.25 * (2**attempt)


class AfterShipApi:
    """Thin async client for the AfterShip Tracking API.

    A fresh `httpx.AsyncClient` is opened per request; each CLI invocation
    issues only a handful of sequential calls.
    """

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or AppSettings()
        self._api_key = api_key or require_api_key(self._settings)
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        max_retries = self._settings.http_max_retries
        attempt = 0

        while True:
            try:
                logger.debug("%s %s params=%s", method, path, clean_params)
                async with build_async_client(
                    self._settings,
                    base_url=self._settings.api_base_url,
                    extra_headers={API_KEY_HEADER: self._api_key},
                    transport=self._transport,
                ) as client:
                    response = await client.request(method, path, params=clean_params or None, json=json)
                return _unwrap(response)
            except RateLimitError as exc:
                if attempt >= max_retries:
                    raise
                delay = exc.retry_after if exc.retry_after is not None else _backoff_seconds(attempt)
            except AfterShipApiError as exc:
                if exc.status_code is None or exc.status_code < 500 or attempt >= max_retries:
                    raise
                delay = _backoff_seconds(attempt)
            except httpx.TransportError:
                if attempt >= max_retries:
                    raise
                delay = _backoff_seconds(attempt)

            logger.debug("Retrying %s %s (attempt %d/%d) in %.2fs", method, path, attempt + 1, max_retries, delay)
            await asyncio.sleep(delay + random.uniform(0.0, 0.35))
            attempt += 1

    # ------------------------------------------------------------------
    # Trackings
    # ------------------------------------------------------------------

    async def get_trackings(self, **params: Any) -> dict[str, Any]:
        return await self._request("GET", "/trackings", params=params)

    async def get_tracking_by_id(self, tracking_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/trackings/{quote(tracking_id, safe='')}")

    async def create_tracking(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/trackings", json=payload)

    async def update_tracking_by_id(self, tracking_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = {k: v for k, v in payload.items() if v is not None}
        return await self._request("PATCH", f"/trackings/{quote(tracking_id, safe='')}", json=body)

    async def delete_tracking_by_id(self, tracking_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/trackings/{quote(tracking_id, safe='')}")

    async def retrack_tracking_by_id(self, tracking_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/trackings/{quote(tracking_id, safe='')}/retrack")

    async def mark_tracking_completed_by_id(self, tracking_id: str, reason: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/trackings/{quote(tracking_id, safe='')}/mark-as-completed",
            json={"reason": reason},
        )

    # ------------------------------------------------------------------
    # Couriers
    # ------------------------------------------------------------------

    async def get_couriers(self, *, include_all: bool = False) -> dict[str, Any]:
        return await self._request("GET", "/couriers/all" if include_all else "/couriers")

    async def detect_courier(self, tracking_number: str, **params: Any) -> dict[str, Any]:
        body = {"tracking_number": tracking_number}
        body.update({k: v for k, v in params.items() if v is not None})
        return await self._request("POST", "/couriers/detect", json=body)
