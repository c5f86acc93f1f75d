"""Tracking client: the Tracking API plus a response cache.

Every read goes through `ResponseCache.get_or_fetch` under a key derived from
its operation tag and parameters. Every mutation drops the exact entity key
it touches and all list-style families.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from urllib.parse import quote

import httpx

from aftership_cli.adapters.aftership_api import AfterShipApi
from aftership_cli.adapters.response_cache import TTL, ResponseCache, create_cache_key
from aftership_cli.core.config import AppSettings, require_api_key
from aftership_cli.core.domain.models import (
    ApiStatus,
    CacheStats,
    CompletionReason,
    CourierResolution,
    NewTracking,
    ToolInfo,
    TrackingList,
)
from aftership_cli.core.errors import AfterShipApiError, TrackingNotFoundError
from aftership_cli.core.interfaces.tracking_api import TrackingApi
from aftership_cli.core.services import filters

logger = logging.getLogger(__name__)

ACTIVE_TAGS: tuple[str, ...] = (
    "Pending",
    "InfoReceived",
    "InTransit",
    "OutForDelivery",
    "AttemptFail",
    "AvailableForPickup",
)

# Every cache family that lists trackings and may go stale after a write.
LIST_CACHE_PATTERNS: tuple[str, ...] = (
    r"^tracking",
    r"^order",
    r"^active",
    r"^delayed",
    r"^exceptions",
    r"^delivered",
)

DELAYED_FETCH_LIMIT = 200

TOOLS: tuple[ToolInfo, ...] = (
    ToolInfo(name="list-tools", description="List all available commands"),
    ToolInfo(name="list-trackings", description="List trackings with filters"),
    ToolInfo(name="get-tracking", description="Get tracking by ID or number+slug"),
    ToolInfo(name="search-by-order", description="Find tracking by Shopify order number"),
    ToolInfo(name="create-tracking", description="Create a new tracking"),
    ToolInfo(name="update-tracking", description="Update tracking metadata"),
    ToolInfo(name="delete-tracking", description="Delete a tracking"),
    ToolInfo(name="retrack", description="Retrack an expired tracking"),
    ToolInfo(name="mark-completed", description="Mark tracking as completed"),
    ToolInfo(name="find-exceptions", description="Find trackings with exceptions"),
    ToolInfo(name="find-delayed", description="Find overdue shipments (carrier-aware)"),
    ToolInfo(name="active-shipments", description="List all non-delivered trackings"),
    ToolInfo(name="recent-deliveries", description="List recently delivered trackings"),
    ToolInfo(name="list-couriers", description="List available couriers"),
    ToolInfo(name="detect-courier", description="Detect courier from tracking number"),
    ToolInfo(name="resolve-tracking", description="Smart detection with carrier fallback"),
    ToolInfo(name="api-status", description="Check API key validity"),
    ToolInfo(name="cache-stats", description="Show cache statistics"),
    ToolInfo(name="cache-clear", description="Clear all cached data"),
    ToolInfo(name="cache-invalidate", description="Invalidate cache key or order"),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_cache(settings: AppSettings) -> ResponseCache:
    return ResponseCache(
        namespace=settings.cache_namespace,
        directory=settings.cache_dir,
        default_ttl=TTL.FIVE_MINUTES,
        enabled=settings.cache_enabled,
    )


def _trackings_of(data: dict[str, Any]) -> list[dict[str, Any]]:
    trackings = data.get("trackings")
    return trackings if isinstance(trackings, list) else []


def _couriers_of(data: dict[str, Any]) -> list[dict[str, Any]]:
    couriers = data.get("couriers")
    return couriers if isinstance(couriers, list) else []


def _fallback_courier_name(slug: str) -> str:
    return slug.replace("-", " ").upper()


class TrackingClient:
    """AfterShip operations with cache-aside reads and invalidating writes.

    Args:
        settings: Application settings; loaded from env/config files when omitted.
        api: Tracking API transport. Defaults to `AfterShipApi`, which requires
            a configured API key (`ConfigurationError` otherwise).
        cache: Response cache. Defaults to the namespace from settings.
        clock: Returns "now" (timezone-aware) for date-window filters.
    """

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        api: TrackingApi | None = None,
        cache: ResponseCache | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings or AppSettings()
        if api is None:
            api = AfterShipApi(self._settings, api_key=require_api_key(self._settings))
        self._api = api
        self._cache = cache if cache is not None else build_cache(self._settings)
        self._clock = clock
        self._cache_disabled = not self._cache.enabled

    # ------------------------------------------------------------------
    # Cache control
    # ------------------------------------------------------------------

    def disable_cache(self) -> None:
        self._cache_disabled = True
        self._cache.disable()

    def enable_cache(self) -> None:
        self._cache_disabled = False
        self._cache.enable()

    def get_cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def clear_cache(self) -> int:
        return self._cache.clear()

    def invalidate_cache_key(self, key: str) -> bool:
        return self._cache.invalidate(key)

    def invalidate_by_order_id(self, order_id: str) -> int:
        return invalidate_order(self._cache, order_id)

    def close(self) -> None:
        self._cache.close()

    async def _cached(self, key: str, fetch, *, ttl: int = TTL.FIVE_MINUTES):
        return await self._cache.get_or_fetch(key, fetch, ttl=ttl, bypass=self._cache_disabled)

    def _invalidate_after_write(self, tracking_id: str | None = None) -> None:
        if tracking_id:
            self._cache.invalidate(create_cache_key("tracking:id", {"id": tracking_id}))
        for pattern in LIST_CACHE_PATTERNS:
            self._cache.invalidate_pattern(pattern)

    # ------------------------------------------------------------------
    # Tracking operations
    # ------------------------------------------------------------------

    async def list_trackings(
        self,
        *,
        tag: str | None = None,
        slug: str | None = None,
        order_id: str | None = None,
        created_at_min: str | None = None,
        created_at_max: str | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        params = {
            "tag": tag,
            "slug": slug,
            "order_id": order_id,
            "created_at_min": created_at_min,
            "created_at_max": created_at_max,
            "limit": limit,
        }

        async def fetch() -> dict[str, Any]:
            data = await self._api.get_trackings(**{**params, "limit": limit or 100})
            trackings = _trackings_of(data)
            return TrackingList(trackings=trackings, count=len(trackings)).model_dump(mode="json")

        return await self._cached(create_cache_key("trackings", params), fetch)

    async def get_tracking_by_id(self, tracking_id: str) -> dict[str, Any]:
        async def fetch() -> dict[str, Any]:
            return await self._api.get_tracking_by_id(tracking_id)

        return await self._cached(create_cache_key("tracking:id", {"id": tracking_id}), fetch)

    async def get_tracking_by_number(self, tracking_number: str, slug: str) -> dict[str, Any]:
        """Looks a tracking up by carrier number and slug.

        Raises:
            TrackingNotFoundError: no tracking matches the pair.
        """

        async def fetch() -> dict[str, Any]:
            data = await self._api.get_trackings(tracking_numbers=tracking_number, slug=slug, limit=1)
            trackings = _trackings_of(data)
            if trackings:
                return trackings[0]
            raise TrackingNotFoundError(
                f"Tracking not found: {tracking_number} / {slug}",
                status_code=404,
            )

        key = create_cache_key("tracking:number", {"number": tracking_number, "slug": slug})
        return await self._cached(key, fetch)

    async def search_by_order_id(self, order_id: str) -> list[dict[str, Any]]:
        """Exact `order_id` match first, then a keyword search for partial matches."""

        async def fetch() -> list[dict[str, Any]]:
            trackings = _trackings_of(await self._api.get_trackings(order_id=order_id, limit=100))
            if trackings:
                return trackings
            logger.debug("No exact order_id match for %s, trying keyword search", order_id)
            return _trackings_of(await self._api.get_trackings(keyword=order_id, limit=100))

        return await self._cached(create_cache_key("order", {"orderId": order_id}), fetch)

    async def create_tracking(self, data: NewTracking) -> dict[str, Any]:
        response = await self._api.create_tracking(data.to_payload())
        self._invalidate_after_write()
        return response

    async def update_tracking(
        self,
        tracking_id: str,
        *,
        title: str | None = None,
        order_id: str | None = None,
    ) -> dict[str, Any]:
        response = await self._api.update_tracking_by_id(tracking_id, {"title": title, "order_id": order_id})
        self._invalidate_after_write(tracking_id)
        return response

    async def delete_tracking(self, tracking_id: str) -> None:
        await self._api.delete_tracking_by_id(tracking_id)
        self._invalidate_after_write(tracking_id)

    async def retrack_by_id(self, tracking_id: str) -> dict[str, Any]:
        response = await self._api.retrack_tracking_by_id(tracking_id)
        self._invalidate_after_write(tracking_id)
        return response

    async def mark_completed(
        self,
        tracking_id: str,
        reason: CompletionReason = CompletionReason.DELIVERED,
    ) -> dict[str, Any]:
        response = await self._api.mark_tracking_completed_by_id(tracking_id, CompletionReason(reason).value)
        self._invalidate_after_write(tracking_id)
        return response

    # ------------------------------------------------------------------
    # Monitoring operations
    # ------------------------------------------------------------------

    async def find_exceptions(self, *, limit: int | None = None, days: int | None = None) -> list[dict[str, Any]]:
        days = days or 7
        created_after = self._clock() - timedelta(days=days)

        async def fetch() -> list[dict[str, Any]]:
            data = await self._api.get_trackings(
                tag="Exception",
                created_at_min=created_after.isoformat(),
                limit=limit or 100,
            )
            return _trackings_of(data)

        return await self._cached(create_cache_key("exceptions", {"limit": limit, "days": days}), fetch)

    async def find_delayed(self, *, days: int | None = None) -> list[dict[str, Any]]:
        """Shipments overdue by their carrier threshold.

        `days` only partitions the cache entry; classification always uses the
        carrier table.
        """

        async def fetch() -> list[dict[str, Any]]:
            trackings = _trackings_of(await self._api.get_trackings(limit=DELAYED_FETCH_LIMIT))
            return filters.find_delayed(
                trackings,
                now=self._clock(),
                thresholds=self._settings.delay_thresholds,
            )

        return await self._cached(create_cache_key("delayed", {"days": days}), fetch)

    async def get_active_shipments(
        self,
        *,
        limit: int | None = None,
        slug: str | None = None,
    ) -> list[dict[str, Any]]:
        """Non-delivered shipments, one query per active tag, deduplicated by id."""

        async def fetch() -> list[dict[str, Any]]:
            collected: list[dict[str, Any]] = []
            for tag in ACTIVE_TAGS:
                data = await self._api.get_trackings(tag=tag, slug=slug, limit=limit or 50)
                collected.extend(_trackings_of(data))
            return filters.dedupe_by_id(collected)

        return await self._cached(create_cache_key("active", {"limit": limit, "slug": slug}), fetch)

    async def get_recent_deliveries(
        self,
        *,
        limit: int | None = None,
        days: int | None = None,
    ) -> list[dict[str, Any]]:
        days = days or 7

        async def fetch() -> list[dict[str, Any]]:
            trackings = _trackings_of(await self._api.get_trackings(tag="Delivered", limit=limit or 100))
            return filters.delivered_within(trackings, now=self._clock(), days=days)

        key = create_cache_key("delivered", {"limit": limit, "days": days})
        return await self._cached(key, fetch, ttl=TTL.FIFTEEN_MINUTES)

    # ------------------------------------------------------------------
    # Courier operations
    # ------------------------------------------------------------------

    async def list_couriers(self, include_all: bool = False) -> list[dict[str, Any]]:
        async def fetch() -> list[dict[str, Any]]:
            return _couriers_of(await self._api.get_couriers(include_all=include_all))

        return await self._cached(create_cache_key("couriers", {"all": include_all}), fetch, ttl=TTL.HOUR)

    async def detect_courier(self, tracking_number: str) -> list[dict[str, Any]]:
        """Possible couriers for a number; cached for a day since detection is deterministic."""

        async def fetch() -> list[dict[str, Any]]:
            return _couriers_of(await self._api.detect_courier(tracking_number))

        key = create_cache_key("detect", {"trackingNumber": tracking_number})
        return await self._cached(key, fetch, ttl=TTL.DAY)

    async def resolve_tracking(self, tracking_number: str) -> CourierResolution:
        """Auto-detection first, then probes each fallback carrier in order.

        Never raises for an unrecognized number; returns method "not-found".
        """

        try:
            detected = await self.detect_courier(tracking_number)
        except (AfterShipApiError, httpx.HTTPError) as exc:
            logger.debug("Courier detection failed for %s: %s", tracking_number, exc)
            detected = []
        if detected:
            return CourierResolution(courier=detected[0], method="auto-detected")

        for slug in self._settings.fallback_carriers:
            try:
                tracking = await self.get_tracking_by_number(tracking_number, slug)
            except (AfterShipApiError, httpx.HTTPError) as exc:
                logger.debug("Fallback probe %s failed for %s: %s", slug, tracking_number, exc)
                continue
            if tracking:
                return CourierResolution(
                    courier={"slug": slug, "name": _fallback_courier_name(slug)},
                    method=f"fallback-{slug}",
                )

        return CourierResolution(courier=None, method="not-found")

    # ------------------------------------------------------------------
    # Utility operations
    # ------------------------------------------------------------------

    async def get_api_status(self) -> ApiStatus:
        """Validates the API key with a cheap uncached call."""

        try:
            data = await self._api.get_couriers()
        except AfterShipApiError as exc:
            return ApiStatus(
                valid=False,
                message=str(exc) or "API key validation failed",
                details={"error": exc.error_type or exc.code or "unknown", "status_code": exc.status_code},
            )
        except httpx.HTTPError as exc:
            return ApiStatus(
                valid=False,
                message=str(exc) or "API key validation failed",
                details={"error": type(exc).__name__},
            )
        return ApiStatus(
            valid=True,
            message="API key is valid",
            details={"connected_couriers": len(_couriers_of(data))},
        )

    def get_tools(self) -> list[ToolInfo]:
        return list(TOOLS)


def invalidate_order(cache: ResponseCache, order_id: str) -> int:
    """Drops every cached entry keyed by this order id (search and list caches)."""

    escaped = re.escape(quote(order_id, safe=""))
    pattern = re.compile(rf"order.*{escaped}|tracking.*order_id.*{escaped}", re.IGNORECASE)
    return cache.invalidate_pattern(pattern)
