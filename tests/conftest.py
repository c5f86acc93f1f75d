"""Shared test fixtures.

Provides settings bound to a temporary cache directory, an in-memory fake of
the Tracking API and a `TrackingClient` wired to both with a fixed clock.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from aftership_cli.adapters.response_cache import ResponseCache
from aftership_cli.core.config import AppSettings
from aftership_cli.core.errors import TrackingNotFoundError
from aftership_cli.core.services.tracking_client import TrackingClient, build_cache

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)


class FakeTrackingApi:
    """Records every call and answers from in-memory trackings/couriers."""

    def __init__(
        self,
        trackings: list[dict[str, Any]] | None = None,
        couriers: list[dict[str, Any]] | None = None,
        detected: list[dict[str, Any]] | None = None,
    ) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.trackings = list(trackings or [])
        self.couriers = couriers if couriers is not None else [{"slug": "ups", "name": "UPS"}]
        self.detected = list(detected or [])
        self.by_number: dict[tuple[str, str], dict[str, Any]] = {}
        self.detect_error: Exception | None = None
        self.couriers_error: Exception | None = None

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def get_trackings(self, **params: Any) -> dict[str, Any]:
        self.calls.append(("get_trackings", params))
        if params.get("tracking_numbers") is not None:
            found = self.by_number.get((params["tracking_numbers"], params.get("slug")))
            return {"trackings": [found] if found else []}

        items = self.trackings
        if params.get("tag") is not None:
            items = [t for t in items if t.get("tag") == params["tag"]]
        if params.get("slug") is not None:
            items = [t for t in items if t.get("slug") == params["slug"]]
        if params.get("order_id") is not None:
            items = [t for t in items if t.get("order_id") == params["order_id"]]
        if params.get("keyword") is not None:
            items = [t for t in items if params["keyword"] in (t.get("title") or "")]
        return {"trackings": list(items)}

    async def get_tracking_by_id(self, tracking_id: str) -> dict[str, Any]:
        self.calls.append(("get_tracking_by_id", tracking_id))
        return {"id": tracking_id, "tag": "InTransit"}

    async def create_tracking(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_tracking", payload))
        return {"id": "new-1", **payload}

    async def update_tracking_by_id(self, tracking_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update_tracking_by_id", (tracking_id, payload)))
        return {"id": tracking_id, **{k: v for k, v in payload.items() if v is not None}}

    async def delete_tracking_by_id(self, tracking_id: str) -> dict[str, Any]:
        self.calls.append(("delete_tracking_by_id", tracking_id))
        return {"id": tracking_id}

    async def retrack_tracking_by_id(self, tracking_id: str) -> dict[str, Any]:
        self.calls.append(("retrack_tracking_by_id", tracking_id))
        return {"id": tracking_id, "active": True}

    async def mark_tracking_completed_by_id(self, tracking_id: str, reason: str) -> dict[str, Any]:
        self.calls.append(("mark_tracking_completed_by_id", (tracking_id, reason)))
        return {"id": tracking_id, "tag": "Delivered", "subtag_message": reason}

    async def get_couriers(self, *, include_all: bool = False) -> dict[str, Any]:
        self.calls.append(("get_couriers", include_all))
        if self.couriers_error is not None:
            raise self.couriers_error
        return {"total": len(self.couriers), "couriers": list(self.couriers)}

    async def detect_courier(self, tracking_number: str, **params: Any) -> dict[str, Any]:
        self.calls.append(("detect_courier", tracking_number))
        if self.detect_error is not None:
            raise self.detect_error
        return {"total": len(self.detected), "couriers": list(self.detected)}


def not_found() -> TrackingNotFoundError:
    return TrackingNotFoundError("Tracking does not exist.", status_code=404, code=4004, error_type="NotFound")


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    """Settings with a test key, a throwaway cache dir and no retries."""
    return AppSettings(
        aftership={"apiKey": "test-key"},
        cache_dir=tmp_path / "cache",
        http_max_retries=0,
    )


@pytest.fixture
def cache(settings: AppSettings) -> ResponseCache:
    c = build_cache(settings)
    yield c
    c.close()


@pytest.fixture
def fake_api() -> FakeTrackingApi:
    return FakeTrackingApi()


@pytest.fixture
def client(settings: AppSettings, fake_api: FakeTrackingApi, cache: ResponseCache) -> TrackingClient:
    return TrackingClient(settings, api=fake_api, cache=cache, clock=lambda: NOW)
