"""Contract of the Tracking API transport.

Why Protocol:
- Defines a structural contract (duck typing) without rigid inheritance.
- The tracking client depends on this abstraction, so tests can swap the HTTP
  adapter for an in-memory fake.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class TrackingApi(Protocol):
    """Minimal surface of the AfterShip Tracking API used by the client.

    Design rules:
    - Every method is async because it performs HTTP I/O.
    - Methods return the unwrapped `data` object of the response envelope.
    - Errors are raised as `AfterShipApiError` subclasses.
    """

    async def get_trackings(self, **params: Any) -> dict[str, Any]: ...

    async def get_tracking_by_id(self, tracking_id: str) -> dict[str, Any]: ...

    async def create_tracking(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_tracking_by_id(self, tracking_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def delete_tracking_by_id(self, tracking_id: str) -> dict[str, Any]: ...

    async def retrack_tracking_by_id(self, tracking_id: str) -> dict[str, Any]: ...

    async def mark_tracking_completed_by_id(self, tracking_id: str, reason: str) -> dict[str, Any]: ...

    async def get_couriers(self, *, include_all: bool = False) -> dict[str, Any]: ...

    async def detect_courier(self, tracking_number: str, **params: Any) -> dict[str, Any]: ...
