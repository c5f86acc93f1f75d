"""Domain models (Pydantic v2).

Why Pydantic here:
- Remote entities (trackings, couriers) are passed through as plain dicts; the
  API owns their schema. The models below describe only what *this* client
  produces or sends, so their shape is validated once at the edge.
- Every model serializes straight to the JSON printed by the CLI.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class CompletionReason(str, Enum):
    """Reasons accepted by `mark-as-completed`."""

    DELIVERED = "DELIVERED"
    LOST = "LOST"
    RETURNED_TO_SENDER = "RETURNED_TO_SENDER"


class NewTracking(BaseModel):
    """Payload for creating a tracking.

    `custom_fields` is only sent when non-empty; the API rejects an empty object
    on some plans.
    """

    model_config = ConfigDict(extra="forbid")

    tracking_number: str = Field(
        ...,
        min_length=1,
        description="Carrier tracking number.",
    )
    slug: str | None = Field(
        default=None,
        description="Carrier slug (auto-detected by AfterShip when omitted).",
    )
    order_id: str | None = Field(
        default=None,
        description="Associated order ID.",
    )
    title: str | None = Field(
        default=None,
        description="Display title.",
    )
    custom_fields: dict[str, str] | None = Field(
        default=None,
        description="Custom metadata (string key/value pairs).",
    )

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(exclude_none=True)
        if not payload.get("custom_fields"):
            payload.pop("custom_fields", None)
        return payload


class TrackingList(BaseModel):
    trackings: list[dict[str, Any]] = Field(default_factory=list)
    count: int = Field(default=0, ge=0)


class CourierResolution(BaseModel):
    """Outcome of carrier resolution.

    `method` is "auto-detected", "fallback-<slug>" or "not-found".
    """

    courier: dict[str, Any] | None = None
    method: str = Field(..., min_length=1)


class ApiStatus(BaseModel):
    valid: bool
    message: str
    details: dict[str, Any] | None = None


class ToolInfo(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class CacheStats(BaseModel):
    """Snapshot of the response cache."""

    namespace: str
    enabled: bool
    directory: str
    entries: int = Field(default=0, ge=0)
    hits: int = Field(default=0, ge=0)
    misses: int = Field(default=0, ge=0)
    hit_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    size_bytes: int = Field(default=0, ge=0)
