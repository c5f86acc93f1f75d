"""Client-side filters over already-fetched trackings.

These are pure functions (no I/O, explicit `now`) so they can be tested
against synthetic batches.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from aftership_cli.core.config import DEFAULT_DELAY_THRESHOLDS

TERMINAL_TAGS = frozenset({"Delivered", "Expired"})

SECONDS_PER_DAY = 24 * 60 * 60


def parse_timestamp(value: object) -> datetime | None:
    """Parses an ISO 8601 date or datetime; naive values are read as UTC."""

    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _nested_datetime(tracking: Mapping[str, Any], field: str) -> object:
    block = tracking.get(field)
    if isinstance(block, Mapping):
        return block.get("datetime")
    return None


def expected_delivery(tracking: Mapping[str, Any]) -> datetime | None:
    """First populated expected-delivery field, in priority order.

    latest carrier estimate > courier-provided estimate > promised date.
    """

    candidates = (
        _nested_datetime(tracking, "latest_estimated_delivery"),
        _nested_datetime(tracking, "courier_estimated_delivery_date"),
        tracking.get("order_promised_delivery_date"),
    )
    for candidate in candidates:
        if candidate:
            return parse_timestamp(candidate)
    return None


def delay_threshold(slug: object, thresholds: Mapping[str, int] | None = None) -> int:
    table = {name.lower(): days for name, days in (thresholds or DEFAULT_DELAY_THRESHOLDS).items()}
    key = slug.lower() if isinstance(slug, str) else ""
    if key in table:
        return table[key]
    return table.get("default", DEFAULT_DELAY_THRESHOLDS["default"])


def days_overdue(expected: datetime, now: datetime) -> int:
    return int((now - expected).total_seconds() // SECONDS_PER_DAY)


def is_delayed(
    tracking: Mapping[str, Any],
    *,
    now: datetime,
    thresholds: Mapping[str, int] | None = None,
) -> bool:
    """Whether a shipment is past its expected delivery by its carrier threshold.

    Records without an expected date are never delayed.
    """

    if tracking.get("tag") in TERMINAL_TAGS:
        return False

    expected = expected_delivery(tracking)
    if expected is None:
        return False

    threshold = delay_threshold(tracking.get("slug"), thresholds)
    return days_overdue(expected, now) >= threshold


def find_delayed(
    trackings: Iterable[Mapping[str, Any]],
    *,
    now: datetime,
    thresholds: Mapping[str, int] | None = None,
) -> list[Any]:
    return [t for t in trackings if is_delayed(t, now=now, thresholds=thresholds)]


def dedupe_by_id(trackings: Iterable[Mapping[str, Any]]) -> list[Any]:
    """Keeps the first occurrence of each `id`; records without one are kept."""

    seen: set[str] = set()
    out: list[Any] = []
    for tracking in trackings:
        tracking_id = tracking.get("id")
        if tracking_id is not None:
            if tracking_id in seen:
                continue
            seen.add(tracking_id)
        out.append(tracking)
    return out


def delivered_within(
    trackings: Iterable[Mapping[str, Any]],
    *,
    now: datetime,
    days: int,
) -> list[Any]:
    """Deliveries on/after `now - days`; records with no (parseable) date are kept."""

    cutoff = now - timedelta(days=days)
    out: list[Any] = []
    for tracking in trackings:
        delivered_at = parse_timestamp(tracking.get("shipment_delivery_date"))
        if delivered_at is None or delivered_at >= cutoff:
            out.append(tracking)
    return out
