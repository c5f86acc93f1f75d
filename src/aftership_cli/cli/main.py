"""AfterShip tracking CLI (Typer).

Every command builds a `TrackingClient`, runs one coroutine with
`asyncio.run` and prints the result as JSON on stdout. Errors go to stderr
with exit code 1; usage errors exit with code 2.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, NoReturn

import httpx
import typer
from pydantic import BaseModel
from pydantic_settings import SettingsError
from rich.console import Console
from rich.markup import escape

from aftership_cli.adapters.response_cache import ResponseCache
from aftership_cli.cli import doctor
from aftership_cli.core.config import AppSettings
from aftership_cli.core.domain.models import CompletionReason, NewTracking
from aftership_cli.core.errors import AfterShipCliError
from aftership_cli.core.logging_config import configure_logging
from aftership_cli.core.services.tracking_client import (
    TOOLS,
    TrackingClient,
    build_cache,
    invalidate_order,
)

app = typer.Typer(
    name="aftership-cli",
    no_args_is_help=True,
    add_completion=False,
    help="AfterShip shipment tracking.",
)
app.add_typer(doctor.app, name="doctor")

_err_console = Console(stderr=True)


@dataclass
class CliState:
    no_cache: bool = False


@app.callback()
def main(
    ctx: typer.Context,
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the response cache for this invocation."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr."),
) -> None:
    configure_logging(verbose)
    ctx.obj = CliState(no_cache=no_cache)


# ----------------------------------------------------------------------
# Plumbing
# ----------------------------------------------------------------------


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_jsonable(item) for item in value]
    return value


def _emit(result: Any) -> None:
    typer.echo(json.dumps(_to_jsonable(result), indent=2, ensure_ascii=False, default=str))


def _fail(message: str) -> NoReturn:
    _err_console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(code=1)


def _load_settings() -> AppSettings:
    """Loads settings; a broken config file or env value exits with code 1."""

    try:
        return AppSettings()
    except (SettingsError, ValueError) as exc:
        _fail(f"Invalid configuration: {exc}")


@contextmanager
def _open_cache() -> Iterator[ResponseCache]:
    cache = build_cache(_load_settings())
    try:
        yield cache
    finally:
        cache.close()


def _build_client(ctx: typer.Context) -> TrackingClient:
    state = ctx.obj if isinstance(ctx.obj, CliState) else CliState()
    settings = _load_settings()
    try:
        client = TrackingClient(settings)
    except AfterShipCliError as exc:
        _fail(str(exc))
    if state.no_cache:
        client.disable_cache()
    return client


def _execute(ctx: typer.Context, call: Callable[[TrackingClient], Awaitable[Any]]) -> None:
    client = _build_client(ctx)
    try:
        result = asyncio.run(call(client))
    except AfterShipCliError as exc:
        _fail(str(exc))
    except httpx.HTTPError as exc:
        _fail(f"Network error: {exc}")
    finally:
        client.close()
    _emit(result)


def parse_custom_fields(raw: str | None) -> dict[str, str] | None:
    """Parses `--custom-fields` as a JSON object of strings."""

    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Invalid JSON for customFields: {raw}", param_hint="--custom-fields") from exc
    if not isinstance(parsed, dict):
        raise typer.BadParameter("customFields must be a JSON object", param_hint="--custom-fields")
    bad = [key for key, value in parsed.items() if not isinstance(value, str)]
    if bad:
        raise typer.BadParameter(
            f"customFields values must be strings (offending keys: {', '.join(sorted(bad))})",
            param_hint="--custom-fields",
        )
    return parsed


# ----------------------------------------------------------------------
# Tracking commands
# ----------------------------------------------------------------------


@app.command("list-tools")
def list_tools() -> None:
    """List all available commands."""

    _emit(list(TOOLS))


@app.command("list-trackings")
def list_trackings(
    ctx: typer.Context,
    status: str | None = typer.Option(None, help="Filter by status tag (InTransit, Delivered, etc.)."),
    slug: str | None = typer.Option(None, help="Filter by courier slug (e.g., ups, royal-mail)."),
    order_id: str | None = typer.Option(None, "--order-id", help="Filter by order ID."),
    created_after: str | None = typer.Option(None, "--created-after", help="Filter by created date (ISO 8601)."),
    created_before: str | None = typer.Option(None, "--created-before", help="Filter by created date (ISO 8601)."),
    limit: int | None = typer.Option(None, min=1, max=200, help="Max results to return."),
) -> None:
    """List trackings with filters."""

    _execute(
        ctx,
        lambda client: client.list_trackings(
            tag=status,
            slug=slug,
            order_id=order_id,
            created_at_min=created_after,
            created_at_max=created_before,
            limit=limit,
        ),
    )


@app.command("get-tracking")
def get_tracking(
    ctx: typer.Context,
    tracking_id: str | None = typer.Option(None, "--id", help="Tracking ID."),
    tracking_number: str | None = typer.Option(None, "--tracking-number", help="Tracking number."),
    slug: str | None = typer.Option(None, help="Courier slug (required with --tracking-number)."),
) -> None:
    """Get tracking details."""

    if tracking_id:
        _execute(ctx, lambda client: client.get_tracking_by_id(tracking_id))
        return
    if not (tracking_number and slug):
        raise typer.BadParameter("Either --id OR (--tracking-number AND --slug) is required")
    _execute(ctx, lambda client: client.get_tracking_by_number(tracking_number, slug))


@app.command("search-by-order")
def search_by_order(
    ctx: typer.Context,
    order: str = typer.Option(..., "--order", help="Shopify order number."),
) -> None:
    """Find tracking by Shopify order number."""

    if not order.strip():
        raise typer.BadParameter("must not be empty", param_hint="--order")
    _execute(ctx, lambda client: client.search_by_order_id(order))


@app.command("create-tracking")
def create_tracking(
    ctx: typer.Context,
    tracking_number: str = typer.Option(..., "--tracking-number", help="Tracking number."),
    slug: str | None = typer.Option(None, help="Courier slug (auto-detected if omitted)."),
    order_id: str | None = typer.Option(None, "--order-id", help="Order ID for reference."),
    title: str | None = typer.Option(None, help="Tracking title."),
    custom_fields: str | None = typer.Option(
        None,
        "--custom-fields",
        help='Custom fields as JSON string, e.g. \'{"direction":"inbound","vendor":"Acme"}\'.',
    ),
) -> None:
    """Create a new tracking."""

    if not tracking_number.strip():
        raise typer.BadParameter("must not be empty", param_hint="--tracking-number")
    data = NewTracking(
        tracking_number=tracking_number,
        slug=slug,
        order_id=order_id,
        title=title,
        custom_fields=parse_custom_fields(custom_fields),
    )
    _execute(ctx, lambda client: client.create_tracking(data))


@app.command("update-tracking")
def update_tracking(
    ctx: typer.Context,
    tracking_id: str = typer.Option(..., "--id", help="Tracking ID."),
    title: str | None = typer.Option(None, help="New title."),
    order_id: str | None = typer.Option(None, "--order-id", help="New order ID."),
) -> None:
    """Update tracking metadata."""

    _execute(ctx, lambda client: client.update_tracking(tracking_id, title=title, order_id=order_id))


@app.command("delete-tracking")
def delete_tracking(
    ctx: typer.Context,
    tracking_id: str = typer.Option(..., "--id", help="Tracking ID."),
) -> None:
    """Delete a tracking."""

    async def call(client: TrackingClient) -> dict[str, Any]:
        await client.delete_tracking(tracking_id)
        return {"success": True, "deleted": tracking_id}

    _execute(ctx, call)


@app.command("retrack")
def retrack(
    ctx: typer.Context,
    tracking_id: str = typer.Option(..., "--id", help="Tracking ID."),
) -> None:
    """Retrack an expired tracking."""

    _execute(ctx, lambda client: client.retrack_by_id(tracking_id))


@app.command("mark-completed")
def mark_completed(
    ctx: typer.Context,
    tracking_id: str = typer.Option(..., "--id", help="Tracking ID."),
    reason: CompletionReason = typer.Option(CompletionReason.DELIVERED, help="Completion reason."),
) -> None:
    """Mark tracking as completed."""

    _execute(ctx, lambda client: client.mark_completed(tracking_id, reason))


# ----------------------------------------------------------------------
# Monitoring commands
# ----------------------------------------------------------------------


@app.command("find-exceptions")
def find_exceptions(
    ctx: typer.Context,
    limit: int | None = typer.Option(None, min=1, max=100, help="Max results to return."),
    days: int | None = typer.Option(None, min=1, max=90, help="Lookback period in days."),
) -> None:
    """Find trackings with exceptions."""

    _execute(ctx, lambda client: client.find_exceptions(limit=limit, days=days))


@app.command("find-delayed")
def find_delayed(
    ctx: typer.Context,
    days: int | None = typer.Option(
        None,
        min=1,
        max=90,
        help="Cache partition only; delays always use the carrier-aware thresholds.",
    ),
) -> None:
    """Find overdue shipments (carrier-aware)."""

    _execute(ctx, lambda client: client.find_delayed(days=days))


@app.command("active-shipments")
def active_shipments(
    ctx: typer.Context,
    limit: int | None = typer.Option(None, min=1, max=200, help="Max results to return per status tag."),
    slug: str | None = typer.Option(None, help="Filter by courier slug."),
) -> None:
    """List all non-delivered trackings."""

    _execute(ctx, lambda client: client.get_active_shipments(limit=limit, slug=slug))


@app.command("recent-deliveries")
def recent_deliveries(
    ctx: typer.Context,
    limit: int | None = typer.Option(None, min=1, max=100, help="Max results to return."),
    days: int | None = typer.Option(None, min=1, max=30, help="Lookback period in days."),
) -> None:
    """List recently delivered trackings."""

    _execute(ctx, lambda client: client.get_recent_deliveries(limit=limit, days=days))


# ----------------------------------------------------------------------
# Courier commands
# ----------------------------------------------------------------------


@app.command("list-couriers")
def list_couriers(
    ctx: typer.Context,
    include_all: bool = typer.Option(False, "--all", help="Include all couriers (not just enabled)."),
) -> None:
    """List available couriers."""

    _execute(ctx, lambda client: client.list_couriers(include_all))


@app.command("detect-courier")
def detect_courier(
    ctx: typer.Context,
    tracking_number: str = typer.Option(..., "--tracking-number", help="Tracking number."),
) -> None:
    """Detect courier from tracking number."""

    _execute(ctx, lambda client: client.detect_courier(tracking_number))


@app.command("resolve-tracking")
def resolve_tracking(
    ctx: typer.Context,
    tracking_number: str = typer.Option(..., "--tracking-number", help="Tracking number."),
) -> None:
    """Smart detection with carrier fallback."""

    _execute(ctx, lambda client: client.resolve_tracking(tracking_number))


# ----------------------------------------------------------------------
# Utility and cache commands
# ----------------------------------------------------------------------


@app.command("api-status")
def api_status(ctx: typer.Context) -> None:
    """Check API key validity."""

    _execute(ctx, lambda client: client.get_api_status())


@app.command("cache-stats")
def cache_stats() -> None:
    """Show cache statistics."""

    with _open_cache() as cache:
        _emit(cache.stats())


@app.command("cache-clear")
def cache_clear() -> None:
    """Clear all cached data."""

    with _open_cache() as cache:
        cleared = cache.clear()
    _emit({"success": True, "cleared": cleared})


@app.command("cache-invalidate")
def cache_invalidate(
    key: str | None = typer.Option(None, help="Exact cache key to invalidate."),
    order: str | None = typer.Option(None, help="Invalidate every entry for this order ID."),
) -> None:
    """Invalidate a cache key or every entry of an order."""

    if not key and not order:
        raise typer.BadParameter("Either --key or --order is required")

    result: dict[str, Any] = {"success": True}
    with _open_cache() as cache:
        if key:
            result["key"] = key
            result["invalidated"] = cache.invalidate(key)
        if order:
            result["order"] = order
            result["invalidated_count"] = invalidate_order(cache, order)
    _emit(result)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
