"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from aftership_cli.cli.ui_components import build_checks_table, status_label
from aftership_cli.core.config import AppSettings, get_user_config_file, write_user_api_key
from aftership_cli.core.domain.models import ApiStatus
from aftership_cli.core.services.tracking_client import TrackingClient, build_cache

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


def _check_api(settings: AppSettings) -> ApiStatus:
    client = TrackingClient(settings)
    try:
        return asyncio.run(client.get_api_status())
    finally:
        client.close()


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()
    table = build_checks_table("aftership-cli Doctor")

    has_key = bool((settings.aftership.api_key or "").strip())
    table.add_row("API key", status_label(has_key), "configured" if has_key else f"missing (see {get_user_config_file()})")
    table.add_row("API base_url", status_label(True), settings.api_base_url)

    cache = build_cache(settings)
    try:
        stats = cache.stats()
    finally:
        cache.close()
    table.add_row(
        "Cache",
        status_label(True) if stats.enabled else "[yellow]DISABLED[/yellow]",
        f"{stats.directory} ({stats.entries} entries)",
    )

    if has_key:
        status = _check_api(settings)
        table.add_row("API connectivity", status_label(status.valid), status.message)
    else:
        table.add_row("API connectivity", status_label(None), "no API key")

    _console.print(table)

    if not has_key:
        _console.print("\n[yellow]Note:[/yellow] run `aftership-cli doctor setup` to store an API key.")


@app.command()
def setup() -> None:
    """Interactive setup (stores the API key in the user config.json)."""

    api_key = typer.prompt("AfterShip API key", hide_input=True, confirmation_prompt=False).strip()
    if not api_key:
        raise typer.BadParameter("API key is required")

    config_path = write_user_api_key(api_key)
    _console.print(f"[green]Saved API key to:[/green] {config_path}")
