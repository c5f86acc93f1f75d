"""CLI UI components (Rich).

Why separate components:
- Keeps command logic apart from visual details.
- Command output stays JSON; Rich is only used for human-facing diagnostics.
"""

from __future__ import annotations

from rich.table import Table


def build_checks_table(title: str) -> Table:
    """Three-column table for diagnostic checks."""

    table = Table(title=title)
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")
    return table


def status_label(ok: bool | None) -> str:
    if ok is None:
        return "[yellow]SKIPPED[/yellow]"
    return "[green]OK[/green]" if ok else "[red]FAIL[/red]"
