"""
CLI utility helpers: settings loading, output formatting, error rendering.
"""

from __future__ import annotations

import json
from typing import Any, NoReturn

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from podrun.core.errors import PodrunError
from podrun.core.logging import configure_logging
from podrun.core.settings import PodrunSettings

console = Console()
err_console = Console(stderr=True)


# ── Settings ─────────────────────────────────────────────────────────────


def load_settings(**overrides: Any) -> PodrunSettings:
    """Build settings from env / .env plus non-None CLI overrides, and set up logging."""
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        settings = PodrunSettings(**values)
    except ValidationError as exc:
        err_console.print(f"[bold red]Invalid configuration[/bold red]: {exc}")
        raise typer.Exit(code=2) from exc
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
    )
    return settings


# ── Output helpers ───────────────────────────────────────────────────────


def print_mapping(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    """Render a flat mapping as a two-column table, or as JSON."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    table = Table(title=title or None, show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        rendered = value if isinstance(value, str) else json.dumps(value, default=str)
        table.add_row(str(key), rendered)
    console.print(table)


def print_rows(rows: list[dict[str, Any]], *, as_json: bool = False, title: str = "") -> None:
    """Render a list of flat mappings as a table, or as JSON."""
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print("[dim]No results.[/dim]")
        return
    table = Table(title=title or None, show_header=True)
    columns = list(rows[0].keys())
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*[str(row.get(c, "")) for c in columns])
    console.print(table)


def fail(error: PodrunError) -> NoReturn:
    """Print a typed error and exit 1."""
    err_console.print(
        f"[bold red]Error[/bold red] ({error.__class__.__name__}, {error.category.value}): {error.message}"
    )
    context = error.context.to_dict()
    if context:
        err_console.print(f"[dim]{json.dumps(context, default=str)}[/dim]")
    console_output = getattr(error, "console_output", "")
    if console_output:
        err_console.print("[bold]Unit output:[/bold]")
        err_console.print(console_output, markup=False, highlight=False)
    raise typer.Exit(code=1)
