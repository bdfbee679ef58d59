"""
CLI: ``podrun config`` -- configuration inspection.
"""

from __future__ import annotations

import typer

from podrun.cli.utils import console, load_settings

app = typer.Typer(no_args_is_help=True)

_SECRET_FIELDS = {"secret_key"}


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the effective settings (env vars, .env and defaults)."""
    settings = load_settings()
    data = settings.model_dump(mode="json")
    for key in _SECRET_FIELDS:
        if data.get(key):
            data[key] = "***"

    if format == "json":
        console.print_json(data=data)
        return

    if format == "env":
        for key, value in sorted(data.items()):
            console.print(f"PODRUN_{key.upper()}={'' if value is None else value}")
        return

    from rich.table import Table

    table = Table(title="podrun settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)
