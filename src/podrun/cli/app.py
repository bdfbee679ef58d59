"""
Root Typer application for the podrun CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="podrun",
    help="podrun: ephemeral execution pods for connector operations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from podrun import __version__

        typer.echo(f"podrun {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """podrun CLI: run connector operations and manage execution units."""


# ── Sub-command registration ─────────────────────────────────────────────

from podrun.cli.config import app as config_app  # noqa: E402
from podrun.cli.run import app as run_app  # noqa: E402
from podrun.cli.units import app as units_app  # noqa: E402

app.add_typer(run_app, name="run", help="Run one connector operation in a pod.")
app.add_typer(units_app, name="units", help="Inspect and clean up execution units.")
app.add_typer(config_app, name="config", help="Configuration inspection.")
