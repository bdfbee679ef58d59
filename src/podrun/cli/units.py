"""
CLI: ``podrun units`` -- execution unit inspection and orphan cleanup.
"""

from __future__ import annotations

import typer

from podrun.cli.utils import console, err_console, fail, load_settings, print_rows
from podrun.core.errors import PodrunError
from podrun.execution._types import LABEL_APP, LABEL_OPERATION, OperationKind
from podrun.execution.coordinator import cleanup_units
from podrun.execution.kubectl import KubectlSchedulerClient

app = typer.Typer(no_args_is_help=True)


def _operation(value: str | None) -> OperationKind | None:
    if value is None:
        return None
    try:
        return OperationKind(value)
    except ValueError as exc:
        choices = ", ".join(k.value for k in OperationKind)
        err_console.print(f"[bold red]Unknown operation {value!r}[/bold red] (expected one of: {choices})")
        raise typer.Exit(code=2) from exc


@app.command("list")
def list_units(
    operation: str | None = typer.Option(None, "--operation", "-o", help="discover, check or sync"),
    namespace: str | None = typer.Option(None, "--namespace", "-n"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List execution units created by podrun."""
    kind = _operation(operation)
    settings = load_settings(namespace=namespace)
    client = KubectlSchedulerClient.from_settings(settings)
    selector = {LABEL_APP: settings.app_label}
    if kind is not None:
        selector[LABEL_OPERATION] = kind.value
    try:
        units = client.list_units(selector)
    except PodrunError as exc:
        fail(exc)
    print_rows([u.to_dict() for u in units], as_json=json_out, title="Execution units")


@app.command()
def cleanup(
    operation: str | None = typer.Option(None, "--operation", "-o", help="discover, check or sync"),
    namespace: str | None = typer.Option(None, "--namespace", "-n"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete units left behind by abandoned runs."""
    kind = _operation(operation)
    settings = load_settings(namespace=namespace)
    client = KubectlSchedulerClient.from_settings(settings)
    if not yes:
        scope = f"{kind.value} units" if kind else "units"
        typer.confirm(f"Delete all podrun {scope} in {settings.namespace}?", abort=True)
    try:
        removed = cleanup_units(client, settings, operation=kind)
    except PodrunError as exc:
        fail(exc)
    console.print(f"[green]Removed {len(removed)} unit(s)[/green]")
    for name in removed:
        console.print(f"  • {name}")
