"""
CLI: ``podrun run`` -- run one connector operation in an execution unit.
"""

from __future__ import annotations

from pathlib import Path

import typer

from podrun.activities import ConnectorActivities
from podrun.cli.utils import err_console, fail, load_settings, print_mapping
from podrun.core.errors import PodrunError
from podrun.execution.coordinator import LifecycleCoordinator

app = typer.Typer(no_args_is_help=True)


def _read(path: Path | None) -> str | None:
    if path is None:
        return None
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        err_console.print(f"[bold red]Cannot read {path}[/bold red]: {exc}")
        raise typer.Exit(code=2) from exc


def _activities(namespace: str | None) -> ConnectorActivities:
    settings = load_settings(namespace=namespace)
    return ConnectorActivities(LifecycleCoordinator.from_settings(settings))


def _heartbeat(message: str) -> None:
    err_console.print(f"[dim]… {message}[/dim]")


@app.command()
def discover(
    workflow_id: str = typer.Option(..., "--id", help="Run identity"),
    source_type: str = typer.Option(..., "--source", "-s", help="Connector type"),
    version: str = typer.Option(..., "--version", "-v", help="Connector image tag"),
    config: Path = typer.Option(..., "--config", "-c", help="Path to config.json"),
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds (default per kind)"),
    namespace: str | None = typer.Option(None, "--namespace", "-n"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Discover the catalog of a source."""
    activities = _activities(namespace)
    try:
        result = activities.discover_catalog(
            {
                "workflow_id": workflow_id,
                "source_type": source_type,
                "version": version,
                "config": _read(config),
                "timeout_seconds": timeout,
            },
            heartbeat=_heartbeat,
        )
    except PodrunError as exc:
        fail(exc)
    except ValueError as exc:
        err_console.print(f"[bold red]Error[/bold red]: {exc}")
        raise typer.Exit(code=2) from exc
    print_mapping(result, as_json=json_out, title=f"Discover: {workflow_id}")


@app.command()
def check(
    workflow_id: str = typer.Option(..., "--id", help="Run identity"),
    source_type: str = typer.Option(..., "--source", "-s", help="Connector type"),
    version: str = typer.Option(..., "--version", "-v", help="Connector image tag"),
    config: Path = typer.Option(..., "--config", "-c", help="Path to config.json"),
    flag: str = typer.Option("config", "--flag", help="config (source) or destination"),
    timeout: float | None = typer.Option(None, "--timeout"),
    namespace: str | None = typer.Option(None, "--namespace", "-n"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Test a source or destination connection."""
    activities = _activities(namespace)
    try:
        result = activities.test_connection(
            {
                "workflow_id": workflow_id,
                "source_type": source_type,
                "version": version,
                "config": _read(config),
                "flag": flag,
                "timeout_seconds": timeout,
            },
            heartbeat=_heartbeat,
        )
    except PodrunError as exc:
        fail(exc)
    except ValueError as exc:
        err_console.print(f"[bold red]Error[/bold red]: {exc}")
        raise typer.Exit(code=2) from exc
    print_mapping(result, as_json=json_out, title=f"Check: {workflow_id}")


@app.command()
def sync(
    workflow_id: str = typer.Option(..., "--id", help="Run identity"),
    source_type: str = typer.Option(..., "--source", "-s"),
    version: str = typer.Option(..., "--version", "-v"),
    config: Path = typer.Option(..., "--config", "-c", help="Path to source config.json"),
    streams: Path = typer.Option(..., "--streams", help="Path to streams.json"),
    writer: Path = typer.Option(..., "--writer", help="Path to writer.json"),
    state: Path | None = typer.Option(None, "--state", help="Path to prior state.json"),
    job_id: int | None = typer.Option(None, "--job-id"),
    timeout: float | None = typer.Option(None, "--timeout"),
    namespace: str | None = typer.Option(None, "--namespace", "-n"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Sync a source into its destination."""
    activities = _activities(namespace)
    try:
        result = activities.sync(
            {
                "workflow_id": workflow_id,
                "job_id": job_id,
                "source_type": source_type,
                "version": version,
                "source_config": _read(config),
                "streams_config": _read(streams),
                "dest_config": _read(writer),
                "state": _read(state),
                "timeout_seconds": timeout,
            },
            heartbeat=_heartbeat,
        )
    except PodrunError as exc:
        fail(exc)
    except ValueError as exc:
        err_console.print(f"[bold red]Error[/bold red]: {exc}")
        raise typer.Exit(code=2) from exc
    print_mapping(result, as_json=json_out, title=f"Sync: {workflow_id}")
