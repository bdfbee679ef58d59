"""Per-operation behaviour, as one table keyed by OperationKind.

Everything that differs between discover, check and sync lives in
``OPERATIONS``: which config files a run must provide, the connector
arguments, where the result comes from and the first heartbeat message.
Timeouts are per-kind settings (``PodrunSettings.timeout_for``). The
rest of the orchestrator looks the profile up instead of branching on the
kind.

.. code-block:: text

    kind      required files                         result
    ────────  ─────────────────────────────────────  ──────────────────────
    discover  config.json                            file   streams.json
    check     config.json                            console output
    sync      config.json streams.json writer.json   console output
              state.json
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from podrun.execution._types import MOUNT_PATH, OperationKind


class ResultSource(str, Enum):
    """Where the result of a finished unit is read from."""

    FILE = "file"
    CONSOLE = "console"


def _mounted(name: str) -> str:
    return f"{MOUNT_PATH}/{name}"


def _discover_args() -> list[str]:
    return [OperationKind.DISCOVER.value, "--config", _mounted("config.json")]


def _check_args(*, flag: str = "config") -> list[str]:
    return [OperationKind.CHECK.value, f"--{flag}", _mounted("config.json")]


def _sync_args() -> list[str]:
    return [
        OperationKind.SYNC.value,
        "--config", _mounted("config.json"),
        "--catalog", _mounted("streams.json"),
        "--destination", _mounted("writer.json"),
        "--state", _mounted("state.json"),
    ]


@dataclass(frozen=True)
class OperationProfile:
    """Static description of one operation kind."""

    kind: OperationKind
    required_files: tuple[str, ...]
    result_source: ResultSource
    build_args: Callable[..., list[str]]
    heartbeat: str
    result_file: str | None = None

    def missing_files(self, names: list[str] | tuple[str, ...]) -> list[str]:
        present = set(names)
        return [name for name in self.required_files if name not in present]


OPERATIONS: dict[OperationKind, OperationProfile] = {
    OperationKind.DISCOVER: OperationProfile(
        kind=OperationKind.DISCOVER,
        required_files=("config.json",),
        result_source=ResultSource.FILE,
        result_file="streams.json",
        build_args=_discover_args,
        heartbeat="Creating execution unit for catalog discovery",
    ),
    OperationKind.CHECK: OperationProfile(
        kind=OperationKind.CHECK,
        required_files=("config.json",),
        result_source=ResultSource.CONSOLE,
        build_args=_check_args,
        heartbeat="Creating execution unit for connection test",
    ),
    OperationKind.SYNC: OperationProfile(
        kind=OperationKind.SYNC,
        required_files=("config.json", "streams.json", "writer.json", "state.json"),
        result_source=ResultSource.CONSOLE,
        build_args=_sync_args,
        heartbeat="Creating execution unit for data sync",
    ),
}


def profile_for(kind: OperationKind | str) -> OperationProfile:
    """Look up the profile for a kind. Raises ValueError for unknown kinds."""
    return OPERATIONS[OperationKind(kind)]


def connector_image(registry: str, source_type: str, version: str) -> str:
    """Image reference for a connector: ``<registry>/source-<type>:<version>``.

    There is no ``latest`` tag for connector images, so an empty version
    is rejected.
    """
    if not version:
        raise ValueError("version cannot be empty, connector images have no 'latest' tag")
    if not source_type:
        raise ValueError("source_type cannot be empty")
    return f"{registry}/source-{source_type}:{version}"
