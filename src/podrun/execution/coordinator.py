"""Lifecycle coordinator: one connector operation, start to cleanup.

Manifesto:
    The workflow engine should hand over "run discover for wf-1 with this
    config" and get back a result mapping or one typed error. Everything in
    between (files on shared storage, the unit, waiting, reading output,
    deleting the unit) is the coordinator's responsibility, and the unit
    must be gone afterwards whatever happened.

Architecture:

    .. code-block:: text

        run(request, heartbeat, cancel)
          │
          ├── LogContext(run_id, operation, unit)
          └── _unit_scope(name)  ─────────────────────────┐
                ├── 1. materialize(run_dir, files)        │
                ├── 2. build_spec(...)                    │ finally:
                ├── 3. client.create(spec)                │   client.delete(name)
                ├── 4. heartbeat("... created ...")       │   exactly once,
                ├── 5. poller.wait(name, timeout, cancel) │   failures logged
                └── 6. extractor.extract(unit) ───────────┘
          │
          └── result mapping | PodrunError (with run context)

    The scope releases by derived name, so a failure before the unit exists
    still issues one delete of an absent unit (a no-op). The only exit that
    skips the delete is UnitAlreadyExistsError: the unit with that name
    belongs to another in-flight invocation.

    The run directory is never deleted.

Examples:
    >>> coordinator = LifecycleCoordinator(settings, StubSchedulerClient())
    >>> coordinator.run(RunRequest(
    ...     kind=OperationKind.CHECK,
    ...     identity="wf-7",
    ...     image="podrun/source-postgres:v1.2.0",
    ...     args=["check", "--config", "/mnt/config/config.json"],
    ...     config_files=[ConfigFile("config.json", "{}")],
    ... ))

Tags:
    lifecycle, orchestration, cleanup, scoped-acquisition, podrun
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from podrun.core.errors import ConfigWriteError, PodrunError, UnitAlreadyExistsError
from podrun.core.logging import LogContext, get_logger
from podrun.core.settings import PodrunSettings
from podrun.execution._types import (
    LABEL_APP,
    LABEL_OPERATION,
    ConfigFile,
    OperationKind,
    sanitize_name,
)
from podrun.execution.extractor import ResultExtractor
from podrun.execution.materializer import ConfigMaterializer
from podrun.execution.operations import profile_for
from podrun.execution.poller import CompletionPoller
from podrun.execution.scheduler import SchedulerClient
from podrun.execution.spec_builder import build_spec

logger = get_logger(__name__)

HeartbeatFn = Callable[[str], None]


@dataclass(frozen=True)
class RunRequest:
    """Inbound description of one operation invocation.

    ``timeout=None`` uses the kind's default from settings. ``connector``
    and ``job_id`` only add labels (and, for sync, preferred nodes).
    """

    kind: OperationKind
    identity: str
    image: str
    args: list[str] = field(default_factory=list)
    config_files: list[ConfigFile] = field(default_factory=list)
    timeout: float | None = None
    connector: str | None = None
    job_id: int | None = None

    @property
    def unit_name(self) -> str:
        return sanitize_name(self.identity)


@dataclass
class _UnitScope:
    name: str
    release: bool = True


class LifecycleCoordinator:
    """Runs one operation per ``run()`` call; safe to share across threads.

    Parameters
    ----------
    settings
        Explicit configuration for every run made through this coordinator.
    client
        Scheduler client (kubectl in production, stub in tests).
    materializer, poller, extractor
        Optional overrides; built from ``settings`` and ``client`` otherwise.
    """

    def __init__(
        self,
        settings: PodrunSettings,
        client: SchedulerClient,
        *,
        materializer: ConfigMaterializer | None = None,
        poller: CompletionPoller | None = None,
        extractor: ResultExtractor | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.materializer = materializer or ConfigMaterializer(settings.storage_base_path)
        self.poller = poller or CompletionPoller(client, interval=settings.poll_interval_seconds)
        self.extractor = extractor or ResultExtractor(client, self.materializer)

    @classmethod
    def from_settings(cls, settings: PodrunSettings) -> LifecycleCoordinator:
        """Production wiring: kubectl-backed scheduler client."""
        from podrun.execution.kubectl import KubectlSchedulerClient

        return cls(settings, KubectlSchedulerClient.from_settings(settings))

    def run(
        self,
        request: RunRequest,
        *,
        heartbeat: HeartbeatFn | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Execute ``request`` and return its result mapping.

        Raises the PodrunError subclass matching the failing stage. The
        unit is deleted before this returns or raises.
        """
        kind = OperationKind(request.kind)
        profile = profile_for(kind)
        name = request.unit_name
        timeout = request.timeout if request.timeout is not None else self.settings.timeout_for(kind)
        beat = heartbeat or _no_heartbeat

        with LogContext(run_id=request.identity, operation=kind.value, unit=name):
            logger.info("run_started", image=request.image, timeout=timeout)
            try:
                with self._unit_scope(name) as scope:
                    missing = profile.missing_files([f.name for f in request.config_files])
                    if missing:
                        raise ConfigWriteError(
                            f"{kind.value} requires config file(s): {', '.join(missing)}"
                        )
                    run_dir = self.materializer.run_directory(kind, request.identity)
                    self.materializer.materialize(run_dir, list(request.config_files))

                    spec = build_spec(
                        kind,
                        request.image,
                        list(request.args),
                        request.identity,
                        settings=self.settings,
                        connector=request.connector,
                        job_id=request.job_id,
                    )
                    try:
                        unit = self.client.create(spec)
                    except UnitAlreadyExistsError:
                        scope.release = False
                        raise
                    beat(f"Unit {name} created, waiting for completion")

                    self.poller.wait(name, timeout, heartbeat=heartbeat, cancel=cancel)
                    result = self.extractor.extract(unit)
            except PodrunError as exc:
                exc.with_context(
                    run_id=request.identity,
                    unit_name=name,
                    operation=kind.value,
                    namespace=self.client.namespace,
                )
                logger.error("run_failed", error=exc.__class__.__name__, message=exc.message)
                raise

            logger.info("run_completed", keys=sorted(result))
            return result

    # ------------------------------------------------------------------
    # Scoped acquisition
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_scope(self, name: str) -> Iterator[_UnitScope]:
        """Delete ``name`` exactly once when the block exits, however it exits."""
        scope = _UnitScope(name)
        try:
            yield scope
        finally:
            if scope.release:
                self._release(name)
            else:
                logger.warning("unit_cleanup_skipped", reason="unit owned by another run")

    def _release(self, name: str) -> None:
        try:
            self.client.delete(name)
        except Exception as exc:
            logger.error("unit_cleanup_failed", error=str(exc))


def _no_heartbeat(message: str) -> None:
    return None


def cleanup_units(
    client: SchedulerClient,
    settings: PodrunSettings,
    *,
    operation: OperationKind | None = None,
) -> list[str]:
    """Delete every unit this deployment created (abandoned runs).

    Returns the names of the units that were deleted.
    """
    selector = {LABEL_APP: settings.app_label}
    if operation is not None:
        selector[LABEL_OPERATION] = OperationKind(operation).value

    removed: list[str] = []
    for unit in client.list_units(selector):
        try:
            client.delete(unit.name)
        except PodrunError as exc:
            logger.warning("orphan_cleanup_failed", unit=unit.name, error=exc.message)
            continue
        removed.append(unit.name)

    if removed:
        logger.info("orphan_cleanup_complete", removed=len(removed))
    return removed
