"""Scheduler client protocol, shared lifecycle logic and an in-memory stub.

Architecture:

    .. code-block:: text

        SchedulerClient (Protocol)
              │
              ▼
        BaseSchedulerClient
        ├── create()             → logging + error wrapping → _do_create()
        ├── get_phase()          → phase mapping            → _do_get_phase()
        ├── get_console_output() → error wrapping           → _do_console_output()
        ├── delete()             → logging, absent = no-op  → _do_delete()
        └── list_units()         → error wrapping           → _do_list()
              │
        ┌─────┴──────────────────────────┐
        │                                │
        ▼                                ▼
    KubectlSchedulerClient        StubSchedulerClient
    (kubectl subprocess)          (scripted, in-memory)

Error contract:

    create               UnitAlreadyExistsError | UnitCreateError
    get_phase            UnitNotFoundError | InfraError (incl. unknown phase)
    get_console_output   InfraError
    delete               InfraError (absent unit is not an error)

See Also:
    kubectl.py -- production client
    poller.py -- main consumer of get_phase()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from podrun.core.errors import (
    InfraError,
    PodrunError,
    UnitAlreadyExistsError,
    UnitCreateError,
    UnitNotFoundError,
)
from podrun.execution._types import ExecutionUnit, ExecutionUnitSpec, Phase, _utcnow

logger = logging.getLogger(__name__)


@runtime_checkable
class SchedulerClient(Protocol):
    """Operations the orchestrator needs from the container-scheduling API."""

    @property
    def namespace(self) -> str: ...

    def create(self, spec: ExecutionUnitSpec) -> ExecutionUnit: ...

    def get_phase(self, name: str) -> Phase: ...

    def get_console_output(self, name: str) -> str: ...

    def delete(self, name: str) -> None: ...

    def list_units(self, selector: dict[str, str] | None = None) -> list[ExecutionUnit]: ...


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------

class BaseSchedulerClient:
    """Base class for scheduler clients with shared lifecycle logic.

    Subclasses implement ``_do_create``, ``_do_get_phase`` (returning the
    raw phase string), ``_do_console_output``, ``_do_delete`` (returning
    False when the unit was already absent) and ``_do_list``.
    Exceptions that are not PodrunErrors are wrapped:

    .. code-block:: text

        create(spec)
          ├── log: "Creating unit 'X' in ns (image=...)"
          ├── _do_create(spec)
          └── on error: wrap in UnitCreateError (retryable)

        get_phase(name)
          ├── _do_get_phase(name) → "Running"
          ├── Phase.parse(raw)
          └── unknown phase / error: InfraError
    """

    client_name = "base"

    def __init__(self, namespace: str) -> None:
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    def create(self, spec: ExecutionUnitSpec) -> ExecutionUnit:
        """Create the unit described by ``spec``."""
        logger.info(
            "Creating unit '%s' in %s via %s (image=%s)",
            spec.name, self.namespace, self.client_name, spec.image,
        )
        try:
            unit = self._do_create(spec)
        except PodrunError:
            raise
        except Exception as exc:
            logger.error("Create failed for '%s': %s", spec.name, exc)
            raise UnitCreateError(f"Create failed: {exc}", cause=exc).with_context(
                unit_name=spec.name, namespace=self.namespace,
            ) from exc
        logger.info("Unit '%s' created", unit.name)
        return unit

    def get_phase(self, name: str) -> Phase:
        """Current phase of ``name``. Never returns an unknown phase."""
        try:
            raw = self._do_get_phase(name)
        except PodrunError:
            raise
        except Exception as exc:
            raise InfraError(f"Phase lookup failed for {name}: {exc}", cause=exc).with_context(
                unit_name=name, namespace=self.namespace,
            ) from exc
        try:
            return Phase.parse(raw)
        except ValueError as exc:
            raise InfraError(f"Unit {name} reported unrecognised phase {raw!r}").with_context(
                unit_name=name, namespace=self.namespace, phase=str(raw),
            ) from exc

    def get_console_output(self, name: str) -> str:
        """Whatever the unit has printed so far (any phase)."""
        try:
            return self._do_console_output(name)
        except PodrunError:
            raise
        except Exception as exc:
            raise InfraError(f"Log fetch failed for {name}: {exc}", cause=exc).with_context(
                unit_name=name, namespace=self.namespace,
            ) from exc

    def delete(self, name: str) -> None:
        """Delete ``name``. Deleting an absent unit is a no-op."""
        logger.info("Deleting unit %s in %s", name, self.namespace)
        try:
            existed = self._do_delete(name)
        except PodrunError:
            raise
        except Exception as exc:
            raise InfraError(f"Delete failed for {name}: {exc}", cause=exc).with_context(
                unit_name=name, namespace=self.namespace,
            ) from exc
        if existed:
            logger.info("Unit %s deleted", name)
        else:
            logger.debug("Unit %s was already gone", name)

    def list_units(self, selector: dict[str, str] | None = None) -> list[ExecutionUnit]:
        """Units in the namespace matching every label in ``selector``."""
        try:
            return self._do_list(selector or {})
        except PodrunError:
            raise
        except Exception as exc:
            raise InfraError(f"Listing units failed: {exc}", cause=exc).with_context(
                namespace=self.namespace,
            ) from exc

    # --- Abstract methods for subclasses ---

    def _do_create(self, spec: ExecutionUnitSpec) -> ExecutionUnit:
        raise NotImplementedError

    def _do_get_phase(self, name: str) -> str | None:
        raise NotImplementedError

    def _do_console_output(self, name: str) -> str:
        raise NotImplementedError

    def _do_delete(self, name: str) -> bool:
        raise NotImplementedError

    def _do_list(self, selector: dict[str, str]) -> list[ExecutionUnit]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Stub client for testing
# ---------------------------------------------------------------------------

@dataclass
class _StubUnit:
    """Internal state for a stubbed unit."""

    spec: ExecutionUnitSpec
    phases: list[str | BaseException]
    console_output: str
    polls: int = 0
    created_at: str = field(default_factory=lambda: _utcnow().isoformat())


class StubSchedulerClient(BaseSchedulerClient):
    """In-memory scheduler client for unit tests.

    Each ``get_phase`` call advances through a scripted list of phases and
    stays on the last one. A script entry may also be an exception
    instance, which is raised for that poll instead.

    .. code-block:: text

        StubSchedulerClient(phases=["Pending", "Running", "Succeeded"])

        create(spec)      → unit stored, script attached
        get_phase(name)   → Pending, Running, Succeeded, Succeeded, ...

        Per-unit scripts (set before create):
          client.script("wf-1", ["Failed"], console_output="boom")

        Inject failures:
          client.fail_create = UnitCreateError("quota")  → create() raises it
          client.fail_logs = True    → get_console_output() raises InfraError
          client.fail_delete = True  → delete() raises InfraError

        Track usage:
          client.create_count, client.poll_count, client.delete_calls
    """

    client_name = "stub"

    def __init__(
        self,
        *,
        namespace: str = "podrun",
        phases: list[str | Phase | BaseException] | None = None,
        console_output: str = "",
    ) -> None:
        super().__init__(namespace)
        self.default_phases = _normalize(phases or [Phase.SUCCEEDED])
        self.default_console_output = console_output
        self.units: dict[str, _StubUnit] = {}
        self._scripts: dict[str, tuple[list[str | BaseException], str]] = {}

        self.create_count: int = 0
        self.poll_count: int = 0
        self.delete_calls: list[str] = []

        # Inject failures
        self.fail_create: BaseException | None = None
        self.fail_logs: bool = False
        self.fail_delete: bool = False

    def script(
        self,
        name: str,
        phases: list[str | Phase | BaseException],
        *,
        console_output: str = "",
    ) -> None:
        """Script phases and console output for the unit called ``name``."""
        self._scripts[name] = (_normalize(phases), console_output)

    def add_unit(self, spec: ExecutionUnitSpec, phase: str | Phase = Phase.RUNNING) -> None:
        """Register a unit that exists before the test starts (orphans, duplicates)."""
        self.units[spec.name] = _StubUnit(spec=spec, phases=_normalize([phase]), console_output="")

    @property
    def delete_count(self) -> int:
        return len(self.delete_calls)

    def _do_create(self, spec: ExecutionUnitSpec) -> ExecutionUnit:
        self.create_count += 1
        if self.fail_create is not None:
            raise self.fail_create
        if spec.name in self.units:
            raise UnitAlreadyExistsError(f"unit {spec.name} already exists").with_context(
                unit_name=spec.name, namespace=self.namespace,
            )
        phases, console_output = self._scripts.get(
            spec.name, (self.default_phases, self.default_console_output)
        )
        self.units[spec.name] = _StubUnit(
            spec=spec, phases=list(phases), console_output=console_output,
        )
        return self._to_unit(self.units[spec.name], phase=None)

    def _do_get_phase(self, name: str) -> str | None:
        self.poll_count += 1
        unit = self.units.get(name)
        if unit is None:
            raise UnitNotFoundError(f"unit {name} not found").with_context(
                unit_name=name, namespace=self.namespace,
            )
        entry = unit.phases[min(unit.polls, len(unit.phases) - 1)]
        unit.polls += 1
        if isinstance(entry, BaseException):
            raise entry
        return entry

    def _do_console_output(self, name: str) -> str:
        if self.fail_logs:
            raise InfraError(f"stub: log fetch failure injected for {name}")
        unit = self.units.get(name)
        if unit is None:
            raise UnitNotFoundError(f"unit {name} not found")
        return unit.console_output

    def _do_delete(self, name: str) -> bool:
        self.delete_calls.append(name)
        if self.fail_delete:
            raise InfraError(f"stub: delete failure injected for {name}")
        return self.units.pop(name, None) is not None

    def _do_list(self, selector: dict[str, str]) -> list[ExecutionUnit]:
        return [
            self._to_unit(unit, phase=_current(unit))
            for unit in self.units.values()
            if all(unit.spec.labels.get(k) == v for k, v in selector.items())
        ]

    def _to_unit(self, unit: _StubUnit, phase: Phase | None) -> ExecutionUnit:
        return ExecutionUnit(
            name=unit.spec.name,
            namespace=unit.spec.namespace,
            phase=phase,
            labels=dict(unit.spec.labels),
            annotations=dict(unit.spec.annotations),
            created_at=unit.created_at,
        )


def _normalize(phases: list[str | Phase | BaseException]) -> list[str | BaseException]:
    return [p.value if isinstance(p, Phase) else p for p in phases]


def _current(unit: _StubUnit) -> Phase | None:
    entry = unit.phases[min(max(unit.polls - 1, 0), len(unit.phases) - 1)]
    if isinstance(entry, BaseException):
        return None
    try:
        return Phase.parse(entry)
    except ValueError:
        return None
