"""Completion poller: wait for a unit to reach a terminal phase.

.. code-block:: text

    ┌────────── Polling ◄──────────┐
    │    │ get_phase()             │ Pending / Running
    │    ├─────────────────────────┘   (heartbeat, wait min(interval, remaining))
    │    │
    │    ├── Succeeded ──► PollOutcome(SUCCEEDED)
    │    ├── Failed ─────► UnitFailedError(console output | "logs unavailable")
    │    ├── API error ──► InfraError (raised as-is, no retry)
    │    ├── deadline ───► PollTimeoutError("timed out after ...")
    │    └── cancel set ─► RunCancelledError
    │
    └── no get_phase() call is ever issued after the deadline

Observed phases never regress: a lower-ranked phase reported after a
higher one (Running → Pending) is logged and the higher phase is kept.
The poller never deletes the unit; that is the coordinator's job.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from podrun.core.errors import (
    PodrunError,
    PollTimeoutError,
    RunCancelledError,
    UnitFailedError,
)
from podrun.core.logging import get_logger
from podrun.execution._types import Phase
from podrun.execution.scheduler import SchedulerClient

logger = get_logger(__name__)

LOGS_UNAVAILABLE = "logs unavailable"

HeartbeatFn = Callable[[str], None]


class PollState(str, Enum):
    """Poller states. Every state except POLLING is terminal."""

    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    INFRA_ERROR = "infra_error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PollOutcome:
    """Result of a successful wait."""

    state: PollState
    phase: Phase
    polls: int
    elapsed: float


def format_duration(seconds: float) -> str:
    """Render seconds as ``1h2m3s`` / ``4m0s`` / ``2.5s``."""
    if seconds < 60:
        return f"{seconds:g}s"
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    return f"{minutes}m{secs}s"


class CompletionPoller:
    """Polls a scheduler client until a unit finishes.

    Parameters
    ----------
    client
        Scheduler client to query.
    interval
        Seconds between two polls.
    clock, sleep
        Monotonic clock and sleep function; tests inject fakes.
    """

    def __init__(
        self,
        client: SchedulerClient,
        *,
        interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.client = client
        self.interval = interval
        self._clock = clock
        self._sleep = sleep

    def wait(
        self,
        name: str,
        timeout: float,
        *,
        heartbeat: HeartbeatFn | None = None,
        cancel: threading.Event | None = None,
    ) -> PollOutcome:
        """Block until ``name`` succeeds; raise for every other terminal state."""
        start = self._clock()
        deadline = start + timeout
        polls = 0
        highest: Phase | None = None

        while True:
            if cancel is not None and cancel.is_set():
                raise self._cancelled(name, highest, polls)
            if self._clock() >= deadline:
                raise self._timed_out(name, timeout, highest, polls)

            phase = self.client.get_phase(name)
            polls += 1
            if highest is not None and phase.rank < highest.rank:
                logger.warning(
                    "phase_regression_ignored", unit=name,
                    observed=phase.value, kept=highest.value,
                )
                phase = highest
            highest = phase

            logger.debug("poll", unit=name, phase=phase.value, poll=polls)
            if heartbeat is not None:
                heartbeat(f"Unit {name} is {phase.value} (poll {polls})")

            if phase is Phase.SUCCEEDED:
                elapsed = self._clock() - start
                logger.info("unit_succeeded", unit=name, polls=polls, elapsed=round(elapsed, 3))
                return PollOutcome(PollState.SUCCEEDED, phase, polls, elapsed)
            if phase is Phase.FAILED:
                raise self._failed(name, polls)

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise self._timed_out(name, timeout, highest, polls)
            pause = min(self.interval, remaining)
            if cancel is not None:
                if cancel.wait(pause):
                    raise self._cancelled(name, highest, polls)
            else:
                self._sleep(pause)

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def _failed(self, name: str, polls: int) -> UnitFailedError:
        try:
            output = self.client.get_console_output(name)
        except PodrunError as exc:
            logger.warning("console_output_unavailable", unit=name, error=str(exc))
            output = LOGS_UNAVAILABLE
        logger.error("unit_failed", unit=name, polls=polls)
        message = f"unit {name} failed"
        if output.strip():
            message = f"{message}: {output.strip()}"
        return UnitFailedError(message, console_output=output).with_context(
            unit_name=name, phase=Phase.FAILED.value, polls=polls,
        )

    def _timed_out(
        self, name: str, timeout: float, phase: Phase | None, polls: int
    ) -> PollTimeoutError:
        logger.error("unit_timed_out", unit=name, timeout=timeout, polls=polls)
        return PollTimeoutError(
            f"timed out after {format_duration(timeout)}"
        ).with_context(
            unit_name=name, phase=phase.value if phase else None, polls=polls,
        )

    def _cancelled(self, name: str, phase: Phase | None, polls: int) -> RunCancelledError:
        logger.warning("run_cancelled", unit=name, polls=polls)
        return RunCancelledError(f"run for unit {name} was cancelled").with_context(
            unit_name=name, phase=phase.value if phase else None, polls=polls,
        )
