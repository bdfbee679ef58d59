"""podrun execution -- one connector operation per single-use pod.

Architecture::

    _types.py        OperationKind, Phase, ExecutionUnitSpec, naming rules
    operations.py    per-kind table (files, args, result source)
    materializer.py  run directories on the shared claim
    spec_builder.py  run -> ExecutionUnitSpec
    scheduler.py     SchedulerClient protocol, base client, stub client
    kubectl.py       kubectl-backed SchedulerClient
    poller.py        wait for a terminal phase
    extractor.py     result from file or console output
    coordinator.py   materialize -> create -> poll -> extract -> delete
"""

from podrun.execution._types import (
    ConfigFile,
    ExecutionUnit,
    ExecutionUnitSpec,
    OperationKind,
    Phase,
    run_directory_name,
    sanitize_name,
)
from podrun.execution.coordinator import LifecycleCoordinator, RunRequest, cleanup_units
from podrun.execution.extractor import ResultExtractor, parse_console_output
from podrun.execution.materializer import ConfigMaterializer
from podrun.execution.poller import CompletionPoller, PollOutcome
from podrun.execution.scheduler import SchedulerClient, StubSchedulerClient
from podrun.execution.spec_builder import build_spec

__all__ = [
    "CompletionPoller",
    "ConfigFile",
    "ConfigMaterializer",
    "ExecutionUnit",
    "ExecutionUnitSpec",
    "LifecycleCoordinator",
    "OperationKind",
    "Phase",
    "PollOutcome",
    "ResultExtractor",
    "RunRequest",
    "SchedulerClient",
    "StubSchedulerClient",
    "build_spec",
    "cleanup_units",
    "parse_console_output",
    "run_directory_name",
    "sanitize_name",
]
