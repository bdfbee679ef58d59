"""
Structured error types for podrun.

Every failure a run can end in is a typed error. The workflow engine that
calls us applies its own retry policy, so each error states up front
whether a retry could help and carries the run context needed to find the
unit and its working directory afterwards.

PodrunError and its subclasses carry:
- **Category:** Which stage of the run failed (storage, scheduler, unit, ...)
- **Retryable:** Whether a fresh invocation has a chance of succeeding
- **Context:** Run identity, unit name, operation, namespace, last phase
- **Cause:** Chained underlying exception (OSError, CalledProcessError, ...)

Manifesto:
    - **One error per failure mode:** The caller never parses messages
    - **Explicit retry semantics:** Infrastructure errors are retryable,
      bad input and unit failures are not
    - **Error chaining:** The original exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                         PodrunError                           │
        │            (category, retryable, context, cause)              │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  ConfigWriteError     UnitCreateError       PollTimeoutError  │
        │  (STORAGE)            (SCHEDULER, retry)    (TIMEOUT)         │
        │                            │                                  │
        │                       UnitAlreadyExistsError                  │
        │                                                               │
        │  UnitFailedError      ResultExtractionError InfraError        │
        │  (UNIT)               (EXTRACTION)          (INFRA, retry)    │
        │                            │                     │            │
        │                       MissingIdentityError  UnitNotFoundError │
        │                       ResultFileError                         │
        │                                                               │
        │  RunCancelledError (CANCELLED)                                │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = InfraError("kubectl get pod failed")
    >>> error.retryable
    True
    >>> error.with_context(unit_name="wf-1").context.unit_name
    'wf-1'

    >>> failed = UnitFailedError("unit failed", console_output="boom")
    >>> failed.to_dict()["console_output"]
    'boom'

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context, podrun
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories, one per stage of a run.

    Attributes:
        STORAGE: Writing the run directory or its files
        SCHEDULER: Creating the execution unit
        TIMEOUT: Unit did not reach a terminal phase before the deadline
        UNIT: Unit ran and reported Failed
        EXTRACTION: Result could not be read or parsed
        INFRA: Scheduling API unreachable, unit vanished, unexpected phase
        CANCELLED: Caller abandoned the run
        INTERNAL: Bugs, unexpected state
    """

    STORAGE = "STORAGE"
    SCHEDULER = "SCHEDULER"
    TIMEOUT = "TIMEOUT"
    UNIT = "UNIT"
    EXTRACTION = "EXTRACTION"
    INFRA = "INFRA"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured run metadata attached to errors.

    Only fields that are set end up in ``to_dict()``; anything that has no
    dedicated field goes into ``metadata``.

    Attributes:
        run_id: Caller-supplied run identity (unsanitized)
        unit_name: Derived execution unit name
        operation: discover / check / sync
        phase: Last phase observed for the unit
        namespace: Namespace the unit lives in
        metadata: Additional key-value pairs
    """

    run_id: str | None = None
    unit_name: str | None = None
    operation: str | None = None
    phase: str | None = None
    namespace: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run_id", "unit_name", "operation", "phase", "namespace"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class PodrunError(Exception):
    """
    Base exception for all podrun errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> PodrunError:
        """
        Add context to this error (fluent API).

        Usage:
            raise InfraError("API unreachable").with_context(
                unit_name="sync-4f2a",
                namespace="podrun",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STORAGE
# =============================================================================


class ConfigWriteError(PodrunError):
    """Run directory or config file could not be written, or the input was unusable."""

    default_category = ErrorCategory.STORAGE


# =============================================================================
# SCHEDULER
# =============================================================================


class UnitCreateError(PodrunError):
    """Scheduling API rejected the unit."""

    default_category = ErrorCategory.SCHEDULER
    default_retryable = True


class UnitAlreadyExistsError(UnitCreateError):
    """A unit with the derived name already exists (duplicate in-flight run)."""

    default_retryable = False


# =============================================================================
# UNIT OUTCOMES
# =============================================================================


class PollTimeoutError(PodrunError):
    """Unit did not reach a terminal phase before the deadline."""

    default_category = ErrorCategory.TIMEOUT


class UnitFailedError(PodrunError):
    """
    Unit reached the Failed phase.

    ``console_output`` holds whatever the unit printed, or
    ``"logs unavailable"`` when it could not be fetched.
    """

    default_category = ErrorCategory.UNIT

    def __init__(self, message: str, *, console_output: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.console_output = console_output

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["console_output"] = self.console_output
        return result


class RunCancelledError(PodrunError):
    """The caller signalled cancellation while the unit was in flight."""

    default_category = ErrorCategory.CANCELLED


# =============================================================================
# EXTRACTION
# =============================================================================


class ResultExtractionError(PodrunError):
    """Result could not be extracted from the finished unit."""

    default_category = ErrorCategory.EXTRACTION


class MissingIdentityError(ResultExtractionError):
    """Unit carries no original run identity annotation."""


class ResultFileError(ResultExtractionError):
    """Result file is missing, unreadable or not a JSON object."""


# =============================================================================
# INFRASTRUCTURE
# =============================================================================


class InfraError(PodrunError):
    """Scheduling API unavailable, or it returned something we cannot interpret."""

    default_category = ErrorCategory.INFRA
    default_retryable = True


class UnitNotFoundError(InfraError):
    """Unit disappeared while we were still watching it."""


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, PodrunError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, PodrunError):
        return error.category
    if isinstance(error, OSError):
        return ErrorCategory.STORAGE
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "PodrunError",
    "ConfigWriteError",
    "UnitCreateError",
    "UnitAlreadyExistsError",
    "PollTimeoutError",
    "UnitFailedError",
    "RunCancelledError",
    "ResultExtractionError",
    "MissingIdentityError",
    "ResultFileError",
    "InfraError",
    "UnitNotFoundError",
    "is_retryable",
    "categorize_error",
]
