"""
Structured error types for the medallion ingestion orchestrator.

Every failure the orchestrator can observe is expressed as a
:class:`MedallionError` subclass carrying a category, an explicit retry
flag, structured context and an optional chained cause. The orchestrator
decides whether to retry a step purely from ``error.retryable``; the HTTP
layer maps ``error.category`` to a status code.

Manifesto:
    - **Typed hierarchy:** One class per failure mode of the job
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Rich context:** Errors carry run/step/batch metadata for logging
    - **Error chaining:** Wrapped exceptions are preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                        MedallionError                           │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  ProducerError          CommitVisibilityError   MaterializeError│
        │  (SOURCE, retry)        (STORAGE, retry)        (STORAGE, retry)│
        │                                                                 │
        │  StepTimeoutError       BusyError               ConfigError     │
        │  (TIMEOUT, retry)       (CONFLICT, no retry)    (CONFIG)        │
        │                                                                 │
        │  NotFoundError                                                  │
        │  (NOT_FOUND)                                                    │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ProducerError("upstream returned 503")
    >>> error.retryable
    True
    >>> BusyError("run in progress", active_run_id="abc").retryable
    False

Tags:
    error-handling, exception-hierarchy, retry-logic, medallion
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for retry decisions and HTTP status mapping."""

    SOURCE = "SOURCE"             # Producer / upstream fetch
    STORAGE = "STORAGE"           # Raw store, silver log, gold publish
    TIMEOUT = "TIMEOUT"           # Step attempt exceeded its timeout
    CONFLICT = "CONFLICT"         # Single-flight rejection
    CONFIG = "CONFIG"             # Invalid settings
    NOT_FOUND = "NOT_FOUND"       # Unknown run / entity
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-``None`` fields are emitted by :meth:`to_dict`; anything that
    doesn't have a dedicated field goes into ``metadata``.
    """

    run_id: str | None = None
    step: str | None = None
    attempt: int | None = None
    batch_id: str | None = None
    entity_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run_id", "step", "attempt", "batch_id", "entity_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MedallionError(Exception):
    """Base exception for all medallion errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.

    Example:
        >>> try:
        ...     raise ConnectionError("DNS lookup failed")
        ... except ConnectionError as e:
        ...     error = ProducerError("fetch failed", cause=e)
        >>> error.cause
        ConnectionError('DNS lookup failed')
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

    def with_context(self, **kwargs: Any) -> MedallionError:
        """Add context to this error (fluent API).

        Usage:
            raise MaterializeError("append failed").with_context(
                run_id=record.run_id, batch_id=batch.batch_id
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
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
# STEP ERRORS (retried by the orchestrator)
# =============================================================================


class ProducerError(MedallionError):
    """Transient failure of the producer's fetch (network, scrape, raw write)."""

    default_category = ErrorCategory.SOURCE
    default_retryable = True


class CommitVisibilityError(MedallionError):
    """The raw batch written by ``fetch`` is not yet readable.

    Retried by re-running the materialize step, never by re-fetching.
    """

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class MaterializeError(MedallionError):
    """Storage read/write failure during the Silver append or Gold rebuild."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class StepTimeoutError(MedallionError):
    """A single step attempt exceeded its configured timeout."""

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True

    def __init__(self, message: str, *, timeout_seconds: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


# =============================================================================
# CALLER-FACING ERRORS (never retried by the system)
# =============================================================================


class BusyError(MedallionError):
    """A run is already active; the trigger was rejected, not queued."""

    default_category = ErrorCategory.CONFLICT
    default_retryable = False

    def __init__(self, message: str = "A run is already in progress", *, active_run_id: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.active_run_id = active_run_id
        if active_run_id is not None:
            self.context.run_id = active_run_id


class ConfigError(MedallionError):
    """Invalid configuration. Fatal at startup."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.errors = errors or []


class NotFoundError(MedallionError):
    """Requested run or entity does not exist."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


def is_retryable(error: BaseException) -> bool:
    """Check whether the orchestrator should retry after ``error``.

    Unknown (non-medallion) exceptions are not retried; step functions are
    expected to wrap them into the appropriate typed error first.
    """
    if isinstance(error, MedallionError):
        return error.retryable
    return False


__all__ = [
    "BusyError",
    "CommitVisibilityError",
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "MaterializeError",
    "MedallionError",
    "NotFoundError",
    "ProducerError",
    "StepTimeoutError",
    "is_retryable",
]
