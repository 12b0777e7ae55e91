"""
Exceptions and error classification for the differential migration engine.

Exception Hierarchy:
    DiffMigrationError (base)
    +-- ConfigurationError
    |   +-- UnknownEntityTypeError
    |   +-- DependencyCycleError
    +-- CheckpointNotFoundError
    +-- TransientIOError
    |   +-- BatchTimeoutError
    +-- DataValidationError
    +-- InvariantViolationError
    |   +-- AnalysisCeilingExceededError
    +-- NoTrackingSessionError
    +-- BackupError

Error Classification:
    - ErrorSeverity: CRITICAL, ERROR, WARNING, INFO levels
    - ErrorRecoverability: RECOVERABLE, TRANSIENT, FATAL categories
    - ErrorClassification: Rich metadata for each error type
    - classify_exception: Maps any exception (including driver errors) to
      a classification so retry decisions are made in one place

Errors that cross a component boundary are reported as ErrorDetail values
inside result objects; exceptions stay inside the component that raised
them, apart from configuration errors which fail the call immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy import exc as sa_exc

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """
    Severity level of engine errors.

    Attributes:
        CRITICAL: Data integrity is at risk; stop and investigate.
        ERROR: An operation failed and needs operator attention.
        WARNING: Degraded but self-healing condition (e.g. retried I/O).
        INFO: Informational condition, not a failure.
    """

    CRITICAL = "critical"
    """Data integrity is at risk; stop and investigate."""

    ERROR = "error"
    """An operation failed and needs operator attention."""

    WARNING = "warning"
    """Degraded but self-healing condition."""

    INFO = "info"
    """Informational condition, not a failure."""

    @property
    def should_alert(self) -> bool:
        """
        Check if this severity level should trigger an alert.

        Returns:
            True for CRITICAL and ERROR levels.
        """
        return self in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR)

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for engine errors.

    Attributes:
        RECOVERABLE: Operator action fixes the cause; the run can continue
            afterwards (e.g. bad data in a handful of records).
        TRANSIENT: Temporary failure that may succeed on retry
            (connection loss, batch timeout).
        FATAL: Retrying cannot help (invalid configuration, invariant
            violation).
    """

    RECOVERABLE = "recoverable"
    """Error can be recovered from with operator action."""

    TRANSIENT = "transient"
    """Temporary error that may resolve on retry."""

    FATAL = "fatal"
    """Unrecoverable error for the current operation."""

    @property
    def should_retry(self) -> bool:
        """True only for TRANSIENT errors."""
        return self == ErrorRecoverability.TRANSIENT

    @property
    def should_abort(self) -> bool:
        """True only for FATAL errors."""
        return self == ErrorRecoverability.FATAL


@dataclass(frozen=True)
class RetryConfig:
    """
    Backoff configuration for retrying transient failures.

    Implements exponential backoff with jitter.

    Attributes:
        max_attempts: Maximum number of attempts (including the first).
        base_delay_ms: Base delay between retries in milliseconds.
        max_delay_ms: Maximum delay between retries in milliseconds.
        exponential_base: Base for exponential backoff.
        jitter_factor: Random jitter factor (0.0 to 1.0).

    Example:
        >>> config = RetryConfig(max_attempts=4, base_delay_ms=100)
        >>> config.get_delay_ms(attempt=2)  # ~400ms plus jitter
    """

    max_attempts: int = 3
    base_delay_ms: float = 100.0
    max_delay_ms: float = 30000.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be between 0.0 and 1.0, got {self.jitter_factor}")

    def get_delay_ms(self, attempt: int) -> float:
        """
        Calculate delay before the retry following `attempt`.

        Args:
            attempt: Zero-indexed attempt number that just failed.

        Returns:
            Delay in milliseconds, capped at max_delay_ms.
        """
        delay = self.base_delay_ms * (self.exponential_base**attempt)
        if self.jitter_factor > 0:
            jitter = delay * self.jitter_factor * random.random()  # nosec B311 - retry jitter
            delay = delay + jitter
        return min(delay, self.max_delay_ms)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "max_attempts": self.max_attempts,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "exponential_base": self.exponential_base,
            "jitter_factor": self.jitter_factor,
        }


TRANSIENT_RETRY_CONFIG = RetryConfig(
    max_attempts=4,
    base_delay_ms=100.0,
    max_delay_ms=30000.0,
)


@dataclass(frozen=True)
class ErrorClassification:
    """
    Rich metadata for error classification.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category (configuration, connectivity, data, invariant, ...).
        suggested_action: Human-readable guidance for operators.
        retry_config: Backoff configuration for transient errors.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str
    retry_config: RetryConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert classification to dictionary for serialization."""
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }
        if self.retry_config:
            result["retry_config"] = self.retry_config.to_dict()
        return result


@dataclass(frozen=True)
class ErrorDetail:
    """
    Serializable error carried inside result objects.

    Attributes:
        code: Error code from the classification.
        message: Human-readable description.
        retryable: Whether retrying the same work may succeed.
        record_id: Record the error relates to, for per-record errors.
        attempts: How many attempts were made before giving up.
        details: Extra structured context.
    """

    code: str
    message: str
    retryable: bool
    record_id: str | None = None
    attempts: int = 1
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        record_id: str | None = None,
        attempts: int = 1,
    ) -> ErrorDetail:
        """
        Build an ErrorDetail from any exception.

        Args:
            exc: The exception to describe.
            record_id: Optional record the error relates to.
            attempts: Number of attempts made.

        Returns:
            ErrorDetail with code and retryability taken from the classification.
        """
        classification = classify_exception(exc)
        message = exc.message if isinstance(exc, DiffMigrationError) else str(exc)
        return cls(
            code=classification.error_code,
            message=message or type(exc).__name__,
            retryable=is_retryable(exc),
            record_id=record_id,
            attempts=attempts,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "record_id": self.record_id,
            "attempts": self.attempts,
            "details": dict(self.details),
        }


class DiffMigrationError(Exception):
    """
    Base exception for all differential migration errors.

    Subclasses override `_default_classification` to describe how the
    engine should react to them.

    Attributes:
        message: Human-readable error description.
        entity_type: Entity type involved, if applicable.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="DIFF_MIGRATION_ERROR",
        category="general",
        suggested_action="Review the execution log for this session",
    )

    def __init__(self, message: str, *, entity_type: str | None = None) -> None:
        self.message = message
        self.entity_type = entity_type
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error string with context."""
        if self.entity_type:
            return f"{self.message} entity_type={self.entity_type}"
        return self.message

    @property
    def classification(self) -> ErrorClassification:
        """Get the error classification for this exception."""
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        """Get the severity level of this error."""
        return self.classification.severity

    @property
    def error_code(self) -> str:
        """Get the unique error code for this exception."""
        return self.classification.error_code

    @property
    def is_retryable(self) -> bool:
        """Whether an automatic retry may succeed."""
        return self.classification.recoverability.should_retry

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for serialization."""
        return {
            "message": self.message,
            "entity_type": self.entity_type,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }


class ConfigurationError(DiffMigrationError):
    """
    Raised when an option set or the entity catalog is invalid.

    Configuration errors are reported immediately and never retried.

    Attributes:
        errors: The individual validation messages.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="CONFIGURATION_ERROR",
        category="configuration",
        suggested_action="Fix the reported option values and restart the operation",
    )

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        *,
        entity_type: str | None = None,
    ) -> None:
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: {', '.join(self.errors)}"
        super().__init__(message, entity_type=entity_type)


class UnknownEntityTypeError(ConfigurationError):
    """Raised when an entity type is not present in the catalog."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNKNOWN_ENTITY_TYPE",
        category="configuration",
        suggested_action="Use one of the entity types registered in the catalog",
    )

    def __init__(self, entity_type: str) -> None:
        super().__init__(f"Unknown entity type: {entity_type}", entity_type=entity_type)


class DependencyCycleError(ConfigurationError):
    """
    Raised when catalog dependencies cannot be ordered as a DAG.

    Attributes:
        cycle: Entity types involved in the cycle.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="DEPENDENCY_CYCLE",
        category="configuration",
        suggested_action="Remove the circular dependency from the entity catalog",
    )

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Circular entity dependency: {' -> '.join(self.cycle)}")


class CheckpointNotFoundError(DiffMigrationError):
    """Raised when resuming from a checkpoint id that does not exist."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="CHECKPOINT_NOT_FOUND",
        category="lookup",
        suggested_action="List the checkpoints of the run and resume from an existing one",
    )

    def __init__(self, checkpoint_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint not found: {checkpoint_id}")


class TransientIOError(DiffMigrationError):
    """Raised for connection loss and other I/O failures worth retrying."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="TRANSIENT_IO_ERROR",
        category="connectivity",
        suggested_action="Check database connectivity; the operation is retried automatically",
        retry_config=TRANSIENT_RETRY_CONFIG,
    )


class BatchTimeoutError(TransientIOError):
    """
    Raised when a batch exceeds its configured timeout.

    Attributes:
        batch_id: Batch that timed out.
        timeout_ms: The configured limit.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="BATCH_TIMEOUT",
        category="connectivity",
        suggested_action="Reduce batch size or raise timeout_ms if timeouts persist",
        retry_config=TRANSIENT_RETRY_CONFIG,
    )

    def __init__(self, batch_id: str, timeout_ms: int, *, entity_type: str | None = None) -> None:
        self.batch_id = batch_id
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Batch {batch_id} exceeded timeout of {timeout_ms}ms",
            entity_type=entity_type,
        )


class DataValidationError(DiffMigrationError):
    """
    Raised for a per-record data problem.

    Attributes:
        record_id: Record that failed validation.
        retryable: Explicit override of the default non-retryable classification.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="DATA_VALIDATION_ERROR",
        category="data",
        suggested_action="Fix the source record and re-run the entity",
    )

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        *,
        entity_type: str | None = None,
        retryable: bool = False,
    ) -> None:
        self.record_id = record_id
        self.retryable = retryable
        super().__init__(message, entity_type=entity_type)

    @property
    def is_retryable(self) -> bool:
        return self.retryable


class InvariantViolationError(DiffMigrationError):
    """Raised when an engine invariant does not hold; fatal for the operation."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVARIANT_VIOLATION",
        category="invariant",
        suggested_action="Stop the run and investigate the reported invariant",
    )


class AnalysisCeilingExceededError(InvariantViolationError):
    """
    Raised when a detection pass references more records than allowed.

    Attributes:
        record_count: Records referenced by the pass so far.
        ceiling: The configured maximum.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="ANALYSIS_CEILING_EXCEEDED",
        category="invariant",
        suggested_action=(
            "Detect changes over a narrower cursor window or raise max_records_per_pass"
        ),
    )

    def __init__(self, record_count: int, ceiling: int, *, entity_type: str | None = None) -> None:
        self.record_count = record_count
        self.ceiling = ceiling
        super().__init__(
            f"Detection pass references {record_count} records, ceiling is {ceiling}",
            entity_type=entity_type,
        )


class NoTrackingSessionError(DiffMigrationError):
    """Raised when progress is reported for an entity that was never started."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.FATAL,
        error_code="NO_TRACKING_SESSION",
        category="state",
        suggested_action="Call start_tracking before update_progress",
    )

    def __init__(self, entity_type: str) -> None:
        super().__init__(
            f"No tracking session found for entity type: {entity_type}",
            entity_type=entity_type,
        )


class BackupError(DiffMigrationError):
    """Raised when a pre-resolution backup cannot be written or restored."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="BACKUP_ERROR",
        category="storage",
        suggested_action="Check the backup location is writable before resolving conflicts",
    )


_TRANSIENT_DRIVER_CLASSIFICATION = ErrorClassification(
    severity=ErrorSeverity.WARNING,
    recoverability=ErrorRecoverability.TRANSIENT,
    error_code="DATABASE_UNAVAILABLE",
    category="connectivity",
    suggested_action="Check database connectivity; the operation is retried automatically",
    retry_config=TRANSIENT_RETRY_CONFIG,
)

_DATA_DRIVER_CLASSIFICATION = ErrorClassification(
    severity=ErrorSeverity.ERROR,
    recoverability=ErrorRecoverability.RECOVERABLE,
    error_code="DATABASE_CONSTRAINT_VIOLATION",
    category="data",
    suggested_action="Inspect the offending record for constraint or type violations",
)


def classify_exception(exc: BaseException) -> ErrorClassification:
    """
    Classify any exception and return its error classification.

    DiffMigrationError subclasses carry their own classification. Driver
    and network errors are mapped so that connection loss and timeouts are
    transient while constraint and data errors are not.

    Args:
        exc: The exception to classify.

    Returns:
        ErrorClassification for the exception.

    Example:
        >>> classify_exception(ConnectionResetError()).recoverability
        <ErrorRecoverability.TRANSIENT: 'transient'>
    """
    if isinstance(exc, DiffMigrationError):
        return exc.classification

    if isinstance(exc, (sa_exc.IntegrityError, sa_exc.DataError)):
        return _DATA_DRIVER_CLASSIFICATION

    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return _TRANSIENT_DRIVER_CLASSIFICATION

    if isinstance(
        exc,
        (
            sa_exc.OperationalError,
            sa_exc.DisconnectionError,
            sa_exc.TimeoutError,
            asyncio.TimeoutError,
            ConnectionError,
            OSError,
        ),
    ):
        return _TRANSIENT_DRIVER_CLASSIFICATION

    return ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNKNOWN_ERROR",
        category="unknown",
        suggested_action="An unexpected error occurred. Review logs for the stack trace.",
    )


def is_retryable(exc: BaseException) -> bool:
    """Shortcut for ``classify_exception(exc).recoverability.should_retry``."""
    if isinstance(exc, DiffMigrationError):
        return exc.is_retryable
    return classify_exception(exc).recoverability.should_retry


__all__ = [
    "AnalysisCeilingExceededError",
    "BackupError",
    "BatchTimeoutError",
    "CheckpointNotFoundError",
    "ConfigurationError",
    "DataValidationError",
    "DependencyCycleError",
    "DiffMigrationError",
    "ErrorClassification",
    "ErrorDetail",
    "ErrorRecoverability",
    "ErrorSeverity",
    "InvariantViolationError",
    "NoTrackingSessionError",
    "RetryConfig",
    "TRANSIENT_RETRY_CONFIG",
    "TransientIOError",
    "UnknownEntityTypeError",
    "classify_exception",
    "is_retryable",
]
