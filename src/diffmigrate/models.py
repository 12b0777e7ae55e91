"""
Core data model of the differential migration engine.

Contains the persisted records (Checkpoint, DataDifferential), the
transient detection output (ChangeRecord, DifferentialAnalysisResult),
the session aggregate (MigrationStatus) and the execution-log entry.

Invariants are enforced at construction or mutation time and reported
as InvariantViolationError.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from diffmigrate.exceptions import (
    AnalysisCeilingExceededError,
    InvariantViolationError,
)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


# =============================================================================
# Checkpoints
# =============================================================================


@dataclass(frozen=True)
class Checkpoint:
    """
    Durable, resumable progress record for one entity within one run.

    Attributes:
        id: Unique checkpoint id.
        entity_type: Entity type the checkpoint belongs to.
        migration_run_id: Run (session) id.
        last_processed_cursor: Last record id covered by a completed batch.
        batch_position: Number of the last completed batch.
        records_processed: Record ids covered by completed batches.
        records_remaining: Record ids not yet covered.
        checkpoint_data: Schema-less resume state (string keys, primitive
            or list values).
        created_at: When the checkpoint row was first written.
        updated_at: When the checkpoint was last written.
    """

    entity_type: str
    migration_run_id: str
    records_processed: int
    records_remaining: int
    batch_position: int = 0
    last_processed_cursor: str | None = None
    checkpoint_data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.records_processed < 0 or self.records_remaining < 0:
            raise InvariantViolationError(
                "Checkpoint record counts must be non-negative "
                f"(processed={self.records_processed}, remaining={self.records_remaining})",
                entity_type=self.entity_type,
            )

    @property
    def total_records(self) -> int:
        return self.records_processed + self.records_remaining

    @property
    def progress_percentage(self) -> float:
        total = self.total_records
        if total == 0:
            return 100.0
        return round(self.records_processed / total * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "migration_run_id": self.migration_run_id,
            "last_processed_cursor": self.last_processed_cursor,
            "batch_position": self.batch_position,
            "records_processed": self.records_processed,
            "records_remaining": self.records_remaining,
            "checkpoint_data": dict(self.checkpoint_data),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# =============================================================================
# Change detection
# =============================================================================


class ChangeType(Enum):
    """Classification of a detected change."""

    NEW = "new"
    """Present in the source, absent from the destination."""

    MODIFIED = "modified"
    """Present on both sides, source changed since the last migration."""

    DELETED = "deleted"
    """Present in the destination, gone from the source."""


@dataclass(frozen=True)
class ChangeRecord:
    """
    One detected change, produced transiently by a detection pass.

    Attributes:
        record_id: Source primary key (as string).
        change_type: new, modified or deleted.
        source_timestamp: Modification timestamp on the source side.
        destination_timestamp: Modification timestamp on the destination side.
        content_hash: Hash of the current source content.
        previous_content_hash: Hash of the destination content.
        confidence: Classification confidence in [0, 1].
        metadata: Raw field snapshot.
    """

    record_id: str
    change_type: ChangeType
    confidence: float
    source_timestamp: datetime | None = None
    destination_timestamp: datetime | None = None
    content_hash: str | None = None
    previous_content_hash: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise InvariantViolationError(
                f"Change confidence must be within [0, 1], got {self.confidence}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "record_id": self.record_id,
            "change_type": self.change_type.value,
            "source_timestamp": (
                self.source_timestamp.isoformat() if self.source_timestamp else None
            ),
            "destination_timestamp": (
                self.destination_timestamp.isoformat() if self.destination_timestamp else None
            ),
            "content_hash": self.content_hash,
            "previous_content_hash": self.previous_content_hash,
            "confidence": self.confidence,
            "metadata": dict(self.metadata),
        }


@dataclass
class DifferentialAnalysisResult:
    """
    Id sets produced by one detection pass over one entity.

    The three id sets are kept pairwise disjoint: `add()` refuses to place
    an id in a second category. The number of ids referenced across the
    sets never exceeds `max_records`; exceeding it raises instead of
    truncating.

    Attributes:
        entity_type: Entity type analysed.
        source_record_count: Rows in the source table.
        destination_record_count: Rows in the destination table.
        new_records: Ids classified as new.
        modified_records: Ids classified as modified.
        deleted_records: Ids classified as deleted.
        last_migration_timestamp: Cursor timestamp the pass started from.
        analysis_metadata: Strategy-specific details.
        max_records: Ceiling on referenced ids (None disables the check).
    """

    entity_type: str
    source_record_count: int = 0
    destination_record_count: int = 0
    new_records: set[str] = field(default_factory=set)
    modified_records: set[str] = field(default_factory=set)
    deleted_records: set[str] = field(default_factory=set)
    last_migration_timestamp: datetime | None = None
    analysis_metadata: dict[str, Any] = field(default_factory=dict)
    analysis_timestamp: datetime = field(default_factory=utc_now)
    max_records: int | None = None

    @property
    def record_gap(self) -> int:
        return self.source_record_count - self.destination_record_count

    @property
    def total_changes(self) -> int:
        return len(self.new_records) + len(self.modified_records) + len(self.deleted_records)

    def _set_for(self, change_type: ChangeType) -> set[str]:
        return {
            ChangeType.NEW: self.new_records,
            ChangeType.MODIFIED: self.modified_records,
            ChangeType.DELETED: self.deleted_records,
        }[change_type]

    def category_of(self, record_id: str) -> ChangeType | None:
        """Return the category holding `record_id`, if any."""
        for change_type in ChangeType:
            if record_id in self._set_for(change_type):
                return change_type
        return None

    def add(self, change_type: ChangeType, record_id: str) -> None:
        """
        Place `record_id` in the set for `change_type`.

        Raises:
            InvariantViolationError: If the id already sits in another set.
            AnalysisCeilingExceededError: If the ceiling would be exceeded.
        """
        existing = self.category_of(record_id)
        if existing is change_type:
            return
        if existing is not None:
            raise InvariantViolationError(
                f"Record {record_id} already classified as {existing.value}, "
                f"cannot also be {change_type.value}",
                entity_type=self.entity_type,
            )
        if self.max_records is not None and self.total_changes + 1 > self.max_records:
            raise AnalysisCeilingExceededError(
                self.total_changes + 1, self.max_records, entity_type=self.entity_type
            )
        self._set_for(change_type).add(record_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "entity_type": self.entity_type,
            "analysis_timestamp": self.analysis_timestamp.isoformat(),
            "source_record_count": self.source_record_count,
            "destination_record_count": self.destination_record_count,
            "record_gap": self.record_gap,
            "new_records": sorted(self.new_records),
            "modified_records": sorted(self.modified_records),
            "deleted_records": sorted(self.deleted_records),
            "last_migration_timestamp": (
                self.last_migration_timestamp.isoformat() if self.last_migration_timestamp else None
            ),
            "analysis_metadata": dict(self.analysis_metadata),
        }


# =============================================================================
# Conflict audit trail
# =============================================================================


class ComparisonType(Enum):
    """Kind of discrepancy recorded by a DataDifferential."""

    MISSING_RECORDS = "missing_records"
    """Source rows with no destination counterpart."""

    CONFLICTED_RECORDS = "conflicted_records"
    """Rows changed independently on both sides."""

    DELETED_RECORDS = "deleted_records"
    """Destination rows whose source row is gone."""


class ResolutionStrategy(Enum):
    """How a conflict is resolved."""

    SOURCE_WINS = "source_wins"
    """Destination rows are overwritten with source values."""

    TARGET_WINS = "target_wins"
    """The destination is authoritative; nothing is written."""

    MANUAL = "manual"
    """Left unresolved pending an external decision."""


@dataclass(frozen=True)
class DataDifferential:
    """
    Audit record of a discrepancy between source and destination.

    Created by conflict detection, flipped to resolved by conflict
    resolution, never deleted.

    Attributes:
        id: Unique differential id.
        entity_type: Entity type the rows belong to.
        source_table: Source table name.
        target_table: Destination table name.
        comparison_type: missing, conflicted or deleted records.
        legacy_ids: Affected source ids, in detection order.
        record_count: Number of affected ids.
        comparison_criteria: Fields compared and the timestamp threshold.
        resolution_strategy: Strategy applied when resolved.
        resolved: Whether the differential has been resolved.
        resolved_at: When it was resolved.
        metadata: Field-level mismatch detail and resolution notes.
    """

    entity_type: str
    source_table: str
    target_table: str
    comparison_type: ComparisonType
    legacy_ids: tuple[str, ...] = ()
    comparison_criteria: dict[str, Any] = field(default_factory=dict)
    resolution_strategy: ResolutionStrategy | None = None
    resolved: bool = False
    resolved_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    @property
    def record_count(self) -> int:
        return len(self.legacy_ids)

    def mark_resolved(
        self,
        strategy: ResolutionStrategy,
        resolved_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DataDifferential:
        """Return a resolved copy of this differential."""
        merged = dict(self.metadata)
        merged.update(metadata or {})
        return replace(
            self,
            resolved=True,
            resolution_strategy=strategy,
            resolved_at=resolved_at or utc_now(),
            metadata=merged,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "source_table": self.source_table,
            "target_table": self.target_table,
            "comparison_type": self.comparison_type.value,
            "legacy_ids": list(self.legacy_ids),
            "record_count": self.record_count,
            "comparison_criteria": dict(self.comparison_criteria),
            "resolution_strategy": (
                self.resolution_strategy.value if self.resolution_strategy else None
            ),
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
        }


# =============================================================================
# Session status
# =============================================================================


class OverallStatus(Enum):
    """Lifecycle of a migration session."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MigrationStatus:
    """
    Session-level aggregate owned by the migration executor.

    Each entity type sits in exactly one of the four sets. Use the
    `mark_*` methods to move an entity between sets; they keep the sets
    mutually exclusive.
    """

    session_id: str
    overall_status: OverallStatus = OverallStatus.PENDING
    pending: set[str] = field(default_factory=set)
    running: set[str] = field(default_factory=set)
    completed: set[str] = field(default_factory=set)
    failed: set[str] = field(default_factory=set)
    total_records: int = 0
    processed_records: int = 0
    failed_records: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def _move(self, entity_type: str, target: set[str]) -> None:
        for bucket in (self.pending, self.running, self.completed, self.failed):
            bucket.discard(entity_type)
        target.add(entity_type)

    def mark_pending(self, entity_type: str) -> None:
        self._move(entity_type, self.pending)

    def mark_running(self, entity_type: str) -> None:
        self._move(entity_type, self.running)

    def mark_completed(self, entity_type: str) -> None:
        self._move(entity_type, self.completed)

    def mark_failed(self, entity_type: str) -> None:
        self._move(entity_type, self.failed)

    def violations(self) -> list[str]:
        """Return the invariants that do not currently hold."""
        problems: list[str] = []
        buckets = {
            "pending": self.pending,
            "running": self.running,
            "completed": self.completed,
            "failed": self.failed,
        }
        names = list(buckets)
        for i, left in enumerate(names):
            for right in names[i + 1 :]:
                overlap = buckets[left] & buckets[right]
                if overlap:
                    problems.append(f"{sorted(overlap)} in both {left} and {right}")
        if self.overall_status == OverallStatus.COMPLETED and (self.running or self.pending):
            problems.append("completed session has running or pending entities")
        if self.overall_status == OverallStatus.RUNNING and not (self.running or self.pending):
            problems.append("running session has no running or pending entities")
        if self.started_at and self.completed_at and self.completed_at < self.started_at:
            problems.append("completed_at precedes started_at")
        return problems

    def check_invariants(self) -> None:
        """
        Raises:
            InvariantViolationError: If any invariant does not hold.
        """
        problems = self.violations()
        if problems:
            raise InvariantViolationError("Invalid migration status: " + "; ".join(problems))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "overall_status": self.overall_status.value,
            "pending": sorted(self.pending),
            "running": sorted(self.running),
            "completed": sorted(self.completed),
            "failed": sorted(self.failed),
            "total_records": self.total_records,
            "processed_records": self.processed_records,
            "failed_records": self.failed_records,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


# =============================================================================
# Execution log
# =============================================================================


class OperationType(str, Enum):
    """Operation recorded by an execution-log entry."""

    BASELINE_ANALYSIS = "baseline_analysis"
    DIFFERENTIAL_DETECTION = "differential_detection"
    RECORD_MIGRATION = "record_migration"
    VALIDATION = "validation"
    CHECKPOINT_SAVE = "checkpoint_save"
    CHECKPOINT_RESTORE = "checkpoint_restore"
    CONFLICT_RESOLUTION = "conflict_resolution"


class LogLevel(str, Enum):
    """Severity of an execution-log entry."""

    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"


class ExecutionLogEntry(BaseModel):
    """
    Structured execution-log entry consumed by reporting layers.

    Example:
        >>> entry = ExecutionLogEntry(
        ...     session_id="run-1",
        ...     operation_type=OperationType.RECORD_MIGRATION,
        ...     log_level=LogLevel.INFO,
        ...     message="Batch 3 completed",
        ... )
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    session_id: str
    entity_type: str | None = None
    operation_type: OperationType
    log_level: LogLevel
    message: str
    error_details: dict[str, Any] | None = None
    performance_data: dict[str, Any] | None = None
    context_data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


__all__ = [
    "ChangeRecord",
    "ChangeType",
    "Checkpoint",
    "ComparisonType",
    "DataDifferential",
    "DifferentialAnalysisResult",
    "ExecutionLogEntry",
    "LogLevel",
    "MigrationStatus",
    "OperationType",
    "OverallStatus",
    "ResolutionStrategy",
    "utc_now",
]
