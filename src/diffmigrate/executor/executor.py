"""
Migration executor: dependency-ordered, checkpointed, retryable batches.

The executor takes one MigrationTask per entity type, groups the tasks
into dependency levels and runs each level with at most
`parallel_entity_limit` entities in flight. Within an entity the record
ids are processed strictly in order, `batch_size` ids at a time:

- each batch goes through the retry state machine; transient failures
  (connection loss, batch timeout) are retried, everything else fails
  the batch at once
- a batch where nothing succeeded stops the entity; other entities and
  later levels carry on
- progress is written to the checkpoint store on the first batch, every
  `checkpoint_interval` batches and when the entity stops

The checkpoint of an entity records how many records are behind it and
which ids are still pending, so `resume()` continues with the next batch
number and never re-emits a batch the checkpoint already covers.
Records rejected individually inside a partially successful batch count
as covered: they leave the pending list and are listed under
`failed_record_ids` in the checkpoint data instead. `resume()` does not
replay them; fix the data and submit them as a new task.

Example:
    >>> executor = MigrationExecutor(
    ...     LEGACY_CATALOG,
    ...     CopyRecordMigrator(source, destination),
    ...     InMemoryCheckpointStore(),
    ... )
    >>> result = await executor.execute([
    ...     MigrationTask("offices", ["1", "2"]),
    ...     MigrationTask("doctors", ["10"], dependencies=("offices",)),
    ... ])
    >>> result.overall_status
    <ExecutionStatus.COMPLETED: 'completed'>
"""

from __future__ import annotations

import asyncio
import logging
import resource
import sys
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from diffmigrate.catalog import EntityCatalog, EntityDescriptor
from diffmigrate.config import ExecutionConfig, ensure_valid
from diffmigrate.exceptions import (
    BatchTimeoutError,
    CheckpointNotFoundError,
    ConfigurationError,
    ErrorDetail,
    InvariantViolationError,
    RetryConfig,
)
from diffmigrate.execution_log import ExecutionLogger
from diffmigrate.executor.graph import DependencyGraph, build_dependency_graph
from diffmigrate.executor.processor import RecordMigrator
from diffmigrate.integrity import IntegrityChecker, IntegrityValidation, sample_ids
from diffmigrate.models import Checkpoint, MigrationStatus, OperationType, OverallStatus, utc_now
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_CHECKPOINT_ID,
    ATTR_ENTITY_COUNT,
    ATTR_ENTITY_TYPE,
    ATTR_RETRY_COUNT,
    ATTR_RUN_ID,
    ATTR_SESSION_ID,
)
from diffmigrate.repositories.checkpoint import CheckpointStore
from diffmigrate.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

# Recovery thresholds
HIGH_FAILURE_RATIO = 0.1
HIGH_MEMORY_MB = 400.0


def process_memory_mb() -> float:
    """Peak resident set size of the current process in megabytes."""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # macOS reports bytes, Linux kilobytes
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(peak / divisor, 2)


class TaskPriority(Enum):
    """Priority of a task within its dependency level."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


@dataclass
class MigrationTask:
    """
    Work for one entity type.

    Attributes:
        entity_type: Entity to migrate.
        record_ids: Source ids to migrate, in processing order.
        priority: Order within the dependency level.
        dependencies: Entity types that must run first; None takes them
            from the catalog.
        checkpoint_data: Extra state stored with every checkpoint of the task.
        resume_from: Checkpoint the task continues from.
    """

    entity_type: str
    record_ids: list[Any]
    priority: TaskPriority = TaskPriority.MEDIUM
    dependencies: tuple[str, ...] | None = None
    checkpoint_data: dict[str, Any] = field(default_factory=dict)
    resume_from: Checkpoint | None = None

    @property
    def total_records(self) -> int:
        if self.resume_from is not None:
            return self.resume_from.total_records
        return len(self.record_ids)


class BatchStatus(Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchPerformance:
    started_at: datetime
    completed_at: datetime
    duration_ms: float
    records_per_second: float
    memory_usage_mb: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
            "records_per_second": self.records_per_second,
            "memory_usage_mb": self.memory_usage_mb,
        }


@dataclass
class BatchResult:
    """
    Outcome of one batch.

    Every record that failed appears in `errors` with its own
    `retryable` flag. `retry_count` is the number of retries spent on
    transient failures of the whole batch.
    """

    batch_id: str
    entity_type: str
    batch_number: int
    record_ids: list[Any]
    status: BatchStatus
    processed_records: int
    failed_records: int
    errors: list[ErrorDetail]
    performance: BatchPerformance
    retry_count: int = 0
    successful_ids: list[str] = field(default_factory=list)
    checkpoint_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "entity_type": self.entity_type,
            "batch_number": self.batch_number,
            "record_count": len(self.record_ids),
            "status": self.status.value,
            "processed_records": self.processed_records,
            "failed_records": self.failed_records,
            "errors": [error.to_dict() for error in self.errors],
            "performance": self.performance.to_dict(),
            "retry_count": self.retry_count,
            "checkpoint_id": self.checkpoint_id,
        }


class EntityStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


@dataclass
class EntityResult:
    entity_type: str
    status: EntityStatus
    records_processed: int = 0
    records_failed: int = 0
    batches: list[BatchResult] = field(default_factory=list)
    checkpoint_id: str | None = None
    peak_memory_mb: float = 0.0
    validation: IntegrityValidation | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "status": self.status.value,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "batch_count": len(self.batches),
            "checkpoint_id": self.checkpoint_id,
            "peak_memory_mb": self.peak_memory_mb,
            "validation": self.validation.to_dict() if self.validation else None,
        }


class ExecutionStatus(Enum):
    """Overall outcome of an execution."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    PAUSED = "paused"


@dataclass(frozen=True)
class ExecutionSummary:
    started_at: datetime
    completed_at: datetime
    duration_ms: float
    total_batches: int
    total_records: int
    average_throughput: float
    peak_memory_mb: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
            "total_batches": self.total_batches,
            "total_records": self.total_records,
            "average_throughput": self.average_throughput,
            "peak_memory_mb": self.peak_memory_mb,
        }


@dataclass(frozen=True)
class RecoveryInfo:
    is_recoverable: bool
    last_checkpoint_id: str | None
    resume_from_batch: int
    recommended_actions: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_recoverable": self.is_recoverable,
            "last_checkpoint_id": self.last_checkpoint_id,
            "resume_from_batch": self.resume_from_batch,
            "recommended_actions": list(self.recommended_actions),
        }


@dataclass
class MigrationExecutionResult:
    """
    Aggregated outcome of `execute()`.

    `overall_status` is PARTIAL when some entities completed and some
    failed, FAILED when entities failed and none completed, PAUSED when
    `pause()` stopped a run in which nothing failed, and COMPLETED
    otherwise. A failure always outranks a pause; the paused entities are
    still listed in `entities_paused`.
    """

    execution_id: str
    session_id: str
    overall_status: ExecutionStatus
    entities_processed: list[str]
    entities_failed: list[str]
    entities_paused: list[str]
    total_records_processed: int
    total_records_failed: int
    entity_results: dict[str, EntityResult]
    batch_results: list[BatchResult]
    checkpoints: list[str]
    execution_order: list[list[str]]
    scheduling_anomalies: list[str]
    summary: ExecutionSummary
    recovery: RecoveryInfo

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "session_id": self.session_id,
            "overall_status": self.overall_status.value,
            "entities_processed": list(self.entities_processed),
            "entities_failed": list(self.entities_failed),
            "entities_paused": list(self.entities_paused),
            "total_records_processed": self.total_records_processed,
            "total_records_failed": self.total_records_failed,
            "entity_results": {k: v.to_dict() for k, v in self.entity_results.items()},
            "batch_results": [batch.to_dict() for batch in self.batch_results],
            "checkpoints": list(self.checkpoints),
            "execution_order": [list(level) for level in self.execution_order],
            "scheduling_anomalies": list(self.scheduling_anomalies),
            "summary": self.summary.to_dict(),
            "recovery": self.recovery.to_dict(),
        }


class ExecutorEventType(Enum):
    ENTITY_STARTED = "entity_started"
    BATCH_COMPLETED = "batch_completed"
    ENTITY_COMPLETED = "entity_completed"
    ENTITY_FAILED = "entity_failed"
    ENTITY_PAUSED = "entity_paused"


@dataclass(frozen=True)
class ExecutorEvent:
    """
    Progress notification delivered to executor listeners.

    `data` of a BATCH_COMPLETED event carries `batch_number`,
    `records_processed` (cumulative, including earlier runs),
    `total_records`, `processed_records`, `failed_records`, `duration_ms`
    and `memory_usage_mb`.
    """

    event_type: ExecutorEventType
    entity_type: str
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


ExecutorListener = Callable[[ExecutorEvent], None]

# Checkpoint data keys
_STATE = "state"
_PENDING_IDS = "pending_record_ids"
_FAILED_IDS = "failed_record_ids"


class MigrationExecutor:
    """
    Runs migration tasks in dependency order with batching, retries and
    checkpoints.

    Args:
        catalog: Entity catalog (source and destination tables)
        migrator: Performs the writes of one batch
        checkpoint_store: Where progress is persisted; the executor is its only writer
        config: Execution configuration
        session_id: Session the execution is logged under
        integrity_checker: Samples migrated records after each entity when
            validation is enabled
        execution_log: Structured execution logger
        memory_sampler: Returns current memory usage in MB
        sleep: Awaitable sleep used for backoff and pacing (injectable for tests)
        tracer: Optional tracer (if not provided, one will be created)
        enable_tracing: Whether to enable OpenTelemetry tracing

    Raises:
        ConfigurationError: If `config` is invalid.
    """

    def __init__(
        self,
        catalog: EntityCatalog,
        migrator: RecordMigrator,
        checkpoint_store: CheckpointStore,
        config: ExecutionConfig | None = None,
        session_id: str | None = None,
        integrity_checker: IntegrityChecker | None = None,
        execution_log: ExecutionLogger | None = None,
        memory_sampler: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.config = config or ExecutionConfig()
        ensure_valid(self.config)
        self._catalog = catalog
        self._migrator = migrator
        self._checkpoints = checkpoint_store
        self.session_id = session_id or str(uuid4())
        self._integrity = integrity_checker
        self._log = execution_log or ExecutionLogger(self.session_id)
        self._memory_sampler = memory_sampler or process_memory_mb
        self._sleep = sleep
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._retry_policy = RetryPolicy(
            max_retries=self.config.max_retry_attempts,
            backoff=RetryConfig(
                max_attempts=self.config.max_retry_attempts + 1,
                base_delay_ms=self.config.retry_base_delay_ms,
                max_delay_ms=max(30_000.0, self.config.retry_base_delay_ms),
            ),
            sleep=sleep,
        )

        self.status = MigrationStatus(session_id=self.session_id)
        self._listeners: list[ExecutorListener] = []
        self._checkpoint_locks: dict[str, asyncio.Lock] = {}
        self._run_lock = asyncio.Lock()
        self._pause_requested = asyncio.Event()
        self._stopped = asyncio.Event()
        self._stopped.set()
        self._last_checkpoint_id: str | None = None

    # -- listeners ------------------------------------------------------------

    def add_listener(self, listener: ExecutorListener) -> Callable[[], None]:
        """
        Register a listener for executor events.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, event_type: ExecutorEventType, entity_type: str, **data: Any) -> None:
        event = ExecutorEvent(event_type, entity_type, self.session_id, data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "Executor listener failed on %s for %s: %s",
                    event_type.value,
                    entity_type,
                    e,
                    exc_info=True,
                )

    # -- checkpoints ------------------------------------------------------------

    def _checkpoint_lock(self, entity_type: str) -> asyncio.Lock:
        lock = self._checkpoint_locks.get(entity_type)
        if lock is None:
            lock = self._checkpoint_locks[entity_type] = asyncio.Lock()
        return lock

    async def _save_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        checkpoint = replace(checkpoint, updated_at=utc_now())
        async with self._checkpoint_lock(checkpoint.entity_type):
            with self._tracer.span(
                "diffmigrate.executor.save_checkpoint",
                {ATTR_ENTITY_TYPE: checkpoint.entity_type, ATTR_CHECKPOINT_ID: checkpoint.id},
            ):
                await self._checkpoints.save(checkpoint)
        self._last_checkpoint_id = checkpoint.id
        await self._log.debug(
            OperationType.CHECKPOINT_SAVE,
            f"Checkpoint saved for {checkpoint.entity_type} at batch {checkpoint.batch_position}",
            entity_type=checkpoint.entity_type,
            context_data={
                "checkpoint_id": checkpoint.id,
                "records_processed": checkpoint.records_processed,
                "records_remaining": checkpoint.records_remaining,
                "state": checkpoint.checkpoint_data.get(_STATE),
            },
        )
        return checkpoint

    async def load_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        """
        Read a checkpoint, waiting for any in-flight write of its entity.

        Raises:
            CheckpointNotFoundError: If no checkpoint has this id.
        """
        checkpoint = await self._checkpoints.get(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(checkpoint_id)
        async with self._checkpoint_lock(checkpoint.entity_type):
            latest = await self._checkpoints.get(checkpoint_id)
        if latest is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return latest

    # -- batches ------------------------------------------------------------

    async def execute_batch(
        self,
        entity_type: str,
        record_ids: Sequence[Any],
        batch_number: int = 1,
    ) -> BatchResult:
        """
        Migrate one batch with retry and timeout.

        Args:
            entity_type: Entity the ids belong to
            record_ids: Source ids of the batch
            batch_number: 1-based position of the batch within the entity run

        Returns:
            BatchResult; never raises for migration failures

        Raises:
            UnknownEntityTypeError: If the entity is not in the catalog.
            InvariantViolationError: If the migrator returned no outcome.
        """
        descriptor = self._catalog.get(entity_type)
        batch_id = f"batch_{entity_type}_{batch_number}_{int(time.time() * 1000)}"
        started_at = utc_now()
        started = time.monotonic()
        ids = list(record_ids)

        with self._tracer.span(
            "diffmigrate.executor.execute_batch",
            {
                ATTR_ENTITY_TYPE: entity_type,
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_BATCH_SIZE: len(ids),
                ATTR_SESSION_ID: self.session_id,
            },
        ) as span:

            async def attempt() -> Any:
                try:
                    return await asyncio.wait_for(
                        self._migrator.migrate(descriptor, ids),
                        timeout=self.config.timeout_ms / 1000,
                    )
                except TimeoutError as e:
                    raise BatchTimeoutError(
                        batch_id, self.config.timeout_ms, entity_type=entity_type
                    ) from e

            outcome = await run_with_retry(attempt, self._retry_policy, batch_id)

            if outcome.succeeded and outcome.value is not None:
                successful = [str(record_id) for record_id in outcome.value.successful]
                errors = list(outcome.value.failed)
            elif outcome.error is None:
                raise InvariantViolationError(
                    f"Batch {batch_id} ended without a result or an error",
                    entity_type=entity_type,
                )
            else:
                successful = []
                errors = [replace(outcome.error, record_id=str(record_id)) for record_id in ids]

            processed = len(successful)
            failed = len(errors)
            if failed == 0:
                status = BatchStatus.SUCCESS
            elif processed > 0:
                status = BatchStatus.PARTIAL_SUCCESS
            else:
                status = BatchStatus.FAILED

            duration_ms = (time.monotonic() - started) * 1000
            result = BatchResult(
                batch_id=batch_id,
                entity_type=entity_type,
                batch_number=batch_number,
                record_ids=ids,
                status=status,
                processed_records=processed,
                failed_records=failed,
                errors=errors,
                performance=BatchPerformance(
                    started_at=started_at,
                    completed_at=utc_now(),
                    duration_ms=round(duration_ms, 2),
                    records_per_second=(
                        round(processed / duration_ms * 1000, 2) if duration_ms > 0 else 0.0
                    ),
                    memory_usage_mb=self._memory_sampler(),
                ),
                retry_count=outcome.retries,
                successful_ids=successful,
            )
            if span is not None:
                span.set_attribute(ATTR_RETRY_COUNT, outcome.retries)

        log = self._log.error if status == BatchStatus.FAILED else self._log.info
        await log(
            OperationType.RECORD_MIGRATION,
            f"Batch {batch_number} for {entity_type} {status.value}: "
            f"{processed} processed, {failed} failed",
            entity_type=entity_type,
            error_details=(
                {"errors": [error.to_dict() for error in errors[:10]]} if errors else None
            ),
            performance_data=result.performance.to_dict(),
            context_data={"batch_id": batch_id, "retry_count": outcome.retries},
        )
        return result

    # -- entities ---------------------------------------------------------------

    def _checkpoint_data(
        self,
        task: MigrationTask,
        pending: list[Any],
        state: str,
        succeeded: int,
        failed: int,
        failed_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        base = dict(task.resume_from.checkpoint_data) if task.resume_from else {}
        base.update(task.checkpoint_data)
        base.update(
            {
                _STATE: state,
                _PENDING_IDS: list(pending),
                "batch_size": self.config.batch_size,
                "priority": task.priority.value,
                "dependencies": list(self._dependencies_of(task)),
                "records_succeeded": int(base.get("records_succeeded", 0)) + succeeded,
                "records_failed": int(base.get("records_failed", 0)) + failed,
                _FAILED_IDS: list(base.get(_FAILED_IDS, [])) + list(failed_ids or []),
            }
        )
        return base

    def _dependencies_of(self, task: MigrationTask) -> tuple[str, ...]:
        if task.dependencies is not None:
            return task.dependencies
        return tuple(sorted(self._catalog.get(task.entity_type).dependencies))

    async def _run_entity(
        self, task: MigrationTask, descriptor: EntityDescriptor, run_id: str
    ) -> EntityResult:
        entity_type = task.entity_type
        result = EntityResult(entity_type=entity_type, status=EntityStatus.COMPLETED)
        pending = list(task.record_ids)
        checkpoint = task.resume_from or Checkpoint(
            entity_type=entity_type,
            migration_run_id=run_id,
            records_processed=0,
            records_remaining=len(pending),
        )
        total = checkpoint.total_records
        first_batch = checkpoint.batch_position + 1
        batch_number = checkpoint.batch_position
        succeeded_ids: list[str] = []
        failed_ids: list[str] = []
        succeeded = failed = 0

        self.status.mark_running(entity_type)
        self._emit(
            ExecutorEventType.ENTITY_STARTED,
            entity_type,
            total_records=total,
            records_processed=checkpoint.records_processed,
            resumed_from_batch=checkpoint.batch_position,
        )
        await self._log.info(
            OperationType.RECORD_MIGRATION,
            f"Starting {entity_type}: {len(pending)} records from batch {first_batch}",
            entity_type=entity_type,
            context_data={"run_id": run_id, "total_records": total},
        )

        state = "running"
        while pending:
            if self._pause_requested.is_set():
                state = "paused"
                result.status = EntityStatus.PAUSED
                break

            batch_number += 1
            batch = pending[: self.config.batch_size]
            batch_result = await self.execute_batch(entity_type, batch, batch_number)
            result.batches.append(batch_result)
            result.peak_memory_mb = max(
                result.peak_memory_mb, batch_result.performance.memory_usage_mb
            )

            if batch_result.status == BatchStatus.FAILED:
                result.records_failed += batch_result.failed_records
                self.status.failed_records += batch_result.failed_records
                state = "failed"
                result.status = EntityStatus.FAILED
                break

            pending = pending[len(batch) :]
            result.records_processed += batch_result.processed_records
            result.records_failed += batch_result.failed_records
            succeeded += batch_result.processed_records
            failed += batch_result.failed_records
            succeeded_ids.extend(batch_result.successful_ids)
            failed_ids.extend(e.record_id for e in batch_result.errors if e.record_id is not None)
            self.status.processed_records += batch_result.processed_records
            self.status.failed_records += batch_result.failed_records

            checkpoint = replace(
                checkpoint,
                records_processed=checkpoint.records_processed + len(batch),
                records_remaining=checkpoint.records_remaining - len(batch),
                batch_position=batch_number,
                last_processed_cursor=str(batch[-1]),
            )
            if batch_number == first_batch or batch_number % self.config.checkpoint_interval == 0:
                checkpoint = await self._save_checkpoint(
                    replace(
                        checkpoint,
                        checkpoint_data=self._checkpoint_data(
                            task, pending, "running", succeeded, failed, failed_ids
                        ),
                    )
                )
                batch_result.checkpoint_id = checkpoint.id
                # Counters are now part of the stored data
                task = replace(task, resume_from=checkpoint, checkpoint_data={})
                succeeded = failed = 0
                failed_ids = []

            self._emit(
                ExecutorEventType.BATCH_COMPLETED,
                entity_type,
                batch_number=batch_number,
                batch_status=batch_result.status.value,
                records_processed=checkpoint.records_processed,
                total_records=total,
                processed_records=batch_result.processed_records,
                failed_records=batch_result.failed_records,
                duration_ms=batch_result.performance.duration_ms,
                memory_usage_mb=batch_result.performance.memory_usage_mb,
            )

            if pending and self.config.batch_delay_ms > 0:
                await self._sleep(self.config.batch_delay_ms / 1000)

        if state == "running":
            state = "completed"

        checkpoint = await self._save_checkpoint(
            replace(
                checkpoint,
                checkpoint_data=self._checkpoint_data(
                    task, pending, state, succeeded, failed, failed_ids
                ),
            )
        )
        result.checkpoint_id = checkpoint.id

        if result.status == EntityStatus.COMPLETED:
            if self.config.enable_validation and self._integrity is not None and succeeded_ids:
                result.validation = await self.validate_migration_integrity(
                    entity_type, succeeded_ids
                )
            self.status.mark_completed(entity_type)
            self._emit(
                ExecutorEventType.ENTITY_COMPLETED,
                entity_type,
                records_processed=checkpoint.records_processed,
                total_records=total,
            )
        elif result.status == EntityStatus.PAUSED:
            self.status.mark_pending(entity_type)
            self._emit(
                ExecutorEventType.ENTITY_PAUSED,
                entity_type,
                checkpoint_id=checkpoint.id,
                records_processed=checkpoint.records_processed,
                total_records=total,
            )
        else:
            self.status.mark_failed(entity_type)
            last_error = result.batches[-1].errors[0] if result.batches[-1].errors else None
            self._emit(
                ExecutorEventType.ENTITY_FAILED,
                entity_type,
                checkpoint_id=checkpoint.id,
                records_processed=checkpoint.records_processed,
                total_records=total,
                error=last_error.to_dict() if last_error else None,
            )

        await self._log.info(
            OperationType.RECORD_MIGRATION,
            f"{entity_type} {result.status.value}: {result.records_processed} processed, "
            f"{result.records_failed} failed",
            entity_type=entity_type,
            context_data={"checkpoint_id": checkpoint.id, "batches": len(result.batches)},
        )
        return result

    async def validate_migration_integrity(
        self, entity_type: str, record_ids: Sequence[Any], sample_size: int | None = None
    ) -> IntegrityValidation:
        """
        Compare a sample of migrated records with their source rows.

        Args:
            entity_type: Entity to validate
            record_ids: Migrated source ids to sample from
            sample_size: Records to compare (defaults to validation_sample_size)

        Raises:
            ConfigurationError: If no integrity checker was configured.
        """
        if self._integrity is None:
            raise ConfigurationError("No integrity checker configured", entity_type=entity_type)
        descriptor = self._catalog.get(entity_type)
        validation = await self._integrity.check(
            descriptor,
            sample_ids(record_ids, sample_size or self.config.validation_sample_size),
        )
        if not validation.is_valid:
            await self._log.warn(
                OperationType.VALIDATION,
                f"Validation failed for {entity_type}: {validation.match_percentage}% match",
                entity_type=entity_type,
                context_data=validation.to_dict(),
            )
        return validation

    # -- execution ------------------------------------------------------------

    async def execute(
        self, tasks: Sequence[MigrationTask], run_id: str | None = None
    ) -> MigrationExecutionResult:
        """
        Run the tasks level by level.

        Args:
            tasks: One task per entity type
            run_id: Run the checkpoints belong to (a new run when omitted)

        Returns:
            MigrationExecutionResult describing every entity and batch

        Raises:
            UnknownEntityTypeError: If a task names an entity not in the catalog.
            ConfigurationError: If two tasks name the same entity type.
        """
        descriptors = {task.entity_type: self._catalog.get(task.entity_type) for task in tasks}
        if len(descriptors) != len(tasks):
            raise ConfigurationError("Each entity type may appear in one task only")

        async with self._run_lock:
            self._pause_requested.clear()
            self._stopped.clear()
            try:
                return await self._execute(tasks, descriptors, run_id or str(uuid4()))
            finally:
                self._stopped.set()

    async def _execute(
        self,
        tasks: Sequence[MigrationTask],
        descriptors: dict[str, EntityDescriptor],
        run_id: str,
    ) -> MigrationExecutionResult:
        started_at = utc_now()
        started = time.monotonic()
        by_entity = {task.entity_type: task for task in tasks}
        graph: DependencyGraph = build_dependency_graph(
            {task.entity_type: self._dependencies_of(task) for task in tasks}
        )
        anomalies = (
            [f"Dependency cycle among tasks: {', '.join(graph.cycle_members)}"]
            if graph.has_cycle
            else []
        )

        self.status = MigrationStatus(
            session_id=self.session_id,
            overall_status=OverallStatus.RUNNING,
            total_records=sum(task.total_records for task in tasks),
            started_at=started_at,
        )
        for task in tasks:
            self.status.mark_pending(task.entity_type)

        with self._tracer.span(
            "diffmigrate.executor.execute",
            {ATTR_RUN_ID: run_id, ATTR_ENTITY_COUNT: len(tasks), ATTR_SESSION_ID: self.session_id},
        ):
            await self._log.info(
                OperationType.RECORD_MIGRATION,
                f"Starting migration execution with {len(tasks)} tasks",
                context_data={
                    "run_id": run_id,
                    "execution_order": graph.execution_order,
                    "anomalies": anomalies,
                },
            )
            for anomaly in anomalies:
                await self._log.warn(OperationType.RECORD_MIGRATION, anomaly)

            entity_results: dict[str, EntityResult] = {}
            semaphore = asyncio.Semaphore(self.config.parallel_entity_limit)

            async def bounded(task: MigrationTask) -> EntityResult:
                async with semaphore:
                    return await self._run_entity(task, descriptors[task.entity_type], run_id)

            for level_index, level in enumerate(graph.execution_order):
                level_tasks = sorted(
                    (by_entity[entity] for entity in level), key=lambda t: t.priority.rank
                )
                if self._pause_requested.is_set():
                    for task in level_tasks:
                        entity_results[task.entity_type] = await self._park(task, run_id)
                    continue
                logger.debug("Executing level %d: %s", level_index + 1, ", ".join(level))
                for entity_result in await asyncio.gather(*(bounded(t) for t in level_tasks)):
                    entity_results[entity_result.entity_type] = entity_result

            result = self._build_result(
                run_id, entity_results, graph, anomalies, started_at, started
            )

        await self._log.info(
            OperationType.RECORD_MIGRATION,
            f"Migration execution {result.overall_status.value}",
            performance_data=result.summary.to_dict(),
            context_data={
                "run_id": run_id,
                "entities_processed": result.entities_processed,
                "entities_failed": result.entities_failed,
                "entities_paused": result.entities_paused,
            },
        )
        return result

    async def _park(self, task: MigrationTask, run_id: str) -> EntityResult:
        """Record an entity the pause stopped before it started."""
        checkpoint = task.resume_from or Checkpoint(
            entity_type=task.entity_type,
            migration_run_id=run_id,
            records_processed=0,
            records_remaining=len(task.record_ids),
        )
        checkpoint = await self._save_checkpoint(
            replace(
                checkpoint,
                checkpoint_data=self._checkpoint_data(task, list(task.record_ids), "paused", 0, 0),
            )
        )
        self._emit(
            ExecutorEventType.ENTITY_PAUSED,
            task.entity_type,
            checkpoint_id=checkpoint.id,
            records_processed=checkpoint.records_processed,
            total_records=checkpoint.total_records,
        )
        return EntityResult(
            entity_type=task.entity_type,
            status=EntityStatus.PAUSED,
            checkpoint_id=checkpoint.id,
        )

    def _build_result(
        self,
        run_id: str,
        entity_results: dict[str, EntityResult],
        graph: DependencyGraph,
        anomalies: list[str],
        started_at: datetime,
        started: float,
    ) -> MigrationExecutionResult:
        processed = [e for e, r in entity_results.items() if r.status == EntityStatus.COMPLETED]
        failed = [e for e, r in entity_results.items() if r.status == EntityStatus.FAILED]
        paused = [e for e, r in entity_results.items() if r.status == EntityStatus.PAUSED]
        batches = [batch for r in entity_results.values() for batch in r.batches]
        total_processed = sum(r.records_processed for r in entity_results.values())
        total_failed = sum(r.records_failed for r in entity_results.values())
        peak_memory = max((r.peak_memory_mb for r in entity_results.values()), default=0.0)

        if failed:
            overall = ExecutionStatus.PARTIAL if processed else ExecutionStatus.FAILED
            self.status.overall_status = OverallStatus.FAILED
        elif paused:
            overall = ExecutionStatus.PAUSED
            self.status.overall_status = OverallStatus.PAUSED
        else:
            overall = ExecutionStatus.COMPLETED
            self.status.overall_status = OverallStatus.COMPLETED
        completed_at = utc_now()
        self.status.completed_at = completed_at

        checkpoints = [r.checkpoint_id for r in entity_results.values() if r.checkpoint_id]
        failed_checkpoints = [
            entity_results[entity].checkpoint_id
            for entity in failed
            if entity_results[entity].checkpoint_id
        ]
        is_recoverable = bool(failed_checkpoints or paused)

        actions: list[str] = []
        if failed:
            actions.append(f"Review and fix errors for failed entities: {', '.join(failed)}")
        if is_recoverable:
            actions.append("Use checkpoint-based recovery to resume from last successful batch")
        if total_failed > total_processed * HIGH_FAILURE_RATIO:
            actions.append(
                "High failure rate detected - investigate data quality issues before retrying"
            )
        if peak_memory > HIGH_MEMORY_MB:
            actions.append("High memory usage detected - consider reducing batch size")

        duration_ms = (time.monotonic() - started) * 1000
        last_checkpoint = (failed_checkpoints or checkpoints or [None])[-1]
        return MigrationExecutionResult(
            execution_id=run_id,
            session_id=self.session_id,
            overall_status=overall,
            entities_processed=processed,
            entities_failed=failed,
            entities_paused=paused,
            total_records_processed=total_processed,
            total_records_failed=total_failed,
            entity_results=entity_results,
            batch_results=batches,
            checkpoints=checkpoints,
            execution_order=graph.execution_order,
            scheduling_anomalies=anomalies,
            summary=ExecutionSummary(
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=round(duration_ms, 2),
                total_batches=len(batches),
                total_records=total_processed + total_failed,
                average_throughput=(
                    round(total_processed / duration_ms * 1000, 2) if duration_ms > 0 else 0.0
                ),
                peak_memory_mb=peak_memory,
            ),
            recovery=RecoveryInfo(
                is_recoverable=is_recoverable,
                last_checkpoint_id=last_checkpoint,
                resume_from_batch=len(batches),
                recommended_actions=actions,
            ),
        )

    # -- pause / resume ---------------------------------------------------------

    async def pause(self) -> str | None:
        """
        Stop the running execution after its in-flight batches.

        In-flight batches complete; each running entity then writes a
        paused checkpoint, as does every entity that had not started.

        Returns:
            Id of the last checkpoint written, or None if nothing was running
        """
        if self._stopped.is_set():
            return None
        self._pause_requested.set()
        await self._stopped.wait()
        await self._log.info(
            OperationType.CHECKPOINT_SAVE,
            "Migration execution paused",
            context_data={"checkpoint_id": self._last_checkpoint_id},
        )
        return self._last_checkpoint_id

    async def resume(self, checkpoint_id: str) -> MigrationExecutionResult:
        """
        Continue the run a checkpoint belongs to.

        Every entity of that run whose latest checkpoint still has pending
        records (paused or failed) is resumed from its next batch. Ids in
        `failed_record_ids` were rejected record by record and are not
        part of the pending list.

        Raises:
            CheckpointNotFoundError: If no checkpoint has this id.
        """
        anchor = await self.load_checkpoint(checkpoint_id)
        run_id = anchor.migration_run_id
        tasks: list[MigrationTask] = []
        for checkpoint in await self._checkpoints.list_for_run(run_id):
            pending = list(checkpoint.checkpoint_data.get(_PENDING_IDS, []))
            if checkpoint.checkpoint_data.get(_STATE) == "completed" or not pending:
                continue
            tasks.append(
                MigrationTask(
                    entity_type=checkpoint.entity_type,
                    record_ids=pending,
                    priority=TaskPriority(checkpoint.checkpoint_data.get("priority", "medium")),
                    dependencies=tuple(checkpoint.checkpoint_data.get("dependencies", ())),
                    resume_from=checkpoint,
                )
            )

        await self._log.info(
            OperationType.CHECKPOINT_RESTORE,
            f"Resuming run {run_id} from checkpoint {checkpoint_id}",
            entity_type=anchor.entity_type,
            context_data={
                "run_id": run_id,
                "entities": [task.entity_type for task in tasks],
                "resumed_from_batch": anchor.batch_position,
            },
        )
        return await self.execute(tasks, run_id=run_id)


__all__ = [
    "BatchPerformance",
    "BatchResult",
    "BatchStatus",
    "EntityResult",
    "EntityStatus",
    "ExecutionStatus",
    "ExecutionSummary",
    "ExecutorEvent",
    "ExecutorEventType",
    "ExecutorListener",
    "MigrationExecutionResult",
    "MigrationExecutor",
    "MigrationTask",
    "RecoveryInfo",
    "TaskPriority",
    "process_memory_mb",
]
