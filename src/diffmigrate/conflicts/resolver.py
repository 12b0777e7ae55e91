"""
Conflict detection and resolution.

Detection compares every record of an entity on both sides and records
three kinds of DataDifferential in the audit trail:

- missing_records: source rows with no destination row
- conflicted_records: destination rows modified after the last migration
  that no longer match their source row
- deleted_records: destination rows whose source row is gone

Resolution applies one strategy to a list of differentials:

- source_wins: missing rows are inserted, conflicted rows overwritten and
  deleted rows removed, all from the current source state
- target_wins: nothing is written; the differential is marked resolved
- manual: nothing is written and the differential stays unresolved

The writes of one differential run in a single destination transaction.
A failure rolls the transaction back and leaves the differential
unresolved; a success flips it to resolved. Resolving a differential that
is already resolved writes nothing.

Example:
    >>> resolver = ConflictResolver(source, destination, LEGACY_CATALOG, store)
    >>> conflicts = await resolver.detect_conflicts(["doctors"], since=last_run)
    >>> results = await resolver.resolve_conflicts(conflicts, ResolutionStrategy.SOURCE_WINS)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from diffmigrate.catalog import EntityCatalog, EntityDescriptor
from diffmigrate.config import DetectionConfig, ResolutionOptions, ensure_valid
from diffmigrate.conflicts.backup import BackupInfo, BackupStore, InMemoryBackupStore
from diffmigrate.exceptions import DataValidationError, ErrorDetail, RetryConfig
from diffmigrate.execution_log import ExecutionLogger
from diffmigrate.executor.processor import to_destination_row
from diffmigrate.gateway import Row, TableGateway
from diffmigrate.integrity import IntegrityChecker, IntegrityValidation
from diffmigrate.models import (
    ComparisonType,
    DataDifferential,
    LogLevel,
    OperationType,
    ResolutionStrategy,
    utc_now,
)
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import (
    ATTR_CHANGE_COUNT,
    ATTR_DIFFERENTIAL_ID,
    ATTR_ENTITY_COUNT,
    ATTR_ENTITY_TYPE,
    ATTR_RECORD_COUNT,
    ATTR_RESOLUTION_STRATEGY,
    ATTR_RETRY_COUNT,
)
from diffmigrate.repositories._connection import parse_timestamp
from diffmigrate.repositories.differential import DifferentialStore
from diffmigrate.retry import RetryPolicy, run_with_retry
from diffmigrate.serialization import content_hash

logger = logging.getLogger(__name__)

# Estimated cost of resolving one conflicted record
ESTIMATED_MS_PER_CONFLICT = 100

# Mismatch detail kept per conflicted differential
MAX_MISMATCH_DETAIL = 100


class ResolutionStatus(Enum):
    """Outcome of resolving one differential."""

    RESOLVED = "resolved"
    SKIPPED = "skipped"
    PENDING_MANUAL = "pending_manual"
    DRY_RUN = "dry_run"
    FAILED = "failed"


class ConflictSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def for_count(cls, conflict_count: int) -> ConflictSeverity:
        if conflict_count < 10:
            return cls.LOW
        if conflict_count < 100:
            return cls.MEDIUM
        if conflict_count < 1000:
            return cls.HIGH
        return cls.CRITICAL


@dataclass
class ConflictResolutionResult:
    """
    Outcome of resolving one DataDifferential.

    Attributes:
        differential_id: Differential the result belongs to.
        entity_type: Entity of the affected records.
        comparison_type: Kind of differential.
        strategy: Strategy applied.
        status: What happened.
        records_affected: Destination rows written or deleted (or that
            would be, for a dry run).
        retry_count: Retries spent on transient failures.
        backup: Snapshot taken before writing, if any.
        validation: Post-write comparison, if requested.
        error: Why the resolution failed.
        duration_ms: Time spent on this differential.
    """

    differential_id: str
    entity_type: str
    comparison_type: ComparisonType
    strategy: ResolutionStrategy
    status: ResolutionStatus
    records_affected: int = 0
    retry_count: int = 0
    backup: BackupInfo | None = None
    validation: IntegrityValidation | None = None
    error: ErrorDetail | None = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "differential_id": self.differential_id,
            "entity_type": self.entity_type,
            "comparison_type": self.comparison_type.value,
            "strategy": self.strategy.value,
            "status": self.status.value,
            "records_affected": self.records_affected,
            "retry_count": self.retry_count,
            "backup": self.backup.to_dict() if self.backup else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "error": self.error.to_dict() if self.error else None,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class EntityConflictSummary:
    entity_type: str
    conflicts: int
    records: int
    resolved: int
    failed: int
    severity: ConflictSeverity
    estimated_resolution_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "conflicts": self.conflicts,
            "records": self.records,
            "resolved": self.resolved,
            "failed": self.failed,
            "severity": self.severity.value,
            "estimated_resolution_ms": self.estimated_resolution_ms,
        }


@dataclass
class ConflictResolutionSummary:
    """Aggregate of a resolve_all_conflicts call."""

    strategy: ResolutionStrategy
    dry_run: bool
    results: list[ConflictResolutionResult] = field(default_factory=list)
    entities: dict[str, EntityConflictSummary] = field(default_factory=dict)
    duration_ms: float = 0.0
    recommendations: list[str] = field(default_factory=list)

    def _count(self, status: ResolutionStatus) -> int:
        return sum(1 for result in self.results if result.status == status)

    @property
    def total_conflicts(self) -> int:
        return len(self.results)

    @property
    def resolved_conflicts(self) -> int:
        return self._count(ResolutionStatus.RESOLVED)

    @property
    def failed_conflicts(self) -> int:
        return self._count(ResolutionStatus.FAILED)

    @property
    def skipped_conflicts(self) -> int:
        return self._count(ResolutionStatus.SKIPPED) + self._count(ResolutionStatus.DRY_RUN)

    @property
    def pending_manual(self) -> int:
        return self._count(ResolutionStatus.PENDING_MANUAL)

    @property
    def records_affected(self) -> int:
        return sum(result.records_affected for result in self.results)

    @property
    def backups(self) -> list[BackupInfo]:
        return [result.backup for result in self.results if result.backup is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "dry_run": self.dry_run,
            "total_conflicts": self.total_conflicts,
            "resolved_conflicts": self.resolved_conflicts,
            "failed_conflicts": self.failed_conflicts,
            "skipped_conflicts": self.skipped_conflicts,
            "pending_manual": self.pending_manual,
            "records_affected": self.records_affected,
            "backups": [backup.to_dict() for backup in self.backups],
            "entities": {k: v.to_dict() for k, v in self.entities.items()},
            "duration_ms": self.duration_ms,
            "recommendations": list(self.recommendations),
            "results": [result.to_dict() for result in self.results],
        }


class _StillDivergent(DataValidationError):
    pass


class ConflictResolver:
    """
    Detects conflicts between source and destination and resolves them.

    The resolver is the only writer of the DataDifferential audit trail.

    Args:
        source: Gateway to the legacy database
        destination: Gateway to the destination database
        catalog: Entity catalog
        differential_store: Audit trail of detected differentials
        backup_store: Where pre-resolution snapshots go (in memory by default)
        config: Detection configuration (timestamp field, hashing, page size)
        session_id: Session the operations are logged under
        execution_log: Structured execution logger
        sleep: Awaitable sleep used for retry backoff (injectable for tests)
        tracer: Optional tracer (if not provided, one will be created)
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        source: TableGateway,
        destination: TableGateway,
        catalog: EntityCatalog,
        differential_store: DifferentialStore,
        backup_store: BackupStore | None = None,
        config: DetectionConfig | None = None,
        session_id: str | None = None,
        execution_log: ExecutionLogger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.config = config or DetectionConfig()
        ensure_valid(self.config)
        self._source = source
        self._destination = destination
        self._catalog = catalog
        self._store = differential_store
        self._backups = backup_store or InMemoryBackupStore()
        self.session_id = session_id or str(uuid4())
        self._log = execution_log or ExecutionLogger(self.session_id)
        self._sleep = sleep
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._integrity = IntegrityChecker(
            source,
            destination,
            exclude_fields=self.config.exclude_fields,
            tracer=self._tracer,
        )

    # -- detection --------------------------------------------------------------

    def _timestamp_field(self, descriptor: EntityDescriptor) -> str:
        return descriptor.timestamp_field or self.config.timestamp_field

    def _compare_hash(self, descriptor: EntityDescriptor, source_row: Row, row: Row) -> str:
        """Hash of `row` restricted to the columns of the source row."""
        excluded = [
            *self.config.exclude_fields,
            self._timestamp_field(descriptor),
            descriptor.id_field,
            descriptor.legacy_id_field,
        ]
        return content_hash(
            {name: row.get(name) for name in source_row},
            algorithm=self.config.hash_algorithm,
            exclude_fields=excluded,
        )

    async def detect_conflicts(
        self, entity_types: Sequence[str], since: datetime | None = None
    ) -> list[DataDifferential]:
        """
        Compare source and destination and record the differences.

        Args:
            entity_types: Entities to compare
            since: Last successful migration; destination rows modified at
                or before it are not conflicts (None treats every
                diverging row as a conflict)

        Returns:
            The new differentials, already stored in the audit trail

        Raises:
            UnknownEntityTypeError: If an entity is not in the catalog.
        """
        descriptors = [self._catalog.get(entity_type) for entity_type in entity_types]
        since = parse_timestamp(since)
        detected: list[DataDifferential] = []

        with self._tracer.span(
            "diffmigrate.conflicts.detect_conflicts",
            {ATTR_ENTITY_COUNT: len(descriptors)},
        ) as span:
            for descriptor in descriptors:
                differentials = await self._detect_entity(descriptor, since)
                for differential in differentials:
                    await self._store.add(differential)
                detected.extend(differentials)
                await self._log.info(
                    OperationType.CONFLICT_RESOLUTION,
                    f"Detected {sum(d.record_count for d in differentials)} conflicted records "
                    f"in {len(differentials)} differentials",
                    entity_type=descriptor.entity_type,
                    context_data={
                        d.comparison_type.value: d.record_count for d in differentials
                    },
                )
            if span is not None:
                span.set_attribute(ATTR_CHANGE_COUNT, len(detected))
        return detected

    async def _detect_entity(
        self, descriptor: EntityDescriptor, since: datetime | None
    ) -> list[DataDifferential]:
        timestamp_field = self._timestamp_field(descriptor)
        missing: list[Any] = []
        conflicted: list[Any] = []
        mismatches: dict[str, list[str]] = {}
        compared_fields: set[str] = set()

        after: Any = None
        while True:
            source_rows = await self._source.fetch_after(
                descriptor.source_table, descriptor.id_field, after, self.config.batch_size
            )
            if not source_rows:
                break
            after = source_rows[-1][descriptor.id_field]
            ids = [row[descriptor.id_field] for row in source_rows]
            destination_rows = {
                str(row[descriptor.legacy_id_field]): row
                for row in await self._destination.fetch_by_ids(
                    descriptor.destination_table, descriptor.legacy_id_field, ids
                )
            }
            for source_row in source_rows:
                record_id = source_row[descriptor.id_field]
                destination_row = destination_rows.get(str(record_id))
                if destination_row is None:
                    missing.append(record_id)
                    continue
                modified_at = parse_timestamp(destination_row.get(timestamp_field))
                if since is not None and (modified_at is None or modified_at <= since):
                    continue
                if self._compare_hash(descriptor, source_row, source_row) == self._compare_hash(
                    descriptor, source_row, destination_row
                ):
                    continue
                conflicted.append(record_id)
                differences = self._integrity.differences(descriptor, source_row, destination_row)
                compared_fields.update(differences)
                if len(mismatches) < MAX_MISMATCH_DETAIL:
                    mismatches[str(record_id)] = differences
            if len(source_rows) < self.config.batch_size:
                break

        deleted: list[Any] = []
        after = None
        while True:
            legacy_ids = await self._destination.fetch_ids(
                descriptor.destination_table,
                descriptor.legacy_id_field,
                after,
                self.config.batch_size,
            )
            if not legacy_ids:
                break
            after = legacy_ids[-1]
            present = {
                str(row[descriptor.id_field])
                for row in await self._source.fetch_by_ids(
                    descriptor.source_table, descriptor.id_field, legacy_ids
                )
            }
            deleted.extend(i for i in legacy_ids if str(i) not in present)
            if len(legacy_ids) < self.config.batch_size:
                break

        criteria = {
            "timestamp_field": timestamp_field,
            "timestamp_threshold": since.isoformat() if since else None,
            "hash_algorithm": self.config.hash_algorithm,
        }
        differentials: list[DataDifferential] = []
        for comparison_type, ids, metadata in (
            (ComparisonType.MISSING_RECORDS, missing, {}),
            (
                ComparisonType.CONFLICTED_RECORDS,
                conflicted,
                {"mismatched_fields": mismatches, "fields": sorted(compared_fields)},
            ),
            (ComparisonType.DELETED_RECORDS, deleted, {}),
        ):
            if not ids:
                continue
            differentials.append(
                DataDifferential(
                    entity_type=descriptor.entity_type,
                    source_table=descriptor.source_table,
                    target_table=descriptor.destination_table,
                    comparison_type=comparison_type,
                    legacy_ids=tuple(str(i) for i in ids),
                    comparison_criteria={**criteria, "id_type": _id_type(ids)},
                    metadata={"entity_type": descriptor.entity_type, **metadata},
                )
            )
        return differentials

    # -- resolution -------------------------------------------------------------

    async def resolve_conflicts(
        self,
        conflicts: Sequence[DataDifferential],
        strategy: ResolutionStrategy,
        options: ResolutionOptions | None = None,
    ) -> list[ConflictResolutionResult]:
        """
        Apply `strategy` to each differential.

        Args:
            conflicts: Differentials to resolve
            strategy: Resolution strategy
            options: Dry run, backup, retry and validation options

        Returns:
            One result per differential, in input order

        Raises:
            ConfigurationError: If `options` are invalid.
        """
        options = options or ResolutionOptions(strategy=strategy)
        ensure_valid(options)
        policy = RetryPolicy(
            max_retries=options.max_retries,
            backoff=RetryConfig(max_attempts=options.max_retries + 1),
            sleep=self._sleep,
        )
        results: list[ConflictResolutionResult] = []
        with self._tracer.span(
            "diffmigrate.conflicts.resolve_conflicts",
            {ATTR_RESOLUTION_STRATEGY: strategy.value, ATTR_RECORD_COUNT: len(conflicts)},
        ):
            for start in range(0, len(conflicts), options.batch_size):
                for differential in conflicts[start : start + options.batch_size]:
                    results.append(
                        await self._resolve_one(differential, strategy, options, policy)
                    )
        return results

    async def _resolve_one(
        self,
        differential: DataDifferential,
        strategy: ResolutionStrategy,
        options: ResolutionOptions,
        policy: RetryPolicy,
    ) -> ConflictResolutionResult:
        started = time.monotonic()
        result = ConflictResolutionResult(
            differential_id=differential.id,
            entity_type=differential.entity_type,
            comparison_type=differential.comparison_type,
            strategy=strategy,
            status=ResolutionStatus.SKIPPED,
        )

        with self._tracer.span(
            "diffmigrate.conflicts.resolve",
            {
                ATTR_DIFFERENTIAL_ID: differential.id,
                ATTR_ENTITY_TYPE: differential.entity_type,
                ATTR_RESOLUTION_STRATEGY: strategy.value,
            },
        ) as span:
            stored = await self._store.get(differential.id)
            if differential.resolved or (stored is not None and stored.resolved):
                logger.debug("Differential %s already resolved", differential.id)
            elif not differential.legacy_ids:
                if not options.dry_run:
                    await self._mark_resolved(differential, strategy, records_affected=0)
            elif strategy == ResolutionStrategy.MANUAL:
                result.status = ResolutionStatus.PENDING_MANUAL
            elif options.dry_run:
                result.status = ResolutionStatus.DRY_RUN
                result.records_affected = (
                    differential.record_count if strategy == ResolutionStrategy.SOURCE_WINS else 0
                )
            elif strategy == ResolutionStrategy.TARGET_WINS:
                await self._mark_resolved(differential, strategy, records_affected=0)
                result.status = ResolutionStatus.RESOLVED
            else:
                await self._apply_source_wins(differential, options, policy, result)
            if span is not None:
                span.set_attribute(ATTR_RETRY_COUNT, result.retry_count)

        result.duration_ms = round((time.monotonic() - started) * 1000, 2)
        await self._log.log(
            OperationType.CONFLICT_RESOLUTION,
            *_log_level_and_message(result),
            entity_type=differential.entity_type,
            error_details=result.error.to_dict() if result.error else None,
            context_data={
                "differential_id": differential.id,
                "comparison_type": differential.comparison_type.value,
                "strategy": strategy.value,
                "records_affected": result.records_affected,
                "retry_count": result.retry_count,
            },
        )
        return result

    async def _apply_source_wins(
        self,
        differential: DataDifferential,
        options: ResolutionOptions,
        policy: RetryPolicy,
        result: ConflictResolutionResult,
    ) -> None:
        descriptor = self._catalog.get(differential.entity_type)
        ids = _bind_ids(differential)

        if options.create_backup and differential.comparison_type != ComparisonType.MISSING_RECORDS:
            try:
                result.backup = await self._backup(descriptor, ids)
            except Exception as e:
                result.status = ResolutionStatus.FAILED
                result.error = ErrorDetail.from_exception(e)
                return

        async def attempt() -> int:
            return await self._write(descriptor, differential.comparison_type, ids, options)

        outcome = await run_with_retry(attempt, policy, f"resolve_{differential.id}")
        result.retry_count = outcome.retries
        if not outcome.succeeded:
            result.status = ResolutionStatus.FAILED
            result.error = outcome.error
            return
        result.records_affected = outcome.value or 0

        if options.validate_after_resolution:
            try:
                result.validation = await self._validate(
                    descriptor, differential.comparison_type, ids
                )
            except _StillDivergent as e:
                result.status = ResolutionStatus.FAILED
                result.error = ErrorDetail.from_exception(e, attempts=outcome.attempts)
                return

        await self._mark_resolved(
            differential,
            ResolutionStrategy.SOURCE_WINS,
            records_affected=result.records_affected,
            backup=result.backup,
        )
        result.status = ResolutionStatus.RESOLVED

    async def _backup(self, descriptor: EntityDescriptor, ids: list[Any]) -> BackupInfo:
        rows: list[Row] = []
        for start in range(0, len(ids), self.config.batch_size):
            rows.extend(
                await self._destination.fetch_by_ids(
                    descriptor.destination_table,
                    descriptor.legacy_id_field,
                    ids[start : start + self.config.batch_size],
                )
            )
        return await self._backups.save(
            descriptor.entity_type,
            descriptor.destination_table,
            descriptor.legacy_id_field,
            rows,
        )

    async def _write(
        self,
        descriptor: EntityDescriptor,
        comparison_type: ComparisonType,
        ids: list[Any],
        options: ResolutionOptions,
    ) -> int:
        chunks = [
            ids[start : start + self.config.batch_size]
            for start in range(0, len(ids), self.config.batch_size)
        ]
        if comparison_type == ComparisonType.DELETED_RECORDS:
            async with self._destination.transaction() as tx:
                deleted = 0
                for chunk in chunks:
                    deleted += await tx.delete_by_ids(
                        descriptor.destination_table, descriptor.legacy_id_field, chunk
                    )
                return deleted

        rows: list[Row] = []
        for chunk in chunks:
            rows.extend(
                to_destination_row(descriptor, row)
                for row in await self._source.fetch_by_ids(
                    descriptor.source_table, descriptor.id_field, chunk
                )
            )
        if not rows:
            return 0
        async with self._destination.transaction() as tx:
            for start in range(0, len(rows), self.config.batch_size):
                await tx.upsert(
                    descriptor.destination_table,
                    rows[start : start + self.config.batch_size],
                    key=descriptor.legacy_id_field,
                )
        return len(rows)

    async def _validate(
        self, descriptor: EntityDescriptor, comparison_type: ComparisonType, ids: list[Any]
    ) -> IntegrityValidation | None:
        if comparison_type == ComparisonType.DELETED_RECORDS:
            remaining = await self._destination.fetch_by_ids(
                descriptor.destination_table, descriptor.legacy_id_field, ids
            )
            if remaining:
                raise _StillDivergent(
                    f"{len(remaining)} deleted records still present in the destination",
                    entity_type=descriptor.entity_type,
                )
            return None

        validation = await self._integrity.check(descriptor, ids)
        divergent = [
            comparison.record_id
            for comparison in validation.comparisons
            if not comparison.is_match and comparison.differences != ("missing in source",)
        ]
        if validation.error is not None or divergent:
            raise _StillDivergent(
                validation.error or f"Records still diverge after resolution: {divergent[:10]}",
                entity_type=descriptor.entity_type,
            )
        return validation

    async def _mark_resolved(
        self,
        differential: DataDifferential,
        strategy: ResolutionStrategy,
        records_affected: int,
        backup: BackupInfo | None = None,
    ) -> bool:
        metadata: dict[str, Any] = {
            "resolved_by": "conflict_resolver",
            "session_id": self.session_id,
            "records_affected": records_affected,
        }
        if backup is not None:
            metadata["backup"] = backup.to_dict()
        return await self._store.mark_resolved(differential.id, strategy, utc_now(), metadata)

    async def restore_backup(self, backup: BackupInfo) -> int:
        """
        Write the rows of a backup back into the destination.

        Returns:
            Rows restored

        Raises:
            BackupError: If the backup cannot be read.
        """
        rows = await self._backups.load(backup)
        if rows:
            async with self._destination.transaction() as tx:
                await tx.upsert(backup.table, rows, key=backup.key)
        await self._log.info(
            OperationType.CONFLICT_RESOLUTION,
            f"Restored {len(rows)} rows from backup {backup.backup_id}",
            entity_type=backup.entity_type,
            context_data=backup.to_dict(),
        )
        return len(rows)

    # -- batch resolution -------------------------------------------------------

    async def resolve_all_conflicts(
        self, options: ResolutionOptions | None = None
    ) -> ConflictResolutionSummary:
        """
        Resolve every unresolved differential with `options.strategy`.

        Differentials are handled entity by entity; a failure in one entity
        never stops the others.
        """
        options = options or ResolutionOptions()
        ensure_valid(options)
        started = time.monotonic()

        target_tables = (
            [self._catalog.get(e).destination_table for e in options.entity_types]
            if options.entity_types
            else None
        )
        unresolved = await self._store.list_unresolved(target_tables)
        grouped: dict[str, list[DataDifferential]] = defaultdict(list)
        for differential in unresolved:
            grouped[differential.entity_type].append(differential)

        summary = ConflictResolutionSummary(strategy=options.strategy, dry_run=options.dry_run)
        for entity_type, differentials in grouped.items():
            results = await self.resolve_conflicts(differentials, options.strategy, options)
            summary.results.extend(results)
            records = sum(d.record_count for d in differentials)
            summary.entities[entity_type] = EntityConflictSummary(
                entity_type=entity_type,
                conflicts=len(differentials),
                records=records,
                resolved=sum(1 for r in results if r.status == ResolutionStatus.RESOLVED),
                failed=sum(1 for r in results if r.status == ResolutionStatus.FAILED),
                severity=ConflictSeverity.for_count(records),
                estimated_resolution_ms=records * ESTIMATED_MS_PER_CONFLICT,
            )

        summary.duration_ms = round((time.monotonic() - started) * 1000, 2)
        summary.recommendations = self._recommendations(summary)
        await self._log.info(
            OperationType.CONFLICT_RESOLUTION,
            f"Resolved {summary.resolved_conflicts} of {summary.total_conflicts} conflicts "
            f"with {options.strategy.value}",
            performance_data={"duration_ms": summary.duration_ms},
            context_data={
                "failed": summary.failed_conflicts,
                "skipped": summary.skipped_conflicts,
                "pending_manual": summary.pending_manual,
                "dry_run": options.dry_run,
            },
        )
        return summary

    @staticmethod
    def _recommendations(summary: ConflictResolutionSummary) -> list[str]:
        recommendations: list[str] = []
        total_records = sum(entity.records for entity in summary.entities.values())
        if total_records == 0:
            recommendations.append("No conflicts detected - data synchronization is healthy")
        else:
            recommendations.append(
                f"{total_records} conflicts detected - monitor data sources for consistency"
            )
        critical = [
            e for e in summary.entities.values() if e.severity == ConflictSeverity.CRITICAL
        ]
        if critical:
            recommendations.append(
                f"{len(critical)} entities have critical conflict levels - investigate data quality"
            )
        if summary.failed_conflicts:
            recommendations.append(
                f"{summary.failed_conflicts} conflicts could not be resolved - "
                "manual intervention required"
            )
        if summary.pending_manual:
            recommendations.append(
                f"{summary.pending_manual} conflicts are awaiting a manual decision"
            )
        return recommendations

    async def get_resolution_statistics(self) -> list[dict[str, Any]]:
        """Differential counts per entity, comparison type and strategy."""
        groups: dict[tuple[str, str, str | None], list[DataDifferential]] = defaultdict(list)
        for differential in await self._store.list_all():
            strategy = differential.resolution_strategy
            key = (
                differential.entity_type,
                differential.comparison_type.value,
                strategy.value if strategy else None,
            )
            groups[key].append(differential)

        statistics: list[dict[str, Any]] = []
        for (entity_type, comparison_type, strategy), items in sorted(
            groups.items(), key=lambda item: (item[0][0], item[0][1], item[0][2] or "")
        ):
            resolved_at = [d.resolved_at for d in items if d.resolved_at is not None]
            statistics.append(
                {
                    "entity_type": entity_type,
                    "comparison_type": comparison_type,
                    "resolution_strategy": strategy,
                    "total_differentials": len(items),
                    "resolved_count": sum(1 for d in items if d.resolved),
                    "unresolved_count": sum(1 for d in items if not d.resolved),
                    "avg_records_affected": sum(d.record_count for d in items) / len(items),
                    "last_resolution": max(resolved_at).isoformat() if resolved_at else None,
                }
            )
        return statistics


def _id_type(ids: Sequence[Any]) -> str:
    if ids and all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
        return "int"
    return "str"


def _bind_ids(differential: DataDifferential) -> list[Any]:
    # Ids are stored as text; numeric keys bind as integers
    if differential.comparison_criteria.get("id_type") == "int":
        return [int(i) for i in differential.legacy_ids]
    return list(differential.legacy_ids)


def _log_level_and_message(result: ConflictResolutionResult) -> tuple[LogLevel, str]:
    message = (
        f"{result.comparison_type.value} differential {result.differential_id} "
        f"{result.status.value} ({result.records_affected} records)"
    )
    if result.status == ResolutionStatus.FAILED:
        return LogLevel.ERROR, message
    return LogLevel.INFO, message


__all__ = [
    "ConflictResolutionResult",
    "ConflictResolutionSummary",
    "ConflictResolver",
    "ConflictSeverity",
    "ESTIMATED_MS_PER_CONFLICT",
    "EntityConflictSummary",
    "ResolutionStatus",
]
