"""
Differential detector: which records changed since the last run?

The detector scans the source table of one entity according to a
detection strategy, looks up the matching destination rows by legacy id
and classifies every difference as new, modified or deleted. Scans are
keyset-paginated in batches of `batch_size` rows so memory stays bounded,
and the number of records referenced by one pass is capped by
`max_records_per_pass`.

Failures never escape as exceptions, with one exception: asking for an
entity type that is not in the catalog raises UnknownEntityTypeError
straight away. Everything else (connection loss, the record ceiling)
ends the pass and is reported through `DetectionResult.error`, whose
`retryable` flag tells the caller whether running the pass again may
succeed.

Example:
    >>> detector = DifferentialDetector(source, destination, LEGACY_CATALOG)
    >>> result = await detector.detect_changes(
    ...     "doctors", TimestampStrategy(since=last_run),
    ...     DetectionOptions(include_deletes=True),
    ... )
    >>> result.summary.new_records
    12
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from diffmigrate.catalog import EntityCatalog, EntityDescriptor
from diffmigrate.config import DetectionConfig, ensure_valid
from diffmigrate.detection.strategies import (
    ChecksumStrategy,
    DetectionStrategy,
    IdStrategy,
    TimestampStrategy,
)
from diffmigrate.exceptions import ConfigurationError, ErrorDetail, InvariantViolationError
from diffmigrate.execution_log import ExecutionLogger
from diffmigrate.gateway import Row, TableGateway, id_sort_key
from diffmigrate.models import (
    ChangeRecord,
    ChangeType,
    DifferentialAnalysisResult,
    OperationType,
    utc_now,
)
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import (
    ATTR_CHANGE_COUNT,
    ATTR_DETECTION_STRATEGY,
    ATTR_ENTITY_TYPE,
    ATTR_RECORD_COUNT,
    ATTR_SESSION_ID,
)
from diffmigrate.repositories._connection import parse_timestamp
from diffmigrate.serialization import content_hash

logger = logging.getLogger(__name__)

CONFIDENCE_NEW = 0.95
CONFIDENCE_MODIFIED_HASHED = 0.98
CONFIDENCE_MODIFIED_TIMESTAMP = 0.85
CONFIDENCE_DELETED = 0.90


class DetectionStatus(Enum):
    """Outcome of a detection pass."""

    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class DetectionOptions:
    """
    Per-call detection options.

    Attributes:
        include_deletes: Also scan the destination for rows gone from the source.
        enable_content_hashing: Override the detector's hashing setting.
        batch_size: Override the detector's batch size.
    """

    include_deletes: bool = False
    enable_content_hashing: bool | None = None
    batch_size: int | None = None


@dataclass(frozen=True)
class DetectionSummary:
    new_records: int = 0
    modified_records: int = 0
    deleted_records: int = 0
    total_changes: int = 0
    change_percentage: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "new_records": self.new_records,
            "modified_records": self.modified_records,
            "deleted_records": self.deleted_records,
            "total_changes": self.total_changes,
            "change_percentage": self.change_percentage,
        }


@dataclass(frozen=True)
class DetectionPerformance:
    duration_ms: float = 0.0
    records_analyzed: int = 0
    records_per_second: float = 0.0
    queries_executed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "duration_ms": self.duration_ms,
            "records_analyzed": self.records_analyzed,
            "records_per_second": self.records_per_second,
            "queries_executed": self.queries_executed,
        }


@dataclass
class DetectionResult:
    """
    Output of one detection pass.

    Attributes:
        analysis_id: Unique id of the pass.
        entity_type: Entity analysed.
        status: COMPLETED, or FAILED with `error` set.
        detection_method: timestamp_only, timestamp_with_hash, id_sequence
            or full_content_hash.
        analysis: Disjoint new/modified/deleted id sets and counts.
        changes: One ChangeRecord per detected change.
        summary: Counts per change type and change percentage.
        performance: Duration, records analysed, query count.
        recommendations: Human-readable next steps.
        next_cursor: Strategy to use for the next run; None when the pass failed.
        error: What went wrong, when status is FAILED.
    """

    analysis_id: str
    entity_type: str
    status: DetectionStatus
    detection_method: str
    analysis: DifferentialAnalysisResult
    changes: list[ChangeRecord] = field(default_factory=list)
    summary: DetectionSummary = field(default_factory=DetectionSummary)
    performance: DetectionPerformance = field(default_factory=DetectionPerformance)
    recommendations: list[str] = field(default_factory=list)
    next_cursor: DetectionStrategy | None = None
    error: ErrorDetail | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == DetectionStatus.COMPLETED

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def changed_ids(self, id_field: str = "id") -> list[Any]:
        """
        Source ids of new and modified records, in detection order.

        The raw id value from the source row is returned where available
        so that it binds with the column type of the source table.
        """
        return [
            change.metadata.get(id_field, change.record_id)
            for change in self.changes
            if change.change_type in (ChangeType.NEW, ChangeType.MODIFIED)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "entity_type": self.entity_type,
            "status": self.status.value,
            "detection_method": self.detection_method,
            "analysis": self.analysis.to_dict(),
            "changes": [change.to_dict() for change in self.changes],
            "summary": self.summary.to_dict(),
            "performance": self.performance.to_dict(),
            "recommendations": list(self.recommendations),
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class TimestampValidation:
    is_valid: bool
    issues: tuple[str, ...]
    confidence: float


@dataclass
class _Pass:
    """Mutable state of one running pass."""

    descriptor: EntityDescriptor
    hashing: bool
    batch_size: int
    analysis: DifferentialAnalysisResult
    changes: list[ChangeRecord] = field(default_factory=list)
    records_analyzed: int = 0

    def record(self, change: ChangeRecord) -> None:
        self.analysis.add(change.change_type, change.record_id)
        self.changes.append(change)


class DifferentialDetector:
    """
    Detects new, modified and deleted records of one entity at a time.

    Passes for different entities may run concurrently; passes for the
    same entity are serialized.

    Args:
        source: Gateway to the legacy database
        destination: Gateway to the destination database
        catalog: Entity catalog
        config: Detection configuration
        session_id: Session the passes are logged under
        execution_log: Structured execution logger
        tracer: Optional tracer (if not provided, one will be created)
        enable_tracing: Whether to enable OpenTelemetry tracing

    Raises:
        ConfigurationError: If `config` is invalid.
    """

    def __init__(
        self,
        source: TableGateway,
        destination: TableGateway,
        catalog: EntityCatalog,
        config: DetectionConfig | None = None,
        session_id: str | None = None,
        execution_log: ExecutionLogger | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.config = config or DetectionConfig()
        ensure_valid(self.config)
        self._source = source
        self._destination = destination
        self._catalog = catalog
        self.session_id = session_id or str(uuid4())
        self._log = execution_log or ExecutionLogger(self.session_id)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._entity_locks: dict[str, asyncio.Lock] = {}
        self._queries = 0

    def _lock_for(self, entity_type: str) -> asyncio.Lock:
        lock = self._entity_locks.get(entity_type)
        if lock is None:
            lock = self._entity_locks[entity_type] = asyncio.Lock()
        return lock

    def _timestamp_field(self, descriptor: EntityDescriptor) -> str:
        return descriptor.timestamp_field or self.config.timestamp_field

    def _hash_exclusions(self, descriptor: EntityDescriptor) -> tuple[str, ...]:
        excluded = [
            *self.config.exclude_fields,
            self._timestamp_field(descriptor),
            descriptor.id_field,
            descriptor.legacy_id_field,
        ]
        if self.config.content_hash_field:
            excluded.append(self.config.content_hash_field)
        return tuple(excluded)

    def hash_row(self, descriptor: EntityDescriptor, row: Row) -> str:
        """Content hash of a source or destination row of `descriptor`."""
        return content_hash(
            row,
            algorithm=self.config.hash_algorithm,
            exclude_fields=self._hash_exclusions(descriptor),
        )

    def _stored_hash(self, descriptor: EntityDescriptor, row: Row) -> str:
        stored = row.get(self.config.content_hash_field) if self.config.content_hash_field else None
        return str(stored) if stored else self.hash_row(descriptor, row)

    async def detect_changes(
        self,
        entity_type: str,
        strategy: DetectionStrategy | None = None,
        options: DetectionOptions | None = None,
    ) -> DetectionResult:
        """
        Run one detection pass for an entity.

        Args:
            entity_type: Entity to analyse
            strategy: Strategy variant carrying the cursor; defaults to a
                timestamp scan of every row
            options: Per-call options

        Returns:
            DetectionResult; FAILED with a typed error if the pass aborted

        Raises:
            UnknownEntityTypeError: If the entity is not in the catalog.
        """
        descriptor = self._catalog.get(entity_type)
        strategy = strategy or TimestampStrategy()
        options = options or DetectionOptions()
        hashing = (
            self.config.enable_content_hashing
            if options.enable_content_hashing is None
            else options.enable_content_hashing
        )
        batch_size = options.batch_size or self.config.batch_size
        method = self._detection_method(strategy, hashing)

        async with self._lock_for(entity_type):
            with self._tracer.span(
                "diffmigrate.detector.detect_changes",
                {
                    ATTR_ENTITY_TYPE: entity_type,
                    ATTR_DETECTION_STRATEGY: strategy.kind,
                    ATTR_SESSION_ID: self.session_id,
                },
            ):
                return await self._detect(
                    descriptor, strategy, options, hashing, batch_size, method
                )

    async def _detect(
        self,
        descriptor: EntityDescriptor,
        strategy: DetectionStrategy,
        options: DetectionOptions,
        hashing: bool,
        batch_size: int,
        method: str,
    ) -> DetectionResult:
        entity_type = descriptor.entity_type
        analysis_id = str(uuid4())
        started = time.monotonic()
        queries_before = self._queries
        state = _Pass(
            descriptor=descriptor,
            hashing=hashing,
            batch_size=batch_size,
            analysis=DifferentialAnalysisResult(
                entity_type=entity_type,
                last_migration_timestamp=(
                    strategy.since if isinstance(strategy, TimestampStrategy) else None
                ),
                max_records=self.config.max_records_per_pass,
            ),
        )

        await self._log.info(
            OperationType.DIFFERENTIAL_DETECTION,
            f"Starting {method} detection for {entity_type}",
            entity_type=entity_type,
            context_data={"analysis_id": analysis_id, "strategy": strategy.kind},
        )

        try:
            state.analysis.source_record_count = await self._count(
                self._source, descriptor.source_table
            )
            state.analysis.destination_record_count = await self._count(
                self._destination, descriptor.destination_table
            )
            match strategy:
                case TimestampStrategy():
                    next_cursor: DetectionStrategy = await self._scan_timestamps(state, strategy)
                case IdStrategy():
                    next_cursor = await self._scan_ids(state, strategy)
                case ChecksumStrategy():
                    next_cursor = await self._scan_checksums(state, strategy)
                case _:
                    raise ConfigurationError(f"Unknown detection strategy: {strategy!r}")
            if options.include_deletes:
                await self._scan_deletes(state)
        except Exception as e:
            error = ErrorDetail.from_exception(e)
            duration_ms = (time.monotonic() - started) * 1000
            await self._log.error(
                OperationType.DIFFERENTIAL_DETECTION,
                f"Detection failed for {entity_type}: {error.message}",
                entity_type=entity_type,
                error_details=error.to_dict(),
                context_data={"analysis_id": analysis_id, "analysis_duration_ms": duration_ms},
            )
            return DetectionResult(
                analysis_id=analysis_id,
                entity_type=entity_type,
                status=DetectionStatus.FAILED,
                detection_method=method,
                analysis=state.analysis,
                performance=self._performance(started, state, queries_before),
                error=error,
            )

        summary = self._summary(state)
        performance = self._performance(started, state, queries_before)
        result = DetectionResult(
            analysis_id=analysis_id,
            entity_type=entity_type,
            status=DetectionStatus.COMPLETED,
            detection_method=method,
            analysis=state.analysis,
            changes=state.changes,
            summary=summary,
            performance=performance,
            recommendations=self._recommendations(summary, performance, hashing),
            next_cursor=next_cursor,
        )
        state.analysis.analysis_metadata.update(
            {"analysis_id": analysis_id, "detection_method": method}
        )
        await self._log.info(
            OperationType.DIFFERENTIAL_DETECTION,
            f"Detection completed for {entity_type}: {summary.total_changes} changes "
            f"({summary.new_records} new, {summary.modified_records} modified, "
            f"{summary.deleted_records} deleted)",
            entity_type=entity_type,
            performance_data=performance.to_dict(),
            context_data={
                "analysis_id": analysis_id,
                "change_percentage": summary.change_percentage,
            },
        )
        logger.debug(
            "Detected %d changes for %s in %.1fms",
            summary.total_changes,
            entity_type,
            performance.duration_ms,
        )
        return result

    async def _count(self, gateway: TableGateway, table: str) -> int:
        self._queries += 1
        return await gateway.count(table)

    async def _destination_rows(
        self, descriptor: EntityDescriptor, record_ids: Sequence[Any]
    ) -> dict[str, Row]:
        self._queries += 1
        rows = await self._destination.fetch_by_ids(
            descriptor.destination_table, descriptor.legacy_id_field, list(record_ids)
        )
        return {str(row[descriptor.legacy_id_field]): row for row in rows}

    # -- strategies ----------------------------------------------------------

    async def _scan_timestamps(
        self, state: _Pass, strategy: TimestampStrategy
    ) -> TimestampStrategy:
        descriptor = state.descriptor
        ts_field = self._timestamp_field(descriptor)
        since = parse_timestamp(strategy.since)
        after: tuple[datetime, Any] | None = None
        newest = since

        while True:
            self._queries += 1
            page = await self._source.fetch_modified_since(
                descriptor.source_table,
                ts_field,
                descriptor.id_field,
                since,
                after,
                state.batch_size,
            )
            if not page:
                break
            state.records_analyzed += len(page)
            existing = await self._destination_rows(
                descriptor, [row[descriptor.id_field] for row in page]
            )
            for row in page:
                record_id = str(row[descriptor.id_field])
                change = self._classify(
                    state, record_id, row, existing.get(record_id), require_newer=True
                )
                if change is not None:
                    state.record(change)

            last = page[-1]
            last_ts = parse_timestamp(last[ts_field])
            if last_ts is None:
                raise InvariantViolationError(
                    f"Row {last[descriptor.id_field]} returned by a {ts_field} scan "
                    f"has no {ts_field}",
                    entity_type=state.analysis.entity_type,
                )
            after = (last_ts, last[descriptor.id_field])
            if newest is None or last_ts > newest:
                newest = last_ts
            if len(page) < state.batch_size:
                break

        return TimestampStrategy(since=newest)

    async def _scan_ids(self, state: _Pass, strategy: IdStrategy) -> IdStrategy:
        descriptor = state.descriptor
        cursor = strategy.last_processed_id
        # Without hashing, rows at or below the cursor cannot be compared
        after = None if state.hashing else cursor
        highest = cursor

        while True:
            self._queries += 1
            page = await self._source.fetch_after(
                descriptor.source_table, descriptor.id_field, after, state.batch_size
            )
            if not page:
                break
            state.records_analyzed += len(page)
            existing = await self._destination_rows(
                descriptor, [row[descriptor.id_field] for row in page]
            )
            for row in page:
                source_id = row[descriptor.id_field]
                record_id = str(source_id)
                change = self._classify(
                    state, record_id, row, existing.get(record_id), require_newer=False
                )
                if change is not None:
                    state.record(change)
                if highest is None or id_sort_key(source_id) > id_sort_key(highest):
                    highest = source_id

            after = page[-1][descriptor.id_field]
            if len(page) < state.batch_size:
                break

        return IdStrategy(last_processed_id=highest)

    async def _scan_checksums(
        self, state: _Pass, strategy: ChecksumStrategy
    ) -> ChecksumStrategy:
        descriptor = state.descriptor
        ts_field = self._timestamp_field(descriptor)
        previous = strategy.hashes
        current: dict[str, str] = {}
        after = None

        while True:
            self._queries += 1
            page = await self._source.fetch_after(
                descriptor.source_table, descriptor.id_field, after, state.batch_size
            )
            if not page:
                break
            state.records_analyzed += len(page)
            for row in page:
                record_id = str(row[descriptor.id_field])
                digest = self.hash_row(descriptor, row)
                current[record_id] = digest
                known = previous.get(record_id)
                if known == digest:
                    continue
                state.record(
                    ChangeRecord(
                        record_id=record_id,
                        change_type=ChangeType.NEW if known is None else ChangeType.MODIFIED,
                        confidence=CONFIDENCE_NEW if known is None else CONFIDENCE_MODIFIED_HASHED,
                        source_timestamp=parse_timestamp(row.get(ts_field)),
                        content_hash=digest,
                        previous_content_hash=known,
                        metadata=dict(row),
                    )
                )
            after = page[-1][descriptor.id_field]
            if len(page) < state.batch_size:
                break

        return ChecksumStrategy(hashes=current)

    async def _scan_deletes(self, state: _Pass) -> None:
        descriptor = state.descriptor
        after = None

        while True:
            self._queries += 1
            legacy_ids = await self._destination.fetch_ids(
                descriptor.destination_table, descriptor.legacy_id_field, after, state.batch_size
            )
            if not legacy_ids:
                break
            self._queries += 1
            present = {
                str(row[descriptor.id_field])
                for row in await self._source.fetch_by_ids(
                    descriptor.source_table, descriptor.id_field, legacy_ids
                )
            }
            for legacy_id in legacy_ids:
                record_id = str(legacy_id)
                if record_id not in present:
                    state.record(
                        ChangeRecord(
                            record_id=record_id,
                            change_type=ChangeType.DELETED,
                            confidence=CONFIDENCE_DELETED,
                            metadata={descriptor.legacy_id_field: legacy_id},
                        )
                    )
            after = legacy_ids[-1]
            if len(legacy_ids) < state.batch_size:
                break

    def _classify(
        self,
        state: _Pass,
        record_id: str,
        source_row: Row,
        destination_row: Row | None,
        require_newer: bool,
    ) -> ChangeRecord | None:
        descriptor = state.descriptor
        ts_field = self._timestamp_field(descriptor)
        source_ts = parse_timestamp(source_row.get(ts_field))

        if destination_row is None:
            return ChangeRecord(
                record_id=record_id,
                change_type=ChangeType.NEW,
                confidence=CONFIDENCE_NEW,
                source_timestamp=source_ts,
                content_hash=self.hash_row(descriptor, source_row) if state.hashing else None,
                metadata=dict(source_row),
            )

        destination_ts = parse_timestamp(destination_row.get(ts_field))
        if (
            require_newer
            and source_ts is not None
            and destination_ts is not None
            and source_ts <= destination_ts
        ):
            return None

        if state.hashing:
            digest = self.hash_row(descriptor, source_row)
            previous = self._stored_hash(descriptor, destination_row)
            if digest == previous:
                return None
            return ChangeRecord(
                record_id=record_id,
                change_type=ChangeType.MODIFIED,
                confidence=CONFIDENCE_MODIFIED_HASHED,
                source_timestamp=source_ts,
                destination_timestamp=destination_ts,
                content_hash=digest,
                previous_content_hash=previous,
                metadata=dict(source_row),
            )

        if not require_newer:
            return None
        return ChangeRecord(
            record_id=record_id,
            change_type=ChangeType.MODIFIED,
            confidence=CONFIDENCE_MODIFIED_TIMESTAMP,
            source_timestamp=source_ts,
            destination_timestamp=destination_ts,
            metadata=dict(source_row),
        )

    # -- direct classification ----------------------------------------------

    async def batch_detect_changes(
        self,
        entity_type: str,
        record_ids: Sequence[Any],
        include_deletes: bool = False,
    ) -> list[ChangeRecord]:
        """
        Classify a given list of source ids without scanning the table.

        Args:
            entity_type: Entity the ids belong to
            record_ids: Source primary keys to check
            include_deletes: Report ids present only in the destination as deleted

        Returns:
            One ChangeRecord per changed id

        Raises:
            UnknownEntityTypeError: If the entity is not in the catalog.
        """
        descriptor = self._catalog.get(entity_type)
        state = _Pass(
            descriptor=descriptor,
            hashing=self.config.enable_content_hashing,
            batch_size=self.config.batch_size,
            analysis=DifferentialAnalysisResult(
                entity_type=entity_type, max_records=self.config.max_records_per_pass
            ),
        )
        with self._tracer.span(
            "diffmigrate.detector.batch_detect_changes",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_RECORD_COUNT: len(record_ids)},
        ) as span:
            for start in range(0, len(record_ids), state.batch_size):
                chunk = list(record_ids[start : start + state.batch_size])
                self._queries += 1
                source_rows = {
                    str(row[descriptor.id_field]): row
                    for row in await self._source.fetch_by_ids(
                        descriptor.source_table, descriptor.id_field, chunk
                    )
                }
                existing = await self._destination_rows(descriptor, chunk)
                state.records_analyzed += len(source_rows)

                for raw_id in chunk:
                    record_id = str(raw_id)
                    source_row = source_rows.get(record_id)
                    if source_row is None:
                        if include_deletes and record_id in existing:
                            state.record(
                                ChangeRecord(
                                    record_id=record_id,
                                    change_type=ChangeType.DELETED,
                                    confidence=CONFIDENCE_DELETED,
                                    destination_timestamp=parse_timestamp(
                                        existing[record_id].get(self._timestamp_field(descriptor))
                                    ),
                                    metadata=dict(existing[record_id]),
                                )
                            )
                        continue
                    change = self._classify(
                        state, record_id, source_row, existing.get(record_id), require_newer=True
                    )
                    if change is not None:
                        state.record(change)

            if span is not None:
                span.set_attribute(ATTR_CHANGE_COUNT, len(state.changes))
        return state.changes

    @staticmethod
    def validate_timestamps(
        source_timestamp: datetime,
        destination_timestamp: datetime | None = None,
        now: datetime | None = None,
    ) -> TimestampValidation:
        """
        Judge how far a pair of timestamps can be trusted for detection.

        Args:
            source_timestamp: Modification time of the source row
            destination_timestamp: Modification time of the destination row
            now: Reference time (defaults to the current UTC time)

        Returns:
            TimestampValidation with the issues found and a confidence in [0, 1]
        """
        now = now or utc_now()
        issues: list[str] = []
        confidence = 1.0

        if now - source_timestamp > timedelta(days=365):
            issues.append("Source timestamp is more than one year old")
            confidence -= 0.2
        if source_timestamp - now > timedelta(days=1):
            issues.append("Source timestamp is more than one day in the future")
            confidence -= 0.3
        if destination_timestamp is not None and source_timestamp < destination_timestamp:
            issues.append("Source timestamp is older than destination timestamp")
            confidence -= 0.4

        return TimestampValidation(
            is_valid=not issues,
            issues=tuple(issues),
            confidence=round(max(0.0, confidence), 2),
        )

    # -- reporting ----------------------------------------------------------

    @staticmethod
    def _detection_method(strategy: DetectionStrategy, hashing: bool) -> str:
        if isinstance(strategy, IdStrategy):
            return "id_sequence"
        if isinstance(strategy, ChecksumStrategy):
            return "full_content_hash"
        return "timestamp_with_hash" if hashing else "timestamp_only"

    @staticmethod
    def _summary(state: _Pass) -> DetectionSummary:
        analysis = state.analysis
        total = analysis.total_changes
        return DetectionSummary(
            new_records=len(analysis.new_records),
            modified_records=len(analysis.modified_records),
            deleted_records=len(analysis.deleted_records),
            total_changes=total,
            change_percentage=(
                round(total / state.records_analyzed * 100, 2) if state.records_analyzed else 0.0
            ),
        )

    def _performance(
        self, started: float, state: _Pass, queries_before: int
    ) -> DetectionPerformance:
        duration_ms = (time.monotonic() - started) * 1000
        return DetectionPerformance(
            duration_ms=round(duration_ms, 2),
            records_analyzed=state.records_analyzed,
            records_per_second=(
                round(state.records_analyzed / duration_ms * 1000, 2) if duration_ms > 0 else 0.0
            ),
            queries_executed=self._queries - queries_before,
        )

    def _recommendations(
        self,
        summary: DetectionSummary,
        performance: DetectionPerformance,
        hashing: bool,
    ) -> list[str]:
        recommendations: list[str] = []

        if summary.change_percentage > 25:
            recommendations.append(
                "High change percentage detected - verify timestamp accuracy "
                "and consider a full migration"
            )
        if summary.new_records > 1000:
            recommendations.append(
                "Large number of new records - use batched migration with checkpoint intervals"
            )
        if summary.modified_records > summary.new_records * 2:
            recommendations.append(
                "High modification rate - review source update patterns for systematic updates"
            )
        if performance.duration_ms > 60_000:
            recommendations.append(
                "Analysis took longer than expected - consider adding database indexes "
                "or reducing batch size"
            )
        if self.config.enable_content_hashing and not hashing:
            recommendations.append(
                "Content hashing available but not enabled - enable for higher accuracy detection"
            )
        if summary.total_changes > 50_000:
            recommendations.append(
                "Large migration detected - split the run and enable checkpoint saving"
            )
        if not recommendations:
            recommendations.append(
                "Changes are within normal range - ready for migration execution"
            )
        return recommendations


__all__ = [
    "CONFIDENCE_DELETED",
    "CONFIDENCE_MODIFIED_HASHED",
    "CONFIDENCE_MODIFIED_TIMESTAMP",
    "CONFIDENCE_NEW",
    "DetectionOptions",
    "DetectionPerformance",
    "DetectionResult",
    "DetectionStatus",
    "DetectionSummary",
    "DifferentialDetector",
    "TimestampValidation",
]
