"""
End-to-end differential migration run.

The pipeline wires the engine components together and runs them in
order for a set of entities:

1. Baseline analysis (gaps and mapping health)
2. Change detection, one pass per entity, starting from the cursor the
   last completed run stored in its checkpoint
3. Conflict detection and resolution (optional)
4. Dependency-ordered execution of the detected changes

Records that conflict detection classified as conflicted are left to the
conflict resolver and are not part of the execution tasks, so a
target_wins or manual decision is never overwritten by the executor.

Example:
    >>> pipeline = DifferentialMigrationPipeline(
    ...     source, destination, LEGACY_CATALOG,
    ...     SQLiteCheckpointStore(engine), SQLiteDifferentialStore(engine),
    ... )
    >>> result = await pipeline.run(["offices", "doctors"])
    >>> result.execution.overall_status
    <ExecutionStatus.COMPLETED: 'completed'>
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from diffmigrate.baseline import BaselineAnalyzer, BaselineReport
from diffmigrate.catalog import EntityCatalog
from diffmigrate.config import (
    BaselineConfig,
    DetectionConfig,
    ExecutionConfig,
    ProgressConfig,
    ResolutionOptions,
)
from diffmigrate.conflicts import BackupStore, ConflictResolutionSummary, ConflictResolver
from diffmigrate.detection import (
    DetectionOptions,
    DetectionResult,
    DetectionStrategy,
    DifferentialDetector,
    TimestampStrategy,
    strategy_from_cursor,
    strategy_to_cursor,
)
from diffmigrate.exceptions import ConfigurationError
from diffmigrate.execution_log import ExecutionLogger
from diffmigrate.executor import (
    CopyRecordMigrator,
    MigrationExecutionResult,
    MigrationExecutor,
    MigrationTask,
    RecordMigrator,
)
from diffmigrate.gateway import TableGateway
from diffmigrate.integrity import IntegrityChecker
from diffmigrate.models import ComparisonType, DataDifferential, OperationType
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import ATTR_ENTITY_COUNT, ATTR_RUN_ID, ATTR_SESSION_ID
from diffmigrate.progress import ProgressTracker
from diffmigrate.repositories.checkpoint import CheckpointStore
from diffmigrate.repositories.differential import DifferentialStore
from diffmigrate.repositories.execution_log import ExecutionLogRepository

logger = logging.getLogger(__name__)

# Checkpoint data key holding the detection cursor of the run
DETECTION_CURSOR_KEY = "detection_cursor"


@dataclass
class PipelineResult:
    """Output of every stage of one pipeline run."""

    session_id: str
    run_id: str
    baseline: BaselineReport
    detections: dict[str, DetectionResult] = field(default_factory=dict)
    cursors: dict[str, DetectionStrategy] = field(default_factory=dict)
    conflicts: list[DataDifferential] = field(default_factory=list)
    resolution: ConflictResolutionSummary | None = None
    execution: MigrationExecutionResult | None = None

    @property
    def failed_detections(self) -> list[str]:
        return [name for name, result in self.detections.items() if not result.succeeded]

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "run_id": self.run_id,
            "baseline": self.baseline.to_dict(),
            "detections": {name: result.to_dict() for name, result in self.detections.items()},
            "cursors": {name: strategy_to_cursor(c) for name, c in self.cursors.items()},
            "conflicts": [differential.to_dict() for differential in self.conflicts],
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "execution": self.execution.to_dict() if self.execution else None,
            "failed_detections": self.failed_detections,
        }


class DifferentialMigrationPipeline:
    """
    Baseline, detection, conflict resolution and execution over shared state.

    Args:
        source: Gateway to the legacy database
        destination: Gateway to the destination database
        catalog: Entity catalog
        checkpoint_store: Progress store (also the source of detection cursors)
        differential_store: Conflict audit trail
        execution_config: Executor configuration
        detection_config: Detector and conflict detection configuration
        baseline_config: Baseline classification thresholds
        resolution_options: Conflict resolution options
        progress_config: Progress tracker configuration
        migrator: Batch writer (copies rows by legacy id by default)
        backup_store: Where pre-resolution snapshots go
        log_repository: Where execution-log entries are persisted
        session_id: Session every component logs under
        tracer: Optional tracer (if not provided, one will be created)
        enable_tracing: Whether to enable OpenTelemetry tracing

    Raises:
        ConfigurationError: If the catalog has a dependency cycle or any
            configuration is invalid.
    """

    def __init__(
        self,
        source: TableGateway,
        destination: TableGateway,
        catalog: EntityCatalog,
        checkpoint_store: CheckpointStore,
        differential_store: DifferentialStore,
        execution_config: ExecutionConfig | None = None,
        detection_config: DetectionConfig | None = None,
        baseline_config: BaselineConfig | None = None,
        resolution_options: ResolutionOptions | None = None,
        progress_config: ProgressConfig | None = None,
        migrator: RecordMigrator | None = None,
        backup_store: BackupStore | None = None,
        log_repository: ExecutionLogRepository | None = None,
        session_id: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        catalog.validate()
        self.catalog = catalog
        self.session_id = session_id or str(uuid4())
        self.resolution_options = resolution_options or ResolutionOptions()
        self._checkpoints = checkpoint_store
        self._log = ExecutionLogger(self.session_id, log_repository)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        detection_config = detection_config or DetectionConfig()

        self.analyzer = BaselineAnalyzer(
            source,
            destination,
            catalog,
            config=baseline_config,
            checkpoint_store=checkpoint_store,
            session_id=self.session_id,
            execution_log=self._log,
            tracer=self._tracer,
        )
        self.detector = DifferentialDetector(
            source,
            destination,
            catalog,
            config=detection_config,
            session_id=self.session_id,
            execution_log=self._log,
            tracer=self._tracer,
        )
        self.resolver = ConflictResolver(
            source,
            destination,
            catalog,
            differential_store,
            backup_store=backup_store,
            config=detection_config,
            session_id=self.session_id,
            execution_log=self._log,
            tracer=self._tracer,
        )
        self.executor = MigrationExecutor(
            catalog,
            migrator or CopyRecordMigrator(source, destination, tracer=self._tracer),
            checkpoint_store,
            config=execution_config,
            session_id=self.session_id,
            integrity_checker=IntegrityChecker(
                source,
                destination,
                exclude_fields=detection_config.exclude_fields,
                tracer=self._tracer,
            ),
            execution_log=self._log,
            tracer=self._tracer,
        )
        self.tracker = ProgressTracker(self.session_id, config=progress_config)
        self.executor.add_listener(self.tracker.handle_executor_event)

    async def starting_cursor(
        self, entity_type: str, baseline: BaselineReport | None = None
    ) -> DetectionStrategy:
        """
        Cursor the next detection pass of an entity starts from.

        The cursor stored by the latest checkpoint is used only when that
        checkpoint belongs to a completed entity run; otherwise the last
        migration timestamp from the baseline is used, and without one
        the whole table is scanned.
        """
        checkpoint = await self._checkpoints.get_latest(entity_type)
        if checkpoint is not None and checkpoint.checkpoint_data.get("state") == "completed":
            stored = checkpoint.checkpoint_data.get(DETECTION_CURSOR_KEY)
            if stored:
                try:
                    return strategy_from_cursor(stored)
                except ConfigurationError as e:
                    logger.warning(
                        "Ignoring unreadable detection cursor for %s: %s", entity_type, e
                    )
        elif checkpoint is not None:
            return TimestampStrategy()

        analysis = baseline.result_for(entity_type) if baseline is not None else None
        if analysis is not None and analysis.last_migration_timestamp is not None:
            return TimestampStrategy(since=analysis.last_migration_timestamp)
        return TimestampStrategy()

    async def run(
        self,
        entity_types: Sequence[str],
        since: datetime | None = None,
        resolve_conflicts: bool = True,
        detection_options: DetectionOptions | None = None,
    ) -> PipelineResult:
        """
        Run every stage for the given entities.

        Args:
            entity_types: Entities to migrate
            since: Detect changes after this time instead of the stored cursors
            resolve_conflicts: Run conflict detection and resolution
            detection_options: Options for every detection pass

        Returns:
            PipelineResult with the output of every stage

        Raises:
            UnknownEntityTypeError: If an entity is not in the catalog.
        """
        names = self.catalog.dependency_order(entity_types)
        run_id = str(uuid4())

        with self._tracer.span(
            "diffmigrate.pipeline.run",
            {ATTR_RUN_ID: run_id, ATTR_SESSION_ID: self.session_id, ATTR_ENTITY_COUNT: len(names)},
        ):
            baseline = await self.analyzer.analyze(names)
            result = PipelineResult(session_id=self.session_id, run_id=run_id, baseline=baseline)

            for name in names:
                result.cursors[name] = (
                    TimestampStrategy(since=since)
                    if since is not None
                    else await self.starting_cursor(name, baseline)
                )
            detections = await asyncio.gather(
                *(
                    self.detector.detect_changes(name, result.cursors[name], detection_options)
                    for name in names
                )
            )
            result.detections = dict(zip(names, detections, strict=True))

            held_back: dict[str, set[str]] = {name: set() for name in names}
            if resolve_conflicts:
                for name in names:
                    conflict_since = since or _cursor_time(result.cursors[name])
                    result.conflicts.extend(
                        await self.resolver.detect_conflicts([name], since=conflict_since)
                    )
                for differential in result.conflicts:
                    if differential.comparison_type == ComparisonType.CONFLICTED_RECORDS:
                        held_back[differential.entity_type].update(differential.legacy_ids)
                scope = tuple(
                    name
                    for name in names
                    if not self.resolution_options.entity_types
                    or name in self.resolution_options.entity_types
                )
                if result.conflicts and scope:
                    # Unresolved differentials of entities outside this run stay untouched
                    result.resolution = await self.resolver.resolve_all_conflicts(
                        replace(self.resolution_options, entity_types=scope)
                    )

            tasks: list[MigrationTask] = []
            for name in names:
                detection = result.detections[name]
                if not detection.succeeded or detection.next_cursor is None:
                    continue
                descriptor = self.catalog.get(name)
                record_ids = [
                    record_id
                    for record_id in detection.changed_ids(descriptor.id_field)
                    if str(record_id) not in held_back[name]
                ]
                tasks.append(
                    MigrationTask(
                        entity_type=name,
                        record_ids=record_ids,
                        dependencies=tuple(self.catalog.dependencies_within(name, names)),
                        checkpoint_data={
                            DETECTION_CURSOR_KEY: strategy_to_cursor(detection.next_cursor)
                        },
                    )
                )

            if result.failed_detections:
                await self._log.warn(
                    OperationType.DIFFERENTIAL_DETECTION,
                    f"Detection failed for: {', '.join(result.failed_detections)}",
                    context_data={"run_id": run_id},
                )
            result.execution = await self.executor.execute(tasks, run_id=run_id)
            return result


def _cursor_time(strategy: DetectionStrategy) -> datetime | None:
    if isinstance(strategy, TimestampStrategy):
        return strategy.since
    return None


__all__ = [
    "DETECTION_CURSOR_KEY",
    "DifferentialMigrationPipeline",
    "PipelineResult",
]
