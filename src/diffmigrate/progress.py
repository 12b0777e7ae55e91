"""
Progress tracking for running migrations.

The tracker keeps a snapshot history per entity type and derives from it
the completion percentage, throughput and ETA of each entity. Every
update is checked against the configured thresholds; crossing one
raises an alert that stays active until it is resolved. Alerts never
block progress updates.

The tracker is fed either directly (`start_tracking` / `update_progress`)
or by registering `handle_executor_event` as a MigrationExecutor
listener.

Example:
    >>> tracker = ProgressTracker("run-1")
    >>> executor.add_listener(tracker.handle_executor_event)
    >>> result = await executor.execute(tasks)
    >>> tracker.generate_progress_report().summary.overall_progress
    100.0
"""

from __future__ import annotations

import logging
import statistics
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from diffmigrate.config import ProgressConfig, ensure_valid
from diffmigrate.exceptions import NoTrackingSessionError
from diffmigrate.executor.executor import ExecutorEvent, ExecutorEventType, process_memory_mb
from diffmigrate.models import utc_now

logger = logging.getLogger(__name__)

# Percentage above which an entity is completing
COMPLETING_PERCENTAGE = 95.0

# Window in which a repeated alert of the same type is suppressed
ALERT_DEDUP_WINDOW = timedelta(minutes=5)

# ETA shift that raises an eta_deviation alert
ETA_DEVIATION = timedelta(minutes=30)

# Snapshots needed before ETA deviation is checked
ETA_HISTORY_MIN = 5

# Throughput (records/sec) treated as fully efficient
EFFICIENT_THROUGHPUT = 1000.0


class ProgressStatus(Enum):
    STARTING = "starting"
    RUNNING = "running"
    COMPLETING = "completing"
    COMPLETED = "completed"
    PAUSED = "paused"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        return self in (ProgressStatus.STARTING, ProgressStatus.RUNNING, ProgressStatus.COMPLETING)


@dataclass(frozen=True)
class BatchInfo:
    batch_number: int
    batch_size: int
    duration_ms: float


@dataclass(frozen=True)
class ProgressSnapshot:
    """
    Point-in-time progress of one entity.

    `current_throughput` covers the interval since the previous snapshot;
    `average_throughput` covers the whole tracking session. The ETA is
    derived from the current throughput and is None while it is zero.
    """

    session_id: str
    entity_type: str
    timestamp: datetime
    status: ProgressStatus
    records_processed: int
    total_records: int
    start_time: datetime
    current_throughput: float = 0.0
    average_throughput: float = 0.0
    average_batch_time_ms: float = 0.0
    memory_usage_mb: float = 0.0
    estimated_completion_time: datetime | None = None
    remaining_time_ms: int | None = None
    current_batch: BatchInfo | None = None
    snapshot_id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def records_remaining(self) -> int:
        return max(0, self.total_records - self.records_processed)

    @property
    def percentage_complete(self) -> float:
        if self.total_records <= 0:
            return 0.0
        return round(self.records_processed / self.total_records * 100, 2)

    @property
    def elapsed_ms(self) -> int:
        return int((self.timestamp - self.start_time).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "session_id": self.session_id,
            "entity_type": self.entity_type,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "progress": {
                "records_processed": self.records_processed,
                "records_remaining": self.records_remaining,
                "total_records": self.total_records,
                "percentage_complete": self.percentage_complete,
            },
            "performance": {
                "current_throughput": self.current_throughput,
                "average_throughput": self.average_throughput,
                "average_batch_time_ms": self.average_batch_time_ms,
                "memory_usage_mb": self.memory_usage_mb,
            },
            "timing": {
                "start_time": self.start_time.isoformat(),
                "elapsed_ms": self.elapsed_ms,
                "estimated_completion_time": (
                    self.estimated_completion_time.isoformat()
                    if self.estimated_completion_time
                    else None
                ),
                "remaining_time_ms": self.remaining_time_ms,
            },
            "current_batch": (
                {
                    "batch_number": self.current_batch.batch_number,
                    "batch_size": self.current_batch.batch_size,
                    "duration_ms": self.current_batch.duration_ms,
                }
                if self.current_batch
                else None
            ),
        }


class AlertType(Enum):
    LOW_THROUGHPUT = "low_throughput"
    HIGH_MEMORY = "high_memory"
    STALLED_PROGRESS = "stalled_progress"
    ETA_DEVIATION = "eta_deviation"


class AlertSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class ProgressAlert:
    alert_type: AlertType
    severity: AlertSeverity
    entity_type: str
    message: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    resolved_at: datetime | None = None
    alert_id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "details": dict(self.details),
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


class ProgressUpdateType(Enum):
    PROGRESS = "progress"
    ALERT = "alert"
    COMPLETION = "completion"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressUpdate:
    """Real-time notification delivered to tracker subscribers."""

    update_type: ProgressUpdateType
    session_id: str
    entity_type: str | None
    data: dict[str, Any]
    timestamp: datetime
    update_id: str = field(default_factory=lambda: str(uuid4()))


ProgressSubscriber = Callable[[ProgressUpdate], None]


@dataclass(frozen=True)
class PerformanceMetrics:
    """Throughput, memory and batch timing of one entity over a window."""

    entity_type: str
    window_start: datetime
    window_end: datetime
    throughput_current: float
    throughput_average: float
    throughput_peak: float
    throughput_minimum: float
    memory_current: float
    memory_average: float
    memory_peak: float
    batch_time_average_ms: float
    batch_time_fastest_ms: float
    batch_time_slowest_ms: float
    batch_time_stddev_ms: float
    throughput_efficiency: float
    memory_efficiency: float
    efficiency_score: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "time_window": {
                "start_time": self.window_start.isoformat(),
                "end_time": self.window_end.isoformat(),
                "duration_ms": int((self.window_end - self.window_start).total_seconds() * 1000),
            },
            "throughput": {
                "current": self.throughput_current,
                "average": self.throughput_average,
                "peak": self.throughput_peak,
                "minimum": self.throughput_minimum,
            },
            "memory": {
                "current": self.memory_current,
                "average": self.memory_average,
                "peak": self.memory_peak,
            },
            "timing": {
                "average_batch_time_ms": self.batch_time_average_ms,
                "fastest_batch_ms": self.batch_time_fastest_ms,
                "slowest_batch_ms": self.batch_time_slowest_ms,
                "stddev_ms": self.batch_time_stddev_ms,
            },
            "efficiency": {
                "throughput_efficiency": self.throughput_efficiency,
                "memory_efficiency": self.memory_efficiency,
                "overall_score": self.efficiency_score,
            },
        }


@dataclass(frozen=True)
class ProgressSummary:
    total_entities: int
    completed_entities: int
    active_entities: int
    total_records_processed: int
    overall_progress: float
    estimated_time_remaining_ms: int | None


@dataclass(frozen=True)
class ProgressReport:
    report_id: str
    session_id: str
    generated_at: datetime
    summary: ProgressSummary
    entity_progress: list[ProgressSnapshot]
    alerts: list[ProgressAlert]
    recommendations: list[str]
    performance_metrics: list[PerformanceMetrics] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_id": self.report_id,
            "session_id": self.session_id,
            "generated_at": self.generated_at.isoformat(),
            "summary": {
                "total_entities": self.summary.total_entities,
                "completed_entities": self.summary.completed_entities,
                "active_entities": self.summary.active_entities,
                "total_records_processed": self.summary.total_records_processed,
                "overall_progress": self.summary.overall_progress,
                "estimated_time_remaining_ms": self.summary.estimated_time_remaining_ms,
            },
            "entity_progress": [snapshot.to_dict() for snapshot in self.entity_progress],
            "alerts": [alert.to_dict() for alert in self.alerts],
            "recommendations": list(self.recommendations),
            "performance_metrics": (
                [m.to_dict() for m in self.performance_metrics]
                if self.performance_metrics is not None
                else None
            ),
        }


@dataclass
class _Session:
    start_time: datetime
    initial_processed: int
    snapshots: list[ProgressSnapshot] = field(default_factory=list)
    batch_times: list[float] = field(default_factory=list)


class ProgressTracker:
    """
    Snapshot store, throughput/ETA estimator and alert manager for one run.

    All state is held on the instance, keyed by entity type.

    Args:
        session_id: Run the progress belongs to
        config: Thresholds, retention and update settings
        memory_sampler: Returns current memory usage in MB
        clock: Returns the current time (injectable for tests)

    Raises:
        ConfigurationError: If `config` is invalid.
    """

    def __init__(
        self,
        session_id: str,
        config: ProgressConfig | None = None,
        memory_sampler: Callable[[], float] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or ProgressConfig()
        ensure_valid(self.config)
        self.session_id = session_id
        self._memory_sampler = memory_sampler or process_memory_mb
        self._clock = clock
        self._sessions: dict[str, _Session] = {}
        self._performance_history: dict[str, list[PerformanceMetrics]] = {}
        self._alerts: list[ProgressAlert] = []
        self._subscribers: list[ProgressSubscriber] = []

    # -- tracking ---------------------------------------------------------------

    def start_tracking(
        self, entity_type: str, total_records: int, records_processed: int = 0
    ) -> ProgressSnapshot:
        """
        Open a tracking session for an entity.

        Args:
            entity_type: Entity to track
            total_records: Records the entity run covers
            records_processed: Records already processed by an earlier run

        Returns:
            The initial snapshot
        """
        now = self._clock()
        session = _Session(start_time=now, initial_processed=records_processed)
        self._sessions[entity_type] = session
        snapshot = ProgressSnapshot(
            session_id=self.session_id,
            entity_type=entity_type,
            timestamp=now,
            status=ProgressStatus.STARTING,
            records_processed=records_processed,
            total_records=total_records,
            start_time=now,
            memory_usage_mb=self._memory_sampler(),
        )
        session.snapshots.append(snapshot)
        logger.info("Started progress tracking for %s (%d records)", entity_type, total_records)
        self._publish(ProgressUpdateType.PROGRESS, entity_type, snapshot.to_dict())
        return snapshot

    def _session(self, entity_type: str) -> _Session:
        session = self._sessions.get(entity_type)
        if session is None or not session.snapshots:
            raise NoTrackingSessionError(entity_type)
        return session

    def update_progress(
        self,
        entity_type: str,
        records_processed: int,
        batch_info: BatchInfo | None = None,
        memory_usage_mb: float | None = None,
    ) -> ProgressSnapshot:
        """
        Record new progress for an entity.

        Args:
            entity_type: Tracked entity
            records_processed: Cumulative records processed
            batch_info: The batch that produced this progress
            memory_usage_mb: Memory sample (sampled now when omitted)

        Returns:
            The new snapshot

        Raises:
            NoTrackingSessionError: If `start_tracking` was never called
                for the entity.
        """
        session = self._session(entity_type)
        previous = session.snapshots[-1]
        now = self._clock()
        total = previous.total_records
        remaining = max(0, total - records_processed)

        elapsed = (now - session.start_time).total_seconds()
        interval = (now - previous.timestamp).total_seconds()
        average_throughput = (
            round((records_processed - session.initial_processed) / elapsed, 2)
            if elapsed > 0
            else 0.0
        )
        current_throughput = (
            round(max(0, records_processed - previous.records_processed) / interval, 2)
            if interval > 0
            else 0.0
        )

        if batch_info is not None:
            session.batch_times.append(batch_info.duration_ms)
        average_batch_time = (
            round(sum(session.batch_times) / len(session.batch_times), 2)
            if session.batch_times
            else 0.0
        )

        estimated_completion: datetime | None = None
        remaining_ms: int | None = None
        if current_throughput > 0 and remaining > 0:
            remaining_ms = round(remaining / current_throughput * 1000)
            estimated_completion = now + timedelta(milliseconds=remaining_ms)

        percentage = round(records_processed / total * 100, 2) if total > 0 else 0.0
        if remaining == 0:
            status = ProgressStatus.COMPLETED
        elif records_processed == 0:
            status = ProgressStatus.STARTING
        elif percentage > COMPLETING_PERCENTAGE:
            status = ProgressStatus.COMPLETING
        else:
            status = ProgressStatus.RUNNING

        snapshot = ProgressSnapshot(
            session_id=self.session_id,
            entity_type=entity_type,
            timestamp=now,
            status=status,
            records_processed=records_processed,
            total_records=total,
            start_time=session.start_time,
            current_throughput=current_throughput,
            average_throughput=average_throughput,
            average_batch_time_ms=average_batch_time,
            memory_usage_mb=(
                memory_usage_mb if memory_usage_mb is not None else self._memory_sampler()
            ),
            estimated_completion_time=estimated_completion,
            remaining_time_ms=remaining_ms,
            current_batch=batch_info,
        )
        session.snapshots.append(snapshot)
        self._cleanup_snapshots(session, now)
        self._check_alerts(session, snapshot, previous)

        logger.debug(
            "%s at %.2f%% (%d/%d, %.2f records/sec)",
            entity_type,
            percentage,
            records_processed,
            total,
            current_throughput,
        )
        update_type = (
            ProgressUpdateType.COMPLETION
            if status == ProgressStatus.COMPLETED
            else ProgressUpdateType.PROGRESS
        )
        self._publish(update_type, entity_type, snapshot.to_dict())
        return snapshot

    def set_status(self, entity_type: str, status: ProgressStatus) -> ProgressSnapshot:
        """Record a status change (paused, error) without new progress."""
        session = self._session(entity_type)
        previous = session.snapshots[-1]
        snapshot = ProgressSnapshot(
            session_id=self.session_id,
            entity_type=entity_type,
            timestamp=self._clock(),
            status=status,
            records_processed=previous.records_processed,
            total_records=previous.total_records,
            start_time=session.start_time,
            average_throughput=previous.average_throughput,
            average_batch_time_ms=previous.average_batch_time_ms,
            memory_usage_mb=previous.memory_usage_mb,
        )
        session.snapshots.append(snapshot)
        update_type = (
            ProgressUpdateType.ERROR
            if status == ProgressStatus.ERROR
            else ProgressUpdateType.PROGRESS
        )
        self._publish(update_type, entity_type, snapshot.to_dict())
        return snapshot

    def get_latest_progress(self, entity_type: str) -> ProgressSnapshot | None:
        session = self._sessions.get(entity_type)
        if session is None or not session.snapshots:
            return None
        return session.snapshots[-1]

    def get_all_progress(self) -> list[ProgressSnapshot]:
        """Latest snapshot of every tracked entity, most recent first."""
        latest = [s.snapshots[-1] for s in self._sessions.values() if s.snapshots]
        return sorted(latest, key=lambda snapshot: snapshot.timestamp, reverse=True)

    def snapshots(self, entity_type: str) -> list[ProgressSnapshot]:
        return list(self._session(entity_type).snapshots)

    # -- executor integration ---------------------------------------------------

    def handle_executor_event(self, event: ExecutorEvent) -> None:
        """MigrationExecutor listener feeding the tracker."""
        data = event.data
        match event.event_type:
            case ExecutorEventType.ENTITY_STARTED:
                self.start_tracking(
                    event.entity_type,
                    data.get("total_records", 0),
                    data.get("records_processed", 0),
                )
            case ExecutorEventType.BATCH_COMPLETED:
                self.update_progress(
                    event.entity_type,
                    data["records_processed"],
                    BatchInfo(
                        batch_number=data.get("batch_number", 0),
                        batch_size=data.get("processed_records", 0)
                        + data.get("failed_records", 0),
                        duration_ms=data.get("duration_ms", 0.0),
                    ),
                    memory_usage_mb=data.get("memory_usage_mb"),
                )
            case ExecutorEventType.ENTITY_COMPLETED:
                latest = self.get_latest_progress(event.entity_type)
                if latest is None or latest.status != ProgressStatus.COMPLETED:
                    self.update_progress(event.entity_type, data["records_processed"])
            case ExecutorEventType.ENTITY_PAUSED:
                if event.entity_type in self._sessions:
                    self.set_status(event.entity_type, ProgressStatus.PAUSED)
            case ExecutorEventType.ENTITY_FAILED:
                if event.entity_type in self._sessions:
                    self.set_status(event.entity_type, ProgressStatus.ERROR)

    # -- alerts -----------------------------------------------------------------

    def _check_alerts(
        self, session: _Session, snapshot: ProgressSnapshot, previous: ProgressSnapshot
    ) -> None:
        thresholds = self.config.thresholds
        entity_type = snapshot.entity_type

        if 0 < snapshot.current_throughput < thresholds.low_throughput_warning:
            self._create_alert(
                AlertType.LOW_THROUGHPUT,
                AlertSeverity.WARNING,
                entity_type,
                f"Low throughput detected: {snapshot.current_throughput} records/sec",
                {
                    "threshold": thresholds.low_throughput_warning,
                    "actual": snapshot.current_throughput,
                    "recommended_action": "Consider reducing batch size or optimizing queries",
                },
            )

        if snapshot.memory_usage_mb > thresholds.high_memory_warning:
            self._create_alert(
                AlertType.HIGH_MEMORY,
                AlertSeverity.WARNING,
                entity_type,
                f"High memory usage: {snapshot.memory_usage_mb}MB",
                {
                    "threshold": thresholds.high_memory_warning,
                    "actual": snapshot.memory_usage_mb,
                    "recommended_action": "Reduce batch size or restart process",
                },
            )

        since_previous = snapshot.timestamp - previous.timestamp
        if (
            since_previous > timedelta(minutes=thresholds.stalled_progress_warning_minutes)
            and snapshot.records_processed == previous.records_processed
            and snapshot.status == ProgressStatus.RUNNING
        ):
            minutes = round(since_previous.total_seconds() / 60)
            self._create_alert(
                AlertType.STALLED_PROGRESS,
                AlertSeverity.ERROR,
                entity_type,
                f"Progress stalled for {minutes} minutes",
                {
                    "last_update_minutes_ago": minutes,
                    "threshold": thresholds.stalled_progress_warning_minutes,
                    "recommended_action": "Check for deadlocks or connection issues",
                },
            )

        history = session.snapshots
        if snapshot.estimated_completion_time is not None and len(history) > ETA_HISTORY_MIN:
            previous_eta = history[-3].estimated_completion_time
            if previous_eta is not None:
                deviation = abs(snapshot.estimated_completion_time - previous_eta)
                if deviation > ETA_DEVIATION:
                    minutes = round(deviation.total_seconds() / 60)
                    self._create_alert(
                        AlertType.ETA_DEVIATION,
                        AlertSeverity.INFO,
                        entity_type,
                        f"ETA changed by {minutes} minutes",
                        {
                            "previous_eta": previous_eta.isoformat(),
                            "current_eta": snapshot.estimated_completion_time.isoformat(),
                            "deviation_minutes": minutes,
                        },
                    )

    def _create_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        entity_type: str,
        message: str,
        details: dict[str, Any],
    ) -> ProgressAlert | None:
        now = self._clock()
        for existing in self._alerts:
            if (
                not existing.resolved
                and existing.alert_type == alert_type
                and existing.entity_type == entity_type
                and now - existing.timestamp < ALERT_DEDUP_WINDOW
            ):
                return None

        alert = ProgressAlert(
            alert_type=alert_type,
            severity=severity,
            entity_type=entity_type,
            message=message,
            timestamp=now,
            details=details,
        )
        self._alerts.append(alert)
        logger.warning("Alert created: %s for %s: %s", alert_type.value, entity_type, message)
        self._publish(ProgressUpdateType.ALERT, entity_type, alert.to_dict())
        return alert

    def get_active_alerts(self) -> list[ProgressAlert]:
        return [alert for alert in self._alerts if not alert.resolved]

    def resolve_alert(self, alert_id: str) -> bool:
        """
        Mark an alert resolved.

        Returns:
            True if the alert exists, False otherwise
        """
        for alert in self._alerts:
            if alert.alert_id == alert_id:
                alert.resolved = True
                alert.resolved_at = self._clock()
                logger.info("Alert resolved: %s for %s", alert.alert_type.value, alert.entity_type)
                self._publish(
                    ProgressUpdateType.ALERT,
                    alert.entity_type,
                    {"action": "resolved", "alert": alert.to_dict()},
                )
                return True
        return False

    # -- subscribers ------------------------------------------------------------

    def subscribe(self, callback: ProgressSubscriber) -> Callable[[], None]:
        """
        Register a callback for real-time updates.

        Returns:
            Callable that removes the callback again
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(
        self, update_type: ProgressUpdateType, entity_type: str | None, data: dict[str, Any]
    ) -> None:
        if not self.config.enable_real_time_updates:
            return
        update = ProgressUpdate(
            update_type=update_type,
            session_id=self.session_id,
            entity_type=entity_type,
            data=data,
            timestamp=self._clock(),
        )
        for subscriber in list(self._subscribers):
            try:
                subscriber(update)
            except Exception as e:
                logger.error(
                    "Progress subscriber failed on %s update: %s",
                    update_type.value,
                    e,
                    exc_info=True,
                )

    # -- metrics and reports ----------------------------------------------------

    def calculate_performance_metrics(
        self, entity_type: str, window: timedelta | None = None
    ) -> PerformanceMetrics:
        """
        Summarize throughput, memory and batch timing over a window.

        Args:
            entity_type: Tracked entity
            window: How far back to look (the whole session when omitted)

        Raises:
            NoTrackingSessionError: If the entity is not tracked.
            ValueError: If the window holds fewer than two snapshots.
        """
        session = self._session(entity_type)
        now = self._clock()
        window_start = now - window if window is not None else session.snapshots[0].timestamp
        relevant = [s for s in session.snapshots if s.timestamp >= window_start]
        if len(relevant) < 2:
            raise ValueError(f"Insufficient data for performance calculation of {entity_type}")

        throughput = [s.current_throughput for s in relevant if s.current_throughput > 0]
        memory = [s.memory_usage_mb for s in relevant]
        batch_times = [
            s.current_batch.duration_ms for s in relevant if s.current_batch is not None
        ]

        throughput_average = round(statistics.fmean(throughput), 2) if throughput else 0.0
        memory_average = round(statistics.fmean(memory), 2)
        throughput_efficiency = min(1.0, throughput_average / EFFICIENT_THROUGHPUT)
        memory_efficiency = (
            min(1.0, throughput_average / memory_average) if memory_average > 0 else 0.0
        )

        metrics = PerformanceMetrics(
            entity_type=entity_type,
            window_start=window_start,
            window_end=now,
            throughput_current=throughput[-1] if throughput else 0.0,
            throughput_average=throughput_average,
            throughput_peak=max(throughput, default=0.0),
            throughput_minimum=min(throughput, default=0.0),
            memory_current=memory[-1],
            memory_average=memory_average,
            memory_peak=max(memory),
            batch_time_average_ms=(
                round(statistics.fmean(batch_times), 2) if batch_times else 0.0
            ),
            batch_time_fastest_ms=min(batch_times, default=0.0),
            batch_time_slowest_ms=max(batch_times, default=0.0),
            batch_time_stddev_ms=(
                round(statistics.pstdev(batch_times), 2) if len(batch_times) > 1 else 0.0
            ),
            throughput_efficiency=throughput_efficiency,
            memory_efficiency=memory_efficiency,
            efficiency_score=round((throughput_efficiency + memory_efficiency) / 2 * 100),
        )

        history = self._performance_history.setdefault(entity_type, [])
        history.append(metrics)
        del history[: max(0, len(history) - self.config.performance_window_size)]
        return metrics

    def generate_progress_report(
        self,
        entity_types: Sequence[str] | None = None,
        include_performance: bool = False,
    ) -> ProgressReport:
        """Summary, per-entity progress, active alerts and recommendations."""
        selected = list(entity_types) if entity_types is not None else list(self._sessions)
        latest = [
            snapshot
            for snapshot in (self.get_latest_progress(entity) for entity in selected)
            if snapshot is not None
        ]

        processed = sum(s.records_processed for s in latest)
        total = sum(s.total_records for s in latest)
        overall = round(processed / total * 100, 2) if total > 0 else 0.0
        completed = sum(1 for s in latest if s.status == ProgressStatus.COMPLETED)
        active = sum(
            1 for s in latest if s.status in (ProgressStatus.RUNNING, ProgressStatus.COMPLETING)
        )

        remaining_ms: int | None = None
        running = [s for s in latest if s.status == ProgressStatus.RUNNING]
        if running:
            throughput = statistics.fmean(s.current_throughput for s in running)
            if throughput > 0:
                remaining_ms = round((total - processed) / throughput * 1000)

        performance: list[PerformanceMetrics] | None = None
        if include_performance:
            performance = []
            for entity in selected:
                try:
                    performance.append(self.calculate_performance_metrics(entity))
                except (NoTrackingSessionError, ValueError):
                    logger.debug("Not enough progress data for %s metrics", entity)

        alerts = self.get_active_alerts()
        report = ProgressReport(
            report_id=str(uuid4()),
            session_id=self.session_id,
            generated_at=self._clock(),
            summary=ProgressSummary(
                total_entities=len(selected),
                completed_entities=completed,
                active_entities=active,
                total_records_processed=processed,
                overall_progress=overall,
                estimated_time_remaining_ms=remaining_ms,
            ),
            entity_progress=latest,
            alerts=alerts,
            recommendations=self._recommendations(latest, alerts, overall, active),
            performance_metrics=performance,
        )
        logger.info(
            "Progress report generated: %d entities, %.2f%% overall, %d active alerts",
            len(selected),
            overall,
            len(alerts),
        )
        return report

    def _recommendations(
        self,
        latest: list[ProgressSnapshot],
        alerts: list[ProgressAlert],
        overall: float,
        active: int,
    ) -> list[str]:
        recommendations: list[str] = []
        if alerts:
            recommendations.append(f"{len(alerts)} active alert(s) require attention")

        if active == 0 and overall == 100:
            recommendations.append("All entities completed successfully")
        elif overall < 25:
            recommendations.append("Migration in early stages - monitor for performance issues")
        elif overall > 90:
            recommendations.append("Migration nearing completion - prepare for final validation")

        floor = self.config.thresholds.low_throughput_warning
        slow = [s.entity_type for s in latest if 0 < s.current_throughput < floor]
        if slow:
            recommendations.append(f"Low throughput detected for: {', '.join(slow)}")
        stalled = [
            s.entity_type
            for s in latest
            if s.status == ProgressStatus.RUNNING and s.current_throughput == 0
        ]
        if stalled:
            recommendations.append(f"Stalled entities detected: {', '.join(stalled)}")

        if not recommendations:
            recommendations.append("Progress tracking normal - no issues detected")
        return recommendations

    # -- retention --------------------------------------------------------------

    def _cleanup_snapshots(self, session: _Session, now: datetime) -> None:
        cutoff = now - timedelta(hours=self.config.retention_period_hours)
        # The latest snapshot is always kept
        session.snapshots[:-1] = [s for s in session.snapshots[:-1] if s.timestamp > cutoff]

    def cleanup_old_data(self) -> int:
        """
        Drop snapshots and resolved alerts past the retention period.

        Returns:
            Number of snapshots and alerts removed
        """
        now = self._clock()
        cutoff = now - timedelta(hours=self.config.retention_period_hours)
        removed = 0
        for session in self._sessions.values():
            before = len(session.snapshots)
            self._cleanup_snapshots(session, now)
            removed += before - len(session.snapshots)
        kept = [
            alert
            for alert in self._alerts
            if not alert.resolved or (alert.resolved_at is not None and alert.resolved_at > cutoff)
        ]
        removed += len(self._alerts) - len(kept)
        self._alerts = kept
        if removed:
            logger.debug("Removed %d expired progress records", removed)
        return removed


__all__ = [
    "AlertSeverity",
    "AlertType",
    "BatchInfo",
    "PerformanceMetrics",
    "ProgressAlert",
    "ProgressReport",
    "ProgressSnapshot",
    "ProgressStatus",
    "ProgressSubscriber",
    "ProgressSummary",
    "ProgressTracker",
    "ProgressUpdate",
    "ProgressUpdateType",
]
