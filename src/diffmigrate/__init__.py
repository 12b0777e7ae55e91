"""
diffmigrate - Differential migration engine for legacy relational schemas.

This library provides:
- Baseline analysis of record gaps and mapping health
- Change detection with timestamp, id and checksum cursors
- Dependency-ordered, checkpointed and retryable batch execution
- Conflict detection and resolution with an audit trail
- Progress tracking with throughput, ETA and alerts
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("diffmigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Baseline analysis
from diffmigrate.baseline import (
    BaselineAnalyzer,
    BaselineReport,
    BaselineStatus,
    EntityAnalysis,
    MappingValidation,
)

# Entity catalog
from diffmigrate.catalog import LEGACY_CATALOG, EntityCatalog, EntityDescriptor

# Configuration
from diffmigrate.config import (
    BaselineConfig,
    DetectionConfig,
    ExecutionConfig,
    ProgressConfig,
    ProgressThresholds,
    ResolutionOptions,
)

# Conflict resolution
from diffmigrate.conflicts import (
    BackupInfo,
    BackupStore,
    ConflictResolutionResult,
    ConflictResolutionSummary,
    ConflictResolver,
    FileBackupStore,
    InMemoryBackupStore,
    ResolutionStatus,
)

# Change detection
from diffmigrate.detection import (
    ChecksumStrategy,
    DetectionOptions,
    DetectionResult,
    DetectionStatus,
    DetectionStrategy,
    DifferentialDetector,
    IdStrategy,
    TimestampStrategy,
)

# Exceptions
from diffmigrate.exceptions import (
    AnalysisCeilingExceededError,
    BackupError,
    BatchTimeoutError,
    CheckpointNotFoundError,
    ConfigurationError,
    DataValidationError,
    DependencyCycleError,
    DiffMigrationError,
    ErrorDetail,
    InvariantViolationError,
    NoTrackingSessionError,
    TransientIOError,
    UnknownEntityTypeError,
)
from diffmigrate.execution_log import ExecutionLogger

# Execution
from diffmigrate.executor import (
    BatchResult,
    BatchStatus,
    CopyRecordMigrator,
    ExecutionStatus,
    ExecutorEvent,
    ExecutorEventType,
    MigrationExecutionResult,
    MigrationExecutor,
    MigrationTask,
    RecordMigrator,
    TaskPriority,
)

# Data access
from diffmigrate.gateway import InMemoryTableGateway, SQLTableGateway, TableGateway
from diffmigrate.integrity import IntegrityChecker, IntegrityValidation

# Models
from diffmigrate.models import (
    ChangeRecord,
    ChangeType,
    Checkpoint,
    ComparisonType,
    DataDifferential,
    DifferentialAnalysisResult,
    ExecutionLogEntry,
    LogLevel,
    MigrationStatus,
    OperationType,
    OverallStatus,
    ResolutionStrategy,
)
from diffmigrate.pipeline import DifferentialMigrationPipeline, PipelineResult

# Progress tracking
from diffmigrate.progress import (
    AlertType,
    BatchInfo,
    ProgressAlert,
    ProgressReport,
    ProgressSnapshot,
    ProgressStatus,
    ProgressTracker,
)

# Persistence
from diffmigrate.repositories import (
    CheckpointStore,
    DifferentialStore,
    ExecutionLogRepository,
    InMemoryCheckpointStore,
    InMemoryDifferentialStore,
    InMemoryExecutionLogRepository,
    PostgreSQLCheckpointStore,
    PostgreSQLDifferentialStore,
    PostgreSQLExecutionLogRepository,
    SQLiteCheckpointStore,
    SQLiteDifferentialStore,
)
from diffmigrate.retry import AttemptOutcome, AttemptState, RetryPolicy, run_with_retry
from diffmigrate.schema import get_schema_statements

__all__ = [
    "__version__",
    # Pipeline
    "DifferentialMigrationPipeline",
    "PipelineResult",
    # Catalog
    "EntityCatalog",
    "EntityDescriptor",
    "LEGACY_CATALOG",
    # Configuration
    "BaselineConfig",
    "DetectionConfig",
    "ExecutionConfig",
    "ProgressConfig",
    "ProgressThresholds",
    "ResolutionOptions",
    # Baseline
    "BaselineAnalyzer",
    "BaselineReport",
    "BaselineStatus",
    "EntityAnalysis",
    "MappingValidation",
    # Detection
    "DifferentialDetector",
    "DetectionOptions",
    "DetectionResult",
    "DetectionStatus",
    "DetectionStrategy",
    "TimestampStrategy",
    "IdStrategy",
    "ChecksumStrategy",
    # Execution
    "MigrationExecutor",
    "MigrationTask",
    "TaskPriority",
    "MigrationExecutionResult",
    "ExecutionStatus",
    "BatchResult",
    "BatchStatus",
    "ExecutorEvent",
    "ExecutorEventType",
    "RecordMigrator",
    "CopyRecordMigrator",
    "IntegrityChecker",
    "IntegrityValidation",
    # Conflicts
    "ConflictResolver",
    "ConflictResolutionResult",
    "ConflictResolutionSummary",
    "ResolutionStatus",
    "BackupInfo",
    "BackupStore",
    "FileBackupStore",
    "InMemoryBackupStore",
    # Progress
    "ProgressTracker",
    "ProgressSnapshot",
    "ProgressStatus",
    "ProgressAlert",
    "ProgressReport",
    "AlertType",
    "BatchInfo",
    # Models
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
    # Data access
    "TableGateway",
    "SQLTableGateway",
    "InMemoryTableGateway",
    # Persistence
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "PostgreSQLCheckpointStore",
    "SQLiteCheckpointStore",
    "DifferentialStore",
    "InMemoryDifferentialStore",
    "PostgreSQLDifferentialStore",
    "SQLiteDifferentialStore",
    "ExecutionLogRepository",
    "InMemoryExecutionLogRepository",
    "PostgreSQLExecutionLogRepository",
    "ExecutionLogger",
    "get_schema_statements",
    # Retry
    "AttemptOutcome",
    "AttemptState",
    "RetryPolicy",
    "run_with_retry",
    # Exceptions
    "DiffMigrationError",
    "ConfigurationError",
    "UnknownEntityTypeError",
    "DependencyCycleError",
    "CheckpointNotFoundError",
    "TransientIOError",
    "BatchTimeoutError",
    "DataValidationError",
    "InvariantViolationError",
    "AnalysisCeilingExceededError",
    "NoTrackingSessionError",
    "BackupError",
    "ErrorDetail",
]
