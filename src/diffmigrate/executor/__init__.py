"""
Migration execution.

- **Graph**: dependency levels for a task set
- **Processor**: record migrators that write one batch
- **Executor**: batching, retries, checkpoints, pause and resume
"""

from diffmigrate.executor.executor import (
    BatchPerformance,
    BatchResult,
    BatchStatus,
    EntityResult,
    EntityStatus,
    ExecutionStatus,
    ExecutionSummary,
    ExecutorEvent,
    ExecutorEventType,
    ExecutorListener,
    MigrationExecutionResult,
    MigrationExecutor,
    MigrationTask,
    RecoveryInfo,
    TaskPriority,
    process_memory_mb,
)
from diffmigrate.executor.graph import DependencyGraph, build_dependency_graph
from diffmigrate.executor.processor import (
    CopyRecordMigrator,
    MigrationOutcome,
    RecordMigrator,
    RowValidator,
    to_destination_row,
)

__all__ = [
    # Executor
    "MigrationExecutor",
    "MigrationTask",
    "TaskPriority",
    "MigrationExecutionResult",
    "ExecutionStatus",
    "ExecutionSummary",
    "RecoveryInfo",
    "EntityResult",
    "EntityStatus",
    "BatchResult",
    "BatchStatus",
    "BatchPerformance",
    "ExecutorEvent",
    "ExecutorEventType",
    "ExecutorListener",
    "process_memory_mb",
    # Graph
    "DependencyGraph",
    "build_dependency_graph",
    # Processor
    "RecordMigrator",
    "CopyRecordMigrator",
    "MigrationOutcome",
    "RowValidator",
    "to_destination_row",
]
