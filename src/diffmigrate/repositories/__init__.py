"""
Persistence for the state the engine owns.

- **Checkpoints**: resumable per-entity progress written by the executor
- **Differentials**: conflict audit trail written by the conflict resolver
- **Execution log**: structured log entries per session

Each store provides:
- A Protocol (interface) defining the contract
- PostgreSQL implementation for production use
- SQLite implementation for lightweight deployments (checkpoints, differentials)
- In-memory implementation for testing
"""

from diffmigrate.repositories._connection import execute_with_connection
from diffmigrate.repositories.checkpoint import (
    CheckpointStore,
    InMemoryCheckpointStore,
    PostgreSQLCheckpointStore,
    SQLiteCheckpointStore,
)
from diffmigrate.repositories.differential import (
    DifferentialStore,
    InMemoryDifferentialStore,
    PostgreSQLDifferentialStore,
    SQLiteDifferentialStore,
)
from diffmigrate.repositories.execution_log import (
    ExecutionLogRepository,
    InMemoryExecutionLogRepository,
    PostgreSQLExecutionLogRepository,
)

__all__ = [
    # Checkpoints
    "CheckpointStore",
    "PostgreSQLCheckpointStore",
    "SQLiteCheckpointStore",
    "InMemoryCheckpointStore",
    # Differentials
    "DifferentialStore",
    "PostgreSQLDifferentialStore",
    "SQLiteDifferentialStore",
    "InMemoryDifferentialStore",
    # Execution log
    "ExecutionLogRepository",
    "PostgreSQLExecutionLogRepository",
    "InMemoryExecutionLogRepository",
    # Helpers
    "execute_with_connection",
]
