"""
DDL for the tables the engine owns.

The engine persists three tables:
    - migration_checkpoints: resumable per-entity progress
    - data_differentials: conflict audit trail
    - migration_execution_logs: structured execution log

Statements are generated for PostgreSQL and SQLite. Types follow the same
mapping used for read models: JSONB/TIMESTAMPTZ/UUID on PostgreSQL,
TEXT everywhere on SQLite.

Example:
    >>> from diffmigrate.schema import get_schema_statements
    >>> async with engine.begin() as conn:
    ...     for statement in get_schema_statements("postgresql"):
    ...         await conn.execute(text(statement))
"""

from typing import Literal

from diffmigrate.models import LogLevel, OperationType

Dialect = Literal["postgresql", "sqlite"]

# Column types per dialect
POSTGRESQL_TYPES: dict[str, str] = {
    "id": "UUID",
    "text": "VARCHAR(255)",
    "long_text": "TEXT",
    "int": "INTEGER",
    "bool": "BOOLEAN",
    "timestamp": "TIMESTAMP WITH TIME ZONE",
    "json": "JSONB",
}

SQLITE_TYPES: dict[str, str] = {
    "id": "TEXT",
    "text": "TEXT",
    "long_text": "TEXT",
    "int": "INTEGER",
    "bool": "INTEGER",
    "timestamp": "TEXT",
    "json": "TEXT",
}


def _in_list(values: list[str]) -> str:
    return ", ".join(f"'{value}'" for value in values)


def _checkpoints_table(t: dict[str, str]) -> str:
    return f"""CREATE TABLE IF NOT EXISTS migration_checkpoints (
    id {t["id"]} PRIMARY KEY,
    entity_type {t["text"]} NOT NULL,
    migration_run_id {t["text"]} NOT NULL,
    last_processed_cursor {t["text"]},
    batch_position {t["int"]} NOT NULL DEFAULT 0,
    records_processed {t["int"]} NOT NULL DEFAULT 0 CHECK (records_processed >= 0),
    records_remaining {t["int"]} NOT NULL DEFAULT 0 CHECK (records_remaining >= 0),
    checkpoint_data {t["json"]} NOT NULL,
    created_at {t["timestamp"]} NOT NULL,
    updated_at {t["timestamp"]} NOT NULL
);"""


def _differentials_table(t: dict[str, str]) -> str:
    return f"""CREATE TABLE IF NOT EXISTS data_differentials (
    id {t["id"]} PRIMARY KEY,
    entity_type {t["text"]} NOT NULL,
    source_table {t["text"]} NOT NULL,
    target_table {t["text"]} NOT NULL,
    comparison_type {t["text"]} NOT NULL
        CHECK (comparison_type IN ('missing_records', 'conflicted_records', 'deleted_records')),
    legacy_ids {t["json"]} NOT NULL,
    record_count {t["int"]} NOT NULL DEFAULT 0 CHECK (record_count >= 0),
    comparison_criteria {t["json"]} NOT NULL,
    resolution_strategy {t["text"]},
    resolved {t["bool"]} NOT NULL DEFAULT {"FALSE" if t is POSTGRESQL_TYPES else "0"},
    resolved_at {t["timestamp"]},
    metadata {t["json"]} NOT NULL,
    created_at {t["timestamp"]} NOT NULL
);"""


def _execution_logs_table(t: dict[str, str]) -> str:
    operation_types = _in_list([op.value for op in OperationType])
    log_levels = _in_list([level.value for level in LogLevel])
    return f"""CREATE TABLE IF NOT EXISTS migration_execution_logs (
    id {t["id"]} PRIMARY KEY,
    session_id {t["text"]} NOT NULL,
    entity_type {t["text"]},
    operation_type {t["text"]} NOT NULL CHECK (operation_type IN ({operation_types})),
    log_level {t["text"]} NOT NULL CHECK (log_level IN ({log_levels})),
    message {t["long_text"]} NOT NULL,
    error_details {t["json"]},
    performance_data {t["json"]},
    context_data {t["json"]} NOT NULL,
    timestamp {t["timestamp"]} NOT NULL
);"""


def get_schema_statements(dialect: Dialect = "postgresql") -> list[str]:
    """
    Return CREATE TABLE and CREATE INDEX statements for `dialect`.

    Args:
        dialect: 'postgresql' or 'sqlite'

    Returns:
        Statements to execute in order; each is idempotent.

    Raises:
        ValueError: If the dialect is not supported.
    """
    if dialect == "postgresql":
        types = POSTGRESQL_TYPES
    elif dialect == "sqlite":
        types = SQLITE_TYPES
    else:
        raise ValueError(f"Unsupported dialect: {dialect}")

    return [
        _checkpoints_table(types),
        "CREATE INDEX IF NOT EXISTS idx_migration_checkpoints_entity_run "
        "ON migration_checkpoints(entity_type, migration_run_id);",
        "CREATE INDEX IF NOT EXISTS idx_migration_checkpoints_updated "
        "ON migration_checkpoints(updated_at);",
        _differentials_table(types),
        "CREATE INDEX IF NOT EXISTS idx_data_differentials_unresolved "
        "ON data_differentials(resolved, target_table);",
        _execution_logs_table(types),
        "CREATE INDEX IF NOT EXISTS idx_migration_execution_logs_session "
        "ON migration_execution_logs(session_id, timestamp);",
    ]


__all__ = ["Dialect", "get_schema_statements"]
