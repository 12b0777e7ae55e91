"""
Checkpoint store: durable, resumable progress per (entity, run).

The migration executor is the only writer. Readers (resume, the baseline
analyzer's last-migration lookup) never mutate checkpoints.

Implementations:
    - PostgreSQLCheckpointStore: SQLAlchemy async engine or connection
    - SQLiteCheckpointStore: raw aiosqlite connection
    - InMemoryCheckpointStore: dictionary guarded by an asyncio.Lock
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from diffmigrate.models import Checkpoint
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import (
    ATTR_CHECKPOINT_ID,
    ATTR_DB_SYSTEM,
    ATTR_ENTITY_TYPE,
    ATTR_RUN_ID,
)
from diffmigrate.repositories._connection import (
    execute_with_connection,
    load_json_column,
    parse_timestamp,
)
from diffmigrate.serialization import json_dumps

if TYPE_CHECKING:
    import aiosqlite

_COLUMNS = """id, entity_type, migration_run_id, last_processed_cursor, batch_position,
              records_processed, records_remaining, checkpoint_data, created_at, updated_at"""


def _row_to_checkpoint(row: Any) -> Checkpoint:
    return Checkpoint(
        id=str(row[0]),
        entity_type=row[1],
        migration_run_id=row[2],
        last_processed_cursor=row[3],
        batch_position=row[4] or 0,
        records_processed=row[5] or 0,
        records_remaining=row[6] or 0,
        checkpoint_data=load_json_column(row[7]) or {},
        created_at=parse_timestamp(row[8]),
        updated_at=parse_timestamp(row[9]),
    )


@runtime_checkable
class CheckpointStore(Protocol):
    """
    Protocol for checkpoint stores.

    Checkpoints are keyed by id; `save` upserts so repeated writes of the
    same checkpoint update it in place.
    """

    async def save(self, checkpoint: Checkpoint) -> None:
        """
        Insert or update a checkpoint.

        Args:
            checkpoint: Checkpoint to persist
        """
        ...

    async def get(self, checkpoint_id: str) -> Checkpoint | None:
        """
        Get a checkpoint by id.

        Returns:
            The checkpoint, or None if it does not exist
        """
        ...

    async def get_latest(self, entity_type: str, run_id: str | None = None) -> Checkpoint | None:
        """
        Get the most recently updated checkpoint of an entity.

        Args:
            entity_type: Entity type
            run_id: Restrict to one run (any run when None)
        """
        ...

    async def list_for_run(self, run_id: str) -> list[Checkpoint]:
        """List the checkpoints of a run, ordered by entity type then update time."""
        ...

    async def delete_for_run(self, run_id: str) -> int:
        """
        Delete every checkpoint of a run.

        Returns:
            Number of checkpoints deleted
        """
        ...

    async def get_last_migration_timestamp(self, entity_type: str) -> datetime | None:
        """Most recent checkpoint write for an entity across all runs."""
        ...


class PostgreSQLCheckpointStore:
    """
    PostgreSQL implementation of the checkpoint store.

    Stores checkpoints in the `migration_checkpoints` table.

    Example:
        >>> store = PostgreSQLCheckpointStore(engine)
        >>> await store.save(checkpoint)
        >>> latest = await store.get_latest("doctors", run_id="run-1")
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Initialize the checkpoint store.

        Args:
            conn: Database connection or engine
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    async def save(self, checkpoint: Checkpoint) -> None:
        with self._tracer.span(
            "diffmigrate.checkpoint.save",
            {
                ATTR_CHECKPOINT_ID: checkpoint.id,
                ATTR_ENTITY_TYPE: checkpoint.entity_type,
                ATTR_RUN_ID: checkpoint.migration_run_id,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text("""
                INSERT INTO migration_checkpoints
                    (id, entity_type, migration_run_id, last_processed_cursor,
                     batch_position, records_processed, records_remaining,
                     checkpoint_data, created_at, updated_at)
                VALUES (:id, :entity_type, :run_id, :cursor, :batch_position,
                        :records_processed, :records_remaining, :checkpoint_data,
                        :created_at, :updated_at)
                ON CONFLICT (id) DO UPDATE
                SET last_processed_cursor = EXCLUDED.last_processed_cursor,
                    batch_position = EXCLUDED.batch_position,
                    records_processed = EXCLUDED.records_processed,
                    records_remaining = EXCLUDED.records_remaining,
                    checkpoint_data = EXCLUDED.checkpoint_data,
                    updated_at = EXCLUDED.updated_at
            """)
            params = {
                "id": checkpoint.id,
                "entity_type": checkpoint.entity_type,
                "run_id": checkpoint.migration_run_id,
                "cursor": checkpoint.last_processed_cursor,
                "batch_position": checkpoint.batch_position,
                "records_processed": checkpoint.records_processed,
                "records_remaining": checkpoint.records_remaining,
                "checkpoint_data": json_dumps(checkpoint.checkpoint_data),
                "created_at": checkpoint.created_at,
                "updated_at": checkpoint.updated_at,
            }

            async with execute_with_connection(self.conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def get(self, checkpoint_id: str) -> Checkpoint | None:
        with self._tracer.span(
            "diffmigrate.checkpoint.get",
            {ATTR_CHECKPOINT_ID: checkpoint_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"SELECT {_COLUMNS} FROM migration_checkpoints WHERE id = :id")

            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query, {"id": checkpoint_id})
                row = result.fetchone()
            return _row_to_checkpoint(row) if row else None

    async def get_latest(self, entity_type: str, run_id: str | None = None) -> Checkpoint | None:
        with self._tracer.span(
            "diffmigrate.checkpoint.get_latest",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_DB_SYSTEM: "postgresql"},
        ):
            sql = f"SELECT {_COLUMNS} FROM migration_checkpoints WHERE entity_type = :entity_type"
            params: dict[str, Any] = {"entity_type": entity_type}
            if run_id is not None:
                sql += " AND migration_run_id = :run_id"
                params["run_id"] = run_id
            sql += " ORDER BY updated_at DESC, batch_position DESC LIMIT 1"

            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(text(sql), params)
                row = result.fetchone()
            return _row_to_checkpoint(row) if row else None

    async def list_for_run(self, run_id: str) -> list[Checkpoint]:
        with self._tracer.span(
            "diffmigrate.checkpoint.list_for_run",
            {ATTR_RUN_ID: run_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"""
                SELECT {_COLUMNS}
                FROM migration_checkpoints
                WHERE migration_run_id = :run_id
                ORDER BY entity_type, updated_at
            """)

            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query, {"run_id": run_id})
                rows = result.fetchall()
            return [_row_to_checkpoint(row) for row in rows]

    async def delete_for_run(self, run_id: str) -> int:
        with self._tracer.span(
            "diffmigrate.checkpoint.delete_for_run",
            {ATTR_RUN_ID: run_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("DELETE FROM migration_checkpoints WHERE migration_run_id = :run_id")

            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(query, {"run_id": run_id})
                return result.rowcount or 0

    async def get_last_migration_timestamp(self, entity_type: str) -> datetime | None:
        with self._tracer.span(
            "diffmigrate.checkpoint.get_last_migration_timestamp",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                SELECT MAX(updated_at)
                FROM migration_checkpoints
                WHERE entity_type = :entity_type
            """)

            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query, {"entity_type": entity_type})
                row = result.fetchone()
            return parse_timestamp(row[0]) if row else None


class SQLiteCheckpointStore:
    """
    SQLite implementation of the checkpoint store.

    SQLite-specific adaptations:
    - Timestamps stored as TEXT in ISO 8601 format
    - checkpoint_data stored as JSON TEXT
    - Uses UPSERT with ON CONFLICT syntax (SQLite 3.24+)

    Example:
        >>> async with aiosqlite.connect("migration.db") as db:
        ...     store = SQLiteCheckpointStore(db)
        ...     await store.save(checkpoint)
    """

    def __init__(
        self,
        connection: "aiosqlite.Connection",
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the checkpoint store.

        Args:
            connection: aiosqlite database connection
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._connection = connection

    async def save(self, checkpoint: Checkpoint) -> None:
        with self._tracer.span(
            "diffmigrate.checkpoint.save",
            {
                ATTR_CHECKPOINT_ID: checkpoint.id,
                ATTR_ENTITY_TYPE: checkpoint.entity_type,
                ATTR_RUN_ID: checkpoint.migration_run_id,
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            await self._connection.execute(
                """
                INSERT INTO migration_checkpoints
                    (id, entity_type, migration_run_id, last_processed_cursor,
                     batch_position, records_processed, records_remaining,
                     checkpoint_data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE
                SET last_processed_cursor = excluded.last_processed_cursor,
                    batch_position = excluded.batch_position,
                    records_processed = excluded.records_processed,
                    records_remaining = excluded.records_remaining,
                    checkpoint_data = excluded.checkpoint_data,
                    updated_at = excluded.updated_at
                """,
                (
                    checkpoint.id,
                    checkpoint.entity_type,
                    checkpoint.migration_run_id,
                    checkpoint.last_processed_cursor,
                    checkpoint.batch_position,
                    checkpoint.records_processed,
                    checkpoint.records_remaining,
                    json_dumps(checkpoint.checkpoint_data),
                    checkpoint.created_at.isoformat(),
                    checkpoint.updated_at.isoformat(),
                ),
            )
            await self._connection.commit()

    async def get(self, checkpoint_id: str) -> Checkpoint | None:
        with self._tracer.span(
            "diffmigrate.checkpoint.get",
            {ATTR_CHECKPOINT_ID: checkpoint_id, ATTR_DB_SYSTEM: "sqlite"},
        ):
            cursor = await self._connection.execute(
                f"SELECT {_COLUMNS} FROM migration_checkpoints WHERE id = ?",
                (checkpoint_id,),
            )
            row = await cursor.fetchone()
            return _row_to_checkpoint(row) if row else None

    async def get_latest(self, entity_type: str, run_id: str | None = None) -> Checkpoint | None:
        with self._tracer.span(
            "diffmigrate.checkpoint.get_latest",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_DB_SYSTEM: "sqlite"},
        ):
            sql = f"SELECT {_COLUMNS} FROM migration_checkpoints WHERE entity_type = ?"
            params: list[Any] = [entity_type]
            if run_id is not None:
                sql += " AND migration_run_id = ?"
                params.append(run_id)
            sql += " ORDER BY updated_at DESC, batch_position DESC LIMIT 1"

            cursor = await self._connection.execute(sql, tuple(params))
            row = await cursor.fetchone()
            return _row_to_checkpoint(row) if row else None

    async def list_for_run(self, run_id: str) -> list[Checkpoint]:
        with self._tracer.span(
            "diffmigrate.checkpoint.list_for_run",
            {ATTR_RUN_ID: run_id, ATTR_DB_SYSTEM: "sqlite"},
        ):
            cursor = await self._connection.execute(
                f"""
                SELECT {_COLUMNS}
                FROM migration_checkpoints
                WHERE migration_run_id = ?
                ORDER BY entity_type, updated_at
                """,
                (run_id,),
            )
            rows = await cursor.fetchall()
            return [_row_to_checkpoint(row) for row in rows]

    async def delete_for_run(self, run_id: str) -> int:
        with self._tracer.span(
            "diffmigrate.checkpoint.delete_for_run",
            {ATTR_RUN_ID: run_id, ATTR_DB_SYSTEM: "sqlite"},
        ):
            cursor = await self._connection.execute(
                "DELETE FROM migration_checkpoints WHERE migration_run_id = ?",
                (run_id,),
            )
            await self._connection.commit()
            return cursor.rowcount or 0

    async def get_last_migration_timestamp(self, entity_type: str) -> datetime | None:
        with self._tracer.span(
            "diffmigrate.checkpoint.get_last_migration_timestamp",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_DB_SYSTEM: "sqlite"},
        ):
            cursor = await self._connection.execute(
                "SELECT MAX(updated_at) FROM migration_checkpoints WHERE entity_type = ?",
                (entity_type,),
            )
            row = await cursor.fetchone()
            return parse_timestamp(row[0]) if row else None


class InMemoryCheckpointStore:
    """
    In-memory implementation of the checkpoint store for testing.

    Example:
        >>> store = InMemoryCheckpointStore()
        >>> await store.save(checkpoint)
        >>> assert await store.get(checkpoint.id) == checkpoint
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._checkpoints: dict[str, Checkpoint] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def save(self, checkpoint: Checkpoint) -> None:
        with self._tracer.span(
            "diffmigrate.checkpoint.save",
            {
                ATTR_CHECKPOINT_ID: checkpoint.id,
                ATTR_ENTITY_TYPE: checkpoint.entity_type,
                ATTR_RUN_ID: checkpoint.migration_run_id,
            },
        ):
            async with self._lock:
                self._checkpoints[checkpoint.id] = checkpoint

    async def get(self, checkpoint_id: str) -> Checkpoint | None:
        with self._tracer.span(
            "diffmigrate.checkpoint.get",
            {ATTR_CHECKPOINT_ID: checkpoint_id},
        ):
            async with self._lock:
                return self._checkpoints.get(checkpoint_id)

    async def get_latest(self, entity_type: str, run_id: str | None = None) -> Checkpoint | None:
        with self._tracer.span(
            "diffmigrate.checkpoint.get_latest",
            {ATTR_ENTITY_TYPE: entity_type},
        ):
            async with self._lock:
                candidates = [
                    c
                    for c in self._checkpoints.values()
                    if c.entity_type == entity_type
                    and (run_id is None or c.migration_run_id == run_id)
                ]
            if not candidates:
                return None
            return max(candidates, key=lambda c: (c.updated_at, c.batch_position))

    async def list_for_run(self, run_id: str) -> list[Checkpoint]:
        with self._tracer.span(
            "diffmigrate.checkpoint.list_for_run",
            {ATTR_RUN_ID: run_id},
        ):
            async with self._lock:
                return sorted(
                    (c for c in self._checkpoints.values() if c.migration_run_id == run_id),
                    key=lambda c: (c.entity_type, c.updated_at),
                )

    async def delete_for_run(self, run_id: str) -> int:
        with self._tracer.span(
            "diffmigrate.checkpoint.delete_for_run",
            {ATTR_RUN_ID: run_id},
        ):
            async with self._lock:
                doomed = [k for k, c in self._checkpoints.items() if c.migration_run_id == run_id]
                for key in doomed:
                    del self._checkpoints[key]
                return len(doomed)

    async def get_last_migration_timestamp(self, entity_type: str) -> datetime | None:
        with self._tracer.span(
            "diffmigrate.checkpoint.get_last_migration_timestamp",
            {ATTR_ENTITY_TYPE: entity_type},
        ):
            async with self._lock:
                stamps = [
                    c.updated_at for c in self._checkpoints.values() if c.entity_type == entity_type
                ]
            return max(stamps) if stamps else None

    async def clear(self) -> None:
        """Clear all checkpoints. Useful for test setup/teardown."""
        async with self._lock:
            self._checkpoints.clear()


__all__ = [
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "PostgreSQLCheckpointStore",
    "SQLiteCheckpointStore",
]
