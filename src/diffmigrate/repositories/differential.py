"""
Differential store: the conflict audit trail.

The conflict resolver is the only writer. Differentials are inserted by
conflict detection and flipped to resolved by conflict resolution; rows
are never deleted.

Implementations:
    - PostgreSQLDifferentialStore: SQLAlchemy async engine or connection
    - SQLiteDifferentialStore: raw aiosqlite connection
    - InMemoryDifferentialStore: dictionary guarded by an asyncio.Lock
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from diffmigrate.models import (
    ComparisonType,
    DataDifferential,
    ResolutionStrategy,
)
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import (
    ATTR_DB_SYSTEM,
    ATTR_DIFFERENTIAL_ID,
    ATTR_ENTITY_TYPE,
    ATTR_RESOLUTION_STRATEGY,
)
from diffmigrate.repositories._connection import (
    execute_with_connection,
    load_json_column,
    parse_timestamp,
)
from diffmigrate.serialization import json_dumps

if TYPE_CHECKING:
    import aiosqlite

_COLUMNS = """id, entity_type, source_table, target_table, comparison_type, legacy_ids,
              comparison_criteria, resolution_strategy, resolved, resolved_at,
              metadata, created_at"""


def _row_to_differential(row: Any) -> DataDifferential:
    return DataDifferential(
        id=str(row[0]),
        entity_type=row[1],
        source_table=row[2],
        target_table=row[3],
        comparison_type=ComparisonType(row[4]),
        legacy_ids=tuple(str(i) for i in load_json_column(row[5]) or []),
        comparison_criteria=load_json_column(row[6]) or {},
        resolution_strategy=ResolutionStrategy(row[7]) if row[7] else None,
        resolved=bool(row[8]),
        resolved_at=parse_timestamp(row[9]),
        metadata=load_json_column(row[10]) or {},
        created_at=parse_timestamp(row[11]),
    )


@runtime_checkable
class DifferentialStore(Protocol):
    """Protocol for the DataDifferential audit trail."""

    async def add(self, differential: DataDifferential) -> None:
        """
        Record a newly detected differential.

        Args:
            differential: Unresolved differential to store
        """
        ...

    async def get(self, differential_id: str) -> DataDifferential | None:
        """Get a differential by id, or None if it does not exist."""
        ...

    async def list_unresolved(
        self, target_tables: list[str] | None = None
    ) -> list[DataDifferential]:
        """
        List unresolved differentials, oldest first.

        Args:
            target_tables: Restrict to these destination tables
        """
        ...

    async def mark_resolved(
        self,
        differential_id: str,
        strategy: ResolutionStrategy,
        resolved_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Flip a differential to resolved.

        Only unresolved rows are updated, so a second call is a no-op.

        Returns:
            True if the row changed, False if it was already resolved or missing
        """
        ...

    async def list_all(self) -> list[DataDifferential]:
        """List every differential, oldest first."""
        ...


class PostgreSQLDifferentialStore:
    """
    PostgreSQL implementation of the differential store.

    Stores differentials in the `data_differentials` table.
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Initialize the differential store.

        Args:
            conn: Database connection or engine
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    async def add(self, differential: DataDifferential) -> None:
        with self._tracer.span(
            "diffmigrate.differential.add",
            {
                ATTR_DIFFERENTIAL_ID: differential.id,
                ATTR_ENTITY_TYPE: differential.entity_type,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text("""
                INSERT INTO data_differentials
                    (id, entity_type, source_table, target_table, comparison_type,
                     legacy_ids, record_count, comparison_criteria, resolution_strategy,
                     resolved, resolved_at, metadata, created_at)
                VALUES (:id, :entity_type, :source_table, :target_table, :comparison_type,
                        :legacy_ids, :record_count, :comparison_criteria, :resolution_strategy,
                        :resolved, :resolved_at, :metadata, :created_at)
            """)
            params = {
                "id": differential.id,
                "entity_type": differential.entity_type,
                "source_table": differential.source_table,
                "target_table": differential.target_table,
                "comparison_type": differential.comparison_type.value,
                "legacy_ids": json_dumps(list(differential.legacy_ids)),
                "record_count": differential.record_count,
                "comparison_criteria": json_dumps(differential.comparison_criteria),
                "resolution_strategy": (
                    differential.resolution_strategy.value
                    if differential.resolution_strategy
                    else None
                ),
                "resolved": differential.resolved,
                "resolved_at": differential.resolved_at,
                "metadata": json_dumps(differential.metadata),
                "created_at": differential.created_at,
            }

            async with execute_with_connection(self.conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def get(self, differential_id: str) -> DataDifferential | None:
        with self._tracer.span(
            "diffmigrate.differential.get",
            {ATTR_DIFFERENTIAL_ID: differential_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"SELECT {_COLUMNS} FROM data_differentials WHERE id = :id")

            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query, {"id": differential_id})
                row = result.fetchone()
            return _row_to_differential(row) if row else None

    async def list_unresolved(
        self, target_tables: list[str] | None = None
    ) -> list[DataDifferential]:
        with self._tracer.span(
            "diffmigrate.differential.list_unresolved",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            sql = f"SELECT {_COLUMNS} FROM data_differentials WHERE resolved = FALSE"
            params: dict[str, Any] = {}
            if target_tables:
                sql += " AND target_table = ANY(:target_tables)"
                params["target_tables"] = list(target_tables)
            sql += " ORDER BY created_at"

            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(text(sql), params)
                rows = result.fetchall()
            return [_row_to_differential(row) for row in rows]

    async def mark_resolved(
        self,
        differential_id: str,
        strategy: ResolutionStrategy,
        resolved_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        with self._tracer.span(
            "diffmigrate.differential.mark_resolved",
            {
                ATTR_DIFFERENTIAL_ID: differential_id,
                ATTR_RESOLUTION_STRATEGY: strategy.value,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(
                    text("SELECT metadata FROM data_differentials WHERE id = :id FOR UPDATE"),
                    {"id": differential_id},
                )
                row = result.fetchone()
                if row is None:
                    return False
                merged = dict(load_json_column(row[0]) or {})
                merged.update(metadata or {})
                result = await conn.execute(
                    text("""
                        UPDATE data_differentials
                        SET resolved = TRUE,
                            resolved_at = :resolved_at,
                            resolution_strategy = :strategy,
                            metadata = :metadata
                        WHERE id = :id AND resolved = FALSE
                    """),
                    {
                        "id": differential_id,
                        "resolved_at": resolved_at,
                        "strategy": strategy.value,
                        "metadata": json_dumps(merged),
                    },
                )
                return bool(result.rowcount)

    async def list_all(self) -> list[DataDifferential]:
        with self._tracer.span(
            "diffmigrate.differential.list_all",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"SELECT {_COLUMNS} FROM data_differentials ORDER BY created_at")

            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query)
                rows = result.fetchall()
            return [_row_to_differential(row) for row in rows]


class SQLiteDifferentialStore:
    """
    SQLite implementation of the differential store.

    SQLite-specific adaptations:
    - legacy_ids, comparison_criteria and metadata stored as JSON TEXT
    - resolved stored as INTEGER 0/1
    - Table filter built with an IN clause instead of ANY()
    """

    def __init__(
        self,
        connection: "aiosqlite.Connection",
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._connection = connection

    async def add(self, differential: DataDifferential) -> None:
        with self._tracer.span(
            "diffmigrate.differential.add",
            {
                ATTR_DIFFERENTIAL_ID: differential.id,
                ATTR_ENTITY_TYPE: differential.entity_type,
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            await self._connection.execute(
                """
                INSERT INTO data_differentials
                    (id, entity_type, source_table, target_table, comparison_type,
                     legacy_ids, record_count, comparison_criteria, resolution_strategy,
                     resolved, resolved_at, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    differential.id,
                    differential.entity_type,
                    differential.source_table,
                    differential.target_table,
                    differential.comparison_type.value,
                    json_dumps(list(differential.legacy_ids)),
                    differential.record_count,
                    json_dumps(differential.comparison_criteria),
                    differential.resolution_strategy.value
                    if differential.resolution_strategy
                    else None,
                    1 if differential.resolved else 0,
                    differential.resolved_at.isoformat() if differential.resolved_at else None,
                    json_dumps(differential.metadata),
                    differential.created_at.isoformat(),
                ),
            )
            await self._connection.commit()

    async def get(self, differential_id: str) -> DataDifferential | None:
        with self._tracer.span(
            "diffmigrate.differential.get",
            {ATTR_DIFFERENTIAL_ID: differential_id, ATTR_DB_SYSTEM: "sqlite"},
        ):
            cursor = await self._connection.execute(
                f"SELECT {_COLUMNS} FROM data_differentials WHERE id = ?",
                (differential_id,),
            )
            row = await cursor.fetchone()
            return _row_to_differential(row) if row else None

    async def list_unresolved(
        self, target_tables: list[str] | None = None
    ) -> list[DataDifferential]:
        with self._tracer.span(
            "diffmigrate.differential.list_unresolved",
            {ATTR_DB_SYSTEM: "sqlite"},
        ):
            sql = f"SELECT {_COLUMNS} FROM data_differentials WHERE resolved = 0"
            params: tuple[Any, ...] = ()
            if target_tables:
                placeholders = ",".join("?" * len(target_tables))
                sql += f" AND target_table IN ({placeholders})"
                params = tuple(target_tables)
            sql += " ORDER BY created_at"

            cursor = await self._connection.execute(sql, params)
            rows = await cursor.fetchall()
            return [_row_to_differential(row) for row in rows]

    async def mark_resolved(
        self,
        differential_id: str,
        strategy: ResolutionStrategy,
        resolved_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        with self._tracer.span(
            "diffmigrate.differential.mark_resolved",
            {
                ATTR_DIFFERENTIAL_ID: differential_id,
                ATTR_RESOLUTION_STRATEGY: strategy.value,
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            cursor = await self._connection.execute(
                "SELECT metadata FROM data_differentials WHERE id = ?",
                (differential_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return False
            merged = dict(load_json_column(row[0]) or {})
            merged.update(metadata or {})
            cursor = await self._connection.execute(
                """
                UPDATE data_differentials
                SET resolved = 1, resolved_at = ?, resolution_strategy = ?, metadata = ?
                WHERE id = ? AND resolved = 0
                """,
                (resolved_at.isoformat(), strategy.value, json_dumps(merged), differential_id),
            )
            await self._connection.commit()
            return bool(cursor.rowcount)

    async def list_all(self) -> list[DataDifferential]:
        with self._tracer.span(
            "diffmigrate.differential.list_all",
            {ATTR_DB_SYSTEM: "sqlite"},
        ):
            cursor = await self._connection.execute(
                f"SELECT {_COLUMNS} FROM data_differentials ORDER BY created_at"
            )
            rows = await cursor.fetchall()
            return [_row_to_differential(row) for row in rows]


class InMemoryDifferentialStore:
    """
    In-memory implementation of the differential store for testing.

    Differentials are kept in insertion order.
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._differentials: dict[str, DataDifferential] = {}
        self._lock: asyncio.Lock = asyncio.Lock()
        self.write_count = 0

    async def add(self, differential: DataDifferential) -> None:
        with self._tracer.span(
            "diffmigrate.differential.add",
            {ATTR_DIFFERENTIAL_ID: differential.id, ATTR_ENTITY_TYPE: differential.entity_type},
        ):
            async with self._lock:
                self._differentials[differential.id] = differential
                self.write_count += 1

    async def get(self, differential_id: str) -> DataDifferential | None:
        async with self._lock:
            return self._differentials.get(differential_id)

    async def list_unresolved(
        self, target_tables: list[str] | None = None
    ) -> list[DataDifferential]:
        with self._tracer.span("diffmigrate.differential.list_unresolved", {}):
            async with self._lock:
                return [
                    d
                    for d in self._differentials.values()
                    if not d.resolved and (not target_tables or d.target_table in target_tables)
                ]

    async def mark_resolved(
        self,
        differential_id: str,
        strategy: ResolutionStrategy,
        resolved_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        with self._tracer.span(
            "diffmigrate.differential.mark_resolved",
            {ATTR_DIFFERENTIAL_ID: differential_id, ATTR_RESOLUTION_STRATEGY: strategy.value},
        ):
            async with self._lock:
                existing = self._differentials.get(differential_id)
                if existing is None or existing.resolved:
                    return False
                self._differentials[differential_id] = existing.mark_resolved(
                    strategy, resolved_at, metadata
                )
                self.write_count += 1
                return True

    async def list_all(self) -> list[DataDifferential]:
        async with self._lock:
            return list(self._differentials.values())


__all__ = [
    "DifferentialStore",
    "InMemoryDifferentialStore",
    "PostgreSQLDifferentialStore",
    "SQLiteDifferentialStore",
]
