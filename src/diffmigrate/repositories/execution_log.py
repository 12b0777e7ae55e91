"""
Execution log repository: structured log entries per migration session.

Entries are append-only and read back by session for reporting.
"""

import asyncio
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from diffmigrate.models import ExecutionLogEntry, LogLevel, OperationType
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import ATTR_DB_SYSTEM, ATTR_SESSION_ID
from diffmigrate.repositories._connection import (
    execute_with_connection,
    load_json_column,
    parse_timestamp,
)
from diffmigrate.serialization import json_dumps


@runtime_checkable
class ExecutionLogRepository(Protocol):
    """Protocol for execution log persistence."""

    async def append(self, entry: ExecutionLogEntry) -> None:
        """Persist one entry."""
        ...

    async def list_for_session(
        self,
        session_id: str,
        log_level: LogLevel | None = None,
        limit: int = 1000,
    ) -> list[ExecutionLogEntry]:
        """
        List the entries of a session in chronological order.

        Args:
            session_id: Session to read
            log_level: Only entries of this level
            limit: Maximum number of entries
        """
        ...


class PostgreSQLExecutionLogRepository:
    """
    PostgreSQL implementation of the execution log repository.

    Stores entries in the `migration_execution_logs` table.
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    async def append(self, entry: ExecutionLogEntry) -> None:
        with self._tracer.span(
            "diffmigrate.execution_log.append",
            {ATTR_SESSION_ID: entry.session_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                INSERT INTO migration_execution_logs
                    (id, session_id, entity_type, operation_type, log_level, message,
                     error_details, performance_data, context_data, timestamp)
                VALUES (:id, :session_id, :entity_type, :operation_type, :log_level, :message,
                        :error_details, :performance_data, :context_data, :timestamp)
            """)
            params = {
                "id": str(entry.id),
                "session_id": entry.session_id,
                "entity_type": entry.entity_type,
                "operation_type": entry.operation_type.value,
                "log_level": entry.log_level.value,
                "message": entry.message,
                "error_details": (
                    json_dumps(entry.error_details) if entry.error_details is not None else None
                ),
                "performance_data": (
                    json_dumps(entry.performance_data)
                    if entry.performance_data is not None
                    else None
                ),
                "context_data": json_dumps(entry.context_data),
                "timestamp": entry.timestamp,
            }

            async with execute_with_connection(self.conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def list_for_session(
        self,
        session_id: str,
        log_level: LogLevel | None = None,
        limit: int = 1000,
    ) -> list[ExecutionLogEntry]:
        with self._tracer.span(
            "diffmigrate.execution_log.list_for_session",
            {ATTR_SESSION_ID: session_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            sql = """
                SELECT id, session_id, entity_type, operation_type, log_level, message,
                       error_details, performance_data, context_data, timestamp
                FROM migration_execution_logs
                WHERE session_id = :session_id
            """
            params: dict[str, Any] = {"session_id": session_id, "limit": limit}
            if log_level is not None:
                sql += " AND log_level = :log_level"
                params["log_level"] = log_level.value
            sql += " ORDER BY timestamp LIMIT :limit"

            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(text(sql), params)
                rows = result.fetchall()

            return [
                ExecutionLogEntry(
                    id=row[0],
                    session_id=row[1],
                    entity_type=row[2],
                    operation_type=OperationType(row[3]),
                    log_level=LogLevel(row[4]),
                    message=row[5],
                    error_details=load_json_column(row[6]),
                    performance_data=load_json_column(row[7]),
                    context_data=load_json_column(row[8]) or {},
                    timestamp=parse_timestamp(row[9]),
                )
                for row in rows
            ]


class InMemoryExecutionLogRepository:
    """In-memory implementation of the execution log repository for testing."""

    def __init__(self) -> None:
        self._entries: list[ExecutionLogEntry] = []
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def entries(self) -> list[ExecutionLogEntry]:
        return list(self._entries)

    async def append(self, entry: ExecutionLogEntry) -> None:
        async with self._lock:
            self._entries.append(entry)

    async def list_for_session(
        self,
        session_id: str,
        log_level: LogLevel | None = None,
        limit: int = 1000,
    ) -> list[ExecutionLogEntry]:
        async with self._lock:
            matching = [
                e
                for e in self._entries
                if e.session_id == session_id and (log_level is None or e.log_level == log_level)
            ]
        return sorted(matching, key=lambda e: e.timestamp)[:limit]


__all__ = [
    "ExecutionLogRepository",
    "InMemoryExecutionLogRepository",
    "PostgreSQLExecutionLogRepository",
]
