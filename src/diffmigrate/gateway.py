"""
Row-level access to the source and destination databases.

The engine never issues SQL against business tables directly; it goes
through a TableGateway bound to one database. Two implementations:

    - SQLTableGateway: SQLAlchemy AsyncEngine/AsyncConnection with text()
      queries. Table and column names are validated and quoted.
    - InMemoryTableGateway: dictionary of tables for tests. Transactions
      snapshot every table and restore it when the block raises.

Rows are plain dictionaries keyed by column name.

Example:
    >>> source = SQLTableGateway(source_engine)
    >>> async with destination.transaction() as tx:
    ...     await tx.upsert("doctors", [row], key="legacy_id")
"""

from __future__ import annotations

import asyncio
import copy
import logging
import re
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from diffmigrate.exceptions import ConfigurationError
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import (
    ATTR_DB_OPERATION,
    ATTR_DB_TABLE,
    ATTR_RECORD_COUNT,
)
from diffmigrate.repositories._connection import execute_with_connection, parse_timestamp

logger = logging.getLogger(__name__)

Row = dict[str, Any]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(name: str) -> str:
    """
    Validate and quote a table or column name.

    Raises:
        ConfigurationError: If the name is not a plain identifier.
    """
    if not _IDENTIFIER.match(name):
        raise ConfigurationError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def id_sort_key(value: Any) -> tuple[int, Any]:
    # Numeric ids sort numerically, everything else as text
    if isinstance(value, bool):
        return (1, str(value))
    if isinstance(value, (int, float)):
        return (0, value)
    return (1, str(value))


@runtime_checkable
class TableGateway(Protocol):
    """Protocol for row access to one database."""

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        ...

    async def count(self, table: str) -> int:
        """Number of rows in `table`."""
        ...

    async def columns(self, table: str) -> list[str]:
        """Column names of `table` (empty when the table does not exist)."""
        ...

    async def fetch_by_ids(self, table: str, id_field: str, ids: Sequence[Any]) -> list[Row]:
        """Rows whose `id_field` is in `ids`."""
        ...

    async def fetch_after(
        self, table: str, id_field: str, after_id: Any, limit: int
    ) -> list[Row]:
        """
        Keyset page ordered by `id_field`.

        Args:
            after_id: Exclusive lower bound (None starts from the beginning)
            limit: Maximum rows
        """
        ...

    async def fetch_modified_since(
        self,
        table: str,
        timestamp_field: str,
        id_field: str,
        since: datetime | None,
        after: tuple[datetime, Any] | None,
        limit: int,
    ) -> list[Row]:
        """
        Keyset page of rows modified strictly after `since`.

        Ordered by (timestamp, id). `after` is the (timestamp, id) of the
        last row of the previous page.
        """
        ...

    async def fetch_ids(
        self, table: str, id_field: str, after_id: Any, limit: int
    ) -> list[Any]:
        """Keyset page of non-null `id_field` values."""
        ...

    async def upsert(self, table: str, rows: Sequence[Row], key: str) -> int:
        """Insert rows, replacing existing rows with the same `key` value."""
        ...

    async def delete_by_ids(self, table: str, id_field: str, ids: Sequence[Any]) -> int:
        """Delete rows whose `id_field` is in `ids`; returns rows deleted."""
        ...

    def transaction(self) -> Any:
        """
        Async context manager yielding a gateway bound to one transaction.

        The transaction commits when the block exits normally and rolls
        back when it raises.
        """
        ...


class SQLTableGateway:
    """
    SQLAlchemy implementation of TableGateway.

    Example:
        >>> gateway = SQLTableGateway(create_async_engine(url))
        >>> await gateway.count("dispatch_doctor")
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    async def _fetch(self, sql: str, params: dict[str, Any]) -> list[Row]:
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(text(sql), params)
            return [dict(row) for row in result.mappings().all()]

    async def ping(self) -> bool:
        with self._tracer.span("diffmigrate.gateway.ping", {ATTR_DB_OPERATION: "SELECT"}):
            async with execute_with_connection(self.conn, transactional=False) as conn:
                await conn.execute(text("SELECT 1"))
            return True

    async def count(self, table: str) -> int:
        with self._tracer.span(
            "diffmigrate.gateway.count",
            {ATTR_DB_TABLE: table, ATTR_DB_OPERATION: "SELECT"},
        ):
            sql = f"SELECT COUNT(*) FROM {quote_identifier(table)}"
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(text(sql))
                return int(result.scalar() or 0)

    async def columns(self, table: str) -> list[str]:
        with self._tracer.span(
            "diffmigrate.gateway.columns",
            {ATTR_DB_TABLE: table, ATTR_DB_OPERATION: "SELECT"},
        ):
            sql = f"SELECT * FROM {quote_identifier(table)} LIMIT 0"
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(text(sql))
                return list(result.keys())

    async def fetch_by_ids(self, table: str, id_field: str, ids: Sequence[Any]) -> list[Row]:
        if not ids:
            return []
        with self._tracer.span(
            "diffmigrate.gateway.fetch_by_ids",
            {ATTR_DB_TABLE: table, ATTR_RECORD_COUNT: len(ids), ATTR_DB_OPERATION: "SELECT"},
        ):
            placeholders = ", ".join(f":id_{i}" for i in range(len(ids)))
            sql = (
                f"SELECT * FROM {quote_identifier(table)} "
                f"WHERE {quote_identifier(id_field)} IN ({placeholders})"
            )
            return await self._fetch(sql, {f"id_{i}": value for i, value in enumerate(ids)})

    async def fetch_after(
        self, table: str, id_field: str, after_id: Any, limit: int
    ) -> list[Row]:
        with self._tracer.span(
            "diffmigrate.gateway.fetch_after",
            {ATTR_DB_TABLE: table, ATTR_DB_OPERATION: "SELECT"},
        ):
            column = quote_identifier(id_field)
            sql = f"SELECT * FROM {quote_identifier(table)}"
            params: dict[str, Any] = {"limit": limit}
            if after_id is not None:
                sql += f" WHERE {column} > :after_id"
                params["after_id"] = after_id
            sql += f" ORDER BY {column} LIMIT :limit"
            return await self._fetch(sql, params)

    async def fetch_modified_since(
        self,
        table: str,
        timestamp_field: str,
        id_field: str,
        since: datetime | None,
        after: tuple[datetime, Any] | None,
        limit: int,
    ) -> list[Row]:
        with self._tracer.span(
            "diffmigrate.gateway.fetch_modified_since",
            {ATTR_DB_TABLE: table, ATTR_DB_OPERATION: "SELECT"},
        ):
            ts = quote_identifier(timestamp_field)
            pk = quote_identifier(id_field)
            clauses = [f"{ts} IS NOT NULL"]
            params: dict[str, Any] = {"limit": limit}
            if since is not None:
                clauses.append(f"{ts} > :since")
                params["since"] = since
            if after is not None:
                clauses.append(f"({ts} > :after_ts OR ({ts} = :after_ts AND {pk} > :after_id))")
                params["after_ts"], params["after_id"] = after
            sql = (
                f"SELECT * FROM {quote_identifier(table)} WHERE {' AND '.join(clauses)} "
                f"ORDER BY {ts}, {pk} LIMIT :limit"
            )
            return await self._fetch(sql, params)

    async def fetch_ids(
        self, table: str, id_field: str, after_id: Any, limit: int
    ) -> list[Any]:
        with self._tracer.span(
            "diffmigrate.gateway.fetch_ids",
            {ATTR_DB_TABLE: table, ATTR_DB_OPERATION: "SELECT"},
        ):
            column = quote_identifier(id_field)
            sql = f"SELECT {column} FROM {quote_identifier(table)} WHERE {column} IS NOT NULL"
            params: dict[str, Any] = {"limit": limit}
            if after_id is not None:
                sql += f" AND {column} > :after_id"
                params["after_id"] = after_id
            sql += f" ORDER BY {column} LIMIT :limit"
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(text(sql), params)
                return [row[0] for row in result.fetchall()]

    async def upsert(self, table: str, rows: Sequence[Row], key: str) -> int:
        if not rows:
            return 0
        with self._tracer.span(
            "diffmigrate.gateway.upsert",
            {ATTR_DB_TABLE: table, ATTR_RECORD_COUNT: len(rows), ATTR_DB_OPERATION: "UPSERT"},
        ):
            table_sql = quote_identifier(table)
            key_sql = quote_identifier(key)
            async with execute_with_connection(self.conn, transactional=True) as conn:
                for row in rows:
                    names = list(row)
                    column_sql = ", ".join(quote_identifier(name) for name in names)
                    values_sql = ", ".join(f":v_{i}" for i in range(len(names)))
                    updates = [
                        f"{quote_identifier(name)} = EXCLUDED.{quote_identifier(name)}"
                        for name in names
                        if name != key
                    ]
                    sql = f"INSERT INTO {table_sql} ({column_sql}) VALUES ({values_sql}) "
                    if updates:
                        sql += f"ON CONFLICT ({key_sql}) DO UPDATE SET {', '.join(updates)}"
                    else:
                        sql += f"ON CONFLICT ({key_sql}) DO NOTHING"
                    await conn.execute(
                        text(sql), {f"v_{i}": row[name] for i, name in enumerate(names)}
                    )
            return len(rows)

    async def delete_by_ids(self, table: str, id_field: str, ids: Sequence[Any]) -> int:
        if not ids:
            return 0
        with self._tracer.span(
            "diffmigrate.gateway.delete_by_ids",
            {ATTR_DB_TABLE: table, ATTR_RECORD_COUNT: len(ids), ATTR_DB_OPERATION: "DELETE"},
        ):
            placeholders = ", ".join(f":id_{i}" for i in range(len(ids)))
            sql = (
                f"DELETE FROM {quote_identifier(table)} "
                f"WHERE {quote_identifier(id_field)} IN ({placeholders})"
            )
            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(
                    text(sql), {f"id_{i}": value for i, value in enumerate(ids)}
                )
                return result.rowcount or 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SQLTableGateway]:
        if isinstance(self.conn, AsyncEngine):
            async with self.conn.begin() as connection:
                yield SQLTableGateway(connection, tracer=self._tracer)
        else:
            async with self.conn.begin_nested():
                yield SQLTableGateway(self.conn, tracer=self._tracer)


class InMemoryTableGateway:
    """
    In-memory implementation of TableGateway for testing.

    Tables are lists of row dictionaries. Failure injection hooks let
    tests simulate connection loss: `fail_next(n, exc)` makes the next
    `n` operations raise `exc`.

    Example:
        >>> gateway = InMemoryTableGateway({"dispatch_office": [{"id": 1, "name": "Main"}]})
        >>> await gateway.count("dispatch_office")
        1
    """

    def __init__(self, tables: dict[str, Iterable[Row]] | None = None) -> None:
        self._tables: dict[str, list[Row]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self._lock = asyncio.Lock()
        self._failures: list[BaseException] = []
        self.available = True
        self.queries = 0
        self.writes = 0

    # -- test helpers -------------------------------------------------------

    def fail_next(self, times: int, exc: BaseException) -> None:
        """Make the next `times` operations raise `exc`."""
        self._failures.extend([exc] * times)

    def rows(self, table: str) -> list[Row]:
        """Copy of the rows of `table`, ordered as stored."""
        return [dict(row) for row in self._tables.get(table, [])]

    def set_rows(self, table: str, rows: Iterable[Row]) -> None:
        self._tables[table] = [dict(row) for row in rows]

    def _check(self) -> None:
        self.queries += 1
        if not self.available:
            raise ConnectionError("database unavailable")
        if self._failures:
            raise self._failures.pop(0)

    def _table(self, table: str) -> list[Row]:
        quote_identifier(table)
        return self._tables.setdefault(table, [])

    # -- TableGateway -------------------------------------------------------

    async def ping(self) -> bool:
        self._check()
        return True

    async def count(self, table: str) -> int:
        self._check()
        return len(self._table(table))

    async def columns(self, table: str) -> list[str]:
        self._check()
        names: dict[str, None] = {}
        for row in self._tables.get(table, []):
            names.update(dict.fromkeys(row))
        return list(names)

    async def fetch_by_ids(self, table: str, id_field: str, ids: Sequence[Any]) -> list[Row]:
        self._check()
        wanted = {str(value) for value in ids}
        return [dict(row) for row in self._table(table) if str(row.get(id_field)) in wanted]

    async def fetch_after(
        self, table: str, id_field: str, after_id: Any, limit: int
    ) -> list[Row]:
        self._check()
        rows = sorted(
            (row for row in self._table(table) if row.get(id_field) is not None),
            key=lambda row: id_sort_key(row[id_field]),
        )
        if after_id is not None:
            rows = [row for row in rows if id_sort_key(row[id_field]) > id_sort_key(after_id)]
        return [dict(row) for row in rows[:limit]]

    async def fetch_modified_since(
        self,
        table: str,
        timestamp_field: str,
        id_field: str,
        since: datetime | None,
        after: tuple[datetime, Any] | None,
        limit: int,
    ) -> list[Row]:
        self._check()
        stamped = [
            (parse_timestamp(row.get(timestamp_field)), row)
            for row in self._table(table)
            if row.get(timestamp_field) is not None
        ]
        if since is not None:
            stamped = [(ts, row) for ts, row in stamped if ts > since]
        stamped.sort(key=lambda pair: (pair[0], id_sort_key(pair[1].get(id_field))))
        if after is not None:
            after_key = (after[0], id_sort_key(after[1]))
            stamped = [
                (ts, row)
                for ts, row in stamped
                if (ts, id_sort_key(row.get(id_field))) > after_key
            ]
        return [dict(row) for _, row in stamped[:limit]]

    async def fetch_ids(
        self, table: str, id_field: str, after_id: Any, limit: int
    ) -> list[Any]:
        rows = await self.fetch_after(table, id_field, after_id, limit)
        return [row[id_field] for row in rows]

    async def upsert(self, table: str, rows: Sequence[Row], key: str) -> int:
        self._check()
        async with self._lock:
            stored = self._table(table)
            for row in rows:
                for i, existing in enumerate(stored):
                    if str(existing.get(key)) == str(row.get(key)):
                        stored[i] = {**existing, **row}
                        break
                else:
                    stored.append(dict(row))
                self.writes += 1
        return len(rows)

    async def delete_by_ids(self, table: str, id_field: str, ids: Sequence[Any]) -> int:
        self._check()
        wanted = {str(value) for value in ids}
        async with self._lock:
            stored = self._table(table)
            kept = [row for row in stored if str(row.get(id_field)) not in wanted]
            deleted = len(stored) - len(kept)
            self._tables[table] = kept
            self.writes += deleted
        return deleted

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTableGateway]:
        snapshot = copy.deepcopy(self._tables)
        try:
            yield self
        except BaseException:
            self._tables = snapshot
            logger.debug("In-memory transaction rolled back")
            raise


__all__ = [
    "InMemoryTableGateway",
    "Row",
    "SQLTableGateway",
    "TableGateway",
    "id_sort_key",
    "quote_identifier",
]
