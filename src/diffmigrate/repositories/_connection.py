"""
Connection helpers shared by the SQLAlchemy-backed stores and gateways.

Stores and gateways accept either an AsyncEngine (they open and close
their own connection per call) or an AsyncConnection (the caller owns
the connection and its transaction, e.g. a conflict resolution that
spans several stores).
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from diffmigrate.serialization import json_loads


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection ready for execute() calls.

    Args:
        conn: Engine or connection.
        transactional: For an engine, open a transaction (`begin`) instead
            of a bare connection (`connect`). Ignored for a connection.

    Example:
        >>> async with execute_with_connection(self.conn) as conn:
        ...     await conn.execute(query, params)
    """
    if isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin() as connection:
                yield connection
        else:
            async with conn.connect() as connection:
                yield connection
    else:
        # Caller owns the transaction
        yield conn


def load_json_column(value: Any) -> Any:
    """Decode a JSON column that the driver may return as text or as a value."""
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        return json_loads(value)
    return value


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a timestamp column stored as ISO 8601 text (SQLite) or returned natively."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
