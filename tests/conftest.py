"""
Shared pytest fixtures for the diffmigrate tests.

This module provides:
- A small catalog (offices -> doctors -> patients) and fixed timestamps
- In-memory source and destination gateways seeded with legacy rows
- In-memory stores (checkpoints, differentials, execution log, backups)
- SQLite fixtures (raw aiosqlite connection, file-backed async engine)
- A mock tracer for span assertions

All fixtures are function scoped so every test starts from fresh state.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from diffmigrate.catalog import EntityCatalog, EntityDescriptor
from diffmigrate.conflicts import InMemoryBackupStore
from diffmigrate.execution_log import ExecutionLogger
from diffmigrate.gateway import InMemoryTableGateway
from diffmigrate.observability import MockTracer
from diffmigrate.repositories import (
    InMemoryCheckpointStore,
    InMemoryDifferentialStore,
    InMemoryExecutionLogRepository,
)
from diffmigrate.schema import get_schema_statements

# =============================================================================
# Time Fixtures
# =============================================================================

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
"""Timestamp of the last migration in the seeded data."""


def at(minutes: int) -> datetime:
    """BASE_TIME shifted by `minutes`."""
    return BASE_TIME + timedelta(minutes=minutes)


# =============================================================================
# Catalog Fixtures
# =============================================================================


@pytest.fixture
def catalog() -> EntityCatalog:
    """
    Provide a three-entity catalog.

    Returns:
        offices <- doctors <- patients
    """
    return EntityCatalog(
        [
            EntityDescriptor.legacy("offices", "dispatch_office"),
            EntityDescriptor.legacy("doctors", "dispatch_doctor", "offices"),
            EntityDescriptor.legacy("patients", "dispatch_patient", "doctors"),
        ]
    )


# =============================================================================
# Row Helpers
# =============================================================================


def office_row(office_id: int, name: str, minutes: int = 0) -> dict[str, Any]:
    return {"id": office_id, "name": name, "updated_at": at(minutes)}


def migrated(row: dict[str, Any], **overrides: Any) -> dict[str, Any]:
    """Destination copy of a source row (keyed by legacy_id)."""
    copy = {k: v for k, v in row.items() if k != "id"}
    copy["legacy_id"] = row["id"]
    copy.update(overrides)
    return copy


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture
def source_rows() -> dict[str, list[dict[str, Any]]]:
    """
    Legacy rows for the three catalog entities.

    Offices 1-3 were migrated at BASE_TIME; office 4 is new and office 2
    was edited after the migration.
    """
    return {
        "dispatch_office": [
            office_row(1, "Main", -60),
            office_row(2, "North (renamed)", 30),
            office_row(3, "South", -30),
            office_row(4, "East", 45),
        ],
        "dispatch_doctor": [
            {"id": 10, "name": "Dr. Ada", "office_id": 1, "updated_at": at(-60)},
            {"id": 11, "name": "Dr. Grace", "office_id": 2, "updated_at": at(15)},
        ],
        "dispatch_patient": [
            {"id": 100, "name": "Pat", "doctor_id": 10, "updated_at": at(5)},
        ],
    }


@pytest.fixture
def source(source_rows: dict[str, list[dict[str, Any]]]) -> InMemoryTableGateway:
    """Provide the seeded legacy database."""
    return InMemoryTableGateway(source_rows)


@pytest.fixture
def destination(source_rows: dict[str, list[dict[str, Any]]]) -> InMemoryTableGateway:
    """
    Provide the destination database as it was after the last migration.

    Offices 1-3 and doctor 10 are present with their pre-migration values;
    office 2 still has its old name. Office 99 no longer exists in the source.
    """
    offices = source_rows["dispatch_office"]
    return InMemoryTableGateway(
        {
            "offices": [
                migrated(offices[0]),
                migrated(offices[1], name="North", updated_at=at(-120)),
                migrated(offices[2]),
                {"legacy_id": 99, "name": "Closed", "updated_at": at(-300)},
            ],
            "doctors": [migrated(source_rows["dispatch_doctor"][0])],
            "patients": [],
        }
    )


@pytest.fixture
def empty_destination() -> InMemoryTableGateway:
    """Provide a destination with empty tables."""
    return InMemoryTableGateway({"offices": [], "doctors": [], "patients": []})


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def checkpoint_store() -> InMemoryCheckpointStore:
    """Provide a fresh in-memory checkpoint store."""
    return InMemoryCheckpointStore(enable_tracing=False)


@pytest.fixture
def differential_store() -> InMemoryDifferentialStore:
    """Provide a fresh in-memory differential store."""
    return InMemoryDifferentialStore(enable_tracing=False)


@pytest.fixture
def log_repository() -> InMemoryExecutionLogRepository:
    """Provide a fresh in-memory execution log repository."""
    return InMemoryExecutionLogRepository()


@pytest.fixture
def execution_log(log_repository: InMemoryExecutionLogRepository) -> ExecutionLogger:
    """Provide an execution logger persisting into `log_repository`."""
    return ExecutionLogger("test-session", log_repository)


@pytest.fixture
def backup_store() -> InMemoryBackupStore:
    """Provide a fresh in-memory backup store."""
    return InMemoryBackupStore()


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a tracer that records span names and attributes."""
    return MockTracer()


async def no_sleep(_: float) -> None:
    """Sleep replacement that returns immediately."""


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_connection() -> AsyncGenerator[aiosqlite.Connection, None]:
    """
    Provide a raw aiosqlite connection with the engine schema applied.

    Yields:
        aiosqlite.Connection to a fresh in-memory database
    """
    conn = await aiosqlite.connect(":memory:")
    for statement in get_schema_statements("sqlite"):
        await conn.execute(statement)
    await conn.commit()

    yield conn

    await conn.close()


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide a file-backed sqlite+aiosqlite engine with an offices table.

    Yields:
        AsyncEngine for a database in the test's temporary directory
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}")
    async with engine.begin() as conn:
        await conn.execute(
            text(
                "CREATE TABLE offices ("
                "legacy_id INTEGER PRIMARY KEY, name TEXT, updated_at TEXT)"
            )
        )
        for statement in get_schema_statements("sqlite"):
            await conn.execute(text(statement))

    yield engine

    await engine.dispose()
