"""
SQLite Repository Integration Tests.

Integration tests for the SQLite-backed implementations:
- SQLiteCheckpointStore
- SQLiteDifferentialStore
- SQLTableGateway over a sqlite+aiosqlite engine

These tests run against real SQLite databases created by the fixtures
in conftest.py.
"""

from __future__ import annotations

from dataclasses import replace

import aiosqlite
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from diffmigrate.gateway import SQLTableGateway, TableGateway
from diffmigrate.models import Checkpoint, ComparisonType, DataDifferential, ResolutionStrategy
from diffmigrate.repositories import (
    CheckpointStore,
    DifferentialStore,
    SQLiteCheckpointStore,
    SQLiteDifferentialStore,
)
from tests.conftest import BASE_TIME, at

pytestmark = [pytest.mark.sqlite]


def office(office_id: int, name: str, updated_at: str = "2024-01-01T00:00:00") -> dict:
    return {"legacy_id": office_id, "name": name, "updated_at": updated_at}


def differential(target_table: str = "offices", minutes: int = 0, **kwargs) -> DataDifferential:
    return DataDifferential(
        entity_type=target_table,
        source_table=target_table,
        target_table=target_table,
        comparison_type=kwargs.pop("comparison_type", ComparisonType.CONFLICTED_RECORDS),
        legacy_ids=kwargs.pop("legacy_ids", ("2",)),
        created_at=at(minutes),
        **kwargs,
    )


# ============================================================================
# SQLiteCheckpointStore
# ============================================================================


@pytest.fixture
def checkpoints(sqlite_connection: aiosqlite.Connection) -> SQLiteCheckpointStore:
    return SQLiteCheckpointStore(sqlite_connection, enable_tracing=False)


class TestSQLiteCheckpointStore:
    """Tests for SQLiteCheckpointStore."""

    def test_satisfies_protocol(self, checkpoints: SQLiteCheckpointStore):
        assert isinstance(checkpoints, CheckpointStore)

    @pytest.mark.asyncio
    async def test_save_and_get(self, checkpoints: SQLiteCheckpointStore):
        checkpoint = Checkpoint(
            entity_type="doctors",
            migration_run_id="run-1",
            records_processed=10,
            records_remaining=5,
            batch_position=1,
            last_processed_cursor="10",
            checkpoint_data={
                "state": "running",
                "pending_ids": [11, 12, 13],
                "task": {"priority": 2},
            },
            created_at=BASE_TIME,
            updated_at=at(1),
        )

        await checkpoints.save(checkpoint)
        loaded = await checkpoints.get(checkpoint.id)

        assert loaded == checkpoint

    @pytest.mark.asyncio
    async def test_get_missing(self, checkpoints: SQLiteCheckpointStore):
        assert await checkpoints.get("missing") is None

    @pytest.mark.asyncio
    async def test_save_updates_existing_row(self, checkpoints: SQLiteCheckpointStore):
        checkpoint = Checkpoint("doctors", "run-1", 10, 5, updated_at=at(1))
        await checkpoints.save(checkpoint)

        await checkpoints.save(
            replace(checkpoint, records_processed=15, records_remaining=0, updated_at=at(2))
        )

        loaded = await checkpoints.get(checkpoint.id)
        assert loaded.records_processed == 15
        assert loaded.records_remaining == 0
        assert loaded.updated_at == at(2)
        assert len(await checkpoints.list_for_run("run-1")) == 1

    @pytest.mark.asyncio
    async def test_get_latest(self, checkpoints: SQLiteCheckpointStore):
        first = Checkpoint("doctors", "run-1", 5, 10, batch_position=1, updated_at=at(1))
        second = Checkpoint("doctors", "run-2", 10, 5, batch_position=1, updated_at=at(5))
        other = Checkpoint("offices", "run-2", 3, 0, updated_at=at(9))
        for checkpoint in (first, second, other):
            await checkpoints.save(checkpoint)

        assert (await checkpoints.get_latest("doctors")).id == second.id
        assert (await checkpoints.get_latest("doctors", run_id="run-1")).id == first.id
        assert await checkpoints.get_latest("patients") is None

    @pytest.mark.asyncio
    async def test_list_and_delete_for_run(self, checkpoints: SQLiteCheckpointStore):
        await checkpoints.save(Checkpoint("offices", "run-1", 4, 0, updated_at=at(1)))
        await checkpoints.save(Checkpoint("doctors", "run-1", 2, 0, updated_at=at(2)))
        await checkpoints.save(Checkpoint("doctors", "run-2", 2, 0, updated_at=at(3)))

        listed = await checkpoints.list_for_run("run-1")
        deleted = await checkpoints.delete_for_run("run-1")

        assert [c.entity_type for c in listed] == ["doctors", "offices"]
        assert deleted == 2
        assert await checkpoints.list_for_run("run-1") == []
        assert len(await checkpoints.list_for_run("run-2")) == 1

    @pytest.mark.asyncio
    async def test_last_migration_timestamp(self, checkpoints: SQLiteCheckpointStore):
        await checkpoints.save(Checkpoint("offices", "run-1", 4, 0, updated_at=at(1)))
        await checkpoints.save(Checkpoint("offices", "run-2", 4, 0, updated_at=at(30)))

        assert await checkpoints.get_last_migration_timestamp("offices") == at(30)
        assert await checkpoints.get_last_migration_timestamp("doctors") is None


# ============================================================================
# SQLiteDifferentialStore
# ============================================================================


@pytest.fixture
def differentials(sqlite_connection: aiosqlite.Connection) -> SQLiteDifferentialStore:
    return SQLiteDifferentialStore(sqlite_connection, enable_tracing=False)


class TestSQLiteDifferentialStore:
    """Tests for SQLiteDifferentialStore."""

    def test_satisfies_protocol(self, differentials: SQLiteDifferentialStore):
        assert isinstance(differentials, DifferentialStore)

    @pytest.mark.asyncio
    async def test_add_and_get(self, differentials: SQLiteDifferentialStore):
        record = differential(
            legacy_ids=("2", "7"),
            comparison_criteria={"fields": ["name"], "threshold": at(0).isoformat()},
            metadata={"conflicts": {"2": ["name"]}},
        )

        await differentials.add(record)
        loaded = await differentials.get(record.id)

        assert loaded == record
        assert loaded.record_count == 2
        assert loaded.resolved is False

    @pytest.mark.asyncio
    async def test_get_missing(self, differentials: SQLiteDifferentialStore):
        assert await differentials.get("missing") is None

    @pytest.mark.asyncio
    async def test_list_unresolved_by_table(self, differentials: SQLiteDifferentialStore):
        offices = differential("offices", minutes=1)
        doctors = differential("doctors", minutes=2)
        patients = differential("patients", minutes=3)
        for record in (offices, doctors, patients):
            await differentials.add(record)

        everything = await differentials.list_unresolved()
        filtered = await differentials.list_unresolved(["offices", "patients"])

        assert [d.id for d in everything] == [offices.id, doctors.id, patients.id]
        assert [d.id for d in filtered] == [offices.id, patients.id]

    @pytest.mark.asyncio
    async def test_mark_resolved_merges_metadata(self, differentials: SQLiteDifferentialStore):
        record = differential(metadata={"conflicts": {"2": ["name"]}})
        await differentials.add(record)

        changed = await differentials.mark_resolved(
            record.id,
            ResolutionStrategy.SOURCE_WINS,
            at(10),
            metadata={"records_written": 1},
        )
        loaded = await differentials.get(record.id)

        assert changed is True
        assert loaded.resolved is True
        assert loaded.resolved_at == at(10)
        assert loaded.resolution_strategy == ResolutionStrategy.SOURCE_WINS
        assert loaded.metadata == {"conflicts": {"2": ["name"]}, "records_written": 1}
        assert await differentials.list_unresolved() == []

    @pytest.mark.asyncio
    async def test_mark_resolved_only_once(self, differentials: SQLiteDifferentialStore):
        record = differential()
        await differentials.add(record)
        await differentials.mark_resolved(record.id, ResolutionStrategy.SOURCE_WINS, at(10))

        again = await differentials.mark_resolved(
            record.id, ResolutionStrategy.TARGET_WINS, at(20)
        )
        loaded = await differentials.get(record.id)

        assert again is False
        assert loaded.resolution_strategy == ResolutionStrategy.SOURCE_WINS
        assert loaded.resolved_at == at(10)

    @pytest.mark.asyncio
    async def test_mark_resolved_unknown(self, differentials: SQLiteDifferentialStore):
        assert (
            await differentials.mark_resolved("missing", ResolutionStrategy.SOURCE_WINS, at(1))
            is False
        )

    @pytest.mark.asyncio
    async def test_list_all_keeps_resolved(self, differentials: SQLiteDifferentialStore):
        first = differential(minutes=1)
        second = differential(
            minutes=2,
            comparison_type=ComparisonType.DELETED_RECORDS,
            legacy_ids=("99",),
        )
        await differentials.add(first)
        await differentials.add(second)
        await differentials.mark_resolved(first.id, ResolutionStrategy.SOURCE_WINS, at(5))

        listed = await differentials.list_all()

        assert [d.id for d in listed] == [first.id, second.id]
        assert [d.resolved for d in listed] == [True, False]


# ============================================================================
# SQLTableGateway
# ============================================================================


@pytest.fixture
def gateway(sqlite_engine: AsyncEngine) -> SQLTableGateway:
    return SQLTableGateway(sqlite_engine, enable_tracing=False)


class TestSQLTableGateway:
    """Tests for SQLTableGateway against a SQLite database."""

    def test_satisfies_protocol(self, gateway: SQLTableGateway):
        assert isinstance(gateway, TableGateway)

    @pytest.mark.asyncio
    async def test_ping_and_columns(self, gateway: SQLTableGateway):
        assert await gateway.ping() is True
        assert await gateway.columns("offices") == ["legacy_id", "name", "updated_at"]

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_updates(self, gateway: SQLTableGateway):
        written = await gateway.upsert(
            "offices", [office(1, "Main"), office(2, "North")], key="legacy_id"
        )
        await gateway.upsert("offices", [office(2, "North (renamed)")], key="legacy_id")

        rows = await gateway.fetch_by_ids("offices", "legacy_id", [1, 2])

        assert written == 2
        assert await gateway.count("offices") == 2
        assert {row["legacy_id"]: row["name"] for row in rows} == {
            1: "Main",
            2: "North (renamed)",
        }

    @pytest.mark.asyncio
    async def test_upsert_nothing(self, gateway: SQLTableGateway):
        assert await gateway.upsert("offices", [], key="legacy_id") == 0

    @pytest.mark.asyncio
    async def test_fetch_by_ids_empty(self, gateway: SQLTableGateway):
        assert await gateway.fetch_by_ids("offices", "legacy_id", []) == []

    @pytest.mark.asyncio
    async def test_keyset_paging(self, gateway: SQLTableGateway):
        await gateway.upsert(
            "offices", [office(i, f"Office {i}") for i in (5, 1, 3, 4, 2)], key="legacy_id"
        )

        first = await gateway.fetch_after("offices", "legacy_id", None, 2)
        second = await gateway.fetch_after("offices", "legacy_id", 2, 2)
        ids = await gateway.fetch_ids("offices", "legacy_id", 3, 10)

        assert [row["legacy_id"] for row in first] == [1, 2]
        assert [row["legacy_id"] for row in second] == [3, 4]
        assert ids == [4, 5]

    @pytest.mark.asyncio
    async def test_delete_by_ids(self, gateway: SQLTableGateway):
        await gateway.upsert(
            "offices", [office(1, "Main"), office(99, "Closed")], key="legacy_id"
        )

        deleted = await gateway.delete_by_ids("offices", "legacy_id", [99, 100])

        assert deleted == 1
        assert await gateway.fetch_ids("offices", "legacy_id", None, 10) == [1]
        assert await gateway.delete_by_ids("offices", "legacy_id", []) == 0

    @pytest.mark.asyncio
    async def test_transaction_commits(self, gateway: SQLTableGateway):
        async with gateway.transaction() as tx:
            await tx.upsert("offices", [office(1, "Main")], key="legacy_id")
            await tx.upsert("offices", [office(2, "North")], key="legacy_id")

        assert await gateway.count("offices") == 2

    @pytest.mark.asyncio
    async def test_transaction_rolls_back(self, gateway: SQLTableGateway):
        await gateway.upsert("offices", [office(1, "Main")], key="legacy_id")

        with pytest.raises(RuntimeError):
            async with gateway.transaction() as tx:
                await tx.upsert("offices", [office(1, "Overwritten")], key="legacy_id")
                await tx.delete_by_ids("offices", "legacy_id", [1])
                raise RuntimeError("write failed")

        rows = await gateway.fetch_by_ids("offices", "legacy_id", [1])
        assert rows[0]["name"] == "Main"

    @pytest.mark.asyncio
    async def test_count_engine_tables(self, gateway: SQLTableGateway):
        """Engine bookkeeping tables live beside the migrated tables."""
        assert await gateway.count("migration_checkpoints") == 0
        assert await gateway.count("data_differentials") == 0

