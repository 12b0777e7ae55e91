"""
Unit tests for the record migrator.
"""

import pytest

from diffmigrate.catalog import EntityCatalog, EntityDescriptor
from diffmigrate.exceptions import DataValidationError
from diffmigrate.executor.processor import CopyRecordMigrator, RecordMigrator, to_destination_row
from diffmigrate.gateway import InMemoryTableGateway, Row


@pytest.fixture
def offices(catalog: EntityCatalog) -> EntityDescriptor:
    return catalog.get("offices")


def reject_east(descriptor: EntityDescriptor, row: Row) -> None:
    if row["name"] == "East":
        raise DataValidationError("East office is closed", str(row["id"]))


class TestToDestinationRow:
    def test_id_moves_to_legacy_id(self, offices):
        assert to_destination_row(offices, {"id": 7, "name": "Main"}) == {
            "name": "Main",
            "legacy_id": 7,
        }


class TestCopyRecordMigrator:
    """Tests for CopyRecordMigrator."""

    def test_satisfies_protocol(self, source, destination):
        assert isinstance(CopyRecordMigrator(source, destination), RecordMigrator)

    @pytest.mark.asyncio
    async def test_copies_and_updates(self, source, destination: InMemoryTableGateway, offices):
        migrator = CopyRecordMigrator(source, destination, enable_tracing=False)

        outcome = await migrator.migrate(offices, [2, 4])

        assert outcome.successful == ["2", "4"]
        assert outcome.failed == []
        rows = {row["legacy_id"]: row for row in destination.rows("offices")}
        assert rows[2]["name"] == "North (renamed)"
        assert rows[4]["name"] == "East"
        assert len(rows) == 5

    @pytest.mark.asyncio
    async def test_missing_source_row_is_record_failure(self, source, destination, offices):
        migrator = CopyRecordMigrator(source, destination, enable_tracing=False)

        outcome = await migrator.migrate(offices, [1, 500])

        assert outcome.successful == ["1"]
        assert len(outcome.failed) == 1
        assert outcome.failed[0].record_id == "500"
        assert outcome.failed[0].code == "DATA_VALIDATION_ERROR"
        assert not outcome.failed[0].retryable

    @pytest.mark.asyncio
    async def test_validator_rejections(self, source, destination, offices):
        migrator = CopyRecordMigrator(
            source, destination, validator=reject_east, enable_tracing=False
        )

        outcome = await migrator.migrate(offices, [3, 4])

        assert outcome.successful == ["3"]
        assert [f.record_id for f in outcome.failed] == ["4"]
        assert outcome.failed[0].message == "East office is closed"

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, source, destination: InMemoryTableGateway, offices):
        """A failed write affects the whole batch and propagates."""
        migrator = CopyRecordMigrator(source, destination, enable_tracing=False)
        destination.fail_next(1, ConnectionResetError("reset"))

        with pytest.raises(ConnectionResetError):
            await migrator.migrate(offices, [4])

        assert await destination.count("offices") == 4

    @pytest.mark.asyncio
    async def test_nothing_to_write(self, source, destination: InMemoryTableGateway, offices):
        migrator = CopyRecordMigrator(source, destination, enable_tracing=False)

        outcome = await migrator.migrate(offices, [])

        assert outcome.successful == []
        assert destination.writes == 0
