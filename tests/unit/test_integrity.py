"""
Unit tests for the integrity checker.
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from diffmigrate.catalog import EntityCatalog, EntityDescriptor
from diffmigrate.gateway import InMemoryTableGateway
from diffmigrate.integrity import (
    IntegrityChecker,
    IntegrityValidation,
    RecordComparison,
    sample_ids,
)


@pytest.fixture
def offices(catalog: EntityCatalog) -> EntityDescriptor:
    return catalog.get("offices")


@pytest.fixture
def checker(source, destination) -> IntegrityChecker:
    return IntegrityChecker(source, destination, enable_tracing=False)


class TestDifferences:
    """Tests for field-level comparison."""

    def test_bookkeeping_columns_ignored(self, checker: IntegrityChecker, offices):
        source_row = {"id": 1, "name": "Main", "updated_at": "2024-01-01"}
        destination_row = {"legacy_id": 1, "name": "Main", "updated_at": "2025-01-01", "id": 77}

        assert checker.differences(offices, source_row, destination_row) == []

    def test_changed_fields_listed(self, checker: IntegrityChecker, offices):
        source_row = {"id": 1, "name": "Main", "city": "Oslo", "phone": "1"}
        destination_row = {"legacy_id": 1, "name": "Main St", "city": "Bergen", "phone": "1"}

        assert checker.differences(offices, source_row, destination_row) == ["city", "name"]

    def test_driver_representation_differences_ignored(self, checker: IntegrityChecker, offices):
        """Naive vs aware UTC datetimes and Decimal vs str compare equal."""
        source_row = {"id": 1, "opened": datetime(2020, 5, 1, 9, 0), "fee": Decimal("10.50")}
        destination_row = {
            "legacy_id": 1,
            "opened": datetime(2020, 5, 1, 9, 0, tzinfo=UTC),
            "fee": "10.50",
        }

        assert checker.differences(offices, source_row, destination_row) == []

    def test_configured_exclusions(self, source, destination, offices):
        checker = IntegrityChecker(
            source, destination, exclude_fields=("synced_by",), enable_tracing=False
        )

        assert checker.differences(
            offices, {"id": 1, "synced_by": "a"}, {"legacy_id": 1, "synced_by": "b"}
        ) == []


class TestCheck:
    """Tests for IntegrityChecker.check."""

    @pytest.mark.asyncio
    async def test_check_reports_mismatches(self, checker: IntegrityChecker, offices):
        validation = await checker.check(offices, [1, 2, 3, 4, 99])

        assert validation.total_validated == 5
        assert validation.successful_matches == 2
        assert validation.mismatched_ids == ["2", "4", "99"]
        comparisons = {c.record_id: c for c in validation.comparisons}
        assert comparisons["2"].differences == ("name",)
        assert comparisons["4"].differences == ("missing in destination",)
        assert comparisons["99"].differences == ("missing in source",)
        assert not validation.is_valid

    @pytest.mark.asyncio
    async def test_ids_absent_on_both_sides_skipped(self, checker: IntegrityChecker, offices):
        validation = await checker.check(offices, [1, 12345])

        assert validation.total_validated == 1
        assert validation.is_valid

    @pytest.mark.asyncio
    async def test_empty_id_list(self, checker: IntegrityChecker, offices):
        validation = await checker.check(offices, [])

        assert validation.is_valid
        assert validation.match_percentage == 100.0

    @pytest.mark.asyncio
    async def test_read_failure_sets_error(
        self, checker: IntegrityChecker, offices, destination: InMemoryTableGateway
    ):
        destination.available = False

        validation = await checker.check(offices, [1])

        assert validation.error == "database unavailable"
        assert not validation.is_valid
        assert validation.recommendations[0].startswith("Validation could not complete")


class TestIntegrityValidation:
    """Tests for the validation summary."""

    def test_threshold(self):
        comparisons = tuple(RecordComparison(str(i)) for i in range(19)) + (
            RecordComparison("x", ("name",)),
        )

        validation = IntegrityValidation("offices", comparisons)

        assert validation.match_percentage == 95.0
        assert validation.is_valid

    def test_recommendations(self):
        comparisons = tuple(RecordComparison(str(i), ("name",)) for i in range(6))

        recommendations = IntegrityValidation("offices", comparisons).recommendations

        assert "Low match percentage - investigate data transformation issues" in recommendations
        assert "Multiple validation failures - review migration logic" in recommendations

    def test_to_dict(self):
        data = IntegrityValidation("offices").to_dict()

        assert data["is_valid"] is True
        assert data["recommendations"] == ["Validation successful - migration integrity confirmed"]


class TestSampleIds:
    def test_small_lists_returned_whole(self):
        assert sample_ids([3, 1, 2], 5) == [3, 1, 2]

    def test_evenly_spaced(self):
        assert sample_ids(list(range(10)), 5) == [0, 2, 4, 6, 8]

    def test_empty(self):
        assert sample_ids([], 5) == []
        assert sample_ids([1], 0) == []
