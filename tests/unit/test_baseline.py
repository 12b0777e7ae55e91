"""
Unit tests for the baseline analyzer.

Tests cover:
- Per-entity counts, gaps and last migration timestamps
- Mapping validation (missing fields, orphaned legacy ids)
- Health classification and recommendations
- Isolation of per-entity connectivity failures
"""

import pytest

from diffmigrate.baseline import BaselineAnalyzer, BaselineStatus, EntityAnalysis
from diffmigrate.catalog import EntityCatalog
from diffmigrate.config import BaselineConfig
from diffmigrate.exceptions import ConfigurationError, UnknownEntityTypeError
from diffmigrate.execution_log import ExecutionLogger
from diffmigrate.gateway import InMemoryTableGateway
from diffmigrate.models import Checkpoint, LogLevel, OperationType
from diffmigrate.observability import MockTracer
from diffmigrate.repositories import InMemoryCheckpointStore, InMemoryExecutionLogRepository
from tests.conftest import at, migrated, office_row


@pytest.fixture
def analyzer(
    source: InMemoryTableGateway,
    destination: InMemoryTableGateway,
    catalog: EntityCatalog,
    checkpoint_store: InMemoryCheckpointStore,
    execution_log: ExecutionLogger,
) -> BaselineAnalyzer:
    return BaselineAnalyzer(
        source,
        destination,
        catalog,
        checkpoint_store=checkpoint_store,
        session_id="test-session",
        execution_log=execution_log,
        enable_tracing=False,
    )


class TestEntityAnalysis:
    """Tests for EntityAnalysis."""

    def test_gap_percentage(self):
        result = EntityAnalysis("doctors", source_count=200, destination_count=150)

        assert result.record_gap == 50
        assert result.gap_percentage == 25.0
        assert result.has_gap

    def test_empty_source_has_zero_percentage(self):
        result = EntityAnalysis("doctors", source_count=0, destination_count=3)

        assert result.gap_percentage == 0.0
        assert not result.has_data

    def test_negative_gap_counts_as_gap(self):
        """More destination rows than source rows is still a gap."""
        assert EntityAnalysis("doctors", source_count=1, destination_count=2).has_gap

    def test_unavailable_entity_has_no_gap(self):
        assert not EntityAnalysis("doctors", available=False).has_gap


class TestBaselineAnalyzer:
    """Tests for BaselineAnalyzer."""

    def test_invalid_config_rejected(self, source, destination, catalog):
        with pytest.raises(ConfigurationError):
            BaselineAnalyzer(
                source,
                destination,
                catalog,
                config=BaselineConfig(parallel_entities=0),
                enable_tracing=False,
            )

    @pytest.mark.asyncio
    async def test_analyze_entity_counts(self, analyzer: BaselineAnalyzer):
        result = await analyzer.analyze_entity("doctors")

        assert result.source_count == 2
        assert result.destination_count == 1
        assert result.record_gap == 1
        assert result.gap_percentage == 50.0
        assert result.available

    @pytest.mark.asyncio
    async def test_analyze_entity_reads_last_migration(
        self, analyzer: BaselineAnalyzer, checkpoint_store: InMemoryCheckpointStore
    ):
        await checkpoint_store.save(
            Checkpoint("offices", "run-0", 3, 0, updated_at=at(0))
        )

        result = await analyzer.analyze_entity("offices")

        assert result.last_migration_timestamp == at(0)

    @pytest.mark.asyncio
    async def test_analyze_entity_unknown(self, analyzer: BaselineAnalyzer):
        with pytest.raises(UnknownEntityTypeError):
            await analyzer.analyze_entity("widgets")

    @pytest.mark.asyncio
    async def test_unreachable_database_marks_entity_unavailable(
        self, analyzer: BaselineAnalyzer, source: InMemoryTableGateway
    ):
        source.available = False

        result = await analyzer.analyze_entity("offices")

        assert not result.available
        assert result.error is not None
        assert result.error.retryable

    @pytest.mark.asyncio
    async def test_validate_mappings_finds_orphans(self, analyzer: BaselineAnalyzer):
        """Destination office 99 has no source row."""
        validation = await analyzer.validate_mappings("offices")

        assert validation.orphaned_records == ("99",)
        assert validation.missing_fields == ()
        assert not validation.is_valid

    @pytest.mark.asyncio
    async def test_validate_mappings_valid(self, analyzer: BaselineAnalyzer):
        """Source `id` is covered by the destination `legacy_id` column."""
        validation = await analyzer.validate_mappings("doctors")

        assert validation.is_valid
        assert validation.extra_fields == ()

    @pytest.mark.asyncio
    async def test_validate_mappings_missing_fields(self, catalog, source, checkpoint_store):
        destination = InMemoryTableGateway({"offices": [{"legacy_id": 1, "updated_at": at(0)}]})
        analyzer = BaselineAnalyzer(source, destination, catalog, enable_tracing=False)

        validation = await analyzer.validate_mappings("offices")

        assert validation.missing_fields == ("name",)

    @pytest.mark.asyncio
    async def test_analyze_reports_critical_gaps(
        self, analyzer: BaselineAnalyzer, log_repository: InMemoryExecutionLogRepository
    ):
        report = await analyzer.analyze()

        assert report.overall_status == BaselineStatus.CRITICAL_ISSUES
        assert report.summary.entities_analyzed == 3
        assert report.summary.entities_with_gaps == 2
        assert report.summary.average_gap_percentage == 50.0
        assert report.summary.total_source_records == 7
        assert report.summary.total_destination_records == 5
        assert report.result_for("patients").gap_percentage == 100.0
        assert any("entities have record gaps" in r for r in report.recommendations)
        assert any("consider full re-sync" in r for r in report.recommendations)

        operations = {entry.operation_type for entry in log_repository.entries}
        assert OperationType.BASELINE_ANALYSIS in operations
        assert OperationType.VALIDATION in operations

    @pytest.mark.asyncio
    async def test_analyze_healthy(self, catalog: EntityCatalog):
        row = office_row(1, "Main")
        analyzer = BaselineAnalyzer(
            InMemoryTableGateway({"dispatch_office": [row]}),
            InMemoryTableGateway({"offices": [migrated(row)]}),
            catalog,
            enable_tracing=False,
        )

        report = await analyzer.analyze(["offices"])

        assert report.overall_status == BaselineStatus.HEALTHY
        assert report.recommendations == [
            "All entities appear healthy - ready for differential migration"
        ]

    @pytest.mark.asyncio
    async def test_analyze_gaps_below_threshold(self, catalog: EntityCatalog):
        rows = [office_row(i, f"Office {i}") for i in range(1, 21)]
        analyzer = BaselineAnalyzer(
            InMemoryTableGateway({"dispatch_office": rows}),
            InMemoryTableGateway({"offices": [migrated(r) for r in rows[:19]]}),
            catalog,
            enable_tracing=False,
        )

        report = await analyzer.analyze(["offices"])

        assert report.overall_status == BaselineStatus.GAPS_DETECTED
        assert report.summary.average_gap_percentage == 5.0

    @pytest.mark.asyncio
    async def test_failure_isolated_to_one_entity(
        self,
        analyzer: BaselineAnalyzer,
        destination: InMemoryTableGateway,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """One unreachable table does not abort the other entities."""
        original_count = destination.count

        async def count(table: str) -> int:
            if table == "doctors":
                raise ConnectionResetError("reset by peer")
            return await original_count(table)

        monkeypatch.setattr(destination, "count", count)

        report = await analyzer.analyze(["offices", "doctors"])

        assert report.summary.entities_unavailable == 1
        assert not report.result_for("doctors").available
        assert report.result_for("offices").available
        assert report.recommendations[0].startswith("Could not analyze 1 entities (doctors)")
        assert [m.entity_type for m in report.mapping_validation] == ["offices"]
        assert report.overall_status == BaselineStatus.CRITICAL_ISSUES

    @pytest.mark.asyncio
    async def test_unreachable_databases_never_healthy(
        self,
        analyzer: BaselineAnalyzer,
        source: InMemoryTableGateway,
        destination: InMemoryTableGateway,
    ):
        source.available = False
        destination.available = False

        report = await analyzer.analyze(["offices", "doctors", "patients"])

        assert [r.available for r in report.entity_results] == [False, False, False]
        assert report.overall_status == BaselineStatus.CRITICAL_ISSUES
        assert report.summary.entities_unavailable == 3
        assert report.recommendations[0].startswith("Could not analyze 3 entities")
        assert "All entities appear healthy" not in " ".join(report.recommendations)

    @pytest.mark.asyncio
    async def test_analyze_rejects_unknown_entity(self, analyzer: BaselineAnalyzer):
        with pytest.raises(UnknownEntityTypeError):
            await analyzer.analyze(["offices", "widgets"])

    @pytest.mark.asyncio
    async def test_mapping_validation_can_be_disabled(self, source, destination, catalog):
        analyzer = BaselineAnalyzer(
            source,
            destination,
            catalog,
            config=BaselineConfig(include_mapping_validation=False),
            enable_tracing=False,
        )

        report = await analyzer.analyze(["offices"])

        assert report.mapping_validation == []
        assert report.overall_status == BaselineStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_test_connections(self, analyzer: BaselineAnalyzer, destination):
        destination.available = False

        status = await analyzer.test_connections()

        assert status.source is True
        assert status.destination is False
        assert status.destination_error == "database unavailable"

    @pytest.mark.asyncio
    async def test_errors_are_logged(
        self,
        analyzer: BaselineAnalyzer,
        source: InMemoryTableGateway,
        log_repository: InMemoryExecutionLogRepository,
    ):
        source.available = False

        await analyzer.analyze_entity("offices")

        errors = await log_repository.list_for_session("test-session", log_level=LogLevel.ERROR)
        assert len(errors) == 1
        assert errors[0].entity_type == "offices"

    @pytest.mark.asyncio
    async def test_spans(self, source, destination, catalog):
        tracer = MockTracer()
        analyzer = BaselineAnalyzer(source, destination, catalog, tracer=tracer)

        await analyzer.analyze(["offices"])

        assert "diffmigrate.baseline.analyze" in tracer.span_names
        assert "diffmigrate.baseline.analyze_entity" in tracer.span_names
