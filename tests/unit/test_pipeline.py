"""
Tests for the end-to-end pipeline over the in-memory gateways.
"""

import pytest

from diffmigrate.config import DetectionConfig, ResolutionOptions
from diffmigrate.detection import IdStrategy, TimestampStrategy, strategy_to_cursor
from diffmigrate.executor import ExecutionStatus
from diffmigrate.gateway import InMemoryTableGateway
from diffmigrate.models import (
    Checkpoint,
    ComparisonType,
    DataDifferential,
    LogLevel,
    ResolutionStrategy,
)
from diffmigrate.pipeline import DETECTION_CURSOR_KEY, DifferentialMigrationPipeline
from diffmigrate.repositories import InMemoryCheckpointStore, InMemoryExecutionLogRepository
from tests.conftest import at

ALL = ["offices", "doctors", "patients"]


@pytest.fixture
def make_pipeline(
    source, destination, catalog, checkpoint_store, differential_store, log_repository
):
    def make(**kwargs) -> DifferentialMigrationPipeline:
        return DifferentialMigrationPipeline(
            source,
            destination,
            catalog,
            checkpoint_store,
            differential_store,
            log_repository=log_repository,
            session_id="test-session",
            enable_tracing=False,
            **kwargs,
        )

    return make


def office_names(destination: InMemoryTableGateway) -> dict[int, str]:
    return {row["legacy_id"]: row["name"] for row in destination.rows("offices")}


class TestPipelineRun:
    """Tests for DifferentialMigrationPipeline.run."""

    @pytest.mark.asyncio
    async def test_first_run_brings_destination_in_line(
        self, make_pipeline, destination: InMemoryTableGateway
    ):
        result = await make_pipeline().run(ALL)

        assert result.execution.overall_status == ExecutionStatus.COMPLETED
        assert result.execution.execution_order == [["offices"], ["doctors"], ["patients"]]
        assert result.resolution.resolved_conflicts == 5
        assert office_names(destination) == {
            1: "Main",
            2: "North (renamed)",
            3: "South",
            4: "East",
        }
        assert await destination.count("doctors") == 2
        assert await destination.count("patients") == 1

    @pytest.mark.asyncio
    async def test_conflicted_records_left_to_resolver(self, make_pipeline):
        result = await make_pipeline().run(ALL)

        offices = result.execution.entity_results["offices"]
        assert [b.record_ids for b in offices.batches] == [[4]]
        assert result.detections["offices"].changed_ids() == [2, 4]

    @pytest.mark.asyncio
    async def test_target_wins_decision_not_overwritten(
        self, make_pipeline, destination: InMemoryTableGateway
    ):
        pipeline = make_pipeline(
            resolution_options=ResolutionOptions(strategy=ResolutionStrategy.TARGET_WINS)
        )

        await pipeline.run(ALL)

        names = office_names(destination)
        assert names[2] == "North"
        assert names[4] == "East"
        assert 99 in names

    @pytest.mark.asyncio
    async def test_resolution_limited_to_run_entities(
        self, make_pipeline, differential_store, destination: InMemoryTableGateway
    ):
        """An earlier unresolved differential of another entity is left alone."""
        pending = DataDifferential(
            entity_type="patients",
            source_table="dispatch_patient",
            target_table="patients",
            comparison_type=ComparisonType.MISSING_RECORDS,
            legacy_ids=("7",),
        )
        await differential_store.add(pending)

        result = await make_pipeline().run(["offices"])

        assert "offices" in result.resolution.entities
        assert "patients" not in result.resolution.entities
        stored = await differential_store.get(pending.id)
        assert stored is not None
        assert not stored.resolved
        assert await destination.count("patients") == 0

    @pytest.mark.asyncio
    async def test_without_conflict_resolution(
        self, make_pipeline, destination: InMemoryTableGateway
    ):
        result = await make_pipeline().run(ALL, resolve_conflicts=False)

        assert result.conflicts == []
        assert result.resolution is None
        names = office_names(destination)
        assert names[2] == "North (renamed)"
        assert 99 in names

    @pytest.mark.asyncio
    async def test_cursor_stored_with_completed_checkpoint(
        self, make_pipeline, checkpoint_store: InMemoryCheckpointStore
    ):
        await make_pipeline().run(ALL)

        checkpoint = await checkpoint_store.get_latest("offices")
        assert checkpoint.checkpoint_data["state"] == "completed"
        assert checkpoint.checkpoint_data[DETECTION_CURSOR_KEY] == strategy_to_cursor(
            TimestampStrategy(since=at(45))
        )

    @pytest.mark.asyncio
    async def test_second_run_starts_from_stored_cursor(
        self, make_pipeline, destination: InMemoryTableGateway
    ):
        pipeline = make_pipeline()
        await pipeline.run(ALL)
        writes = destination.writes

        result = await pipeline.run(ALL)

        assert result.cursors["offices"] == TimestampStrategy(since=at(45))
        assert result.cursors["doctors"] == TimestampStrategy(since=at(15))
        assert all(d.summary.total_changes == 0 for d in result.detections.values())
        assert result.conflicts == []
        assert result.resolution is None
        assert result.execution.overall_status == ExecutionStatus.COMPLETED
        assert destination.writes == writes

    @pytest.mark.asyncio
    async def test_explicit_since(self, make_pipeline):
        result = await make_pipeline().run(["offices"], since=at(40), resolve_conflicts=False)

        assert result.cursors == {"offices": TimestampStrategy(since=at(40))}
        assert result.detections["offices"].changed_ids() == [4]

    @pytest.mark.asyncio
    async def test_failed_detection_skips_entity(
        self, make_pipeline, log_repository: InMemoryExecutionLogRepository
    ):
        pipeline = make_pipeline(detection_config=DetectionConfig(max_records_per_pass=1))

        result = await pipeline.run(ALL, resolve_conflicts=False)

        assert result.failed_detections == ["offices"]
        assert "offices" not in result.execution.entity_results
        assert sorted(result.execution.entities_processed) == ["doctors", "patients"]
        warnings = await log_repository.list_for_session("test-session", log_level=LogLevel.WARN)
        assert any(w.message == "Detection failed for: offices" for w in warnings)

    @pytest.mark.asyncio
    async def test_progress_tracked(self, make_pipeline):
        pipeline = make_pipeline()

        await pipeline.run(ALL)

        report = pipeline.tracker.generate_progress_report()
        assert report.summary.total_entities == 3
        assert report.summary.completed_entities == 3

    @pytest.mark.asyncio
    async def test_result_to_dict(self, make_pipeline):
        result = await make_pipeline().run(["offices"])

        data = result.to_dict()

        assert data["session_id"] == "test-session"
        assert data["cursors"]["offices"]["kind"] == "timestamp"
        assert data["failed_detections"] == []
        assert data["execution"]["overall_status"] == "completed"


class TestStartingCursor:
    """Tests for starting_cursor."""

    @pytest.mark.asyncio
    async def test_no_history_scans_everything(self, make_pipeline):
        assert await make_pipeline().starting_cursor("offices") == TimestampStrategy()

    @pytest.mark.asyncio
    async def test_stored_cursor_of_completed_run(
        self, make_pipeline, checkpoint_store: InMemoryCheckpointStore
    ):
        await checkpoint_store.save(
            Checkpoint(
                entity_type="offices",
                migration_run_id="run-0",
                records_processed=4,
                records_remaining=0,
                checkpoint_data={
                    "state": "completed",
                    DETECTION_CURSOR_KEY: strategy_to_cursor(IdStrategy(last_processed_id=4)),
                },
            )
        )

        cursor = await make_pipeline().starting_cursor("offices")

        assert cursor == IdStrategy(last_processed_id=4)

    @pytest.mark.asyncio
    async def test_unfinished_run_falls_back_to_full_scan(
        self, make_pipeline, checkpoint_store: InMemoryCheckpointStore
    ):
        await checkpoint_store.save(
            Checkpoint(
                entity_type="offices",
                migration_run_id="run-0",
                records_processed=1,
                records_remaining=3,
                checkpoint_data={
                    "state": "failed",
                    DETECTION_CURSOR_KEY: strategy_to_cursor(TimestampStrategy(since=at(45))),
                },
            )
        )

        assert await make_pipeline().starting_cursor("offices") == TimestampStrategy()

    @pytest.mark.asyncio
    async def test_unreadable_cursor_ignored(
        self, make_pipeline, checkpoint_store: InMemoryCheckpointStore
    ):
        await checkpoint_store.save(
            Checkpoint(
                entity_type="offices",
                migration_run_id="run-0",
                records_processed=4,
                records_remaining=0,
                checkpoint_data={"state": "completed", DETECTION_CURSOR_KEY: {"kind": "bogus"}},
            )
        )

        assert await make_pipeline().starting_cursor("offices") == TimestampStrategy()
