"""
Unit tests for the execution logger and the in-memory log repository.
"""

import logging
from unittest.mock import AsyncMock

import pytest

from diffmigrate.execution_log import ExecutionLogger
from diffmigrate.models import LogLevel, OperationType
from diffmigrate.repositories import InMemoryExecutionLogRepository


class TestExecutionLogger:
    """Tests for ExecutionLogger."""

    @pytest.mark.asyncio
    async def test_entry_persisted(self, log_repository: InMemoryExecutionLogRepository):
        log = ExecutionLogger("run-1", log_repository)

        entry = await log.info(
            OperationType.RECORD_MIGRATION,
            "Batch 1 completed",
            entity_type="doctors",
            context_data={"batch_id": "b-1"},
        )

        assert log_repository.entries == [entry]
        assert entry.session_id == "run-1"
        assert entry.log_level == LogLevel.INFO
        assert entry.context_data == {"batch_id": "b-1"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("method", "level"),
        [
            ("error", LogLevel.ERROR),
            ("warn", LogLevel.WARN),
            ("info", LogLevel.INFO),
            ("debug", LogLevel.DEBUG),
        ],
    )
    async def test_level_helpers(self, log_repository, method, level):
        log = ExecutionLogger("run-1", log_repository)

        entry = await getattr(log, method)(OperationType.VALIDATION, "message")

        assert entry.log_level == level

    @pytest.mark.asyncio
    async def test_mirrored_to_stdlib(self, caplog: pytest.LogCaptureFixture):
        log = ExecutionLogger("run-1")

        with caplog.at_level(logging.WARNING, logger="diffmigrate.execution_log"):
            await log.warn(OperationType.VALIDATION, "Low match", entity_type="offices")

        record = caplog.records[0]
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "[validation] offices: Low match"
        assert record.session_id == "run-1"

    @pytest.mark.asyncio
    async def test_persistence_failure_is_swallowed(self, caplog: pytest.LogCaptureFixture):
        repository = AsyncMock()
        repository.append.side_effect = ConnectionError("database unavailable")
        log = ExecutionLogger("run-1", repository)

        with caplog.at_level(logging.WARNING, logger="diffmigrate.execution_log"):
            entry = await log.error(OperationType.RECORD_MIGRATION, "Batch failed")

        assert entry.message == "Batch failed"
        assert "Failed to persist execution log entry" in caplog.text


class TestInMemoryExecutionLogRepository:
    """Tests for list_for_session."""

    @pytest.mark.asyncio
    async def test_filters_by_session_and_level(
        self, log_repository: InMemoryExecutionLogRepository
    ):
        first = ExecutionLogger("run-1", log_repository)
        other = ExecutionLogger("run-2", log_repository)
        await first.info(OperationType.BASELINE_ANALYSIS, "started")
        await first.error(OperationType.BASELINE_ANALYSIS, "failed")
        await other.error(OperationType.BASELINE_ANALYSIS, "elsewhere")

        entries = await log_repository.list_for_session("run-1")
        errors = await log_repository.list_for_session("run-1", log_level=LogLevel.ERROR)

        assert [e.message for e in entries] == ["started", "failed"]
        assert [e.message for e in errors] == ["failed"]

    @pytest.mark.asyncio
    async def test_limit(self, log_repository: InMemoryExecutionLogRepository):
        log = ExecutionLogger("run-1", log_repository)
        for i in range(5):
            await log.debug(OperationType.RECORD_MIGRATION, f"entry {i}")

        entries = await log_repository.list_for_session("run-1", limit=2)

        assert [e.message for e in entries] == ["entry 0", "entry 1"]
