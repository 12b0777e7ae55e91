"""
Execution logger: structured, persisted log entries for one session.

Each entry is written to an ExecutionLogRepository and mirrored to the
standard library logger at the matching level. Failing to persist an
entry is logged and swallowed so that logging never aborts the engine
operation being logged.

Example:
    >>> log = ExecutionLogger("run-1", InMemoryExecutionLogRepository())
    >>> await log.info(OperationType.RECORD_MIGRATION, "Batch 1 completed", entity_type="doctors")
"""

import logging
from typing import Any

from diffmigrate.models import ExecutionLogEntry, LogLevel, OperationType
from diffmigrate.repositories.execution_log import ExecutionLogRepository

logger = logging.getLogger(__name__)

_STDLIB_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARN: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}


class ExecutionLogger:
    """
    Writes ExecutionLogEntry records for one session.

    Args:
        session_id: Session (run) the entries belong to
        repository: Where entries are persisted; None keeps them in the
            stdlib log only
    """

    def __init__(
        self,
        session_id: str,
        repository: ExecutionLogRepository | None = None,
    ) -> None:
        self.session_id = session_id
        self._repository = repository

    async def log(
        self,
        operation_type: OperationType,
        log_level: LogLevel,
        message: str,
        *,
        entity_type: str | None = None,
        error_details: dict[str, Any] | None = None,
        performance_data: dict[str, Any] | None = None,
        context_data: dict[str, Any] | None = None,
    ) -> ExecutionLogEntry:
        """Build, mirror and persist one entry."""
        entry = ExecutionLogEntry(
            session_id=self.session_id,
            entity_type=entity_type,
            operation_type=operation_type,
            log_level=log_level,
            message=message,
            error_details=error_details,
            performance_data=performance_data,
            context_data=context_data or {},
        )
        logger.log(
            _STDLIB_LEVELS[log_level],
            "[%s] %s%s",
            operation_type.value,
            f"{entity_type}: " if entity_type else "",
            message,
            extra={
                "session_id": self.session_id,
                "entity_type": entity_type,
                "operation_type": operation_type.value,
            },
        )
        if self._repository is not None:
            try:
                await self._repository.append(entry)
            except Exception as e:
                logger.warning(
                    "Failed to persist execution log entry for session %s: %s",
                    self.session_id,
                    e,
                    exc_info=True,
                )
        return entry

    async def error(
        self, operation_type: OperationType, message: str, **kwargs: Any
    ) -> ExecutionLogEntry:
        return await self.log(operation_type, LogLevel.ERROR, message, **kwargs)

    async def warn(
        self, operation_type: OperationType, message: str, **kwargs: Any
    ) -> ExecutionLogEntry:
        return await self.log(operation_type, LogLevel.WARN, message, **kwargs)

    async def info(
        self, operation_type: OperationType, message: str, **kwargs: Any
    ) -> ExecutionLogEntry:
        return await self.log(operation_type, LogLevel.INFO, message, **kwargs)

    async def debug(
        self, operation_type: OperationType, message: str, **kwargs: Any
    ) -> ExecutionLogEntry:
        return await self.log(operation_type, LogLevel.DEBUG, message, **kwargs)


__all__ = ["ExecutionLogger"]
