"""
Record migrators: the unit of work the executor runs for each batch.

A RecordMigrator receives the descriptor of an entity and one batch of
source ids and reports which records were written and which failed.
Per-record problems (a missing source row, a row rejected by the
validator) are returned as failures; problems that affect the whole
batch (connection loss, a rejected write) are raised so the executor can
retry or fail the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from diffmigrate.catalog import EntityDescriptor
from diffmigrate.exceptions import DataValidationError, ErrorDetail
from diffmigrate.gateway import Row, TableGateway
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import ATTR_ENTITY_TYPE, ATTR_RECORD_COUNT

logger = logging.getLogger(__name__)

RowValidator = Callable[[EntityDescriptor, Row], None]
"""Raises DataValidationError for a source row that must not be migrated."""


@dataclass
class MigrationOutcome:
    """Per-record outcome of migrating one batch."""

    successful: list[str] = field(default_factory=list)
    failed: list[ErrorDetail] = field(default_factory=list)


@runtime_checkable
class RecordMigrator(Protocol):
    """Protocol for migrating one batch of records of one entity."""

    async def migrate(
        self, descriptor: EntityDescriptor, record_ids: Sequence[Any]
    ) -> MigrationOutcome:
        """
        Migrate the given source records.

        Args:
            descriptor: Entity the records belong to
            record_ids: Source primary keys of the batch

        Returns:
            MigrationOutcome listing written and failed records

        Raises:
            Exception: For failures affecting the whole batch
        """
        ...


def to_destination_row(descriptor: EntityDescriptor, source_row: Row) -> Row:
    """
    Map a source row onto the destination table.

    The source primary key moves into the legacy id column; every other
    column is copied under its own name.
    """
    row = {k: v for k, v in source_row.items() if k != descriptor.id_field}
    row[descriptor.legacy_id_field] = source_row[descriptor.id_field]
    return row


class CopyRecordMigrator:
    """
    Copies source rows into the destination keyed by legacy id.

    All rows of a batch that pass validation are written in one
    destination transaction; an exception during the write rolls the
    whole batch back.

    Args:
        source: Gateway to the legacy database
        destination: Gateway to the destination database
        validator: Optional check applied to each source row before writing
        tracer: Optional tracer (if not provided, one will be created)
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> migrator = CopyRecordMigrator(source, destination)
        >>> outcome = await migrator.migrate(LEGACY_CATALOG.get("offices"), ["1", "2"])
    """

    def __init__(
        self,
        source: TableGateway,
        destination: TableGateway,
        validator: RowValidator | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._source = source
        self._destination = destination
        self._validator = validator
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def migrate(
        self, descriptor: EntityDescriptor, record_ids: Sequence[Any]
    ) -> MigrationOutcome:
        with self._tracer.span(
            "diffmigrate.migrator.migrate",
            {ATTR_ENTITY_TYPE: descriptor.entity_type, ATTR_RECORD_COUNT: len(record_ids)},
        ):
            outcome = MigrationOutcome()
            source_rows = {
                str(row[descriptor.id_field]): row
                for row in await self._source.fetch_by_ids(
                    descriptor.source_table, descriptor.id_field, list(record_ids)
                )
            }

            pending: list[tuple[str, Row]] = []
            for record_id in record_ids:
                row = source_rows.get(str(record_id))
                if row is None:
                    outcome.failed.append(
                        ErrorDetail.from_exception(
                            DataValidationError(
                                f"Source record {record_id} not found",
                                str(record_id),
                                entity_type=descriptor.entity_type,
                            ),
                            record_id=str(record_id),
                        )
                    )
                    continue
                if self._validator is not None:
                    try:
                        self._validator(descriptor, row)
                    except DataValidationError as e:
                        outcome.failed.append(
                            ErrorDetail.from_exception(e, record_id=str(record_id))
                        )
                        continue
                pending.append((str(record_id), to_destination_row(descriptor, row)))

            if pending:
                async with self._destination.transaction() as tx:
                    await tx.upsert(
                        descriptor.destination_table,
                        [row for _, row in pending],
                        key=descriptor.legacy_id_field,
                    )
                outcome.successful.extend(record_id for record_id, _ in pending)

            if outcome.failed:
                logger.debug(
                    "%d of %d %s records rejected",
                    len(outcome.failed),
                    len(record_ids),
                    descriptor.entity_type,
                )
            return outcome


__all__ = [
    "CopyRecordMigrator",
    "MigrationOutcome",
    "RecordMigrator",
    "RowValidator",
    "to_destination_row",
]
