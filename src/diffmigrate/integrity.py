"""
Field-level comparison of migrated records with their source rows.

Used by the migration executor to verify a sample of each migrated
entity and by the conflict resolver to confirm that no resolved record
still diverges from its source.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from diffmigrate.catalog import EntityDescriptor
from diffmigrate.gateway import Row, TableGateway
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import ATTR_ENTITY_TYPE, ATTR_RECORD_COUNT
from diffmigrate.serialization import CONTENT_HASH_EXCLUDED_FIELDS, canonical_dumps

logger = logging.getLogger(__name__)

# Minimum match percentage for a sample to count as valid
MATCH_THRESHOLD = 95.0


@dataclass(frozen=True)
class RecordComparison:
    record_id: str
    differences: tuple[str, ...] = ()

    @property
    def is_match(self) -> bool:
        return not self.differences


@dataclass(frozen=True)
class IntegrityValidation:
    """Outcome of comparing a set of records on both sides."""

    entity_type: str
    comparisons: tuple[RecordComparison, ...] = ()
    error: str | None = None

    @property
    def total_validated(self) -> int:
        return len(self.comparisons)

    @property
    def successful_matches(self) -> int:
        return sum(1 for c in self.comparisons if c.is_match)

    @property
    def failed_matches(self) -> int:
        return self.total_validated - self.successful_matches

    @property
    def match_percentage(self) -> float:
        if not self.comparisons:
            return 100.0
        return round(self.successful_matches / self.total_validated * 100, 2)

    @property
    def is_valid(self) -> bool:
        return self.error is None and self.match_percentage >= MATCH_THRESHOLD

    @property
    def mismatched_ids(self) -> list[str]:
        return [c.record_id for c in self.comparisons if not c.is_match]

    @property
    def recommendations(self) -> list[str]:
        recommendations: list[str] = []
        if self.error is not None:
            recommendations.append(f"Validation could not complete: {self.error}")
        if self.match_percentage < MATCH_THRESHOLD:
            recommendations.append("Low match percentage - investigate data transformation issues")
        if self.failed_matches > 5:
            recommendations.append("Multiple validation failures - review migration logic")
        if not recommendations:
            recommendations.append("Validation successful - migration integrity confirmed")
        return recommendations

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "is_valid": self.is_valid,
            "total_validated": self.total_validated,
            "successful_matches": self.successful_matches,
            "failed_matches": self.failed_matches,
            "match_percentage": self.match_percentage,
            "mismatched_ids": self.mismatched_ids,
            "recommendations": self.recommendations,
            "error": self.error,
        }


class IntegrityChecker:
    """
    Compares destination rows with the source rows they were migrated from.

    Only source columns take part in the comparison; columns in
    `exclude_fields` and the standard bookkeeping columns are skipped.
    Values are compared in their canonical serialized form, so driver
    differences (naive vs aware UTC datetimes, Decimal vs str) do not
    count as mismatches.
    """

    def __init__(
        self,
        source: TableGateway,
        destination: TableGateway,
        exclude_fields: tuple[str, ...] = (),
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.source = source
        self.destination = destination
        self._excluded = CONTENT_HASH_EXCLUDED_FIELDS | frozenset(exclude_fields)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    def differences(
        self, descriptor: EntityDescriptor, source_row: Row, destination_row: Row
    ) -> list[str]:
        """Names of source columns whose value differs in the destination row."""
        skipped = self._excluded | {descriptor.id_field, descriptor.legacy_id_field}
        if descriptor.timestamp_field:
            skipped = skipped | {descriptor.timestamp_field}
        return sorted(
            name
            for name, value in source_row.items()
            if name not in skipped
            and canonical_dumps({"v": value})
            != canonical_dumps({"v": destination_row.get(name)})
        )

    async def check(
        self, descriptor: EntityDescriptor, record_ids: Sequence[Any]
    ) -> IntegrityValidation:
        """
        Compare the given records on both sides.

        Args:
            descriptor: Entity the records belong to
            record_ids: Source primary keys to compare

        Returns:
            IntegrityValidation; `error` is set if either side could not be read
        """
        with self._tracer.span(
            "diffmigrate.integrity.check",
            {ATTR_ENTITY_TYPE: descriptor.entity_type, ATTR_RECORD_COUNT: len(record_ids)},
        ):
            if not record_ids:
                return IntegrityValidation(entity_type=descriptor.entity_type)
            try:
                source_rows = await self.source.fetch_by_ids(
                    descriptor.source_table, descriptor.id_field, list(record_ids)
                )
                destination_rows = await self.destination.fetch_by_ids(
                    descriptor.destination_table, descriptor.legacy_id_field, list(record_ids)
                )
            except Exception as e:
                logger.warning(
                    "Integrity check failed for %s: %s", descriptor.entity_type, e, exc_info=True
                )
                return IntegrityValidation(entity_type=descriptor.entity_type, error=str(e))

            by_source_id = {str(row[descriptor.id_field]): row for row in source_rows}
            by_legacy_id = {
                str(row[descriptor.legacy_id_field]): row for row in destination_rows
            }

            comparisons: list[RecordComparison] = []
            for raw_id in record_ids:
                record_id = str(raw_id)
                source_row = by_source_id.get(record_id)
                destination_row = by_legacy_id.get(record_id)
                if source_row is None and destination_row is None:
                    continue
                if source_row is None:
                    comparisons.append(RecordComparison(record_id, ("missing in source",)))
                elif destination_row is None:
                    comparisons.append(RecordComparison(record_id, ("missing in destination",)))
                else:
                    comparisons.append(
                        RecordComparison(
                            record_id,
                            tuple(self.differences(descriptor, source_row, destination_row)),
                        )
                    )
            return IntegrityValidation(
                entity_type=descriptor.entity_type, comparisons=tuple(comparisons)
            )


def sample_ids(record_ids: Sequence[Any], sample_size: int) -> list[Any]:
    """Evenly spaced sample of at most `sample_size` ids, keeping order."""
    if sample_size <= 0 or not record_ids:
        return []
    if len(record_ids) <= sample_size:
        return list(record_ids)
    step = len(record_ids) / sample_size
    return [record_ids[int(i * step)] for i in range(sample_size)]


__all__ = [
    "IntegrityChecker",
    "IntegrityValidation",
    "MATCH_THRESHOLD",
    "RecordComparison",
    "sample_ids",
]
