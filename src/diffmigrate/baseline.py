"""
Baseline analyzer: how far have source and destination drifted?

For every requested entity the analyzer counts rows on both sides,
computes the gap, optionally validates the field mapping and rolls the
per-entity results into a health classification with recommendations.

A failure to reach either database only affects the entity being
analysed: its result is marked unavailable and the other entities are
still reported.

Example:
    >>> analyzer = BaselineAnalyzer(source, destination, LEGACY_CATALOG)
    >>> report = await analyzer.analyze(["offices", "doctors"])
    >>> report.overall_status
    <BaselineStatus.GAPS_DETECTED: 'gaps_detected'>
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from diffmigrate.catalog import EntityCatalog, EntityDescriptor
from diffmigrate.config import BaselineConfig, ensure_valid
from diffmigrate.exceptions import ErrorDetail
from diffmigrate.execution_log import ExecutionLogger
from diffmigrate.gateway import TableGateway
from diffmigrate.models import LogLevel, OperationType, utc_now
from diffmigrate.observability import Tracer, create_tracer
from diffmigrate.observability.attributes import (
    ATTR_ENTITY_COUNT,
    ATTR_ENTITY_TYPE,
    ATTR_SESSION_ID,
)
from diffmigrate.repositories.checkpoint import CheckpointStore

logger = logging.getLogger(__name__)

# Destination columns that never need a source counterpart
_STANDARD_DESTINATION_FIELDS = frozenset({"id", "created_at", "updated_at"})


class BaselineStatus(Enum):
    """Overall health classification of a baseline report."""

    HEALTHY = "healthy"
    """Every entity was analysed, none has a gap and every mapping is valid."""

    GAPS_DETECTED = "gaps_detected"
    """Some entities have gaps; the average gap is within the threshold."""

    CRITICAL_ISSUES = "critical_issues"
    """An entity could not be analysed, the average gap is above the threshold,
    or a mapping is invalid."""


@dataclass(frozen=True)
class EntityAnalysis:
    """
    Count comparison for one entity.

    When `available` is False the counts are zero and `error` explains
    which database could not be reached.
    """

    entity_type: str
    source_count: int = 0
    destination_count: int = 0
    last_migration_timestamp: datetime | None = None
    analysis_timestamp: datetime = field(default_factory=utc_now)
    available: bool = True
    error: ErrorDetail | None = None

    @property
    def record_gap(self) -> int:
        return self.source_count - self.destination_count

    @property
    def gap_percentage(self) -> float:
        if self.source_count <= 0:
            return 0.0
        return round(self.record_gap / self.source_count * 100, 2)

    @property
    def has_gap(self) -> bool:
        return self.available and self.record_gap != 0

    @property
    def has_data(self) -> bool:
        return self.source_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "source_count": self.source_count,
            "destination_count": self.destination_count,
            "record_gap": self.record_gap,
            "gap_percentage": self.gap_percentage,
            "has_data": self.has_data,
            "available": self.available,
            "last_migration_timestamp": (
                self.last_migration_timestamp.isoformat() if self.last_migration_timestamp else None
            ),
            "analysis_timestamp": self.analysis_timestamp.isoformat(),
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class MappingValidation:
    """
    Result of validating the source-to-destination mapping of one entity.

    Attributes:
        missing_fields: Source columns with neither a same-named nor a
            `legacy_`-prefixed destination column.
        extra_fields: Destination columns with no source counterpart.
        orphaned_records: Destination legacy ids whose source row is gone.
    """

    entity_type: str
    missing_fields: tuple[str, ...] = ()
    extra_fields: tuple[str, ...] = ()
    orphaned_records: tuple[str, ...] = ()
    error: ErrorDetail | None = None

    @property
    def is_valid(self) -> bool:
        return self.error is None and not self.missing_fields and not self.orphaned_records

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "is_valid": self.is_valid,
            "missing_fields": list(self.missing_fields),
            "extra_fields": list(self.extra_fields),
            "orphaned_records": list(self.orphaned_records),
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class BaselineSummary:
    total_source_records: int
    total_destination_records: int
    overall_gap: int
    average_gap_percentage: float
    entities_analyzed: int
    entities_with_gaps: int
    entities_unavailable: int
    analysis_duration_ms: float
    queries_executed: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_source_records": self.total_source_records,
            "total_destination_records": self.total_destination_records,
            "overall_gap": self.overall_gap,
            "average_gap_percentage": self.average_gap_percentage,
            "entities_analyzed": self.entities_analyzed,
            "entities_with_gaps": self.entities_with_gaps,
            "entities_unavailable": self.entities_unavailable,
            "analysis_duration_ms": self.analysis_duration_ms,
            "queries_executed": self.queries_executed,
        }


@dataclass(frozen=True)
class BaselineReport:
    """Gap report and health classification over a set of entities."""

    analysis_id: str
    session_id: str
    overall_status: BaselineStatus
    entity_results: list[EntityAnalysis]
    mapping_validation: list[MappingValidation]
    recommendations: list[str]
    summary: BaselineSummary
    generated_at: datetime = field(default_factory=utc_now)

    def result_for(self, entity_type: str) -> EntityAnalysis | None:
        return next((r for r in self.entity_results if r.entity_type == entity_type), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "session_id": self.session_id,
            "overall_status": self.overall_status.value,
            "entity_results": [r.to_dict() for r in self.entity_results],
            "mapping_validation": [m.to_dict() for m in self.mapping_validation],
            "recommendations": list(self.recommendations),
            "summary": self.summary.to_dict(),
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class ConnectionStatus:
    source: bool
    destination: bool
    source_error: str | None = None
    destination_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "source_error": self.source_error,
            "destination_error": self.destination_error,
        }


class BaselineAnalyzer:
    """
    Compares record counts and mapping validity between source and destination.

    Args:
        source: Gateway to the legacy database
        destination: Gateway to the destination database
        catalog: Entity catalog
        config: Classification thresholds
        checkpoint_store: Source of the last migration timestamp per entity
        session_id: Session the analysis is logged under
        execution_log: Structured execution logger
        tracer: Optional tracer (if not provided, one will be created)
        enable_tracing: Whether to enable OpenTelemetry tracing

    Raises:
        ConfigurationError: If `config` is invalid.
    """

    def __init__(
        self,
        source: TableGateway,
        destination: TableGateway,
        catalog: EntityCatalog,
        config: BaselineConfig | None = None,
        checkpoint_store: CheckpointStore | None = None,
        session_id: str | None = None,
        execution_log: ExecutionLogger | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.config = config or BaselineConfig()
        ensure_valid(self.config)
        self._source = source
        self._destination = destination
        self._catalog = catalog
        self._checkpoints = checkpoint_store
        self.session_id = session_id or str(uuid4())
        self._log = execution_log or ExecutionLogger(self.session_id)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._queries = 0

    async def test_connections(self) -> ConnectionStatus:
        """Ping both databases concurrently."""

        async def ping(gateway: TableGateway) -> tuple[bool, str | None]:
            try:
                return await gateway.ping(), None
            except Exception as e:
                logger.warning("Connection test failed: %s", e)
                return False, str(e)

        (source_ok, source_error), (dest_ok, dest_error) = await asyncio.gather(
            ping(self._source), ping(self._destination)
        )
        return ConnectionStatus(source_ok, dest_ok, source_error, dest_error)

    async def analyze_entity(self, entity_type: str) -> EntityAnalysis:
        """
        Count rows of one entity on both sides.

        Raises:
            UnknownEntityTypeError: If the entity is not in the catalog.
        """
        descriptor = self._catalog.get(entity_type)
        with self._tracer.span(
            "diffmigrate.baseline.analyze_entity",
            {ATTR_ENTITY_TYPE: entity_type, ATTR_SESSION_ID: self.session_id},
        ):
            started = time.monotonic()
            try:
                source_count, destination_count = await asyncio.gather(
                    self._source.count(descriptor.source_table),
                    self._destination.count(descriptor.destination_table),
                )
            except Exception as e:
                error = ErrorDetail.from_exception(e)
                await self._log.error(
                    OperationType.BASELINE_ANALYSIS,
                    f"Failed to analyze {entity_type}: {error.message}",
                    entity_type=entity_type,
                    error_details=error.to_dict(),
                )
                return EntityAnalysis(entity_type=entity_type, available=False, error=error)
            finally:
                self._queries += 2

            last_migration = None
            if self._checkpoints is not None:
                last_migration = await self._checkpoints.get_last_migration_timestamp(entity_type)

            result = EntityAnalysis(
                entity_type=entity_type,
                source_count=source_count,
                destination_count=destination_count,
                last_migration_timestamp=last_migration,
            )
            await self._log.info(
                OperationType.BASELINE_ANALYSIS,
                f"Analyzed {entity_type}: {source_count} source, "
                f"{destination_count} destination, gap: {result.record_gap}",
                entity_type=entity_type,
                performance_data={"analysis_duration_ms": (time.monotonic() - started) * 1000},
                context_data={"gap_percentage": result.gap_percentage},
            )
            return result

    async def validate_mappings(self, entity_type: str) -> MappingValidation:
        """
        Check the destination schema still covers the source schema and
        every destination legacy id still resolves in the source.

        Raises:
            UnknownEntityTypeError: If the entity is not in the catalog.
        """
        descriptor = self._catalog.get(entity_type)
        with self._tracer.span(
            "diffmigrate.baseline.validate_mappings",
            {ATTR_ENTITY_TYPE: entity_type},
        ):
            try:
                source_columns, destination_columns = await asyncio.gather(
                    self._source.columns(descriptor.source_table),
                    self._destination.columns(descriptor.destination_table),
                )
                self._queries += 2
                orphaned = await self._find_orphans(descriptor)
            except Exception as e:
                error = ErrorDetail.from_exception(e)
                await self._log.error(
                    OperationType.VALIDATION,
                    f"Failed to validate mappings for {entity_type}: {error.message}",
                    entity_type=entity_type,
                    error_details=error.to_dict(),
                )
                return MappingValidation(entity_type=entity_type, error=error)

            source_set = set(source_columns)
            destination_set = set(destination_columns)
            missing = tuple(
                column
                for column in source_columns
                if column not in destination_set and f"legacy_{column}" not in destination_set
            )
            extra = tuple(
                column
                for column in destination_columns
                if not column.startswith("legacy_")
                and column not in _STANDARD_DESTINATION_FIELDS
                and column not in source_set
            )
            validation = MappingValidation(
                entity_type=entity_type,
                missing_fields=missing,
                extra_fields=extra,
                orphaned_records=orphaned,
            )
            await self._log.log(
                OperationType.VALIDATION,
                LogLevel.INFO if validation.is_valid else LogLevel.WARN,
                f"Mapping validation for {entity_type}: "
                f"{'valid' if validation.is_valid else 'issues found'}",
                entity_type=entity_type,
                context_data={
                    "missing_fields": len(missing),
                    "extra_fields": len(extra),
                    "orphaned_records": len(orphaned),
                },
            )
            return validation

    async def _find_orphans(self, descriptor: EntityDescriptor) -> tuple[str, ...]:
        orphans: list[str] = []
        after: Any = None
        page_size = 1000
        while True:
            legacy_ids = await self._destination.fetch_ids(
                descriptor.destination_table, descriptor.legacy_id_field, after, page_size
            )
            self._queries += 1
            if not legacy_ids:
                break
            found = await self._source.fetch_by_ids(
                descriptor.source_table, descriptor.id_field, legacy_ids
            )
            self._queries += 1
            present = {str(row[descriptor.id_field]) for row in found}
            orphans.extend(str(i) for i in legacy_ids if str(i) not in present)
            if len(legacy_ids) < page_size:
                break
            after = legacy_ids[-1]
        return tuple(orphans)

    async def analyze(self, entity_types: list[str] | None = None) -> BaselineReport:
        """
        Analyse entities and classify overall health.

        Args:
            entity_types: Entities to analyse (defaults to the whole catalog)

        Returns:
            BaselineReport; entities whose database was unreachable are
            reported as unavailable and excluded from gap averages.

        Raises:
            UnknownEntityTypeError: If any entity is not in the catalog.
        """
        names = list(entity_types) if entity_types is not None else self._catalog.names
        for name in names:
            self._catalog.get(name)

        with self._tracer.span(
            "diffmigrate.baseline.analyze",
            {ATTR_ENTITY_COUNT: len(names), ATTR_SESSION_ID: self.session_id},
        ):
            started = time.monotonic()
            self._queries = 0
            await self._log.info(
                OperationType.BASELINE_ANALYSIS,
                f"Starting baseline analysis for {len(names)} entities",
                context_data={"entity_types": names},
            )

            semaphore = asyncio.Semaphore(self.config.parallel_entities)

            async def bounded(coro_factory: Any, name: str) -> Any:
                async with semaphore:
                    return await coro_factory(name)

            entity_results = list(
                await asyncio.gather(*(bounded(self.analyze_entity, n) for n in names))
            )
            mapping_validation: list[MappingValidation] = []
            if self.config.include_mapping_validation:
                available = [r.entity_type for r in entity_results if r.available]
                mapping_validation = list(
                    await asyncio.gather(*(bounded(self.validate_mappings, n) for n in available))
                )

            report = self._build_report(
                entity_results, mapping_validation, (time.monotonic() - started) * 1000
            )
            await self._log.info(
                OperationType.BASELINE_ANALYSIS,
                f"Baseline analysis completed: {report.overall_status.value}",
                performance_data={"analysis_duration_ms": report.summary.analysis_duration_ms},
                context_data=report.summary.to_dict(),
            )
            return report

    def _build_report(
        self,
        entity_results: list[EntityAnalysis],
        mapping_validation: list[MappingValidation],
        duration_ms: float,
    ) -> BaselineReport:
        available = [r for r in entity_results if r.available]
        unavailable = [r for r in entity_results if not r.available]
        with_gaps = [r for r in available if r.has_gap]
        invalid_mappings = [m for m in mapping_validation if m.error is None and not m.is_valid]
        unvalidated = [m.entity_type for m in mapping_validation if m.error is not None]

        total_source = sum(r.source_count for r in available)
        total_destination = sum(r.destination_count for r in available)
        average_gap = (
            round(sum(r.gap_percentage for r in available) / len(available), 2)
            if available
            else 0.0
        )

        if unavailable or average_gap > self.config.critical_gap_percentage or invalid_mappings:
            status = BaselineStatus.CRITICAL_ISSUES
        elif with_gaps:
            status = BaselineStatus.GAPS_DETECTED
        else:
            status = BaselineStatus.HEALTHY

        summary = BaselineSummary(
            total_source_records=total_source,
            total_destination_records=total_destination,
            overall_gap=total_source - total_destination,
            average_gap_percentage=average_gap,
            entities_analyzed=len(available),
            entities_with_gaps=len(with_gaps),
            entities_unavailable=len(unavailable),
            analysis_duration_ms=round(duration_ms, 2),
            queries_executed=self._queries,
        )
        return BaselineReport(
            analysis_id=str(uuid4()),
            session_id=self.session_id,
            overall_status=status,
            entity_results=entity_results,
            mapping_validation=mapping_validation,
            recommendations=self._recommendations(
                summary, invalid_mappings, unavailable, unvalidated
            ),
            summary=summary,
        )

    def _recommendations(
        self,
        summary: BaselineSummary,
        invalid_mappings: list[MappingValidation],
        unavailable: list[EntityAnalysis],
        unvalidated: list[str],
    ) -> list[str]:
        recommendations: list[str] = []
        if unavailable:
            names = ", ".join(r.entity_type for r in unavailable)
            recommendations.append(
                f"Could not analyze {len(unavailable)} entities ({names}) - "
                "check source and destination connectivity"
            )
        if unvalidated:
            recommendations.append(
                f"Mapping validation could not run for {', '.join(unvalidated)} - "
                "check source and destination connectivity"
            )
        if invalid_mappings:
            recommendations.append(
                f"{len(invalid_mappings)} entities have mapping validation issues - "
                "review schema changes"
            )
            for mapping in invalid_mappings:
                if mapping.missing_fields:
                    recommendations.append(
                        f"{mapping.entity_type}: source fields without a destination mapping: "
                        f"{', '.join(mapping.missing_fields)}"
                    )
                if mapping.orphaned_records:
                    recommendations.append(
                        f"{mapping.entity_type}: {len(mapping.orphaned_records)} destination "
                        "records reference source rows that no longer exist"
                    )
        if summary.entities_with_gaps:
            recommendations.append(
                f"{summary.entities_with_gaps} entities have record gaps - "
                "investigate missing data before differential run"
            )
        if summary.average_gap_percentage > self.config.full_resync_gap_percentage:
            recommendations.append(
                "High average gap percentage - consider full re-sync for affected entities"
            )
        if summary.overall_gap > self.config.large_gap_records:
            recommendations.append(
                "Large overall gap detected - run the catch-up in batches and verify completeness"
            )
        if not recommendations:
            recommendations.append("All entities appear healthy - ready for differential migration")
        return recommendations


__all__ = [
    "BaselineAnalyzer",
    "BaselineReport",
    "BaselineStatus",
    "BaselineSummary",
    "ConnectionStatus",
    "EntityAnalysis",
    "MappingValidation",
]
