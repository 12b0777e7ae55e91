"""
Entity catalog: the fixed set of entity types the engine migrates.

Each EntityDescriptor names one source table, one destination table and
the entity types it depends on. The catalog is static configuration; it is
validated once (unknown dependencies and cycles are configuration errors)
and never mutated at runtime.

Usage:
    >>> from diffmigrate.catalog import LEGACY_CATALOG
    >>>
    >>> LEGACY_CATALOG.get("doctors").source_table
    'dispatch_doctor'
    >>> LEGACY_CATALOG.dependency_order(["patients", "offices", "doctors"])
    ['offices', 'doctors', 'patients']
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from diffmigrate.exceptions import (
    ConfigurationError,
    DependencyCycleError,
    UnknownEntityTypeError,
)


@dataclass(frozen=True)
class EntityDescriptor:
    """
    Static description of one entity type.

    Attributes:
        entity_type: Name of the entity type (e.g., 'doctors').
        source_table: Table holding the legacy rows.
        destination_table: Table holding the migrated rows.
        dependencies: Entity types that must be migrated first.
        id_field: Primary key column of the source table.
        legacy_id_field: Destination column holding the source primary key.
        timestamp_field: Modification timestamp column, when it differs
            from the detector-wide default.
    """

    entity_type: str
    source_table: str
    destination_table: str
    dependencies: frozenset[str] = field(default_factory=frozenset)
    id_field: str = "id"
    legacy_id_field: str = "legacy_id"
    timestamp_field: str | None = None

    @classmethod
    def legacy(cls, entity_type: str, source_table: str, *dependencies: str) -> EntityDescriptor:
        """Descriptor for a legacy dispatch table migrated into the `entity_type` table."""
        return cls(
            entity_type=entity_type,
            source_table=source_table,
            destination_table=entity_type,
            dependencies=frozenset(dependencies),
        )


class EntityCatalog:
    """
    Immutable registry of entity descriptors.

    The constructor validates the dependency relation: every dependency
    must be registered and the relation must be acyclic.

    Raises:
        ConfigurationError: If a descriptor depends on an unknown entity type
            or an entity type is registered twice.
        DependencyCycleError: If the dependencies contain a cycle.
    """

    def __init__(self, descriptors: Iterable[EntityDescriptor]) -> None:
        self._descriptors: dict[str, EntityDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.entity_type in self._descriptors:
                raise ConfigurationError(
                    f"Entity type registered twice: {descriptor.entity_type}",
                    entity_type=descriptor.entity_type,
                )
            self._descriptors[descriptor.entity_type] = descriptor
        self.validate()

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._descriptors

    def __iter__(self) -> Iterator[EntityDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    @property
    def names(self) -> list[str]:
        return list(self._descriptors)

    def get(self, entity_type: str) -> EntityDescriptor:
        """
        Look up a descriptor.

        Raises:
            UnknownEntityTypeError: If the entity type is not registered.
        """
        try:
            return self._descriptors[entity_type]
        except KeyError:
            raise UnknownEntityTypeError(entity_type) from None

    def validate(self) -> None:
        """
        Check the dependency relation is a DAG over registered types.

        Raises:
            ConfigurationError: On a dependency to an unregistered entity type.
            DependencyCycleError: On a cycle.
        """
        for descriptor in self._descriptors.values():
            unknown = sorted(d for d in descriptor.dependencies if d not in self._descriptors)
            if unknown:
                raise ConfigurationError(
                    f"Entity type {descriptor.entity_type} depends on unknown entity types",
                    unknown,
                    entity_type=descriptor.entity_type,
                )

        visiting: list[str] = []
        done: set[str] = set()

        def visit(name: str) -> None:
            if name in done:
                return
            if name in visiting:
                raise DependencyCycleError(visiting[visiting.index(name) :] + [name])
            visiting.append(name)
            for dep in sorted(self._descriptors[name].dependencies):
                visit(dep)
            visiting.pop()
            done.add(name)

        for name in self._descriptors:
            visit(name)

    def dependencies_within(self, entity_type: str, selection: Iterable[str]) -> list[str]:
        """Dependencies of `entity_type` restricted to `selection`, sorted."""
        selected = set(selection)
        return sorted(d for d in self.get(entity_type).dependencies if d in selected)

    def dependency_order(self, entity_types: Iterable[str] | None = None) -> list[str]:
        """
        Order entity types so every type follows its dependencies.

        Ties are broken by catalog registration order.

        Args:
            entity_types: Subset to order (defaults to the whole catalog).

        Returns:
            Entity type names in dependency order.
        """
        selected = list(entity_types) if entity_types is not None else self.names
        for name in selected:
            self.get(name)
        selected_set = set(selected)
        remaining = [name for name in self.names if name in selected_set]
        ordered: list[str] = []
        while remaining:
            for name in remaining:
                deps = set(self.dependencies_within(name, remaining))
                if not deps:
                    ordered.append(name)
                    remaining.remove(name)
                    break
        return ordered


LEGACY_CATALOG = EntityCatalog(
    [
        EntityDescriptor.legacy("offices", "dispatch_office"),
        EntityDescriptor.legacy("doctors", "dispatch_doctor", "offices"),
        EntityDescriptor.legacy("doctor_offices", "dispatch_doctor_office", "doctors", "offices"),
        EntityDescriptor.legacy("patients", "dispatch_patient", "doctors"),
        EntityDescriptor.legacy("orders", "dispatch_order", "patients"),
        EntityDescriptor.legacy("cases", "dispatch_case", "orders"),
        EntityDescriptor.legacy("files", "dispatch_file"),
        EntityDescriptor.legacy("case_files", "dispatch_case_file", "cases", "files"),
        EntityDescriptor.legacy("messages", "dispatch_message", "cases"),
        EntityDescriptor.legacy("message_files", "dispatch_message_file", "messages", "files"),
        EntityDescriptor.legacy("jaw", "dispatch_jaw", "patients"),
        EntityDescriptor.legacy("dispatch_records", "dispatch_record"),
        EntityDescriptor.legacy("system_messages", "dispatch_system_message"),
        EntityDescriptor.legacy("template_view_groups", "dispatch_template_view_group"),
        EntityDescriptor.legacy("message_attachments", "dispatch_message_attachment", "messages"),
        EntityDescriptor.legacy("technician_roles", "dispatch_technician_role", "doctors"),
        EntityDescriptor.legacy("order_cases", "dispatch_order_case", "orders", "cases"),
        EntityDescriptor.legacy("purchases", "dispatch_purchase", "orders"),
        EntityDescriptor.legacy("treatment_discussions", "dispatch_treatment_discussion", "cases"),
        EntityDescriptor.legacy(
            "template_view_roles", "dispatch_template_view_role", "template_view_groups"
        ),
    ]
)
"""Catalog of the legacy dispatch schema."""


__all__ = [
    "EntityCatalog",
    "EntityDescriptor",
    "LEGACY_CATALOG",
]
