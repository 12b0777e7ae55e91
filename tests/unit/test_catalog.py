"""
Unit tests for the entity catalog.
"""

import pytest

from diffmigrate.catalog import LEGACY_CATALOG, EntityCatalog, EntityDescriptor
from diffmigrate.exceptions import (
    ConfigurationError,
    DependencyCycleError,
    UnknownEntityTypeError,
)


class TestEntityDescriptor:
    """Tests for EntityDescriptor."""

    def test_legacy_factory(self):
        descriptor = EntityDescriptor.legacy("doctors", "dispatch_doctor", "offices")

        assert descriptor.source_table == "dispatch_doctor"
        assert descriptor.destination_table == "doctors"
        assert descriptor.dependencies == frozenset({"offices"})
        assert descriptor.id_field == "id"
        assert descriptor.legacy_id_field == "legacy_id"


class TestEntityCatalog:
    """Tests for EntityCatalog."""

    def test_lookup(self, catalog: EntityCatalog):
        assert "offices" in catalog
        assert len(catalog) == 3
        assert catalog.names == ["offices", "doctors", "patients"]
        assert catalog.get("doctors").source_table == "dispatch_doctor"

    def test_unknown_entity_raises(self, catalog: EntityCatalog):
        with pytest.raises(UnknownEntityTypeError):
            catalog.get("widgets")

    def test_duplicate_registration(self):
        with pytest.raises(ConfigurationError, match="registered twice"):
            EntityCatalog(
                [
                    EntityDescriptor.legacy("offices", "dispatch_office"),
                    EntityDescriptor.legacy("offices", "dispatch_office_v2"),
                ]
            )

    def test_unknown_dependency(self):
        with pytest.raises(ConfigurationError) as exc_info:
            EntityCatalog([EntityDescriptor.legacy("doctors", "dispatch_doctor", "offices")])

        assert exc_info.value.errors == ["offices"]

    def test_cycle_is_fatal(self):
        """A dependency cycle is a configuration error, never silently resolved."""
        with pytest.raises(DependencyCycleError) as exc_info:
            EntityCatalog(
                [
                    EntityDescriptor.legacy("a", "t_a", "b"),
                    EntityDescriptor.legacy("b", "t_b", "c"),
                    EntityDescriptor.legacy("c", "t_c", "a"),
                ]
            )

        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_dependency_order(self, catalog: EntityCatalog):
        assert catalog.dependency_order(["patients", "offices", "doctors"]) == [
            "offices",
            "doctors",
            "patients",
        ]

    def test_dependency_order_of_subset(self, catalog: EntityCatalog):
        """Dependencies outside the selection are ignored."""
        assert catalog.dependency_order(["patients", "doctors"]) == ["doctors", "patients"]

    def test_dependency_order_unknown_entity(self, catalog: EntityCatalog):
        with pytest.raises(UnknownEntityTypeError):
            catalog.dependency_order(["offices", "widgets"])

    def test_dependencies_within(self, catalog: EntityCatalog):
        assert catalog.dependencies_within("doctors", ["offices", "doctors"]) == ["offices"]
        assert catalog.dependencies_within("doctors", ["doctors"]) == []


class TestLegacyCatalog:
    """Tests for the built-in legacy catalog."""

    def test_contains_every_legacy_entity(self):
        assert len(LEGACY_CATALOG) == 20
        assert LEGACY_CATALOG.get("offices").source_table == "dispatch_office"
        assert LEGACY_CATALOG.get("case_files").dependencies == frozenset({"cases", "files"})

    def test_full_order_respects_dependencies(self):
        order = LEGACY_CATALOG.dependency_order()

        assert len(order) == 20
        for descriptor in LEGACY_CATALOG:
            for dependency in descriptor.dependencies:
                assert order.index(dependency) < order.index(descriptor.entity_type)
