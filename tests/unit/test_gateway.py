"""
Unit tests for the in-memory table gateway and identifier handling.

SQLTableGateway is covered against SQLite in tests/repositories.
"""

import pytest

from diffmigrate.exceptions import ConfigurationError
from diffmigrate.gateway import (
    InMemoryTableGateway,
    TableGateway,
    id_sort_key,
    quote_identifier,
)
from tests.conftest import at


class TestQuoteIdentifier:
    """Tests for quote_identifier."""

    @pytest.mark.parametrize("name", ["offices", "legacy_id", "_tmp", "Table2"])
    def test_plain_identifiers_are_quoted(self, name: str):
        assert quote_identifier(name) == f'"{name}"'

    @pytest.mark.parametrize("name", ["", "1abc", "offices; DROP TABLE x", 'a"b', "a.b"])
    def test_unsafe_identifiers_rejected(self, name: str):
        with pytest.raises(ConfigurationError, match="Invalid SQL identifier"):
            quote_identifier(name)


class TestIdSortKey:
    def test_numbers_sort_numerically(self):
        assert sorted([10, 9, 100], key=id_sort_key) == [9, 10, 100]

    def test_numbers_before_text(self):
        assert sorted(["b", 2, "a", 1], key=id_sort_key) == [1, 2, "a", "b"]


class TestInMemoryTableGateway:
    """Tests for InMemoryTableGateway."""

    def test_satisfies_protocol(self, source: InMemoryTableGateway):
        assert isinstance(source, TableGateway)

    @pytest.mark.asyncio
    async def test_count_and_columns(self, source: InMemoryTableGateway):
        assert await source.count("dispatch_office") == 4
        assert await source.columns("dispatch_office") == ["id", "name", "updated_at"]
        assert await source.columns("missing") == []

    @pytest.mark.asyncio
    async def test_fetch_by_ids_matches_string_form(self, source: InMemoryTableGateway):
        """Ids given as strings match integer keys."""
        rows = await source.fetch_by_ids("dispatch_office", "id", ["1", "3"])

        assert [row["name"] for row in rows] == ["Main", "South"]

    @pytest.mark.asyncio
    async def test_fetch_after_pages_by_id(self, source: InMemoryTableGateway):
        first = await source.fetch_after("dispatch_office", "id", None, 2)
        second = await source.fetch_after("dispatch_office", "id", first[-1]["id"], 2)

        assert [row["id"] for row in first] == [1, 2]
        assert [row["id"] for row in second] == [3, 4]

    @pytest.mark.asyncio
    async def test_fetch_ids(self, destination: InMemoryTableGateway):
        assert await destination.fetch_ids("offices", "legacy_id", None, 10) == [1, 2, 3, 99]

    @pytest.mark.asyncio
    async def test_fetch_modified_since_is_strict(self, source: InMemoryTableGateway):
        """Rows stamped exactly at `since` are excluded."""
        rows = await source.fetch_modified_since(
            "dispatch_office", "updated_at", "id", at(30), None, 10
        )

        assert [row["id"] for row in rows] == [4]

    @pytest.mark.asyncio
    async def test_fetch_modified_since_orders_and_pages(self, source: InMemoryTableGateway):
        first = await source.fetch_modified_since(
            "dispatch_office", "updated_at", "id", None, None, 2
        )
        after = (first[-1]["updated_at"], first[-1]["id"])
        second = await source.fetch_modified_since(
            "dispatch_office", "updated_at", "id", None, after, 2
        )

        assert [row["id"] for row in first] == [1, 3]
        assert [row["id"] for row in second] == [2, 4]

    @pytest.mark.asyncio
    async def test_upsert_inserts_and_merges(self, destination: InMemoryTableGateway):
        written = await destination.upsert(
            "offices",
            [{"legacy_id": "2", "name": "North (renamed)"}, {"legacy_id": 4, "name": "East"}],
            key="legacy_id",
        )

        rows = {str(row["legacy_id"]): row for row in destination.rows("offices")}
        assert written == 2
        assert rows["2"]["name"] == "North (renamed)"
        assert rows["2"]["updated_at"] == at(-120)
        assert rows["4"]["name"] == "East"
        assert destination.writes == 2

    @pytest.mark.asyncio
    async def test_delete_by_ids(self, destination: InMemoryTableGateway):
        deleted = await destination.delete_by_ids("offices", "legacy_id", ["99", "12345"])

        assert deleted == 1
        assert await destination.count("offices") == 3

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, destination: InMemoryTableGateway):
        """A raising block restores every table."""
        with pytest.raises(RuntimeError):
            async with destination.transaction() as tx:
                await tx.delete_by_ids("offices", "legacy_id", [1, 2, 3])
                raise RuntimeError("boom")

        assert await destination.count("offices") == 4

    @pytest.mark.asyncio
    async def test_transaction_commits(self, destination: InMemoryTableGateway):
        async with destination.transaction() as tx:
            await tx.delete_by_ids("offices", "legacy_id", [99])

        assert await destination.count("offices") == 3

    @pytest.mark.asyncio
    async def test_fail_next(self, source: InMemoryTableGateway):
        """Injected failures are raised once each, in order."""
        source.fail_next(2, ConnectionResetError("reset"))

        for _ in range(2):
            with pytest.raises(ConnectionResetError):
                await source.ping()
        assert await source.ping() is True

    @pytest.mark.asyncio
    async def test_unavailable(self, source: InMemoryTableGateway):
        source.available = False

        with pytest.raises(ConnectionError):
            await source.count("dispatch_office")

    @pytest.mark.asyncio
    async def test_invalid_table_name_rejected(self, source: InMemoryTableGateway):
        with pytest.raises(ConfigurationError):
            await source.count("dispatch_office; --")
