"""
Unit tests for the pre-resolution backup stores.
"""

import json
from pathlib import Path

import pytest

from diffmigrate.conflicts import BackupInfo, BackupStore, FileBackupStore, InMemoryBackupStore
from diffmigrate.exceptions import BackupError

ROWS = [
    {"legacy_id": 2, "name": "North"},
    {"legacy_id": 99, "name": "Closed"},
]


class TestFileBackupStore:
    """Tests for FileBackupStore."""

    def test_satisfies_protocol(self, tmp_path: Path):
        assert isinstance(FileBackupStore(tmp_path), BackupStore)

    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path: Path):
        store = FileBackupStore(tmp_path / "backups")

        info = await store.save("offices", "offices", "legacy_id", ROWS)

        assert info.record_count == 2
        assert info.location == str(tmp_path / "backups" / f"offices_{info.backup_id}.json")
        assert await store.load(info) == ROWS

    @pytest.mark.asyncio
    async def test_document_layout(self, tmp_path: Path):
        """The file holds the backup description next to the rows."""
        store = FileBackupStore(tmp_path)

        info = await store.save("offices", "offices", "legacy_id", ROWS)

        document = json.loads(Path(info.location).read_text(encoding="utf-8"))
        assert document["backup"]["backup_id"] == info.backup_id
        assert document["backup"]["key"] == "legacy_id"
        assert document["rows"] == ROWS

    @pytest.mark.asyncio
    async def test_no_temporary_file_left(self, tmp_path: Path):
        store = FileBackupStore(tmp_path)

        await store.save("offices", "offices", "legacy_id", ROWS)

        assert [p.suffix for p in tmp_path.iterdir()] == [".json"]

    @pytest.mark.asyncio
    async def test_load_missing_file(self, tmp_path: Path):
        store = FileBackupStore(tmp_path)
        info = BackupInfo(
            entity_type="offices",
            table="offices",
            key="legacy_id",
            record_count=1,
            location=str(tmp_path / "gone.json"),
        )

        with pytest.raises(BackupError) as exc_info:
            await store.load(info)

        assert exc_info.value.entity_type == "offices"

    @pytest.mark.asyncio
    async def test_unwritable_directory(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = FileBackupStore(blocker / "backups")

        with pytest.raises(BackupError, match="Failed to write backup"):
            await store.save("offices", "offices", "legacy_id", ROWS)


class TestInMemoryBackupStore:
    """Tests for InMemoryBackupStore."""

    @pytest.mark.asyncio
    async def test_rows_are_copied(self):
        store = InMemoryBackupStore()
        rows = [dict(row) for row in ROWS]

        info = await store.save("offices", "offices", "legacy_id", rows)
        rows[0]["name"] = "changed"

        assert (await store.load(info))[0]["name"] == "North"
        assert store.backup_count == 1

    @pytest.mark.asyncio
    async def test_unknown_backup(self):
        store = InMemoryBackupStore()
        info = BackupInfo("offices", "offices", "legacy_id", 0, "memory://offices")

        with pytest.raises(BackupError, match="not found"):
            await store.load(info)


class TestBackupInfo:
    def test_to_dict(self):
        info = BackupInfo("offices", "offices", "legacy_id", 3, "/tmp/x.json", backup_id="b-1")

        data = info.to_dict()

        assert data["backup_id"] == "b-1"
        assert data["record_count"] == 3
        assert isinstance(data["created_at"], str)
