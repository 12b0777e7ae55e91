"""
Snapshots of destination rows taken before conflict resolution writes.

A backup holds the destination rows a resolution batch is about to
overwrite or delete, so the batch can be undone with
`ConflictResolver.restore_backup()`. Rows inserted for missing records
are not part of a backup; they had no prior destination state.

Implementations:
    - FileBackupStore: one JSON document per backup, written atomically
    - InMemoryBackupStore: dictionary-backed store for tests
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

import aiofiles

from diffmigrate.exceptions import BackupError
from diffmigrate.gateway import Row
from diffmigrate.models import utc_now
from diffmigrate.serialization import json_dumps, json_loads

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupInfo:
    """
    Where a backup lives and what it covers.

    Attributes:
        backup_id: Unique backup id.
        entity_type: Entity the rows belong to.
        table: Destination table the rows were read from.
        key: Column identifying the rows (the legacy id column).
        record_count: Rows in the backup.
        location: Recoverable location (file path or in-memory key).
        created_at: When the backup was taken.
    """

    entity_type: str
    table: str
    key: str
    record_count: int
    location: str
    backup_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "backup_id": self.backup_id,
            "entity_type": self.entity_type,
            "table": self.table,
            "key": self.key,
            "record_count": self.record_count,
            "location": self.location,
            "created_at": self.created_at.isoformat(),
        }


@runtime_checkable
class BackupStore(Protocol):
    """Protocol for storing destination row snapshots."""

    async def save(
        self, entity_type: str, table: str, key: str, rows: Sequence[Row]
    ) -> BackupInfo:
        """
        Store a snapshot of `rows`.

        Raises:
            BackupError: If the snapshot cannot be written.
        """
        ...

    async def load(self, backup: BackupInfo) -> list[Row]:
        """
        Read the rows of a backup.

        Raises:
            BackupError: If the backup does not exist or cannot be read.
        """
        ...


class FileBackupStore:
    """
    Writes each backup as a JSON file under `directory`.

    The file is written to a temporary name, synced and renamed into
    place, so a crash never leaves a truncated backup behind.

    Example:
        >>> store = FileBackupStore("/var/lib/diffmigrate/backups")
        >>> info = await store.save("doctors", "doctors", "legacy_id", rows)
        >>> info.location
        '/var/lib/diffmigrate/backups/doctors_...json'
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    async def save(
        self, entity_type: str, table: str, key: str, rows: Sequence[Row]
    ) -> BackupInfo:
        backup_id = str(uuid4())
        path = self.directory / f"{entity_type}_{backup_id}.json"
        info = BackupInfo(
            entity_type=entity_type,
            table=table,
            key=key,
            record_count=len(rows),
            location=str(path),
            backup_id=backup_id,
        )
        document = json_dumps({"backup": info.to_dict(), "rows": list(rows)})

        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(document)
                await f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path.exists():
                os.unlink(temp_path)
            raise BackupError(
                f"Failed to write backup {path}: {e}", entity_type=entity_type
            ) from e

        logger.info("Backed up %d %s rows to %s", len(rows), entity_type, path)
        return info

    async def load(self, backup: BackupInfo) -> list[Row]:
        try:
            async with aiofiles.open(backup.location, encoding="utf-8") as f:
                document = json_loads(await f.read())
        except OSError as e:
            raise BackupError(
                f"Failed to read backup {backup.location}: {e}", entity_type=backup.entity_type
            ) from e
        return list(document["rows"])


class InMemoryBackupStore:
    """Dictionary-backed backup store for tests."""

    def __init__(self) -> None:
        self._backups: dict[str, list[Row]] = {}

    async def save(
        self, entity_type: str, table: str, key: str, rows: Sequence[Row]
    ) -> BackupInfo:
        info = BackupInfo(
            entity_type=entity_type,
            table=table,
            key=key,
            record_count=len(rows),
            location=f"memory://{entity_type}",
        )
        self._backups[info.backup_id] = [dict(row) for row in rows]
        return info

    async def load(self, backup: BackupInfo) -> list[Row]:
        rows = self._backups.get(backup.backup_id)
        if rows is None:
            raise BackupError(
                f"Backup {backup.backup_id} not found", entity_type=backup.entity_type
            )
        return [dict(row) for row in rows]

    @property
    def backup_count(self) -> int:
        return len(self._backups)


__all__ = [
    "BackupInfo",
    "BackupStore",
    "FileBackupStore",
    "InMemoryBackupStore",
]
