"""
Conflict detection, resolution and pre-resolution backups.
"""

from diffmigrate.conflicts.backup import (
    BackupInfo,
    BackupStore,
    FileBackupStore,
    InMemoryBackupStore,
)
from diffmigrate.conflicts.resolver import (
    ESTIMATED_MS_PER_CONFLICT,
    ConflictResolutionResult,
    ConflictResolutionSummary,
    ConflictResolver,
    ConflictSeverity,
    EntityConflictSummary,
    ResolutionStatus,
)

__all__ = [
    # Resolver
    "ConflictResolver",
    "ConflictResolutionResult",
    "ConflictResolutionSummary",
    "ConflictSeverity",
    "EntityConflictSummary",
    "ResolutionStatus",
    "ESTIMATED_MS_PER_CONFLICT",
    # Backups
    "BackupInfo",
    "BackupStore",
    "FileBackupStore",
    "InMemoryBackupStore",
]
