"""
Bounded, validated option sets for the engine components.

Every option set is a frozen dataclass exposing `validate()`, which
returns a list of human-readable errors and never raises for out-of-range
input. Components call `ensure_valid()` at construction time, which turns
a non-empty error list into a ConfigurationError.

Option sets:
    - ExecutionConfig: Migration executor batching, retries, checkpoints
    - DetectionConfig: Differential detector scanning and hashing
    - ResolutionOptions: Conflict resolver behaviour
    - ProgressConfig / ProgressThresholds: Progress tracker alerting
    - BaselineConfig: Baseline analyzer classification thresholds

Example:
    >>> config = ExecutionConfig(batch_size=0)
    >>> config.validate()
    ['batch_size must be between 1 and 5000']
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from diffmigrate.exceptions import ConfigurationError
from diffmigrate.models import ResolutionStrategy
from diffmigrate.serialization import SUPPORTED_HASH_ALGORITHMS


def ensure_valid(config: Any, name: str | None = None) -> None:
    """
    Raise ConfigurationError when `config.validate()` reports errors.

    Args:
        config: Any option set with a validate() method.
        name: Label used in the error message (defaults to the class name).

    Raises:
        ConfigurationError: If validation produced errors.
    """
    errors = config.validate()
    if errors:
        raise ConfigurationError(f"Invalid {name or type(config).__name__}", errors)


@dataclass(frozen=True)
class ExecutionConfig:
    """
    Configuration for the migration executor.

    Attributes:
        batch_size: Record ids per batch (1-5000).
        max_retry_attempts: Retries of a batch after a transient failure (0-10).
        checkpoint_interval: Persist a checkpoint every N batches (>= 1).
        parallel_entity_limit: Entities run concurrently within a level (1-10).
        timeout_ms: Per-batch timeout in milliseconds (>= 1000).
        enable_validation: Verify a sample of migrated records after each entity.
        validation_sample_size: Records sampled by post-entity validation (1-10000).
        retry_base_delay_ms: Base delay of the retry backoff.
        batch_delay_ms: Pause between consecutive batches of one entity.

    Example:
        >>> config = ExecutionConfig(batch_size=500, checkpoint_interval=5)
        >>> config.validate()
        []
    """

    batch_size: int = 1000
    max_retry_attempts: int = 3
    checkpoint_interval: int = 10
    parallel_entity_limit: int = 3
    timeout_ms: int = 300_000
    enable_validation: bool = True
    validation_sample_size: int = 100
    retry_base_delay_ms: float = 100.0
    batch_delay_ms: float = 0.0

    def validate(self) -> list[str]:
        """Return validation errors (empty when the config is valid)."""
        errors: list[str] = []
        if not 1 <= self.batch_size <= 5000:
            errors.append("batch_size must be between 1 and 5000")
        if not 0 <= self.max_retry_attempts <= 10:
            errors.append("max_retry_attempts must be between 0 and 10")
        if self.checkpoint_interval < 1:
            errors.append("checkpoint_interval must be at least 1")
        if not 1 <= self.parallel_entity_limit <= 10:
            errors.append("parallel_entity_limit must be between 1 and 10")
        if self.timeout_ms < 1000:
            errors.append("timeout_ms must be at least 1000")
        if not 1 <= self.validation_sample_size <= 10000:
            errors.append("validation_sample_size must be between 1 and 10000")
        if self.retry_base_delay_ms < 0:
            errors.append("retry_base_delay_ms must be non-negative")
        if self.batch_delay_ms < 0:
            errors.append("batch_delay_ms must be non-negative")
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON storage."""
        return {
            "batch_size": self.batch_size,
            "max_retry_attempts": self.max_retry_attempts,
            "checkpoint_interval": self.checkpoint_interval,
            "parallel_entity_limit": self.parallel_entity_limit,
            "timeout_ms": self.timeout_ms,
            "enable_validation": self.enable_validation,
            "validation_sample_size": self.validation_sample_size,
            "retry_base_delay_ms": self.retry_base_delay_ms,
            "batch_delay_ms": self.batch_delay_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionConfig:
        """Create from dictionary, using defaults for missing keys."""
        defaults = cls()
        return cls(**{key: data.get(key, value) for key, value in defaults.to_dict().items()})


@dataclass(frozen=True)
class DetectionConfig:
    """
    Configuration for the differential detector.

    Attributes:
        timestamp_field: Modification timestamp column (required).
        batch_size: Rows per query pair (1-10000).
        parallel_connections: Concurrent detection passes allowed (1-10).
        enable_content_hashing: Confirm modifications by content hash.
        content_hash_field: Destination column holding a stored content hash;
            required when hashing is enabled.
        hash_algorithm: md5, sha1 or sha256.
        exclude_fields: Columns ignored by content comparison.
        max_records_per_pass: Ceiling on records referenced by one pass.
    """

    timestamp_field: str = "updated_at"
    batch_size: int = 1000
    parallel_connections: int = 2
    enable_content_hashing: bool = True
    content_hash_field: str | None = "content_hash"
    hash_algorithm: str = "sha256"
    exclude_fields: tuple[str, ...] = ()
    max_records_per_pass: int = 1_000_000

    def validate(self) -> list[str]:
        """Return validation errors (empty when the config is valid)."""
        errors: list[str] = []
        if not self.timestamp_field:
            errors.append("timestamp_field is required")
        if not 1 <= self.batch_size <= 10000:
            errors.append("batch_size must be between 1 and 10000")
        if not 1 <= self.parallel_connections <= 10:
            errors.append("parallel_connections must be between 1 and 10")
        if self.enable_content_hashing and not self.content_hash_field:
            errors.append("content_hash_field is required when content hashing is enabled")
        if self.hash_algorithm not in SUPPORTED_HASH_ALGORITHMS:
            errors.append(f"hash_algorithm must be one of: {', '.join(SUPPORTED_HASH_ALGORITHMS)}")
        if self.max_records_per_pass < 1:
            errors.append("max_records_per_pass must be at least 1")
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON storage."""
        return {
            "timestamp_field": self.timestamp_field,
            "batch_size": self.batch_size,
            "parallel_connections": self.parallel_connections,
            "enable_content_hashing": self.enable_content_hashing,
            "content_hash_field": self.content_hash_field,
            "hash_algorithm": self.hash_algorithm,
            "exclude_fields": list(self.exclude_fields),
            "max_records_per_pass": self.max_records_per_pass,
        }


@dataclass(frozen=True)
class ResolutionOptions:
    """
    Options for conflict resolution.

    Attributes:
        strategy: Strategy applied by resolve_all_conflicts.
        dry_run: Compute and report without writing.
        create_backup: Snapshot destination rows before overwriting them.
        max_retries: Retries of a transient failure per conflict (0-10).
        validate_after_resolution: Re-read written rows and compare with source.
        batch_size: Conflicts handled per batch (1-1000).
        entity_types: Restrict resolve_all_conflicts to these entity types.
    """

    strategy: ResolutionStrategy = ResolutionStrategy.SOURCE_WINS
    dry_run: bool = False
    create_backup: bool = True
    max_retries: int = 3
    validate_after_resolution: bool = True
    batch_size: int = 50
    entity_types: tuple[str, ...] = ()

    def validate(self) -> list[str]:
        """Return validation errors (empty when the options are valid)."""
        errors: list[str] = []
        if not 0 <= self.max_retries <= 10:
            errors.append("max_retries must be between 0 and 10")
        if not 1 <= self.batch_size <= 1000:
            errors.append("batch_size must be between 1 and 1000")
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON storage."""
        return {
            "strategy": self.strategy.value,
            "dry_run": self.dry_run,
            "create_backup": self.create_backup,
            "max_retries": self.max_retries,
            "validate_after_resolution": self.validate_after_resolution,
            "batch_size": self.batch_size,
            "entity_types": list(self.entity_types),
        }


@dataclass(frozen=True)
class ProgressThresholds:
    """
    Alert thresholds for the progress tracker.

    Attributes:
        low_throughput_warning: Records/sec below which throughput is low.
        high_memory_warning: Memory (MB) above which usage is high.
        stalled_progress_warning_minutes: Minutes without progress before
            an entity counts as stalled.
    """

    low_throughput_warning: float = 10.0
    high_memory_warning: float = 512.0
    stalled_progress_warning_minutes: float = 5.0


@dataclass(frozen=True)
class ProgressConfig:
    """
    Configuration for the progress tracker.

    Attributes:
        update_interval_ms: Period of real-time broadcast updates (100-30000).
        retention_period_hours: How long snapshots are kept (1-720).
        performance_window_size: Performance history entries kept per entity (5-1000).
        enable_real_time_updates: Broadcast updates to subscribers.
        thresholds: Alert thresholds.
    """

    update_interval_ms: int = 5000
    retention_period_hours: int = 24
    performance_window_size: int = 100
    enable_real_time_updates: bool = True
    thresholds: ProgressThresholds = field(default_factory=ProgressThresholds)

    def validate(self) -> list[str]:
        """Return validation errors (empty when the config is valid)."""
        errors: list[str] = []
        if not 100 <= self.update_interval_ms <= 30000:
            errors.append("update_interval_ms must be between 100 and 30000")
        if not 1 <= self.retention_period_hours <= 720:
            errors.append("retention_period_hours must be between 1 and 720 (30 days)")
        if not 5 <= self.performance_window_size <= 1000:
            errors.append("performance_window_size must be between 5 and 1000")
        if self.thresholds.low_throughput_warning < 0:
            errors.append("low_throughput_warning threshold must be non-negative")
        if self.thresholds.high_memory_warning < 0:
            errors.append("high_memory_warning threshold must be non-negative")
        if self.thresholds.stalled_progress_warning_minutes < 1:
            errors.append("stalled_progress_warning threshold must be at least 1 minute")
        return errors


@dataclass(frozen=True)
class BaselineConfig:
    """
    Thresholds used by the baseline analyzer.

    Attributes:
        critical_gap_percentage: Average gap% above which the report is critical.
        full_resync_gap_percentage: Average gap% above which a full re-sync
            is recommended.
        large_gap_records: Total gap above which batched catch-up is recommended.
        include_mapping_validation: Validate schema mappings during analyze().
        parallel_entities: Entities analysed concurrently (1-10).
    """

    critical_gap_percentage: float = 15.0
    full_resync_gap_percentage: float = 10.0
    large_gap_records: int = 100_000
    include_mapping_validation: bool = True
    parallel_entities: int = 4

    def validate(self) -> list[str]:
        """Return validation errors (empty when the config is valid)."""
        errors: list[str] = []
        if not 0 <= self.critical_gap_percentage <= 100:
            errors.append("critical_gap_percentage must be between 0 and 100")
        if not 0 <= self.full_resync_gap_percentage <= 100:
            errors.append("full_resync_gap_percentage must be between 0 and 100")
        if self.large_gap_records < 0:
            errors.append("large_gap_records must be non-negative")
        if not 1 <= self.parallel_entities <= 10:
            errors.append("parallel_entities must be between 1 and 10")
        return errors


__all__ = [
    "BaselineConfig",
    "DetectionConfig",
    "ExecutionConfig",
    "ProgressConfig",
    "ProgressThresholds",
    "ResolutionOptions",
    "ensure_valid",
]
