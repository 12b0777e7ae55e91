"""
Unit tests for the option sets.

validate() reports problems as a list and never raises; ensure_valid()
turns the list into a ConfigurationError.
"""

import pytest

from diffmigrate.config import (
    BaselineConfig,
    DetectionConfig,
    ExecutionConfig,
    ProgressConfig,
    ProgressThresholds,
    ResolutionOptions,
    ensure_valid,
)
from diffmigrate.exceptions import ConfigurationError
from diffmigrate.models import ResolutionStrategy


class TestExecutionConfig:
    """Tests for ExecutionConfig."""

    def test_defaults_are_valid(self):
        config = ExecutionConfig()

        assert config.validate() == []
        assert config.batch_size == 1000
        assert config.checkpoint_interval == 10
        assert config.parallel_entity_limit == 3

    @pytest.mark.parametrize("batch_size", [1, 5000])
    def test_batch_size_bounds_inclusive(self, batch_size: int):
        assert ExecutionConfig(batch_size=batch_size).validate() == []

    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"batch_size": 0}, "batch_size must be between 1 and 5000"),
            ({"batch_size": 5001}, "batch_size must be between 1 and 5000"),
            ({"max_retry_attempts": 11}, "max_retry_attempts must be between 0 and 10"),
            ({"checkpoint_interval": 0}, "checkpoint_interval must be at least 1"),
            ({"parallel_entity_limit": 11}, "parallel_entity_limit must be between 1 and 10"),
            ({"timeout_ms": 999}, "timeout_ms must be at least 1000"),
            ({"validation_sample_size": 0}, "validation_sample_size must be between 1 and 10000"),
        ],
    )
    def test_out_of_range_reported(self, kwargs: dict, message: str):
        """Invalid values are reported, not raised."""
        assert ExecutionConfig(**kwargs).validate() == [message]

    def test_multiple_errors_reported_together(self):
        errors = ExecutionConfig(batch_size=0, timeout_ms=1).validate()

        assert len(errors) == 2

    def test_round_trip_through_dict(self):
        config = ExecutionConfig(batch_size=250, checkpoint_interval=2)

        assert ExecutionConfig.from_dict(config.to_dict()) == config

    def test_from_dict_uses_defaults(self):
        assert ExecutionConfig.from_dict({"batch_size": 10}).timeout_ms == 300_000


class TestDetectionConfig:
    """Tests for DetectionConfig."""

    def test_defaults_are_valid(self):
        assert DetectionConfig().validate() == []

    def test_timestamp_field_required(self):
        assert "timestamp_field is required" in DetectionConfig(timestamp_field="").validate()

    def test_hash_field_required_when_hashing(self):
        errors = DetectionConfig(enable_content_hashing=True, content_hash_field=None).validate()

        assert errors == ["content_hash_field is required when content hashing is enabled"]

    def test_hash_field_optional_without_hashing(self):
        config = DetectionConfig(enable_content_hashing=False, content_hash_field=None)

        assert config.validate() == []

    def test_unknown_algorithm(self):
        errors = DetectionConfig(hash_algorithm="crc32").validate()

        assert errors == ["hash_algorithm must be one of: md5, sha1, sha256"]

    def test_to_dict(self):
        data = DetectionConfig(exclude_fields=("notes",)).to_dict()

        assert data["exclude_fields"] == ["notes"]
        assert data["max_records_per_pass"] == 1_000_000


class TestResolutionOptions:
    """Tests for ResolutionOptions."""

    def test_defaults(self):
        options = ResolutionOptions()

        assert options.validate() == []
        assert options.strategy == ResolutionStrategy.SOURCE_WINS
        assert options.create_backup is True
        assert options.batch_size == 50

    def test_bounds(self):
        errors = ResolutionOptions(max_retries=11, batch_size=1001).validate()

        assert errors == [
            "max_retries must be between 0 and 10",
            "batch_size must be between 1 and 1000",
        ]

    def test_to_dict(self):
        data = ResolutionOptions(strategy=ResolutionStrategy.MANUAL).to_dict()

        assert data["strategy"] == "manual"


class TestProgressConfig:
    """Tests for ProgressConfig."""

    def test_defaults_are_valid(self):
        assert ProgressConfig().validate() == []

    def test_threshold_errors(self):
        config = ProgressConfig(
            thresholds=ProgressThresholds(
                low_throughput_warning=-1, stalled_progress_warning_minutes=0
            )
        )

        assert config.validate() == [
            "low_throughput_warning threshold must be non-negative",
            "stalled_progress_warning threshold must be at least 1 minute",
        ]

    def test_interval_and_retention_bounds(self):
        errors = ProgressConfig(update_interval_ms=50, retention_period_hours=721).validate()

        assert len(errors) == 2


class TestBaselineConfig:
    def test_defaults_are_valid(self):
        config = BaselineConfig()

        assert config.validate() == []
        assert config.critical_gap_percentage == 15.0

    def test_percentage_bounds(self):
        assert BaselineConfig(critical_gap_percentage=120).validate() == [
            "critical_gap_percentage must be between 0 and 100"
        ]


class TestEnsureValid:
    """Tests for ensure_valid."""

    def test_valid_config_passes(self):
        ensure_valid(ExecutionConfig())

    def test_invalid_config_raises(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ensure_valid(ExecutionConfig(batch_size=0))

        assert exc_info.value.errors == ["batch_size must be between 1 and 5000"]
        assert "Invalid ExecutionConfig" in str(exc_info.value)
