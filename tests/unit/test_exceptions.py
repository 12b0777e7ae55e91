"""
Unit tests for exceptions module.

Tests the exception hierarchy, error classification and ErrorDetail.
"""

import asyncio

import pytest
from sqlalchemy import exc as sa_exc

from diffmigrate.exceptions import (
    AnalysisCeilingExceededError,
    BatchTimeoutError,
    CheckpointNotFoundError,
    ConfigurationError,
    DataValidationError,
    DependencyCycleError,
    DiffMigrationError,
    ErrorDetail,
    ErrorRecoverability,
    ErrorSeverity,
    InvariantViolationError,
    NoTrackingSessionError,
    RetryConfig,
    TransientIOError,
    UnknownEntityTypeError,
    classify_exception,
    is_retryable,
)


class TestDiffMigrationError:
    """Tests for the base error."""

    def test_message_and_entity_type(self):
        """Entity type is appended to the string form."""
        error = DiffMigrationError("Something broke", entity_type="doctors")

        assert error.message == "Something broke"
        assert str(error) == "Something broke entity_type=doctors"

    def test_default_is_fatal(self):
        """The base error is not retryable."""
        assert not DiffMigrationError("x").is_retryable

    def test_to_dict(self):
        """to_dict includes the classification."""
        data = TransientIOError("connection reset").to_dict()

        assert data["error_code"] == "TRANSIENT_IO_ERROR"
        assert data["classification"]["recoverability"] == "transient"
        assert "retry_config" in data["classification"]


class TestConfigurationErrors:
    """Tests for configuration errors."""

    def test_errors_are_listed_in_message(self):
        """Validation messages are joined into the message."""
        error = ConfigurationError(
            "Invalid ExecutionConfig", ["batch_size must be between 1 and 5000"]
        )

        assert error.errors == ["batch_size must be between 1 and 5000"]
        assert "batch_size must be between 1 and 5000" in str(error)

    def test_unknown_entity_type(self):
        """UnknownEntityTypeError names the entity."""
        error = UnknownEntityTypeError("widgets")

        assert isinstance(error, ConfigurationError)
        assert error.entity_type == "widgets"
        assert "Unknown entity type: widgets" in str(error)

    def test_dependency_cycle(self):
        """DependencyCycleError renders the cycle path."""
        error = DependencyCycleError(["a", "b", "a"])

        assert error.cycle == ["a", "b", "a"]
        assert "a -> b -> a" in str(error)
        assert error.severity == ErrorSeverity.CRITICAL


class TestSpecificErrors:
    """Tests for the remaining concrete errors."""

    def test_checkpoint_not_found(self):
        error = CheckpointNotFoundError("cp-1")

        assert error.checkpoint_id == "cp-1"
        assert "cp-1" in str(error)

    def test_batch_timeout_is_transient(self):
        """Timeouts are retryable."""
        error = BatchTimeoutError("batch_offices_1_0", 5000, entity_type="offices")

        assert isinstance(error, TransientIOError)
        assert error.is_retryable
        assert "5000ms" in str(error)

    def test_data_validation_not_retryable_by_default(self):
        """Data errors are not retried unless explicitly marked."""
        assert not DataValidationError("bad row", "7").is_retryable
        assert DataValidationError("bad row", "7", retryable=True).is_retryable

    def test_analysis_ceiling(self):
        """The ceiling error is an invariant violation."""
        error = AnalysisCeilingExceededError(11, 10, entity_type="offices")

        assert isinstance(error, InvariantViolationError)
        assert error.record_count == 11
        assert error.ceiling == 10

    def test_no_tracking_session_message(self):
        """The message names the entity type."""
        error = NoTrackingSessionError("patients")

        assert error.message == "No tracking session found for entity type: patients"


class TestClassifyException:
    """Tests for classify_exception and is_retryable."""

    @pytest.mark.parametrize(
        "exc",
        [
            ConnectionResetError(),
            asyncio.TimeoutError(),
            OSError("network down"),
            sa_exc.OperationalError("SELECT 1", {}, Exception("gone")),
        ],
    )
    def test_transient_errors(self, exc: BaseException):
        """Connection loss and timeouts are transient."""
        assert classify_exception(exc).recoverability == ErrorRecoverability.TRANSIENT
        assert is_retryable(exc)

    def test_integrity_error_is_data_error(self):
        """Constraint violations are not retried."""
        exc = sa_exc.IntegrityError("INSERT", {}, Exception("duplicate key"))

        classification = classify_exception(exc)
        assert classification.category == "data"
        assert not is_retryable(exc)

    def test_unknown_errors_are_fatal(self):
        """Anything unrecognised is fatal."""
        classification = classify_exception(ValueError("boom"))

        assert classification.recoverability == ErrorRecoverability.FATAL
        assert classification.error_code == "UNKNOWN_ERROR"

    def test_engine_errors_keep_their_classification(self):
        """DiffMigrationError subclasses classify themselves."""
        assert classify_exception(UnknownEntityTypeError("x")).error_code == "UNKNOWN_ENTITY_TYPE"


class TestErrorDetail:
    """Tests for ErrorDetail."""

    def test_from_engine_exception(self):
        """Engine errors keep their bare message."""
        detail = ErrorDetail.from_exception(
            DataValidationError("missing name", "42", entity_type="offices"),
            record_id="42",
        )

        assert detail.code == "DATA_VALIDATION_ERROR"
        assert detail.message == "missing name"
        assert detail.retryable is False
        assert detail.record_id == "42"

    def test_from_driver_exception(self):
        """Driver errors are described by their string form."""
        detail = ErrorDetail.from_exception(ConnectionResetError("reset by peer"), attempts=3)

        assert detail.retryable is True
        assert detail.attempts == 3
        assert detail.message == "reset by peer"

    def test_empty_message_uses_type_name(self):
        detail = ErrorDetail.from_exception(TimeoutError())

        assert detail.message == "TimeoutError"

    def test_to_dict(self):
        detail = ErrorDetail(code="X", message="m", retryable=False, record_id="1")

        assert detail.to_dict() == {
            "code": "X",
            "message": "m",
            "retryable": False,
            "record_id": "1",
            "attempts": 1,
            "details": {},
        }


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_delay_grows_exponentially(self):
        config = RetryConfig(base_delay_ms=100, jitter_factor=0.0)

        assert config.get_delay_ms(0) == 100
        assert config.get_delay_ms(1) == 200
        assert config.get_delay_ms(2) == 400

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay_ms=100, max_delay_ms=250, jitter_factor=0.0)

        assert config.get_delay_ms(5) == 250

    def test_jitter_stays_within_factor(self):
        config = RetryConfig(base_delay_ms=100, jitter_factor=0.5)

        for _ in range(20):
            assert 100 <= config.get_delay_ms(0) <= 150

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay_ms": -1},
            {"base_delay_ms": 100, "max_delay_ms": 50},
            {"exponential_base": 0.5},
            {"jitter_factor": 1.5},
        ],
    )
    def test_invalid_values_rejected(self, kwargs: dict):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)
