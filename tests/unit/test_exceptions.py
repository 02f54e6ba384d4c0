"""Tests for custom exception classes."""

import pytest

from traffic_history.exceptions import (
    ConfigurationError,
    FetchError,
    RetentionPolicyError,
    StreamDiscoveryError,
    StreamNotFoundError,
    TrafficHistoryError,
)


class TestExceptionHierarchy:
    """Test exception inheritance hierarchy."""

    def test_all_exceptions_inherit_from_base(self):
        """All custom exceptions should inherit from TrafficHistoryError."""
        for exc_type in (
            ConfigurationError,
            StreamDiscoveryError,
            RetentionPolicyError,
            FetchError,
            StreamNotFoundError,
        ):
            assert issubclass(exc_type, TrafficHistoryError)

    def test_base_inherits_from_exception(self):
        assert issubclass(TrafficHistoryError, Exception)


class TestConfigurationError:
    """Test ConfigurationError formatting."""

    def test_basic_message(self):
        assert str(ConfigurationError("granularity must be positive")) == "granularity must be positive"

    def test_with_option(self):
        """Test the offending option is appended."""
        exc = ConfigurationError("cannot use both --since and --start", option="--since")
        assert exc.option == "--since"
        assert str(exc) == "cannot use both --since and --start (option: --since)"


class TestStreamErrors:
    """Test stream-related error attributes."""

    def test_retention_policy_message(self):
        exc = RetentionPolicyError("JOBS", "workqueue")
        assert exc.stream == "JOBS"
        assert exc.policy == "workqueue"
        assert "workqueue retention policy" in str(exc)

    def test_fetch_error_with_stream(self):
        exc = FetchError("consumer create failed", stream="ORDERS")
        assert exc.stream == "ORDERS"
        assert "(stream: ORDERS)" in str(exc)

    def test_fetch_error_without_stream(self):
        assert str(FetchError("timeout")) == "timeout"

    def test_stream_not_found(self):
        """Test raising and catching through the base class."""
        with pytest.raises(TrafficHistoryError) as exc_info:
            raise StreamNotFoundError("MISSING")
        assert exc_info.value.stream == "MISSING"
        assert str(exc_info.value) == "stream not found: MISSING"
