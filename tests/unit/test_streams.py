"""Tests for stream discovery."""

import asyncio
from enum import Enum

import pytest

from conftest import FakeStreamSource
from traffic_history.exceptions import StreamDiscoveryError
from traffic_history.models import StreamInfo
from traffic_history.streams import discover_streams, retention_policy_name


class Retention(Enum):
    LIMITS = "limits"
    WORK_QUEUE = "workqueue"


@pytest.fixture
def mixed_source(two_stream_messages):
    """Two limits streams plus a work queue and an empty stream."""
    source = FakeStreamSource(two_stream_messages)
    source.infos["JOBS"] = StreamInfo(name="JOBS", retention="workqueue", first_seq=1, last_seq=5, messages=5)
    source.infos["EMPTY"] = StreamInfo(name="EMPTY")
    return source


class TestDiscoverStreams:
    """Test selection of analysable streams."""

    def test_all_limits_streams(self, mixed_source):
        """Test non-limits and empty streams are skipped silently."""
        streams = asyncio.run(discover_streams(mixed_source))
        assert [s.name for s in streams] == ["ORDERS", "EVENTS"]

    def test_filter(self, mixed_source):
        streams = asyncio.run(discover_streams(mixed_source, ["EVENTS"]))
        assert [s.name for s in streams] == ["EVENTS"]

    def test_filtered_non_limits_warns(self, mixed_source, log_output):
        """Test naming a work-queue stream explicitly produces a warning."""
        streams = asyncio.run(discover_streams(mixed_source, ["JOBS", "ORDERS"]))
        assert [s.name for s in streams] == ["ORDERS"]
        assert "JOBS" in log_output.getvalue()
        assert "workqueue retention policy" in log_output.getvalue()

    def test_unfiltered_non_limits_silent(self, mixed_source, log_output):
        asyncio.run(discover_streams(mixed_source))
        assert "Warning" not in log_output.getvalue()

    def test_missing_stream_warns(self, mixed_source, log_output):
        streams = asyncio.run(discover_streams(mixed_source, ["NOPE"]))
        assert streams == []
        assert "Warning: stream NOPE not found" in log_output.getvalue()

    def test_listing_failure(self):
        """Test a listing failure is fatal."""
        with pytest.raises(StreamDiscoveryError) as exc_info:
            asyncio.run(discover_streams(FakeStreamSource([], fail_list=True)))
        assert "connection refused" in str(exc_info.value)


class TestRetentionPolicyName:
    """Test retention policy normalisation."""

    @pytest.mark.parametrize(
        "policy,expected",
        [
            ("limits", "limits"),
            ("LimitsPolicy", "limits"),
            ("work_queue", "workqueue"),
            ("interest", "interest"),
            (Retention.LIMITS, "limits"),
            (Retention.WORK_QUEUE, "workqueue"),
            ("bogus", "unknown"),
            (None, "unknown"),
        ],
    )
    def test_names(self, policy, expected):
        assert retention_policy_name(policy) == expected
