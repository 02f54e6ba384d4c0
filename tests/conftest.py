"""
Pytest configuration and shared fixtures for traffic history tests.
"""

import pytest
import sys
import os
from datetime import datetime, timedelta, timezone

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from traffic_history.models import MessageRecord, StreamInfo  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def msg(stream, seq, seconds, size=100):
    """MessageRecord at BASE_TIME + seconds."""
    return MessageRecord(
        stream_name=stream,
        sequence=seq,
        timestamp=BASE_TIME + timedelta(seconds=seconds),
        size=size,
    )


# =============================================================================
# FAKE STREAM SOURCE
# =============================================================================


class FakeStreamSource:
    """In-memory stream source with the same batch semantics as the server."""

    def __init__(self, messages, infos=None, fail_list=False, fail_streams=()):
        self.messages = {}
        for record in messages:
            self.messages.setdefault(record.stream_name, []).append(record)
        for records in self.messages.values():
            records.sort(key=lambda m: m.sequence)

        self.infos = dict(infos or {})
        for name, records in self.messages.items():
            if name not in self.infos:
                self.infos[name] = StreamInfo(
                    name=name,
                    first_seq=records[0].sequence,
                    last_seq=records[-1].sequence,
                    messages=len(records),
                    bytes=sum(m.size for m in records),
                    first_timestamp=records[0].timestamp,
                    last_timestamp=records[-1].timestamp,
                )

        self.fail_list = fail_list
        self.fail_streams = set(fail_streams)
        self.calls = []

    async def list_streams(self):
        if self.fail_list:
            raise RuntimeError("connection refused")
        return list(self.infos.values())

    async def get_batch(self, stream, count, start_seq=None, start_time=None):
        self.calls.append((stream, count, start_seq, start_time))
        if stream in self.fail_streams:
            raise RuntimeError("consumer create failed")
        records = self.messages.get(stream, [])
        if start_seq is not None:
            records = [m for m in records if m.sequence >= start_seq]
        elif start_time is not None:
            records = [m for m in records if m.timestamp >= start_time]
        return records[:count]


# =============================================================================
# MESSAGE FIXTURES
# =============================================================================


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def gap_messages():
    """One stream with three messages deleted between seq 101 and 105."""
    return [msg("ORDERS", 100, 0.0), msg("ORDERS", 101, 1.0), msg("ORDERS", 105, 4.0)]


@pytest.fixture
def two_stream_messages():
    """Two streams over ten seconds, ORDERS with a gap, EVENTS contiguous."""
    orders = [msg("ORDERS", 1, 0.2, 100), msg("ORDERS", 2, 1.5, 200), msg("ORDERS", 10, 5.5, 300)]
    events = [msg("EVENTS", 50 + i, i + 0.5, 50) for i in range(10)]
    return orders + events


@pytest.fixture
def sample_histogram(two_stream_messages):
    from traffic_history.histogram import build_histogram

    return build_histogram(two_stream_messages, timedelta(seconds=1), per_source=True)


@pytest.fixture
def fake_source(two_stream_messages):
    return FakeStreamSource(two_stream_messages)


# =============================================================================
# TEMPORARY FILE FIXTURES
# =============================================================================


@pytest.fixture
def temp_csv_path(tmp_path):
    return tmp_path / "traffic.csv"


# =============================================================================
# LOG CAPTURE
# =============================================================================


@pytest.fixture
def log_output():
    """Route package log output into a StringIO for the duration of a test."""
    from traffic_history.logging_config import capture_report

    with capture_report() as stream:
        yield stream
