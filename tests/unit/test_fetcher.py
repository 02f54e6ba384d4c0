"""Tests for sequence-anchored message fetching."""

import asyncio
from datetime import timedelta

import pytest

from conftest import BASE_TIME, FakeStreamSource, msg
from traffic_history.exceptions import ConfigurationError, FetchError
from traffic_history.fetcher import fetch_all_streams, fetch_stream_messages, sort_by_timestamp


def at(seconds):
    return BASE_TIME + timedelta(seconds=seconds)


def fetch_one(source, name, batch_size=2, **kwargs):
    return asyncio.run(fetch_stream_messages(source, source.infos[name], batch_size, **kwargs))


class DuplicatingSource(FakeStreamSource):
    """Source that redelivers every record of a batch."""

    async def get_batch(self, stream, count, start_seq=None, start_time=None):
        batch = await super().get_batch(stream, count, start_seq, start_time)
        return batch + batch


class TestFetchStreamMessages:
    """Test single-stream batch walking."""

    def test_walks_past_gaps(self, fake_source):
        """Test batches continue after the highest sequence seen."""
        records = fetch_one(fake_source, "ORDERS")
        assert [m.sequence for m in records] == [1, 2, 10]
        assert [call[2] for call in fake_source.calls] == [1, 3]

    def test_limit(self, fake_source):
        """Test at most `limit` messages are kept."""
        records = fetch_one(fake_source, "EVENTS", batch_size=3, limit=4)
        assert [m.sequence for m in records] == [50, 51, 52, 53]
        assert fake_source.calls[-1][1] == 1

    def test_end_time_stops_fetch(self, fake_source):
        """Test the first message at or after the end bound stops the stream."""
        records = fetch_one(fake_source, "ORDERS", end_time=at(1.5))
        assert [m.sequence for m in records] == [1]

    def test_start_time_anchors_first_request(self, fake_source):
        """Test the first request is anchored on time, later ones on sequence."""
        records = fetch_one(fake_source, "EVENTS", batch_size=4, start_time=at(6))
        assert [m.sequence for m in records] == [56, 57, 58, 59]
        first = fake_source.calls[0]
        assert first[2] is None
        assert first[3] == at(6)

    def test_duplicates_dropped(self, two_stream_messages):
        """Test redelivered sequences are kept once."""
        source = DuplicatingSource(two_stream_messages)
        records = fetch_one(source, "ORDERS", batch_size=10)
        assert [m.sequence for m in records] == [1, 2, 10]

    def test_empty_stream(self):
        """Test a stream reporting no messages is not requested."""
        source = FakeStreamSource([msg("A", 1, 0)])
        info = source.infos["A"]
        info.messages = 0
        assert asyncio.run(fetch_stream_messages(source, info, 10)) == []
        assert source.calls == []

    def test_source_failure_wrapped(self, two_stream_messages):
        """Test source exceptions surface as FetchError for that stream."""
        source = FakeStreamSource(two_stream_messages, fail_streams=["ORDERS"])
        with pytest.raises(FetchError) as exc_info:
            fetch_one(source, "ORDERS")
        assert exc_info.value.stream == "ORDERS"

    def test_invalid_batch_size(self, fake_source):
        with pytest.raises(ConfigurationError):
            fetch_one(fake_source, "ORDERS", batch_size=0)

    def test_progress_reports(self, fake_source):
        """Test progress is reported after every batch and capped at expected."""
        seen = []
        fetch_one(fake_source, "EVENTS", batch_size=4, progress=lambda cur, total: seen.append((cur, total)))
        assert seen == [(4, 10), (8, 10), (10, 10)]


class TestFetchAllStreams:
    """Test concurrent multi-stream fetch."""

    def test_all_streams(self, fake_source):
        """Test every stream is fetched and keyed in the given order."""
        streams = list(fake_source.infos.values())
        result = asyncio.run(fetch_all_streams(fake_source, streams, batch_size=3, max_concurrency=2))
        assert list(result) == ["ORDERS", "EVENTS"]
        assert len(result["ORDERS"]) == 3
        assert len(result["EVENTS"]) == 10

    def test_failed_stream_skipped(self, two_stream_messages, log_output):
        """Test a failing stream is reported and the others still complete."""
        source = FakeStreamSource(two_stream_messages, fail_streams=["ORDERS"])
        result = asyncio.run(fetch_all_streams(source, list(source.infos.values()), batch_size=5))
        assert list(result) == ["EVENTS"]
        assert "Warning: failed to fetch messages from ORDERS" in log_output.getvalue()

    def test_empty_range_reported(self, fake_source, log_output):
        """Test streams with nothing in the window are left out."""
        streams = list(fake_source.infos.values())
        result = asyncio.run(fetch_all_streams(fake_source, streams, batch_size=5, start_time=at(100)))
        assert result == {}
        assert "has no messages in the specified time range" in log_output.getvalue()

    def test_aggregate_progress(self, fake_source):
        """Test progress totals cover all streams."""
        seen = []
        streams = list(fake_source.infos.values())
        asyncio.run(
            fetch_all_streams(fake_source, streams, batch_size=4, progress=lambda cur, total: seen.append((cur, total)))
        )
        assert seen[-1] == (13, 13)
        assert all(total == 13 for _, total in seen)

    def test_results_sorted_by_timestamp(self, fake_source):
        result = asyncio.run(fetch_all_streams(fake_source, list(fake_source.infos.values()), batch_size=100))
        for records in result.values():
            assert records == sort_by_timestamp(records)

    def test_invalid_concurrency(self, fake_source):
        with pytest.raises(ConfigurationError):
            asyncio.run(fetch_all_streams(fake_source, [], batch_size=10, max_concurrency=0))


class TestSortByTimestamp:
    """Test merge ordering."""

    def test_ties_broken_by_stream_then_sequence(self):
        records = [msg("B", 2, 1.0), msg("A", 9, 1.0), msg("A", 3, 0.5), msg("A", 1, 1.0)]
        ordered = sort_by_timestamp(records)
        assert [(m.stream_name, m.sequence) for m in ordered] == [("A", 3), ("A", 1), ("A", 9), ("B", 2)]
