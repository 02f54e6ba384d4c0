"""Tests for the histogram query service and view session."""

from datetime import timedelta

import pytest

from conftest import BASE_TIME
from traffic_history.exceptions import ConfigurationError, StreamNotFoundError
from traffic_history.service import HistogramService
from traffic_history.session import SAME_WINDOW_TOLERANCE, ViewSession, ZoomWindow
from traffic_history.summary import build_summary


def at(seconds):
    return BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture
def service(sample_histogram, two_stream_messages):
    return HistogramService(sample_histogram, build_summary(two_stream_messages, 2))


@pytest.fixture
def session(service):
    view = ViewSession(service)
    yield view
    view.close()


class TestHistogramService:
    """Test queries over a run's histograms."""

    def test_stream_names(self, service):
        """Test stream names come back sorted."""
        assert service.stream_names() == ["EVENTS", "ORDERS"]

    def test_full_range_unchanged(self, service, sample_histogram):
        """Test a small histogram is served as is."""
        assert service.histogram() is sample_histogram

    def test_downsampled_to_limit(self, sample_histogram, two_stream_messages):
        """Test a histogram over the bucket limit is merged with exact totals."""
        service = HistogramService(sample_histogram, build_summary(two_stream_messages, 2), max_buckets=4)
        hist = service.histogram()
        assert len(hist.buckets) == 4
        assert hist.stats == sample_histogram.stats

    def test_single_stream(self, service):
        """Test a stream view is extracted once and reused."""
        orders = service.histogram("ORDERS")
        assert orders.stats.total_messages == 3
        assert service.histogram("ORDERS") is orders

    def test_unknown_stream(self, service):
        """Test an unknown stream name is rejected."""
        with pytest.raises(StreamNotFoundError):
            service.histogram("MISSING")

    def test_window(self, service):
        """Test a time window keeps only overlapping buckets."""
        hist = service.histogram(start=at(2), end=at(4))
        assert [b.start for b in hist.buckets] == [at(2), at(3)]

    def test_unknown_policy(self, service):
        """Test an unrecognised downsample policy is rejected."""
        with pytest.raises(ConfigurationError):
            service.histogram(policy="median")

    def test_distribution_uses_summary_without_window(self, service):
        """Test the unwindowed distribution is the run summary."""
        assert service.distribution() == service.summary().streams

    def test_distribution_window(self, service):
        """Test a windowed distribution drops streams with no messages inside."""
        assert [s.name for s in service.distribution(at(7), at(10))] == ["EVENTS"]


class TestZoomWindow:
    """Test zoom window comparison."""

    def test_same_within_tolerance(self):
        """Test windows match only when both edges are within tolerance."""
        window = ZoomWindow(at(1), at(2))
        assert window.same_as(ZoomWindow(at(1) + SAME_WINDOW_TOLERANCE, at(2)))
        assert not window.same_as(ZoomWindow(at(1) + 2 * SAME_WINDOW_TOLERANCE, at(2)))


class TestViewSession:
    """Test zoom history and stale-response handling."""

    def test_initial_refresh(self, session, sample_histogram):
        """Test the first refresh loads the full-range histogram."""
        assert session.refresh().result() is True
        assert session.histogram is sample_histogram

    def test_zoom_applies_window(self, session):
        """Test zooming narrows the histogram to the chosen window."""
        assert session.zoom(at(2), at(4)).result() is True
        assert session.current_window == ZoomWindow(at(2), at(4))
        assert len(session.histogram.buckets) == 2

    def test_first_zoom_does_not_push_full_range(self, session):
        """Test zooming from the full range records no history."""
        session.zoom(at(0), at(8)).result()
        assert session.zoom_history == []

    def test_zoom_back_walks_history(self, session):
        """Test zoom-back pops windows, then returns to the full range."""
        session.zoom(at(0), at(8)).result()
        session.zoom(at(2), at(4)).result()
        assert session.zoom_history == [ZoomWindow(at(0), at(8))]

        session.zoom_back().result()
        assert session.current_window == ZoomWindow(at(0), at(8))
        session.zoom_back().result()
        assert session.current_window is None
        assert len(session.histogram.buckets) == 10

    def test_same_window_ignored(self, session):
        """Test re-selecting the current window issues no request."""
        session.zoom(at(2), at(4)).result()
        version = session.request_version
        assert session.zoom(at(2), at(4) + timedelta(microseconds=500)) is None
        assert session.request_version == version
        assert session.zoom_history == []

    def test_inverted_zoom(self, session):
        """Test a zoom ending before it starts is rejected."""
        with pytest.raises(ConfigurationError):
            session.zoom(at(4), at(2))

    def test_reset(self, session):
        """Test reset clears the zoom history and window."""
        session.zoom(at(0), at(8)).result()
        session.zoom(at(2), at(4)).result()
        session.reset().result()
        assert session.zoom_history == []
        assert session.current_window is None

    def test_stale_response_discarded(self, session, sample_histogram):
        """Test only the latest request's result is applied."""
        old = session.begin_request()
        new = session.begin_request()
        assert session.apply_result(old, sample_histogram) is False
        assert session.histogram is None
        assert session.apply_result(new, sample_histogram) is True
        assert session.histogram is sample_histogram

    def test_set_stream(self, session):
        """Test switching streams, with an empty name meaning all streams."""
        session.set_stream("ORDERS").result()
        assert session.histogram.stats.total_messages == 3
        session.set_stream("").result()
        assert session.stream is None
