"""Integration tests for the histogram REST API."""

from datetime import timedelta

import pytest

from conftest import BASE_TIME
from traffic_history.service import HistogramService
from traffic_history.summary import build_summary
from traffic_history.web import create_app


def unix(seconds):
    return (BASE_TIME + timedelta(seconds=seconds)).timestamp()


@pytest.fixture
def client(sample_histogram, two_stream_messages):
    service = HistogramService(sample_histogram, build_summary(two_stream_messages, 2), max_buckets=5)
    app = create_app(service)
    app.config["TESTING"] = True
    return app.test_client()


class TestApi:
    """Tests for API endpoints."""

    def test_index(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert "/api/histogram" in resp.get_json()["endpoints"]

    def test_health(self, client):
        assert client.get("/api/health").get_json() == {"status": "ok", "streams": 2}

    def test_streams(self, client):
        assert client.get("/api/streams").get_json() == ["EVENTS", "ORDERS"]

    def test_summary(self, client):
        data = client.get("/api/summary").get_json()
        assert data["total_msgs"] == 13
        assert data["stream_count"] == 2
        assert [s["name"] for s in data["streams"]] == ["EVENTS", "ORDERS"]

    def test_histogram_downsampled(self, client):
        """Test the full range is merged down to the bucket limit."""
        data = client.get("/api/histogram").get_json()
        assert len(data["buckets"]) == 5
        assert data["granularity_ns"] == 2_000_000_000
        assert data["stats"]["total_messages"] == 13
        assert sum(b["count"] for b in data["buckets"]) == 13
        assert "per_stream" in data["buckets"][0]

    def test_histogram_window(self, client):
        data = client.get(f"/api/histogram?start={unix(2)}&end={unix(4)}").get_json()
        assert len(data["buckets"]) == 2
        assert data["stats"]["total_buckets"] == 2

    def test_histogram_stream(self, client):
        data = client.get("/api/histogram?stream=ORDERS&downsample=avg").get_json()
        assert data["stats"]["total_messages"] == 3

    def test_distribution(self, client):
        data = client.get(f"/api/distribution?start={unix(7)}&end={unix(10)}").get_json()
        assert [s["name"] for s in data] == ["EVENTS"]
        assert data[0]["messages"] == 3


class TestApiErrors:
    """Tests for error responses."""

    def test_unknown_stream(self, client):
        resp = client.get("/api/histogram?stream=MISSING")
        assert resp.status_code == 404
        assert "MISSING" in resp.get_json()["error"]

    def test_bad_time(self, client):
        resp = client.get("/api/histogram?start=yesterday")
        assert resp.status_code == 400
        assert "unix seconds" in resp.get_json()["error"]

    def test_inverted_window(self, client):
        resp = client.get(f"/api/histogram?start={unix(5)}&end={unix(1)}")
        assert resp.status_code == 400

    def test_bad_policy(self, client):
        assert client.get("/api/histogram?downsample=median").status_code == 400
