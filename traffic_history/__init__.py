"""
JetStream Traffic History

Reconstructs publish-rate and throughput history of limits-retention NATS
JetStream streams from the messages that are still stored, interpolating
traffic the server already discarded from gaps in the sequence numbers.
"""

from .exceptions import (
    ConfigurationError,
    FetchError,
    RetentionPolicyError,
    StreamDiscoveryError,
    StreamNotFoundError,
    TrafficHistoryError,
)
from .fetcher import fetch_all_streams, fetch_stream_messages, sort_by_timestamp
from .histogram import build_histogram, extract_source_histogram, truncate_time
from .models import (
    DownsamplePolicy,
    MessageRecord,
    MessageSamples,
    MetricStats,
    RateBucket,
    RateHistogram,
    RateStatistics,
    ReportSummary,
    SourceCounts,
    StreamInfo,
    StreamSummary,
)
from .service import HistogramService
from .session import ViewSession, ZoomWindow
from .statistics import compute_statistics, metric_stats, percentile
from .streams import StreamSource, discover_streams, retention_policy_name
from .summary import build_summary
from .views import downsample, filter_by_time, stream_distribution

__all__ = [
    # Data model
    "MessageRecord",
    "StreamInfo",
    "SourceCounts",
    "RateBucket",
    "MetricStats",
    "RateStatistics",
    "MessageSamples",
    "RateHistogram",
    "StreamSummary",
    "ReportSummary",
    "DownsamplePolicy",
    # Rate reconstruction
    "build_histogram",
    "extract_source_histogram",
    "truncate_time",
    "compute_statistics",
    "metric_stats",
    "percentile",
    "filter_by_time",
    "downsample",
    "stream_distribution",
    "build_summary",
    # Fetching
    "StreamSource",
    "discover_streams",
    "retention_policy_name",
    "fetch_stream_messages",
    "fetch_all_streams",
    "sort_by_timestamp",
    # Query surface
    "HistogramService",
    "ViewSession",
    "ZoomWindow",
    # Exceptions
    "TrafficHistoryError",
    "ConfigurationError",
    "StreamDiscoveryError",
    "RetentionPolicyError",
    "FetchError",
    "StreamNotFoundError",
]

__version__ = "0.1.0"
