"""
Data classes for stream traffic history analysis.

Timestamps are timezone-aware UTC datetimes. Internally, bucketing works on
integer microseconds since the Unix epoch so bucket boundaries never drift
through float rounding.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np

from .exceptions import ConfigurationError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MICROSECOND = timedelta(microseconds=1)


def ensure_utc(ts: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def to_epoch_micros(ts: datetime) -> int:
    """Convert a datetime to integer microseconds since the Unix epoch."""
    return (ensure_utc(ts) - EPOCH) // MICROSECOND


def from_epoch_micros(us: int) -> datetime:
    """Convert integer microseconds since the Unix epoch to a UTC datetime."""
    return EPOCH + timedelta(microseconds=int(us))


def to_micros(duration: timedelta) -> int:
    """Convert a timedelta to integer microseconds."""
    return duration // MICROSECOND


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


@dataclass(frozen=True)
class MessageRecord:
    """One surviving message of a stream.

    Attributes:
        stream_name: Stream the message was read from.
        sequence: Stream sequence number (unique within the stream).
        timestamp: Server-assigned publish time.
        size: Payload length in bytes.
    """

    stream_name: str
    sequence: int
    timestamp: datetime
    size: int


@dataclass
class StreamInfo:
    """Stream metadata as reported by the server at discovery time."""

    name: str
    retention: str = "limits"
    first_seq: int = 0
    last_seq: int = 0
    messages: int = 0
    bytes: int = 0
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None

    @property
    def seq_span(self) -> int:
        """Number of sequence numbers between first and last, inclusive."""
        if self.messages == 0 or self.last_seq < self.first_seq:
            return 0
        return self.last_seq - self.first_seq + 1

    @property
    def deleted(self) -> int:
        """Sequence slots inside the reported span with no stored message."""
        return max(0, self.seq_span - self.messages)


class DownsamplePolicy(str, Enum):
    """How rates of merged buckets are combined."""

    PEAK = "peak"
    AVERAGE = "avg"

    @classmethod
    def parse(cls, value: Union["DownsamplePolicy", str, None]) -> "DownsamplePolicy":
        if isinstance(value, DownsamplePolicy):
            return value
        text = (value or "").strip().lower()
        if text in ("", "peak", "max"):
            return cls.PEAK
        if text in ("avg", "average", "mean"):
            return cls.AVERAGE
        raise ConfigurationError(f"unknown downsample policy: {value!r}", option="downsample")


@dataclass
class SourceCounts:
    """Per-source contribution to one bucket."""

    count: int = 0
    seq_count: int = 0
    bytes: int = 0

    def add(self, other: "SourceCounts") -> None:
        self.count += other.count
        self.seq_count += other.seq_count
        self.bytes += other.bytes

    def to_dict(self) -> Dict[str, int]:
        return {"count": self.count, "seq_count": self.seq_count, "bytes": self.bytes}


@dataclass
class RateBucket:
    """One fixed-width time slice ``[start, end)``.

    ``count`` and ``bytes`` cover stored messages only. ``seq_count`` adds the
    deleted messages interpolated from sequence gaps, so it is never below
    ``count``.
    """

    start: datetime
    end: datetime
    count: int = 0
    seq_count: int = 0
    bytes: int = 0
    rate: float = 0.0
    seq_rate: float = 0.0
    throughput: float = 0.0
    min_msg_size: Optional[int] = None
    max_msg_size: Optional[int] = None
    first_seq: Optional[int] = None
    last_seq: Optional[int] = None
    per_source: Dict[str, SourceCounts] = field(default_factory=dict)

    @property
    def deleted(self) -> int:
        return self.seq_count - self.count

    @property
    def is_active(self) -> bool:
        return self.count > 0

    @property
    def is_deletion_only(self) -> bool:
        return self.count == 0 and self.seq_count > 0

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "start": _iso(self.start),
            "end": _iso(self.end),
            "count": self.count,
            "seq_count": self.seq_count,
            "bytes": self.bytes,
            "rate": self.rate,
            "seq_rate": self.seq_rate,
            "throughput": self.throughput,
            "min_msg_size": self.min_msg_size or 0,
            "max_msg_size": self.max_msg_size or 0,
            "sum_msg_size": self.bytes,
        }
        if self.per_source:
            data["per_stream"] = {name: c.to_dict() for name, c in self.per_source.items()}
        return data


@dataclass
class MetricStats:
    """Distribution summary of one metric."""

    avg: float = 0.0
    p50: float = 0.0
    p90: float = 0.0
    p99: float = 0.0
    p999: float = 0.0
    min: float = 0.0
    max: float = 0.0
    stddev: float = 0.0

    def to_dict(self, suffix: str) -> Dict[str, float]:
        return {
            f"avg_{suffix}": self.avg,
            f"p50_{suffix}": self.p50,
            f"p90_{suffix}": self.p90,
            f"p99_{suffix}": self.p99,
            f"p999_{suffix}": self.p999,
            f"min_{suffix}": self.min,
            f"max_{suffix}": self.max,
            f"stddev_{suffix}": self.stddev,
        }


@dataclass
class RateStatistics:
    """Aggregate view over a slice of buckets.

    Always computed fresh from a bucket slice; never updated in place.
    """

    total_messages: int = 0
    total_bytes: int = 0
    total_seqs: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    rate: MetricStats = field(default_factory=MetricStats)
    seq_rate: MetricStats = field(default_factory=MetricStats)
    throughput: MetricStats = field(default_factory=MetricStats)
    msg_size: MetricStats = field(default_factory=MetricStats)
    overall_seq_rate: float = 0.0
    first_seq: int = 0
    last_seq: int = 0
    active_buckets: int = 0
    total_buckets: int = 0

    @property
    def total_duration(self) -> timedelta:
        if self.start_time is None or self.end_time is None:
            return timedelta(0)
        return self.end_time - self.start_time

    @property
    def coverage(self) -> float:
        """Fraction of buckets holding at least one stored message."""
        if self.total_buckets == 0:
            return 0.0
        return self.active_buckets / self.total_buckets

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "total_messages": self.total_messages,
            "total_bytes": self.total_bytes,
            "total_seqs": self.total_seqs,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "total_duration_ns": to_micros(self.total_duration) * 1000,
        }
        data.update(self.rate.to_dict("rate"))
        data.update(self.seq_rate.to_dict("seq_rate"))
        data.update(self.throughput.to_dict("throughput"))
        data.update(self.msg_size.to_dict("msg_size"))
        data.update(
            {
                "first_seq": self.first_seq,
                "last_seq": self.last_seq,
                "overall_seq_rate": self.overall_seq_rate,
                "active_buckets": self.active_buckets,
                "total_buckets": self.total_buckets,
            }
        )
        return data


@dataclass(frozen=True)
class MessageSamples:
    """Flat per-message arrays kept alongside a histogram.

    Used to recompute exact message-size and sequence statistics for any
    sub-view without going back to the raw records.
    """

    timestamps: np.ndarray  # int64 microseconds since epoch
    sizes: np.ndarray  # int64
    sequences: np.ndarray  # uint64
    sources: np.ndarray  # object (stream names)

    @classmethod
    def from_records(cls, records: Iterable[MessageRecord]) -> "MessageSamples":
        records = list(records)
        return cls(
            timestamps=np.fromiter(
                (to_epoch_micros(r.timestamp) for r in records), dtype=np.int64, count=len(records)
            ),
            sizes=np.fromiter((r.size for r in records), dtype=np.int64, count=len(records)),
            sequences=np.fromiter(
                (r.sequence for r in records), dtype=np.uint64, count=len(records)
            ),
            sources=np.array([r.stream_name for r in records], dtype=object),
        )

    def __len__(self) -> int:
        return len(self.timestamps)

    def select(self, mask: np.ndarray) -> "MessageSamples":
        return MessageSamples(
            timestamps=self.timestamps[mask],
            sizes=self.sizes[mask],
            sequences=self.sequences[mask],
            sources=self.sources[mask],
        )

    def between(self, start: datetime, end: datetime) -> "MessageSamples":
        """Samples with ``start <= timestamp < end``."""
        start_us = to_epoch_micros(start)
        end_us = to_epoch_micros(end)
        return self.select((self.timestamps >= start_us) & (self.timestamps < end_us))

    def for_source(self, name: str) -> "MessageSamples":
        return self.select(self.sources == name)


@dataclass
class RateHistogram:
    """Chronological fixed-granularity buckets plus their statistics."""

    buckets: List[RateBucket]
    granularity: timedelta
    stats: RateStatistics = field(default_factory=RateStatistics)
    samples: Optional[MessageSamples] = field(default=None, repr=False, compare=False)

    @property
    def is_empty(self) -> bool:
        return not self.buckets

    @property
    def sources(self) -> List[str]:
        """Names present in the per-source breakdown, sorted."""
        names = set()
        for bucket in self.buckets:
            names.update(bucket.per_source)
        return sorted(names)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "buckets": [b.to_dict() for b in self.buckets],
            "granularity_ns": to_micros(self.granularity) * 1000,
            "stats": self.stats.to_dict(),
        }


@dataclass
class StreamSummary:
    """Per-stream rollup of the surviving message set."""

    name: str
    messages: int = 0
    bytes: int = 0
    first_seq: int = 0
    last_seq: int = 0
    seq_rate: float = 0.0
    reported_first_seq: Optional[int] = None
    reported_last_seq: Optional[int] = None
    reported_messages: Optional[int] = None
    reported_seq_span: Optional[int] = None
    reported_deleted: Optional[int] = None
    reported_first_timestamp: Optional[datetime] = None
    reported_last_timestamp: Optional[datetime] = None

    @property
    def seq_count(self) -> int:
        return self.last_seq - self.first_seq

    @property
    def has_reported(self) -> bool:
        return self.reported_messages is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "messages": self.messages,
            "bytes": self.bytes,
            "first_seq": self.first_seq,
            "last_seq": self.last_seq,
            "seq_rate": self.seq_rate,
        }
        if self.has_reported:
            data["reported_first_seq"] = self.reported_first_seq
            data["reported_last_seq"] = self.reported_last_seq
            data["reported_messages"] = self.reported_messages
            data["reported_seq_span"] = self.reported_seq_span
            data["reported_deleted"] = self.reported_deleted
            data["reported_first_timestamp"] = _iso(self.reported_first_timestamp)
            data["reported_last_timestamp"] = _iso(self.reported_last_timestamp)
        return data


@dataclass
class ReportSummary:
    """Cross-stream rollup built once per run."""

    stream_count: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_msgs: int = 0
    total_bytes: int = 0
    total_seqs: int = 0
    seq_rate: float = 0.0
    streams: List[StreamSummary] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        if self.start_time is None or self.end_time is None:
            return timedelta(0)
        return self.end_time - self.start_time

    @property
    def avg_throughput(self) -> float:
        seconds = self.duration.total_seconds()
        return self.total_bytes / seconds if seconds > 0 else 0.0

    @property
    def reported_deleted(self) -> Optional[int]:
        """Server-reported deleted messages summed over streams, None without metadata."""
        counts = [s.reported_deleted for s in self.streams if s.reported_deleted is not None]
        return sum(counts) if counts else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "duration_ns": to_micros(self.duration) * 1000,
            "stream_count": self.stream_count,
            "total_msgs": self.total_msgs,
            "total_bytes": self.total_bytes,
            "total_seqs": self.total_seqs,
            "seq_rate": self.seq_rate,
            "reported_deleted": self.reported_deleted,
            "streams": [s.to_dict() for s in self.streams],
        }
