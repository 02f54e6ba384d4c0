"""
Rate histogram construction.

Turns the surviving messages of one or more limit-retention streams into
fixed-width time buckets. Besides the directly observed counts, every bucket
gets a ``seq_count`` that adds back messages the server already discarded:
for consecutive surviving messages ``s1 < s2`` of the same stream, the
``s2 - s1 - 1`` missing sequence numbers are spread uniformly over
``(t1, t2)`` and credited to each overlapped bucket by overlap duration.
"""

from datetime import timedelta
from typing import Dict, List, Optional, Sequence

import numpy as np

from .exceptions import ConfigurationError, StreamNotFoundError
from .logging_config import get_logger
from .models import (
    MessageRecord,
    MessageSamples,
    RateBucket,
    RateHistogram,
    SourceCounts,
    from_epoch_micros,
    to_micros,
)
from .statistics import compute_statistics

logger = get_logger(__name__)

_MAX_UINT64 = np.iinfo(np.uint64).max
_MAX_INT64 = np.iinfo(np.int64).max


def truncate_time(ts_us: int, granularity_us: int) -> int:
    """Round an epoch-microsecond timestamp down to a multiple of the granularity."""
    return ts_us - ts_us % granularity_us


def _granularity_micros(granularity: timedelta) -> int:
    if granularity <= timedelta(0):
        raise ConfigurationError("granularity must be positive", option="--granularity")
    g_us = to_micros(granularity)
    if g_us <= 0:
        raise ConfigurationError(
            "granularity must be at least 1 microsecond", option="--granularity"
        )
    return g_us


def _apportion(
    deleted: np.ndarray, missing: int, t1: int, t2: int, start_us: int, g_us: int
) -> None:
    """Spread ``missing`` deleted messages over ``(t1, t2)`` into ``deleted``.

    Weights are exact integer overlaps; the largest-remainder method keeps
    every gap's total intact.
    """
    last_idx = len(deleted) - 1
    first = min(max((t1 - start_us) // g_us, 0), last_idx)
    last = min(max((t2 - start_us) // g_us, 0), last_idx)

    if first == last:
        deleted[first] += missing
        return

    weights = []
    for idx in range(first, last + 1):
        lo = max(t1, start_us + idx * g_us)
        hi = min(t2, start_us + (idx + 1) * g_us)
        weights.append(max(0, hi - lo))

    total = sum(weights)
    if total == 0:
        deleted[first] += missing
        return

    # shares are whole messages: an edge bucket that only partly overlaps the gap
    # may get 0 or 1 here, while the gap total stays exact
    shares = [missing * w // total for w in weights]
    remainders = [missing * w % total for w in weights]
    leftover = missing - sum(shares)
    if leftover:
        ranked = sorted(range(len(weights)), key=lambda k: (-remainders[k], k))
        for k in ranked[:leftover]:
            shares[k] += 1

    for offset, share in enumerate(shares):
        if share:
            deleted[first + offset] += share


def interpolate_deletions(
    sequences: np.ndarray, timestamps: np.ndarray, start_us: int, g_us: int, num_buckets: int
) -> np.ndarray:
    """
    Attribute sequence-gap deletions of a single stream to buckets.

    Args:
        sequences: Sequence numbers of the stream's surviving messages.
        timestamps: Matching epoch-microsecond timestamps.
        start_us: Start of the first bucket.
        g_us: Bucket width in microseconds.
        num_buckets: Number of buckets.

    Returns:
        int64 array of interpolated deleted-message counts per bucket.
    """
    deleted = np.zeros(num_buckets, dtype=np.int64)
    if len(sequences) < 2:
        return deleted

    order = np.argsort(sequences, kind="stable")
    seqs = sequences[order]
    ts = timestamps[order]

    for i in np.nonzero(np.diff(seqs) > 1)[0]:
        missing = int(seqs[i + 1]) - int(seqs[i]) - 1
        t1, t2 = int(ts[i]), int(ts[i + 1])
        if t2 < t1:
            # clock skew: sequence order disagrees with timestamp order
            t1, t2 = t2, t1
        _apportion(deleted, missing, t1, t2, start_us, g_us)

    return deleted


def build_histogram(
    messages: Sequence[MessageRecord],
    granularity: timedelta,
    per_source: Optional[bool] = None,
) -> RateHistogram:
    """
    Build a rate histogram from surviving messages.

    Args:
        messages: Surviving messages of one or more streams, in any order.
        granularity: Bucket width; must be positive.
        per_source: Record a per-stream breakdown in every bucket. Defaults to
            True when the messages come from more than one stream.

    Returns:
        RateHistogram covering ``[truncate(min_ts), truncate(max_ts) + g)``;
        an empty histogram for empty input.
    """
    g_us = _granularity_micros(granularity)

    if not messages:
        return RateHistogram(buckets=[], granularity=granularity)

    ordered = sorted(messages, key=lambda m: (m.timestamp, m.stream_name, m.sequence))
    samples = MessageSamples.from_records(ordered)
    ts = samples.timestamps

    start_us = truncate_time(int(ts.min()), g_us)
    end_us = truncate_time(int(ts.max()), g_us) + g_us
    num_buckets = max(1, (end_us - start_us) // g_us)

    idx = np.clip((ts - start_us) // g_us, 0, num_buckets - 1)

    counts = np.zeros(num_buckets, dtype=np.int64)
    byte_counts = np.zeros(num_buckets, dtype=np.int64)
    min_sizes = np.full(num_buckets, _MAX_INT64, dtype=np.int64)
    max_sizes = np.full(num_buckets, -1, dtype=np.int64)
    first_seqs = np.full(num_buckets, _MAX_UINT64, dtype=np.uint64)
    last_seqs = np.zeros(num_buckets, dtype=np.uint64)

    np.add.at(counts, idx, 1)
    np.add.at(byte_counts, idx, samples.sizes)
    np.minimum.at(min_sizes, idx, samples.sizes)
    np.maximum.at(max_sizes, idx, samples.sizes)
    np.minimum.at(first_seqs, idx, samples.sequences)
    np.maximum.at(last_seqs, idx, samples.sequences)

    source_names = sorted(set(samples.sources.tolist()))
    track_sources = per_source if per_source is not None else len(source_names) > 1

    deleted = np.zeros(num_buckets, dtype=np.int64)
    source_arrays: Dict[str, tuple] = {}
    for name in source_names:
        mask = samples.sources == name
        src_deleted = interpolate_deletions(
            samples.sequences[mask], ts[mask], start_us, g_us, num_buckets
        )
        deleted += src_deleted
        if track_sources:
            src_counts = np.zeros(num_buckets, dtype=np.int64)
            src_bytes = np.zeros(num_buckets, dtype=np.int64)
            np.add.at(src_counts, idx[mask], 1)
            np.add.at(src_bytes, idx[mask], samples.sizes[mask])
            source_arrays[name] = (src_counts, src_bytes, src_deleted)

    g_secs = granularity.total_seconds()
    buckets: List[RateBucket] = []
    for i in range(num_buckets):
        count = int(counts[i])
        seq_count = count + int(deleted[i])
        nbytes = int(byte_counts[i])
        bucket = RateBucket(
            start=from_epoch_micros(start_us + i * g_us),
            end=from_epoch_micros(start_us + (i + 1) * g_us),
            count=count,
            seq_count=seq_count,
            bytes=nbytes,
            rate=count / g_secs,
            seq_rate=seq_count / g_secs,
            throughput=nbytes / g_secs,
        )
        if count:
            bucket.min_msg_size = int(min_sizes[i])
            bucket.max_msg_size = int(max_sizes[i])
            bucket.first_seq = int(first_seqs[i])
            bucket.last_seq = int(last_seqs[i])
        for name, (src_counts, src_bytes, src_deleted) in source_arrays.items():
            src_count = int(src_counts[i])
            src_seq_count = src_count + int(src_deleted[i])
            if src_seq_count:
                bucket.per_source[name] = SourceCounts(
                    count=src_count, seq_count=src_seq_count, bytes=int(src_bytes[i])
                )
        buckets.append(bucket)

    logger.debug(
        "Built histogram: %d messages, %d buckets of %s, %d interpolated deletions",
        len(ordered),
        num_buckets,
        granularity,
        int(deleted.sum()),
    )

    return RateHistogram(
        buckets=buckets,
        granularity=granularity,
        stats=compute_statistics(buckets, samples),
        samples=samples,
    )


def extract_source_histogram(hist: RateHistogram, source: str) -> RateHistogram:
    """
    Build a single-stream view from a combined histogram's per-source data.

    Raises:
        StreamNotFoundError: If the source does not appear in any bucket.
    """
    if source not in hist.sources:
        raise StreamNotFoundError(source)

    g_secs = hist.granularity.total_seconds()
    buckets = []
    for b in hist.buckets:
        counts = b.per_source.get(source, SourceCounts())
        buckets.append(
            RateBucket(
                start=b.start,
                end=b.end,
                count=counts.count,
                seq_count=counts.seq_count,
                bytes=counts.bytes,
                rate=counts.count / g_secs,
                seq_rate=counts.seq_count / g_secs,
                throughput=counts.bytes / g_secs,
            )
        )

    samples = hist.samples.for_source(source) if hist.samples is not None else None
    return RateHistogram(
        buckets=buckets,
        granularity=hist.granularity,
        stats=compute_statistics(buckets, samples),
        samples=samples,
    )
