"""
Views over an existing histogram: time-range filtering, downsampling and
per-stream distribution.

None of these touch raw messages or mutate the input histogram; each returns
a new, independent result.
"""

import math
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Union

from .exceptions import ConfigurationError
from .models import (
    DownsamplePolicy,
    RateBucket,
    RateHistogram,
    SourceCounts,
    StreamSummary,
    ensure_utc,
)
from .statistics import compute_statistics


def _check_window(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and ensure_utc(start) > ensure_utc(end):
        raise ConfigurationError("start time must not be after end time", option="--start")


def _overlaps(bucket: RateBucket, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and bucket.end <= start:
        return False
    if end is not None and bucket.start >= end:
        return False
    return True


def _copy_bucket(bucket: RateBucket) -> RateBucket:
    per_source = {name: replace(counts) for name, counts in bucket.per_source.items()}
    return replace(bucket, per_source=per_source)


def filter_by_time(
    hist: RateHistogram, start: Optional[datetime] = None, end: Optional[datetime] = None
) -> RateHistogram:
    """
    Keep the buckets overlapping ``[start, end)`` and recompute statistics.

    Either bound may be None (open-ended). With no bounds at all the input
    histogram is returned unchanged. A window that overlaps nothing yields an
    empty histogram with zeroed statistics.
    """
    if start is None and end is None:
        return hist
    _check_window(start, end)
    start = ensure_utc(start) if start is not None else None
    end = ensure_utc(end) if end is not None else None

    filtered = [_copy_bucket(b) for b in hist.buckets if _overlaps(b, start, end)]
    if not filtered:
        return RateHistogram(buckets=[], granularity=hist.granularity)

    samples = None
    if hist.samples is not None:
        samples = hist.samples.between(filtered[0].start, filtered[-1].end)

    return RateHistogram(
        buckets=filtered,
        granularity=hist.granularity,
        stats=compute_statistics(filtered, samples),
        samples=samples,
    )


def _merge_run(run: List[RateBucket], policy: DownsamplePolicy) -> RateBucket:
    agg = RateBucket(start=run[0].start, end=run[-1].end)

    for b in run:
        agg.count += b.count
        agg.seq_count += b.seq_count
        agg.bytes += b.bytes

        if policy is DownsamplePolicy.PEAK:
            agg.rate = max(agg.rate, b.rate)
            agg.seq_rate = max(agg.seq_rate, b.seq_rate)
            agg.throughput = max(agg.throughput, b.throughput)

        if b.min_msg_size is not None:
            agg.min_msg_size = (
                b.min_msg_size
                if agg.min_msg_size is None
                else min(agg.min_msg_size, b.min_msg_size)
            )
        if b.max_msg_size is not None:
            agg.max_msg_size = (
                b.max_msg_size
                if agg.max_msg_size is None
                else max(agg.max_msg_size, b.max_msg_size)
            )
        if b.first_seq is not None:
            agg.first_seq = (
                b.first_seq if agg.first_seq is None else min(agg.first_seq, b.first_seq)
            )
        if b.last_seq is not None:
            agg.last_seq = b.last_seq if agg.last_seq is None else max(agg.last_seq, b.last_seq)

        # Per-source breakdowns are summed regardless of policy
        for name, counts in b.per_source.items():
            agg.per_source.setdefault(name, SourceCounts()).add(counts)

    if policy is DownsamplePolicy.AVERAGE:
        seconds = agg.duration.total_seconds()
        if seconds > 0:
            agg.rate = agg.count / seconds
            agg.seq_rate = agg.seq_count / seconds
            agg.throughput = agg.bytes / seconds

    return agg


def downsample(
    hist: RateHistogram,
    max_buckets: int,
    policy: Union[DownsamplePolicy, str] = DownsamplePolicy.PEAK,
    recompute_stats: bool = False,
) -> RateHistogram:
    """
    Merge runs of adjacent buckets so at most ``max_buckets`` remain.

    Runs are ``ceil(N / max_buckets)`` buckets long. Counts and bytes are
    always summed. With the peak policy, rates are the maximum of the run so
    bursts stay visible; with the average policy, rates are the true average
    over the merged span.

    Args:
        hist: Source histogram (not modified).
        max_buckets: Upper bound on the number of buckets; must be positive.
        policy: DownsamplePolicy or its string form ("peak"/"max", "avg").
        recompute_stats: Recompute statistics from the merged buckets instead
            of keeping the full-resolution statistics.

    Returns:
        The input histogram when it already fits, otherwise a new one with
        granularity multiplied by the run length.
    """
    if max_buckets <= 0:
        raise ConfigurationError("max buckets must be positive", option="max_buckets")
    policy = DownsamplePolicy.parse(policy)

    buckets = hist.buckets
    if len(buckets) <= max_buckets:
        return hist

    factor = math.ceil(len(buckets) / max_buckets)
    merged = [_merge_run(buckets[i : i + factor], policy) for i in range(0, len(buckets), factor)]

    stats = compute_statistics(merged, hist.samples) if recompute_stats else hist.stats
    return RateHistogram(
        buckets=merged,
        granularity=hist.granularity * factor,
        stats=stats,
        samples=hist.samples,
    )


def stream_distribution(
    hist: RateHistogram, start: Optional[datetime] = None, end: Optional[datetime] = None
) -> List[StreamSummary]:
    """
    Per-stream message and byte totals over buckets overlapping a window.

    Streams without stored messages in the window are left out; the result is
    sorted by message count, highest first.
    """
    _check_window(start, end)
    start = ensure_utc(start) if start is not None else None
    end = ensure_utc(end) if end is not None else None

    totals: Dict[str, StreamSummary] = {}
    for bucket in hist.buckets:
        if not _overlaps(bucket, start, end):
            continue
        for name, counts in bucket.per_source.items():
            entry = totals.setdefault(name, StreamSummary(name=name))
            entry.messages += counts.count
            entry.bytes += counts.bytes

    streams = [s for s in totals.values() if s.messages > 0]
    streams.sort(key=lambda s: (-s.messages, s.name))
    return streams
