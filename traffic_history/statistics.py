"""
Statistics over rate buckets.

Everything here is a pure function of its input slice: no caches, no hidden
state, and caller-owned data is never reordered. Percentiles use linear
interpolation between order statistics (``index = p * (n - 1)``, the R-7
definition, which is numpy's default); standard deviation is the population
form (divide by n).
"""

from dataclasses import replace
from typing import Iterable, Optional, Sequence

import numpy as np

from .models import MessageSamples, MetricStats, RateBucket, RateStatistics

PERCENTILES = (50.0, 90.0, 99.0, 99.9)


def _as_array(values: Iterable[float]) -> np.ndarray:
    if isinstance(values, np.ndarray):
        return values.astype(float)
    return np.asarray(list(values), dtype=float)


def percentile(values: Iterable[float], p: float) -> float:
    """Return the p-th percentile (``0 <= p <= 1``) of values, 0 for no values."""
    arr = _as_array(values)
    if arr.size == 0:
        return 0.0
    return float(np.percentile(arr, p * 100.0))


def metric_stats(values: Iterable[float]) -> MetricStats:
    """Mean, percentiles, min, max and population std-dev of values."""
    arr = _as_array(values)
    if arr.size == 0:
        return MetricStats()

    p50, p90, p99, p999 = np.percentile(arr, PERCENTILES)
    return MetricStats(
        avg=float(arr.mean()),
        p50=float(p50),
        p90=float(p90),
        p99=float(p99),
        p999=float(p999),
        min=float(arr.min()),
        max=float(arr.max()),
        stddev=float(arr.std()),
    )


def _bucket_size_stats(
    buckets: Sequence[RateBucket], total_messages: int, total_bytes: int
) -> MetricStats:
    """Approximate message-size statistics when per-message sizes are unavailable.

    Mean, min and max are exact. Percentiles and std-dev fall back to the
    per-bucket mean sizes of active buckets.
    """
    active = [b for b in buckets if b.count > 0]
    if not active or total_messages == 0:
        return MetricStats()

    approx = metric_stats([b.bytes / b.count for b in active])
    mins = [b.min_msg_size for b in active if b.min_msg_size is not None]
    maxs = [b.max_msg_size for b in active if b.max_msg_size is not None]
    return replace(
        approx,
        avg=total_bytes / total_messages,
        min=float(min(mins)) if mins else approx.min,
        max=float(max(maxs)) if maxs else approx.max,
    )


def compute_statistics(
    buckets: Sequence[RateBucket], samples: Optional[MessageSamples] = None
) -> RateStatistics:
    """
    Compute RateStatistics for a bucket slice.

    Args:
        buckets: Chronological bucket slice (not modified).
        samples: Per-message samples covering exactly this slice. When given,
            message-size and first/last sequence statistics come from the
            samples; otherwise they are derived from bucket aggregates.

    Returns:
        A fresh RateStatistics; zeroed when the slice is empty.
    """
    if not buckets:
        return RateStatistics()

    counts = np.fromiter((b.count for b in buckets), dtype=np.int64, count=len(buckets))
    seq_counts = np.fromiter((b.seq_count for b in buckets), dtype=np.int64, count=len(buckets))
    byte_counts = np.fromiter((b.bytes for b in buckets), dtype=np.int64, count=len(buckets))
    rates = np.fromiter((b.rate for b in buckets), dtype=float, count=len(buckets))
    seq_rates = np.fromiter((b.seq_rate for b in buckets), dtype=float, count=len(buckets))
    throughputs = np.fromiter((b.throughput for b in buckets), dtype=float, count=len(buckets))

    total_messages = int(counts.sum())
    total_bytes = int(byte_counts.sum())
    total_seqs = int(seq_counts.sum())

    stats = RateStatistics(
        total_messages=total_messages,
        total_bytes=total_bytes,
        total_seqs=total_seqs,
        start_time=buckets[0].start,
        end_time=buckets[-1].end,
        rate=metric_stats(rates),
        seq_rate=metric_stats(seq_rates),
        throughput=metric_stats(throughputs),
        active_buckets=int(np.count_nonzero(counts)),
        total_buckets=len(buckets),
    )

    seconds = stats.total_duration.total_seconds()
    if seconds > 0:
        stats.overall_seq_rate = total_seqs / seconds

    if samples is not None:
        if len(samples) > 0:
            stats.msg_size = metric_stats(samples.sizes)
            stats.first_seq = int(samples.sequences.min())
            stats.last_seq = int(samples.sequences.max())
    else:
        stats.msg_size = _bucket_size_stats(buckets, total_messages, total_bytes)
        firsts = [b.first_seq for b in buckets if b.first_seq is not None]
        lasts = [b.last_seq for b in buckets if b.last_seq is not None]
        if firsts:
            stats.first_seq = min(firsts)
        if lasts:
            stats.last_seq = max(lasts)

    return stats
