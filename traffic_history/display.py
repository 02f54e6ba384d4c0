"""
Terminal rendering of traffic history reports.

Everything is emitted through the package logger so ``--quiet`` silences the
report and tests can capture it with ``configure_logging(stream=...)``. Only
the fetch progress bar writes to the terminal directly, since it redraws a
single line in place.
"""

import shutil
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterator, List, Optional, Sequence, TextIO, Tuple

from .logging_config import get_logger
from .models import MetricStats, RateBucket, RateHistogram, RateStatistics, ReportSummary

logger = get_logger(__name__)

HEADER_WIDTH = 70
PROGRESS_BAR_WIDTH = 30
TIME_COL_WIDTH = 19
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
MIN_GRAPH_WIDTH = 20
DEFAULT_TERMINAL_WIDTH = 120

# "  " + time + " | "
RATE_GRAPH_FIXED_COLS = 2 + TIME_COL_WIDTH + 3
# "  " + time + " | " + throughput + " | "
TPUT_GRAPH_FIXED_COLS = 2 + 20 + 3 + 12 + 3

STORED_CHAR = "█"
DELETED_CHAR = "░"
TPUT_CHAR = "▓"


@dataclass
class GraphOptions:
    """Which graphs and statistics blocks to render."""

    show_graph: bool = False
    show_rate: bool = True
    show_throughput: bool = True
    min_rate_pct: float = 10.0
    width: Optional[int] = None


# =============================================================================
# FORMATTING HELPERS
# =============================================================================


def format_bytes(n: float) -> str:
    """Format a byte count in 1024 units ("512 B", "1.5 KB", "2.0 MB")."""
    n = int(n)
    if n < 1024:
        return f"{n} B"
    div, exp = 1024, 0
    q = n // 1024
    while q >= 1024:
        div *= 1024
        exp += 1
        q //= 1024
    return f"{n / div:.1f} {'KMGTPE'[exp]}B"


def format_bytes_per_sec(n: float) -> str:
    return format_bytes(n) + "/s"


def format_duration(d: timedelta) -> str:
    """Format a duration as "1.50s", "2m3.0s" or "1h2m3.0s"."""
    secs = d.total_seconds()
    if secs == 0:
        return "0s"
    if secs < 60:
        return f"{secs:.2f}s"
    if secs < 3600:
        mins = int(secs // 60)
        return f"{mins}m{secs - mins * 60:.1f}s"
    hours = int(secs // 3600)
    mins = int((secs - hours * 3600) // 60)
    return f"{hours}h{mins}m{secs - hours * 3600 - mins * 60:.1f}s"


def format_scale_value(v: float) -> str:
    """Compact numeric label for graph scales ("1.5K", "2.0M", "250", "12.5", "0.75")."""
    if v >= 1_000_000:
        return f"{v / 1_000_000:.1f}M"
    if v >= 1000:
        return f"{v / 1000:.1f}K"
    if v >= 100:
        return f"{v:.0f}"
    if v >= 10:
        return f"{v:.1f}"
    return f"{v:.2f}"


def _fmt_time(ts: Optional[datetime]) -> str:
    return ts.strftime(TIME_FORMAT) if ts is not None else "-"


def terminal_width() -> int:
    return shutil.get_terminal_size((DEFAULT_TERMINAL_WIDTH, 24)).columns


def graph_width(fixed_cols: int, width: Optional[int] = None) -> int:
    """Columns left for a graph once the fixed columns are taken."""
    total = width if width is not None else terminal_width()
    return max(MIN_GRAPH_WIDTH, total - fixed_cols)


# =============================================================================
# PROGRESS
# =============================================================================


def print_progress(current: int, total: int, stream: Optional[TextIO] = None) -> None:
    """Redraw the fetch progress bar in place."""
    if total <= 0:
        return
    pct = current / total
    filled = min(int(pct * PROGRESS_BAR_WIDTH), PROGRESS_BAR_WIDTH)
    bar = "█" * filled + "░" * (PROGRESS_BAR_WIDTH - filled)
    out = stream or sys.stdout
    out.write(f"\r  [{bar}] {current}/{total} ({pct * 100:.0f}%)")
    out.flush()


def clear_progress(stream: Optional[TextIO] = None) -> None:
    out = stream or sys.stdout
    out.write("\r" + " " * 60 + "\r")
    out.flush()


# =============================================================================
# BARS AND SCALES
# =============================================================================


def _overlay(
    chars: List[str], text: str, start: int, allowed: Optional[Callable[[int], bool]] = None
) -> None:
    for i, ch in enumerate(text):
        pos = start + i
        if 0 <= pos < len(chars) and (allowed is None or allowed(pos)):
            chars[pos] = ch


def rate_bar(
    width: int,
    stored_len: int,
    deleted_len: int,
    stored_rate: float,
    deleted_rate: float,
    total_rate: float,
) -> str:
    """Stored share as █, deleted share as ░, rates written onto the bar."""
    stored_len = max(0, min(stored_len, width))
    total_len = max(stored_len, min(stored_len + deleted_len, width))
    chars = (
        [STORED_CHAR] * stored_len
        + [DELETED_CHAR] * (total_len - stored_len)
        + [" "] * (width - total_len)
    )

    if stored_rate > 0:
        _overlay(chars, format_scale_value(stored_rate), 0, lambda p: p < stored_len)
    if deleted_rate > 0:
        _overlay(
            chars,
            format_scale_value(deleted_rate),
            stored_len,
            lambda p: stored_len <= p < total_len,
        )

    total_str = format_scale_value(total_rate)
    _overlay(chars, total_str, max(0, width - len(total_str)))
    return "".join(chars)


def throughput_bar(width: int, bar_len: int, throughput: float) -> str:
    bar_len = max(0, min(bar_len, width))
    chars = [TPUT_CHAR] * bar_len + [" "] * (width - bar_len)
    label = format_bytes_per_sec(throughput)
    _overlay(chars, label, max(0, width - len(label)))
    return "".join(chars)


def scale_lines(width: int, max_value: float, unit: str) -> Tuple[str, str]:
    """Tick line with marks at 0/50/100% and the matching label line."""
    ticks = [" "] * width
    ticks[0] = "|"
    ticks[width // 2] = "|"
    ticks[width - 1] = "|"

    labels = [" "] * width
    _overlay(labels, "0", 0)
    mid = format_scale_value(max_value * 0.5)
    mid_pos = max(width // 2 - len(mid) // 2, 2)
    if mid_pos + len(mid) <= width:
        _overlay(labels, mid, mid_pos)
    end = f"{format_scale_value(max_value)} {unit}"
    end_pos = width - len(end)
    if end_pos > mid_pos + len(mid) + 1:
        _overlay(labels, end, end_pos)

    return "".join(ticks), "".join(labels)


def _log_scale(prefix: str, width: int, max_value: float, unit: str) -> None:
    ticks, labels = scale_lines(width, max_value, unit)
    logger.info("%s%s", prefix, ticks)
    logger.info("%s%s", prefix, labels)


def collapse_runs(
    buckets: Sequence[RateBucket], classify: Callable[[RateBucket], str]
) -> Iterator[Tuple[str, List[RateBucket]]]:
    """
    Group consecutive hidden buckets.

    ``classify`` returns "show", "skip" or "del-only" per bucket. Shown buckets
    are yielded one at a time; consecutive buckets of the same hidden kind are
    yielded as one run.
    """
    kind, run = None, []
    for bucket in buckets:
        current = classify(bucket)
        if run and current != kind:
            yield kind, run
            run = []
        if current == "show":
            kind = None
            yield current, [bucket]
            continue
        kind = current
        run.append(bucket)
    if run:
        yield kind, run


def _run_label(kind: str, run: List[RateBucket], granularity: timedelta) -> str:
    span = run[-1].start - run[0].start + granularity
    return f"... {len(run)} {kind} +{format_duration(span)} ..."


# =============================================================================
# GRAPHS
# =============================================================================


def print_rate_graph(
    hist: RateHistogram, min_rate_pct: float = 10.0, width: Optional[int] = None
) -> None:
    """Per-bucket stored/deleted rate graph scaled to the peak sequence rate."""
    if hist.is_empty:
        return

    gw = graph_width(RATE_GRAPH_FIXED_COLS, width)
    max_seq_rate = max(b.seq_rate for b in hist.buckets)
    if max_seq_rate == 0:
        logger.info("  No messages in any bucket")
        logger.info("")
        return

    threshold = max_seq_rate * min_rate_pct / 100.0

    def classify(b: RateBucket) -> str:
        if b.seq_count == 0 or b.seq_rate < threshold:
            return "skip"
        if b.is_deletion_only:
            return "del-only"
        return "show"

    logger.info(
        "  Message Rate (hiding < %.1f%%, %s=stored %s=deleted, total right-aligned)",
        min_rate_pct,
        STORED_CHAR,
        DELETED_CHAR,
    )
    logger.info("  %-19s | %s", "Time", "Graph (stored | deleted | total)")
    logger.info("  %s-+-%s", "-" * TIME_COL_WIDTH, "-" * gw)

    prefix = f"  {'':<19} | "
    _log_scale(prefix, gw, max_seq_rate, "msg/s")

    for kind, run in collapse_runs(hist.buckets, classify):
        if kind != "show":
            label = "skipped" if kind == "skip" else "del-only"
            run_text = _run_label(label, run, hist.granularity)
            logger.info("  %-19s | %-*s", _fmt_time(run[0].start), gw, run_text)
            continue

        b = run[0]
        total_len = max(0, int(b.seq_rate / max_seq_rate * gw))
        stored_len = min(max(0, int(b.rate / max_seq_rate * gw)), total_len)
        bar = rate_bar(
            gw, stored_len, total_len - stored_len, b.rate, b.seq_rate - b.rate, b.seq_rate
        )
        logger.info("  %-19s | %s", _fmt_time(b.start), bar)

    _log_scale(prefix, gw, max_seq_rate, "msg/s")
    logger.info("")


def print_throughput_graph(
    hist: RateHistogram, min_rate_pct: float = 10.0, width: Optional[int] = None
) -> None:
    """Per-bucket throughput graph."""
    if hist.is_empty:
        return

    gw = graph_width(TPUT_GRAPH_FIXED_COLS, width)
    max_tput = max(b.throughput for b in hist.buckets)
    if max_tput == 0:
        return

    threshold = max_tput * min_rate_pct / 100.0

    def classify(b: RateBucket) -> str:
        return "skip" if b.bytes == 0 or b.throughput < threshold else "show"

    logger.info("  Throughput (hiding < %.1f%%)", min_rate_pct)
    logger.info("  %-20s | %12s | %s", "Time", "Throughput", "Graph")
    logger.info("  %s-+-%s-+-%s", "-" * 20, "-" * 12, "-" * gw)

    prefix = f"  {'':<20} | {'':>12} | "
    _log_scale(prefix, gw, max_tput, "B/s")

    for kind, run in collapse_runs(hist.buckets, classify):
        if kind == "skip":
            span = run[-1].start - run[0].start + hist.granularity
            logger.info(
                "  %-20s | %12s | ... %d buckets skipped ...",
                _fmt_time(run[0].start),
                "+" + format_duration(span),
                len(run),
            )
            continue

        b = run[0]
        bar_len = max(0, int(b.throughput / max_tput * gw))
        logger.info(
            "  %-20s | %12s | %s",
            _fmt_time(b.start),
            format_bytes_per_sec(b.throughput),
            TPUT_CHAR * bar_len,
        )

    _log_scale(prefix, gw, max_tput, "B/s")
    logger.info("")


def print_combined_graph(
    hist: RateHistogram, min_rate_pct: float = 10.0, width: Optional[int] = None
) -> None:
    """Rate and throughput side by side, 60/40 split of the available width."""
    if hist.is_empty:
        return

    available = max(MIN_GRAPH_WIDTH, (width if width is not None else terminal_width()) - 27)
    rate_w = max(10, available * 6 // 10)
    tput_w = max(10, available - rate_w)

    max_seq_rate = max(b.seq_rate for b in hist.buckets)
    max_tput = max(b.throughput for b in hist.buckets)
    if max_seq_rate == 0 and max_tput == 0:
        logger.info("  No messages in any bucket")
        logger.info("")
        return

    rate_threshold = max_seq_rate * min_rate_pct / 100.0
    tput_threshold = max_tput * min_rate_pct / 100.0

    def classify(b: RateBucket) -> str:
        if b.seq_count == 0 and b.bytes == 0:
            return "skip"
        if b.seq_rate < rate_threshold and b.throughput < tput_threshold:
            return "skip"
        if b.is_deletion_only:
            return "del-only"
        return "show"

    logger.info(
        "  Rate (%s=stored %s=deleted) | Throughput (%s) | hiding < %.1f%%",
        STORED_CHAR,
        DELETED_CHAR,
        TPUT_CHAR,
        min_rate_pct,
    )
    logger.info("  %-19s | %-*s | %s", "Time", rate_w, "Rate Graph", "Tput Graph")
    logger.info("  %s-+-%s-+-%s", "-" * TIME_COL_WIDTH, "-" * rate_w, "-" * tput_w)

    prefix = f"  {'':<19} | "
    rate_ticks, rate_labels = scale_lines(rate_w, max_seq_rate, "msg/s")
    tput_ticks, tput_labels = scale_lines(tput_w, max_tput, "B/s")
    logger.info("%s%s | %s", prefix, rate_ticks, tput_ticks)
    logger.info("%s%s | %s", prefix, rate_labels, tput_labels)

    for kind, run in collapse_runs(hist.buckets, classify):
        if kind != "show":
            label = "skipped" if kind == "skip" else "del-only"
            span = run[-1].start - run[0].start + hist.granularity
            logger.info(
                "  %-19s | %-*s | %-*s",
                _fmt_time(run[0].start),
                rate_w,
                _run_label(label, run, hist.granularity),
                tput_w,
                f"... +{format_duration(span)} ...",
            )
            continue

        b = run[0]
        stored_len = deleted_len = 0
        if max_seq_rate > 0:
            total_len = max(0, int(b.seq_rate / max_seq_rate * rate_w))
            stored_len = min(max(0, int(b.rate / max_seq_rate * rate_w)), total_len)
            deleted_len = total_len - stored_len
        tput_len = max(0, int(b.throughput / max_tput * tput_w)) if max_tput > 0 else 0
        logger.info(
            "  %-19s | %s | %s",
            _fmt_time(b.start),
            rate_bar(rate_w, stored_len, deleted_len, b.rate, b.seq_rate - b.rate, b.seq_rate),
            throughput_bar(tput_w, tput_len, b.throughput),
        )

    logger.info("%s%s | %s", prefix, rate_ticks, tput_ticks)
    logger.info("%s%s | %s", prefix, rate_labels, tput_labels)
    logger.info("")


# =============================================================================
# STATISTICS AND REPORTS
# =============================================================================


def _log_metric(
    title: str, metric: MetricStats, fmt: Callable[[float], str], label_width: int
) -> None:
    logger.info("  %s:", title)
    rows = [
        ("Average", metric.avg),
        ("P50", metric.p50),
        ("P90", metric.p90),
        ("P99", metric.p99),
        ("P99.9", metric.p999),
        ("Min", metric.min),
        ("Max", metric.max),
        ("Std Dev", metric.stddev),
    ]
    for name, value in rows:
        logger.info("    %-*s%s", label_width, name + ":", fmt(value))
    logger.info("")


def _msg_per_sec(v: float) -> str:
    return f"{v:.2f} msg/s"


def print_rate_stats(
    stats: RateStatistics, show_rate: bool = True, show_throughput: bool = True
) -> None:
    """Statistics block for one histogram."""
    logger.info("Statistics:")
    logger.info("  Total Messages:                %s", f"{stats.total_messages:,}")
    logger.info("  Total Messages (per seq nums):  %s", f"{stats.total_seqs:,}")
    logger.info("  Total Data:                    %s", format_bytes(stats.total_bytes))
    logger.info(
        "  Time Span:                     %s (%s to %s)",
        format_duration(stats.total_duration),
        _fmt_time(stats.start_time),
        _fmt_time(stats.end_time),
    )
    logger.info(
        "  Total Buckets:                 %s (active: %s, %.1f%%)",
        f"{stats.total_buckets:,}",
        f"{stats.active_buckets:,}",
        stats.coverage * 100,
    )
    logger.info("")

    if show_rate:
        _log_metric("Message Storage Rate", stats.rate, _msg_per_sec, 16)
        _log_metric(
            "Message Storage Rate (per sequence numbers, with deletes interpolated)",
            stats.seq_rate,
            _msg_per_sec,
            16,
        )
    if show_throughput:
        _log_metric("Throughput", stats.throughput, format_bytes_per_sec, 16)
    if stats.total_messages > 0:
        _log_metric("Message Size", stats.msg_size, format_bytes, 16)


def print_rate_histogram(hist: RateHistogram, opts: Optional[GraphOptions] = None) -> None:
    """Optional graph followed by the statistics block."""
    opts = opts or GraphOptions()
    logger.info(
        "-- Stored Message Rate Over Time (granularity: %s) %s",
        format_duration(hist.granularity),
        "-" * 22,
    )
    logger.info("")

    if hist.is_empty:
        logger.info("  No data to display")
        logger.info("")
        return

    if opts.show_graph:
        if opts.show_rate and opts.show_throughput:
            print_combined_graph(hist, opts.min_rate_pct, opts.width)
        elif opts.show_rate:
            print_rate_graph(hist, opts.min_rate_pct, opts.width)
        elif opts.show_throughput:
            print_throughput_graph(hist, opts.min_rate_pct, opts.width)

    print_rate_stats(hist.stats, opts.show_rate, opts.show_throughput)


def print_combined_header(stream_count: int, msg_count: int) -> None:
    logger.info("-" * HEADER_WIDTH)
    logger.info("Combined: %d stream(s) (%s messages)", stream_count, f"{msg_count:,}")
    logger.info("-" * HEADER_WIDTH)
    logger.info("")


def print_stream_header(name: str, msg_count: int) -> None:
    logger.info("-" * HEADER_WIDTH)
    logger.info("Stream: %s (%s messages)", name, f"{msg_count:,}")
    logger.info("-" * HEADER_WIDTH)
    logger.info("")


def print_distribution(summary: ReportSummary, width: Optional[int] = None) -> None:
    """Stream tables by stored message count and by sequence count."""
    if not summary.streams:
        return

    name_w = max([6] + [len(s.name) for s in summary.streams])

    gw = graph_width(2 + name_w + 3 + 10 + 3 + 10 + 3, width)
    logger.info("Streams Distribution by Stored Message Count:")
    logger.info("  %-*s | %10s | %10s | %s", name_w, "Stream", "Messages", "Data", "Graph")
    logger.info("  %s-+-%s-+-%s-+-%s", "-" * name_w, "-" * 10, "-" * 10, "-" * gw)
    max_msgs = max(s.messages for s in summary.streams) or 1
    for s in summary.streams:
        bar_len = int(s.messages / max_msgs * gw)
        if bar_len < 1 and s.messages > 0:
            bar_len = 1
        logger.info(
            "  %-*s | %10d | %10s | %s",
            name_w,
            s.name,
            s.messages,
            format_bytes(s.bytes),
            "█" * bar_len,
        )
    logger.info("")

    by_seq = sorted(summary.streams, key=lambda s: (-s.seq_count, s.name))
    gw = graph_width(2 + name_w + 3 + 10 + 3 + 12 + 3, width)
    logger.info("Streams Distribution by per Sequence Number Count:")
    logger.info("  %-*s | %10s | %12s | %s", name_w, "Stream", "Seq Count", "Avg Rate", "Graph")
    logger.info("  %s-+-%s-+-%s-+-%s", "-" * name_w, "-" * 10, "-" * 12, "-" * gw)
    max_seq = max(by_seq[0].seq_count, 1)
    for s in by_seq:
        bar_len = int(s.seq_count / max_seq * gw)
        if bar_len < 1 and s.seq_count > 0:
            bar_len = 1
        logger.info(
            "  %-*s | %10d | %9.2f/s | %s",
            name_w,
            s.name,
            s.seq_count,
            s.seq_rate,
            "█" * bar_len,
        )
    logger.info("")

    reported = [s for s in summary.streams if s.has_reported]
    if not reported:
        return

    logger.info("Server-Reported Stream State (stored vs sequence span):")
    logger.info(
        "  %-*s | %10s | %10s | %10s | %-19s | %s",
        name_w,
        "Stream",
        "Stored",
        "Seq Span",
        "Deleted",
        "Oldest",
        "Newest",
    )
    rule = ["-" * name_w, "-" * 10, "-" * 10, "-" * 10, "-" * 19, "-" * 19]
    logger.info("  %s", "-+-".join(rule))
    for s in reported:
        logger.info(
            "  %-*s | %10d | %10d | %10d | %-19s | %s",
            name_w,
            s.name,
            s.reported_messages,
            s.reported_seq_span,
            s.reported_deleted,
            _fmt_time(s.reported_first_timestamp),
            _fmt_time(s.reported_last_timestamp),
        )
    logger.info("")


def print_report_summary(
    summary: ReportSummary,
    stats: Optional[RateStatistics] = None,
    distribution: bool = False,
    width: Optional[int] = None,
) -> None:
    """Report header, overview, combined statistics and distribution tables."""
    logger.info("=" * HEADER_WIDTH)
    logger.info("TRAFFIC HISTORY REPORT")
    logger.info("=" * HEADER_WIDTH)
    logger.info("")

    if summary.total_msgs == 0:
        logger.info("  No messages found")
        logger.info("")
        return

    logger.info("Overview:")
    logger.info(
        "  Duration:                      %s (%s to %s)",
        format_duration(summary.duration),
        _fmt_time(summary.start_time),
        _fmt_time(summary.end_time),
    )
    logger.info("  Streams:                       %d", summary.stream_count)
    logger.info("  Total Messages:                %s", f"{summary.total_msgs:,}")
    if stats is not None:
        logger.info("  Total Messages (per seq nums):  %s", f"{stats.total_seqs:,}")
    if summary.reported_deleted is not None:
        logger.info("  Deleted (server-reported):     %s", f"{summary.reported_deleted:,}")
    logger.info("  Total Data:                    %s", format_bytes(summary.total_bytes))
    if summary.duration.total_seconds() > 0:
        avg_tput = format_bytes_per_sec(summary.avg_throughput)
        logger.info("  Avg Throughput:                %s", avg_tput)
    logger.info("")

    if stats is not None:
        _log_metric("Message Rate (by stored msgs)", stats.rate, _msg_per_sec, 29)
        _log_metric(
            "Message Rate (per sequence numbers with deletes interpolated)",
            stats.seq_rate,
            _msg_per_sec,
            29,
        )
        _log_metric("Throughput", stats.throughput, format_bytes_per_sec, 29)
        _log_metric("Message Size", stats.msg_size, format_bytes, 29)

    if distribution:
        print_distribution(summary, width)
