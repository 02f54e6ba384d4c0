"""
Command-line entry point.

Usage:
    traffic-history [options]
    python -m traffic_history.cli --since 1h -g --per-stream
"""

import argparse
import asyncio
import sys
from dataclasses import dataclass, field
from datetime import timedelta
from itertools import chain
from typing import Dict, List, Optional

from . import __version__
from .config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_GUI_HOST,
    DEFAULT_GUI_PORT,
    DEFAULT_MIN_RATE_PCT,
    AnalyzerConfig,
    default_server,
    parse_duration,
)
from .display import (
    GraphOptions,
    clear_progress,
    print_combined_header,
    print_progress,
    print_rate_histogram,
    print_report_summary,
    print_stream_header,
)
from .exceptions import ConfigurationError, TrafficHistoryError
from .export import write_csv
from .fetcher import ProgressFunc, fetch_all_streams, sort_by_timestamp
from .histogram import build_histogram
from .logging_config import apply_verbosity, get_logger
from .models import MessageRecord, RateHistogram, ReportSummary, StreamInfo
from .nats_source import JetStreamSource
from .service import HistogramService
from .streams import StreamSource, discover_streams
from .summary import build_summary
from .web import run_server

logger = get_logger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class AnalysisResult:
    """Everything one run produced, ready for the query service."""

    streams: List[StreamInfo] = field(default_factory=list)
    messages: Dict[str, List[MessageRecord]] = field(default_factory=dict)
    summary: ReportSummary = field(default_factory=ReportSummary)
    combined: Optional[RateHistogram] = None
    histograms: Dict[str, RateHistogram] = field(default_factory=dict)


def _duration_arg(value: str) -> timedelta:
    try:
        return parse_duration(value)
    except ConfigurationError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="traffic-history",
        description=(
            "Analyze message rates across NATS JetStream streams with limits retention policy"
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    conn = parser.add_argument_group("connection")
    conn.add_argument(
        "--server",
        default=default_server(),
        help="NATS server URL (default: $NATS_URL or localhost)",
    )
    conn.add_argument("--creds", dest="credentials", help="NATS user credentials file")

    hist = parser.add_argument_group("histogram")
    hist.add_argument(
        "--granularity",
        type=_duration_arg,
        default=timedelta(seconds=1),
        help="Time bucket size (default: 1s)",
    )
    hist.add_argument(
        "-g", "--graph", dest="show_graph", action="store_true", help="Display ASCII graph"
    )
    hist.add_argument(
        "--no-rate",
        dest="show_rate",
        action="store_false",
        help="Hide message rate graph and stats",
    )
    hist.add_argument(
        "--no-throughput",
        dest="show_throughput",
        action="store_false",
        help="Hide throughput graph and stats",
    )
    hist.add_argument(
        "--min-rate-pct",
        type=float,
        default=DEFAULT_MIN_RATE_PCT,
        help="Skip graph buckets below this percentage of max rate (default: 10)",
    )

    fetch = parser.add_argument_group("fetching")
    fetch.add_argument(
        "-s",
        "--stream",
        dest="streams",
        action="append",
        default=[],
        help="Stream to analyze (repeatable)",
    )
    fetch.add_argument(
        "--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Messages per batch request"
    )
    fetch.add_argument(
        "-l", "--limit", type=int, default=0, help="Max messages to analyze per stream (0 = all)"
    )
    fetch.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help="Streams fetched in parallel",
    )

    window = parser.add_argument_group("time window")
    window.add_argument("--start", help="Start timestamp (RFC3339 or 2006-01-02 15:04:05)")
    window.add_argument("--end", help="End timestamp (RFC3339 or 2006-01-02 15:04:05)")
    window.add_argument(
        "--since", type=_duration_arg, help="Relative start time (e.g. 1h, 30m, 2h30m)"
    )

    output = parser.add_argument_group("output")
    output.add_argument(
        "--per-stream", action="store_true", help="Also show stats and graphs for each stream"
    )
    output.add_argument(
        "--distribution", action="store_true", help="Show stream distribution tables"
    )
    output.add_argument("--csv", dest="csv_file", help="Export histogram data to CSV file")
    output.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    output.add_argument("-q", "--quiet", action="store_true", help="Only show warnings and errors")

    gui = parser.add_argument_group("gui")
    gui.add_argument("--gui", action="store_true", help="Serve the histogram API after the report")
    gui.add_argument("--host", dest="gui_host", default=DEFAULT_GUI_HOST, help="API listen address")
    gui.add_argument(
        "--port",
        dest="gui_port",
        type=int,
        default=DEFAULT_GUI_PORT,
        help="API port (default: 8080)",
    )
    gui.add_argument(
        "--no-browser", dest="open_browser", action="store_false", help="Do not open a browser"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> AnalyzerConfig:
    return AnalyzerConfig(
        server=args.server,
        credentials=args.credentials,
        granularity=args.granularity,
        show_graph=args.show_graph,
        show_rate=args.show_rate,
        show_throughput=args.show_throughput,
        streams=list(args.streams),
        batch_size=args.batch_size,
        limit=args.limit,
        concurrency=args.concurrency,
        per_stream=args.per_stream,
        distribution=args.distribution,
        csv_file=args.csv_file,
        min_rate_pct=args.min_rate_pct,
        start=args.start,
        end=args.end,
        since=args.since,
        gui=args.gui,
        gui_host=args.gui_host,
        gui_port=args.gui_port,
        open_browser=args.open_browser,
    )


def _write_csv(path: str, hist: RateHistogram, label: str, append: bool) -> None:
    try:
        write_csv(path, hist, label, append=append)
    except OSError as e:
        raise TrafficHistoryError(f"failed to write CSV: {e}") from e


async def analyze(
    config: AnalyzerConfig, source: StreamSource, progress: Optional[ProgressFunc] = None
) -> AnalysisResult:
    """Discover, fetch, build and report. Returns what was built."""
    start_time, end_time = config.time_window()
    if start_time is not None or end_time is not None:
        parts = []
        if start_time is not None:
            parts.append(f"from {start_time.strftime(TIME_FORMAT)}")
        if end_time is not None:
            parts.append(f"to {end_time.strftime(TIME_FORMAT)}")
        logger.info("Time filter: %s", " ".join(parts))

    logger.info("Discovering streams with limits retention policy...")
    streams = await discover_streams(source, config.streams)
    result = AnalysisResult(streams=streams)
    if not streams:
        logger.info("No streams with limits retention policy found.")
        return result
    logger.info("Found %d stream(s) to analyze", len(streams))
    logger.info("")

    result.messages = await fetch_all_streams(
        source,
        streams,
        config.batch_size,
        limit=config.limit,
        start_time=start_time,
        end_time=end_time,
        max_concurrency=config.concurrency,
        progress=progress,
    )
    if progress is not None:
        clear_progress()
    logger.info("")

    all_messages = sort_by_timestamp(list(chain.from_iterable(result.messages.values())))
    result.summary = build_summary(all_messages, len(streams), streams)
    if all_messages:
        result.combined = build_histogram(all_messages, config.granularity, per_source=True)

    print_report_summary(
        result.summary,
        result.combined.stats if result.combined is not None else None,
        config.distribution,
    )

    opts = GraphOptions(
        show_graph=config.show_graph,
        show_rate=config.show_rate,
        show_throughput=config.show_throughput,
        min_rate_pct=config.min_rate_pct,
    )

    if result.combined is not None:
        print_combined_header(len(streams), len(all_messages))
        print_rate_histogram(result.combined, opts)
        if config.csv_file and not config.per_stream:
            _write_csv(config.csv_file, result.combined, "combined", append=False)
            logger.info("CSV data exported to %s", config.csv_file)

    if config.per_stream:
        csv_written = False
        for stream in streams:
            messages = result.messages.get(stream.name)
            if not messages:
                continue
            print_stream_header(stream.name, len(messages))
            hist = build_histogram(messages, config.granularity)
            result.histograms[stream.name] = hist
            print_rate_histogram(hist, opts)
            if config.csv_file:
                _write_csv(config.csv_file, hist, stream.name, append=csv_written)
                csv_written = True
            logger.info("")
        if csv_written:
            logger.info("CSV data exported to %s", config.csv_file)

    return result


async def _connect_and_analyze(
    config: AnalyzerConfig, progress: Optional[ProgressFunc]
) -> AnalysisResult:
    logger.info("Connecting to NATS...")
    try:
        source = await JetStreamSource.connect(config.server, config.credentials)
    except Exception as e:
        raise TrafficHistoryError(f"failed to connect to NATS: {e}") from e
    try:
        return await analyze(config, source, progress)
    finally:
        await source.close()


def run(config: AnalyzerConfig, show_progress: bool = True) -> int:
    """Run one analysis against the configured server; serve the API if asked."""
    config.validate()
    result = asyncio.run(_connect_and_analyze(config, print_progress if show_progress else None))

    if config.gui:
        if result.combined is None:
            logger.warning("No data to serve, skipping GUI")
            return 0
        service = HistogramService(result.combined, result.summary, result.histograms)
        run_server(
            service, host=config.gui_host, port=config.gui_port, open_browser=config.open_browser
        )

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    apply_verbosity(args.verbose, args.quiet)

    try:
        return run(config_from_args(args), show_progress=not args.quiet)
    except TrafficHistoryError as e:
        logger.error("Error: %s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
