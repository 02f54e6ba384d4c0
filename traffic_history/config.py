"""
Run configuration and parsing of user-supplied times and durations.
"""

import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from .exceptions import ConfigurationError

DEFAULT_SERVER = "nats://127.0.0.1:4222"
DEFAULT_GRANULARITY = timedelta(seconds=1)
DEFAULT_BATCH_SIZE = 10000
DEFAULT_CONCURRENCY = 4
DEFAULT_MIN_RATE_PCT = 10.0
DEFAULT_GUI_HOST = "127.0.0.1"
DEFAULT_GUI_PORT = 8080

TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|ms|s|m|h)")
_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)


def default_server() -> str:
    return os.environ.get("NATS_URL", DEFAULT_SERVER)


def parse_duration(value: str) -> timedelta:
    """
    Parse a compound duration such as "500ms", "1s", "2h30m" or "1.5m".

    Raises:
        ConfigurationError: If the text is not a valid duration.
    """
    text = (value or "").strip()
    if text == "0":
        return timedelta(0)

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        number, unit = match.groups()
        seconds += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    if not text or pos != len(text):
        raise ConfigurationError(f"invalid duration {value!r} (use e.g. 500ms, 1s, 2h30m)")
    return timedelta(seconds=seconds)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an RFC3339 or "YYYY-MM-DD[ HH:MM[:SS]]" timestamp.

    Timestamps without a zone are taken as UTC. Returns an aware datetime.

    Raises:
        ConfigurationError: If none of the accepted formats match.
    """
    text = (value or "").strip()

    match = _RFC3339.match(text)
    if match:
        base, fraction, zone = match.groups()
        fraction = (fraction or "")[:7]
        zone = "+00:00" if zone in ("Z", "z") else zone
        if fraction:
            fraction = fraction.ljust(7, "0")
        try:
            return datetime.fromisoformat(f"{base[:10]}T{base[11:]}{fraction}{zone}")
        except ValueError as e:
            raise ConfigurationError(f"unable to parse timestamp {value!r}: {e}") from e

    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    raise ConfigurationError(
        f"unable to parse timestamp {value!r} (use RFC3339 or 2006-01-02 15:04:05 format)"
    )


def resolve_time_window(
    start: Optional[str] = None,
    end: Optional[str] = None,
    since: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Turn --start/--end/--since into an aware ``(start, end)`` pair.

    Raises:
        ConfigurationError: If --since is combined with --start, or the
            window is inverted.
    """
    start_time = end_time = None

    if since is not None and since > timedelta(0):
        if start:
            raise ConfigurationError("cannot use both --since and --start", option="--since")
        start_time = (now or datetime.now(timezone.utc)) - since
    elif start:
        start_time = parse_timestamp(start)

    if end:
        end_time = parse_timestamp(end)

    if start_time is not None and end_time is not None and start_time > end_time:
        raise ConfigurationError("start time must not be after end time", option="--end")

    return start_time, end_time


@dataclass
class AnalyzerConfig:
    """Options for one analysis run."""

    server: str = field(default_factory=default_server)
    credentials: Optional[str] = None
    granularity: timedelta = DEFAULT_GRANULARITY
    show_graph: bool = False
    show_rate: bool = True
    show_throughput: bool = True
    streams: List[str] = field(default_factory=list)
    batch_size: int = DEFAULT_BATCH_SIZE
    limit: int = 0
    concurrency: int = DEFAULT_CONCURRENCY
    per_stream: bool = False
    distribution: bool = False
    csv_file: Optional[str] = None
    min_rate_pct: float = DEFAULT_MIN_RATE_PCT
    start: Optional[str] = None
    end: Optional[str] = None
    since: Optional[timedelta] = None
    gui: bool = False
    gui_host: str = DEFAULT_GUI_HOST
    gui_port: int = DEFAULT_GUI_PORT
    open_browser: bool = True

    def __post_init__(self):
        if self.csv_file and not self.csv_file.lower().endswith(".csv"):
            self.csv_file += ".csv"

    def validate(self) -> None:
        """
        Check option values.

        Raises:
            ConfigurationError: On the first invalid option.
        """
        if self.granularity <= timedelta(0):
            raise ConfigurationError("granularity must be positive", option="--granularity")
        if self.batch_size <= 0:
            raise ConfigurationError("batch size must be positive", option="--batch-size")
        if self.limit < 0:
            raise ConfigurationError("limit must not be negative", option="--limit")
        if self.concurrency <= 0:
            raise ConfigurationError("concurrency must be positive", option="--concurrency")
        if not 0 <= self.min_rate_pct <= 100:
            raise ConfigurationError(
                "min rate percent must be between 0 and 100", option="--min-rate-pct"
            )
        if not 0 < self.gui_port < 65536:
            raise ConfigurationError(f"invalid port {self.gui_port}", option="--port")
        self.time_window()

    def time_window(
        self, now: Optional[datetime] = None
    ) -> Tuple[Optional[datetime], Optional[datetime]]:
        return resolve_time_window(self.start, self.end, self.since, now=now)
