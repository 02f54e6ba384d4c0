"""
Output routing for the traffic history report.

Every line of the terminal report, from the per-stream fetch notices to the
rate graphs, goes through loggers under the ``traffic_history`` namespace.
The namespace owns exactly one handler. In report mode (the default) that
handler writes the bare message so the report reads as plain terminal
output; in structured mode each line carries a timestamp, logger and level,
which is handy when the web view and the fetcher log side by side.

``--verbose`` lowers the namespace to DEBUG (stale batch responses, edge
reads). ``--quiet`` raises it to WARNING, which hides the report itself but
keeps fetch warnings and errors.

Modules take their logger with::

    logger = get_logger(__name__)
    logger.info("Stream: %s (%d messages)", name, count)

Tests read a rendered report back with::

    with capture_report() as out:
        print_report_summary(summary)
    assert "TRAFFIC HISTORY REPORT" in out.getvalue()
"""

import logging
import sys
from contextlib import contextmanager
from io import StringIO
from typing import Iterator, Optional, TextIO

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SIMPLE_FORMAT = "%(message)s"

ROOT_NAMESPACE = "traffic_history"

_configured = False


def configure_logging(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    stream: Optional[TextIO] = None,
    simple_mode: bool = True,
) -> None:
    """
    Install the single report handler on the ``traffic_history`` namespace.

    Any handler from an earlier call is replaced, so reconfiguring never
    duplicates report lines.

    Args:
        level: Namespace level (INFO shows the report).
        format_string: Explicit format; overrides ``simple_mode``.
        stream: Destination for report lines (default: sys.stdout).
        simple_mode: Bare report lines when True, structured lines otherwise.
    """
    global _configured

    fmt = format_string or (SIMPLE_FORMAT if simple_mode else DEFAULT_FORMAT)
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(fmt))

    namespace = logging.getLogger(ROOT_NAMESPACE)
    namespace.handlers.clear()
    namespace.addHandler(handler)
    namespace.setLevel(level)
    # the report must not also reach whatever the host app set on the root logger
    namespace.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Logger for a report module; sets up report mode on first use."""
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


def set_level(level: int) -> None:
    logging.getLogger(ROOT_NAMESPACE).setLevel(level)


def enable_debug() -> None:
    set_level(logging.DEBUG)


def enable_quiet() -> None:
    """Hide the report, keep warnings and errors."""
    set_level(logging.WARNING)


def apply_verbosity(verbose: bool = False, quiet: bool = False) -> None:
    """Map the ``--verbose``/``--quiet`` flags to a namespace level. Verbose wins."""
    if verbose:
        enable_debug()
    elif quiet:
        enable_quiet()


@contextmanager
def capture_report(level: int = logging.INFO) -> Iterator[StringIO]:
    """Collect report lines in memory, restoring stdout report mode on exit."""
    out = StringIO()
    configure_logging(level=level, stream=out)
    try:
        yield out
    finally:
        configure_logging()
