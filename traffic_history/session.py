"""
Interactive viewing session: zoom history plus request versioning.

Every view change issues a histogram request tagged with a new version.
Requests run on a thread pool and may finish out of order; a result is only
applied if its version is still the latest, so a slow response for an old
window can never overwrite a newer one.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Union

from .exceptions import ConfigurationError
from .logging_config import get_logger
from .models import DownsamplePolicy, RateHistogram, ensure_utc
from .service import HistogramService

logger = get_logger(__name__)

SAME_WINDOW_TOLERANCE = timedelta(milliseconds=1)


@dataclass(frozen=True)
class ZoomWindow:
    start: datetime
    end: datetime

    def same_as(self, other: "ZoomWindow") -> bool:
        return (
            abs(self.start - other.start) <= SAME_WINDOW_TOLERANCE
            and abs(self.end - other.end) <= SAME_WINDOW_TOLERANCE
        )


class ViewSession:
    """
    Client-side view state over a ``HistogramService``.

    ``current_window`` is None while showing the full range.
    """

    def __init__(
        self,
        service: HistogramService,
        stream: Optional[str] = None,
        policy: Union[DownsamplePolicy, str] = DownsamplePolicy.PEAK,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.service = service
        self.stream = stream
        self.policy = DownsamplePolicy.parse(policy)
        self.current_window: Optional[ZoomWindow] = None
        self.zoom_history: List[ZoomWindow] = []
        self.request_version = 0
        self.histogram: Optional[RateHistogram] = None

        self._lock = threading.Lock()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="view-session"
        )

    def begin_request(self) -> int:
        """Start a new request and return its version."""
        with self._lock:
            self.request_version += 1
            return self.request_version

    def apply_result(self, version: int, histogram: RateHistogram) -> bool:
        """Apply a finished request; stale versions are discarded."""
        with self._lock:
            if version != self.request_version:
                logger.debug(
                    "Discarding stale response v%d (latest v%d)", version, self.request_version
                )
                return False
            self.histogram = histogram
            return True

    def _load(
        self,
        version: int,
        stream: Optional[str],
        window: Optional[ZoomWindow],
        policy: DownsamplePolicy,
    ) -> bool:
        start = window.start if window is not None else None
        end = window.end if window is not None else None
        hist = self.service.histogram(stream, start, end, policy)
        return self.apply_result(version, hist)

    def refresh(self) -> Future:
        """Request the histogram for the current view."""
        version = self.begin_request()
        return self._executor.submit(
            self._load, version, self.stream, self.current_window, self.policy
        )

    def zoom(self, start: datetime, end: datetime) -> Optional[Future]:
        """
        Zoom into ``[start, end)``.

        Returns None without issuing a request when the window matches the
        current one.
        """
        window = ZoomWindow(ensure_utc(start), ensure_utc(end))
        if window.start >= window.end:
            raise ConfigurationError("zoom window must have start before end", option="zoom")
        if self.current_window is not None and window.same_as(self.current_window):
            return None
        if self.current_window is not None:
            self.zoom_history.append(self.current_window)
        self.current_window = window
        return self.refresh()

    def zoom_back(self) -> Future:
        """Return to the previous window, or the full range when there is none."""
        self.current_window = self.zoom_history.pop() if self.zoom_history else None
        return self.refresh()

    def reset(self) -> Future:
        self.zoom_history.clear()
        self.current_window = None
        return self.refresh()

    def set_stream(self, stream: Optional[str]) -> Future:
        self.stream = stream or None
        return self.refresh()

    def set_policy(self, policy: Union[DownsamplePolicy, str]) -> Future:
        self.policy = DownsamplePolicy.parse(policy)
        return self.refresh()

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
