"""
Read-only query layer shared by the REST surface and the interactive session.

Holds the histograms built for one run and answers filtered, downsampled
views of them. Nothing here mutates the stored histograms, so one service
can serve concurrent requests.
"""

from datetime import datetime
from typing import Dict, List, Optional, Union

from .exceptions import StreamNotFoundError
from .histogram import extract_source_histogram
from .logging_config import get_logger
from .models import DownsamplePolicy, RateHistogram, ReportSummary, StreamSummary
from .views import downsample, filter_by_time, stream_distribution

logger = get_logger(__name__)

DEFAULT_MAX_BUCKETS = 3000


class HistogramService:
    """Query surface over a run's combined and per-stream histograms."""

    def __init__(
        self,
        combined: RateHistogram,
        summary: ReportSummary,
        histograms: Optional[Dict[str, RateHistogram]] = None,
        max_buckets: int = DEFAULT_MAX_BUCKETS,
    ):
        self.combined = combined
        self._summary = summary
        self.max_buckets = max_buckets
        self._histograms: Dict[str, RateHistogram] = dict(histograms or {})

    def stream_names(self) -> List[str]:
        names = set(self._histograms) | set(self.combined.sources)
        names.update(s.name for s in self._summary.streams)
        return sorted(names)

    def _source(self, stream: Optional[str]) -> RateHistogram:
        if not stream:
            return self.combined
        hist = self._histograms.get(stream)
        if hist is not None:
            return hist
        if stream not in self.combined.sources:
            raise StreamNotFoundError(stream)
        hist = extract_source_histogram(self.combined, stream)
        self._histograms[stream] = hist
        return hist

    def histogram(
        self,
        stream: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        policy: Union[DownsamplePolicy, str] = DownsamplePolicy.PEAK,
    ) -> RateHistogram:
        """
        Histogram for the whole run or one stream, cut to a window and
        downsampled to at most ``max_buckets`` buckets.

        Raises:
            StreamNotFoundError: If ``stream`` is not part of the run.
            ConfigurationError: On an inverted window or unknown policy.
        """
        policy = DownsamplePolicy.parse(policy)
        hist = filter_by_time(self._source(stream), start, end)
        result = downsample(hist, self.max_buckets, policy)
        logger.debug(
            "histogram stream=%s window=%s..%s policy=%s: %d -> %d buckets",
            stream or "*",
            start,
            end,
            policy.value,
            len(hist.buckets),
            len(result.buckets),
        )
        return result

    def distribution(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[StreamSummary]:
        """Per-stream totals; the run summary when no window is given."""
        if start is None and end is None:
            return list(self._summary.streams)
        return stream_distribution(self.combined, start, end)

    def summary(self) -> ReportSummary:
        return self._summary
