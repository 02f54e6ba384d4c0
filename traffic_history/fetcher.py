"""
Message fetching.

Sequence-anchored batch fetch: the first request of a stream is anchored on
the window start time (or the stream's first sequence), every following
request continues at the sequence after the last one seen. Streams are
fetched concurrently with a bounded number of in-flight streams; each
stream's result lands in its own slot and all slots are joined before
anything is handed to the histogram builder.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from .exceptions import ConfigurationError, FetchError, TrafficHistoryError
from .logging_config import get_logger
from .models import MessageRecord, StreamInfo, ensure_utc
from .streams import StreamSource

logger = get_logger(__name__)

ProgressFunc = Callable[[int, int], None]


def sort_by_timestamp(messages: Sequence[MessageRecord]) -> List[MessageRecord]:
    """Return messages ordered by timestamp (ties by stream, then sequence)."""
    return sorted(messages, key=lambda m: (m.timestamp, m.stream_name, m.sequence))


async def fetch_stream_messages(
    source: StreamSource,
    stream: StreamInfo,
    batch_size: int,
    limit: int = 0,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    progress: Optional[ProgressFunc] = None,
) -> List[MessageRecord]:
    """
    Fetch the surviving messages of one stream.

    Args:
        source: Stream source to read from.
        stream: Stream metadata from discovery.
        batch_size: Messages per batch request.
        limit: Maximum messages to keep (0 = no limit).
        start_time: Only keep messages at or after this time.
        end_time: Stop at the first message at or after this time.
        progress: Called with (fetched, expected) after every batch.

    Returns:
        Messages in sequence order, each sequence at most once.

    Raises:
        FetchError: If the source fails while reading the stream.
    """
    if batch_size <= 0:
        raise ConfigurationError("batch size must be positive", option="--batch-size")
    if stream.messages == 0:
        return []

    start_time = ensure_utc(start_time) if start_time is not None else None
    end_time = ensure_utc(end_time) if end_time is not None else None

    expected = stream.messages
    if limit > 0:
        expected = min(expected, limit)

    messages: List[MessageRecord] = []
    seen = set()
    cursor: Optional[int] = None if start_time is not None else stream.first_seq

    while True:
        want = batch_size if limit <= 0 else min(batch_size, limit - len(messages))
        if want <= 0:
            break

        try:
            batch = await source.get_batch(
                stream.name,
                want,
                start_seq=cursor,
                start_time=start_time if cursor is None else None,
            )
        except TrafficHistoryError:
            raise
        except Exception as e:
            raise FetchError(f"batch request failed: {e}", stream=stream.name) from e

        if not batch:
            break

        done = False
        highest = cursor - 1 if cursor is not None else 0
        for record in batch:
            highest = max(highest, record.sequence)
            if end_time is not None and record.timestamp >= end_time:
                done = True
                break
            if start_time is not None and record.timestamp < start_time:
                continue
            if record.sequence in seen:
                continue
            seen.add(record.sequence)
            messages.append(record)
            if limit > 0 and len(messages) >= limit:
                done = True
                break

        logger.debug("%s: batch of %d, cursor at %d", stream.name, len(batch), highest)
        if progress is not None:
            progress(min(len(messages), expected), expected)

        if done or highest >= stream.last_seq:
            break
        if cursor is not None and highest + 1 <= cursor:
            break
        cursor = highest + 1

    messages.sort(key=lambda m: m.sequence)
    return messages


async def fetch_all_streams(
    source: StreamSource,
    streams: Sequence[StreamInfo],
    batch_size: int,
    limit: int = 0,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    max_concurrency: int = 4,
    progress: Optional[ProgressFunc] = None,
) -> Dict[str, List[MessageRecord]]:
    """
    Fetch several streams concurrently.

    Returns:
        Mapping of stream name to its messages sorted by timestamp, in the
        order the streams were given. Streams that failed or had nothing in
        range are left out.
    """
    if max_concurrency <= 0:
        raise ConfigurationError("concurrency must be positive", option="--concurrency")

    semaphore = asyncio.Semaphore(max_concurrency)
    results: List[Optional[List[MessageRecord]]] = [None] * len(streams)
    fetched = [0] * len(streams)
    expected_total = sum(min(s.messages, limit) if limit > 0 else s.messages for s in streams)

    def stream_progress(pos: int) -> ProgressFunc:
        def report(current: int, _total: int) -> None:
            fetched[pos] = current
            if progress is not None:
                progress(sum(fetched), expected_total)

        return report

    async def worker(pos: int, stream: StreamInfo) -> None:
        async with semaphore:
            logger.info(
                "Fetching messages from stream: %s (%s messages)",
                stream.name,
                f"{stream.messages:,}",
            )
            try:
                results[pos] = await fetch_stream_messages(
                    source,
                    stream,
                    batch_size,
                    limit=limit,
                    start_time=start_time,
                    end_time=end_time,
                    progress=stream_progress(pos),
                )
            except FetchError as e:
                logger.warning("Warning: failed to fetch messages from %s: %s", stream.name, e)

    await asyncio.gather(*(worker(pos, stream) for pos, stream in enumerate(streams)))

    by_stream: Dict[str, List[MessageRecord]] = {}
    for stream, messages in zip(streams, results):
        if messages is None:
            continue
        if not messages:
            if start_time is not None or end_time is not None:
                logger.info("Stream %s has no messages in the specified time range", stream.name)
            else:
                logger.info("Stream %s has no messages to analyze", stream.name)
            continue
        by_stream[stream.name] = sort_by_timestamp(messages)

    return by_stream
