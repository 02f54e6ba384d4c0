"""
Cross-stream report summary.
"""

from typing import Dict, Iterable, Optional, Sequence

from .models import MessageRecord, ReportSummary, StreamInfo, StreamSummary


def build_summary(
    messages: Sequence[MessageRecord],
    stream_count: int,
    stream_infos: Optional[Iterable[StreamInfo]] = None,
) -> ReportSummary:
    """
    Roll up per-stream and overall totals for a run.

    Args:
        messages: Every surviving message analysed in the run.
        stream_count: Number of streams discovered for the run (streams that
            yielded no messages still count).
        stream_infos: Optional server-reported stream metadata, attached to
            the matching per-stream entries together with the server's own
            sequence span and the deleted count it implies.

    Returns:
        ReportSummary with streams sorted by stored message count, highest
        first. Empty input gives zero totals.
    """
    if not messages:
        return ReportSummary(stream_count=stream_count)

    summary = ReportSummary(
        stream_count=stream_count,
        total_msgs=len(messages),
        start_time=min(m.timestamp for m in messages),
        end_time=max(m.timestamp for m in messages),
    )

    per_stream: Dict[str, StreamSummary] = {}
    for msg in messages:
        summary.total_bytes += msg.size

        entry = per_stream.get(msg.stream_name)
        if entry is None:
            entry = StreamSummary(
                name=msg.stream_name, first_seq=msg.sequence, last_seq=msg.sequence
            )
            per_stream[msg.stream_name] = entry
        entry.messages += 1
        entry.bytes += msg.size
        entry.first_seq = min(entry.first_seq, msg.sequence)
        entry.last_seq = max(entry.last_seq, msg.sequence)

    infos = {info.name: info for info in stream_infos or ()}
    seconds = summary.duration.total_seconds()

    for entry in per_stream.values():
        if seconds > 0:
            entry.seq_rate = entry.seq_count / seconds
        summary.total_seqs += entry.seq_count

        info = infos.get(entry.name)
        if info is not None:
            entry.reported_first_seq = info.first_seq
            entry.reported_last_seq = info.last_seq
            entry.reported_messages = info.messages
            entry.reported_seq_span = info.seq_span
            entry.reported_deleted = info.deleted
            entry.reported_first_timestamp = info.first_timestamp
            entry.reported_last_timestamp = info.last_timestamp

    if seconds > 0:
        summary.seq_rate = summary.total_seqs / seconds

    summary.streams = sorted(per_stream.values(), key=lambda s: (-s.messages, s.name))
    return summary
