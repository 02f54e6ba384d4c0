"""
CSV export of histogram buckets.
"""

import csv
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Union

from .models import RateHistogram

CSV_FIELDS = [
    "stream",
    "timestamp",
    "count",
    "bytes",
    "rate_msg_per_sec",
    "throughput_bytes_per_sec",
]


def format_rfc3339(ts: datetime) -> str:
    """Format a timestamp as RFC3339 in UTC, with a fraction only when needed."""
    ts = ts.astimezone(timezone.utc)
    if ts.microsecond:
        return ts.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return ts.strftime("%Y-%m-%dT%H:%M:%SZ")


def bucket_rows(hist: RateHistogram, label: str) -> List[Dict[str, str]]:
    """One CSV row per bucket, labelled with a stream name (or "combined")."""
    return [
        {
            "stream": label,
            "timestamp": format_rfc3339(b.start),
            "count": str(b.count),
            "bytes": str(b.bytes),
            "rate_msg_per_sec": f"{b.rate:.2f}",
            "throughput_bytes_per_sec": f"{b.throughput:.2f}",
        }
        for b in hist.buckets
    ]


def write_csv(path: Union[str, Path], hist: RateHistogram, label: str, append: bool = False) -> int:
    """
    Write a histogram's buckets to a CSV file.

    With ``append=True`` rows are added to an existing file without a header.

    Returns:
        Number of data rows written.
    """
    rows = bucket_rows(hist, label)
    with open(path, "a" if append else "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        if not append:
            writer.writeheader()
        writer.writerows(rows)
    return len(rows)


def read_csv_rows(path: Union[str, Path]) -> List[Dict[str, str]]:
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def totals_from_rows(rows: Iterable[Dict[str, str]]) -> Dict[str, Dict[str, int]]:
    """Per-stream integer message and byte totals from exported rows."""
    totals: Dict[str, Dict[str, int]] = {}
    for row in rows:
        entry = totals.setdefault(row["stream"], {"count": 0, "bytes": 0})
        entry["count"] += int(row["count"])
        entry["bytes"] += int(row["bytes"])
    return totals
