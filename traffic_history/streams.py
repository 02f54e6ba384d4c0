"""
Stream discovery.

Defines the ``StreamSource`` port the fetch layer talks to and selects the
limits-retention streams worth analysing.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Protocol, Union

from .exceptions import RetentionPolicyError, StreamDiscoveryError, TrafficHistoryError
from .logging_config import get_logger
from .models import MessageRecord, StreamInfo

logger = get_logger(__name__)

RETENTION_NAMES = {
    "limits": "limits",
    "limitspolicy": "limits",
    "interest": "interest",
    "interestpolicy": "interest",
    "workqueue": "workqueue",
    "workqueuepolicy": "workqueue",
}


class StreamSource(Protocol):
    """Server-side collaborator that lists streams and reads message batches."""

    async def list_streams(self) -> List[StreamInfo]:
        ...

    async def get_batch(
        self,
        stream: str,
        count: int,
        start_seq: Optional[int] = None,
        start_time: Optional[datetime] = None,
    ) -> List[MessageRecord]:
        ...


def retention_policy_name(policy: Union[str, Enum, None]) -> str:
    """Human-readable retention policy name ("limits", "interest", "workqueue" or "unknown")."""
    if isinstance(policy, Enum):
        policy = policy.value
    if not isinstance(policy, str):
        return "unknown"
    return RETENTION_NAMES.get(policy.replace("_", "").lower(), "unknown")


async def discover_streams(
    source: StreamSource, stream_filters: Optional[Iterable[str]] = None
) -> List[StreamInfo]:
    """
    Return the non-empty limits-retention streams, optionally filtered by name.

    Streams named in the filter that use another retention policy, or that do
    not exist, are reported as warnings and skipped.

    Raises:
        StreamDiscoveryError: If the server cannot list its streams.
    """
    wanted = set(stream_filters or ())

    try:
        infos = await source.list_streams()
    except TrafficHistoryError:
        raise
    except Exception as e:
        raise StreamDiscoveryError(f"error listing streams: {e}") from e

    found = []
    seen = set()
    for info in infos:
        if wanted and info.name not in wanted:
            continue
        seen.add(info.name)

        policy = retention_policy_name(info.retention)
        if policy != "limits":
            if wanted:
                logger.warning("Warning: %s", RetentionPolicyError(info.name, policy))
            continue

        if info.messages == 0:
            logger.debug("Skipping empty stream %s", info.name)
            continue

        found.append(info)

    for name in sorted(wanted - seen):
        logger.warning("Warning: stream %s not found", name)

    return found
