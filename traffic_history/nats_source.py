"""
NATS JetStream stream source.

Reads stream metadata through the JetStream manager and message metadata
through short-lived, header-only pull consumers, so payloads never cross the
wire; the payload length comes from the ``Nats-Msg-Size`` header.
"""

from datetime import datetime, timezone
from typing import List, Optional, Sequence, Union

import nats
from nats.errors import TimeoutError as NatsTimeoutError
from nats.js.api import AckPolicy, ConsumerConfig, DeliverPolicy

from .exceptions import FetchError, StreamDiscoveryError
from .logging_config import get_logger
from .models import MessageRecord, StreamInfo, ensure_utc
from .streams import retention_policy_name

logger = get_logger(__name__)

MSG_SIZE_HEADER = "Nats-Msg-Size"
DEFAULT_FETCH_TIMEOUT = 5.0
EDGE_FETCH_TIMEOUT = 1.0
CONSUMER_INACTIVE_THRESHOLD = 30.0


def _rfc3339(ts: datetime) -> str:
    return ensure_utc(ts).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _message_size(msg) -> int:
    headers = msg.headers or {}
    value = headers.get(MSG_SIZE_HEADER)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            logger.debug("Ignoring malformed %s header: %r", MSG_SIZE_HEADER, value)
    return len(msg.data or b"")


class JetStreamSource:
    """Stream source backed by a live NATS connection."""

    def __init__(
        self, nc, fetch_timeout: float = DEFAULT_FETCH_TIMEOUT, edge_timestamps: bool = True
    ):
        self.nc = nc
        self.js = nc.jetstream()
        self.jsm = nc.jsm()
        self.fetch_timeout = fetch_timeout
        self.edge_timestamps = edge_timestamps

    @classmethod
    async def connect(
        cls,
        servers: Union[str, Sequence[str]],
        user_credentials: Optional[str] = None,
        **kwargs,
    ) -> "JetStreamSource":
        """Open a connection and wrap it."""
        if isinstance(servers, str):
            servers = [s.strip() for s in servers.split(",") if s.strip()]
        options = {"servers": list(servers)}
        if user_credentials:
            options["user_credentials"] = user_credentials
        nc = await nats.connect(**options)
        logger.debug("Connected to %s", nc.connected_url.netloc if nc.connected_url else servers)
        return cls(nc, **kwargs)

    async def close(self) -> None:
        if not self.nc.is_closed:
            await self.nc.drain()

    async def list_streams(self) -> List[StreamInfo]:
        try:
            infos = await self.jsm.streams_info()
        except Exception as e:
            raise StreamDiscoveryError(f"error listing streams: {e}") from e

        streams = []
        for info in infos:
            state = info.state
            stream = StreamInfo(
                name=info.config.name,
                retention=retention_policy_name(info.config.retention),
                first_seq=state.first_seq,
                last_seq=state.last_seq,
                messages=state.messages,
                bytes=state.bytes,
            )
            if self.edge_timestamps and stream.retention == "limits" and stream.messages > 0:
                # a deleted last_seq has nothing after it, so the edge reads wait briefly
                first = await self._read(stream.name, 1, stream.first_seq, None, EDGE_FETCH_TIMEOUT)
                last = await self._read(stream.name, 1, stream.last_seq, None, EDGE_FETCH_TIMEOUT)
                if first:
                    stream.first_timestamp = first[0].timestamp
                if last:
                    stream.last_timestamp = last[0].timestamp
            streams.append(stream)
        return streams

    async def get_batch(
        self,
        stream: str,
        count: int,
        start_seq: Optional[int] = None,
        start_time: Optional[datetime] = None,
    ) -> List[MessageRecord]:
        """Read up to ``count`` message records starting at a sequence or time."""
        return await self._read(stream, count, start_seq, start_time, self.fetch_timeout)

    async def _read(
        self,
        stream: str,
        count: int,
        start_seq: Optional[int],
        start_time: Optional[datetime],
        timeout: float,
    ) -> List[MessageRecord]:
        config = ConsumerConfig(
            ack_policy=AckPolicy.NONE,
            headers_only=True,
            inactive_threshold=CONSUMER_INACTIVE_THRESHOLD,
            mem_storage=True,
            num_replicas=1,
        )
        if start_seq is not None:
            config.deliver_policy = DeliverPolicy.BY_START_SEQUENCE
            config.opt_start_seq = start_seq
        elif start_time is not None:
            config.deliver_policy = DeliverPolicy.BY_START_TIME
            config.opt_start_time = _rfc3339(start_time)
        else:
            config.deliver_policy = DeliverPolicy.ALL

        try:
            consumer = await self.jsm.add_consumer(stream, config=config)
        except Exception as e:
            raise FetchError(f"failed to create consumer: {e}", stream=stream) from e

        psub = await self.js.pull_subscribe_bind(durable=consumer.name, stream=stream)
        try:
            try:
                msgs = await psub.fetch(batch=count, timeout=timeout)
            except NatsTimeoutError:
                msgs = []

            records = []
            for msg in msgs:
                meta = msg.metadata
                records.append(
                    MessageRecord(
                        stream_name=stream,
                        sequence=meta.sequence.stream,
                        timestamp=ensure_utc(meta.timestamp),
                        size=_message_size(msg),
                    )
                )
            return records
        finally:
            await psub.unsubscribe()
            try:
                await self.jsm.delete_consumer(stream, consumer.name)
            except Exception as e:
                logger.debug("Could not delete consumer %s on %s: %s", consumer.name, stream, e)
