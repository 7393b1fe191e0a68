"""
Message Channel over Redis Streams

- publish: XADD an entry carrying the partition key and the payload
- fetch: XREADGROUP one entry for this consumer; None when the stream is idle
- commit: XACK the entry so the consumer group never redelivers it

Delivery is at-least-once: an entry that was fetched but not committed stays
in the consumer's pending list and is handed out again on the next start.
"""

import socket
from dataclasses import dataclass
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from src.core.config import settings
from src.core.exceptions import TransportError
from src.core.logging import get_logger
from src.core.retry import RetryPolicy, retry_async

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChannelMessage:
    """One fetched stream entry."""
    entry_id: str
    key: str
    value: bytes


def _as_text(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _as_bytes(value) -> bytes:
    if value is None:
        return b""
    return value if isinstance(value, bytes) else str(value).encode("utf-8")


class RedisStreamChannel:
    """Producer and consumer side of the task stream."""

    def __init__(
        self,
        redis: Redis,
        stream: str,
        group: str,
        consumer: Optional[str] = None,
        block_ms: int = 5000,
        maxlen: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self._redis = redis
        self._stream = stream
        self._group = group
        self._consumer = consumer or f"worker-{socket.gethostname()}"
        self._block_ms = block_ms
        self._maxlen = maxlen
        self._retry_policy = retry_policy or RetryPolicy()
        # Start by replaying entries this consumer fetched but never acked
        self._drain_pending = True

    @classmethod
    def from_settings(cls, redis: Redis, retry_policy: Optional[RetryPolicy] = None) -> "RedisStreamChannel":
        return cls(
            redis,
            stream=settings.TASK_STREAM,
            group=settings.CONSUMER_GROUP,
            consumer=settings.CONSUMER_NAME,
            block_ms=settings.FETCH_BLOCK_MS,
            maxlen=settings.STREAM_MAXLEN,
            retry_policy=retry_policy
        )

    @property
    def consumer_name(self) -> str:
        return self._consumer

    async def _run(self, action: str, func, *args, **kwargs):
        return await retry_async(
            self._retry_policy,
            func,
            *args,
            action=f"channel.{action}",
            error_cls=TransportError,
            **kwargs
        )

    async def setup(self) -> None:
        """Create the consumer group (and stream) if not exists."""
        try:
            await self._redis.xgroup_create(self._stream, self._group, id="0", mkstream=True)
            logger.info("consumer_group_created", stream=self._stream, group=self._group)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise TransportError(
                    f"Failed to create consumer group {self._group}: {e}"
                ) from e
            logger.debug("consumer_group_exists", stream=self._stream, group=self._group)

    async def publish(self, key: str, payload: bytes) -> str:
        """Append a payload to the stream; returns the entry id."""
        fields = {"key": key, "payload": payload}
        if self._maxlen:
            entry_id = await self._run(
                "publish", self._redis.xadd, self._stream, fields,
                maxlen=self._maxlen, approximate=True
            )
        else:
            entry_id = await self._run("publish", self._redis.xadd, self._stream, fields)

        logger.debug("message_published", key=key, entry_id=_as_text(entry_id))
        return _as_text(entry_id)

    async def _read(self, stream_id: str, block: Optional[int]):
        return await self._redis.xreadgroup(
            groupname=self._group,
            consumername=self._consumer,
            streams={self._stream: stream_id},
            count=1,
            block=block,
        )

    async def fetch(self) -> Optional[ChannelMessage]:
        """
        Fetch the next entry for this consumer.

        Returns:
            ChannelMessage, or None if nothing arrived within the block timeout
        """
        if self._drain_pending:
            message = self._first_message(await self._run("fetch", self._read, "0", None))
            if message is not None:
                logger.info("redelivering_pending_message", entry_id=message.entry_id, key=message.key)
                return message
            self._drain_pending = False

        return self._first_message(await self._run("fetch", self._read, ">", self._block_ms))

    @staticmethod
    def _first_message(response) -> Optional[ChannelMessage]:
        if not response:
            return None

        for _stream_name, entries in response:
            for entry_id, data in entries:
                data = data or {}
                fields = {_as_text(k): v for k, v in data.items()}
                return ChannelMessage(
                    entry_id=_as_text(entry_id),
                    key=_as_text(fields.get("key", "")),
                    value=_as_bytes(fields.get("payload"))
                )

        return None

    async def commit(self, message: ChannelMessage) -> None:
        """Acknowledge a processed entry."""
        await self._run("commit", self._redis.xack, self._stream, self._group, message.entry_id)
        logger.debug("message_committed", entry_id=message.entry_id, key=message.key)
