from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import suppress
from datetime import date, datetime
from typing import Any, Awaitable, Callable

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .errors import StorageUnavailableError

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
_redis = None
logger = logging.getLogger(__name__)

# failures after which a stream resubscribes instead of ending
TRANSIENT_ERRORS = (StorageUnavailableError, RedisConnectionError, RedisTimeoutError, OSError)


async def get_redis():
    global _redis
    if _redis is None:
        if os.getenv("TESTING") == "1":
            from fakeredis import aioredis
            _redis = aioredis.FakeRedis()
        else:
            _redis = redis.from_url(REDIS_URL)
    return _redis


def reset_redis() -> None:
    global _redis
    _redis = None


async def close_redis() -> None:
    # purpose: release the client before its event loop closes (CLI runs one loop per command)
    global _redis
    if _redis is not None:
        with suppress(AttributeError):
            await _redis.aclose()
    _redis = None


def _json_default(value: Any) -> Any:
    # purpose: convert date and datetime objects to ISO strings for snapshot payloads
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _serialize_event(event: Any) -> str:
    # purpose: normalise snapshot payloads into JSON strings for redis pub/sub
    return json.dumps(event, default=_json_default)


def channel_for(collection: str) -> str:
    return f"storage:{collection}"


async def publish_snapshot(collection: str, snapshot: Any) -> None:
    """Broadcast the full value of a collection to its subscribers."""

    # purpose: fan out full-snapshot replacements after every accepted mutation
    r = await get_redis()
    await r.publish(channel_for(collection), _serialize_event(snapshot))


class SnapshotStream:
    """Lazy, infinite sequence of full snapshots published on one channel.

    The first item is the current value (when ``initial`` is given), every
    following item is the value broadcast after a change. Iteration ends only
    after ``unsubscribe()``; an abandoned stream never yields again.

    When the backend or the channel drops, the stream resubscribes with
    backoff and yields the reloaded current value first, so consumers never
    see the interruption as the end of the stream.
    """

    # purpose: push-stream view of a pub/sub channel with explicit cancellation
    # inputs: collection name, optional loader for the current value, optional selector
    # outputs: decoded snapshot values in broadcast order
    # status: active

    def __init__(
        self,
        collection: str,
        *,
        initial: Callable[[], Awaitable[Any]] | None = None,
        select: Callable[[Any], Any] | None = None,
        poll_interval: float = 0.05,
        retry_delay: float = 0.5,
        max_retry_delay: float = 10.0,
        on_error: Callable[[Exception], None] | None = None,
        on_recover: Callable[[], None] | None = None,
    ) -> None:
        self.collection = collection
        self.channel = channel_for(collection)
        self._initial = initial
        self._select = select or (lambda value: value)
        self._poll_interval = poll_interval
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay
        self._on_error = on_error
        self._on_recover = on_recover
        self._failures = 0
        self._pubsub = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "SnapshotStream":
        return self

    async def __anext__(self) -> Any:
        while not self._closed:
            try:
                value = await self._next_value()
            except TRANSIENT_ERRORS as exc:
                if self._closed:
                    break
                await self._backoff(exc)
                continue
            if self._failures:
                logger.info("snapshot stream for %s resumed", self.collection)
                self._failures = 0
                if self._on_recover is not None:
                    self._on_recover()
            return value
        raise StopAsyncIteration

    async def _next_value(self) -> Any:
        if self._pubsub is None:
            r = await get_redis()
            self._pubsub = r.pubsub()
            # subscribe before loading the initial value so no change is missed
            await self._pubsub.subscribe(self.channel)
            if self._initial is not None:
                return await self._initial()
        while not self._closed:
            message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if not message or message.get("type") != "message":
                await asyncio.sleep(self._poll_interval)
                continue
            data = message.get("data")
            if isinstance(data, bytes):
                data = data.decode()
            return self._select(json.loads(data))
        raise StopAsyncIteration

    async def _backoff(self, exc: Exception) -> None:
        self._failures += 1
        delay = min(self._retry_delay * 2 ** (self._failures - 1), self._max_retry_delay)
        logger.warning(
            "snapshot stream for %s interrupted (%s), retrying in %.2fs", self.collection, exc, delay
        )
        await self._release()
        if self._on_error is not None:
            self._on_error(exc)
        await asyncio.sleep(delay)

    async def _release(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        with suppress(Exception):
            await pubsub.unsubscribe(self.channel)
        with suppress(AttributeError, RedisConnectionError, OSError):
            await pubsub.aclose()

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._release()
