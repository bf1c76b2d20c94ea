import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, Optional, Set

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from atelier.core.config import settings

logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]


class ChannelClosedError(Exception):
    """The underlying channel dropped; events may have been missed."""

    def __init__(self, channel: str) -> None:
        super().__init__(f"channel {channel} closed")
        self.channel = channel


_STOP = object()
_DROPPED = object()


class _MemorySubscription:

    def __init__(self, bus: "InMemoryBus", channel: str, on_message: OnMessage) -> None:
        self._bus = bus
        self.channel = channel
        self._on_message = on_message
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._cancelled = False

    def deliver(self, item) -> None:
        # publishers may live on another thread / event loop
        if self._loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait(item)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    async def run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            if item is _DROPPED:
                raise ChannelClosedError(self.channel)
            await self._on_message(item)

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._bus._remove(self)
        self.deliver(_STOP)


class InMemoryBus:
    """Single-process fan-out, one FIFO queue per subscription."""

    def __init__(self) -> None:
        self._channels: Dict[str, Set[_MemorySubscription]] = {}
        self._lock = threading.Lock()

    async def publish(self, channel: str, message: str) -> None:
        with self._lock:
            targets = list(self._channels.get(channel, ()))
        for sub in targets:
            sub.deliver(message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> _MemorySubscription:
        sub = _MemorySubscription(self, channel, on_message)
        with self._lock:
            self._channels.setdefault(channel, set()).add(sub)
        return sub

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._channels.get(channel, ()))

    def drop_channel(self, channel: str) -> None:
        """Disconnect every subscriber of ``channel`` as a broker restart would."""
        with self._lock:
            targets = self._channels.pop(channel, set())
        for sub in targets:
            sub._cancelled = True
            sub.deliver(_DROPPED)

    def _remove(self, sub: _MemorySubscription) -> None:
        with self._lock:
            subs = self._channels.get(sub.channel)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._channels[sub.channel]


class _RedisSubscription:

    def __init__(self, pubsub, channel: str, on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self.channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        try:
            while self._running:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if msg and msg.get("type") == "message":
                    data = msg.get("data")
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")
                    await self._on_message(data)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            if self._running:
                raise ChannelClosedError(self.channel) from exc

    async def cancel(self) -> None:
        if not self._running:
            return
        self._running = False
        try:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
        except RedisError:
            logger.debug("Failed to release redis subscription on %s", self.channel, exc_info=True)


class RedisBus:

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> _RedisSubscription:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise ChannelClosedError(channel) from exc
        return _RedisSubscription(pubsub, channel, on_message)


_bus: Optional[object] = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    if settings.REDIS_URL:
        _bus = RedisBus(settings.REDIS_URL)
    else:
        _bus = InMemoryBus()
    return _bus
