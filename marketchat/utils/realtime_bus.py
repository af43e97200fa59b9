import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from marketchat.errors import Unknown


logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Union[Awaitable[None], None]]


def message_channel(user_id: str) -> str:
    return f"messages:{user_id}"


def read_channel(user_id: str) -> str:
    return f"reads:{user_id}"


async def _dispatch(on_message: OnMessage, data: str, channel: str) -> None:
    try:
        result = on_message(data)
        if inspect.isawaitable(result):
            await result
    except Exception:
        # one bad consumer must not stop delivery to the others
        logger.exception("Subscriber on %s failed to handle an event", channel)


class Subscription:
    """Handle for a live channel listener; ``cancel`` must run on teardown."""

    channel: str

    @property
    def active(self) -> bool:
        raise NotImplementedError

    async def cancel(self) -> None:
        raise NotImplementedError

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cancel()


class _LocalSub(Subscription):

    def __init__(self, bus: "LocalBus", channel: str, on_message: OnMessage) -> None:
        self._bus = bus
        self.channel = channel
        self.on_message = on_message
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._bus._remove(self)


class LocalBus:
    """In-process fanout, used when no Redis is configured."""

    name = "local"

    def __init__(self) -> None:
        self._subs: Dict[str, List[_LocalSub]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for sub in list(self._subs.get(channel, [])):
            if sub.active:
                await _dispatch(sub.on_message, message, channel)

    async def subscribe(self, channel: str, on_message: OnMessage) -> Subscription:
        sub = _LocalSub(self, channel, on_message)
        self._subs.setdefault(channel, []).append(sub)
        return sub

    def subscriber_count(self, channel: str) -> int:
        return len(self._subs.get(channel, []))

    def _remove(self, sub: _LocalSub) -> None:
        subs = self._subs.get(sub.channel)
        if not subs:
            return
        try:
            subs.remove(sub)
        except ValueError:
            pass
        if not subs:
            del self._subs[sub.channel]

    async def close(self) -> None:
        self._subs.clear()


class _RedisSub(Subscription):

    def __init__(self, pubsub: Any, channel: str, on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self.channel = channel
        self._on_message = on_message
        self._running = True
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._running

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Redis subscription on %s failed, retrying", self.channel)
                await asyncio.sleep(0.5)
                continue
            if msg and msg.get("type") == "message":
                data = msg.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                await _dispatch(self._on_message, data, self.channel)

    async def cancel(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        try:
            await self._pubsub.unsubscribe(self.channel)
        finally:
            await self._pubsub.aclose()


class RedisBus:

    name = "redis"

    def __init__(self, url: str) -> None:
        import redis.asyncio as redis

        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        from redis.exceptions import RedisError

        try:
            await self._redis.publish(channel, message)
        except RedisError as exc:
            raise Unknown(f"publish to {channel} failed: {exc}") from exc

    async def subscribe(self, channel: str, on_message: OnMessage) -> Subscription:
        from redis.exceptions import RedisError

        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as exc:
            await pubsub.aclose()
            raise Unknown(f"subscribe to {channel} failed: {exc}") from exc
        sub = _RedisSub(pubsub, channel, on_message)
        sub.start()
        return sub

    async def close(self) -> None:
        await self._redis.aclose()


def create_bus(redis_url: Optional[str] = None):
    bus = RedisBus(redis_url) if redis_url else LocalBus()
    logger.info("Realtime bus: %s", bus.name)
    return bus
