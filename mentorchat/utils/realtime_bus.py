import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis

from mentorchat.core.config import get_settings

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]


def conversations_channel(user_id: str) -> str:
    return f"conversations:{user_id}"


def messages_channel(conversation_id: str) -> str:
    return f"messages:{conversation_id}"


class LocalBus:
    """In-process fan-out, used when no Redis is configured."""

    enabled = False

    def __init__(self) -> None:
        self._handlers: Dict[str, List[MessageHandler]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for handler in list(self._handlers.get(channel, [])):
            try:
                await handler(message)
            except Exception:
                logger.exception("Local bus handler failed on %s", channel)

    async def subscribe(self, channel: str, on_message: MessageHandler):
        self._handlers.setdefault(channel, []).append(on_message)
        bus = self

        class _Sub:
            def __init__(self_inner) -> None:
                self_inner._stopped = asyncio.Event()

            async def run(self_inner):
                await self_inner._stopped.wait()

            async def cancel(self_inner):
                bus._remove(channel, on_message)
                self_inner._stopped.set()

        return _Sub()

    def subscriber_count(self, channel: str) -> int:
        return len(self._handlers.get(channel, []))

    def _remove(self, channel: str, handler: MessageHandler) -> None:
        handlers = self._handlers.get(channel)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            pass
        if not handlers:
            del self._handlers[channel]


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: MessageHandler):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                        if msg and msg.get("type") == "message":
                            data = msg.get("data")
                            if isinstance(data, bytes):
                                data = data.decode("utf-8")
                            await on_message(data)
                    except Exception:
                        logger.warning("Redis subscription on %s failed, retrying", channel, exc_info=True)
                        await asyncio.sleep(0.5)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except Exception:
                    logger.debug("Redis unsubscribe from %s failed", channel, exc_info=True)

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus: Optional[object] = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().redis_url
    _bus = RedisBus(url) if url else LocalBus()
    logger.info("Realtime bus: %s", type(_bus).__name__)
    return _bus


async def close_bus() -> None:
    global _bus
    if isinstance(_bus, RedisBus):
        await _bus.close()
    _bus = None
