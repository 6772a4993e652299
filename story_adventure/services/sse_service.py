import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import redis.asyncio as redis

from story_adventure.core.config import settings

logger = logging.getLogger(__name__)

# Events after which an extension stream has nothing more to say
TERMINAL_EVENTS = ("extension_complete", "extension_failed")


def story_channel(key: str) -> str:
    return f"story:{key}"


class RedisClient:
    def __init__(self, url):
        self.redis_url = url
        self.redis_pool: Optional[redis.ConnectionPool] = None

    @property
    def connected(self) -> bool:
        return self.redis_pool is not None

    async def connect(self):
        self.redis_pool = redis.ConnectionPool.from_url(self.redis_url, decode_responses=True)

    async def close(self):
        if self.redis_pool:
            await self.redis_pool.disconnect()
            self.redis_pool = None

    async def publish(self, channel: str, message: dict):
        """
        Publishes a message to a Redis channel. Without a connection (CLI use,
        tests) the message is only logged.
        """
        if not self.connected:
            logger.debug(f"Redis not connected, dropping event for {channel}: {message.get('event')}")
            return
        async with redis.Redis(connection_pool=self.redis_pool) as r:
            await r.publish(channel, json.dumps(message, ensure_ascii=False))

    async def listen(self, channel: str) -> AsyncIterator[str]:
        """
        Listens to a Redis channel and yields messages.
        """
        async with redis.Redis(connection_pool=self.redis_pool) as r:
            pubsub = r.pubsub()
            await pubsub.subscribe(channel)
            try:
                while True:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=20)
                    if message:
                        yield message['data']
                    await asyncio.sleep(0.01)
            finally:
                await pubsub.unsubscribe(channel)

redis_client = RedisClient(settings.REDIS_URL)


async def publish_story_event(key: Optional[str], event: str, **data):
    """
    Publishes an extension progress event on the story's channel.
    """
    if key is None:
        return
    await redis_client.publish(story_channel(key), {"event": event, **data})


def format_sse(message: str) -> str:
    """
    Formats a channel message as a Server-Sent Event, naming the event after
    the message's "event" field.
    """
    try:
        data = json.loads(message)
    except json.JSONDecodeError:
        return f"event: message\ndata: {message}\n\n"
    event_name = data.get("event", "message") if isinstance(data, dict) else "message"
    return f"event: {event_name}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


async def sse_generator(key: str):
    """
    Streams a story's channel as Server-Sent Events until the running
    extension completes or fails.
    """
    async for message in redis_client.listen(story_channel(key)):
        yield format_sse(message)
        try:
            event = json.loads(message).get("event")
        except (json.JSONDecodeError, AttributeError):
            continue
        if event in TERMINAL_EVENTS:
            break
