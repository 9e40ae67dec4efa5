"""
Realtime message feed over Redis Pub/Sub

Every inserted message is published to ``messages:connection:{id}``.
A subscription owns its own Pub/Sub connection and listener task, so
closing it stops delivery for that thread only.
"""
from typing import Optional
import asyncio
import logging

import redis.asyncio as redis
from pydantic import ValidationError as PayloadError

from ..config import settings
from ..domain.models import Message
from ..domain.repositories import IMessageFeed, MessageHandler, Subscription
from ..schemas import MessageEvent
from .cache import redis_url

logger = logging.getLogger(__name__)


def channel_name(connection_id: str) -> str:
    """Channel carrying inserts for one connection"""
    return f"messages:connection:{connection_id}"


class RedisSubscription(Subscription):
    """Live feed for one connection"""

    def __init__(self, connection_id: str, pubsub, handler: MessageHandler):
        self.connection_id = connection_id
        self.pubsub = pubsub
        self.handler = handler
        self.task: Optional[asyncio.Task] = None
        self._confirmed = False
        self._closed = False

    @property
    def confirmed(self) -> bool:
        return self._confirmed and not self._closed

    async def start(self):
        await self.pubsub.subscribe(channel_name(self.connection_id))
        self.task = asyncio.create_task(self._listen_loop())

    async def _listen_loop(self):
        """Read Pub/Sub messages until closed"""
        try:
            while not self._closed:
                raw = await self.pubsub.get_message(timeout=1.0)
                if raw is None:
                    continue
                if raw["type"] == "subscribe":
                    self._confirmed = True
                    logger.info(f"Live feed confirmed for connection {self.connection_id}")
                elif raw["type"] == "message":
                    await self._dispatch(raw["data"])
        except asyncio.CancelledError:
            pass
        except Exception as e:
            # Feed is lost; the channel falls back to polling
            self._confirmed = False
            logger.error(f"Live feed for connection {self.connection_id} stopped: {e}")

    async def _dispatch(self, data: str):
        try:
            message = MessageEvent.model_validate_json(data).to_message()
        except PayloadError as e:
            logger.warning(f"Dropping malformed feed payload: {e}")
            return
        if message.connection_id != self.connection_id:
            return
        try:
            await self.handler(message)
        except Exception as e:
            logger.error(f"Error handling feed event {message.id}: {e}")

    async def close(self):
        if self._closed:
            return
        self._closed = True
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        try:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
        except Exception as e:
            logger.warning(f"Error closing feed for connection {self.connection_id}: {e}")
        logger.info(f"Live feed closed for connection {self.connection_id}")


class RedisMessageFeed(IMessageFeed):
    """Publishes message inserts and hands out per-connection subscriptions"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis: Optional[redis.Redis] = client
        self.messages_published = 0

    async def connect(self):
        """Connect to Redis"""
        if not settings.REDIS_ENABLED:
            logger.info("Redis is disabled; live feed unavailable, polling only")
            return

        try:
            self.redis = redis.from_url(
                redis_url(),
                password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                encoding="utf-8",
                decode_responses=True,
            )
            await self.redis.ping()
            logger.info("Live feed connected to Redis")
        except Exception as e:
            logger.warning(f"Failed to connect live feed to Redis: {e}. Polling only.")
            self.redis = None

    async def disconnect(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Live feed disconnected")

    async def publish_insert(self, message: Message):
        """Announce an inserted message to subscribers of its connection"""
        if not self.redis:
            logger.debug(f"Live feed disabled, skipping insert event {message.id}")
            return

        try:
            payload = MessageEvent.from_message(message).model_dump_json()
            await self.redis.publish(channel_name(message.connection_id), payload)
            self.messages_published += 1
        except Exception as e:
            logger.error(f"Error publishing insert event {message.id}: {e}")

    async def subscribe(self, connection_id: str, on_insert: MessageHandler) -> Subscription:
        if not self.redis:
            return UnconfirmedSubscription(connection_id)

        subscription = RedisSubscription(connection_id, self.redis.pubsub(), on_insert)
        try:
            await subscription.start()
        except Exception as e:
            logger.warning(f"Could not subscribe to connection {connection_id}: {e}")
            await subscription.close()
            return UnconfirmedSubscription(connection_id)
        return subscription


class UnconfirmedSubscription(Subscription):
    """Stand-in when no live feed is available; never confirms"""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id

    @property
    def confirmed(self) -> bool:
        return False

    async def close(self):
        pass


# Global feed instance
message_feed = RedisMessageFeed()
