"""
AM4M social client - wires stores, cache, live feed and session together
"""
from typing import Optional
import logging

from .application.connections import ConnectionBoard, ConnectionService
from .application.conversations import ConversationProjection
from .application.messages import MessageChannel
from .application.profiles import ProfileDirectory
from .config import settings
from .infrastructure.cache import CachedProfileRepository, RedisCache, cache
from .infrastructure.database import Database, db
from .infrastructure.realtime import RedisMessageFeed, message_feed
from .infrastructure.repositories import (
    ConnectionRepository,
    MessageRepository,
    ProfileRepository,
)
from .infrastructure.session import AuthServiceSession

logger = logging.getLogger(__name__)


def configure_logging():
    """Configure root logging"""
    logging.basicConfig(
        level=logging.INFO if not settings.DEBUG else logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class SocialClient:
    """Owns connection lifecycles and hands out the application components"""

    def __init__(
        self,
        database: Optional[Database] = None,
        redis_cache: Optional[RedisCache] = None,
        feed: Optional[RedisMessageFeed] = None,
        session: Optional[AuthServiceSession] = None,
    ):
        self.db = database or db
        self.cache = redis_cache or cache
        self.feed = feed or message_feed
        self.session = session or AuthServiceSession()

        self.profiles = CachedProfileRepository(ProfileRepository(self.db), self.cache)
        self.connections = ConnectionRepository(self.db)
        self.messages = MessageRepository(self.db, publisher=self.feed)
        self.connection_service = ConnectionService(self.connections, self.profiles, cache=self.cache)

    async def start(self, create_schema: bool = False):
        logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION}...")

        await self.db.connect()
        logger.info("Database connected")
        if create_schema:
            await self.db.create_schema()

        await self.cache.connect()
        logger.info("Redis cache initialized")

        await self.feed.connect()
        logger.info("Message feed initialized")

        await self.session.start()
        logger.info(f"{settings.APP_NAME} started successfully")

    async def stop(self):
        logger.info(f"Shutting down {settings.APP_NAME}...")

        await self.session.stop()
        await self.feed.disconnect()
        await self.cache.disconnect()
        await self.db.disconnect()

        logger.info(f"{settings.APP_NAME} shut down successfully")

    async def __aenter__(self) -> "SocialClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # Component factories

    def connection_board(self) -> ConnectionBoard:
        return ConnectionBoard(self.connection_service, self.session)

    def message_channel(self) -> MessageChannel:
        return MessageChannel(self.messages, self.feed, self.session)

    def conversations(self) -> ConversationProjection:
        return ConversationProjection(self.connections, self.messages, self.profiles)

    def directory(self) -> ProfileDirectory:
        return ProfileDirectory(self.profiles)
