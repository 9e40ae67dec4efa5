"""
Database connection and operations
"""
import asyncio
from contextlib import contextmanager
from typing import Any, Dict, List, Optional
import logging

import asyncpg

from ..config import settings
from ..errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
)

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS profiles (
    id UUID PRIMARY KEY,
    first_name TEXT,
    age INTEGER,
    city TEXT,
    state TEXT,
    location TEXT,
    gender TEXT,
    occupation TEXT,
    education TEXT,
    marital_status TEXT,
    prayer_status TEXT,
    revert_status TEXT,
    sect TEXT,
    hide_sect BOOLEAN NOT NULL DEFAULT false,
    bio TEXT,
    photos TEXT[] NOT NULL DEFAULT '{}',
    video TEXT,
    is_public BOOLEAN NOT NULL DEFAULT false,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS connections (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    requester_id UUID NOT NULL,
    receiver_id UUID NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'accepted', 'declined')),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CHECK (requester_id <> receiver_id)
);

CREATE UNIQUE INDEX IF NOT EXISTS connections_pair_key
    ON connections (LEAST(requester_id, receiver_id), GREATEST(requester_id, receiver_id));
CREATE INDEX IF NOT EXISTS connections_receiver_status_idx ON connections (receiver_id, status);

CREATE TABLE IF NOT EXISTS messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    connection_id UUID NOT NULL REFERENCES connections (id),
    sender_id UUID NOT NULL,
    content TEXT NOT NULL CHECK (length(btrim(content)) > 0),
    client_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
);

CREATE INDEX IF NOT EXISTS messages_connection_created_idx ON messages (connection_id, created_at);
CREATE UNIQUE INDEX IF NOT EXISTS messages_client_id_key ON messages (sender_id, client_id);

CREATE TABLE IF NOT EXISTS profile_view_events (
    viewer_id UUID NOT NULL,
    viewed_id UUID NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS profile_view_events_viewed_idx ON profile_view_events (viewed_id, created_at);
"""


@contextmanager
def translate_errors():
    """Re-raise driver errors as client errors"""
    try:
        yield
    except asyncpg.UniqueViolationError as e:
        raise ConflictError(str(e)) from e
    except asyncpg.InsufficientPrivilegeError as e:
        raise PermissionDeniedError(str(e)) from e
    except asyncpg.ForeignKeyViolationError as e:
        raise NotFoundError("This conversation is not available") from e
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
        logger.error(f"Database error: {e}")
        raise TransportError() from e


class Database:
    """PostgreSQL database connection manager using asyncpg"""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or settings.DATABASE_URL
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Create database connection pool"""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=settings.DB_POOL_SIZE,
                command_timeout=settings.DB_COMMAND_TIMEOUT,
            )
            logger.info("Database connection pool created successfully")
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    async def disconnect(self):
        """Close database connection pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Database connection pool closed")

    async def create_schema(self):
        """Create tables and indexes if missing"""
        await self.execute(SCHEMA_SQL)
        logger.info("Database schema ensured")

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise TransportError("Database is not connected")
        return self.pool

    async def fetch_one(self, query: str, *args) -> Optional[Dict[str, Any]]:
        """Fetch a single row"""
        with translate_errors():
            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None

    async def fetch_all(self, query: str, *args) -> List[Dict[str, Any]]:
        """Fetch all rows"""
        with translate_errors():
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch(query, *args)
                return [dict(row) for row in rows]

    async def fetch_value(self, query: str, *args) -> Any:
        """Fetch the first column of the first row"""
        with translate_errors():
            async with self._require_pool().acquire() as conn:
                return await conn.fetchval(query, *args)

    async def execute(self, query: str, *args) -> str:
        """Execute a query"""
        with translate_errors():
            async with self._require_pool().acquire() as conn:
                return await conn.execute(query, *args)


# Global database instance
db = Database()
