"""
Repository implementations - Data access layer
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

from ..config import settings
from ..domain.models import (
    Connection,
    ConnectionStatus,
    Gender,
    Message,
    Profile,
    ProfileBrief,
)
from ..domain.repositories import (
    IConnectionRepository,
    IMessageRepository,
    IProfileRepository,
)
from ..errors import ConflictError, DuplicateConnectionError, PermissionDeniedError
from .database import Database

logger = logging.getLogger(__name__)

BRIEF_COLUMNS = "id::text AS id, first_name, age, city, state, location, photos"

PROFILE_COLUMNS = (
    "id::text AS id, first_name, age, city, state, location, gender, occupation, "
    "education, marital_status, prayer_status, revert_status, sect, hide_sect, "
    "bio, photos, video, is_public, updated_at"
)

CONNECTION_COLUMNS = (
    "id::text AS id, requester_id::text AS requester_id, "
    "receiver_id::text AS receiver_id, status, created_at"
)

MESSAGE_COLUMNS = (
    "id::text AS id, connection_id::text AS connection_id, "
    "sender_id::text AS sender_id, content, client_id, created_at"
)


def _photos(value: Optional[List[str]]) -> List[str]:
    return list(value or [])[: settings.MAX_PHOTOS]


def row_to_brief(row: Optional[Dict[str, Any]]) -> Optional[ProfileBrief]:
    """Convert database row to ProfileBrief model"""
    if not row:
        return None
    return ProfileBrief(
        id=row["id"],
        first_name=row.get("first_name"),
        age=row.get("age"),
        city=row.get("city"),
        state=row.get("state"),
        location=row.get("location"),
        photos=_photos(row.get("photos")),
    )


def row_to_profile(row: Optional[Dict[str, Any]]) -> Optional[Profile]:
    """Convert database row to Profile model"""
    if not row:
        return None
    data = dict(row)
    data["gender"] = Gender.normalize(data.get("gender"))
    data["photos"] = _photos(data.get("photos"))
    data["hide_sect"] = bool(data.get("hide_sect"))
    data["is_public"] = bool(data.get("is_public"))
    return Profile(**data)


def row_to_connection(row: Optional[Dict[str, Any]]) -> Optional[Connection]:
    """Convert database row to Connection model"""
    if not row:
        return None
    data = dict(row)
    data["status"] = ConnectionStatus(data["status"])
    return Connection(**data)


def row_to_message(row: Optional[Dict[str, Any]]) -> Optional[Message]:
    """Convert database row to Message model"""
    if not row:
        return None
    return Message(**row)


class ProfileRepository(IProfileRepository):
    """Profile repository implementation using PostgreSQL"""

    def __init__(self, db: Database):
        self.db = db

    async def find_by_id(self, user_id: str) -> Optional[Profile]:
        row = await self.db.fetch_one(
            f"SELECT {PROFILE_COLUMNS} FROM profiles WHERE id = $1::uuid",
            user_id,
        )
        return row_to_profile(row)

    async def get_gender(self, user_id: str) -> Gender:
        value = await self.db.fetch_value(
            "SELECT gender FROM profiles WHERE id = $1::uuid",
            user_id,
        )
        return Gender.normalize(value)

    async def get_briefs(self, user_ids: Iterable[str]) -> Dict[str, ProfileBrief]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        rows = await self.db.fetch_all(
            f"SELECT {BRIEF_COLUMNS} FROM profiles WHERE id = ANY($1::uuid[])",
            ids,
        )
        return {row["id"]: row_to_brief(row) for row in rows}

    async def search(
        self,
        viewer_id: str,
        gender: Gender,
        age_min: Optional[int] = None,
        age_max: Optional[int] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        prayer_status: Optional[str] = None,
        limit: int = 24,
        offset: int = 0,
    ) -> List[Profile]:
        # Build dynamic filter list
        conditions = ["is_public = true", "id <> $1::uuid", "lower(gender) = $2"]
        values: List[Any] = [viewer_id, gender.value]

        def add(condition: str, value: Any):
            values.append(value)
            conditions.append(condition.format(n=len(values)))

        if age_min is not None:
            add("age >= ${n}", age_min)
        if age_max is not None:
            add("age <= ${n}", age_max)
        if city:
            add("city ILIKE ${n}", f"%{city}%")
        if state:
            add("state ILIKE ${n}", f"%{state}%")
        if prayer_status:
            add("prayer_status = ${n}", prayer_status)

        values.extend([limit, offset])
        query = f"""
            SELECT {PROFILE_COLUMNS}
            FROM profiles
            WHERE {" AND ".join(conditions)}
            ORDER BY updated_at DESC, id
            LIMIT ${len(values) - 1} OFFSET ${len(values)}
        """
        rows = await self.db.fetch_all(query, *values)
        return [row_to_profile(row) for row in rows]

    async def record_view(self, viewer_id: str, viewed_id: str) -> None:
        await self.db.execute(
            "INSERT INTO profile_view_events (viewer_id, viewed_id) VALUES ($1::uuid, $2::uuid)",
            viewer_id,
            viewed_id,
        )

    async def count_views_since(self, user_id: str, since: datetime) -> int:
        count = await self.db.fetch_value(
            """
            SELECT COUNT(*) FROM profile_view_events
            WHERE viewed_id = $1::uuid AND created_at >= $2
            """,
            user_id,
            since,
        )
        return count or 0


class ConnectionRepository(IConnectionRepository):
    """Connection repository implementation using PostgreSQL"""

    def __init__(self, db: Database):
        self.db = db

    async def create(self, requester_id: str, receiver_id: str) -> Connection:
        try:
            row = await self.db.fetch_one(
                f"""
                INSERT INTO connections (requester_id, receiver_id, status)
                VALUES ($1::uuid, $2::uuid, 'pending')
                RETURNING {CONNECTION_COLUMNS}
                """,
                requester_id,
                receiver_id,
            )
        except ConflictError as e:
            raise DuplicateConnectionError() from e
        return row_to_connection(row)

    async def find_by_id(self, connection_id: str) -> Optional[Connection]:
        row = await self.db.fetch_one(
            f"SELECT {CONNECTION_COLUMNS} FROM connections WHERE id = $1::uuid",
            connection_id,
        )
        return row_to_connection(row)

    async def update_status(
        self,
        connection_id: str,
        receiver_id: str,
        status: ConnectionStatus,
    ) -> Optional[Connection]:
        row = await self.db.fetch_one(
            f"""
            UPDATE connections
            SET status = $3
            WHERE id = $1::uuid AND receiver_id = $2::uuid AND status = 'pending'
            RETURNING {CONNECTION_COLUMNS}
            """,
            connection_id,
            receiver_id,
            status.value,
        )
        return row_to_connection(row)

    async def list_incoming_pending(self, receiver_id: str) -> List[Connection]:
        rows = await self.db.fetch_all(
            f"""
            SELECT {CONNECTION_COLUMNS}
            FROM connections
            WHERE receiver_id = $1::uuid AND status = 'pending'
            ORDER BY created_at DESC
            """,
            receiver_id,
        )
        return [row_to_connection(row) for row in rows]

    async def list_accepted(self, user_id: str) -> List[Connection]:
        rows = await self.db.fetch_all(
            f"""
            SELECT {CONNECTION_COLUMNS}
            FROM connections
            WHERE status = 'accepted' AND (requester_id = $1::uuid OR receiver_id = $1::uuid)
            ORDER BY created_at DESC
            """,
            user_id,
        )
        return [row_to_connection(row) for row in rows]

    async def count(self, user_id: str, status: ConnectionStatus, incoming_only: bool = False) -> int:
        side = "receiver_id = $1::uuid" if incoming_only else "(requester_id = $1::uuid OR receiver_id = $1::uuid)"
        count = await self.db.fetch_value(
            f"SELECT COUNT(*) FROM connections WHERE {side} AND status = $2",
            user_id,
            status.value,
        )
        return count or 0


class MessageRepository(IMessageRepository):
    """Message repository implementation using PostgreSQL

    Inserted rows are handed to ``publisher`` after commit so that live
    subscribers of the thread see them.
    """

    def __init__(self, db: Database, publisher=None):
        self.db = db
        self.publisher = publisher

    async def list_for_connection(self, connection_id: str) -> List[Message]:
        rows = await self.db.fetch_all(
            f"""
            SELECT {MESSAGE_COLUMNS}
            FROM messages
            WHERE connection_id = $1::uuid
            ORDER BY created_at ASC, id
            """,
            connection_id,
        )
        return [row_to_message(row) for row in rows]

    async def create(
        self,
        connection_id: str,
        sender_id: str,
        content: str,
        client_id: Optional[str] = None,
    ) -> Message:
        # Only participants of an accepted connection may write; a repeated
        # client_id returns the row already stored for it.
        row = await self.db.fetch_one(
            f"""
            INSERT INTO messages (connection_id, sender_id, content, client_id)
            SELECT c.id, $2::uuid, $3, $4
            FROM connections c
            WHERE c.id = $1::uuid
              AND c.status = 'accepted'
              AND $2::uuid IN (c.requester_id, c.receiver_id)
            ON CONFLICT (sender_id, client_id) DO UPDATE SET client_id = EXCLUDED.client_id
            RETURNING {MESSAGE_COLUMNS}
            """,
            connection_id,
            sender_id,
            content,
            client_id,
        )
        if row is None:
            raise PermissionDeniedError(
                "You are not allowed to send messages to this user yet (connection must be accepted)."
            )

        message = row_to_message(row)
        if self.publisher is not None:
            await self.publisher.publish_insert(message)
        return message

    async def latest_for_connections(self, connection_ids: Iterable[str]) -> Dict[str, Message]:
        ids = list(dict.fromkeys(connection_ids))
        if not ids:
            return {}
        rows = await self.db.fetch_all(
            f"""
            SELECT DISTINCT ON (connection_id) {MESSAGE_COLUMNS}
            FROM messages
            WHERE connection_id = ANY($1::uuid[])
            ORDER BY connection_id, created_at DESC, id DESC
            """,
            ids,
        )
        return {row["connection_id"]: row_to_message(row) for row in rows}
