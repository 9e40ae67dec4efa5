import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import pytest
import pytest_asyncio

from am4m_social.domain.models import (
    Connection,
    ConnectionStatus,
    Gender,
    Message,
    Profile,
    ProfileBrief,
)
from am4m_social.domain.repositories import (
    IConnectionRepository,
    IMessageFeed,
    IMessageRepository,
    IProfileRepository,
    ISessionProvider,
    SessionEvent,
    Subscription,
)
from am4m_social.errors import (
    DuplicateConnectionError,
    NotFoundError,
    PermissionDeniedError,
)

USER_X = "user-x"
USER_Y = "user-y"
USER_Z = "user-z"

NOT_ALLOWED = "You are not allowed to send messages to this user yet (connection must be accepted)."


class Clock:
    """Strictly increasing UTC timestamps"""

    def __init__(self):
        self.last = datetime.now(timezone.utc)

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        self.last = max(current, self.last + timedelta(microseconds=1))
        return self.last


class FakeProfileRepository(IProfileRepository):
    """In-memory profiles with call counters"""

    def __init__(self):
        self.profiles: Dict[str, Profile] = {}
        self.views: List[tuple] = []
        self.brief_calls = 0
        self.fail_views: Optional[Exception] = None

    def add(self, user_id: str, gender: Gender = Gender.UNSET, **fields) -> Profile:
        fields.setdefault("first_name", user_id.split("-")[-1].upper())
        fields.setdefault("is_public", True)
        fields.setdefault("updated_at", datetime.now(timezone.utc))
        profile = Profile(id=user_id, gender=gender, **fields)
        self.profiles[user_id] = profile
        return profile

    async def find_by_id(self, user_id: str) -> Optional[Profile]:
        return self.profiles.get(user_id)

    async def get_gender(self, user_id: str) -> Gender:
        profile = self.profiles.get(user_id)
        return profile.gender if profile else Gender.UNSET

    async def get_briefs(self, user_ids: Iterable[str]) -> Dict[str, ProfileBrief]:
        self.brief_calls += 1
        return {uid: self.profiles[uid].brief() for uid in set(user_ids) if uid in self.profiles}

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
        def matches(p: Profile) -> bool:
            if p.id == viewer_id or not p.is_public or p.gender is not gender:
                return False
            if age_min is not None and (p.age is None or p.age < age_min):
                return False
            if age_max is not None and (p.age is None or p.age > age_max):
                return False
            if city and city.lower() not in (p.city or "").lower():
                return False
            if state and state.lower() not in (p.state or "").lower():
                return False
            if prayer_status and p.prayer_status != prayer_status:
                return False
            return True

        rows = sorted(filter(matches, self.profiles.values()), key=lambda p: p.updated_at, reverse=True)
        return rows[offset: offset + limit]

    async def record_view(self, viewer_id: str, viewed_id: str) -> None:
        if self.fail_views is not None:
            raise self.fail_views
        self.views.append((viewer_id, viewed_id, datetime.now(timezone.utc)))

    async def count_views_since(self, user_id: str, since: datetime) -> int:
        return sum(1 for _, viewed, at in self.views if viewed == user_id and at >= since)


class FakeConnectionRepository(IConnectionRepository):
    """In-memory connections; the unordered pair is unique"""

    def __init__(self, clock: Clock):
        self.clock = clock
        self.rows: Dict[str, Connection] = {}
        self._ids = itertools.count(1)
        self.fail_next_update: Optional[Exception] = None
        self.update_gate: Optional[asyncio.Event] = None

    def add(self, requester_id: str, receiver_id: str, status=ConnectionStatus.PENDING) -> Connection:
        connection = Connection(
            id=f"conn-{next(self._ids)}",
            requester_id=requester_id,
            receiver_id=receiver_id,
            status=status,
            created_at=self.clock.now(),
        )
        self.rows[connection.id] = connection
        return connection

    async def create(self, requester_id: str, receiver_id: str) -> Connection:
        pair = {requester_id, receiver_id}
        if any({c.requester_id, c.receiver_id} == pair for c in self.rows.values()):
            raise DuplicateConnectionError()
        return self.add(requester_id, receiver_id)

    async def find_by_id(self, connection_id: str) -> Optional[Connection]:
        return self.rows.get(connection_id)

    async def update_status(self, connection_id: str, receiver_id: str, status: ConnectionStatus):
        if self.update_gate is not None:
            await self.update_gate.wait()
        if self.fail_next_update is not None:
            error, self.fail_next_update = self.fail_next_update, None
            raise error
        row = self.rows.get(connection_id)
        if row is None or row.receiver_id != receiver_id or row.status is not ConnectionStatus.PENDING:
            return None
        updated = row.with_status(status)
        self.rows[connection_id] = updated
        return updated

    async def list_incoming_pending(self, receiver_id: str) -> List[Connection]:
        rows = [
            c for c in self.rows.values()
            if c.receiver_id == receiver_id and c.status is ConnectionStatus.PENDING
        ]
        return sorted(rows, key=lambda c: c.created_at, reverse=True)

    async def list_accepted(self, user_id: str) -> List[Connection]:
        rows = [c for c in self.rows.values() if c.involves(user_id) and c.status is ConnectionStatus.ACCEPTED]
        return sorted(rows, key=lambda c: c.created_at, reverse=True)

    async def count(self, user_id: str, status: ConnectionStatus, incoming_only: bool = False) -> int:
        return sum(
            1 for c in self.rows.values()
            if c.status is status and (c.receiver_id == user_id if incoming_only else c.involves(user_id))
        )


class FakeMessageRepository(IMessageRepository):
    """In-memory messages gated on accepted connections, idempotent per client_id"""

    def __init__(self, connections: FakeConnectionRepository, clock: Clock, publisher=None):
        self.connections = connections
        self.clock = clock
        self.publisher = publisher
        self.rows: List[Message] = []
        self._ids = itertools.count(1)
        self.create_calls = 0
        self.list_calls = 0
        self.latest_calls = 0
        self.fail_next_create: Optional[Exception] = None
        self.fail_next_list: Optional[Exception] = None
        self.hang_creates = False
        self.create_gate: Optional[asyncio.Event] = None
        self.response_gate: Optional[asyncio.Event] = None
        self.list_gate: Optional[asyncio.Event] = None
        self.list_response_gate: Optional[asyncio.Event] = None

    def add(self, connection_id: str, sender_id: str, content: str, client_id: Optional[str] = None) -> Message:
        message = Message(
            id=f"msg-{next(self._ids)}",
            connection_id=connection_id,
            sender_id=sender_id,
            content=content,
            created_at=self.clock.now(),
            client_id=client_id,
        )
        self.rows.append(message)
        return message

    async def list_for_connection(self, connection_id: str) -> List[Message]:
        self.list_calls += 1
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.fail_next_list is not None:
            error, self.fail_next_list = self.fail_next_list, None
            raise error
        rows = [m for m in self.rows if m.connection_id == connection_id]
        if self.list_response_gate is not None:
            await self.list_response_gate.wait()
        return rows

    async def create(self, connection_id: str, sender_id: str, content: str, client_id: Optional[str] = None):
        self.create_calls += 1
        if self.hang_creates:
            await asyncio.Event().wait()
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.fail_next_create is not None:
            error, self.fail_next_create = self.fail_next_create, None
            raise error

        connection = self.connections.rows.get(connection_id)
        if connection is None:
            raise NotFoundError("This conversation is not available")
        if connection.status is not ConnectionStatus.ACCEPTED or not connection.involves(sender_id):
            raise PermissionDeniedError(NOT_ALLOWED)

        if client_id is not None:
            for m in self.rows:
                if m.sender_id == sender_id and m.client_id == client_id:
                    return m

        message = self.add(connection_id, sender_id, content, client_id)
        if self.publisher is not None:
            await self.publisher.publish_insert(message)
        if self.response_gate is not None:
            await self.response_gate.wait()
        return message

    async def latest_for_connections(self, connection_ids: Iterable[str]) -> Dict[str, Message]:
        self.latest_calls += 1
        ids = set(connection_ids)
        latest: Dict[str, Message] = {}
        for m in self.rows:
            if m.connection_id in ids:
                latest[m.connection_id] = m
        return latest


class FakeSubscription(Subscription):
    def __init__(self, connection_id: str, handler, confirmed: bool):
        self.connection_id = connection_id
        self.handler = handler
        self._confirmed = confirmed
        self.closed = False

    @property
    def confirmed(self) -> bool:
        return self._confirmed and not self.closed

    def confirm(self):
        self._confirmed = True

    async def close(self):
        self.closed = True


class FakeMessageFeed(IMessageFeed):
    """Fans inserts out to open subscriptions; can hold events back"""

    def __init__(self, auto_confirm: bool = True):
        self.auto_confirm = auto_confirm
        self.subscriptions: List[FakeSubscription] = []
        self.hold = False
        self.held: List[Message] = []

    async def subscribe(self, connection_id: str, on_insert) -> Subscription:
        subscription = FakeSubscription(connection_id, on_insert, self.auto_confirm)
        self.subscriptions.append(subscription)
        return subscription

    @property
    def open_subscriptions(self) -> List[FakeSubscription]:
        return [s for s in self.subscriptions if not s.closed]

    async def publish_insert(self, message: Message):
        if self.hold:
            self.held.append(message)
            return
        for subscription in self.open_subscriptions:
            if subscription.connection_id == message.connection_id:
                await subscription.handler(message)

    async def flush(self):
        self.hold = False
        held, self.held = self.held, []
        for message in held:
            await self.publish_insert(message)


class FakeSession(ISessionProvider):
    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._listeners = []

    @property
    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def add_listener(self, listener):
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def sign_in(self, user_id: str):
        if self._user_id is not None and self._user_id != user_id:
            await self.sign_out()
        self._user_id = user_id
        for listener in list(self._listeners):
            await listener(SessionEvent.SIGNED_IN, user_id)

    async def sign_out(self):
        self._user_id = None
        for listener in list(self._listeners):
            await listener(SessionEvent.SIGNED_OUT, None)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def profiles():
    repo = FakeProfileRepository()
    repo.add(USER_X, Gender.MALE, age=30, city="Houston", state="TX")
    repo.add(USER_Y, Gender.FEMALE, age=27, city="Dallas", state="TX")
    repo.add(USER_Z, Gender.MALE, age=33, city="Austin", state="TX")
    return repo


@pytest.fixture
def connections(clock):
    return FakeConnectionRepository(clock)


@pytest.fixture
def feed():
    return FakeMessageFeed()


@pytest.fixture
def messages(connections, clock, feed):
    return FakeMessageRepository(connections, clock, publisher=feed)


@pytest.fixture
def session_x():
    return FakeSession(USER_X)


@pytest.fixture
def session_y():
    return FakeSession(USER_Y)


@pytest_asyncio.fixture
async def accepted(connections):
    """Accepted connection X -> Y"""
    return connections.add(USER_X, USER_Y, status=ConnectionStatus.ACCEPTED)
