"""
Repository interfaces - Define contracts for data access
"""
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from .models import (
    Connection,
    ConnectionStatus,
    Gender,
    Message,
    Profile,
    ProfileBrief,
)


class IProfileRepository(ABC):
    """Profile repository interface"""

    @abstractmethod
    async def find_by_id(self, user_id: str) -> Optional[Profile]:
        """Find profile by user ID"""
        pass

    @abstractmethod
    async def get_gender(self, user_id: str) -> Gender:
        """Declared gender of a user, UNSET when missing"""
        pass

    @abstractmethod
    async def get_briefs(self, user_ids: Iterable[str]) -> Dict[str, ProfileBrief]:
        """Batch-fetch briefs in a single call"""
        pass

    @abstractmethod
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
        """Public profiles of the given gender, excluding the viewer, newest first"""
        pass

    @abstractmethod
    async def record_view(self, viewer_id: str, viewed_id: str) -> None:
        """Insert a profile view event"""
        pass

    @abstractmethod
    async def count_views_since(self, user_id: str, since: datetime) -> int:
        """Profile views received since the given time"""
        pass


class IConnectionRepository(ABC):
    """Connection repository interface"""

    @abstractmethod
    async def create(self, requester_id: str, receiver_id: str) -> Connection:
        """Create a pending connection; raises ConflictError on duplicate pair"""
        pass

    @abstractmethod
    async def find_by_id(self, connection_id: str) -> Optional[Connection]:
        """Find connection by ID"""
        pass

    @abstractmethod
    async def update_status(
        self,
        connection_id: str,
        receiver_id: str,
        status: ConnectionStatus,
    ) -> Optional[Connection]:
        """Move a pending connection owned by receiver_id to status; None if no row matched"""
        pass

    @abstractmethod
    async def list_incoming_pending(self, receiver_id: str) -> List[Connection]:
        """Pending requests addressed to the user, newest first"""
        pass

    @abstractmethod
    async def list_accepted(self, user_id: str) -> List[Connection]:
        """Accepted connections on either side, newest first"""
        pass

    @abstractmethod
    async def count(self, user_id: str, status: ConnectionStatus, incoming_only: bool = False) -> int:
        """Count connections in a status"""
        pass


class IMessageRepository(ABC):
    """Message repository interface"""

    @abstractmethod
    async def list_for_connection(self, connection_id: str) -> List[Message]:
        """All messages of a thread, oldest first"""
        pass

    @abstractmethod
    async def create(
        self,
        connection_id: str,
        sender_id: str,
        content: str,
        client_id: Optional[str] = None,
    ) -> Message:
        """Insert a message; raises PermissionDeniedError unless the connection is accepted
        and the sender participates in it"""
        pass

    @abstractmethod
    async def latest_for_connections(self, connection_ids: Iterable[str]) -> Dict[str, Message]:
        """Most recent message per connection, single call"""
        pass


class Subscription(ABC):
    """Handle for a live feed scoped to one connection"""

    connection_id: str

    @property
    @abstractmethod
    def confirmed(self) -> bool:
        """True once the feed is known to be delivering events"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop delivery and release resources"""
        pass


MessageHandler = Callable[[Message], Awaitable[None]]


class IMessageFeed(ABC):
    """Realtime change feed of message inserts"""

    @abstractmethod
    async def subscribe(self, connection_id: str, on_insert: MessageHandler) -> Subscription:
        """Deliver inserts for connection_id to on_insert until closed"""
        pass


class SessionEvent(str, Enum):
    """Session lifecycle events"""
    SIGNED_IN = "signed_in"
    TOKEN_REFRESHED = "token_refreshed"
    SIGNED_OUT = "signed_out"


SessionListener = Callable[[SessionEvent, Optional[str]], Awaitable[None]]


class ISessionProvider(ABC):
    """Current authenticated user, with change notification"""

    @property
    @abstractmethod
    def current_user_id(self) -> Optional[str]:
        pass

    @abstractmethod
    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it"""
        pass
