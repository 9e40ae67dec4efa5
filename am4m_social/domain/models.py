"""
Domain models - Core business entities
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

NO_MESSAGES_PLACEHOLDER = "No messages yet"


class Gender(str, Enum):
    """Declared gender; UNSET until the user fills in their profile"""
    UNSET = ""
    MALE = "male"
    FEMALE = "female"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "Gender":
        """Map free-form stored values onto the enum, case-insensitively"""
        if isinstance(value, Gender):
            return value
        v = (value or "").strip().lower()
        if v == "male":
            return cls.MALE
        if v == "female":
            return cls.FEMALE
        return cls.UNSET


class ConnectionStatus(str, Enum):
    """Connection request lifecycle"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"

    @property
    def is_terminal(self) -> bool:
        return self is not ConnectionStatus.PENDING


class MessageStatus(str, Enum):
    """Delivery state of a thread entry"""
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class ThreadState(str, Enum):
    """Load state of an open thread"""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass
class ProfileBrief:
    """Minimal profile subset needed for list rendering"""
    id: str
    first_name: Optional[str] = None
    age: Optional[int] = None
    city: Optional[str] = None
    state: Optional[str] = None
    location: Optional[str] = None
    photos: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.first_name or "User"

    @property
    def primary_photo(self) -> Optional[str]:
        return self.photos[0] if self.photos else None

    @property
    def location_label(self) -> str:
        """'City, State' when split fields exist, else the legacy combined field"""
        parts = [p.strip() for p in (self.city or "", self.state or "") if p and p.strip()]
        if parts:
            return ", ".join(parts)
        return self.location or "—"


@dataclass
class Profile(ProfileBrief):
    """Full profile as shown on the profile page"""
    gender: Gender = Gender.UNSET
    occupation: Optional[str] = None
    education: Optional[str] = None
    marital_status: Optional[str] = None
    prayer_status: Optional[str] = None
    revert_status: Optional[str] = None
    sect: Optional[str] = None
    hide_sect: bool = False
    bio: Optional[str] = None
    video: Optional[str] = None
    is_public: bool = False
    updated_at: Optional[datetime] = None

    @property
    def visible_sect(self) -> Optional[str]:
        """Sect respecting the owner's hide_sect preference"""
        return None if self.hide_sect else self.sect

    @property
    def muslim_status_label(self) -> str:
        v = (self.revert_status or "").strip().lower()
        if v == "born":
            return "Born into Islam"
        if v in ("revert", "embraced"):
            return "Embraced Islam"
        if v in ("prefer_not_say", "prefer not to say"):
            return "Prefer not to say"
        return self.revert_status or "—"

    def brief(self) -> ProfileBrief:
        return ProfileBrief(
            id=self.id,
            first_name=self.first_name,
            age=self.age,
            city=self.city,
            state=self.state,
            location=self.location,
            photos=list(self.photos),
        )


@dataclass
class Connection:
    """Directed connection request between two users"""
    id: str
    requester_id: str
    receiver_id: str
    status: ConnectionStatus
    created_at: Optional[datetime] = None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.requester_id, self.receiver_id)

    def counterpart_of(self, user_id: str) -> str:
        """Id of the other participant"""
        return self.receiver_id if self.requester_id == user_id else self.requester_id

    def with_status(self, status: ConnectionStatus) -> "Connection":
        return replace(self, status=status)


@dataclass
class Message:
    """Message in a connection thread"""
    id: str
    connection_id: str
    sender_id: str
    content: str
    created_at: datetime
    client_id: Optional[str] = None


# Thread entries: a tagged union over the delivery state of one logical message

@dataclass(frozen=True)
class Confirmed:
    """Authoritative row from the store"""
    message: Message

    @property
    def status(self) -> MessageStatus:
        return MessageStatus.SENT

    @property
    def key(self) -> str:
        return self.message.id


@dataclass(frozen=True)
class Pending:
    """Local shadow awaiting store confirmation"""
    message: Message
    temp_id: str

    @property
    def status(self) -> MessageStatus:
        return MessageStatus.SENDING

    @property
    def key(self) -> str:
        return self.temp_id


@dataclass(frozen=True)
class Failed:
    """Local shadow whose insert failed; kept until the user retries or discards"""
    message: Message
    temp_id: str
    error: Exception

    @property
    def status(self) -> MessageStatus:
        return MessageStatus.FAILED

    @property
    def key(self) -> str:
        return self.temp_id


ThreadEntry = Union[Confirmed, Pending, Failed]


@dataclass
class PendingItem:
    """Incoming request as shown to its receiver"""
    connection: Connection
    requester: Optional[ProfileBrief] = None


@dataclass
class AcceptedItem:
    """Accepted connection with the other participant's brief"""
    connection: Connection
    other: Optional[ProfileBrief] = None


@dataclass
class Conversation:
    """Derived view: one per accepted connection"""
    connection: Connection
    counterpart: Optional[ProfileBrief] = None
    last_message: Optional[Message] = None

    @property
    def id(self) -> str:
        return self.connection.id

    @property
    def has_messages(self) -> bool:
        return self.last_message is not None

    @property
    def preview(self) -> str:
        if self.last_message is None:
            return NO_MESSAGES_PLACEHOLDER
        return self.last_message.content

    @property
    def last_activity_at(self) -> Optional[datetime]:
        if self.last_message is not None:
            return self.last_message.created_at
        return self.connection.created_at


@dataclass
class SocialStats:
    """Dashboard counters for a user"""
    user_id: str
    views_7d: int = 0
    pending_requests: int = 0
    active_conversations: int = 0
