"""
Pydantic schemas for input validation and feed payloads
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import Message


class SearchFilters(BaseModel):
    """Filters a viewer can apply to the match search"""

    age_min: Optional[int] = Field(None, ge=18, le=120)
    age_max: Optional[int] = Field(None, ge=18, le=120)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    prayer_status: Literal["any", "5times", "sometimes", "inconsistent"] = "any"

    @field_validator("age_min", "age_max", mode="before")
    @classmethod
    def blank_age_is_none(cls, v):
        # Form inputs arrive as strings; blanks mean "no bound"
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("city", "state")
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def check_age_range(self):
        if self.age_min is not None and self.age_max is not None and self.age_min > self.age_max:
            raise ValueError("age_min cannot be greater than age_max")
        return self

    @property
    def is_empty(self) -> bool:
        return (
            self.age_min is None
            and self.age_max is None
            and not self.city
            and not self.state
            and self.prayer_status == "any"
        )

    def as_query(self) -> dict:
        """Keyword arguments for IProfileRepository.search"""
        return {
            "age_min": self.age_min,
            "age_max": self.age_max,
            "city": self.city,
            "state": self.state,
            "prayer_status": None if self.prayer_status == "any" else self.prayer_status,
        }


class MessageEvent(BaseModel):
    """INSERT event for the messages table as carried on the live feed"""

    event_type: Literal["INSERT"] = "INSERT"
    id: str
    connection_id: str
    sender_id: str
    content: str
    created_at: datetime
    client_id: Optional[str] = None

    @classmethod
    def from_message(cls, message: Message) -> "MessageEvent":
        return cls(
            id=message.id,
            connection_id=message.connection_id,
            sender_id=message.sender_id,
            content=message.content,
            created_at=message.created_at,
            client_id=message.client_id,
        )

    def to_message(self) -> Message:
        return Message(
            id=self.id,
            connection_id=self.connection_id,
            sender_id=self.sender_id,
            content=self.content,
            created_at=self.created_at,
            client_id=self.client_id,
        )
