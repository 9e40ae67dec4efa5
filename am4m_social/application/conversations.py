"""
Conversation projection - one conversation per accepted connection
"""
from datetime import datetime, timezone
from typing import List
import logging

from ..domain.models import Conversation
from ..domain.repositories import (
    IConnectionRepository,
    IMessageRepository,
    IProfileRepository,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ConversationProjection:
    """Read-only view joining connections, last messages and profile briefs"""

    def __init__(
        self,
        connections: IConnectionRepository,
        messages: IMessageRepository,
        profiles: IProfileRepository,
    ):
        self.connections = connections
        self.messages = messages
        self.profiles = profiles

    async def list_conversations(self, viewer_id: str) -> List[Conversation]:
        """
        Conversations of the viewer, most recent activity first

        Args:
            viewer_id: User whose conversations are listed

        Returns:
            One entry per accepted connection. The counterpart is None when
            their profile is gone; the last message is None for a new thread.
        """
        accepted = await self.connections.list_accepted(viewer_id)
        if not accepted:
            return []

        briefs = await self.profiles.get_briefs(c.counterpart_of(viewer_id) for c in accepted)
        latest = await self.messages.latest_for_connections(c.id for c in accepted)

        conversations = [
            Conversation(
                connection=c,
                counterpart=briefs.get(c.counterpart_of(viewer_id)),
                last_message=latest.get(c.id),
            )
            for c in accepted
        ]
        conversations.sort(key=lambda conv: conv.connection.id)
        conversations.sort(key=lambda conv: conv.last_activity_at or _EPOCH, reverse=True)

        logger.debug(f"Projected {len(conversations)} conversations for {viewer_id}")
        return conversations
