from .connections import ConnectionBoard, ConnectionService
from .conversations import ConversationProjection
from .messages import MessageChannel
from .profiles import AccessStatus, ProfileAccess, ProfileDirectory, SearchPage


__all__ = [
    # connections.py
    "ConnectionBoard",
    "ConnectionService",
    # conversations.py
    "ConversationProjection",
    # messages.py
    "MessageChannel",
    # profiles.py
    "AccessStatus",
    "ProfileAccess",
    "ProfileDirectory",
    "SearchPage",
]
