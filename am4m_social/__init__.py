from .client import SocialClient, configure_logging
from .errors import (
    ConflictError,
    ConnectionStateError,
    DuplicateConnectionError,
    EmptyMessageError,
    GenderRequiredError,
    LoadError,
    NotFoundError,
    PermissionDeniedError,
    SelfConnectionError,
    SocialClientError,
    TransportError,
    ValidationError,
)


__version__ = "1.0.0"

__all__ = [
    # client.py
    "SocialClient",
    "configure_logging",
    # errors.py
    "ConflictError",
    "ConnectionStateError",
    "DuplicateConnectionError",
    "EmptyMessageError",
    "GenderRequiredError",
    "LoadError",
    "NotFoundError",
    "PermissionDeniedError",
    "SelfConnectionError",
    "SocialClientError",
    "TransportError",
    "ValidationError",
]
