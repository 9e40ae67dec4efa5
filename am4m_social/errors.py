"""
Error taxonomy for the social client

Every error carries an HTTP-style ``status_code`` and a user-facing
``detail`` so a UI shell can render it the same way it renders API errors.
"""
from typing import Optional


class SocialClientError(Exception):
    """Base class for all client errors"""

    status_code: int = 500
    default_detail: str = "Something went wrong"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


# Validation errors - rejected locally, before any remote call
class ValidationError(SocialClientError):
    status_code = 400
    default_detail = "Invalid input"


class EmptyMessageError(ValidationError):
    default_detail = "Message cannot be empty"


class SelfConnectionError(ValidationError):
    default_detail = "You cannot connect with yourself"


class GenderRequiredError(ValidationError):
    default_detail = "Please set your gender in your profile to see matches"


# Conflicts - informational, nothing optimistic to undo
class ConflictError(SocialClientError):
    status_code = 409
    default_detail = "Conflicting change"


class DuplicateConnectionError(ConflictError):
    default_detail = "Request already sent or you are already connected"


class ConnectionStateError(ConflictError):
    """The connection is no longer in the state the caller expected"""

    default_detail = "This request has already been answered"

    def __init__(self, detail: Optional[str] = None, current=None):
        super().__init__(detail)
        self.current = current


# Transport failures - retryable
class TransportError(SocialClientError):
    status_code = 503
    default_detail = "The service is temporarily unavailable"


class LoadError(TransportError):
    default_detail = "Failed to load messages"


class PermissionDeniedError(SocialClientError):
    status_code = 403
    default_detail = "You are not allowed to do that"


class NotFoundError(SocialClientError):
    status_code = 404
    default_detail = "Not found"
