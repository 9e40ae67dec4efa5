"""
Session provider backed by the Auth Service
"""
from typing import Callable, List, Optional
import logging

import httpx

from ..config import settings
from ..domain.repositories import ISessionProvider, SessionEvent, SessionListener
from ..errors import PermissionDeniedError, TransportError

logger = logging.getLogger(__name__)


class AuthServiceSession(ISessionProvider):
    """
    Tracks the signed-in user by verifying bearer tokens with the Auth Service

    Components subscribe with ``add_listener`` and are told about sign-in,
    token refresh and sign-out.
    """

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or settings.AUTH_SERVICE_URL).rstrip("/")
        self.client = client
        self._owns_client = client is None
        self.token: Optional[str] = None
        self._user_id: Optional[str] = None
        self._listeners: List[SessionListener] = []

    @property
    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def start(self):
        """Initialize HTTP client"""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=httpx.Timeout(settings.AUTH_TIMEOUT_SECONDS))
        logger.info("Auth session client initialized")

    async def stop(self):
        """Close HTTP client"""
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None
            logger.info("Auth session client closed")

    async def verify_token(self, token: str) -> dict:
        """
        Verify JWT token with Auth Service

        Args:
            token: JWT access token

        Returns:
            User data returned by the Auth Service

        Raises:
            PermissionDeniedError: If the token is rejected
            TransportError: If the Auth Service cannot be reached
        """
        if self.client is None:
            await self.start()

        try:
            response = await self.client.get(
                f"{self.base_url}/api/v1/auth/me",
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            logger.error("Auth service timeout during token verification")
            raise TransportError("Authentication service is temporarily unavailable") from e
        except httpx.HTTPError as e:
            logger.error(f"Failed to reach auth service: {e}")
            raise TransportError("Authentication service is unavailable") from e

        if response.status_code in (401, 403):
            logger.warning(f"Token verification failed: {response.status_code} - {response.text}")
            raise PermissionDeniedError("Invalid authentication credentials")
        if response.status_code != 200:
            logger.error(f"Unexpected auth service response: {response.status_code}")
            raise TransportError()

        user_data = response.json()
        if not user_data.get("id") or not user_data.get("is_active", True):
            raise PermissionDeniedError("User account is inactive")
        return user_data

    async def sign_in(self, token: str) -> str:
        """Adopt a token and announce the signed-in user"""
        user_data = await self.verify_token(token)
        user_id = str(user_data["id"])
        previous = self._user_id
        self.token = token
        self._user_id = user_id

        if previous is not None and previous != user_id:
            await self._notify(SessionEvent.SIGNED_OUT, previous)
        await self._notify(SessionEvent.SIGNED_IN, user_id)
        return user_id

    async def refresh(self, token: str):
        """Swap in a refreshed token for the same user"""
        user_data = await self.verify_token(token)
        user_id = str(user_data["id"])
        if self._user_id is not None and user_id != self._user_id:
            await self.sign_in(token)
            return
        self.token = token
        self._user_id = user_id
        await self._notify(SessionEvent.TOKEN_REFRESHED, user_id)

    async def sign_out(self):
        previous = self._user_id
        self.token = None
        self._user_id = None
        if previous is not None:
            await self._notify(SessionEvent.SIGNED_OUT, previous)

    async def _notify(self, event: SessionEvent, user_id: Optional[str]):
        for listener in list(self._listeners):
            try:
                await listener(event, user_id)
            except Exception as e:
                logger.error(f"Session listener failed on {event.value}: {e}")
