"""
Connection requests - business logic and the receiver's optimistic view
"""
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
import logging

from ..config import settings
from ..domain.models import (
    AcceptedItem,
    Connection,
    ConnectionStatus,
    PendingItem,
    ProfileBrief,
    SocialStats,
)
from ..domain.repositories import (
    IConnectionRepository,
    IProfileRepository,
    ISessionProvider,
    SessionEvent,
)
from ..errors import (
    ConnectionStateError,
    NotFoundError,
    PermissionDeniedError,
    SelfConnectionError,
    SocialClientError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ConnectionService:
    """Business logic for connection requests"""

    def __init__(
        self,
        connections: IConnectionRepository,
        profiles: IProfileRepository,
        cache=None,
    ):
        self.connections = connections
        self.profiles = profiles
        self.cache = cache

    async def request_connection(self, requester_id: str, receiver_id: str) -> Connection:
        """
        Send a connection request

        Args:
            requester_id: User sending the request
            receiver_id: User receiving the request

        Returns:
            The new pending connection

        Raises:
            SelfConnectionError: If both ids are the same user
            DuplicateConnectionError: If the pair already has a connection
        """
        if not requester_id or not receiver_id:
            raise ValidationError("Please sign in to send a request")
        if requester_id == receiver_id:
            raise SelfConnectionError()

        connection = await self.connections.create(requester_id, receiver_id)
        logger.info(f"Connection {connection.id} requested: {requester_id} -> {receiver_id}")

        await self._invalidate_stats(requester_id, receiver_id)
        return connection

    async def accept_connection(self, connection_id: str, receiver_id: str) -> Connection:
        """Accept a pending request addressed to receiver_id"""
        return await self.respond(connection_id, receiver_id, ConnectionStatus.ACCEPTED)

    async def decline_connection(self, connection_id: str, receiver_id: str) -> Connection:
        """Decline a pending request addressed to receiver_id"""
        return await self.respond(connection_id, receiver_id, ConnectionStatus.DECLINED)

    async def respond(
        self, connection_id: str, receiver_id: str, status: ConnectionStatus
    ) -> Connection:
        """
        Move a pending request to a terminal status

        The first response wins: the update only applies while the row is
        still pending. When nothing changed, the current row decides which
        error is raised.
        """
        if not status.is_terminal:
            raise ValidationError("A request can only be accepted or declined")

        updated = await self.connections.update_status(connection_id, receiver_id, status)
        if updated is None:
            current = await self.connections.find_by_id(connection_id)
            if current is None:
                raise NotFoundError("Connection request not found")
            if current.receiver_id != receiver_id:
                raise PermissionDeniedError("Only the receiver can answer this request")
            raise ConnectionStateError(
                f"This request was already {current.status.value}", current=current
            )

        logger.info(f"Connection {connection_id} {status.value} by {receiver_id}")
        await self._invalidate_stats(updated.requester_id, updated.receiver_id)
        return updated

    async def list_incoming_pending(self, user_id: str) -> List[Connection]:
        return await self.connections.list_incoming_pending(user_id)

    async def list_accepted(self, user_id: str) -> List[Connection]:
        return await self.connections.list_accepted(user_id)

    async def load_board(self, user_id: str) -> Tuple[List[PendingItem], List[AcceptedItem]]:
        """Incoming pending requests and accepted connections, decorated with briefs"""
        incoming = await self.list_incoming_pending(user_id)
        accepted = await self.list_accepted(user_id)

        ids = [c.requester_id for c in incoming] + [c.counterpart_of(user_id) for c in accepted]
        briefs = await self.profiles.get_briefs(ids)

        pending_items = [PendingItem(connection=c, requester=briefs.get(c.requester_id)) for c in incoming]
        accepted_items = [
            AcceptedItem(connection=c, other=briefs.get(c.counterpart_of(user_id))) for c in accepted
        ]
        return pending_items, accepted_items

    async def get_brief(self, user_id: str) -> Optional[ProfileBrief]:
        briefs = await self.profiles.get_briefs([user_id])
        return briefs.get(user_id)

    async def get_stats(self, user_id: str) -> SocialStats:
        """
        Dashboard counters: profile views in the window, pending requests,
        active conversations
        """
        if self.cache is not None:
            cached = await self.cache.get_stats(user_id)
            if cached:
                return SocialStats(**cached)

        since = datetime.now(timezone.utc) - timedelta(days=settings.PROFILE_VIEW_WINDOW_DAYS)
        stats = SocialStats(
            user_id=user_id,
            views_7d=await self.profiles.count_views_since(user_id, since),
            pending_requests=await self.connections.count(
                user_id, ConnectionStatus.PENDING, incoming_only=True
            ),
            active_conversations=await self.connections.count(user_id, ConnectionStatus.ACCEPTED),
        )

        if self.cache is not None:
            await self.cache.set_stats(user_id, asdict(stats))
        return stats

    async def _invalidate_stats(self, *user_ids: str):
        if self.cache is not None:
            await self.cache.invalidate_stats(*user_ids)


class ConnectionBoard:
    """
    The signed-in user's pending and accepted lists

    Accept and decline are applied to the lists before the store confirms
    them. A failed call puts the lists back exactly as they were; a call
    that lost to another device reconciles the lists to the winner.
    """

    def __init__(self, service: ConnectionService, session: ISessionProvider):
        self.service = service
        self.session = session
        self.pending: List[PendingItem] = []
        self.accepted: List[AcceptedItem] = []
        self.loading = False
        self.error: Optional[SocialClientError] = None
        self._viewer_id = session.current_user_id
        self._generation = 0
        self._in_flight: Dict[str, Optional[AcceptedItem]] = {}
        self._remove_listener = session.add_listener(self._on_session_event)

    @property
    def viewer_id(self) -> Optional[str]:
        return self._viewer_id

    async def _on_session_event(self, event: SessionEvent, user_id: Optional[str]):
        if event is SessionEvent.TOKEN_REFRESHED and user_id == self._viewer_id:
            return
        self._reset(self.session.current_user_id)

    def _reset(self, viewer_id: Optional[str]):
        self._generation += 1
        self._viewer_id = viewer_id
        self.pending.clear()
        self.accepted.clear()
        self.loading = False
        self.error = None

    def _require_viewer(self) -> str:
        user_id = self.session.current_user_id
        if user_id is None:
            raise PermissionDeniedError("Please sign in to manage connections")
        if user_id != self._viewer_id:
            self._reset(user_id)
        return user_id

    def close(self):
        self._remove_listener()

    async def load(self):
        """Fetch both lists; a response for an outdated viewer is discarded"""
        viewer_id = self._require_viewer()
        self._generation += 1
        generation = self._generation
        self.loading = True
        self.error = None

        try:
            pending, accepted = await self.service.load_board(viewer_id)
        except SocialClientError as e:
            if generation == self._generation:
                self.loading = False
                self.error = e
            logger.error(f"Failed to load connections for {viewer_id}: {e.detail}")
            raise

        if generation != self._generation:
            logger.debug(f"Discarding stale connections load for {viewer_id}")
            return

        # Responses still in flight were read before their update landed
        overlay = [s for s in self._in_flight.values() if s is not None]
        self.pending[:] = [p for p in pending if p.connection.id not in self._in_flight]
        self.accepted[:] = overlay + [a for a in accepted if self._in_flight.get(a.connection.id) is None]
        self.loading = False

    async def request(self, receiver_id: str) -> Connection:
        viewer_id = self._require_viewer()
        return await self.service.request_connection(viewer_id, receiver_id)

    async def accept(self, connection_id: str) -> Connection:
        return await self._respond(connection_id, ConnectionStatus.ACCEPTED)

    async def decline(self, connection_id: str) -> Connection:
        return await self._respond(connection_id, ConnectionStatus.DECLINED)

    async def _respond(self, connection_id: str, status: ConnectionStatus) -> Connection:
        viewer_id = self._require_viewer()
        if connection_id in self._in_flight:
            raise ConnectionStateError("A response to this request is already in progress")

        # Optimistic apply; no await until the remote call
        index = self._pending_index(connection_id)
        item = self.pending.pop(index) if index is not None else None
        synthesized = None
        if item is not None and status is ConnectionStatus.ACCEPTED:
            synthesized = AcceptedItem(
                connection=item.connection.with_status(ConnectionStatus.ACCEPTED),
                other=item.requester,
            )
            self.accepted.insert(0, synthesized)
        self._in_flight[connection_id] = synthesized

        try:
            confirmed = await self.service.respond(connection_id, viewer_id, status)
        except ConnectionStateError as e:
            self._reconcile(item, synthesized, e.current)
            raise
        except NotFoundError:
            self._reconcile(item, synthesized, None)
            raise
        except SocialClientError as e:
            self._rollback(index, item, synthesized)
            logger.warning(f"Rolled back {status.value} of connection {connection_id}: {e.detail}")
            raise
        finally:
            self._in_flight.pop(connection_id, None)

        stale = self._pending_index(connection_id)
        if stale is not None:
            del self.pending[stale]
        if synthesized is not None:
            synthesized.connection = confirmed
            if not self._is_accepted(connection_id):
                self.accepted.insert(0, synthesized)
        elif status is ConnectionStatus.ACCEPTED and not self._is_accepted(connection_id):
            other = await self.service.get_brief(confirmed.requester_id)
            if not self._is_accepted(connection_id):
                self.accepted.insert(0, AcceptedItem(connection=confirmed, other=other))
        return confirmed

    def _pending_index(self, connection_id: str) -> Optional[int]:
        for i, item in enumerate(self.pending):
            if item.connection.id == connection_id:
                return i
        return None

    def _is_accepted(self, connection_id: str) -> bool:
        return any(a.connection.id == connection_id for a in self.accepted)

    def _drop_synthesized(self, synthesized: Optional[AcceptedItem]):
        if synthesized is None:
            return
        for i, a in enumerate(self.accepted):
            if a is synthesized:
                del self.accepted[i]
                return

    def _rollback(self, index: Optional[int], item: Optional[PendingItem], synthesized: Optional[AcceptedItem]):
        self._drop_synthesized(synthesized)
        if item is not None and self._pending_index(item.connection.id) is None:
            self.pending.insert(min(index, len(self.pending)), item)

    def _reconcile(
        self,
        item: Optional[PendingItem],
        synthesized: Optional[AcceptedItem],
        current: Optional[Connection],
    ):
        """Reflect a status decided elsewhere; the item stays out of pending"""
        self._drop_synthesized(synthesized)
        if current is None or current.status is not ConnectionStatus.ACCEPTED:
            return
        if not self._is_accepted(current.id):
            self.accepted.insert(
                0, AcceptedItem(connection=current, other=item.requester if item else None)
            )
