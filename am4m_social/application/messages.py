"""
Message channel - the open thread's message log

Sends are shown immediately as Pending shadows and reconciled against the
stored row, whichever of the direct insert result, the live feed event or a
poll snapshot arrives first. Every logical message maps to exactly one entry.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional
import asyncio
import logging
import uuid

from ..config import settings
from ..domain.models import (
    Confirmed,
    Failed,
    Message,
    Pending,
    ThreadEntry,
    ThreadState,
)
from ..domain.repositories import (
    IMessageFeed,
    IMessageRepository,
    ISessionProvider,
    SessionEvent,
    Subscription,
)
from ..errors import (
    EmptyMessageError,
    LoadError,
    PermissionDeniedError,
    SocialClientError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _insert_sorted(entries: List[ThreadEntry], entry: ThreadEntry):
    """Insert after every entry with created_at <= entry's"""
    i = len(entries)
    created_at = entry.message.created_at
    while i > 0 and entries[i - 1].message.created_at > created_at:
        i -= 1
    entries.insert(i, entry)


class MessageChannel:
    """Message log, live feed and compose drafts for the selected connection"""

    def __init__(
        self,
        messages: IMessageRepository,
        feed: IMessageFeed,
        session: ISessionProvider,
        poll_interval: Optional[float] = None,
        send_timeout: Optional[float] = None,
    ):
        self.messages = messages
        self.feed = feed
        self.session = session
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        self.send_timeout = send_timeout if send_timeout is not None else settings.SEND_TIMEOUT_SECONDS

        self.connection_id: Optional[str] = None
        self.state = ThreadState.IDLE
        self.entries: List[ThreadEntry] = []
        self.error: Optional[SocialClientError] = None
        self.drafts: Dict[str, str] = {}

        self._generation = 0
        self._subscription: Optional[Subscription] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._viewer_id = session.current_user_id
        self._remove_listener = session.add_listener(self._on_session_event)

    # Compose state

    @property
    def draft(self) -> str:
        if self.connection_id is None:
            return ""
        return self.drafts.get(self.connection_id, "")

    def set_draft(self, text: str):
        if self.connection_id is not None:
            self.drafts[self.connection_id] = text

    @property
    def live(self) -> bool:
        """True while the live feed for the open thread is confirmed"""
        return self._subscription is not None and self._subscription.confirmed

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # Thread lifecycle

    async def open_thread(self, connection_id: str):
        """
        Switch to a thread

        The previous thread's feed and poll are torn down before anything
        is set up for the new one.
        """
        if connection_id == self.connection_id and self.state in (ThreadState.LOADING, ThreadState.READY):
            return

        await self._teardown()
        self._generation += 1
        generation = self._generation
        self.connection_id = connection_id
        self.state = ThreadState.LOADING

        subscription = await self.feed.subscribe(connection_id, self._feed_handler(generation))
        if generation != self._generation:
            await subscription.close()
            return
        self._subscription = subscription
        self._poll_task = asyncio.create_task(self._poll_loop(generation))

        await self.load_thread()

    async def load_thread(self):
        """
        Fetch the whole thread oldest first

        Raises:
            LoadError: On transport or permission failure; call again to retry
        """
        if self.connection_id is None:
            raise ValidationError("Select a conversation first")

        connection_id = self.connection_id
        generation = self._generation
        self.state = ThreadState.LOADING
        self.error = None

        try:
            rows = await self.messages.list_for_connection(connection_id)
        except SocialClientError as e:
            error = e if isinstance(e, LoadError) else LoadError(e.detail)
            if generation == self._generation:
                self.state = ThreadState.ERROR
                self.error = error
            logger.error(f"Failed to load messages for connection {connection_id}: {e.detail}")
            raise error from e

        if generation != self._generation:
            logger.debug(f"Discarding stale load for connection {connection_id}")
            return
        self._merge_snapshot(rows)
        self.state = ThreadState.READY

    async def close(self):
        """Leave the open thread"""
        await self._teardown()
        self._generation += 1
        self.connection_id = None
        self.state = ThreadState.IDLE

    async def _teardown(self):
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            await subscription.close()
        self.entries = []
        self.error = None

    async def _on_session_event(self, event: SessionEvent, user_id: Optional[str]):
        if event is SessionEvent.TOKEN_REFRESHED and user_id == self._viewer_id:
            return
        await self.close()
        self.drafts.clear()
        self._viewer_id = self.session.current_user_id

    def dispose(self):
        self._remove_listener()

    # Delivery paths

    def _feed_handler(self, generation: int):
        async def on_insert(message: Message):
            if generation != self._generation:
                return
            self._apply_confirmed(message)

        return on_insert

    async def _poll_loop(self, generation: int):
        """Re-fetch the thread until the live feed is confirmed"""
        try:
            while generation == self._generation:
                await asyncio.sleep(self.poll_interval)
                if generation != self._generation:
                    break
                if self.live:
                    continue

                connection_id = self.connection_id
                try:
                    rows = await self.messages.list_for_connection(connection_id)
                except SocialClientError as e:
                    logger.warning(f"Poll failed for connection {connection_id}: {e.detail}")
                    continue
                except Exception:
                    logger.exception(f"Poll error for connection {connection_id}")
                    continue

                if generation != self._generation:
                    break
                self._merge_snapshot(rows)
                if self.state is ThreadState.ERROR:
                    self.state = ThreadState.READY
                    self.error = None
        except asyncio.CancelledError:
            pass

    # Sending

    async def send_message(self, text: Optional[str] = None) -> Message:
        """
        Send text (or the current draft) to the open thread

        Returns:
            The stored message

        Raises:
            EmptyMessageError: If the text is blank; nothing is sent
            SocialClientError: If the insert fails; the entry is marked
                failed and the text is restored into the draft
        """
        if self.connection_id is None:
            raise ValidationError("Select a conversation first")
        sender_id = self.session.current_user_id
        if sender_id is None:
            raise PermissionDeniedError("Please sign in to send messages")

        body = (self.draft if text is None else text).strip()
        if not body:
            raise EmptyMessageError()
        if len(body) > settings.MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Messages are limited to {settings.MAX_MESSAGE_LENGTH} characters")

        temp_id = f"local-{uuid.uuid4().hex}"
        shadow = Pending(
            message=Message(
                id=temp_id,
                connection_id=self.connection_id,
                sender_id=sender_id,
                content=body,
                created_at=datetime.now(timezone.utc),
                client_id=uuid.uuid4().hex,
            ),
            temp_id=temp_id,
        )
        _insert_sorted(self.entries, shadow)
        self.drafts[self.connection_id] = ""

        return await self._deliver(shadow)

    async def retry(self, temp_id: str) -> Message:
        """Send a failed entry again, reusing its idempotency key"""
        index = self._index_of(temp_id)
        if index is None or not isinstance(self.entries[index], Failed):
            raise ValidationError("Only failed messages can be retried")

        failed = self.entries[index]
        shadow = Pending(message=failed.message, temp_id=failed.temp_id)
        self.entries[index] = shadow
        if self.drafts.get(failed.message.connection_id, "").strip() == failed.message.content:
            self.drafts[failed.message.connection_id] = ""

        return await self._deliver(shadow)

    def discard(self, temp_id: str) -> str:
        """Drop a failed entry and put its text back in the draft"""
        index = self._index_of(temp_id)
        if index is None or not isinstance(self.entries[index], Failed):
            raise ValidationError("Only failed messages can be discarded")

        failed = self.entries.pop(index)
        self.drafts[failed.message.connection_id] = failed.message.content
        return failed.message.content

    async def _deliver(self, shadow: Pending) -> Message:
        message = shadow.message
        try:
            stored = await asyncio.wait_for(
                self.messages.create(
                    message.connection_id,
                    message.sender_id,
                    message.content,
                    client_id=message.client_id,
                ),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            error: SocialClientError = TransportError("Sending timed out. Tap retry to send again.")
        except SocialClientError as e:
            error = e
        else:
            if self.connection_id == message.connection_id:
                self._apply_confirmed(stored, temp_id=shadow.temp_id)
            return stored

        if self.connection_id == message.connection_id:
            index = self._index_of(shadow.temp_id)
            if index is not None:
                self.entries[index] = Failed(message=message, temp_id=shadow.temp_id, error=error)
            else:
                # The feed or a poll already delivered the row
                delivered = self._confirmed_for(message.client_id)
                if delivered is not None:
                    return delivered

        self.drafts[message.connection_id] = message.content
        logger.warning(f"Send failed on connection {message.connection_id}: {error.detail}")
        raise error

    # Reconciliation

    def _index_of(self, key: str) -> Optional[int]:
        for i, entry in enumerate(self.entries):
            if not isinstance(entry, Confirmed) and entry.temp_id == key:
                return i
        return None

    def _confirmed_for(self, client_id: Optional[str]) -> Optional[Message]:
        if client_id is None:
            return None
        for entry in self.entries:
            if isinstance(entry, Confirmed) and entry.message.client_id == client_id:
                return entry.message
        return None

    def _shadow_index_for(self, message: Message) -> Optional[int]:
        """
        Local shadow standing for a stored row: same idempotency key, or for
        rows without one, a sending shadow with the same sender and text
        """
        for i, entry in enumerate(self.entries):
            if isinstance(entry, Confirmed):
                continue
            shadow = entry.message
            if message.client_id is not None:
                if shadow.client_id == message.client_id:
                    return i
            elif (
                isinstance(entry, Pending)
                and shadow.sender_id == message.sender_id
                and shadow.connection_id == message.connection_id
                and shadow.content == message.content
            ):
                return i
        return None

    def _apply_confirmed(self, message: Message, temp_id: Optional[str] = None):
        """Fold one stored row into the thread"""
        if any(isinstance(e, Confirmed) and e.message.id == message.id for e in self.entries):
            return

        index = self._index_of(temp_id) if temp_id is not None else None
        if index is None:
            index = self._shadow_index_for(message)

        confirmed = Confirmed(message=message)
        if index is None:
            _insert_sorted(self.entries, confirmed)
            return

        # Replace in place unless that would break created_at order
        self.entries[index] = confirmed
        before = self.entries[index - 1].message.created_at if index > 0 else None
        after = self.entries[index + 1].message.created_at if index + 1 < len(self.entries) else None
        if (before is not None and before > message.created_at) or (
            after is not None and after < message.created_at
        ):
            del self.entries[index]
            _insert_sorted(self.entries, confirmed)

    def _merge_snapshot(self, rows: List[Message]):
        """
        Merge a full fetch into the thread by message id

        Confirmed entries missing from the fetch stay; the fetch may have
        been read before they were inserted.
        """
        fetched = {m.id for m in rows}
        shown = {e.message.id for e in self.entries if isinstance(e, Confirmed)}
        by_client_id = {m.client_id: m for m in rows if m.client_id is not None}
        unclaimed = [m for m in rows if m.client_id is None and m.id not in shown]

        merged: List[ThreadEntry] = []
        for row in sorted(rows, key=lambda m: m.created_at):
            merged.append(Confirmed(message=row))

        for entry in self.entries:
            if isinstance(entry, Confirmed):
                if entry.message.id not in fetched:
                    _insert_sorted(merged, entry)
                continue
            shadow = entry.message
            if shadow.client_id in by_client_id:
                continue
            if isinstance(entry, Pending):
                match = next(
                    (
                        m
                        for m in unclaimed
                        if m.sender_id == shadow.sender_id and m.content == shadow.content
                    ),
                    None,
                )
                if match is not None:
                    unclaimed.remove(match)
                    continue
            _insert_sorted(merged, entry)

        self.entries = merged
