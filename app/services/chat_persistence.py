"""Conversation persistence engine.

Single integration point between chat UI actions and the store:
- Optimistic send: render a turn (or a single message) at once, confirm it in the background
- Reconciliation of optimistic entries by temp id (direct save or queue replay)
- Cursor pagination over the user's timeline (load newest, load older)
- Error state and banner for the chat view
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set

from app.core.auth import AuthEvent, AuthSession
from app.core.errors import (
    ErrorKind,
    ErrorSource,
    UnauthenticatedError,
    banner_title,
    is_retryable,
)
from app.models.message import (
    MessageRole,
    OptimisticMessage,
    WindowEntry,
    new_temp_id,
    utc_now,
)
from app.schemas.results import ErrorBanner, QueueEvent, QueueEventKind, QueuedWrite, QueueStatus
from app.services.message_gateway import MessageGateway
from app.services.retry_queue import OfflineRetryQueue
from app.services.visible_window import VisibleWindow

logger = logging.getLogger(__name__)

# The AI turn sorts after the user turn even before the store confirms them
AI_TIMESTAMP_OFFSET = timedelta(milliseconds=1)

EMPTY_REPLY_MESSAGE = "The assistant returned an empty reply. Please try sending your message again."

StateListener = Callable[["ConversationPersistenceEngine"], None]


class ConversationPersistenceEngine:
    """
    Owns the visible window of one user session.

    Not shared between users: when the signed-in identity changes the window
    is reloaded, and it is cleared on sign-out.
    """

    def __init__(
        self,
        auth: AuthSession,
        gateway: MessageGateway,
        queue: OfflineRetryQueue,
        page_size: int = 50,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize engine and subscribe to auth and queue events.

        Args:
            auth: Session identity; sign-in triggers load_initial, sign-out clears
            gateway: Message store gateway
            queue: Process-wide offline retry queue
            page_size: Default number of messages per page
            clock: Source of optimistic timestamps (naive UTC)
        """
        self.auth = auth
        self.gateway = gateway
        self.queue = queue
        self.page_size = page_size
        self._clock = clock

        self._window = VisibleWindow()
        self.has_more = False
        self.total_count: Optional[int] = None
        self.is_loading = False
        self.is_loading_more = False
        self.error: Optional[str] = None
        self.error_source: Optional[ErrorSource] = None
        self.queue_status: QueueStatus = queue.status()

        self._saves_in_flight = 0
        self._loaded_for: Optional[str] = None
        self._listeners: List[StateListener] = []
        self._tasks: Set[asyncio.Task] = set()

        self._unsubscribe_auth = auth.subscribe(self._on_auth_event)
        queue.add_listener(self._on_queue_event)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def messages(self) -> List[WindowEntry]:
        """Visible window, ascending by (created_at, id)."""
        return self._window.entries()

    @property
    def is_saving(self) -> bool:
        return self._saves_in_flight > 0

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` after every state change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _set_error(self, message: str, source: ErrorSource) -> None:
        self.error = message
        self.error_source = source

    def clear_error(self) -> None:
        """Dismiss the current error; message state is untouched."""
        self.error = None
        self.error_source = None
        self._notify()

    def banner(self) -> Optional[ErrorBanner]:
        """
        Banner for the chat view, or None when there is nothing to show.

        Pending queue items keep a banner up (with a retry action) even after
        the error text was dismissed.
        """
        pending = self.queue.status().queue_length
        if self.error is None and pending == 0:
            return None
        source = self.error_source or ErrorSource.PERSISTENCE
        message = self.error or f"{pending} message(s) waiting to be saved."
        return ErrorBanner(
            title=banner_title(source),
            message=message,
            can_retry=pending > 0,
            can_dismiss=True,
        )

    def reset(self) -> None:
        """Forget the window (used on sign-out)."""
        self._window.clear()
        self.has_more = False
        self.total_count = None
        self._loaded_for = None
        self.error = None
        self.error_source = None
        self._notify()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _on_auth_event(self, event: AuthEvent, user_id: Optional[str]) -> None:
        if user_id is None:
            self.reset()
            return
        if user_id == self._loaded_for:
            return
        if self._loaded_for is not None:
            # identity switched without a sign-out in between
            self.reset()
        logger.debug(f"Auth event {event.value}: loading history for user={user_id}")
        self._spawn(self._load_for_session())

    def _spawn(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; history will load on the next load_initial()")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _load_for_session(self) -> None:
        try:
            await self.load_initial()
        except UnauthenticatedError:
            logger.debug("Session ended before history could load")

    async def close(self) -> None:
        """Detach from auth and queue and cancel background loads."""
        self._unsubscribe_auth()
        self.queue.remove_listener(self._on_queue_event)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def load_initial(self, page_size: Optional[int] = None) -> None:
        """
        Fill the window with the newest page of the signed-in user's history.

        This user's optimistic entries still waiting for confirmation are
        kept, also when the load fails.

        Args:
            page_size: Messages to load, defaults to the engine page size

        Raises:
            UnauthenticatedError: No user is signed in
        """
        user_id = self._require_user()
        size = page_size or self.page_size
        self._loaded_for = user_id
        self.is_loading = True
        self.error = None
        self.error_source = None
        self._notify()

        try:
            result = await self.gateway.query_recent(user_id, size)
            if self.auth.user_id != user_id:
                return

            if result.success:
                self._window.replace_all([*result.data, *self._pending_for(user_id)])
                self.has_more = result.has_more
                self.total_count = result.total_count
                logger.info(
                    f"Loaded {len(result.data)} messages for user={user_id} "
                    f"(total={result.total_count}, has_more={result.has_more})"
                )
            else:
                self._set_error(result.error or "Failed to load chat history", ErrorSource.PERSISTENCE)
                self._window.replace_all(self._pending_for(user_id))
                self.has_more = False
                self.total_count = 0
        finally:
            self.is_loading = False
            self._notify()

    async def load_older(self, page_size: Optional[int] = None) -> None:
        """
        Prepend the page just before the oldest loaded message.

        No-op while another load-older runs, when there is nothing older, or
        when the window holds no confirmed message to use as a cursor.

        Raises:
            UnauthenticatedError: No user is signed in
        """
        user_id = self._require_user()
        if self.is_loading_more or not self.has_more:
            return
        oldest = self._window.oldest_confirmed()
        if oldest is None:
            return

        self.is_loading_more = True
        self.error = None
        self.error_source = None
        self._notify()

        try:
            result = await self.gateway.query_older_than(
                user_id,
                oldest.created_at,
                page_size or self.page_size,
                before_id=oldest.id,
            )
            if self.auth.user_id != user_id:
                return

            if result.success:
                added = self._window.prepend(result.data)
                self.has_more = result.has_more
                logger.debug(f"Prepended {added} older messages for user={user_id}")
            else:
                self._set_error(result.error or "Failed to load more chat history", ErrorSource.PERSISTENCE)
        finally:
            self.is_loading_more = False
            self._notify()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _require_user(self) -> str:
        try:
            return self.auth.require_user()
        except UnauthenticatedError as e:
            self._set_error(e.message, ErrorSource.AUTH)
            self._notify()
            raise

    async def send(self, user_message: str, ai_message: str) -> None:
        """
        Show a conversation turn immediately and persist it.

        Both optimistic entries are in the window before the first
        suspension point. On a confirmed save they are replaced by the stored
        rows; otherwise they stay visible with ``retry_count`` raised and,
        for transient store failures, both inserts go to the retry queue.

        Args:
            user_message: What the user typed
            ai_message: The already generated assistant reply

        Raises:
            UnauthenticatedError: No user is signed in
        """
        user_id = self._require_user()

        if not ai_message or not ai_message.strip():
            self._set_error(EMPTY_REPLY_MESSAGE, ErrorSource.COMPLETION)
            self._notify()
            return

        now = self._clock()
        user_optimistic = self._optimistic(user_id, MessageRole.USER, user_message, now)
        ai_optimistic = self._optimistic(user_id, MessageRole.AI, ai_message, now + AI_TIMESTAMP_OFFSET)
        self._window.insert(user_optimistic)
        self._window.insert(ai_optimistic)

        self._saves_in_flight += 1
        self.error = None
        self.error_source = None
        self._notify()

        try:
            result = await self.gateway.insert_many(
                [user_optimistic.to_create(), ai_optimistic.to_create()]
            )

            if result.success and result.data is not None and len(result.data) == 2:
                confirmed_user, confirmed_ai = result.data
                self._window.replace(user_optimistic.temp_id, confirmed_user)
                self._window.replace(ai_optimistic.temp_id, confirmed_ai)
                if self.total_count is not None:
                    self.total_count += 2
                logger.debug(f"Confirmed turn {user_optimistic.temp_id}/{ai_optimistic.temp_id}")
                return

            self._mark_failed(user_optimistic.temp_id, ai_optimistic.temp_id)

            if result.success:
                count = len(result.data or [])
                logger.error(f"Unexpected save result for user={user_id}: {count} rows")
                self._set_error(
                    f"Unexpected save result: expected 2 messages, got {count}",
                    ErrorSource.PERSISTENCE,
                )
            else:
                self._queue_or_fail(result.error, result.error_kind, user_optimistic, ai_optimistic)
        finally:
            self._saves_in_flight -= 1
            self.queue_status = self.queue.status()
            self._notify()

    async def save_message(self, content: str, role: MessageRole = MessageRole.USER) -> None:
        """
        Show a single message immediately and persist it.

        Same contract as ``send`` for one entry: replaced by the stored row on
        success, kept optimistic (and queued when the failure is transient)
        otherwise.

        Raises:
            UnauthenticatedError: No user is signed in
        """
        user_id = self._require_user()

        optimistic = self._optimistic(user_id, role, content, self._clock())
        self._window.insert(optimistic)
        self._saves_in_flight += 1
        self.error = None
        self.error_source = None
        self._notify()

        try:
            result = await self.gateway.insert_one(optimistic.to_create())
            if result.success and result.data is not None:
                self._window.replace(optimistic.temp_id, result.data)
                if self.total_count is not None:
                    self.total_count += 1
                return

            self._mark_failed(optimistic.temp_id)
            self._queue_or_fail(result.error, result.error_kind, optimistic)
        finally:
            self._saves_in_flight -= 1
            self.queue_status = self.queue.status()
            self._notify()

    def _queue_or_fail(
        self, error: Optional[str], error_kind: Optional[ErrorKind], *entries: OptimisticMessage
    ) -> None:
        if self.queue.enabled and is_retryable(error_kind):
            for optimistic in entries:
                self.queue.enqueue(QueuedWrite(id=optimistic.temp_id, message=optimistic.to_create()))
            self._set_error(f"Message queued for retry: {error}", ErrorSource.PERSISTENCE)
        else:
            self._set_error(f"Failed to save message: {error}", ErrorSource.PERSISTENCE)

    def _optimistic(
        self, user_id: str, role: MessageRole, content: str, created_at: datetime
    ) -> OptimisticMessage:
        temp_id = new_temp_id()
        return OptimisticMessage(
            id=temp_id,
            temp_id=temp_id,
            user_id=user_id,
            role=role,
            content=content,
            created_at=created_at,
        )

    def _pending_for(self, user_id: str) -> List[OptimisticMessage]:
        return [entry for entry in self._window.optimistic() if entry.user_id == user_id]

    def _mark_failed(self, *temp_ids: str) -> None:
        for temp_id in temp_ids:
            entry = self._window.get(temp_id)
            if isinstance(entry, OptimisticMessage):
                entry.is_optimistic = True
                entry.retry_count += 1

    # ------------------------------------------------------------------
    # Retry queue
    # ------------------------------------------------------------------

    async def retry_now(self) -> None:
        """Drain the retry queue now instead of waiting for the next pass."""
        await self.queue.drain()
        self.queue_status = self.queue.status()
        self._notify()

    def _on_queue_event(self, event: QueueEvent) -> None:
        self.queue_status = self.queue.status()
        if event.item.message.user_id != self.auth.user_id:
            # another session's write; only the queue length concerns this window
            self._notify()
            return
        entry = self._window.get(event.item.id)

        if isinstance(entry, OptimisticMessage):
            if event.kind == QueueEventKind.DELIVERED and event.message is not None:
                self._window.replace(entry.temp_id, event.message)
                if self.total_count is not None:
                    self.total_count += 1
                if self.queue_status.queue_length == 0 and self.error_source == ErrorSource.PERSISTENCE:
                    self.error = None
                    self.error_source = None
            elif event.kind == QueueEventKind.RETRYING:
                entry.retry_count = event.item.retry_count + 1
            elif event.kind == QueueEventKind.DROPPED:
                entry.retry_count = event.item.retry_count + 1
                self._set_error(
                    "Some messages could not be saved. Please check your connection and try again.",
                    ErrorSource.PERSISTENCE,
                )

        self._notify()
