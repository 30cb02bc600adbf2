"""Message store gateway.

Thin operation set over the ``chat_messages`` and ``profiles`` tables:
- Insert one / many (single transaction)
- Range queries ascending, newest page, older-than-cursor page
- Count, bulk delete per user, health check
- Profile lookup and creation

Every operation retries with exponential backoff and returns a result object;
failures are classified, never raised to the caller.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from sqlalchemy import and_, delete, func, or_
from sqlalchemy.exc import NoResultFound
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import classify_store_error
from app.core.retry import RetryConfig, retry_async
from app.models.message import ChatMessage, ChatMessageCreate, ChatMessageRead, utc_now
from app.models.profile import UserProfile, UserProfileRead
from app.schemas.results import DatabaseResult, MessagePage

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = Callable[[], AsyncSession]


class MessageGateway:
    """Sole caller of the message store."""

    def __init__(
        self,
        session_factory: SessionFactory,
        retry_config: Optional[RetryConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize gateway.

        Args:
            session_factory: Callable returning a new async session (context manager)
            retry_config: Backoff policy, defaults to 3 attempts 1s..5s
            clock: Source of write timestamps (naive UTC)
        """
        self._session_factory = session_factory
        self.retry_config = retry_config or RetryConfig()
        self._clock = clock

    async def _run(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await retry_async(operation, self.retry_config, name=f"Database {name}")

    def _failure(self, name: str, exc: Exception, data: Any = None) -> DatabaseResult:
        kind, message = classify_store_error(exc)
        logger.error(f"Database error in {name}: {exc}")
        return DatabaseResult(data=data, error=message, error_kind=kind, success=False)

    def _page_failure(self, name: str, exc: Exception) -> MessagePage:
        kind, message = classify_store_error(exc)
        logger.error(f"Database error in {name}: {exc}")
        return MessagePage(error=message, error_kind=kind, success=False)

    @staticmethod
    def _to_row(message: ChatMessageCreate, created_at: datetime) -> ChatMessage:
        return ChatMessage(
            user_id=message.user_id,
            role=message.role.value,
            content=message.content,
            created_at=message.created_at or created_at,
        )

    @staticmethod
    def _timeline_desc():
        return (col(ChatMessage.created_at).desc(), col(ChatMessage.id).desc())

    async def insert_one(self, message: ChatMessageCreate) -> DatabaseResult[ChatMessageRead]:
        """
        Persist a single message.

        Args:
            message: Insert payload; ``created_at`` defaults to now

        Returns:
            Result holding the confirmed message
        """
        async def operation() -> ChatMessageRead:
            async with self._session_factory() as session:
                row = self._to_row(message, self._clock())
                session.add(row)
                await session.commit()
                return ChatMessageRead.from_row(row)

        try:
            saved = await self._run("insert_one", operation)
        except Exception as e:
            return self._failure("insert_one", e)
        return DatabaseResult(data=saved, success=True)

    async def insert_many(
        self, messages: Sequence[ChatMessageCreate]
    ) -> DatabaseResult[List[ChatMessageRead]]:
        """
        Persist an ordered batch in one transaction.

        Rows without a timestamp get ``now + i`` microseconds so the batch
        keeps its order in the timeline. Any failure reports the whole
        batch as failed.

        Args:
            messages: Ordered insert payloads

        Returns:
            Result holding the confirmed messages in input order
        """
        async def operation() -> List[ChatMessageRead]:
            async with self._session_factory() as session:
                base = self._clock()
                rows = [
                    self._to_row(message, base + timedelta(microseconds=index))
                    for index, message in enumerate(messages)
                ]
                session.add_all(rows)
                await session.commit()
                return [ChatMessageRead.from_row(row) for row in rows]

        try:
            saved = await self._run("insert_many", operation)
        except Exception as e:
            return self._failure("insert_many", e, data=[])
        return DatabaseResult(data=saved, success=True)

    async def query_ascending(
        self, user_id: str, limit: int = 100, offset: int = 0
    ) -> DatabaseResult[List[ChatMessageRead]]:
        """Oldest-first slice of a user's timeline."""
        async def operation() -> List[ChatMessageRead]:
            async with self._session_factory() as session:
                statement = (
                    select(ChatMessage)
                    .where(ChatMessage.user_id == user_id)
                    .order_by(col(ChatMessage.created_at).asc(), col(ChatMessage.id).asc())
                    .offset(offset)
                    .limit(limit)
                )
                rows = (await session.exec(statement)).all()
                return [ChatMessageRead.from_row(row) for row in rows]

        try:
            rows = await self._run("query_ascending", operation)
        except Exception as e:
            return self._failure("query_ascending", e, data=[])
        return DatabaseResult(data=rows, success=True)

    async def _newest_first(
        self,
        user_id: str,
        limit: int,
        before: Optional[datetime] = None,
        before_id: Optional[str] = None,
    ) -> List[ChatMessageRead]:
        statement = select(ChatMessage).where(ChatMessage.user_id == user_id)
        if before is not None:
            older = col(ChatMessage.created_at) < before
            if before_id is not None:
                older = or_(
                    older,
                    and_(col(ChatMessage.created_at) == before, col(ChatMessage.id) < before_id),
                )
            statement = statement.where(older)
        statement = statement.order_by(*self._timeline_desc()).limit(limit)

        async with self._session_factory() as session:
            rows = (await session.exec(statement)).all()
            return [ChatMessageRead.from_row(row) for row in rows]

    async def query_recent(self, user_id: str, limit: int = 50) -> MessagePage:
        """
        Newest ``limit`` messages, returned oldest-first.

        Fetches ``limit + 1`` rows newest-first and drops the lookahead row.
        ``has_more`` comes from the exact count; when the count query fails
        it falls back to whether the lookahead row was present.

        Args:
            user_id: Timeline owner
            limit: Page size

        Returns:
            MessagePage with has_more and total_count
        """
        count_result = await self.count(user_id)
        total_count = count_result.data if count_result.success else None

        async def operation() -> List[ChatMessageRead]:
            return await self._newest_first(user_id, limit + 1)

        try:
            newest = await self._run("query_recent", operation)
        except Exception as e:
            return self._page_failure("query_recent", e)

        lookahead_found = len(newest) > limit
        messages = list(reversed(newest[:limit]))
        has_more = total_count > limit if total_count is not None else lookahead_found
        return MessagePage(
            data=messages,
            success=True,
            has_more=has_more,
            total_count=total_count,
        )

    async def query_older_than(
        self,
        user_id: str,
        before: datetime,
        limit: int = 50,
        before_id: Optional[str] = None,
    ) -> MessagePage:
        """
        Page of messages strictly older than a cursor, returned oldest-first.

        With ``before_id`` the cursor is the pair ``(before, before_id)`` so
        messages sharing the cursor's timestamp are neither skipped nor
        repeated.

        Args:
            user_id: Timeline owner
            before: Cursor timestamp (created_at of the oldest loaded message)
            limit: Page size
            before_id: Id of the oldest loaded message

        Returns:
            MessagePage with has_more derived from the lookahead row
        """
        async def operation() -> List[ChatMessageRead]:
            return await self._newest_first(user_id, limit + 1, before=before, before_id=before_id)

        try:
            newest = await self._run("query_older_than", operation)
        except Exception as e:
            return self._page_failure("query_older_than", e)

        has_more = len(newest) > limit
        return MessagePage(
            data=list(reversed(newest[:limit])),
            success=True,
            has_more=has_more,
        )

    async def count(self, user_id: str) -> DatabaseResult[int]:
        """Exact number of messages in a user's timeline."""
        async def operation() -> int:
            async with self._session_factory() as session:
                statement = (
                    select(func.count())
                    .select_from(ChatMessage)
                    .where(ChatMessage.user_id == user_id)
                )
                return int((await session.exec(statement)).one())

        try:
            total = await self._run("count", operation)
        except Exception as e:
            return self._failure("count", e)
        return DatabaseResult(data=total, success=True)

    async def delete_all(self, user_id: str) -> DatabaseResult[bool]:
        """Remove every message owned by ``user_id``."""
        async def operation() -> bool:
            async with self._session_factory() as session:
                await session.execute(delete(ChatMessage).where(col(ChatMessage.user_id) == user_id))
                await session.commit()
                return True

        try:
            await self._run("delete_all", operation)
        except Exception as e:
            return self._failure("delete_all", e, data=False)
        logger.info(f"Deleted all messages for user={user_id}")
        return DatabaseResult(data=True, success=True)

    async def health_check(self) -> DatabaseResult[bool]:
        """Lightweight read used to decide whether the store is reachable."""
        async def operation() -> bool:
            async with self._session_factory() as session:
                await session.exec(select(ChatMessage.id).limit(1))
                return True

        try:
            await self._run("health_check", operation)
        except Exception as e:
            return self._failure("health_check", e, data=False)
        return DatabaseResult(data=True, success=True)

    async def is_online(self) -> bool:
        """True when the store answered a health check."""
        return (await self.health_check()).success

    async def get_profile(self, user_id: str) -> DatabaseResult[UserProfileRead]:
        """
        Fetch the profile of ``user_id``.

        Returns:
            Result holding the profile; NOT_FOUND when the user has none
        """
        async def operation() -> UserProfileRead:
            async with self._session_factory() as session:
                row = await session.get(UserProfile, user_id)
                if row is None:
                    raise NoResultFound(f"No profile for user {user_id}")
                return UserProfileRead.from_row(row)

        try:
            profile = await self._run("get_profile", operation)
        except Exception as e:
            return self._failure("get_profile", e)
        return DatabaseResult(data=profile, success=True)

    async def create_profile(self, user_id: str, email: str) -> DatabaseResult[UserProfileRead]:
        """
        Create the profile row for a newly signed-up user.

        Returns:
            Result holding the new profile; DUPLICATE_ENTRY when it already exists
        """
        async def operation() -> UserProfileRead:
            async with self._session_factory() as session:
                now = self._clock()
                row = UserProfile(id=user_id, email=email, created_at=now, updated_at=now)
                session.add(row)
                await session.commit()
                return UserProfileRead.from_row(row)

        try:
            profile = await self._run("create_profile", operation)
        except Exception as e:
            return self._failure("create_profile", e)
        logger.info(f"Created profile for user={user_id}")
        return DatabaseResult(data=profile, success=True)
