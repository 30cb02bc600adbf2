"""Chat message SQLModel definitions.

Models:
- ChatMessage: persisted message row, one per turn, owned by one user
- ChatMessageCreate: insert payload (no id, timestamp optional)
- ChatMessageRead: confirmed message as held in the visible window
- OptimisticMessage: client-only message rendered before the store confirms it
"""
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Union

from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    """Naive UTC timestamp, the form every stored ``created_at`` takes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_message_id() -> str:
    return uuid.uuid4().hex


def new_temp_id() -> str:
    """Client-side correlation token, unrelated to the server id."""
    return f"temp_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class MessageRole(str, Enum):
    """Author of a message."""

    USER = "user"
    AI = "ai"


class ChatMessage(SQLModel, table=True):
    """
    Persisted chat message.

    Ownership: each row belongs to exactly one user via user_id.
    Ordering: (created_at, id) is the total order of a user's timeline.
    Rows are never updated.
    """
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_user_timeline", "user_id", "created_at", "id"),
    )

    id: str = Field(default_factory=new_message_id, primary_key=True, max_length=64)
    user_id: str = Field(index=True, nullable=False, max_length=64)
    role: str = Field(default=MessageRole.USER.value, max_length=10)  # "user" or "ai"
    content: str = Field()
    created_at: datetime = Field(default_factory=utc_now, nullable=False, sa_type=DateTime)


class ChatMessageCreate(SQLModel):
    """Insertable payload. ``created_at`` is assigned at write time when absent."""

    user_id: str
    role: MessageRole
    content: str
    created_at: Optional[datetime] = None


class ChatMessageRead(SQLModel):
    """A message the store has confirmed."""

    kind: Literal["confirmed"] = "confirmed"
    id: str
    user_id: str
    role: MessageRole
    content: str
    created_at: datetime
    is_optimistic: bool = False

    @classmethod
    def from_row(cls, row: ChatMessage) -> "ChatMessageRead":
        return cls(
            id=row.id,
            user_id=row.user_id,
            role=row.role,
            content=row.content,
            created_at=row.created_at,
        )


class OptimisticMessage(SQLModel):
    """
    Locally rendered message awaiting store confirmation.

    ``id`` mirrors ``temp_id`` so window lookups treat both kinds alike.
    Never persisted as-is.
    """

    kind: Literal["optimistic"] = "optimistic"
    id: str
    temp_id: str
    user_id: str
    role: MessageRole
    content: str
    created_at: datetime
    is_optimistic: bool = True
    retry_count: int = Field(default=0, ge=0)

    def to_create(self) -> ChatMessageCreate:
        """Insert payload for this message (the store assigns id and timestamp)."""
        return ChatMessageCreate(user_id=self.user_id, role=self.role, content=self.content)


WindowEntry = Union[ChatMessageRead, OptimisticMessage]
