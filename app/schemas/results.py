"""Result and status shapes shared by the gateway, queue and engine."""
from datetime import datetime
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from app.core.errors import ErrorKind
from app.models.message import ChatMessageCreate, ChatMessageRead, utc_now

T = TypeVar("T")


class DatabaseResult(BaseModel, Generic[T]):
    """Uniform outcome of a gateway operation. ``error`` is None on success."""
    data: Optional[T] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    success: bool = False


class MessagePage(BaseModel):
    """A page of messages in ascending order."""
    data: List[ChatMessageRead] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    success: bool = False
    has_more: bool = False
    total_count: Optional[int] = None


class QueuedWrite(BaseModel):
    """An insert that failed at the gateway and waits for replay."""
    id: str  # originating temp id
    message: ChatMessageCreate
    enqueued_at: datetime = Field(default_factory=utc_now)
    retry_count: int = Field(default=0, ge=0)


class QueueStatus(BaseModel):
    queue_length: int = 0
    is_processing: bool = False


class QueueEventKind(str, Enum):
    DELIVERED = "delivered"
    RETRYING = "retrying"
    DROPPED = "dropped"


class QueueEvent(BaseModel):
    kind: QueueEventKind
    item: QueuedWrite
    message: Optional[ChatMessageRead] = None  # set for DELIVERED


class ErrorBanner(BaseModel):
    """What the chat view shows for the current error."""
    title: str
    message: str
    can_retry: bool = False
    can_dismiss: bool = True
