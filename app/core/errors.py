"""Error taxonomy for the chat persistence layer.

Store failures are classified into an ``ErrorKind`` so callers decide on
retrying by kind, never by parsing raw driver messages. Completion failures
are turned into user-facing text by ``humanize_completion_error``.
"""
from enum import Enum
from typing import Optional, Tuple

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    NoResultFound,
    OperationalError,
)


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    DUPLICATE_ENTRY = "duplicate_entry"
    AUTH_EXPIRED = "auth_expired"
    NETWORK_ERROR = "network_error"
    CONSTRAINT_VIOLATION = "constraint_violation"
    UNAUTHENTICATED = "unauthenticated"
    UNKNOWN = "unknown"


class ErrorSource(str, Enum):
    """Layer an error surfaced from; decides how a banner is phrased."""

    PERSISTENCE = "persistence"
    COMPLETION = "completion"
    AUTH = "auth"


# Kinds worth replaying through the offline queue
RETRYABLE_KINDS = frozenset({
    ErrorKind.NETWORK_ERROR,
    ErrorKind.AUTH_EXPIRED,
    ErrorKind.UNKNOWN,
})

NOT_FOUND_MESSAGE = "No data found"
DUPLICATE_MESSAGE = "Duplicate entry"
AUTH_EXPIRED_MESSAGE = "Authentication expired. Please sign in again."
NETWORK_MESSAGE = "Network error. Please check your connection."
UNAUTHENTICATED_MESSAGE = "User not authenticated"

_UNIQUE_VIOLATION_CODE = "23505"
_NETWORK_HINTS = ("network", "connection", "could not connect", "timeout", "timed out", "unreachable")
_AUTH_HINTS = ("jwt", "token expired", "session expired")


class ChatError(Exception):
    """Base error raised by the persistence engine and completion service."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class UnauthenticatedError(ChatError):
    """Operation attempted without a signed-in user."""

    kind = ErrorKind.UNAUTHENTICATED

    def __init__(self, message: str = UNAUTHENTICATED_MESSAGE):
        super().__init__(message)


class CompletionError(ChatError):
    """Text completion failed; ``status_code`` is the HTTP status to report."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for source in (orig, exc):
        if source is None:
            continue
        code = getattr(source, "sqlstate", None) or getattr(source, "pgcode", None)
        if code:
            return str(code)
    return None


def classify_store_error(exc: BaseException) -> Tuple[ErrorKind, str]:
    """
    Map a lower-level store failure to an error kind and display message.

    Args:
        exc: Exception raised by the driver, SQLAlchemy or the transport

    Returns:
        (kind, message) where message is safe to show to the user
    """
    text = str(exc) or exc.__class__.__name__
    lowered = text.lower()

    if isinstance(exc, NoResultFound):
        return ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE

    if isinstance(exc, IntegrityError):
        if (
            _sqlstate(exc) == _UNIQUE_VIOLATION_CODE
            or "unique constraint" in lowered
            or "duplicate key" in lowered
        ):
            return ErrorKind.DUPLICATE_ENTRY, DUPLICATE_MESSAGE
        # NOT NULL, CHECK, foreign key: replaying the same row cannot succeed
        return ErrorKind.CONSTRAINT_VIOLATION, text

    if any(hint in lowered for hint in _AUTH_HINTS):
        return ErrorKind.AUTH_EXPIRED, AUTH_EXPIRED_MESSAGE

    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError, ConnectionError, TimeoutError)):
        return ErrorKind.NETWORK_ERROR, NETWORK_MESSAGE

    if any(hint in lowered for hint in _NETWORK_HINTS):
        return ErrorKind.NETWORK_ERROR, NETWORK_MESSAGE

    return ErrorKind.UNKNOWN, text or "An unexpected database error occurred"


def is_retryable(kind: Optional[ErrorKind]) -> bool:
    return kind in RETRYABLE_KINDS


def humanize_completion_error(
    status_code: Optional[int],
    detail: Optional[str] = None,
    offline: bool = False,
) -> str:
    """
    Best-effort user-facing text for a failed completion request.

    Args:
        status_code: HTTP status of the failed call, None when no response arrived
        detail: Raw error text, used when no better phrasing applies
        offline: True when the failure was a connectivity problem

    Returns:
        Message suitable for the chat error banner
    """
    if offline:
        return "You appear to be offline. Please check your network connection and try again."
    if status_code == 429:
        return "Too many requests. Please wait a moment before trying again."
    if status_code == 403:
        return "Access denied. Please sign in again or check your permissions."
    if status_code in (500, 502, 503, 504):
        return "The assistant is temporarily unavailable. Please try again shortly."
    if detail:
        return detail
    return "Something went wrong. Please try again."


def banner_title(source: ErrorSource) -> str:
    if source == ErrorSource.PERSISTENCE:
        return "Connection issue"
    if source == ErrorSource.AUTH:
        return "Sign-in required"
    return "Message error"
