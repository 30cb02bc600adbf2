"""Authentication collaborators.

- AuthSession: current user identity plus session lifecycle events, the
  contract the persistence engine consumes
- decode_access_token: verify a bearer token issued by the auth provider
"""
import logging
from enum import Enum
from typing import Callable, List, Optional

import jwt

from app.config import settings
from app.core.errors import AUTH_EXPIRED_MESSAGE, ChatError, ErrorKind, UnauthenticatedError

logger = logging.getLogger(__name__)


class AuthEvent(str, Enum):
    SIGNED_IN = "signed-in"
    SIGNED_OUT = "signed-out"
    TOKEN_REFRESHED = "token-refreshed"


AuthListener = Callable[[AuthEvent, Optional[str]], None]


class AuthSession:
    """
    Identity of the signed-in user for one client session.

    ``user_id`` is None while nobody is signed in. Listeners receive
    ``(event, user_id)`` after the state has changed.
    """

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._listeners: List[AuthListener] = []

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def require_user(self) -> str:
        """Current user id, or UnauthenticatedError."""
        if self._user_id is None:
            raise UnauthenticatedError()
        return self._user_id

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: AuthEvent) -> None:
        for listener in list(self._listeners):
            listener(event, self._user_id)

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id
        logger.info(f"User signed in: {user_id}")
        self._emit(AuthEvent.SIGNED_IN)

    def sign_out(self) -> None:
        previous = self._user_id
        self._user_id = None
        logger.info(f"User signed out: {previous}")
        self._emit(AuthEvent.SIGNED_OUT)

    def token_refreshed(self, user_id: Optional[str] = None) -> None:
        """Session token renewed; ``user_id`` updates the identity when given."""
        if user_id is not None:
            self._user_id = user_id
        self._emit(AuthEvent.TOKEN_REFRESHED)


def decode_access_token(token: str) -> str:
    """
    Verify a bearer token and return its user id (``sub`` claim).

    Raises:
        ChatError: AUTH_EXPIRED when the token has expired
        UnauthenticatedError: Token missing, malformed or badly signed
    """
    if not token:
        raise UnauthenticatedError()
    if not settings.JWT_SECRET:
        raise UnauthenticatedError("Token verification is not configured")

    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE or None,
            options={"verify_aud": bool(settings.JWT_AUDIENCE)},
        )
    except jwt.ExpiredSignatureError:
        raise ChatError(AUTH_EXPIRED_MESSAGE, kind=ErrorKind.AUTH_EXPIRED)
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected access token: {e}")
        raise UnauthenticatedError("Invalid access token")

    user_id = claims.get("sub")
    if not user_id:
        raise UnauthenticatedError("Access token has no subject")
    return str(user_id)
