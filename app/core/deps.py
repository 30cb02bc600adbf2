"""Process-wide service instances and FastAPI dependencies."""
import logging
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.core.auth import decode_access_token
from app.core.errors import ChatError
from app.core.retry import RetryConfig
from app.database import get_session_factory
from app.services.completion_service import CompletionService
from app.services.message_gateway import MessageGateway
from app.services.retry_queue import OfflineRetryQueue

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_gateway() -> MessageGateway:
    return MessageGateway(get_session_factory(), RetryConfig.from_settings(settings))


@lru_cache
def get_retry_queue() -> OfflineRetryQueue:
    """The single retry queue of this process."""
    return OfflineRetryQueue.from_settings(get_gateway(), settings)


@lru_cache
def get_completion_service() -> CompletionService:
    return CompletionService()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    """
    Resolve the caller's user id from the bearer token.

    Raises:
        HTTPException: 401 when the token is missing, invalid or expired
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(credentials.credentials)
    except ChatError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
