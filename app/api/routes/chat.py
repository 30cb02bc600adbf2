"""Chat history routes.

Provides:
- GET /api/{user_id}/messages - Newest page, or the page before a cursor
- DELETE /api/{user_id}/messages - Delete the user's whole history
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.config import settings
from app.core.deps import get_current_user, get_gateway
from app.schemas.results import MessagePage
from app.services.message_gateway import MessageGateway

router = APIRouter(prefix="/api", tags=["chat"])


def _verify_owner(user_id: str, current_user_id: str) -> None:
    if current_user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User ID mismatch",
        )


@router.get("/{user_id}/messages", response_model=MessagePage)
async def list_messages(
    user_id: str,
    limit: int = Query(default=settings.CHAT_PAGE_SIZE, ge=1, le=200),
    before: Optional[datetime] = None,
    before_id: Optional[str] = None,
    current_user_id: str = Depends(get_current_user),
    gateway: MessageGateway = Depends(get_gateway),
) -> MessagePage:
    """
    Page through a user's history, oldest message first within the page.

    Without ``before`` the newest page is returned together with the total
    count; with it, the page just older than the cursor.

    Args:
        user_id: User ID from path
        limit: Page size
        before: created_at of the oldest message the caller already has
        before_id: id of that message (tie-break for equal timestamps)
        current_user_id: Authenticated user ID from the bearer token
        gateway: Message store gateway

    Raises:
        HTTPException: 401 if token user doesn't match path user
        HTTPException: 503 if the store could not be read
    """
    _verify_owner(user_id, current_user_id)

    if before is None:
        page = await gateway.query_recent(user_id, limit)
    else:
        if before.tzinfo is not None:
            before = before.astimezone(timezone.utc).replace(tzinfo=None)
        page = await gateway.query_older_than(user_id, before, limit, before_id=before_id)

    if not page.success:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=page.error,
        )
    return page


@router.delete("/{user_id}/messages", status_code=status.HTTP_204_NO_CONTENT)
async def delete_messages(
    user_id: str,
    current_user_id: str = Depends(get_current_user),
    gateway: MessageGateway = Depends(get_gateway),
) -> Response:
    """
    Delete every message of the authenticated user.

    Raises:
        HTTPException: 401 if token user doesn't match path user
        HTTPException: 503 if the store could not be written
    """
    _verify_owner(user_id, current_user_id)

    result = await gateway.delete_all(user_id)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=result.error,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
