"""Text completion route.

Provides:
- POST /api/completion - Generate the assistant's reply to a prompt
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.core.deps import get_completion_service
from app.core.errors import CompletionError
from app.services.completion_service import CompletionService

router = APIRouter(prefix="/api", tags=["completion"])


class CompletionRequest(BaseModel):
    """Request model for a completion."""
    prompt: str = ""


class CompletionResponse(BaseModel):
    """Response model for a completion."""
    response: str


@router.post("/completion", response_model=CompletionResponse)
async def create_completion(
    request: CompletionRequest,
    service: CompletionService = Depends(get_completion_service),
) -> CompletionResponse:
    """
    Single-turn completion for the chat persona.

    Raises:
        HTTPException: 400 if the prompt is blank
        HTTPException: 500 if no API key is configured
        HTTPException: provider status (429, 403, 5xx) with a humanized detail
    """
    try:
        reply = await service.complete(request.prompt)
    except CompletionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return CompletionResponse(response=reply)
