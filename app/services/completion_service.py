"""Single-turn text completion for the Krismini persona.

The provider is reached through the OpenAI client; by default it points at
Gemini's OpenAI-compatible endpoint.
"""
import logging
from typing import Optional

from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI

from app.config import settings
from app.core.errors import CompletionError, humanize_completion_error

logger = logging.getLogger(__name__)

SYSTEM_PERSONA = (
    "You are Krismini, a supportive, witty, and honest best friend. Always respond "
    "in a friendly, encouraging, and positive tone, and add a touch of playfulness "
    "when appropriate."
)

EMPTY_RESPONSE_FALLBACK = "No response from the assistant."


class CompletionService:
    """Turns a prompt into the assistant's reply."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize completion service.

        Args:
            client: Preconfigured client; built lazily from settings when None
            model: Model name, defaults to settings.OPENAI_MODEL
            timeout: Request timeout in seconds, defaults to settings.OPENAI_TIMEOUT
        """
        self._client = client
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout if timeout is not None else settings.OPENAI_TIMEOUT

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise CompletionError("Missing completion API key", status_code=500)
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                base_url=settings.OPENAI_BASE_URL or None,
            )
        return self._client

    async def complete(self, prompt: str) -> str:
        """
        Generate a reply to ``prompt``.

        Args:
            prompt: User's message

        Returns:
            Reply text; a fixed fallback when the provider returns nothing

        Raises:
            CompletionError: Blank prompt (400), missing key (500) or a
                provider failure with its status and a humanized message
        """
        if not prompt or not prompt.strip():
            raise CompletionError("Missing prompt", status_code=400)

        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PERSONA},
                    {"role": "user", "content": prompt},
                ],
                timeout=self.timeout,
            )
        except APIConnectionError as e:
            logger.error(f"Completion provider unreachable: {e}")
            raise CompletionError(humanize_completion_error(None, offline=True), status_code=503)
        except APIStatusError as e:
            logger.error(f"Completion provider returned {e.status_code}: {e}")
            raise CompletionError(humanize_completion_error(e.status_code, str(e)), status_code=e.status_code)
        except APIError as e:
            logger.error(f"Completion provider error: {e}")
            raise CompletionError(humanize_completion_error(500), status_code=500)

        text = response.choices[0].message.content if response.choices else None
        if not text or not text.strip():
            logger.warning("Completion provider returned an empty reply")
            return EMPTY_RESPONSE_FALLBACK
        return text
