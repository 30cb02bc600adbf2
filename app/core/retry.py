"""Exponential backoff for store operations."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from app.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy. Delays are in seconds."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.DB_RETRY_MAX_ATTEMPTS,
            base_delay=settings.DB_RETRY_BASE_DELAY,
            max_delay=settings.DB_RETRY_MAX_DELAY,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    name: str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds or attempts run out.

    Attempts run one after another; the caller is suspended for the whole
    sequence. Only the last attempt's exception is raised.

    Args:
        operation: Zero-argument coroutine function, called once per attempt
        config: Backoff policy
        name: Label used in log messages

    Returns:
        The first successful result

    Raises:
        Exception: Whatever the final attempt raised
    """
    attempts = max(1, config.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt >= attempts:
                raise
            delay = config.delay_for(attempt)
            logger.warning(
                f"{name} failed (attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)
