import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from src.core.errors import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY = 1.0  # seconds


class RetryExecutor:
    """
    Retry-with-exponential-backoff around an async operation.

    Waits initial_delay * 2**attempt_index between attempts, no jitter.
    ValidationError is re-raised immediately. The wrapped operation must be
    safe to repeat.
    """

    def __init__(self, sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        self._sleep = sleep or asyncio.sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
    ) -> T:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error: Optional[Exception] = None

        for attempt in range(max_attempts):
            try:
                return await operation()
            except ValidationError:
                raise
            except Exception as e:
                last_error = e
                if attempt + 1 >= max_attempts:
                    break
                delay = initial_delay * (2 ** attempt)
                logger.warning(
                    f"Attempt {attempt + 1}/{max_attempts} failed ({e}). Retrying in {delay}s..."
                )
                await self._sleep(delay)

        logger.error(f"Giving up after {max_attempts} attempts: {last_error}")
        raise last_error
