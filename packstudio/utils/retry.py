"""Retry helpers shared by the external service clients."""

import asyncio
import random
from typing import Any, Callable, Optional, Tuple, Type

from loguru import logger


class RetryManager:
    """
    Manages exponential backoff retries with jitter.
    """

    @staticmethod
    def backoff_delay(
        attempt: int, base_delay: float, max_delay: float, jitter_ratio: float = 0.1
    ) -> float:
        """Delay before retry number ``attempt`` (0-based), jitter included."""
        delay = min(base_delay * (2**attempt), max_delay)
        return delay + random.uniform(0, delay * jitter_ratio)

    @staticmethod
    async def retry_with_backoff(
        func: Callable,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        should_retry: Optional[Callable[[Exception], bool]] = None,
        on_retry: Optional[Callable[[int, Exception], None]] = None,
    ) -> Any:
        """
        Retry function with exponential backoff.

        Args:
            func: Async function to retry
            max_retries: Maximum number of retries after the first attempt
            base_delay: Initial delay in seconds (doubles each retry)
            max_delay: Maximum delay cap
            retry_on: Exception types that are eligible for a retry
            should_retry: Optional predicate; returning False re-raises at once
            on_retry: Optional callback(attempt, exception) on each retry

        Returns:
            Result of func()

        Raises:
            Last exception if all retries exhausted
        """
        for attempt in range(max_retries + 1):
            try:
                return await func()
            except retry_on as e:
                if should_retry is not None and not should_retry(e):
                    raise

                if attempt >= max_retries:
                    logger.error(f"All {max_retries} retries exhausted")
                    raise

                total_delay = RetryManager.backoff_delay(attempt, base_delay, max_delay)

                logger.warning(
                    f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                    f"Retrying in {total_delay:.1f}s..."
                )

                if on_retry:
                    on_retry(attempt, e)

                await asyncio.sleep(total_delay)
