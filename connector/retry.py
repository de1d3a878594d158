"""
Bounded exponential-backoff retry for idempotent reads.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from .errors import HttpError


logger = logging.getLogger(__name__)


class RetryingFetcher:
    """
    Executes one outbound call, retrying failed attempts with exponential backoff.

    The delay after failed attempt k (1-based) is base_delay * 2**(k-1).
    Only errors listed in retry_on are retried; everything else propagates
    on the first failure. Writes must not be routed through this class.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        retry_on: Tuple[Type[BaseException], ...] = (HttpError,),
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        """
        Initialize the fetcher.

        Args:
            max_retries: Total number of attempts (at least 1)
            base_delay: Delay in seconds after the first failed attempt
            retry_on: Exception types that trigger another attempt
            sleep: Coroutine used for backoff (defaults to asyncio.sleep)
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must not be negative")

        self.max_retries = max_retries
        self.base_delay = base_delay
        self.retry_on = retry_on
        self._sleep = sleep or asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given failed attempt (1-based)."""
        return self.base_delay * 2 ** (attempt - 1)

    async def run(
        self,
        call: Callable[[], Awaitable[Any]],
        description: str = "request"
    ) -> Any:
        """
        Await call() until it succeeds or attempts are exhausted.

        Args:
            call: Zero-argument coroutine function performing one attempt
            description: Label used in log messages (usually the URL)

        Returns:
            Whatever call() returns

        Raises:
            The last retryable error once all attempts fail, or any
            non-retryable error immediately
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                return await call()
            except self.retry_on as e:
                if attempt >= self.max_retries:
                    logger.error(
                        "%s failed after %d attempts: %s",
                        description, self.max_retries, e
                    )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    "Attempt %d/%d for %s failed: %s (retrying in %.2fs)",
                    attempt, self.max_retries, description, e, delay
                )
                await self._sleep(delay)

        raise RuntimeError("Unexpected exit from retry loop")
