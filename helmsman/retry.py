"""Bounded exponential backoff for outbound requests."""

import asyncio
from typing import Awaitable, Callable, TypeVar

from helmsman.exceptions import RetryExhaustedError
from helmsman.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry bounds shared by every outbound request of a session.

    ``max_retries`` counts retries after the first attempt, so a request is
    tried at most ``max_retries + 1`` times. Both bounds can be changed at
    runtime and ``0`` is a valid fail-fast value for either.
    """

    def __init__(
        self,
        max_retries: int = 3,
        max_wait: int = 64,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.max_retries = max_retries
        self.max_wait = max_wait
        self._sleep = sleep or asyncio.sleep

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @max_retries.setter
    def max_retries(self, value: int) -> None:
        if value < 0:
            raise ValueError("max_retries must be >= 0")
        self._max_retries = int(value)

    @property
    def max_wait(self) -> int:
        return self._max_wait

    @max_wait.setter
    def max_wait(self, value: int) -> None:
        if value < 0:
            raise ValueError("max_wait must be >= 0")
        self._max_wait = int(value)

    @property
    def max_attempts(self) -> int:
        return self._max_retries + 1

    def delay(self, attempt: int) -> int:
        """Seconds to wait after the given (1-based) failed attempt."""
        return min(2 ** attempt, self._max_wait)

    async def wait(self, attempt: int) -> None:
        seconds = self.delay(attempt)
        if seconds > 0:
            await self._sleep(seconds)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Callable[[BaseException], bool] | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the attempts run out.

        Raises:
            RetryExhaustedError: when every attempt failed with a retryable error.
        """
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if is_retryable is not None and not is_retryable(e):
                    raise
                last_error = e
                log.warning(
                    "Request attempt failed",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=str(e),
                )
                if attempt < self.max_attempts:
                    await self.wait(attempt)
        assert last_error is not None
        raise RetryExhaustedError(self.max_attempts, last_error)

    def describe(self) -> str:
        return f"max_retries={self._max_retries}, max_wait={self._max_wait}s"
