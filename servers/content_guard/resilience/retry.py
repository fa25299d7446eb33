"""Retry with exponential backoff for resilient detector calls."""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from ..errors import is_retryable_error
from .backoff import BackoffPolicy

logger = structlog.get_logger()

T = TypeVar("T")

MAX_ATTEMPTS_LIMIT = 10

RetryObserver = Callable[[int, BaseException, float], Any]


class RetryExecutor:
    """Retry a single fallible async operation.

    Stops on the first non-retryable error or once max_attempts is reached,
    sleeping BackoffPolicy.delay(attempt) between attempts.
    """

    def __init__(
        self,
        backoff: BackoffPolicy | None = None,
        max_attempts: int = 3,
        on_retry: RetryObserver | None = None,
    ):
        """Initialize retry executor.

        Args:
            backoff: Delay policy between attempts
            max_attempts: Default bound on attempts per execute() call
            on_retry: Called with (attempt, error, delay_ms) before each sleep
        """
        self.backoff = backoff or BackoffPolicy()
        self.max_attempts = _check_attempts(max_attempts)
        self.on_retry = on_retry

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
        max_attempts: int | None = None,
    ) -> T:
        """Run operation, retrying retryable failures.

        Args:
            operation: Zero-argument coroutine function
            is_retryable: Predicate deciding whether an error is worth retrying
            max_attempts: Override for this call only

        Returns:
            Result of the first successful attempt

        Raises:
            The last error once retries are exhausted, or the first
            non-retryable error immediately
        """
        result, _ = await self.execute_with_attempts(operation, is_retryable, max_attempts)
        return result

    async def execute_with_attempts(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
        max_attempts: int | None = None,
        label: str | None = None,
    ) -> tuple[T, int]:
        """Same as execute() but also returns how many attempts were used.

        label names the operation in retry log entries.
        """
        limit = self.max_attempts if max_attempts is None else _check_attempts(max_attempts)
        name = label or getattr(operation, "__name__", "operation")

        attempt = 1
        while True:
            try:
                return await operation(), attempt
            except Exception as e:
                if attempt >= limit or not is_retryable(e):
                    if attempt > 1:
                        logger.error(
                            "retry_exhausted",
                            function=name,
                            attempts=attempt,
                            max_attempts=limit,
                            error=str(e),
                        )
                    raise

                delay_ms = self._delay_for(attempt, e)
                logger.warning(
                    "retry_attempt",
                    function=name,
                    attempt=attempt,
                    max_attempts=limit,
                    delay_ms=round(delay_ms, 2),
                    error=str(e),
                )
                if self.on_retry is not None:
                    self.on_retry(attempt, e, delay_ms)
                await asyncio.sleep(delay_ms / 1000)
                attempt += 1

    def _delay_for(self, attempt: int, error: BaseException) -> float:
        """Backoff delay, stretched to a server's Retry-After hint up to the cap."""
        delay_ms = self.backoff.delay(attempt)
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None and retry_after > 0:
            delay_ms = max(delay_ms, min(retry_after * 1000, self.backoff.max_delay_ms))
        return delay_ms


def _check_attempts(max_attempts: int) -> int:
    if not isinstance(max_attempts, int) or not 1 <= max_attempts <= MAX_ATTEMPTS_LIMIT:
        raise ValueError(
            f"max_attempts must be an integer between 1 and {MAX_ATTEMPTS_LIMIT}, got {max_attempts!r}"
        )
    return max_attempts
