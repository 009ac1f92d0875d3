"""
RetryPolicy - Retries transient failures with exponential backoff.

Delay for attempt n (1-based) is min(initial_delay * multiplier^(n-1), max_delay).
There is no jitter, so the delay sequence is fully determined by the config.
Errors that are not classified as transient propagate on the first attempt.
"""

import asyncio
import errno
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from booking_engine.services.errors import DatabaseError, ServiceError

T = TypeVar("T")

RETRYABLE_ERROR_CODES = frozenset(
    {
        "ECONNREFUSED",
        "ETIMEDOUT",
        "ENOTFOUND",
        "ECONNRESET",
        "EPIPE",
        "DATABASE_ERROR",
    }
)

RETRYABLE_KEYWORDS = ("timeout", "connection", "network", "econnrefused")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behaviour. Delays are in seconds."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 8.0
    backoff_multiplier: float = 2.0


def is_retryable_error(error: BaseException) -> bool:
    """Classify an error as transient (worth retrying) or permanent."""
    code = getattr(error, "code", None)
    if isinstance(code, str) and code in RETRYABLE_ERROR_CODES:
        return True

    if isinstance(error, OSError) and error.errno is not None:
        if errno.errorcode.get(error.errno) in RETRYABLE_ERROR_CODES:
            return True

    if isinstance(error, DatabaseError):
        return True

    if isinstance(error, ServiceError) and error.retryable:
        return True

    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    message = str(error).lower()
    return any(keyword in message for keyword in RETRYABLE_KEYWORDS)


class RetryPolicy:
    """
    Executes an async operation, retrying transient failures.

    Usage:
        retry = RetryPolicy(RetryConfig(max_attempts=3))
        events = await retry.with_retry(lambda: client.list_events(start, end))
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def calculate_delay(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        delay = self.config.initial_delay * (
            self.config.backoff_multiplier ** (attempt - 1)
        )
        return min(delay, self.config.max_delay)

    def delays(self, count: int) -> list[float]:
        """First `count` backoff delays."""
        return [self.calculate_delay(attempt) for attempt in range(1, count + 1)]

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
    ) -> T:
        """
        Run `operation` until it succeeds or attempts are exhausted.

        Args:
            operation: Zero-argument callable returning an awaitable
            config: Per-call override of the policy config

        Returns:
            The operation result

        Raises:
            The last error if all attempts fail, or the first non-retryable error
        """
        cfg = config or self.config
        policy = self if config is None else RetryPolicy(cfg, self._sleep)

        attempt = 1
        while True:
            try:
                logger.debug(
                    f"Executing operation (attempt {attempt}/{cfg.max_attempts})"
                )
                result = await operation()
                if attempt > 1:
                    logger.info(f"Operation succeeded after {attempt} attempts")
                return result
            except Exception as e:
                if not is_retryable_error(e):
                    logger.warning(
                        f"Non-retryable error on attempt {attempt}: "
                        f"{type(e).__name__}: {e}"
                    )
                    raise

                if attempt >= cfg.max_attempts:
                    logger.error(
                        f"All {cfg.max_attempts} retry attempts exhausted: "
                        f"{type(e).__name__}: {e}"
                    )
                    raise

                delay = policy.calculate_delay(attempt)
                logger.warning(
                    f"Retryable error on attempt {attempt}/{cfg.max_attempts}, "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await self._sleep(delay)
                attempt += 1
