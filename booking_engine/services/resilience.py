"""
ProviderGuard - The single wrapper every outbound provider call goes through.

The breaker decides whether to attempt at all; the retry policy governs the
attempts made within one breaker-permitted call:

    breaker.execute(lambda: retry.with_retry(provider_call))
"""

from typing import Any, Awaitable, Callable, TypeVar

from booking_engine.services.circuit_breaker import CircuitBreaker
from booking_engine.services.retry import RetryPolicy

T = TypeVar("T")


class ProviderGuard:
    """Circuit breaker + retry policy bound to one provider."""

    def __init__(self, breaker: CircuitBreaker, retry: RetryPolicy):
        self.breaker = breaker
        self.retry = retry

    @property
    def service_id(self) -> str:
        return self.breaker.service_id

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.breaker.execute(lambda: self.retry.with_retry(operation))

    def get_status(self) -> dict[str, Any]:
        return self.breaker.get_status()
