"""
Service layer infrastructure - resilience patterns for provider calls.

Provides:
- CacheManager: TTL cache with prefix invalidation
- CircuitBreaker: Prevents cascading failures
- RetryPolicy: Exponential backoff for transient errors
- ProviderGuard: Breaker + retry composition used for every provider call
- ServiceClient: Shared HTTP client for provider integrations
- BackgroundTaskRunner: Bounded worker pool for post-response sync work
"""

from booking_engine.services.errors import (
    ServiceError,
    CacheError,
    CircuitOpenError,
    DatabaseError,
    ProviderError,
    RequestTimeoutError,
    TransientError,
)
from booking_engine.services.cache import CacheKeys, CacheManager, CacheTTL
from booking_engine.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from booking_engine.services.retry import RetryConfig, RetryPolicy, is_retryable_error
from booking_engine.services.resilience import ProviderGuard
from booking_engine.services.client import ServiceClient, ServiceConfig
from booking_engine.services.tasks import BackgroundTaskRunner

__all__ = [
    # Errors
    "ServiceError",
    "CacheError",
    "CircuitOpenError",
    "DatabaseError",
    "ProviderError",
    "RequestTimeoutError",
    "TransientError",
    # Cache
    "CacheKeys",
    "CacheManager",
    "CacheTTL",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    "is_retryable_error",
    "ProviderGuard",
    # Client
    "ServiceClient",
    "ServiceConfig",
    # Tasks
    "BackgroundTaskRunner",
]
