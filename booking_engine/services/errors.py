"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        retryable: bool | None = None,
    ):
        self.service_id = service_id
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)


class CacheError(ServiceError):
    """Cache operation failed."""

    pass


class DatabaseError(ServiceError):
    """Ledger read or write failed."""

    code = "DATABASE_ERROR"
    retryable = True


class TransientError(ServiceError):
    """Network-level failure carrying a transport error code."""

    retryable = True

    def __init__(self, message: str, code: str, service_id: str | None = None):
        self.code = code
        super().__init__(message, service_id=service_id)


class ProviderError(ServiceError):
    """Calendar, CRM or notification provider call failed."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, service_id=service_id, retryable=retryable)


class CircuitOpenError(ProviderError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
            retryable=False,
        )


class RequestTimeoutError(ProviderError):
    """Request timed out."""

    retryable = True

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )
