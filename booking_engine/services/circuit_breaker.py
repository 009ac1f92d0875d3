"""
CircuitBreaker - Stops calling a provider that keeps failing.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Provider is failing, calls are rejected without being attempted
- HALF_OPEN: One trial call is let through to test recovery

Transitions:
- CLOSED → OPEN: failure_threshold failures within monitoring_period
- OPEN → HALF_OPEN: After reset_timeout expires
- HALF_OPEN → CLOSED: Trial call succeeds
- HALF_OPEN → OPEN: Trial call fails (reset_timeout restarts)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from booking_engine.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    reset_timeout: timedelta = timedelta(seconds=60)  # Time before half-open
    monitoring_period: timedelta = timedelta(seconds=120)  # Failure counting window


@dataclass
class CircuitBreakerStats:
    """Call counters, used for health reporting only."""

    state: CircuitState
    total_calls: int
    successful_calls: int
    failed_calls: int
    rejected_calls: int
    failure_count: int
    last_failure: datetime | None
    next_attempt: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "rejected_calls": self.rejected_calls,
            "failure_count": self.failure_count,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
            "next_attempt": self.next_attempt.isoformat() if self.next_attempt else None,
        }


class CircuitBreaker:
    """
    Circuit breaker guarding a single provider.

    Usage:
        cb = CircuitBreaker("google_calendar")
        events = await cb.execute(lambda: retry.with_retry(fetch_events))
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._opened_at: datetime | None = None
        self._trial_in_flight = False
        # Bumped on every state change; results of calls admitted under an
        # older generation only update counters.
        self._generation = 0

        self._total_calls = 0
        self._successful_calls = 0
        self._failed_calls = 0
        self._rejected_calls = 0

    @property
    def state(self) -> CircuitState:
        """Get current state, checking for automatic transitions."""
        if self._state == CircuitState.OPEN:
            if self._opened_at and self._clock() >= self._opened_at + self.config.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                self._generation += 1
                logger.info(
                    f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
                )
        return self._state

    def can_request(self) -> bool:
        """Check if a call is allowed right now."""
        current_state = self.state

        if current_state == CircuitState.CLOSED:
            return True

        if current_state == CircuitState.HALF_OPEN:
            return not self._trial_in_flight

        return False

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` under circuit protection.

        Raises:
            CircuitOpenError: If the circuit rejects the call without attempting it
        """
        if not self.can_request():
            self._rejected_calls += 1
            logger.warning(
                f"Circuit breaker '{self.service_id}' rejected call ({self._state.value})"
            )
            raise CircuitOpenError(self.service_id, self.get_time_until_reset() or 0)

        is_trial = self._state == CircuitState.HALF_OPEN
        if is_trial:
            self._trial_in_flight = True
        generation = self._generation

        self._total_calls += 1
        try:
            result = await operation()
        except Exception:
            if self._is_current(generation):
                self.record_failure()
            else:
                self._failed_calls += 1
            raise
        finally:
            if is_trial and generation == self._generation:
                self._trial_in_flight = False

        if self._is_current(generation):
            self.record_success()
        else:
            self._successful_calls += 1
        return result

    def _is_current(self, generation: int) -> bool:
        """True if a call admitted under `generation` may still move the state."""
        # Reading state applies a pending OPEN -> HALF_OPEN transition
        if self.state and generation != self._generation:
            logger.debug(
                f"Circuit breaker '{self.service_id}' ignoring result of a call "
                f"admitted before the last state change"
            )
            return False
        return True

    def record_success(self) -> None:
        """Record a successful call."""
        self._successful_calls += 1
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        else:
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed call."""
        now = self._clock()
        self._failed_calls += 1

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._last_failure_time = now
            self._failure_count += 1
            self._open()
            return

        if (
            self._last_failure_time is not None
            and now - self._last_failure_time > self.config.monitoring_period
        ):
            # Previous failures fell out of the monitoring window
            self._failure_count = 0

        self._failure_count += 1
        self._last_failure_time = now

        logger.warning(
            f"Circuit breaker '{self.service_id}' failure "
            f"{self._failure_count}/{self.config.failure_threshold}"
        )

        if self._state == CircuitState.CLOSED and (
            self._failure_count >= self.config.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._generation += 1
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False
        self._generation += 1
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False
        self._last_failure_time = None
        self._generation += 1
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or not self._opened_at:
            return None

        reset_at = self._opened_at + self.config.reset_timeout
        remaining = (reset_at - self._clock()).total_seconds()
        return max(0, remaining)

    @property
    def stats(self) -> CircuitBreakerStats:
        """Read-only snapshot of the breaker's counters."""
        state = self.state
        return CircuitBreakerStats(
            state=state,
            total_calls=self._total_calls,
            successful_calls=self._successful_calls,
            failed_calls=self._failed_calls,
            rejected_calls=self._rejected_calls,
            failure_count=self._failure_count,
            last_failure=self._last_failure_time,
            next_attempt=(
                self._opened_at + self.config.reset_timeout
                if state == CircuitState.OPEN and self._opened_at
                else None
            ),
        )

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {"service_id": self.service_id, **self.stats.to_dict()}


class CircuitBreakerRegistry:
    """
    One circuit breaker per provider, shared process-wide.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("hubspot")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock

    def get(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for a provider."""
        if service_id not in self._breakers:
            self._breakers[service_id] = CircuitBreaker(
                service_id,
                config or self._default_config,
                clock=self._clock,
            )
        return self._breakers[service_id]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            service_id: cb.get_status() for service_id, cb in self._breakers.items()
        }

    def reset(self, service_id: str) -> bool:
        """Reset a specific circuit breaker."""
        if service_id in self._breakers:
            self._breakers[service_id].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get list of providers with open circuits."""
        return [
            service_id
            for service_id, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
