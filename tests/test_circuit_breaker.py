"""Tests for circuit breaker transitions and the provider guard."""

import asyncio
from datetime import timedelta

import pytest

from booking_engine.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from booking_engine.services.errors import CircuitOpenError, TransientError
from booking_engine.services.resilience import ProviderGuard
from booking_engine.services.retry import RetryConfig, RetryPolicy

from conftest import FixedClock, no_sleep


class Operation:
    def __init__(self, fail: bool = True):
        self.fail = fail
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.fail:
            raise TransientError("connection refused", "ECONNREFUSED")
        return "ok"


def make_breaker(clock: FixedClock, threshold: int = 3) -> CircuitBreaker:
    return CircuitBreaker(
        "calendar",
        CircuitBreakerConfig(
            failure_threshold=threshold,
            reset_timeout=timedelta(seconds=60),
            monitoring_period=timedelta(seconds=120),
        ),
        clock=clock,
    )


async def trip(breaker: CircuitBreaker, op: Operation, times: int) -> None:
    for _ in range(times):
        with pytest.raises(TransientError):
            await breaker.execute(op)


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_rejects_without_calling(self):
        clock = FixedClock()
        breaker = make_breaker(clock)
        op = Operation()

        await trip(breaker, op, 3)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(op)
        assert op.calls == 3
        assert exc_info.value.reset_after_seconds == 60
        assert breaker.stats.rejected_calls == 1

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self):
        clock = FixedClock()
        breaker = make_breaker(clock)
        op = Operation()
        await trip(breaker, op, 3)

        clock.advance(seconds=60)
        assert breaker.state == CircuitState.HALF_OPEN

        op.fail = False
        assert await breaker.execute(op) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens_and_restarts_timeout(self):
        clock = FixedClock()
        breaker = make_breaker(clock)
        op = Operation()
        await trip(breaker, op, 3)

        clock.advance(seconds=61)
        await trip(breaker, op, 1)
        assert breaker.state == CircuitState.OPEN
        assert breaker.get_time_until_reset() == 60

        clock.advance(seconds=30)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(op)
        assert op.calls == 4

    @pytest.mark.asyncio
    async def test_half_open_admits_a_single_trial(self):
        clock = FixedClock()
        breaker = make_breaker(clock)
        await trip(breaker, Operation(), 3)
        clock.advance(seconds=60)

        release = asyncio.Event()

        async def slow() -> str:
            await release.wait()
            return "ok"

        trial = asyncio.create_task(breaker.execute(slow))
        await asyncio.sleep(0)

        with pytest.raises(CircuitOpenError):
            await breaker.execute(Operation(fail=False))

        release.set()
        assert await trial == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_late_success_from_closed_call_does_not_close_half_open(self):
        clock = FixedClock()
        breaker = make_breaker(clock, threshold=1)
        release = asyncio.Event()

        async def slow() -> str:
            await release.wait()
            return "ok"

        straggler = asyncio.create_task(breaker.execute(slow))
        await asyncio.sleep(0)
        await trip(breaker, Operation(), 1)
        clock.advance(seconds=60)
        assert breaker.state == CircuitState.HALF_OPEN

        release.set()
        assert await straggler == "ok"

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_request()
        assert breaker.stats.successful_calls == 1

    @pytest.mark.asyncio
    async def test_late_failure_does_not_decide_running_trial(self):
        clock = FixedClock()
        breaker = make_breaker(clock, threshold=1)
        release_straggler = asyncio.Event()
        release_trial = asyncio.Event()

        async def slow_failure() -> str:
            await release_straggler.wait()
            raise TransientError("connection reset", "ECONNRESET")

        async def slow_trial() -> str:
            await release_trial.wait()
            return "ok"

        straggler = asyncio.create_task(breaker.execute(slow_failure))
        await asyncio.sleep(0)
        await trip(breaker, Operation(), 1)
        clock.advance(seconds=60)

        trial = asyncio.create_task(breaker.execute(slow_trial))
        await asyncio.sleep(0)

        release_straggler.set()
        with pytest.raises(TransientError):
            await straggler
        assert breaker.state == CircuitState.HALF_OPEN
        assert not breaker.can_request()

        release_trial.set()
        assert await trial == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failures_outside_monitoring_period_restart_count(self):
        clock = FixedClock()
        breaker = make_breaker(clock)
        op = Operation()

        await trip(breaker, op, 2)
        clock.advance(seconds=121)
        await trip(breaker, op, 1)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.failure_count == 1

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = make_breaker(FixedClock())
        op = Operation()
        await trip(breaker, op, 2)

        op.fail = False
        await breaker.execute(op)
        assert breaker.stats.failure_count == 0

    @pytest.mark.asyncio
    async def test_stats_and_manual_reset(self):
        breaker = make_breaker(FixedClock(), threshold=1)
        await trip(breaker, Operation(), 1)

        status = breaker.get_status()
        assert status["service_id"] == "calendar"
        assert status["state"] == "OPEN"
        assert status["total_calls"] == 1
        assert status["failed_calls"] == 1

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED


class TestRegistry:
    def test_one_breaker_per_provider(self):
        registry = CircuitBreakerRegistry(clock=FixedClock())
        assert registry.get("crm") is registry.get("crm")
        assert registry.get("crm") is not registry.get("calendar")
        assert set(registry.get_all_status()) == {"crm", "calendar"}
        assert registry.get_open_circuits() == []
        assert registry.reset("crm") is True
        assert registry.reset("unknown") is False


class TestProviderGuard:
    @pytest.mark.asyncio
    async def test_one_breaker_failure_per_exhausted_retry(self):
        breaker = make_breaker(FixedClock(), threshold=2)
        guard = ProviderGuard(breaker, RetryPolicy(RetryConfig(max_attempts=3), sleep=no_sleep))
        op = Operation()

        with pytest.raises(TransientError):
            await guard.call(op)

        assert op.calls == 3
        assert breaker.stats.failure_count == 1
        assert guard.service_id == "calendar"
