"""Tests for the circuit breaker."""

import pytest
from bitchat.core.errors import NetworkError
from bitchat.recovery.circuit import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    with_circuit_breaker,
)


async def ok():
    return "ok"


async def fail():
    raise NetworkError.offline()


async def trip(breaker, times):
    for _ in range(times):
        with pytest.raises(NetworkError):
            await breaker.execute(fail)


@pytest.mark.asyncio
async def test_opens_at_failure_threshold(clock):
    breaker = CircuitBreaker(clock=clock, failure_threshold=3)

    await trip(breaker, 2)
    assert breaker.get_state() is CircuitState.CLOSED

    await trip(breaker, 1)
    assert breaker.get_state() is CircuitState.OPEN


@pytest.mark.asyncio
async def test_open_circuit_rejects_without_calling(clock):
    breaker = CircuitBreaker(clock=clock, failure_threshold=1)
    await trip(breaker, 1)
    calls = []

    async def trial():
        calls.append(1)

    with pytest.raises(CircuitOpenError) as exc_info:
        await breaker.execute(trial)

    assert calls == []
    assert exc_info.value.stats.state is CircuitState.OPEN
    assert breaker.get_stats().total_calls == 2


@pytest.mark.asyncio
async def test_failures_outside_window_do_not_count(clock):
    breaker = CircuitBreaker(clock=clock, failure_threshold=2, window_ms=1000)

    await trip(breaker, 1)
    clock.advance_ms(1500)
    await trip(breaker, 1)

    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_stats().failures == 1


@pytest.mark.asyncio
async def test_half_open_after_recovery_timeout(clock):
    breaker = CircuitBreaker(clock=clock, failure_threshold=1, recovery_timeout_ms=30000)
    await trip(breaker, 1)

    clock.advance_ms(29000)
    assert breaker.get_state() is CircuitState.OPEN

    clock.advance_ms(1000)
    assert breaker.get_state() is CircuitState.HALF_OPEN


@pytest.mark.asyncio
async def test_half_open_closes_after_success_threshold(clock):
    breaker = CircuitBreaker(
        clock=clock, failure_threshold=2, recovery_timeout_ms=1000, success_threshold=2
    )
    await trip(breaker, 2)
    clock.advance_ms(1000)

    assert await breaker.execute(ok) == "ok"
    assert breaker.get_state() is CircuitState.HALF_OPEN

    await breaker.execute(ok)
    stats = breaker.get_stats()
    assert stats.state is CircuitState.CLOSED
    assert stats.failures == 0
    assert stats.successes == 0


@pytest.mark.asyncio
async def test_half_open_failure_reopens(clock):
    breaker = CircuitBreaker(clock=clock, failure_threshold=1, recovery_timeout_ms=1000)
    await trip(breaker, 1)
    clock.advance_ms(1000)

    await trip(breaker, 1)

    assert breaker.get_state() is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await breaker.execute(ok)


@pytest.mark.asyncio
async def test_state_change_callback_fires_once_per_transition(clock):
    transitions = []
    breaker = CircuitBreaker(
        clock=clock,
        failure_threshold=1,
        recovery_timeout_ms=1000,
        success_threshold=1,
        on_state_change=lambda state, stats: transitions.append((state, stats.state)),
    )

    await trip(breaker, 1)
    clock.advance_ms(1000)
    breaker.get_state()
    breaker.get_state()
    await breaker.execute(ok)
    breaker.reset()

    assert [t[0] for t in transitions] == [
        CircuitState.OPEN,
        CircuitState.HALF_OPEN,
        CircuitState.CLOSED,
    ]
    assert all(state is snapshot for state, snapshot in transitions)


@pytest.mark.asyncio
async def test_broken_state_callback_is_isolated(clock):
    def on_state_change(state, stats):
        raise RuntimeError("callback bug")

    breaker = CircuitBreaker(clock=clock, failure_threshold=1, on_state_change=on_state_change)
    await trip(breaker, 1)

    assert breaker.get_state() is CircuitState.OPEN


@pytest.mark.asyncio
async def test_counters(clock):
    breaker = CircuitBreaker(clock=clock)

    await breaker.execute(ok)
    await trip(breaker, 2)
    stats = breaker.get_stats()

    assert stats.total_calls == 3
    assert stats.total_successes == 1
    assert stats.total_failures == 2
    assert stats.last_success == int(clock() * 1000)
    assert stats.last_failure == int(clock() * 1000)
    assert stats.to_dict()["state"] == "closed"


@pytest.mark.asyncio
async def test_reset_and_force_open(clock):
    breaker = CircuitBreaker(clock=clock, failure_threshold=1)

    breaker.force_open()
    assert breaker.get_state() is CircuitState.OPEN

    breaker.reset()
    assert breaker.get_state() is CircuitState.CLOSED
    assert await breaker.execute(ok) == "ok"


def test_sync_call(clock):
    breaker = CircuitBreaker(clock=clock, failure_threshold=1)

    assert breaker.call(lambda a, b: a + b, 1, 2) == 3
    with pytest.raises(ZeroDivisionError):
        breaker.call(lambda: 1 / 0)
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "never")


@pytest.mark.asyncio
async def test_with_circuit_breaker(clock):
    async def fetch(x):
        if x < 0:
            raise NetworkError.offline()
        return x

    protected = with_circuit_breaker(fetch, failure_threshold=1)

    assert await protected.execute(5) == 5
    with pytest.raises(NetworkError):
        await protected(-1)
    with pytest.raises(CircuitOpenError):
        await protected.execute(5)

    assert protected.get_stats().total_calls == 3
    protected.reset()
    assert protected.breaker.get_state() is CircuitState.CLOSED
