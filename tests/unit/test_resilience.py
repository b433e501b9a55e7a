from __future__ import annotations

import asyncio

import pytest

from resumedrop.config import Settings
from resumedrop.core.resilience import CircuitBreaker, CircuitBreakerRegistry, guarded_call, with_timeout
from resumedrop.errors import CircuitOpenError, DuplicateApplicationError, OperationTimeoutError


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def _fail() -> None:
    raise RuntimeError("downstream unavailable")


async def _ok() -> str:
    return "ok"


def _trip(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(RuntimeError):
            asyncio.run(breaker.call(_fail))


def test_with_timeout_raises_operation_timeout() -> None:
    async def scenario() -> None:
        await with_timeout(asyncio.sleep(1), 0.05, "slow-call")

    with pytest.raises(OperationTimeoutError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.operation == "slow-call"


def test_with_timeout_returns_result_in_time() -> None:
    assert asyncio.run(with_timeout(_ok(), 1, "fast-call")) == "ok"


def test_breaker_opens_at_threshold_and_fails_fast() -> None:
    breaker = CircuitBreaker("parser:openai", failure_threshold=3, clock=FakeClock())
    _trip(breaker, 3)
    assert breaker.state == "open"

    invoked = {"count": 0}

    async def counted() -> str:
        invoked["count"] += 1
        return "ok"

    with pytest.raises(CircuitOpenError):
        asyncio.run(breaker.call(counted))
    assert invoked["count"] == 0


def test_success_resets_failure_count_while_closed() -> None:
    breaker = CircuitBreaker("storage", failure_threshold=3, clock=FakeClock())
    _trip(breaker, 2)
    assert asyncio.run(breaker.call(_ok)) == "ok"
    _trip(breaker, 2)
    assert breaker.state == "closed"


def test_half_open_probe_success_closes() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("database", failure_threshold=2, reset_timeout_sec=60, clock=clock)
    _trip(breaker, 2)

    clock.now += 59
    with pytest.raises(CircuitOpenError):
        asyncio.run(breaker.call(_ok))

    clock.now += 1
    assert asyncio.run(breaker.call(_ok)) == "ok"
    assert breaker.state == "closed"
    assert breaker.failures == 0


def test_half_open_probe_failure_reopens_immediately() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("database", failure_threshold=5, reset_timeout_sec=60, clock=clock)
    _trip(breaker, 5)

    clock.now += 61
    _trip(breaker, 1)
    assert breaker.state == "open"
    with pytest.raises(CircuitOpenError):
        asyncio.run(breaker.call(_ok))


def test_only_one_probe_is_admitted_while_half_open() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("parser:affinda", failure_threshold=1, reset_timeout_sec=10, clock=clock)
    _trip(breaker, 1)
    clock.now += 10

    async def scenario() -> list[object]:
        release = asyncio.Event()

        async def slow_probe() -> str:
            await release.wait()
            return "probe"

        probe = asyncio.create_task(breaker.call(slow_probe))
        await asyncio.sleep(0)
        second = await asyncio.gather(breaker.call(_ok), return_exceptions=True)
        release.set()
        return [await probe, *second]

    probe_result, second_result = asyncio.run(scenario())
    assert probe_result == "probe"
    assert isinstance(second_result, CircuitOpenError)
    assert breaker.state == "closed"


def test_ignored_exceptions_do_not_count() -> None:
    breaker = CircuitBreaker("database", failure_threshold=1, ignore=(DuplicateApplicationError,))

    async def duplicate() -> None:
        raise DuplicateApplicationError("a@b.dev", 3)

    for _ in range(3):
        with pytest.raises(DuplicateApplicationError):
            asyncio.run(breaker.call(duplicate))
    assert breaker.state == "closed"
    assert breaker.failures == 0


def test_guarded_call_counts_timeouts_as_failures() -> None:
    registry = CircuitBreakerRegistry(Settings(circuit_failure_threshold=2))
    breaker = registry.get("parser:local")

    async def hangs() -> None:
        await asyncio.sleep(1)

    for _ in range(2):
        with pytest.raises(OperationTimeoutError):
            asyncio.run(guarded_call(breaker, hangs, timeout_sec=0.02))

    assert breaker.state == "open"
    assert registry.get("parser:local") is breaker
    assert registry.snapshot()[0]["state"] == "open"
