from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, Literal, TypeVar

from resumedrop.config import Settings, get_settings
from resumedrop.errors import CircuitOpenError, OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")
CircuitState = Literal["closed", "open", "half_open"]


async def with_timeout(awaitable: Awaitable[T], timeout_sec: float, operation: str) -> T:
    """Await ``awaitable`` for at most ``timeout_sec`` seconds.

    On expiry the pending work is abandoned and ``OperationTimeoutError`` is raised. Work running in
    a worker thread keeps running until it returns, but its result is discarded.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_sec)
    except asyncio.TimeoutError as exc:
        logger.warning("Operation timed out operation=%s timeout=%ss", operation, timeout_sec)
        raise OperationTimeoutError(operation, timeout_sec) from exc


class CircuitBreaker:
    """Closed/open/half-open breaker around one downstream dependency.

    ``failure_threshold`` consecutive failures open the circuit. While open, calls fail with
    ``CircuitOpenError`` without running the operation. Once ``reset_timeout_sec`` has elapsed a
    single probe call is let through; its success closes the circuit and its failure re-opens it.
    Exceptions listed in ``ignore`` are business outcomes and never count as failures.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        reset_timeout_sec: float = 60.0,
        ignore: tuple[type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_sec = reset_timeout_sec
        self.ignore = ignore
        self._clock = clock
        self._lock = threading.Lock()
        self._state: CircuitState = "closed"
        self._failures = 0
        self._last_failure_at: float | None = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    async def call(self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        probe = self._before_call()
        try:
            result = await operation(*args, **kwargs)
        except BaseException as exc:
            if isinstance(exc, self.ignore) or not isinstance(exc, Exception):
                self._release_probe(probe)
                raise
            self._on_failure(probe, exc)
            raise
        self._on_success(probe)
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = "closed"
            self._failures = 0
            self._last_failure_at = None
            self._probe_in_flight = False

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state,
                "failures": self._failures,
                "failure_threshold": self.failure_threshold,
                "reset_timeout_sec": self.reset_timeout_sec,
                "last_failure_at": self._last_failure_at,
            }

    def _before_call(self) -> bool:
        with self._lock:
            if self._state == "closed":
                return False

            elapsed = self._clock() - (self._last_failure_at or 0.0)
            if self._state == "open" and elapsed >= self.reset_timeout_sec:
                logger.info("Circuit half-open, allowing probe dependency=%s", self.name)
                self._state = "half_open"

            if self._state == "half_open" and not self._probe_in_flight:
                self._probe_in_flight = True
                return True

            retry_after = max(0.0, self.reset_timeout_sec - elapsed)
        raise CircuitOpenError(self.name, retry_after)

    def _on_success(self, probe: bool) -> None:
        with self._lock:
            if probe:
                logger.info("Circuit closed after successful probe dependency=%s", self.name)
                self._probe_in_flight = False
            self._state = "closed"
            self._failures = 0

    def _on_failure(self, probe: bool, exc: Exception) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            if probe:
                self._probe_in_flight = False
                self._state = "open"
                logger.warning("Circuit re-opened after failed probe dependency=%s error=%s", self.name, exc)
                return
            if self._state == "closed" and self._failures >= self.failure_threshold:
                self._state = "open"
                logger.error(
                    "Circuit opened dependency=%s failures=%s error=%s",
                    self.name,
                    self._failures,
                    exc,
                )

    def _release_probe(self, probe: bool) -> None:
        if not probe:
            return
        with self._lock:
            self._probe_in_flight = False


class CircuitBreakerRegistry:
    """One breaker per logical dependency name, created on first use."""

    def __init__(self, settings: Settings | None = None, *, clock: Callable[[], float] = time.monotonic):
        self.settings = settings or get_settings()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str, *, ignore: tuple[type[BaseException], ...] = ()) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    failure_threshold=self.settings.circuit_failure_threshold,
                    reset_timeout_sec=self.settings.circuit_reset_sec,
                    ignore=ignore,
                    clock=self._clock,
                )
                self._breakers[name] = breaker
            return breaker

    def snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [breaker.snapshot() for breaker in sorted(breakers, key=lambda item: item.name)]


async def guarded_call(
    breaker: CircuitBreaker,
    operation: Callable[[], Awaitable[T]],
    *,
    timeout_sec: float,
) -> T:
    """Run ``operation`` under ``breaker`` with a deadline; a timeout counts as a breaker failure."""

    async def _run() -> T:
        return await with_timeout(operation(), timeout_sec, breaker.name)

    return await breaker.call(_run)
