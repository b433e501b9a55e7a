from __future__ import annotations

from resumedrop.core.orchestrator import BatchOrchestrator
from resumedrop.core.resilience import CircuitBreakerRegistry
from resumedrop.core.scheduler import AutomationScheduler

_BREAKERS: CircuitBreakerRegistry | None = None
_ORCHESTRATOR: BatchOrchestrator | None = None
_SCHEDULER: AutomationScheduler | None = None


def get_breakers() -> CircuitBreakerRegistry:
    global _BREAKERS
    if _BREAKERS is None:
        _BREAKERS = CircuitBreakerRegistry()
    return _BREAKERS


def get_orchestrator() -> BatchOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = BatchOrchestrator(breakers=get_breakers())
    return _ORCHESTRATOR


def get_scheduler() -> AutomationScheduler:
    global _SCHEDULER
    if _SCHEDULER is None:
        _SCHEDULER = AutomationScheduler(get_orchestrator())
    return _SCHEDULER


def reset_runtime() -> None:
    global _BREAKERS, _ORCHESTRATOR, _SCHEDULER
    _BREAKERS = None
    _ORCHESTRATOR = None
    _SCHEDULER = None
