from __future__ import annotations

from collections.abc import Generator

from sqlalchemy.orm import Session

from resumedrop.core.orchestrator import BatchOrchestrator
from resumedrop.core.resilience import CircuitBreakerRegistry
from resumedrop.core.runtime import get_breakers, get_orchestrator
from resumedrop.db.session import get_db_session


def get_db() -> Generator[Session, None, None]:
    yield from get_db_session()


def orchestrator_dep() -> BatchOrchestrator:
    return get_orchestrator()


def breakers_dep() -> CircuitBreakerRegistry:
    return get_breakers()
