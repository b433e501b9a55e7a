from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from resumedrop.api.deps import breakers_dep, get_db, orchestrator_dep
from resumedrop.api.schemas import (
    AutomationStatusResponse,
    BreakerResponse,
    RunTriggerRequest,
    RunTriggerResponse,
    ToggleResponse,
)
from resumedrop.core.orchestrator import BatchOrchestrator
from resumedrop.core.resilience import CircuitBreakerRegistry
from resumedrop.core.runtime import get_scheduler
from resumedrop.db.repositories import Repository

router = APIRouter(prefix="/api/automation", tags=["automation"])


@router.get("/status", response_model=AutomationStatusResponse)
def automation_status(
    db: Session = Depends(get_db),
    orchestrator: BatchOrchestrator = Depends(orchestrator_dep),
) -> AutomationStatusResponse:
    repo = Repository(db)
    return AutomationStatusResponse(
        **orchestrator.status(),
        scheduler=get_scheduler().status(),
        active_accounts=len(repo.list_email_accounts(active_only=True)),
    )


@router.post("/run", response_model=RunTriggerResponse)
async def trigger_run(
    payload: RunTriggerRequest | None = None,
    orchestrator: BatchOrchestrator = Depends(orchestrator_dep),
) -> RunTriggerResponse:
    force = payload.force if payload else False
    if orchestrator.is_running:
        return RunTriggerResponse(started=False, reason="already_running")
    if not orchestrator.enabled and not force:
        return RunTriggerResponse(started=False, reason="disabled")

    summary = await orchestrator.run(force=force)
    if summary is None:
        return RunTriggerResponse(started=False, reason="already_running")
    return RunTriggerResponse(started=True, summary=summary)


@router.post("/enable", response_model=ToggleResponse)
def enable_automation(orchestrator: BatchOrchestrator = Depends(orchestrator_dep)) -> ToggleResponse:
    orchestrator.enable()
    return ToggleResponse(enabled=True)


@router.post("/disable", response_model=ToggleResponse)
def disable_automation(orchestrator: BatchOrchestrator = Depends(orchestrator_dep)) -> ToggleResponse:
    orchestrator.disable()
    return ToggleResponse(enabled=False)


@router.get("/breakers", response_model=list[BreakerResponse])
def list_breakers(breakers: CircuitBreakerRegistry = Depends(breakers_dep)) -> list[BreakerResponse]:
    return [BreakerResponse(**snapshot) for snapshot in breakers.snapshot()]
