from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from resumedrop.types import RunSummary


class RunStatisticsResponse(BaseModel):
    processed: int
    created: int
    skipped: int
    errors: int
    timeouts: int
    last_run_at: str | None = None
    last_duration_sec: float | None = None


class AutomationStatusResponse(BaseModel):
    enabled: bool
    running: bool
    batch_size: int
    message_timeout_sec: float
    statistics: RunStatisticsResponse
    scheduler: dict[str, Any] = Field(default_factory=dict)
    active_accounts: int = 0


class RunTriggerRequest(BaseModel):
    force: bool = False


class RunTriggerResponse(BaseModel):
    started: bool
    reason: str = ""
    summary: RunSummary | None = None


class ToggleResponse(BaseModel):
    enabled: bool


class BreakerResponse(BaseModel):
    name: str
    state: str
    failures: int
    failure_threshold: int
    reset_timeout_sec: float
    last_failure_at: float | None = None
