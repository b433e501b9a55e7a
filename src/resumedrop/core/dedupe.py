from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)

UNASSIGNED = "unassigned"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def dedupe_key(email: str, job_id: int | None) -> tuple[str, str]:
    """Identity of an application: normalized sender email plus the job, or ``unassigned``."""
    return normalize_email(email), UNASSIGNED if job_id is None else str(job_id)


class ApplicationLookup(Protocol):
    async def find_existing(self, email: str, job_id: int | None) -> int | None: ...


class DuplicateGuard:
    def __init__(self, store: ApplicationLookup):
        self.store = store

    async def is_duplicate(self, email: str, job_id: int | None) -> bool:
        normalized = normalize_email(email)
        if not normalized:
            return False
        existing = await self.store.find_existing(normalized, job_id)
        if existing is not None:
            logger.info("Duplicate application email=%s job=%s existing=%s", normalized, job_id, existing)
            return True
        return False
