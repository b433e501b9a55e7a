from __future__ import annotations

import logging
import re
from typing import Protocol

from resumedrop.types import JobSummary

logger = logging.getLogger(__name__)

SUBJECT_PATTERNS = (
    re.compile(r"application for[:\s]+(.+)", re.IGNORECASE),
    re.compile(r"applying for[:\s]+(.+)", re.IGNORECASE),
    re.compile(r"job application[:\s]+(.+)", re.IGNORECASE),
    re.compile(r"re:[:\s]+(.+)", re.IGNORECASE),
)


class ActiveJobSource(Protocol):
    async def list_active_jobs(self) -> list[JobSummary]: ...


def title_from_subject(subject: str) -> str:
    for pattern in SUBJECT_PATTERNS:
        match = pattern.search(subject or "")
        if match:
            return " ".join(match.group(1).split()).strip(" -:")
    return ""


def match_job(subject: str, jobs: list[JobSummary], *, fallback_to_latest: bool = False) -> JobSummary | None:
    """Pick the job a message applies to. ``jobs`` is ordered newest first."""
    wanted = title_from_subject(subject).lower()
    if wanted:
        for job in jobs:
            title = job.title.lower()
            if title and (wanted in title or title in wanted):
                return job
    if fallback_to_latest and jobs:
        return jobs[0]
    return None


class JobMatcher:
    def __init__(self, source: ActiveJobSource, *, fallback_to_latest: bool = False):
        self.source = source
        self.fallback_to_latest = fallback_to_latest

    async def match(self, subject: str) -> int | None:
        job = match_job(subject, await self.source.list_active_jobs(), fallback_to_latest=self.fallback_to_latest)
        if job is None:
            logger.info("No job matched subject=%r; application will be unassigned", subject)
            return None
        logger.info("Matched job id=%s title=%s", job.id, job.title)
        return job.id
