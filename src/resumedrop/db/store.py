from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

from sqlalchemy.orm import Session, sessionmaker

from resumedrop.db.repositories import Repository
from resumedrop.types import ApplicationDraft, JobSummary, MailboxAccount

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ApplicationStore:
    """Async facade over ``Repository``: every call opens its own session in a worker thread."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        if session_factory is None:
            from resumedrop.db.session import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory

    async def _run(self, work: Callable[[Repository], T]) -> T:
        def _call() -> T:
            with self.session_factory() as session:
                return work(Repository(session))

        return await asyncio.to_thread(_call)

    async def find_existing(self, email: str, job_id: int | None) -> int | None:
        def _find(repo: Repository) -> int | None:
            application = repo.find_application(email, job_id)
            return application.id if application else None

        return await self._run(_find)

    async def create(self, draft: ApplicationDraft) -> int:
        application_id = await self._run(lambda repo: repo.create_application(draft).id)
        logger.info("Application created id=%s email=%s job=%s", application_id, draft.candidate_email, draft.job_id)
        return application_id

    async def list_active_accounts(self) -> list[MailboxAccount]:
        def _list(repo: Repository) -> list[MailboxAccount]:
            return [
                MailboxAccount(
                    id=account.id,
                    email=account.email,
                    host=account.host,
                    port=account.port,
                    username=account.username,
                    password_encrypted=account.password_encrypted,
                    use_tls=account.use_tls,
                    last_checked_at=account.last_checked_at,
                )
                for account in repo.list_email_accounts(active_only=True)
            ]

        return await self._run(_list)

    async def touch_account(self, account_id: int, checked_at: datetime | None = None) -> None:
        await self._run(lambda repo: repo.touch_email_account(account_id, checked_at))

    async def list_active_jobs(self) -> list[JobSummary]:
        def _list(repo: Repository) -> list[JobSummary]:
            return [
                JobSummary(id=job.id, title=job.title, client_name=job.client_name)
                for job in repo.list_jobs(active_only=True)
            ]

        return await self._run(_list)
