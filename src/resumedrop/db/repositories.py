from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from resumedrop.core.dedupe import dedupe_key, normalize_email
from resumedrop.db.models import Application, EmailAccount, Job
from resumedrop.errors import DuplicateApplicationError
from resumedrop.types import ApplicationDraft


class Repository:
    def __init__(self, session: Session):
        self.session = session

    def create_email_account(
        self,
        email: str,
        host: str,
        username: str,
        password_encrypted: str,
        port: int = 993,
        use_tls: bool = True,
        auto_process: bool = True,
    ) -> EmailAccount:
        account = EmailAccount(
            email=normalize_email(email),
            host=host,
            port=port,
            username=username,
            password_encrypted=password_encrypted,
            use_tls=use_tls,
            auto_process=auto_process,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def list_email_accounts(self, active_only: bool = False) -> list[EmailAccount]:
        stmt = select(EmailAccount).order_by(EmailAccount.id.asc())
        if active_only:
            stmt = stmt.where(EmailAccount.is_active.is_(True), EmailAccount.auto_process.is_(True))
        return list(self.session.scalars(stmt).all())

    def get_email_account(self, account_id: int) -> EmailAccount | None:
        return self.session.get(EmailAccount, account_id)

    def deactivate_email_account(self, account_id: int) -> EmailAccount | None:
        account = self.get_email_account(account_id)
        if account is None:
            return None
        account.is_active = False
        self.session.commit()
        self.session.refresh(account)
        return account

    def touch_email_account(self, account_id: int, checked_at: datetime | None = None) -> None:
        account = self.get_email_account(account_id)
        if account is None:
            return
        account.last_checked_at = checked_at or datetime.now(UTC)
        self.session.commit()

    def create_job(self, title: str, client_name: str = "", location: str = "", status: str = "active") -> Job:
        job = Job(title=title.strip(), client_name=client_name, location=location, status=status)
        self.session.add(job)
        self.session.commit()
        self.session.refresh(job)
        return job

    def list_jobs(self, active_only: bool = False) -> list[Job]:
        stmt = select(Job).order_by(Job.id.desc())
        if active_only:
            stmt = stmt.where(Job.status == "active")
        return list(self.session.scalars(stmt).all())

    def find_application(self, email: str, job_id: int | None) -> Application | None:
        candidate_email, job_key = dedupe_key(email, job_id)
        return self.session.scalar(
            select(Application).where(
                Application.candidate_email == candidate_email,
                Application.job_key == job_key,
            )
        )

    def create_application(self, draft: ApplicationDraft) -> Application:
        candidate_email, job_key = dedupe_key(draft.candidate_email, draft.job_id)
        application = Application(
            candidate_email=candidate_email,
            job_key=job_key,
            job_id=draft.job_id,
            email_account_id=draft.email_account_id,
            first_name=draft.first_name,
            last_name=draft.last_name,
            resume_email=draft.resume_email,
            phone=draft.phone,
            location=draft.location,
            current_title=draft.current_title,
            current_company=draft.current_company,
            years_of_experience=draft.years_of_experience,
            skills_json=list(draft.skills),
            resume_url=draft.resume_url,
            resume_filename=draft.resume_filename,
            raw_text=draft.raw_text,
            parsed_json=dict(draft.parsed),
            parser_provider=draft.parser_provider,
            extraction_method=draft.extraction_method,
            validation_score=draft.validation_score,
            validation_reason=draft.validation_reason,
            validation_concerns_json=list(draft.validation_concerns),
            needs_review=draft.needs_review,
            video_url=draft.video_url,
            video_kind=draft.video_kind,
            source=draft.source,
            source_subject=draft.source_subject,
            source_message_id=draft.source_message_id,
            status=draft.status,
        )
        self.session.add(application)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateApplicationError(candidate_email, draft.job_id) from exc
        self.session.refresh(application)
        return application

    def list_applications(self, limit: int = 50, job_id: int | None = None) -> list[Application]:
        stmt = select(Application).order_by(Application.id.desc()).limit(limit)
        if job_id is not None:
            stmt = stmt.where(Application.job_id == job_id)
        return list(self.session.scalars(stmt).all())
