from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from resumedrop.config import Settings, get_settings
from resumedrop.core.classifier import classify_attachments
from resumedrop.core.dedupe import DuplicateGuard, normalize_email
from resumedrop.core.extraction import TextExtractionChain
from resumedrop.core.job_matcher import JobMatcher
from resumedrop.core.resilience import CircuitBreakerRegistry, guarded_call, with_timeout
from resumedrop.core.storage import LocalObjectStorage, ObjectStorage
from resumedrop.core.validator import ResumeValidator
from resumedrop.errors import (
    DuplicateApplicationError,
    IntakeError,
    MailboxError,
    OperationTimeoutError,
)
from resumedrop.types import (
    AccountRunResult,
    ApplicationDraft,
    Attachment,
    AttachmentClass,
    ExtractionResult,
    FailureStage,
    JobSummary,
    MailboxAccount,
    MailMessage,
    MessageOutcome,
    ParsedResume,
    RunSummary,
    ValidationResult,
)

logger = logging.getLogger(__name__)


class ApplicationStoreLike(Protocol):
    async def find_existing(self, email: str, job_id: int | None) -> int | None: ...

    async def create(self, draft: ApplicationDraft) -> int: ...

    async def list_active_accounts(self) -> list[MailboxAccount]: ...

    async def touch_account(self, account_id: int, checked_at: datetime | None = None) -> None: ...

    async def list_active_jobs(self) -> list[JobSummary]: ...


class MailboxPoller(Protocol):
    async def fetch_unread(self, account: MailboxAccount) -> list[MailMessage]: ...

    async def mark_seen(self, account: MailboxAccount, uids: list[str]) -> None: ...


class Extractor(Protocol):
    async def extract(self, attachment: Attachment) -> ExtractionResult: ...


class ResumeParser(Protocol):
    async def parse(self, text: str, attachment: Attachment) -> ParsedResume: ...


class RunGuard:
    """Single-flight flag: a second run attempted while one is active is rejected, not queued."""

    def __init__(self):
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def try_acquire(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            return True

    def release(self) -> None:
        with self._lock:
            self._running = False


class RunStatistics:
    def __init__(self):
        self._lock = asyncio.Lock()
        self.processed = 0
        self.created = 0
        self.skipped = 0
        self.errors = 0
        self.timeouts = 0
        self.last_run_at: datetime | None = None
        self.last_duration_sec: float | None = None

    async def reset(self, started_at: datetime) -> None:
        async with self._lock:
            self.processed = 0
            self.created = 0
            self.skipped = 0
            self.errors = 0
            self.timeouts = 0
            self.last_run_at = started_at
            self.last_duration_sec = None

    async def record(self, outcome: MessageOutcome) -> None:
        async with self._lock:
            self.processed += 1
            if outcome.status == "completed":
                self.created += 1
            elif outcome.status == "skipped":
                self.skipped += 1
            else:
                self.errors += 1
                if outcome.timeout:
                    self.timeouts += 1

    async def finish(self, duration_sec: float) -> None:
        async with self._lock:
            self.last_duration_sec = round(duration_sec, 3)

    def snapshot(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
            "timeouts": self.timeouts,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_duration_sec": self.last_duration_sec,
        }


class _StageFailure(Exception):
    def __init__(self, stage: FailureStage, error: BaseException):
        super().__init__(str(error))
        self.stage = stage
        self.error = error


class BatchOrchestrator:
    """Drives unread mailbox messages through classify, match, dedupe, extract, parse, validate and persist.

    Accounts are processed one after another. Within an account, messages run in batches of
    ``batch_size`` with ``asyncio.gather``; each message has its own deadline so a hung attachment
    never holds up its siblings. Completed and skipped messages are marked seen after each batch;
    failed ones stay unread for the next run.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: ApplicationStoreLike | None = None,
        poller: MailboxPoller | None = None,
        extractor: Extractor | None = None,
        parser: ResumeParser | None = None,
        validator: ResumeValidator | None = None,
        storage: ObjectStorage | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        job_matcher: JobMatcher | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.breakers = breakers or CircuitBreakerRegistry(self.settings)
        if store is None:
            from resumedrop.db.store import ApplicationStore

            store = ApplicationStore()
        if poller is None:
            from resumedrop.mail.imap import ImapMailboxPoller

            poller = ImapMailboxPoller(self.settings)
        if parser is None:
            from resumedrop.llm.router import ResumeParsingRouter

            parser = ResumeParsingRouter(self.settings, breakers=self.breakers)
        self.store = store
        self.poller = poller
        self.extractor = extractor or TextExtractionChain(self.settings)
        self.parser = parser
        self.validator = validator or ResumeValidator(self.settings)
        self.storage = storage or LocalObjectStorage(self.settings)
        self.job_matcher = job_matcher or JobMatcher(
            self, fallback_to_latest=self.settings.match_latest_active_job
        )
        self.duplicates = DuplicateGuard(self)
        self.guard = RunGuard()
        self.statistics = RunStatistics()
        self.enabled = self.settings.automation_enabled
        self.last_summary: RunSummary | None = None
        self._sleep = sleep

    @property
    def is_running(self) -> bool:
        return self.guard.running

    def enable(self) -> None:
        self.enabled = True
        logger.info("Email automation enabled")

    def disable(self) -> None:
        self.enabled = False
        logger.info("Email automation disabled")

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "running": self.is_running,
            "batch_size": self.settings.batch_size,
            "message_timeout_sec": self.settings.message_timeout_sec,
            "statistics": self.statistics.snapshot(),
        }

    async def run(self, *, force: bool = False) -> RunSummary | None:
        if not self.enabled and not force:
            logger.info("Email automation is disabled; skipping run")
            return None
        if not self.guard.try_acquire():
            logger.warning("Email automation already running; skipping this trigger")
            return None

        started_at = datetime.now(UTC)
        started = time.perf_counter()
        metadata: dict[str, Any] = {}
        results: list[AccountRunResult] = []
        try:
            await self.statistics.reset(started_at)
            try:
                accounts = await self._database_call(self.store.list_active_accounts)
            except Exception as exc:
                logger.exception("Cannot list mailbox accounts")
                accounts = []
                metadata["error"] = str(exc)

            logger.info("Email automation run started accounts=%s", len(accounts))
            for account in accounts:
                try:
                    results.append(await self.process_account(account))
                except Exception as exc:
                    logger.exception("Account run aborted account=%s", account.email)
                    aborted = AccountRunResult(account_id=account.id, account_email=account.email)
                    aborted.error = str(exc) or type(exc).__name__
                    results.append(aborted)

            duration = time.perf_counter() - started
            await self.statistics.finish(duration)
            snapshot = self.statistics.snapshot()
            summary = RunSummary(
                started_at=started_at,
                duration_sec=round(duration, 3),
                processed=snapshot["processed"],
                created=snapshot["created"],
                skipped=snapshot["skipped"],
                errors=snapshot["errors"],
                timeouts=snapshot["timeouts"],
                accounts=results,
                metadata=metadata,
            )
            self.last_summary = summary
            logger.info(
                "Email automation run finished processed=%s created=%s skipped=%s errors=%s timeouts=%s duration=%.2fs",
                summary.processed,
                summary.created,
                summary.skipped,
                summary.errors,
                summary.timeouts,
                duration,
            )
            return summary
        finally:
            self.guard.release()

    async def process_account(self, account: MailboxAccount) -> AccountRunResult:
        result = AccountRunResult(account_id=account.id, account_email=account.email)
        try:
            messages = await self.poller.fetch_unread(account)
        except MailboxError as exc:
            logger.error("Mailbox unavailable account=%s error=%s", account.email, exc)
            result.error = str(exc)
            return result

        result.fetched = len(messages)
        if not messages:
            await self._touch(account)
            return result

        size = self.settings.batch_size
        batches = [messages[index : index + size] for index in range(0, len(messages), size)]
        for number, batch in enumerate(batches, start=1):
            if number > 1:
                await self._sleep(self.settings.batch_delay_sec)
            logger.info("Processing batch %s/%s size=%s account=%s", number, len(batches), len(batch), account.email)
            outcomes = await asyncio.gather(*(self._process_with_deadline(account, message) for message in batch))
            for outcome in outcomes:
                await self.statistics.record(outcome)
            result.outcomes.extend(outcomes)
            await self._acknowledge(account, outcomes)
            await self._touch(account)
        return result

    async def _process_with_deadline(self, account: MailboxAccount, message: MailMessage) -> MessageOutcome:
        try:
            return await with_timeout(
                self.process_message(account, message),
                self.settings.message_timeout_sec,
                f"message:{message.uid or message.sender_email}",
            )
        except OperationTimeoutError as exc:
            return _failed(message, "pipeline", exc, timeout=True)
        except Exception as exc:
            logger.exception("Unexpected failure processing message from %s", message.sender_email)
            return _failed(message, "pipeline", exc)

    async def process_message(self, account: MailboxAccount, message: MailMessage) -> MessageOutcome:
        try:
            return await self._pipeline(account, message)
        except _StageFailure as failure:
            timeout = isinstance(failure.error, OperationTimeoutError)
            logger.warning(
                "Message failed stage=%s sender=%s error=%s",
                failure.stage,
                message.sender_email,
                failure.error,
            )
            return _failed(message, failure.stage, failure.error, timeout=timeout)

    async def _pipeline(self, account: MailboxAccount, message: MailMessage) -> MessageOutcome:
        if not message.attachments:
            return _skipped(message, "no-attachments")
        classified = classify_attachments(message.attachments)
        if not classified.resumes:
            reason = "noise-only" if len(classified.noise) == classified.total else "no-attachments"
            return _skipped(message, reason)

        sender = normalize_email(message.sender_email)
        if not sender:
            raise _StageFailure("classify", IntakeError("Message has no sender address"))

        job_id = await self._stage("match", self.job_matcher.match(message.subject))
        if await self._stage("dedupe", self.duplicates.is_duplicate(sender, job_id)):
            return _skipped(message, "duplicate", job_id=job_id)

        resume = classified.resumes[0]
        extraction = await self._stage("extract", self.extractor.extract(resume))
        parsed = await self._stage("parse", self.parser.parse(extraction.text, resume))
        validation = self.validator.validate(extraction.text)

        resume_url = await self._stage("persist", self._upload(resume, "resumes"))
        video_url, video_kind = await self._upload_video(classified.videos)
        draft = build_draft(
            account,
            message,
            job_id=job_id,
            resume=resume,
            resume_url=resume_url,
            extraction=extraction,
            parsed=parsed,
            validation=validation,
            video_url=video_url,
            video_kind=video_kind,
        )
        try:
            application_id = await self._database_call(self.store.create, draft)
        except DuplicateApplicationError:
            logger.info("Lost create race for %s job=%s; treating as duplicate", sender, job_id)
            return _skipped(message, "duplicate", job_id=job_id)
        except Exception as exc:
            raise _StageFailure("persist", exc) from exc

        return MessageOutcome(
            sender_email=message.sender_email,
            subject=message.subject,
            uid=message.uid,
            status="completed",
            application_id=application_id,
            job_id=job_id,
            parser_provider=parsed.provider,
            extraction_method=extraction.method,
            needs_review=draft.needs_review,
        )

    async def _stage(self, stage: FailureStage, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except Exception as exc:
            raise _StageFailure(stage, exc) from exc

    async def find_existing(self, email: str, job_id: int | None) -> int | None:
        return await self._database_call(self.store.find_existing, email, job_id)

    async def list_active_jobs(self) -> list[JobSummary]:
        return await self._database_call(self.store.list_active_jobs)

    async def _database_call(self, operation: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        breaker = self.breakers.get("database", ignore=(DuplicateApplicationError,))
        return await guarded_call(
            breaker,
            lambda: operation(*args),
            timeout_sec=self.settings.storage_timeout_sec,
        )

    async def _upload(self, attachment: Attachment, kind: str) -> str:
        breaker = self.breakers.get("storage")
        return await guarded_call(
            breaker,
            lambda: self.storage.upload(attachment.content, attachment.filename, kind),
            timeout_sec=self.settings.storage_timeout_sec,
        )

    async def _upload_video(self, videos: list[tuple[Attachment, AttachmentClass]]) -> tuple[str, str]:
        limit = self.settings.max_video_mb * 1024 * 1024
        for attachment, kind in videos:
            if attachment.size > limit:
                logger.warning("Skipping video %s: %s bytes exceeds limit", attachment.filename, attachment.size)
                continue
            try:
                return await self._upload(attachment, "videos"), kind
            except Exception as exc:
                logger.error("Video upload failed file=%s error=%s", attachment.filename, exc)
            break
        return "", ""

    async def _acknowledge(self, account: MailboxAccount, outcomes: list[MessageOutcome]) -> None:
        uids = [outcome.uid for outcome in outcomes if outcome.acknowledged and outcome.uid]
        if not uids:
            return
        try:
            await self.poller.mark_seen(account, uids)
        except MailboxError as exc:
            logger.error("Could not mark messages seen account=%s error=%s", account.email, exc)

    async def _touch(self, account: MailboxAccount) -> None:
        try:
            await self._database_call(self.store.touch_account, account.id, datetime.now(UTC))
        except Exception as exc:
            logger.error("Could not update last_checked_at account=%s error=%s", account.email, exc)


def split_display_name(display_name: str) -> tuple[str, str]:
    parts = display_name.replace(",", " ").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def build_draft(
    account: MailboxAccount,
    message: MailMessage,
    *,
    job_id: int | None,
    resume: Attachment,
    resume_url: str,
    extraction: ExtractionResult,
    parsed: ParsedResume,
    validation: ValidationResult,
    video_url: str = "",
    video_kind: str = "",
) -> ApplicationDraft:
    info = parsed.personal_info
    first_name, last_name = info.first_name, info.last_name
    if not first_name and not last_name:
        first_name, last_name = split_display_name(message.sender_name)

    return ApplicationDraft(
        candidate_email=normalize_email(message.sender_email),
        job_id=job_id,
        email_account_id=account.id,
        first_name=first_name,
        last_name=last_name,
        resume_email=info.email,
        phone=info.phone,
        location=info.location,
        current_title=parsed.current_title,
        current_company=parsed.current_company,
        years_of_experience=parsed.years_of_experience,
        skills=parsed.skills,
        resume_url=resume_url,
        resume_filename=resume.filename,
        raw_text=extraction.text,
        parsed=parsed.model_dump(),
        parser_provider=parsed.provider,
        extraction_method=extraction.method,
        validation_score=validation.score,
        validation_reason=validation.reason,
        validation_concerns=validation.concerns,
        needs_review=not validation.is_valid,
        video_url=video_url,
        video_kind=video_kind,
        source_subject=message.subject,
        source_message_id=message.message_id,
    )


def _skipped(message: MailMessage, reason: str, *, job_id: int | None = None) -> MessageOutcome:
    logger.info("Message skipped reason=%s sender=%s", reason, message.sender_email)
    return MessageOutcome(
        sender_email=message.sender_email,
        subject=message.subject,
        uid=message.uid,
        status="skipped",
        skip_reason=reason,
        job_id=job_id,
    )


def _failed(
    message: MailMessage,
    stage: FailureStage,
    error: BaseException,
    *,
    timeout: bool = False,
) -> MessageOutcome:
    return MessageOutcome(
        sender_email=message.sender_email,
        subject=message.subject,
        uid=message.uid,
        status="failed",
        failed_stage=stage,
        error=str(error) or type(error).__name__,
        timeout=timeout,
    )
