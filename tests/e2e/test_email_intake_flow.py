from __future__ import annotations

import asyncio
import time
from email.message import EmailMessage
from pathlib import Path

from resumedrop.config import Settings
from resumedrop.core.orchestrator import BatchOrchestrator
from resumedrop.core.resilience import CircuitBreakerRegistry
from resumedrop.db.repositories import Repository
from resumedrop.db.session import SessionLocal
from resumedrop.db.store import ApplicationStore
from resumedrop.errors import MailboxError
from resumedrop.llm.router import ResumeParsingRouter
from resumedrop.mail.imap import ImapMailboxPoller
from resumedrop.security.crypto import encrypt_secret
from resumedrop.types import (
    ApplicationDraft,
    Attachment,
    ExtractionResult,
    MailboxAccount,
    MailMessage,
    ParsedResume,
    PersonalInfo,
)


class FakePoller:
    def __init__(self, messages: list[MailMessage]):
        self.messages = messages
        self.seen: list[str] = []
        self.fetches = 0

    async def fetch_unread(self, account: MailboxAccount) -> list[MailMessage]:
        self.fetches += 1
        return list(self.messages)

    async def mark_seen(self, account: MailboxAccount, uids: list[str]) -> None:
        self.seen.extend(uids)


class BlockingPoller(FakePoller):
    def __init__(self, messages: list[MailMessage]):
        super().__init__(messages)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_unread(self, account: MailboxAccount) -> list[MailMessage]:
        self.entered.set()
        await self.release.wait()
        return await super().fetch_unread(account)


class StaticProvider:
    def __init__(self, name: str, resume: ParsedResume | None = None, error: Exception | None = None):
        self.name = name
        self.resume = resume
        self.error = error
        self.calls = 0

    async def parse(self, text: str, attachment: Attachment) -> ParsedResume:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.resume.model_copy(update={"provider": self.name})


class StubExtractor:
    """Returns fixed text, except for files named ``slow*`` which hang."""

    def __init__(self, text: str):
        self.text = text

    async def extract(self, attachment: Attachment) -> ExtractionResult:
        if attachment.filename.startswith("slow"):
            await asyncio.sleep(5)
        return ExtractionResult(text=self.text, method="pypdf", success=True)


PRIYA = ParsedResume(
    personal_info=PersonalInfo(first_name="Priya", last_name="Raman", email="priya.raman@mailbox.dev"),
    current_title="Senior Software Engineer",
    current_company="Ledgerline",
    years_of_experience=7,
    skills=["Python", "PostgreSQL", "Kafka"],
)


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "upload_dir": tmp_path / "uploads",
        "extraction_tmp_dir": tmp_path / "tmp",
        "batch_size": 5,
        "batch_delay_sec": 0.5,
        "message_timeout_sec": 10.0,
    }
    values.update(overrides)
    return Settings(**values)


def _account(email: str = "jobs@agency.dev", host: str = "imap.agency.dev", password: str = "unused") -> int:
    with SessionLocal() as db:
        return Repository(db).create_email_account(email, host, email.split("@")[0], password).id


def _message(uid: str, sender: str, filename: str = "resume.pdf", content: bytes = b"", **kwargs) -> MailMessage:
    attachments = [Attachment(filename=filename, content=content or b"%PDF-1.4", content_type="application/pdf")]
    return MailMessage(sender_email=sender, uid=uid, attachments=attachments, **kwargs)


def _orchestrator(settings: Settings, poller: FakePoller, *providers: StaticProvider, **kwargs) -> BatchOrchestrator:
    breakers = CircuitBreakerRegistry(settings)
    parser = ResumeParsingRouter(settings, breakers=breakers, providers=list(providers or [StaticProvider("openai", PRIYA)]))
    return BatchOrchestrator(
        settings,
        store=ApplicationStore(),
        poller=poller,
        parser=parser,
        breakers=breakers,
        **kwargs,
    )


def test_well_formed_pdf_becomes_pending_application(tmp_path: Path, resume_pdf_bytes: bytes) -> None:
    account_id = _account()
    poller = FakePoller(
        [
            _message(
                "11",
                "Priya.Raman@Mailbox.dev",
                filename="Priya_Raman_Resume.pdf",
                content=resume_pdf_bytes,
                sender_name="Priya Raman",
                subject="Application for Backend Engineer",
            )
        ]
    )
    orchestrator = _orchestrator(_settings(tmp_path), poller)

    summary = asyncio.run(orchestrator.run())

    assert summary is not None
    assert (summary.processed, summary.created, summary.errors) == (1, 1, 0)
    outcome = summary.accounts[0].outcomes[0]
    assert outcome.status == "completed"
    assert outcome.extraction_method == "pypdf"
    assert outcome.parser_provider == "openai"
    assert outcome.needs_review is False
    assert poller.seen == ["11"]

    with SessionLocal() as db:
        repo = Repository(db)
        row = repo.list_applications()[0]
        assert row.candidate_email == "priya.raman@mailbox.dev"
        assert row.status == "pending"
        assert row.source == "email-automation"
        assert row.job_key == "unassigned"
        assert row.resume_url.startswith("file://")
        assert "Ledgerline" in row.raw_text
        assert row.email_account_id == account_id
        assert repo.get_email_account(account_id).last_checked_at is not None


def test_garbled_pdf_fails_and_stays_unread(tmp_path: Path, garbled_pdf_bytes: bytes) -> None:
    _account()
    poller = FakePoller([_message("12", "sam@mailbox.dev", content=garbled_pdf_bytes)])
    orchestrator = _orchestrator(_settings(tmp_path), poller)

    summary = asyncio.run(orchestrator.run())

    assert (summary.processed, summary.created, summary.errors) == (1, 0, 1)
    outcome = summary.accounts[0].outcomes[0]
    assert outcome.failed_stage == "extract"
    assert "All PDF extractors failed" in outcome.error
    assert poller.seen == []
    with SessionLocal() as db:
        assert Repository(db).list_applications() == []


def test_primary_parser_failure_falls_back_to_secondary(tmp_path: Path, resume_text: str) -> None:
    _account()
    primary = StaticProvider("affinda", error=RuntimeError("quota exceeded"))
    secondary = StaticProvider("openai", PRIYA)
    poller = FakePoller([_message("13", "priya.raman@mailbox.dev")])
    orchestrator = _orchestrator(_settings(tmp_path), poller, primary, secondary, extractor=StubExtractor(resume_text))

    summary = asyncio.run(orchestrator.run())

    assert (summary.created, summary.errors) == (1, 0)
    assert summary.accounts[0].outcomes[0].parser_provider == "openai"
    assert primary.calls == 1 and secondary.calls == 1


def test_hung_message_times_out_without_blocking_siblings(tmp_path: Path, resume_text: str) -> None:
    _account()
    poller = FakePoller(
        [
            _message("21", "slow@mailbox.dev", filename="slow_resume.pdf"),
            _message("22", "fast@mailbox.dev", filename="fast_resume.pdf"),
        ]
    )
    settings = _settings(tmp_path, message_timeout_sec=0.3)
    orchestrator = _orchestrator(settings, poller, extractor=StubExtractor(resume_text))

    started = time.perf_counter()
    summary = asyncio.run(orchestrator.run())
    elapsed = time.perf_counter() - started

    assert elapsed < 3
    assert (summary.created, summary.errors, summary.timeouts) == (1, 1, 1)
    by_uid = {outcome.uid: outcome for outcome in summary.accounts[0].outcomes}
    assert by_uid["21"].timeout is True
    assert "timed out" in by_uid["21"].error
    assert by_uid["22"].status == "completed"
    assert poller.seen == ["22"]


def test_second_run_is_rejected_while_first_is_active(tmp_path: Path, resume_text: str) -> None:
    _account()
    poller = BlockingPoller([_message("31", "priya.raman@mailbox.dev")])
    orchestrator = _orchestrator(_settings(tmp_path), poller, extractor=StubExtractor(resume_text))

    async def scenario():
        first = asyncio.create_task(orchestrator.run())
        await poller.entered.wait()
        assert orchestrator.is_running is True
        second = await orchestrator.run()
        poller.release.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert second is None
    assert first is not None and first.created == 1
    assert poller.fetches == 1
    assert orchestrator.is_running is False


def test_disabled_automation_skips_unless_forced(tmp_path: Path, resume_text: str) -> None:
    _account()
    poller = FakePoller([])
    orchestrator = _orchestrator(_settings(tmp_path, automation_enabled=False), poller)

    assert asyncio.run(orchestrator.run()) is None
    assert poller.fetches == 0
    assert asyncio.run(orchestrator.run(force=True)) is not None
    assert poller.fetches == 1


def test_existing_application_is_skipped_as_duplicate(tmp_path: Path, resume_text: str) -> None:
    _account()
    asyncio.run(ApplicationStore().create(ApplicationDraft(candidate_email="priya.raman@mailbox.dev", job_id=None)))
    parser = StaticProvider("openai", PRIYA)
    poller = FakePoller([_message("41", "PRIYA.RAMAN@mailbox.dev")])
    orchestrator = _orchestrator(_settings(tmp_path), poller, parser, extractor=StubExtractor(resume_text))

    summary = asyncio.run(orchestrator.run())

    outcome = summary.accounts[0].outcomes[0]
    assert (outcome.status, outcome.skip_reason) == ("skipped", "duplicate")
    assert parser.calls == 0
    assert poller.seen == ["41"]


def test_messages_without_resumes_are_skipped(tmp_path: Path) -> None:
    _account()
    poller = FakePoller(
        [
            MailMessage(sender_email="a@mailbox.dev", uid="51"),
            _message("52", "b@mailbox.dev", filename="invoice_march.pdf"),
            _message("53", "c@mailbox.dev", filename="portfolio.png"),
        ]
    )
    orchestrator = _orchestrator(_settings(tmp_path), poller)

    summary = asyncio.run(orchestrator.run())

    reasons = {outcome.uid: outcome.skip_reason for outcome in summary.accounts[0].outcomes}
    assert reasons == {"51": "no-attachments", "52": "noise-only", "53": "no-attachments"}
    assert summary.skipped == 3
    assert sorted(poller.seen) == ["51", "52", "53"]


def test_messages_are_processed_in_batches_with_delay(tmp_path: Path, resume_text: str) -> None:
    _account()
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    poller = FakePoller([_message(str(uid), f"candidate{uid}@mailbox.dev") for uid in range(60, 65)])
    settings = _settings(tmp_path, batch_size=2, batch_delay_sec=1.5)
    orchestrator = _orchestrator(settings, poller, extractor=StubExtractor(resume_text), sleep=fake_sleep)

    summary = asyncio.run(orchestrator.run())

    assert delays == [1.5, 1.5]
    assert summary.created == 5
    assert orchestrator.status()["statistics"]["created"] == 5


def test_video_attachment_is_stored_alongside_resume(tmp_path: Path, resume_text: str) -> None:
    _account()
    message = _message("71", "priya.raman@mailbox.dev")
    message.attachments.append(Attachment(filename="intro_loom.mp4", content=b"\x00\x01video", content_type="video/mp4"))
    orchestrator = _orchestrator(_settings(tmp_path), FakePoller([message]), extractor=StubExtractor(resume_text))

    asyncio.run(orchestrator.run())

    with SessionLocal() as db:
        row = Repository(db).list_applications()[0]
    assert row.video_kind == "video-introduction"
    assert row.video_url.startswith("file://")


class PerAccountPoller(FakePoller):
    """Serves messages per mailbox address; a mailbox mapped to an exception raises it."""

    def __init__(self, mailboxes: dict[str, list[MailMessage] | Exception]):
        super().__init__([])
        self.mailboxes = mailboxes

    async def fetch_unread(self, account: MailboxAccount) -> list[MailMessage]:
        self.fetches += 1
        mailbox = self.mailboxes[account.email]
        if isinstance(mailbox, Exception):
            raise mailbox
        return list(mailbox)


class DroppingIMAP:
    """Minimal IMAP connection that can lose the socket on a given UID command."""

    def __init__(self, messages: dict[str, bytes], drop_on: str = ""):
        self.messages = messages
        self.drop_on = drop_on
        self.stored: list[str] = []

    def login(self, username: str, password: str):
        return "OK", [b"logged in"]

    def select(self, mailbox: str, readonly: bool = False):
        return "OK", [str(len(self.messages)).encode()]

    def uid(self, command: str, *args):
        if command == self.drop_on:
            raise TimeoutError("read timed out")
        if command == "SEARCH":
            return "OK", [" ".join(self.messages).encode()]
        if command == "FETCH":
            return "OK", [(b"1 (BODY[] {1}", self.messages[args[0]]), b")"]
        if command == "STORE":
            self.stored.append(args[0])
        return "OK", [b""]

    def logout(self):
        return "BYE", [b""]


def _raw_application(sender: str, pdf: bytes) -> bytes:
    message = EmailMessage()
    message["From"] = sender
    message["To"] = "jobs@agency.dev"
    message["Subject"] = "Application for Backend Engineer"
    message.set_content("Resume attached.")
    message.add_attachment(pdf, maintype="application", subtype="pdf", filename="resume.pdf")
    return message.as_bytes()


def test_connection_drop_on_one_mailbox_does_not_stop_the_next(tmp_path: Path, resume_pdf_bytes: bytes) -> None:
    _account("bad@agency.dev", "bad.host", encrypt_secret("pw"))
    _account("good@agency.dev", "good.host", encrypt_secret("pw"))
    good = DroppingIMAP({"5": _raw_application("Priya Raman <priya.raman@mailbox.dev>", resume_pdf_bytes)})
    connections = {"bad.host": DroppingIMAP({"1": b""}, drop_on="FETCH"), "good.host": good}
    settings = _settings(tmp_path)
    poller = ImapMailboxPoller(settings, connection_factory=lambda credentials, timeout: connections[credentials.host])
    orchestrator = _orchestrator(settings, poller)

    summary = asyncio.run(orchestrator.run())

    assert summary is not None
    bad_result, good_result = summary.accounts
    assert "read timed out" in bad_result.error
    assert bad_result.outcomes == []
    assert good_result.error == ""
    assert [outcome.status for outcome in good_result.outcomes] == ["completed"]
    assert good.stored == ["5"]
    assert summary.created == 1


def test_mailbox_error_aborts_only_that_account(tmp_path: Path, resume_text: str) -> None:
    _account("first@agency.dev")
    _account("second@agency.dev")
    poller = PerAccountPoller(
        {
            "first@agency.dev": MailboxError("IMAP connection failed", account="first@agency.dev"),
            "second@agency.dev": [_message("81", "priya.raman@mailbox.dev")],
        }
    )
    orchestrator = _orchestrator(_settings(tmp_path), poller, extractor=StubExtractor(resume_text))

    summary = asyncio.run(orchestrator.run())

    assert [result.account_email for result in summary.accounts] == ["first@agency.dev", "second@agency.dev"]
    assert "IMAP connection failed" in summary.accounts[0].error
    assert (summary.created, summary.errors) == (1, 0)
    assert poller.seen == ["81"]


def test_unexpected_account_error_is_recorded_and_run_continues(tmp_path: Path, resume_text: str) -> None:
    _account("first@agency.dev")
    _account("second@agency.dev")
    poller = PerAccountPoller(
        {
            "first@agency.dev": RuntimeError("poller crashed"),
            "second@agency.dev": [_message("82", "priya.raman@mailbox.dev")],
        }
    )
    orchestrator = _orchestrator(_settings(tmp_path), poller, extractor=StubExtractor(resume_text))

    summary = asyncio.run(orchestrator.run())

    assert summary.accounts[0].error == "poller crashed"
    assert summary.created == 1
    assert orchestrator.is_running is False


def test_same_sender_twice_in_one_batch_creates_one_application(tmp_path: Path, resume_text: str) -> None:
    _account()
    poller = FakePoller(
        [
            _message("91", "priya.raman@mailbox.dev"),
            _message("92", "Priya.Raman@Mailbox.dev", filename="resume_v2.pdf"),
        ]
    )
    orchestrator = _orchestrator(_settings(tmp_path), poller, extractor=StubExtractor(resume_text))

    summary = asyncio.run(orchestrator.run())

    outcomes = summary.accounts[0].outcomes
    assert sorted(outcome.status for outcome in outcomes) == ["completed", "skipped"]
    assert [outcome.skip_reason for outcome in outcomes if outcome.status == "skipped"] == ["duplicate"]
    assert (summary.created, summary.skipped, summary.errors) == (1, 1, 0)
    assert sorted(poller.seen) == ["91", "92"]
    with SessionLocal() as db:
        assert len(Repository(db).list_applications()) == 1


class SlowJobsStore(ApplicationStore):
    async def list_active_jobs(self):
        await asyncio.sleep(5)
        return []


def test_job_lookup_runs_under_database_breaker_and_timeout(tmp_path: Path, resume_text: str) -> None:
    _account()
    settings = _settings(tmp_path, storage_timeout_sec=0.2)
    breakers = CircuitBreakerRegistry(settings)
    orchestrator = BatchOrchestrator(
        settings,
        store=SlowJobsStore(),
        poller=FakePoller([_message("95", "priya.raman@mailbox.dev")]),
        extractor=StubExtractor(resume_text),
        parser=ResumeParsingRouter(settings, breakers=breakers, providers=[StaticProvider("openai", PRIYA)]),
        breakers=breakers,
    )

    summary = asyncio.run(orchestrator.run())

    outcome = summary.accounts[0].outcomes[0]
    assert (outcome.status, outcome.failed_stage, outcome.timeout) == ("failed", "match", True)
    database = next(item for item in breakers.snapshot() if item["name"] == "database")
    assert database["last_failure_at"] is not None
