from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

AttachmentClass = Literal["resume", "video-introduction", "video-resume", "noise", "other"]
ExtractionMethod = Literal["pypdf", "pdfplumber", "python-docx", "none"]
SkipReason = Literal["duplicate", "no-attachments", "noise-only"]
MessageStatus = Literal["completed", "skipped", "failed"]
FailureStage = Literal["classify", "match", "dedupe", "extract", "parse", "validate", "persist", "pipeline"]

APPLICATION_SOURCE = "email-automation"


@dataclass(slots=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
    size: int = 0

    def __post_init__(self) -> None:
        if not self.size:
            self.size = len(self.content)

    @property
    def extension(self) -> str:
        return PurePath(self.filename or "").suffix.lower()


@dataclass(slots=True)
class MailMessage:
    sender_email: str
    sender_name: str = ""
    subject: str = ""
    attachments: list[Attachment] = field(default_factory=list)
    uid: str = ""
    message_id: str = ""
    body: str = ""
    received_at: datetime | None = None


@dataclass(slots=True)
class MailboxCredentials:
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True


class ExtractionResult(BaseModel):
    text: str = ""
    method: ExtractionMethod = "none"
    success: bool = False
    error: str = ""


class PersonalInfo(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    location: str = ""
    links: list[str] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in [self.first_name, self.last_name] if part)


class ExperienceEntry(BaseModel):
    company: str = ""
    title: str = ""
    duration: str = ""
    description: str = ""


class EducationEntry(BaseModel):
    institution: str = ""
    degree: str = ""
    field: str = ""
    year: str = ""


class ParsedResume(BaseModel):
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    current_title: str = ""
    current_company: str = ""
    years_of_experience: int = 0
    summary: str = ""
    skills: list[str] = Field(default_factory=list)
    experience: list[ExperienceEntry] = Field(default_factory=list)
    education: list[EducationEntry] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    provider: str = ""


class ValidationResult(BaseModel):
    is_valid: bool
    score: int
    reason: str
    concerns: list[str] = Field(default_factory=list)

    @field_validator("score")
    @classmethod
    def validate_score(cls, value: int) -> int:
        if value < 0 or value > 100:
            raise ValueError("score must be between 0 and 100")
        return value


class MessageOutcome(BaseModel):
    sender_email: str
    subject: str = ""
    uid: str = ""
    status: MessageStatus
    skip_reason: SkipReason | None = None
    failed_stage: FailureStage | None = None
    error: str = ""
    timeout: bool = False
    application_id: int | None = None
    job_id: int | None = None
    parser_provider: str = ""
    extraction_method: str = ""
    needs_review: bool = False

    @property
    def acknowledged(self) -> bool:
        return self.status in {"completed", "skipped"}


class AccountRunResult(BaseModel):
    account_id: int
    account_email: str
    fetched: int = 0
    outcomes: list[MessageOutcome] = Field(default_factory=list)
    error: str = ""


class RunSummary(BaseModel):
    started_at: datetime
    duration_sec: float
    processed: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0
    timeouts: int = 0
    accounts: list[AccountRunResult] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass(slots=True)
class MailboxAccount:
    id: int
    email: str
    host: str
    port: int
    username: str
    password_encrypted: str
    use_tls: bool = True
    last_checked_at: datetime | None = None


@dataclass(slots=True)
class JobSummary:
    id: int
    title: str
    client_name: str = ""


class ApplicationDraft(BaseModel):
    candidate_email: str
    job_id: int | None = None
    email_account_id: int | None = None
    first_name: str = ""
    last_name: str = ""
    resume_email: str = ""
    phone: str = ""
    location: str = ""
    current_title: str = ""
    current_company: str = ""
    years_of_experience: int = 0
    skills: list[str] = Field(default_factory=list)
    resume_url: str = ""
    resume_filename: str = ""
    raw_text: str = ""
    parsed: dict[str, Any] = Field(default_factory=dict)
    parser_provider: str = ""
    extraction_method: str = ""
    validation_score: int = 0
    validation_reason: str = ""
    validation_concerns: list[str] = Field(default_factory=list)
    needs_review: bool = False
    video_url: str = ""
    video_kind: str = ""
    source: str = APPLICATION_SOURCE
    source_subject: str = ""
    source_message_id: str = ""
    status: str = "pending"


class ModelResponse(BaseModel):
    content: str
    raw: dict[str, Any] = Field(default_factory=dict)
