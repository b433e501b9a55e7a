from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from resumedrop.core.dedupe import UNASSIGNED
from resumedrop.db.base import Base, TimestampMixin


class EmailAccount(TimestampMixin, Base):
    __tablename__ = "email_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    port: Mapped[int] = mapped_column(Integer, default=993, nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    password_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    use_tls: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_process: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Job(TimestampMixin, Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    location: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    status: Mapped[str] = mapped_column(String(40), default="active", nullable=False)


class Application(TimestampMixin, Base):
    __tablename__ = "applications"
    __table_args__ = (UniqueConstraint("candidate_email", "job_key", name="uq_application_email_job"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    candidate_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    job_key: Mapped[str] = mapped_column(String(40), default=UNASSIGNED, nullable=False)
    job_id: Mapped[int | None] = mapped_column(ForeignKey("jobs.id", ondelete="SET NULL"), nullable=True)
    email_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("email_accounts.id", ondelete="SET NULL"), nullable=True
    )

    first_name: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    resume_email: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    phone: Mapped[str] = mapped_column(String(60), default="", nullable=False)
    location: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    current_title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    current_company: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    years_of_experience: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skills_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    resume_url: Mapped[str] = mapped_column(String(1000), default="", nullable=False)
    resume_filename: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    parsed_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    parser_provider: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    extraction_method: Mapped[str] = mapped_column(String(40), default="", nullable=False)

    validation_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    validation_reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    validation_concerns_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    video_url: Mapped[str] = mapped_column(String(1000), default="", nullable=False)
    video_kind: Mapped[str] = mapped_column(String(40), default="", nullable=False)

    source: Mapped[str] = mapped_column(String(60), default="email-automation", nullable=False)
    source_subject: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    source_message_id: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    status: Mapped[str] = mapped_column(String(40), default="pending", nullable=False)

