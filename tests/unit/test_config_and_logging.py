from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from resumedrop.config import Settings
from resumedrop.logging_config import PIIRedactingFilter, redact_emails


def test_settings_reject_bad_values() -> None:
    with pytest.raises(ValidationError):
        Settings(app_env="qa")
    with pytest.raises(ValidationError):
        Settings(batch_size=0)
    with pytest.raises(ValidationError):
        Settings(message_timeout_sec=0)
    with pytest.raises(ValidationError):
        Settings(validation_min_score=101)


def test_settings_defaults_match_intake_policy() -> None:
    settings = Settings()
    assert settings.batch_size == 5
    assert settings.message_timeout_sec == 60.0
    assert settings.batch_delay_sec == 2.0
    assert settings.automation_interval_minutes == 15
    assert settings.pdf_fallback_timeout_sec == 30.0


def test_redact_emails_keeps_first_letter_and_domain() -> None:
    assert redact_emails("from priya.raman@mailbox.dev ok") == "from p***@mailbox.dev ok"


def test_filter_rewrites_formatted_record() -> None:
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "Duplicate email=%s", ("sam@mailbox.dev",), None)
    assert PIIRedactingFilter().filter(record) is True
    assert record.getMessage() == "Duplicate email=s***@mailbox.dev"
