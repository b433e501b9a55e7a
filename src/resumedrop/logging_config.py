from __future__ import annotations

import logging
import re

from resumedrop.config import get_settings

_EMAIL_PATTERN = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")

_LOG_CONFIGURED = False


class PIIRedactingFilter(logging.Filter):
    """Masks the local part of email addresses in rendered log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_emails(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def redact_emails(text: str) -> str:
    return _EMAIL_PATTERN.sub(r"\1***@\2", text)


def configure_logging() -> None:
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if settings.redact_log_pii:
        for handler in logging.getLogger().handlers:
            handler.addFilter(PIIRedactingFilter())
    _LOG_CONFIGURED = True
