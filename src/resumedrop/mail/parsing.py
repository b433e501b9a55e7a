from __future__ import annotations

import logging
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parseaddr, parsedate_to_datetime

from bs4 import BeautifulSoup

from resumedrop.core.dedupe import normalize_email
from resumedrop.types import Attachment, MailMessage

logger = logging.getLogger(__name__)


def html_to_text(html: str) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    lines = [line.strip() for line in soup.get_text("\n").splitlines()]
    return "\n".join(line for line in lines if line)


def _body_text(message: EmailMessage) -> str:
    part = message.get_body(preferencelist=("plain", "html"))
    if part is None:
        return ""
    try:
        content = part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        content = payload.decode("utf-8", errors="replace")
    if part.get_content_subtype() == "html":
        return html_to_text(content)
    return content.strip()


def _attachments(message: EmailMessage) -> list[Attachment]:
    attachments: list[Attachment] = []
    for part in message.iter_attachments():
        filename = part.get_filename()
        if not filename:
            continue
        content = part.get_payload(decode=True) or b""
        attachments.append(
            Attachment(
                filename=filename,
                content=content,
                content_type=part.get_content_type(),
            )
        )
    return attachments


def parse_mail_message(raw: bytes, uid: str = "") -> MailMessage:
    """Decode an RFC 822 message into a ``MailMessage`` with attachment bytes materialized."""
    message = BytesParser(policy=policy.default).parsebytes(raw)
    sender_name, sender_email = parseaddr(str(message.get("From", "")))

    received_at = None
    if message.get("Date"):
        try:
            received_at = parsedate_to_datetime(str(message["Date"]))
        except (TypeError, ValueError):
            logger.debug("Unparseable Date header uid=%s", uid)

    return MailMessage(
        sender_email=normalize_email(sender_email),
        sender_name=sender_name.strip().strip('"'),
        subject=str(message.get("Subject", "")).strip(),
        attachments=_attachments(message),
        uid=uid,
        message_id=str(message.get("Message-ID", "")).strip(),
        body=_body_text(message),
        received_at=received_at,
    )
