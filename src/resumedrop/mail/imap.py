from __future__ import annotations

import asyncio
import imaplib
import logging
from collections.abc import Callable

from resumedrop.config import Settings, get_settings
from resumedrop.errors import EncryptionError, MailboxError
from resumedrop.mail.parsing import parse_mail_message
from resumedrop.security.crypto import decrypt_secret
from resumedrop.types import MailboxAccount, MailboxCredentials, MailMessage

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[MailboxCredentials, float], imaplib.IMAP4]


def open_connection(credentials: MailboxCredentials, timeout: float) -> imaplib.IMAP4:
    if credentials.use_tls:
        return imaplib.IMAP4_SSL(credentials.host, credentials.port, timeout=timeout)
    return imaplib.IMAP4(credentials.host, credentials.port, timeout=timeout)


class ImapMailboxPoller:
    """Fetches unread messages without marking them read; ``mark_seen`` is a separate step."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        connection_factory: ConnectionFactory = open_connection,
        mailbox: str = "INBOX",
    ):
        self.settings = settings or get_settings()
        self.connection_factory = connection_factory
        self.mailbox = mailbox

    def credentials_for(self, account: MailboxAccount) -> MailboxCredentials:
        try:
            password = decrypt_secret(account.password_encrypted, self.settings)
        except EncryptionError as exc:
            raise MailboxError(f"Cannot decrypt mailbox password: {exc}", account=account.email) from exc
        return MailboxCredentials(
            host=account.host,
            port=account.port,
            username=account.username,
            password=password,
            use_tls=account.use_tls,
        )

    async def fetch_unread(self, account: MailboxAccount) -> list[MailMessage]:
        credentials = self.credentials_for(account)
        return await asyncio.to_thread(self._fetch_unread_sync, account.email, credentials)

    async def mark_seen(self, account: MailboxAccount, uids: list[str]) -> None:
        if not uids:
            return
        credentials = self.credentials_for(account)
        await asyncio.to_thread(self._mark_seen_sync, account.email, credentials, uids)

    def _connect(self, account_email: str, credentials: MailboxCredentials, *, readonly: bool) -> imaplib.IMAP4:
        try:
            conn = self.connection_factory(credentials, float(self.settings.imap_timeout_sec))
            conn.login(credentials.username, credentials.password)
            status, _ = conn.select(self.mailbox, readonly=readonly)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailboxError(f"IMAP connection failed for {account_email}: {exc}", account=account_email) from exc
        if status != "OK":
            _logout(conn)
            raise MailboxError(f"Cannot select {self.mailbox} for {account_email}", account=account_email)
        return conn

    def _fetch_unread_sync(self, account_email: str, credentials: MailboxCredentials) -> list[MailMessage]:
        conn = self._connect(account_email, credentials, readonly=True)
        try:
            status, data = conn.uid("SEARCH", None, "UNSEEN")
            if status != "OK":
                raise MailboxError(f"UNSEEN search failed for {account_email}", account=account_email)
            uids = [uid.decode() for uid in (data[0] or b"").split()]
            uids = uids[: self.settings.max_messages_per_check]
            logger.info("Found %s unread message(s) account=%s", len(uids), account_email)

            messages: list[MailMessage] = []
            for uid in uids:
                status, payload = conn.uid("FETCH", uid, "(BODY.PEEK[])")
                raw = _raw_message(payload)
                if status != "OK" or raw is None:
                    logger.warning("Could not fetch message uid=%s account=%s", uid, account_email)
                    continue
                messages.append(parse_mail_message(raw, uid=uid))
            return messages
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailboxError(f"IMAP fetch failed for {account_email}: {exc}", account=account_email) from exc
        finally:
            _logout(conn)

    def _mark_seen_sync(self, account_email: str, credentials: MailboxCredentials, uids: list[str]) -> None:
        conn = self._connect(account_email, credentials, readonly=False)
        try:
            for uid in uids:
                conn.uid("STORE", uid, "+FLAGS", "(\\Seen)")
            logger.info("Marked %s message(s) as seen account=%s", len(uids), account_email)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailboxError(f"IMAP store failed for {account_email}: {exc}", account=account_email) from exc
        finally:
            _logout(conn)


def _raw_message(payload: list) -> bytes | None:
    for item in payload or []:
        if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
            return item[1]
    return None


def _logout(conn: imaplib.IMAP4) -> None:
    try:
        conn.logout()
    except (imaplib.IMAP4.error, OSError):
        logger.debug("IMAP logout failed", exc_info=True)
