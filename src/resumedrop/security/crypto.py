"""Fernet encryption for mailbox passwords stored in the database."""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

from resumedrop.config import Settings, get_settings
from resumedrop.errors import EncryptionError

logger = logging.getLogger(__name__)


def generate_key() -> str:
    return Fernet.generate_key().decode("utf-8")


def _get_fernet(settings: Settings | None = None) -> Fernet:
    settings = settings or get_settings()
    if not settings.pii_encryption_key:
        raise EncryptionError("PII_ENCRYPTION_KEY is not configured")
    try:
        return Fernet(settings.pii_encryption_key.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise EncryptionError(f"Invalid encryption key: {exc}") from exc


def encrypt_secret(value: str, settings: Settings | None = None) -> str:
    if not value:
        raise EncryptionError("Secret must be a non-empty string")
    return _get_fernet(settings).encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(token: str, settings: Settings | None = None) -> str:
    if not token:
        raise EncryptionError("Encrypted secret is empty")
    try:
        return _get_fernet(settings).decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        logger.error("Secret decryption failed: invalid or corrupted token")
        raise EncryptionError("Invalid or corrupted secret") from exc
