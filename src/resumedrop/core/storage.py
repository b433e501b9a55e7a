from __future__ import annotations

import asyncio
import logging
import re
import uuid
from pathlib import Path, PurePath
from typing import Protocol

from resumedrop.config import Settings, get_settings

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class ObjectStorage(Protocol):
    async def upload(self, content: bytes, filename: str, kind: str) -> str: ...


def safe_filename(filename: str) -> str:
    name = _UNSAFE_CHARS.sub("_", PurePath(filename or "file").name).strip("._")
    return name or "file"


class LocalObjectStorage:
    """Stores uploads under ``upload_dir/<kind>/`` and returns a ``file://`` URL."""

    def __init__(self, settings: Settings | None = None, root: Path | None = None):
        self.settings = settings or get_settings()
        self.root = root or self.settings.upload_dir

    async def upload(self, content: bytes, filename: str, kind: str) -> str:
        target_dir = self.root / safe_filename(kind)
        target = target_dir / f"{uuid.uuid4().hex[:12]}-{safe_filename(filename)}"

        def _write() -> None:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

        await asyncio.to_thread(_write)
        logger.info("Stored %s upload %s (%s bytes)", kind, target.name, len(content))
        return target.resolve().as_uri()
