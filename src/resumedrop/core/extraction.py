from __future__ import annotations

import asyncio
import logging
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePath

import pdfplumber
from docx import Document
from pypdf import PdfReader

from resumedrop.config import Settings, get_settings
from resumedrop.core.resilience import with_timeout
from resumedrop.errors import ExtractionError, OperationTimeoutError
from resumedrop.types import Attachment, ExtractionMethod, ExtractionResult

logger = logging.getLogger(__name__)

PDF_EXTENSIONS = frozenset({".pdf"})
WORD_EXTENSIONS = frozenset({".doc", ".docx"})
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


@dataclass(slots=True, frozen=True)
class Extractor:
    method: ExtractionMethod
    extract: Callable[[Path], str]
    timeout_sec: float | None = None


def _extract_with_pypdf(path: Path) -> str:
    reader = PdfReader(str(path))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def _extract_with_pdfplumber(path: Path) -> str:
    with pdfplumber.open(str(path)) as pdf:
        return "\n".join(page.extract_text() or "" for page in pdf.pages)


def _extract_with_python_docx(path: Path) -> str:
    with path.open("rb") as handle:
        if handle.read(len(OLE2_SIGNATURE)) == OLE2_SIGNATURE:
            raise ValueError("legacy binary Word 97-2003 document; only .docx (Office Open XML) can be read")
    document = Document(str(path))
    lines = [paragraph.text for paragraph in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            lines.append(" | ".join(cell.text.strip() for cell in row.cells))
    return "\n".join(lines)


@contextmanager
def staged_attachment(attachment: Attachment, base_dir: Path | None = None) -> Iterator[Path]:
    """Write the attachment bytes to a private temp directory that is removed on exit."""
    if base_dir is not None:
        base_dir.mkdir(parents=True, exist_ok=True)
    safe_name = PurePath(attachment.filename or "attachment").name or "attachment"
    with tempfile.TemporaryDirectory(prefix="resume-", dir=str(base_dir) if base_dir else None) as tmp:
        path = Path(tmp) / safe_name
        path.write_bytes(attachment.content)
        logger.debug("Staged attachment %s (%s bytes)", path, len(attachment.content))
        yield path


class TextExtractionChain:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def chain_for(self, extension: str) -> tuple[Extractor, ...]:
        if extension in PDF_EXTENSIONS:
            return (
                Extractor("pypdf", _extract_with_pypdf),
                Extractor(
                    "pdfplumber",
                    _extract_with_pdfplumber,
                    timeout_sec=self.settings.pdf_fallback_timeout_sec,
                ),
            )
        if extension in WORD_EXTENSIONS:
            return (Extractor("python-docx", _extract_with_python_docx),)
        return ()

    def is_plausible(self, text: str) -> bool:
        return len(text.strip()) > self.settings.min_extracted_chars

    async def extract(self, attachment: Attachment) -> ExtractionResult:
        extension = attachment.extension
        chain = self.chain_for(extension)
        if not chain:
            raise ExtractionError(
                f"Unsupported file format: {extension or 'none'}",
                filename=attachment.filename,
            )

        attempts: list[str] = []
        last = ExtractionResult()
        with staged_attachment(attachment, self.settings.extraction_tmp_dir) as path:
            for extractor in chain:
                last = await self.attempt(extractor, path)
                if last.success:
                    logger.info(
                        "Extracted %s characters from %s via %s",
                        len(last.text),
                        attachment.filename,
                        last.method,
                    )
                    return last
                attempts.append(f"{extractor.method}: {last.error}")
                logger.warning(
                    "Extractor %s failed for %s: %s",
                    extractor.method,
                    attachment.filename,
                    last.error,
                )

        kind = "PDF" if extension in PDF_EXTENSIONS else "Word"
        raise ExtractionError(
            f"All {kind} extractors failed for {attachment.filename}. Last error: {last.error}",
            filename=attachment.filename,
            attempts=attempts,
        )

    async def attempt(self, extractor: Extractor, path: Path) -> ExtractionResult:
        try:
            work = asyncio.to_thread(extractor.extract, path)
            if extractor.timeout_sec is not None:
                raw = await with_timeout(work, extractor.timeout_sec, f"extract:{extractor.method}")
            else:
                raw = await work
        except OperationTimeoutError as exc:
            return ExtractionResult(method=extractor.method, success=False, error=str(exc))
        except Exception as exc:
            return ExtractionResult(method=extractor.method, success=False, error=f"{type(exc).__name__}: {exc}")

        text = (raw or "").strip()
        if not self.is_plausible(text):
            return ExtractionResult(
                text=text,
                method=extractor.method,
                success=False,
                error=f"Extracted text too short ({len(text)} chars)",
            )
        return ExtractionResult(text=text, method=extractor.method, success=True)
