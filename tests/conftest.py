from __future__ import annotations

import os
import tempfile
from pathlib import Path

from cryptography.fernet import Fernet

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="resumedrop-tests-"))
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'resumedrop-test.db'}"
os.environ["DATA_DIR"] = str(_TEST_ROOT)
os.environ["UPLOAD_DIR"] = str(_TEST_ROOT / "uploads")
os.environ["EXTRACTION_TMP_DIR"] = str(_TEST_ROOT / "tmp")
os.environ["PII_ENCRYPTION_KEY"] = Fernet.generate_key().decode("utf-8")
os.environ["OPENAI_API_KEY"] = ""
os.environ["LOCAL_LLM_ENABLED"] = "false"
os.environ["AFFINDA_ENABLED"] = "false"

import pytest  # noqa: E402

from resumedrop.core.runtime import reset_runtime  # noqa: E402
from resumedrop.db import models  # noqa: E402,F401
from resumedrop.db.base import Base  # noqa: E402
from resumedrop.db.session import engine  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_runtime()
    yield


def _pdf_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_text_pdf(lines: list[str]) -> bytes:
    content = ["BT", "/F1 10 Tf", "13 TL", "56 780 Td"]
    content.extend(f"({_pdf_escape(line)}) Tj T*" for line in lines)
    content.append("ET")
    stream = "\n".join(content).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets: list[int] = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode()
    return bytes(out)


RESUME_LINES = [
    "Priya Raman",
    "priya.raman@mailbox.dev | +1 415 555 0142 | linkedin.com/in/priyaraman",
    "Summary",
    "Backend engineer with seven years building payment and data platforms.",
    "Experience",
    "Senior Software Engineer, Ledgerline, 2021 - Present",
    "Designed the settlement service handling two million transactions a day.",
    "Software Engineer, Northwind Analytics, 2017 - 2021",
    "Built streaming ingestion pipelines and internal reporting APIs.",
    "Education",
    "B.Sc. Computer Science, University of Waterloo, 2017",
    "Skills",
    "Python, PostgreSQL, Kafka, Kubernetes, FastAPI, Terraform",
]


@pytest.fixture()
def resume_pdf_bytes() -> bytes:
    return build_text_pdf(RESUME_LINES)


@pytest.fixture()
def resume_text() -> str:
    return "\n".join(RESUME_LINES)


@pytest.fixture()
def garbled_pdf_bytes() -> bytes:
    return build_text_pdf(["x9#%&*!~^@" * 3])
