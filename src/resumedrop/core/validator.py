from __future__ import annotations

import re

from resumedrop.config import Settings, get_settings
from resumedrop.types import ValidationResult

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_PATTERN = re.compile(r"(?:\+?\d[\s().-]?){7,15}\d")
LINK_PATTERN = re.compile(r"(linkedin\.com|github\.com|gitlab\.com|behance\.net|https?://)", re.IGNORECASE)

SECTION_PATTERNS: dict[str, tuple[re.Pattern[str], int]] = {
    "experience": (re.compile(r"\b(experience|employment|work history|career history)\b", re.I), 20),
    "education": (re.compile(r"\b(education|university|college|degree|bachelor|master)\b", re.I), 15),
    "skills": (re.compile(r"\b(skills|technologies|competencies|tools)\b", re.I), 15),
    "summary": (re.compile(r"\b(summary|profile|objective|about me)\b", re.I), 5),
}

INVOICE_PATTERN = re.compile(
    r"\b(invoice|receipt|amount due|total due|subtotal|payment terms|bill to|order number|tax id)\b",
    re.IGNORECASE,
)


class ResumeValidator:
    """Scores raw extracted text for how much it looks like a resume.

    The score never rejects an application. Text scoring below ``validation_min_score`` is flagged
    for review instead.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def validate(self, raw_text: str) -> ValidationResult:
        text = raw_text or ""
        score = 0
        concerns: list[str] = []

        if EMAIL_PATTERN.search(text):
            score += 20
        else:
            concerns.append("No email address found")
        if PHONE_PATTERN.search(text):
            score += 10
        else:
            concerns.append("No phone number found")
        if LINK_PATTERN.search(text):
            score += 5

        for section, (pattern, points) in SECTION_PATTERNS.items():
            if pattern.search(text):
                score += points
            elif section != "summary":
                concerns.append(f"No {section} section found")

        stripped = text.strip()
        if len(stripped) >= 300:
            score += 10
        else:
            concerns.append("Text is very short")
        if len(stripped) >= 1200:
            score += 5

        invoice_hits = len(INVOICE_PATTERN.findall(text))
        if invoice_hits >= 2:
            score -= 30
            concerns.append("Text looks like an invoice or receipt")

        if stripped and letter_ratio(stripped) < 0.5:
            score -= 25
            concerns.append("Text looks garbled")

        score = max(0, min(100, score))
        is_valid = score >= self.settings.validation_min_score
        reason = (
            f"Looks like a resume ({score}/100)"
            if is_valid
            else f"Needs manual review ({score}/100)"
        )
        return ValidationResult(is_valid=is_valid, score=score, reason=reason, concerns=concerns)


def letter_ratio(text: str) -> float:
    visible = [char for char in text if not char.isspace()]
    if not visible:
        return 0.0
    return sum(1 for char in visible if char.isalpha()) / len(visible)
