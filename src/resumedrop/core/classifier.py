from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePath

from resumedrop.types import Attachment, AttachmentClass

NOISE_KEYWORDS = ("invoice", "receipt", "statement", "bill", "order", "confirmation")
RESUME_EXTENSIONS = frozenset({".pdf", ".doc", ".docx"})
VIDEO_EXTENSIONS = frozenset(
    {
        ".mp4",
        ".mov",
        ".avi",
        ".wmv",
        ".flv",
        ".webm",
        ".mkv",
        ".m4v",
        ".3gp",
        ".ogv",
        ".mpeg",
        ".mpg",
    }
)
INTRO_KEYWORDS = (
    "intro",
    "hello",
    "greet",
    "pitch",
    "about-me",
    "about_me",
    "aboutme",
    "about me",
    "myself",
)
PLATFORM_KEYWORDS = ("loom", "zoom", "recording")


@dataclass(slots=True)
class ClassifiedAttachments:
    resumes: list[Attachment] = field(default_factory=list)
    videos: list[tuple[Attachment, AttachmentClass]] = field(default_factory=list)
    noise: list[Attachment] = field(default_factory=list)
    other: list[Attachment] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.resumes) + len(self.videos) + len(self.noise) + len(self.other)


def is_noise_filename(filename: str) -> bool:
    name = (filename or "").lower()
    return any(keyword in name for keyword in NOISE_KEYWORDS)


def classify_video(filename: str) -> AttachmentClass:
    name = (filename or "").lower()
    if any(keyword in name for keyword in INTRO_KEYWORDS + PLATFORM_KEYWORDS):
        return "video-introduction"
    return "video-resume"


def classify_attachment(filename: str) -> AttachmentClass:
    # Noise wins over the extension check: "invoice_resume.pdf" is never a resume.
    if is_noise_filename(filename):
        return "noise"

    extension = PurePath((filename or "").lower()).suffix
    if extension in RESUME_EXTENSIONS:
        return "resume"
    if extension in VIDEO_EXTENSIONS:
        return classify_video(filename)
    return "other"


def classify_attachments(attachments: list[Attachment]) -> ClassifiedAttachments:
    result = ClassifiedAttachments()
    for attachment in attachments:
        kind = classify_attachment(attachment.filename)
        if kind == "noise":
            result.noise.append(attachment)
        elif kind == "resume":
            result.resumes.append(attachment)
        elif kind in {"video-introduction", "video-resume"}:
            result.videos.append((attachment, kind))
        else:
            result.other.append(attachment)
    return result
