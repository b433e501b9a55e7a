from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from resumedrop.config import Settings
from resumedrop.errors import ParsingError
from resumedrop.llm.normalize import normalize_parsed_resume
from resumedrop.types import Attachment, ParsedResume

logger = logging.getLogger(__name__)


class AffindaResumeParser:
    """Premium document parser: uploads the original file and waits for the structured result."""

    name = "affinda"

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return self.settings.affinda_enabled and bool(self.settings.affinda_api_token)

    async def parse(self, text: str, attachment: Attachment) -> ParsedResume:
        form: dict[str, str] = {"wait": "true"}
        if self.settings.affinda_workspace:
            form["workspace"] = self.settings.affinda_workspace
        if self.settings.affinda_collection:
            form["collection"] = self.settings.affinda_collection

        async with httpx.AsyncClient(
            base_url=self.settings.affinda_base_url,
            headers={"Authorization": f"Bearer {self.settings.affinda_api_token}"},
            timeout=float(self.settings.affinda_timeout_sec),
            transport=self.transport,
        ) as client:
            response = await client.post(
                "/documents",
                data=form,
                files={"file": (attachment.filename, attachment.content, attachment.content_type)},
            )
            response.raise_for_status()
            payload = response.json()

        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            identifier = (payload.get("meta") or {}).get("identifier", "") if isinstance(payload, dict) else ""
            raise ParsingError(f"Affinda returned empty data for {attachment.filename} document={identifier}")

        logger.info("Affinda parse complete file=%s", attachment.filename)
        return normalize_parsed_resume(map_affinda_document(data), provider=self.name)


def _unwrap(value: Any) -> Any:
    if isinstance(value, dict) and "parsed" in value:
        return value["parsed"]
    return value


def _first(value: Any) -> str:
    value = _unwrap(value)
    if isinstance(value, list):
        value = _unwrap(value[0]) if value else ""
    if isinstance(value, dict):
        value = value.get("formatted") or value.get("url") or value.get("raw") or ""
    return str(value or "")


def _format_date(value: Any) -> str:
    if not value:
        return ""
    try:
        return datetime.fromisoformat(str(value)).strftime("%B %Y")
    except ValueError:
        return str(value)


def _format_duration(dates: Any) -> str:
    dates = _unwrap(dates) or {}
    if not isinstance(dates, dict) or not dates.get("startDate"):
        return ""
    start = _format_date(dates["startDate"])
    end = dates.get("endDate")
    if not end or str(end).lower() == "present" or dates.get("isCurrent"):
        return f"{start} - Present"
    return f"{start} - {_format_date(end)}"


def _location(value: Any) -> str:
    value = _unwrap(value)
    if not isinstance(value, dict):
        return str(value or "")
    if value.get("formatted"):
        return str(value["formatted"])
    return ", ".join(str(part) for part in (value.get("city"), value.get("state"), value.get("country")) if part)


def map_affinda_document(data: dict[str, Any]) -> dict[str, Any]:
    """Translate Affinda's resume document fields into the shape ``normalize_parsed_resume`` reads."""
    name = _unwrap(data.get("name")) or {}
    if not isinstance(name, dict):
        name = {"first": str(name)}

    links: list[str] = []
    linkedin = _first(data.get("linkedin"))
    if linkedin:
        links.append(linkedin)
    for website in _unwrap(data.get("websites")) or []:
        url = _first(website)
        if url and not url.startswith("tel:") and url not in links:
            links.append(url)

    experience = []
    for item in _unwrap(data.get("workExperience")) or []:
        item = _unwrap(item) or {}
        experience.append(
            {
                "company": _first(item.get("organization")),
                "title": _first(item.get("jobTitle")),
                "duration": _format_duration(item.get("dates")),
                "description": _first(item.get("jobDescription")),
            }
        )

    education = []
    for item in _unwrap(data.get("education")) or []:
        item = _unwrap(item) or {}
        accreditation = _unwrap(item.get("accreditation")) or {}
        dates = _unwrap(item.get("dates")) or {}
        completion = dates.get("completionDate") if isinstance(dates, dict) else None
        education.append(
            {
                "institution": _first(item.get("organization")),
                "degree": str(accreditation.get("education") or ""),
                "field": str(accreditation.get("educationLevel") or ""),
                "year": str(completion)[:4] if completion else _format_duration(dates),
            }
        )

    return {
        "personal_info": {
            "first_name": name.get("first", ""),
            "last_name": name.get("last", ""),
            "email": _first(data.get("emails")),
            "phone": _first(data.get("phoneNumbers")),
            "location": _location(data.get("location")),
            "links": links,
        },
        "current_title": _first(data.get("profession")),
        "total_years_experience": _unwrap(data.get("totalYearsExperience")),
        "summary": _first(data.get("summary")) or _first(data.get("objective")),
        "skills": _unwrap(data.get("skills")),
        "experience": experience,
        "education": education,
        "certifications": _unwrap(data.get("certifications")),
        "languages": _unwrap(data.get("languages")),
    }
