from __future__ import annotations

import re
from typing import Any

from resumedrop.types import EducationEntry, ExperienceEntry, ParsedResume, PersonalInfo

PLACEHOLDER_VALUES = frozenset(
    {
        "unknown candidate",
        "unknown",
        "john doe",
        "jane doe",
        "candidate name",
        "your name",
        "first name",
        "last name",
        "name",
        "n/a",
        "not provided",
        "not available",
        "none",
        "null",
        "undefined",
        "email@example.com",
    }
)

_LIST_SPLIT = re.compile(r"[,;\n]+")


def clean_text(value: Any) -> str:
    """Return ``value`` as a stripped string, or "" for missing and placeholder values."""
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return ""
    text = str(value).strip()
    if text.lower() in PLACEHOLDER_VALUES:
        return ""
    return text


def clean_email(value: Any) -> str:
    email = clean_text(value).lower()
    if "@" not in email or email.endswith("@example.com"):
        return ""
    return email


def coerce_string_list(value: Any) -> list[str]:
    """Normalize a skills-like field into a list of unique non-empty strings.

    Strings are split on commas, semicolons and newlines. Mapping items contribute their ``name``
    (or ``value``) entry. Anything else is dropped.
    """
    if value is None:
        return []
    if isinstance(value, str):
        raw_items: list[Any] = _LIST_SPLIT.split(value)
    elif isinstance(value, (list, tuple)):
        raw_items = list(value)
    else:
        return []

    items: list[str] = []
    seen: set[str] = set()
    for item in raw_items:
        if isinstance(item, dict):
            item = item.get("name") or item.get("value") or ""
        if not isinstance(item, str):
            continue
        text = clean_text(item)
        if text and text.lower() not in seen:
            seen.add(text.lower())
            items.append(text)
    return items


def resolve_years_of_experience(explicit: Any, experience_count: int) -> int:
    try:
        years = float(explicit)
    except (TypeError, ValueError):
        years = 0.0
    if years > 0:
        return int(round(years))
    return max(1, experience_count)


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] not in (None, ""):
            return data[key]
    return None


def _entries(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _personal_info(data: dict[str, Any]) -> PersonalInfo:
    raw = _pick(data, "personal_info", "personalInfo")
    raw = raw if isinstance(raw, dict) else {}

    first = clean_text(_pick(raw, "first_name", "firstName"))
    last = clean_text(_pick(raw, "last_name", "lastName"))
    if f"{first} {last}".strip().lower() in PLACEHOLDER_VALUES:
        first, last = "", ""
    if first and not last and " " in first:
        first, last = first.split(" ", 1)

    links = coerce_string_list(raw.get("links"))
    for key in ("linkedin", "website"):
        link = clean_text(raw.get(key))
        if link and link not in links:
            links.append(link)

    return PersonalInfo(
        first_name=first,
        last_name=last.strip(),
        email=clean_email(raw.get("email")),
        phone=clean_text(raw.get("phone")),
        location=clean_text(raw.get("location")),
        links=links,
    )


def normalize_parsed_resume(data: dict[str, Any], *, provider: str) -> ParsedResume:
    experience = [
        ExperienceEntry(
            company=clean_text(item.get("company")),
            title=clean_text(item.get("title")),
            duration=clean_text(item.get("duration")),
            description=clean_text(item.get("description")),
        )
        for item in _entries(data.get("experience"))
    ]
    education = [
        EducationEntry(
            institution=clean_text(item.get("institution")),
            degree=clean_text(item.get("degree")),
            field=clean_text(item.get("field")),
            year=clean_text(item.get("year")),
        )
        for item in _entries(data.get("education"))
    ]
    current_title = clean_text(_pick(data, "current_title", "currentTitle"))
    current_company = clean_text(_pick(data, "current_company", "currentCompany"))
    if experience:
        current_title = current_title or experience[0].title
        current_company = current_company or experience[0].company

    return ParsedResume(
        personal_info=_personal_info(data),
        current_title=current_title,
        current_company=current_company,
        years_of_experience=resolve_years_of_experience(
            _pick(data, "total_years_experience", "totalYearsExperience", "years_of_experience"),
            len(experience),
        ),
        summary=clean_text(_pick(data, "summary", "objective")),
        skills=coerce_string_list(data.get("skills")),
        experience=experience,
        education=education,
        certifications=coerce_string_list(data.get("certifications")),
        languages=coerce_string_list(data.get("languages")),
        provider=provider,
    )


def is_empty_parse(resume: ParsedResume) -> bool:
    """True when a provider returned nothing usable."""
    info = resume.personal_info
    return not any(
        [
            info.first_name,
            info.last_name,
            info.email,
            info.phone,
            resume.summary,
            resume.skills,
            resume.experience,
            resume.education,
        ]
    )
