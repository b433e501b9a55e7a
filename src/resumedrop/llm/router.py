from __future__ import annotations

import logging
from typing import Protocol

from resumedrop.config import Settings, get_settings
from resumedrop.core.resilience import CircuitBreakerRegistry, guarded_call
from resumedrop.errors import ParsingError
from resumedrop.llm.affinda import AffindaResumeParser
from resumedrop.llm.normalize import is_empty_parse, normalize_parsed_resume
from resumedrop.llm.prompts import RESUME_PARSE_PROMPT, RESUME_PARSE_SYSTEM_PROMPT
from resumedrop.llm.providers import LLMProvider, ProviderPool
from resumedrop.types import Attachment, ParsedResume

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 20000


class ResumeParserProvider(Protocol):
    name: str

    async def parse(self, text: str, attachment: Attachment) -> ParsedResume: ...


class LLMResumeParser:
    """Structures extracted resume text with an OpenAI-compatible chat model."""

    def __init__(self, provider: LLMProvider):
        self.provider = provider
        self.name = provider.name

    async def parse(self, text: str, attachment: Attachment) -> ParsedResume:
        prompt = RESUME_PARSE_PROMPT.format(resume_text=text[:MAX_PROMPT_CHARS])
        data = await self.provider.complete_json(prompt=prompt, system=RESUME_PARSE_SYSTEM_PROMPT)
        if not data:
            raise ParsingError(f"{self.name} returned no structured payload")
        return normalize_parsed_resume(data, provider=self.name)


def default_providers(settings: Settings) -> list[ResumeParserProvider]:
    providers: list[ResumeParserProvider] = []
    affinda = AffindaResumeParser(settings)
    if affinda.enabled:
        providers.append(affinda)
    providers.extend(LLMResumeParser(provider) for provider in ProviderPool(settings).enabled())
    return providers


class ResumeParsingRouter:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        breakers: CircuitBreakerRegistry | None = None,
        providers: list[ResumeParserProvider] | None = None,
    ):
        self.settings = settings or get_settings()
        self.breakers = breakers or CircuitBreakerRegistry(self.settings)
        self.providers = providers if providers is not None else default_providers(self.settings)

    async def parse(self, text: str, attachment: Attachment) -> ParsedResume:
        errors: dict[str, str] = {}
        for provider in self.providers:
            breaker = self.breakers.get(f"parser:{provider.name}")
            try:
                result = await guarded_call(
                    breaker,
                    lambda provider=provider: self._parse_non_empty(provider, text, attachment),
                    timeout_sec=self.settings.ai_call_timeout_sec,
                )
            except Exception as exc:
                errors[provider.name] = str(exc) or type(exc).__name__
                logger.warning("Resume parse failed provider=%s file=%s error=%s", provider.name, attachment.filename, exc)
                continue

            if errors:
                logger.info("Resume parsed by fallback provider=%s after %s", provider.name, sorted(errors))
            return result

        if not self.providers:
            raise ParsingError("No resume parsing provider is configured")
        raise ParsingError(f"All resume parsing providers failed: {errors}", errors=errors)

    @staticmethod
    async def _parse_non_empty(provider: ResumeParserProvider, text: str, attachment: Attachment) -> ParsedResume:
        result = await provider.parse(text, attachment)
        if is_empty_parse(result):
            raise ParsingError(f"{provider.name} returned an empty resume")
        if not result.provider:
            result.provider = provider.name
        return result
