from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from openai import AsyncOpenAI

from resumedrop.config import Settings
from resumedrop.types import ModelResponse

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass(slots=True)
class ProviderConfig:
    name: str
    base_url: str
    api_key: str
    model: str
    timeout_sec: int

    @classmethod
    def openai(cls, settings: Settings) -> ProviderConfig:
        return cls(
            name="openai",
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            model=settings.openai_model_parser,
            timeout_sec=settings.openai_timeout_sec,
        )

    @classmethod
    def local(cls, settings: Settings) -> ProviderConfig:
        return cls(
            name="local",
            base_url=settings.local_llm_base_url,
            api_key=settings.local_llm_api_key,
            model=settings.local_llm_model,
            timeout_sec=settings.local_llm_timeout_sec,
        )


class LLMProvider:
    """OpenAI-compatible model endpoint.

    Tries the Responses API first. Servers that answer it with 404 (most local runtimes) are
    remembered and sent straight to Chat Completions afterwards.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.client = AsyncOpenAI(
            base_url=config.base_url,
            api_key=config.api_key,
            timeout=float(config.timeout_sec),
        )
        self.responses_supported = True

    @property
    def name(self) -> str:
        return self.config.name

    async def complete_text(self, *, prompt: str, system: str = "") -> ModelResponse:
        if self.responses_supported:
            try:
                return await self._responses(prompt, system)
            except Exception as exc:
                if not _is_missing_endpoint(exc):
                    raise
                self.responses_supported = False
                logger.warning(
                    "Responses API unavailable for provider=%s base_url=%s; using chat.completions (%s)",
                    self.name,
                    self.config.base_url,
                    exc,
                )
        return await self._chat(prompt, system)

    async def complete_json(self, *, prompt: str, system: str = "") -> dict[str, Any]:
        response = await self.complete_text(prompt=prompt, system=system)
        return parse_json(response.content)

    async def _responses(self, prompt: str, system: str) -> ModelResponse:
        extra: dict[str, Any] = {"instructions": system} if system else {}
        response = await self.client.responses.create(
            model=self.config.model,
            input=[{"role": "user", "content": [{"type": "input_text", "text": prompt}]}],
            **extra,
        )
        return ModelResponse(
            content=getattr(response, "output_text", "") or "",
            raw=_dump(response, api_path="responses"),
        )

    async def _chat(self, prompt: str, system: str) -> ModelResponse:
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        response = await self.client.chat.completions.create(
            model=self.config.model,
            messages=messages,
            temperature=0.3,
        )
        return ModelResponse(content=_chat_content(response), raw=_dump(response, api_path="chat_completions"))


def _is_missing_endpoint(exc: Exception) -> bool:
    if getattr(exc, "status_code", None) == 404:
        return True
    message = str(exc).lower()
    return "not found" in message or "404" in message


def _chat_content(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    message = getattr(choices[0], "message", None) if choices else None
    content = getattr(message, "content", None)
    if content is None:
        return ""
    return content if isinstance(content, str) else str(content)


def _dump(response: Any, *, api_path: str) -> dict[str, Any]:
    raw = response.model_dump() if hasattr(response, "model_dump") else {}
    if not isinstance(raw, dict):
        raw = {"raw": raw}
    raw["api_path"] = api_path
    return raw


def parse_json(content: str) -> dict[str, Any]:
    """Decode a model reply into a JSON object; fenced ```json blocks are unwrapped. Non-objects give {}."""
    candidate = (content or "").strip()
    if not candidate:
        return {}
    fenced = _FENCED_BLOCK.search(candidate)
    if fenced:
        candidate = fenced.group(1)

    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        logger.warning("Model output is not valid JSON (%s chars)", len(candidate))
        return {}
    return value if isinstance(value, dict) else {}


class ProviderPool:
    """Builds each configured LLM provider once, in the order the parsing router tries them."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._providers: dict[str, LLMProvider] = {}

    def _get(self, config: ProviderConfig) -> LLMProvider:
        if config.name not in self._providers:
            self._providers[config.name] = LLMProvider(config)
        return self._providers[config.name]

    def openai(self) -> LLMProvider:
        return self._get(ProviderConfig.openai(self.settings))

    def local(self) -> LLMProvider:
        return self._get(ProviderConfig.local(self.settings))

    def enabled(self) -> list[LLMProvider]:
        providers: list[LLMProvider] = []
        if self.settings.openai_api_key:
            providers.append(self.openai())
        if self.settings.local_llm_enabled:
            providers.append(self.local())
        return providers
