from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import openai
from openai import OpenAI

from jobflow.config import Settings
from jobflow.errors import TransientInfraError

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(slots=True)
class ProviderConfig:
    name: str
    base_url: str
    api_key: str
    timeout_sec: int


@dataclass(slots=True)
class Completion:
    content: str
    api_path: str


class LLMProvider:
    def __init__(self, config: ProviderConfig, client: Any | None = None):
        self.config = config
        self.client = client or OpenAI(
            base_url=config.base_url,
            api_key=config.api_key,
            timeout=float(config.timeout_sec),
        )

    def complete_text(self, *, model: str, prompt: str) -> Completion:
        try:
            try:
                return self._complete_via_responses(model=model, prompt=prompt)
            except openai.NotFoundError as exc:
                # OpenAI-compatible local servers rarely implement /responses
                logger.warning(
                    "Responses API unavailable for provider=%s; falling back to chat.completions (%s)",
                    self.config.name,
                    exc,
                )
                return self._complete_via_chat_completions(model=model, prompt=prompt)
        except openai.RateLimitError as exc:
            raise TransientInfraError(f"{self.config.name} rate limited: {exc}", retry_after_ms=60_000) from exc
        except (openai.APITimeoutError, openai.APIConnectionError) as exc:
            raise TransientInfraError(f"{self.config.name} unreachable: {exc}") from exc

    def complete_json(self, *, model: str, prompt: str) -> dict[str, Any]:
        return parse_json(self.complete_text(model=model, prompt=prompt).content)

    def _complete_via_responses(self, *, model: str, prompt: str) -> Completion:
        response = self.client.responses.create(
            model=model,
            input=[{"role": "user", "content": [{"type": "input_text", "text": prompt}]}],
        )
        return Completion(content=getattr(response, "output_text", "") or "", api_path="responses")

    def _complete_via_chat_completions(self, *, model: str, prompt: str) -> Completion:
        response = self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
        )
        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", "") if message is not None else ""
        return Completion(content=content if isinstance(content, str) else str(content or ""), api_path="chat")


def parse_json(content: str) -> dict[str, Any]:
    candidate = content.strip()
    if not candidate:
        return {}

    match = _JSON_OBJECT.search(candidate)
    if match is None:
        logger.warning("No JSON object found in model output")
        return {}

    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.warning("Failed to parse JSON model output")
        return {}
    return value if isinstance(value, dict) else {}


class ProviderPool:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._openai: LLMProvider | None = None
        self._local: LLMProvider | None = None

    def openai(self) -> LLMProvider | None:
        if not self.settings.openai_api_key:
            return None
        if self._openai is None:
            self._openai = LLMProvider(
                ProviderConfig(
                    name="openai",
                    base_url=self.settings.openai_base_url,
                    api_key=self.settings.openai_api_key,
                    timeout_sec=self.settings.openai_timeout_sec,
                )
            )
        return self._openai

    def local(self) -> LLMProvider | None:
        if not self.settings.local_llm_enabled:
            return None
        if self._local is None:
            self._local = LLMProvider(
                ProviderConfig(
                    name="local",
                    base_url=self.settings.local_llm_base_url,
                    api_key=self.settings.local_llm_api_key,
                    timeout_sec=self.settings.local_llm_timeout_sec,
                )
            )
        return self._local

    def ordered(self, preferred: str) -> list[LLMProvider]:
        candidates = [self.local(), self.openai()] if preferred == "local" else [self.openai(), self.local()]
        return [provider for provider in candidates if provider is not None]
