"""OpenRouter text-completion client built on the OpenAI-compatible SDK."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.services import logger as log_service


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Completion:
    text: str
    usage: Usage


class OpenRouterCompletions:
    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str) -> int:
        # Some OpenAI GPT-5-compatible gateways reject temperature=0.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return 0

    @staticmethod
    def _to_openai_messages(system: str, prompt: str) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    @staticmethod
    def _from_openai_response(response: Any) -> Completion:
        choices = getattr(response, "choices", None) or []
        text = ""
        if choices:
            message = getattr(choices[0], "message", None)
            text = getattr(message, "content", None) or ""

        usage = getattr(response, "usage", None)
        return Completion(
            text=text,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    async def create(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        prompt: str,
    ) -> Completion:
        response = await self._client.chat.completions.create(
            model=model,
            messages=self._to_openai_messages(system, prompt),
            max_tokens=max_tokens,
            temperature=self._temperature_for_model(model),
        )
        return self._from_openai_response(response)


def get_client() -> OpenRouterCompletions:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return OpenRouterCompletions(openai_client)


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


_client: OpenRouterCompletions | None = None


def client() -> OpenRouterCompletions:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


class TextCompletionClient:
    """Prompt in, generated text out.

    No retries here: the pipeline decides what a failed call means.
    """

    def __init__(
        self,
        model: str | None = None,
        *,
        completions: OpenRouterCompletions | None = None,
        max_tokens: int | None = None,
    ):
        self.model = model or get_model()
        self.completions = completions
        self.max_tokens = max_tokens or settings.completion_max_tokens

    async def complete(self, prompt: str, *, system: str = "", caller: str = "pipeline") -> str:
        active = self.completions or client()
        t0 = time.monotonic()
        try:
            completion = await active.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                prompt=prompt,
            )
        except Exception as e:
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise

        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=completion.usage.input_tokens,
            output_tokens=completion.usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return completion.text
