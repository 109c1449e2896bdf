"""OpenAI-compatible chat client, one instance per configured LLM endpoint."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from app.config import LLMEndpoint, ProviderConfig
from app.errors import MalformedResponseError
from app.services.logger import log_llm_call


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ChatResult:
    text: str
    model: str
    endpoint: str
    usage: Usage


class ChatClient:
    def __init__(self, endpoint: LLMEndpoint, *, max_tokens: int = 2048, client: Any = None):
        self.endpoint = endpoint
        self.max_tokens = max_tokens
        self._client = client

    @property
    def name(self) -> str:
        return self.endpoint.name

    def _openai(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self.endpoint.api_key,
                base_url=self.endpoint.base_url,
            )
        return self._client

    @staticmethod
    def _temperature_for_model(model: str) -> int:
        # Some GPT-5-compatible gateways reject temperature=0.
        if "gpt-5" in (model or "").lower():
            return 1
        return 0

    async def complete(self, *, system: str, prompt: str, caller: str) -> ChatResult:
        model = self.endpoint.model
        started = time.monotonic()
        try:
            response = await self._openai().chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self._temperature_for_model(model),
            )
        except Exception as exc:
            log_llm_call(
                model=model,
                caller=caller,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(exc) or type(exc).__name__,
            )
            raise

        choices = getattr(response, "choices", None) or []
        text = getattr(choices[0].message, "content", None) if choices else None
        usage = getattr(response, "usage", None)
        mapped_usage = Usage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        log_llm_call(
            model=model,
            caller=caller,
            input_tokens=mapped_usage.input_tokens,
            output_tokens=mapped_usage.output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        if not text or not text.strip():
            raise MalformedResponseError(f"{self.name} returned an empty completion")
        return ChatResult(text=text, model=model, endpoint=self.name, usage=mapped_usage)


def build_chat_clients(config: ProviderConfig) -> list[ChatClient]:
    """One client per endpoint, in ladder order."""
    return [
        ChatClient(endpoint, max_tokens=config.llm_max_tokens)
        for endpoint in config.llm_endpoints
    ]
