"""OpenAI SDK wrapper used for every provider's OpenAI-compatible endpoint."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from openai import APIError, AsyncOpenAI

from ..config import EffectiveConfig

logger = logging.getLogger(__name__)

PROVIDER_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1/",
    "google": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "ollama": "http://localhost:11434/v1",
}

# Providers that work without an API key
_KEYLESS_PROVIDERS = frozenset({"ollama"})


class ModelSpecError(ValueError):
    """Raised for a model identifier that cannot be mapped to a provider."""


class AIServiceError(Exception):
    """Raised when a completion request fails."""


@dataclass
class ModelTarget:
    provider: str
    model: str
    base_url: str
    api_key: str


def resolve_model(config: EffectiveConfig) -> ModelTarget:
    """Map ``provider:model`` onto the provider's endpoint and credentials."""
    provider, sep, model = config.model.partition(":")
    provider = provider.strip().lower()
    if not sep or not provider:
        raise ModelSpecError(f"Invalid model format '{config.model}', expected provider:model")
    if provider not in PROVIDER_BASE_URLS:
        raise ModelSpecError(f"Unsupported provider '{provider}'")

    creds = config.provider(provider)
    model = model.strip() or creds.default_model
    if not model:
        raise ModelSpecError(f"No model name given for provider '{provider}'")

    api_key = creds.api_key
    if not api_key:
        if provider not in _KEYLESS_PROVIDERS:
            raise ModelSpecError(f"No API key configured for provider '{provider}'")
        api_key = provider  # the SDK insists on a non-empty key

    return ModelTarget(
        provider=provider,
        model=model,
        base_url=creds.base_url or PROVIDER_BASE_URLS[provider],
        api_key=api_key,
    )


class AIService:
    def __init__(
        self,
        target: ModelTarget,
        request_timeout: float = 120.0,
        connect_timeout: float = 10.0,
    ) -> None:
        self.target = target
        timeout = httpx.Timeout(request_timeout, connect=connect_timeout)
        self._http_client = httpx.AsyncClient(timeout=timeout)
        self.client = AsyncOpenAI(
            base_url=target.base_url,
            api_key=target.api_key,
            http_client=self._http_client,
        )

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Run one non-streaming completion.

        Returns ``{"content": str, "tool_calls": [{"id", "function_name", "arguments"}]}``.
        """
        kwargs: dict[str, Any] = {"model": self.target.model, "messages": messages}
        if tools:
            kwargs["tools"] = tools

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except APIError as e:
            raise AIServiceError(f"{self.target.provider} request failed: {e}") from e
        except httpx.HTTPError as e:
            raise AIServiceError(f"cannot reach {self.target.base_url}: {e}") from e

        if not response.choices:
            raise AIServiceError("the model returned no choices")
        message = response.choices[0].message

        tool_calls = []
        for tc in message.tool_calls or []:
            try:
                arguments = json.loads(tc.function.arguments or "{}")
                if not isinstance(arguments, dict):
                    arguments = {"value": arguments}
            except json.JSONDecodeError:
                logger.warning("Tool call %s has malformed arguments", tc.function.name)
                arguments = {}
            tool_calls.append({"id": tc.id, "function_name": tc.function.name, "arguments": arguments})

        return {"content": message.content or "", "tool_calls": tool_calls}

    async def close(self) -> None:
        await self.client.close()


def create_ai_service(config: EffectiveConfig) -> AIService:
    """Factory: raises :class:`ModelSpecError` when the model cannot be resolved."""
    target = resolve_model(config)
    logger.info("Using %s model %s at %s", target.provider, target.model, target.base_url)
    return AIService(target)
