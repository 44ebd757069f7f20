"""LLM provider adapters behind a single ``generate`` capability."""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

import httpx
import structlog

from ..config import LLMConfig
from ..errors import ProviderNotConfiguredError, UnsupportedProviderError


logger = structlog.get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


@runtime_checkable
class LLMProvider(Protocol):
    name: str

    async def generate(self, system_prompt: str, user_prompt: str, model_config: dict[str, Any]) -> str:
        ...


class AnthropicProvider:
    name = "claude"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.anthropic.com",
        timeout: float = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def generate(self, system_prompt: str, user_prompt: str, model_config: dict[str, Any]) -> str:
        if not self.api_key:
            raise ProviderNotConfiguredError("ANTHROPIC_API_KEY is not configured")

        payload = {
            "model": model_config.get("model", "claude-3-5-sonnet-20241022"),
            "max_tokens": int(model_config.get("max_tokens", 8192)),
            "temperature": float(model_config.get("temperature", 0.7)),
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            resp = await client.post(f"{self.base_url}/v1/messages", json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()

        blocks = data.get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


class OpenAIProvider:
    name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com",
        timeout: float = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def generate(self, system_prompt: str, user_prompt: str, model_config: dict[str, Any]) -> str:
        if not self.api_key:
            raise ProviderNotConfiguredError("OPENAI_API_KEY is not configured")

        payload = {
            "model": model_config.get("model", "gpt-4-turbo-preview"),
            "max_tokens": int(model_config.get("max_tokens", 4096)),
            "temperature": float(model_config.get("temperature", 0.7)),
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            resp = await client.post(f"{self.base_url}/v1/chat/completions", json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()

        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""


class ProviderRegistry:
    """Maps provider names to adapters."""

    def __init__(self, providers: Optional[dict[str, LLMProvider]] = None):
        self._providers: dict[str, LLMProvider] = dict(providers or {})

    @classmethod
    def from_config(cls, config: LLMConfig) -> "ProviderRegistry":
        return cls({
            "claude": AnthropicProvider(
                config.anthropic_api_key, config.anthropic_base_url, config.request_timeout_seconds
            ),
            "openai": OpenAIProvider(
                config.openai_api_key, config.openai_base_url, config.request_timeout_seconds
            ),
        })

    def get(self, name: str) -> LLMProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise UnsupportedProviderError(f"Unsupported LLM provider: {name}")
        return provider

    def names(self) -> list[str]:
        return sorted(self._providers)
