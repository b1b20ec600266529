"""LLM provider transports: a local Ollama client and cloud chat APIs over httpx.

Each provider turns one prompt into one completion string and maps transport
failures onto the ``LLMError`` hierarchy. Retries live in the gateway.
"""

import logging

import httpx
import ollama

from recordfinder.core.config import LLMConfig
from recordfinder.core.errors import (
    ConfigurationError,
    FatalProviderError,
    LLMTimeoutError,
    TransientProviderError,
    classify_status,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS: dict[str, str] = {
    "ollama": "http://localhost:11434",
    "openrouter": "https://openrouter.ai/api/v1",
    "openai": "https://api.openai.com/v1",
    "grok": "https://api.x.ai/v1",
    "anthropic": "https://api.anthropic.com/v1",
}

ANTHROPIC_VERSION = "2023-06-01"


class LLMProvider:
    """One completion endpoint."""

    name: str = ""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.model = config.model
        self.base_url = (config.base_url or DEFAULT_BASE_URLS[config.provider]).rstrip("/")

    def complete(self, prompt: str) -> str:
        raise NotImplementedError


# ── Ollama ───────────────────────────────────────────────────────────


class OllamaProvider(LLMProvider):
    name = "ollama"

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        self.client = ollama.Client(host=self.base_url, timeout=config.timeout)

    def complete(self, prompt: str) -> str:
        try:
            response = self.client.chat(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                options={
                    "temperature": self.config.temperature,
                    "num_predict": self.config.max_tokens,
                },
            )
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError(self.name, self.config.timeout) from exc
        except ollama.ResponseError as exc:
            raise classify_status(self.name, exc.status_code, str(exc.error)) from exc
        except (httpx.TransportError, ConnectionError) as exc:
            raise TransientProviderError(self.name, str(exc)) from exc
        return response.message.content or ""


# ── HTTP (cloud) ─────────────────────────────────────────────────────


class HTTPProvider(LLMProvider):
    """Shared POST-and-map-errors logic for JSON chat APIs."""

    endpoint = ""

    def __init__(self, config: LLMConfig, api_key: str):
        super().__init__(config)
        self.api_key = api_key
        self.client = httpx.Client(timeout=config.timeout)

    def headers(self) -> dict[str, str]:
        raise NotImplementedError

    def payload(self, prompt: str) -> dict:
        raise NotImplementedError

    def extract_text(self, data: dict) -> str:
        raise NotImplementedError

    def complete(self, prompt: str) -> str:
        try:
            response = self.client.post(
                f"{self.base_url}{self.endpoint}",
                headers=self.headers(),
                json=self.payload(prompt),
            )
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError(self.name, self.config.timeout) from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(self.name, str(exc)) from exc

        if response.status_code >= 400:
            raise classify_status(self.name, response.status_code, response.text)

        try:
            return self.extract_text(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise FatalProviderError(
                self.name, f"Unexpected response shape: {exc}", response.status_code
            ) from exc


class OpenAICompatibleProvider(HTTPProvider):
    """OpenRouter, OpenAI, and Grok all speak /chat/completions."""

    endpoint = "/chat/completions"

    def __init__(self, config: LLMConfig, api_key: str):
        super().__init__(config, api_key)
        self.name = config.provider

    def headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self.name == "openrouter":
            headers["X-Title"] = "First Record Finder"
        return headers

    def payload(self, prompt: str) -> dict:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }

    def extract_text(self, data: dict) -> str:
        return data["choices"][0]["message"]["content"] or ""


class AnthropicProvider(HTTPProvider):
    name = "anthropic"
    endpoint = "/messages"

    def headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION}

    def payload(self, prompt: str) -> dict:
        return {
            "model": self.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }

    def extract_text(self, data: dict) -> str:
        blocks = data.get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


# ── Factory ──────────────────────────────────────────────────────────


def create_provider(config: LLMConfig) -> LLMProvider:
    """Select the provider once, failing fast on missing credentials."""
    if config.provider == "ollama":
        return OllamaProvider(config)

    api_key = config.resolve_api_key()
    if not api_key:
        raise ConfigurationError(f"API key is required for provider '{config.provider}'")

    if config.provider == "anthropic":
        return AnthropicProvider(config, api_key)
    return OpenAICompatibleProvider(config, api_key)
