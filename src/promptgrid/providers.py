# Copyright (c) Syntropy Systems
"""Model invocation over HTTP and API key management."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Optional, Protocol, cast

import httpx
from typing_extensions import Self

from promptgrid.catalog import provider_for_model
from promptgrid.models.result import ChatMessage, Completion, TokenUsage

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from types import TracebackType

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 4096

PROVIDER_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "xai": "https://api.x.ai/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta/openai",
    "mistral": "https://api.mistral.ai/v1",
    "groq": "https://api.groq.com/openai/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "togetherai": "https://api.together.xyz/v1",
    "perplexity": "https://api.perplexity.ai",
}

PROVIDER_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "xai": "XAI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "togetherai": "TOGETHER_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
}


class ProviderError(Exception):
    """Error from a model provider."""


class Invoker(Protocol):
    """Anything that can run a chat completion for a model id."""

    async def invoke(
        self, messages: Sequence[ChatMessage], model_id: str
    ) -> Completion:
        ...


class Entitlements(Protocol):
    """Answers whether the caller may use a model."""

    def has_valid_key_for_model(self, model_id: str) -> bool:
        ...


class KeyRing:
    """API keys per provider.

    Explicit keys take precedence over the provider's environment variable.
    """

    _keys: dict[str, str]

    def __init__(
        self,
        keys: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        env = os.environ if environ is None else environ
        self._keys = {}
        for provider, var in PROVIDER_ENV_VARS.items():
            value = env.get(var, "")
            if value.strip():
                self._keys[provider] = value.strip()
        for provider, value in (keys or {}).items():
            if value and value.strip():
                self._keys[provider.lower()] = value.strip()

    def key_for_provider(self, provider: str) -> str:
        """Return the key for a provider, '' when missing."""
        return self._keys.get(provider.lower(), "")

    def set_key(self, provider: str, key: str) -> None:
        """Set or clear (with an empty key) a provider key."""
        if key.strip():
            self._keys[provider.lower()] = key.strip()
        else:
            _ = self._keys.pop(provider.lower(), None)

    def has_any_key(self) -> bool:
        """Whether at least one provider key is configured."""
        return bool(self._keys)

    def has_valid_key_for_model(self, model_id: str) -> bool:
        """Whether the provider owning ``model_id`` has a key."""
        return bool(self.key_for_provider(provider_for_model(model_id)))


def _openai_usage(body: Mapping[str, object]) -> Optional[TokenUsage]:
    usage = body.get("usage")
    if not isinstance(usage, dict):
        return None
    try:
        return TokenUsage(
            prompt_tokens=int(usage["prompt_tokens"]),
            completion_tokens=int(usage["completion_tokens"]),
            total_tokens=int(usage["total_tokens"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


def _anthropic_usage(body: Mapping[str, object]) -> Optional[TokenUsage]:
    usage = body.get("usage")
    if not isinstance(usage, dict):
        return None
    try:
        prompt_tokens = int(usage["input_tokens"])
        completion_tokens = int(usage["output_tokens"])
    except (KeyError, TypeError, ValueError):
        return None
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


def parse_openai_completion(body: Mapping[str, object]) -> Completion:
    """Extract text and usage from a chat-completions response body."""
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ProviderError("Response contained no choices")
    message = cast("dict[str, object]", choices[0]).get("message")
    content = message.get("content") if isinstance(message, dict) else None
    return Completion(text=content if isinstance(content, str) else "", usage=_openai_usage(body))


def parse_anthropic_completion(body: Mapping[str, object]) -> Completion:
    """Extract text and usage from an Anthropic messages response body."""
    blocks = body.get("content")
    if not isinstance(blocks, list):
        raise ProviderError("Response contained no content")
    text = "".join(
        str(block.get("text", ""))
        for block in blocks
        if isinstance(block, dict) and block.get("type") == "text"
    )
    return Completion(text=text, usage=_anthropic_usage(body))


class ProviderInvoker:
    """Routes chat requests to the provider that serves a model id.

    Anthropic models use the messages API; every other provider is reached
    through its OpenAI-compatible chat completions endpoint.
    """

    key_ring: KeyRing
    timeout: float
    _base_urls: dict[str, str]
    _client: httpx.AsyncClient

    def __init__(
        self,
        key_ring: KeyRing,
        timeout: float = 60.0,
        base_urls: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the invoker.

        Args:
            key_ring: API keys per provider
            timeout: Request timeout in seconds
            base_urls: Per-provider URL overrides
            client: Pre-built HTTP client (mainly for tests)

        """
        self.key_ring = key_ring
        self.timeout = timeout
        self._base_urls = {**PROVIDER_BASE_URLS, **(base_urls or {})}
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> Self:
        """Enter the invoker context and return self."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the invoker context and close the HTTP client."""
        await self.aclose()

    def has_valid_key_for_model(self, model_id: str) -> bool:
        """Whether a request for ``model_id`` can be authenticated."""
        return self.key_ring.has_valid_key_for_model(model_id)

    async def invoke(
        self, messages: Sequence[ChatMessage], model_id: str
    ) -> Completion:
        """Run one chat completion and return its text and usage."""
        provider = provider_for_model(model_id)
        api_key = self.key_ring.key_for_provider(provider)
        if not api_key:
            msg = f"{provider} API key required"
            raise ProviderError(msg)

        base_url = self._base_urls.get(provider)
        if base_url is None:
            msg = f"Provider {provider} not yet supported"
            raise ProviderError(msg)

        logger.debug("Generating text with %s provider for model: %s", provider, model_id)
        try:
            if provider == "anthropic":
                body = await self._post_anthropic(base_url, api_key, messages, model_id)
                return parse_anthropic_completion(body)
            body = await self._post_openai(base_url, api_key, messages, model_id)
            return parse_openai_completion(body)
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:200]
            msg = (
                f"Failed to generate text with {provider} ({model_id}): "
                f"HTTP {e.response.status_code} {detail}"
            )
            raise ProviderError(msg) from e
        except httpx.HTTPError as e:
            msg = f"Failed to generate text with {provider} ({model_id}): {e}"
            raise ProviderError(msg) from e

    async def _post_openai(
        self,
        base_url: str,
        api_key: str,
        messages: Sequence[ChatMessage],
        model_id: str,
    ) -> dict[str, object]:
        response = await self._client.post(
            f"{base_url.rstrip('/')}/chat/completions",
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "model": model_id,
                "messages": [m.model_dump() for m in messages],
            },
        )
        _ = response.raise_for_status()
        return cast("dict[str, object]", response.json())

    async def _post_anthropic(
        self,
        base_url: str,
        api_key: str,
        messages: Sequence[ChatMessage],
        model_id: str,
    ) -> dict[str, object]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        payload: dict[str, object] = {
            "model": model_id,
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "messages": [m.model_dump() for m in messages if m.role != "system"],
        }
        if system:
            payload["system"] = system
        response = await self._client.post(
            f"{base_url.rstrip('/')}/messages",
            headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
            json=payload,
        )
        _ = response.raise_for_status()
        return cast("dict[str, object]", response.json())
