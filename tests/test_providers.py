# Copyright (c) Syntropy Systems
"""Tests for provider routing, API keys and HTTP invocation."""

import json

import httpx
import pytest

from promptgrid.catalog import ModelCatalog, estimate_cost, provider_for_model
from promptgrid.models.result import ChatMessage, TokenUsage
from promptgrid.providers import KeyRing, ProviderError, ProviderInvoker

MESSAGES = [
    ChatMessage(role="system", content="Be brief."),
    ChatMessage(role="user", content="hi"),
]


def _invoker(handler, keys=None) -> ProviderInvoker:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    key_ring = KeyRing(keys or {"openai": "sk-test", "anthropic": "ak-test"}, environ={})
    return ProviderInvoker(key_ring, client=client)


class TestRouting:
    """Tests for model id to provider mapping."""

    @pytest.mark.parametrize(
        ("model_id", "provider"),
        [
            ("gpt-4o", "openai"),
            ("o1-mini", "openai"),
            ("claude-3-5-sonnet-20241022", "anthropic"),
            ("grok-3", "xai"),
            ("gemini-2.5-pro", "google"),
            ("mistral-large-latest", "mistral"),
            ("llama-3.1-8b-instant", "groq"),
            ("llama-3.1-sonar-small-128k-online", "perplexity"),
            ("deepseek-chat", "deepseek"),
            ("meta-llama/Meta-Llama-3-70B-Instruct", "togetherai"),
            ("something-new", "openai"),
        ],
    )
    def test_provider_for_model(self, model_id: str, provider: str) -> None:
        assert provider_for_model(model_id) == provider


class TestCatalog:
    """Tests for the model catalog."""

    def test_default_models(self) -> None:
        assert ModelCatalog().default_models() == ["gpt-4o", "gpt-4o-mini"]

    def test_cost(self) -> None:
        catalog = ModelCatalog()
        usage = TokenUsage(prompt_tokens=1000, completion_tokens=1000, total_tokens=2000)

        assert catalog.cost_of("gpt-4o", usage) == pytest.approx(0.0125)
        assert catalog.cost_of("grok-beta", usage) is None
        assert catalog.cost_of("gpt-4o", None) is None

    def test_estimate_cost_unpriced(self) -> None:
        model = ModelCatalog().get("deepseek-chat")
        usage = TokenUsage(prompt_tokens=1, completion_tokens=1, total_tokens=2)

        assert estimate_cost(usage, model) is None

    def test_display_name_fallback(self) -> None:
        catalog = ModelCatalog()

        assert catalog.display_name("gpt-4o") == "GPT-4o"
        assert catalog.display_name("custom") == "custom"


class TestKeyRing:
    """Tests for API key lookup."""

    def test_environment_keys(self) -> None:
        key_ring = KeyRing(environ={"ANTHROPIC_API_KEY": "ak"})

        assert key_ring.has_valid_key_for_model("claude-3-haiku-20240307")
        assert not key_ring.has_valid_key_for_model("gpt-4o")

    def test_explicit_keys_override_environment(self) -> None:
        key_ring = KeyRing({"OpenAI": " sk-config "}, environ={"OPENAI_API_KEY": "sk-env"})

        assert key_ring.key_for_provider("openai") == "sk-config"

    def test_blank_keys_ignored(self) -> None:
        key_ring = KeyRing({"openai": "   "}, environ={})

        assert not key_ring.has_any_key()

    def test_set_and_clear(self) -> None:
        key_ring = KeyRing(environ={})

        key_ring.set_key("xai", "xk")
        assert key_ring.has_valid_key_for_model("grok-3")
        key_ring.set_key("xai", "")
        assert not key_ring.has_valid_key_for_model("grok-3")


class TestProviderInvoker:
    """Tests for HTTP invocation against mocked providers."""

    @pytest.mark.asyncio
    async def test_openai_compatible(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "choices": [{"message": {"role": "assistant", "content": "hello"}}],
                    "usage": {"prompt_tokens": 5, "completion_tokens": 1, "total_tokens": 6},
                },
            )

        async with _invoker(handler) as invoker:
            completion = await invoker.invoke(MESSAGES, "gpt-4o")

        assert completion.text == "hello"
        assert completion.usage == TokenUsage(
            prompt_tokens=5, completion_tokens=1, total_tokens=6
        )
        request = requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "gpt-4o"
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}

    @pytest.mark.asyncio
    async def test_anthropic_messages(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "content": [{"type": "text", "text": "hi there"}],
                    "usage": {"input_tokens": 7, "output_tokens": 3},
                },
            )

        async with _invoker(handler) as invoker:
            completion = await invoker.invoke(MESSAGES, "claude-3-5-haiku-20241022")

        assert completion.text == "hi there"
        assert completion.usage.total_tokens == 10
        request = requests[0]
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "ak-test"
        body = json.loads(request.content)
        assert body["system"] == "Be brief."
        assert body["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_http_error_raises_provider_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, text="rate limited")

        async with _invoker(handler) as invoker:
            with pytest.raises(ProviderError, match="HTTP 429 rate limited"):
                await invoker.invoke(MESSAGES, "gpt-4o")

    @pytest.mark.asyncio
    async def test_missing_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with _invoker(handler, keys={"anthropic": "ak"}) as invoker:
            assert not invoker.has_valid_key_for_model("gpt-4o")
            with pytest.raises(ProviderError, match="openai API key required"):
                await invoker.invoke(MESSAGES, "gpt-4o")

    @pytest.mark.asyncio
    async def test_base_url_override(self) -> None:
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        invoker = ProviderInvoker(
            KeyRing({"openai": "sk"}, environ={}),
            base_urls={"openai": "http://localhost:8080/v1/"},
            client=client,
        )
        try:
            completion = await invoker.invoke(MESSAGES, "gpt-4o")
        finally:
            await invoker.aclose()

        assert urls == ["http://localhost:8080/v1/chat/completions"]
        assert completion.usage is None
