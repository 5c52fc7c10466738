"""
Unit tests for inference providers.

The OpenAI provider is exercised against a local aiohttp test server, so
no network access or API key is needed.
"""

import asyncio
import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from marketing_spaces.providers import MockProvider, OpenAIProvider, create_registry
from marketing_spaces.providers.base import (
    AuthenticationError,
    InferenceError,
    InferenceRequest,
    ProviderConfig,
    RateLimitError,
)


def _run_against(handler, request: InferenceRequest):
    """Run an OpenAIProvider request against a one-route test server."""

    async def scenario():
        app = web.Application()
        app.router.add_post("/v1/chat/completions", handler)
        async with TestServer(app) as server:
            provider = OpenAIProvider(ProviderConfig(
                api_key="sk-test",
                base_url=str(server.make_url("/v1")),
                timeout=5,
            ))
            return await provider.run(request)

    return asyncio.run(scenario())


class TestOpenAIProvider:
    """Tests for OpenAIProvider."""

    def test_successful_completion(self):
        seen = {}

        async def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = await request.json()
            return web.json_response({
                "model": "gpt-4o-mini",
                "choices": [{"message": {"content": '{"names": ["Nova"]}'}}],
                "usage": {"total_tokens": 42},
            })

        result = _run_against(handler, InferenceRequest(prompt="Name it", system="Be brief"))

        assert result.output_text == '{"names": ["Nova"]}'
        assert result.tokens_used == 42
        assert result.provider == "openai"
        assert seen["auth"] == "Bearer sk-test"
        assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]

    def test_invalid_key(self):
        async def handler(request):
            return web.json_response({"error": {"message": "bad key"}}, status=401)

        with pytest.raises(AuthenticationError):
            _run_against(handler, InferenceRequest(prompt="x"))

    def test_rate_limited(self):
        async def handler(request):
            return web.json_response({"error": {"message": "slow down"}}, status=429)

        with pytest.raises(RateLimitError) as exc_info:
            _run_against(handler, InferenceRequest(prompt="x"))
        assert exc_info.value.retry_after == 60

    def test_server_error(self):
        async def handler(request):
            return web.json_response({"error": {"message": "overloaded"}}, status=500)

        with pytest.raises(InferenceError, match="overloaded"):
            _run_against(handler, InferenceRequest(prompt="x"))

    def test_empty_answer(self):
        async def handler(request):
            return web.json_response({"choices": [{"message": {"content": "  "}}]})

        with pytest.raises(InferenceError):
            _run_against(handler, InferenceRequest(prompt="x"))

    def test_not_configured_without_key(self):
        assert not OpenAIProvider(ProviderConfig()).is_configured


class TestMockProvider:
    """Tests for MockProvider."""

    def test_deterministic(self):
        provider = MockProvider()
        request = InferenceRequest(prompt="Suggest names for demo")

        first = asyncio.run(provider.run(request))
        second = asyncio.run(provider.run(request))

        assert first.output_text == second.output_text
        assert len(json.loads(first.output_text)["names"]) == 5


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_instances_only_include_configured(self):
        registry = create_registry({"openai": ProviderConfig(api_key="")})

        assert set(registry.list_providers()) == {"openai", "mock"}
        assert set(registry.instances()) == {"mock"}

    def test_set_config_replaces_instance(self):
        registry = create_registry()
        before = registry.get_provider("openai")

        registry.set_config("openai", ProviderConfig(api_key="sk-new"))
        after = registry.get_provider("openai")

        assert after is not before
        assert after.is_configured
        assert "openai" in registry.list_configured_providers()

    def test_disabled_provider_excluded(self):
        registry = create_registry({"mock": ProviderConfig(enabled=False)})

        assert "mock" not in registry.instances()

    def test_unknown_provider(self):
        assert create_registry().get_provider("nope") is None
