"""
OpenAI Provider - Chat completion models.

API Reference: https://platform.openai.com/docs/api-reference/chat
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from marketing_spaces.providers.base import (
    AuthenticationError,
    InferenceError,
    InferenceProvider,
    InferenceRequest,
    InferenceResult,
    ProviderConfig,
    ProviderTimeoutError,
    RateLimitError,
)


logger = logging.getLogger(__name__)


class OpenAIProvider(InferenceProvider):
    """OpenAI chat completion provider."""

    id = "openai"
    name = "OpenAI"
    base_url = "https://api.openai.com/v1"
    default_model = "gpt-4o-mini"

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        if config.base_url:
            self.base_url = config.base_url

    async def run(self, request: InferenceRequest) -> InferenceResult:
        url = f"{self.base_url}/chat/completions"
        model = self.model_for(request)

        messages = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.append({"role": "user", "content": request.prompt})

        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }

        data = await self._post(url, body)

        choices = data.get("choices") or []
        text = ""
        if choices:
            text = (choices[0].get("message") or {}).get("content") or ""
        if not text.strip():
            raise InferenceError("OpenAI returned an empty response")

        usage = data.get("usage", {})
        return InferenceResult(
            output_text=text,
            model=data.get("model", model),
            provider=self.id,
            tokens_used=usage.get("total_tokens"),
            raw=data,
        )

    async def validate_credentials(self) -> bool:
        """Validate API key by listing models."""
        try:
            url = f"{self.base_url}/models"
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, headers=self.get_headers()) as resp:
                    return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False

    async def _post(self, url: str, body: dict) -> dict:
        """Make POST request with JSON body."""
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=body, headers=self.get_headers()) as resp:
                    data = await resp.json(content_type=None)
                    self._check_error(resp.status, data or {})
                    return data
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"OpenAI did not respond within {self.config.timeout:.0f}s"
            ) from e
        except aiohttp.ClientError as e:
            logger.warning("OpenAI request failed: %s", e)
            raise InferenceError(f"OpenAI unreachable: {e}") from e

    def _check_error(self, status: int, data: dict) -> None:
        """Check for API errors."""
        if status in (401, 403):
            raise AuthenticationError("Invalid OpenAI API key")
        elif status == 429:
            error = RateLimitError("OpenAI rate limit exceeded")
            error.retry_after = 60
            raise error
        elif status >= 400:
            error_msg = (data.get("error") or {}).get("message", "Unknown error")
            raise InferenceError(f"OpenAI error: {error_msg}")
