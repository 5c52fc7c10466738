"""
Mock Provider - Offline provider for development and tests.

Answers are derived from the prompt so repeated runs give the same
output.
"""

from __future__ import annotations

import asyncio
import json
import zlib

from marketing_spaces.providers.base import (
    InferenceProvider,
    InferenceRequest,
    InferenceResult,
    ProviderConfig,
)


_NAME_PARTS = (
    ("Nova", "Flow", "Spark", "Pulse", "Forge", "Orbit", "Beacon", "Lumen"),
    ("ly", "kit", "hub", "io", "lab", "stack", "works", "base"),
)


class MockProvider(InferenceProvider):
    """Deterministic provider that never touches the network."""

    id = "mock"
    name = "Mock"
    default_model = "mock-1"

    def __init__(self, config: ProviderConfig | None = None):
        super().__init__(config or ProviderConfig())

    @property
    def is_configured(self) -> bool:
        return True

    async def run(self, request: InferenceRequest) -> InferenceResult:
        delay = float(self.config.extra.get("delay", 0.0))
        if delay:
            await asyncio.sleep(delay)

        seed = zlib.crc32(request.prompt.encode("utf-8"))
        prefixes, suffixes = _NAME_PARTS
        names = [
            prefixes[(seed + i) % len(prefixes)] + suffixes[(seed // 7 + i * 3) % len(suffixes)]
            for i in range(5)
        ]
        text = json.dumps({"names": names})

        return InferenceResult(
            output_text=text,
            model=self.model_for(request),
            provider=self.id,
            tokens_used=len(request.prompt) // 4 + len(text) // 4,
            raw={"mock": True},
        )

    async def validate_credentials(self) -> bool:
        return True
