"""
Inference Providers.

This package provides the language-model services module work
functions may call:
- OpenAI: Chat completions
- Mock: Offline deterministic answers

Usage:
    from marketing_spaces.providers import create_registry

    registry = create_registry(config.providers)
    engine = ExecutionEngine(store, providers=registry.instances())
"""

from marketing_spaces.providers.base import (
    AuthenticationError,
    InferenceError,
    InferenceProvider,
    InferenceRequest,
    InferenceResult,
    ProviderConfig,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
)

from marketing_spaces.providers.registry import ProviderRegistry

from marketing_spaces.providers.openai import OpenAIProvider
from marketing_spaces.providers.mock import MockProvider


def create_registry(configs: dict[str, ProviderConfig] | None = None) -> ProviderRegistry:
    """Build a registry with the built-in providers."""
    registry = ProviderRegistry(configs)
    registry.register_provider(OpenAIProvider)
    registry.register_provider(MockProvider)
    return registry


__all__ = [
    # Base classes
    "InferenceProvider",
    "InferenceRequest",
    "InferenceResult",
    "ProviderConfig",
    # Exceptions
    "ProviderError",
    "AuthenticationError",
    "RateLimitError",
    "ProviderTimeoutError",
    "InferenceError",
    # Registry
    "ProviderRegistry",
    "create_registry",
    # Providers
    "OpenAIProvider",
    "MockProvider",
]
