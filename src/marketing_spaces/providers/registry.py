"""
Provider Registry - Provider implementations and their configuration.

Unlike a process-wide singleton, a registry is built per application
from the loaded SpacesConfig and handed to the execution engine.
"""

from __future__ import annotations

import logging

from marketing_spaces.providers.base import InferenceProvider, ProviderConfig


logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registered provider classes plus their per-provider configuration."""

    def __init__(self, configs: dict[str, ProviderConfig] | None = None):
        self._providers: dict[str, type[InferenceProvider]] = {}
        self._provider_instances: dict[str, InferenceProvider] = {}
        self._configs: dict[str, ProviderConfig] = dict(configs or {})

    def register_provider(self, provider_class: type[InferenceProvider]) -> None:
        """Register a provider implementation."""
        self._providers[provider_class.id] = provider_class

    def get_provider(self, provider_id: str) -> InferenceProvider | None:
        """Get an instantiated provider."""
        if provider_id in self._provider_instances:
            return self._provider_instances[provider_id]

        if provider_id not in self._providers:
            return None

        config = self._configs.get(provider_id, ProviderConfig())
        provider = self._providers[provider_id](config)
        self._provider_instances[provider_id] = provider
        return provider

    def list_providers(self) -> list[str]:
        return list(self._providers.keys())

    def list_configured_providers(self) -> list[str]:
        """Providers that are enabled and ready to use."""
        configured = []
        for pid in self._providers:
            provider = self.get_provider(pid)
            config = self.get_config(pid)
            if provider is not None and config.enabled and provider.is_configured:
                configured.append(pid)
        return configured

    def set_config(self, provider_id: str, config: ProviderConfig) -> None:
        """Set configuration for a provider."""
        self._configs[provider_id] = config
        # Invalidate cached instance
        self._provider_instances.pop(provider_id, None)

    def get_config(self, provider_id: str) -> ProviderConfig:
        return self._configs.get(provider_id, ProviderConfig())

    def instances(self) -> dict[str, InferenceProvider]:
        """Instances of every configured provider, keyed by id."""
        instances = {}
        for pid in self.list_configured_providers():
            provider = self.get_provider(pid)
            if provider is not None:
                instances[pid] = provider
        logger.debug("Configured providers: %s", sorted(instances))
        return instances
