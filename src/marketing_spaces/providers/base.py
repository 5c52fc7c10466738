"""
Provider Base - Abstract base class and data structures for inference providers.

Modules that need a language model ask their ModuleContext for a
provider and call ``run()`` with an InferenceRequest.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ProviderConfig:
    """Configuration for a provider."""
    api_key: str = ""
    enabled: bool = True
    base_url: str | None = None  # Override default URL
    default_model: str | None = None
    timeout: float = 60.0  # Seconds per request
    poll_interval: float = 2.0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_key": self.api_key,
            "enabled": self.enabled,
            "base_url": self.base_url,
            "default_model": self.default_model,
            "timeout": self.timeout,
            "poll_interval": self.poll_interval,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        return cls(
            api_key=data.get("api_key", ""),
            enabled=data.get("enabled", True),
            base_url=data.get("base_url"),
            default_model=data.get("default_model"),
            timeout=float(data.get("timeout", 60.0)),
            poll_interval=float(data.get("poll_interval", 2.0)),
            extra=data.get("extra", {}),
        )


@dataclass
class InferenceRequest:
    """Request for a text completion."""
    prompt: str
    model: str | None = None
    system: str | None = None
    temperature: float = 0.7
    max_tokens: int = 4096


@dataclass
class InferenceResult:
    """Result from a text completion."""
    output_text: str
    model: str
    provider: str

    tokens_used: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


class ProviderError(Exception):
    """Base exception for provider errors."""
    pass


class AuthenticationError(ProviderError):
    """API key invalid or missing."""
    pass


class RateLimitError(ProviderError):
    """Rate limit exceeded."""
    retry_after: float | None = None


class ProviderTimeoutError(ProviderError):
    """The provider did not answer in time."""
    pass


class InferenceError(ProviderError):
    """Error during inference."""
    pass


class InferenceProvider(ABC):
    """
    Abstract base class for inference providers.

    Each provider handles communication with a specific API.
    """

    id: str = ""
    name: str = ""
    base_url: str = ""
    default_model: str = ""

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def api_key(self) -> str:
        return self.config.api_key

    @property
    def is_configured(self) -> bool:
        """Check if provider has necessary configuration."""
        return bool(self.config.api_key)

    def model_for(self, request: InferenceRequest) -> str:
        return request.model or self.config.default_model or self.default_model

    @abstractmethod
    async def run(self, request: InferenceRequest) -> InferenceResult:
        """
        Run a completion.

        Raises:
            AuthenticationError: Invalid API key
            RateLimitError: Rate limit exceeded
            ProviderTimeoutError: No answer within ``config.timeout``
            InferenceError: The provider returned an error or an empty answer
        """
        ...

    @abstractmethod
    async def validate_credentials(self) -> bool:
        ...

    def get_headers(self) -> dict[str, str]:
        """Get default headers for API requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
