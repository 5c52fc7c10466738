"""
Configuration - Application settings loaded from a JSON file.

Default location: ~/.config/marketing_spaces/config.json, overridden by
the MARKETING_SPACES_CONFIG environment variable. Provider API keys may
also come from MARKETING_SPACES_<PROVIDER>_API_KEY.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from marketing_spaces.providers.base import ProviderConfig


logger = logging.getLogger(__name__)

CONFIG_ENV = "MARKETING_SPACES_CONFIG"
ENV_PREFIX = "MARKETING_SPACES_"
API_KEY_SUFFIX = "_API_KEY"

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "marketing_spaces" / "config.json"
DEFAULT_STORAGE_DIR = Path.home() / ".local" / "share" / "marketing_spaces" / "spaces"


@dataclass
class SpacesConfig:
    """Application settings."""
    storage_dir: Path = DEFAULT_STORAGE_DIR
    host: str = "127.0.0.1"
    port: int = 8080
    max_concurrency: int = 4
    log_level: str = "INFO"
    duplicate_offset: float = 50.0
    inference_provider: str | None = None
    providers: dict[str, ProviderConfig] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "storage_dir": str(self.storage_dir),
            "host": self.host,
            "port": self.port,
            "max_concurrency": self.max_concurrency,
            "log_level": self.log_level,
            "duplicate_offset": self.duplicate_offset,
            "inference_provider": self.inference_provider,
            "providers": {pid: cfg.to_dict() for pid, cfg in self.providers.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SpacesConfig:
        defaults = cls()
        return cls(
            storage_dir=Path(data.get("storage_dir", defaults.storage_dir)).expanduser(),
            host=data.get("host", defaults.host),
            port=int(data.get("port", defaults.port)),
            max_concurrency=int(data.get("max_concurrency", defaults.max_concurrency)),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
            duplicate_offset=float(data.get("duplicate_offset", defaults.duplicate_offset)),
            inference_provider=data.get("inference_provider"),
            providers={
                pid: ProviderConfig.from_dict(cfg)
                for pid, cfg in data.get("providers", {}).items()
            },
        )


def config_path() -> Path:
    override = os.environ.get(CONFIG_ENV)
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


def _apply_env(config: SpacesConfig) -> None:
    for key, value in os.environ.items():
        if not (key.startswith(ENV_PREFIX) and key.endswith(API_KEY_SUFFIX) and value):
            continue
        provider_id = key[len(ENV_PREFIX):-len(API_KEY_SUFFIX)].lower()
        if not provider_id:
            continue
        provider = config.providers.setdefault(provider_id, ProviderConfig())
        provider.api_key = value


def load_config(path: Path | None = None) -> SpacesConfig:
    """
    Load settings from ``path`` (or the default location).

    A missing file yields defaults; an unreadable or invalid file is
    logged and also yields defaults.
    """
    path = path or config_path()

    config = SpacesConfig()
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top-level value must be an object")
            config = SpacesConfig.from_dict(data)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Failed to load config %s, using defaults: %s", path, e)
            config = SpacesConfig()

    _apply_env(config)
    return config


def save_config(config: SpacesConfig, path: Path | None = None) -> Path:
    """Write settings to ``path`` (or the default location)."""
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.info("Config saved to %s", path)
    return path
