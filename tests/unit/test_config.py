"""Tests for application configuration."""

import json
import os
from pathlib import Path

import pytest

from marketing_spaces.config import SpacesConfig, config_path, load_config, save_config
from marketing_spaces.providers.base import ProviderConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("MARKETING_SPACES_"):
            monkeypatch.delenv(key)


class TestLoadConfig:
    """Tests for load_config/save_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "config.json")

        assert config.port == 8080
        assert config.max_concurrency == 4
        assert config.providers == {}

    def test_round_trip(self, tmp_path):
        config = SpacesConfig(
            storage_dir=tmp_path / "spaces",
            port=9000,
            inference_provider="openai",
            providers={"openai": ProviderConfig(api_key="sk-test", default_model="gpt-4o-mini")},
        )
        path = save_config(config, tmp_path / "nested" / "config.json")

        loaded = load_config(path)

        assert loaded.port == 9000
        assert loaded.storage_dir == tmp_path / "spaces"
        assert loaded.inference_provider == "openai"
        assert loaded.providers["openai"].api_key == "sk-test"
        assert loaded.providers["openai"].default_model == "gpt-4o-mini"

    def test_invalid_file_falls_back(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text("{oops")

        config = load_config(path)

        assert config.port == 8080
        assert "using defaults" in caplog.text

    def test_non_object_falls_back(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps([1, 2]))

        assert load_config(path).host == "127.0.0.1"

    def test_log_level_normalised(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"log_level": "debug"}))

        assert load_config(path).log_level == "DEBUG"

    def test_api_key_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MARKETING_SPACES_OPENAI_API_KEY", "sk-env")

        config = load_config(tmp_path / "config.json")

        assert config.providers["openai"].api_key == "sk-env"

    def test_config_path_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MARKETING_SPACES_CONFIG", str(tmp_path / "custom.json"))

        assert config_path() == Path(tmp_path / "custom.json")
