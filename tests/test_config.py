"""Tests for vikingskill.config module."""

from pathlib import Path

import pytest
import yaml

from vikingskill.config import (
    DEFAULT_CACHE_DIR,
    ENV_PREFIX,
    ConfigError,
    LogLevel,
    VikingConfig,
    load_config,
    load_config_file,
    load_env_overrides,
    merge_configs,
    validate_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove any VIKING_SKILL_ variables from the environment."""
    import os

    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key)


class TestVikingConfig:
    """Tests for the configuration dataclass."""

    def test_defaults(self):
        config = VikingConfig()
        assert config.api_url == ""
        assert config.cache_dir == str(DEFAULT_CACHE_DIR)
        assert config.region == "cn-beijing"
        assert config.service == "air"
        assert config.max_workers == 4
        assert config.retrieve_level == 3
        assert config.prune_orphans is False
        assert config.log_level == LogLevel.INFO

    def test_from_dict(self):
        config = VikingConfig.from_dict({
            "api_url": "https://catalog.example.com",
            "ak": "AK",
            "sk": "SK",
            "cache_dir": "/tmp/skills",
            "max_workers": "8",
            "prune_orphans": "true",
            "log_level": "DEBUG",
        })
        assert config.api_url == "https://catalog.example.com"
        assert config.max_workers == 8
        assert config.prune_orphans is True
        assert config.log_level == LogLevel.DEBUG
        assert config.cache_path == Path("/tmp/skills")

    def test_from_dict_invalid_value(self):
        with pytest.raises(ConfigError):
            VikingConfig.from_dict({"max_workers": "many"})

    def test_from_dict_invalid_log_level(self):
        with pytest.raises(ConfigError):
            VikingConfig.from_dict({"log_level": "loud"})

    def test_to_dict_excludes_secret(self):
        config = VikingConfig(api_url="https://x", ak="AK", sk="SECRET")
        data = config.to_dict()
        assert "sk" not in data
        assert "SECRET" not in config.to_yaml()
        assert data["ak"] == "AK"

    def test_yaml_round_trip(self):
        config = VikingConfig(api_url="https://x", ak="AK", sk="SK", max_workers=2)
        loaded = VikingConfig.from_yaml(config.to_yaml())
        assert loaded.api_url == "https://x"
        assert loaded.max_workers == 2
        assert loaded.sk == ""

    def test_cache_path_expands_home(self):
        config = VikingConfig(cache_dir="~/skills")
        assert config.cache_path == Path.home() / "skills"


class TestLoading:
    """Tests for loading configuration sources."""

    def test_missing_file(self, tmp_path):
        assert load_config_file(tmp_path / "none.yml") == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("api_url: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config_file(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config_file(path)

    def test_load_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(yaml.dump({"api_url": "https://x"}))
        assert load_config_file(path) == {"api_url": "https://x"}

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("VIKING_SKILL_API_URL", "https://env")
        monkeypatch.setenv("VIKING_SKILL_AK", "AK")
        monkeypatch.setenv("VIKING_SKILL_SK", "SK")
        monkeypatch.setenv("VIKING_SKILL_CACHE_DIR", "/tmp/c")
        monkeypatch.setenv("VIKING_SKILL_EMPTY", "")

        overrides = load_env_overrides()

        assert overrides == {
            "api_url": "https://env",
            "ak": "AK",
            "sk": "SK",
            "cache_dir": "/tmp/c",
        }

    def test_merge_precedence(self):
        merged = merge_configs({"a": 1, "b": 2}, {"b": 3, "c": None})
        assert merged == {"a": 1, "b": 3}

    def test_env_beats_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yml"
        path.write_text("api_url: https://file\nak: FILEAK\n")
        monkeypatch.setenv("VIKING_SKILL_API_URL", "https://env")

        config = load_config(path)

        assert config.api_url == "https://env"
        assert config.ak == "FILEAK"

    def test_each_load_is_independent(self, tmp_path):
        """Test callers own their configuration instance."""
        path = tmp_path / "none.yml"
        first = load_config(path)
        first.max_workers = 9

        assert load_config(path) is not first
        assert load_config(path).max_workers == 4


class TestValidateConfig:
    """Tests for configuration validation."""

    def test_valid(self, tmp_path):
        config = VikingConfig(api_url="https://x", ak="AK", sk="SK", cache_dir=str(tmp_path))
        assert validate_config(config) == []

    def test_missing_credentials(self):
        errors = validate_config(VikingConfig())
        assert any("api_url" in e for e in errors)
        assert any("VIKING_SKILL_AK" in e for e in errors)
        assert any("VIKING_SKILL_SK" in e for e in errors)

    def test_bad_url(self):
        errors = validate_config(VikingConfig(api_url="ftp://x", ak="AK", sk="SK"))
        assert any("http(s)" in e for e in errors)

    def test_bad_workers(self):
        errors = validate_config(VikingConfig(api_url="https://x", ak="A", sk="S", max_workers=0))
        assert errors == ["max_workers must be at least 1"]
