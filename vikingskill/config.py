"""Configuration for the skill cache.

Configuration is merged from (lowest to highest precedence):
- Default values
- User config file (~/.config/vikingskill/config.yml)
- Environment variables prefixed with VIKING_SKILL_
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml

from vikingskill.signer import DEFAULT_REGION, DEFAULT_SERVICE


# =============================================================================
# Configuration Paths
# =============================================================================

USER_CONFIG_DIR = Path.home() / ".config" / "vikingskill"
USER_CONFIG_FILE = USER_CONFIG_DIR / "config.yml"
DEFAULT_CACHE_DIR = Path.home() / ".opencode" / "skill"

# Environment variable prefix
ENV_PREFIX = "VIKING_SKILL_"

REQUIRED_FIELDS = ("api_url", "ak", "sk", "cache_dir")


class ConfigError(Exception):
    """Raised when configuration is invalid."""

    pass


class LogLevel(Enum):
    """Log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class VikingConfig:
    """Skill cache configuration.

    Attributes:
        api_url: Base URL of the skill catalog
        ak: Access key id used for request signing
        sk: Secret key used for request signing
        cache_dir: Root of the on-disk version cache
        region: Signing region
        service: Signing service name
        timeout: HTTP timeout in seconds
        max_workers: Concurrent skill downloads during reconciliation
        retrieve_level: Retrieval depth requested with skill detail
        prune_orphans: Remove cached skills that left the catalog
        log_level: Logging level
    """

    api_url: str = ""
    ak: str = ""
    sk: str = ""
    cache_dir: str = str(DEFAULT_CACHE_DIR)
    region: str = DEFAULT_REGION
    service: str = DEFAULT_SERVICE
    timeout: float = 30.0
    max_workers: int = 4
    retrieve_level: int = 3
    prune_orphans: bool = False
    log_level: LogLevel = LogLevel.INFO

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    def to_dict(self) -> dict:
        """Convert to dictionary (excluding the secret key)."""
        return {
            "api_url": self.api_url,
            "ak": self.ak,
            "cache_dir": self.cache_dir,
            "region": self.region,
            "service": self.service,
            "timeout": self.timeout,
            "max_workers": self.max_workers,
            "retrieve_level": self.retrieve_level,
            "prune_orphans": self.prune_orphans,
            "log_level": self.log_level.value,
            # Don't include secrets in serialization
        }

    @classmethod
    def from_dict(cls, data: dict) -> VikingConfig:
        """Create from dictionary.

        Raises:
            ConfigError: If a value has the wrong type
        """
        log_level = data.get("log_level") or "info"
        try:
            return cls(
                api_url=str(data.get("api_url") or ""),
                ak=str(data.get("ak") or ""),
                sk=str(data.get("sk") or ""),
                cache_dir=str(data.get("cache_dir") or DEFAULT_CACHE_DIR),
                region=data.get("region") or DEFAULT_REGION,
                service=data.get("service") or DEFAULT_SERVICE,
                timeout=float(data.get("timeout", 30.0)),
                max_workers=int(data.get("max_workers", 4)),
                retrieve_level=int(data.get("retrieve_level", 3)),
                prune_orphans=_to_bool(data.get("prune_orphans", False)),
                log_level=LogLevel(str(log_level).lower()),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}")

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(
            self.to_dict(),
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )

    @classmethod
    def from_yaml(cls, yaml_str: str) -> VikingConfig:
        """Create from YAML string."""
        data = yaml.safe_load(yaml_str) or {}
        return cls.from_dict(data)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes")
    return bool(value)


# =============================================================================
# Configuration Loading
# =============================================================================


def load_config_file(path: Path) -> dict:
    """Load configuration from a YAML file.

    Args:
        path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If file cannot be loaded
    """
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}")
    return data


def load_env_overrides() -> dict:
    """Load configuration overrides from environment variables.

    VIKING_SKILL_API_URL becomes api_url, VIKING_SKILL_CACHE_DIR becomes
    cache_dir, and so on. Empty values are ignored.
    """
    overrides = {}

    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX) and value:
            overrides[key[len(ENV_PREFIX):].lower()] = value

    return overrides


def merge_configs(*configs: dict) -> dict:
    """Merge configuration dictionaries. Later configs override earlier ones."""
    result: dict = {}
    for config in configs:
        result.update({k: v for k, v in config.items() if v is not None})
    return result


def load_config(path: Optional[Path] = None) -> VikingConfig:
    """Load configuration from the config file and environment.

    Args:
        path: Config file to read (defaults to the user config file)
    """
    file_config = load_config_file(path or USER_CONFIG_FILE)
    return VikingConfig.from_dict(merge_configs(file_config, load_env_overrides()))


# =============================================================================
# Configuration Validation
# =============================================================================


def validate_config(config: VikingConfig) -> list[str]:
    """Validate a configuration.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    for name in REQUIRED_FIELDS:
        if not getattr(config, name):
            errors.append(f"{name} is required (set {ENV_PREFIX}{name.upper()})")

    if config.api_url and not config.api_url.startswith(("http://", "https://")):
        errors.append(f"api_url must be an http(s) URL: {config.api_url}")

    if config.max_workers < 1:
        errors.append("max_workers must be at least 1")

    if config.timeout <= 0:
        errors.append("timeout must be positive")

    return errors
