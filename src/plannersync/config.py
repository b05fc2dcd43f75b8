"""
Configuration for plannersync.

Settings live in config.yaml under the base directory. Resolution order for
the base directory: explicit argument > PLANNERSYNC_BASE_PATH env var >
~/.plannersync.
"""

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any
import logging

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = Path.home() / ".plannersync"
CONFIG_FILENAME = "config.yaml"

CONFIG_TEMPLATE = """# plannersync configuration

remote:
  url: http://localhost:54321
  # api_key: ${PLANNERSYNC_API_KEY}  # Set via environment variable
  timeout: 30.0

cache:
  db_path: local.sqlite
  default_ttl: 3600      # seconds
  collection_ttl: 300    # seconds, used for workspace collections

changefeed:
  reconnect_delay: 5.0   # seconds between channel reopen attempts

approvals:
  reject_stale: true     # auto-reject edits whose original snapshot is outdated
"""


def get_base_path(base_path: Optional[Path] = None) -> Path:
    """
    Get the base path for plannersync data.

    Args:
        base_path: Explicit directory (e.g. from --data-dir), if provided.
    """
    if base_path:
        return Path(base_path)
    env_path = os.getenv("PLANNERSYNC_BASE_PATH")
    if env_path:
        return Path(env_path)
    return DEFAULT_BASE_PATH


@dataclass
class RemoteConfig:
    url: str = "http://localhost:54321"
    api_key: Optional[str] = None
    timeout: float = 30.0


@dataclass
class CacheConfig:
    db_path: str = "local.sqlite"
    default_ttl: float = 3600.0
    collection_ttl: float = 300.0


@dataclass
class ChangeFeedConfig:
    reconnect_delay: float = 5.0


@dataclass
class ApprovalsConfig:
    reject_stale: bool = True


@dataclass
class SyncConfig:
    """Typed view of config.yaml."""
    base_path: Path = field(default_factory=get_base_path)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    changefeed: ChangeFeedConfig = field(default_factory=ChangeFeedConfig)
    approvals: ApprovalsConfig = field(default_factory=ApprovalsConfig)

    @property
    def db_path(self) -> Path:
        """Absolute path of the local store database."""
        path = Path(self.cache.db_path).expanduser()
        if path.is_absolute():
            return path
        return self.base_path / path

    @property
    def config_path(self) -> Path:
        return self.base_path / CONFIG_FILENAME

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the config.yaml layout (base_path excluded)."""
        data = asdict(self)
        data.pop("base_path")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_path: Optional[Path] = None) -> "SyncConfig":
        """
        Build a config from parsed YAML.

        Unknown sections and keys are ignored.

        Raises:
            ConfigError: If a known key has a value of the wrong type
        """
        config = cls(base_path=get_base_path(base_path))
        sections = {
            "remote": config.remote,
            "cache": config.cache,
            "changefeed": config.changefeed,
            "approvals": config.approvals,
        }
        for section_name, section in sections.items():
            raw = data.get(section_name) or {}
            if not isinstance(raw, dict):
                raise ConfigError(f"Section '{section_name}' must be a mapping")
            for key, value in raw.items():
                if not hasattr(section, key):
                    logger.debug(f"Ignoring unknown config key {section_name}.{key}")
                    continue
                setattr(section, key, _coerce(f"{section_name}.{key}", getattr(section, key), value))

        if config.remote.api_key is None:
            config.remote.api_key = os.getenv("PLANNERSYNC_API_KEY")
        return config


def _coerce(name: str, current: Any, value: Any) -> Any:
    """Convert a YAML value to the type of the default it replaces."""
    if value is None:
        return None
    try:
        if isinstance(current, bool):
            if isinstance(value, str):
                if value.lower() in ("true", "yes", "1", "on"):
                    return True
                if value.lower() in ("false", "no", "0", "off"):
                    return False
                raise ValueError(value)
            return bool(value)
        if isinstance(current, float):
            return float(value)
        if isinstance(current, str) or current is None:
            return str(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {name}: {value!r}")
    return value


def load_config(base_path: Optional[Path] = None) -> SyncConfig:
    """
    Load config.yaml from the base directory.

    A missing file yields the defaults.

    Raises:
        ConfigError: If the file cannot be parsed
    """
    base = get_base_path(base_path)
    config_path = base / CONFIG_FILENAME
    if not config_path.exists():
        logger.debug(f"No config at {config_path}, using defaults")
        return SyncConfig(base_path=base)

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")
    return SyncConfig.from_dict(data, base)


def save_config(config: SyncConfig) -> Path:
    """Write the config back to config.yaml and return its path."""
    config.base_path.mkdir(parents=True, exist_ok=True)
    config.config_path.write_text(yaml.dump(config.to_dict(), default_flow_style=False))
    return config.config_path
