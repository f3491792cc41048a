"""Configuration for lesefluss.

Defaults are overlaid by an optional YAML file and then by LESEFLUSS_*
environment variables:

    LESEFLUSS_CONFIG          path to a YAML config file
    LESEFLUSS_DB_PATH         SQLite database path
    LESEFLUSS_LOG_LEVEL       DEBUG, INFO, WARNING, ...
    LESEFLUSS_PUBLIC_BASE_URL base URL the image proxy is reachable at
"""

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".lesefluss"


@dataclass
class ServerConfig:
    """Runtime settings for the server, the sync pipeline and the image cache."""

    name: str = "lesefluss"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    database_path: str = str(DEFAULT_HOME / "lesefluss.db")

    # Feed fetching
    user_agent: str = "Mozilla/5.0 (compatible; Lesefluss/1.0; +https://lesefluss.app/bot)"
    fetch_timeout: float = 10.0
    fetch_max_attempts: int = 3
    fetch_backoff_base: float = 1.0

    # Sync
    sync_delay_seconds: float = 1.0
    max_items_per_feed: int = 50

    # Image proxy / cache
    public_base_url: str = "http://127.0.0.1:3001"
    image_cache_dir: str = str(DEFAULT_HOME / "images")
    image_fetch_timeout: float = 5.0
    image_upload_attempts: int = 3

    @property
    def image_cache_url(self) -> str:
        """Public URL prefix under which cached images are served."""
        return self.public_base_url.rstrip("/") + "/cached-images"


_ENV_OVERRIDES = {
    "LESEFLUSS_DB_PATH": "database_path",
    "LESEFLUSS_LOG_LEVEL": "log_level",
    "LESEFLUSS_LOG_FILE": "log_file",
    "LESEFLUSS_PUBLIC_BASE_URL": "public_base_url",
    "LESEFLUSS_IMAGE_CACHE_DIR": "image_cache_dir",
    "LESEFLUSS_SYNC_DELAY": "sync_delay_seconds",
    "LESEFLUSS_FETCH_TIMEOUT": "fetch_timeout",
}


def _find_config_file(path: Optional[str]) -> Optional[Path]:
    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return config_path

    env_path = os.environ.get("LESEFLUSS_CONFIG")
    if env_path:
        return _find_config_file(env_path)

    default_path = DEFAULT_HOME / "config.yaml"
    return default_path if default_path.exists() else None


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw YAML/env value to the type of the ServerConfig field."""
    current = getattr(ServerConfig, name, None)
    if value is None or current is None:
        return value
    if isinstance(current, bool):
        return str(value).lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def load_config(path: Optional[str] = None) -> ServerConfig:
    """Build a ServerConfig from defaults, a YAML file and the environment.

    Args:
        path: Optional explicit YAML file path

    Returns:
        Populated ServerConfig

    Raises:
        FileNotFoundError: If an explicitly requested config file is missing
    """
    values: Dict[str, Any] = {}
    known = {f.name for f in dataclasses.fields(ServerConfig)}

    config_path = _find_config_file(path)
    if config_path is not None:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        for key, value in raw.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key '{key}' in {config_path}")
                continue
            values[key] = _coerce(key, value)

    for env_var, attr in _ENV_OVERRIDES.items():
        if env_var in os.environ:
            values[attr] = _coerce(attr, os.environ[env_var])

    return ServerConfig(**values)


_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: ServerConfig) -> None:
    global _config
    _config = config


def reset_config() -> None:
    global _config
    _config = None
