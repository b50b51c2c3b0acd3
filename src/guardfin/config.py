"""
Configuration for the client vault and the sync server.

Both are plain YAML files validated by pydantic. A missing or broken
file falls back to defaults with a warning, never a crash.

    ~/.guardfin/config.yaml     -> ClientConfig
    server-config.yaml (any)    -> ServerConfig
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger("guardfin.config")

CLIENT_CONFIG_FILE = "config.yaml"
DEFAULT_SERVER_PORT = 3001
DEFAULT_MAX_SYNC_SIZE = 50 * 1024 * 1024


class TransportType(str, Enum):
    """How the client reaches the sync store."""

    HTTP = "http"
    LOCAL = "local"


class ClientConfig(BaseModel):
    """Client-side settings."""

    server_url: str = f"http://localhost:{DEFAULT_SERVER_PORT}"
    transport: TransportType = TransportType.HTTP
    local_data_dir: Optional[Path] = None
    debounce_seconds: float = Field(default=2.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)


class ServerConfig(BaseModel):
    """Sync server settings."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_SERVER_PORT
    data_dir: Path = Path("secure-data")
    max_sync_size: int = Field(default=DEFAULT_MAX_SYNC_SIZE, gt=0)
    rate_limit_window: float = Field(default=15 * 60, gt=0)
    rate_limit_requests: int = Field(default=100, gt=0)
    allowed_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "null",
        ]
    )
    log_file: Optional[Path] = None


def _read_yaml(path: Path) -> Optional[dict]:
    if not path.exists():
        return None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (yaml.YAMLError, OSError) as exc:
        logger.warning("Failed to read config %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Config %s is not a mapping, using defaults", path)
        return None
    return data


def load_client_config(home: Path) -> ClientConfig:
    """Load ``<home>/config.yaml`` or return defaults."""
    data = _read_yaml(home / CLIENT_CONFIG_FILE)
    if data is None:
        return ClientConfig()
    try:
        return ClientConfig(**data)
    except ValueError as exc:
        logger.warning("Invalid client config, using defaults: %s", exc)
        return ClientConfig()


def save_client_config(home: Path, config: ClientConfig) -> Path:
    """Persist client configuration to ``<home>/config.yaml``."""
    home.mkdir(parents=True, exist_ok=True)
    path = home / CLIENT_CONFIG_FILE
    path.write_text(
        yaml.dump(config.model_dump(mode="json"), default_flow_style=False),
        encoding="utf-8",
    )
    return path


def load_server_config(path: Optional[Path] = None) -> ServerConfig:
    """Load server configuration from a YAML file, or defaults."""
    if path is None:
        return ServerConfig()
    data = _read_yaml(path)
    if data is None:
        return ServerConfig()
    try:
        return ServerConfig(**data)
    except ValueError as exc:
        logger.warning("Invalid server config, using defaults: %s", exc)
        return ServerConfig()
