"""Configuration management for peerpair.

Settings live in a YAML file (default ~/.config/peerpair/config.yaml).
Every key is optional; anything missing or unreadable falls back to the
dataclass defaults below.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable

import yaml

logger = logging.getLogger(__name__)

DEFAULT_STUN_SERVERS = [
    "stun:stun.l.google.com:19302",
]


@dataclass
class SessionConfig:
    """Pairing session configuration."""

    offer_ttl_seconds: int = 180  # 3 minutes
    peer_read_only: bool = True
    text_debounce_ms: int = 200
    connect_timeout: float = 60.0  # seconds, SAS confirmed -> connected


@dataclass
class Config:
    """peerpair configuration."""

    log_level: str = "INFO"
    log_file: str | None = None
    stun_servers: list[str] = field(default_factory=lambda: list(DEFAULT_STUN_SERVERS))
    dictionary_source: str | None = None  # path or http(s) URL, None = bundled list
    session: SessionConfig = field(default_factory=SessionConfig)


FileReader = Callable[[Path], dict[str, Any] | None]


def get_config_path(custom_path: Path | None = None) -> Path:
    """Resolve the configuration file path.

    Args:
        custom_path: Override path. If None, returns the default.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "peerpair" / "config.yaml"


def _read_yaml(path: Path) -> dict[str, Any] | None:
    """Load a YAML file, or None if it is absent, blank or malformed."""
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None

    if not content.strip():
        return None
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring malformed config {path}: {e}")
        return None


def _section(cls, data: Any):
    """Build a config dataclass from a mapping, ignoring unknown keys."""
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{key: value for key, value in data.items() if key in known})


def load_config(path: Path | None = None, file_reader: FileReader | None = None) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses the default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config with values from the file, defaults elsewhere.
    """
    data = (file_reader or _read_yaml)(get_config_path(path))
    if not isinstance(data, dict):
        return Config()

    config = _section(Config, {k: v for k, v in data.items() if k != "session"})
    config.session = _section(SessionConfig, data.get("session"))
    return config
