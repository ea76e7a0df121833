"""
Configuration loading for belief sessions.

Reads config/beliefs.yaml when present and falls back to built-in
defaults otherwise.
"""

import copy
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/beliefs.yaml")

NUMBER_FORMATS = {"percent", "decimal"}
THEMES = {"light", "dark"}

DEFAULTS: Dict[str, Any] = {
    "settings": {
        "number_format": "percent",
        "round": 2,
        "theme": "light",
    },
    "storage": {
        "sessions_dir": "sessions",
        "schema_path": "config/schemas/session_snapshot.schema.json",
    },
}


@dataclass(frozen=True)
class Settings:
    """Display settings stored with each session."""
    number_format: str = "percent"
    round: int = 2
    theme: str = "light"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Settings":
        """
        Build settings from a dict, accepting the older camelCase key.

        Raises:
            ConfigError: If a value is not allowed
        """
        data = data or {}
        number_format = data.get("number_format", data.get("numberFormat", cls.number_format))
        digits = data.get("round", cls.round)
        theme = data.get("theme", cls.theme)

        if number_format not in NUMBER_FORMATS:
            raise ConfigError(f"number_format must be one of {sorted(NUMBER_FORMATS)}, got {number_format!r}")
        if isinstance(digits, bool) or not isinstance(digits, int) or digits < 0:
            raise ConfigError(f"round must be a non-negative integer, got {digits!r}")
        if theme not in THEMES:
            raise ConfigError(f"theme must be one of {sorted(THEMES)}, got {theme!r}")

        return cls(number_format=number_format, round=digits, theme=theme)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration merged over the defaults.

    The path defaults to $BELIEFS_CONFIG, then config/beliefs.yaml. A missing
    file yields the defaults; an unreadable one is logged and ignored.

    Args:
        path: Optional explicit YAML path

    Returns:
        Config dict with "settings" and "storage" sections
    """
    if path is None:
        path = Path(os.environ.get("BELIEFS_CONFIG", str(DEFAULT_CONFIG_PATH)))

    if not path.exists():
        return copy.deepcopy(DEFAULTS)

    try:
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return copy.deepcopy(DEFAULTS)

    if not isinstance(loaded, dict):
        logger.warning(f"Ignoring config at {path}: top level must be a mapping")
        return copy.deepcopy(DEFAULTS)

    return _merge(DEFAULTS, loaded)


def default_settings(config: Optional[Dict[str, Any]] = None) -> Settings:
    if config is None:
        config = load_config()
    return Settings.from_dict(config.get("settings"))
