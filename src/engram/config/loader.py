"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from engram.config.models import ConfigError, EngineConfig
from engram.config.paths import get_config_path

# Environment variables that override values from the config file
ENV_OVERRIDES = {
    "ENGRAM_PLATFORM": "platform",
    "ENGRAM_NAMESPACE": "namespace",
    "ENGRAM_STORAGE_PATH": "storage_path",
}


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("engram.toml"),  # Current directory
        get_config_path(),  # ~/.engram/config.toml (or ENGRAM_HOME)
    ]


def _apply_env_overrides(section: dict[str, Any]) -> dict[str, Any]:
    """Apply environment overrides on top of file values."""
    for env_var, key in ENV_OVERRIDES.items():
        if value := os.environ.get(env_var):
            section[key] = value
    return section


def load_config(path: Path | None = None) -> EngineConfig:
    """Load engine configuration from a TOML file.

    Settings live under the ``[engine]`` table; nested ``[engine.budget]``
    and ``[engine.tiering]`` tables map onto their models. When no file is
    found in the default locations, defaults (plus environment overrides)
    are used.

    Args:
        path: Explicit path to config file. If None, searches default locations.

    Returns:
        Validated EngineConfig instance.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ConfigError: If the config file is invalid.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for default_path in _get_default_config_paths():
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    raw: dict[str, Any] = {}
    if config_path is not None:
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    section = dict(raw.get("engine") or {})
    section = _apply_env_overrides(section)

    try:
        return EngineConfig.model_validate(section)
    except ValidationError as e:
        source = config_path or "defaults"
        raise ConfigError(f"Invalid engine configuration ({source}): {e}") from e


def get_default_config() -> EngineConfig:
    """Get a default configuration for development/testing."""
    return EngineConfig()
