"""Centralized path management for engram.

All state (config, memories, audit trail, logs) is stored under a single base
directory. The base directory can be overridden with the ENGRAM_HOME
environment variable.

Default locations:
- Linux/macOS: ~/.engram
- Windows: %USERPROFILE%\\.engram
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "ENGRAM_HOME"


@lru_cache(maxsize=1)
def get_engram_home() -> Path:
    """Get the base directory for all engram data.

    Resolution order:
    1. ENGRAM_HOME environment variable (if set)
    2. Platform default (~/.engram)

    Returns:
        Path to the engram home directory.
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()

    return Path.home() / ".engram"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_engram_home() / "config.toml"


def get_memories_path() -> Path:
    """Get the root directory for per-record memory documents."""
    return get_engram_home() / "memories"


def get_audit_path() -> Path:
    """Get the append-only audit log path."""
    return get_engram_home() / "audit.jsonl"


def get_logs_path() -> Path:
    """Get the logs directory path."""
    return get_engram_home() / "logs"


def ensure_engram_home() -> Path:
    """Create the home directory if missing and return it."""
    home = get_engram_home()
    home.mkdir(parents=True, exist_ok=True)
    return home
