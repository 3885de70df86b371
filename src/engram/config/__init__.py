"""Configuration module."""

from engram.config.loader import get_default_config, load_config
from engram.config.models import (
    DEFAULT_SENSITIVITY_PATTERNS,
    BudgetConfig,
    ConfigError,
    EngineConfig,
    TieringConfig,
)
from engram.config.paths import (
    get_audit_path,
    get_config_path,
    get_engram_home,
    get_logs_path,
    get_memories_path,
)

__all__ = [
    "BudgetConfig",
    "ConfigError",
    "DEFAULT_SENSITIVITY_PATTERNS",
    "EngineConfig",
    "TieringConfig",
    "get_audit_path",
    "get_config_path",
    "get_default_config",
    "get_engram_home",
    "get_logs_path",
    "get_memories_path",
    "load_config",
]
