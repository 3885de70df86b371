"""Configuration models using Pydantic."""

import logging
import re
from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from engram.config.paths import get_memories_path

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60

# Sensitivity cues checked on the write path before persisting a memory
DEFAULT_SENSITIVITY_PATTERNS: list[str] = [
    r"password",
    r"api[_-]?key",
    r"secret",
    r"token",
    r"otp",
    r"\d{6,}",
    r"bank",
]


class ConfigError(Exception):
    """Configuration error."""

    pass


class BudgetConfig(BaseModel):
    """Per-type cap on how many memories one injected context may hold.

    ``pinned`` is unbounded unless set explicitly.
    """

    model_config = ConfigDict(frozen=True)

    pinned: int | None = None
    persona: int = Field(default=3, ge=0)
    core: int = Field(default=4, ge=0)
    episodic: int = Field(default=6, ge=0)

    def limit_for(self, memory_type: str) -> int | None:
        """Return the cap for a type name, or None when unbounded."""
        return getattr(self, memory_type, None)


class TieringConfig(BaseModel):
    """Hot/warm/cold tier boundaries, in days since last use."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    hot_days: float = 7.0
    warm_days: float = 30.0
    auto_compress: bool = True
    purge_after_days: float = 180.0

    @model_validator(mode="after")
    def _validate_order(self) -> "TieringConfig":
        if self.warm_days <= self.hot_days:
            raise ValueError("tiering.warm_days must be greater than hot_days")
        return self


class EngineConfig(BaseModel):
    """Engine-wide configuration, immutable once constructed.

    Threshold semantics:
    - recall_threshold: minimum activation probability for a memory to be
      recalled into context.
    - write_threshold: minimum raw write score for a candidate extracted
      from a response to be persisted.
    """

    model_config = ConfigDict(frozen=True)

    gamma: float = 0.85
    barrier: float = 0.5
    recall_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    write_threshold: float = Field(default=0.6, ge=0.0, le=1.0)

    platform: str = "deepseek"
    namespace: str = "default"

    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    ttl: int = Field(default=DEFAULT_TTL_SECONDS, gt=0)
    half_life_days: float = Field(default=7.0, gt=0)

    auto_mask_sensitive: bool = True
    sensitivity_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SENSITIVITY_PATTERNS)
    )

    storage_path: Path = Field(default_factory=get_memories_path)
    audit_path: Path | None = None
    tiering: TieringConfig = Field(default_factory=TieringConfig)

    @field_validator("sensitivity_patterns")
    @classmethod
    def _validate_patterns(cls, patterns: list[str]) -> list[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid sensitivity pattern {pattern!r}: {e}")
        return patterns

    @field_validator("gamma")
    @classmethod
    def _warn_gamma_range(cls, gamma: float) -> float:
        if not 0 < gamma <= 2:
            logger.warning(
                "gamma_out_of_range",
                extra={"gamma": gamma, "clamped_to": "(0, 2]"},
            )
        return gamma

    @cached_property
    def compiled_sensitivity_patterns(self) -> list[re.Pattern[str]]:
        """Sensitivity patterns compiled case-insensitively."""
        return [re.compile(p, re.IGNORECASE) for p in self.sensitivity_patterns]

    def with_overrides(self, **updates: object) -> "EngineConfig":
        """Return a copy with the given fields replaced and re-validated."""
        data = self.model_dump()
        data.update(updates)
        return EngineConfig.model_validate(data)
