"""Tests for configuration loading and models."""

import pytest
from pydantic import ValidationError

from engram.config.loader import ENV_OVERRIDES, get_default_config, load_config
from engram.config.models import (
    DEFAULT_TTL_SECONDS,
    BudgetConfig,
    ConfigError,
    EngineConfig,
    TieringConfig,
)
from engram.config.paths import get_config_path, get_memories_path


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """No stray engram.toml in cwd and no override env vars."""
    monkeypatch.chdir(tmp_path)
    for env_var in ENV_OVERRIDES:
        monkeypatch.delenv(env_var, raising=False)


class TestBudgetConfig:
    def test_defaults(self):
        budget = BudgetConfig()
        assert budget.limit_for("persona") == 3
        assert budget.limit_for("core") == 4
        assert budget.limit_for("episodic") == 6
        assert budget.limit_for("pinned") is None

    def test_unknown_type_unbounded(self):
        assert BudgetConfig().limit_for("other") is None

    def test_rejects_negative(self):
        with pytest.raises(ValidationError):
            BudgetConfig(core=-1)


class TestTieringConfig:
    def test_defaults(self):
        tiering = TieringConfig()
        assert tiering.enabled is False
        assert tiering.hot_days == 7.0
        assert tiering.warm_days == 30.0
        assert tiering.purge_after_days == 180.0

    def test_warm_must_exceed_hot(self):
        with pytest.raises(ValidationError, match="warm_days"):
            TieringConfig(hot_days=30, warm_days=7)


class TestEngineConfig:
    """Tests for EngineConfig model."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.gamma == 0.85
        assert config.barrier == 0.5
        assert config.recall_threshold == 0.5
        assert config.write_threshold == 0.6
        assert config.platform == "deepseek"
        assert config.namespace == "default"
        assert config.ttl == DEFAULT_TTL_SECONDS
        assert config.auto_mask_sensitive is True
        assert config.storage_path == get_memories_path()

    def test_frozen(self):
        config = EngineConfig()
        with pytest.raises(ValidationError):
            config.gamma = 1.0

    def test_threshold_bounds(self):
        with pytest.raises(ValidationError):
            EngineConfig(recall_threshold=1.5)

    def test_invalid_sensitivity_pattern(self):
        with pytest.raises(ValidationError, match="Invalid sensitivity pattern"):
            EngineConfig(sensitivity_patterns=["("])

    def test_compiled_patterns_ignore_case(self):
        config = EngineConfig(sensitivity_patterns=["password"])
        [pattern] = config.compiled_sensitivity_patterns
        assert pattern.search("My PASSWORD is")

    def test_gamma_out_of_range_warns(self, caplog):
        config = EngineConfig(gamma=3.0)
        assert config.gamma == 3.0
        assert "gamma_out_of_range" in caplog.text

    def test_with_overrides(self):
        config = EngineConfig()

        updated = config.with_overrides(namespace="work", gamma=1.2)

        assert updated.namespace == "work"
        assert updated.gamma == 1.2
        assert config.namespace == "default"

    def test_with_overrides_revalidates(self):
        with pytest.raises(ValidationError):
            EngineConfig().with_overrides(write_threshold=-0.1)


class TestLoadConfig:
    """Tests for load_config()."""

    def test_defaults_without_file(self):
        config = load_config()
        assert config == get_default_config()

    def test_reads_engine_table(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            """
[engine]
platform = "claude"
namespace = "work"
recall_threshold = 0.6

[engine.budget]
persona = 5

[engine.tiering]
enabled = true
hot_days = 3
"""
        )

        config = load_config(path)

        assert config.platform == "claude"
        assert config.namespace == "work"
        assert config.recall_threshold == 0.6
        assert config.budget.persona == 5
        assert config.budget.core == 4
        assert config.tiering.enabled is True
        assert config.tiering.hot_days == 3

    def test_finds_default_location(self):
        path = get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text('[engine]\nnamespace = "home"\n')

        assert load_config().namespace == "home"

    def test_cwd_file_takes_precedence(self, tmp_path):
        home_config = get_config_path()
        home_config.parent.mkdir(parents=True, exist_ok=True)
        home_config.write_text('[engine]\nnamespace = "home"\n')
        (tmp_path / "engram.toml").write_text('[engine]\nnamespace = "local"\n')

        assert load_config().namespace == "local"

    def test_env_overrides(self, monkeypatch, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[engine]\nplatform = "claude"\n')
        monkeypatch.setenv("ENGRAM_PLATFORM", "gemini")
        monkeypatch.setenv("ENGRAM_STORAGE_PATH", str(tmp_path / "store"))

        config = load_config(path)

        assert config.platform == "gemini"
        assert config.storage_path == tmp_path / "store"

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[engine\nplatform = ")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[engine]\nwrite_threshold = 2.0\n")

        with pytest.raises(ConfigError, match="Invalid engine configuration"):
            load_config(path)
