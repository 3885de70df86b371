"""Shared test fixtures and factories."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from engram.config.models import EngineConfig
from engram.config.paths import ENV_VAR, get_engram_home
from engram.memory.engine import MemoryEngine
from engram.memory.file_store import FileMemoryStore
from engram.memory.security import SecurityAuditor
from engram.memory.tiered import TieredMemoryStore
from engram.memory.types import (
    Dimensions,
    Lifecycle,
    MemoryBody,
    MemoryMeta,
    MemoryRecord,
    MemoryStatus,
    MemoryType,
    generate_memory_id,
)

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def engram_home(monkeypatch, tmp_path: Path) -> Path:
    """Point ENGRAM_HOME at a temp directory for every test."""
    home = tmp_path / "engram-home"
    monkeypatch.setenv(ENV_VAR, str(home))
    get_engram_home.cache_clear()
    yield home
    get_engram_home.cache_clear()


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


# =============================================================================
# Record Factories
# =============================================================================


def build_record(
    text: str = "用户喜欢简洁的回答",
    memory_type: MemoryType = MemoryType.EPISODIC,
    *,
    platform: str = "deepseek",
    namespace: str = "default",
    last_used_at: datetime | None = None,
    created_at: datetime | None = None,
    expires_at: datetime | None = None,
    status: MemoryStatus = MemoryStatus.ACTIVE,
    recall_priority: float = 0.8,
    memory_id: str | None = None,
) -> MemoryRecord:
    created = created_at or last_used_at or datetime.now(UTC)
    return MemoryRecord(
        meta=MemoryMeta(
            id=memory_id or generate_memory_id(),
            platform=platform,
            namespace=namespace,
            dimensions=Dimensions(recall_priority=recall_priority),
            lifecycle=Lifecycle(
                created_at=created,
                updated_at=created,
                last_used_at=last_used_at or created,
                expires_at=expires_at,
                status=status,
            ),
        ),
        body=MemoryBody(type=memory_type, text=text, raw_content=text),
    )


@pytest.fixture
def make_record() -> Callable[..., MemoryRecord]:
    """Factory for memory records with sensible defaults."""
    return build_record


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def file_store(tmp_path: Path) -> FileMemoryStore:
    return FileMemoryStore(tmp_path / "memories")


@pytest.fixture
async def tiered_store(tmp_path: Path) -> TieredMemoryStore:
    store = TieredMemoryStore(tmp_path / "tiered")
    await store.init()
    return store


@pytest.fixture
def auditor(tmp_path: Path) -> SecurityAuditor:
    return SecurityAuditor(tmp_path / "audit.jsonl")


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(
        storage_path=tmp_path / "memories",
        audit_path=tmp_path / "audit.jsonl",
    )


@pytest.fixture
async def engine(engine_config: EngineConfig) -> MemoryEngine:
    return await MemoryEngine.create(engine_config)


@pytest.fixture
def old(now: datetime) -> Callable[[float], datetime]:
    """Timestamp ``days`` before the fixed clock."""

    def _old(days: float) -> datetime:
        return now - timedelta(days=days)

    return _old


# =============================================================================
# Embeddings
# =============================================================================


class KeywordEmbedder:
    """Deterministic embedder: one dimension per known keyword."""

    VOCAB = ["python", "rust", "backend", "frontend"]

    def __init__(self) -> None:
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        lowered = text.lower()
        return [1.0 if word in lowered else 0.0 for word in self.VOCAB]


class FailingEmbedder:
    """Embedder whose backend is always down."""

    async def embed(self, text: str) -> list[float]:
        raise ConnectionError("embedding service unavailable")


@pytest.fixture
def keyword_embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def failing_embedder() -> FailingEmbedder:
    return FailingEmbedder()
