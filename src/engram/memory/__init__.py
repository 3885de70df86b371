"""Memory decision engine.

Public API:
- MemoryEngine: per-turn recall, inject, extract and write
- build_store: store factory driven by EngineConfig

Components:
- FileMemoryStore / TieredMemoryStore: JSON document stores
- MemoryRetriever: activation ranking and type budgets
- HybridRetriever: BM25, vector and entity fusion
- MemoryCompressor: text compression for warm and cold tiers
- Sanitizer / SecurityAuditor: sensitive content masking and the audit trail
- EmbeddingGenerator: optional semantic recall

Types:
- MemoryRecord: persisted record (meta + body)
- MemoryType, MemoryStatus: classification and lifecycle
- ExtractionCandidate, ScoredMemory: pipeline values
"""

from engram.memory.compressor import MemoryCompressor
from engram.memory.embeddings import EmbeddingGenerator
from engram.memory.engine import (
    MemoryEngine,
    PhaseResult,
    RecallInjectResult,
    TurnError,
    TurnResult,
    build_store,
)
from engram.memory.errors import EngineError, NotConfiguredError, StorageError
from engram.memory.file_store import FileMemoryStore
from engram.memory.hybrid import HybridMatch, HybridRetriever
from engram.memory.injector import InjectionResult, build_context, inject_memory
from engram.memory.protocols import MemoryStore
from engram.memory.retrieval import MemoryRetriever
from engram.memory.security import AuditAction, Sanitizer, SecurityAuditor
from engram.memory.tiered import TieredMemoryStore
from engram.memory.types import (
    ExtractionCandidate,
    MemoryRecord,
    MemoryStats,
    MemoryStatus,
    MemoryType,
    ScoredMemory,
)

__all__ = [
    # Engine
    "MemoryEngine",
    "build_store",
    "PhaseResult",
    "RecallInjectResult",
    "TurnError",
    "TurnResult",
    # Errors
    "EngineError",
    "NotConfiguredError",
    "StorageError",
    # Components
    "AuditAction",
    "EmbeddingGenerator",
    "FileMemoryStore",
    "HybridMatch",
    "HybridRetriever",
    "InjectionResult",
    "MemoryCompressor",
    "MemoryRetriever",
    "MemoryStore",
    "Sanitizer",
    "SecurityAuditor",
    "TieredMemoryStore",
    "build_context",
    "inject_memory",
    # Types
    "ExtractionCandidate",
    "MemoryRecord",
    "MemoryStats",
    "MemoryStatus",
    "MemoryType",
    "ScoredMemory",
]
