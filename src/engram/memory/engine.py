"""Memory engine: the per-turn recall, inject, extract and write loop.

The engine owns an immutable EngineConfig, a store, an auditor and the
active platform adapter. Nothing is shared at module level; create one
engine per user or test.

Typical use::

    engine = await MemoryEngine.create(config)
    result = await engine.retrieve_and_inject(user_input, request)
    ...
    await engine.extract_and_save(response)
"""

from __future__ import annotations

import csv
import io
import json
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from engram.adapters.base import Payload, PlatformAdapter
from engram.adapters.registry import get_adapter
from engram.config.models import EngineConfig
from engram.memory.embeddings import EmbeddingGenerator
from engram.memory.errors import NotConfiguredError
from engram.memory.extractor import create_memory_entry, extract_memory
from engram.memory.file_store import FileMemoryStore
from engram.memory.hybrid import HybridMatch, HybridRetriever
from engram.memory.injector import InjectionResult, inject_memory
from engram.memory.protocols import MemoryStore
from engram.memory.retrieval import MemoryRetriever
from engram.memory.scorer import (
    activation,
    adjust_params,
    assess_content,
    judge_memory_type,
    passes_type_threshold,
    write_score,
)
from engram.memory.security import (
    AuditAction,
    Sanitizer,
    SecurityAuditor,
    mask_sensitive_text,
    matches_sensitivity_patterns,
)
from engram.memory.tiered import TieredMemoryStore
from engram.memory.types import (
    AuditEntry,
    Dimensions,
    ExtractionCandidate,
    Lifecycle,
    MemoryBody,
    MemoryMeta,
    MemoryRecord,
    MemoryStats,
    MemoryStatus,
    MemoryType,
    Origin,
    ScoredMemory,
    Sensitivity,
    generate_memory_id,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXPORT_CSV_HEADERS = ["id", "type", "text", "createdAt", "platform"]


@dataclass
class TurnError:
    phase: str
    error: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class PhaseResult(Generic[T]):
    """Outcome of one phase: a value or the error that replaced it."""

    phase: str
    value: T | None = None
    error: TurnError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class TurnResult:
    """Merged outcome of every phase in one turn."""

    recalled: list[ScoredMemory] = field(default_factory=list)
    injected: InjectionResult | None = None
    extracted: list[ExtractionCandidate] = field(default_factory=list)
    written: list[MemoryRecord] = field(default_factory=list)
    errors: list[TurnError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def merge(self, result: PhaseResult[T], default: T) -> T:
        """Record a phase's error, if any, and return its value or ``default``."""
        if result.error is not None:
            self.errors.append(result.error)
            return default
        return result.value if result.value is not None else default


@dataclass
class RecallInjectResult:
    request: Payload
    memories: list[ScoredMemory] = field(default_factory=list)


def build_store(config: EngineConfig) -> MemoryStore:
    """Pick the store implementation described by ``config``."""
    if config.tiering.enabled:
        return TieredMemoryStore(
            config.storage_path,
            hot_days=config.tiering.hot_days,
            warm_days=config.tiering.warm_days,
            auto_compress=config.tiering.auto_compress,
        )
    return FileMemoryStore(config.storage_path)


class MemoryEngine:
    """Decides what to remember from each turn and what to recall into the next.

    ``gamma`` and ``barrier`` start from the config and drift with
    ``feedback()``; the config itself never changes.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        store: MemoryStore | None = None,
        auditor: SecurityAuditor | None = None,
        adapter: PlatformAdapter | None = None,
        embeddings: EmbeddingGenerator | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store if store is not None else build_store(self.config)
        self.auditor = auditor or SecurityAuditor(self.config.audit_path)
        self.sanitizer = Sanitizer(auto_mask=self.config.auto_mask_sensitive)
        self.embeddings = embeddings
        self.platform_adapter: PlatformAdapter | None = None
        self.platform = self.config.platform
        self.namespace = self.config.namespace
        self.gamma = self.config.gamma
        self.barrier = self.config.barrier
        if adapter is not None:
            self.set_platform_adapter(adapter)

    @classmethod
    async def create(
        cls, config: EngineConfig | None = None, **kwargs: Any
    ) -> MemoryEngine:
        engine = cls(config, **kwargs)
        await engine.init()
        return engine

    async def init(self) -> None:
        """Load persisted state and resolve the adapter from the config."""
        init_store = getattr(self.store, "init", None)
        if init_store is not None:
            await init_store()
        await self.auditor.load()
        if self.platform_adapter is None:
            self.set_platform_adapter(get_adapter(self.config.platform))
        logger.info(
            "engine_initialized",
            extra={"platform": self.platform, "namespace": self.namespace},
        )

    def set_platform_adapter(self, adapter: PlatformAdapter) -> None:
        self.platform_adapter = adapter
        self.platform = adapter.name

    def _require_adapter(self) -> PlatformAdapter:
        if self.platform_adapter is None:
            raise NotConfiguredError("Platform adapter not configured")
        return self.platform_adapter

    def _retriever(self, platform_weight: float = 1.0) -> MemoryRetriever:
        return MemoryRetriever(
            recall_threshold=self.config.recall_threshold,
            gamma=self.gamma,
            barrier=self.barrier,
            half_life=self.config.half_life_days,
            budget=self.config.budget,
            platform_weight=platform_weight,
        )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def _process_sensitive(self, record: MemoryRecord) -> MemoryRecord:
        """Classify and, when enabled, mask sensitive content before persisting."""
        if not self.config.auto_mask_sensitive:
            return record

        text = record.text
        if matches_sensitivity_patterns(text, self.config.compiled_sensitivity_patterns):
            secured = record.copy()
            secured.body.raw_content = secured.body.raw_content or text
            secured.body.text = mask_sensitive_text(text)
            secured.meta.security.sensitivity = Sensitivity.HIGHLY_SENSITIVE
            secured.meta.security.masked = True
        else:
            secured = self.sanitizer.secure_memory(record)

        if secured.meta.security.masked:
            await self.auditor.log_sanitization(secured.id, text, secured.text)
        return secured

    async def _persist(self, record: MemoryRecord) -> MemoryRecord:
        """Supersede a similar record, if any, then add ``record``.

        Runs under the scope lock so two writers cannot both supersede the
        same predecessor.
        """
        async with self.store.scope_lock(record.meta.platform, record.meta.namespace):
            existing = await self.store.find_similar(record)
            if existing is not None:
                record.meta.relations.supersedes = existing.id
                await self.store.mark_superseded(existing.id, record.id)
                await self.auditor.log(
                    AuditAction.CONFLICT,
                    {"old_id": existing.id, "new_id": record.id},
                )
            await self.store.add(record)
        return record

    async def extract_and_save(
        self,
        conversation: Payload,
        pinned: bool = False,
        conversation_id: str | None = None,
        turn_id: str | None = None,
    ) -> MemoryRecord | None:
        """Gate a whole response through activation and persist it if it passes.

        Returns the stored record, or None when the response was filtered.

        Raises:
            NotConfiguredError: If no platform adapter is set.
        """
        adapter = self._require_adapter()
        text = adapter.parse_response(conversation)
        if not text or not text.strip():
            await self.auditor.log(AuditAction.FILTERED, {"reason": "empty"})
            return None

        assessment = assess_content(text)
        dims = Dimensions(confidence=assessment.confidence, importance=assessment.importance)
        score = write_score(dims, adapter.platform_weight, assessment.freshness)
        probability = activation(score, self.gamma, self.barrier)
        memory_type = judge_memory_type(text, pinned)

        if not passes_type_threshold(probability, memory_type):
            await self.auditor.log(
                AuditAction.FILTERED,
                {
                    "reason": "threshold",
                    "type": memory_type.value,
                    "score": round(score, 4),
                    "probability": probability,
                },
            )
            logger.info(
                "memory_filtered",
                extra={"memory_type": memory_type.value, "probability": probability},
            )
            return None

        candidate = ExtractionCandidate(
            type=memory_type,
            text=text,
            dimensions=Dimensions(
                confidence=assessment.confidence,
                importance=assessment.importance,
                time_decay=1.0,
                recall_priority=1.0 if pinned else 0.8,
            ),
            score=score,
        )
        record = create_memory_entry(
            candidate,
            platform=self.platform,
            namespace=self.namespace,
            conversation_id=conversation_id,
            turn_id=turn_id,
            ttl=self.config.ttl,
        )
        record = await self._persist(await self._process_sensitive(record))
        await self.auditor.log(
            AuditAction.WRITE,
            {"memory_id": record.id, "type": memory_type.value, "probability": probability},
        )
        logger.info(
            "memory_written",
            extra={"memory_id": record.id, "memory_type": memory_type.value},
        )
        return record

    # ------------------------------------------------------------------
    # Turn phases
    # ------------------------------------------------------------------

    async def recall(self, user_input: str) -> list[ScoredMemory]:
        """Active in-scope records that clear the recall threshold, budgeted."""
        records = await self.store.query(
            status=MemoryStatus.ACTIVE, platform=self.platform, namespace=self.namespace
        )
        weight = self.platform_adapter.platform_weight if self.platform_adapter else 1.0
        return self._retriever(weight).retrieve(user_input, records)

    def inject(self, user_input: str, recalled: list[ScoredMemory]) -> InjectionResult:
        adapter = self._require_adapter()
        return inject_memory(
            user_input,
            [s.record for s in recalled],
            adapter,
            platform=self.platform,
            namespace=self.namespace,
        )

    def extract(self, response: Payload) -> list[ExtractionCandidate]:
        return extract_memory(response, self._require_adapter())

    async def write(
        self,
        candidates: list[ExtractionCandidate],
        errors: list[TurnError] | None = None,
    ) -> list[MemoryRecord]:
        """Persist candidates whose raw write score clears ``write_threshold``.

        A candidate that fails to persist does not stop the others. The
        failure is logged, audited and appended to ``errors`` when given.
        """
        weight = self.platform_adapter.platform_weight if self.platform_adapter else 1.0
        written: list[MemoryRecord] = []
        for candidate in candidates:
            score = write_score(candidate.dimensions, weight)
            if score < self.config.write_threshold:
                await self.auditor.log(
                    AuditAction.FILTERED,
                    {
                        "reason": "write_threshold",
                        "type": candidate.type.value,
                        "score": round(score, 4),
                    },
                )
                continue

            record = create_memory_entry(
                candidate,
                platform=self.platform,
                namespace=self.namespace,
                ttl=self.config.ttl,
            )
            try:
                record = await self._persist(await self._process_sensitive(record))
            except Exception as e:
                logger.warning(
                    "candidate_write_failed",
                    extra={
                        "memory_id": record.id,
                        "error.type": type(e).__name__,
                        "error.message": str(e),
                    },
                )
                await self.auditor.log(
                    AuditAction.ERROR,
                    {"phase": "write", "memory_id": record.id, "error": str(e)},
                )
                if errors is not None:
                    errors.append(TurnError(phase="write", error=str(e)))
                continue

            await self.auditor.log(
                AuditAction.WRITE,
                {"memory_id": record.id, "type": record.type.value, "score": round(score, 4)},
            )
            written.append(record)

        logger.debug(
            "candidates_written",
            extra={"candidates": len(candidates), "written": len(written)},
        )
        return written

    async def _run_phase(
        self, phase: str, run: Callable[[], Awaitable[T]]
    ) -> PhaseResult[T]:
        try:
            return PhaseResult(phase=phase, value=await run())
        except Exception as e:
            logger.warning(
                "turn_phase_failed",
                extra={"phase": phase, "error.type": type(e).__name__, "error.message": str(e)},
            )
            return PhaseResult(phase=phase, error=TurnError(phase=phase, error=str(e)))

    async def process_turn(self, user_input: str, response: Payload) -> TurnResult:
        """Run recall, inject, extract and write.

        Every phase runs even when an earlier one fails; failures are
        collected in ``TurnResult.errors``.
        """
        result = TurnResult()

        recalled = result.merge(
            await self._run_phase("recall", lambda: self.recall(user_input)), []
        )
        result.recalled = recalled

        async def run_inject() -> InjectionResult:
            return self.inject(user_input, recalled)

        result.injected = result.merge(await self._run_phase("inject", run_inject), None)

        async def run_extract() -> list[ExtractionCandidate]:
            return self.extract(response)

        extracted = result.merge(await self._run_phase("extract", run_extract), [])
        result.extracted = extracted

        async def run_write() -> list[MemoryRecord]:
            return await self.write(extracted, result.errors)

        result.written = result.merge(await self._run_phase("write", run_write), [])

        if result.errors:
            await self.auditor.log(
                AuditAction.ERROR,
                {"phases": [e.phase for e in result.errors]},
            )
        return result

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def retrieve_and_inject(
        self,
        user_input: str,
        request: Payload,
        platform: str | None = None,
    ) -> RecallInjectResult:
        """Inject recalled memories into ``request``.

        Never raises: on any failure the original request comes back with no
        memories.
        """
        platform = platform or self.platform
        try:
            records = await self.store.query(
                status=MemoryStatus.ACTIVE, platform=platform, namespace=self.namespace
            )
            if not records:
                return RecallInjectResult(request=request)

            adapter = (
                self.platform_adapter
                if self.platform_adapter is not None and self.platform_adapter.name == platform
                else get_adapter(platform)
            )
            memories = self._retriever(adapter.platform_weight).retrieve(user_input, records)
            if not memories:
                return RecallInjectResult(request=request)

            injection = inject_memory(
                user_input,
                [m.record for m in memories],
                adapter,
                platform=platform,
                namespace=self.namespace,
            )
            injected_request = adapter.inject_to_request(request, injection.context)
            await self.auditor.log(
                AuditAction.RECALL,
                {
                    "platform": platform,
                    "recalled": len(memories),
                    "memory_ids": [m.record.id for m in memories],
                },
            )
            return RecallInjectResult(request=injected_request, memories=memories)
        except Exception as e:
            logger.error(
                "recall_inject_failed",
                extra={"platform": platform, "error.message": str(e)},
                exc_info=True,
            )
            await self.auditor.log(
                AuditAction.ERROR,
                {"phase": "retrieve_and_inject", "error": str(e)},
            )
            return RecallInjectResult(request=request)

    async def semantic_recall(self, user_input: str) -> list[ScoredMemory]:
        """Recall by embedding similarity; keyword recall without embeddings."""
        records = await self.store.query(
            status=MemoryStatus.ACTIVE, platform=self.platform, namespace=self.namespace
        )
        return await self._retriever().semantic_retrieve(user_input, records, self.embeddings)

    async def hybrid_recall(self, user_input: str, top_k: int = 10) -> list[HybridMatch]:
        """Recall by combined keyword, vector and entity matching."""
        records = await self.store.query(
            status=MemoryStatus.ACTIVE, platform=self.platform, namespace=self.namespace
        )
        return await HybridRetriever(self.embeddings).retrieve(user_input, records, top_k)

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def pin(self, text: str) -> MemoryRecord:
        """Store ``text`` as a manual pinned memory, bypassing activation gating."""
        now = datetime.now(UTC)
        record = MemoryRecord(
            meta=MemoryMeta(
                id=generate_memory_id(),
                platform=self.platform,
                namespace=self.namespace,
                tags=["pinned"],
                dimensions=Dimensions(
                    confidence=1.0, importance=1.0, time_decay=1.0, recall_priority=1.0
                ),
                lifecycle=Lifecycle(created_at=now, updated_at=now, last_used_at=now),
            ),
            body=MemoryBody(type=MemoryType.PINNED, text=text, raw_content=text),
        )
        record.meta.security.origin = Origin.MANUAL
        record = await self._persist(await self._process_sensitive(record))
        await self.auditor.log(
            AuditAction.WRITE,
            {"memory_id": record.id, "type": MemoryType.PINNED.value, "origin": "manual"},
        )
        return record

    async def delete(self, memory_id: str) -> bool:
        deleted = await self.store.delete(memory_id)
        if deleted:
            await self.auditor.log_delete(memory_id)
        return deleted

    async def get_supersession_chain(self, memory_id: str) -> list[MemoryRecord]:
        return await self.store.get_supersession_chain(memory_id)

    async def get_raw_content(self, memory_id: str) -> str | None:
        """Unmasked content of a record; reads of sensitive records are audited."""
        record = await self.store.get(memory_id)
        if record is None:
            return None
        sensitivity = record.meta.security.sensitivity
        if sensitivity != Sensitivity.NORMAL:
            await self.auditor.log_sensitive_access(memory_id, "read_raw", sensitivity)
        return record.body.raw_content or record.text

    async def cleanup(self, now: datetime | None = None) -> int:
        """Flip active records past their ``expiresAt`` to ``expired``."""
        now = now or datetime.now(UTC)
        expired = 0
        for record in await self.store.query(
            status=MemoryStatus.ACTIVE, platform=self.platform, namespace=self.namespace
        ):
            expires_at = record.meta.lifecycle.expires_at
            if expires_at is None or expires_at > now:
                continue
            record.meta.lifecycle.status = MemoryStatus.EXPIRED
            record.meta.lifecycle.updated_at = now
            await self.store.update(record)
            expired += 1

        await self.auditor.log(AuditAction.CLEANUP, {"expired": expired})
        logger.info("memories_expired", extra={"count": expired})
        return expired

    async def run_maintenance(self, now: datetime | None = None) -> dict[str, int]:
        """Expire records and, for a tiered store, migrate and purge tiers."""
        stats = {"expired": await self.cleanup(now)}
        if isinstance(self.store, TieredMemoryStore):
            stats["migrated"] = await self.store.run_compression_cycle(now)
            stats["purged"] = await self.store.cleanup(
                self.config.tiering.purge_after_days, now
            )
        return stats

    async def export(self, format: str = "json") -> str:
        """Serialize every record in scope as JSON or CSV.

        Raises:
            ValueError: For any other format.
        """
        if format not in ("json", "csv"):
            raise ValueError(f"Unsupported export format: {format}")

        records = await self.store.query(platform=self.platform, namespace=self.namespace)
        if format == "json":
            output = json.dumps([r.to_dict() for r in records], ensure_ascii=False, indent=2)
        else:
            buf = io.StringIO()
            writer = csv.writer(buf, lineterminator="\n")
            writer.writerow(EXPORT_CSV_HEADERS)
            for r in records:
                created = r.meta.lifecycle.created_at
                writer.writerow(
                    [
                        r.id,
                        r.type.value,
                        r.text,
                        created.isoformat() if created else "",
                        r.meta.platform,
                    ]
                )
            output = buf.getvalue()

        await self.auditor.log_export(format, len(records))
        return output

    async def import_records(self, data: str | list[dict[str, Any]]) -> int:
        """Add records from a JSON export, assigning each a fresh id.

        Entries that do not parse as records are skipped.

        Raises:
            ValueError: If ``data`` is not a JSON list.
        """
        items = json.loads(data) if isinstance(data, str) else data
        if not isinstance(items, list):
            raise ValueError("Import data must be a list of records")

        imported = 0
        for item in items:
            try:
                record = MemoryRecord.from_dict(item)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("import_record_skipped", extra={"error.message": str(e)})
                continue
            record.meta.id = generate_memory_id()
            record.meta.relations.supersedes = None
            await self.store.add(record)
            imported += 1

        await self.auditor.log(AuditAction.IMPORT, {"count": imported})
        return imported

    async def get_stats(self) -> MemoryStats:
        """Counts across every platform in the engine's namespace."""
        records = await self.store.query(namespace=self.namespace)
        return MemoryStats(
            total=len(records),
            by_type=dict(Counter(r.type.value for r in records)),
            by_platform=dict(Counter(r.meta.platform for r in records)),
            by_status=dict(Counter(r.status.value for r in records)),
        )

    def get_audit_logs(
        self,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditEntry]:
        return self.auditor.get_logs(action, start, end)

    async def feedback(
        self, useful: bool = False, irrelevant: bool = False
    ) -> tuple[float, float]:
        """Adjust this engine's gamma and barrier from recall feedback."""
        previous = (self.gamma, self.barrier)
        self.gamma, self.barrier = adjust_params(
            self.gamma, self.barrier, useful=useful, irrelevant=irrelevant
        )
        await self.auditor.log(
            AuditAction.FEEDBACK,
            {
                "useful": useful,
                "irrelevant": irrelevant,
                "gamma": [previous[0], self.gamma],
                "barrier": [previous[1], self.barrier],
            },
        )
        return self.gamma, self.barrier
