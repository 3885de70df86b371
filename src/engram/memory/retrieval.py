"""Recall ranking and per-type budgeting.

Records are scored with the activation curve, filtered by the recall
threshold, ranked and then cut to a per-type budget so a single type
cannot crowd out the others in the injected context.
"""

import functools
import logging
from datetime import UTC, datetime

from engram.config.models import BudgetConfig
from engram.memory.embeddings import EmbeddingGenerator, cosine_similarity
from engram.memory.scorer import (
    DEFAULT_BARRIER,
    DEFAULT_GAMMA,
    DEFAULT_HALF_LIFE_DAYS,
    TYPE_PRIORITY,
    activation,
    recall_input,
)
from engram.memory.types import TYPE_ORDER, MemoryRecord, MemoryType, ScoredMemory

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 20
SEMANTIC_THRESHOLD = 0.7

# Scores closer than this are ranked by type priority, then recency
SCORE_TIE_TOLERANCE = 0.1

_EPOCH = datetime.min.replace(tzinfo=UTC)


def _compare(a: ScoredMemory, b: ScoredMemory) -> int:
    if abs(b.score - a.score) > SCORE_TIE_TOLERANCE:
        return 1 if b.score > a.score else -1

    a_priority = TYPE_PRIORITY.get(a.record.type, 0.0)
    b_priority = TYPE_PRIORITY.get(b.record.type, 0.0)
    if a_priority != b_priority:
        return 1 if b_priority > a_priority else -1

    a_used = a.record.meta.lifecycle.last_used_at or _EPOCH
    b_used = b.record.meta.lifecycle.last_used_at or _EPOCH
    if a_used != b_used:
        return 1 if b_used > a_used else -1
    return 0


def allocate_budget(
    scored: list[ScoredMemory], budget: BudgetConfig | None = None
) -> list[ScoredMemory]:
    """Keep the top-N of each type, in fixed order pinned, persona, core, episodic.

    Input order within a type is preserved, so pass ranked memories.
    """
    budget = budget or BudgetConfig()
    by_type: dict[MemoryType, list[ScoredMemory]] = {t: [] for t in TYPE_ORDER}
    for item in scored:
        by_type.setdefault(item.record.type, []).append(item)

    result: list[ScoredMemory] = []
    for memory_type in TYPE_ORDER:
        items = by_type[memory_type]
        limit = budget.limit_for(memory_type.value)
        result.extend(items if limit is None else items[:limit])
    return result


class MemoryRetriever:
    """Ranks records against a query and applies the type budget."""

    def __init__(
        self,
        recall_threshold: float = 0.5,
        gamma: float = DEFAULT_GAMMA,
        barrier: float = DEFAULT_BARRIER,
        half_life: float = DEFAULT_HALF_LIFE_DAYS,
        budget: BudgetConfig | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        platform_weight: float = 1.0,
    ) -> None:
        self.recall_threshold = recall_threshold
        self.gamma = gamma
        self.barrier = barrier
        self.half_life = half_life
        self.budget = budget or BudgetConfig()
        self.max_results = max_results
        self.platform_weight = platform_weight

    def score(
        self, query: str, record: MemoryRecord, now: datetime | None = None
    ) -> ScoredMemory:
        raw = recall_input(
            query,
            record,
            half_life=self.half_life,
            platform_weight=self.platform_weight,
            now=now,
        )
        return ScoredMemory(
            record=record,
            raw_score=raw,
            score=activation(raw, self.gamma, self.barrier),
        )

    def rank(
        self,
        query: str,
        records: list[MemoryRecord],
        now: datetime | None = None,
    ) -> list[ScoredMemory]:
        """Score, drop below ``recall_threshold`` and sort best first."""
        if not query or not records:
            return []

        scored = [self.score(query, r, now) for r in records]
        kept = [s for s in scored if s.score >= self.recall_threshold]
        kept.sort(key=functools.cmp_to_key(_compare))

        logger.debug(
            "memories_ranked",
            extra={
                "candidates": len(records),
                "above_threshold": len(kept),
                "threshold": self.recall_threshold,
            },
        )
        return kept

    def allocate_budget(self, scored: list[ScoredMemory]) -> list[ScoredMemory]:
        return allocate_budget(scored, self.budget)

    def retrieve(
        self,
        query: str,
        records: list[MemoryRecord],
        now: datetime | None = None,
    ) -> list[ScoredMemory]:
        """Ranked, budget-allocated and capped at ``max_results``."""
        return self.allocate_budget(self.rank(query, records, now))[: self.max_results]

    async def semantic_retrieve(
        self,
        query: str,
        records: list[MemoryRecord],
        embeddings: EmbeddingGenerator | None = None,
        threshold: float = SEMANTIC_THRESHOLD,
    ) -> list[ScoredMemory]:
        """Rank by embedding cosine similarity.

        Without an embedding generator this falls back to keyword retrieval.
        """
        if embeddings is None:
            logger.warning("semantic_retrieve_no_embedder")
            return self.retrieve(query, records)
        if not query or not query.strip() or not records:
            return []

        query_vector = await embeddings.embed(query)
        results: list[ScoredMemory] = []
        for record in records:
            if not record.text.strip():
                continue
            similarity = cosine_similarity(query_vector, await embeddings.embed(record.text))
            if similarity >= threshold:
                results.append(ScoredMemory(record=record, raw_score=similarity, score=similarity))

        results.sort(key=lambda s: s.score, reverse=True)
        return results
