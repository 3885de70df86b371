"""Tests for recall ranking, budgeting and semantic retrieval."""

from datetime import timedelta

import pytest

from engram.config.models import BudgetConfig
from engram.memory.embeddings import EmbeddingGenerator, cosine_similarity
from engram.memory.retrieval import MemoryRetriever, allocate_budget
from engram.memory.types import MemoryType, ScoredMemory


def scored(record, score: float) -> ScoredMemory:
    return ScoredMemory(record=record, raw_score=score, score=score)


class TestRank:
    """Tests for thresholding and ordering."""

    def test_scenario_persona_ranks_first(self, make_record, now):
        """A matching persona record outranks unrelated high-priority records."""
        persona = make_record(
            "我喜欢用 Python 写后端代码",
            MemoryType.PERSONA,
            recall_priority=1.0,
            last_used_at=now,
        )
        core = make_record("周末去爬山", MemoryType.CORE, recall_priority=0.9, last_used_at=now)
        episodic = make_record("昨天下雨了", MemoryType.EPISODIC, recall_priority=0.5, last_used_at=now)

        ranked = MemoryRetriever().rank("Python 后端", [episodic, core, persona], now)

        assert [s.record.id for s in ranked] == [persona.id, core.id]
        assert ranked[0].score == pytest.approx(0.5859, abs=1e-4)
        assert ranked[0].score > ranked[1].score

    def test_all_results_clear_threshold(self, make_record, now):
        records = [
            make_record(f"memory {i}", recall_priority=i / 10, last_used_at=now)
            for i in range(11)
        ]

        ranked = MemoryRetriever(recall_threshold=0.5).rank("memory", records, now)

        assert ranked
        assert all(s.score >= 0.5 for s in ranked)

    def test_ties_broken_by_type_then_recency(self, make_record, now):
        older = make_record("x", MemoryType.CORE, last_used_at=now - timedelta(hours=1))
        newer = make_record("y", MemoryType.CORE, last_used_at=now)
        persona = make_record("z", MemoryType.PERSONA, last_used_at=now - timedelta(hours=2))
        retriever = MemoryRetriever(recall_threshold=0.0)

        ranked = retriever.rank("unrelated", [older, newer, persona], now)

        assert [s.record.id for s in ranked] == [persona.id, newer.id, older.id]

    def test_empty_query_or_records(self, make_record):
        retriever = MemoryRetriever()
        assert retriever.rank("", [make_record()]) == []
        assert retriever.rank("query", []) == []

    def test_rank_keeps_every_match(self, make_record, now):
        records = [make_record(f"note {i}", last_used_at=now) for i in range(30)]
        ranked = MemoryRetriever(recall_threshold=0.0, max_results=3).rank("note", records, now)
        assert len(ranked) == 30


class TestAllocateBudget:
    """Tests for per-type budgets."""

    def test_caps_per_type(self, make_record):
        items = [scored(make_record(f"p{i}", MemoryType.PERSONA), 0.9) for i in range(5)]
        items += [scored(make_record(f"e{i}", MemoryType.EPISODIC), 0.8) for i in range(8)]

        result = allocate_budget(items, BudgetConfig(persona=3, core=4, episodic=6))

        types = [s.record.type for s in result]
        assert types.count(MemoryType.PERSONA) == 3
        assert types.count(MemoryType.EPISODIC) == 6

    def test_fixed_type_order(self, make_record):
        items = [
            scored(make_record("e", MemoryType.EPISODIC), 0.9),
            scored(make_record("c", MemoryType.CORE), 0.9),
            scored(make_record("pin", MemoryType.PINNED), 0.9),
            scored(make_record("p", MemoryType.PERSONA), 0.9),
        ]

        result = allocate_budget(items)

        assert [s.record.text for s in result] == ["pin", "p", "c", "e"]

    def test_pinned_unbounded_by_default(self, make_record):
        items = [scored(make_record(f"pin{i}", MemoryType.PINNED), 0.9) for i in range(10)]
        assert len(allocate_budget(items)) == 10

    def test_pinned_cap_when_configured(self, make_record):
        items = [scored(make_record(f"pin{i}", MemoryType.PINNED), 0.9) for i in range(10)]
        assert len(allocate_budget(items, BudgetConfig(pinned=2))) == 2

    def test_retrieve_applies_budget(self, make_record, now):
        records = [
            make_record(f"python tip {i}", MemoryType.PERSONA, last_used_at=now) for i in range(6)
        ]
        retriever = MemoryRetriever(recall_threshold=0.0, budget=BudgetConfig(persona=2))

        assert len(retriever.retrieve("python tip", records, now)) == 2

    def test_max_results_caps_after_budget(self, make_record, now):
        records = [make_record(f"note {i}", last_used_at=now) for i in range(5)]
        retriever = MemoryRetriever(recall_threshold=0.0, max_results=3)
        assert len(retriever.retrieve("note", records, now)) == 3

    def test_budget_sees_whole_pool(self, make_record, now):
        """A weak persona match survives a flood of strong episodic matches."""
        episodic = [
            make_record("python backend tips", MemoryType.EPISODIC, last_used_at=now)
            for _ in range(25)
        ]
        persona = make_record(
            "python style notes here",
            MemoryType.PERSONA,
            recall_priority=0.5,
            last_used_at=now,
        )

        results = MemoryRetriever().retrieve("python backend tips", [*episodic, persona], now)

        types = [s.record.type for s in results]
        assert persona.id in {s.record.id for s in results}
        assert types.count(MemoryType.EPISODIC) == 6
        assert types[0] == MemoryType.PERSONA


class TestSemanticRetrieve:
    """Tests for embedding-based retrieval."""

    async def test_ranks_by_cosine(self, make_record, keyword_embedder):
        generator = EmbeddingGenerator(keyword_embedder)
        match = make_record("Python backend services")
        partial = make_record("Python backend and rust")
        miss = make_record("Frontend styling")

        results = await MemoryRetriever().semantic_retrieve(
            "python backend", [miss, partial, match], generator
        )

        assert [s.record.id for s in results] == [match.id, partial.id]
        assert results[0].score == pytest.approx(1.0)

    async def test_falls_back_without_embedder(self, make_record, caplog):
        record = make_record("我喜欢用 Python 写后端代码", MemoryType.PERSONA, recall_priority=1.0)

        results = await MemoryRetriever().semantic_retrieve("Python 后端", [record])

        assert [s.record.id for s in results] == [record.id]
        assert "semantic_retrieve_no_embedder" in caplog.text

    async def test_embedding_cache(self, make_record, keyword_embedder):
        generator = EmbeddingGenerator(keyword_embedder)
        records = [make_record("python backend")]
        retriever = MemoryRetriever()

        await retriever.semantic_retrieve("python", records, generator)
        await retriever.semantic_retrieve("python", records, generator)

        assert keyword_embedder.calls == 2


class TestEmbeddings:
    async def test_rejects_empty_text(self, keyword_embedder):
        generator = EmbeddingGenerator(keyword_embedder)
        with pytest.raises(ValueError):
            await generator.embed("   ")

    async def test_batch_rejects_empty_entry(self, keyword_embedder):
        generator = EmbeddingGenerator(keyword_embedder)
        with pytest.raises(ValueError):
            await generator.embed_batch(["python", ""])

    def test_cosine_similarity(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
        assert cosine_similarity([1.0], [1.0, 2.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
