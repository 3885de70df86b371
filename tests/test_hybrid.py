"""Tests for hybrid keyword, vector and entity retrieval."""

import pytest

from engram.memory.embeddings import EmbeddingGenerator
from engram.memory.hybrid import HybridMatch, HybridRetriever, extract_entities
from engram.memory.types import MemoryType


class TestExtractEntities:
    def test_cjk_runs_and_latin_words(self):
        assert extract_entities("我喜欢用Python写后端代码") == ["我喜欢用", "写后端代", "python"]

    def test_short_latin_words_dropped(self):
        assert extract_entities("Deploy an API to AWS") == ["deploy", "api", "aws"]

    def test_deduplicates_case_insensitively(self):
        assert extract_entities("Rust rust RUST") == ["rust"]

    def test_empty(self):
        assert extract_entities("") == []
        assert extract_entities(None) == []


class TestKeywordSearch:
    """Tests for the BM25 channel."""

    def test_best_match_scaled_to_one(self, make_record):
        both = make_record("python backend tips")
        one = make_record("python style notes")
        neither = make_record("rust frontend")

        scores = HybridRetriever().keyword_search("python backend", [neither, one, both])

        assert scores[both.id] == pytest.approx(1.0)
        assert 0 < scores[one.id] < 1
        assert neither.id not in scores

    def test_single_record_corpus(self, make_record):
        record = make_record("python")
        assert HybridRetriever().keyword_search("python", [record]) == {
            record.id: pytest.approx(1.0)
        }

    def test_no_usable_tokens(self, make_record):
        retriever = HybridRetriever()
        assert retriever.keyword_search("a", [make_record("python")]) == {}
        assert retriever.keyword_search("python", [make_record("!")]) == {}


class TestVectorSearch:
    """Tests for the embedding channel and its fallback."""

    async def test_cosine_with_embedder(self, make_record, keyword_embedder):
        match = make_record("Python backend services")
        miss = make_record("Frontend styling")
        retriever = HybridRetriever(EmbeddingGenerator(keyword_embedder))

        scores = await retriever.vector_search("python backend", [match, miss])

        assert scores == {match.id: pytest.approx(1.0)}

    async def test_overlap_without_embedder(self, make_record):
        record = make_record("python backend services")

        scores = await HybridRetriever().vector_search("python backend", [record])

        assert scores[record.id] == pytest.approx(2 / 3)

    async def test_embedder_failure_falls_back(self, make_record, failing_embedder, caplog):
        record = make_record("python backend services")
        retriever = HybridRetriever(EmbeddingGenerator(failing_embedder))

        scores = await retriever.vector_search("python backend", [record])

        assert scores[record.id] == pytest.approx(2 / 3)
        assert "vector_search_failed" in caplog.text


class TestEntitySearch:
    def test_overlap_over_larger_set(self, make_record):
        record = make_record("Python 后端开发经验")

        scores = HybridRetriever().entity_search("Python 后端开发", [record])

        # {后端开发, python} against {后端开发, 经验, python}
        assert scores[record.id] == pytest.approx(2 / 3)

    def test_no_shared_entities(self, make_record):
        assert HybridRetriever().entity_search("rust", [make_record("python")]) == {}


class TestMergeAndRerank:
    """Tests for weighted fusion and type diversity."""

    def test_weighted_sum_keeps_sources(self, make_record):
        a = make_record("a")
        b = make_record("b")
        channels = {
            "keyword": {a.id: 1.0},
            "vector": {a.id: 0.5, b.id: 1.0},
            "entity": {},
        }

        merged = HybridRetriever().merge_results([a, b], channels)

        assert [m.record.id for m in merged] == [a.id, b.id]
        assert merged[0].score == pytest.approx(0.55)
        assert merged[0].sources == {"keyword": 1.0, "vector": 0.5}
        assert merged[1].score == pytest.approx(0.5)

    def test_unknown_ids_ignored(self, make_record):
        a = make_record("a")
        merged = HybridRetriever().merge_results([a], {"vector": {"mem_gone": 1.0}})
        assert merged == []

    def test_rerank_spreads_types(self, make_record):
        first = HybridMatch(make_record("e1", MemoryType.EPISODIC), 0.9)
        second = HybridMatch(make_record("e2", MemoryType.EPISODIC), 0.85)
        persona = HybridMatch(make_record("p", MemoryType.PERSONA), 0.8)

        reranked = HybridRetriever().rerank([first, second, persona])

        assert reranked == [first, persona, second]

    def test_rerank_leaves_tail_alone(self, make_record):
        first = HybridMatch(make_record("e1", MemoryType.EPISODIC), 0.9)
        second = HybridMatch(make_record("e2", MemoryType.EPISODIC), 0.85)
        persona = HybridMatch(make_record("p", MemoryType.PERSONA), 0.8)

        reranked = HybridRetriever(rerank_top_k=2).rerank([first, second, persona])

        assert reranked == [first, second, persona]


class TestRetrieve:
    """Tests for the full hybrid pipeline."""

    async def test_combines_all_channels(self, make_record):
        match = make_record("I prefer Python for backend services", MemoryType.PERSONA)
        unrelated = make_record("went hiking last weekend")

        results = await HybridRetriever().retrieve("python backend", [unrelated, match])

        [result] = results
        assert result.record.id == match.id
        assert set(result.sources) == {"keyword", "vector", "entity"}
        # 0.3 * 1.0 + 0.5 * 0.4 + 0.2 * 0.4
        assert result.score == pytest.approx(0.58)

    async def test_min_score_filters(self, make_record):
        records = [make_record("I prefer Python for backend services")]

        results = await HybridRetriever(min_score=0.9).retrieve("python backend", records)

        assert results == []

    async def test_top_k(self, make_record):
        records = [make_record("python backend") for _ in range(5)]

        results = await HybridRetriever().retrieve("python backend", records, top_k=3)

        assert len(results) == 3
        assert all(r.score == pytest.approx(1.0) for r in results)

    async def test_empty_inputs(self, make_record):
        retriever = HybridRetriever()
        assert await retriever.retrieve("", [make_record()]) == []
        assert await retriever.retrieve("python", []) == []
