"""Hybrid retrieval: BM25 keywords, embedding vectors and shared entities.

Each channel scores records on its own scale in [0, 1]. Channel scores are
combined with fixed weights, weak matches are dropped, and the survivors are
reordered so one memory type does not crowd out the rest.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field

from rank_bm25 import BM25Plus

from engram.memory.embeddings import EmbeddingGenerator, cosine_similarity
from engram.memory.scorer import keyword_similarity, tokenize
from engram.memory.types import MemoryRecord

logger = logging.getLogger(__name__)

KEYWORD_WEIGHT = 0.3
VECTOR_WEIGHT = 0.5
ENTITY_WEIGHT = 0.2
MIN_SCORE = 0.3
RERANK_TOP_K = 20
DEFAULT_TOP_K = 10

# Each earlier pick of the same type scales a result by this factor
TYPE_REPEAT_DECAY = 0.9

BM25_K1 = 1.5
BM25_B = 0.75

_CJK_RUN = re.compile(r"[一-鿿]{2,4}")
_LATIN_WORD = re.compile(r"[a-zA-Z]{3,}")


def extract_entities(text: str | None) -> list[str]:
    """Candidate entities: CJK runs of 2-4 characters and Latin words of 3+ letters.

    Latin words are lowercased. Order of first appearance is kept.
    """
    if not text:
        return []
    found = _CJK_RUN.findall(text) + [w.lower() for w in _LATIN_WORD.findall(text)]
    return list(dict.fromkeys(found))


@dataclass
class HybridMatch:
    """A record with its combined score and the per-channel scores behind it."""

    record: MemoryRecord
    score: float
    sources: dict[str, float] = field(default_factory=dict)


class HybridRetriever:
    """Combines keyword, vector and entity matching into one ranking."""

    def __init__(
        self,
        embeddings: EmbeddingGenerator | None = None,
        keyword_weight: float = KEYWORD_WEIGHT,
        vector_weight: float = VECTOR_WEIGHT,
        entity_weight: float = ENTITY_WEIGHT,
        min_score: float = MIN_SCORE,
        rerank: bool = True,
        rerank_top_k: int = RERANK_TOP_K,
    ) -> None:
        self.embeddings = embeddings
        self.weights = {
            "keyword": keyword_weight,
            "vector": vector_weight,
            "entity": entity_weight,
        }
        self.min_score = min_score
        self.enable_rerank = rerank
        self.rerank_top_k = rerank_top_k

    def keyword_search(self, query: str, records: list[MemoryRecord]) -> dict[str, float]:
        """BM25 over record text, scaled so the best match scores 1.0.

        Only records sharing at least one token with the query are scored.
        """
        query_terms = tokenize(query)
        if not query_terms:
            return {}

        corpus: list[list[str]] = []
        indexed: list[MemoryRecord] = []
        for record in records:
            terms = tokenize(record.text)
            if terms:
                corpus.append(terms)
                indexed.append(record)
        if not corpus:
            return {}

        bm25 = BM25Plus(corpus, k1=BM25_K1, b=BM25_B)
        raw = bm25.get_scores(query_terms)
        wanted = set(query_terms)
        matched = {
            record.id: float(score)
            for record, terms, score in zip(indexed, corpus, raw, strict=True)
            if wanted.intersection(terms)
        }
        if not matched:
            return {}
        best = max(matched.values())
        if best <= 0:
            return {}
        return {memory_id: min(score / best, 1.0) for memory_id, score in matched.items()}

    async def vector_search(
        self, query: str, records: list[MemoryRecord]
    ) -> dict[str, float]:
        """Cosine similarity of embeddings, or Jaccard overlap without an embedder."""
        if self.embeddings is None or not query.strip():
            return self._overlap_search(query, records)

        try:
            query_vector = await self.embeddings.embed(query)
            scores: dict[str, float] = {}
            for record in records:
                if not record.text.strip():
                    continue
                vector = await self.embeddings.embed(record.text)
                similarity = cosine_similarity(query_vector, vector)
                if similarity > 0:
                    scores[record.id] = similarity
            return scores
        except Exception as e:
            logger.warning(
                "vector_search_failed",
                extra={"error.type": type(e).__name__, "error.message": str(e)},
            )
            return self._overlap_search(query, records)

    @staticmethod
    def _overlap_search(query: str, records: list[MemoryRecord]) -> dict[str, float]:
        scores: dict[str, float] = {}
        for record in records:
            similarity = keyword_similarity(query, record.text)
            if similarity > 0:
                scores[record.id] = similarity
        return scores

    def entity_search(self, query: str, records: list[MemoryRecord]) -> dict[str, float]:
        """Shared entities over the larger of the two entity sets."""
        query_entities = set(extract_entities(query))
        if not query_entities:
            return {}

        scores: dict[str, float] = {}
        for record in records:
            entities = set(extract_entities(record.text))
            if not entities:
                continue
            overlap = len(query_entities & entities)
            if overlap:
                scores[record.id] = overlap / max(len(query_entities), len(entities))
        return scores

    def merge_results(
        self,
        records: list[MemoryRecord],
        channels: dict[str, dict[str, float]],
    ) -> list[HybridMatch]:
        """Weighted sum of channel scores per record, best first."""
        by_id = {record.id: record for record in records}
        merged: dict[str, HybridMatch] = {}
        for channel, scores in channels.items():
            weight = self.weights.get(channel, 0.0)
            for memory_id, score in scores.items():
                record = by_id.get(memory_id)
                if record is None:
                    continue
                match = merged.get(memory_id)
                if match is None:
                    match = merged[memory_id] = HybridMatch(record=record, score=0.0)
                match.sources[channel] = round(score, 4)
                match.score += weight * score

        results = list(merged.values())
        for match in results:
            match.score = round(match.score, 4)
        results.sort(key=lambda m: m.score, reverse=True)
        return results

    def rerank(self, results: list[HybridMatch]) -> list[HybridMatch]:
        """Greedy pass over the head of the list that spreads memory types.

        Each pick's score is scaled by ``TYPE_REPEAT_DECAY`` per earlier pick
        of the same type. Results past ``rerank_top_k`` keep their order.
        """
        head = list(results[: self.rerank_top_k])
        tail = results[self.rerank_top_k :]
        seen: Counter[str] = Counter()
        reranked: list[HybridMatch] = []
        while head:
            best = max(
                head,
                key=lambda m: m.score * TYPE_REPEAT_DECAY ** seen[m.record.type.value],
            )
            head.remove(best)
            seen[best.record.type.value] += 1
            reranked.append(best)
        return reranked + tail

    async def retrieve(
        self,
        query: str,
        records: list[MemoryRecord],
        top_k: int = DEFAULT_TOP_K,
    ) -> list[HybridMatch]:
        if not query or not query.strip() or not records:
            return []

        channels = {
            "keyword": self.keyword_search(query, records),
            "vector": await self.vector_search(query, records),
            "entity": self.entity_search(query, records),
        }
        merged = self.merge_results(records, channels)
        kept = [m for m in merged if m.score >= self.min_score]
        if self.enable_rerank:
            kept = self.rerank(kept)

        logger.debug(
            "hybrid_retrieved",
            extra={
                "candidates": len(records),
                "matched": len(merged),
                "above_min_score": len(kept),
                "channels": {name: len(scores) for name, scores in channels.items()},
            },
        )
        return kept[:top_k]
