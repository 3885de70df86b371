"""Lossy text compression for aging memories.

Compression always keeps the uncompressed text in ``body.original_text`` so
``decompress`` can restore it exactly.
"""

import logging
import math
import re
from collections import Counter
from datetime import UTC, datetime

from engram.memory.scorer import tokenize
from engram.memory.types import CompressionLevel, MemoryRecord, MemoryType, Sensitivity

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT = re.compile(r"[。！？\n]")
_DIGITS = re.compile(r"\d+")
_TECHNICAL_TERMS = re.compile(r"算法|模型|公式|实验|数据")
_LEAD_MARKERS = re.compile(r"首先|第一|关键|重要")

_IMPORTANCE_TYPE_WEIGHTS: dict[MemoryType, float] = {
    MemoryType.PINNED: 1.0,
    MemoryType.PERSONA: 0.8,
    MemoryType.CORE: 0.6,
    MemoryType.EPISODIC: 0.4,
}


def extract_keywords(text: str, count: int = 5) -> list[str]:
    """Most frequent tokens, ties broken by first occurrence."""
    return [word for word, _ in Counter(tokenize(text)).most_common(count)]


def score_sentence(sentence: str) -> float:
    score = 0.0
    length = len(sentence)
    if 10 < length < 100:
        score += 0.3
    elif length >= 100:
        score += 0.1
    if _DIGITS.search(sentence):
        score += 0.2
    if _TECHNICAL_TERMS.search(sentence):
        score += 0.3
    if _LEAD_MARKERS.search(sentence):
        score += 0.2
    return score


class MemoryCompressor:
    """Keyword and key-sentence based summarizer.

    Levels keep progressively less of the text:
    - LIGHT: sentences containing a keyword (or the first 70%)
    - MEDIUM: top keywords plus the two best sentences
    - HEAVY: two keywords plus the best sentence, truncated
    - SUMMARY: two keywords plus a 50 character preview
    """

    def __init__(self, keep_keywords: int = 5, summary_max_length: int = 100) -> None:
        self.keep_keywords = keep_keywords
        self.summary_max_length = summary_max_length

    def evaluate_importance(self, record: MemoryRecord, now: datetime | None = None) -> float:
        """Type weight plus recency (30 day half-life); highly sensitive records score lower."""
        now = now or datetime.now(UTC)
        score = _IMPORTANCE_TYPE_WEIGHTS.get(record.type, 0.3)

        last_used = record.meta.lifecycle.last_used_at
        if last_used is not None:
            days = max(0.0, (now - last_used).total_seconds() / 86400)
            score += math.pow(0.5, days / 30) * 0.3
        if record.meta.security.sensitivity == Sensitivity.HIGHLY_SENSITIVE:
            score *= 0.7
        return min(score, 1.0)

    def determine_level(self, record: MemoryRecord, now: datetime | None = None) -> CompressionLevel:
        importance = self.evaluate_importance(record, now)
        if importance > 0.7:
            return CompressionLevel.NONE
        if importance > 0.5:
            return CompressionLevel.LIGHT
        if importance > 0.3:
            return CompressionLevel.MEDIUM
        if importance > 0.15:
            return CompressionLevel.HEAVY
        return CompressionLevel.SUMMARY

    def key_sentences(self, text: str, level: CompressionLevel) -> list[str]:
        sentences = [s for s in _SENTENCE_SPLIT.split(text) if len(s.strip()) > 5]
        ranked = sorted(sentences, key=score_sentence, reverse=True)
        keep = math.ceil(len(sentences) * (1 - int(level) * 0.2))
        return ranked[: max(keep, 0)]

    def compress_text(self, text: str, level: CompressionLevel) -> tuple[str, list[str]]:
        """Compress ``text`` to ``level``; returns (compressed, keywords)."""
        keywords = extract_keywords(text, self.keep_keywords)
        if level == CompressionLevel.NONE:
            return text, keywords

        if level == CompressionLevel.LIGHT:
            sentences = [
                s for s in _SENTENCE_SPLIT.split(text) if any(k in s for k in keywords)
            ]
            if sentences:
                return "。".join(sentences) + "。", keywords
            return text[: math.ceil(len(text) * 0.7)], keywords

        if level == CompressionLevel.MEDIUM:
            best = self.key_sentences(text, level)[:2]
            return f"[关键词: {', '.join(keywords[:3])}] {'。'.join(best)}", keywords

        if level == CompressionLevel.HEAVY:
            best = self.key_sentences(text, level)
            first = best[0] if best else ""
            compressed = f"[关键词: {', '.join(keywords[:2])}] {first}"
            return compressed[: self.summary_max_length], keywords

        return f"[{', '.join(keywords[:2])}] {text[:50]}...", keywords

    def compress(
        self,
        record: MemoryRecord,
        level: CompressionLevel | None = None,
        now: datetime | None = None,
    ) -> MemoryRecord:
        """Return a compressed copy of ``record``.

        An already-compressed record is recompressed from its original text.
        ``level=None`` picks a level from the record's importance.
        """
        compressed = record.copy()
        original = record.body.original_text or record.body.text
        if not original:
            return compressed

        if level is None:
            level = self.determine_level(record, now)
        if level == CompressionLevel.NONE:
            return self.decompress(compressed)

        text, keywords = self.compress_text(original, level)
        compressed.body.text = text
        compressed.body.original_text = original
        compressed.body.compression_level = level
        compressed.body.keywords = keywords

        logger.debug(
            "memory_compressed",
            extra={
                "memory_id": record.id,
                "level": level.name.lower(),
                "from_chars": len(original),
                "to_chars": len(text),
            },
        )
        return compressed

    def decompress(self, record: MemoryRecord) -> MemoryRecord:
        """Return a copy with the original text restored."""
        restored = record.copy()
        if restored.body.original_text is None:
            return restored
        restored.body.text = restored.body.original_text
        restored.body.original_text = None
        restored.body.compression_level = None
        restored.body.keywords = None
        return restored
