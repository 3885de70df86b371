"""Activation scoring for memory recall and write decisions.

Every decision in the engine funnels through one sigmoid:

    p = 1 / (1 + exp(-2 * gamma * (input - barrier)))

``input`` is a weighted match score in [0, 1], ``barrier`` the point where
p = 0.5 and ``gamma`` the steepness. Recall scores pass through it before
thresholding; write scores are compared raw against the write threshold and
their activation against the per-type threshold.

All functions here are pure and never raise on malformed input.
"""

import math
import re
from dataclasses import dataclass
from datetime import UTC, datetime

from engram.memory.types import Dimensions, MemoryRecord, MemoryType

DEFAULT_GAMMA = 0.85
DEFAULT_BARRIER = 0.5
MIN_GAMMA = 0.1
MAX_GAMMA = 2.0
DEFAULT_HALF_LIFE_DAYS = 7.0

# Minimum activation probability a candidate needs to be persisted, by type
TYPE_THRESHOLDS: dict[MemoryType, float] = {
    MemoryType.PINNED: 1.0,
    MemoryType.PERSONA: 0.8,
    MemoryType.CORE: 0.6,
    MemoryType.EPISODIC: 0.4,
}

# Retrieval tie-break priority; divided by 3 when used as a score term
TYPE_PRIORITY: dict[MemoryType, float] = {
    MemoryType.PINNED: 3.0,
    MemoryType.PERSONA: 2.0,
    MemoryType.CORE: 1.5,
    MemoryType.EPISODIC: 1.0,
}

_TYPE_SCORES: dict[MemoryType, float] = {
    MemoryType.PINNED: 1.0,
    MemoryType.PERSONA: 0.85,
    MemoryType.CORE: 0.7,
    MemoryType.EPISODIC: 0.5,
}

_NON_WORD = re.compile(r"[^\w\s一-鿿]")

_PERSONA_CUES = re.compile(r"喜欢|偏好|通常|习惯|\b(?:i like|i prefer|usually|habit)\b", re.I)
_CORE_CUES = re.compile(r"目标|项目|正在|当前|计划|\b(?:goal|project|currently|plan)\b", re.I)
_IMPORTANCE_CUES = re.compile(r"目标|项目|重要")


def activation(
    value: float | None,
    gamma: float | None = DEFAULT_GAMMA,
    barrier: float | None = DEFAULT_BARRIER,
) -> float:
    """Map a match score in [0, 1] to an activation probability.

    The input is clamped to [0, 1]; ``None`` or NaN yields 0.0. ``gamma`` of
    exactly 0 makes the curve flat (0.5 everywhere); otherwise it is clamped
    to [0.1, 2.0]. The result is rounded to 4 decimal places.
    """
    if value is None:
        return 0.0
    try:
        x = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(x):
        return 0.0

    if gamma is None:
        gamma = DEFAULT_GAMMA
    if barrier is None:
        barrier = DEFAULT_BARRIER
    if gamma == 0:
        return 0.5
    gamma = min(max(gamma, MIN_GAMMA), MAX_GAMMA)

    x = max(0.0, min(1.0, x))
    exponent = -2 * gamma * (x - barrier)
    exponent = max(-700.0, min(700.0, exponent))
    p = 1 / (1 + math.exp(exponent))
    return round(p, 4)


def tokenize(text: str | None) -> list[str]:
    """Lowercase, strip punctuation, split on whitespace, drop 1-char tokens."""
    if not text:
        return []
    normalized = _NON_WORD.sub(" ", text.lower())
    return [w for w in normalized.split() if len(w) > 1]


def keyword_similarity(text1: str | None, text2: str | None) -> float:
    """Jaccard similarity between the token sets of two texts."""
    words1 = set(tokenize(text1))
    words2 = set(tokenize(text2))
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def time_decay(
    last_used: datetime | None,
    half_life: float = DEFAULT_HALF_LIFE_DAYS,
    now: datetime | None = None,
) -> float:
    """Exponential decay ``0.5 ** (days_since_use / half_life)``.

    A missing timestamp counts as just used (1.0).
    """
    if last_used is None:
        return 1.0
    if half_life <= 0:
        return 0.0
    now = now or datetime.now(UTC)
    days = max(0.0, (now - last_used).total_seconds() / 86400)
    return math.pow(0.5, days / half_life)


def type_score(memory_type: MemoryType) -> float:
    """Absolute priority weight of a memory type."""
    return _TYPE_SCORES.get(memory_type, 0.5)


def recall_input(
    query: str,
    record: MemoryRecord,
    *,
    half_life: float = DEFAULT_HALF_LIFE_DAYS,
    platform_weight: float = 1.0,
    include_type: bool = True,
    now: datetime | None = None,
) -> float:
    """Weighted factor sum fed into ``activation`` for recall.

    Weights: keyword overlap 0.35, recall_priority 0.25, time decay 0.2,
    platform weight 0.1 and, for retrieval, normalized type priority 0.1.
    """
    keyword = keyword_similarity(query, record.body.text)
    priority = record.meta.dimensions.recall_priority
    decay = time_decay(record.meta.lifecycle.last_used_at, half_life, now)

    score = keyword * 0.35 + priority * 0.25 + decay * 0.2 + platform_weight * 0.1
    if include_type:
        score += (TYPE_PRIORITY.get(record.body.type, 1.0) / 3) * 0.1
    return score


def recall_score(
    query: str,
    record: MemoryRecord,
    gamma: float = DEFAULT_GAMMA,
    barrier: float = DEFAULT_BARRIER,
    *,
    half_life: float = DEFAULT_HALF_LIFE_DAYS,
    platform_weight: float = 1.0,
    include_type: bool = True,
    now: datetime | None = None,
) -> float:
    """Activation probability that ``record`` should be recalled for ``query``."""
    raw = recall_input(
        query,
        record,
        half_life=half_life,
        platform_weight=platform_weight,
        include_type=include_type,
        now=now,
    )
    return activation(raw, gamma, barrier)


def write_score(
    dimensions: Dimensions | None,
    platform_weight: float = 1.0,
    freshness: float = 0.8,
) -> float:
    """Raw write score: 0.4 confidence + 0.3 importance + 0.2 platform + 0.1 freshness."""
    dims = dimensions or Dimensions(confidence=0.8, importance=0.7)
    return (
        dims.confidence * 0.4
        + dims.importance * 0.3
        + platform_weight * 0.2
        + freshness * 0.1
    )


def passes_type_threshold(probability: float, memory_type: MemoryType) -> bool:
    return probability >= TYPE_THRESHOLDS.get(memory_type, 0.5)


def judge_memory_type(text: str | None, pinned: bool = False) -> MemoryType:
    """Rule-based type classifier; an explicit pin always wins."""
    if pinned:
        return MemoryType.PINNED
    if not text:
        return MemoryType.EPISODIC
    if _PERSONA_CUES.search(text):
        return MemoryType.PERSONA
    if _CORE_CUES.search(text):
        return MemoryType.CORE
    return MemoryType.EPISODIC


@dataclass(frozen=True)
class ContentAssessment:
    confidence: float = 0.8
    importance: float = 0.7
    freshness: float = 1.0


def assess_content(text: str | None) -> ContentAssessment:
    """Heuristic confidence/importance/freshness for a whole response."""
    if not text:
        return ContentAssessment()
    importance = 0.9 if _IMPORTANCE_CUES.search(text) else 0.7
    return ContentAssessment(confidence=0.8, importance=importance, freshness=1.0)


def adjust_params(
    gamma: float,
    barrier: float,
    *,
    useful: bool = False,
    irrelevant: bool = False,
) -> tuple[float, float]:
    """Nudge the curve from user feedback on recalled memories.

    Irrelevant recalls sharpen the curve and raise the barrier; useful ones
    relax both. ``irrelevant`` takes precedence when both are set.
    """
    if irrelevant:
        return min(gamma * 1.1, 1.5), min(barrier + 0.05, 0.9)
    if useful:
        return max(gamma * 0.9, 0.5), max(barrier - 0.05, 0.3)
    return gamma, barrier
