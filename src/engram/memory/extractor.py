"""Rule-based memory extraction from model responses.

Candidates are pulled out of response text by a declarative table of
``ExtractionRule``s, scored, filtered and deduplicated. Nothing here touches
storage; ``create_memory_entry`` turns a surviving candidate into a record.
"""

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from engram.config.models import DEFAULT_TTL_SECONDS
from engram.memory.types import (
    Dimensions,
    ExtractionCandidate,
    Lifecycle,
    MemoryBody,
    MemoryMeta,
    MemoryRecord,
    MemoryType,
    Relations,
    generate_memory_id,
)

if TYPE_CHECKING:
    from engram.adapters.base import PlatformAdapter

logger = logging.getLogger(__name__)

MIN_CANDIDATE_SCORE = 0.4


@dataclass(frozen=True)
class ExtractionRule:
    """One extraction pattern.

    ``key_info`` is built from the capture groups joined with a space.
    """

    pattern: re.Pattern[str]
    type: MemoryType
    dimensions: Dimensions
    first_only: bool = False


_PERSONA_DIMS = Dimensions(confidence=0.8, importance=0.7, time_decay=0.9, recall_priority=1.0)
_CORE_DIMS = Dimensions(confidence=0.75, importance=0.85, time_decay=0.8, recall_priority=0.9)
_EPISODIC_DIMS = Dimensions(confidence=0.6, importance=0.5, time_decay=0.5, recall_priority=0.5)


def _rules(patterns: list[str], memory_type: MemoryType, dims: Dimensions) -> list[ExtractionRule]:
    return [ExtractionRule(re.compile(p), memory_type, dims) for p in patterns]


EXTRACTION_RULES: list[ExtractionRule] = [
    *_rules(
        [
            r"我喜欢(.+?)[。，]",
            r"我偏好(.+?)[。，]",
            r"我通常(.+?)[。，]",
            r"我喜欢(.+?)、(.+?)",
        ],
        MemoryType.PERSONA,
        _PERSONA_DIMS,
    ),
    ExtractionRule(
        re.compile(r"我的(.+?)是(.+?)[，。]"),
        MemoryType.PERSONA,
        _PERSONA_DIMS,
        first_only=True,
    ),
    *_rules(
        [
            r"我正在(.+?)[做进行]",
            r"我的目标是(.+?)[。，]",
            r"我需要(.+?)[。，]",
            r"当前在(.+?)阶段",
            r"项目(.+?)是",
        ],
        MemoryType.CORE,
        _CORE_DIMS,
    ),
    *_rules(
        [
            r"(?:上次|之前|刚才|今天|昨天)(.+?)[，。]",
            r"在那(.+?)时候",
            r"关于(.+?)，",
        ],
        MemoryType.EPISODIC,
        _EPISODIC_DIMS,
    ),
]

_TYPE_WEIGHTS: dict[MemoryType, float] = {
    MemoryType.PERSONA: 0.9,
    MemoryType.CORE: 0.85,
    MemoryType.EPISODIC: 0.7,
}

_SUBJECT_PRONOUN = re.compile(r"我|我们|本人")
_WHITESPACE = re.compile(r"\s")
_LATIN = re.compile(r"[a-z]")
_CJK = re.compile(r"[一-鿿]")

DOMAIN_TAGS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"技术|编程|代码|开发"), "tech"),
    (re.compile(r"设计|ui|ux|视觉", re.I), "design"),
    (re.compile(r"写作|文章|内容"), "writing"),
    (re.compile(r"商务|商业|营销"), "business"),
    (re.compile(r"个人|生活|习惯"), "personal"),
]


def extract_candidates(
    text: str, rules: list[ExtractionRule] | None = None
) -> list[ExtractionCandidate]:
    """Apply every rule to ``text``; no scoring or filtering."""
    candidates: list[ExtractionCandidate] = []
    if not text:
        return candidates

    for rule in rules if rules is not None else EXTRACTION_RULES:
        if rule.first_only:
            first = rule.pattern.search(text)
            matches = [first] if first else []
        else:
            matches = list(rule.pattern.finditer(text))
        for match in matches:
            candidates.append(
                ExtractionCandidate(
                    type=rule.type,
                    text=match.group(0),
                    key_info=" ".join(g for g in match.groups() if g),
                    dimensions=Dimensions(**rule.dimensions.to_dict()),
                )
            )
    return candidates


def score_extraction(candidate: ExtractionCandidate, full_text: str) -> float:
    """Heuristic quality score for a candidate, capped at 1."""
    score = 0.5

    length = len(candidate.text)
    if 10 <= length <= 100:
        score += 0.2
    elif length > 100:
        score -= 0.1

    if _SUBJECT_PRONOUN.search(candidate.text):
        score += 0.15

    score *= _TYPE_WEIGHTS.get(candidate.type, 0.5)

    # Repeated spans are likely echoes of the prompt
    if candidate.text and full_text.count(candidate.text) > 1:
        score *= 0.8

    return min(score, 1.0)


def deduplicate(candidates: list[ExtractionCandidate]) -> list[ExtractionCandidate]:
    """Drop candidates whose text matches an earlier one ignoring case and whitespace."""
    seen: set[str] = set()
    result: list[ExtractionCandidate] = []
    for c in candidates:
        normalized = _WHITESPACE.sub("", c.text.lower())
        if normalized in seen:
            continue
        seen.add(normalized)
        result.append(c)
    return result


def extract_memory(
    response: Any,
    adapter: "PlatformAdapter | None" = None,
    min_score: float = MIN_CANDIDATE_SCORE,
) -> list[ExtractionCandidate]:
    """Extract scored, deduplicated candidates from a model response.

    ``response`` may be plain text or a platform payload, in which case the
    adapter parses it. Malformed input yields an empty list.
    """
    if response is None:
        return []
    if isinstance(response, str):
        text = response
    elif adapter is not None:
        try:
            text = adapter.parse_response(response)
        except (TypeError, ValueError, KeyError, IndexError) as e:
            logger.warning("response_parse_failed", extra={"error.message": str(e)})
            return []
    else:
        text = str(response)

    candidates = extract_candidates(text)
    for c in candidates:
        c.score = score_extraction(c, text)

    kept = [c for c in candidates if c.score >= min_score]
    result = deduplicate(kept)
    logger.debug(
        "candidates_extracted",
        extra={"found": len(candidates), "kept": len(result)},
    )
    return result


def infer_tags(text: str) -> list[str]:
    """Language and domain tags; ``general`` when nothing matches."""
    tags: list[str] = []
    if _LATIN.search(text):
        tags.append("english")
    if _CJK.search(text):
        tags.append("chinese")
    for pattern, tag in DOMAIN_TAGS:
        if pattern.search(text):
            tags.append(tag)
    return tags or ["general"]


def create_memory_entry(
    candidate: ExtractionCandidate,
    *,
    platform: str = "unknown",
    namespace: str = "default",
    conversation_id: str | None = None,
    turn_id: str | None = None,
    ttl: int = DEFAULT_TTL_SECONDS,
    now: datetime | None = None,
) -> MemoryRecord:
    """Build a fresh active record from a candidate."""
    now = now or datetime.now(UTC)
    return MemoryRecord(
        meta=MemoryMeta(
            id=generate_memory_id(),
            platform=platform,
            namespace=namespace,
            tags=infer_tags(candidate.text),
            dimensions=Dimensions(**candidate.dimensions.to_dict()),
            relations=Relations(conversation_id=conversation_id, turn_id=turn_id),
            lifecycle=Lifecycle(
                created_at=now,
                updated_at=now,
                last_used_at=now,
                expires_at=now + timedelta(seconds=ttl),
                ttl=ttl,
            ),
        ),
        body=MemoryBody(
            type=candidate.type,
            text=candidate.text,
            raw_content=candidate.raw_content,
        ),
    )
