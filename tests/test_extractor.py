"""Tests for rule-based memory extraction."""

from datetime import timedelta

import pytest

from engram.adapters import ChatGPTAdapter, ClaudeAdapter
from engram.memory.extractor import (
    EXTRACTION_RULES,
    create_memory_entry,
    deduplicate,
    extract_candidates,
    extract_memory,
    infer_tags,
    score_extraction,
)
from engram.memory.types import (
    Dimensions,
    ExtractionCandidate,
    MemoryStatus,
    MemoryType,
    Origin,
)


class TestExtractCandidates:
    """Tests for the extraction rule table."""

    def test_persona_rule(self):
        candidates = extract_candidates("我喜欢简洁的代码风格。")

        persona = [c for c in candidates if c.type == MemoryType.PERSONA]
        assert persona
        assert persona[0].text == "我喜欢简洁的代码风格。"
        assert persona[0].key_info == "简洁的代码风格"
        assert persona[0].dimensions.recall_priority == 1.0

    def test_core_rule(self):
        candidates = extract_candidates("我的目标是完成毕业设计。")

        core = [c for c in candidates if c.type == MemoryType.CORE]
        assert [c.key_info for c in core] == ["完成毕业设计"]
        assert core[0].dimensions.importance == 0.85

    def test_episodic_rule(self):
        candidates = extract_candidates("昨天讨论了数据库迁移，")

        assert [c.type for c in candidates] == [MemoryType.EPISODIC]

    def test_first_only_rule(self):
        """The 我的…是… rule contributes a single match per text."""
        text = "我的语言是中文，我的框架是Django，"
        persona = [c for c in extract_candidates(text) if c.type == MemoryType.PERSONA]

        assert len(persona) == 1
        assert persona[0].key_info == "语言 中文"

    def test_no_match(self):
        assert extract_candidates("Nothing to remember here") == []
        assert extract_candidates("") == []

    def test_custom_rules(self):
        rules = [r for r in EXTRACTION_RULES if r.type == MemoryType.CORE]
        assert extract_candidates("我喜欢猫。", rules) == []


class TestScoreExtraction:
    """Tests for candidate quality scoring."""

    def test_persona_with_pronoun(self):
        candidate = ExtractionCandidate(type=MemoryType.PERSONA, text="我喜欢简洁的代码风格。")
        # (0.5 + 0.2 + 0.15) * 0.9
        assert score_extraction(candidate, candidate.text) == pytest.approx(0.765)

    def test_long_span_penalized(self):
        candidate = ExtractionCandidate(type=MemoryType.EPISODIC, text="x" * 120)
        assert score_extraction(candidate, candidate.text) == pytest.approx(0.4 * 0.7)

    def test_repeated_span_penalized(self):
        candidate = ExtractionCandidate(type=MemoryType.CORE, text="我需要写测试。")
        single = score_extraction(candidate, "我需要写测试。")
        repeated = score_extraction(candidate, "我需要写测试。我需要写测试。")
        assert repeated == pytest.approx(single * 0.8)


class TestDeduplicate:
    def test_ignores_case_and_whitespace(self):
        candidates = [
            ExtractionCandidate(type=MemoryType.PERSONA, text="I like Python"),
            ExtractionCandidate(type=MemoryType.PERSONA, text="i  like python"),
            ExtractionCandidate(type=MemoryType.CORE, text="Something else"),
        ]

        result = deduplicate(candidates)

        assert [c.text for c in result] == ["I like Python", "Something else"]


class TestExtractMemory:
    """Tests for the extraction entry point."""

    def test_plain_text(self):
        result = extract_memory("我喜欢简洁的代码风格。我需要写更多测试。")

        types = {c.type for c in result}
        assert MemoryType.PERSONA in types
        assert MemoryType.CORE in types
        assert all(c.score >= 0.4 for c in result)

    def test_adapter_payload(self):
        response = {"choices": [{"message": {"content": "我喜欢简洁的代码风格。"}}]}

        result = extract_memory(response, ChatGPTAdapter())

        assert [c.type for c in result] == [MemoryType.PERSONA]

    def test_claude_payload(self):
        response = {"content": [{"type": "text", "text": "我需要完成插件开发。"}]}

        result = extract_memory(response, ClaudeAdapter())

        assert [c.type for c in result] == [MemoryType.CORE]

    def test_none_returns_empty(self):
        assert extract_memory(None) == []

    def test_malformed_payload_returns_empty(self):
        assert extract_memory({"unexpected": object()}, ChatGPTAdapter()) == []


class TestCreateMemoryEntry:
    """Tests for turning candidates into records."""

    def test_lifecycle(self, now):
        candidate = ExtractionCandidate(
            type=MemoryType.CORE,
            text="我的目标是完成毕业设计。",
            dimensions=Dimensions(confidence=0.75, importance=0.85),
        )

        record = create_memory_entry(candidate, platform="claude", ttl=3600, now=now)

        assert record.id.startswith("mem_")
        assert record.meta.platform == "claude"
        assert record.status == MemoryStatus.ACTIVE
        assert record.meta.security.origin == Origin.AUTO
        lifecycle = record.meta.lifecycle
        assert lifecycle.created_at == lifecycle.updated_at == lifecycle.last_used_at == now
        assert lifecycle.expires_at == now + timedelta(seconds=3600)
        assert record.meta.dimensions.importance == 0.85

    def test_default_ttl_is_thirty_days(self, now):
        candidate = ExtractionCandidate(type=MemoryType.EPISODIC, text="今天很忙")
        record = create_memory_entry(candidate, now=now)
        assert record.meta.lifecycle.expires_at == now + timedelta(days=30)

    def test_ids_unique(self):
        candidate = ExtractionCandidate(type=MemoryType.EPISODIC, text="今天很忙")
        ids = {create_memory_entry(candidate).id for _ in range(20)}
        assert len(ids) == 20


class TestInferTags:
    def test_language_and_domain(self):
        tags = infer_tags("我在写 python 代码")
        assert "english" in tags
        assert "chinese" in tags
        assert "tech" in tags

    def test_design_case_insensitive(self):
        assert "design" in infer_tags("UI 改版")

    def test_fallback(self):
        assert infer_tags("123") == ["general"]
