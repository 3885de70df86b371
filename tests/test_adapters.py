"""Tests for platform adapters and the adapter registry."""

import pytest

from engram.adapters import (
    ALL_ADAPTERS,
    AdapterRegistry,
    ChatGPTAdapter,
    ClaudeAdapter,
    CursorAdapter,
    DeepSeekAdapter,
    GeminiAdapter,
    PlatformAdapter,
    get_adapter,
)
from engram.adapters.base import dig


class TestDig:
    def test_nested(self):
        data = {"a": [{"b": "x"}]}
        assert dig(data, "a", 0, "b") == "x"
        assert dig(data, "a", -1, "b") == "x"

    def test_miss(self):
        assert dig({"a": []}, "a", 0) is None
        assert dig({"a": "str"}, "a", "b") is None
        assert dig(None, "a") is None


class TestParseRequest:
    """Tests for user input extraction."""

    def test_chat_messages(self):
        request = {
            "messages": [
                {"role": "system", "content": "be brief"},
                {"role": "user", "content": "hello"},
            ]
        }
        assert DeepSeekAdapter().parse_request(request) == "hello"

    def test_content_parts(self):
        request = {
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "look "},
                        {"type": "image", "source": {}},
                        {"type": "text", "text": "here"},
                    ],
                }
            ]
        }
        assert ClaudeAdapter().parse_request(request) == "look here"

    def test_string_request(self):
        assert ChatGPTAdapter().parse_request("plain") == "plain"

    def test_cursor_uses_last_user_message(self):
        request = {
            "messages": [
                {"role": "user", "content": "write a parser"},
                {"role": "assistant", "content": "ok"},
            ]
        }
        assert CursorAdapter().parse_request(request) == "write a parser"

    def test_gemini_contents(self):
        request = {"contents": [{"role": "user", "parts": [{"text": "a"}, {"text": "b"}]}]}
        assert GeminiAdapter().parse_request(request) == "ab"


class TestParseResponse:
    """Tests for assistant text extraction."""

    def test_openai_shape(self):
        response = {"choices": [{"message": {"content": "answer"}}]}
        assert ChatGPTAdapter().parse_response(response) == "answer"

    def test_openai_stream_delta(self):
        response = {"choices": [{"delta": {"content": "chunk"}}]}
        assert DeepSeekAdapter().parse_response(response) == "chunk"

    def test_claude_shape(self):
        assert ClaudeAdapter().parse_response({"content": [{"text": "hi"}]}) == "hi"
        assert ClaudeAdapter().parse_response({"delta": {"text": "hi"}}) == "hi"

    def test_gemini_shape(self):
        response = {"candidates": [{"content": {"parts": [{"text": "gem"}]}}]}
        assert GeminiAdapter().parse_response(response) == "gem"

    def test_unknown_shape_serialized(self):
        assert ChatGPTAdapter().parse_response({"other": 1}) == '{"other": 1}'


class TestInjectToRequest:
    """Tests for request rewriting."""

    def test_replaces_last_user_message(self):
        request = {"messages": [{"role": "user", "content": "hello"}]}

        injected = ChatGPTAdapter().inject_to_request(request, "CTX")

        assert injected["messages"][-1]["content"] == "CTX\n\n---\n\nhello"
        # Input untouched
        assert request["messages"][-1]["content"] == "hello"

    def test_no_trailing_user_message(self):
        request = {"messages": [{"role": "assistant", "content": "hi"}]}
        assert ChatGPTAdapter().inject_to_request(request, "CTX") is request

    def test_non_dict_request(self):
        assert ChatGPTAdapter().inject_to_request("raw", "CTX") == "raw"

    def test_gemini_parts_replaced(self):
        request = {"contents": [{"role": "user", "parts": [{"text": "q"}]}]}

        injected = GeminiAdapter().inject_to_request(request, "CTX")

        assert injected["contents"][-1]["parts"] == [{"text": "CTX\n\n---\n\nq"}]
        assert request["contents"][-1]["parts"] == [{"text": "q"}]

    def test_deepseek_wraps_input(self):
        text = DeepSeekAdapter().inject("q", "CTX")
        assert text.startswith("CTX\n\n---\n\n用户：q")


class TestGetAdapter:
    """Tests for name and alias resolution."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("deepseek", DeepSeekAdapter),
            ("Claude", ClaudeAdapter),
            ("gpt-4", ChatGPTAdapter),
            ("claude-3-opus", ClaudeAdapter),
            ("gemini", GeminiAdapter),
            ("something-else", DeepSeekAdapter),
            (None, DeepSeekAdapter),
        ],
    )
    def test_resolution(self, name, expected):
        assert isinstance(get_adapter(name), expected)

    def test_returns_fresh_instance(self):
        assert get_adapter("claude") is not get_adapter("claude")

    def test_platform_weights(self):
        assert GeminiAdapter().platform_weight == 0.95
        assert all(cls().platform_weight > 0 for cls in ALL_ADAPTERS)


class TestAdapterRegistry:
    """Tests for AdapterRegistry."""

    def test_with_defaults(self):
        registry = AdapterRegistry.with_defaults()

        assert len(registry) == len(ALL_ADAPTERS)
        assert "gemini" in registry
        assert set(registry.names) == {cls().name for cls in ALL_ADAPTERS}

    def test_register_duplicate(self):
        registry = AdapterRegistry()
        registry.register(ClaudeAdapter())

        with pytest.raises(ValueError, match="already registered"):
            registry.register(ClaudeAdapter())

    def test_get_missing(self):
        with pytest.raises(KeyError, match="not found"):
            AdapterRegistry().get("claude")

    def test_unregister(self):
        registry = AdapterRegistry()
        registry.register(ClaudeAdapter())
        registry.unregister("claude")
        assert not registry.has("claude")

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://api.openai.com/v1/chat/completions", "chatgpt"),
            ("https://api.anthropic.com/v1/messages", "claude"),
            ("https://generativelanguage.googleapis.com/v1beta/models/x:generate", "gemini"),
            ("https://api.cursor.sh/v1", "cursor"),
        ],
    )
    def test_detect(self, url, expected):
        adapter = AdapterRegistry.with_defaults().detect(url)
        assert adapter is not None
        assert adapter.name == expected

    def test_detect_unknown(self):
        assert AdapterRegistry.with_defaults().detect("https://example.com") is None

    def test_custom_adapter(self):
        class EchoAdapter(PlatformAdapter):
            name = "echo"

        registry = AdapterRegistry()
        registry.register(EchoAdapter())

        assert registry.get("echo").inject("x", "CTX") == "CTX\n\n---\n\nx"
        assert [a.name for a in registry] == ["echo"]
