"""Concrete adapters for supported chat platforms and coding assistants."""

import copy
import re
from typing import Any

from engram.adapters.base import Payload, PlatformAdapter, dig, to_json


def _patterns(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p) for p in patterns)


_CHOICE_MESSAGE = ("choices", 0, "message", "content")
_CHOICE_DELTA = ("choices", 0, "delta", "content")


class _JsonContentAdapter(PlatformAdapter):
    """Non-string message content is passed through as JSON."""

    def _content_text(self, content: Any) -> str:
        return content if isinstance(content, str) else to_json(content)


class DeepSeekAdapter(PlatformAdapter):
    name = "deepseek"
    request_patterns = _patterns(
        r"api\.deepseek\.com/v0/chat",
        r"deepseek\.com/chat",
        r"api/chat",
    )
    response_paths = (_CHOICE_MESSAGE, _CHOICE_DELTA)

    def inject(self, user_input: str, context: str) -> str:
        return (
            f"{context}\n\n---\n\n用户：{user_input}\n\n"
            "请根据以上记忆信息更好地回答用户问题。如果记忆与当前问题无关，请忽略记忆。"
        )


class ChatGPTAdapter(_JsonContentAdapter):
    name = "chatgpt"
    request_patterns = _patterns(
        r"api\.openai\.com/v1/chat/completions",
        r"chatgpt\.com/api/v0/chat",
    )
    response_paths = (_CHOICE_MESSAGE, _CHOICE_DELTA)


class ClaudeAdapter(PlatformAdapter):
    name = "claude"
    request_patterns = _patterns(
        r"api\.anthropic\.com/v1/messages",
        r"claude\.ai/api/chat/complete",
    )
    response_paths = (("content", 0, "text"), ("delta", "text"))


class GeminiAdapter(PlatformAdapter):
    """Gemini uses ``contents[].parts[]`` instead of chat messages."""

    name = "gemini"
    platform_weight = 0.95
    request_patterns = _patterns(
        r"generativelanguage\.googleapis\.com/v1beta/models",
        r"gemini\.googleapis\.com",
    )
    response_paths = (("candidates", 0, "content", "parts", 0, "text"),)

    def parse_request(self, request: Payload) -> str:
        if isinstance(request, str):
            return request
        parts = dig(request, "contents", -1, "parts")
        if isinstance(parts, list):
            return "".join(
                p.get("text") or "" for p in parts if isinstance(p, dict)
            )
        return to_json(request)

    def inject_to_request(self, request: Payload, context: str) -> Payload:
        if not isinstance(request, dict):
            return request
        last = dig(request, "contents", -1)
        if not isinstance(last, dict) or last.get("role", "user") != "user":
            return request

        injected = self.inject(self.parse_request(request), context)
        new_request = copy.deepcopy(request)
        new_request["contents"][-1]["parts"] = [{"text": injected}]
        return new_request


class CursorAdapter(_JsonContentAdapter):
    name = "cursor"
    request_patterns = _patterns(r"cursor\.sh/api/chat", r"api\.cursor\.sh")
    response_paths = (_CHOICE_MESSAGE,)

    def _input_message(self, messages: list[Any]) -> dict[str, Any] | None:
        users = [m for m in messages if isinstance(m, dict) and m.get("role") == "user"]
        return users[-1] if users else None

    def inject(self, user_input: str, context: str) -> str:
        return (
            f"{context}\n\n---\n\nCurrent task:\n{user_input}\n\n"
            "Please consider the above memory context when writing code."
        )


class WindsurfAdapter(_JsonContentAdapter):
    name = "windsurf"
    request_patterns = _patterns(r"windsurf\.sh/api", r"api\.windsurf\.sh")
    response_paths = (_CHOICE_MESSAGE,)


class ClineAdapter(_JsonContentAdapter):
    name = "cline"
    request_patterns = _patterns(r"cline\.dev/api", r"api\.cline\.dev")
    response_paths = (_CHOICE_MESSAGE,)


ALL_ADAPTERS: tuple[type[PlatformAdapter], ...] = (
    DeepSeekAdapter,
    ChatGPTAdapter,
    ClaudeAdapter,
    GeminiAdapter,
    CursorAdapter,
    WindsurfAdapter,
    ClineAdapter,
)
