"""Abstract platform adapter interface.

An adapter knows one chat platform's payload shapes: how to read the user
input out of a request, the assistant text out of a response, and how to
place memory context back into a request.
"""

import copy
import json
import re
from abc import ABC, abstractmethod
from typing import Any

Payload = str | dict[str, Any]
ResponsePath = tuple[str | int, ...]


def dig(data: Any, *path: str | int) -> Any:
    """Follow dict keys / list indexes, returning None on any miss."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def to_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, default=str)


def join_text_parts(content: list[Any]) -> str:
    """Concatenate the ``text`` of every ``{"type": "text"}`` part."""
    return "".join(
        part.get("text", "")
        for part in content
        if isinstance(part, dict) and part.get("type") == "text"
    )


class PlatformAdapter(ABC):
    """Base class for platform adapters.

    Subclasses set ``request_patterns`` (URL regexes used for detection)
    and ``response_paths`` (where assistant text lives in a response,
    tried in order), and override ``inject`` to change prompt placement.
    """

    platform_weight: float = 1.0
    request_patterns: tuple[re.Pattern[str], ...] = ()
    response_paths: tuple[ResponsePath, ...] = (
        ("choices", 0, "message", "content"),
        ("content", 0, "text"),
        ("delta", "content"),
    )

    @property
    @abstractmethod
    def name(self) -> str:
        """Platform identifier (e.g., 'deepseek', 'claude')."""
        ...

    def _content_text(self, content: Any) -> str:
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return join_text_parts(content)
        return to_json(content)

    def _input_message(self, messages: list[Any]) -> dict[str, Any] | None:
        last = messages[-1] if messages else None
        return last if isinstance(last, dict) else None

    def parse_request(self, request: Payload) -> str:
        """Extract the user input from a request payload."""
        if isinstance(request, str):
            return request
        messages = request.get("messages") if isinstance(request, dict) else None
        if isinstance(messages, list):
            message = self._input_message(messages)
            if message and message.get("content"):
                return self._content_text(message["content"])
        return to_json(request)

    def parse_response(self, response: Payload) -> str:
        """Extract the assistant text from a response payload."""
        if isinstance(response, str):
            return response
        for path in self.response_paths:
            value = dig(response, *path)
            if isinstance(value, str) and value:
                return value
        return to_json(response)

    def inject(self, user_input: str, context: str) -> str:
        """Place memory context ahead of the user input."""
        return f"{context}\n\n---\n\n{user_input}"

    def inject_to_request(self, request: Payload, context: str) -> Payload:
        """Return a copy of ``request`` with the last user message injected.

        Requests without a trailing user message come back unchanged (the
        same object).
        """
        if not isinstance(request, dict):
            return request
        messages = request.get("messages")
        if not isinstance(messages, list) or not messages:
            return request
        last = messages[-1]
        if not isinstance(last, dict) or last.get("role") != "user":
            return request

        injected = self.inject(self.parse_request(request), context)
        new_request = copy.deepcopy(request)
        new_request["messages"][-1]["content"] = injected
        return new_request

    def matches_request(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self.request_patterns)

    def get_config(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "platform_weight": self.platform_weight,
            "request_patterns": [p.pattern for p in self.request_patterns],
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
