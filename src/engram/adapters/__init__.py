"""Platform adapters for chat APIs and coding assistants."""

from engram.adapters.base import PlatformAdapter
from engram.adapters.platforms import (
    ALL_ADAPTERS,
    ChatGPTAdapter,
    ClaudeAdapter,
    ClineAdapter,
    CursorAdapter,
    DeepSeekAdapter,
    GeminiAdapter,
    WindsurfAdapter,
)
from engram.adapters.registry import MODEL_ALIASES, AdapterRegistry, get_adapter

__all__ = [
    "ALL_ADAPTERS",
    "AdapterRegistry",
    "ChatGPTAdapter",
    "ClaudeAdapter",
    "ClineAdapter",
    "CursorAdapter",
    "DeepSeekAdapter",
    "GeminiAdapter",
    "MODEL_ALIASES",
    "PlatformAdapter",
    "WindsurfAdapter",
    "get_adapter",
]
