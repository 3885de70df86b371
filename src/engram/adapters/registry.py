"""Adapter lookup by platform name, model alias or request URL."""

import logging
from collections.abc import Iterator

from engram.adapters.base import PlatformAdapter
from engram.adapters.platforms import ALL_ADAPTERS, DeepSeekAdapter

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM = "deepseek"

# Model names that resolve to a platform adapter
MODEL_ALIASES: dict[str, str] = {
    "gpt-4": "chatgpt",
    "gpt-3.5-turbo": "chatgpt",
    "claude-3-opus": "claude",
    "claude-3-sonnet": "claude",
}

_ADAPTER_CLASSES: dict[str, type[PlatformAdapter]] = {
    cls.name: cls  # type: ignore[misc]
    for cls in ALL_ADAPTERS
}


def get_adapter(name: str | None) -> PlatformAdapter:
    """Resolve a platform or model name to a fresh adapter.

    Unknown names fall back to the DeepSeek adapter.
    """
    key = (name or "").strip().lower()
    key = MODEL_ALIASES.get(key, key)
    adapter_cls = _ADAPTER_CLASSES.get(key)
    if adapter_cls is None:
        if key:
            logger.debug("unknown_platform_fallback", extra={"platform": key})
        return DeepSeekAdapter()
    return adapter_cls()


class AdapterRegistry:
    """Registry for platform adapter instances."""

    def __init__(self) -> None:
        self._adapters: dict[str, PlatformAdapter] = {}

    @classmethod
    def with_defaults(cls) -> "AdapterRegistry":
        """Registry holding one instance of every built-in adapter."""
        registry = cls()
        for adapter_cls in ALL_ADAPTERS:
            registry.register(adapter_cls())
        return registry

    def register(self, adapter: PlatformAdapter) -> None:
        """Register an adapter.

        Raises:
            ValueError: If an adapter with the same name is already registered.
        """
        if adapter.name in self._adapters:
            raise ValueError(f"Adapter '{adapter.name}' already registered")
        self._adapters[adapter.name] = adapter
        logger.debug("adapter_registered", extra={"platform": adapter.name})

    def unregister(self, name: str) -> None:
        self._adapters.pop(name, None)

    def get(self, name: str) -> PlatformAdapter:
        """Get an adapter by name.

        Raises:
            KeyError: If no adapter is registered under ``name``.
        """
        if name not in self._adapters:
            raise KeyError(f"Adapter '{name}' not found")
        return self._adapters[name]

    def has(self, name: str) -> bool:
        return name in self._adapters

    def detect(self, url: str) -> PlatformAdapter | None:
        """First registered adapter whose request patterns match ``url``."""
        for adapter in self._adapters.values():
            if adapter.matches_request(url):
                return adapter
        return None

    @property
    def names(self) -> list[str]:
        return list(self._adapters.keys())

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, name: str) -> bool:
        return name in self._adapters

    def __iter__(self) -> Iterator[PlatformAdapter]:
        return iter(self._adapters.values())
