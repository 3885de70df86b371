"""Exceptions raised by the memory engine."""

from engram.config.models import ConfigError


class EngineError(Exception):
    """Base class for memory engine failures."""

    pass


class NotConfiguredError(EngineError):
    """A required collaborator (platform adapter, store) is missing."""

    pass


class StorageError(EngineError):
    """Persisting or reading a record failed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


__all__ = [
    "ConfigError",
    "EngineError",
    "NotConfiguredError",
    "StorageError",
]
