"""Protocol definitions for memory storage.

Both FileMemoryStore and TieredMemoryStore satisfy MemoryStore, so the
engine can use either and tests can substitute their own.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from engram.memory.types import MemoryRecord, MemoryStatus, MemoryType


@runtime_checkable
class MemoryStore(Protocol):
    """Protocol for memory record storage."""

    def scope_lock(self, platform: str, namespace: str) -> asyncio.Lock:
        """Lock serializing mutations within one {platform, namespace} scope."""
        ...

    async def add(self, record: MemoryRecord) -> str:
        """Persist a record and return its id."""
        ...

    async def get(self, memory_id: str) -> MemoryRecord | None: ...

    async def update(self, record: MemoryRecord) -> bool: ...

    async def delete(self, memory_id: str) -> bool:
        """Tombstone a record."""
        ...

    async def query(
        self,
        status: MemoryStatus | None = None,
        platform: str | None = None,
        namespace: str | None = None,
        type: MemoryType | None = None,
    ) -> list[MemoryRecord]: ...

    async def find_similar(self, record: MemoryRecord) -> MemoryRecord | None: ...

    async def mark_superseded(self, memory_id: str, superseded_by_id: str) -> bool: ...

    async def get_supersession_chain(self, memory_id: str) -> list[MemoryRecord]: ...

    async def clear(
        self, namespace: str | None = None, platform: str | None = None
    ) -> int: ...
