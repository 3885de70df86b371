"""Filesystem-based memory store.

One pretty-printed JSON document per record, laid out as
``{base}/{namespace}/{platform}/{id}.json``. Writes are atomic (temp file
plus rename). Deletion is a tombstone (status ``deleted``); ``purge``
removes the file.
"""

from __future__ import annotations

import asyncio
import glob
import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from engram.config.paths import get_memories_path
from engram.memory.errors import StorageError
from engram.memory.jsonl import read_json, write_json_atomic
from engram.memory.scorer import keyword_similarity
from engram.memory.types import (
    MemoryRecord,
    MemoryStatus,
    MemoryType,
    generate_memory_id,
)

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.8

_UNSAFE_COMPONENT = re.compile(r"[\\/:]|^\.+$")


def _safe_component(value: str) -> str:
    return _UNSAFE_COMPONENT.sub("_", value) or "_"


def _sort_key(record: MemoryRecord) -> datetime:
    return record.meta.lifecycle.created_at or datetime.min.replace(tzinfo=UTC)


class FileMemoryStore:
    """Filesystem-based store for memory records.

    Files on disk are the source of truth; an id -> path index avoids
    directory scans for point lookups. Mutations within one
    {platform, namespace} scope can be serialized with ``scope_lock``.
    """

    def __init__(self, base_path: Path | None = None) -> None:
        self.base_path = Path(base_path) if base_path else get_memories_path()
        self._paths: dict[str, Path] = {}
        self._scope_locks: dict[tuple[str, str], asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Paths and locking
    # ------------------------------------------------------------------

    def path_for(self, record: MemoryRecord) -> Path:
        return (
            self.base_path
            / _safe_component(record.meta.namespace)
            / _safe_component(record.meta.platform)
            / f"{_safe_component(record.id)}.json"
        )

    def scope_lock(self, platform: str, namespace: str) -> asyncio.Lock:
        """Lock serializing read-modify-write cycles within one scope."""
        key = (platform, namespace)
        lock = self._scope_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._scope_locks[key] = lock
        return lock

    def _iter_paths(
        self, platform: str | None = None, namespace: str | None = None
    ) -> list[Path]:
        if not self.base_path.exists():
            return []
        ns = glob.escape(_safe_component(namespace)) if namespace is not None else "*"
        pf = glob.escape(_safe_component(platform)) if platform is not None else "*"
        return sorted(self.base_path.glob(f"{ns}/{pf}/*.json"))

    async def _read(self, path: Path) -> MemoryRecord | None:
        try:
            return MemoryRecord.from_dict(await read_json(path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(
                "memory_file_skipped",
                extra={"file.name": path.name, "error.message": str(e)},
            )
            return None

    async def _write(self, record: MemoryRecord) -> Path:
        path = self.path_for(record)
        try:
            await write_json_atomic(path, record.to_dict())
        except OSError as e:
            raise StorageError(f"Failed to write memory {record.id}: {e}", str(path)) from e

        previous = self._paths.get(record.id)
        if previous is not None and previous != path:
            # Scope changed; drop the stale document
            previous.unlink(missing_ok=True)
        self._paths[record.id] = path
        return path

    async def _locate(self, memory_id: str) -> Path | None:
        path = self._paths.get(memory_id)
        if path is not None and path.exists():
            return path
        if not self.base_path.exists():
            return None
        for candidate in self.base_path.glob(
            f"*/*/{glob.escape(_safe_component(memory_id))}.json"
        ):
            self._paths[memory_id] = candidate
            return candidate
        return None

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def add(self, record: MemoryRecord) -> str:
        """Persist a record, generating an id when it has none."""
        if not record.meta.id:
            record.meta.id = generate_memory_id()
        await self._write(record)
        logger.debug(
            "memory_added",
            extra={
                "memory_id": record.id,
                "memory_type": record.type.value,
                "platform": record.meta.platform,
                "namespace": record.meta.namespace,
            },
        )
        return record.id

    async def get(self, memory_id: str) -> MemoryRecord | None:
        path = await self._locate(memory_id)
        if path is None:
            return None
        return await self._read(path)

    async def update(self, record: MemoryRecord) -> bool:
        """Overwrite an existing record in full."""
        if await self._locate(record.id) is None:
            return False
        await self._write(record)
        return True

    async def delete(self, memory_id: str) -> bool:
        """Tombstone a record by setting its status to ``deleted``."""
        record = await self.get(memory_id)
        if record is None or record.status == MemoryStatus.DELETED:
            return False
        record.meta.lifecycle.status = MemoryStatus.DELETED
        record.meta.lifecycle.updated_at = datetime.now(UTC)
        await self._write(record)
        logger.info("memory_deleted", extra={"memory_id": memory_id})
        return True

    async def purge(self, memory_id: str) -> bool:
        """Physically remove a record's document."""
        path = await self._locate(memory_id)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to purge memory {memory_id}: {e}", str(path)) from e
        self._paths.pop(memory_id, None)
        return True

    async def query(
        self,
        status: MemoryStatus | None = None,
        platform: str | None = None,
        namespace: str | None = None,
        type: MemoryType | None = None,
    ) -> list[MemoryRecord]:
        """Return matching records, newest first. Unreadable files are skipped."""
        results: list[MemoryRecord] = []
        for path in self._iter_paths(platform, namespace):
            record = await self._read(path)
            if record is None:
                continue
            self._paths[record.id] = path
            if status is not None and record.status != status:
                continue
            if not record.in_scope(platform, namespace):
                continue
            if type is not None and record.type != type:
                continue
            results.append(record)

        results.sort(key=_sort_key, reverse=True)
        return results

    async def count(
        self,
        status: MemoryStatus | None = None,
        platform: str | None = None,
        namespace: str | None = None,
        type: MemoryType | None = None,
    ) -> int:
        return len(await self.query(status, platform, namespace, type))

    async def find_similar(
        self, record: MemoryRecord, threshold: float = SIMILARITY_THRESHOLD
    ) -> MemoryRecord | None:
        """First other active record in the same scope with similarity above threshold."""
        candidates = await self.query(
            status=MemoryStatus.ACTIVE,
            platform=record.meta.platform,
            namespace=record.meta.namespace,
        )
        for existing in candidates:
            if existing.id == record.id:
                continue
            if keyword_similarity(record.text, existing.text) > threshold:
                return existing
        return None

    # ------------------------------------------------------------------
    # Supersession
    # ------------------------------------------------------------------

    async def mark_superseded(self, memory_id: str, superseded_by_id: str) -> bool:
        """Mark an active record as superseded by another record."""
        record = await self.get(memory_id)
        if record is None or not record.is_active:
            return False
        record.meta.lifecycle.status = MemoryStatus.SUPERSEDED
        record.meta.lifecycle.updated_at = datetime.now(UTC)
        if superseded_by_id not in record.meta.relations.related_to:
            record.meta.relations.related_to.append(superseded_by_id)
        await self._write(record)
        logger.info(
            "memory_superseded",
            extra={"memory_id": memory_id, "superseded_by": superseded_by_id},
        )
        return True

    async def get_supersession_chain(self, memory_id: str) -> list[MemoryRecord]:
        """Predecessors of a record following ``relations.supersedes``, oldest first."""
        chain: list[MemoryRecord] = []
        seen = {memory_id}
        current = await self.get(memory_id)
        while current is not None and current.meta.relations.supersedes:
            previous_id = current.meta.relations.supersedes
            if previous_id in seen:
                logger.warning("supersession_cycle", extra={"memory_id": previous_id})
                break
            seen.add(previous_id)
            current = await self.get(previous_id)
            if current is not None:
                chain.append(current)
        chain.reverse()
        return chain

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear(
        self, namespace: str | None = None, platform: str | None = None
    ) -> int:
        """Remove every document in scope. Returns the number removed."""
        removed = 0
        for path in self._iter_paths(platform, namespace):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageError(f"Failed to clear {path.name}: {e}", str(path)) from e
            removed += 1

        self._paths = {k: p for k, p in self._paths.items() if p.exists()}
        logger.info(
            "memories_cleared",
            extra={"count": removed, "namespace": namespace, "platform": platform},
        )
        return removed
