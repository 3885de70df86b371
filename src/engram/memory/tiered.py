"""Hot/warm/cold tiered memory store.

Records move between tiers by time since last use:
- hot: used within ``hot_days``, stored uncompressed and cached in memory
- warm: used within ``warm_days``, stored at MEDIUM compression
- cold: older, stored as a SUMMARY

Each tier is a FileMemoryStore under ``{base}/hot``, ``{base}/warm`` and
``{base}/cold``, so every tier survives a restart. Reading a warm or cold
record promotes it back to hot.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

from engram.config.paths import get_memories_path
from engram.memory.compressor import MemoryCompressor
from engram.memory.file_store import SIMILARITY_THRESHOLD, FileMemoryStore
from engram.memory.scorer import keyword_similarity
from engram.memory.types import (
    CompressionLevel,
    MemoryRecord,
    MemoryStatus,
    MemoryType,
    StorageTier,
    TierStats,
    generate_memory_id,
)

logger = logging.getLogger(__name__)

TIER_COMPRESSION: dict[StorageTier, CompressionLevel] = {
    StorageTier.HOT: CompressionLevel.NONE,
    StorageTier.WARM: CompressionLevel.MEDIUM,
    StorageTier.COLD: CompressionLevel.SUMMARY,
}

DEFAULT_PURGE_AFTER_DAYS = 180.0


class TieredMemoryStore:
    """Store that places records in tiers by recency of use.

    Exposes the same record operations as FileMemoryStore, so the engine
    can use either. Call ``init()`` once before use to rebuild the tier
    index from disk.
    """

    def __init__(
        self,
        base_path: Path | None = None,
        hot_days: float = 7.0,
        warm_days: float = 30.0,
        compressor: MemoryCompressor | None = None,
        auto_compress: bool = True,
    ) -> None:
        if warm_days <= hot_days:
            raise ValueError("warm_days must be greater than hot_days")
        self.base_path = Path(base_path) if base_path else get_memories_path()
        self.hot_max_age = timedelta(days=hot_days)
        self.warm_max_age = timedelta(days=warm_days)
        self.compressor = compressor or MemoryCompressor()
        self.auto_compress = auto_compress

        self._stores: dict[StorageTier, FileMemoryStore] = {
            tier: FileMemoryStore(self.base_path / tier.value) for tier in StorageTier
        }
        self._hot: dict[str, MemoryRecord] = {}
        self._tier_of: dict[str, StorageTier] = {}
        self._scope_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._initialized = False

    async def init(self) -> "TieredMemoryStore":
        """Rebuild the in-memory hot cache and tier index from disk."""
        if self._initialized:
            return self
        self._hot.clear()
        self._tier_of.clear()
        for tier, store in self._stores.items():
            for record in await store.query():
                self._tier_of[record.id] = tier
                if tier == StorageTier.HOT:
                    self._hot[record.id] = record
        self._initialized = True
        logger.debug(
            "tier_index_rebuilt",
            extra={"records": len(self._tier_of), "hot": len(self._hot)},
        )
        return self

    def scope_lock(self, platform: str, namespace: str) -> asyncio.Lock:
        key = (platform, namespace)
        lock = self._scope_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._scope_locks[key] = lock
        return lock

    # ------------------------------------------------------------------
    # Tier placement
    # ------------------------------------------------------------------

    def determine_tier(self, record: MemoryRecord, now: datetime | None = None) -> StorageTier:
        now = now or datetime.now(UTC)
        last_used = record.meta.lifecycle.last_used_at or now
        age = now - last_used
        if age < self.hot_max_age:
            return StorageTier.HOT
        if age < self.warm_max_age:
            return StorageTier.WARM
        return StorageTier.COLD

    async def _store_to_tier(
        self, record: MemoryRecord, tier: StorageTier, now: datetime | None = None
    ) -> MemoryRecord:
        if self.auto_compress:
            processed = self.compressor.compress(record, TIER_COMPRESSION[tier])
        else:
            processed = record.copy()
        processed.meta.storage_tier = tier
        processed.meta.last_migrated = now or datetime.now(UTC)

        previous = self._tier_of.get(processed.id)
        await self._stores[tier].add(processed)
        if previous is not None and previous != tier:
            await self._stores[previous].purge(processed.id)
            self._hot.pop(processed.id, None)

        self._tier_of[processed.id] = tier
        if tier == StorageTier.HOT:
            self._hot[processed.id] = processed
        return processed

    async def _peek(self, memory_id: str) -> MemoryRecord | None:
        """Read a record from its current tier without promoting it."""
        if memory_id in self._hot:
            return self._hot[memory_id].copy()
        tier = self._tier_of.get(memory_id)
        if tier is None:
            return None
        return await self._stores[tier].get(memory_id)

    async def _rewrite_in_place(self, record: MemoryRecord) -> None:
        tier = self._tier_of[record.id]
        await self._stores[tier].update(record)
        if tier == StorageTier.HOT:
            self._hot[record.id] = record

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    async def add(self, record: MemoryRecord) -> str:
        if not record.meta.id:
            record.meta.id = generate_memory_id()
        tier = self.determine_tier(record)
        stored = await self._store_to_tier(record, tier)
        record.meta.storage_tier = stored.meta.storage_tier
        record.meta.last_migrated = stored.meta.last_migrated
        return record.id

    async def get(self, memory_id: str, now: datetime | None = None) -> MemoryRecord | None:
        """Fetch a record, stamping ``lastUsedAt`` and promoting it to hot."""
        now = now or datetime.now(UTC)
        record = await self._peek(memory_id)
        if record is None:
            return None

        previous = self._tier_of.get(memory_id)
        record.meta.lifecycle.last_used_at = now
        if previous == StorageTier.HOT:
            await self._rewrite_in_place(record)
            return record.copy()

        promoted = await self._store_to_tier(
            self.compressor.decompress(record), StorageTier.HOT, now
        )
        logger.debug(
            "memory_promoted",
            extra={
                "memory_id": memory_id,
                "from_tier": previous.value if previous else None,
            },
        )
        return promoted.copy()

    async def update(self, record: MemoryRecord) -> bool:
        """Overwrite a record, re-placing it by its current recency."""
        if record.id not in self._tier_of:
            return False
        await self._store_to_tier(record, self.determine_tier(record))
        return True

    async def delete(self, memory_id: str) -> bool:
        record = await self._peek(memory_id)
        if record is None or record.status == MemoryStatus.DELETED:
            return False
        record.meta.lifecycle.status = MemoryStatus.DELETED
        record.meta.lifecycle.updated_at = datetime.now(UTC)
        await self._rewrite_in_place(record)
        logger.info("memory_deleted", extra={"memory_id": memory_id})
        return True

    async def purge(self, memory_id: str) -> bool:
        tier = self._tier_of.pop(memory_id, None)
        self._hot.pop(memory_id, None)
        if tier is None:
            return False
        return await self._stores[tier].purge(memory_id)

    async def query(
        self,
        status: MemoryStatus | None = None,
        platform: str | None = None,
        namespace: str | None = None,
        type: MemoryType | None = None,
        tier: StorageTier | None = None,
    ) -> list[MemoryRecord]:
        """Matching records across all tiers (hot first)."""
        results: list[MemoryRecord] = []
        for current in StorageTier:
            if tier is not None and current != tier:
                continue
            if current == StorageTier.HOT:
                records = [
                    r.copy()
                    for r in self._hot.values()
                    if (status is None or r.status == status)
                    and r.in_scope(platform, namespace)
                    and (type is None or r.type == type)
                ]
            else:
                records = await self._stores[current].query(status, platform, namespace, type)
            results.extend(records)
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
        """Compares against uncompressed text in every tier."""
        candidates = await self.query(
            status=MemoryStatus.ACTIVE,
            platform=record.meta.platform,
            namespace=record.meta.namespace,
        )
        for existing in candidates:
            if existing.id == record.id:
                continue
            existing_text = existing.body.original_text or existing.text
            if keyword_similarity(record.text, existing_text) > threshold:
                return existing
        return None

    async def mark_superseded(self, memory_id: str, superseded_by_id: str) -> bool:
        record = await self._peek(memory_id)
        if record is None or not record.is_active:
            return False
        record.meta.lifecycle.status = MemoryStatus.SUPERSEDED
        record.meta.lifecycle.updated_at = datetime.now(UTC)
        if superseded_by_id not in record.meta.relations.related_to:
            record.meta.relations.related_to.append(superseded_by_id)
        await self._rewrite_in_place(record)
        logger.info(
            "memory_superseded",
            extra={"memory_id": memory_id, "superseded_by": superseded_by_id},
        )
        return True

    async def get_supersession_chain(self, memory_id: str) -> list[MemoryRecord]:
        chain: list[MemoryRecord] = []
        seen = {memory_id}
        current = await self._peek(memory_id)
        while current is not None and current.meta.relations.supersedes:
            previous_id = current.meta.relations.supersedes
            if previous_id in seen:
                logger.warning("supersession_cycle", extra={"memory_id": previous_id})
                break
            seen.add(previous_id)
            current = await self._peek(previous_id)
            if current is not None:
                chain.append(current)
        chain.reverse()
        return chain

    async def clear(self, namespace: str | None = None, platform: str | None = None) -> int:
        removed = 0
        for store in self._stores.values():
            removed += await store.clear(namespace, platform)
        self._initialized = False
        await self.init()
        return removed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_compression_cycle(self, now: datetime | None = None) -> int:
        """Move every record whose recency no longer matches its tier.

        Returns the number of records migrated.
        """
        now = now or datetime.now(UTC)
        migrated = 0
        for memory_id, current in list(self._tier_of.items()):
            record = await self._peek(memory_id)
            if record is None:
                continue
            target = self.determine_tier(record, now)
            if target == current:
                continue
            await self._store_to_tier(record, target, now)
            migrated += 1
            logger.debug(
                "memory_migrated",
                extra={
                    "memory_id": memory_id,
                    "from_tier": current.value,
                    "to_tier": target.value,
                },
            )

        logger.info("compression_cycle_complete", extra={"migrated": migrated})
        return migrated

    async def get_stats(self) -> TierStats:
        counts = {tier: 0 for tier in StorageTier}
        for tier in self._tier_of.values():
            counts[tier] += 1
        return TierStats(
            hot=counts[StorageTier.HOT],
            warm=counts[StorageTier.WARM],
            cold=counts[StorageTier.COLD],
        )

    async def cleanup(
        self, max_days: float = DEFAULT_PURGE_AFTER_DAYS, now: datetime | None = None
    ) -> int:
        """Physically remove cold records unused for more than ``max_days``."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(days=max_days)
        removed = 0
        for record in await self._stores[StorageTier.COLD].query():
            last_used = record.meta.lifecycle.last_used_at
            if last_used is None or last_used < cutoff:
                if await self.purge(record.id):
                    removed += 1

        logger.info("cold_cleanup_complete", extra={"removed": removed})
        return removed
