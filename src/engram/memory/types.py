"""Public types for the memory subsystem."""

import copy
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any

SCHEMA_VERSION = "v1.0"


def _parse_datetime(s: str | None) -> datetime | None:
    """Parse ISO datetime string, handling Z suffix and ensuring timezone awareness."""
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _format_datetime(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def generate_memory_id() -> str:
    """Generate a record id of the form ``mem_<epoch_ms>_<random>``."""
    return f"mem_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"


class MemoryType(Enum):
    """Memory type classification.

    The type selects both the activation threshold applied at write time
    and the budget bucket used at recall time:
    - pinned: explicitly pinned by the user, highest priority
    - persona: preferences, habits and style of the user
    - core: goals, constraints and active projects
    - episodic: contextual details of past conversations
    """

    PINNED = "pinned"
    PERSONA = "persona"
    CORE = "core"
    EPISODIC = "episodic"


# Fixed bucket order used for ranking tie-breaks, budgeting and rendering
TYPE_ORDER: list[MemoryType] = [
    MemoryType.PINNED,
    MemoryType.PERSONA,
    MemoryType.CORE,
    MemoryType.EPISODIC,
]


class MemoryStatus(Enum):
    """Lifecycle status. Only ACTIVE records participate in recall."""

    ACTIVE = "active"
    SUPERSEDED = "superseded"
    DELETED = "deleted"
    EXPIRED = "expired"


class Sensitivity(Enum):
    NORMAL = "normal"
    SENSITIVE = "sensitive"
    HIGHLY_SENSITIVE = "highly_sensitive"

    @property
    def rank(self) -> int:
        return _SENSITIVITY_RANK[self]


_SENSITIVITY_RANK = {
    Sensitivity.NORMAL: 1,
    Sensitivity.SENSITIVE: 2,
    Sensitivity.HIGHLY_SENSITIVE: 3,
}


class Origin(Enum):
    AUTO = "auto"
    MANUAL = "manual"


class StorageTier(Enum):
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class CompressionLevel(IntEnum):
    NONE = 0
    LIGHT = 1  # keep ~70%
    MEDIUM = 2  # keep ~50%
    HEAVY = 3  # keep ~30%
    SUMMARY = 4


@dataclass
class Dimensions:
    """Scoring inputs, each clamped to [0, 1]."""

    confidence: float = 0.7
    importance: float = 0.6
    time_decay: float = 0.8
    recall_priority: float = 0.7

    def __post_init__(self) -> None:
        self.confidence = _clamp_unit(self.confidence)
        self.importance = _clamp_unit(self.importance)
        self.time_decay = _clamp_unit(self.time_decay)
        self.recall_priority = _clamp_unit(self.recall_priority)

    def to_dict(self) -> dict[str, float]:
        return {
            "confidence": self.confidence,
            "importance": self.importance,
            "time_decay": self.time_decay,
            "recall_priority": self.recall_priority,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "Dimensions":
        if not d:
            return cls()
        return cls(
            confidence=d.get("confidence", 0.7),
            importance=d.get("importance", 0.6),
            time_decay=d.get("time_decay", 0.8),
            recall_priority=d.get("recall_priority", 0.7),
        )


@dataclass
class Relations:
    """Version chain and provenance links.

    ``supersedes`` forms a singly-linked chain towards older versions.
    """

    supersedes: str | None = None
    related_to: list[str] = field(default_factory=list)
    conversation_id: str | None = None
    turn_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "supersedes": self.supersedes,
            "related_to": list(self.related_to),
            "conversation_id": self.conversation_id,
            "turn_id": self.turn_id,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "Relations":
        d = d or {}
        return cls(
            supersedes=d.get("supersedes"),
            related_to=d.get("related_to") or [],
            conversation_id=d.get("conversation_id"),
            turn_id=d.get("turn_id"),
        )


@dataclass
class Lifecycle:
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_used_at: datetime | None = None
    expires_at: datetime | None = None
    ttl: int | None = None  # seconds
    status: MemoryStatus = MemoryStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        # camelCase keys match the persisted document layout
        return {
            "createdAt": _format_datetime(self.created_at),
            "updatedAt": _format_datetime(self.updated_at),
            "lastUsedAt": _format_datetime(self.last_used_at),
            "expiresAt": _format_datetime(self.expires_at),
            "ttl": self.ttl,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "Lifecycle":
        d = d or {}
        return cls(
            created_at=_parse_datetime(d.get("createdAt")),
            updated_at=_parse_datetime(d.get("updatedAt")),
            last_used_at=_parse_datetime(d.get("lastUsedAt")),
            expires_at=_parse_datetime(d.get("expiresAt")),
            ttl=d.get("ttl"),
            status=MemoryStatus(d.get("status", "active")),
        )


@dataclass
class Security:
    sensitivity: Sensitivity = Sensitivity.NORMAL
    masked: bool = False
    origin: Origin = Origin.AUTO

    def to_dict(self) -> dict[str, Any]:
        return {
            "sensitivity": self.sensitivity.value,
            "masked": self.masked,
            "origin": self.origin.value,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "Security":
        d = d or {}
        return cls(
            sensitivity=Sensitivity(d.get("sensitivity", "normal")),
            masked=bool(d.get("masked", False)),
            origin=Origin(d.get("origin", "auto")),
        )


@dataclass
class MemoryMeta:
    """Record metadata.

    ``platform`` and ``namespace`` are the partition keys: a record is only
    ever queried within its {platform, namespace} scope.
    """

    id: str
    version: str = SCHEMA_VERSION
    platform: str = "unknown"
    namespace: str = "default"
    tags: list[str] = field(default_factory=list)
    dimensions: Dimensions = field(default_factory=Dimensions)
    relations: Relations = field(default_factory=Relations)
    lifecycle: Lifecycle = field(default_factory=Lifecycle)
    security: Security = field(default_factory=Security)

    # Set by the tiered store
    storage_tier: StorageTier | None = None
    last_migrated: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "version": self.version,
            "platform": self.platform,
            "namespace": self.namespace,
            "tags": list(self.tags),
            "dimensions": self.dimensions.to_dict(),
            "relations": self.relations.to_dict(),
            "lifecycle": self.lifecycle.to_dict(),
            "security": self.security.to_dict(),
        }
        if self.storage_tier:
            d["storage_tier"] = self.storage_tier.value
        if self.last_migrated:
            d["last_migrated"] = self.last_migrated.isoformat()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MemoryMeta":
        tier = d.get("storage_tier")
        return cls(
            id=d["id"],
            version=d.get("version", SCHEMA_VERSION),
            platform=d.get("platform", "unknown"),
            namespace=d.get("namespace", "default"),
            tags=d.get("tags") or [],
            dimensions=Dimensions.from_dict(d.get("dimensions")),
            relations=Relations.from_dict(d.get("relations")),
            lifecycle=Lifecycle.from_dict(d.get("lifecycle")),
            security=Security.from_dict(d.get("security")),
            storage_tier=StorageTier(tier) if tier else None,
            last_migrated=_parse_datetime(d.get("last_migrated")),
        )


@dataclass
class MemoryBody:
    """Record payload.

    ``text`` may be masked or compressed. ``raw_content`` keeps the
    unmasked original and ``original_text`` the uncompressed original.
    """

    type: MemoryType = MemoryType.EPISODIC
    text: str = ""
    raw_content: str = ""
    original_text: str | None = None
    compression_level: CompressionLevel | None = None
    keywords: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.type.value,
            "text": self.text,
            "raw_content": self.raw_content,
        }
        if self.original_text is not None:
            d["original_text"] = self.original_text
        if self.compression_level is not None:
            d["compression_level"] = int(self.compression_level)
        if self.keywords is not None:
            d["keywords"] = list(self.keywords)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MemoryBody":
        level = d.get("compression_level")
        return cls(
            type=MemoryType(d.get("type", "episodic")),
            text=d.get("text", ""),
            raw_content=d.get("raw_content") or "",
            original_text=d.get("original_text"),
            compression_level=CompressionLevel(level) if level is not None else None,
            keywords=d.get("keywords"),
        )


@dataclass
class MemoryRecord:
    """The unit of persistence: one JSON document per record."""

    meta: MemoryMeta
    body: MemoryBody = field(default_factory=MemoryBody)

    @property
    def id(self) -> str:
        return self.meta.id

    @property
    def type(self) -> MemoryType:
        return self.body.type

    @property
    def text(self) -> str:
        return self.body.text

    @property
    def status(self) -> MemoryStatus:
        return self.meta.lifecycle.status

    @property
    def is_active(self) -> bool:
        return self.meta.lifecycle.status == MemoryStatus.ACTIVE

    def in_scope(self, platform: str | None, namespace: str | None) -> bool:
        """True if the record belongs to the scope (None matches anything)."""
        if platform is not None and self.meta.platform != platform:
            return False
        if namespace is not None and self.meta.namespace != namespace:
            return False
        return True

    def copy(self) -> "MemoryRecord":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {"meta": self.meta.to_dict(), "body": self.body.to_dict()}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MemoryRecord":
        """Deserialize from JSON dict."""
        return cls(
            meta=MemoryMeta.from_dict(d["meta"]),
            body=MemoryBody.from_dict(d.get("body") or {}),
        )


@dataclass
class ExtractionCandidate:
    """A typed span pulled out of response text, not yet persisted."""

    type: MemoryType
    text: str
    key_info: str = ""
    dimensions: Dimensions = field(default_factory=Dimensions)
    score: float = 0.0
    raw_content: str = ""


@dataclass
class ScoredMemory:
    """A record paired with its recall scores.

    ``raw_score`` is the weighted factor sum; ``score`` is the activation
    probability used for thresholding and ranking.
    """

    record: MemoryRecord
    raw_score: float
    score: float


@dataclass
class AuditEntry:
    id: str
    timestamp: datetime
    action: str
    details: dict[str, Any] = field(default_factory=dict)
    agent: str = "python"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "details": self.details,
            "agent": self.agent,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AuditEntry":
        return cls(
            id=d["id"],
            timestamp=_parse_datetime(d["timestamp"]) or datetime.now(UTC),
            action=d["action"],
            details=d.get("details") or {},
            agent=d.get("agent", "python"),
        )


@dataclass
class MemoryStats:
    total: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_platform: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)


@dataclass
class TierStats:
    hot: int = 0
    warm: int = 0
    cold: int = 0

    @property
    def total(self) -> int:
        return self.hot + self.warm + self.cold
