"""Render recalled memories into a prompt context block."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from engram.adapters.base import PlatformAdapter
from engram.memory.types import TYPE_ORDER, MemoryRecord, MemoryType

CONTEXT_HEADER = "[Global Memory]"

SECTION_TITLES: dict[MemoryType, str] = {
    MemoryType.PINNED: "【置顶记忆】",
    MemoryType.PERSONA: "【用户画像】",
    MemoryType.CORE: "【核心记忆】",
    MemoryType.EPISODIC: "【相关细节】",
}

USAGE_RULE = "【使用规则】以上记忆仅作参考辅助，若与当前指令冲突，请优先执行当前指令。"


@dataclass
class InjectionResult:
    original: str
    injected: str
    memories: int = 0
    adapter: str = ""
    context: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def changed(self) -> bool:
        return self.injected != self.original


def build_context(
    records: list[MemoryRecord],
    platform: str = "multi",
    namespace: str = "default",
) -> str:
    """Group records by type into bulleted sections.

    Sections appear in fixed order (pinned, persona, core, episodic) and
    empty ones are omitted. Returns an empty string for no records.
    """
    if not records:
        return ""

    by_type: dict[MemoryType, list[str]] = {t: [] for t in TYPE_ORDER}
    for record in records:
        by_type.setdefault(record.type, []).append(record.text)

    parts = [f"{CONTEXT_HEADER}\n", f"[Meta-Info] Platform: {platform}, Namespace: {namespace}\n"]
    for memory_type in TYPE_ORDER:
        texts = by_type[memory_type]
        if texts:
            parts.append(f"\n{SECTION_TITLES[memory_type]}\n")
            parts.append("\n".join(f"• {text}" for text in texts))
    parts.append(f"\n{USAGE_RULE}")
    return "".join(parts)


def inject_memory(
    user_input: str,
    records: list[MemoryRecord],
    adapter: PlatformAdapter,
    platform: str | None = None,
    namespace: str = "default",
) -> InjectionResult:
    """Build the context block and let the adapter place it around the input.

    With no records the input is returned unchanged.
    """
    if not records:
        return InjectionResult(original=user_input, injected=user_input, adapter=adapter.name)

    context = build_context(records, platform or adapter.name, namespace)
    return InjectionResult(
        original=user_input,
        injected=adapter.inject(user_input, context),
        memories=len(records),
        adapter=adapter.name,
        context=context,
    )
