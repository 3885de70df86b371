"""JSON and JSONL file operations.

Provides a generic TypedJSONL[T] for append-only logs of any entry type that
implements to_dict/from_dict (audit entries), plus atomic single-document
helpers used by the record store.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import Any, Generic, Protocol, Self, TypeVar

import aiofiles

logger = logging.getLogger(__name__)


class Serializable(Protocol):
    """Protocol for types that can be serialized to/from JSON dicts."""

    def to_dict(self) -> dict[str, Any]: ...

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Self: ...


async def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write a pretty-printed JSON document via temp file + rename.

    Raises:
        OSError: If the directory cannot be created or the write fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.stem}_",
        suffix=".tmp",
    )
    try:
        async with aiofiles.open(temp_fd, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, ensure_ascii=False, indent=2))
        Path(temp_path).replace(path)
    except Exception:
        try:
            Path(temp_path).unlink()
        except OSError:
            pass
        raise


async def read_json(path: Path) -> dict[str, Any]:
    """Read one JSON document.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the content is not a JSON object.
    """
    async with aiofiles.open(path, encoding="utf-8") as f:
        content = await f.read()
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path.name}")
    return data


T = TypeVar("T", bound=Serializable)


class TypedJSONL(Generic[T]):
    """Generic JSONL file operations for typed entries.

    Entries are only ever appended; ``load_all`` reads them back in order.
    """

    def __init__(self, path: Path, entry_type: type[T]) -> None:
        self.path = path
        self._entry_type = entry_type
        self._ensure_parent()

    def _ensure_parent(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def append(self, entry: T) -> None:
        """Append an entry to the file."""
        line = json.dumps(entry.to_dict(), ensure_ascii=False, separators=(",", ":"))
        async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
            await f.write(line + "\n")

    async def load_all(self) -> list[T]:
        """Load all entries from the file.

        Malformed lines are skipped with a warning.
        """
        if not self.path.exists():
            return []

        entries: list[T] = []
        error_count = 0
        async with aiofiles.open(self.path, encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                    entries.append(self._entry_type.from_dict(data))
                except (ValueError, KeyError, TypeError) as e:
                    error_count += 1
                    logger.warning(
                        "malformed_jsonl_line", extra={"error.message": str(e)}
                    )

        if error_count > 0:
            logger.warning(
                "jsonl_file_corrupted",
                extra={"file.name": self.path.name, "error_count": error_count},
            )

        return entries

