"""Sensitive-content detection, masking and the security audit log.

The detector classifies text by the most severe pattern it matches. The
sanitizer masks matched spans while keeping the unmasked original in
``body.raw_content``. The auditor keeps an append-only trail of every
decision the engine makes, optionally persisted as JSONL.
"""

import csv
import io
import json
import logging
import math
import re
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from engram.memory.jsonl import TypedJSONL
from engram.memory.types import AuditEntry, MemoryRecord, Sensitivity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SensitivityRule:
    pattern: re.Pattern[str]
    kind: str
    severity: Sensitivity


def _rule(pattern: str, kind: str, severity: Sensitivity, flags: int = 0) -> SensitivityRule:
    return SensitivityRule(re.compile(pattern, flags), kind, severity)


_HIGH = Sensitivity.HIGHLY_SENSITIVE
_MID = Sensitivity.SENSITIVE

DEFAULT_SENSITIVITY_RULES: list[SensitivityRule] = [
    # Passwords
    _rule(r"password", "password", _HIGH, re.I),
    _rule(r"pwd", "password", _HIGH, re.I),
    _rule(r"passwd", "password", _HIGH, re.I),
    # API keys and tokens
    _rule(r"api[_-]?key", "api_key", _HIGH, re.I),
    _rule(r"secret[_-]?key", "api_key", _HIGH, re.I),
    _rule(r"access[_-]?token", "token", _HIGH, re.I),
    _rule(r"bearer\s+[a-zA-Z0-9\-_.~+/]+=*", "token", _HIGH, re.I),
    _rule(r"token[\"':\s]*[a-zA-Z0-9\-_.~+/]+=*", "token", _HIGH, re.I),
    # Private keys
    _rule(r"private[_-]?key", "private_key", _HIGH, re.I),
    _rule(r"-----BEGIN\s+(?:RSA\s+)?PRIVATE\s+KEY-----", "private_key", _HIGH, re.I),
    # Numbers
    _rule(r"\b\d{16,}\b", "long_number", _MID),
    _rule(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b", "card_number", _HIGH),
    _rule(r"\b1[3-9]\d{9}\b", "phone", _MID),
    _rule(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", "email", _MID),
    # Mainland China resident ID
    _rule(
        r"\b[1-9]\d{5}(?:19|20)\d{2}(?:0[1-9]|1[0-2])(?:0[1-9]|[12]\d|3[01])\d{3}[\dXx]\b",
        "id_card",
        _HIGH,
    ),
    _rule(r"oauth[_-]?secret", "oauth_secret", _HIGH, re.I),
    _rule(r"AKIA[0-9A-Z]{16}", "aws_key", _HIGH),
    _rule(r"(?:credit|card|cvv|security\s+code)", "payment", _HIGH, re.I),
]

# Write-path masking: long digit runs and credential keywords with their value
_DIGIT_RUN = re.compile(r"\d{4,}")
_CREDENTIAL = re.compile(r"(?:password|api[_-]?key|secret|token)\S*", re.IGNORECASE)


@dataclass(frozen=True)
class Finding:
    kind: str
    severity: Sensitivity
    matched: str
    start: int
    end: int


class SensitivityDetector:
    """Classifies text against a table of sensitivity rules."""

    def __init__(self, rules: list[SensitivityRule] | None = None) -> None:
        self.rules = rules if rules is not None else DEFAULT_SENSITIVITY_RULES

    def detect(self, text: str | None) -> list[Finding]:
        if not text:
            return []
        findings: list[Finding] = []
        for rule in self.rules:
            for match in rule.pattern.finditer(text):
                findings.append(
                    Finding(
                        kind=rule.kind,
                        severity=rule.severity,
                        matched=match.group(0),
                        start=match.start(),
                        end=match.end(),
                    )
                )
        return findings

    def highest_severity(self, text: str | None) -> Sensitivity:
        findings = self.detect(text)
        if not findings:
            return Sensitivity.NORMAL
        return max((f.severity for f in findings), key=lambda s: s.rank)


class Sanitizer:
    """Masks sensitive spans found by a SensitivityDetector.

    In ``partial`` mode a span keeps ``min(2, ceil(len * 0.2))`` characters
    at each end; spans of two characters or less are masked entirely.
    ``full`` mode masks every character.
    """

    def __init__(
        self,
        detector: SensitivityDetector | None = None,
        auto_mask: bool = True,
        mask_char: str = "*",
        mode: str = "partial",
    ) -> None:
        if mode not in ("partial", "full"):
            raise ValueError(f"Unknown mask mode: {mode}")
        self.detector = detector or SensitivityDetector()
        self.auto_mask = auto_mask
        self.mask_char = mask_char
        self.mode = mode

    def mask_text(self, text: str) -> str:
        if self.mode == "full" or len(text) <= 2:
            return self.mask_char * len(text)
        visible = min(2, math.ceil(len(text) * 0.2))
        hidden = max(1, len(text) - visible * 2)
        return text[:visible] + self.mask_char * hidden + text[-visible:]

    def sanitize(self, text: str | None, force_mask: bool = False) -> str | None:
        """Mask every finding that qualifies.

        Highly sensitive spans are always masked; lesser ones only when
        ``auto_mask`` or ``force_mask`` is set. Overlapping spans are merged.
        """
        if not text:
            return text

        spans: list[tuple[int, int]] = []
        for finding in self.detector.detect(text):
            if (
                not force_mask
                and finding.severity != Sensitivity.HIGHLY_SENSITIVE
                and not self.auto_mask
            ):
                continue
            spans.append((finding.start, finding.end))
        if not spans:
            return text

        spans.sort()
        merged: list[list[int]] = [list(spans[0])]
        for start, end in spans[1:]:
            if start <= merged[-1][1]:
                merged[-1][1] = max(merged[-1][1], end)
            else:
                merged.append([start, end])

        result = text
        for start, end in reversed(merged):
            result = result[:start] + self.mask_text(result[start:end]) + result[end:]
        return result

    def secure_memory(self, record: MemoryRecord) -> MemoryRecord:
        """Return a copy with security metadata set and the text masked."""
        secured = record.copy()
        text = secured.body.text or ""
        sensitivity = self.detector.highest_severity(text)

        secured.meta.security.sensitivity = sensitivity
        secured.meta.security.masked = sensitivity != Sensitivity.NORMAL
        if not secured.body.raw_content:
            secured.body.raw_content = text
        if sensitivity != Sensitivity.NORMAL:
            secured.body.text = self.sanitize(text) or ""
        return secured


def matches_sensitivity_patterns(text: str, patterns: list[re.Pattern[str]]) -> bool:
    return any(p.search(text) for p in patterns)


def mask_sensitive_text(text: str) -> str:
    """Replace digit runs and credential keywords (with their value) by ``****``."""
    masked = _DIGIT_RUN.sub("****", text)
    return _CREDENTIAL.sub("****", masked)


class AuditAction(StrEnum):
    WRITE = "WRITE"
    FILTERED = "FILTERED"
    CONFLICT = "CONFLICT"
    RECALL = "RECALL"
    ERROR = "ERROR"
    CLEANUP = "CLEANUP"
    SENSITIVE_ACCESS = "SENSITIVE_ACCESS"
    SANITIZATION = "SANITIZATION"
    EXPORT = "EXPORT"
    IMPORT = "IMPORT"
    DELETE = "DELETE"
    FEEDBACK = "FEEDBACK"


def generate_audit_id() -> str:
    return f"audit_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class SecurityAuditor:
    """Append-only audit trail.

    Entries are kept in memory and, when a path is given, appended to a
    JSONL file. Call ``load()`` to pick up entries from a previous run.
    """

    def __init__(self, path: Path | None = None, agent: str = "python") -> None:
        self._jsonl = TypedJSONL(path, AuditEntry) if path else None
        self.agent = agent
        self.logs: list[AuditEntry] = []

    async def load(self) -> int:
        """Replace the in-memory trail with the persisted one."""
        if self._jsonl is None:
            return 0
        self.logs = await self._jsonl.load_all()
        return len(self.logs)

    async def log(self, action: str, details: dict[str, Any] | None = None) -> AuditEntry:
        entry = AuditEntry(
            id=generate_audit_id(),
            timestamp=datetime.now(UTC),
            action=str(action),
            details=details or {},
            agent=self.agent,
        )
        self.logs.append(entry)

        if self._jsonl is not None:
            try:
                await self._jsonl.append(entry)
            except OSError:
                logger.warning(
                    "audit_persist_failed",
                    extra={"audit_id": entry.id, "action": entry.action},
                    exc_info=True,
                )
        return entry

    async def log_sensitive_access(
        self,
        memory_id: str,
        action: str,
        sensitivity: Sensitivity = Sensitivity.HIGHLY_SENSITIVE,
    ) -> AuditEntry:
        return await self.log(
            AuditAction.SENSITIVE_ACCESS,
            {"memory_id": memory_id, "action": action, "sensitivity": sensitivity.value},
        )

    async def log_sanitization(
        self, memory_id: str, original_text: str, masked_text: str
    ) -> AuditEntry:
        # Lengths only; the audit trail never holds raw content
        return await self.log(
            AuditAction.SANITIZATION,
            {
                "memory_id": memory_id,
                "original_length": len(original_text),
                "masked_length": len(masked_text),
            },
        )

    async def log_export(self, format: str, count: int) -> AuditEntry:
        return await self.log(AuditAction.EXPORT, {"format": format, "count": count})

    async def log_delete(self, memory_id: str, reason: str = "user_request") -> AuditEntry:
        return await self.log(AuditAction.DELETE, {"memory_id": memory_id, "reason": reason})

    def get_logs(
        self,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditEntry]:
        logs = self.logs
        if action:
            logs = [e for e in logs if e.action == str(action)]
        if start:
            logs = [e for e in logs if e.timestamp >= start]
        if end:
            logs = [e for e in logs if e.timestamp <= end]
        return list(logs)

    def export_logs(self, format: str = "json") -> str:
        if format == "json":
            return json.dumps(
                [e.to_dict() for e in self.logs], ensure_ascii=False, indent=2
            )
        if format != "csv":
            raise ValueError(f"Unsupported export format: {format}")

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(["id", "timestamp", "action", "details"])
        for e in self.logs:
            writer.writerow(
                [
                    e.id,
                    e.timestamp.isoformat(),
                    e.action,
                    json.dumps(e.details, ensure_ascii=False),
                ]
            )
        return buf.getvalue().rstrip("\n")
