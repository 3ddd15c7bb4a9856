"""Report types shared by the pipeline, the job runner and the HTTP layer."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class ReportStatus(str, Enum):
    OK = "OK"
    REPAIRED = "REPAIRED"
    REPLACED = "REPLACED"
    FAILED = "FAILED"


_BASELINE_ACTIONS = {"EXIF_STRIPPED", "CLEAN_BINARY"}
_BASELINE_DPI_RE = re.compile(r"^(FORCE|FAST)_\d+DPI$")


def is_baseline_action(tag: str) -> bool:
    """Baseline actions happen to every clean file and do not count as repairs."""
    return tag in _BASELINE_ACTIONS or bool(_BASELINE_DPI_RE.match(tag))


@dataclass(frozen=True)
class SanitizationReport:
    path: str
    original_format: str
    actions: Tuple[str, ...]
    status: ReportStatus
    error: Optional[str] = None
    size_before: int = 0
    size_after: int = 0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "path": self.path,
            "original_format": self.original_format,
            "actions": list(self.actions),
            "status": self.status.value,
            "size_before": self.size_before,
            "size_after": self.size_after,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class ReportBuilder:
    """Mutable per-visit state; frozen into a SanitizationReport exactly once."""

    path: str
    original_format: str = ""
    actions: List[str] = field(default_factory=list)
    status: ReportStatus = ReportStatus.OK
    error: Optional[str] = None
    size_before: int = 0
    size_after: int = 0

    def add(self, action: str) -> None:
        self.actions.append(action)

    def fail(self, status: ReportStatus, action: str, exc: BaseException | str) -> None:
        self.status = status
        self.error = str(exc)
        self.actions.append(action)

    def build(self) -> SanitizationReport:
        status = self.status
        if status is ReportStatus.OK and any(not is_baseline_action(a) for a in self.actions):
            status = ReportStatus.REPAIRED
        return SanitizationReport(
            path=self.path,
            original_format=self.original_format,
            actions=tuple(self.actions),
            status=status,
            error=self.error,
            size_before=self.size_before,
            size_after=self.size_after,
        )


@dataclass(frozen=True)
class AggregateStats:
    total: int = 0
    ok: int = 0
    repaired: int = 0
    replaced: int = 0
    failed: int = 0

    @classmethod
    def from_reports(cls, reports: Iterable[SanitizationReport]) -> "AggregateStats":
        counts = {status: 0 for status in ReportStatus}
        total = 0
        for r in reports:
            counts[r.status] += 1
            total += 1
        return cls(
            total=total,
            ok=counts[ReportStatus.OK],
            repaired=counts[ReportStatus.REPAIRED],
            replaced=counts[ReportStatus.REPLACED],
            failed=counts[ReportStatus.FAILED],
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "ok": self.ok,
            "repaired": self.repaired,
            "replaced": self.replaced,
            "failed": self.failed,
        }


__all__ = [
    "ReportStatus",
    "SanitizationReport",
    "ReportBuilder",
    "AggregateStats",
    "is_baseline_action",
]
