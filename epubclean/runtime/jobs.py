"""Job runner: unzip -> sanitize -> repack inside a private workspace."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from epubclean.archives.ocf import unzip, zip_strict
from epubclean.config import Settings, get_settings
from epubclean.errors import JobBusy, SanitizeError
from epubclean.models import AggregateStats, ReportStatus, SanitizationReport
from epubclean.sanitize.orchestrator import sanitize_tree
from epubclean.telemetry import metrics
from epubclean.telemetry.logging import bind, reset_job_id, set_job_id
from epubclean.telemetry.progress import ProgressChannel

log = bind(logging.getLogger(__name__), component="jobs")

PathLike = Union[str, os.PathLike]

OUTPUT_SUFFIX = "_sanitized.epub"

# Sanitizing occupies this slice of the overall progress bar.
_SANITIZE_START = 20.0
_SANITIZE_END = 45.0


class JobGate:
    """Single-flight guard: at most one job holds the gate at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._job_id: Optional[str] = None

    def try_acquire(self, job_id: str) -> bool:
        with self._lock:
            if self._job_id is not None:
                return False
            self._job_id = job_id
            return True

    def release(self) -> None:
        with self._lock:
            self._job_id = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._job_id is not None

    @property
    def current_job_id(self) -> Optional[str]:
        with self._lock:
            return self._job_id

    @contextmanager
    def hold(self, job_id: str) -> Iterator[None]:
        if not self.try_acquire(job_id):
            raise JobBusy(self.current_job_id)
        try:
            yield
        finally:
            self.release()


@dataclass
class JobResult:
    job_id: str
    ok: bool
    stage: str
    output_path: Optional[str] = None
    error: Optional[str] = None
    stats: AggregateStats = field(default_factory=AggregateStats)
    reports: List[SanitizationReport] = field(default_factory=list)
    skipped_entries: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def any_failed(self) -> bool:
        return any(r.status is ReportStatus.FAILED for r in self.reports)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "ok": self.ok,
            "stage": self.stage,
            "output_path": self.output_path,
            "error": self.error,
            "stats": self.stats.to_dict(),
            "reports": [r.to_dict() for r in self.reports],
            "skipped_entries": list(self.skipped_entries),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


def new_job_id() -> str:
    return f"job_{time.time_ns()}"


def default_output_path(input_path: PathLike) -> Path:
    src = Path(input_path)
    return src.with_name(src.stem + OUTPUT_SUFFIX)


class _Reporter:
    def __init__(self, job_id: str, channel: Optional[ProgressChannel]) -> None:
        self.job_id = job_id
        self.channel = channel

    def __call__(self, stage: str, progress: float, message: str, level: str = "INFO") -> None:
        log.log(getattr(logging, level, logging.INFO), "[%s %.0f%%] %s", stage, progress, message)
        if self.channel is not None:
            self.channel.publish(self.job_id, stage, progress, message, level)


def _validate_input(input_path: Path) -> None:
    if input_path.suffix.lower() != ".epub":
        raise SanitizeError(f"not an .epub file: {input_path.name}")
    if not input_path.is_file():
        raise SanitizeError(f"input does not exist: {input_path}")


def run_sanitize_job(
    input_path: PathLike,
    output_path: Optional[PathLike] = None,
    *,
    gate: JobGate,
    settings: Optional[Settings] = None,
    channel: Optional[ProgressChannel] = None,
    job_id: Optional[str] = None,
) -> JobResult:
    """Sanitize ``input_path`` into a new EPUB.

    Raises JobBusy when ``gate`` is already held; every other failure comes
    back as a JobResult with ``ok=False`` and ``stage="error"``.
    """
    cfg = settings or get_settings()
    jid = job_id or new_job_id()
    src = Path(input_path)
    dest = Path(output_path) if output_path is not None else default_output_path(src)

    with gate.hold(jid):
        token = set_job_id(jid)
        report = _Reporter(jid, channel)
        started = time.perf_counter()
        result = JobResult(job_id=jid, ok=False, stage="init")
        workspace: Optional[str] = None
        try:
            report("init", 0, f"starting job for {src.name}")
            _validate_input(src)

            result.stage = "workspace"
            workspace = tempfile.mkdtemp(prefix="epubclean_")
            report("workspace", 5, "workspace created")

            result.stage = "unpack"
            extract_dir = os.path.join(workspace, "book")
            unzipped = unzip(src, extract_dir, cfg)
            result.skipped_entries = list(unzipped.skipped)
            report("unpack", 10, f"unpacked {unzipped.extracted} entries")

            result.stage = "sanitize"
            report("sanitize", _SANITIZE_START, "sanitizing images")
            span = _SANITIZE_END - _SANITIZE_START

            def _on_progress(done: int, total: int) -> None:
                pct = _SANITIZE_START + span * done / max(total, 1)
                report("sanitize", pct, f"images {done}/{total}")

            result.reports = sanitize_tree(extract_dir, cfg, _on_progress)
            result.stats = AggregateStats.from_reports(result.reports)
            s = result.stats
            report(
                "sanitize",
                _SANITIZE_END,
                f"images total={s.total} ok={s.ok} repaired={s.repaired} "
                f"replaced={s.replaced} failed={s.failed}",
                "WARNING" if s.failed else "INFO",
            )

            result.stage = "repack"
            report("repack", _SANITIZE_END, "repacking archive")
            dest.parent.mkdir(parents=True, exist_ok=True)
            zip_strict(extract_dir, dest, cfg)

            result.stage = "complete"
            result.ok = True
            result.output_path = str(dest)
            report("complete", 100, f"wrote {dest.name}")
        except (SanitizeError, OSError) as exc:
            failed_stage = result.stage
            result.stage = "error"
            result.error = f"{failed_stage}: {exc}"
            report("error", 0, result.error, "ERROR")
        finally:
            if workspace is not None:
                shutil.rmtree(workspace, ignore_errors=True)
            result.elapsed_seconds = time.perf_counter() - started
            metrics.inc_job("ok" if result.ok else "error")
            reset_job_id(token)

    return result


__all__ = [
    "JobGate",
    "JobResult",
    "new_job_id",
    "default_output_path",
    "run_sanitize_job",
    "OUTPUT_SUFFIX",
]
