"""Bounded worker-pool fan-out over every image in a directory tree."""

from __future__ import annotations

import contextvars
import logging
import os
import queue
import threading
from pathlib import Path
from typing import Callable, List, Optional, Union

from epubclean.config import Settings, get_settings
from epubclean.images.formats import is_image_extension
from epubclean.models import ReportStatus, SanitizationReport
from epubclean.sanitize.pipeline import sanitize_file

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


def _log_walk_error(err: OSError) -> None:
    log.warning("skipping unreadable entry %s: %s", err.filename, err.strerror or err)


def discover_images(root: Union[str, os.PathLike]) -> List[Path]:
    """Image files under ``root`` in lexical walk order; symlinks are skipped."""
    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        dirnames.sort()
        for name in sorted(filenames):
            if not is_image_extension(os.path.splitext(name)[1]):
                continue
            full = os.path.join(dirpath, name)
            if os.path.islink(full):
                log.debug("skipping symlink %s", full)
                continue
            found.append(Path(full))
    return found


class _Counter:
    """Completion counter shared by the workers.

    Progress is reported while the lock is held, so callbacks see counts
    in increasing order.
    """

    def __init__(self, total: int, every: int, progress: Optional[ProgressCallback]) -> None:
        self._lock = threading.Lock()
        self._value = 0
        self._total = total
        self._every = every
        self._progress = progress

    def incr(self) -> int:
        with self._lock:
            self._value += 1
            done = self._value
            if self._progress is not None and (done % self._every == 0 or done == self._total):
                try:
                    self._progress(done, self._total)
                except Exception:
                    log.exception("progress callback failed")
            return done


def _unexpected(label: str, exc: BaseException) -> SanitizationReport:
    return SanitizationReport(
        path=label,
        original_format="",
        actions=(UNEXPECTED_ERROR,),
        status=ReportStatus.FAILED,
        error=str(exc) or type(exc).__name__,
    )


def sanitize_tree(
    root: Union[str, os.PathLike],
    settings: Optional[Settings] = None,
    progress: Optional[ProgressCallback] = None,
) -> List[SanitizationReport]:
    """Sanitize every image under ``root`` in place.

    Reports come back in discovery order regardless of the worker count.
    ``progress(done, total)`` fires every ``PROGRESS_EVERY`` completions and
    once more when the last file finishes.
    """
    cfg = settings or get_settings()
    root_path = Path(root)
    files = discover_images(root_path)
    total = len(files)
    if total == 0:
        log.info("no images under %s", root_path)
        return []

    labels = [f.relative_to(root_path).as_posix() for f in files]
    results: List[Optional[SanitizationReport]] = [None] * total
    counter = _Counter(total, cfg.PROGRESS_EVERY, progress)

    work: "queue.Queue[Optional[int]]" = queue.Queue()
    for idx in range(total):
        work.put(idx)

    workers = max(1, min(os.cpu_count() or 1, total, cfg.MAX_WORKERS))
    for _ in range(workers):
        work.put(None)

    def _worker() -> None:
        while True:
            idx = work.get()
            if idx is None:
                return
            try:
                results[idx] = sanitize_file(files[idx], cfg, labels[idx])
            except Exception as exc:
                log.exception("unexpected failure on %s", labels[idx])
                results[idx] = _unexpected(labels[idx], exc)
            counter.incr()

    log.info("sanitizing %d images with %d workers", total, workers)
    threads = []
    for i in range(workers):
        ctx = contextvars.copy_context()
        t = threading.Thread(
            target=ctx.run, args=(_worker,), name=f"epubclean-sanitize-{i}", daemon=True
        )
        t.start()
        threads.append(t)
    for t in threads:
        t.join()

    return [r for r in results if r is not None]


__all__ = ["discover_images", "sanitize_tree", "UNEXPECTED_ERROR"]
