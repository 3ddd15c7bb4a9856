from __future__ import annotations

import re
from typing import Any, Callable, Dict, Iterable, TypeVar, cast

from prometheus_client import REGISTRY, Counter, Histogram

T = TypeVar("T")


# ---- Minimal helpers for registry access -------------------------------------


def _registry_map() -> Dict[str, Any]:
    mapping = getattr(REGISTRY, "_names_to_collectors", {})
    return mapping if isinstance(mapping, dict) else {}


def _get_or_create(name: str, factory: Callable[[], T]) -> T:
    # Module reloads (tests) must not register the same collector twice.
    existing = _registry_map().get(name)
    if existing is not None:
        return cast(T, existing)
    return factory()


def _mk_counter(name: str, doc: str, labels: Iterable[str] | None = None) -> Counter:
    return _get_or_create(name, lambda: Counter(name, doc, list(labels or [])))


def _mk_histogram(
    name: str, doc: str, labels: Iterable[str] | None = None, buckets: Iterable[float] | None = None
) -> Histogram:
    def _factory() -> Histogram:
        if buckets is not None:
            return Histogram(name, doc, list(labels or []), buckets=list(buckets))
        return Histogram(name, doc, list(labels or []))

    return _get_or_create(name, _factory)


# ---- Collectors ---------------------------------------------------------------

epubclean_images_total = _mk_counter(
    "epubclean_images_total", "Sanitized images by final status.", ["status"]
)
epubclean_image_actions_total = _mk_counter(
    "epubclean_image_actions_total", "Applied image actions by kind.", ["kind"]
)
epubclean_image_seconds = _mk_histogram(
    "epubclean_image_seconds",
    "Per-image sanitize latency (seconds).",
    ["path"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
epubclean_zip_entries_skipped_total = _mk_counter(
    "epubclean_zip_entries_skipped_total", "Archive entries refused during extraction.", ["reason"]
)
epubclean_jobs_total = _mk_counter(
    "epubclean_jobs_total", "Sanitize jobs by outcome.", ["outcome"]
)


# ---- Label helpers --------------------------------------------------------------

_DPI_RE = re.compile(r"^(FORCE|FAST)_\d+DPI$")


def action_kind(tag: str) -> str:
    """Collapse parameterized action tags into a bounded label set."""
    if _DPI_RE.match(tag):
        return tag.split("_", 1)[0] + "_DPI"
    if tag.startswith("RESIZE_"):
        return "RESIZE"
    if tag.startswith("SPOOF_"):
        return "SPOOF"
    return tag


def record_image(status: str, actions: Iterable[str], path: str, seconds: float) -> None:
    """``path`` is either "fast" or "full"."""
    try:
        epubclean_images_total.labels(status).inc()
        for tag in actions:
            epubclean_image_actions_total.labels(action_kind(tag)).inc()
        epubclean_image_seconds.labels(path).observe(max(seconds, 0.0))
    except Exception:
        # metrics must never break sanitization
        pass


def inc_zip_skipped(reason: str) -> None:
    try:
        epubclean_zip_entries_skipped_total.labels(reason).inc()
    except Exception:
        pass


def inc_job(outcome: str) -> None:
    try:
        epubclean_jobs_total.labels(outcome).inc()
    except Exception:
        pass


__all__ = [
    "epubclean_images_total",
    "epubclean_image_actions_total",
    "epubclean_image_seconds",
    "epubclean_zip_entries_skipped_total",
    "epubclean_jobs_total",
    "action_kind",
    "record_image",
    "inc_zip_skipped",
    "inc_job",
]
