"""Per-file sanitization pipeline.

sniff -> (fast path | bounded decode -> normalize -> re-encode) -> report.
Every per-file failure is contained here: the file is swapped for the
placeholder SVG and the report records what happened.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional, Union

from epubclean.config import Settings
from epubclean.errors import (
    DecodeError,
    FormatUnknown,
    ImageBoundsError,
    ReencodeError,
)
from epubclean.images import fastpath, placeholder
from epubclean.images.decoder import decode
from epubclean.images.encode import reencode
from epubclean.images.formats import detect_spoof, sniff
from epubclean.images.normalize import (
    exif_rotate,
    flatten_alpha,
    normalize_color,
    resize_long_side,
)
from epubclean.models import ReportBuilder, ReportStatus, SanitizationReport
from epubclean.telemetry import metrics

log = logging.getLogger(__name__)

INVALID_REPLACED = "INVALID_REPLACED"
DECODE_FAIL_REPLACED = "DECODE_FAIL_REPLACED"
REENCODE_FAILED = "REENCODE_FAILED"
CLEAN_BINARY = "CLEAN_BINARY"


def force_dpi_tag(settings: Settings) -> str:
    return f"FORCE_{settings.TARGET_DPI}DPI"


def _replace_with_placeholder(
    path: Path, report: ReportBuilder, status: ReportStatus, action: str, exc: BaseException
) -> None:
    log.warning("%s: %s; replacing with placeholder", report.path, exc)
    report.fail(status, action, exc)
    try:
        target = placeholder.substitute(path)
    except OSError as write_exc:
        log.error("%s: placeholder write failed: %s", report.path, write_exc)
        report.status = ReportStatus.FAILED
        report.error = f"{exc}; placeholder write failed: {write_exc}"
        return
    report.size_after = len(placeholder.PLACEHOLDER_BYTES)
    log.debug("%s: placeholder written to %s", report.path, target.name)


def _run(path: Path, settings: Settings, report: ReportBuilder) -> str:
    """Drive one file through the pipeline; returns the metrics path label."""
    try:
        report.size_before = path.stat().st_size
        fmt = sniff(path)
    except (FormatUnknown, OSError) as exc:
        _replace_with_placeholder(path, report, ReportStatus.FAILED, INVALID_REPLACED, exc)
        return "full"

    report.original_format = fmt.value
    spoof = detect_spoof(path, fmt)
    if spoof:
        log.info("%s: extension spoofing detected (%s)", report.path, spoof)
        report.add(spoof)

    if fastpath.is_eligible(path, fmt, settings):
        try:
            report.size_after = fastpath.apply(path, settings)
        except OSError as exc:
            _replace_with_placeholder(
                path, report, ReportStatus.FAILED, REENCODE_FAILED, exc
            )
            return "fast"
        report.add(fastpath.action_tag(settings))
        return "fast"

    try:
        img = decode(path, fmt, settings)
    except (ImageBoundsError, DecodeError) as exc:
        _replace_with_placeholder(
            path, report, ReportStatus.REPLACED, DECODE_FAIL_REPLACED, exc
        )
        return "full"

    for step in (
        lambda i: exif_rotate(path, i),
        normalize_color,
        lambda i: flatten_alpha(i, settings),
        lambda i: resize_long_side(i, settings),
    ):
        img, action = step(img)
        if action:
            report.add(action)

    try:
        report.size_after = reencode(path, img, settings)
    except ReencodeError as exc:
        _replace_with_placeholder(path, report, ReportStatus.FAILED, REENCODE_FAILED, exc)
        return "full"

    report.add(force_dpi_tag(settings))
    report.add(CLEAN_BINARY)
    return "full"


def sanitize_file(
    path: Union[str, os.PathLike],
    settings: Settings,
    label: Optional[str] = None,
) -> SanitizationReport:
    """Sanitize ``path`` in place and describe what was done.

    ``label`` is the path recorded in the report (the tree-relative POSIX
    path when called from ``sanitize_tree``); it defaults to ``path``.
    """
    p = Path(path)
    report = ReportBuilder(path=label or p.as_posix())
    started = time.perf_counter()
    kind = _run(p, settings, report)
    result = report.build()
    metrics.record_image(
        result.status.value, result.actions, kind, time.perf_counter() - started
    )
    log.debug("%s: %s %s", result.path, result.status.value, ",".join(result.actions))
    return result


__all__ = [
    "sanitize_file",
    "force_dpi_tag",
    "INVALID_REPLACED",
    "DECODE_FAIL_REPLACED",
    "REENCODE_FAILED",
    "CLEAN_BINARY",
]
