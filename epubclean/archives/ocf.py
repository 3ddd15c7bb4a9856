"""EPUB (OCF) container streaming: traversal-safe unzip and strict repack."""

from __future__ import annotations

import logging
import os
import shutil
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import List, Optional, Union

from epubclean.config import Settings, get_settings
from epubclean.errors import ArchiveError, PathTraversal
from epubclean.telemetry import metrics

log = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

MIMETYPE_NAME = "mimetype"
DEFAULT_MIMETYPE = b"application/epub+zip"

# Per-entry read failures raised by zipfile and its decompressors.
_ENTRY_ERRORS = (
    OSError,
    EOFError,
    RuntimeError,
    NotImplementedError,
    zipfile.BadZipFile,
    zlib.error,
)


@dataclass
class UnzipResult:
    extracted: int = 0
    skipped: List[str] = field(default_factory=list)


def _safe_target(dest_root: str, name: str) -> str:
    target = os.path.normpath(os.path.join(dest_root, name))
    if not target.startswith(dest_root + os.sep):
        raise PathTraversal(name)
    return target


def _extract_entry(zf: zipfile.ZipFile, info: zipfile.ZipInfo, target: str, bufsize: int) -> None:
    os.makedirs(os.path.dirname(target), exist_ok=True)
    with zf.open(info, "r") as src, open(target, "wb") as out:
        shutil.copyfileobj(src, out, bufsize)


def unzip(
    archive_path: PathLike, dest_root: PathLike, settings: Optional[Settings] = None
) -> UnzipResult:
    """Stream every safe entry of ``archive_path`` into ``dest_root``.

    Entries that would land outside ``dest_root`` are skipped; the remaining
    entries still extract. Failing to open the archive or to create the
    destination is fatal and raises ArchiveError.
    """
    cfg = settings or get_settings()
    dest = os.path.normpath(os.path.abspath(os.fspath(dest_root)))
    try:
        os.makedirs(dest, exist_ok=True)
    except OSError as exc:
        raise ArchiveError(f"cannot create {dest}: {exc}") from exc

    result = UnzipResult()
    try:
        zf = zipfile.ZipFile(archive_path, "r")
    except (OSError, zipfile.BadZipFile) as exc:
        raise ArchiveError(f"cannot open archive {archive_path}: {exc}") from exc

    with zf:
        for info in zf.infolist():
            try:
                target = _safe_target(dest, info.filename)
            except PathTraversal as exc:
                log.warning("skipping unsafe entry: %s", exc.name)
                metrics.inc_zip_skipped("traversal")
                result.skipped.append(info.filename)
                continue

            if info.is_dir():
                os.makedirs(target, exist_ok=True)
                continue

            try:
                _extract_entry(zf, info, target, cfg.STREAM_BUFFER_SIZE)
            except _ENTRY_ERRORS as exc:
                raise ArchiveError(f"cannot extract {info.filename}: {exc}") from exc
            result.extracted += 1

    log.info(
        "unzipped %s: %d entries, %d skipped",
        os.fspath(archive_path),
        result.extracted,
        len(result.skipped),
    )
    return result


def _read_mimetype(src_root: str) -> bytes:
    path = os.path.join(src_root, MIMETYPE_NAME)
    try:
        with open(path, "rb") as f:
            data = f.read().strip()
    except FileNotFoundError:
        log.warning("no mimetype in %s; writing the EPUB default", src_root)
        return DEFAULT_MIMETYPE
    return data or DEFAULT_MIMETYPE


def zip_strict(
    src_root: PathLike, dest_file: PathLike, settings: Optional[Settings] = None
) -> int:
    """Repack ``src_root`` as an OCF-compliant EPUB; returns the entry count.

    ``mimetype`` is always the first entry and always stored; every other
    file is deflated under its forward-slash relative path, in lexical
    walk order.
    """
    cfg = settings or get_settings()
    root = os.path.normpath(os.path.abspath(os.fspath(src_root)))
    mime_path = os.path.join(root, MIMETYPE_NAME)

    try:
        out = zipfile.ZipFile(dest_file, "w")
    except OSError as exc:
        raise ArchiveError(f"cannot create {dest_file}: {exc}") from exc

    written = 0
    with out:
        head = zipfile.ZipInfo(MIMETYPE_NAME)
        head.compress_type = zipfile.ZIP_STORED
        out.writestr(head, _read_mimetype(root))
        written += 1

        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                if path == mime_path:
                    continue
                arcname = os.path.relpath(path, root).replace(os.sep, "/")
                info = zipfile.ZipInfo.from_file(path, arcname)
                info.compress_type = zipfile.ZIP_DEFLATED
                with open(path, "rb") as src, out.open(info, "w") as dst:
                    shutil.copyfileobj(src, dst, cfg.STREAM_BUFFER_SIZE)
                written += 1

    log.info("packed %s: %d entries", os.fspath(dest_file), written)
    return written


__all__ = [
    "UnzipResult",
    "unzip",
    "zip_strict",
    "MIMETYPE_NAME",
    "DEFAULT_MIMETYPE",
]
