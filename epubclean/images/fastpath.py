"""Decode-free handling for JPEGs that are already clean.

An upright JPEG inside the decode limits only needs its JFIF density
patched, which is exactly what the full pipeline would write. JPEG has no
alpha channel, so the flatten check is not repeated here.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

from epubclean.config import Settings
from epubclean.errors import DecodeError, ImageBoundsError
from epubclean.images.decoder import probe_dimensions, validate_dimensions
from epubclean.images.dpi import inject_jfif_dpi
from epubclean.images.formats import ImageFormat
from epubclean.images.normalize import needs_rotation, read_exif_orientation
from epubclean.utils.fsio import atomic_write_bytes

log = logging.getLogger(__name__)

_JPEG_EXTENSIONS = frozenset({".jpg", ".jpeg"})


def action_tag(settings: Settings) -> str:
    return f"FAST_{settings.TARGET_DPI}DPI"


def is_eligible(path: Union[str, os.PathLike], fmt: ImageFormat, settings: Settings) -> bool:
    if Path(path).suffix.lower() not in _JPEG_EXTENSIONS or fmt is not ImageFormat.JPEG:
        return False
    if needs_rotation(read_exif_orientation(path)):
        return False
    try:
        width, height = probe_dimensions(path, fmt)
        validate_dimensions(width, height, settings)
    except (ImageBoundsError, DecodeError) as exc:
        log.debug("fast path declined for %s: %s", path, exc)
        return False
    return max(width, height) <= settings.MAX_IMAGE_LONG_SIDE


def apply(path: Union[str, os.PathLike], settings: Settings) -> int:
    """Patch the JFIF density of ``path`` in place; returns the new size."""
    raw = Path(path).read_bytes()
    patched = inject_jfif_dpi(raw, settings.TARGET_DPI)
    return atomic_write_bytes(path, patched)


__all__ = ["is_eligible", "apply", "action_tag"]
