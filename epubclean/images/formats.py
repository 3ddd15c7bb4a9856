from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Union

from epubclean.errors import FormatUnknown

_HEAD_BYTES = 12


class ImageFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"
    WEBP = "webp"
    BMP = "bmp"
    TIFF = "tiff"

    @property
    def pil_name(self) -> str:
        """Pillow plugin name used to restrict decoding to this format."""
        return self.value.upper()


_EXT_FORMAT: Dict[str, ImageFormat] = {
    ".jpg": ImageFormat.JPEG,
    ".jpeg": ImageFormat.JPEG,
    ".png": ImageFormat.PNG,
    ".gif": ImageFormat.GIF,
    ".bmp": ImageFormat.BMP,
    ".tif": ImageFormat.TIFF,
    ".tiff": ImageFormat.TIFF,
    ".webp": ImageFormat.WEBP,
}

IMAGE_EXTENSIONS = frozenset(_EXT_FORMAT)


# --- magic-byte predicates -------------------------------------------------------


def _is_jpeg(head: bytes) -> bool:
    return head.startswith(b"\xFF\xD8\xFF")


def _is_png(head: bytes) -> bool:
    return len(head) >= 4 and head[0] == 0x89 and head[1:4] == b"PNG"


def _is_gif(head: bytes) -> bool:
    return head[:6] in (b"GIF87a", b"GIF89a")


def _is_webp(head: bytes) -> bool:
    return len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WEBP"


def _is_bmp(head: bytes) -> bool:
    return head[:2] == b"BM"


def _is_tiff(head: bytes) -> bool:
    return head[:4] in (b"II*\x00", b"MM\x00*")


# --- public API ------------------------------------------------------------------


def sniff_bytes(head: bytes) -> ImageFormat:
    """Classify a buffer by its leading magic bytes, ignoring any file name."""
    head = bytes(head[:_HEAD_BYTES])
    if len(head) < 2:
        raise FormatUnknown(head, f"file too small ({len(head)} bytes)")

    if _is_jpeg(head):
        return ImageFormat.JPEG
    if _is_png(head):
        return ImageFormat.PNG
    if _is_gif(head):
        return ImageFormat.GIF
    if _is_webp(head):
        return ImageFormat.WEBP
    if _is_bmp(head):
        return ImageFormat.BMP
    if _is_tiff(head):
        return ImageFormat.TIFF
    raise FormatUnknown(head)


def sniff(path: Union[str, os.PathLike[str]]) -> ImageFormat:
    """Read at most the first 12 bytes of ``path`` and classify them."""
    with open(path, "rb") as f:
        head = f.read(_HEAD_BYTES)
    return sniff_bytes(head)


def format_for_extension(ext: str) -> Optional[ImageFormat]:
    return _EXT_FORMAT.get(ext.lower())


def is_image_extension(ext: str) -> bool:
    return ext.lower() in IMAGE_EXTENSIONS


def detect_spoof(path: Union[str, os.PathLike[str]], actual: ImageFormat) -> Optional[str]:
    """Return a ``SPOOF_{expected}→{actual}`` tag when the extension lies."""
    expected = format_for_extension(Path(path).suffix)
    if expected is None or expected is actual:
        return None
    return f"SPOOF_{expected.value}→{actual.value}"


__all__ = [
    "ImageFormat",
    "IMAGE_EXTENSIONS",
    "sniff",
    "sniff_bytes",
    "format_for_extension",
    "is_image_extension",
    "detect_spoof",
]
