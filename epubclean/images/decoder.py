"""Two-phase bounded decoding.

Phase 1 parses the header only (Pillow's ``Image.open`` is lazy) and checks
the declared geometry. Phase 2 re-opens the file from offset 0 through a
position-capped reader and loads the pixels. A tiny file that claims
gigantic dimensions is therefore rejected before any pixel buffer exists.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import IO, Optional, Tuple, Union

from PIL import Image

from epubclean.config import Settings
from epubclean.errors import (
    DecodeError,
    DecompressedSizeExceeded,
    DimensionExceeded,
    InvalidDimensions,
    PixelBombExceeded,
)
from epubclean.images.formats import ImageFormat

log = logging.getLogger(__name__)

# Geometry limits come from Settings via validate_dimensions; Pillow's own
# fixed guard would reject sizes those settings allow.
Image.MAX_IMAGE_PIXELS = None

PathLike = Union[str, os.PathLike]


class PixelLayout(str, Enum):
    """Closed set of pixel representations, decided once per decode."""

    RGBA = "rgba"  # canonical straight-alpha RGBA
    ALPHA = "alpha"  # non-canonical mode that can carry transparency
    OPAQUE = "opaque"

    @classmethod
    def of(cls, img: Image.Image) -> "PixelLayout":
        if img.mode == "RGBA":
            return cls.RGBA
        if img.mode in ("LA", "La", "PA", "RGBa") or "transparency" in img.info:
            return cls.ALPHA
        return cls.OPAQUE


@dataclass
class DecodedImage:
    image: Image.Image
    layout: PixelLayout
    source_format: Optional[ImageFormat] = None

    @classmethod
    def wrap(cls, img: Image.Image, source_format: Optional[ImageFormat] = None) -> "DecodedImage":
        return cls(image=img, layout=PixelLayout.of(img), source_format=source_format)

    def replace(self, img: Image.Image) -> "DecodedImage":
        return DecodedImage.wrap(img, self.source_format)

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def has_alpha(self) -> bool:
        return self.layout is not PixelLayout.OPAQUE


class _CappedReader:
    """Read-only file wrapper that refuses to hand out bytes past ``limit``."""

    def __init__(self, raw: IO[bytes], limit: int) -> None:
        self._raw = raw
        self._limit = limit

    def read(self, size: int = -1) -> bytes:
        pos = self._raw.tell()
        remaining = self._limit - pos
        if size is None or size < 0:
            data = self._raw.read(remaining + 1) if remaining >= 0 else b""
        else:
            data = self._raw.read(min(size, max(remaining, 0) + 1))
        if pos + len(data) > self._limit:
            raise DecompressedSizeExceeded(
                f"decode stream exceeds {self._limit} bytes"
            )
        return data

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._raw.seek(offset, whence)

    def tell(self) -> int:
        return self._raw.tell()

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True


# ---- phase 1 --------------------------------------------------------------------


def probe_dimensions(path: PathLike, fmt: ImageFormat) -> Tuple[int, int]:
    """Parse the header only and return (width, height)."""
    try:
        with Image.open(path, formats=[fmt.pil_name]) as im:
            return im.size
    except Image.DecompressionBombError as exc:
        raise PixelBombExceeded(f"pixel bomb: {exc}") from exc
    except Exception as exc:
        raise DecodeError(f"{fmt.value} header: {exc}") from exc


def validate_dimensions(width: int, height: int, settings: Settings) -> None:
    if width <= 0 or height <= 0:
        raise InvalidDimensions(f"invalid dimensions: {width}x{height}")
    limit = settings.MAX_IMAGE_DIMENSION
    if width > limit or height > limit:
        raise DimensionExceeded(f"monster image: {width}x{height} > {limit}")
    pixels = width * height
    if pixels > settings.MAX_PIXEL_COUNT:
        raise PixelBombExceeded(f"pixel bomb: {pixels // 1_000_000}M pixels")


# ---- phase 2 --------------------------------------------------------------------


def decode(path: PathLike, fmt: ImageFormat, settings: Settings) -> DecodedImage:
    width, height = probe_dimensions(path, fmt)
    validate_dimensions(width, height, settings)

    limit = settings.MAX_DECOMPRESSED_SIZE
    try:
        size = os.path.getsize(path)
    except OSError as exc:
        raise DecodeError(f"{fmt.value} decode: {exc}") from exc
    if size > limit:
        raise DecompressedSizeExceeded(f"encoded size {size} > {limit} bytes")

    try:
        with open(path, "rb") as raw:
            reader = _CappedReader(raw, limit)
            img = Image.open(reader, formats=[fmt.pil_name])  # type: ignore[arg-type]
            if img.size != (width, height):
                raise DecodeError(f"{fmt.value} decode: header changed between passes")
            img.load()
    except (DecompressedSizeExceeded, DecodeError):
        raise
    except Image.DecompressionBombError as exc:
        raise PixelBombExceeded(f"pixel bomb: {exc}") from exc
    except Exception as exc:
        raise DecodeError(f"{fmt.value} decode: {exc}") from exc

    log.debug("decoded %s %dx%d mode=%s", fmt.value, width, height, img.mode)
    return DecodedImage.wrap(img, fmt)


__all__ = [
    "PixelLayout",
    "DecodedImage",
    "probe_dimensions",
    "validate_dimensions",
    "decode",
]
