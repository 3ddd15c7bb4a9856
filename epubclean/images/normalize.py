"""Pixel normalization steps.

Each step takes an image and returns ``(image, action)`` where ``action`` is
the tag to record, or ``None`` when the step left the image untouched. The
pipeline applies them in the order they appear here.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional, Tuple, Union

from PIL import ExifTags, Image

from epubclean.config import Settings
from epubclean.images.decoder import DecodedImage, PixelLayout

log = logging.getLogger(__name__)

Step = Tuple[DecodedImage, Optional[str]]

_ORIENTATION_TRANSFORMS: Dict[int, Tuple[Image.Transpose, str]] = {
    2: (Image.Transpose.FLIP_LEFT_RIGHT, "EXIF_FLIP_H"),
    3: (Image.Transpose.ROTATE_180, "EXIF_ROT_180"),
    4: (Image.Transpose.FLIP_TOP_BOTTOM, "EXIF_FLIP_V"),
    5: (Image.Transpose.TRANSPOSE, "EXIF_TRANSPOSE"),
    6: (Image.Transpose.ROTATE_270, "EXIF_ROT_270"),
    7: (Image.Transpose.TRANSVERSE, "EXIF_TRANSVERSE"),
    8: (Image.Transpose.ROTATE_90, "EXIF_ROT_90"),
}

EXIF_STRIPPED = "EXIF_STRIPPED"
FORCE_SRGB = "FORCE_sRGB"
ALPHA_FLAT_WHITE = "ALPHA_FLAT_WHITE"

_WHITE = (255, 255, 255, 255)


def read_exif_orientation(path: Union[str, os.PathLike]) -> Optional[int]:
    """Orientation tag (1-8) read from the original file, or None if unreadable."""
    try:
        with Image.open(path) as im:
            value = im.getexif().get(ExifTags.Base.Orientation)
    except Exception as exc:
        log.debug("exif unreadable for %s: %s", path, exc)
        return None
    try:
        orientation = int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
    if orientation is None or not 1 <= orientation <= 8:
        return None
    return orientation


def needs_rotation(orientation: Optional[int]) -> bool:
    return orientation is not None and orientation > 1


def exif_rotate(path: Union[str, os.PathLike], img: DecodedImage) -> Step:
    # Metadata never survives re-encoding, so an upright image is still
    # tagged as stripped.
    orientation = read_exif_orientation(path)
    transform = _ORIENTATION_TRANSFORMS.get(orientation or 1)
    if transform is None:
        return img, EXIF_STRIPPED
    method, action = transform
    return img.replace(img.image.transpose(method)), action


def _to_rgba(im: Image.Image) -> Image.Image:
    if im.mode.startswith("I"):
        # 16-bit samples are scaled into 8 bits; a plain convert would clip.
        im = im.convert("I").point(lambda v: v * (1 / 256)).convert("L")
    elif im.mode == "F":
        im = im.convert("L")
    return im.convert("RGBA")


def normalize_color(img: DecodedImage) -> Step:
    if img.layout is PixelLayout.RGBA:
        return img, None
    return img.replace(_to_rgba(img.image)), FORCE_SRGB


def _has_translucency(img: Image.Image, settings: Settings) -> bool:
    alpha = img.getchannel("A")
    width, height = alpha.size
    if width * height <= settings.ALPHA_FULL_SCAN_AREA:
        low, _ = alpha.getextrema()
        return low < 255
    step = settings.ALPHA_SAMPLE_STRIDE
    px = alpha.load()
    for y in range(0, height, step):
        for x in range(0, width, step):
            if px[x, y] < 255:
                return True
    return False


def flatten_alpha(img: DecodedImage, settings: Settings) -> Step:
    if not img.has_alpha:
        return img, None
    rgba = img.image if img.image.mode == "RGBA" else _to_rgba(img.image)
    if not _has_translucency(rgba, settings):
        return img, None
    canvas = Image.new("RGBA", rgba.size, _WHITE)
    flat = Image.alpha_composite(canvas, rgba)
    return img.replace(flat), ALPHA_FLAT_WHITE


def resize_long_side(img: DecodedImage, settings: Settings) -> Step:
    cap = settings.MAX_IMAGE_LONG_SIDE
    width, height = img.width, img.height
    long_side = max(width, height)
    if long_side <= cap:
        return img, None
    scale = cap / float(long_side)
    new_w = max(1, round(width * scale))
    new_h = max(1, round(height * scale))
    resized = img.image.resize((new_w, new_h), Image.Resampling.LANCZOS)
    return img.replace(resized), f"RESIZE_{width}x{height}→{new_w}x{new_h}"


__all__ = [
    "read_exif_orientation",
    "needs_rotation",
    "exif_rotate",
    "normalize_color",
    "flatten_alpha",
    "resize_long_side",
    "EXIF_STRIPPED",
    "FORCE_SRGB",
    "ALPHA_FLAT_WHITE",
]
