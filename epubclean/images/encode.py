from __future__ import annotations

import io
import logging
import os
from typing import Union

from epubclean.config import Settings
from epubclean.errors import ReencodeError
from epubclean.images.decoder import DecodedImage
from epubclean.images.dpi import inject_jfif_dpi, inject_png_phys
from epubclean.utils.fsio import atomic_write_bytes

log = logging.getLogger(__name__)


def _png_bytes(img: DecodedImage) -> bytes:
    im = img.image
    if im.mode == "RGBA" and im.getchannel("A").getextrema()[0] == 255:
        # Fully opaque after flattening; the alpha plane only costs bytes.
        im = im.convert("RGB")
    elif im.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        im = im.convert("RGBA")
    buf = io.BytesIO()
    im.save(buf, format="PNG")
    return buf.getvalue()


def _jpeg_bytes(img: DecodedImage, quality: int) -> bytes:
    im = img.image
    if im.mode != "RGB":
        im = im.convert("RGB")
    buf = io.BytesIO()
    im.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def encode_image(img: DecodedImage, ext: str, settings: Settings) -> bytes:
    """Encode for the file's extension: PNG for ``.png``, JPEG for everything else."""
    dpi = settings.TARGET_DPI
    if ext.lower() == ".png":
        return inject_png_phys(_png_bytes(img), dpi)
    return inject_jfif_dpi(_jpeg_bytes(img, settings.JPEG_QUALITY), dpi)


def reencode(path: Union[str, os.PathLike], img: DecodedImage, settings: Settings) -> int:
    """Re-encode ``img`` over ``path`` transactionally; returns the new size."""
    ext = os.path.splitext(os.fspath(path))[1]
    try:
        data = encode_image(img, ext, settings)
    except Exception as exc:
        raise ReencodeError(f"encode failed: {exc}") from exc
    try:
        written = atomic_write_bytes(path, data)
    except OSError as exc:
        raise ReencodeError(f"write failed: {exc}") from exc
    log.debug("re-encoded %s (%d bytes)", path, written)
    return written


__all__ = ["encode_image", "reencode"]
