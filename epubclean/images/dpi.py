"""Binary-exact DPI injection for JPEG (JFIF APP0) and PNG (pHYs).

Both patchers walk the container structure instead of searching for tag
bytes: compressed payloads can contain ``pHYs`` or ``FF E0`` by chance.
"""

from __future__ import annotations

import struct
import zlib
from typing import Optional

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

_SOI = b"\xFF\xD8"
_APP0 = 0xE0
_SOS = 0xDA
_EOI = 0xD9
_JFIF_ID = b"JFIF\x00"
_JFIF_UNITS_DPI = 1

_PHYS = b"pHYs"
_IHDR = b"IHDR"
_PHYS_DATA_LEN = 9
_PHYS_UNIT_METRE = 1

# Markers without a length field (TEM, RSTn).
_STANDALONE_MARKERS = frozenset([0x01, *range(0xD0, 0xD8)])


def dpi_to_ppm(dpi: int) -> int:
    """Pixels per metre for a dots-per-inch value."""
    return int(round(dpi / 0.0254))


def png_crc32(data: bytes) -> int:
    """CRC-32 (ISO-HDLC) as stored in PNG chunk trailers."""
    return zlib.crc32(data) & 0xFFFFFFFF


# ---- JPEG ---------------------------------------------------------------------


def _find_jfif_app0(data: bytes) -> Optional[int]:
    """Offset of the JFIF APP0 marker, walking segments until SOS."""
    i = 2
    n = len(data)
    while i + 4 <= n:
        if data[i] != 0xFF:
            return None
        marker = data[i + 1]
        if marker == 0xFF:
            # fill byte
            i += 1
            continue
        if marker in _STANDALONE_MARKERS:
            i += 2
            continue
        if marker in (_SOS, _EOI):
            return None
        (seg_len,) = struct.unpack(">H", data[i + 2:i + 4])
        if seg_len < 2 or i + 2 + seg_len > n:
            return None
        if marker == _APP0 and seg_len >= 16 and data[i + 4:i + 9] == _JFIF_ID:
            return i
        i += 2 + seg_len
    return None


def build_jfif_app0(dpi: int) -> bytes:
    return (
        b"\xFF\xE0"
        + struct.pack(">H", 16)
        + _JFIF_ID
        + b"\x01\x01"
        + bytes([_JFIF_UNITS_DPI])
        + struct.pack(">HH", dpi, dpi)
        + b"\x00\x00"
    )


def inject_jfif_dpi(data: bytes, dpi: int) -> bytes:
    """Set JFIF density to ``dpi``; inserts an 18-byte APP0 after SOI when absent."""
    if len(data) < 20 or not data.startswith(_SOI):
        return bytes(data)

    at = _find_jfif_app0(data)
    if at is not None:
        out = bytearray(data)
        out[at + 11] = _JFIF_UNITS_DPI
        struct.pack_into(">HH", out, at + 12, dpi, dpi)
        return bytes(out)

    return data[:2] + build_jfif_app0(dpi) + data[2:]


def read_jfif_density(data: bytes) -> Optional[tuple[int, int, int]]:
    """(units, x_density, y_density) of the JFIF APP0 segment, if any."""
    at = _find_jfif_app0(data) if data.startswith(_SOI) else None
    if at is None:
        return None
    units = data[at + 11]
    x_density, y_density = struct.unpack(">HH", data[at + 12:at + 16])
    return units, x_density, y_density


# ---- PNG ----------------------------------------------------------------------


def build_phys_chunk(dpi: int) -> bytes:
    ppm = dpi_to_ppm(dpi)
    body = _PHYS + struct.pack(">IIB", ppm, ppm, _PHYS_UNIT_METRE)
    return struct.pack(">I", _PHYS_DATA_LEN) + body + struct.pack(">I", png_crc32(body))


def inject_png_phys(data: bytes, dpi: int) -> bytes:
    """Set (or insert right after IHDR) a pHYs chunk declaring ``dpi``."""
    if len(data) < 33 or not data.startswith(PNG_SIGNATURE):
        return bytes(data)

    ppm = dpi_to_ppm(dpi)
    ihdr_end: Optional[int] = None
    pos = len(PNG_SIGNATURE)
    n = len(data)
    while pos + 12 <= n:
        (length,) = struct.unpack(">I", data[pos:pos + 4])
        ctype = data[pos + 4:pos + 8]
        end = pos + 12 + length
        if end > n:
            break
        if ctype == _IHDR:
            ihdr_end = end
        elif ctype == _PHYS and length == _PHYS_DATA_LEN:
            out = bytearray(data)
            struct.pack_into(">IIB", out, pos + 8, ppm, ppm, _PHYS_UNIT_METRE)
            crc = png_crc32(bytes(out[pos + 4:pos + 8 + length]))
            struct.pack_into(">I", out, pos + 8 + length, crc)
            return bytes(out)
        elif ctype == b"IEND":
            break
        pos = end

    if ihdr_end is None:
        return bytes(data)
    return data[:ihdr_end] + build_phys_chunk(dpi) + data[ihdr_end:]


def read_png_phys(data: bytes) -> Optional[tuple[int, int, int]]:
    """(x_ppm, y_ppm, unit) of the first pHYs chunk, if any."""
    pos = len(PNG_SIGNATURE)
    n = len(data)
    while pos + 12 <= n:
        (length,) = struct.unpack(">I", data[pos:pos + 4])
        ctype = data[pos + 4:pos + 8]
        if ctype == _PHYS and length == _PHYS_DATA_LEN and pos + 17 <= n:
            x_ppm, y_ppm, unit = struct.unpack(">IIB", data[pos + 8:pos + 17])
            return x_ppm, y_ppm, unit
        pos += 12 + length
    return None


__all__ = [
    "PNG_SIGNATURE",
    "dpi_to_ppm",
    "png_crc32",
    "build_jfif_app0",
    "inject_jfif_dpi",
    "read_jfif_density",
    "build_phys_chunk",
    "inject_png_phys",
    "read_png_phys",
]
