from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from epubclean.utils.fsio import atomic_write_bytes

# Byte-exact contract: downstream tools detect placeholders by this content.
PLACEHOLDER_SVG = """<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="http://www.w3.org/2000/svg" width="400" height="300">
  <rect width="400" height="300" fill="#f8f8f8"/>
  <rect x="10" y="10" width="380" height="280" fill="none" stroke="#ddd" stroke-width="2" stroke-dasharray="8,4"/>
  <text x="200" y="140" text-anchor="middle" font-family="sans-serif" font-size="16" fill="#999">⚠️ 损坏图像已移除</text>
  <text x="200" y="165" text-anchor="middle" font-family="sans-serif" font-size="11" fill="#bbb">Corrupted Image Removed</text>
</svg>"""

PLACEHOLDER_BYTES = PLACEHOLDER_SVG.encode("utf-8")


def placeholder_path(path: Union[str, os.PathLike]) -> Path:
    return Path(path).with_suffix(".svg")


def substitute(path: Union[str, os.PathLike]) -> Path:
    """Write the placeholder SVG next to ``path`` and delete the original."""
    original = Path(path)
    target = placeholder_path(original)
    atomic_write_bytes(target, PLACEHOLDER_BYTES)
    if original != target:
        original.unlink(missing_ok=True)
    return target


def is_placeholder(path: Union[str, os.PathLike]) -> bool:
    p = Path(path)
    try:
        if p.stat().st_size != len(PLACEHOLDER_BYTES):
            return False
        return p.read_bytes() == PLACEHOLDER_BYTES
    except OSError:
        return False


__all__ = [
    "PLACEHOLDER_SVG",
    "PLACEHOLDER_BYTES",
    "placeholder_path",
    "substitute",
    "is_placeholder",
]
