# tests/conftest.py
from __future__ import annotations

import io
import os
import struct
import sys
import zipfile
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Union

import pytest
from PIL import Image
from starlette.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("EPUBCLEAN_LOG_JSON", "false")

from epubclean.config import Settings  # noqa: E402
from epubclean.main import create_app  # noqa: E402

Color = Union[int, Tuple[int, ...]]


@pytest.fixture()
def settings() -> Settings:
    return Settings(LOG_JSON=False, MAX_WORKERS=4, PROGRESS_EVERY=2)


def image_bytes(
    fmt: str,
    size: Tuple[int, int] = (100, 100),
    mode: str = "RGB",
    color: Color = (200, 30, 30),
    orientation: Optional[int] = None,
) -> bytes:
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    kwargs = {}
    if orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = orientation
        kwargs["exif"] = exif.tobytes()
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def noisy_png_bytes(size: Tuple[int, int] = (64, 64)) -> bytes:
    img = Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def make_image(tmp_path: Path) -> Callable[..., Path]:
    """Write a Pillow-generated image under tmp_path and return its path."""

    def _make(name: str, fmt: str = "PNG", **kwargs) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(image_bytes(fmt, **kwargs))
        return path

    return _make


def epub_bytes(entries: Dict[str, bytes], mimetype: bool = True) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as z:
        if mimetype:
            info = zipfile.ZipInfo("mimetype")
            info.compress_type = zipfile.ZIP_STORED
            z.writestr(info, b"application/epub+zip")
        for name, data in entries.items():
            z.writestr(name, data, compress_type=zipfile.ZIP_DEFLATED)
    return buf.getvalue()


def sample_book_entries(with_corrupt: bool = True) -> Dict[str, bytes]:
    entries = {
        "META-INF/container.xml": b"<container/>",
        "OEBPS/content.opf": b"<package/>",
        "OEBPS/text/ch1.xhtml": b"<html><body><img src='../images/cover.png'/></body></html>",
        "OEBPS/images/cover.png": image_bytes("PNG", mode="RGBA", color=(10, 20, 30, 255)),
        "OEBPS/images/photo.jpg": image_bytes("JPEG", size=(80, 60)),
    }
    if with_corrupt:
        entries["OEBPS/images/bad.png"] = b"this is not an image"
    return entries


@pytest.fixture()
def make_epub(tmp_path: Path) -> Callable[..., Path]:
    def _make(
        name: str = "book.epub",
        entries: Optional[Dict[str, bytes]] = None,
        with_corrupt: bool = True,
    ) -> Path:
        path = tmp_path / name
        path.write_bytes(epub_bytes(entries or sample_book_entries(with_corrupt)))
        return path

    return _make


@pytest.fixture()
def app(settings: Settings):
    # Function scope: every test gets its own gate and progress channel.
    return create_app(settings)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def make_image_bytes() -> Callable[..., bytes]:
    return image_bytes


@pytest.fixture()
def make_noisy_png() -> Callable[..., bytes]:
    return noisy_png_bytes


@pytest.fixture()
def make_epub_bytes() -> Callable[..., bytes]:
    return epub_bytes


@pytest.fixture()
def book_entries() -> Callable[..., Dict[str, bytes]]:
    return sample_book_entries


def damage_entry(archive: Path, name: str) -> None:
    """Overwrite the start of ``name``'s compressed data with a reserved deflate block."""
    with zipfile.ZipFile(archive) as z:
        info = z.getinfo(name)
    raw = bytearray(archive.read_bytes())
    off = info.header_offset
    name_len, extra_len = struct.unpack("<HH", raw[off + 26:off + 30])
    start = off + 30 + name_len + extra_len
    raw[start:start + 8] = b"\xff" * 8
    archive.write_bytes(bytes(raw))


@pytest.fixture()
def damage_zip_entry() -> Callable[[Path, str], None]:
    return damage_entry
