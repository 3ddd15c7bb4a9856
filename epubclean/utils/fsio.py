from __future__ import annotations

import os
import tempfile
from typing import Union

PathLike = Union[str, os.PathLike]


def atomic_write_bytes(path: PathLike, data: bytes, *, prefix: str = ".epubclean.") -> int:
    """Write ``data`` to a sibling temp file, then ``os.replace`` it over ``path``.

    A crash leaves either the old file or the new one, never a partial write.
    Returns the number of bytes written.
    """
    target = os.fspath(path)
    directory = os.path.dirname(target) or "."
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=prefix, suffix=".tmp", dir=directory)
    try:
        with os.fdopen(tmp_fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
    return len(data)


__all__ = ["atomic_write_bytes"]
