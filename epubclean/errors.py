"""Exception taxonomy for the sanitizer.

Per-file errors (everything except ``ArchiveError`` and ``JobBusy``) are
contained by the pipeline and turned into a placeholder plus a report entry;
they never abort a fan-out.
"""

from __future__ import annotations


class SanitizeError(Exception):
    """Base class for every error raised by epubclean."""


class FormatUnknown(SanitizeError):
    """Magic bytes match no supported raster format."""

    def __init__(self, head: bytes, reason: str = "") -> None:
        self.head = bytes(head)
        detail = reason or f"unknown format (magic: {self.head[:4].hex().upper()})"
        super().__init__(detail)


class ImageBoundsError(SanitizeError):
    """Declared geometry or payload size is outside the decode limits."""


class InvalidDimensions(ImageBoundsError):
    pass


class DimensionExceeded(ImageBoundsError):
    pass


class PixelBombExceeded(ImageBoundsError):
    pass


class DecompressedSizeExceeded(ImageBoundsError):
    pass


class DecodeError(SanitizeError):
    """The decoder rejected the pixel stream."""


class ReencodeError(SanitizeError):
    """Encoding, temp-file write or the final rename failed."""


class PathTraversal(SanitizeError):
    """An archive entry resolves outside the extraction root."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unsafe archive path: {name!r}")


class ArchiveError(SanitizeError):
    """Archive-level failure; fatal for the whole operation."""


class JobBusy(SanitizeError):
    """Another sanitize job holds the gate."""

    def __init__(self, running_job_id: str | None = None) -> None:
        self.running_job_id = running_job_id
        suffix = f" ({running_job_id})" if running_job_id else ""
        super().__init__(f"a sanitize job is already running{suffix}")


__all__ = [
    "SanitizeError",
    "FormatUnknown",
    "ImageBoundsError",
    "InvalidDimensions",
    "DimensionExceeded",
    "PixelBombExceeded",
    "DecompressedSizeExceeded",
    "DecodeError",
    "ReencodeError",
    "PathTraversal",
    "ArchiveError",
    "JobBusy",
]
