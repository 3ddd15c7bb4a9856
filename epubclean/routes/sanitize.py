from __future__ import annotations

import logging
import os
import shutil
import tempfile
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, File, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from epubclean.config import Settings
from epubclean.errors import JobBusy
from epubclean.runtime.jobs import JobGate, JobResult, new_job_id, run_sanitize_job

log = logging.getLogger(__name__)

router = APIRouter(prefix="/sanitize", tags=["sanitize"])

EPUB_MEDIA_TYPE = "application/epub+zip"
_ACCEPTED_UPLOAD_TYPES = {EPUB_MEDIA_TYPE, "application/zip", "application/octet-stream", ""}


class _UploadTooLarge(Exception):
    pass


def _error(status: int, code: str, detail: str, **extra: Any) -> JSONResponse:
    payload: Dict[str, Any] = {"detail": detail, "code": code}
    payload.update(extra)
    return JSONResponse(status_code=status, content=payload)


def _is_epub_upload(upload: UploadFile) -> bool:
    name = (upload.filename or "").lower()
    ctype = (upload.content_type or "").split(";", 1)[0].strip().lower()
    return name.endswith(".epub") and ctype in _ACCEPTED_UPLOAD_TYPES


async def _save_upload(upload: UploadFile, dest: str, limit: int, chunk: int) -> int:
    written = 0
    with open(dest, "wb") as out:
        while True:
            data = await upload.read(chunk)
            if not data:
                break
            written += len(data)
            if written > limit:
                raise _UploadTooLarge(f"upload exceeds {limit} bytes")
            out.write(data)
    return written


def _stats_headers(result: JobResult) -> Dict[str, str]:
    s = result.stats
    return {
        "X-Sanitize-Job": result.job_id,
        "X-Sanitize-Total": str(s.total),
        "X-Sanitize-Ok": str(s.ok),
        "X-Sanitize-Repaired": str(s.repaired),
        "X-Sanitize-Replaced": str(s.replaced),
        "X-Sanitize-Failed": str(s.failed),
    }


async def _run_upload(
    request: Request, upload: UploadFile
) -> Tuple[Optional[JobResult], Optional[JSONResponse], str]:
    """Stage the upload and run a job; returns (result, error_response, workdir)."""
    settings: Settings = request.app.state.settings
    gate: JobGate = request.app.state.gate
    channel = getattr(request.app.state, "channel", None)

    workdir = tempfile.mkdtemp(prefix="epubclean_upload_")
    if not _is_epub_upload(upload):
        return None, _error(415, "unsupported_media_type", "expected an .epub upload"), workdir

    src = os.path.join(workdir, "input.epub")
    try:
        size = await _save_upload(
            upload, src, settings.MAX_UPLOAD_BYTES, settings.STREAM_BUFFER_SIZE
        )
    except _UploadTooLarge as exc:
        return None, _error(413, "payload_too_large", str(exc)), workdir

    stem = os.path.splitext(os.path.basename(upload.filename or "book.epub"))[0] or "book"
    dest = os.path.join(workdir, f"{stem}_sanitized.epub")
    job_id = new_job_id()
    log.info("upload %s staged (%d bytes) as %s", upload.filename, size, job_id)

    try:
        result = await run_in_threadpool(
            run_sanitize_job,
            src,
            dest,
            gate=gate,
            settings=settings,
            channel=channel,
            job_id=job_id,
        )
    except JobBusy:
        # Rendered as 409 by the app-level handler.
        shutil.rmtree(workdir, ignore_errors=True)
        raise

    if not result.ok:
        error = _error(422, "job_failed", result.error or "job failed", job_id=result.job_id)
        return None, error, workdir
    return result, None, workdir


@router.post("")
async def sanitize_epub(request: Request, file: UploadFile = File(...)):
    result, error, workdir = await _run_upload(request, file)
    if error is not None or result is None or result.output_path is None:
        shutil.rmtree(workdir, ignore_errors=True)
        return error or _error(500, "internal", "no output produced")

    return FileResponse(
        result.output_path,
        media_type=EPUB_MEDIA_TYPE,
        filename=os.path.basename(result.output_path),
        headers=_stats_headers(result),
        background=BackgroundTask(shutil.rmtree, workdir, ignore_errors=True),
    )


@router.post("/report")
async def sanitize_report(request: Request, file: UploadFile = File(...)) -> JSONResponse:
    result, error, workdir = await _run_upload(request, file)
    # The report endpoint never returns the archive.
    shutil.rmtree(workdir, ignore_errors=True)
    if error is not None or result is None:
        return error or _error(500, "internal", "no result produced")
    payload = result.to_dict()
    payload["output_path"] = None
    return JSONResponse(payload, headers=_stats_headers(result))


@router.get("/logs")
async def sanitize_logs(request: Request) -> Dict[str, Any]:
    buffer = getattr(request.app.state, "log_buffer", None)
    channel = getattr(request.app.state, "channel", None)
    return {
        "lines": buffer.lines() if buffer is not None else [],
        "gaps": buffer.gaps if buffer is not None else 0,
        "dropped": channel.dropped if channel is not None else 0,
    }


__all__ = ["router", "EPUB_MEDIA_TYPE"]
