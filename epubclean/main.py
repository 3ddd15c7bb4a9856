# epubclean/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from epubclean.config import Settings, get_settings
from epubclean.errors import JobBusy
from epubclean.routes import health, metrics_route, sanitize
from epubclean.runtime.jobs import JobGate
from epubclean.telemetry.logging import configure_root_logging
from epubclean.telemetry.progress import LogBuffer, ProgressChannel, fanout, logging_sink

log = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "ops", "description": "Liveness probe"},
    {"name": "sanitize", "description": "EPUB image sanitization jobs"},
    {"name": "metrics", "description": "Prometheus exposition"},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    buffer = LogBuffer(settings.MAX_LOG_LINES)
    channel = ProgressChannel(
        fanout(buffer, logging_sink(logging.getLogger("epubclean.progress"))),
        maxsize=settings.PROGRESS_QUEUE_SIZE,
    )
    channel.start()
    app.state.log_buffer = buffer
    app.state.channel = channel
    log.info("%s %s ready", settings.APP_NAME, settings.VERSION)
    try:
        yield
    finally:
        channel.close()
        app.state.channel = None


async def _handle_job_busy(request: Request, exc: Exception) -> JSONResponse:
    running = getattr(exc, "running_job_id", None)
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "code": "job_running", "running_job_id": running},
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    cfg = settings or get_settings()
    configure_root_logging(cfg.LOG_LEVEL, json_lines=cfg.LOG_JSON)

    app = FastAPI(
        title=cfg.APP_NAME,
        description="Defensive re-encoding of the images inside EPUB files.",
        version=cfg.VERSION,
        lifespan=lifespan,
        openapi_tags=OPENAPI_TAGS,
    )
    app.state.settings = cfg
    app.state.gate = JobGate()
    app.state.channel = None
    app.state.log_buffer = None

    app.add_exception_handler(JobBusy, _handle_job_busy)

    app.include_router(health.router)
    app.include_router(metrics_route.router)
    app.include_router(sanitize.router)
    return app


app = create_app()
