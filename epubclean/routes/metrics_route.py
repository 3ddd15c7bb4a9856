from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

# Importing registers the collectors before the first scrape.
from epubclean.telemetry import metrics as _metrics  # noqa: F401

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def prometheus_metrics(_: Request) -> PlainTextResponse:
    """Prometheus exposition of the default registry."""
    body = generate_latest(REGISTRY).decode("utf-8")
    return PlainTextResponse(body, media_type=CONTENT_TYPE_LATEST)
