from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter(tags=["ops"])


@router.get("/health")
async def health(request: Request) -> Dict[str, Any]:
    settings = request.app.state.settings
    gate = getattr(request.app.state, "gate", None)
    channel = getattr(request.app.state, "channel", None)
    return {
        "status": "ok",
        "version": settings.VERSION,
        "job_running": bool(gate is not None and gate.running),
        "progress_channel": "running" if channel is not None and channel.running else "stopped",
    }
