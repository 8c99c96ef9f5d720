"""System router — service health and render server status."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from reelforge.services.shared import runtime
from reelforge.services.shared.logging import get_logger

logger = get_logger("routers.system")
router = APIRouter()

VERSION = "1.0.0"


@router.get("/health")
async def health_check() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": VERSION}


@router.get("/render-server")
def render_server_status() -> Dict[str, Any]:
    """Probe the render server's ``/health``.

    ``configured`` is False when no base URL is set; ``ok`` is False when the
    server is unreachable, answers with non-JSON, or has no encoder.
    """
    adapter = runtime.get_local_adapter()
    if adapter is None:
        return {"configured": False, "ok": False, "error": None}
    health = adapter.check_health()
    return {
        "configured": True,
        "base_url": adapter.base_url,
        "ok": health.ok,
        "encoder_ready": health.encoder_ready,
        "encoder_version": health.encoder_version,
        "queue_length": health.queue_length,
        "error": health.error.to_dict() if health.error else None,
    }
