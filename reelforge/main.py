"""ReelForge FastAPI application entry point.

All routers are mounted here. If a router module exists, it must be mounted
in this file.
"""
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reelforge.routers import engines, jobs, render, system
from reelforge.services.shared.config import get_config
from reelforge.services.shared.logging import get_logger, setup_logging

_cfg = get_config()
setup_logging(
    level=_cfg.get("logging.level", "INFO"),
    log_file=str(_cfg.get_path("logging.file")) if _cfg.get("logging.file") else None,
    levels=_cfg.get("logging.levels") or None,
)

logger = get_logger("main")

app = FastAPI(
    title="ReelForge",
    version=system.VERSION,
    description="Multi-engine video rendering orchestrator: scene planning, engine selection, batch rendering.",
)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(engines.router,  prefix="/api/engines",  tags=["Engines"])
app.include_router(render.router,   prefix="/api/render",   tags=["Render"])
app.include_router(jobs.router,     prefix="/api/jobs",     tags=["Jobs"])
app.include_router(system.router,   prefix="/api/system",   tags=["System"])


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the API with uvicorn (``reelforge-server`` console script)."""
    import uvicorn

    host = host or _cfg.get("server.host", "127.0.0.1")
    port = int(port or _cfg.get("server.port", 8000))
    if host == "0.0.0.0":
        logger.warning("Binding to 0.0.0.0: the API has no authentication and is reachable from the LAN")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
