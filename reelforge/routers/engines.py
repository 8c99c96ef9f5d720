"""Engines router — catalog listing and engine selection."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from reelforge.services.engines.catalog import EngineNotFoundError
from reelforge.services.engines.types import AI_CHOOSES, EngineUnavailable
from reelforge.services.shared import runtime
from reelforge.services.shared.logging import get_logger

logger = get_logger("routers.engines")
router = APIRouter()


class SelectEngineRequest(BaseModel):
    tier: str = AI_CHOOSES
    backend: str = "auto"
    capabilities: List[str] = Field(default_factory=list)
    duration_seconds: float = Field(default=30.0, gt=0)
    include_alternatives: bool = False


@router.get("")
async def list_engines(tier: Optional[str] = None, location: Optional[str] = None) -> Dict[str, Any]:
    """List catalog engines, optionally filtered by tier ceiling and location."""
    catalog = runtime.get_catalog()
    try:
        engines = catalog.filter(tier, location=location) if (tier or location) else catalog.list()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return {"engines": [e.to_dict() for e in engines], "total": len(engines)}


@router.get("/{engine_id}")
async def get_engine(engine_id: str) -> Dict[str, Any]:
    try:
        return runtime.get_catalog().get(engine_id).to_dict()
    except EngineNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Engine {engine_id!r} not found.",
        )


@router.post("/select")
async def select_engine(request: SelectEngineRequest) -> Dict[str, Any]:
    """Pick the best engine for a request; ``available=False`` carries the reason."""
    selector = runtime.get_selector()
    try:
        choice = selector.select(
            request.tier, request.backend, request.capabilities, request.duration_seconds,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    if isinstance(choice, EngineUnavailable):
        return {"available": False, "reason": choice.reason, "engine": None, "alternatives": []}

    cost = runtime.get_cost_estimator().estimate_variation_cost(choice, request.duration_seconds)
    body: Dict[str, Any] = {
        "available": True,
        "engine": choice.to_dict(),
        "estimated_cost_usd": cost,
        "alternatives": [],
    }
    if request.include_alternatives:
        ranked = selector.rank(request.tier, request.backend, request.capabilities, request.duration_seconds)
        body["alternatives"] = [e.to_dict() for e in ranked[1:]]
    return body
