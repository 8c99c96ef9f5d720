"""Render router — dry-run planning and background batch rendering."""
from __future__ import annotations

import threading
import uuid
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, status
from pydantic import BaseModel, Field

from reelforge.services.engines.types import AI_CHOOSES, BackendClass
from reelforge.services.execution.orchestrator import plan_id_for
from reelforge.services.execution.types import BatchRequest, EngineResult, SourceAsset
from reelforge.services.scenes.types import ContentBrief, Pacing
from reelforge.services.shared import runtime
from reelforge.services.shared.config import get_config
from reelforge.services.shared.logging import get_logger

logger = get_logger("routers.render")
router = APIRouter()

# run_id → results of finished batches, newest last; the oldest are dropped
# once MAX_KEPT_RESULTS runs are held.
MAX_KEPT_RESULTS = 100
_run_results: "OrderedDict[str, List[EngineResult]]" = OrderedDict()
_results_lock = threading.Lock()


class SourceModel(BaseModel):
    uri: str
    kind: str = "image"


class BriefModel(BaseModel):
    target_duration_sec: float = 30.0
    category: str = "ugc-review"
    script: str = ""
    market: str = "saudi"
    language: str = "ar"
    persona: str = ""
    pacing: Optional[str] = None
    ai_enhance: bool = False


class BatchRenderRequest(BaseModel):
    variation_count: int = Field(default=1, ge=1, le=50)
    sources: List[SourceModel] = Field(default_factory=list)
    brief: BriefModel = Field(default_factory=BriefModel)
    tier: str = AI_CHOOSES
    backend: str = "auto"
    aspect_ratios: Optional[List[str]] = None
    seed: Optional[int] = None
    required_capabilities: Optional[List[str]] = None
    project_id: str = ""


def _to_batch(request: BatchRenderRequest, run_id: str) -> BatchRequest:
    cfg = get_config()
    try:
        pacing = Pacing(request.brief.pacing) if request.brief.pacing else None
        backend = BackendClass(request.backend)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    brief = ContentBrief(
        target_duration_sec=request.brief.target_duration_sec,
        category=request.brief.category,
        script=request.brief.script,
        assets=[s.uri for s in request.sources],
        market=request.brief.market,
        language=request.brief.language,
        persona=request.brief.persona,
        pacing=pacing,
        ai_enhance=request.brief.ai_enhance,
    )
    return BatchRequest(
        variation_count=request.variation_count,
        sources=[SourceAsset(uri=s.uri, kind=s.kind) for s in request.sources],
        brief=brief,
        tier=request.tier,
        backend=backend,
        aspect_ratios=request.aspect_ratios or list(cfg.get("orchestrator.default_aspect_ratios", ["9:16"])),
        seed=request.seed if request.seed is not None else int(cfg.get("orchestrator.default_seed", 0)),
        required_capabilities=request.required_capabilities,
        run_id=run_id,
        project_id=request.project_id,
    )


def _run_batch(batch: BatchRequest) -> None:
    """Background task: render the batch; job events flow to the tracker."""
    def on_progress(value: float, message: str) -> None:
        logger.info("Run %s %.0f%%: %s", batch.run_id, value * 100, message)

    results = runtime.get_orchestrator().run(batch, on_progress=on_progress)
    _keep_results(batch.run_id, results)


def _keep_results(run_id: str, results: List[EngineResult]) -> None:
    with _results_lock:
        _run_results[run_id] = results
        _run_results.move_to_end(run_id)
        while len(_run_results) > MAX_KEPT_RESULTS:
            _run_results.popitem(last=False)


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.post("/plan")
def plan_render(request: BatchRenderRequest) -> Dict[str, Any]:
    """Dry run: scene plan, selected engine and estimated cost. Nothing is rendered."""
    batch = _to_batch(request, run_id="preview")
    preview = runtime.get_orchestrator().preview(batch)
    if not preview["ok"]:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=preview["error"])
    return preview


@router.post("/batch", status_code=status.HTTP_202_ACCEPTED)
def start_batch(request: BatchRenderRequest, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    """Validate, register a tracker, then render in the background.

    Returns the run id and the job ids (one per variation) to observe via
    ``/api/jobs/{run_id}``.
    """
    run_id = uuid.uuid4().hex[:12]
    batch = _to_batch(request, run_id=run_id)
    preview = runtime.get_orchestrator().preview(batch)
    if not preview["ok"]:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=preview["error"])

    job_ids = [plan_id_for(run_id, i) for i in range(batch.variation_count)]
    runtime.track_run(run_id, job_ids)
    background_tasks.add_task(_run_batch, batch)
    logger.info("Accepted run %s: %d variation(s) on %s", run_id, len(job_ids), preview["engine"]["id"])
    return {
        "run_id": run_id,
        "job_ids": job_ids,
        "engine": preview["engine"],
        "estimated_cost_usd": preview["estimated_cost_usd"],
        "status": "queued",
    }


@router.get("/{run_id}/results")
async def get_results(run_id: str) -> Dict[str, Any]:
    """Per-variation results once the background run has finished."""
    with _results_lock:
        results = _run_results.get(run_id)
    if results is None:
        if runtime.get_tracker(run_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Run {run_id!r} not found.")
        return {"run_id": run_id, "finished": False, "results": []}
    return {"run_id": run_id, "finished": True, "results": [r.to_dict() for r in results]}
