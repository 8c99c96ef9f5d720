"""Jobs router — run progress, retries, push events and WebSocket progress."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from reelforge.services.shared import runtime
from reelforge.services.shared.logging import get_logger
from reelforge.services.tracking.feeds import JobEventSink
from reelforge.services.tracking.tracker import PipelineJobTracker
from reelforge.services.tracking.types import PipelineStage

logger = get_logger("routers.jobs")
router = APIRouter()

_WS_POLL_INTERVAL = 0.5   # seconds between progress snapshots
_WS_TIMEOUT       = 3600  # max WebSocket session duration (1 hour)


class JobEventModel(BaseModel):
    """A job record pushed by a render backend or provider callback."""
    id: str
    run_id: str = ""
    project_id: str = ""
    status: str
    stage_name: Optional[str] = None
    progress: Optional[float] = None
    started_at: Optional[float] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    video_url: Optional[str] = None
    engine_used: Optional[str] = None


def _require_tracker(run_id: str) -> PipelineJobTracker:
    tracker = runtime.get_tracker(run_id)
    if tracker is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run {run_id!r} not found.",
        )
    return tracker


def _snapshot(tracker: PipelineJobTracker) -> Dict[str, Any]:
    progress = tracker.progress
    body = progress.to_dict() if progress is not None else {"run_id": tracker.run_id}
    body["paused"] = tracker.paused
    return body


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.get("/")
async def list_runs() -> Dict[str, Any]:
    runs = runtime.list_runs()
    return {"runs": runs, "total": len(runs)}


@router.post("/events", status_code=status.HTTP_202_ACCEPTED)
def push_event(event: JobEventModel) -> Dict[str, Any]:
    """Persist a job record and publish it to observing trackers."""
    sink = JobEventSink(runtime.get_store(), runtime.get_feed())
    sink(event.model_dump(exclude_none=True))
    return {"accepted": True, "id": event.id}


@router.get("/{run_id}")
async def get_run_progress(run_id: str) -> Dict[str, Any]:
    """Aggregate progress plus every job status of a run."""
    return _snapshot(_require_tracker(run_id))


@router.post("/{run_id}/retry/{video_id}", status_code=status.HTTP_202_ACCEPTED)
def retry_video(run_id: str, video_id: str, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    """Retry one failed job. Siblings are not touched."""
    tracker = _require_tracker(run_id)
    if tracker.paused:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Run is paused.")
    job = tracker.get_status(video_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {video_id!r} not found.")
    if job.stage is not PipelineStage.FAILED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {video_id!r} is {job.stage.value}; only failed jobs can be retried.",
        )
    background_tasks.add_task(tracker.retry_job, video_id)
    return {"run_id": run_id, "video_id": video_id, "status": "queued"}


@router.post("/{run_id}/retry-failed", status_code=status.HTTP_202_ACCEPTED)
def retry_all_failed(run_id: str, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    """Retry every failed job of the run, one after another."""
    tracker = _require_tracker(run_id)
    if tracker.paused:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Run is paused.")
    progress = tracker.progress
    failed = progress.failed_jobs if progress is not None else 0
    background_tasks.add_task(tracker.retry_all_failed)
    return {"run_id": run_id, "retrying": failed}


@router.post("/{run_id}/pause")
async def pause_run(run_id: str) -> Dict[str, Any]:
    """Stop new retry dispatch. Jobs already rendering keep going."""
    tracker = _require_tracker(run_id)
    tracker.pause()
    return {"run_id": run_id, "paused": True}


@router.post("/{run_id}/resume")
async def resume_run(run_id: str) -> Dict[str, Any]:
    tracker = _require_tracker(run_id)
    tracker.resume()
    return {"run_id": run_id, "paused": False}


@router.websocket("/ws/{run_id}")
async def run_progress_ws(websocket: WebSocket, run_id: str) -> None:
    """Stream run progress over WebSocket.

    Pushes a progress snapshot every 500 ms.  Closes when every job is
    terminal or after 1 hour.
    """
    await websocket.accept()
    elapsed = 0.0

    try:
        while elapsed < _WS_TIMEOUT:
            tracker = runtime.get_tracker(run_id)
            if tracker is None:
                await websocket.send_json({
                    "run_id": run_id,
                    "error": f"Run {run_id!r} not found.",
                    "is_complete": True,
                })
                break

            snapshot = _snapshot(tracker)
            await websocket.send_json(snapshot)
            if snapshot.get("is_complete"):
                break

            await asyncio.sleep(_WS_POLL_INTERVAL)
            elapsed += _WS_POLL_INTERVAL

        await websocket.close()

    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected for run_id=%s", run_id)
    except Exception as exc:  # noqa: BLE001
        logger.warning("WebSocket error for run_id=%s: %s", run_id, exc)
