"""Data types for the ReelForge pipeline job tracker."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional


class PipelineStage(str, Enum):
    """Per-video stage. Declaration order is pipeline order."""
    QUEUED = "queued"
    ANALYZING = "analyzing"
    REWRITING = "rewriting"
    VOICE = "voice"
    ASSEMBLING = "assembling"
    RENDERING = "rendering"
    SUBTITLE_BURN = "subtitle_burn"
    UPLOAD = "upload"
    VALIDATE = "validate"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.COMPLETED, PipelineStage.FAILED)

    @property
    def order(self) -> int:
        return _STAGE_ORDER.index(self)


_STAGE_ORDER = list(PipelineStage)

STAGE_WEIGHTS: Dict[PipelineStage, int] = {
    PipelineStage.QUEUED: 0,
    PipelineStage.ANALYZING: 10,
    PipelineStage.REWRITING: 20,
    PipelineStage.VOICE: 30,
    PipelineStage.ASSEMBLING: 50,
    PipelineStage.RENDERING: 70,
    PipelineStage.SUBTITLE_BURN: 80,
    PipelineStage.UPLOAD: 90,
    PipelineStage.VALIDATE: 95,
    PipelineStage.COMPLETED: 100,
    PipelineStage.FAILED: 0,
}

# Backend stage / job status names → pipeline stage
BACKEND_STAGE_MAP: Dict[str, PipelineStage] = {
    "pending": PipelineStage.QUEUED,
    "deconstruction": PipelineStage.ANALYZING,
    "analysis": PipelineStage.ANALYZING,
    "rewrite": PipelineStage.REWRITING,
    "voice_generation": PipelineStage.VOICE,
    "video_generation": PipelineStage.ASSEMBLING,
    "assembly": PipelineStage.ASSEMBLING,
    "ffmpeg": PipelineStage.RENDERING,
    "ffmpeg_render": PipelineStage.RENDERING,
    "running": PipelineStage.RENDERING,
    "processing": PipelineStage.RENDERING,
    "export": PipelineStage.SUBTITLE_BURN,
    "uploading": PipelineStage.UPLOAD,
    "url_validation": PipelineStage.VALIDATE,
    "validating": PipelineStage.VALIDATE,
    "done": PipelineStage.COMPLETED,
    "success": PipelineStage.COMPLETED,
    "complete": PipelineStage.COMPLETED,
    "ready": PipelineStage.COMPLETED,
    "error": PipelineStage.FAILED,
}


def translate_stage(name: Optional[str]) -> Optional[PipelineStage]:
    """Map a backend stage or status name to a PipelineStage (None if unknown)."""
    if not name:
        return None
    key = str(name).strip().lower()
    if key in BACKEND_STAGE_MAP:
        return BACKEND_STAGE_MAP[key]
    try:
        return PipelineStage(key)
    except ValueError:
        return None


@dataclass(frozen=True)
class VideoJobStatus:
    """Tracker view of one video job. Replaced, never mutated."""
    id: str
    stage: PipelineStage = PipelineStage.QUEUED
    started_at: float = 0.0
    updated_at: float = 0.0
    elapsed_seconds: int = 0
    retry_count: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    video_url: Optional[str] = None
    engine_used: Optional[str] = None

    @property
    def stage_weight(self) -> int:
        return STAGE_WEIGHTS[self.stage]

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "stage": self.stage.value,
            "stage_weight": self.stage_weight,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "elapsed_seconds": self.elapsed_seconds,
            "retry_count": self.retry_count,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "video_url": self.video_url,
            "engine_used": self.engine_used,
        }


@dataclass(frozen=True)
class PipelineProgress:
    """Aggregate progress of a run, always derived from the status set."""
    run_id: str
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    processing_jobs: int
    overall_progress_pct: int
    is_complete: bool
    has_errors: bool
    statuses: Dict[str, VideoJobStatus] = field(default_factory=dict)

    @classmethod
    def from_statuses(cls, run_id: str, statuses: Dict[str, VideoJobStatus]) -> "PipelineProgress":
        total = len(statuses)
        completed = sum(1 for s in statuses.values() if s.stage is PipelineStage.COMPLETED)
        failed = sum(1 for s in statuses.values() if s.stage is PipelineStage.FAILED)
        validating = sum(1 for s in statuses.values() if s.stage is PipelineStage.VALIDATE)
        pct = int(round((completed + 0.5 * validating) / total * 100)) if total else 0
        return cls(
            run_id=run_id,
            total_jobs=total,
            completed_jobs=completed,
            failed_jobs=failed,
            processing_jobs=total - completed - failed,
            overall_progress_pct=pct,
            is_complete=total > 0 and completed + failed == total,
            has_errors=failed > 0,
            statuses=dict(statuses),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "total_jobs": self.total_jobs,
            "completed_jobs": self.completed_jobs,
            "failed_jobs": self.failed_jobs,
            "processing_jobs": self.processing_jobs,
            "overall_progress_pct": self.overall_progress_pct,
            "is_complete": self.is_complete,
            "has_errors": self.has_errors,
            "statuses": {k: v.to_dict() for k, v in self.statuses.items()},
        }


@dataclass
class TrackerCallbacks:
    """Observer hooks. Each is optional; all run outside the tracker lock."""
    on_progress: Optional[Callable[[PipelineProgress], None]] = None
    on_complete: Optional[Callable[[PipelineProgress], None]] = None
    on_error: Optional[Callable[[VideoJobStatus], None]] = None
    on_video_ready: Optional[Callable[[VideoJobStatus], None]] = None
