"""Data types for the ReelForge execution orchestrator."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from reelforge.services.engines.types import BackendClass, Location, ProviderId, Tier
from reelforge.services.scenes.types import ContentBrief, SceneList
from reelforge.services.shared.errors import ErrorInfo

# Output frame size per aspect ratio
ASPECT_RATIO_DIMENSIONS: Dict[str, Tuple[int, int]] = {
    "9:16": (1080, 1920),
    "16:9": (1920, 1080),
    "1:1": (1080, 1080),
    "4:5": (1080, 1350),
}
DEFAULT_ASPECT_RATIO = "9:16"


@dataclass(frozen=True)
class SourceAsset:
    """An input image or video: either a local path or a remote URL."""
    uri: str
    kind: str = "image"   # "image" | "video"

    @property
    def is_remote(self) -> bool:
        return self.uri.startswith(("http://", "https://"))

    @property
    def is_local_file(self) -> bool:
        return not self.is_remote and os.path.isfile(self.uri)


@dataclass
class BatchRequest:
    """N variations of one brief, rendered on one selected engine."""
    variation_count: int
    sources: List[SourceAsset]
    brief: ContentBrief
    tier: str = "ai-chooses"                                  # Tier value or "ai-chooses"
    backend: BackendClass = BackendClass.AUTO
    aspect_ratios: List[str] = field(default_factory=lambda: [DEFAULT_ASPECT_RATIO])
    seed: int = 0
    required_capabilities: Optional[List[str]] = None         # derived from sources when None
    run_id: str = ""
    project_id: str = ""


@dataclass(frozen=True)
class Backend:
    """Where a plan is dispatched: the local render server or one cloud provider."""
    location: Location
    provider: Optional[ProviderId] = None

    @classmethod
    def local_server(cls) -> "Backend":
        return cls(Location.LOCAL_SERVER)

    @classmethod
    def cloud_api(cls, provider: ProviderId) -> "Backend":
        return cls(Location.CLOUD_API, provider)

    @property
    def label(self) -> str:
        if self.provider is None:
            return self.location.value
        return f"{self.location.value}:{self.provider.value}"


@dataclass(frozen=True)
class ExecutionPlan:
    """Everything one variation needs to be rendered."""
    plan_id: str
    run_id: str
    variation_index: int
    scene_list: SceneList
    aspect_ratio: str
    width: int
    height: int
    engine_id: str
    backend: Backend
    sources: Tuple[SourceAsset, ...]
    output_name: str = ""

    @property
    def duration_sec(self) -> float:
        return self.scene_list.total_ms / 1000.0

    @property
    def primary_source(self) -> SourceAsset:
        return self.sources[0]


class ResultStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class OutputType(str, Enum):
    VIDEO = "video"
    PLAN = "plan"
    JOB_HANDLE = "job-handle"


@dataclass
class EngineResult:
    """Outcome of one variation (or of the whole batch when it failed early).

    ``variation_index`` is None for batch-level failures.
    """
    status: ResultStatus
    output_type: Optional[OutputType] = None
    video_url: Optional[str] = None
    job_id: Optional[str] = None
    error: Optional[ErrorInfo] = None
    logs: List[str] = field(default_factory=list)
    plan_id: Optional[str] = None
    variation_index: Optional[int] = None
    engine_id: Optional[str] = None
    backend: Optional[Backend] = None
    estimated_cost_usd: float = 0.0
    fallback_used: bool = False

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "output_type": self.output_type.value if self.output_type else None,
            "video_url": self.video_url,
            "job_id": self.job_id,
            "error": self.error.to_dict() if self.error else None,
            "logs": list(self.logs),
            "plan_id": self.plan_id,
            "variation_index": self.variation_index,
            "engine_id": self.engine_id,
            "backend": self.backend.label if self.backend else None,
            "estimated_cost_usd": self.estimated_cost_usd,
            "fallback_used": self.fallback_used,
        }


@dataclass(frozen=True)
class HealthStatus:
    """Render server health as seen by the orchestrator."""
    ok: bool
    encoder_ready: bool = False
    encoder_path: Optional[str] = None
    encoder_version: Optional[str] = None
    queue_length: int = 0
    error: Optional[ErrorInfo] = None


def derive_capabilities(sources: Sequence[SourceAsset]) -> List[str]:
    """Capability tags implied by the source assets."""
    caps: List[str] = []
    for src in sources:
        tags = ["image-to-video"] if src.kind == "image" else ["video-to-video", "trim", "merge"]
        for tag in tags:
            if tag not in caps:
                caps.append(tag)
    return caps


def dimensions_for(aspect_ratio: str) -> Tuple[int, int]:
    """Return (width, height) for ``aspect_ratio``.

    Raises:
        ValueError: For an unknown aspect ratio.
    """
    try:
        return ASPECT_RATIO_DIMENSIONS[aspect_ratio]
    except KeyError:
        raise ValueError(
            f"Unknown aspect ratio {aspect_ratio!r}; expected one of "
            f"{sorted(ASPECT_RATIO_DIMENSIONS)}"
        ) from None
