"""Abstract RenderAdapter interface — every render backend implements this."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from reelforge.services.execution.types import EngineResult, ExecutionPlan

# Called with intermediate job state while a render is in flight:
# {"job_id", "status", "progress", "stage"}
StatusCallback = Callable[[Dict[str, Any]], None]


class RenderAdapter(ABC):
    """Abstract base for render backends.

    One adapter exists per backend variant (local render server, cloud API).
    The orchestrator picks the adapter by the plan's backend tag.

    Adapters are responsible for:
    - Translating an ExecutionPlan into the backend's request format
    - Waiting for (or handing back a handle to) the rendered output
    - Converting every failure into a failed EngineResult with a structured
      error; ``render`` never raises
    """

    @abstractmethod
    def name(self) -> str:
        """Short identifier for this adapter (e.g. "local-server")."""

    @abstractmethod
    def render(
        self,
        plan: ExecutionPlan,
        on_status: Optional[StatusCallback] = None,
    ) -> EngineResult:
        """Render one plan.

        Args:
            plan: Immutable plan for one variation.
            on_status: Optional callback receiving intermediate job state.

        Returns:
            EngineResult with status success or failed.
        """


def payload_scenes(plan: ExecutionPlan) -> List[Dict[str, Any]]:
    """Scene list in the wire shape shared by all backends (seconds, camelCase)."""
    return [
        {
            "index": s.index,
            "type": s.type.value,
            "startTime": s.start_ms / 1000.0,
            "endTime": s.end_ms / 1000.0,
            "duration": s.duration_ms / 1000.0,
            "motionStyle": s.motion_style.value,
            "transition": s.transition_into_next.value if s.transition_into_next else None,
            "overlay": s.overlay.to_dict() if s.overlay else None,
            "visualPrompt": s.visual_prompt,
        }
        for s in plan.scene_list
    ]
