"""Data types for the ReelForge scene planner."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

# Allowed difference between the scene duration sum and the requested total.
DURATION_TOLERANCE_MS = 1


class SceneType(str, Enum):
    HOOK = "hook"
    PROBLEM = "problem"
    BEFORE = "before"
    SOLUTION = "solution"
    AFTER = "after"
    BENEFITS = "benefits"
    USP = "usp"
    CTA = "cta"
    TESTIMONIAL = "testimonial"
    DEMO = "demo"


class MotionStyle(str, Enum):
    STATIC = "static"
    KEN_BURNS = "ken-burns"
    PARALLAX = "parallax"
    ZOOM_IN = "zoom-in"
    ZOOM_OUT = "zoom-out"
    PAN = "pan"
    SHAKE = "shake"
    ORBIT = "orbit"


class TransitionType(str, Enum):
    CUT = "cut"
    WHIP = "whip"
    ZOOM = "zoom"
    FADE = "fade"
    SLIDE = "slide"
    DISSOLVE = "dissolve"


class Pacing(str, Enum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


@dataclass(frozen=True)
class Overlay:
    """Text overlay burned into a scene."""
    type: str                  # "cta" | "caption" | "price"
    content: str
    position: str = "bottom"   # "top" | "center" | "bottom"
    color: str = "#ffffff"
    font: str = "bold 36px Arial"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type, "content": self.content, "position": self.position,
            "style": {"color": self.color, "font": self.font},
        }


@dataclass(frozen=True)
class Scene:
    """One timed scene. Timing is in integer milliseconds."""
    index: int
    type: SceneType
    start_ms: int
    end_ms: int
    motion_style: MotionStyle
    transition_into_next: Optional[TransitionType] = None
    overlay: Optional[Overlay] = None
    visual_prompt: str = ""

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "type": self.type.value,
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
            "duration_ms": self.duration_ms,
            "motion_style": self.motion_style.value,
            "transition_into_next": (
                self.transition_into_next.value if self.transition_into_next else None
            ),
            "overlay": self.overlay.to_dict() if self.overlay else None,
            "visual_prompt": self.visual_prompt,
        }


@dataclass(frozen=True)
class SceneList:
    """Ordered, contiguous scenes covering exactly ``total_ms``."""
    scenes: Tuple[Scene, ...]
    total_ms: int
    pacing: Pacing = Pacing.MEDIUM
    recommended_transitions: Tuple[TransitionType, ...] = ()
    recommended_hooks: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.scenes)

    def __iter__(self):
        return iter(self.scenes)

    @property
    def scene_types(self) -> List[SceneType]:
        return [s.type for s in self.scenes]

    def validate(self) -> "SceneList":
        """Check the contiguity and duration invariants.

        Raises:
            ValueError: On empty lists, gaps, overlaps, non-positive scenes,
                non-contiguous indices, or a duration sum off by more than
                :data:`DURATION_TOLERANCE_MS`.
        """
        if not self.scenes:
            raise ValueError("SceneList has no scenes")
        cursor = 0
        for i, scene in enumerate(self.scenes):
            if scene.index != i:
                raise ValueError(f"Scene at position {i} has index {scene.index}")
            if scene.start_ms != cursor:
                raise ValueError(
                    f"Scene {i} starts at {scene.start_ms}ms, expected {cursor}ms"
                )
            if scene.end_ms <= scene.start_ms:
                raise ValueError(f"Scene {i} has non-positive duration")
            cursor = scene.end_ms
        if abs(cursor - self.total_ms) > DURATION_TOLERANCE_MS:
            raise ValueError(
                f"Scene durations sum to {cursor}ms, expected {self.total_ms}ms"
            )
        if self.scenes[-1].transition_into_next is not None:
            raise ValueError("Last scene cannot carry a transition into a next scene")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_ms": self.total_ms,
            "pacing": self.pacing.value,
            "recommended_transitions": [t.value for t in self.recommended_transitions],
            "recommended_hooks": list(self.recommended_hooks),
            "scenes": [s.to_dict() for s in self.scenes],
        }


def retime(scenes: Sequence[Scene], durations_ms: Sequence[int]) -> Tuple[Scene, ...]:
    """Return copies of ``scenes`` laid out left-to-right with new durations.

    Indices are reassigned to positions; everything else is kept.
    """
    if len(scenes) != len(durations_ms):
        raise ValueError("retime needs one duration per scene")
    out: List[Scene] = []
    cursor = 0
    for i, (scene, duration) in enumerate(zip(scenes, durations_ms)):
        out.append(replace(scene, index=i, start_ms=cursor, end_ms=cursor + int(duration)))
        cursor += int(duration)
    return tuple(out)


@dataclass
class ContentBrief:
    """What the user asked for, before any planning."""
    target_duration_sec: float
    category: str = "ugc-review"
    script: str = ""
    assets: List[str] = field(default_factory=list)
    market: str = "saudi"
    language: str = "ar"
    persona: str = ""
    pacing: Optional[Pacing] = None      # overrides the market default
    ai_enhance: bool = False             # ask the narrative optimizer to reorder
