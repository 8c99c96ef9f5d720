"""Deterministic per-variation tweaks applied to the planned scene list.

Each variation gets slightly different scene durations (±5%) and its own
camera motion for the middle scenes.  Both are pure functions of
``(seed, variation_index, scene_index)``; the total duration never changes.
"""
from __future__ import annotations

from dataclasses import replace
from typing import List, Sequence

from reelforge.services.scenes.types import MotionStyle, SceneList, SceneType, retime
from reelforge.services.shared.seeding import seeded_choice, seeded_uniform

JITTER = 0.05

MOTION_ROTATION = (
    MotionStyle.KEN_BURNS,
    MotionStyle.PARALLAX,
    MotionStyle.ZOOM_IN,
    MotionStyle.PAN,
)

# Hook and CTA keep their planned motion: they anchor the ad.
_FIXED_MOTION = {SceneType.HOOK, SceneType.CTA}


def jitter_weight(seed: int, variation_index: int, scene_index: int) -> float:
    """Multiplier in ``[0.95, 1.05]`` for one scene of one variation."""
    return 1.0 + seeded_uniform(-JITTER, JITTER, seed, "jitter", variation_index, scene_index)


def motion_for(seed: int, variation_index: int, scene_index: int) -> MotionStyle:
    return seeded_choice(MOTION_ROTATION, seed, "motion", variation_index, scene_index)


def jitter_durations(durations: Sequence[int], seed: int, variation_index: int) -> List[int]:
    """Scale ``durations`` by their jitter weights, keeping the exact sum.

    The scaled values are renormalized to the original total and rounded
    with the largest-remainder method (ties go to the earlier scene).
    """
    total = sum(durations)
    if not durations or total <= 0:
        return list(durations)
    scaled = [d * jitter_weight(seed, variation_index, k) for k, d in enumerate(durations)]
    factor = total / sum(scaled)
    exact = [s * factor for s in scaled]
    out = [int(x) for x in exact]
    shortfall = total - sum(out)
    by_remainder = sorted(range(len(exact)), key=lambda k: (-(exact[k] - out[k]), k))
    for k in by_remainder[:shortfall]:
        out[k] += 1
    if any(d <= 0 for d in out):
        return list(durations)
    return out


def vary_scene_list(scene_list: SceneList, seed: int, variation_index: int) -> SceneList:
    """Return the scene list for one variation."""
    durations = jitter_durations([s.duration_ms for s in scene_list], seed, variation_index)
    varied = []
    for k, scene in enumerate(scene_list):
        if scene.type in _FIXED_MOTION:
            varied.append(scene)
        else:
            varied.append(replace(scene, motion_style=motion_for(seed, variation_index, k)))
    return replace(scene_list, scenes=retime(varied, durations)).validate()
