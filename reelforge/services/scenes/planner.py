"""ScenePlanner — turns a content brief into an ordered, timed SceneList."""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from reelforge.services.scenes.types import (
    ContentBrief, MotionStyle, Overlay, Pacing, Scene, SceneList, SceneType,
    TransitionType, retime,
)
from reelforge.services.shared.logging import get_logger
from reelforge.services.shared.seeding import seeded_choice

logger = get_logger("scenes.planner")

_T = SceneType
_M = MotionStyle

# Scene templates by content category
SCENE_TEMPLATES: Dict[str, Tuple[SceneType, ...]] = {
    "ugc-review":       (_T.HOOK, _T.PROBLEM, _T.SOLUTION, _T.BENEFITS, _T.CTA),
    "before-after":     (_T.HOOK, _T.BEFORE, _T.SOLUTION, _T.AFTER, _T.CTA),
    "problem-solution": (_T.HOOK, _T.PROBLEM, _T.SOLUTION, _T.BENEFITS, _T.USP, _T.CTA),
    "testimonial":      (_T.HOOK, _T.TESTIMONIAL, _T.BENEFITS, _T.CTA),
    "product-showcase": (_T.HOOK, _T.DEMO, _T.BENEFITS, _T.USP, _T.CTA),
    "unboxing":         (_T.HOOK, _T.DEMO, _T.BENEFITS, _T.CTA),
    "day-in-life":      (_T.HOOK, _T.DEMO, _T.BENEFITS, _T.TESTIMONIAL, _T.CTA),
    "educational":      (_T.HOOK, _T.PROBLEM, _T.SOLUTION, _T.DEMO, _T.CTA),
}
DEFAULT_CATEGORY = "ugc-review"


@dataclass(frozen=True)
class MarketProfile:
    pacing: Pacing
    hook_style: str
    cta_text: str
    hooks: Tuple[str, ...]


_US_HOOKS = (
    "You're doing it wrong",
    "This hack saved me $1000",
    "POV: You just discovered",
    "Wait for it...",
)

MARKET_PROFILES: Dict[str, MarketProfile] = {
    "saudi": MarketProfile(
        Pacing.MEDIUM, "emotional", "اطلب الآن",
        ("هل تعاني من...؟", "اكتشف السر الذي يخفونه عنك",
         "لن تصدق ما حدث معي", "توقف! قبل أن تشتري"),
    ),
    "uae": MarketProfile(
        Pacing.MEDIUM, "luxury", "Order Now",
        ("The secret to...", "You won't believe this", "Stop scrolling!",
         "This changed everything"),
    ),
    "usa": MarketProfile(Pacing.FAST, "direct", "Order Now", _US_HOOKS),
    "europe": MarketProfile(Pacing.MEDIUM, "professional", "Order Now", _US_HOOKS),
    "latam": MarketProfile(Pacing.FAST, "emotional", "Pide Ahora", _US_HOOKS),
}
DEFAULT_MARKET = "saudi"

# Motion candidates per scene type; the first entry is the safe default.
SCENE_MOTIONS: Dict[SceneType, Tuple[MotionStyle, ...]] = {
    _T.HOOK:        (_M.ZOOM_IN, _M.SHAKE, _M.KEN_BURNS),
    _T.PROBLEM:     (_M.STATIC, _M.PARALLAX),
    _T.BEFORE:      (_M.STATIC, _M.ZOOM_OUT),
    _T.SOLUTION:    (_M.ZOOM_IN, _M.KEN_BURNS),
    _T.AFTER:       (_M.ZOOM_IN, _M.PARALLAX),
    _T.BENEFITS:    (_M.KEN_BURNS, _M.PAN),
    _T.USP:         (_M.PARALLAX, _M.ORBIT),
    _T.CTA:         (_M.ZOOM_IN, _M.SHAKE),
    _T.TESTIMONIAL: (_M.STATIC, _M.KEN_BURNS),
    _T.DEMO:        (_M.PAN, _M.ZOOM_IN),
}

PACING_TRANSITIONS: Dict[Pacing, Tuple[TransitionType, ...]] = {
    Pacing.FAST:   (TransitionType.CUT, TransitionType.WHIP, TransitionType.ZOOM),
    Pacing.MEDIUM: (TransitionType.CUT, TransitionType.FADE, TransitionType.SLIDE),
    Pacing.SLOW:   (TransitionType.FADE, TransitionType.DISSOLVE, TransitionType.SLIDE),
}

VISUAL_PROMPTS: Dict[SceneType, str] = {
    _T.HOOK:        "Attention-grabbing opening, close-up or dramatic movement",
    _T.PROBLEM:     "Show the problem or pain point clearly",
    _T.BEFORE:      "Before state - show the issue or current situation",
    _T.SOLUTION:    "Introduce the product as the solution",
    _T.AFTER:       "After state - show the transformation or improvement",
    _T.BENEFITS:    "Highlight key benefits with product in focus",
    _T.USP:         "Unique selling point - what makes this different",
    _T.CTA:         "Call to action - clear instruction to buy",
    _T.TESTIMONIAL: "Real person testimonial or reaction",
    _T.DEMO:        "Product demonstration or usage",
}

# Opening and closing scene shares, each capped in milliseconds.
OPENING_SHARE, OPENING_CAP_MS = 0.10, 3000
CLOSING_SHARE, CLOSING_CAP_MS = 0.15, 4500
MIN_TOTAL_SEC = 1.0


class ScenePlanner:
    """Builds a timed scene skeleton from a template, then optionally asks
    a narrative optimizer for a better order.

    Every choice that looks random (motion style, transition) is a pure
    function of ``(seed, position)``, so planning twice with the same seed
    produces the same SceneList.

    Usage::

        planner = ScenePlanner(optimizer=NarrativeOptimizer(endpoint_url))
        scenes = planner.plan(ContentBrief(target_duration_sec=30), seed=7)
    """

    def __init__(self, optimizer: Optional[object] = None):
        self._optimizer = optimizer

    # ── public ────────────────────────────────────────────────────────────────

    def plan(self, brief: ContentBrief, seed: int = 0) -> SceneList:
        """Plan scenes for ``brief``.

        Args:
            brief: Content brief with category, target duration and market.
            seed: Seed for motion and transition picks.

        Returns:
            A validated :class:`SceneList`.

        Raises:
            ValueError: If the target duration is shorter than one second.
        """
        if brief.target_duration_sec < MIN_TOTAL_SEC:
            raise ValueError(
                f"target_duration_sec must be >= {MIN_TOTAL_SEC}, got {brief.target_duration_sec}"
            )

        template = SCENE_TEMPLATES.get(brief.category)
        if template is None:
            logger.debug("Unknown category %r, using %s template", brief.category, DEFAULT_CATEGORY)
            template = SCENE_TEMPLATES[DEFAULT_CATEGORY]
        market = MARKET_PROFILES.get(brief.market, MARKET_PROFILES[DEFAULT_MARKET])
        pacing = brief.pacing or market.pacing

        total_ms = int(round(brief.target_duration_sec * 1000))
        durations = allocate_durations(len(template), total_ms)

        skeleton = []
        for i, scene_type in enumerate(template):
            skeleton.append(Scene(
                index=i,
                type=scene_type,
                start_ms=0,
                end_ms=0,
                motion_style=seeded_choice(SCENE_MOTIONS[scene_type], seed, "motion", i),
                overlay=self._overlay_for(scene_type, market),
                visual_prompt=VISUAL_PROMPTS[scene_type],
            ))

        scene_list = SceneList(
            scenes=self._with_transitions(retime(skeleton, durations), pacing, seed),
            total_ms=total_ms,
            pacing=pacing,
            recommended_transitions=PACING_TRANSITIONS[pacing],
            recommended_hooks=market.hooks,
        ).validate()

        if brief.ai_enhance and brief.script and self._optimizer is not None:
            scene_list = self._enhance(scene_list, brief, seed)

        logger.debug(
            "Planned %d scenes (%s, %dms, pacing=%s)",
            len(scene_list), brief.category, total_ms, pacing.value,
        )
        return scene_list

    def reorder(self, scene_list: SceneList, order: Sequence[int], seed: int = 0) -> SceneList:
        """Apply a permutation of scene indices and retime left-to-right.

        Durations, types and motion styles travel with their scene; only the
        sequence changes, so the multiset of types and the total stay the same.

        Raises:
            ValueError: If ``order`` is not a permutation of the scene indices.
        """
        n = len(scene_list)
        if sorted(order) != list(range(n)):
            raise ValueError(f"Not a permutation of 0..{n - 1}: {list(order)}")
        moved = [scene_list.scenes[i] for i in order]
        durations = [s.duration_ms for s in moved]
        return replace(
            scene_list,
            scenes=self._with_transitions(retime(moved, durations), scene_list.pacing, seed),
        ).validate()

    # ── internal ──────────────────────────────────────────────────────────────

    def _enhance(self, scene_list: SceneList, brief: ContentBrief, seed: int) -> SceneList:
        """Ask the optimizer for a better order. Advisory: any failure keeps the template."""
        try:
            order = self._optimizer.optimize(scene_list, brief)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Narrative optimization failed (%s); keeping template order", exc)
            return scene_list
        if not order:
            return scene_list
        try:
            return self.reorder(scene_list, order, seed)
        except ValueError as exc:
            logger.warning("Ignoring optimizer order: %s", exc)
            return scene_list

    @staticmethod
    def _with_transitions(
        scenes: Sequence[Scene], pacing: Pacing, seed: int,
    ) -> Tuple[Scene, ...]:
        vocabulary = PACING_TRANSITIONS[pacing]
        last = len(scenes) - 1
        return tuple(
            replace(
                scene,
                transition_into_next=(
                    None if i == last else seeded_choice(vocabulary, seed, "transition", i)
                ),
            )
            for i, scene in enumerate(scenes)
        )

    @staticmethod
    def _overlay_for(scene_type: SceneType, market: MarketProfile) -> Optional[Overlay]:
        if scene_type is SceneType.CTA:
            return Overlay(type="cta", content=market.cta_text, position="bottom")
        return None


def allocate_durations(scene_count: int, total_ms: int) -> List[int]:
    """Split ``total_ms`` across a template.

    The opening scene gets 10% (capped at 3 s), the closing scene 15% (capped
    at 4.5 s); middle scenes split the rest evenly, leftover milliseconds
    going to the earliest middle scenes.  The result always sums to
    ``total_ms`` exactly.
    """
    if scene_count < 1:
        raise ValueError("scene_count must be >= 1")
    if scene_count == 1:
        return [total_ms]
    opening = min(OPENING_CAP_MS, int(round(total_ms * OPENING_SHARE)))
    closing = min(CLOSING_CAP_MS, int(round(total_ms * CLOSING_SHARE)))
    if scene_count == 2:
        return [opening, total_ms - opening]
    middle_count = scene_count - 2
    base, extra = divmod(total_ms - opening - closing, middle_count)
    middle = [base + (1 if i < extra else 0) for i in range(middle_count)]
    return [opening] + middle + [closing]
