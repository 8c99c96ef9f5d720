"""EngineSelector — picks the best catalog engine for a render request."""
from __future__ import annotations

from typing import Iterable, List, Union

from reelforge.services.engines.catalog import EngineCatalog
from reelforge.services.engines.types import (
    AI_CHOOSES, BackendClass, EngineSpec, EngineUnavailable, SelectionResult, Tier,
    parse_tier_ceiling,
)
from reelforge.services.shared.logging import get_logger

logger = get_logger("engines.selector")


class EngineSelector:
    """Filters and ranks catalog engines for one request.

    Selection logic, applied in order:
    1. Tier at or below the ceiling (free < low < medium < premium);
       ``"ai-chooses"`` leaves the tier unconstrained
    2. Location matches the backend class unless the class is ``auto``
    3. Capability set shares at least one tag with the required set
    4. Max duration covers the requested duration
    5. Highest priority wins; ties keep catalog order

    An empty result is an :class:`EngineUnavailable` value, not an exception.

    Usage::

        selector = EngineSelector(catalog)
        choice = selector.select("medium", "cloud-api", {"image-to-video"}, 8.0)
        if isinstance(choice, EngineUnavailable):
            show(choice.reason)
    """

    def __init__(self, catalog: EngineCatalog):
        self._catalog = catalog

    @property
    def catalog(self) -> EngineCatalog:
        return self._catalog

    def select(
        self,
        tier_ceiling: Union[str, Tier, None],
        backend_class: Union[str, BackendClass],
        required_capabilities: Iterable[str],
        duration_seconds: float,
    ) -> SelectionResult:
        """Return the best engine or an :class:`EngineUnavailable` outcome."""
        ranked = self.rank(tier_ceiling, backend_class, required_capabilities, duration_seconds)
        if ranked:
            best = ranked[0]
            logger.debug(
                "Selected engine %s (priority=%d) among %d candidates",
                best.id, best.priority, len(ranked),
            )
            return best

        backend = BackendClass(backend_class)
        ceiling_label = tier_ceiling.value if isinstance(tier_ceiling, Tier) else (tier_ceiling or AI_CHOOSES)
        caps = sorted(set(required_capabilities))
        reason = (
            f"No engine available for tier <= {ceiling_label}, backend {backend.value}, "
            f"capabilities {caps or 'any'} and {duration_seconds:g}s duration."
        )
        logger.info(reason)
        return EngineUnavailable(
            reason=reason,
            tier_ceiling=ceiling_label,
            backend_class=backend,
            duration_seconds=duration_seconds,
        )

    def rank(
        self,
        tier_ceiling: Union[str, Tier, None],
        backend_class: Union[str, BackendClass],
        required_capabilities: Iterable[str],
        duration_seconds: float,
    ) -> List[EngineSpec]:
        """Return every eligible engine, best first."""
        parse_tier_ceiling(tier_ceiling)  # reject unknown tiers early
        backend = BackendClass(backend_class)
        location = None if backend is BackendClass.AUTO else backend.value
        return self._catalog.filter(
            tier_ceiling,
            location=location,
            capabilities=list(required_capabilities),
            min_duration=duration_seconds,
        )
