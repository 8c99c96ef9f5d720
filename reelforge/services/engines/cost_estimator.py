"""CostEstimator — calculates render cost estimates for a batch."""
from __future__ import annotations

from reelforge.services.engines.types import EngineSpec
from reelforge.services.shared.logging import get_logger

logger = get_logger("engines.cost_estimator")


class CostEstimator:
    """Estimates USD cost for rendering variations on an engine.

    Local-server engines are always free (cost_usd=0.0).
    Cloud engines bill per output second.

    Usage::

        est = CostEstimator()
        cost = est.estimate_variation_cost(engine, duration_sec=30.0)
        total = est.estimate_batch_cost(engine, duration_sec=30.0, variations=5)
    """

    def estimate_variation_cost(self, engine: EngineSpec, duration_sec: float) -> float:
        """Estimate cost in USD for rendering one variation.

        Args:
            engine: The engine that will render the variation.
            duration_sec: Output duration in seconds.

        Returns:
            Estimated cost in USD. 0.0 for local-server engines.
        """
        if engine.is_local or engine.cost_per_second == 0.0:
            return 0.0
        billable = min(duration_sec, engine.max_duration_seconds)
        return round(engine.cost_per_second * billable, 4)

    def estimate_batch_cost(
        self,
        engine: EngineSpec,
        duration_sec: float,
        variations: int,
    ) -> float:
        """Estimate total cost in USD for ``variations`` renders."""
        return round(self.estimate_variation_cost(engine, duration_sec) * variations, 4)
