"""NarrativeOptimizer — asks a remote creative engine for a better scene order.

The endpoint is an opaque language-model service.  Anything it returns is
advisory: the planner validates the permutation and keeps the template order
on any failure.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from reelforge.services.scenes.types import ContentBrief, SceneList
from reelforge.services.shared.logging import get_logger

logger = get_logger("scenes.narrative")


class NarrativeOptimizer:
    """HTTP client for the ``optimize_narrative`` action.

    Usage::

        opt = NarrativeOptimizer("https://creative.example/engine", api_key=key)
        order = opt.optimize(scene_list, brief)   # e.g. [0, 2, 1, 3, 4] or None
    """

    def __init__(
        self,
        endpoint_url: str,
        timeout: float = 20.0,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self._endpoint_url = endpoint_url
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def is_available(self) -> bool:
        return bool(self._endpoint_url)

    def optimize(self, scene_list: SceneList, brief: ContentBrief) -> Optional[List[int]]:
        """Return the suggested order as a list of scene indices, or None.

        Raises:
            httpx.HTTPError: On transport failures or non-2xx responses.
            ValueError: If the body is not JSON.
        """
        if not self.is_available():
            return None
        resp = self._client.post(
            self._endpoint_url,
            json=self._build_payload(scene_list, brief),
            headers=self._headers(),
        )
        resp.raise_for_status()
        return self._parse_order(resp.json())

    # ── internal ──────────────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    @staticmethod
    def _build_payload(scene_list: SceneList, brief: ContentBrief) -> Dict[str, Any]:
        return {
            "action": "optimize_narrative",
            "scenes": [
                {
                    "type": s.type.value,
                    "duration": s.duration_ms / 1000.0,
                    "startTime": s.start_ms / 1000.0,
                    "endTime": s.end_ms / 1000.0,
                }
                for s in scene_list
            ],
            "productContext": {
                "script": brief.script,
                "language": brief.language,
                "videoType": brief.category,
            },
            "market": brief.market,
        }

    @staticmethod
    def _parse_order(data: Any) -> Optional[List[int]]:
        if not isinstance(data, dict) or data.get("success") is False:
            return None
        optimization = data.get("narrativeOptimization") or {}
        order = optimization.get("optimizedOrder") if isinstance(optimization, dict) else None
        if not isinstance(order, list) or not all(isinstance(i, int) for i in order):
            logger.debug("No usable optimizedOrder in response")
            return None
        return order
