"""EngineCatalog — YAML-backed, load-once registry of rendering engines."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Union

import yaml

from reelforge.services.engines.types import (
    EngineSpec, Location, ProviderId, Tier, parse_tier_ceiling,
)
from reelforge.services.shared.logging import get_logger

logger = get_logger("engines.catalog")

DEFAULT_CATALOG_PATH = Path(__file__).parent.parent.parent / "config" / "engines.yaml"


class EngineNotFoundError(KeyError):
    """Raised when an engine id is not in the catalog."""


class CatalogError(ValueError):
    """Raised when the catalog file contains an invalid entry."""


class EngineCatalog:
    """Read-only registry of every rendering engine.

    Entries keep their file order; that order breaks priority ties
    everywhere the catalog is ranked.

    Usage::

        catalog = EngineCatalog.from_yaml("reelforge/config/engines.yaml")
        catalog.get("vps-ffmpeg")
        catalog.filter("medium", location="cloud-api", capabilities=["cinematic"])
    """

    def __init__(self, engines: Iterable[EngineSpec]):
        self._engines: List[EngineSpec] = []
        seen = set()
        for spec in engines:
            if spec.id in seen:
                raise CatalogError(f"Duplicate engine id: {spec.id!r}")
            seen.add(spec.id)
            self._engines.append(spec)
        self._by_id = {e.id: e for e in self._engines}

    @classmethod
    def from_yaml(cls, path: Union[str, Path, None] = None) -> "EngineCatalog":
        path = Path(path or DEFAULT_CATALOG_PATH)
        if not path.exists():
            raise FileNotFoundError(f"Engine catalog not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        raw_entries = data.get("engines", []) or []
        catalog = cls(cls._dict_to_spec(d) for d in raw_entries if d.get("available", True))
        logger.debug("Loaded %d engines from %s", len(catalog), path)
        return catalog

    # ── public ────────────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._engines)

    def list(self) -> List[EngineSpec]:
        """Return every engine in catalog order."""
        return list(self._engines)

    def get(self, engine_id: str) -> EngineSpec:
        """Return the engine with ``engine_id``.

        Raises:
            EngineNotFoundError: If the id is not registered.
        """
        try:
            return self._by_id[engine_id]
        except KeyError:
            raise EngineNotFoundError(engine_id) from None

    def filter(
        self,
        tier: Union[str, Tier, None],
        location: Union[str, Location, None] = None,
        capabilities: Optional[Iterable[str]] = None,
        min_duration: Optional[float] = None,
    ) -> List[EngineSpec]:
        """Return engines matching every given constraint, best first.

        Args:
            tier: Tier ceiling; ``None`` or ``"ai-chooses"`` means any tier.
            location: Only engines at this location.
            capabilities: Engines advertising at least one of these tags.
            min_duration: Engines whose max duration covers this many seconds.

        Returns:
            Matching engines sorted by descending priority; ties keep catalog order.
        """
        ceiling = parse_tier_ceiling(tier)
        loc = Location(location) if location is not None else None
        wanted = frozenset(capabilities or ())

        result = []
        for spec in self._engines:
            if ceiling is not None and spec.tier.rank > ceiling.rank:
                continue
            if loc is not None and spec.location is not loc:
                continue
            if wanted and not (spec.capabilities & wanted):
                continue
            if min_duration is not None and spec.max_duration_seconds < min_duration:
                continue
            result.append(spec)
        # sorted() is stable, so equal priorities keep catalog order.
        return sorted(result, key=lambda e: -e.priority)

    # ── private ───────────────────────────────────────────────────────────────

    @staticmethod
    def _dict_to_spec(d: dict) -> EngineSpec:
        engine_id = d.get("id")
        if not engine_id:
            raise CatalogError(f"Engine entry without id: {d!r}")
        try:
            tier = Tier(d["tier"])
            location = Location(d["location"])
            provider = ProviderId(d["provider"]) if d.get("provider") else None
        except (KeyError, ValueError) as exc:
            raise CatalogError(f"Engine {engine_id!r}: {exc}") from exc

        cost = float(d.get("cost_per_second", 0.0))
        max_duration = float(d.get("max_duration_seconds", 0.0))
        if cost < 0:
            raise CatalogError(f"Engine {engine_id!r}: cost_per_second must be >= 0")
        if max_duration <= 0:
            raise CatalogError(f"Engine {engine_id!r}: max_duration_seconds must be > 0")
        if location is Location.CLOUD_API and provider is None:
            raise CatalogError(f"Engine {engine_id!r}: cloud-api engines need a provider")

        return EngineSpec(
            id=engine_id,
            name=d.get("name", engine_id),
            tier=tier,
            location=location,
            capabilities=frozenset(d.get("capabilities", []) or []),
            cost_per_second=cost,
            max_duration_seconds=max_duration,
            priority=int(d.get("priority", 0)),
            provider=provider,
            quality=d.get("quality", "balanced"),
        )
