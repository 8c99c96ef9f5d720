"""Data types for the ReelForge engine catalog and selector."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Union


class Tier(str, Enum):
    """Cost/quality class. Declaration order is the tier order."""
    FREE = "free"
    LOW = "low"
    MEDIUM = "medium"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [Tier.FREE, Tier.LOW, Tier.MEDIUM, Tier.PREMIUM]

# Ceiling value meaning "no tier constraint".
AI_CHOOSES = "ai-chooses"


class Location(str, Enum):
    LOCAL_SERVER = "local-server"
    CLOUD_API = "cloud-api"


class BackendClass(str, Enum):
    """Backend preference on a request. ``AUTO`` accepts every location."""
    LOCAL_SERVER = "local-server"
    CLOUD_API = "cloud-api"
    AUTO = "auto"


class ProviderId(str, Enum):
    """Cloud providers with a known response shape."""
    KLING = "kling"
    MINIMAX = "minimax"
    WAN = "wan"
    LUMA = "luma"
    RUNWAY = "runway"
    VEO = "veo"
    SORA = "sora"
    OMNIHUMAN = "omnihuman"
    HEYGEN = "heygen"


@dataclass(frozen=True)
class EngineSpec:
    """One rendering engine. Immutable once loaded by the catalog."""
    id: str
    name: str
    tier: Tier
    location: Location
    capabilities: FrozenSet[str]
    cost_per_second: float
    max_duration_seconds: float
    priority: int
    provider: Optional[ProviderId] = None   # required for cloud-api engines
    quality: str = "balanced"               # "fast" | "balanced" | "cinematic"

    @property
    def is_local(self) -> bool:
        return self.location is Location.LOCAL_SERVER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "tier": self.tier.value,
            "location": self.location.value,
            "capabilities": sorted(self.capabilities),
            "cost_per_second": self.cost_per_second,
            "max_duration_seconds": self.max_duration_seconds,
            "priority": self.priority,
            "provider": self.provider.value if self.provider else None,
            "quality": self.quality,
        }


@dataclass(frozen=True)
class EngineUnavailable:
    """Selector outcome when no engine survives filtering.

    This is an expected result, not a defect: ``reason`` is meant to be shown
    to the user as-is.
    """
    reason: str
    tier_ceiling: str
    backend_class: BackendClass
    duration_seconds: float


SelectionResult = Union[EngineSpec, EngineUnavailable]


def parse_tier_ceiling(value: Union[str, Tier, None]) -> Optional[Tier]:
    """Return the Tier ceiling, or None when unconstrained (``ai-chooses``)."""
    if value is None or value == AI_CHOOSES:
        return None
    if isinstance(value, Tier):
        return value
    return Tier(value)
