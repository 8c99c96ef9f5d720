"""Deterministic pseudo-random picks keyed by tuples such as ``(seed, index)``.

Every "random" choice in planning and variation goes through here so the same
key always yields the same answer, across processes and Python versions.
"""
from __future__ import annotations

import random
from typing import Sequence, TypeVar

T = TypeVar("T")


def _rng(*key: object) -> random.Random:
    # str seeds are hashed with SHA-512 by random.seed(version=2): stable across runs.
    return random.Random(":".join(str(k) for k in key))


def seeded_choice(options: Sequence[T], *key: object) -> T:
    """Pick one of ``options`` as a pure function of ``key``."""
    if not options:
        raise ValueError("seeded_choice needs at least one option")
    return options[_rng(*key).randrange(len(options))]


def seeded_uniform(low: float, high: float, *key: object) -> float:
    """Return a float in ``[low, high]`` as a pure function of ``key``."""
    return _rng(*key).uniform(low, high)
