"""
Migration of members between populations.

A random fraction of a population is overwritten with copies of members drawn
from a donor pool (the cross-population top-N or the dominating set). The
donor pool itself is never modified.
"""

from __future__ import annotations

import math
import random
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .population import PopMember, Population


def num_to_replace(population_size: int, frac: float) -> int:
    """``frac * population_size`` rounded half up, capped at the population size."""
    return min(population_size, int(math.floor(population_size * frac + 0.5)))


def migrate(
    donors: Sequence["PopMember"],
    population: "Population",
    rng: random.Random,
    *,
    frac: float,
    deterministic: bool = False,
) -> list[int]:
    """Replace ``num_to_replace(len(population), frac)`` distinct slots of
    ``population`` with copies of randomly chosen ``donors``.

    Returns the replaced indices (empty when there are no donors).
    """
    base = population.members
    count = num_to_replace(len(base), frac)
    if count == 0 or not donors:
        return []
    locations = rng.sample(range(len(base)), count)
    migrants = rng.choices(list(donors), k=count)
    for location, migrant in zip(locations, migrants):
        replacement = migrant.copy()
        replacement.reset_birth(deterministic)
        base[location] = replacement
    return locations
