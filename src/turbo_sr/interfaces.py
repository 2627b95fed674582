"""
Messages exchanged between the search controller and its workers.

A ``CycleWork`` hands a population and a statistics snapshot to a worker;
the controller keeps no reference to either until the matching
``CycleResult`` comes back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List

if TYPE_CHECKING:
    from .adaptive_parsimony import RunningSearchStatistics
    from .config import Options
    from .dataset import Dataset
    from .hall_of_fame import HallOfFame
    from .population import Population


@dataclass
class CycleWork:
    output: int
    population_index: int
    population: "Population | None"  # None: build a fresh random population first
    stats: "RunningSearchStatistics"
    curmaxsize: int
    seed: int | None = None
    iteration: int = 0

    @property
    def slot(self) -> tuple[int, int]:
        return (self.output, self.population_index)

    @property
    def record_key(self) -> str:
        return f"out{self.output + 1}_pop{self.population_index + 1}"


@dataclass
class CycleResult:
    output: int
    population_index: int
    population: "Population"
    best_seen: "HallOfFame"
    record: Dict[str, Any] = field(default_factory=dict)
    num_evals: float = 0.0


@dataclass
class WorkerContext:
    """Read-only inputs every worker needs: one dataset per output and the options."""

    datasets: List["Dataset"]
    options: "Options"
    verbosity: int = 0
