"""
Population members and the fixed-size populations evolved by search cycles.
"""

from __future__ import annotations

import itertools
import random
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterator

import numpy as np

from .expression import Node, string_tree
from .loss import compute_complexity, score_func
from .mutation_functions import gen_random_tree

if TYPE_CHECKING:
    from .adaptive_parsimony import RunningSearchStatistics
    from .config import Options
    from .dataset import Dataset

_birth_counter = itertools.count()
_birth_lock = threading.Lock()


def get_birth_order(deterministic: bool = False) -> int:
    """Monotone birth stamp: a process-wide counter when deterministic, else wall-clock ns."""
    if deterministic:
        with _birth_lock:
            return next(_birth_counter)
    return time.time_ns()


@dataclass(slots=True)
class PopMember:
    tree: Node
    score: float
    loss: float
    birth: int = 0
    complexity: int = 0

    @classmethod
    def scored(cls, tree: Node, dataset: "Dataset", options: "Options", *, deterministic: bool = False) -> "PopMember":
        complexity = compute_complexity(tree, options)
        score, loss = score_func(dataset, tree, options, complexity=complexity)
        return cls(tree, score, loss, get_birth_order(deterministic), complexity)

    def copy(self) -> "PopMember":
        return PopMember(self.tree.copy(), self.score, self.loss, self.birth, self.complexity)

    def reset_birth(self, deterministic: bool = False) -> None:
        self.birth = get_birth_order(deterministic)

    def rescore(self, dataset: "Dataset", options: "Options") -> None:
        self.complexity = compute_complexity(self.tree, options)
        self.score, self.loss = score_func(dataset, self.tree, options, complexity=self.complexity)


class Population:
    """Ordered, fixed-length collection of ``PopMember`` objects."""

    def __init__(self, members: list[PopMember]) -> None:
        self.members = members

    @classmethod
    def random(
        cls,
        dataset: "Dataset",
        options: "Options",
        rng: random.Random,
        *,
        population_size: int | None = None,
        nlength: int = 3,
    ) -> "Population":
        size = options.population_size if population_size is None else population_size
        deterministic = options.seed is not None
        members = [
            PopMember.scored(
                gen_random_tree(nlength, options, dataset.nfeatures, rng), dataset, options, deterministic=deterministic
            )
            for _ in range(size)
        ]
        return cls(members)

    @property
    def n(self) -> int:
        return len(self.members)

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[PopMember]:
        return iter(self.members)

    def copy(self) -> "Population":
        return Population([member.copy() for member in self.members])

    def best_sub_pop(self, topn: int) -> "Population":
        best = sorted(self.members, key=lambda member: member.score)[:topn]
        return Population([member.copy() for member in best])

    def sample(self, n: int, rng: random.Random) -> list[PopMember]:
        return rng.sample(self.members, min(n, len(self.members)))


def tournament_selection_weights(options: "Options") -> np.ndarray:
    n = options.tournament_selection_n
    p = options.tournament_selection_p
    weights = p * (1 - p) ** np.arange(n, dtype=float)
    return weights / weights.sum()


def best_of_sample(
    pop: Population,
    stats: "RunningSearchStatistics",
    options: "Options",
    rng: random.Random,
) -> PopMember:
    """Tournament selection, optionally penalising over-represented sizes."""
    members = pop.sample(options.tournament_selection_n, rng)
    if options.use_frequency_in_tournament:
        scaling = options.adaptive_parsimony_scaling
        scores = np.array([m.score * np.exp(scaling * stats.frequency_of(m.complexity)) for m in members])
    else:
        scores = np.array([m.score for m in members])
    order = np.argsort(scores, kind="stable")

    if options.tournament_selection_p == 1.0:
        return members[int(order[0])]
    weights = tournament_selection_weights(options)[: len(members)]
    place = rng.choices(range(len(weights)), weights=weights.tolist())[0]
    return members[int(order[place])]


def record_population(pop: Population, options: "Options", variable_names=None) -> dict[str, Any]:
    return {
        "population": [
            {
                "tree": string_tree(member.tree, options.operators, variable_names),
                "loss": member.loss,
                "score": member.score,
                "complexity": member.complexity,
                "birth": member.birth,
            }
            for member in pop.members
        ],
        "time": time.time(),
    }
