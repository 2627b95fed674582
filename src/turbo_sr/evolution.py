"""
One search cycle: regularised evolution under a temperature schedule,
followed by constant optimisation of a random subset of the population.
"""

from __future__ import annotations

import math
import random
from typing import TYPE_CHECKING, Any

import numpy as np

from .constant_optimization import optimize_constants
from .hall_of_fame import HallOfFame
from .interfaces import CycleResult, CycleWork, WorkerContext
from .loss import eval_loss, loss_to_score, score_func
from .mutate import crossover_generation, next_generation
from .population import Population, best_of_sample, record_population

if TYPE_CHECKING:
    from .adaptive_parsimony import RunningSearchStatistics
    from .config import Options
    from .dataset import Dataset


def _oldest_index(pop: Population) -> int:
    births = [member.birth for member in pop.members]
    return births.index(min(births))


def reg_evol_cycle(
    dataset: "Dataset",
    pop: Population,
    temperature: float,
    curmaxsize: int,
    stats: "RunningSearchStatistics",
    options: "Options",
    rng: random.Random,
) -> tuple[Population, float]:
    """Replace the oldest members with mutated or crossed-over tournament winners."""
    num_evals = 0.0
    n_evol_cycles = math.ceil(pop.n / options.tournament_selection_n)
    for _ in range(n_evol_cycles):
        if rng.random() > options.crossover_probability:
            allstar = best_of_sample(pop, stats, options, rng)
            baby, accepted, evals = next_generation(dataset, allstar, temperature, curmaxsize, stats, options, rng)
            num_evals += evals
            if not accepted and options.skip_mutation_failures:
                continue
            pop.members[_oldest_index(pop)] = baby
        else:
            allstar1 = best_of_sample(pop, stats, options, rng)
            allstar2 = best_of_sample(pop, stats, options, rng)
            baby1, baby2, accepted, evals = crossover_generation(allstar1, allstar2, dataset, curmaxsize, options, rng)
            num_evals += evals
            if not accepted and options.skip_mutation_failures:
                continue
            pop.members[_oldest_index(pop)] = baby1
            pop.members[_oldest_index(pop)] = baby2
    return pop, num_evals


def s_r_cycle(
    dataset: "Dataset",
    pop: Population,
    ncycles: int,
    curmaxsize: int,
    stats: "RunningSearchStatistics",
    options: "Options",
    rng: random.Random,
) -> tuple[Population, HallOfFame, float]:
    """Run ``ncycles`` evolution steps; also returns the best member seen per size."""
    max_temp = 1.0
    min_temp = 0.0 if options.annealing else max_temp
    temperatures = np.linspace(max_temp, min_temp, ncycles)
    best_seen = HallOfFame.from_options(options)
    num_evals = 0.0

    batch_idx = None
    if options.batching:
        batch_idx = np.array([rng.randrange(dataset.nrows) for _ in range(options.batch_size)], dtype=int)
    # Batched scores per slot, reused while the slot's tree is unchanged
    cache: list[tuple[Any, float] | None] = [None] * pop.n

    for temperature in temperatures:
        pop, evals = reg_evol_cycle(dataset, pop, float(temperature), curmaxsize, stats, options, rng)
        num_evals += evals
        for i, member in enumerate(pop.members):
            size = member.complexity
            if batch_idx is not None:
                cached = cache[i]
                if cached is not None and cached[0] is member.tree:
                    score = cached[1]
                else:
                    loss = eval_loss(member.tree, dataset, options, idx=batch_idx)
                    score = loss_to_score(loss, dataset.baseline_loss, size, options)
                    cache[i] = (member.tree, score)
            else:
                score = member.score
            if 0 < size <= options.maxsize:
                current = best_seen.get(size)
                if current is None or score < current.score:
                    best_seen.members[size - 1] = member.copy()
                    best_seen.exists[size - 1] = True
    return pop, best_seen, num_evals


def optimize_and_simplify_population(
    dataset: "Dataset", pop: Population, options: "Options", curmaxsize: int, rng: random.Random
) -> tuple[Population, float]:
    """Optimise constants of a random subset, then re-score everyone on the full data."""
    num_evals = 0.0
    if options.should_optimize_constants:
        for j, member in enumerate(pop.members):
            if rng.random() < options.optimizer_probability:
                pop.members[j], evals = optimize_constants(dataset, member, options, rng)
                num_evals += evals
    for member in pop.members:
        member.rescore(dataset, options)
    num_evals += pop.n
    return pop, num_evals


def run_search_cycle(work: CycleWork, context: WorkerContext) -> CycleResult:
    """Body of one spawned cycle; runs in whichever worker owns ``work``."""
    options = context.options
    dataset = context.datasets[work.output]
    rng = random.Random(work.seed)
    num_evals = 0.0

    pop = work.population
    if pop is None:
        pop = Population.random(dataset, options, rng, nlength=3)
        num_evals += options.population_size

    record: dict[str, Any] = {}
    if options.use_recorder:
        record[work.record_key] = {
            f"iteration{work.iteration}": record_population(pop, options, dataset.variable_names)
        }

    stats = work.stats
    stats.normalize_frequencies()
    pop, best_seen, evals = s_r_cycle(dataset, pop, options.ncycles_per_iteration, work.curmaxsize, stats, options, rng)
    num_evals += evals
    pop, evals = optimize_and_simplify_population(dataset, pop, options, work.curmaxsize, rng)
    num_evals += evals

    if options.batching:
        for member in best_seen.existing_members():
            member.score, member.loss = score_func(dataset, member.tree, options, complexity=member.complexity)
            num_evals += 1

    return CycleResult(work.output, work.population_index, pop, best_seen, record, num_evals)
