"""
Member-level genetic operators: mutation with annealed acceptance, and crossover.
"""

from __future__ import annotations

import math
import random
from typing import TYPE_CHECKING

from .expression import Node, count_depth
from .loss import compute_complexity, score_func, score_func_batched
from .mutation_functions import (
    append_random_op,
    crossover_trees,
    delete_random_op,
    gen_random_tree_fixed_size,
    insert_random_op,
    mutate_constant,
    mutate_operator,
    prepend_random_op,
)
from .population import PopMember, get_birth_order

if TYPE_CHECKING:
    from .adaptive_parsimony import RunningSearchStatistics
    from .config import Options
    from .dataset import Dataset

MAX_ATTEMPTS = 10


def check_constraints(tree: Node, options: "Options", curmaxsize: int, complexity: int | None = None) -> bool:
    if complexity is None:
        complexity = compute_complexity(tree, options)
    if complexity > curmaxsize:
        return False
    return count_depth(tree) <= (options.maxdepth or options.maxsize)


def condition_mutation_weights(member: PopMember, options: "Options", curmaxsize: int) -> dict[str, float]:
    """Zero out mutations that cannot apply to ``member``."""
    weights = options.mutation_weights.as_dict()
    tree = member.tree
    if tree.degree == 0:
        weights["mutate_operator"] = 0.0
        weights["delete_node"] = 0.0
        if not tree.constant:
            weights["mutate_constant"] = 0.0
    elif not any(node.degree == 0 and node.constant for node in tree):
        weights["mutate_constant"] = 0.0
    if member.complexity >= curmaxsize:
        weights["add_node"] = 0.0
        weights["insert_node"] = 0.0
    return weights


def _score(dataset: "Dataset", tree: Node, options: "Options", rng: random.Random, complexity: int) -> tuple[float, float, float]:
    if options.batching:
        score, loss = score_func_batched(dataset, tree, options, rng, complexity=complexity)
        return score, loss, options.batch_size / dataset.nrows
    score, loss = score_func(dataset, tree, options, complexity=complexity)
    return score, loss, 1.0


def next_generation(
    dataset: "Dataset",
    member: PopMember,
    temperature: float,
    curmaxsize: int,
    stats: "RunningSearchStatistics",
    options: "Options",
    rng: random.Random,
) -> tuple[PopMember, bool, float]:
    """Mutate ``member`` once. Returns ``(baby, accepted, num_evals)``.

    A rejected mutation returns a copy of the parent.
    """
    deterministic = options.seed is not None
    num_evals = 0.0
    if options.batching:
        before_score, before_loss = score_func_batched(dataset, member.tree, options, rng, complexity=member.complexity)
        num_evals += options.batch_size / dataset.nrows
    else:
        before_score, before_loss = member.score, member.loss

    def unchanged() -> PopMember:
        return PopMember(member.tree.copy(), before_score, before_loss, get_birth_order(deterministic), member.complexity)

    weights = condition_mutation_weights(member, options, curmaxsize)
    names = list(weights)
    if sum(weights.values()) <= 0:
        return unchanged(), False, num_evals
    choice = rng.choices(names, weights=[weights[name] for name in names])[0]
    if choice == "do_nothing":
        return PopMember(member.tree.copy(), before_score, before_loss, get_birth_order(deterministic), member.complexity), True, 0.0

    nfeatures = dataset.nfeatures
    successful = False
    tree = member.tree
    for _ in range(MAX_ATTEMPTS):
        tree = member.tree.copy()
        if choice == "mutate_constant":
            tree = mutate_constant(tree, temperature, options, rng)
        elif choice == "mutate_operator":
            tree = mutate_operator(tree, options, rng)
        elif choice == "add_node":
            if rng.random() < 0.5:
                tree = append_random_op(tree, options, nfeatures, rng)
            else:
                tree = prepend_random_op(tree, options, nfeatures, rng)
        elif choice == "insert_node":
            tree = insert_random_op(tree, options, nfeatures, rng)
        elif choice == "delete_node":
            tree = delete_random_op(tree, options, nfeatures, rng)
        elif choice == "randomize":
            tree = gen_random_tree_fixed_size(rng.randint(1, curmaxsize), options, nfeatures, rng)
        else:
            raise ValueError(f"Unknown mutation {choice!r}")
        if check_constraints(tree, options, curmaxsize):
            successful = True
            break

    if not successful:
        return unchanged(), False, num_evals

    new_complexity = compute_complexity(tree, options)
    after_score, after_loss, cost = _score(dataset, tree, options, rng, new_complexity)
    num_evals += cost
    if math.isnan(after_score):
        return unchanged(), False, num_evals

    prob_change = 1.0
    if options.annealing:
        delta = after_score - before_score
        with_temperature = temperature * options.alpha
        if with_temperature > 0:
            try:
                prob_change *= math.exp(-delta / with_temperature)
            except OverflowError:
                prob_change = math.inf
        elif delta > 0:
            prob_change = 0.0
    if options.use_frequency:
        old_frequency = stats.frequency_of(member.complexity) or 1e-6
        new_frequency = stats.frequency_of(new_complexity) or 1e-6
        prob_change *= old_frequency / new_frequency

    if prob_change < rng.random():
        return unchanged(), False, num_evals
    return PopMember(tree, after_score, after_loss, get_birth_order(deterministic), new_complexity), True, num_evals


def crossover_generation(
    member1: PopMember,
    member2: PopMember,
    dataset: "Dataset",
    curmaxsize: int,
    options: "Options",
    rng: random.Random,
) -> tuple[PopMember, PopMember, bool, float]:
    """Breed two members by swapping subtrees until both children fit the size limits."""
    deterministic = options.seed is not None
    for _ in range(MAX_ATTEMPTS + 1):
        child1, child2 = crossover_trees(member1.tree, member2.tree, rng)
        size1 = compute_complexity(child1, options)
        size2 = compute_complexity(child2, options)
        if check_constraints(child1, options, curmaxsize, size1) and check_constraints(child2, options, curmaxsize, size2):
            break
    else:
        return member1.copy(), member2.copy(), False, 0.0

    score1, loss1, cost1 = _score(dataset, child1, options, rng, size1)
    score2, loss2, cost2 = _score(dataset, child2, options, rng, size2)
    baby1 = PopMember(child1, score1, loss1, get_birth_order(deterministic), size1)
    baby2 = PopMember(child2, score2, loss2, get_birth_order(deterministic), size2)
    return baby1, baby2, True, cost1 + cost2
