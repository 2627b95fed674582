"""Numeric optimisation of the free constants of a member's expression."""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

import numpy as np
from scipy.optimize import minimize

from .expression import get_constants, set_constants
from .loss import eval_loss, loss_to_score
from .population import PopMember, get_birth_order

if TYPE_CHECKING:
    from .config import Options
    from .dataset import Dataset


def optimize_constants(
    dataset: "Dataset", member: PopMember, options: "Options", rng: random.Random
) -> tuple[PopMember, float]:
    """Fit the constants of ``member.tree`` in place; returns ``(member, num_evals)``.

    Runs ``optimizer_nrestarts`` extra restarts from jittered starting points
    and keeps the best result only if it beats the current loss.
    """
    x0 = np.array(get_constants(member.tree), dtype=float)
    if x0.size == 0:
        return member, 0.0

    eval_fraction = options.batch_size / dataset.nrows if options.batching else 1.0
    tree = member.tree.copy()

    def objective(values: np.ndarray) -> float:
        set_constants(tree, values)
        loss = eval_loss(tree, dataset, options)
        return loss if np.isfinite(loss) else 1e300

    method = "Nelder-Mead" if x0.size == 1 else "BFGS"
    solver_options = {"maxiter": options.optimizer_iterations}

    baseline = objective(x0)
    num_evals = eval_fraction
    best = minimize(objective, x0, method=method, options=solver_options)
    num_evals += best.nfev * eval_fraction
    for _ in range(options.optimizer_nrestarts):
        start = x0 * (1.0 + 0.5 * np.array([rng.gauss(0.0, 1.0) for _ in range(x0.size)]))
        candidate = minimize(objective, start, method=method, options=solver_options)
        num_evals += candidate.nfev * eval_fraction
        if candidate.fun < best.fun:
            best = candidate

    if best.fun < baseline:
        set_constants(member.tree, best.x)
        member.loss = eval_loss(member.tree, dataset, options)
        member.score = loss_to_score(member.loss, dataset.baseline_loss, member.complexity, options)
        member.birth = get_birth_order(options.seed is not None)
        num_evals += eval_fraction
    return member, num_evals
