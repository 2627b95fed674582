"""
Loss and score of candidate expressions.

score = loss / baseline + parsimony * complexity, where the baseline is the
loss of predicting the (weighted) mean of ``y``. Expressions that fail to
evaluate get an infinite loss; expressions that break dimensional constraints
are penalised.
"""

from __future__ import annotations

import dataclasses
import random
from typing import TYPE_CHECKING

import numpy as np

from .dimensional import violates_dimensional_constraints
from .expression import Node, eval_tree_array

if TYPE_CHECKING:
    from .config import Options
    from .dataset import Dataset

DEFAULT_DIMENSIONAL_PENALTY = 1000.0
MIN_BASELINE = 0.01


def compute_complexity(tree: Node, options: "Options") -> int:
    if not options.has_custom_complexity:
        return sum(1 for _ in tree)
    total = 0
    for node in tree:
        if node.degree == 0:
            total += options.complexity_of_constants if node.constant else options.complexity_of_variables
        elif node.degree == 1:
            total += options.unaop_complexity[node.op]
        else:
            total += options.binop_complexity[node.op]
    return total


def _elementwise(prediction: np.ndarray, target: np.ndarray, options: "Options") -> np.ndarray:
    if options.elementwise_loss is None:
        return (prediction - target) ** 2
    return np.asarray(options.elementwise_loss(prediction, target), dtype=float)


def _loss(prediction: np.ndarray, target: np.ndarray, weights: np.ndarray | None, options: "Options") -> float:
    with np.errstate(all="ignore"):
        losses = _elementwise(prediction, target, options)
        if weights is None:
            return float(np.mean(losses))
        return float(np.sum(losses * weights) / np.sum(weights))


def eval_loss(tree: Node, dataset: "Dataset", options: "Options", idx: np.ndarray | None = None) -> float:
    X = dataset.X if idx is None else dataset.X[idx]
    y = dataset.y if idx is None else dataset.y[idx]
    weights = dataset.weights
    if weights is not None and idx is not None:
        weights = weights[idx]

    prediction, complete = eval_tree_array(tree, X, options.operators)
    if not complete:
        return float("inf")
    loss = _loss(prediction, y, weights, options)
    if dataset.has_units and violates_dimensional_constraints(tree, dataset, options):
        penalty = options.dimensional_constraint_penalty
        loss += DEFAULT_DIMENSIONAL_PENALTY if penalty is None else penalty
    return loss


def loss_to_score(loss: float, baseline: float, complexity: int, options: "Options") -> float:
    normalization = baseline if baseline >= MIN_BASELINE else MIN_BASELINE
    return loss / normalization + complexity * options.parsimony


def score_func(
    dataset: "Dataset", tree: Node, options: "Options", *, complexity: int | None = None
) -> tuple[float, float]:
    """Return ``(score, loss)`` of ``tree`` on the full dataset."""
    if complexity is None:
        complexity = compute_complexity(tree, options)
    loss = eval_loss(tree, dataset, options)
    return loss_to_score(loss, dataset.baseline_loss, complexity, options), loss


def score_func_batched(
    dataset: "Dataset", tree: Node, options: "Options", rng: random.Random, *, complexity: int | None = None
) -> tuple[float, float]:
    """Like ``score_func`` but on a random mini-batch of ``batch_size`` rows."""
    if complexity is None:
        complexity = compute_complexity(tree, options)
    idx = np.array([rng.randrange(dataset.nrows) for _ in range(options.batch_size)], dtype=int)
    loss = eval_loss(tree, dataset, options, idx=idx)
    return loss_to_score(loss, dataset.baseline_loss, complexity, options), loss


def update_baseline_loss(dataset: "Dataset", options: "Options") -> "Dataset":
    """Return ``dataset`` with ``baseline_loss`` set to the loss of a constant ``avg_y``."""
    prediction = np.full(dataset.nrows, dataset.avg_y, dtype=float)
    baseline = _loss(prediction, dataset.y, dataset.weights, options)
    if not np.isfinite(baseline):
        baseline = 1.0
    return dataclasses.replace(dataset, baseline_loss=baseline)
