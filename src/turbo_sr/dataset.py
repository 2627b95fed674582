"""Immutable training data for one search output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from .units import Quantity, get_output_units, get_units


@dataclass(frozen=True, eq=False)
class Dataset:
    X: np.ndarray  # rows x features
    y: np.ndarray
    weights: np.ndarray | None = None
    variable_names: tuple[str, ...] = ()
    X_units: tuple[Quantity, ...] | None = None
    y_units: Quantity | None = None
    baseline_loss: float = 1.0
    avg_y: float = field(init=False, default=0.0)

    def __post_init__(self) -> None:
        if self.X.ndim != 2:
            raise ValueError(f"X must be 2-dimensional (rows x features), got shape {self.X.shape}")
        if self.y.shape != (self.X.shape[0],):
            raise ValueError(f"y must have shape ({self.X.shape[0]},), got {self.y.shape}")
        if self.weights is not None and self.weights.shape != self.y.shape:
            raise ValueError("weights must have the same shape as y")
        if self.X_units is not None and len(self.X_units) != self.nfeatures:
            raise ValueError(f"Expected {self.nfeatures} feature units, got {len(self.X_units)}")
        if not self.variable_names:
            object.__setattr__(self, "variable_names", tuple(f"x{i + 1}" for i in range(self.nfeatures)))
        if self.weights is not None:
            avg = float(np.sum(self.y * self.weights) / np.sum(self.weights))
        else:
            avg = float(np.mean(self.y)) if self.nrows else 0.0
        object.__setattr__(self, "avg_y", avg)

    @property
    def nrows(self) -> int:
        return int(self.X.shape[0])

    @property
    def nfeatures(self) -> int:
        return int(self.X.shape[1])

    @property
    def has_units(self) -> bool:
        return self.X_units is not None or self.y_units is not None


def make_datasets(
    X,
    y,
    *,
    weights=None,
    variable_names: Sequence[str] | None = None,
    X_units: Sequence[str | Quantity | None] | None = None,
    y_units=None,
) -> list[Dataset]:
    """Split ``y`` (rows, or outputs x rows) into one ``Dataset`` per output."""
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    if y.ndim == 1:
        ys = y[np.newaxis, :]
    elif y.ndim == 2:
        ys = y
    else:
        raise ValueError(f"y must be 1- or 2-dimensional, got shape {y.shape}")
    nout = ys.shape[0]

    if weights is None:
        ws = [None] * nout
    else:
        weights = np.asarray(weights, dtype=float)
        ws = [weights] if weights.ndim == 1 else list(weights)
        if len(ws) != nout:
            raise ValueError(f"Expected weights for {nout} outputs, got {len(ws)}")

    x_units = get_units(X_units)
    out_units = get_output_units(y_units, nout)
    names = tuple(variable_names) if variable_names is not None else ()
    return [
        Dataset(X, ys[j], weights=ws[j], variable_names=names, X_units=x_units, y_units=out_units[j])
        for j in range(nout)
    ]
