from __future__ import annotations

import numpy as np
import pytest

from turbo_sr.config import Options
from turbo_sr.dataset import Dataset
from turbo_sr.dimensional import FALLBACK_WARNING


def _small_options(**overrides) -> Options:
    """Options small enough for a search to finish in well under a second."""
    params = dict(
        populations=2,
        population_size=12,
        ncycles_per_iteration=4,
        tournament_selection_n=4,
        topn=3,
        maxsize=10,
        optimizer_iterations=2,
        optimizer_nrestarts=0,
        save_to_file=False,
        watch_stdin=False,
    )
    params.update(overrides)
    return Options(**params)


def _linear_dataset(nrows: int = 40, seed: int = 0, **kwargs) -> Dataset:
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(nrows, 2))
    y = 2.0 * X[:, 0] + X[:, 1] * X[:, 1]
    return Dataset(X, y, **kwargs)


@pytest.fixture
def make_options():
    return _small_options


@pytest.fixture
def make_dataset():
    return _linear_dataset


@pytest.fixture
def options() -> Options:
    return _small_options()


@pytest.fixture
def dataset() -> Dataset:
    return _linear_dataset()


@pytest.fixture(autouse=True)
def _reset_fallback_warning():
    FALLBACK_WARNING.reset()
    yield
    FALLBACK_WARNING.reset()
