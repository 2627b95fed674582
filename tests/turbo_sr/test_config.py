from __future__ import annotations

import logging

import numpy as np
import pytest

from turbo_sr.config import Options, recommended_nworkers
from turbo_sr.errors import ConfigurationError
from turbo_sr.operators import plus, safe_log
from turbo_sr.optimize import equation_search, resolve_parallelism, resolve_reporting


def test_options_resolve_operator_names():
    options = Options(binary_operators=("+", "*"), unary_operators=("log",), save_to_file=False)
    assert options.operators.binary_operators[0] is plus
    assert options.operators.unary_operators == (safe_log,)
    assert options.maxdepth == options.maxsize
    assert options.output_file.startswith("hall_of_fame_")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"binary_operators": ()},
        {"binary_operators": ("+", "frobnicate")},
        {"maxsize": 2},
        {"population_size": 5, "tournament_selection_n": 6, "topn": 3},
        {"topn": 0},
        {"fraction_replaced": 1.5},
        {"populations": 0},
    ],
)
def test_invalid_options_raise_configuration_error(kwargs):
    with pytest.raises(ConfigurationError):
        Options(**kwargs)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        Options(maxsize=1)


def test_custom_complexity_lookup():
    options = Options(binary_operators=("+", "*"), complexity_of_operators={"*": 3}, complexity_of_constants=2)
    assert options.binop_complexity == (1, 3)
    assert options.has_custom_complexity
    assert not Options().has_custom_complexity


def test_early_stop_accepts_threshold_or_callable():
    assert Options(early_stop_condition=1e-3).early_stop(1e-4, 5)
    assert not Options(early_stop_condition=1e-3).early_stop(1e-2, 5)
    options = Options(early_stop_condition=lambda loss, complexity: complexity <= 3 and loss < 1.0)
    assert options.early_stop(0.5, 3)
    assert not options.early_stop(0.5, 4)
    assert not Options().early_stop(0.0, 1)


def test_recommended_nworkers():
    assert recommended_nworkers(cpu_count=1) == 1
    assert recommended_nworkers(cpu_count=8) == 8


def test_resolve_parallelism_aliases_and_errors():
    assert resolve_parallelism("concurrent") == "multithreading"
    assert resolve_parallelism("distributed", numprocs=2) == "multiprocessing"
    with pytest.raises(ConfigurationError):
        resolve_parallelism("gpu")
    with pytest.raises(ConfigurationError):
        resolve_parallelism("multithreading", numprocs=2)
    with pytest.raises(ConfigurationError):
        resolve_parallelism("serial", procs=[])


def test_resolve_reporting_defaults_and_conflicts():
    options = Options()
    assert resolve_reporting(options, 1) == (1, True, False)
    assert resolve_reporting(options, 2) == (1, False, False)
    assert resolve_reporting(options, 1, verbosity=0) == (0, False, False)

    with pytest.raises(ConfigurationError):
        resolve_reporting(Options(verbosity=0), 1, verbosity=1)
    with pytest.raises(ConfigurationError):
        resolve_reporting(options, 2, progress=True)
    with pytest.raises(ConfigurationError):
        resolve_reporting(options, 1, verbosity=0, progress=True)
    # Same value in both places is not a contradiction
    assert resolve_reporting(Options(return_state=True), 1, return_state=True)[2] is True


def test_seed_requires_serial_mode(make_options):
    X = np.zeros((5, 1))
    y = np.zeros(5)
    with pytest.raises(ConfigurationError):
        equation_search(X, y, options=make_options(seed=1), parallelism="multithreading", verbosity=0)


def test_mismatched_shapes_raise_configuration_error(options):
    with pytest.raises(ConfigurationError):
        equation_search(np.zeros((5, 2)), np.zeros(4), options=options, parallelism="serial", verbosity=0)


def test_missing_penalty_warns_when_units_given(make_options, caplog):
    X = np.abs(np.random.default_rng(0).normal(size=(10, 1))) + 0.5
    y = X[:, 0] * 2.0
    with caplog.at_level(logging.WARNING, logger="turbo_sr.optimize"):
        equation_search(
            X,
            y,
            niterations=1,
            options=make_options(populations=1),
            parallelism="serial",
            verbosity=0,
            X_units=["m"],
            y_units="m",
        )
    assert any("dimensional_constraint_penalty" in r.getMessage() for r in caplog.records)
