"""
Synchronous entry points for a symbolic regression search.

``equation_search`` takes raw arrays, builds one ``Dataset`` per output and
runs a ``SearchOrchestrator`` to completion; ``equation_search_datasets``
accepts prepared datasets. All settings are validated before any work is
scheduled.
"""

from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import Executor
from typing import Any, Callable, List, Sequence

from .concurrency import PARALLELISM_ALIASES
from .config import Options
from .dataset import Dataset, make_datasets
from .errors import ConfigurationError
from .hall_of_fame import HallOfFame
from .loss import DEFAULT_DIMENSIONAL_PENALTY
from .orchestrator import SearchOrchestrator
from .state import SearchState
from .stop_condition import StopperProtocol

logger = logging.getLogger(__name__)

SearchOutput = HallOfFame | List[HallOfFame] | SearchState


def _resolve_duplicate(name: str, call_value: Any, option_value: Any) -> Any:
    if call_value is not None and option_value is not None and call_value != option_value:
        raise ConfigurationError(
            f"`{name}` was set to {call_value!r} on the call and {option_value!r} in the options; set it in one place."
        )
    return call_value if call_value is not None else option_value


def resolve_parallelism(
    parallelism: str,
    *,
    numprocs: int | None = None,
    procs: Sequence[Executor] | None = None,
    addprocs_function: Callable | None = None,
) -> str:
    """Canonical execution mode for ``parallelism``; worker arguments need multiprocessing."""
    mode = PARALLELISM_ALIASES.get(parallelism)
    if mode is None:
        raise ConfigurationError(
            f"Invalid parallelism mode {parallelism!r}; expected one of {sorted(PARALLELISM_ALIASES)}"
        )
    if mode != "multiprocessing":
        for name, value in (("numprocs", numprocs), ("procs", procs), ("addprocs_function", addprocs_function)):
            if value is not None:
                raise ConfigurationError(f"`{name}` should only be set when using multiprocessing mode.")
    return mode


def resolve_reporting(
    options: Options,
    nout: int,
    *,
    verbosity: int | None = None,
    progress: bool | None = None,
    return_state: bool | None = None,
) -> tuple[int, bool, bool]:
    """Merge call-site and ``Options`` reporting settings into ``(verbosity, progress, return_state)``."""
    verbosity = _resolve_duplicate("verbosity", verbosity, options.verbosity)
    progress = _resolve_duplicate("progress", progress, options.progress)
    return_state = _resolve_duplicate("return_state", return_state, options.return_state)

    resolved_verbosity = 1 if verbosity is None else int(verbosity)
    if progress is None:
        resolved_progress = resolved_verbosity > 0 and nout == 1
    else:
        if progress and nout > 1:
            raise ConfigurationError("Progress bar is only available for single-output searches.")
        if progress and resolved_verbosity == 0:
            raise ConfigurationError("Progress bar requires verbosity > 0.")
        resolved_progress = bool(progress)
    return resolved_verbosity, resolved_progress, bool(return_state)


def _warn_about_settings(
    datasets: Sequence[Dataset], options: Options, mode: str, saved_state: SearchState | None
) -> None:
    if mode == "multithreading":
        nworkers = options.nworkers if options.nworkers is not None else (os.cpu_count() or 1)
        if nworkers == 1:
            logger.warning(
                "You are using multithreading mode, but only one worker is available. "
                "Set Options.nworkers or use more CPUs for a parallel search."
            )
    if (
        any(dataset.has_units for dataset in datasets)
        and options.dimensional_constraint_penalty is None
        and saved_state is None
    ):
        logger.warning(
            "You are using dimensional constraints, but dimensional_constraint_penalty was not set. "
            "The default penalty of %s will be used.",
            DEFAULT_DIMENSIONAL_PENALTY,
        )


def equation_search_datasets(
    datasets: Sequence[Dataset],
    *,
    niterations: int = 10,
    options: Options | None = None,
    parallelism: str = "multithreading",
    numprocs: int | None = None,
    procs: Sequence[Executor] | None = None,
    addprocs_function: Callable[[int], List[Executor]] | None = None,
    runtests: bool = True,
    saved_state: SearchState | None = None,
    return_state: bool | None = None,
    verbosity: int | None = None,
    progress: bool | None = None,
    stoppers: Sequence[StopperProtocol] = (),
) -> SearchOutput:
    """Run a search over prepared datasets, one per output.

    Returns the hall of fame (a list of them for several outputs), or a
    ``SearchState`` with the final populations when ``return_state`` is set.
    """
    options = options or Options()
    datasets = list(datasets)
    if not datasets:
        raise ConfigurationError("At least one dataset is required")
    nout = len(datasets)

    mode = resolve_parallelism(parallelism, numprocs=numprocs, procs=procs, addprocs_function=addprocs_function)
    if options.seed is not None and mode != "serial":
        raise ConfigurationError(
            "Determinism is only guaranteed for serial mode. Set parallelism='serial' or remove the seed."
        )
    verbosity, progress, return_state = resolve_reporting(
        options, nout, verbosity=verbosity, progress=progress, return_state=return_state
    )
    _warn_about_settings(datasets, options, mode, saved_state)

    orchestrator = SearchOrchestrator(
        datasets,
        options,
        niterations=niterations,
        parallelism=mode,
        numprocs=numprocs,
        procs=procs,
        addprocs_function=addprocs_function,
        runtests=runtests,
        saved_state=saved_state,
        verbosity=verbosity,
        progress=progress,
        stoppers=stoppers,
    )
    state = asyncio.run(orchestrator.run())
    if verbosity > 0:
        logger.info("Search finished (%s) after %.0f evaluations", orchestrator.stop_reason, orchestrator.total_num_evals)
    if return_state:
        return state
    return state.hall_of_fame()


def equation_search(
    X,
    y,
    *,
    niterations: int = 10,
    options: Options | None = None,
    parallelism: str = "multithreading",
    numprocs: int | None = None,
    procs: Sequence[Executor] | None = None,
    addprocs_function: Callable[[int], List[Executor]] | None = None,
    runtests: bool = True,
    saved_state: SearchState | None = None,
    return_state: bool | None = None,
    verbosity: int | None = None,
    progress: bool | None = None,
    X_units=None,
    y_units=None,
    weights=None,
    variable_names: Sequence[str] | None = None,
    stoppers: Sequence[StopperProtocol] = (),
) -> SearchOutput:
    """Search for equations mapping ``X`` (rows x features) to ``y``.

    ``y`` may be 1-D for a single output or ``(outputs, rows)`` to search each
    output independently. Units are strings such as ``"m/s"`` or ``Quantity``
    objects.
    """
    try:
        datasets = make_datasets(
            X, y, weights=weights, variable_names=variable_names, X_units=X_units, y_units=y_units
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    return equation_search_datasets(
        datasets,
        niterations=niterations,
        options=options,
        parallelism=parallelism,
        numprocs=numprocs,
        procs=procs,
        addprocs_function=addprocs_function,
        runtests=runtests,
        saved_state=saved_state,
        return_state=return_state,
        verbosity=verbosity,
        progress=progress,
        stoppers=stoppers,
    )
