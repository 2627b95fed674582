"""
Search orchestrator for TurboSR.

Owns the ``outputs x populations`` grid of slots and runs the control loop:
poll slots in a shuffled round-robin order, merge each finished cycle into
the output's hall of fame, persist the dominating set, migrate members, and
re-spawn the slot until a stop condition fires. The same loop drives serial,
thread-pool and process-pool execution through a ``ConcurrencyAdapter``.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import math
import random
import time
from collections import deque
from concurrent.futures import Executor
from typing import Any, Callable, Deque, List, Sequence

from .adaptive_parsimony import RunningSearchStatistics
from .concurrency import ConcurrencyAdapter, CycleHandle, make_adapter
from .config import Options
from .dataset import Dataset
from .errors import ConfigurationError, SearchCycleError
from .hall_of_fame import HallOfFame, calculate_pareto_frontier, output_file_for, save_hall_of_fame
from .interfaces import CycleResult, CycleWork, WorkerContext
from .loss import update_baseline_loss
from .migration import migrate
from .monitor import ResourceMonitor
from .population import Population
from .progress import SearchProgressBar, print_search_state
from .recorder import RecordType, recursive_merge, write_record
from .state import SearchState
from .stop_condition import (
    CompositeStopper,
    FileStopper,
    LossThresholdStopper,
    MaxEvalsStopper,
    StdinQuitStopper,
    StopperProtocol,
    TimeoutStopCondition,
)

logger = logging.getLogger(__name__)

# Seconds to yield when no slot is ready, so polling never busy-spins
IDLE_SLEEP_SECONDS = 1e-3
SPEED_RECORDING_INTERVAL = 1.0
SPEED_WINDOW = 20  # 20 second running average
WARMUP_MIN_SIZE = 3


class SearchOrchestrator:
    def __init__(
        self,
        datasets: Sequence[Dataset],
        options: Options,
        *,
        niterations: int,
        parallelism: str = "serial",
        numprocs: int | None = None,
        procs: Sequence[Executor] | None = None,
        addprocs_function: Callable[[int], List[Executor]] | None = None,
        runtests: bool = True,
        saved_state: SearchState | None = None,
        verbosity: int = 0,
        progress: bool = False,
        stoppers: Sequence[StopperProtocol] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not datasets:
            raise ConfigurationError("At least one dataset is required")
        if niterations < 1:
            raise ConfigurationError(f"niterations must be positive, got {niterations}")
        self.options = options
        self.datasets: List[Dataset] = [update_baseline_loss(dataset, options) for dataset in datasets]
        self.nout = len(self.datasets)
        self.niterations = niterations
        self.verbosity = verbosity
        self.progress = progress
        self.saved_state = saved_state
        self.extra_stoppers = list(stoppers)
        self._clock = clock

        self.context = WorkerContext(self.datasets, options, verbosity)
        self.adapter: ConcurrencyAdapter = make_adapter(
            parallelism,
            self.context,
            numprocs=numprocs,
            procs=procs,
            addprocs_function=addprocs_function,
            runtests=runtests,
        )
        self.parallelism = self.adapter.parallelism
        self.deterministic = options.seed is not None
        self._rng = random.Random(options.seed)

        npops = options.populations
        self.total_cycles = npops * niterations
        self.cycles_remaining = [self.total_cycles for _ in range(self.nout)]
        self.halls_of_fame: List[HallOfFame] = []
        self.return_pops: List[List[Population | None]] = [[None] * npops for _ in range(self.nout)]
        self.best_sub_pops: List[List[Population | None]] = [[None] * npops for _ in range(self.nout)]
        self.handles: List[List[CycleHandle | None]] = [[None] * npops for _ in range(self.nout)]
        self.iterations = [[0] * npops for _ in range(self.nout)]
        self.num_evals = [[0.0] * npops for _ in range(self.nout)]
        self.stats = [RunningSearchStatistics(options.maxsize) for _ in range(self.nout)]
        if options.warmup_maxsize_by == 0:
            self.curmaxsizes = [options.maxsize] * self.nout
        else:
            self.curmaxsizes = [WARMUP_MIN_SIZE] * self.nout
        self.record: RecordType = {"options": repr(options)}
        # Storing many monitoring intervals per population keeps the estimate smooth
        self.monitor = ResourceMonitor(npops * 100 * self.nout, clock=clock)
        self.equation_speed: Deque[float] = deque(maxlen=SPEED_WINDOW)
        self._stop_reason: str | None = None
        self._stopper: CompositeStopper | None = None
        self._progress_bar: SearchProgressBar | None = None

    # ------------------------------------------------------------------ state

    @property
    def stop_reason(self) -> str | None:
        return self._stop_reason

    def _set_stop_reason(self, reason: str) -> None:
        """Record why the search loop decided to stop."""
        if not self._stop_reason:
            self._stop_reason = reason

    @property
    def total_num_evals(self) -> float:
        return sum(sum(row) for row in self.num_evals)

    def search_state(self) -> SearchState:
        return SearchState([list(row) for row in self.return_pops], self.halls_of_fame)

    # ------------------------------------------------------------------ setup

    def _load_halls_of_fame(self) -> List[HallOfFame]:
        if self.saved_state is None:
            return [HallOfFame.from_options(self.options) for _ in range(self.nout)]
        if self.saved_state.nout != self.nout:
            raise ConfigurationError(
                f"Saved state has {self.saved_state.nout} output(s), but {self.nout} dataset(s) were given"
            )
        halls = []
        for hof, dataset in zip(self.saved_state.halls_of_fame, self.datasets):
            # The dataset may have changed since the state was saved
            hof = hof.copy()
            hof.rescore(dataset, self.options)
            halls.append(hof)
        return halls

    def _initial_population(self, j: int, i: int) -> Population | None:
        if self.saved_state is None:
            return None
        saved_pop = self.saved_state.population(j, i)
        if saved_pop is None:
            return None
        if len(saved_pop) != self.options.population_size:
            logger.warning(
                "Recreating population (output=%d, population=%d), as the saved one doesn't have "
                "the correct number of members.",
                j + 1,
                i + 1,
            )
            return None
        pop = saved_pop.copy()
        for member in pop.members:
            member.rescore(self.datasets[j], self.options)
        return pop

    def _initialize(self) -> None:
        self.halls_of_fame = self._load_halls_of_fame()
        for j in range(self.nout):
            for i in range(self.options.populations):
                self._spawn(j, i, self._initial_population(j, i))

    def _spawn(self, j: int, i: int, population: Population | None) -> None:
        """Hand a private copy of the population and statistics to a new cycle."""
        work = CycleWork(
            output=j,
            population_index=i,
            population=population.copy() if population is not None else None,
            stats=copy.deepcopy(self.stats[j]),
            curmaxsize=self.curmaxsizes[j],
            seed=self._rng.getrandbits(63) if self.deterministic else None,
            iteration=self.iterations[j][i],
        )
        self.iterations[j][i] += 1
        self.handles[j][i] = self.adapter.spawn((j, i), work)

    def _build_stopper(self) -> CompositeStopper:
        options = self.options
        stoppers: list[Any] = [LossThresholdStopper()]
        if options.watch_stdin:
            stoppers.append(StdinQuitStopper())
        if options.timeout_in_seconds is not None:
            stoppers.append(TimeoutStopCondition(options.timeout_in_seconds, clock=self._clock))
        if options.max_evals is not None:
            stoppers.append(MaxEvalsStopper(options.max_evals))
        if options.stop_file is not None:
            stoppers.append(FileStopper(options.stop_file))
        stoppers.extend(self.extra_stoppers)
        return CompositeStopper(*stoppers)

    # ------------------------------------------------------------------ loop

    def _merge_into_hall_of_fame(self, j: int, result: CycleResult) -> None:
        hof = self.halls_of_fame[j]
        stats = self.stats[j]
        for member in result.population.members:
            stats.update_frequencies(member.complexity)
            hof.update(member)
        for member in result.best_seen.existing_members():
            hof.update(member)

    def _update_curmaxsize(self, j: int) -> None:
        warmup = self.options.warmup_maxsize_by
        if warmup <= 0:
            return
        cycles_elapsed = self.total_cycles - self.cycles_remaining[j]
        fraction_elapsed = cycles_elapsed / self.total_cycles
        maxsize = self.options.maxsize
        if fraction_elapsed > warmup:
            self.curmaxsizes[j] = maxsize
        else:
            self.curmaxsizes[j] = WARMUP_MIN_SIZE + math.floor((maxsize - WARMUP_MIN_SIZE) * fraction_elapsed / warmup)

    def _process_result(self, result: CycleResult) -> bool:
        """Fold a finished cycle into the search. Returns True once the output has no cycles left."""
        options = self.options
        j, i = result.output, result.population_index
        pop = result.population

        self.return_pops[j][i] = pop.copy()
        self.best_sub_pops[j][i] = pop.best_sub_pop(options.topn)
        if options.use_recorder:
            self.record = recursive_merge(self.record, result.record)
        self.num_evals[j][i] += result.num_evals

        best_pool = [member for sub in self.best_sub_pops[j] if sub is not None for member in sub.members]

        self._merge_into_hall_of_fame(j, result)
        # Dominating pareto curve: each member beats every simpler equation
        dominating = calculate_pareto_frontier(self.halls_of_fame[j])
        if options.save_to_file:
            save_hall_of_fame(
                output_file_for(options, j, self.nout), dominating, options, self.datasets[j].variable_names
            )

        if options.migration:
            migrate(best_pool, pop, self._rng, frac=options.fraction_replaced, deterministic=self.deterministic)
        if options.hof_migration and dominating:
            migrate(dominating, pop, self._rng, frac=options.fraction_replaced_hof, deterministic=self.deterministic)

        self.cycles_remaining[j] -= 1
        if self.cycles_remaining[j] == 0:
            return True
        self._spawn(j, i, pop)
        self._update_curmaxsize(j)
        return False

    def _record_speed(self, state: dict[str, float]) -> None:
        now = self._clock()
        elapsed = now - state["last_speed_time"]
        if elapsed > SPEED_RECORDING_INTERVAL:
            total = self.total_num_evals
            self.equation_speed.append((total - state["num_evals_last"]) / elapsed)
            state["num_evals_last"] = total
            state["last_speed_time"] = now

    def _maybe_print(self, state: dict[str, float]) -> None:
        now = self._clock()
        if now - state["last_print_time"] > self.options.print_every_n_seconds:
            if self.verbosity > 0 and not self.progress and self.equation_speed:
                print_search_state(
                    self.halls_of_fame,
                    self.datasets,
                    options=self.options,
                    equation_speed=self.equation_speed,
                    total_cycles=self.total_cycles,
                    cycles_remaining=self.cycles_remaining,
                    head_node_occupation=self.monitor.estimate_work_fraction(),
                    parallelism=self.parallelism,
                )
            state["last_print_time"] = now

    async def run(self) -> SearchState:
        """Run the search to completion and return archives plus population snapshots."""
        self.adapter.start()
        self._initialize()
        if self.verbosity > 0:
            logger.info("Started!")

        self._stopper = self._build_stopper()
        if self.progress:
            self._progress_bar = SearchProgressBar(sum(self.cycles_remaining))

        now = self._clock()
        loop_state = {"last_print_time": now, "last_speed_time": now, "num_evals_last": self.total_num_evals}

        # Shuffled so every output gets attention at the same rate
        all_idx = [(j, i) for j in range(self.nout) for i in range(self.options.populations)]
        self._rng.shuffle(all_idx)
        kappa = -1

        try:
            while sum(self.cycles_remaining) > 0:
                kappa = (kappa + 1) % len(all_idx)
                j, i = all_idx[kappa]
                handle = self.handles[j][i]

                ready = handle is not None and self.adapter.is_ready(handle)
                if ready and handle.future.exception() is not None:
                    await self.adapter.collect(handle)  # raises SearchCycleError
                # Don't start more if this output has finished its cycles
                ready = ready and self.cycles_remaining[j] > 0

                if ready:
                    self.monitor.start_work()
                    result = await self.adapter.collect(handle)
                    self.handles[j][i] = None
                    exhausted = self._process_result(result)
                    self.monitor.stop_work()
                    if exhausted and (self.nout == 1 or sum(self.cycles_remaining) == 0):
                        self._set_stop_reason("niterations")
                        break
                    self.stats[j].move_window()
                    if self._progress_bar is not None:
                        self._progress_bar.update(
                            self.halls_of_fame[0],
                            self.datasets[0],
                            self.options,
                            self.equation_speed,
                            self.monitor.estimate_work_fraction(),
                            self.parallelism,
                        )
                    await asyncio.sleep(0)
                else:
                    await asyncio.sleep(IDLE_SLEEP_SECONDS)

                self._record_speed(loop_state)
                self._maybe_print(loop_state)

                if self._stopper(self):
                    self._set_stop_reason(self._stopper.reason or "stopped")
                    break
        except SearchCycleError:
            self.adapter.abort()
            raise

        await self._shutdown()
        return self.search_state()

    async def _shutdown(self) -> None:
        """Wait for in-flight cycles, release owned workers and flush the run record."""
        outstanding = [handle for row in self.handles for handle in row if handle is not None]
        await self.adapter.drain(outstanding)
        self.handles = [[None] * self.options.populations for _ in range(self.nout)]
        self.adapter.close()
        if self._progress_bar is not None:
            self._progress_bar.close()
        if self._stopper is not None:
            for stopper in self._stopper.stoppers:
                cleanup = getattr(stopper, "cleanup", None)
                if callable(cleanup):
                    cleanup()
        if self.options.use_recorder:
            write_record(self.record, self.options.recorder_file)
