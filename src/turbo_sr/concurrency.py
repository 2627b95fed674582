"""
Execution back-ends for search cycles.

All three adapters expose the same primitives to the orchestrator:
``spawn`` a cycle for a slot, poll ``is_ready`` without blocking, and
``collect`` the result (awaiting only when draining). Every handle wraps a
``concurrent.futures.Future`` so the control loop never branches on the mode.
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing
import random
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

import cloudpickle
import numpy as np

from .adaptive_parsimony import RunningSearchStatistics
from .config import recommended_nworkers
from .errors import SearchCycleError, WorkerSetupError
from .evolution import run_search_cycle
from .interfaces import CycleResult, CycleWork, WorkerContext
from .population import Population, best_of_sample

logger = logging.getLogger(__name__)

DEFAULT_NUMPROCS = 4

Slot = tuple[int, int]


@dataclass
class CycleHandle:
    slot: Slot
    future: Future


class ConcurrencyAdapter:
    """Common spawn / poll / collect surface; subclasses decide where cycles run."""

    parallelism = "serial"

    def __init__(self, context: WorkerContext) -> None:
        self.context = context

    def start(self) -> None:
        """Provision and validate workers before any real work is spawned."""

    def close(self) -> None:
        """Release workers this adapter owns."""

    def abort(self) -> None:
        """Stop owned workers after a failure without waiting for queued cycles."""

    def spawn(self, slot: Slot, work: CycleWork) -> CycleHandle:
        raise NotImplementedError

    def is_ready(self, handle: CycleHandle) -> bool:
        return handle.future.done()

    async def collect(self, handle: CycleHandle) -> CycleResult:
        """Result of a spawned cycle; a failure inside it becomes ``SearchCycleError``."""
        try:
            return await asyncio.wrap_future(handle.future)
        except Exception as exc:
            output, population = handle.slot
            raise SearchCycleError(output, population, f"Task failed for population {handle.slot}: {exc!r}") from exc

    async def drain(self, handles: Sequence[CycleHandle | None]) -> List[CycleResult]:
        """Wait for every outstanding cycle; nothing in flight is cancelled."""
        results = []
        for handle in handles:
            if handle is not None:
                results.append(await self.collect(handle))
        return results


class SerialAdapter(ConcurrencyAdapter):
    """Runs each cycle inline at spawn time; handles are always ready."""

    parallelism = "serial"

    def spawn(self, slot: Slot, work: CycleWork) -> CycleHandle:
        future: Future = Future()
        try:
            future.set_result(run_search_cycle(work, self.context))
        except Exception as exc:
            # Surfaced by collect(), like the pooled adapters
            future.set_exception(exc)
        return CycleHandle(slot, future)


class ThreadPoolAdapter(ConcurrencyAdapter):
    """Shared-memory workers; cycles receive private copies of their inputs."""

    parallelism = "multithreading"

    def __init__(self, context: WorkerContext, nworkers: int | None = None) -> None:
        super().__init__(context)
        self.nworkers = nworkers or recommended_nworkers()
        self._executor: ThreadPoolExecutor | None = None

    def start(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=self.nworkers, thread_name_prefix="turbo-sr")

    def spawn(self, slot: Slot, work: CycleWork) -> CycleHandle:
        if self._executor is None:
            self.start()
        return CycleHandle(slot, self._executor.submit(run_search_cycle, work, self.context))  # type: ignore[union-attr]

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def abort(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


class WorkerAssignments:
    """Which worker owns each ``(output, population)`` slot.

    A slot is bound to the least-loaded worker the first time it is seen and
    keeps that worker for the rest of the run.
    """

    def __init__(self, nworkers: int) -> None:
        self.nworkers = nworkers
        self._table: Dict[Slot, int] = {}
        self._load = [0] * nworkers

    def __contains__(self, slot: Slot) -> bool:
        return slot in self._table

    def __len__(self) -> int:
        return len(self._table)

    def worker_for(self, slot: Slot) -> int:
        worker = self._table.get(slot)
        if worker is None:
            worker = self._load.index(min(self._load))
            self._table[slot] = worker
            self._load[worker] += 1
        return worker

    def load(self) -> list[int]:
        return list(self._load)


# Per-process state of a worker, installed once by the controller
_WORKER_CONTEXT: WorkerContext | None = None


def install_worker_context(payload: bytes) -> bool:
    global _WORKER_CONTEXT
    _WORKER_CONTEXT = cloudpickle.loads(payload)
    return True


def _installed_context() -> WorkerContext:
    if _WORKER_CONTEXT is None:
        raise WorkerSetupError("Worker has no search context installed")
    return _WORKER_CONTEXT


def run_installed_cycle(work: CycleWork) -> CycleResult:
    return run_search_cycle(work, _installed_context())


def worker_self_test() -> bool:
    """Score a tiny random population end to end with the installed context."""
    context = _installed_context()
    options = context.options
    dataset = context.datasets[0]
    rng = random.Random(0)
    pop = Population.random(dataset, options, rng, population_size=min(4, options.population_size))
    stats = RunningSearchStatistics(options.maxsize)
    stats.normalize_frequencies()
    winner = best_of_sample(pop, stats, options, rng)
    return isinstance(winner.loss, float) and not np.isnan(winner.score)


def addprocs(numprocs: int) -> List[Executor]:
    """Default worker factory: one single-process pool per worker."""
    mp_context = multiprocessing.get_context("spawn")
    return [ProcessPoolExecutor(max_workers=1, mp_context=mp_context) for _ in range(numprocs)]


class ProcessPoolAdapter(ConcurrencyAdapter):
    """Cycles run in separate processes with fixed slot-to-worker affinity."""

    parallelism = "multiprocessing"

    def __init__(
        self,
        context: WorkerContext,
        *,
        numprocs: int | None = None,
        procs: Sequence[Executor] | None = None,
        addprocs_function: Callable[[int], List[Executor]] | None = None,
        runtests: bool = True,
    ) -> None:
        super().__init__(context)
        self.numprocs = numprocs
        self.procs: List[Executor] | None = list(procs) if procs is not None else None
        self.addprocs_function = addprocs_function or addprocs
        self.runtests = runtests
        self.we_created_procs = False
        self.assignments: WorkerAssignments | None = None

    def start(self) -> None:
        if self.procs is None:
            self.numprocs = self.numprocs or DEFAULT_NUMPROCS
            self.procs = list(self.addprocs_function(self.numprocs))
            self.we_created_procs = True
        elif self.numprocs is None:
            self.numprocs = len(self.procs)
        if not self.procs:
            raise WorkerSetupError("No worker processes available")
        self.assignments = WorkerAssignments(len(self.procs))

        payload = cloudpickle.dumps(self.context)
        for index, executor in enumerate(self.procs):
            try:
                executor.submit(install_worker_context, payload).result()
                if self.runtests and not executor.submit(worker_self_test).result():
                    raise WorkerSetupError(f"Worker {index} failed its self-test")
            except WorkerSetupError:
                raise
            except Exception as exc:
                raise WorkerSetupError(f"Could not set up worker {index}: {exc!r}") from exc
        if self.context.verbosity > 0:
            logger.info("Configured %d worker process(es)", len(self.procs))

    def spawn(self, slot: Slot, work: CycleWork) -> CycleHandle:
        if self.procs is None or self.assignments is None:
            self.start()
        worker = self.assignments.worker_for(slot)  # type: ignore[union-attr]
        return CycleHandle(slot, self.procs[worker].submit(run_installed_cycle, work))  # type: ignore[index]

    def close(self) -> None:
        if self.we_created_procs and self.procs is not None:
            for executor in self.procs:
                executor.shutdown(wait=True)
            self.procs = None
            self.we_created_procs = False


PARALLELISM_ALIASES = {
    "serial": "serial",
    "multithreading": "multithreading",
    "concurrent": "multithreading",
    "multiprocessing": "multiprocessing",
    "distributed": "multiprocessing",
}


def make_adapter(
    parallelism: str,
    context: WorkerContext,
    *,
    numprocs: int | None = None,
    procs: Sequence[Executor] | None = None,
    addprocs_function: Callable[[int], List[Executor]] | None = None,
    runtests: bool = True,
) -> ConcurrencyAdapter:
    mode = PARALLELISM_ALIASES[parallelism]
    if mode == "serial":
        return SerialAdapter(context)
    if mode == "multithreading":
        return ThreadPoolAdapter(context, context.options.nworkers)
    return ProcessPoolAdapter(
        context, numprocs=numprocs, procs=procs, addprocs_function=addprocs_function, runtests=runtests
    )
