from __future__ import annotations

import asyncio
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

import turbo_sr.concurrency as concurrency
from turbo_sr.concurrency import ProcessPoolAdapter, SerialAdapter, ThreadPoolAdapter
from turbo_sr.dataset import Dataset
from turbo_sr.errors import SearchCycleError
from turbo_sr.expression import string_tree
from turbo_sr.hall_of_fame import HallOfFame, calculate_pareto_frontier
from turbo_sr.loss import eval_loss
from turbo_sr.optimize import equation_search, equation_search_datasets
from turbo_sr.orchestrator import SearchOrchestrator
from turbo_sr.state import SearchState


def _frontier(hof: HallOfFame, options) -> list[tuple[int, float, str]]:
    return [(m.complexity, m.loss, string_tree(m.tree, options.operators)) for m in calculate_pareto_frontier(hof)]


@pytest.mark.asyncio
async def test_serial_run_fills_archive(dataset, options):
    orch = SearchOrchestrator([dataset], options, niterations=2, parallelism="serial")
    assert isinstance(orch.adapter, SerialAdapter)

    state = await orch.run()

    assert orch.stop_reason == "niterations"
    hof = state.hall_of_fame()
    assert isinstance(hof, HallOfFame)
    assert hof.existing_members()
    assert orch.total_num_evals >= options.populations * options.population_size
    assert any(pop is not None for pop in state.populations[0])
    # Baseline loss was refreshed before scoring
    assert orch.datasets[0].baseline_loss != 1.0


def test_seeded_serial_runs_are_reproducible(dataset, make_options):
    first = equation_search_datasets(
        [dataset], niterations=2, options=make_options(seed=11), parallelism="serial", verbosity=0
    )
    second = equation_search_datasets(
        [dataset], niterations=2, options=make_options(seed=11), parallelism="serial", verbosity=0
    )
    options = make_options()
    assert _frontier(first, options) == _frontier(second, options)


def test_multithreaded_run(dataset, make_options):
    options = make_options(nworkers=2)
    hof = equation_search_datasets([dataset], niterations=2, options=options, parallelism="multithreading", verbosity=0)
    assert calculate_pareto_frontier(hof)


@pytest.mark.asyncio
async def test_thread_adapter_is_closed_after_run(dataset, make_options):
    orch = SearchOrchestrator([dataset], make_options(nworkers=2), niterations=1, parallelism="multithreading")
    assert isinstance(orch.adapter, ThreadPoolAdapter)
    await orch.run()
    assert orch.adapter._executor is None
    assert all(handle is None for row in orch.handles for handle in row)


@pytest.mark.asyncio
async def test_process_adapter_with_supplied_workers_keeps_them_alive(dataset, options):
    procs = [ThreadPoolExecutor(max_workers=1), ThreadPoolExecutor(max_workers=1)]
    try:
        orch = SearchOrchestrator(
            [dataset], options, niterations=2, parallelism="multiprocessing", procs=procs
        )
        assert isinstance(orch.adapter, ProcessPoolAdapter)
        await orch.run()

        assignments = orch.adapter.assignments
        assert len(assignments) == options.populations
        assert sorted(assignments.load()) == [1, 1]
        assert not orch.adapter.we_created_procs
        assert procs[0].submit(lambda: 42).result() == 42
    finally:
        for executor in procs:
            executor.shutdown(wait=True)


@pytest.mark.asyncio
async def test_process_adapter_tears_down_workers_it_created(dataset, options):
    created: list[ThreadPoolExecutor] = []

    def fake_addprocs(numprocs: int):
        created.extend(ThreadPoolExecutor(max_workers=1) for _ in range(numprocs))
        return list(created)

    orch = SearchOrchestrator(
        [dataset], options, niterations=1, parallelism="multiprocessing", numprocs=3, addprocs_function=fake_addprocs
    )
    await orch.run()

    assert len(created) == 3
    with pytest.raises(RuntimeError):
        created[0].submit(lambda: 1)


def test_multiprocessing_run_with_spawned_workers(dataset, make_options):
    options = make_options(populations=2)
    hof = equation_search_datasets(
        [dataset], niterations=1, options=options, parallelism="multiprocessing", numprocs=2, verbosity=0
    )
    assert hof.existing_members()


@pytest.mark.asyncio
async def test_failed_cycle_aborts_with_search_cycle_error(dataset, options, monkeypatch):
    def exploding_cycle(work, context):
        raise ArithmeticError("cycle exploded")

    monkeypatch.setattr(concurrency, "run_search_cycle", exploding_cycle)
    orch = SearchOrchestrator([dataset], options, niterations=1, parallelism="serial")

    with pytest.raises(SearchCycleError) as excinfo:
        await orch.run()
    assert isinstance(excinfo.value.__cause__, ArithmeticError)


@pytest.mark.asyncio
async def test_max_evals_stops_search(dataset, make_options):
    orch = SearchOrchestrator([dataset], make_options(max_evals=1), niterations=50, parallelism="serial")
    await orch.run()
    assert orch.stop_reason == "max_evals"
    assert sum(orch.cycles_remaining) > 0


@pytest.mark.asyncio
async def test_user_stopper_reason_is_reported(dataset, options):
    class AfterFirstCycle:
        reason = "custom"

        def __call__(self, search) -> bool:
            return search.total_num_evals > 0

    orch = SearchOrchestrator([dataset], options, niterations=50, parallelism="serial", stoppers=[AfterFirstCycle()])
    await orch.run()
    assert orch.stop_reason == "custom"


def test_early_stop_condition(dataset, make_options):
    options = make_options(early_stop_condition=lambda loss, complexity: True)
    state = equation_search_datasets(
        [dataset], niterations=50, options=options, parallelism="serial", verbosity=0, return_state=True
    )
    assert isinstance(state, SearchState)
    completed = sum(pop is not None for pop in state.populations[0])
    assert completed >= 1


def test_resume_rescores_saved_archive(dataset, options):
    state = equation_search_datasets(
        [dataset], niterations=1, options=options, parallelism="serial", verbosity=0, return_state=True
    )
    saved_losses = [m.loss for m in state.halls_of_fame[0].existing_members()]

    shifted = Dataset(dataset.X, dataset.y + 100.0)
    orch = SearchOrchestrator([shifted], options, niterations=1, parallelism="serial", saved_state=state)
    rescored = orch._load_halls_of_fame()[0]

    for saved, member in zip(state.halls_of_fame[0].existing_members(), rescored.existing_members()):
        assert member.loss == pytest.approx(eval_loss(saved.tree, orch.datasets[0], options))
    # The saved state itself is left untouched
    assert [m.loss for m in state.halls_of_fame[0].existing_members()] == saved_losses

    asyncio.run(orch.run())
    assert orch.stop_reason == "niterations"


def test_resume_rebuilds_population_with_wrong_size(dataset, make_options, caplog):
    state = equation_search_datasets(
        [dataset], niterations=1, options=make_options(), parallelism="serial", verbosity=0, return_state=True
    )
    resized = make_options(population_size=10)
    with caplog.at_level(logging.WARNING, logger="turbo_sr.orchestrator"):
        new_state = equation_search_datasets(
            [dataset],
            niterations=1,
            options=resized,
            parallelism="serial",
            verbosity=0,
            return_state=True,
            saved_state=state,
        )
    messages = [r.getMessage() for r in caplog.records if "Recreating population" in r.getMessage()]
    assert messages
    assert "output=1" in messages[0]
    assert all(len(pop) == 10 for pop in new_state.populations[0] if pop is not None)


def test_hall_of_fame_written_with_backup(tmp_path, dataset, make_options):
    output = tmp_path / "equations.csv"
    options = make_options(save_to_file=True, output_file=str(output))
    equation_search_datasets([dataset], niterations=1, options=options, parallelism="serial", verbosity=0)
    assert output.exists()
    assert (tmp_path / "equations.csv.bkup").read_text() == output.read_text()
    assert output.read_text().startswith("Complexity,Loss,Equation")


def test_multiple_outputs_get_separate_files(tmp_path, make_options):
    rng = np.random.default_rng(3)
    X = rng.normal(size=(30, 2))
    y = np.stack([X[:, 0] * 3.0, X[:, 1] - 1.0])
    output = tmp_path / "multi.csv"
    options = make_options(save_to_file=True, output_file=str(output))

    halls = equation_search(X, y, niterations=1, options=options, parallelism="serial", verbosity=0)

    assert isinstance(halls, list) and len(halls) == 2
    assert (tmp_path / "multi.csv.out1").exists()
    assert (tmp_path / "multi.csv.out2").exists()


def test_search_state_save_and_load(tmp_path, dataset, options):
    state = equation_search_datasets(
        [dataset], niterations=1, options=options, parallelism="serial", verbosity=0, return_state=True
    )
    path = tmp_path / "state" / "search.pkl"
    state.save(str(path))
    loaded = SearchState.load(str(path))

    assert loaded.nout == 1
    assert _frontier(loaded.hall_of_fame(), options) == _frontier(state.hall_of_fame(), options)
    assert len(loaded.populations[0]) == options.populations


def test_recorder_writes_population_snapshots(tmp_path, dataset, make_options):
    record_path = tmp_path / "record.json"
    options = make_options(use_recorder=True, recorder_file=str(record_path))
    equation_search_datasets([dataset], niterations=2, options=options, parallelism="serial", verbosity=0)

    record = json.loads(record_path.read_text())
    assert "options" in record
    assert "iteration0" in record["out1_pop1"]
    assert "iteration1" in record["out1_pop1"]


def test_warmup_grows_maxsize_linearly(dataset, make_options):
    options = make_options(warmup_maxsize_by=0.5)
    orch = SearchOrchestrator([dataset], options, niterations=10, parallelism="serial")
    assert orch.curmaxsizes == [3]

    orch.cycles_remaining[0] = orch.total_cycles - 5
    orch._update_curmaxsize(0)
    assert orch.curmaxsizes[0] == 3 + (options.maxsize - 3) * 5 // 10

    orch.cycles_remaining[0] = 5
    orch._update_curmaxsize(0)
    assert orch.curmaxsizes[0] == options.maxsize


def test_started_message_logged_when_verbose(dataset, options, caplog):
    with caplog.at_level(logging.INFO, logger="turbo_sr.orchestrator"):
        equation_search_datasets([dataset], niterations=1, options=options, parallelism="serial", verbosity=1, progress=False)
    assert any(r.getMessage() == "Started!" for r in caplog.records)


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(6))
async def test_every_output_finishes_its_cycles(seed, make_options):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(30, 2))
    datasets = [Dataset(X, X[:, 0] * 3.0), Dataset(X, X[:, 1] - 1.0)]
    orch = SearchOrchestrator(datasets, make_options(seed=seed), niterations=1, parallelism="serial")

    state = await orch.run()

    assert orch.stop_reason == "niterations"
    assert orch.cycles_remaining == [0, 0]
    assert all(hof.existing_members() for hof in state.halls_of_fame)
    # The final cycle closes its busy interval too
    assert orch.monitor._work_start is None
    assert len(orch.monitor.intervals) == 2 * make_options().populations


@pytest.mark.asyncio
async def test_thread_pool_is_released_after_failed_cycle(dataset, make_options, monkeypatch):
    def exploding_cycle(work, context):
        raise ArithmeticError("cycle exploded")

    monkeypatch.setattr(concurrency, "run_search_cycle", exploding_cycle)
    orch = SearchOrchestrator([dataset], make_options(nworkers=2), niterations=5, parallelism="multithreading")

    with pytest.raises(SearchCycleError):
        await orch.run()
    assert orch.adapter._executor is None


@pytest.mark.asyncio
async def test_timeout_stops_threaded_search_promptly(dataset, make_options):
    orch = SearchOrchestrator(
        [dataset], make_options(nworkers=2, timeout_in_seconds=0.5), niterations=100000, parallelism="multithreading"
    )
    started = time.monotonic()
    await orch.run()

    assert orch.stop_reason == "timeout"
    assert sum(orch.cycles_remaining) > 0
    assert time.monotonic() - started < 30.0
    assert orch.adapter._executor is None


@pytest.mark.asyncio
async def test_timeout_stops_search_on_supplied_workers(dataset, make_options):
    procs = [ThreadPoolExecutor(max_workers=1), ThreadPoolExecutor(max_workers=1)]
    try:
        orch = SearchOrchestrator(
            [dataset],
            make_options(timeout_in_seconds=0.5),
            niterations=100000,
            parallelism="multiprocessing",
            procs=procs,
        )
        started = time.monotonic()
        await orch.run()

        assert orch.stop_reason == "timeout"
        assert time.monotonic() - started < 30.0
        assert all(handle is None for row in orch.handles for handle in row)
    finally:
        for executor in procs:
            executor.shutdown(wait=True)


def test_resume_on_unchanged_data_keeps_saved_scores(dataset, options):
    state = equation_search_datasets(
        [dataset], niterations=1, options=options, parallelism="serial", verbosity=0, return_state=True
    )
    saved = state.halls_of_fame[0].existing_members()

    orch = SearchOrchestrator([dataset], options, niterations=1, parallelism="serial", saved_state=state)
    rescored = orch._load_halls_of_fame()[0].existing_members()

    assert [m.complexity for m in rescored] == [m.complexity for m in saved]
    for before, after in zip(saved, rescored):
        assert after.score == pytest.approx(before.score, rel=1e-12)
        assert after.loss == pytest.approx(before.loss, rel=1e-12)
