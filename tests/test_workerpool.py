import asyncio
import random
import threading
import time

import pytest

from cian_crawler.errors import WorkerPoolError
from cian_crawler.workerpool import WorkerPool, chunks, unique


async def _echo(value):
    await asyncio.sleep(random.uniform(0, 0.01))
    return value * 10


@pytest.mark.parametrize("workers", [1, 2, 12])
def test_map_preserves_input_order(workers):
    inputs = list(range(12))
    pool = WorkerPool(_echo, workers)
    assert asyncio.run(pool.map(inputs)) == [value * 10 for value in inputs]


def test_map_never_exceeds_max_workers():
    running = 0
    peak = 0

    async def track(value):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.005)
        running -= 1
        return value

    asyncio.run(WorkerPool(track, 3).map(list(range(20))))
    assert peak == 3


def test_map_empty_input_returns_empty_list():
    assert asyncio.run(WorkerPool(_echo, 4).map([])) == []


@pytest.mark.parametrize("workers", [0, -1])
def test_non_positive_worker_count_is_rejected(workers):
    with pytest.raises(ValueError):
        WorkerPool(_echo, workers)


def test_progress_reports_every_dispatch():
    seen = []
    pool = WorkerPool(_echo, 2)
    pool.on_progress(lambda current, total: seen.append((current, total)))

    asyncio.run(pool.map([1, 2, 3, 4, 5]))
    assert sorted(seen) == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]


def test_slow_progress_callback_runs_off_the_event_loop():
    loop_thread = threading.get_ident()
    callback_threads = []

    def slow(current, total):
        callback_threads.append(threading.get_ident())
        time.sleep(0.02)

    pool = WorkerPool(_echo, 3)
    pool.on_progress(slow)

    assert asyncio.run(pool.map(list(range(6)))) == [value * 10 for value in range(6)]
    assert len(callback_threads) == 6
    assert loop_thread not in callback_threads


def test_failing_progress_callback_does_not_break_map():
    pool = WorkerPool(_echo, 2)

    def explode(current, total):
        raise RuntimeError("callback bug")

    pool.on_progress(explode)
    assert asyncio.run(pool.map([1, 2, 3])) == [10, 20, 30]


def test_all_failing_workers_are_aggregated():
    calls = []

    async def fail(value):
        calls.append(value)
        await asyncio.sleep(0.01)
        raise RuntimeError(f"boom {value}")

    with pytest.raises(WorkerPoolError) as excinfo:
        asyncio.run(WorkerPool(fail, 4).map(list(range(10))))

    failures = excinfo.value.failures
    assert len(failures) == 4
    assert {failure.worker_id for failure in failures} == {1, 2, 3, 4}
    assert [str(error) for error in excinfo.value.errors] == ["boom 0", "boom 1", "boom 2", "boom 3"]
    # Cancellation stops dispatch: nothing beyond the first unit of each worker.
    assert sorted(calls) == [0, 1, 2, 3]


def test_first_failure_stops_dispatching_new_units():
    started = []

    async def work(value):
        started.append(value)
        if value == 0:
            raise ValueError("bad input")
        await asyncio.sleep(0.01)
        return value

    with pytest.raises(WorkerPoolError) as excinfo:
        asyncio.run(WorkerPool(work, 2).map(list(range(10))))

    assert len(excinfo.value.failures) == 1
    assert excinfo.value.failures[0].index == 0
    assert isinstance(excinfo.value.failures[0].error, ValueError)
    assert len(started) < 10


def test_sequential_pool_fails_on_first_error():
    started = []

    async def work(value):
        started.append(value)
        if value == 2:
            raise RuntimeError("stop")
        return value

    with pytest.raises(WorkerPoolError):
        asyncio.run(WorkerPool(work, 1).map([0, 1, 2, 3, 4]))
    assert started == [0, 1, 2]


def test_chunks_split_into_fixed_size_batches():
    batches = chunks(list(range(61)), 28)
    assert [len(batch) for batch in batches] == [28, 28, 5]
    assert [item for batch in batches for item in batch] == list(range(61))


def test_chunks_edge_cases():
    assert chunks([], 28) == []
    assert chunks([1, 2], 28) == [[1, 2]]
    with pytest.raises(ValueError):
        chunks([1], 0)


def test_unique_keeps_first_seen_order():
    assert unique([5, 3, 5, 7, 3]) == [5, 3, 7]
