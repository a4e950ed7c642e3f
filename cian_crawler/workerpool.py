"""Bounded-concurrency async map with ordered results and fail-fast cancellation."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Generic,
    Hashable,
    Iterable,
    List,
    Optional,
    Sequence,
    TypeVar,
)

from .errors import WorkerFailure, WorkerPoolError

LOGGER = logging.getLogger(__name__)

I = TypeVar("I")
O = TypeVar("O")
T = TypeVar("T")
H = TypeVar("H", bound=Hashable)

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class Task(Generic[I]):
    """Unit of work tagged with its position in the input sequence."""

    index: int
    input: I


class WorkerPool(Generic[I, O]):
    """Apply ``func`` to every input using at most ``max_workers`` coroutines.

    Results are written into a preallocated list at the index of the input
    they came from, so ``map`` always returns outputs in input order. The
    first failing unit stops dispatching: workers finish what they are
    currently running, start nothing new, and every failure seen until then
    is raised as one :class:`WorkerPoolError`.
    """

    def __init__(self, func: Callable[[I], Awaitable[O]], max_workers: int) -> None:
        """Initialize worker pool.

        Parameters
        ----------
        func : callable
            Coroutine function processing a single input
        max_workers : int
            Maximum number of inputs processed concurrently (>= 1)
        """
        if max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        self.func = func
        self.max_workers = max_workers
        self._on_progress: Optional[ProgressCallback] = None

    def on_progress(self, callback: ProgressCallback) -> None:
        """Register ``callback(current, total)`` fired after each dispatch.

        The callback runs in the default executor so a slow one never holds up
        the workers; ``map`` waits for pending callbacks before returning.
        """
        self._on_progress = callback

    def _report_progress(self, current: int, total: int) -> Optional[asyncio.Future]:
        if self._on_progress is None:
            return None
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, self._safe_progress, current, total)

    def _safe_progress(self, current: int, total: int) -> None:
        try:
            self._on_progress(current, total)  # type: ignore[misc]
        except Exception:
            LOGGER.exception("Progress callback failed (%d/%d)", current, total)

    async def map(self, inputs: Sequence[I]) -> List[O]:
        """Process ``inputs`` and return outputs in the same order.

        Raises
        ------
        WorkerPoolError
            If at least one unit of work raised
        """
        total = len(inputs)
        if total == 0:
            return []

        queue: asyncio.Queue[Task[I]] = asyncio.Queue()
        for index, value in enumerate(inputs):
            queue.put_nowait(Task(index=index, input=value))

        output: List[Optional[O]] = [None] * total
        failures: List[WorkerFailure] = []
        stop = asyncio.Event()
        reports: List[asyncio.Future] = []

        async def worker(worker_id: int) -> None:
            while not stop.is_set():
                try:
                    task = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                report = self._report_progress(task.index + 1, total)
                if report is not None:
                    reports.append(report)
                try:
                    output[task.index] = await self.func(task.input)
                except Exception as exc:
                    LOGGER.debug("Worker %d failed on task #%d: %s", worker_id, task.index, exc)
                    failures.append(WorkerFailure(worker_id=worker_id, index=task.index, error=exc))
                    stop.set()
                    return

        workers = min(self.max_workers, total)
        await asyncio.gather(*(worker(worker_id) for worker_id in range(1, workers + 1)))
        await asyncio.gather(*reports)

        if failures:
            failures.sort(key=lambda failure: failure.index)
            raise WorkerPoolError(failures)
        return output  # type: ignore[return-value]


def chunks(items: Sequence[T], size: int) -> List[List[T]]:
    """Split ``items`` into consecutive lists of at most ``size`` elements."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


def unique(items: Iterable[H]) -> List[H]:
    """Drop duplicates keeping the first occurrence of every item."""
    seen: set = set()
    result: List[H] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
