"""Fixed-size process pool shared by the optimizer and the simulator.

Each worker process receives the shared, read-only payload once, then pulls
small work units (a search branch, a simulation chunk) from a task queue and
reports one result per finished unit. When the deadline passes, workers stop
taking new units; units already running check the same deadline and hand
back what they have, so the parent keeps draining results for a short grace
period before terminating stragglers. Cancellation drains whatever has
already been reported and stops immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import multiprocessing as mp
import queue as queue_module
import threading
import time
from typing import Any, Callable, Generic, List, Optional, Protocol, Sequence, TypeVar

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.05
_GRACE_SECONDS = 2.0


class UnitResult(Protocol):
    complete: bool


JobT = TypeVar("JobT")
ResultT = TypeVar("ResultT", bound=UnitResult)


@dataclass
class PoolOutcome(Generic[ResultT]):
    results: List[ResultT]
    incomplete: bool


class _WorkerExit:
    """Marker a worker puts on the result queue right before it exits."""

    __slots__ = ()


def deadline_from(timeout: Optional[float], deadline: Optional[float]) -> Optional[float]:
    """Combine a relative timeout and an absolute wall-clock deadline."""

    candidates = [value for value in (deadline, None if timeout is None else time.time() + timeout) if value is not None]
    return min(candidates) if candidates else None


def expired(deadline: Optional[float], cancel_event: Optional[threading.Event] = None) -> bool:
    if cancel_event is not None and cancel_event.is_set():
        return True
    return deadline is not None and time.time() >= deadline


def _pool_worker(
    fn: Callable[[Any, JobT], ResultT],
    shared: Any,
    task_queue: mp.Queue,
    result_queue: mp.Queue,
    stop_event,
    deadline: Optional[float],
) -> None:
    try:
        while True:
            job = task_queue.get()
            if job is None or stop_event.is_set() or expired(deadline):
                break
            result_queue.put(fn(shared, job))
    except Exception as exc:  # pragma: no cover - worker errors bubble to parent
        result_queue.put(exc)
    finally:
        result_queue.put(_WorkerExit())


def _drain(result_queue: mp.Queue, results: list) -> None:
    while True:
        try:
            item = result_queue.get_nowait()
        except queue_module.Empty:
            return
        if isinstance(item, _WorkerExit):
            continue
        if isinstance(item, Exception):
            raise item
        results.append(item)


def run_jobs(
    fn: Callable[[Any, JobT], ResultT],
    jobs: Sequence[JobT],
    *,
    shared: Any = None,
    workers: int = 1,
    deadline: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    label: str = "job",
    grace: float = _GRACE_SECONDS,
) -> PoolOutcome[ResultT]:
    """Run ``fn(shared, job)`` for every job with at most ``workers`` processes.

    ``fn`` must be a module-level function so it can be pickled for spawn,
    and it should honour ``deadline`` itself by returning a result with
    ``complete=False``. Results come back in completion order; callers impose
    their own order.
    """

    workers = max(1, workers)
    results: List[ResultT] = []
    incomplete = False
    run_start = time.perf_counter()

    if workers == 1 or len(jobs) <= 1:
        for position, job in enumerate(jobs):
            if expired(deadline, cancel_event):
                incomplete = True
                logger.warning("Stopping %s run after %s/%s units: deadline reached", label, position, len(jobs))
                break
            outcome = fn(shared, job)
            results.append(outcome)
            if not outcome.complete:
                incomplete = True
                break
        logger.info(
            "Finished %s/%s %s units sequentially in %.2fs",
            len(results),
            len(jobs),
            label,
            time.perf_counter() - run_start,
        )
        return PoolOutcome(results, incomplete or len(results) < len(jobs))

    ctx = mp.get_context("spawn")
    task_queue: mp.Queue = ctx.Queue()
    result_queue: mp.Queue = ctx.Queue()
    stop_event = ctx.Event()
    process_count = min(workers, len(jobs))
    for job in jobs:
        task_queue.put(job)
    for _ in range(process_count):
        task_queue.put(None)

    processes = [
        ctx.Process(
            target=_pool_worker,
            args=(fn, shared, task_queue, result_queue, stop_event, deadline),
            daemon=True,
        )
        for _ in range(process_count)
    ]
    exited = 0
    flush_until: Optional[float] = None
    try:
        for proc in processes:
            proc.start()
        logger.debug("Started %s %s workers for %s units", process_count, label, len(jobs))

        while exited < process_count:
            if flush_until is None and expired(deadline, cancel_event):
                incomplete = True
                stop_event.set()
                cancelled = cancel_event is not None and cancel_event.is_set()
                flush_until = time.time() + (0.0 if cancelled else grace)
                logger.warning(
                    "%s %s run with %s/%s units finished; collecting in-flight results",
                    "Cancelled" if cancelled else "Deadline reached in",
                    label,
                    len(results),
                    len(jobs),
                )
            if flush_until is not None and time.time() >= flush_until:
                _drain(result_queue, results)
                break
            try:
                item = result_queue.get(timeout=_POLL_SECONDS)
            except queue_module.Empty:
                if not any(proc.is_alive() for proc in processes):
                    _drain(result_queue, results)
                    break
                continue
            if isinstance(item, _WorkerExit):
                exited += 1
                continue
            if isinstance(item, Exception):
                raise item
            results.append(item)
    finally:
        stop_event.set()
        for proc in processes:
            if proc.pid is None:
                continue
            if proc.is_alive():
                proc.terminate()
            proc.join()

    if any(not outcome.complete for outcome in results) or len(results) < len(jobs):
        incomplete = True
    logger.info(
        "Finished %s/%s %s units across %s workers in %.2fs",
        len(results),
        len(jobs),
        label,
        process_count,
        time.perf_counter() - run_start,
    )
    return PoolOutcome(results, incomplete)
