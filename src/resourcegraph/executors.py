"""Executors that run provider operations for the scheduler.

The scheduler only relies on the concurrent.futures surface:

    future = executor.submit(scheduler.execute_node, node, ...)
    outcome = future.result()

so any of these can drive a run:
- "threaded": a ThreadPoolExecutor sized to the concurrency limit
- "sequential": SequentialExecutor, one operation at a time on the caller
- an executor instance supplied by the caller (left running afterwards)
"""

import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Protocol, Union

# Concurrency used when none is configured
DEFAULT_WORKERS = {
    "sequential": 1,
    "threaded": min(32, (os.cpu_count() or 4) * 2),
}


class Executor(Protocol):
    """Anything with a concurrent.futures-style submit() and shutdown()."""

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        ...

    def shutdown(self, wait: bool = True) -> None:
        ...


class SequentialExecutor:
    """Runs each submitted operation in-line on the submitting thread.

    submit() returns a Future that is already settled, so resources converge
    strictly one after another in the order the scheduler dispatches them.
    Handy when stepping through a deployment in a debugger.
    """

    def submit(self, fn: Callable, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait: bool = True) -> None:
        pass


@dataclass
class ExecutorInfo:
    """Executor chosen for a run.

    Attributes:
        executor: Object implementing the Executor protocol
        owned: True if create_executor() built it, so the run must shut it down
        max_workers: Operations the run may keep in flight
    """

    executor: Executor
    owned: bool
    max_workers: int


_EXECUTOR_FACTORIES: Dict[str, Callable[[int], Any]] = {
    "sequential": lambda max_workers: SequentialExecutor(),
    "threaded": lambda max_workers: ThreadPoolExecutor(
        max_workers=max_workers, thread_name_prefix="resourcegraph"
    ),
}


def create_executor(spec: Union[str, Executor], max_workers: int) -> ExecutorInfo:
    """Create an executor from a name or an existing instance.

    Args:
        spec: "sequential", "threaded" or an executor instance
        max_workers: Concurrency limit of the run

    Returns:
        ExecutorInfo; "sequential" always reports max_workers == 1

    Raises:
        ValueError: If spec names no known executor or max_workers < 1
    """
    if max_workers < 1:
        raise ValueError(f"concurrency limit must be >= 1, got {max_workers}")

    if not isinstance(spec, str):
        return ExecutorInfo(executor=spec, owned=False, max_workers=max_workers)

    if spec not in _EXECUTOR_FACTORIES:
        raise ValueError(
            f"Invalid executor spec: {spec!r}. Must be one of {sorted(_EXECUTOR_FACTORIES)}"
        )
    if spec == "sequential":
        max_workers = 1
    return ExecutorInfo(
        executor=_EXECUTOR_FACTORIES[spec](max_workers), owned=True, max_workers=max_workers
    )
