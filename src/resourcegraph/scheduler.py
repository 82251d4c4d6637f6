"""Dependency-ordered execution of a resource graph.

The Scheduler walks a Graph with bounded concurrency:

1. Nodes without dependencies are Ready; Ready nodes are dispatched to the
   executor in declaration order, at most ``concurrency_limit`` at a time.
2. A worker resolves the node's inputs (awaiting referenced Outputs), asks
   the provider for the operation to apply, applies it with retries, and
   records the new state.
3. On success the node is Done, its Output is resolved and dependents whose
   last dependency finished become Ready. On failure the node is Failed and
   every transitive dependent is Skipped without being dispatched.

The run never stops at the first error: every reachable node is processed
and an ExecutionReport is returned.

Key principle: the scheduler doesn't know about executor TYPES, it only uses
the executor INTERFACE (submit() and result()). Only the coordinating thread
touches the ready queue and dependency counters.
"""

import heapq
import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from .callbacks import CallbackContext, DeploymentCallback
from .config import EngineConfig
from .exceptions import (
    DependencyFailedError,
    InputValidationError,
    ProviderError,
    RunCancelledError,
)
from .executors import create_executor
from .graph_builder import Graph
from .output import substitute
from .providers.base import OperationKind, Provider
from .report import ExecutionReport, NodeResult
from .resource import Node, NodeState, ResourceSpec
from .retry import RetryPolicy, call_with_retry
from .state import ResourceState, StateStore, to_plain

logger = logging.getLogger(__name__)


class CancellationToken:
    """Signal used to stop a run from another thread.

    Cancelling stops new dispatches; provider calls already in flight run to
    completion and resources already converged are kept.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class _NodeOutcome:
    """What a worker reports back to the coordinating thread."""

    operation: Optional[OperationKind] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None
    retry_delays: List[float] = field(default_factory=list)
    finished_at: float = 0.0


class Scheduler:
    """Converges a resource graph through a provider.

    Attributes:
        config: Run configuration (unset values fall back to defaults)
        callbacks: Lifecycle callbacks notified during runs
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        callbacks: Optional[List[DeploymentCallback]] = None,
    ):
        self.config = config or EngineConfig()
        self.callbacks = callbacks or []

    def notify(self, hook: str, *args: Any) -> None:
        """Call one hook on every callback.

        A hook that raises is logged and does not affect the run or the
        remaining callbacks.
        """
        for callback in self.callbacks:
            try:
                getattr(callback, hook)(*args)
            except Exception:
                logger.exception(f"{type(callback).__name__}.{hook} raised")

    def run(
        self,
        graph: Graph,
        provider: Provider,
        concurrency_limit: Optional[int] = None,
        state_store: Optional[StateStore] = None,
        cancel_token: Optional[CancellationToken] = None,
        ctx: Optional[CallbackContext] = None,
        run_id: Optional[str] = None,
    ) -> ExecutionReport:
        """Execute every node of the graph in dependency order.

        Args:
            graph: Validated graph; every node must be Pending
            provider: Provider adapter performing the operations
            concurrency_limit: Maximum operations in flight (overrides config)
            state_store: Last-known state, loaded before diffing and saved after
            cancel_token: Optional signal to stop dispatching
            ctx: Callback context shared with an enclosing deployment
            run_id: ID reported to callbacks (generated if omitted)

        Returns:
            ExecutionReport with one terminal NodeResult per node
        """
        stale = [n.id for n in graph if n.state is not NodeState.PENDING]
        if stale:
            raise ValueError(f"Graph has already been run (non-pending nodes: {', '.join(stale)})")

        limit = concurrency_limit if concurrency_limit is not None else self.config.effective_concurrency_limit
        info = create_executor(self.config.effective_executor, limit)
        ctx = ctx if ctx is not None else CallbackContext()
        run_id = run_id or f"run-{uuid.uuid4().hex[:8]}"
        run = _Run(self, graph, provider, state_store, cancel_token, ctx, info.max_workers)

        ctx.set_run_metadata(
            run_id,
            {"total_nodes": len(graph), "node_ids": [n.id for n in graph.execution_order]},
        )
        ctx.push_run(run_id)
        start_time = time.perf_counter()
        logger.info(f"Starting {run_id}: {len(graph)} resources, concurrency {info.max_workers}")
        self.notify("on_run_start", run_id, graph, ctx)

        try:
            run.execute(info.executor)
        finally:
            if info.owned:
                info.executor.shutdown(wait=True)
            ctx.pop_run()

        report = ExecutionReport(
            run_id=run_id,
            results={n.id: run.results[n.id] for n in sorted(graph, key=lambda n: n.index)},
            cancelled=run.cancelled,
            duration=time.perf_counter() - start_time,
        )
        logger.info(f"Finished {run_id}: {report.summary()}")
        self.notify("on_run_end", run_id, report, ctx)
        return report

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def execute_node(
        self,
        node: Node,
        graph: Graph,
        provider: Provider,
        state_store: Optional[StateStore],
        ctx: CallbackContext,
    ) -> _NodeOutcome:
        """Converge one node. Runs on a worker thread and never raises."""
        outcome = _NodeOutcome()
        policy = self.config.effective_retry

        def on_retry(attempt: int, delay: float, error: ProviderError) -> None:
            self.notify("on_retry", node.id, attempt, delay, error, ctx)

        def call(fn: Callable[[], Any], description: str) -> Any:
            return call_with_retry(
                fn,
                policy,
                description=f"{description} {node.id}",
                on_retry=on_retry,
                delays=outcome.retry_delays,
            )

        try:
            if node.desired_absent:
                outcome.operation = OperationKind.DELETE
                self._delete_recorded(node, provider, state_store, call)
            else:
                outcome.operation, outcome.outputs = self._converge(
                    node, graph, provider, state_store, call
                )
        except Exception as e:
            outcome.error = e
        outcome.finished_at = time.perf_counter()
        return outcome

    def resolve_inputs(self, node: Node, graph: Graph) -> Dict[str, Any]:
        """Replace every OutputRef in the node's inputs with its value.

        Blocks on the referenced nodes' Outputs (bounded by input_timeout).
        """
        timeout = self.config.input_timeout

        def resolve(ref):
            outputs = graph[ref.node_id].result.result(timeout=timeout)
            return ref.extract(outputs)

        return substitute(node.spec.inputs, resolve)

    def _converge(
        self,
        node: Node,
        graph: Graph,
        provider: Provider,
        state_store: Optional[StateStore],
        call: Callable[[Callable[[], Any], str], Any],
    ) -> Tuple[OperationKind, Dict[str, Any]]:
        desired = node.spec.with_inputs(self.resolve_inputs(node, graph))

        failures = call(lambda: provider.check(desired), "check")
        if failures:
            raise InputValidationError(node.id, failures)

        last_known = state_store.load(node.id) if state_store is not None else None
        if last_known is not None and self.config.effective_refresh:
            live = call(lambda: provider.read(node.type, last_known.id), "read")
            if live is None:
                logger.info(f"{node.id} no longer exists; it will be recreated")
                last_known = None
            else:
                last_known = replace(last_known, outputs=live)

        operation = call(lambda: provider.diff(desired, last_known), "diff")
        logger.debug(f"{node.id}: {operation.value}")

        if operation is OperationKind.CREATE:
            outputs = call(lambda: provider.create(desired), "create")
        elif operation is OperationKind.UPDATE:
            recorded = self._require_state(node, last_known, operation)
            outputs = call(lambda: provider.update(recorded.id, desired, recorded), "update")
        elif operation is OperationKind.REPLACE:
            recorded = self._require_state(node, last_known, operation)
            call(lambda: provider.delete(node.type, recorded.id), "delete")
            outputs = call(lambda: provider.create(desired), "create")
        elif operation is OperationKind.DELETE:
            recorded = self._require_state(node, last_known, operation)
            call(lambda: provider.delete(node.type, recorded.id), "delete")
            if state_store is not None:
                state_store.delete(node.id)
            return operation, {}
        else:
            recorded = self._require_state(node, last_known, operation)
            outputs = dict(recorded.outputs)

        outputs = dict(outputs or {})
        if state_store is not None:
            state_store.save(node.id, self._record(node, desired, outputs))
        return operation, outputs

    def _delete_recorded(
        self,
        node: Node,
        provider: Provider,
        state_store: Optional[StateStore],
        call: Callable[[Callable[[], Any], str], Any],
    ) -> None:
        recorded = node.recorded_state
        if recorded is None and state_store is not None:
            recorded = state_store.load(node.id)
        if recorded is not None:
            call(lambda: provider.delete(node.type, recorded.id), "delete")
        if state_store is not None:
            state_store.delete(node.id)

    @staticmethod
    def _require_state(
        node: Node, last_known: Optional[ResourceState], operation: OperationKind
    ) -> ResourceState:
        if last_known is None:
            raise ProviderError(
                f"Provider chose '{operation.value}' for {node.id} but no state is recorded",
                retryable=False,
            )
        return last_known

    @staticmethod
    def _record(node: Node, desired: ResourceSpec, outputs: Dict[str, Any]) -> ResourceState:
        return ResourceState(
            urn=node.id,
            type=node.type,
            name=node.name,
            id=str(outputs.get("id", node.id)),
            inputs=to_plain(desired.inputs),
            outputs=to_plain(outputs),
            parent_id=node.spec.parent_id,
            dependencies=sorted(node.dependencies),
        )


class _Run:
    """Bookkeeping for one Scheduler.run() call (coordinating thread only)."""

    def __init__(
        self,
        scheduler: Scheduler,
        graph: Graph,
        provider: Provider,
        state_store: Optional[StateStore],
        cancel_token: Optional[CancellationToken],
        ctx: CallbackContext,
        limit: int,
    ):
        self.scheduler = scheduler
        self.graph = graph
        self.provider = provider
        self.state_store = state_store
        self.cancel_token = cancel_token
        self.ctx = ctx
        self.limit = limit
        self.results: Dict[str, NodeResult] = {
            n.id: NodeResult(node_id=n.id, type=n.type, name=n.name, state=NodeState.PENDING)
            for n in graph
        }
        self.remaining = {n.id: len(n.dependencies) for n in graph}
        self.ready: List[Tuple[int, str]] = []
        self.in_flight: Dict[Future, Node] = {}

    @property
    def cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    def execute(self, executor) -> None:
        for node in self.graph.roots:
            self._mark_ready(node)

        while self.ready or self.in_flight:
            if self.cancelled and self.ready:
                logger.warning(
                    f"Run cancelled; {len(self.ready)} ready resources will not be dispatched"
                )
                self.ready.clear()

            while self.ready and len(self.in_flight) < self.limit:
                _, node_id = heapq.heappop(self.ready)
                self._dispatch(executor, self.graph[node_id])

            if not self.in_flight:
                continue

            done, _ = wait(list(self.in_flight), return_when=FIRST_COMPLETED)
            for future in sorted(done, key=lambda f: self.in_flight[f].index):
                node = self.in_flight.pop(future)
                self._complete(node, future.result())

        self._skip_leftovers()

    def _mark_ready(self, node: Node) -> None:
        if node.transition(NodeState.PENDING, NodeState.READY):
            self.results[node.id].state = NodeState.READY
            heapq.heappush(self.ready, (node.index, node.id))

    def _dispatch(self, executor, node: Node) -> None:
        if not node.transition(NodeState.READY, NodeState.RUNNING):
            return
        result = self.results[node.id]
        result.state = NodeState.RUNNING
        result.dispatched_at = time.perf_counter()
        logger.info(f"Dispatching {node.id}")
        self.scheduler.notify("on_node_start", node.id, self.ctx)

        future = executor.submit(
            self.scheduler.execute_node,
            node,
            self.graph,
            self.provider,
            self.state_store,
            self.ctx,
        )
        self.in_flight[future] = node

    def _complete(self, node: Node, outcome: _NodeOutcome) -> None:
        result = self.results[node.id]
        result.finished_at = outcome.finished_at
        result.retry_delays = list(outcome.retry_delays)
        result.retries = len(outcome.retry_delays)
        result.operation = outcome.operation

        if outcome.error is not None:
            self._fail(node, outcome.error)
            return

        node.transition(NodeState.RUNNING, NodeState.DONE)
        result.state = NodeState.DONE
        result.outputs = dict(outcome.outputs)
        node.result.resolve(dict(outcome.outputs))
        logger.info(
            f"{node.id} {outcome.operation.value if outcome.operation else 'done'} "
            f"in {result.duration or 0.0:.2f}s"
        )
        self.scheduler.notify(
            "on_node_end",
            node.id,
            outcome.operation,
            result.outputs,
            result.duration or 0.0,
            self.ctx,
        )

        for dependent_id in sorted(node.dependents, key=lambda d: self.graph[d].index):
            self.remaining[dependent_id] -= 1
            if self.remaining[dependent_id] == 0:
                self._mark_ready(self.graph[dependent_id])

    def _fail(self, node: Node, error: BaseException) -> None:
        node.transition(NodeState.RUNNING, NodeState.FAILED)
        result = self.results[node.id]
        result.state = NodeState.FAILED
        result.error = error
        node.result.fail(error)
        logger.error(f"{node.id} failed: {error}")
        self.scheduler.notify("on_error", node.id, error, self.ctx)

        for dependent in self.graph.transitive_dependents(node.id):
            self._skip(dependent, DependencyFailedError(dependent.id, node.id))

    def _skip(self, node: Node, reason: BaseException) -> None:
        if not (
            node.transition(NodeState.PENDING, NodeState.SKIPPED)
            or node.transition(NodeState.READY, NodeState.SKIPPED)
        ):
            return
        result = self.results[node.id]
        result.state = NodeState.SKIPPED
        result.error = reason
        node.result.fail(reason)
        logger.debug(f"Skipping {node.id}: {reason}")
        self.scheduler.notify("on_node_skipped", node.id, reason, self.ctx)

    def _skip_leftovers(self) -> None:
        for node in sorted(self.graph, key=lambda n: n.index):
            if not node.state.is_terminal:
                self._skip(node, RunCancelledError(f"Run cancelled before '{node.id}' was dispatched"))


def run_graph(
    graph: Graph,
    provider: Provider,
    concurrency_limit: Optional[int] = None,
    **kwargs: Any,
) -> ExecutionReport:
    """Run a graph with a default-configured Scheduler.

    Example:
        >>> report = run_graph(build_graph(specs), InMemoryProvider(), concurrency_limit=4)
    """
    retry: Optional[RetryPolicy] = kwargs.pop("retry", None)
    callbacks = kwargs.pop("callbacks", None)
    scheduler = Scheduler(EngineConfig(retry=retry), callbacks=callbacks)
    return scheduler.run(graph, provider, concurrency_limit=concurrency_limit, **kwargs)
