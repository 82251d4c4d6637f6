"""Deployment entry points: run, preview and destroy.

A Deployment bundles the collaborators of a run (provider, state store,
configuration, callbacks) and passes them explicitly to the graph builder
and scheduler; there is no process-wide "current deployment".

Example:
    >>> bucket = ResourceSpec("storage:Bucket", "site", {"website": {"index": "index.html"}})
    >>> policy = ResourceSpec(
    ...     "storage:BucketPolicy",
    ...     "site-policy",
    ...     {"bucket": bucket.output("bucket")},
    ...     parent_id=bucket.urn,
    ... )
    >>> report = run([bucket, policy], provider, state_store=InMemoryStateStore())
    >>> report.succeeded
    True
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .callbacks import CallbackContext, DeploymentCallback
from .config import EngineConfig
from .graph_builder import GraphBuilder, SimpleGraphBuilder
from .output import UNKNOWN, OutputRef, contains_unknown, substitute
from .providers.base import OperationKind, Provider, changed_keys
from .report import ExecutionReport
from .resource import ResourceSpec
from .retry import call_with_retry
from .scheduler import CancellationToken, Scheduler
from .state import ResourceState, StateStore

logger = logging.getLogger(__name__)


@dataclass
class PlanStep:
    """Planned operation for one resource.

    Attributes:
        node_id: URN of the resource
        operation: Operation a run would apply (None if planning failed)
        changed_keys: Input keys that differ from the recorded state
        check_failures: Messages from the provider's input validation
        has_unknowns: True if some inputs depend on values not known yet
        error: Exception raised while planning this resource
    """

    node_id: str
    operation: Optional[OperationKind] = None
    changed_keys: List[str] = field(default_factory=list)
    check_failures: List[str] = field(default_factory=list)
    has_unknowns: bool = False
    error: Optional[BaseException] = None


@dataclass
class Plan:
    """Result of preview(): one step per resource, in execution order."""

    steps: Dict[str, PlanStep] = field(default_factory=dict)

    def __getitem__(self, node_id: str) -> PlanStep:
        return self.steps[node_id]

    def __iter__(self):
        return iter(self.steps.values())

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def has_changes(self) -> bool:
        return any(s.operation not in (None, OperationKind.NOOP) for s in self.steps.values())

    @property
    def errors(self) -> Dict[str, BaseException]:
        return {s.node_id: s.error for s in self.steps.values() if s.error is not None}

    def operation_counts(self) -> Dict[OperationKind, int]:
        counts: Dict[OperationKind, int] = {}
        for step in self.steps.values():
            if step.operation is not None:
                counts[step.operation] = counts.get(step.operation, 0) + 1
        return counts


class Deployment:
    """Converges declared resources through a provider.

    Attributes:
        provider: Provider adapter
        state_store: Last-known state (None: every resource is new each run)
        config: Run configuration
        callbacks: Lifecycle callbacks
        graph_builder: Builder used to validate declarations
    """

    def __init__(
        self,
        provider: Provider,
        state_store: Optional[StateStore] = None,
        config: Optional[EngineConfig] = None,
        callbacks: Optional[List[DeploymentCallback]] = None,
        graph_builder: Optional[GraphBuilder] = None,
    ):
        self.provider = provider
        self.state_store = state_store
        self.config = config or EngineConfig()
        self.callbacks = callbacks or []
        self.graph_builder = graph_builder or SimpleGraphBuilder()

    def _scheduler(self) -> Scheduler:
        return Scheduler(self.config, callbacks=self.callbacks)

    def run(
        self,
        specs: Sequence[ResourceSpec],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionReport:
        """Converge the declared resources.

        Graph construction errors (cycles, unknown references, duplicates)
        are raised before anything is dispatched. With ``prune`` enabled,
        recorded resources that are no longer declared are deleted after the
        declared ones converge.

        Returns:
            ExecutionReport covering the declared (and pruned) resources
        """
        graph = self.graph_builder.build_graph(specs)
        ctx = CallbackContext()
        scheduler = self._scheduler()
        report = scheduler.run(
            graph, self.provider, state_store=self.state_store, cancel_token=cancel_token, ctx=ctx
        )

        if not self.config.effective_prune or self.state_store is None:
            return report
        if report.cancelled:
            logger.warning("Run was cancelled; skipping prune")
            return report

        orphans = [r for r in self.state_store.list() if r.urn not in graph]
        if not orphans:
            return report
        logger.info(f"Pruning {len(orphans)} resources that are no longer declared")
        destroy_graph = self.graph_builder.build_destroy_graph(orphans)
        prune_report = scheduler.run(
            destroy_graph,
            self.provider,
            state_store=self.state_store,
            cancel_token=cancel_token,
            ctx=ctx,
            run_id=f"{report.run_id}-prune",
        )
        return report.merge(prune_report)

    def preview(self, specs: Sequence[ResourceSpec]) -> Plan:
        """Compute the operations a run would apply, without applying them.

        References to outputs that a run would (re)compute resolve to
        UNKNOWN; references to unchanged resources resolve to their recorded
        outputs. Planning errors are recorded per step, not raised.
        """
        graph = self.graph_builder.build_graph(specs)
        policy = self.config.effective_retry
        plan = Plan()
        known: Dict[str, Optional[Dict[str, Any]]] = {}

        def resolve(ref: OutputRef) -> Any:
            outputs = known.get(ref.node_id)
            if outputs is None:
                return UNKNOWN
            try:
                return ref.extract(outputs)
            except KeyError:
                return UNKNOWN

        for node in graph.execution_order:
            step = PlanStep(node_id=node.id)
            plan.steps[node.id] = step
            known[node.id] = None
            try:
                desired = node.spec.with_inputs(substitute(node.spec.inputs, resolve))
                step.has_unknowns = contains_unknown(desired.inputs)
                step.check_failures = list(
                    call_with_retry(lambda: self.provider.check(desired), policy, f"check {node.id}")
                )
                last_known = self.state_store.load(node.id) if self.state_store else None
                step.operation = call_with_retry(
                    lambda: self.provider.diff(desired, last_known), policy, f"diff {node.id}"
                )
                if last_known is not None:
                    step.changed_keys = changed_keys(desired.inputs, last_known.inputs)
                    if step.operation is OperationKind.NOOP:
                        known[node.id] = dict(last_known.outputs)
            except Exception as e:
                step.error = e

        if self.config.effective_prune and self.state_store is not None:
            for record in self.state_store.list():
                if record.urn not in graph:
                    plan.steps[record.urn] = PlanStep(
                        node_id=record.urn, operation=OperationKind.DELETE
                    )
        return plan

    def destroy(self, cancel_token: Optional[CancellationToken] = None) -> ExecutionReport:
        """Delete every recorded resource, dependents before dependencies."""
        if self.state_store is None:
            raise ValueError("destroy() requires a state store")
        records: List[ResourceState] = self.state_store.list()
        graph = self.graph_builder.build_destroy_graph(records)
        return self._scheduler().run(
            graph, self.provider, state_store=self.state_store, cancel_token=cancel_token
        )


def run(
    specs: Sequence[ResourceSpec],
    provider: Provider,
    options: Optional[EngineConfig] = None,
    state_store: Optional[StateStore] = None,
    callbacks: Optional[List[DeploymentCallback]] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> ExecutionReport:
    """Converge declared resources; see Deployment.run()."""
    deployment = Deployment(provider, state_store=state_store, config=options, callbacks=callbacks)
    return deployment.run(specs, cancel_token=cancel_token)


def preview(
    specs: Sequence[ResourceSpec],
    provider: Provider,
    state_store: Optional[StateStore] = None,
    options: Optional[EngineConfig] = None,
) -> Plan:
    """Plan a run without applying it; see Deployment.preview()."""
    return Deployment(provider, state_store=state_store, config=options).preview(specs)


def destroy(
    provider: Provider,
    state_store: StateStore,
    options: Optional[EngineConfig] = None,
    callbacks: Optional[List[DeploymentCallback]] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> ExecutionReport:
    """Delete every recorded resource; see Deployment.destroy()."""
    deployment = Deployment(provider, state_store=state_store, config=options, callbacks=callbacks)
    return deployment.destroy(cancel_token=cancel_token)
