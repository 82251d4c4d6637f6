"""Run results."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .exceptions import ExecutionError
from .providers.base import OperationKind
from .resource import NodeState


@dataclass
class NodeResult:
    """Terminal outcome of one resource in a run.

    Timestamps come from time.perf_counter() and are only comparable within
    one process.
    """

    node_id: str
    type: str
    name: str
    state: NodeState
    operation: Optional[OperationKind] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None
    retries: int = 0
    retry_delays: List[float] = field(default_factory=list)
    dispatched_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        if self.dispatched_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.dispatched_at


@dataclass
class ExecutionReport:
    """Aggregate result of a run: one NodeResult per resource.

    Attributes:
        run_id: ID of the run
        results: Results keyed by URN, in declaration order
        cancelled: True if the run was cancelled before every node dispatched
        duration: Wall-clock duration of the run in seconds
    """

    run_id: str
    results: Dict[str, NodeResult] = field(default_factory=dict)
    cancelled: bool = False
    duration: float = 0.0

    def __getitem__(self, node_id: str) -> NodeResult:
        return self.results[node_id]

    def __iter__(self):
        return iter(self.results.values())

    def __len__(self) -> int:
        return len(self.results)

    def _in_state(self, state: NodeState) -> List[NodeResult]:
        return [r for r in self.results.values() if r.state is state]

    @property
    def done(self) -> List[NodeResult]:
        return self._in_state(NodeState.DONE)

    @property
    def failed(self) -> List[NodeResult]:
        return self._in_state(NodeState.FAILED)

    @property
    def skipped(self) -> List[NodeResult]:
        return self._in_state(NodeState.SKIPPED)

    @property
    def succeeded(self) -> bool:
        """True iff no resource failed."""
        return not self.failed

    @property
    def errors(self) -> Dict[str, BaseException]:
        """Errors of failed resources keyed by URN."""
        return {r.node_id: r.error for r in self.failed if r.error is not None}

    def operation_counts(self) -> Dict[OperationKind, int]:
        """Number of Done resources per applied operation."""
        return dict(Counter(r.operation for r in self.done if r.operation is not None))

    def summary(self) -> str:
        """One-line human readable summary.

        Example:
            '3 resources: 2 create, 1 noop; 0 failed, 0 skipped'
        """
        counts = self.operation_counts()
        ops = ", ".join(
            f"{counts[op]} {op.value}" for op in OperationKind if counts.get(op)
        )
        return (
            f"{len(self.results)} resources: {ops or 'no changes'}; "
            f"{len(self.failed)} failed, {len(self.skipped)} skipped"
        )

    def raise_for_failures(self) -> None:
        """Raise ExecutionError if any resource failed."""
        if not self.succeeded:
            raise ExecutionError(self)

    def merge(self, other: "ExecutionReport") -> "ExecutionReport":
        """Combine with the report of a follow-up run (e.g. prune)."""
        results = dict(self.results)
        results.update(other.results)
        return ExecutionReport(
            run_id=self.run_id,
            results=results,
            cancelled=self.cancelled or other.cancelled,
            duration=self.duration + other.duration,
        )
