"""Callback system for deployment lifecycle events."""

import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .graph_builder import Graph
    from .providers import OperationKind
    from .report import ExecutionReport


class CallbackContext:
    """Shared state across all callbacks in a single deployment.

    A deployment may consist of several scheduler runs (e.g. converge then
    prune); the context tracks which run is currently executing.
    """

    def __init__(self):
        """Initialize callback context."""
        self.data: Dict[str, Any] = {}
        self._run_stack: List[str] = []
        self._lock = threading.RLock()

    def set(self, key: str, value: Any) -> None:
        """Store a value for other callbacks to access.

        Args:
            key: Key to store value under
            value: Value to store
        """
        with self._lock:
            self.data[key] = value

    def get(self, key: str, default=None) -> Any:
        """Retrieve a value set by another callback.

        Args:
            key: Key to retrieve
            default: Default value if key not found

        Returns:
            Stored value or default
        """
        with self._lock:
            return self.data.get(key, default)

    def push_run(self, run_id: str) -> None:
        """Track entering a scheduler run (managed by the scheduler)."""
        with self._lock:
            self._run_stack.append(run_id)

    def pop_run(self) -> str:
        """Track leaving a scheduler run (managed by the scheduler)."""
        with self._lock:
            return self._run_stack.pop()

    def get_run_metadata(self, run_id: str) -> Dict:
        """Get metadata about a run (e.g., total_nodes)."""
        return self.get(f"_run_metadata:{run_id}", {})

    def set_run_metadata(self, run_id: str, metadata: Dict) -> None:
        """Store metadata about a run (managed by the scheduler)."""
        self.set(f"_run_metadata:{run_id}", metadata)

    @property
    def current_run_id(self) -> Optional[str]:
        """Get the currently executing run ID, or None outside a run."""
        with self._lock:
            return self._run_stack[-1] if self._run_stack else None


class DeploymentCallback:
    """Base class for deployment callbacks.

    Override methods to receive lifecycle events during a run.
    All methods are optional - only override what you need.

    on_retry() is called from worker threads; every other hook is called
    from the thread driving the run.
    """

    def on_run_start(self, run_id: str, graph: "Graph", ctx: CallbackContext) -> None:
        """Called before the first resource is dispatched.

        Args:
            run_id: ID of the run
            graph: Graph being converged
            ctx: Callback context
        """
        pass

    def on_node_start(self, node_id: str, ctx: CallbackContext) -> None:
        """Called when a resource is dispatched to a worker.

        Args:
            node_id: URN of the resource
            ctx: Callback context
        """
        pass

    def on_node_end(
        self,
        node_id: str,
        operation: "OperationKind",
        outputs: Dict[str, Any],
        duration: float,
        ctx: CallbackContext,
    ) -> None:
        """Called after a resource converged successfully.

        Args:
            node_id: URN of the resource
            operation: Operation that was applied
            outputs: Outputs reported for the resource
            duration: Execution duration in seconds
            ctx: Callback context
        """
        pass

    def on_retry(
        self,
        node_id: str,
        attempt: int,
        delay: float,
        error: Exception,
        ctx: CallbackContext,
    ) -> None:
        """Called before a retryable provider error is retried.

        Args:
            node_id: URN of the resource
            attempt: Retry number, starting at 1
            delay: Seconds the engine will wait before retrying
            error: The retryable ProviderError
            ctx: Callback context
        """
        pass

    def on_error(self, node_id: str, error: Exception, ctx: CallbackContext) -> None:
        """Called when a resource fails.

        Args:
            node_id: URN of the resource
            error: Exception that was raised
            ctx: Callback context
        """
        pass

    def on_node_skipped(self, node_id: str, reason: Exception, ctx: CallbackContext) -> None:
        """Called when a resource is skipped (failed dependency or cancellation).

        Args:
            node_id: URN of the resource
            reason: DependencyFailedError or RunCancelledError
            ctx: Callback context
        """
        pass

    def on_run_end(
        self, run_id: str, report: "ExecutionReport", ctx: CallbackContext
    ) -> None:
        """Called when every resource reached a terminal state.

        Args:
            run_id: ID of the run
            report: Final report of the run
            ctx: Callback context
        """
        pass
