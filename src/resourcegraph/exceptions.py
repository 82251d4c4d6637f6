"""Custom exceptions for the ResourceGraph engine."""

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from .report import ExecutionReport


class ResourceGraphError(Exception):
    """Base exception for all ResourceGraph errors."""
    pass


class GraphError(ResourceGraphError):
    """Raised when declared resources cannot form a valid graph."""
    pass


class CyclicDependencyError(GraphError):
    """Raised when a cycle is detected in the resource DAG.

    Attributes:
        cycle: Node ids along the cycle, first id repeated at the end
    """

    def __init__(self, cycle: Sequence[str]):
        self.cycle: List[str] = list(cycle)
        super().__init__(f"Cycle detected in resource graph: {' -> '.join(self.cycle)}")


class UnknownReferenceError(GraphError):
    """Raised when a resource refers to an undeclared resource."""

    def __init__(self, node_id: str, reference: str, kind: str = "output reference"):
        self.node_id = node_id
        self.reference = reference
        self.kind = kind
        super().__init__(f"Resource '{node_id}' has {kind} to unknown resource '{reference}'")


class DuplicateResourceError(GraphError):
    """Raised when two declared resources share a URN."""
    pass


class AlreadyResolvedError(ResourceGraphError):
    """Raised when an Output is resolved or failed more than once."""
    pass


# Short name used throughout the docs
AlreadyResolved = AlreadyResolvedError


class OutputTimeoutError(ResourceGraphError):
    """Raised when waiting on an Output exceeds its timeout."""
    pass


class ProviderError(ResourceGraphError):
    """Raised by provider adapters when an operation fails.

    Attributes:
        message: Human readable description from the provider
        retryable: Whether the engine may retry the call
    """

    def __init__(self, message: str, retryable: bool = False):
        self.message = message
        self.retryable = retryable
        super().__init__(message)

    def __repr__(self) -> str:
        return f"ProviderError({self.message!r}, retryable={self.retryable})"


class InputValidationError(ResourceGraphError):
    """Raised when a provider rejects a resource's inputs during check."""

    def __init__(self, node_id: str, failures: Sequence[str]):
        self.node_id = node_id
        self.failures = list(failures)
        super().__init__(
            f"Invalid inputs for '{node_id}': " + "; ".join(self.failures)
        )


class DependencyFailedError(ResourceGraphError):
    """Set on the outputs of a skipped resource whose dependency failed."""

    def __init__(self, node_id: str, failed_dependency: Optional[str] = None):
        self.node_id = node_id
        self.failed_dependency = failed_dependency
        if failed_dependency:
            message = f"'{node_id}' skipped: dependency '{failed_dependency}' failed"
        else:
            message = f"'{node_id}' skipped"
        super().__init__(message)


class RunCancelledError(ResourceGraphError):
    """Set on resources that were never dispatched because the run was cancelled."""
    pass


class ExecutionError(ResourceGraphError):
    """Raised by ExecutionReport.raise_for_failures() when any resource failed."""

    def __init__(self, report: "ExecutionReport"):
        self.report = report
        failed = ", ".join(r.node_id for r in report.failed)
        super().__init__(f"{len(report.failed)} resource(s) failed: {failed}")
