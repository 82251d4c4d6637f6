"""ResourceGraph: dependency-ordered convergence of declared resources.

A desired-state engine for infrastructure-as-code programs that enables:
- Declaring resources whose inputs reference other resources' future outputs
- Automatic dependency inference and cycle detection
- Parallel, dependency-ordered create/update/replace/delete through providers
- Retries with exponential backoff for transient provider errors
- Best-effort convergence: failures only skip their dependents

Example:
    >>> import json
    >>> from resourcegraph import InMemoryProvider, InMemoryStateStore, ResourceSpec, run
    >>>
    >>> bucket = ResourceSpec("storage:Bucket", "site", {"force_destroy": True})
    >>> policy = ResourceSpec(
    ...     "storage:BucketPolicy",
    ...     "site-policy",
    ...     {"bucket": bucket.output("id"), "policy": bucket.output("id").apply(json.dumps)},
    ...     parent_id=bucket.urn,
    ... )
    >>> report = run([bucket, policy], InMemoryProvider(), state_store=InMemoryStateStore())
    >>> report.summary()
    '2 resources: 2 create; 0 failed, 0 skipped'
"""

from .callbacks import CallbackContext, DeploymentCallback
from .config import EngineConfig
from .deployment import Deployment, Plan, PlanStep, destroy, preview, run
from .exceptions import (
    AlreadyResolved,
    AlreadyResolvedError,
    CyclicDependencyError,
    DependencyFailedError,
    DuplicateResourceError,
    ExecutionError,
    GraphError,
    InputValidationError,
    OutputTimeoutError,
    ProviderError,
    ResourceGraphError,
    RunCancelledError,
    UnknownReferenceError,
)
from .graph_builder import Graph, GraphBuilder, SimpleGraphBuilder, build_graph
from .output import UNKNOWN, Output, OutputRef
from .providers import InMemoryProvider, OperationKind, Provider, ProviderRegistry
from .report import ExecutionReport, NodeResult
from .resource import Node, NodeState, ResourceSpec, make_urn
from .retry import RetryPolicy
from .scheduler import CancellationToken, Scheduler, run_graph
from .state import InMemoryStateStore, JsonFileStateStore, ResourceState, StateStore

__version__ = "0.1.0"

__all__ = [
    # Declarations
    "ResourceSpec",
    "Output",
    "OutputRef",
    "UNKNOWN",
    "make_urn",
    # Graph
    "Graph",
    "GraphBuilder",
    "SimpleGraphBuilder",
    "Node",
    "NodeState",
    "build_graph",
    # Execution
    "Scheduler",
    "CancellationToken",
    "RetryPolicy",
    "EngineConfig",
    "ExecutionReport",
    "NodeResult",
    "run_graph",
    # Deployment
    "Deployment",
    "Plan",
    "PlanStep",
    "run",
    "preview",
    "destroy",
    # Providers & state
    "Provider",
    "ProviderRegistry",
    "InMemoryProvider",
    "OperationKind",
    "StateStore",
    "InMemoryStateStore",
    "JsonFileStateStore",
    "ResourceState",
    # Callbacks
    "DeploymentCallback",
    "CallbackContext",
    # Exceptions
    "ResourceGraphError",
    "GraphError",
    "CyclicDependencyError",
    "UnknownReferenceError",
    "DuplicateResourceError",
    "AlreadyResolved",
    "AlreadyResolvedError",
    "OutputTimeoutError",
    "ProviderError",
    "InputValidationError",
    "DependencyFailedError",
    "RunCancelledError",
    "ExecutionError",
    # Note: telemetry and visualization are available but not exported at top level
    # Use: from resourcegraph.telemetry import ProgressCallback
    # Use: from resourcegraph.visualization import visualize
]
