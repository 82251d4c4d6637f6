"""Resource declarations and graph nodes.

A ResourceSpec is the immutable desired state of one resource as declared by
a program. A Node wraps a spec inside a Graph, carrying its dependency edges,
its lifecycle state and the Output cells that downstream resources read.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, Mapping, Optional, Set

from .output import Output, OutputRef

if TYPE_CHECKING:
    from .state import ResourceState

URN_PREFIX = "urn:resourcegraph"


def make_urn(resource_type: str, name: str) -> str:
    """Build the stable id of a resource from its type and name.

    Example:
        >>> make_urn("storage:Bucket", "site")
        'urn:resourcegraph:storage:Bucket::site'
    """
    return f"{URN_PREFIX}:{resource_type}::{name}"


def _urn_of(value: Any) -> str:
    if isinstance(value, ResourceSpec):
        return value.urn
    return str(value)


@dataclass(frozen=True)
class ResourceSpec:
    """Immutable desired-state description of one resource.

    Attributes:
        type: Resource type token (e.g. "aws:s3/bucket:Bucket")
        name: Logical name, unique per type
        inputs: Desired input properties; values may embed OutputRefs
        parent_id: URN of the parent resource, if any
        explicit_dependencies: URNs this resource must wait for
    """

    type: str
    name: str
    inputs: Mapping[str, Any] = field(default_factory=dict)
    parent_id: Optional[str] = None
    explicit_dependencies: FrozenSet[str] = frozenset()

    def __post_init__(self):
        # Accept specs or URNs for convenience and freeze the collections
        if self.parent_id is not None:
            object.__setattr__(self, "parent_id", _urn_of(self.parent_id))
        object.__setattr__(
            self,
            "explicit_dependencies",
            frozenset(_urn_of(d) for d in self.explicit_dependencies),
        )
        object.__setattr__(self, "inputs", dict(self.inputs))

    @property
    def urn(self) -> str:
        return make_urn(self.type, self.name)

    def output(self, field_name: str, *path: Any) -> OutputRef:
        """Reference one of this resource's future outputs.

        Args:
            field_name: Top-level output key
            *path: Further keys or indices into nested output values
        """
        return OutputRef(self.urn, (field_name,) + tuple(path))

    def with_inputs(self, inputs: Mapping[str, Any]) -> "ResourceSpec":
        """Return a copy of this spec carrying different inputs."""
        return ResourceSpec(
            type=self.type,
            name=self.name,
            inputs=inputs,
            parent_id=self.parent_id,
            explicit_dependencies=self.explicit_dependencies,
        )

    def __hash__(self) -> int:
        # inputs is a dict, so identity is the urn
        return hash(self.urn)

    def __repr__(self) -> str:
        return f"ResourceSpec({self.type}, {self.name!r})"


class NodeState(str, Enum):
    """Lifecycle state of a node during a run."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeState.DONE, NodeState.FAILED, NodeState.SKIPPED)


class Node:
    """A vertex of the resource graph.

    Attributes:
        id: URN of the resource
        spec: Declared desired state
        index: Declaration position, used to break scheduling ties
        dependencies: URNs this node waits for (explicit, parent and inferred)
        dependents: URNs that wait for this node
        parent_edges: Subset of dependencies that come from the parent link
        result: Output settled with the provider's full output mapping
        desired_absent: True when the node exists to delete its resource
        recorded_state: State the node was built from (deletion graphs only)
    """

    def __init__(
        self,
        spec: ResourceSpec,
        index: int,
        dependencies: Iterable[str] = (),
        desired_absent: bool = False,
        recorded_state: Optional["ResourceState"] = None,
    ):
        self.id = spec.urn
        self.spec = spec
        self.index = index
        self.dependencies: Set[str] = set(dependencies)
        self.dependents: Set[str] = set()
        self.parent_edges: Set[str] = set()
        self.desired_absent = desired_absent
        self.recorded_state = recorded_state
        self.result: Output[Dict[str, Any]] = Output(self.id)
        self._outputs: Dict[str, Output[Any]] = {}
        self._state = NodeState.PENDING
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def type(self) -> str:
        return self.spec.type

    @property
    def state(self) -> NodeState:
        with self._lock:
            return self._state

    @property
    def outputs(self) -> Dict[str, Output[Any]]:
        """Per-field Output cells created so far via output()."""
        with self._lock:
            return dict(self._outputs)

    def output(self, field_name: str) -> Output[Any]:
        """Return the Output cell for one top-level output field.

        The cell is derived from ``result``; it fails with KeyError if the
        provider did not report that field.
        """
        with self._lock:
            cell = self._outputs.get(field_name)
            if cell is None:
                cell = self.result.map(lambda outputs: _pick(self.id, outputs, field_name))
                self._outputs[field_name] = cell
            return cell

    def transition(self, expected: NodeState, new: NodeState) -> bool:
        """Atomically move from expected to new state.

        Returns:
            True if the node was in the expected state and has moved
        """
        with self._lock:
            if self._state is not expected:
                return False
            self._state = new
            return True

    def __repr__(self) -> str:
        return f"Node({self.id}, state={self.state.value})"


def _pick(node_id: str, outputs: Mapping[str, Any], field_name: str) -> Any:
    try:
        return outputs[field_name]
    except KeyError:
        raise KeyError(f"Resource '{node_id}' has no output '{field_name}'") from None
