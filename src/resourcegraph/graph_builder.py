"""Graph builder for resource dependency graphs.

This module provides the GraphBuilder abstraction and SimpleGraphBuilder
implementation for constructing and validating resource graphs.

Key responsibilities:
- Build one Node per declared ResourceSpec
- Infer dependency edges from parent links, explicit dependencies and
  OutputRefs embedded in inputs
- Validate graph (unknown references, duplicates, cycles)
- Compute a deterministic topological order (declaration order breaks ties)
- Build deletion graphs from recorded state
"""

import heapq
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator, List, Sequence, Set, Tuple

from .exceptions import CyclicDependencyError, DuplicateResourceError, UnknownReferenceError
from .output import iter_refs
from .resource import Node, ResourceSpec

if TYPE_CHECKING:
    from .state import ResourceState

logger = logging.getLogger(__name__)


@dataclass
class Graph:
    """A validated resource DAG.

    Attributes:
        nodes: Nodes keyed by URN, in declaration order
        execution_order: Topologically sorted nodes (dependencies first)
    """

    nodes: Dict[str, Node]
    execution_order: List[Node] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes.values())

    def __getitem__(self, node_id: str) -> Node:
        return self.nodes[node_id]

    @property
    def roots(self) -> List[Node]:
        """Nodes without dependencies, in declaration order."""
        return [n for n in self.nodes.values() if not n.dependencies]

    @property
    def edges(self) -> List[Tuple[str, str]]:
        """(dependent, dependency) pairs, in declaration order of the dependent."""
        result = []
        for node in self.nodes.values():
            for dep in sorted(node.dependencies, key=lambda d: self.nodes[d].index):
                result.append((node.id, dep))
        return result

    def transitive_dependents(self, node_id: str) -> List[Node]:
        """Every node that directly or indirectly depends on node_id.

        Returns:
            Nodes in declaration order (node_id itself excluded)
        """
        seen: Set[str] = set()
        stack = [node_id]
        while stack:
            current = stack.pop()
            for dependent in self.nodes[current].dependents:
                if dependent not in seen:
                    seen.add(dependent)
                    stack.append(dependent)
        return sorted((self.nodes[n] for n in seen), key=lambda n: n.index)


class GraphBuilder(ABC):
    """Abstract base class for building and validating resource graphs."""

    @abstractmethod
    def build_graph(self, specs: Sequence[ResourceSpec]) -> Graph:
        """Build a validated dependency graph from declared specs.

        Args:
            specs: Resource specs in declaration order

        Returns:
            Graph with nodes, dependency edges and execution order

        Raises:
            DuplicateResourceError: If two specs share a URN
            UnknownReferenceError: If a spec refers to an undeclared resource
            CyclicDependencyError: If the dependency relation has a cycle
        """
        pass

    @abstractmethod
    def build_destroy_graph(self, records: Sequence["ResourceState"]) -> Graph:
        """Build a graph that deletes recorded resources.

        Edges are reversed with respect to the recorded dependencies so that
        a resource is deleted only after everything that depended on it.
        """
        pass


class SimpleGraphBuilder(GraphBuilder):
    """Graph builder without external graph libraries.

    Uses DFS coloring for cycle detection and Kahn's algorithm with a
    declaration-index heap for ordering.
    """

    def build_graph(self, specs: Sequence[ResourceSpec]) -> Graph:
        """Build dependency graph.

        Performs:
        1. Creates one node per spec (rejecting duplicate URNs)
        2. Collects parent, explicit and inferred dependencies
        3. Validates (unknown references, cycles)
        4. Computes topological execution order
        """
        # 1. Nodes in declaration order
        nodes: Dict[str, Node] = {}
        for index, spec in enumerate(specs):
            if spec.urn in nodes:
                raise DuplicateResourceError(
                    f"Resource '{spec.urn}' is declared more than once"
                )
            nodes[spec.urn] = Node(spec, index)

        # 2. Dependencies: node -> URNs it waits for
        for node in nodes.values():
            spec = node.spec
            if spec.parent_id is not None:
                if spec.parent_id not in nodes:
                    raise UnknownReferenceError(node.id, spec.parent_id, kind="parent")
                node.dependencies.add(spec.parent_id)
                node.parent_edges.add(spec.parent_id)

            for dep in spec.explicit_dependencies:
                if dep not in nodes:
                    raise UnknownReferenceError(node.id, dep, kind="dependency")
                node.dependencies.add(dep)

            for ref in iter_refs(spec.inputs):
                if ref.node_id not in nodes:
                    raise UnknownReferenceError(node.id, ref.node_id)
                node.dependencies.add(ref.node_id)

        # 3. Validate: cycles (self references included)
        self._check_cycles(nodes)

        return self._finish(nodes)

    def build_destroy_graph(self, records: Sequence["ResourceState"]) -> Graph:
        """Build a deletion graph from recorded state.

        Records later in the sequence are treated as declared first, so ties
        delete the most recently created resources first.
        """
        ordered = list(reversed(list(records)))
        nodes: Dict[str, Node] = {}
        for index, record in enumerate(ordered):
            spec = ResourceSpec(type=record.type, name=record.name, inputs=record.inputs)
            node = Node(spec, index, desired_absent=True, recorded_state=record)
            nodes[node.id] = node

        for record in ordered:
            upstream = list(record.dependencies)
            if record.parent_id is not None:
                upstream.append(record.parent_id)
            for dep in upstream:
                # Deleting the dependency waits for deleting its dependent
                if dep in nodes and dep != record.urn:
                    nodes[dep].dependencies.add(record.urn)

        self._check_cycles(nodes)
        return self._finish(nodes)

    def _finish(self, nodes: Dict[str, Node]) -> Graph:
        for node in nodes.values():
            for dep in node.dependencies:
                nodes[dep].dependents.add(node.id)

        graph = Graph(nodes=nodes, execution_order=self._topological_sort(nodes))
        logger.debug(
            f"Built resource graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges"
        )
        return graph

    def _check_cycles(self, nodes: Dict[str, Node]) -> None:
        """Raise CyclicDependencyError on the first back edge found."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {node_id: WHITE for node_id in nodes}

        def visit(node_id: str, path: List[str]) -> None:
            if color[node_id] == GRAY:
                # Found a cycle
                cycle_start = path.index(node_id)
                raise CyclicDependencyError(path[cycle_start:] + [node_id])

            if color[node_id] == BLACK:
                return

            color[node_id] = GRAY
            path.append(node_id)

            deps = sorted(nodes[node_id].dependencies, key=lambda d: nodes[d].index)
            for dep in deps:
                visit(dep, path)

            path.pop()
            color[node_id] = BLACK

        for node_id in nodes:
            if color[node_id] == WHITE:
                visit(node_id, [])

    def _topological_sort(self, nodes: Dict[str, Node]) -> List[Node]:
        """Compute topological order using Kahn's algorithm."""
        in_degree = {node_id: len(node.dependencies) for node_id, node in nodes.items()}

        # Heap keyed by declaration index for deterministic ordering
        queue = [(node.index, node_id) for node_id, node in nodes.items() if in_degree[node_id] == 0]
        heapq.heapify(queue)
        result = []

        while queue:
            _, node_id = heapq.heappop(queue)
            result.append(nodes[node_id])

            for other in nodes[node_id].dependents:
                in_degree[other] -= 1
                if in_degree[other] == 0:
                    heapq.heappush(queue, (nodes[other].index, other))

        if len(result) != len(nodes):
            # This shouldn't happen if _check_cycles passed
            raise CyclicDependencyError(
                [n for n in nodes if n not in {r.id for r in result}]
            )

        return result


def build_graph(specs: Sequence[ResourceSpec]) -> Graph:
    """Build a graph with the default builder."""
    return SimpleGraphBuilder().build_graph(specs)
