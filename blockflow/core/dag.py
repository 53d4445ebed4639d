"""
DAG (Directed Acyclic Graph) analysis and execution planning.

Layering uses Kahn's algorithm; cycle reporting uses depth-first search with an
explicit recursion stack. Both are iterative so malformed or very deep graphs
never exhaust the interpreter stack.
"""

from collections import defaultdict, deque
from typing import Iterable, Optional

from blockflow.core.errors import CycleDetectedError, InvalidGraphError
from blockflow.core.models import (
    ExecutionPlan,
    ExecutionStatus,
    NodeExecutionState,
    WorkflowDefinition,
)


class WorkflowGraph:
    """
    Adjacency view over a node id list and an edge list.

    Edges whose endpoints are unknown are ignored here; reporting them is the
    validator's job.
    """

    def __init__(self, node_ids: Iterable[str], edges: Iterable[tuple[str, str]]):
        self._order: list[str] = []
        self._index: dict[str, int] = {}
        for node_id in node_ids:
            if node_id not in self._index:
                self._index[node_id] = len(self._order)
                self._order.append(node_id)

        self._adjacency: dict[str, list[str]] = defaultdict(list)
        self._reverse_adjacency: dict[str, list[str]] = defaultdict(list)
        self._in_degree: dict[str, int] = {node_id: 0 for node_id in self._order}

        for source, target in edges:
            if source not in self._index or target not in self._index:
                continue
            # source -> target (forward edge)
            self._adjacency[source].append(target)
            # target -> source (reverse edge for dependency lookup)
            self._reverse_adjacency[target].append(source)
            self._in_degree[target] += 1

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> "WorkflowGraph":
        return cls(
            (node.id for node in definition.nodes),
            ((edge.source, edge.target) for edge in definition.edges),
        )

    @property
    def node_ids(self) -> list[str]:
        return list(self._order)

    def dependencies(self, node_id: str) -> list[str]:
        """Distinct predecessors of a node, in edge order."""
        return list(dict.fromkeys(self._reverse_adjacency.get(node_id, [])))

    def dependents(self, node_id: str) -> list[str]:
        """Distinct successors of a node, in edge order."""
        return list(dict.fromkeys(self._adjacency.get(node_id, [])))

    def in_degree(self, node_id: str) -> int:
        return self._in_degree.get(node_id, 0)

    def roots(self) -> list[str]:
        """Nodes without incoming edges."""
        return [n for n in self._order if self._in_degree[n] == 0]

    def topological_layers(self) -> tuple[list[list[str]], list[str]]:
        """
        Group nodes into layers with Kahn's algorithm.

        Each layer is the frontier of zero in-degree nodes left after removing
        every earlier layer. Nodes inside a layer keep definition order.

        Returns:
            Tuple of (layers, remaining). ``remaining`` lists nodes that never
            reached in-degree zero; it is non-empty exactly when the graph
            contains a cycle.
        """
        in_degree = self._in_degree.copy()
        frontier = [n for n in self._order if in_degree[n] == 0]
        layers: list[list[str]] = []
        placed: set[str] = set()

        while frontier:
            layers.append(frontier)
            placed.update(frontier)
            next_frontier: list[str] = []
            for node_id in frontier:
                for neighbor in self._adjacency.get(node_id, []):
                    in_degree[neighbor] -= 1
                    if in_degree[neighbor] == 0:
                        next_frontier.append(neighbor)
            frontier = sorted(next_frontier, key=self._index.__getitem__)

        remaining = [n for n in self._order if n not in placed]
        return layers, remaining

    def find_cycles(self) -> list[list[str]]:
        """
        Report every cycle discovered by a depth-first search.

        Each back edge found while walking produces one cycle, given as the full
        node path with the first node repeated at the end (``a -> b -> a``).
        """
        visited: set[str] = set()
        on_stack: set[str] = set()
        cycles: list[list[str]] = []

        for start in self._order:
            if start in visited:
                continue

            path: list[str] = [start]
            stack = [(start, iter(self._adjacency.get(start, [])))]
            visited.add(start)
            on_stack.add(start)

            while stack:
                node_id, neighbors = stack[-1]
                advanced = False
                for neighbor in neighbors:
                    if neighbor in on_stack:
                        cycle_start = path.index(neighbor)
                        cycles.append(path[cycle_start:] + [neighbor])
                    elif neighbor not in visited:
                        visited.add(neighbor)
                        on_stack.add(neighbor)
                        path.append(neighbor)
                        stack.append((neighbor, iter(self._adjacency.get(neighbor, []))))
                        advanced = True
                        break
                if not advanced:
                    stack.pop()
                    path.pop()
                    on_stack.discard(node_id)

        return cycles

    def reachable_from(self, start_nodes: Iterable[str]) -> set[str]:
        """Breadth-first reachability from a set of start nodes."""
        reachable = {n for n in start_nodes if n in self._index}
        queue = deque(reachable)

        while queue:
            node_id = queue.popleft()
            for neighbor in self._adjacency.get(node_id, []):
                if neighbor not in reachable:
                    reachable.add(neighbor)
                    queue.append(neighbor)

        return reachable

    def compute_levels(self) -> dict[str, int]:
        """Depth of each node: roots are 0, others are max(predecessor level) + 1."""
        layers, _ = self.topological_layers()
        return {node_id: level for level, layer in enumerate(layers) for node_id in layer}


def build_execution_plan(
    definition: WorkflowDefinition,
    estimated_node_time: float = 0.1,
) -> ExecutionPlan:
    """
    Build a layered execution plan for one run.

    Plans are never cached: node configs may change between runs of the same
    definition id.

    Raises:
        InvalidGraphError: Duplicate node ids or edges pointing at unknown nodes
        CycleDetectedError: The edge set contains a cycle
    """
    node_ids = [node.id for node in definition.nodes]
    if len(node_ids) != len(set(node_ids)):
        duplicates = sorted({n for n in node_ids if node_ids.count(n) > 1})
        raise InvalidGraphError(f"Duplicate node IDs found: {duplicates}")

    known = set(node_ids)
    for edge in definition.edges:
        missing: Optional[str] = None
        if edge.source not in known:
            missing = edge.source
        elif edge.target not in known:
            missing = edge.target
        if missing is not None:
            raise InvalidGraphError(f"Edge '{edge.id}' references unknown node '{missing}'")

    graph = WorkflowGraph.from_definition(definition)
    layers, remaining = graph.topological_layers()

    if sum(len(layer) for layer in layers) != len(node_ids):
        raise CycleDetectedError(remaining)

    node_states = {
        node_id: NodeExecutionState(
            node_id=node_id,
            status=ExecutionStatus.PENDING,
            dependencies=graph.dependencies(node_id),
            dependents=graph.dependents(node_id),
        )
        for node_id in node_ids
    }

    return ExecutionPlan(
        execution_order=layers,
        node_states=node_states,
        estimated_time=len(layers) * estimated_node_time,
    )
