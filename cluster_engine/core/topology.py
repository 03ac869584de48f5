"""
Relationship Graph
==================

Cluster-scoped directed graph over facts, derived from Relationship
records on demand. Nothing here is stored between calls.

ALLOWED:
- Cycle detection (iterative, bounded memory)
- Topological ordering for propagation
- Structural counts (weakly connected components)

FORBIDDEN:
- Mutating relationships or facts
- Interpreting relationship types (a dependency is a dependency)
"""

from __future__ import annotations
from typing import Dict, Hashable, Iterable, Iterator, List, NamedTuple, Optional, Tuple
import networkx as nx

from ..contracts.base import id_sort_key


class GraphEdge(NamedTuple):
    """
    Minimal edge shape accepted wherever Relationship records are.

    Used to check proposed relationships before any id is allocated.
    """
    relationship_id: str
    source_fact_id: Hashable
    target_fact_id: Hashable
    dependency_order: int = 1


class CycleError(Exception):
    """Raised by ``topological_order`` when the edge set has a cycle."""

    def __init__(self, cycle: Tuple[Hashable, ...]):
        self.cycle = cycle
        super().__init__(f"Cycle detected: {' -> '.join(str(n) for n in cycle)}")


class RelationshipGraph:
    """
    Directed dependency graph over one cluster's facts.

    Every method takes the relationship set and the member ids
    explicitly; edges touching non-members are ignored, so a dangling
    relationship can never introduce phantom nodes.
    """

    def has_cycle(self, relationships: Iterable, fact_ids: Iterable[Hashable]) -> bool:
        return self.find_cycle(relationships, fact_ids) is not None

    def find_cycle(
        self,
        relationships: Iterable,
        fact_ids: Iterable[Hashable]
    ) -> Optional[Tuple[Hashable, ...]]:
        """
        Return the first cycle found as a closed path, or None.

        Iterative depth-first traversal with an explicit stack and an
        on-stack set; a back edge to an on-stack node closes a cycle.
        Roots are visited in ascending id order and neighbours in edge
        order, so the reported cycle is deterministic.
        """
        adjacency = self._adjacency(relationships, fact_ids)
        visited = set()
        on_stack = set()

        for root in sorted(adjacency):
            if root in visited:
                continue

            path: List[Hashable] = [root]
            stack: List[Tuple[Hashable, Iterator[Hashable]]] = [(root, iter(adjacency[root]))]
            visited.add(root)
            on_stack.add(root)

            while stack:
                node, neighbours = stack[-1]
                descended = False

                for neighbour in neighbours:
                    if neighbour in on_stack:
                        start = path.index(neighbour)
                        return tuple(path[start:]) + (neighbour,)
                    if neighbour not in visited:
                        visited.add(neighbour)
                        on_stack.add(neighbour)
                        path.append(neighbour)
                        stack.append((neighbour, iter(adjacency[neighbour])))
                        descended = True
                        break

                if not descended:
                    stack.pop()
                    on_stack.discard(node)
                    path.pop()

        return None

    def topological_order(
        self,
        relationships: Iterable,
        fact_ids: Iterable[Hashable]
    ) -> Tuple[Hashable, ...]:
        """
        Processing order in which every source precedes its targets.

        Ties are broken by ascending node priority (lowest
        dependency_order among incoming edges, 0 for roots), then by
        ascending fact id.

        Raises CycleError if the graph is not acyclic.
        """
        relationships = list(relationships)
        fact_ids = list(fact_ids)

        cycle = self.find_cycle(relationships, fact_ids)
        if cycle is not None:
            raise CycleError(cycle)

        graph = self._build_digraph(relationships, fact_ids)
        priority: Dict[Hashable, int] = {}
        for node in graph.nodes:
            orders = [data["dependency_order"] for _, _, data in graph.in_edges(node, data=True)]
            priority[node] = min(orders) if orders else 0

        return tuple(
            nx.lexicographical_topological_sort(graph, key=lambda n: (priority[n], n))
        )

    def component_count(self, relationships: Iterable, fact_ids: Iterable[Hashable]) -> int:
        """Number of weakly connected components (isolated facts count)."""
        graph = self._build_digraph(list(relationships), list(fact_ids))
        if graph.number_of_nodes() == 0:
            return 0
        return nx.number_weakly_connected_components(graph)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _restricted_edges(relationships: Iterable, members: set) -> List:
        edges = [
            r for r in relationships
            if r.source_fact_id in members and r.target_fact_id in members
        ]
        edges.sort(key=lambda r: (r.dependency_order, id_sort_key(str(r.relationship_id))))
        return edges

    def _adjacency(
        self,
        relationships: Iterable,
        fact_ids: Iterable[Hashable]
    ) -> Dict[Hashable, List[Hashable]]:
        members = set(fact_ids)
        adjacency: Dict[Hashable, List[Hashable]] = {node: [] for node in members}
        for edge in self._restricted_edges(relationships, members):
            adjacency[edge.source_fact_id].append(edge.target_fact_id)
        return adjacency

    def _build_digraph(self, relationships: List, fact_ids: List[Hashable]) -> nx.DiGraph:
        members = set(fact_ids)
        graph = nx.DiGraph()
        graph.add_nodes_from(members)

        for edge in self._restricted_edges(relationships, members):
            # Edges arrive sorted, so a parallel edge never lowers the order
            if graph.has_edge(edge.source_fact_id, edge.target_fact_id):
                continue
            graph.add_edge(
                edge.source_fact_id,
                edge.target_fact_id,
                dependency_order=edge.dependency_order
            )
        return graph
