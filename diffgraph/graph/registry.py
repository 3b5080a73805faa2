"""
diffgraph Graph Registry
========================

Shared bookkeeping graph for expression nodes.

Each node registers itself once, at construction, together with its static
shape, its operation name and one edge per operand. The registry is never
consulted during differentiation; it exists so that a built graph can be
inspected, ordered topologically or exported.

The underlying container is a :class:`networkx.DiGraph` whose nodes are
integer ids and whose edges point from operand to consumer.
"""

from __future__ import annotations
import logging
import threading
from typing import Any, Iterable, List, Optional, Tuple

import networkx as nx

logger = logging.getLogger(__name__)


class GraphRegistry:
    """
    Registry of expression nodes backed by ``networkx.DiGraph``.

    Registration is serialized with a lock, so one registry may be shared by
    factories used from several threads.
    """

    def __init__(self, name: str = "diffgraph"):
        self.name = name
        self._graph = nx.DiGraph(name=name)
        self._lock = threading.Lock()
        self._next_id = 0

    def register(
        self,
        function: Any,
        shape: Optional[Tuple[int, ...]],
        op_name: str,
        dependencies: Iterable[Any] = (),
    ) -> int:
        """
        Record a node and its dependency edges.

        Parameters
        ----------
        function : DifferentialFunction
            The node being constructed
        shape : Optional[Tuple[int, ...]]
            Static shape, or None when the field carries no shapes
        op_name : str
            Operation name used for export
        dependencies : Iterable[DifferentialFunction]
            Operand nodes; each must already be registered here

        Returns
        -------
        The node id assigned by this registry
        """
        dependencies = list(dependencies)
        with self._lock:
            node_id = self._next_id
            self._next_id += 1
            self._graph.add_node(node_id, op=op_name, shape=shape, function=function)
            for dep in dependencies:
                dep_id = dep.node_id
                if dep_id not in self._graph:
                    raise ValueError(
                        f"Operand {dep!r} is not registered in graph {self.name!r}"
                    )
                self._graph.add_edge(dep_id, node_id)

        logger.debug(
            "registered node %d (%s, shape=%s, deps=%s)",
            node_id, op_name, shape, [d.node_id for d in dependencies],
        )
        return node_id

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    def __contains__(self, function: Any) -> bool:
        node_id = getattr(function, 'node_id', None)
        if node_id is None or node_id not in self._graph:
            return False
        return self._graph.nodes[node_id]['function'] is function

    def function(self, node_id: int) -> Any:
        """Node object registered under ``node_id``."""
        return self._graph.nodes[node_id]['function']

    def dependencies(self, node_id: int) -> List[int]:
        """Ids of the operands of ``node_id``."""
        return sorted(self._graph.predecessors(node_id))

    def dependents(self, node_id: int) -> List[int]:
        """Ids of the nodes that consume ``node_id``."""
        return sorted(self._graph.successors(node_id))

    def topological_order(self) -> List[int]:
        """All node ids, operands before consumers."""
        return list(nx.lexicographical_topological_sort(self._graph))

    def ancestors(self, function: Any) -> List[int]:
        """Ids of every node ``function`` transitively depends on."""
        return sorted(nx.ancestors(self._graph, function.node_id))

    def export(self) -> nx.DiGraph:
        """
        Copy of the graph without the node objects.

        Node attributes are ``op`` and ``shape``; edges run operand -> consumer.
        """
        g = nx.DiGraph(name=self.name)
        with self._lock:
            for node_id, data in self._graph.nodes(data=True):
                g.add_node(node_id, op=data['op'], shape=data['shape'])
            g.add_edges_from(self._graph.edges())
        return g

    def __repr__(self) -> str:
        return (
            f"GraphRegistry(name={self.name!r}, nodes={len(self)}, "
            f"edges={self._graph.number_of_edges()})"
        )
