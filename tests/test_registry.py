"""Tests for the graph registry."""

import threading

import pytest
import networkx as nx

import diffgraph as dg


class TestRegistration:
    """Nodes record themselves at construction."""

    def test_every_node_registered(self, factory):
        x = factory.variable("x", [1.0, 2.0])
        y = factory.sin(x)
        graph = factory.graph
        assert x in graph
        assert y in graph
        assert graph.function(y.node_id) is y
        assert len(graph) == 2

    def test_dependency_edges(self, factory):
        x = factory.variable("x", [1.0, 2.0])
        c = factory.constant(3.0)
        y = factory.mul(x, c)
        graph = factory.graph
        assert graph.dependencies(y.node_id) == sorted([x.node_id, c.node_id])
        assert graph.dependents(x.node_id) == [y.node_id]

    def test_ids_are_unique(self, factory):
        x = factory.variable("x", 1.0)
        nodes = [factory.exp(x), factory.log(x), factory.sin(x)]
        ids = {n.node_id for n in nodes} | {x.node_id}
        assert len(ids) == 4

    def test_shape_attribute(self, factory):
        x = factory.variable("x", [[1.0, 2.0, 3.0]])
        s = factory.sum(x, 1)
        exported = factory.graph.export()
        assert exported.nodes[x.node_id]['shape'] == (1, 3)
        assert exported.nodes[s.node_id]['shape'] == (1,)
        assert exported.nodes[s.node_id]['op'] == 'sum'

    def test_unshaped_nodes(self, real_factory):
        x = real_factory.variable("x", 1.0)
        exported = real_factory.graph.export()
        assert exported.nodes[x.node_id]['shape'] is None

    def test_unregistered_dependency(self, factory):
        other = dg.DifferentialFunctionFactory(dg.ArrayField())
        y = other.variable("y", 1.0)
        foreign = other.exp(other.exp(other.exp(y)))
        with pytest.raises(ValueError):
            factory.graph.register(object(), (), "add", [foreign])


class TestQueries:
    """Graph queries."""

    def test_topological_order(self, factory):
        x = factory.variable("x", 2.0)
        y = factory.exp(x)
        z = factory.add(y, x)
        order = factory.graph.topological_order()
        assert order.index(x.node_id) < order.index(y.node_id) < order.index(z.node_id)

    def test_ancestors(self, factory):
        x = factory.variable("x", 2.0)
        y = factory.exp(x)
        z = factory.cos(y)
        unrelated = factory.variable("w", 1.0)
        ancestors = factory.graph.ancestors(z)
        assert ancestors == sorted([x.node_id, y.node_id])
        assert unrelated.node_id not in ancestors

    def test_export_drops_objects(self, factory):
        x = factory.variable("x", 2.0)
        factory.square(x)
        exported = factory.graph.export()
        assert isinstance(exported, nx.DiGraph)
        for _, data in exported.nodes(data=True):
            assert set(data) == {'op', 'shape'}
        assert nx.is_directed_acyclic_graph(exported)

    def test_differentiation_adds_nodes(self, factory):
        x = factory.variable("x", 2.0)
        y = factory.sin(x)
        before = len(factory.graph)
        y.diff(x)
        assert len(factory.graph) > before


class TestSharing:
    """One registry may back several factories and threads."""

    def test_shared_registry(self):
        graph = dg.GraphRegistry(name="shared")
        f1 = dg.DifferentialFunctionFactory(dg.ArrayField(), graph=graph)
        f2 = dg.DifferentialFunctionFactory(dg.RealField(), graph=graph)
        a = f1.variable("a", 1.0)
        b = f2.variable("b", 2.0)
        assert a in graph and b in graph
        assert a.node_id != b.node_id

    def test_concurrent_registration(self):
        graph = dg.GraphRegistry()
        factory = dg.DifferentialFunctionFactory(dg.ArrayField(), graph=graph)
        x = factory.variable("x", [1.0, 2.0])

        def build():
            for _ in range(50):
                factory.sin(x)

        threads = [threading.Thread(target=build) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(graph) == 1 + 4 * 50
        assert len(set(graph.topological_order())) == len(graph)
