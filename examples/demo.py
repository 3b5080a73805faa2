#!/usr/bin/env python
"""
diffgraph Demo: Derivatives as Expressions
==========================================

This demo shows that differentiating a node returns another node.
Derivatives can be printed, re-evaluated after the inputs change,
differentiated again, and inspected as part of the shared graph.
"""

import sys
import os

# Add parent directory to path so we can import diffgraph
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, parent_dir)

import diffgraph as dg
import numpy as np


def demo_scalar():
    """Demo: symbolic derivatives over plain floats."""
    print("\n" + "=" * 60)
    print("SCALAR FIELD")
    print("=" * 60)

    f = dg.DifferentialFunctionFactory(dg.RealField())
    x = f.variable("x", 0.5)
    y = f.mul(f.sin(x), f.exp(x))

    dy = y.diff(x)
    d2y = dy.diff(x)
    print(f"\ny       = {y.formula()}")
    print(f"dy/dx   = {dy.formula()}")
    print(f"\nAt x = 0.5: y = {y.real():.6f}, dy/dx = {dy.real():.6f}, d2y/dx2 = {d2y.real():.6f}")

    # Values are re-read every time
    x.set_value(1.0)
    print(f"At x = 1.0: y = {y.real():.6f}, dy/dx = {dy.real():.6f}")


def demo_arrays():
    """Demo: reductions and broadcasting over numpy arrays."""
    print("\n" + "=" * 60)
    print("ARRAY FIELD")
    print("=" * 60)

    f = dg.DifferentialFunctionFactory(dg.ArrayField())
    rng = np.random.default_rng(0)
    w = f.variable("w", rng.normal(size=(4, 3)))
    b = f.variable("b", np.zeros(3))

    # Softmax over the last axis, scored against fixed weights
    scores = f.softmax(f.tanh(f.add(w, b)))
    target = f.constant(rng.normal(size=(4, 3)))
    loss = f.mean(f.square(f.sub(scores, target)))

    dw = loss.diff(w)
    db = loss.diff(b)
    print(f"\nloss       = {loss.real():.6f}")
    print(f"dloss/dw   shape {dw.shape}:\n{np.broadcast_to(dw.value, w.shape)}")
    print(f"dloss/db   shape {db.shape}: {db.value}")

    print("\nGradient check:")
    print(f"  w: {dg.check_gradients(loss, w)}")
    print(f"  b: {dg.check_gradients(loss, b)}")

    # Gradient descent by re-reading the same derivative expressions
    print("\nGradient descent on w and b:")
    for step in range(5):
        w.set_value(w.value - 0.5 * np.broadcast_to(dw.value, w.shape))
        b.set_value(b.value - 0.5 * np.broadcast_to(db.value, b.shape))
        print(f"  step {step + 1}: loss = {loss.real():.6f}")


def demo_extremum():
    """Demo: max routes the gradient to the winners."""
    print("\n" + "=" * 60)
    print("MAX / MIN")
    print("=" * 60)

    f = dg.DifferentialFunctionFactory(dg.ArrayField())
    x = f.variable("x", [[1.0, 7.0, 7.0], [4.0, 2.0, 3.0]])
    print(f"\nx = {x.value.tolist()}")
    print(f"d max(x) / dx       = {f.max(x).diff(x).value.tolist()}")
    print(f"d max(x, 1) / dx    = {f.max(x, 1).diff(x).value.tolist()}")
    print(f"d min(x, 0) / dx    = {f.min(x, 0).diff(x).value.tolist()}")


def demo_graph():
    """Demo: the shared graph registry."""
    print("\n" + "=" * 60)
    print("GRAPH REGISTRY")
    print("=" * 60)

    f = dg.DifferentialFunctionFactory(dg.ArrayField())
    x = f.variable("x", [1.0, 2.0])
    y = f.sum(f.square(f.log(x)))
    before = len(f.graph)
    y.diff(x)
    print(f"\nnodes before diff: {before}, after diff: {len(f.graph)}")

    exported = f.graph.export()
    for node_id in f.graph.topological_order():
        data = exported.nodes[node_id]
        print(f"  {node_id:3d} {data['op']:<10} shape={data['shape']} deps={f.graph.dependencies(node_id)}")


if __name__ == '__main__':
    demo_scalar()
    demo_arrays()
    demo_extremum()
    demo_graph()
