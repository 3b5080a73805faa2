"""
diffgraph Shapes
================

Static shape inference used when nodes are built over a shaped field.
Shapes are plain tuples of ints; ``None`` means "no shape metadata".
"""

from __future__ import annotations
from typing import Optional, Sequence, Tuple
import numpy as np

Shape = Tuple[int, ...]


def normalize_axes(shape: Shape, axes: Sequence[int]) -> Tuple[int, ...]:
    """
    Resolve negative axes, drop duplicates and sort.

    Args:
        shape: Operand shape
        axes: Requested reduction axes

    Returns:
        Sorted tuple of non-negative axes
    """
    ndim = len(shape)
    resolved = set()
    for axis in axes:
        axis = int(axis)
        if axis < -ndim or axis >= ndim:
            raise ValueError(f"Axis {axis} out of range for shape {shape}")
        resolved.add(axis % ndim)
    return tuple(sorted(resolved))


def is_whole_array(shape: Shape, axes: Sequence[int]) -> bool:
    """True when reducing over ``axes`` collapses every dimension."""
    return len(axes) == 0 or set(axes) == set(range(len(shape)))


def reduced_shape(shape: Shape, axes: Sequence[int]) -> Shape:
    """Shape after reducing ``axes`` away."""
    if is_whole_array(shape, axes):
        return ()
    return tuple(d for i, d in enumerate(shape) if i not in axes)


def keepdims_shape(shape: Shape, axes: Sequence[int]) -> Shape:
    """Shape after reducing ``axes`` to length 1 (keepdims)."""
    if is_whole_array(shape, axes):
        return tuple(1 for _ in shape)
    return tuple(1 if i in axes else d for i, d in enumerate(shape))


def reduced_count(shape: Shape, axes: Sequence[int]) -> int:
    """Number of elements collapsed into each reduced output element."""
    if is_whole_array(shape, axes):
        return int(np.prod(shape, dtype=np.int64))
    return int(np.prod([shape[a] for a in axes], dtype=np.int64))


def broadcast_shapes(*shapes: Optional[Shape]) -> Optional[Shape]:
    """Broadcast result shape, or None if any input lacks a shape."""
    if any(s is None for s in shapes):
        return None
    return tuple(np.broadcast_shapes(*shapes))


def size(shape: Shape) -> int:
    return int(np.prod(shape, dtype=np.int64))


def broadcasts_to(source: Shape, target: Shape) -> bool:
    """True when ``source`` broadcasts to exactly ``target``."""
    try:
        return tuple(np.broadcast_shapes(source, target)) == tuple(target)
    except ValueError:
        return False


def sum_to_axes(source: Shape, target: Shape) -> Tuple[int, ...]:
    """
    Axes of ``source`` to sum so it collapses back to ``target``.

    ``target`` must broadcast to ``source``. Leading axes that ``target``
    lacks are summed, as are axes where ``target`` has length 1.
    """
    lead = len(source) - len(target)
    if lead < 0:
        return ()
    axes = list(range(lead))
    for i, d in enumerate(target):
        if d == 1 and source[lead + i] != 1:
            axes.append(lead + i)
    return tuple(axes)


def tile_shape(shape: Shape, reps: Sequence[int]) -> Shape:
    """Shape of ``numpy.tile(x, reps)``."""
    reps = tuple(int(r) for r in reps)
    ndim = max(len(shape), len(reps))
    shape = (1,) * (ndim - len(shape)) + tuple(shape)
    reps = (1,) * (ndim - len(reps)) + reps
    return tuple(d * r for d, r in zip(shape, reps))


def repeat_shape(shape: Shape, repeats: int, axis: int) -> Shape:
    """Shape of ``numpy.repeat(x, repeats, axis)``."""
    (axis,) = normalize_axes(shape, (axis,))
    out = list(shape)
    out[axis] *= int(repeats)
    return tuple(out)


def reshape_shape(shape: Shape, new_shape: Sequence[int]) -> Shape:
    """Resolve a single ``-1`` in ``new_shape`` and check element counts."""
    new_shape = [int(d) for d in new_shape]
    size = int(np.prod(shape, dtype=np.int64))
    unknown = [i for i, d in enumerate(new_shape) if d == -1]
    if len(unknown) > 1:
        raise ValueError("Only one dimension may be -1")
    if unknown:
        known = int(np.prod([d for d in new_shape if d != -1], dtype=np.int64))
        if known == 0 or size % known:
            raise ValueError(f"Cannot reshape {shape} into {tuple(new_shape)}")
        new_shape[unknown[0]] = size // known
    if int(np.prod(new_shape, dtype=np.int64)) != size:
        raise ValueError(f"Cannot reshape {shape} into {tuple(new_shape)}")
    return tuple(new_shape)
