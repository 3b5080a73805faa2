"""Tests for reductions and their gradient redistribution."""

import itertools

import pytest
import numpy as np

import diffgraph as dg
from diffgraph import check_gradients
from diffgraph.functions import repeat_gradient


def axis_subsets(ndim):
    """Every subset of axes, including the empty (whole-array) one."""
    for r in range(ndim + 1):
        for axes in itertools.combinations(range(ndim), r):
            yield axes


class TestForward:
    """Reduction values and static shapes."""

    def test_values(self, factory, rng):
        data = rng.normal(size=(2, 3, 4))
        x = factory.variable("x", data)
        np.testing.assert_allclose(factory.sum(x, 1).value, data.sum(axis=1))
        np.testing.assert_allclose(factory.mean(x, 0, 2).value, data.mean(axis=(0, 2)))
        np.testing.assert_allclose(factory.prod(x).value, data.prod())
        np.testing.assert_allclose(factory.max(x, -1).value, data.max(axis=-1))
        np.testing.assert_allclose(factory.min(x, 0).value, data.min(axis=0))
        np.testing.assert_allclose(factory.std(x, 2).value, data.std(axis=2))
        np.testing.assert_allclose(
            factory.variance(x, 2, bias_corrected=True).value, data.var(axis=2, ddof=1)
        )
        np.testing.assert_allclose(factory.norm2(x, 1).value, np.linalg.norm(data, axis=1))

    def test_shapes(self, factory):
        x = factory.variable("x", np.zeros((2, 3, 4)))
        assert factory.sum(x).shape == ()
        assert factory.sum(x, 1).shape == (2, 4)
        assert factory.sum(x, 0, 1, 2).shape == ()
        assert factory.mean(x, -1, 0).shape == (3,)

    def test_axes_normalized(self, factory):
        x = factory.variable("x", np.zeros((2, 3)))
        s = factory.sum(x, -1, 1)
        assert s.axes == (1,)
        assert s.input_shape == (2, 3)
        assert s.reduced_count == 3

    def test_bad_axis(self, factory):
        x = factory.variable("x", np.zeros((2, 3)))
        with pytest.raises(ValueError):
            factory.sum(x, 2)

    def test_unshaped_whole_reduction(self, real_factory):
        x = real_factory.variable("x", 2.0)
        assert real_factory.sum(x).value == 2.0

    def test_unshaped_axes(self, real_factory):
        x = real_factory.variable("x", 2.0)
        with pytest.raises(dg.InvalidOperandKindError):
            real_factory.sum(x, 0)

    def test_formula_lists_axes(self, factory):
        x = factory.variable("x", np.zeros((2, 3)))
        assert factory.sum(x, 1).formula() == "sum(x, axes=[1])"
        assert factory.sum(x).formula() == "sum(x)"


class TestSumMean:
    """Sum and mean gradients over every axis subset."""

    @pytest.mark.parametrize("axes", list(axis_subsets(3)))
    def test_sum_gradient_is_one(self, factory, axes):
        x = factory.variable("x", np.arange(24.0).reshape(2, 3, 4))
        d = factory.sum(x, *axes).diff(x)
        np.testing.assert_array_equal(np.broadcast_to(d.value, (2, 3, 4)), 1.0)

    @pytest.mark.parametrize("axes", list(axis_subsets(3)))
    def test_mean_gradient(self, factory, axes):
        x = factory.variable("x", np.arange(24.0).reshape(2, 3, 4))
        count = 24 if not axes else int(np.prod([(2, 3, 4)[a] for a in axes]))
        d = factory.mean(x, *axes).diff(x)
        np.testing.assert_allclose(np.broadcast_to(d.value, (2, 3, 4)), 1.0 / count)

    def test_whole_sum_is_full_shape(self, factory):
        x = factory.variable("x", np.ones((2, 3)))
        assert factory.sum(x).diff(x).shape == (2, 3)

    def test_partial_sum_takes_variable_shape(self, factory):
        x = factory.variable("x", np.ones((2, 3)))
        d = factory.sum(x, 1).diff(x)
        assert d.shape == (2, 3)
        np.testing.assert_array_equal(d.value, np.ones((2, 3)))

    def test_weighted_partial_sum(self, factory, rng):
        x = factory.variable("x", rng.normal(size=(3, 4)))
        w = factory.constant(rng.normal(size=(3,)))
        assert check_gradients(factory.mul(factory.sum(x, 1), w), x)

    def test_nested_reductions(self, factory, rng):
        x = factory.variable("x", rng.normal(size=(2, 3, 4)))
        expr = factory.sum(factory.square(factory.sum(factory.sin(x), 2)), 1)
        assert check_gradients(expr, x)

    def test_reduction_against_broadcast_operand(self, factory, rng):
        x = factory.variable("x", rng.normal(size=(4,)))
        y = factory.constant(rng.normal(size=(3, 4)))
        expr = factory.sum(factory.add(factory.exp(x), y), 1)
        assert check_gradients(expr, x)
        np.testing.assert_allclose(expr.diff(x).value, 3.0 * np.exp(x.value))

    def test_unshaped_gradient(self, real_factory):
        x = real_factory.variable("x", 2.0)
        with pytest.raises(dg.InvalidOperandKindError):
            real_factory.sum(x).diff(x)


class TestChoose:
    """max/min route the gradient to the extremum."""

    def test_max_one_hot(self, factory):
        x = factory.variable("x", [1.0, 5.0, 3.0])
        np.testing.assert_array_equal(factory.max(x).diff(x).value, [0.0, 1.0, 0.0])

    def test_min_one_hot(self, factory):
        x = factory.variable("x", [1.0, 5.0, 3.0])
        np.testing.assert_array_equal(factory.min(x).diff(x).value, [1.0, 0.0, 0.0])

    def test_ties_split_evenly(self, factory):
        x = factory.variable("x", [2.0, 7.0, 7.0, 7.0])
        d = factory.max(x).diff(x).value
        np.testing.assert_allclose(d, [0.0, 1 / 3, 1 / 3, 1 / 3])
        assert np.isclose(d.sum(), 1.0)

    def test_partial_axis(self, factory):
        x = factory.variable("x", [[1.0, 4.0, 2.0], [9.0, 0.0, 9.0]])
        d = factory.max(x, 1).diff(x).value
        np.testing.assert_allclose(d, [[0.0, 1.0, 0.0], [0.5, 0.0, 0.5]])

    def test_weighted_max(self, factory, rng):
        x = factory.variable("x", rng.normal(size=(3, 5)))
        w = factory.constant(rng.normal(size=(5,)))
        assert check_gradients(factory.mul(factory.max(x, 0), w), x)


class TestProductAndMoments:
    """prod redistribution, variance and std against finite differences."""

    @pytest.mark.parametrize("axes", [(), (0,), (1,), (0, 1)])
    def test_prod_redistributes_like_mean(self, factory, rng, axes):
        x = factory.variable("x", rng.uniform(0.5, 1.5, size=(3, 4)))
        prod = factory.prod(x, *axes).diff(x)
        mean = factory.mean(x, *axes).diff(x)
        assert prod.shape == (3, 4)
        np.testing.assert_allclose(prod.value, mean.value)

    def test_prod_values(self, factory):
        x = factory.variable("x", [2.0, 3.0, 4.0])
        np.testing.assert_allclose(factory.prod(x).diff(x).value, [1 / 3, 1 / 3, 1 / 3])

    def test_prod_with_zero_entry(self, factory):
        x = factory.variable("x", [0.0, 3.0, 4.0])
        d = factory.prod(x).diff(x).value
        assert np.all(np.isfinite(d))
        np.testing.assert_allclose(d, [1 / 3, 1 / 3, 1 / 3])

    def test_prod_partial_axis_with_zeros(self, factory):
        x = factory.variable("x", [[0.0, 2.0], [5.0, 0.0], [1.0, 1.0]])
        d = factory.prod(x, 0).diff(x).value
        assert np.all(np.isfinite(d))
        np.testing.assert_allclose(d, np.full((3, 2), 1 / 3))

    @pytest.mark.parametrize("axes", [(), (0,), (1,)])
    @pytest.mark.parametrize("bias_corrected", [False, True])
    def test_variance(self, factory, rng, axes, bias_corrected):
        x = factory.variable("x", rng.normal(size=(3, 4)))
        assert check_gradients(factory.variance(x, *axes, bias_corrected=bias_corrected), x)

    @pytest.mark.parametrize("axes", [(), (0,), (1,)])
    @pytest.mark.parametrize("bias_corrected", [False, True])
    def test_std(self, factory, rng, axes, bias_corrected):
        x = factory.variable("x", rng.normal(size=(3, 4)))
        assert check_gradients(factory.std(x, *axes, bias_corrected=bias_corrected), x)


class TestNorms:
    """Norm reductions have no derivative rule."""

    @pytest.mark.parametrize("op_name", ['norm1', 'norm2', 'normmax'])
    def test_none(self, factory, op_name):
        x = factory.variable("x", [1.0, -2.0])
        assert getattr(factory, op_name)(x).diff(x) is None

    def test_none_propagates(self, factory):
        x = factory.variable("x", [1.0, -2.0])
        expr = factory.add(factory.sum(x), factory.sin(factory.norm2(x)))
        assert expr.diff(x) is None

    def test_absent_variable_is_zero(self, factory):
        x = factory.variable("x", [1.0, -2.0])
        y = factory.variable("y", 1.0)
        assert factory.norm1(x).diff(y) is factory.zero()


class TestSecondDerivatives:
    """Redistributed gradients are expressions that differentiate again."""

    def test_square_of_sum(self, factory):
        x = factory.variable("x", [1.0, 2.0, 3.0])
        s = factory.sum(x)
        d = factory.mul(s, s).diff(x)
        np.testing.assert_allclose(d.value, [12.0, 12.0, 12.0])
        # each of the 3 entries of d is 2 * sum(x)
        np.testing.assert_allclose(d.diff(x).value, [6.0, 6.0, 6.0])

    def test_square_of_partial_sum(self, factory, rng):
        x = factory.variable("x", rng.normal(size=(2, 3)))
        s = factory.sum(factory.square(x), 1)
        assert check_gradients(factory.mul(s, s).diff(x), x)

    @pytest.mark.parametrize("axes", [(), (1,)])
    def test_variance(self, factory, rng, axes):
        x = factory.variable("x", rng.normal(size=(3, 4)))
        assert check_gradients(factory.variance(x, *axes).diff(x), x)

    def test_mean_times_variable(self, factory, rng):
        x = factory.variable("x", rng.normal(size=(2, 5)))
        expr = factory.mul(factory.mean(x, 0), x)
        assert check_gradients(expr.diff(x), x)

    def test_broadcast_operand(self, factory, rng):
        b = factory.variable("b", rng.normal(size=(3,)))
        m = factory.constant(rng.normal(size=(4, 3)))
        d = factory.mul(factory.square(factory.add(m, b)), m).diff(b)
        assert d.shape == (3,)
        assert check_gradients(d, b)


class TestRepeatGradient:
    """The gradient redistribution helper."""

    def test_whole_array(self, factory):
        g = factory.constant(2.0)
        r = repeat_gradient(factory, g, (2, 3), ())
        assert r.shape == (2, 3)
        np.testing.assert_array_equal(r.value, np.full((2, 3), 2.0))

    def test_partial_keepdims(self, factory):
        g = factory.constant([1.0, 2.0])
        r = repeat_gradient(factory, g, (2, 3), (1,))
        assert r.shape == (2, 1)
        np.testing.assert_array_equal(r.value, [[1.0], [2.0]])

    def test_scalar_upstream(self, factory):
        r = repeat_gradient(factory, factory.one(), (2, 3, 4), (0, 2))
        assert r.shape == (1, 3, 1)
        np.testing.assert_array_equal(r.value, np.ones((1, 3, 1)))

    def test_unshaped(self, real_factory):
        with pytest.raises(dg.InvalidOperandKindError):
            repeat_gradient(real_factory, real_factory.one(), None, ())


class TestSumToExpand:
    """The internal summing and expanding pair."""

    def test_sum_to(self, factory):
        x = factory.variable("x", np.arange(6.0).reshape(2, 3))
        np.testing.assert_array_equal(factory.sum_to(x, (3,)).value, [3.0, 5.0, 7.0])
        np.testing.assert_array_equal(factory.sum_to(x, (2, 1)).value, [[3.0], [12.0]])
        assert factory.sum_to(x, (2, 3)) is x

    def test_expand_restores_reduced_axes(self, factory):
        x = factory.variable("x", [1.0, 2.0, 3.0])
        e = factory.expand_to(x, (1, 3, 1))
        assert e.shape == (1, 3, 1)
        np.testing.assert_array_equal(e.value.ravel(), [1.0, 2.0, 3.0])

    def test_expand_mismatch(self, factory):
        x = factory.variable("x", [1.0, 2.0, 3.0])
        with pytest.raises(ValueError):
            factory.expand_to(x, (2, 4))

    def test_both_differentiate(self, factory, rng):
        x = factory.variable("x", rng.normal(size=(2, 3)))
        w = factory.constant(rng.normal(size=(4, 2, 3)))
        assert check_gradients(factory.mul(factory.expand_to(x, (4, 2, 3)), w), x)
        assert check_gradients(factory.square(factory.sum_to(x, (3,))), x)
