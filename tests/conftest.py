"""Pytest configuration and fixtures."""

import pytest
import numpy as np

import diffgraph as dg
from diffgraph.config import reset


@pytest.fixture(autouse=True)
def default_settings():
    """Restore default settings after every test."""
    yield
    reset()


@pytest.fixture
def factory():
    """Factory over float64 numpy arrays."""
    return dg.DifferentialFunctionFactory(dg.ArrayField())


@pytest.fixture
def real_factory():
    """Factory over plain floats (no shape metadata)."""
    return dg.DifferentialFunctionFactory(dg.RealField())


@pytest.fixture(params=['array', 'real'])
def any_factory(request):
    """Fixture that parametrizes over both fields."""
    if request.param == 'array':
        return dg.DifferentialFunctionFactory(dg.ArrayField())
    elif request.param == 'real':
        return dg.DifferentialFunctionFactory(dg.RealField())


@pytest.fixture
def rng():
    """Seeded random generator for reproducibility."""
    return np.random.default_rng(42)
