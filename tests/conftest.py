"""Global pytest configuration and shared fixtures for rk_engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from rk_engine import SolverConfig, StepControllerConfig, ToleranceConfig

if TYPE_CHECKING:
    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


# -----------------------------------------------------------------------------
# Markers
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests that integrate over long intervals",
    )


# -----------------------------------------------------------------------------
# Shared problems
# -----------------------------------------------------------------------------


def growth(_t: float, y: FloatArray) -> FloatArray:
    """dy/dt = y, exact solution y0 * exp(t)."""
    return y


def oscillator(_t: float, y: FloatArray) -> FloatArray:
    """Harmonic oscillator y'' = -y as a first-order system."""
    return np.array([y[1], -y[0]])


@pytest.fixture
def growth_field():
    """
    Exponential growth vector field.

    Usage:
        def test_x(growth_field):
            y1 = solver_for(growth_field).step(0.0, y0, h)
    """
    return growth


@pytest.fixture
def oscillator_field():
    """Harmonic oscillator vector field over states of shape (2,)."""
    return oscillator


@pytest.fixture
def tight_config() -> SolverConfig:
    """Solver configuration with tolerances tight enough for accuracy checks."""
    return SolverConfig(
        tolerances=ToleranceConfig(absolute_tolerance=1e-10, relative_tolerance=1e-8),
        controller=StepControllerConfig(min_step=1e-14),
    )
