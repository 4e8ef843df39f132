# tests/test_implicit.py
"""Tests for the implicit stage solver (rk_engine.implicit).

Coverage:
- Fixed-point and simplified Newton converge to the exact stages of linear
  problems.
- A tableau with zero coupling converges in exactly one iteration.
- Divergence and singular iteration matrices raise NonConvergenceError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from rk_engine.config import ImplicitMode, ImplicitSolverConfig
from rk_engine.errors import NonConvergenceError
from rk_engine.field import BoundField
from rk_engine.implicit import ImplicitStageSolver
from rk_engine.tableau import Tableau
from rk_engine.tableaus import BACKWARD_EULER, GAUSS_LEGENDRE_4

if TYPE_CHECKING:
    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

_LAMBDA = -2.0


def _linear(_t: float, y: FloatArray) -> FloatArray:
    return _LAMBDA * y


def _linear_jacobian(_t: float, y: FloatArray) -> FloatArray:
    return _LAMBDA * np.eye(y.size)


def _solve(
    tableau: Tableau,
    config: ImplicitSolverConfig,
    *,
    h: float = 0.1,
    y: FloatArray | None = None,
    jacobian: bool = False,
) -> tuple[FloatArray, int, BoundField]:
    y0 = np.array([1.0, -0.5]) if y is None else y
    field = BoundField(_linear, y0, jacobian=_linear_jacobian if jacobian else None)
    guess = np.broadcast_to(field(0.0, y0), (tableau.stages, *y0.shape))
    result = ImplicitStageSolver(tableau, config).solve(field, 0.0, y0, h, guess)
    return result.stages, result.iterations, field


def _exact_linear_stages(tableau: Tableau, y: FloatArray, h: float) -> FloatArray:
    """Solve K = lam (y + h A K) directly for a scalar-coefficient linear field."""
    s = tableau.stages
    lhs = np.eye(s) - h * _LAMBDA * tableau.matrix
    rhs = _LAMBDA * np.ones(s)
    coeff = np.linalg.solve(lhs, rhs)
    return coeff[:, np.newaxis] * y[np.newaxis, :]


_TIGHT = {"convergence_atol": 1e-14, "convergence_rtol": 1e-14}


# -----------------------------------------------------------------------------
# Convergence to exact stages
# -----------------------------------------------------------------------------


@pytest.mark.parametrize("tableau", [BACKWARD_EULER, GAUSS_LEGENDRE_4])
@pytest.mark.parametrize("mode", [ImplicitMode.FIXED_POINT, ImplicitMode.NEWTON])
def test_linear_stages_match_direct_solve(tableau: Tableau, mode: ImplicitMode) -> None:
    y = np.array([1.0, -0.5])
    cfg = ImplicitSolverConfig(mode=mode, **_TIGHT)
    k, iterations, _ = _solve(tableau, cfg, y=y, jacobian=True)

    expected = _exact_linear_stages(tableau, y, 0.1)
    assert k.shape == expected.shape
    assert np.allclose(k, expected, rtol=0.0, atol=1e-12)
    assert iterations >= 1


def test_newton_converges_faster_than_fixed_point() -> None:
    """With an exact Jacobian, Newton needs few iterations on a linear field."""
    _, it_fp, _ = _solve(BACKWARD_EULER, ImplicitSolverConfig(**_TIGHT))
    _, it_newton, _ = _solve(
        BACKWARD_EULER,
        ImplicitSolverConfig(mode=ImplicitMode.NEWTON, **_TIGHT),
        jacobian=True,
    )
    assert it_newton <= 3
    assert it_newton < it_fp


def test_newton_with_finite_difference_jacobian() -> None:
    cfg = ImplicitSolverConfig(mode=ImplicitMode.NEWTON, **_TIGHT)
    k_user, _, _ = _solve(GAUSS_LEGENDRE_4, cfg, jacobian=True)
    k_fd, _, field = _solve(GAUSS_LEGENDRE_4, cfg, jacobian=False)
    assert np.allclose(k_user, k_fd, rtol=0.0, atol=1e-12)
    # f0 for the guess, then n + 1 calls for the difference quotient, then stages.
    assert field.evaluations > 1 + 3


def test_zero_coupling_converges_in_one_iteration() -> None:
    """With a = 0 the stages are f(t + c_i h, y) and need no iteration."""
    tableau = Tableau.from_coefficients(
        [[0.0, 0.0], [0.0, 0.0]], [0.5, 0.5], nodes=[0.0, 1.0], order=1
    )
    for mode in ImplicitMode:
        k, iterations, _ = _solve(tableau, ImplicitSolverConfig(mode=mode))
        assert iterations == 1
        assert np.allclose(k, _LAMBDA * np.array([[1.0, -0.5], [1.0, -0.5]]))


def test_solver_accepts_multidimensional_state() -> None:
    y = np.arange(1.0, 7.0).reshape(2, 3)
    field = BoundField(_linear, y)
    guess = np.broadcast_to(field(0.0, y), (1, 2, 3))
    result = ImplicitStageSolver(BACKWARD_EULER, ImplicitSolverConfig(**_TIGHT)).solve(
        field, 0.0, y, 0.1, guess
    )
    assert result.stages.shape == (1, 2, 3)
    assert np.allclose(result.stages[0], _LAMBDA * y / (1.0 - 0.1 * _LAMBDA))
    assert result.field_evaluations == field.evaluations - 1


# -----------------------------------------------------------------------------
# Failure modes
# -----------------------------------------------------------------------------


def test_fixed_point_divergence_raises_nonconvergence() -> None:
    """h * |lambda| * |a| > 1: fixed-point iteration cannot converge."""
    with pytest.raises(NonConvergenceError) as excinfo:
        _solve(BACKWARD_EULER, ImplicitSolverConfig(iteration_cap=20), h=5.0)
    assert excinfo.value.iterations <= 20


def test_iteration_cap_reported() -> None:
    with pytest.raises(NonConvergenceError, match="did not converge in 2 iterations"):
        _solve(GAUSS_LEGENDRE_4, ImplicitSolverConfig(iteration_cap=2, **_TIGHT))


def test_singular_newton_matrix_raises_nonconvergence() -> None:
    """I - h * a * lambda vanishes for backward Euler at h * lambda = 1."""

    def growth(_t: float, y: FloatArray) -> FloatArray:
        return y

    y = np.array([1.0])
    field = BoundField(growth, y, jacobian=lambda _t, _y: np.eye(1))
    solver = ImplicitStageSolver(
        BACKWARD_EULER, ImplicitSolverConfig(mode=ImplicitMode.NEWTON)
    )
    with pytest.raises(NonConvergenceError, match="singular"):
        solver.solve(field, 0.0, y, 1.0, np.ones((1, 1)))


def test_initial_guess_shape_is_checked() -> None:
    y = np.array([1.0, 2.0])
    field = BoundField(_linear, y)
    solver = ImplicitStageSolver(GAUSS_LEGENDRE_4)
    with pytest.raises(ValueError, match="initial_guess has shape"):
        solver.solve(field, 0.0, y, 0.1, np.zeros((1, 2)))
