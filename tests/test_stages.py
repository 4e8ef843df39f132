# tests/test_stages.py
"""Tests for stage evaluation (rk_engine.stages) and the field boundary.

These check the stage recurrence itself, independent of any stepping loop:

- Explicit stages are computed in ascending order and k_1 sees only (t, y).
- Stage arrays have shape (s, *y.shape) for any state shape.
- Field failures surface as FieldEvaluationError.
- Ignored implicit options warn instead of failing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from rk_engine.config import ImplicitMode, ImplicitSolverConfig
from rk_engine.errors import FieldEvaluationError
from rk_engine.field import BoundField, bind_field
from rk_engine.stages import StageEvaluator, StageSet, combine, evaluate_stages
from rk_engine.tableaus import BACKWARD_EULER, EULER, RK4

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


class _RecordingField:
    """Vector field that records every (t, y) it is called with."""

    def __init__(self, rhs: Callable[[float, FloatArray], FloatArray]) -> None:
        self.rhs = rhs
        self.calls: list[tuple[float, FloatArray]] = []

    def __call__(self, t: float, y: FloatArray) -> FloatArray:
        self.calls.append((t, np.array(y, copy=True)))
        return self.rhs(t, y)


def _growth(_t: float, y: FloatArray) -> FloatArray:
    return y


# -----------------------------------------------------------------------------
# Explicit stages
# -----------------------------------------------------------------------------


def test_first_explicit_stage_uses_only_t_and_y() -> None:
    """k_1 = f(t, y): the first call sees the step start exactly."""
    field = _RecordingField(_growth)
    y = np.array([1.0, -2.0])

    evaluate_stages(field, 0.3, y, 0.1, RK4)

    t_first, y_first = field.calls[0]
    assert t_first == 0.3
    assert np.array_equal(y_first, y)


def test_explicit_stages_called_at_nodes_in_order() -> None:
    field = _RecordingField(_growth)
    evaluate_stages(field, 1.0, np.array([1.0]), 0.2, RK4)

    times = [t for t, _ in field.calls]
    assert np.allclose(times, 1.0 + 0.2 * RK4.nodes)


def test_rk4_stage_values_for_linear_growth() -> None:
    """Stages of RK4 on y' = y match the closed form recurrence."""
    h = 0.1
    stages = evaluate_stages(_growth, 0.0, np.array([1.0]), h, RK4)

    k1 = 1.0
    k2 = 1.0 + 0.5 * h * k1
    k3 = 1.0 + 0.5 * h * k2
    k4 = 1.0 + h * k3
    assert np.allclose(stages.k[:, 0], [k1, k2, k3, k4], rtol=0.0, atol=1e-15)
    assert stages.iterations == 0
    assert stages.field_evaluations == 4


def test_stage_shape_follows_state_shape() -> None:
    y = np.arange(6.0).reshape(2, 3)
    stages = evaluate_stages(_growth, 0.0, y, 0.1, RK4)
    assert stages.k.shape == (4, 2, 3)
    assert len(stages) == 4
    assert stages.stage(0).shape == (2, 3)


def test_scalar_state_is_promoted() -> None:
    stages = evaluate_stages(lambda _t, y: -y, 0.0, 2.0, 0.5, EULER)
    assert stages.k.shape == (1,)
    assert stages.k[0] == -2.0


def test_integer_state_is_evaluated_in_float() -> None:
    stages = evaluate_stages(lambda _t, y: 0.5 * y, 0.0, np.array([1, 2]), 0.1, EULER)
    assert stages.k.dtype == np.float64
    assert np.allclose(stages.k[0], [0.5, 1.0])


def test_combine_applies_weights() -> None:
    stages = StageSet(k=np.array([[1.0, 2.0], [3.0, 4.0]]))
    y = np.array([10.0, 20.0])
    out = combine(y, 0.5, np.array([0.5, 0.5]), stages)
    assert np.allclose(out, [11.0, 21.5])
    assert np.array_equal(y, [10.0, 20.0])


# -----------------------------------------------------------------------------
# Field boundary
# -----------------------------------------------------------------------------


def test_field_exception_becomes_field_evaluation_error() -> None:
    def boom(_t: float, _y: FloatArray) -> FloatArray:
        msg = "domain error"
        raise ZeroDivisionError(msg)

    with pytest.raises(FieldEvaluationError, match="ZeroDivisionError") as excinfo:
        evaluate_stages(boom, 0.0, np.array([1.0]), 0.1, RK4)
    assert isinstance(excinfo.value.__cause__, ZeroDivisionError)


def test_field_wrong_shape_is_rejected() -> None:
    with pytest.raises(FieldEvaluationError, match="returned shape"):
        evaluate_stages(lambda _t, _y: np.zeros(3), 0.0, np.zeros(2), 0.1, RK4)


def test_bound_field_counts_evaluations_and_is_reused() -> None:
    y = np.zeros(2)
    bound = bind_field(_growth, y)
    assert isinstance(bound, BoundField)
    assert bind_field(bound, y) is bound

    evaluate_stages(bound, 0.0, y, 0.1, RK4)
    evaluate_stages(bound, 0.0, y, 0.1, RK4)
    assert bound.evaluations == 8


def test_bound_field_jacobian_shape_checked() -> None:
    bound = BoundField(_growth, np.zeros(2), jacobian=lambda _t, _y: np.eye(3))
    assert bound.has_jacobian
    with pytest.raises(FieldEvaluationError, match="jacobian returned shape"):
        bound.jacobian(0.0, np.zeros(2))


def test_rebinding_with_a_different_jacobian_warns() -> None:
    def jacobian(_t: float, y: FloatArray) -> FloatArray:
        return np.eye(y.size)

    y = np.zeros(2)
    bound = BoundField(_growth, y, jacobian=jacobian)
    assert bind_field(bound, y, jacobian=jacobian) is bound

    with pytest.warns(RuntimeWarning, match="jacobian passed alongside it"):
        rebound = bind_field(bound, y, jacobian=lambda _t, _y: np.zeros((2, 2)))
    assert rebound is bound
    assert np.array_equal(rebound.jacobian(0.0, y), np.eye(2))


def test_bound_field_without_jacobian_raises() -> None:
    bound = BoundField(_growth, np.zeros(2))
    with pytest.raises(FieldEvaluationError, match="no jacobian"):
        bound.jacobian(0.0, np.zeros(2))


# -----------------------------------------------------------------------------
# Implicit dispatch and ignored options
# -----------------------------------------------------------------------------


def test_implicit_tableau_dispatches_to_iterative_solve() -> None:
    h = 0.1
    stages = evaluate_stages(lambda _t, y: -y, 0.0, np.array([1.0]), h, BACKWARD_EULER)
    assert stages.iterations >= 1
    # Backward Euler: k = -(y + h k)  =>  k = -y / (1 + h)
    assert np.isclose(stages.k[0, 0], -1.0 / (1.0 + h), rtol=0.0, atol=1e-7)


def test_newton_mode_on_explicit_tableau_warns() -> None:
    with pytest.warns(RuntimeWarning, match="is explicit"):
        StageEvaluator(RK4, ImplicitSolverConfig(mode=ImplicitMode.NEWTON))


def test_jacobian_with_explicit_tableau_warns_and_is_ignored() -> None:
    with pytest.warns(RuntimeWarning, match="jacobian is ignored"):
        stages = evaluate_stages(
            _growth,
            0.0,
            np.array([1.0]),
            0.1,
            RK4,
            jacobian=lambda _t, _y: np.eye(1),
        )
    assert stages.field_evaluations == 4
