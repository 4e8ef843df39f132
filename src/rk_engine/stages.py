# src/rk_engine/stages.py
"""Stage evaluation for Runge-Kutta steps.

Explicit tableaus:
    k_i = f(t + c_i h, y + h sum_{j<i} a_ij k_j), computed in ascending i.
    Each stage depends only on earlier stages, so k_1 uses (t, y) alone.

Implicit tableaus:
    k_i = f(t + c_i h, y + h sum_j a_ij k_j) for all i simultaneously. The
    coupled system is delegated to ImplicitStageSolver, seeded with
    k_i = f(t, y) or with caller-supplied stages (warm start).

The explicit/implicit dispatch reads the tableau's structure tag, which is
fixed when the tableau is constructed.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .config import ImplicitMode, ImplicitSolverConfig
from .field import bind_field
from .implicit import ImplicitStageSolver
from .tableau import TableauStructure

if TYPE_CHECKING:
    from .field import BoundField, JacobianFunction, VectorField
    from .tableau import Tableau


_NEWTON_IGNORED_MSG = (
    "Tableau '{name}' is explicit; implicit mode '{mode}' is ignored."
)
_JACOBIAN_IGNORED_MSG = "Tableau '{name}' is explicit; the jacobian is ignored."
_INTERNAL_ERROR_IMPLICIT_MSG = "Internal error: implicit stage solver not initialized"


@dataclass(frozen=True, slots=True)
class StageSet:
    """Stage derivatives of one step attempt.

    Attributes:
        k: Stage values, shape (s, *state_shape).
        iterations: Implicit iterations used (0 for explicit tableaus).
        field_evaluations: Vector field calls spent computing the stages.
    """

    k: NDArray[np.floating]
    iterations: int = 0
    field_evaluations: int = 0

    def __len__(self) -> int:
        return int(self.k.shape[0])

    def stage(self, i: int) -> NDArray[np.floating]:
        """Return stage k_i (zero-based)."""
        return self.k[i]


def combine(
    y: NDArray[np.floating],
    h: float,
    weights: NDArray[np.floating],
    stages: StageSet,
) -> NDArray[np.floating]:
    """Return y + h * sum_i w_i k_i.

    Args:
        y: Step start state.
        h: Step size.
        weights: Stage weights (b for the solution, b* for the embedded one).
        stages: Stage values.

    Returns:
        New state array.
    """
    return np.asarray(y + h * np.tensordot(weights, stages.k, axes=1))


class StageEvaluator:
    """Compute the stage values of a tableau for one step."""

    def __init__(
        self,
        tableau: Tableau,
        implicit_config: ImplicitSolverConfig | None = None,
    ) -> None:
        """
        Initialize StageEvaluator.

        Args:
            tableau: Method coefficients.
            implicit_config: Settings for implicit stage solves. Ignored (with a
                RuntimeWarning for Newton mode) when the tableau is explicit.
        """
        self.tableau = tableau
        self.implicit_config = implicit_config or ImplicitSolverConfig()
        self._implicit: ImplicitStageSolver | None = None

        if tableau.structure is TableauStructure.IMPLICIT:
            self._implicit = ImplicitStageSolver(tableau, self.implicit_config)
        elif self.implicit_config.mode is ImplicitMode.NEWTON:
            warnings.warn(
                _NEWTON_IGNORED_MSG.format(
                    name=tableau.name, mode=self.implicit_config.mode.value
                ),
                RuntimeWarning,
                stacklevel=2,
            )

    def evaluate(
        self,
        field: VectorField | BoundField,
        t: float,
        y: NDArray[np.floating],
        h: float,
        *,
        initial_guess: NDArray[np.floating] | None = None,
    ) -> StageSet:
        """Compute all stages for a step of size h from (t, y).

        Args:
            field: Vector field f(t, y), raw or already bound.
            t: Step start time.
            y: Step start state.
            h: Step size (may be negative).
            initial_guess: Optional starting stages for implicit tableaus,
                shape (s, *y.shape). Ignored for explicit tableaus.

        Raises:
            FieldEvaluationError: If the field fails.
            NonConvergenceError: If an implicit stage solve does not converge.

        Returns:
            StageSet for this attempt.
        """
        y_arr = np.asarray(y)
        bound = bind_field(field, y_arr)
        y_arr = y_arr.astype(bound.dtype, copy=False)

        if self._implicit is None:
            return self._evaluate_explicit(bound, float(t), y_arr, float(h))
        return self._evaluate_implicit(
            bound, float(t), y_arr, float(h), initial_guess=initial_guess
        )

    def _evaluate_explicit(
        self,
        field: BoundField,
        t: float,
        y: NDArray[np.floating],
        h: float,
    ) -> StageSet:
        tableau = self.tableau
        evals_before = field.evaluations
        k = np.empty((tableau.stages, *y.shape), dtype=field.dtype)

        for i in range(tableau.stages):
            row = tableau.matrix[i, :i]
            if i == 0 or not np.any(row):
                y_stage = y
            else:
                y_stage = y + h * np.tensordot(row, k[:i], axes=1)
            k[i] = field(t + tableau.node(i) * h, y_stage)

        return StageSet(k=k, field_evaluations=field.evaluations - evals_before)

    def _evaluate_implicit(
        self,
        field: BoundField,
        t: float,
        y: NDArray[np.floating],
        h: float,
        *,
        initial_guess: NDArray[np.floating] | None,
    ) -> StageSet:
        if self._implicit is None:
            raise RuntimeError(_INTERNAL_ERROR_IMPLICIT_MSG)

        evals_before = field.evaluations
        if initial_guess is None:
            f0 = field(t, y)
            guess = np.broadcast_to(f0, (self.tableau.stages, *y.shape))
        else:
            guess = np.asarray(initial_guess)

        result = self._implicit.solve(field, t, y, h, guess)
        return StageSet(
            k=result.stages,
            iterations=result.iterations,
            field_evaluations=field.evaluations - evals_before,
        )


def evaluate_stages(
    field: VectorField | BoundField,
    t: float,
    y: NDArray[np.floating],
    h: float,
    tableau: Tableau,
    *,
    implicit_config: ImplicitSolverConfig | None = None,
    initial_guess: NDArray[np.floating] | None = None,
    jacobian: JacobianFunction | None = None,
) -> StageSet:
    """Compute the stages of one step (functional form of StageEvaluator).

    Args:
        field: Vector field f(t, y).
        t: Step start time.
        y: Step start state.
        h: Step size.
        tableau: Method coefficients.
        implicit_config: Settings for implicit stage solves.
        initial_guess: Optional starting stages for implicit tableaus.
        jacobian: Optional Jacobian df/dy for Newton mode.

    Returns:
        StageSet for this step.
    """
    y_arr = np.asarray(y)
    if jacobian is not None:
        if tableau.is_explicit:
            warnings.warn(
                _JACOBIAN_IGNORED_MSG.format(name=tableau.name),
                RuntimeWarning,
                stacklevel=2,
            )
        field = bind_field(field, y_arr, jacobian=jacobian)
    evaluator = StageEvaluator(tableau, implicit_config)
    return evaluator.evaluate(field, t, y_arr, h, initial_guess=initial_guess)
