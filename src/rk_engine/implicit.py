# src/rk_engine/implicit.py
"""Iterative solver for implicit Runge-Kutta stage equations.

For an implicit tableau the stages are coupled:

    K_i = f(t + c_i h, y + h sum_j a_ij K_j),   i = 1..s

The solver works on the stage increments Z_i = h sum_j a_ij K_j, which have
the magnitude of a state update and give a convergence test independent of
the size of f:

    G(Z) = Z - h (A kron I) F(Z) = 0,   F_j(Z) = f(t + c_j h, y + Z_j)

Schemes:
    - fixed-point: Z <- h (A kron I) F(Z). Cheap, converges when h*L*|A| < 1.
    - newton: simplified Newton with the iteration matrix I - h (A kron J),
      J = df/dy at (t, y). The matrix is LU-factorized once per solve and
      reused for every iteration.

Both schemes stop when the max-norm of the Z update falls below
atol + rtol * max|y + Z|. Exceeding the iteration cap, or producing
non-finite iterates, raises NonConvergenceError, which the adaptive loop
treats as a rejected step.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import lu_factor, lu_solve

from .config import ImplicitMode, ImplicitSolverConfig
from .errors import NonConvergenceError

if TYPE_CHECKING:
    from .field import BoundField
    from .tableau import Tableau


_CAP_EXCEEDED_MSG = (
    "implicit stage solve did not converge in {iterations} iterations "
    "(last update norm {update:.3e}, tolerance {tol:.3e})"
)
_NON_FINITE_MSG = "implicit stage solve produced non-finite iterates at iteration {it}"
_SINGULAR_MSG = "Newton iteration matrix is singular (h={h!r})"
_GUESS_SHAPE_MSG = "initial_guess has shape {actual}; expected {expected}"


@dataclass(frozen=True, slots=True)
class ImplicitSolveResult:
    """Outcome of a converged implicit stage solve.

    Attributes:
        stages: Stage derivatives K, shape (s, *state_shape).
        iterations: Iterations used (one per stage update).
        update_norm: Max-norm of the final update.
        field_evaluations: Vector field calls made by the solve.
    """

    stages: NDArray[np.floating]
    iterations: int
    update_norm: float
    field_evaluations: int


def _max_abs(x: NDArray[np.floating]) -> float:
    if x.size == 0:
        return 0.0
    return float(np.max(np.abs(x)))


class ImplicitStageSolver:
    """Solve the coupled stage equations of an implicit tableau."""

    def __init__(
        self,
        tableau: Tableau,
        config: ImplicitSolverConfig | None = None,
    ) -> None:
        """
        Initialize the solver.

        Args:
            tableau: Tableau whose stage equations are solved. A tableau with
                an all-zero matrix converges in exactly one iteration.
            config: Iteration settings. Defaults to fixed-point iteration.
        """
        self.tableau = tableau
        self.config = config or ImplicitSolverConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def solve(
        self,
        field: BoundField,
        t: float,
        y: NDArray[np.floating],
        h: float,
        initial_guess: NDArray[np.floating],
    ) -> ImplicitSolveResult:
        """Solve for the stages of one step.

        Args:
            field: Vector field bound to y's shape.
            t: Step start time.
            y: Step start state.
            h: Step size (may be negative).
            initial_guess: Initial stages, shape (s, *y.shape).

        Raises:
            ValueError: If initial_guess has the wrong shape.
            NonConvergenceError: If the iteration does not converge.

        Returns:
            Converged stages and iteration statistics.
        """
        s = self.tableau.stages
        expected = (s, *field.shape)
        guess = np.asarray(initial_guess, dtype=field.dtype)
        if guess.shape != expected:
            raise ValueError(
                _GUESS_SHAPE_MSG.format(actual=guess.shape, expected=expected)
            )

        n = field.size
        y_flat = np.asarray(y, dtype=field.dtype).reshape(n)
        k0 = guess.reshape(s, n)
        evals_before = field.evaluations

        with np.errstate(over="ignore", invalid="ignore"):
            if self.config.mode is ImplicitMode.NEWTON:
                k, iterations, update = self._newton(field, t, y_flat, h, k0)
            else:
                k, iterations, update = self._fixed_point(field, t, y_flat, h, k0)

        return ImplicitSolveResult(
            stages=k.reshape(expected),
            iterations=iterations,
            update_norm=update,
            field_evaluations=field.evaluations - evals_before,
        )

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _evaluate_all(
        self,
        field: BoundField,
        t: float,
        y_flat: NDArray[np.floating],
        h: float,
        z: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Return F(Z): rows f(t + c_i h, y + Z_i), shape (s, n)."""
        k = np.empty_like(z)
        for i in range(self.tableau.stages):
            y_stage = (y_flat + z[i]).reshape(field.shape)
            k[i] = field(t + self.tableau.node(i) * h, y_stage).reshape(-1)
        return k

    def _tolerance(
        self,
        y_flat: NDArray[np.floating],
        z: NDArray[np.floating],
    ) -> float:
        scale = _max_abs(y_flat[np.newaxis, :] + z)
        return self.config.convergence_atol + self.config.convergence_rtol * scale

    def _check_finite(self, z: NDArray[np.floating], update: float, it: int) -> None:
        if not math.isfinite(update) or not np.all(np.isfinite(z)):
            raise NonConvergenceError(
                _NON_FINITE_MSG.format(it=it),
                iterations=it,
                update_norm=update if math.isfinite(update) else float("inf"),
            )

    def _cap_exceeded(self, update: float, tol: float) -> NonConvergenceError:
        cap = int(self.config.iteration_cap)
        return NonConvergenceError(
            _CAP_EXCEEDED_MSG.format(iterations=cap, update=update, tol=tol),
            iterations=cap,
            update_norm=update,
        )

    # ------------------------------------------------------------------
    # Fixed-point iteration
    # ------------------------------------------------------------------

    def _fixed_point(
        self,
        field: BoundField,
        t: float,
        y_flat: NDArray[np.floating],
        h: float,
        k0: NDArray[np.floating],
    ) -> tuple[NDArray[np.floating], int, float]:
        a = self.tableau.matrix
        z = h * (a @ k0)
        update = float("inf")
        tol = self._tolerance(y_flat, z)

        for it in range(1, int(self.config.iteration_cap) + 1):
            k = self._evaluate_all(field, t, y_flat, h, z)
            z_new = h * (a @ k)
            update = _max_abs(z_new - z)
            z = z_new
            self._check_finite(z, update, it)

            tol = self._tolerance(y_flat, z)
            if update <= tol:
                return k, it, update

        raise self._cap_exceeded(update, tol)

    # ------------------------------------------------------------------
    # Simplified Newton iteration
    # ------------------------------------------------------------------

    def _jacobian(
        self,
        field: BoundField,
        t: float,
        y_flat: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Return J = df/dy at (t, y), from the user or by forward differences."""
        y_state = y_flat.reshape(field.shape)
        if field.has_jacobian:
            return field.jacobian(t, y_state)

        n = y_flat.shape[0]
        rel = self.config.finite_difference_step
        if rel is None:
            rel = math.sqrt(float(np.finfo(np.float64).eps))

        f0 = field(t, y_state).reshape(n)
        jac = np.empty((n, n), dtype=field.dtype)
        y_pert = y_flat.copy()
        for col in range(n):
            delta = rel * max(1.0, float(abs(y_flat[col])))
            y_pert[col] = y_flat[col] + delta
            # Exact representable step.
            delta = float(y_pert[col] - y_flat[col])
            f1 = field(t, y_pert.reshape(field.shape)).reshape(n)
            jac[:, col] = (f1 - f0) / delta
            y_pert[col] = y_flat[col]
        return jac

    def _newton(
        self,
        field: BoundField,
        t: float,
        y_flat: NDArray[np.floating],
        h: float,
        k0: NDArray[np.floating],
    ) -> tuple[NDArray[np.floating], int, float]:
        a = self.tableau.matrix
        s = self.tableau.stages
        n = y_flat.shape[0]

        jac = self._jacobian(field, t, y_flat)
        iteration_matrix = np.eye(s * n, dtype=field.dtype) - h * np.kron(a, jac)
        if not np.all(np.isfinite(iteration_matrix)):
            raise NonConvergenceError(
                _SINGULAR_MSG.format(h=h), iterations=0, update_norm=float("inf")
            )
        lu_piv = lu_factor(iteration_matrix, check_finite=False)
        if np.any(np.diag(lu_piv[0]) == 0.0):
            raise NonConvergenceError(
                _SINGULAR_MSG.format(h=h), iterations=0, update_norm=float("inf")
            )

        z = h * (a @ k0)
        update = float("inf")
        tol = self._tolerance(y_flat, z)

        for it in range(1, int(self.config.iteration_cap) + 1):
            k = self._evaluate_all(field, t, y_flat, h, z)
            residual = z - h * (a @ k)
            dz = lu_solve(lu_piv, -residual.reshape(s * n), check_finite=False)
            z = z + dz.reshape(s, n)
            update = _max_abs(dz)
            self._check_finite(z, update, it)

            tol = self._tolerance(y_flat, z)
            if update <= tol:
                if update > 0.0:
                    # Stages consistent with the accepted increments.
                    k = self._evaluate_all(field, t, y_flat, h, z)
                return k, it, update

        raise self._cap_exceeded(update, tol)
