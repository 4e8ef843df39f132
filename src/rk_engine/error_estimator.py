# src/rk_engine/error_estimator.py
"""Embedded local error estimate and its scaled norm.

With primary weights b and embedded weights b*, the local error of a step is
estimated as

    e = h * sum_i (b*_i - b_i) k_i

and reduced to a scalar with per-component scaling

    norm = max_i |e_i| / (atol_i + rtol * max(|y_i|, |y_candidate_i|))

A step is acceptable when norm <= 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .config import ToleranceConfig
from .errors import raise_invalid_config

if TYPE_CHECKING:
    from .stages import StageSet
    from .tableau import Tableau


_NO_EMBEDDED_MSG = (
    "tableau '{name}' has no embedded weights; error estimation requires an "
    "embedded method"
)


@dataclass(frozen=True, slots=True)
class ErrorEstimate:
    """Local error estimate of one step attempt.

    Attributes:
        vector: Error estimate e, same shape as the state.
        norm: Scaled max-norm of e; <= 1 means within tolerance.
    """

    vector: NDArray[np.floating]
    norm: float

    @property
    def within_tolerance(self) -> bool:
        return self.norm <= 1.0


def scaled_error_norm(
    err: NDArray[np.floating],
    y: NDArray[np.floating],
    y_candidate: NDArray[np.floating],
    *,
    atol: float | NDArray[np.floating],
    rtol: float,
) -> float:
    """
    Compute the per-component scaled max-norm of an error vector.

    Args:
        err: Error estimate array.
        y: State at the start of the step.
        y_candidate: Candidate state at the end of the step.
        atol: Absolute tolerance (scalar or broadcastable array).
        rtol: Relative tolerance.

    Returns:
        Scaled error norm, or inf if it is not finite.
    """
    err_arr = np.asarray(err)
    if err_arr.size == 0:
        return 0.0

    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        scale = np.asarray(atol, dtype=np.float64) + float(rtol) * np.maximum(
            np.abs(y), np.abs(y_candidate)
        )
        abs_err = np.abs(err_arr)
        # Exact zeros are within any tolerance, including atol == 0 at y == 0.
        ratio = np.where(abs_err == 0.0, 0.0, abs_err / scale)
        v = float(np.max(ratio))

    if not np.isfinite(v):
        return float("inf")
    return v


class ErrorEstimator:
    """Embedded-method error estimator bound to a set of tolerances."""

    def __init__(self, tolerances: ToleranceConfig | None = None) -> None:
        """
        Initialize ErrorEstimator.

        Args:
            tolerances: Absolute/relative tolerances for the scaled norm.
        """
        self.tolerances = tolerances or ToleranceConfig()

    @staticmethod
    def require_embedded(tableau: Tableau) -> None:
        """Fail if tableau cannot produce an error estimate.

        Raises:
            ConfigurationError: If tableau has no embedded weights.
        """
        if not tableau.has_embedded_method:
            raise_invalid_config(
                field="tableau", detail=_NO_EMBEDDED_MSG.format(name=tableau.name)
            )

    @staticmethod
    def error_vector(
        stages: StageSet,
        h: float,
        tableau: Tableau,
    ) -> NDArray[np.floating]:
        """Return e = h * sum_i (b*_i - b_i) k_i."""
        ErrorEstimator.require_embedded(tableau)
        return h * np.tensordot(tableau.error_weights, stages.k, axes=1)

    def estimate(
        self,
        stages: StageSet,
        h: float,
        tableau: Tableau,
        y: NDArray[np.floating],
        y_candidate: NDArray[np.floating],
    ) -> ErrorEstimate:
        """Estimate the local error of a step attempt.

        Args:
            stages: Stage values of the attempt.
            h: Step size of the attempt.
            tableau: Embedded tableau.
            y: State at the start of the step.
            y_candidate: Candidate state produced by the primary weights.

        Returns:
            ErrorEstimate with vector and scaled norm.
        """
        err = self.error_vector(stages, h, tableau)
        norm = scaled_error_norm(
            err,
            y,
            y_candidate,
            atol=self.tolerances.absolute_tolerance,
            rtol=self.tolerances.relative_tolerance,
        )
        return ErrorEstimate(vector=err, norm=norm)
