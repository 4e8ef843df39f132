# src/rk_engine/errors.py
"""Error types raised by rk_engine.

The taxonomy separates what is fatal from what the adaptive loop may recover
from:

- ConfigurationError: malformed tableau or inconsistent configuration. Raised
  at construction time, before any trajectory is produced.
- FieldEvaluationError: the user vector field failed for a given input. Never
  retried.
- NonConvergenceError: an implicit stage solve did not converge within its
  iteration cap. The embedded solver treats it as a rejected step.
- StepSizeUnderflowError: the controller proposed a step below the floor.
- SolverStalledError: repeated non-convergence or the step budget ran out.

Errors raised mid-integration carry the time and state of the last accepted
step, so callers holding the partial trajectory know where it stopped.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray


class ErrorCode(StrEnum):
    """Machine-readable classification for rk_engine failures."""

    INVALID_TABLEAU = "invalid_tableau"
    INVALID_CONFIG = "invalid_config"
    FIELD_EVALUATION = "field_evaluation"
    NON_CONVERGENCE = "non_convergence"
    STEP_SIZE_UNDERFLOW = "step_size_underflow"
    SOLVER_STALLED = "solver_stalled"


class RKEngineError(Exception):
    """Base exception for rk_engine errors."""

    default_code: ErrorCode | None = None

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        t: float | None = None,
        y: NDArray[np.floating] | None = None,
    ) -> None:
        """
        Initialize an RKEngineError.

        Args:
            message: Human-readable error message.
            code: Optional machine-readable error code. Defaults to the class code.
            t: Time of the last accepted state, if integration had started.
            y: State at the last accepted step, if integration had started.
        """
        super().__init__(message)
        self.code: ErrorCode | None = code if code is not None else self.default_code
        self.t = t
        self.y = y

    def at_state(self, t: float, y: NDArray[np.floating]) -> RKEngineError:
        """Attach the last accepted (t, y) to this error and return it.

        Args:
            t: Time of the last accepted state.
            y: Last accepted state.

        Returns:
            The same error instance.
        """
        self.t = float(t)
        self.y = y.copy()
        return self


class ConfigurationError(RKEngineError, ValueError):
    """Raised when a tableau or solver configuration is invalid."""

    default_code = ErrorCode.INVALID_CONFIG


class FieldEvaluationError(RKEngineError, ValueError):
    """Raised when the vector field fails or returns a malformed value."""

    default_code = ErrorCode.FIELD_EVALUATION


class NonConvergenceError(RKEngineError, ArithmeticError):
    """Raised when an implicit stage solve exceeds its iteration cap."""

    default_code = ErrorCode.NON_CONVERGENCE

    def __init__(
        self,
        message: str,
        *,
        iterations: int,
        update_norm: float,
    ) -> None:
        """
        Initialize a NonConvergenceError.

        Args:
            message: Human-readable error message.
            iterations: Iterations performed before giving up.
            update_norm: Max-norm of the last stage update.
        """
        super().__init__(message)
        self.iterations = int(iterations)
        self.update_norm = float(update_norm)


class StepSizeUnderflowError(RKEngineError, ArithmeticError):
    """Raised when the proposed step size falls below the configured minimum."""

    default_code = ErrorCode.STEP_SIZE_UNDERFLOW

    def __init__(self, message: str, *, h: float, min_step: float) -> None:
        """
        Initialize a StepSizeUnderflowError.

        Args:
            message: Human-readable error message.
            h: The rejected step size proposal.
            min_step: The configured floor.
        """
        super().__init__(message)
        self.h = float(h)
        self.min_step = float(min_step)


class SolverStalledError(RKEngineError, RuntimeError):
    """Raised when integration cannot make progress."""

    default_code = ErrorCode.SOLVER_STALLED


def raise_invalid_tableau(detail: str) -> None:
    """Raise a standardized ConfigurationError for a malformed tableau.

    Args:
        detail: What is wrong with the coefficients.

    Raises:
        ConfigurationError: Always.
    """
    msg = f"Invalid Butcher tableau: {detail}"
    raise ConfigurationError(msg, code=ErrorCode.INVALID_TABLEAU)


def raise_invalid_config(*, field: str, detail: str) -> None:
    """Raise a standardized ConfigurationError for a bad option.

    Args:
        field: Name of the offending option.
        detail: Human-readable reason.

    Raises:
        ConfigurationError: Always.
    """
    msg = f"Invalid solver configuration for '{field}': {detail}"
    raise ConfigurationError(msg, code=ErrorCode.INVALID_CONFIG)
