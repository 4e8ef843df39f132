# src/rk_engine/config.py
"""Immutable configuration objects for rk_engine solvers.

Configuration is threaded explicitly through solver constructors; there is no
module-level tolerance state. All objects are frozen and validated on
construction, so an invalid combination fails with ConfigurationError before
any step is taken.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import StrEnum

import numpy as np
from numpy.typing import NDArray

from .errors import raise_invalid_config


class ImplicitMode(StrEnum):
    """Iteration scheme for implicit stage equations."""

    FIXED_POINT = "fixed-point"
    NEWTON = "newton"


def _require_finite_nonneg(name: str, value: float) -> None:
    if not math.isfinite(value) or value < 0.0:
        raise_invalid_config(field=name, detail=f"must be finite and >= 0; got {value}")


@dataclass(slots=True, frozen=True)
class ToleranceConfig:
    """Error tolerances for adaptive stepping.

    Attributes:
        absolute_tolerance: Absolute tolerance (scalar or per-component array).
        relative_tolerance: Relative tolerance.
    """

    absolute_tolerance: float | NDArray[np.floating] = 1e-6
    relative_tolerance: float = 1e-3

    def __post_init__(self) -> None:
        _require_finite_nonneg("relative_tolerance", float(self.relative_tolerance))

        atol = np.asarray(self.absolute_tolerance, dtype=np.float64)
        if not np.all(np.isfinite(atol)) or np.any(atol < 0.0):
            raise_invalid_config(
                field="absolute_tolerance",
                detail="must be finite and >= 0",
            )
        if self.relative_tolerance == 0.0 and np.any(atol == 0.0):
            raise_invalid_config(
                field="absolute_tolerance",
                detail="absolute and relative tolerance cannot both be zero",
            )
        if atol.ndim > 0:
            atol = atol.copy()
            atol.flags.writeable = False
            object.__setattr__(self, "absolute_tolerance", atol)
        else:
            object.__setattr__(self, "absolute_tolerance", float(atol))


@dataclass(slots=True, frozen=True)
class StepControllerConfig:
    """Configuration for adaptive step-size control.

    Attributes:
        initial_step: Initial step size magnitude. If None, a starting step is
            estimated from the field and tolerances.
        min_step: Minimum allowed step magnitude; proposals below it are fatal.
        max_step: Maximum allowed step magnitude.
        safety_factor: Safety factor applied to the optimal step estimate.
        min_growth_factor: Smallest multiplier applied after an accepted step.
        max_growth_factor: Largest multiplier applied after an accepted step.
        max_shrink_factor: Smallest multiplier applied after a rejected step.
        nonconvergence_shrink: Multiplier applied after an implicit solve fails
            to converge. Defaults to max_shrink_factor.
    """

    initial_step: float | None = None
    min_step: float = 1e-12
    max_step: float = float("inf")
    safety_factor: float = 0.9
    min_growth_factor: float = 0.2
    max_growth_factor: float = 5.0
    max_shrink_factor: float = 0.2
    nonconvergence_shrink: float | None = None

    def __post_init__(self) -> None:
        if self.initial_step is not None and (
            not math.isfinite(self.initial_step) or self.initial_step <= 0.0
        ):
            raise_invalid_config(
                field="initial_step",
                detail=f"must be finite and > 0; got {self.initial_step}",
            )
        _require_finite_nonneg("min_step", self.min_step)
        if not self.max_step > 0.0:
            raise_invalid_config(
                field="max_step", detail=f"must be > 0; got {self.max_step}"
            )
        if self.min_step > self.max_step:
            raise_invalid_config(
                field="min_step",
                detail=f"min_step {self.min_step} exceeds max_step {self.max_step}",
            )
        if not 0.0 < self.safety_factor <= 1.0:
            raise_invalid_config(
                field="safety_factor",
                detail=f"must be in (0, 1]; got {self.safety_factor}",
            )
        if not 0.0 < self.max_shrink_factor < 1.0:
            raise_invalid_config(
                field="max_shrink_factor",
                detail=f"must be in (0, 1); got {self.max_shrink_factor}",
            )
        if not (
            math.isfinite(self.max_growth_factor) and self.max_growth_factor >= 1.0
        ):
            raise_invalid_config(
                field="max_growth_factor",
                detail=f"must be finite and >= 1; got {self.max_growth_factor}",
            )
        if not 0.0 < self.min_growth_factor <= self.max_growth_factor:
            raise_invalid_config(
                field="min_growth_factor",
                detail=(
                    f"must be in (0, max_growth_factor]; got {self.min_growth_factor}"
                ),
            )
        if self.nonconvergence_shrink is not None and not (
            0.0 < self.nonconvergence_shrink < 1.0
        ):
            raise_invalid_config(
                field="nonconvergence_shrink",
                detail=f"must be in (0, 1); got {self.nonconvergence_shrink}",
            )

    @property
    def effective_nonconvergence_shrink(self) -> float:
        if self.nonconvergence_shrink is None:
            return self.max_shrink_factor
        return self.nonconvergence_shrink


@dataclass(slots=True, frozen=True)
class ImplicitSolverConfig:
    """Configuration for implicit stage solves.

    Attributes:
        mode: Fixed-point substitution or simplified Newton iteration.
        iteration_cap: Maximum number of iterations per stage solve.
        convergence_atol: Absolute tolerance on the stage update max-norm.
        convergence_rtol: Relative tolerance on the stage update max-norm.
        max_consecutive_nonconvergence: Consecutive failed stage solves the
            adaptive loop tolerates before giving up.
        finite_difference_step: Relative perturbation for the finite-difference
            Jacobian (Newton mode without a user Jacobian). If None, uses
            sqrt(machine epsilon).
        warm_start: Seed each implicit solve with the previous accepted stages
            instead of f(t, y).
    """

    mode: ImplicitMode = ImplicitMode.FIXED_POINT
    iteration_cap: int = 50
    convergence_atol: float = 1e-10
    convergence_rtol: float = 1e-8
    max_consecutive_nonconvergence: int = 10
    finite_difference_step: float | None = None
    warm_start: bool = False

    def __post_init__(self) -> None:
        if self.mode not in tuple(ImplicitMode):
            raise_invalid_config(field="mode", detail=f"unknown mode {self.mode!r}")
        object.__setattr__(self, "mode", ImplicitMode(self.mode))

        if int(self.iteration_cap) < 1:
            raise_invalid_config(
                field="iteration_cap", detail=f"must be >= 1; got {self.iteration_cap}"
            )
        _require_finite_nonneg("convergence_atol", self.convergence_atol)
        _require_finite_nonneg("convergence_rtol", self.convergence_rtol)
        if self.convergence_atol == 0.0 and self.convergence_rtol == 0.0:
            raise_invalid_config(
                field="convergence_atol",
                detail="absolute and relative convergence tolerance cannot both be 0",
            )
        if int(self.max_consecutive_nonconvergence) < 0:
            raise_invalid_config(
                field="max_consecutive_nonconvergence",
                detail=f"must be >= 0; got {self.max_consecutive_nonconvergence}",
            )
        if self.finite_difference_step is not None and not (
            math.isfinite(self.finite_difference_step)
            and self.finite_difference_step > 0.0
        ):
            raise_invalid_config(
                field="finite_difference_step",
                detail=f"must be finite and > 0; got {self.finite_difference_step}",
            )


@dataclass(slots=True, frozen=True)
class SolverConfig:
    """Top-level configuration passed to IVPSolver / IVPEmbeddedSolver.

    Attributes:
        tolerances: Error tolerances for the embedded error estimate.
        controller: Step-size controller settings.
        implicit: Implicit stage solver settings.
        max_steps: Maximum number of step attempts (accepted + rejected) per solve.
    """

    tolerances: ToleranceConfig = field(default_factory=ToleranceConfig)
    controller: StepControllerConfig = field(default_factory=StepControllerConfig)
    implicit: ImplicitSolverConfig = field(default_factory=ImplicitSolverConfig)
    max_steps: int = 1_000_000

    def __post_init__(self) -> None:
        if int(self.max_steps) < 1:
            raise_invalid_config(
                field="max_steps", detail=f"must be >= 1; got {self.max_steps}"
            )
