# src/rk_engine/ivp_solver.py
"""Initial value problem drivers.

IVPSolver takes fixed steps; IVPEmbeddedSolver adapts the step with an
embedded error estimate. Both return a lazy Trajectory: nothing is computed
until it is iterated, and each yielded TrajectorySample is a copy the caller
owns. The first sample is always (t0, y0), and the last lands exactly on
t_end.

Stepping direction comes from sign(t_end - t0), so integrating backward in
time needs no special handling.
"""

from __future__ import annotations

import logging
import math
import warnings
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
from numpy.typing import NDArray

from .config import SolverConfig
from .controller import Rejected, StepController
from .error_estimator import ErrorEstimator
from .errors import NonConvergenceError, RKEngineError, SolverStalledError
from .field import bind_field, state_dtype
from .stages import StageEvaluator, combine

if TYPE_CHECKING:
    from .error_estimator import ErrorEstimate
    from .field import BoundField, JacobianFunction, VectorField
    from .stages import StageSet
    from .tableau import Tableau

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.floating]

_TIME_NOT_FINITE_MSG = "t0 and t_end must be finite; got t0={t0!r}, t_end={t_end!r}"
_STEP_MSG = "step size must be nonzero and finite; got {h!r}"
_MAX_STEPS_MSG = "exceeded max_steps={max_steps} before reaching t_end={t_end!r}"
_STALLED_MSG = (
    "implicit stage solve failed to converge {count} times in a row at t={t!r}"
)
_JACOBIAN_IGNORED_MSG = "Tableau '{name}' is explicit; the jacobian is ignored."
_INITIAL_STEP_CLIPPED_MSG = (
    "initial_step {h!r} exceeds max_step {max_step!r}; clipping to max_step"
)

# Relative slack (in ulps of t) within which a step is treated as landing on
# t_end, so that rounding never leaves a sliver of a step behind.
_END_SNAP_ULPS = 4.0


# ----------------------------------------------------------------------
# Trajectory containers
# ----------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SolverState:
    """Accepted integration state.

    Attributes:
        t: Time of the state.
        y: State array (private to the solve).
        h: Step size proposed for the next attempt (signed).
    """

    t: float
    y: FloatArray
    h: float


class TrajectorySample(NamedTuple):
    """One accepted point of a trajectory."""

    t: float
    y: FloatArray


@dataclass(slots=True)
class SolveStatistics:
    """Counters accumulated while a trajectory is iterated.

    Attributes:
        accepted: Accepted steps.
        rejected: Rejected attempts, including non-converged ones.
        nonconverged: Attempts whose implicit stage solve did not converge.
        field_evaluations: Vector field calls made by the solve.
        implicit_iterations: Implicit stage iterations over accepted and
            rejected attempts.
    """

    accepted: int = 0
    rejected: int = 0
    nonconverged: int = 0
    field_evaluations: int = 0
    implicit_iterations: int = 0

    @property
    def attempts(self) -> int:
        return self.accepted + self.rejected


class Trajectory(Iterator[TrajectorySample]):
    """Single-use lazy iterator over the accepted samples of one solve.

    Attributes:
        stats: Counters for the samples produced so far.
        state: Current accepted solver state.
        last: Last sample yielded, or None before iteration starts.
        last_error: Error estimate of the most recent attempt (embedded
            solves only).
    """

    __slots__ = ("_samples", "last", "last_error", "state", "stats")

    def __init__(self, state: SolverState) -> None:
        """
        Initialize a trajectory at its starting state.

        Args:
            state: Initial state (t0, y0, h0).
        """
        self.state = state
        self.stats = SolveStatistics()
        self.last: TrajectorySample | None = None
        self.last_error: ErrorEstimate | None = None
        self._samples: Iterator[TrajectorySample] = iter(())

    def _attach(self, samples: Iterator[TrajectorySample]) -> Trajectory:
        self._samples = samples
        return self

    @property
    def next_step(self) -> float:
        """Step size that the next attempt will use."""
        return self.state.h

    def __iter__(self) -> Trajectory:
        return self

    def __next__(self) -> TrajectorySample:
        sample = next(self._samples)
        self.last = sample
        return sample

    def collect(self) -> tuple[FloatArray, FloatArray]:
        """Consume the remaining samples into arrays.

        Returns:
            times with shape (n,) and states with shape (n, *y.shape).
        """
        samples = list(self)
        if not samples:
            y = self.state.y
            return (
                np.empty(0, dtype=np.float64),
                np.empty((0, *y.shape), dtype=y.dtype),
            )
        times = np.array([s.t for s in samples], dtype=np.float64)
        states = np.stack([s.y for s in samples])
        return times, states


# ----------------------------------------------------------------------
# Shared helpers
# ----------------------------------------------------------------------


def _as_state(y0: object) -> FloatArray:
    arr = np.asarray(y0)
    return np.array(arr, dtype=state_dtype(arr), copy=True)


def _check_times(t0: float, t_end: float) -> tuple[float, float]:
    t0 = float(t0)
    t_end = float(t_end)
    if not (math.isfinite(t0) and math.isfinite(t_end)):
        raise ValueError(_TIME_NOT_FINITE_MSG.format(t0=t0, t_end=t_end))
    return t0, t_end


def _check_step(h: float) -> float:
    h = float(h)
    if h == 0.0 or not math.isfinite(h):
        raise ValueError(_STEP_MSG.format(h=h))
    return h


def _clip_to_end(
    t: float,
    t_end: float,
    h: float,
    *,
    min_step: float = 0.0,
) -> tuple[float, bool]:
    """
    Cap a signed step so it does not pass t_end.

    Args:
        t: Current time.
        t_end: Target time.
        h: Proposed signed step.
        min_step: Steps that would leave less than this before t_end are
            stretched to reach it.

    Returns:
        (h_step, final): the step to attempt, and whether it lands on t_end.
    """
    remaining = t_end - t
    slack = _END_SNAP_ULPS * float(np.spacing(max(abs(t), abs(t_end))))
    if abs(h) >= abs(remaining) - max(slack, min_step):
        return remaining, True
    return h, False


# ----------------------------------------------------------------------
# Solvers
# ----------------------------------------------------------------------


class _RungeKuttaDriver:
    """Shared plumbing: field binding, stage evaluation, warm starts."""

    def __init__(
        self,
        field: VectorField | BoundField,
        tableau: Tableau,
        config: SolverConfig | None = None,
        *,
        jacobian: JacobianFunction | None = None,
    ) -> None:
        self.field = field
        self.tableau = tableau
        self.config = config or SolverConfig()
        self.jacobian = jacobian

        if jacobian is not None and tableau.is_explicit:
            warnings.warn(
                _JACOBIAN_IGNORED_MSG.format(name=tableau.name),
                RuntimeWarning,
                stacklevel=3,
            )
        self._evaluator = StageEvaluator(tableau, self.config.implicit)

    def _bind(self, y: FloatArray) -> BoundField:
        return bind_field(self.field, y, jacobian=self.jacobian)

    def _warm_start(self, previous: StageSet | None) -> FloatArray | None:
        if previous is None or not self.tableau.is_implicit:
            return None
        if not self.config.implicit.warm_start:
            return None
        return previous.k

    def _attempt(
        self,
        field: BoundField,
        t: float,
        y: FloatArray,
        h: float,
        previous: StageSet | None = None,
    ) -> tuple[FloatArray, StageSet]:
        stages = self._evaluator.evaluate(
            field, t, y, h, initial_guess=self._warm_start(previous)
        )
        return combine(y, h, self.tableau.weights, stages), stages

    def step(
        self,
        t: float,
        y: FloatArray,
        h: float,
    ) -> tuple[FloatArray, StageSet]:
        """Take one step of size h from (t, y).

        Args:
            t: Step start time.
            y: Step start state (not modified).
            h: Step size; negative steps integrate backward.

        Raises:
            ValueError: If h is zero or not finite.

        Returns:
            (y_next, stages) for the step.
        """
        h = _check_step(h)
        y_arr = _as_state(y)
        return self._attempt(self._bind(y_arr), float(t), y_arr, h)


class IVPSolver(_RungeKuttaDriver):
    """Fixed-step Runge-Kutta integrator."""

    def __init__(
        self,
        field: VectorField | BoundField,
        tableau: Tableau,
        config: SolverConfig | None = None,
        *,
        jacobian: JacobianFunction | None = None,
    ) -> None:
        """
        Initialize IVPSolver.

        Args:
            field: Vector field f(t, y).
            tableau: Method coefficients; explicit or implicit.
            config: Solver configuration. Only the implicit settings and
                max_steps apply to fixed stepping.
            jacobian: Optional Jacobian df/dy for Newton stage solves.
        """
        super().__init__(field, tableau, config, jacobian=jacobian)

    def solve(
        self,
        t0: float,
        y0: FloatArray,
        t_end: float,
        h: float,
    ) -> Trajectory:
        """
        Integrate from (t0, y0) to t_end with steps of magnitude |h|.

        The last step is shortened to land exactly on t_end.

        Args:
            t0: Initial time.
            y0: Initial state.
            t_end: Final time (may be before t0).
            h: Step size; only its magnitude is used.

        Raises:
            ValueError: If the times are not finite or h is zero/not finite.

        Returns:
            Lazy trajectory starting with (t0, y0).
        """
        t0, t_end = _check_times(t0, t_end)
        h = abs(_check_step(h))
        if t_end < t0:
            h = -h

        y = _as_state(y0)
        trajectory = Trajectory(SolverState(t=t0, y=y, h=h))
        return trajectory._attach(self._fixed_steps(trajectory, t_end))

    def solve_to(
        self,
        t0: float,
        y0: FloatArray,
        t_end: float,
        h: float,
    ) -> TrajectorySample:
        """Integrate to t_end and return only the final sample."""
        trajectory = self.solve(t0, y0, t_end, h)
        for _ in trajectory:
            pass
        if trajectory.last is None:
            msg = "trajectory produced no samples"
            raise RuntimeError(msg)
        return trajectory.last

    def _fixed_steps(
        self,
        trajectory: Trajectory,
        t_end: float,
    ) -> Iterator[TrajectorySample]:
        state = trajectory.state
        stats = trajectory.stats
        field = self._bind(state.y)
        evals_start = field.evaluations

        yield TrajectorySample(state.t, state.y.copy())
        if state.t == t_end:
            return

        previous: StageSet | None = None
        try:
            while True:
                if stats.attempts >= self.config.max_steps:
                    raise SolverStalledError(
                        _MAX_STEPS_MSG.format(
                            max_steps=self.config.max_steps, t_end=t_end
                        )
                    )
                h_step, final = _clip_to_end(state.t, t_end, state.h)
                y_next, previous = self._attempt(
                    field, state.t, state.y, h_step, previous
                )
                stats.accepted += 1
                stats.implicit_iterations += previous.iterations
                stats.field_evaluations = field.evaluations - evals_start

                t_next = t_end if final else state.t + h_step
                state = SolverState(t=t_next, y=y_next, h=state.h)
                trajectory.state = state
                yield TrajectorySample(state.t, state.y.copy())
                if final:
                    return
        except RKEngineError as err:
            stats.field_evaluations = field.evaluations - evals_start
            err.at_state(state.t, state.y)
            raise


class IVPEmbeddedSolver(_RungeKuttaDriver):
    """Adaptive Runge-Kutta integrator driven by an embedded error estimate."""

    def __init__(
        self,
        field: VectorField | BoundField,
        tableau: Tableau,
        config: SolverConfig | None = None,
        *,
        jacobian: JacobianFunction | None = None,
    ) -> None:
        """
        Initialize IVPEmbeddedSolver.

        Args:
            field: Vector field f(t, y).
            tableau: Method coefficients with embedded weights.
            config: Solver configuration.
            jacobian: Optional Jacobian df/dy for Newton stage solves.

        Raises:
            ConfigurationError: If the tableau has no embedded weights.
        """
        ErrorEstimator.require_embedded(tableau)
        super().__init__(field, tableau, config, jacobian=jacobian)
        self.estimator = ErrorEstimator(self.config.tolerances)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def solve(self, t0: float, y0: FloatArray, t_end: float) -> Trajectory:
        """
        Integrate adaptively from (t0, y0) to t_end.

        Args:
            t0: Initial time.
            y0: Initial state.
            t_end: Final time (may be before t0).

        Raises:
            ValueError: If the times are not finite.

        Returns:
            Lazy trajectory starting with (t0, y0), one sample per accepted
            step. The starting step is resolved on the first iteration.
        """
        t0, t_end = _check_times(t0, t_end)
        y = _as_state(y0)
        trajectory = Trajectory(SolverState(t=t0, y=y, h=0.0))
        return trajectory._attach(self._adaptive_steps(trajectory, t_end))

    def solve_to(self, t0: float, y0: FloatArray, t_end: float) -> TrajectorySample:
        """Integrate to t_end and return only the final sample."""
        trajectory = self.solve(t0, y0, t_end)
        for _ in trajectory:
            pass
        if trajectory.last is None:
            msg = "trajectory produced no samples"
            raise RuntimeError(msg)
        return trajectory.last

    def initial_step(
        self,
        field: BoundField,
        t0: float,
        y0: FloatArray,
        t_end: float,
    ) -> float:
        """
        Choose the signed starting step.

        Uses config.controller.initial_step when set. Otherwise estimates one
        from the size of f and its change over a trial Euler step (Hairer,
        Norsett and Wanner, Solving ODEs I, II.4), using the RMS norm scaled
        by the tolerances.

        Args:
            field: Bound vector field.
            t0: Initial time.
            y0: Initial state.
            t_end: Final time.

        Returns:
            Signed step pointing from t0 toward t_end, clipped to max_step and
            to the length of the interval.
        """
        ctrl = self.config.controller
        direction = 1.0 if t_end >= t0 else -1.0
        span = abs(t_end - t0)

        if ctrl.initial_step is not None:
            h = float(ctrl.initial_step)
            if h > ctrl.max_step:
                warnings.warn(
                    _INITIAL_STEP_CLIPPED_MSG.format(h=h, max_step=ctrl.max_step),
                    RuntimeWarning,
                    stacklevel=2,
                )
        else:
            h = self._estimate_initial_step(field, t0, y0, direction)

        h = min(h, ctrl.max_step, span)
        h = max(h, min(ctrl.min_step, span))
        return math.copysign(h, direction)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _estimate_initial_step(
        self,
        field: BoundField,
        t0: float,
        y0: FloatArray,
        direction: float,
    ) -> float:
        tol = self.config.tolerances
        order = self.tableau.order
        fallback = 1e-6

        atol = np.asarray(tol.absolute_tolerance, dtype=np.float64)
        scale = atol + tol.relative_tolerance * np.abs(y0)

        def scaled_rms(x: FloatArray) -> float:
            # Components with zero scale only count when x is nonzero there.
            if x.size == 0:
                return 0.0
            with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                ratio = np.where(x == 0.0, 0.0, x / scale)
                return float(np.sqrt(np.mean(np.square(ratio))))

        f0 = field(t0, y0)
        if not np.all(np.isfinite(f0)):
            return fallback

        d0 = scaled_rms(y0)
        d1 = scaled_rms(f0)
        if d0 < 1e-5 or d1 < 1e-5:
            h0 = fallback
        else:
            h0 = 0.01 * d0 / d1
        if not math.isfinite(h0) or h0 <= 0.0:
            h0 = fallback

        y1 = y0 + direction * h0 * f0
        f1 = field(t0 + direction * h0, y1)
        d2 = scaled_rms(f1 - f0) / h0

        dmax = max(d1, d2)
        if dmax <= 1e-15:
            h1 = max(fallback, h0 * 1e-3)
        else:
            h1 = (0.01 / dmax) ** (1.0 / (order + 1))
        h = min(100.0 * h0, h1)

        if not math.isfinite(h) or h <= 0.0:
            return h0
        return h

    def _adaptive_steps(  # noqa: C901
        self,
        trajectory: Trajectory,
        t_end: float,
    ) -> Iterator[TrajectorySample]:
        cfg = self.config
        max_stalls = int(cfg.implicit.max_consecutive_nonconvergence)
        controller = StepController(cfg.controller, order=self.tableau.order)
        stats = trajectory.stats
        state = trajectory.state
        field = self._bind(state.y)
        evals_start = field.evaluations

        yield TrajectorySample(state.t, state.y.copy())
        if state.t == t_end:
            return

        previous: StageSet | None = None
        stalls = 0
        try:
            h0 = self.initial_step(field, state.t, state.y, t_end)
            state = SolverState(t=state.t, y=state.y, h=h0)
            trajectory.state = state
            h = h0

            while True:
                if stats.attempts >= cfg.max_steps:
                    raise SolverStalledError(
                        _MAX_STEPS_MSG.format(max_steps=cfg.max_steps, t_end=t_end)
                    )
                h_try, final = _clip_to_end(
                    state.t, t_end, h, min_step=cfg.controller.min_step
                )
                if not final:
                    # Accepted proposals are floor-checked here, after their
                    # step has been yielded.
                    controller.check_floor(h_try)

                try:
                    y_new, stages = self._attempt(
                        field, state.t, state.y, h_try, previous
                    )
                except NonConvergenceError as exc:
                    stats.rejected += 1
                    stats.nonconverged += 1
                    stats.implicit_iterations += exc.iterations
                    stats.field_evaluations = field.evaluations - evals_start
                    stalls += 1
                    logger.debug(
                        "stage solve did not converge at t=%.6g h=%.3e (%d in a row)",
                        state.t,
                        h_try,
                        stalls,
                    )
                    if stalls > max_stalls:
                        raise SolverStalledError(
                            _STALLED_MSG.format(count=stalls, t=state.t)
                        ) from exc
                    previous = None
                    h = controller.reject_nonconvergence(h_try).h_retry
                    continue

                stalls = 0
                stats.implicit_iterations += stages.iterations
                stats.field_evaluations = field.evaluations - evals_start

                estimate = self.estimator.estimate(
                    stages, h_try, self.tableau, state.y, y_new
                )
                trajectory.last_error = estimate
                decision = controller.decide(h_try, estimate.norm)

                if isinstance(decision, Rejected):
                    stats.rejected += 1
                    logger.debug(
                        "rejected step at t=%.6g h=%.3e norm=%.3e retry h=%.3e",
                        state.t,
                        h_try,
                        estimate.norm,
                        decision.h_retry,
                    )
                    h = decision.h_retry
                    continue

                stats.accepted += 1
                t_new = t_end if final else state.t + h_try
                state = SolverState(t=t_new, y=y_new, h=decision.h_next)
                trajectory.state = state
                previous = stages
                yield TrajectorySample(state.t, state.y.copy())
                if final:
                    return
                h = decision.h_next
        except RKEngineError as err:
            stats.field_evaluations = field.evaluations - evals_start
            err.at_state(state.t, state.y)
            raise
