# src/rk_engine/controller.py
"""Adaptive step-size controller.

Each attempt starts in PROPOSING and ends in ACCEPTED or REJECTED:

    norm <= 1:  Accepted, h_next = h * clamp(safety * norm^(-1/(p+1)),
                                             min_growth, max_growth)
    norm > 1:   Rejected, h_retry = h * clamp(safety * norm^(-1/(p+1)),
                                              max_shrink, 1)

p is the order of the method's primary weights. Proposals are clipped to
max_step, never grow on rejection, and keep the sign of h so backward
integration works unchanged. A retry below min_step raises
StepSizeUnderflowError at once. An accepted proposal below min_step is
returned as is; check_floor raises when the next attempt is set up, so the
accepted step is kept.

The controller keeps no memory between attempts beyond the h it is handed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum
from typing import Literal, TypeAlias

from .config import StepControllerConfig
from .errors import StepSizeUnderflowError, raise_invalid_config

_UNDERFLOW_MSG = "step size {h:.3e} fell below min_step {min_step:.3e}"
_ORDER_MSG = "order must be a positive integer; got {order}"
_ZERO_STEP_MSG = "step size must be nonzero and finite; got {h}"

RejectReason = Literal["error", "nonconvergence"]


class ControllerState(StrEnum):
    """State of the controller for the current attempt."""

    PROPOSING = "proposing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class Accepted:
    """The attempt was within tolerance.

    Attributes:
        h: Step size that was accepted.
        h_next: Proposed step size for the next attempt.
        norm: Scaled error norm of the attempt.
    """

    h: float
    h_next: float
    norm: float


@dataclass(frozen=True, slots=True)
class Rejected:
    """The attempt must be retried from the same state.

    Attributes:
        h: Step size that was rejected.
        h_retry: Smaller step size for the retry.
        norm: Scaled error norm of the attempt (inf for non-convergence).
        reason: "error" or "nonconvergence".
    """

    h: float
    h_retry: float
    norm: float
    reason: RejectReason = "error"


StepDecision: TypeAlias = Accepted | Rejected


class StepController:
    """Accept/reject decisions and step-size proposals for embedded methods."""

    def __init__(
        self,
        config: StepControllerConfig | None = None,
        *,
        order: int,
    ) -> None:
        """
        Initialize StepController.

        Args:
            config: Controller settings.
            order: Order p of the method; the update exponent is 1/(p+1).
        """
        if int(order) != order or int(order) < 1:
            raise_invalid_config(field="order", detail=_ORDER_MSG.format(order=order))
        self.config = config or StepControllerConfig()
        self.order = int(order)
        self.exponent = 1.0 / float(self.order + 1)
        self.state = ControllerState.PROPOSING

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _raw_factor(self, norm: float) -> float:
        return self.config.safety_factor * norm ** (-self.exponent)

    def clip(self, h: float) -> float:
        """Clip |h| to max_step, keeping the sign."""
        if abs(h) > self.config.max_step:
            return math.copysign(self.config.max_step, h)
        return h

    def check_floor(self, h_new: float) -> float:
        """Return h_new, or raise StepSizeUnderflowError if |h_new| < min_step."""
        if abs(h_new) < self.config.min_step:
            raise StepSizeUnderflowError(
                _UNDERFLOW_MSG.format(h=abs(h_new), min_step=self.config.min_step),
                h=h_new,
                min_step=self.config.min_step,
            )
        return h_new

    @staticmethod
    def _check_step(h: float) -> None:
        if h == 0.0 or not math.isfinite(h):
            raise ValueError(_ZERO_STEP_MSG.format(h=h))

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def growth_factor(self, norm: float) -> float:
        """Return the step multiplier applied after an accepted attempt."""
        cfg = self.config
        if norm <= 0.0:
            return cfg.max_growth_factor
        fac = max(cfg.min_growth_factor, self._raw_factor(norm))
        return min(cfg.max_growth_factor, fac)

    def shrink_factor(self, norm: float) -> float:
        """Return the step multiplier applied after a rejected attempt."""
        cfg = self.config
        if not math.isfinite(norm):
            return cfg.max_shrink_factor
        return min(1.0, max(cfg.max_shrink_factor, self._raw_factor(norm)))

    def decide(self, h: float, norm: float) -> StepDecision:
        """Accept or reject an attempt of size h with scaled error norm.

        Args:
            h: Step size of the attempt (sign gives direction).
            norm: Scaled error norm of the attempt.

        Raises:
            StepSizeUnderflowError: If a rejection's retry step is below
                min_step.

        Returns:
            Accepted or Rejected decision.
        """
        self._check_step(h)
        self.state = ControllerState.PROPOSING

        if norm <= 1.0:
            h_next = self.clip(h * self.growth_factor(norm))
            self.state = ControllerState.ACCEPTED
            return Accepted(h=h, h_next=h_next, norm=float(norm))

        h_retry = self.check_floor(self.clip(h * self.shrink_factor(norm)))
        self.state = ControllerState.REJECTED
        return Rejected(h=h, h_retry=h_retry, norm=float(norm))

    def reject_nonconvergence(self, h: float) -> Rejected:
        """Reject an attempt whose implicit stage solve did not converge.

        Args:
            h: Step size of the attempt.

        Raises:
            StepSizeUnderflowError: If the shrunken step is below min_step.

        Returns:
            Rejected decision with reason "nonconvergence".
        """
        self._check_step(h)
        self.state = ControllerState.PROPOSING
        shrink = self.config.effective_nonconvergence_shrink
        h_retry = self.check_floor(self.clip(h * shrink))
        self.state = ControllerState.REJECTED
        return Rejected(
            h=h, h_retry=h_retry, norm=float("inf"), reason="nonconvergence"
        )
