# src/rk_engine/field.py
"""Vector field calling convention.

A vector field is a pure function f(t, y) -> dy/dt over NumPy state arrays of
any shape. Every call made by the stepping engine goes through BoundField,
which is the single boundary where:

- results are converted to arrays of the state's shape and dtype,
- failures inside user code surface as FieldEvaluationError (never as a
  convergence failure, never retried),
- field evaluations are counted for solve statistics.
"""

from __future__ import annotations

import warnings
from collections.abc import Callable
from typing import TypeAlias

import numpy as np
from numpy.typing import NDArray

from .errors import FieldEvaluationError

VectorField: TypeAlias = Callable[[float, NDArray[np.floating]], NDArray[np.floating]]
JacobianFunction: TypeAlias = Callable[
    [float, NDArray[np.floating]], NDArray[np.floating]
]

_FIELD_FAILED_MSG = "vector field raised {kind} at t={t!r}: {err}"
_FIELD_SHAPE_MSG = "vector field returned shape {actual}; expected {expected}"
_JACOBIAN_FAILED_MSG = "jacobian raised {kind} at t={t!r}: {err}"
_JACOBIAN_SHAPE_MSG = "jacobian returned shape {actual}; expected ({n}, {n})"
_BOUND_JACOBIAN_IGNORED_MSG = (
    "field is already bound; the jacobian passed alongside it is ignored. "
    "Pass the jacobian to BoundField instead."
)


def state_dtype(y: NDArray[np.generic]) -> np.dtype:
    """Return the floating dtype used to carry a state like y."""
    return np.result_type(y.dtype, np.float64)


class BoundField:
    """A vector field bound to the shape and dtype of one solve's state."""

    __slots__ = ("_field", "_jacobian", "dtype", "evaluations", "shape")

    def __init__(
        self,
        field: VectorField,
        template: NDArray[np.floating],
        *,
        jacobian: JacobianFunction | None = None,
    ) -> None:
        """
        Bind a field to a state template.

        Args:
            field: User vector field f(t, y).
            template: Array with the state's shape and dtype.
            jacobian: Optional user Jacobian df/dy(t, y) over the flattened state.
        """
        self._field = field
        self._jacobian = jacobian
        self.shape: tuple[int, ...] = tuple(template.shape)
        self.dtype = state_dtype(template)
        self.evaluations = 0

    @property
    def size(self) -> int:
        return int(np.prod(self.shape, dtype=np.int64))

    @property
    def has_jacobian(self) -> bool:
        return self._jacobian is not None

    def __call__(self, t: float, y: NDArray[np.floating]) -> NDArray[np.floating]:
        """Evaluate f(t, y) with shape enforcement.

        Args:
            t: Time.
            y: State.

        Raises:
            FieldEvaluationError: If the field raises or returns the wrong shape.

        Returns:
            Derivative array with the bound shape and dtype.
        """
        self.evaluations += 1
        try:
            out = self._field(float(t), y)
        except FieldEvaluationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise FieldEvaluationError(
                _FIELD_FAILED_MSG.format(kind=type(exc).__name__, t=t, err=exc)
            ) from exc

        f = np.asarray(out, dtype=self.dtype)
        if f.shape != self.shape:
            raise FieldEvaluationError(
                _FIELD_SHAPE_MSG.format(actual=f.shape, expected=self.shape)
            )
        return f

    def jacobian(self, t: float, y: NDArray[np.floating]) -> NDArray[np.floating]:
        """Evaluate the user Jacobian as an (n, n) matrix.

        Args:
            t: Time.
            y: State.

        Raises:
            FieldEvaluationError: If no Jacobian is bound, it raises, or it
                returns an array that cannot be viewed as (n, n).

        Returns:
            Jacobian of the flattened field with respect to the flattened state.
        """
        if self._jacobian is None:
            msg = "no jacobian bound to this field"
            raise FieldEvaluationError(msg)
        n = self.size
        try:
            out = self._jacobian(float(t), y)
        except FieldEvaluationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise FieldEvaluationError(
                _JACOBIAN_FAILED_MSG.format(kind=type(exc).__name__, t=t, err=exc)
            ) from exc

        jac = np.asarray(out, dtype=self.dtype)
        if jac.size != n * n:
            raise FieldEvaluationError(
                _JACOBIAN_SHAPE_MSG.format(actual=jac.shape, n=n)
            )
        return jac.reshape(n, n)


def bind_field(
    field: VectorField | BoundField,
    template: NDArray[np.floating],
    *,
    jacobian: JacobianFunction | None = None,
) -> BoundField:
    """Return field bound to template, reusing it if it is already bound.

    A jacobian given together with an already bound field is ignored with a
    RuntimeWarning unless it is the one the field was bound with.
    """
    if isinstance(field, BoundField):
        if jacobian is not None and jacobian is not field._jacobian:  # noqa: SLF001
            warnings.warn(_BOUND_JACOBIAN_IGNORED_MSG, RuntimeWarning, stacklevel=3)
        return field
    return BoundField(field, template, jacobian=jacobian)
