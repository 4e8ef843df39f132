# src/rk_engine/tableau.py
"""Immutable Butcher tableau for Runge-Kutta methods.

A tableau with s stages is described by

    nodes            c = (c_1, ..., c_s)
    matrix           A = (a_ij), s x s
    weights          b = (b_1, ..., b_s)
    embedded weights b* (optional, same length as b)

One step of the method from (t, y) with step h computes the stages

    k_i = f(t + c_i h, y + h sum_j a_ij k_j)

and combines them as y_next = y + h sum_i b_i k_i. When embedded weights are
present, h sum_i (b*_i - b_i) k_i estimates the local error.

The explicit/implicit structure is decided once at construction from the
coefficient pattern and stored as a tag, so stepping code never rescans the
matrix.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .errors import raise_invalid_tableau

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike


_EMPTY_TABLEAU_MSG = "tableau must have at least one stage"
_NODES_LEN_MSG = "nodes has length {actual}, expected {expected}"
_MATRIX_RAGGED_MSG = "matrix rows must all have {expected} entries"
_WEIGHTS_LEN_MSG = "weights has length {actual}, expected {expected}"
_EMBEDDED_LEN_MSG = "embedded_weights has length {actual}, expected {expected}"
_NON_FINITE_MSG = "{name} contains non-finite coefficients"
_ORDER_MSG = "order must be a positive integer; got {order}"
_EMBEDDED_ORDER_MSG = "embedded_order must be a positive integer; got {order}"
_NOT_EXPLICIT_MSG = "matrix is not strictly lower triangular"
_NO_EMBEDDED_MSG = "tableau '{name}' has no embedded weights"
_STAGE_INDEX_MSG = "stage index {index} out of range for {stages} stages"


class TableauStructure(StrEnum):
    """Stage dependency structure of a tableau."""

    EXPLICIT = "explicit"
    IMPLICIT = "implicit"


_LENGTH_MSGS = {
    "nodes": _NODES_LEN_MSG,
    "weights": _WEIGHTS_LEN_MSG,
    "embedded_weights": _EMBEDDED_LEN_MSG,
}


def _as_vector(name: str, values: ArrayLike, expected: int) -> NDArray[np.float64]:
    arr = np.array(values, dtype=np.float64).reshape(-1)
    if arr.shape[0] != expected:
        raise_invalid_tableau(
            _LENGTH_MSGS[name].format(actual=arr.shape[0], expected=expected)
        )
    if not np.all(np.isfinite(arr)):
        raise_invalid_tableau(_NON_FINITE_MSG.format(name=name))
    arr.flags.writeable = False
    return arr


def _as_matrix(values: ArrayLike | Sequence[Sequence[float]]) -> NDArray[np.float64]:
    rows = [np.asarray(row, dtype=np.float64).reshape(-1) for row in values]
    n = len(rows)
    if n == 0:
        raise_invalid_tableau(_EMPTY_TABLEAU_MSG)
    if any(row.shape[0] != n for row in rows):
        raise_invalid_tableau(_MATRIX_RAGGED_MSG.format(expected=n))
    arr = np.vstack(rows)
    if not np.all(np.isfinite(arr)):
        raise_invalid_tableau(_NON_FINITE_MSG.format(name="matrix"))
    arr.flags.writeable = False
    return arr


def _detect_structure(matrix: NDArray[np.float64]) -> TableauStructure:
    """Return EXPLICIT iff a_ij == 0 for every j >= i."""
    if np.any(np.triu(matrix) != 0.0):
        return TableauStructure.IMPLICIT
    return TableauStructure.EXPLICIT


@dataclass(frozen=True, slots=True, eq=False)
class Tableau:
    """Butcher tableau of a Runge-Kutta method.

    Attributes:
        matrix: Runge-Kutta matrix a, shape (s, s).
        weights: Primary weights b, shape (s,). These propagate the solution.
        nodes: Nodes c, shape (s,).
        order: Declared order p of the primary weights.
        embedded_weights: Optional embedded weights b*, shape (s,).
        embedded_order: Optional declared order of the embedded weights.
        name: Optional human-readable name.
        structure: Explicit/implicit tag computed from the matrix.
    """

    matrix: NDArray[np.float64]
    weights: NDArray[np.float64]
    nodes: NDArray[np.float64]
    order: int
    embedded_weights: NDArray[np.float64] | None = None
    embedded_order: int | None = None
    name: str = "custom"
    structure: TableauStructure = field(init=False)

    def __post_init__(self) -> None:
        matrix = _as_matrix(self.matrix)
        s = int(matrix.shape[0])

        nodes = _as_vector("nodes", self.nodes, s)
        weights = _as_vector("weights", self.weights, s)
        embedded = (
            None
            if self.embedded_weights is None
            else _as_vector("embedded_weights", self.embedded_weights, s)
        )

        if int(self.order) != self.order or int(self.order) < 1:
            raise_invalid_tableau(_ORDER_MSG.format(order=self.order))
        if self.embedded_order is not None and (
            int(self.embedded_order) != self.embedded_order
            or int(self.embedded_order) < 1
        ):
            raise_invalid_tableau(_EMBEDDED_ORDER_MSG.format(order=self.embedded_order))

        object.__setattr__(self, "matrix", matrix)
        object.__setattr__(self, "nodes", nodes)
        object.__setattr__(self, "weights", weights)
        object.__setattr__(self, "embedded_weights", embedded)
        object.__setattr__(self, "order", int(self.order))
        if self.embedded_order is not None:
            object.__setattr__(self, "embedded_order", int(self.embedded_order))
        object.__setattr__(self, "structure", _detect_structure(matrix))

    # ------------------------------------------------------------------
    # Alternate constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_coefficients(
        cls,
        matrix: ArrayLike,
        weights: ArrayLike,
        *,
        order: int,
        nodes: ArrayLike | None = None,
        embedded_weights: ArrayLike | None = None,
        embedded_order: int | None = None,
        name: str = "custom",
    ) -> Tableau:
        """Build a tableau, deriving nodes from row sums when not given.

        Args:
            matrix: Runge-Kutta matrix a.
            weights: Primary weights b.
            order: Declared order of the primary weights.
            nodes: Optional nodes c. Defaults to c_i = sum_j a_ij.
            embedded_weights: Optional embedded weights b*.
            embedded_order: Optional order of the embedded weights.
            name: Optional name.

        Returns:
            Validated tableau.
        """
        a = _as_matrix(matrix)
        c = a.sum(axis=1) if nodes is None else nodes
        return cls(
            matrix=a,
            weights=np.asarray(weights, dtype=np.float64),
            nodes=np.asarray(c, dtype=np.float64),
            order=order,
            embedded_weights=(
                None
                if embedded_weights is None
                else np.asarray(embedded_weights, dtype=np.float64)
            ),
            embedded_order=embedded_order,
            name=name,
        )

    @classmethod
    def explicit(
        cls,
        matrix: ArrayLike,
        weights: ArrayLike,
        nodes: ArrayLike,
        *,
        order: int,
        embedded_weights: ArrayLike | None = None,
        embedded_order: int | None = None,
        name: str = "custom",
    ) -> Tableau:
        """Build a tableau that must be explicit.

        Raises:
            ConfigurationError: If the matrix has a nonzero entry on or above
                the diagonal.

        Returns:
            Validated explicit tableau.
        """
        tableau = cls.from_coefficients(
            matrix,
            weights,
            order=order,
            nodes=nodes,
            embedded_weights=embedded_weights,
            embedded_order=embedded_order,
            name=name,
        )
        if not tableau.is_explicit:
            raise_invalid_tableau(_NOT_EXPLICIT_MSG)
        return tableau

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def stages(self) -> int:
        """Number of stages s."""
        return int(self.weights.shape[0])

    @property
    def is_explicit(self) -> bool:
        return self.structure is TableauStructure.EXPLICIT

    @property
    def is_implicit(self) -> bool:
        return self.structure is TableauStructure.IMPLICIT

    @property
    def has_embedded_method(self) -> bool:
        return self.embedded_weights is not None

    def _check_index(self, i: int) -> int:
        if not 0 <= i < self.stages:
            raise IndexError(_STAGE_INDEX_MSG.format(index=i, stages=self.stages))
        return i

    def node(self, i: int) -> float:
        """Return node c_i (zero-based)."""
        return float(self.nodes[self._check_index(i)])

    def matrix_row(self, i: int) -> NDArray[np.float64]:
        """Return row i of the matrix (zero-based, read-only view)."""
        return self.matrix[self._check_index(i)]

    @property
    def error_weights(self) -> NDArray[np.float64]:
        """Return d = b* - b.

        Raises:
            ConfigurationError: If the tableau has no embedded weights.
        """
        if self.embedded_weights is None:
            raise_invalid_tableau(_NO_EMBEDDED_MSG.format(name=self.name))
        d = np.subtract(self.embedded_weights, self.weights)  # type: ignore[arg-type]
        d.flags.writeable = False
        return d

    # ------------------------------------------------------------------
    # Value semantics
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tableau):
            return NotImplemented
        if (self.embedded_weights is None) != (other.embedded_weights is None):
            return False
        same_embedded = self.embedded_weights is None or np.array_equal(
            self.embedded_weights, other.embedded_weights
        )
        return (
            self.order == other.order
            and self.embedded_order == other.embedded_order
            and np.array_equal(self.matrix, other.matrix)
            and np.array_equal(self.weights, other.weights)
            and np.array_equal(self.nodes, other.nodes)
            and same_embedded
        )

    def __hash__(self) -> int:
        # -0.0 == 0.0 under __eq__, so fold the sign of zero before hashing.
        return hash(
            (
                (self.matrix + 0.0).tobytes(),
                (self.weights + 0.0).tobytes(),
                (self.nodes + 0.0).tobytes(),
                self.order,
            )
        )

    def __repr__(self) -> str:
        return (
            f"Tableau(name={self.name!r}, stages={self.stages}, order={self.order}, "
            f"structure={self.structure.value}, embedded={self.has_embedded_method})"
        )
