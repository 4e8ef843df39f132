# tests/test_tableau.py
"""Unit tests for rk_engine.tableau.

Coverage:
- Construction validation (shape, finiteness, order)
- Explicit/implicit structure detection
- Alternate constructors and accessors
- Immutability and value semantics
"""

from __future__ import annotations

import dataclasses

import numpy as np
import pytest

from rk_engine.errors import ConfigurationError, ErrorCode
from rk_engine.tableau import Tableau, TableauStructure

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _heun(**overrides: object) -> Tableau:
    kwargs: dict[str, object] = {
        "matrix": [[0.0, 0.0], [1.0, 0.0]],
        "weights": [0.5, 0.5],
        "nodes": [0.0, 1.0],
        "order": 2,
        "embedded_weights": [1.0, 0.0],
        "embedded_order": 1,
        "name": "heun",
    }
    kwargs.update(overrides)
    return Tableau(**kwargs)  # type: ignore[arg-type]


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


def test_valid_tableau_builds_float_arrays() -> None:
    """Coefficients are stored as float64 arrays of the expected shapes."""
    t = _heun()
    assert t.matrix.shape == (2, 2)
    assert t.weights.shape == (2,)
    assert t.nodes.shape == (2,)
    assert t.matrix.dtype == np.float64
    assert t.stages == 2


def test_empty_tableau_rejected() -> None:
    """A tableau needs at least one stage."""
    with pytest.raises(ConfigurationError, match="at least one stage"):
        Tableau(matrix=[], weights=[], nodes=[], order=1)  # type: ignore[arg-type]


def test_ragged_matrix_rejected() -> None:
    """Every matrix row must have s entries."""
    with pytest.raises(ConfigurationError, match="matrix rows must all have 2"):
        _heun(matrix=[[0.0, 0.0], [1.0]])


def test_non_square_matrix_rejected() -> None:
    """A 2x3 matrix cannot describe a 2-stage method."""
    with pytest.raises(ConfigurationError, match="matrix rows"):
        _heun(matrix=[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])


@pytest.mark.parametrize(
    ("field", "value", "pattern"),
    [
        ("nodes", [0.0, 1.0, 2.0], "nodes has length 3, expected 2"),
        ("weights", [1.0], "weights has length 1, expected 2"),
        ("embedded_weights", [1.0], "embedded_weights has length 1, expected 2"),
    ],
)
def test_length_mismatch_rejected(field: str, value: list[float], pattern: str) -> None:
    """Vectors must have one entry per stage."""
    with pytest.raises(ConfigurationError, match=pattern):
        _heun(**{field: value})


@pytest.mark.parametrize(
    "overrides",
    [
        {"matrix": [[0.0, 0.0], [np.nan, 0.0]]},
        {"weights": [0.5, np.inf]},
        {"nodes": [0.0, -np.inf]},
        {"embedded_weights": [np.nan, 0.0]},
    ],
)
def test_non_finite_coefficients_rejected(overrides: dict[str, object]) -> None:
    """All coefficients must be finite."""
    with pytest.raises(ConfigurationError, match="non-finite"):
        _heun(**overrides)


@pytest.mark.parametrize("order", [0, -1, 1.5])
def test_bad_order_rejected(order: float) -> None:
    """Order must be a positive integer."""
    with pytest.raises(ConfigurationError, match="order must be a positive integer"):
        _heun(order=order)


def test_bad_embedded_order_rejected() -> None:
    with pytest.raises(ConfigurationError, match="embedded_order"):
        _heun(embedded_order=0)


def test_validation_error_code_is_invalid_tableau() -> None:
    """Tableau failures are tagged distinctly from solver option failures."""
    with pytest.raises(ConfigurationError) as excinfo:
        _heun(weights=[1.0])
    assert excinfo.value.code is ErrorCode.INVALID_TABLEAU
    assert isinstance(excinfo.value, ValueError)


# -----------------------------------------------------------------------------
# Structure detection
# -----------------------------------------------------------------------------


def test_strictly_lower_triangular_is_explicit() -> None:
    t = _heun()
    assert t.structure is TableauStructure.EXPLICIT
    assert t.is_explicit
    assert not t.is_implicit


def test_nonzero_diagonal_is_implicit() -> None:
    """A single nonzero diagonal entry makes a tableau implicit."""
    t = Tableau.from_coefficients([[0.0, 0.0], [0.5, 0.5]], [0.5, 0.5], order=2)
    assert t.structure is TableauStructure.IMPLICIT
    assert t.is_implicit


def test_nonzero_upper_entry_is_implicit() -> None:
    t = Tableau.from_coefficients([[0.0, 1e-3], [0.5, 0.0]], [0.5, 0.5], order=1)
    assert t.is_implicit


def test_all_zero_matrix_is_explicit() -> None:
    """Zero coupling needs no iteration and is tagged explicit."""
    t = Tableau.from_coefficients([[0.0, 0.0], [0.0, 0.0]], [0.5, 0.5], order=1)
    assert t.is_explicit


# -----------------------------------------------------------------------------
# Constructors and accessors
# -----------------------------------------------------------------------------


def test_from_coefficients_derives_nodes_from_row_sums() -> None:
    t = Tableau.from_coefficients(
        [[0.0, 0.0, 0.0], [0.5, 0.0, 0.0], [-1.0, 2.0, 0.0]],
        [1.0 / 6.0, 2.0 / 3.0, 1.0 / 6.0],
        order=3,
    )
    assert np.allclose(t.nodes, [0.0, 0.5, 1.0])


def test_from_coefficients_keeps_explicit_nodes() -> None:
    t = Tableau.from_coefficients([[0.5]], [1.0], nodes=[0.25], order=1)
    assert t.node(0) == 0.25


def test_explicit_constructor_rejects_implicit_matrix() -> None:
    with pytest.raises(ConfigurationError, match="not strictly lower triangular"):
        Tableau.explicit([[1.0]], [1.0], [1.0], order=1)


def test_node_and_matrix_row_accessors() -> None:
    t = _heun()
    assert t.node(1) == 1.0
    assert np.array_equal(t.matrix_row(1), [1.0, 0.0])


@pytest.mark.parametrize("index", [-1, 2])
def test_accessor_index_out_of_range(index: int) -> None:
    t = _heun()
    with pytest.raises(IndexError, match="out of range"):
        t.node(index)
    with pytest.raises(IndexError, match="out of range"):
        t.matrix_row(index)


def test_error_weights_are_embedded_minus_primary() -> None:
    t = _heun()
    assert t.has_embedded_method
    assert np.allclose(t.error_weights, [0.5, -0.5])


def test_error_weights_require_embedded_method() -> None:
    t = _heun(embedded_weights=None, embedded_order=None)
    assert not t.has_embedded_method
    with pytest.raises(ConfigurationError, match="no embedded weights"):
        _ = t.error_weights


# -----------------------------------------------------------------------------
# Immutability and value semantics
# -----------------------------------------------------------------------------


def test_coefficient_arrays_are_read_only() -> None:
    t = _heun()
    with pytest.raises(ValueError, match="read-only"):
        t.weights[0] = 2.0
    with pytest.raises(ValueError, match="read-only"):
        t.matrix[1, 0] = 2.0


def test_fields_cannot_be_reassigned() -> None:
    t = _heun()
    with pytest.raises(dataclasses.FrozenInstanceError):
        t.order = 3  # type: ignore[misc]


def test_input_arrays_are_copied() -> None:
    """Mutating the caller's arrays after construction does not leak in."""
    weights = np.array([0.5, 0.5])
    t = _heun(weights=weights)
    weights[0] = 9.0
    assert t.weights[0] == 0.5


def test_equal_coefficients_compare_equal_and_hash_alike() -> None:
    a = _heun()
    b = _heun(name="another-name")
    assert a == b
    assert hash(a) == hash(b)
    assert a != _heun(embedded_weights=None, embedded_order=None)
    assert a != _heun(weights=[0.25, 0.75])


def test_repr_mentions_name_and_structure() -> None:
    text = repr(_heun())
    assert "heun" in text
    assert "explicit" in text


def test_signed_zero_coefficients_hash_alike() -> None:
    """-0.0 and 0.0 compare equal, so they must not split hash buckets."""
    a = _heun()
    b = _heun(matrix=[[-0.0, 0.0], [1.0, -0.0]], nodes=[-0.0, 1.0])
    assert a == b
    assert hash(a) == hash(b)
    assert len({a, b}) == 1


def test_embedded_order_is_stored_as_int() -> None:
    t = _heun(order=2.0, embedded_order=1.0)
    assert t.embedded_order == 1
    assert isinstance(t.embedded_order, int)
    assert isinstance(t.order, int)
