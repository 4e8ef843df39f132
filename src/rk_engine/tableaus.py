# src/rk_engine/tableaus.py
"""Library of standard Butcher tableaus.

Explicit methods:
    - "euler":            Forward Euler (order 1).
    - "midpoint":         Explicit midpoint (order 2).
    - "heun":             Heun / RK2 (order 2), embedded Euler estimator.
    - "ralston":          Ralston's RK2 (order 2).
    - "rk3":              Kutta's third-order method.
    - "rk4":              Classical fourth-order Runge-Kutta.
    - "rk38":             Kutta's 3/8 rule (order 4).
    - "bogacki-shampine": Order 3 with embedded order 2 (FSAL).
    - "fehlberg45":       Runge-Kutta-Fehlberg, propagates order 4, embedded 5.
    - "cash-karp":        Order 5 with embedded order 4.
    - "dormand-prince":   Order 5 with embedded order 4 (FSAL).

Implicit methods:
    - "backward-euler":    Implicit Euler (order 1).
    - "implicit-midpoint": One-stage Gauss method (order 2).
    - "crank-nicolson":    Trapezoidal rule as 2-stage Lobatto IIIA (order 2),
                           embedded first-order estimator.
    - "gauss-legendre-4":  Two-stage Gauss-Legendre (order 4).
    - "radau-iia-3":       Two-stage Radau IIA (order 3).
"""

from __future__ import annotations

import math
from typing import Final

from .errors import raise_invalid_config
from .tableau import Tableau

_UNKNOWN_TABLEAU_MSG = "unknown tableau {name!r}; available: {available}"


# =============================================================================
# Explicit tableaus
# =============================================================================

EULER: Final[Tableau] = Tableau.explicit(
    [[0.0]],
    [1.0],
    [0.0],
    order=1,
    name="euler",
)

MIDPOINT: Final[Tableau] = Tableau.explicit(
    [[0.0, 0.0], [0.5, 0.0]],
    [0.0, 1.0],
    [0.0, 0.5],
    order=2,
    name="midpoint",
)

HEUN: Final[Tableau] = Tableau.explicit(
    [[0.0, 0.0], [1.0, 0.0]],
    [0.5, 0.5],
    [0.0, 1.0],
    order=2,
    embedded_weights=[1.0, 0.0],
    embedded_order=1,
    name="heun",
)

RALSTON: Final[Tableau] = Tableau.explicit(
    [[0.0, 0.0], [2.0 / 3.0, 0.0]],
    [0.25, 0.75],
    [0.0, 2.0 / 3.0],
    order=2,
    name="ralston",
)

RK3: Final[Tableau] = Tableau.explicit(
    [
        [0.0, 0.0, 0.0],
        [0.5, 0.0, 0.0],
        [-1.0, 2.0, 0.0],
    ],
    [1.0 / 6.0, 2.0 / 3.0, 1.0 / 6.0],
    [0.0, 0.5, 1.0],
    order=3,
    name="rk3",
)

RK4: Final[Tableau] = Tableau.explicit(
    [
        [0.0, 0.0, 0.0, 0.0],
        [0.5, 0.0, 0.0, 0.0],
        [0.0, 0.5, 0.0, 0.0],
        [0.0, 0.0, 1.0, 0.0],
    ],
    [1.0 / 6.0, 1.0 / 3.0, 1.0 / 3.0, 1.0 / 6.0],
    [0.0, 0.5, 0.5, 1.0],
    order=4,
    name="rk4",
)

RK38: Final[Tableau] = Tableau.explicit(
    [
        [0.0, 0.0, 0.0, 0.0],
        [1.0 / 3.0, 0.0, 0.0, 0.0],
        [-1.0 / 3.0, 1.0, 0.0, 0.0],
        [1.0, -1.0, 1.0, 0.0],
    ],
    [1.0 / 8.0, 3.0 / 8.0, 3.0 / 8.0, 1.0 / 8.0],
    [0.0, 1.0 / 3.0, 2.0 / 3.0, 1.0],
    order=4,
    name="rk38",
)

BOGACKI_SHAMPINE: Final[Tableau] = Tableau.explicit(
    [
        [0.0, 0.0, 0.0, 0.0],
        [0.5, 0.0, 0.0, 0.0],
        [0.0, 0.75, 0.0, 0.0],
        [2.0 / 9.0, 1.0 / 3.0, 4.0 / 9.0, 0.0],
    ],
    [2.0 / 9.0, 1.0 / 3.0, 4.0 / 9.0, 0.0],
    [0.0, 0.5, 0.75, 1.0],
    order=3,
    embedded_weights=[7.0 / 24.0, 0.25, 1.0 / 3.0, 0.125],
    embedded_order=2,
    name="bogacki-shampine",
)

FEHLBERG45: Final[Tableau] = Tableau.explicit(
    [
        [0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        [0.25, 0.0, 0.0, 0.0, 0.0, 0.0],
        [3.0 / 32.0, 9.0 / 32.0, 0.0, 0.0, 0.0, 0.0],
        [1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0, 0.0, 0.0, 0.0],
        [439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0, 0.0, 0.0],
        [-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0, 0.0],
    ],
    [25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4104.0, -0.2, 0.0],
    [0.0, 0.25, 0.375, 12.0 / 13.0, 1.0, 0.5],
    order=4,
    embedded_weights=[
        16.0 / 135.0,
        0.0,
        6656.0 / 12825.0,
        28561.0 / 56430.0,
        -9.0 / 50.0,
        2.0 / 55.0,
    ],
    embedded_order=5,
    name="fehlberg45",
)

CASH_KARP: Final[Tableau] = Tableau.explicit(
    [
        [0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        [0.2, 0.0, 0.0, 0.0, 0.0, 0.0],
        [3.0 / 40.0, 9.0 / 40.0, 0.0, 0.0, 0.0, 0.0],
        [0.3, -0.9, 1.2, 0.0, 0.0, 0.0],
        [-11.0 / 54.0, 2.5, -70.0 / 27.0, 35.0 / 27.0, 0.0, 0.0],
        [
            1631.0 / 55296.0,
            175.0 / 512.0,
            575.0 / 13824.0,
            44275.0 / 110592.0,
            253.0 / 4096.0,
            0.0,
        ],
    ],
    [37.0 / 378.0, 0.0, 250.0 / 621.0, 125.0 / 594.0, 0.0, 512.0 / 1771.0],
    [0.0, 0.2, 0.3, 0.6, 1.0, 0.875],
    order=5,
    embedded_weights=[
        2825.0 / 27648.0,
        0.0,
        18575.0 / 48384.0,
        13525.0 / 55296.0,
        277.0 / 14336.0,
        0.25,
    ],
    embedded_order=4,
    name="cash-karp",
)

DORMAND_PRINCE: Final[Tableau] = Tableau.explicit(
    [
        [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        [0.2, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        [3.0 / 40.0, 9.0 / 40.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        [44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0, 0.0, 0.0, 0.0, 0.0],
        [
            19372.0 / 6561.0,
            -25360.0 / 2187.0,
            64448.0 / 6561.0,
            -212.0 / 729.0,
            0.0,
            0.0,
            0.0,
        ],
        [
            9017.0 / 3168.0,
            -355.0 / 33.0,
            46732.0 / 5247.0,
            49.0 / 176.0,
            -5103.0 / 18656.0,
            0.0,
            0.0,
        ],
        [
            35.0 / 384.0,
            0.0,
            500.0 / 1113.0,
            125.0 / 192.0,
            -2187.0 / 6784.0,
            11.0 / 84.0,
            0.0,
        ],
    ],
    [
        35.0 / 384.0,
        0.0,
        500.0 / 1113.0,
        125.0 / 192.0,
        -2187.0 / 6784.0,
        11.0 / 84.0,
        0.0,
    ],
    [0.0, 0.2, 0.3, 0.8, 8.0 / 9.0, 1.0, 1.0],
    order=5,
    embedded_weights=[
        5179.0 / 57600.0,
        0.0,
        7571.0 / 16695.0,
        393.0 / 640.0,
        -92097.0 / 339200.0,
        187.0 / 2100.0,
        1.0 / 40.0,
    ],
    embedded_order=4,
    name="dormand-prince",
)


# =============================================================================
# Implicit tableaus
# =============================================================================

_SQRT3 = math.sqrt(3.0)

BACKWARD_EULER: Final[Tableau] = Tableau.from_coefficients(
    [[1.0]],
    [1.0],
    order=1,
    name="backward-euler",
)

IMPLICIT_MIDPOINT: Final[Tableau] = Tableau.from_coefficients(
    [[0.5]],
    [1.0],
    order=2,
    name="implicit-midpoint",
)

CRANK_NICOLSON: Final[Tableau] = Tableau.from_coefficients(
    [[0.0, 0.0], [0.5, 0.5]],
    [0.5, 0.5],
    order=2,
    embedded_weights=[0.0, 1.0],
    embedded_order=1,
    name="crank-nicolson",
)

GAUSS_LEGENDRE_4: Final[Tableau] = Tableau.from_coefficients(
    [
        [0.25, 0.25 - _SQRT3 / 6.0],
        [0.25 + _SQRT3 / 6.0, 0.25],
    ],
    [0.5, 0.5],
    nodes=[0.5 - _SQRT3 / 6.0, 0.5 + _SQRT3 / 6.0],
    order=4,
    name="gauss-legendre-4",
)

RADAU_IIA_3: Final[Tableau] = Tableau.from_coefficients(
    [[5.0 / 12.0, -1.0 / 12.0], [0.75, 0.25]],
    [0.75, 0.25],
    nodes=[1.0 / 3.0, 1.0],
    order=3,
    name="radau-iia-3",
)


_REGISTRY: Final[dict[str, Tableau]] = {
    t.name: t
    for t in (
        EULER,
        MIDPOINT,
        HEUN,
        RALSTON,
        RK3,
        RK4,
        RK38,
        BOGACKI_SHAMPINE,
        FEHLBERG45,
        CASH_KARP,
        DORMAND_PRINCE,
        BACKWARD_EULER,
        IMPLICIT_MIDPOINT,
        CRANK_NICOLSON,
        GAUSS_LEGENDRE_4,
        RADAU_IIA_3,
    )
}


def normalize_method_name(name: str) -> str:
    """Canonical registry key for a user-supplied method name."""
    return str(name).strip().lower().replace("_", "-").replace(" ", "-")


def available_tableaus() -> tuple[str, ...]:
    """Return the names accepted by :func:`get_tableau`."""
    return tuple(_REGISTRY)


def get_tableau(name: str) -> Tableau:
    """Look up a standard tableau by name.

    Args:
        name: Tableau name. Case, surrounding whitespace and '_' vs '-' are
            ignored.

    Raises:
        ConfigurationError: If the name is unknown.

    Returns:
        The shared, immutable tableau.
    """
    key = normalize_method_name(name)
    tableau = _REGISTRY.get(key)
    if tableau is None:
        raise_invalid_config(
            field="method",
            detail=_UNKNOWN_TABLEAU_MSG.format(
                name=name, available=", ".join(available_tableaus())
            ),
        )
    return tableau  # type: ignore[return-value]
