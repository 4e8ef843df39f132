# rk_engine/examples/simple_sir.py
"""Single-location SIR as a canonical ODE example for rk_engine.

This example demonstrates the core API:

- IVPSolver.solve(...) takes fixed steps and lands exactly on t_end.
- IVPEmbeddedSolver.solve(...) adapts the step from an embedded error
  estimate; the trajectory holds one sample per accepted step.
- IntegratorSettings maps a plain mapping (as read from a config file) onto
  the solver configuration.

We model a normalized SIR system with state y = (S, I, R) and S + I + R ≈ 1.

This script saves plots to disk (no interactive windows).
"""

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from rk_engine import IntegratorSettings, IVPEmbeddedSolver, IVPSolver, get_tableau

_OUTPUT_DIR = Path(__file__).resolve().parent / "output" / "sir"


def sir_rhs(
    t: float,  # noqa: ARG001 (no explicit time dependence here)
    state: np.ndarray,
    *,
    beta: float,
    gamma: float,
) -> np.ndarray:
    """RHS for a normalized SIR model.

    Args:
        t: Current time (unused; included for API compatibility).
        state: State vector of shape (3,) with entries (S, I, R).
        beta: Transmission rate.
        gamma: Recovery rate.

    Returns:
        RHS vector of shape (3,): (dS/dt, dI/dt, dR/dt).
    """
    s, i, _ = state
    new_inf = beta * s * i
    recov = gamma * i
    return np.array([-new_inf, new_inf - recov, recov])


def compute_conservation_drift(states: np.ndarray) -> float:
    """Compute max |S+I+R-1| over stored times.

    Args:
        states: State history, shape (n_samples, 3).

    Returns:
        Maximum absolute conservation drift.
    """
    return float(np.max(np.abs(states.sum(axis=1) - 1.0)))


def save_sir_plot(
    time: np.ndarray,
    states: np.ndarray,
    *,
    title: str,
    out_path: Path,
    drift: float | None = None,
) -> None:
    """Save S, I, R trajectories to an image file.

    Args:
        time: 1D array of times, shape (n_samples,).
        states: State history, shape (n_samples, 3).
        title: Plot title.
        out_path: Output path for the saved figure.
        drift: Optional conservation drift to annotate.
    """
    plt.figure(figsize=(8, 5))
    for col, label in enumerate(("S", "I", "R")):
        plt.plot(time, states[:, col], marker=".", markersize=3, label=label)
    plt.grid(visible=True)
    plt.legend()

    if drift is not None and np.isfinite(drift):
        title = f"{title}\nmax |S+I+R-1| = {drift:.3e}"

    plt.title(title)
    plt.xlabel("Time")
    plt.ylabel("Proportion")
    plt.tight_layout()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_path, dpi=150)
    plt.close()


def main() -> None:
    """Run and save SIR simulations with a fixed-step and an adaptive solver.

    Files are written to: examples/output/sir/
    """
    # ---------------------------------------------------------------------
    # Model parameters
    # ---------------------------------------------------------------------
    beta = 0.30
    gamma = 1.0 / 7.0
    initial_infected = 0.01
    total_time = 160.0

    y0 = np.array([1.0 - initial_infected, initial_infected, 0.0])

    def rhs(t: float, y: np.ndarray) -> np.ndarray:
        return sir_rhs(t, y, beta=beta, gamma=gamma)

    # ---------------------------------------------------------------------
    # (1) Fixed-step Heun
    # ---------------------------------------------------------------------
    fixed = IVPSolver(rhs, get_tableau("heun"))
    time_fixed, states_fixed = fixed.solve(0.0, y0, total_time, 0.2).collect()

    save_sir_plot(
        time_fixed,
        states_fixed,
        title="SIR via IVPSolver (Heun, h = 0.2)",
        out_path=_OUTPUT_DIR / "simple_sir_heun_fixed.png",
        drift=compute_conservation_drift(states_fixed),
    )

    # ---------------------------------------------------------------------
    # (2) Adaptive Dormand-Prince configured from a plain mapping
    # ---------------------------------------------------------------------
    settings = IntegratorSettings.from_mapping(
        {
            "method": "dormand-prince",
            "absolute_tolerance": 1e-8,
            "relative_tolerance": 1e-6,
            "max_step_size": 5.0,
        }
    )
    adaptive = IVPEmbeddedSolver(
        rhs, settings.tableau(), settings.to_solver_config()
    )
    trajectory = adaptive.solve(0.0, y0, total_time)
    time_adapt, states_adapt = trajectory.collect()

    stats = trajectory.stats
    save_sir_plot(
        time_adapt,
        states_adapt,
        title=(
            "SIR via IVPEmbeddedSolver (Dormand-Prince; "
            f"{stats.accepted} accepted, {stats.rejected} rejected)"
        ),
        out_path=_OUTPUT_DIR / "simple_sir_dopri_adaptive.png",
        drift=compute_conservation_drift(states_adapt),
    )


if __name__ == "__main__":
    main()
