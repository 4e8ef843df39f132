"""rk_engine Runge-Kutta initial value problem solver package."""

from __future__ import annotations

from .config import (
    ImplicitMode,
    ImplicitSolverConfig,
    SolverConfig,
    StepControllerConfig,
    ToleranceConfig,
)
from .controller import Accepted, ControllerState, Rejected, StepController
from .error_estimator import ErrorEstimate, ErrorEstimator, scaled_error_norm
from .errors import (
    ConfigurationError,
    ErrorCode,
    FieldEvaluationError,
    NonConvergenceError,
    RKEngineError,
    SolverStalledError,
    StepSizeUnderflowError,
)
from .field import BoundField, JacobianFunction, VectorField, bind_field
from .implicit import ImplicitSolveResult, ImplicitStageSolver
from .ivp_solver import (
    IVPEmbeddedSolver,
    IVPSolver,
    SolverState,
    SolveStatistics,
    Trajectory,
    TrajectorySample,
)
from .settings import IntegratorSettings
from .stages import StageEvaluator, StageSet, combine, evaluate_stages
from .tableau import Tableau, TableauStructure
from .tableaus import available_tableaus, get_tableau, normalize_method_name

__all__ = [
    "Accepted",
    "BoundField",
    "ConfigurationError",
    "ControllerState",
    "ErrorCode",
    "ErrorEstimate",
    "ErrorEstimator",
    "FieldEvaluationError",
    "IVPEmbeddedSolver",
    "IVPSolver",
    "ImplicitMode",
    "ImplicitSolveResult",
    "ImplicitSolverConfig",
    "ImplicitStageSolver",
    "IntegratorSettings",
    "JacobianFunction",
    "NonConvergenceError",
    "RKEngineError",
    "Rejected",
    "SolveStatistics",
    "SolverConfig",
    "SolverStalledError",
    "SolverState",
    "StageEvaluator",
    "StageSet",
    "StepController",
    "StepControllerConfig",
    "StepSizeUnderflowError",
    "Tableau",
    "TableauStructure",
    "ToleranceConfig",
    "Trajectory",
    "TrajectorySample",
    "VectorField",
    "available_tableaus",
    "bind_field",
    "combine",
    "evaluate_stages",
    "get_tableau",
    "normalize_method_name",
    "scaled_error_norm",
]

__version__ = "0.1.0"
