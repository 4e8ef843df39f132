# src/rk_engine/settings.py
"""Flat, YAML-friendly settings for rk_engine solvers.

IntegratorSettings validates plain mappings (as loaded from a YAML or JSON
file by the caller) and translates them into the frozen SolverConfig objects
the solvers consume.

Notes:
    - Unknown fields are allowed and ignored (`extra="allow"`), so a larger
      application config can be passed through unchanged.
    - Cross-field checks (for example min_step_size <= max_step_size) are left
      to SolverConfig, which raises ConfigurationError.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import (
    ImplicitMode,
    ImplicitSolverConfig,
    SolverConfig,
    StepControllerConfig,
    ToleranceConfig,
)
from .errors import ConfigurationError, ErrorCode
from .tableau import Tableau
from .tableaus import available_tableaus, get_tableau, normalize_method_name

_SETTINGS_INVALID_MSG = "Invalid integrator settings: {detail}"
_UNKNOWN_METHOD_MSG = "Unknown method {name!r}; expected one of: {known}"


class IntegratorSettings(BaseModel):
    """Settings schema mirroring SolverConfig with flat field names."""

    model_config = ConfigDict(extra="allow")

    method: str = Field(
        default="dormand-prince",
        description="Name of a built-in tableau",
    )

    # Error tolerances
    absolute_tolerance: float = Field(default=1e-6, ge=0.0)
    relative_tolerance: float = Field(default=1e-3, ge=0.0)

    # Step-size controller
    initial_step_size: float | None = Field(default=None, gt=0.0)
    min_step_size: float = Field(default=1e-12, ge=0.0)
    max_step_size: float = Field(default=float("inf"), gt=0.0)
    safety_factor: float = Field(default=0.9, gt=0.0, le=1.0)
    min_growth_factor: float = Field(default=0.2, gt=0.0)
    max_growth_factor: float = Field(default=5.0, ge=1.0)
    max_shrink_factor: float = Field(default=0.2, gt=0.0, lt=1.0)

    # Implicit stage solves
    implicit_mode: ImplicitMode = Field(
        default=ImplicitMode.FIXED_POINT,
        description="Iteration scheme for implicit tableaus",
    )
    implicit_iteration_cap: int = Field(default=50, ge=1)
    implicit_convergence_tolerance: float = Field(default=1e-10, gt=0.0)

    max_steps: int = Field(default=1_000_000, ge=1)

    @field_validator("method")
    @classmethod
    def _known_method(cls, value: str) -> str:
        name = normalize_method_name(value)
        if name not in available_tableaus():
            known = ", ".join(available_tableaus())
            raise ValueError(_UNKNOWN_METHOD_MSG.format(name=value, known=known))
        return name

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> IntegratorSettings:
        """Validate a plain mapping.

        Args:
            data: Settings mapping, typically parsed from a config file.

        Raises:
            ConfigurationError: If any field fails validation.

        Returns:
            Validated settings.
        """
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            detail = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )
            raise ConfigurationError(
                _SETTINGS_INVALID_MSG.format(detail=detail),
                code=ErrorCode.INVALID_CONFIG,
            ) from exc

    def tableau(self) -> Tableau:
        """Resolve the configured method to its tableau."""
        return get_tableau(self.method)

    def to_solver_config(self) -> SolverConfig:
        """Convert these settings to a native SolverConfig.

        Raises:
            ConfigurationError: If the combination of values is inconsistent.

        Returns:
            Fully constructed SolverConfig instance.
        """
        tolerances = ToleranceConfig(
            absolute_tolerance=self.absolute_tolerance,
            relative_tolerance=self.relative_tolerance,
        )

        controller = StepControllerConfig(
            initial_step=self.initial_step_size,
            min_step=self.min_step_size,
            max_step=self.max_step_size,
            safety_factor=self.safety_factor,
            min_growth_factor=self.min_growth_factor,
            max_growth_factor=self.max_growth_factor,
            max_shrink_factor=self.max_shrink_factor,
        )

        implicit = ImplicitSolverConfig(
            mode=self.implicit_mode,
            iteration_cap=self.implicit_iteration_cap,
            convergence_atol=self.implicit_convergence_tolerance,
        )

        return SolverConfig(
            tolerances=tolerances,
            controller=controller,
            implicit=implicit,
            max_steps=self.max_steps,
        )
