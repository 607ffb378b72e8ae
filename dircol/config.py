"""
Centralized configuration for the transcription engine.

The default NLP backend can be set via the DIRCOL_OPTIM_SOLVER environment
variable and the log level via DIRCOL_LOG_LEVEL. Settings are always passed
explicitly to a transcription; nothing here is read during a solve.
"""

import logging
import math
import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

_DEFAULT_OPTIM_SOLVER = "ipopt"


def get_default_optim_solver() -> str:
    """Return the configured nlpsol plugin name."""
    return os.environ.get("DIRCOL_OPTIM_SOLVER", _DEFAULT_OPTIM_SOLVER)


def configure_logging(level: Optional[str] = None) -> None:
    """Apply DIRCOL_LOG_LEVEL (or the given level) to the package logger."""
    level = level or os.environ.get("DIRCOL_LOG_LEVEL", "WARNING")
    logging.getLogger("dircol").setLevel(level.upper())


def _default_plugin_options() -> dict:
    return {
        'print_time': False,
        'expand': True,
    }


def _default_solver_options() -> dict:
    return {
        'print_level': 0,
        'sb': 'yes',  # suppress banner
        'max_iter': 1000,
        'tol': 1e-8,
        'linear_solver': 'mumps',
    }


class SolverSettings(BaseModel):
    """Backend choice and tuning options, forwarded to casadi.nlpsol unmodified."""
    optim_solver: str = Field(default_factory=get_default_optim_solver, min_length=1,
                              description="nlpsol plugin name, e.g. 'ipopt'")
    plugin_options: dict = Field(default_factory=_default_plugin_options,
                                 description="Options for the nlpsol plugin itself")
    solver_options: dict = Field(default_factory=_default_solver_options,
                                 description="Algorithm options, nested under optim_solver")
    random_unbounded_range: tuple[float, float] = Field(
        (-1.0, 1.0), description="Sampling range used in place of infinite bounds for random iterates")

    @field_validator('random_unbounded_range')
    @classmethod
    def _check_range(cls, value: tuple[float, float]) -> tuple[float, float]:
        low, high = value
        if not (math.isfinite(low) and math.isfinite(high)) or low > high:
            raise ValueError(f"random_unbounded_range must be a finite (low, high) pair, got {value}")
        return value

    def create_nlpsol_options(self) -> dict:
        """Merge plugin and algorithm options the way casadi.Opti does."""
        options = dict(self.plugin_options)
        # Algorithm options only go along when there are plugin options.
        if options:
            options[self.optim_solver] = dict(self.solver_options)
        return options
