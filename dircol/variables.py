"""
Decision-variable registry, vectorization and trajectory containers.

Every kind of decision variable is stored as a 2-D matrix whose rows are
components and whose columns are grid points. The sorted order of Var is the
single order used to stack these matrices into the NLP decision vector:

    x = [initial_time, final_time, vec(states), vec(controls),
         vec(multipliers), vec(derivatives), vec(slacks), vec(parameters)]

where vec() reads a matrix column by column.
"""

from dataclasses import dataclass, field, replace
from enum import IntEnum
from types import MappingProxyType
from typing import Mapping
import casadi as ca
import numpy as np

from .errors import ContractError


class Var(IntEnum):
    """Kinds of decision variables, in vectorization order."""
    INITIAL_TIME = 0
    FINAL_TIME = 1
    STATES = 2
    CONTROLS = 3
    MULTIPLIERS = 4
    DERIVATIVES = 5
    SLACKS = 6
    PARAMETERS = 7


# Kinds with one column per grid point; these are interpolated when resampling.
GRID_VARS = (Var.STATES, Var.CONTROLS, Var.MULTIPLIERS, Var.DERIVATIVES, Var.SLACKS)

_CASADI_TYPES = (ca.MX, ca.SX, ca.DM)


def sorted_var_keys(variables: Mapping) -> list[Var]:
    """Use this to iterate through variables in the same order everywhere."""
    return sorted(Var(key) for key in variables)


def flatten(variables: Mapping):
    """Stack a Var -> matrix mapping into one column vector.

    CasADi inputs give a CasADi column; numpy inputs give a 1-D array.
    """
    values = [variables[key] for key in sorted_var_keys(variables)]
    if any(isinstance(value, _CASADI_TYPES) for value in values):
        return ca.veccat(*[value if isinstance(value, _CASADI_TYPES) else ca.DM(value)
                           for value in values])
    if not values:
        return np.zeros(0)
    return np.concatenate([np.atleast_2d(np.asarray(value, dtype=float)).ravel(order='F')
                           for value in values])


def expand(vector, shapes: Mapping) -> dict:
    """Split a flat vector into matrices with the given (rows, columns) shapes.

    This is the inverse of flatten() when the shapes match.
    """
    if isinstance(vector, _CASADI_TYPES):
        vector = ca.DM(vector).full()
    vector = np.asarray(vector, dtype=float).ravel()
    expected = sum(rows * cols for rows, cols in shapes.values())
    if vector.size != expected:
        raise ContractError(
            f"Cannot expand a vector of length {vector.size}; the variables need {expected} elements")

    out = {}
    offset = 0
    for key in sorted_var_keys(shapes):
        rows, cols = shapes[key]
        block = vector[offset:offset + rows * cols]
        out[key] = block.reshape((rows, cols), order='F').copy()
        offset += rows * cols
    return out


def _interpolate(old_times: np.ndarray, values: np.ndarray, new_times: np.ndarray) -> np.ndarray:
    """Linearly interpolate each row of values onto new_times."""
    if values.shape[1] != old_times.size:
        raise ValueError(
            f"Expected {old_times.size} columns to match the time vector, got {values.shape[1]}")
    if values.shape[0] == 0:
        return np.zeros((0, new_times.size))
    if old_times.size == 1:
        return np.repeat(values, new_times.size, axis=1)

    if np.all(np.diff(old_times) > 0):
        xp, x = old_times, new_times
    else:
        # Degenerate time vector (e.g. t0 == tf): interpolate on normalized position.
        xp = np.linspace(0.0, 1.0, old_times.size)
        span = new_times[-1] - new_times[0]
        if span > 0:
            x = (new_times - new_times[0]) / span
        else:
            x = np.linspace(0.0, 1.0, new_times.size)
    return np.vstack([np.interp(x, xp, row) for row in values])


class _TrajectoryMixin:
    """Read accessors shared by Iterate and Solution."""

    @property
    def initial_time(self) -> float:
        return float(np.asarray(self.variables[Var.INITIAL_TIME]).ravel()[0])

    @property
    def final_time(self) -> float:
        return float(np.asarray(self.variables[Var.FINAL_TIME]).ravel()[0])

    @property
    def states(self) -> np.ndarray:
        return self.variables[Var.STATES]

    @property
    def controls(self) -> np.ndarray:
        return self.variables[Var.CONTROLS]

    @property
    def multipliers(self) -> np.ndarray:
        return self.variables[Var.MULTIPLIERS]

    @property
    def parameters(self) -> np.ndarray:
        return self.variables[Var.PARAMETERS]

    def get_state(self, name: str) -> np.ndarray:
        return self.states[self.state_names.index(name)]

    def get_control(self, name: str) -> np.ndarray:
        return self.controls[self.control_names.index(name)]

    def get_parameter(self, name: str) -> float:
        return float(self.parameters[self.parameter_names.index(name), 0])

    def resample(self, times) -> 'Iterate':
        """Return an Iterate with grid-shaped variables interpolated onto times.

        Time endpoints and parameters are copied unchanged.
        """
        new_times = np.asarray(times, dtype=float).ravel()
        old_times = np.asarray(self.times, dtype=float).ravel()
        variables = {}
        for key, value in self.variables.items():
            value = np.atleast_2d(np.asarray(value, dtype=float))
            if key in GRID_VARS:
                variables[key] = _interpolate(old_times, value, new_times)
            else:
                variables[key] = value.copy()
        return Iterate(
            variables=variables,
            times=new_times.copy(),
            state_names=list(self.state_names),
            control_names=list(self.control_names),
            multiplier_names=list(self.multiplier_names),
            parameter_names=list(self.parameter_names),
        )


@dataclass
class Iterate(_TrajectoryMixin):
    """Numeric values for every decision variable, plus absolute times."""
    variables: dict = field(default_factory=dict)
    times: np.ndarray = field(default_factory=lambda: np.zeros(0))
    state_names: list[str] = field(default_factory=list)
    control_names: list[str] = field(default_factory=list)
    multiplier_names: list[str] = field(default_factory=list)
    parameter_names: list[str] = field(default_factory=list)

    def copy(self) -> 'Iterate':
        return replace(
            self,
            variables={key: np.array(value, dtype=float) for key, value in self.variables.items()},
            times=np.array(self.times, dtype=float),
            state_names=list(self.state_names),
            control_names=list(self.control_names),
            multiplier_names=list(self.multiplier_names),
            parameter_names=list(self.parameter_names),
        )


@dataclass(frozen=True)
class Solution(_TrajectoryMixin):
    """The decoded optimum of a solve, plus the raw backend diagnostics.

    stats is exactly what the backend reported; check it to tell whether the
    solve converged.

    A Solution carries the same fields and accessors as an Iterate but is
    frozen, so it is not an Iterate subclass. resample() and Iterate-shaped
    inputs (e.g. Transcription.solve) accept either; resample() returns a
    mutable Iterate.
    """
    variables: Mapping = field(default_factory=dict)
    times: np.ndarray = field(default_factory=lambda: np.zeros(0))
    state_names: tuple = ()
    control_names: tuple = ()
    multiplier_names: tuple = ()
    parameter_names: tuple = ()
    stats: Mapping = field(default_factory=dict)

    def __post_init__(self):
        variables = {}
        for key, value in self.variables.items():
            array = np.array(value, dtype=float)
            array.flags.writeable = False
            variables[Var(key)] = array
        times = np.array(self.times, dtype=float).ravel()
        times.flags.writeable = False
        object.__setattr__(self, 'variables', MappingProxyType(variables))
        object.__setattr__(self, 'times', times)
        object.__setattr__(self, 'stats', MappingProxyType(dict(self.stats)))
        for name in ('state_names', 'control_names', 'multiplier_names', 'parameter_names'):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    @property
    def success(self) -> bool:
        """The backend's own success flag (False if it did not report one)."""
        return bool(self.stats.get('success', False))

    @property
    def status(self) -> str:
        return str(self.stats.get('return_status', ''))
