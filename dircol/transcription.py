"""
Scheme-independent direct collocation transcription.

A Transcription converts a Problem into a nonlinear program for casadi.nlpsol.
Concrete schemes (trapezoidal, Hermite-Simpson, ...) derive from it and:

1. size the grid and the variables in their constructor
   (set self.grid, then call self._create_variables_and_bounds()),
2. implement the three hooks:
   - _create_quadrature_coefficients_impl()
   - _create_kinematic_constraint_indices_impl()
   - _apply_constraints_impl()

The finished scheme is handed to transcribe(), which builds the time
expressions and the objective and calls _apply_constraints_impl() once:

    scheme = transcribe(TrapezoidalScheme(settings, problem, num_mesh_points=10))
    solution = scheme.solve(scheme.create_initial_guess_from_bounds())
"""

from abc import ABC, abstractmethod
from typing import Optional
import logging
import time

import casadi as ca
import numpy as np

from .bounds import Bounds
from .config import SolverSettings
from .errors import ContractError, InfeasibleBoundsError, SolveError
from .problem import Problem, VariableInfo
from .variables import Iterate, Solution, Var, expand, flatten

logger = logging.getLogger(__name__)

_CASADI_TYPES = (ca.MX, ca.SX, ca.DM)


def _as_index_array(selector, size: int) -> np.ndarray:
    """Convert an int, slice or sequence selector into explicit indices."""
    if isinstance(selector, slice):
        return np.arange(size)[selector]
    if isinstance(selector, (int, np.integer)):
        return np.arange(size)[[selector]]
    return np.arange(size)[np.asarray(selector, dtype=int)]


def create_mesh(mesh) -> np.ndarray:
    """Normalized mesh from a number of points (uniform) or explicit values in [0, 1]."""
    if isinstance(mesh, (int, np.integer)):
        if mesh < 2:
            raise ValueError(f"Need at least 2 mesh points, got {mesh}")
        return np.linspace(0.0, 1.0, int(mesh))
    mesh = np.asarray(mesh, dtype=float).ravel()
    if mesh.size < 2:
        raise ValueError(f"Need at least 2 mesh points, got {mesh.size}")
    if mesh[0] != 0.0 or mesh[-1] != 1.0 or np.any(np.diff(mesh) <= 0):
        raise ValueError("Mesh must be strictly increasing from 0 to 1")
    return mesh


class Transcription(ABC):
    """Base class for transcription schemes."""

    def __init__(self, settings: SolverSettings, problem: Problem, num_grid_points: int):
        self.settings = settings
        self.problem = problem
        # The grid includes mesh points and any interior collocation points.
        self.num_grid_points = num_grid_points
        self.grid: Optional[np.ndarray] = None

        self.vars: dict = {}
        self.lower_bounds: dict = {}
        self.upper_bounds: dict = {}
        self.times = None
        self.duration = None

        self._objective = ca.MX(0)
        self._constraints: list[ca.MX] = []
        self._constraints_lower_bounds: list[np.ndarray] = []
        self._constraints_upper_bounds: list[np.ndarray] = []
        self._quadrature_coefficients: Optional[np.ndarray] = None
        self._kinematic_constraint_indices: Optional[np.ndarray] = None
        self._dynamics_function: Optional[ca.Function] = None
        self._quadrature_error_function: Optional[ca.Function] = None
        self._transcribed = False

    # Hooks

    @abstractmethod
    def _create_quadrature_coefficients_impl(self) -> np.ndarray:
        """Weights (one per grid point) whose weighted sum integrates over [0, 1]."""

    @abstractmethod
    def _create_kinematic_constraint_indices_impl(self) -> np.ndarray:
        """Vector (one entry per grid point), nonzero where kinematic constraints apply."""

    @abstractmethod
    def _apply_constraints_impl(self):
        """Add defect, path, kinematic and endpoint constraints."""

    # Read accessors

    @property
    def is_transcribed(self) -> bool:
        return self._transcribed

    @property
    def num_constraint_equations(self) -> int:
        return int(sum(c.numel() for c in self._constraints))

    @property
    def objective(self) -> ca.MX:
        return self._objective

    def create_quadrature_coefficients(self) -> np.ndarray:
        coefficients = np.asarray(self._create_quadrature_coefficients_impl(), dtype=float).ravel()
        self._check_grid_sized(coefficients, 'quadrature coefficients')
        return coefficients.copy()

    def create_kinematic_constraint_indices(self) -> np.ndarray:
        indices = np.asarray(self._create_kinematic_constraint_indices_impl(), dtype=float).ravel()
        self._check_grid_sized(indices, 'kinematic constraint indices')
        return indices.copy()

    def _check_grid_sized(self, vector: np.ndarray, what: str):
        if vector.size != self.num_grid_points:
            raise ContractError(
                f"{type(self).__name__} returned {vector.size} {what}; "
                f"expected one per grid point ({self.num_grid_points})")

    # Times

    def create_times(self, initial_time, final_time):
        """Absolute times at the grid points: t0 + grid * (tf - t0).

        Works with floats, numpy arrays and CasADi expressions.
        """
        if self.grid is None:
            raise ContractError("The grid must be set before creating times")
        grid = np.asarray(self.grid, dtype=float).ravel()
        if isinstance(initial_time, _CASADI_TYPES) or isinstance(final_time, _CASADI_TYPES):
            return (final_time - initial_time) * ca.DM(grid.tolist()) + initial_time
        initial_time = float(np.asarray(initial_time, dtype=float).ravel()[0])
        final_time = float(np.asarray(final_time, dtype=float).ravel()[0])
        return initial_time + grid * (final_time - initial_time)

    # Variables and bounds

    def _create_variables_and_bounds(self):
        """Create symbolic variables sized to the grid and apply the problem's bounds."""
        N = self.num_grid_points
        problem = self.problem
        shapes = {
            Var.INITIAL_TIME: (1, 1),
            Var.FINAL_TIME: (1, 1),
            Var.STATES: (problem.num_states, N),
            Var.CONTROLS: (problem.num_controls, N),
            Var.MULTIPLIERS: (problem.num_multipliers, N),
            Var.DERIVATIVES: (problem.num_derivatives, N),
            Var.SLACKS: (problem.num_slacks, N),
            Var.PARAMETERS: (problem.num_parameters, 1),
        }
        for var, (rows, cols) in shapes.items():
            self.vars[var] = ca.MX.sym(var.name.lower(), rows, cols)
            self.lower_bounds[var] = np.full((rows, cols), -np.inf)
            self.upper_bounds[var] = np.full((rows, cols), np.inf)

        self._set_variable_bounds(Var.INITIAL_TIME, 0, 0, problem.time_initial_bounds)
        self._set_variable_bounds(Var.FINAL_TIME, 0, 0, problem.time_final_bounds)
        self._set_path_bounds(Var.STATES, problem.state_infos)
        self._set_path_bounds(Var.CONTROLS, problem.control_infos)
        self._set_path_bounds(Var.MULTIPLIERS, problem.multiplier_infos)
        self._set_variable_bounds(Var.DERIVATIVES, slice(None), slice(None), problem.derivative_bounds)
        for irow, info in enumerate(problem.parameter_infos):
            self._set_variable_bounds(Var.PARAMETERS, irow, 0, info.bounds)

    def _set_path_bounds(self, var: Var, infos: list[VariableInfo]):
        # Initial and final bounds are applied on top of the path bounds, but
        # only when they are set.
        for irow, info in enumerate(infos):
            self._set_variable_bounds(var, irow, slice(None), info.bounds)
            if info.initial_bounds.is_set():
                self._set_variable_bounds(var, irow, 0, info.initial_bounds)
            if info.final_bounds.is_set():
                self._set_variable_bounds(var, irow, -1, info.final_bounds)

    def _set_variable_bounds(self, var: Var, rows, columns, bounds: Bounds):
        """Write bounds into the selected block of one variable kind.

        Unset bounds write (-inf, +inf). Other elements are untouched.
        """
        lower = self.lower_bounds[var]
        upper = self.upper_bounds[var]
        block = np.ix_(_as_index_array(rows, lower.shape[0]), _as_index_array(columns, lower.shape[1]))
        lower_value, upper_value = bounds.as_tuple()
        lower[block] = lower_value
        upper[block] = upper_value

    # Constraints and objective

    def _set_objective(self, objective: ca.MX):
        self._check_mutable()
        self._objective = objective

    def _add_constraints(self, lower, upper, equations: ca.MX):
        """Append lower <= equations <= upper; use lower == upper for equalities."""
        self._check_mutable()
        lower = np.asarray(lower, dtype=float).ravel()
        upper = np.asarray(upper, dtype=float).ravel()
        equations = ca.vec(equations)
        if not (lower.size == upper.size == equations.numel()):
            raise ContractError(
                f"Constraint lower bounds ({lower.size}), upper bounds ({upper.size}) "
                f"and equations ({equations.numel()}) must have the same length")
        self._constraints.append(equations)
        self._constraints_lower_bounds.append(lower)
        self._constraints_upper_bounds.append(upper)

    def _check_mutable(self):
        if self._transcribed:
            raise ContractError("Constraints and objective cannot change after transcription")

    def _point_arguments(self, itime: int) -> list:
        itime = int(itime)
        return [
            self.times[itime],
            self.vars[Var.STATES][:, itime],
            self.vars[Var.CONTROLS][:, itime],
            self.vars[Var.MULTIPLIERS][:, itime],
            self.vars[Var.DERIVATIVES][:, itime],
            self.vars[Var.SLACKS][:, itime],
            self.vars[Var.PARAMETERS],
        ]

    def _endpoint_arguments(self) -> list:
        states = self.vars[Var.STATES]
        return [
            self.vars[Var.INITIAL_TIME],
            states[:, 0],
            self.vars[Var.FINAL_TIME],
            states[:, -1],
            self.vars[Var.PARAMETERS],
        ]

    def _calc_dae(self, itime: int, num_qerr: Optional[int] = None,
                  calc_qerr: bool = False) -> tuple[ca.MX, ca.MX]:
        """Evaluate the state derivatives (and optionally the quadrature error) at a grid point.

        num_qerr defaults to the number of channels the problem declares.
        """
        if self._dynamics_function is None:
            self._dynamics_function = self.problem.create_dynamics_function()
        args = self._point_arguments(itime)
        xdot = self._dynamics_function(*args)
        if not calc_qerr:
            return xdot, ca.MX(0, 1)

        if self._quadrature_error_function is None:
            self._quadrature_error_function = self.problem.create_quadrature_error_function()
        if self._quadrature_error_function is None:
            raise ContractError("Quadrature error requested but the problem declares none")
        if num_qerr is None:
            num_qerr = self.problem.num_quadrature_errors
        qerr = self._quadrature_error_function(*args)
        if qerr.numel() != num_qerr:
            raise ContractError(f"Expected {num_qerr} quadrature error channels, got {qerr.numel()}")
        return xdot, qerr

    def _create_objective(self) -> ca.MX:
        integrand_function = self.problem.create_integral_cost_function()
        integrand = ca.vertcat(*[integrand_function(*self._point_arguments(i))
                                 for i in range(self.num_grid_points)])
        weights = ca.DM(self._quadrature_coefficients)
        integral = self.duration * ca.mtimes(weights.T, integrand)
        endpoint = self.problem.create_endpoint_cost_function()(*self._endpoint_arguments())
        return integral + endpoint

    def _add_point_constraints(self, infos, indices):
        for info in infos:
            g = self.problem.create_point_constraint_function(info)
            lower, upper = self.problem.get_constraint_bounds(info, g.size1_out(0))
            for itime in indices:
                self._add_constraints(lower, upper, g(*self._point_arguments(itime)))

    def _add_path_constraints(self, indices=None):
        """Enforce the problem's path constraints at the given grid indices (default all)."""
        if indices is None:
            indices = range(self.num_grid_points)
        self._add_point_constraints(self.problem.path_constraints, indices)

    def _add_kinematic_constraints(self):
        """Enforce kinematic constraints only where the scheme's mask is nonzero."""
        indices = np.flatnonzero(self._kinematic_constraint_indices)
        self._add_point_constraints(self.problem.kinematic_constraints, indices)

    def _add_endpoint_constraints(self):
        for info in self.problem.endpoint_constraints:
            g = self.problem.create_endpoint_constraint_function(info)
            lower, upper = self.problem.get_constraint_bounds(info, g.size1_out(0))
            self._add_constraints(lower, upper, g(*self._endpoint_arguments()))

    # Vectorization

    def expand(self, x) -> dict:
        """Convert the NLP decision vector back into per-kind matrices."""
        return expand(x, {var: value.shape for var, value in self.vars.items()})

    # Initial guesses

    def create_initial_guess_from_bounds(self) -> Iterate:
        """Midpoint of the bounds; the finite side if only one is finite; else 0."""
        variables = {}
        for var in self.vars:
            lower = self.lower_bounds[var]
            upper = self.upper_bounds[var]
            value = np.zeros(lower.shape)
            lower_finite = np.isfinite(lower)
            upper_finite = np.isfinite(upper)
            both = lower_finite & upper_finite
            value[both] = 0.5 * (lower[both] + upper[both])
            value[lower_finite & ~upper_finite] = lower[lower_finite & ~upper_finite]
            value[upper_finite & ~lower_finite] = upper[upper_finite & ~lower_finite]
            variables[var] = value
        return self._create_iterate(variables)

    def create_random_iterate_within_bounds(self, rng: Optional[np.random.Generator] = None) -> Iterate:
        """Uniform samples within the bounds.

        Infinite sides are replaced using settings.random_unbounded_range.
        Pass a seeded numpy Generator for reproducible iterates.
        """
        rng = rng if rng is not None else np.random.default_rng()
        fallback_low, fallback_high = self.settings.random_unbounded_range
        width = fallback_high - fallback_low
        variables = {}
        for var in self.vars:
            lower = self.lower_bounds[var].copy()
            upper = self.upper_bounds[var].copy()
            lower_finite = np.isfinite(lower)
            upper_finite = np.isfinite(upper)

            neither = ~lower_finite & ~upper_finite
            lower[neither] = fallback_low
            upper[neither] = fallback_high
            only_lower = lower_finite & ~upper_finite
            upper[only_lower] = lower[only_lower] + width
            only_upper = upper_finite & ~lower_finite
            lower[only_upper] = upper[only_upper] - width

            variables[var] = rng.uniform(lower, upper)
        return self._create_iterate(variables)

    def _create_iterate(self, variables: dict) -> Iterate:
        times = self.create_times(variables[Var.INITIAL_TIME], variables[Var.FINAL_TIME])
        return self.problem.create_iterate(Iterate, variables=variables, times=times)

    # Solve

    def assemble_constraints(self) -> tuple[ca.MX, np.ndarray, np.ndarray]:
        """All recorded constraints and their bounds, concatenated in the order they were added."""
        if not self._constraints:
            return ca.MX(0, 1), np.zeros(0), np.zeros(0)
        return (ca.vertcat(*self._constraints),
                np.concatenate(self._constraints_lower_bounds),
                np.concatenate(self._constraints_upper_bounds))

    def solve(self, guess: Iterate) -> Solution:
        """Solve the NLP once, starting from guess.

        Returns a Solution whether or not the backend converged; inspect
        Solution.stats. Raises SolveError if the backend cannot be run.
        """
        if not self._transcribed:
            raise ContractError("solve() called before transcribe()")

        guess = guess.resample(self.create_times(guess.initial_time, guess.final_time))
        x0 = self._flatten_guess(guess)
        options = self.settings.create_nlpsol_options()

        lbx = flatten(self.lower_bounds)
        ubx = flatten(self.upper_bounds)
        g, lbg, ubg = self.assemble_constraints()
        self._check_bounds('variable', lbx, ubx)
        self._check_bounds('constraint', lbg, ubg)

        nlp = {
            'x': flatten(self.vars),
            'f': self._objective,
            'g': g,
        }
        logger.debug("NLP has %d variables and %d constraints", lbx.size, lbg.size)
        logger.info("Solving %s with %s", type(self).__name__, self.settings.optim_solver)

        start_time = time.time()
        try:
            nlp_function = ca.nlpsol('nlp', self.settings.optim_solver, nlp, options)
            result = nlp_function(x0=x0, lbx=lbx, ubx=ubx, lbg=lbg, ubg=ubg)
        except RuntimeError as e:
            raise SolveError(f"NLP backend '{self.settings.optim_solver}' failed: {e}") from e
        solve_time_ms = (time.time() - start_time) * 1000

        stats = nlp_function.stats()
        logger.info("Backend returned '%s' after %.1f ms",
                    stats.get('return_status', 'unknown'), solve_time_ms)

        variables = self.expand(result['x'])
        times = self.create_times(variables[Var.INITIAL_TIME], variables[Var.FINAL_TIME])
        return self.problem.create_iterate(Solution, variables=variables, times=times, stats=stats)

    def _flatten_guess(self, guess: Iterate) -> np.ndarray:
        variables = {}
        for var, symbol in self.vars.items():
            if var in guess.variables:
                value = np.atleast_2d(np.asarray(guess.variables[var], dtype=float))
            elif symbol.numel() == 0:
                value = np.zeros(symbol.shape)
            else:
                raise ValueError(f"Initial guess is missing {var.name.lower()}")
            if value.shape != symbol.shape:
                raise ValueError(
                    f"Initial guess for {var.name.lower()} has shape {value.shape}, "
                    f"expected {symbol.shape}")
            variables[var] = value
        return flatten(variables)

    @staticmethod
    def _check_bounds(kind: str, lower: np.ndarray, upper: np.ndarray):
        bad = np.flatnonzero(lower > upper)
        if bad.size:
            index = int(bad[0])
            raise InfeasibleBoundsError(kind, index, float(lower[index]), float(upper[index]))


def transcribe(scheme: Transcription) -> Transcription:
    """Build the objective and constraints of a fully constructed scheme.

    Runs once; the scheme must have set its grid and created its variables.
    """
    if scheme.is_transcribed:
        raise ContractError(f"{type(scheme).__name__} has already been transcribed")
    _check_grid(scheme)
    _check_variable_shapes(scheme)

    initial_time = scheme.vars[Var.INITIAL_TIME]
    final_time = scheme.vars[Var.FINAL_TIME]
    scheme.duration = final_time - initial_time
    scheme.times = scheme.create_times(initial_time, final_time)

    scheme._quadrature_coefficients = scheme.create_quadrature_coefficients()
    scheme._kinematic_constraint_indices = scheme.create_kinematic_constraint_indices()

    scheme._set_objective(scheme._create_objective())
    scheme._apply_constraints_impl()
    scheme._transcribed = True

    logger.debug("Transcribed %s: %d grid points, %d constraint equations",
                 type(scheme).__name__, scheme.num_grid_points, scheme.num_constraint_equations)
    return scheme


def _check_grid(scheme: Transcription):
    grid = scheme.grid
    if grid is None:
        raise ContractError(f"{type(scheme).__name__} did not set its grid")
    grid = np.asarray(grid, dtype=float).ravel()
    if grid.size != scheme.num_grid_points:
        raise ContractError(
            f"Grid has {grid.size} points but the scheme declared {scheme.num_grid_points}")
    if np.any(np.diff(grid) <= 0) or grid[0] < 0 or grid[-1] > 1:
        raise ContractError("Grid must be strictly increasing within [0, 1]")
    grid.flags.writeable = False
    scheme.grid = grid


def _check_variable_shapes(scheme: Transcription):
    for var in Var:
        if var not in scheme.vars:
            raise ContractError(f"{type(scheme).__name__} did not create {var.name.lower()} variables")
        shape = scheme.vars[var].shape
        for name, bounds in (('lower', scheme.lower_bounds), ('upper', scheme.upper_bounds)):
            if var not in bounds or bounds[var].shape != shape:
                raise ContractError(
                    f"{name} bounds of {var.name.lower()} do not match variable shape {shape}")
