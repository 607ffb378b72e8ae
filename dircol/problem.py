"""
Continuous-time optimal control problem.

A Problem declares the variables (with bounds), the dynamics, the costs and
the constraints. The user supplies plain Python callables written with CasADi
operations; each is wrapped into a named casadi.Function when a transcription
asks for it.

Point functions are called as fn(t, x, u, m, d, s, p):
    - t: time (1x1)
    - x: states (num_states x 1)
    - u: controls (num_controls x 1)
    - m: multipliers (num_multipliers x 1)
    - d: derivatives (num_derivatives x 1)
    - s: slacks (num_slacks x 1)
    - p: parameters (num_parameters x 1)
Endpoint functions are called as fn(t0, x0, tf, xf, p).
"""

from dataclasses import dataclass, field
from typing import Callable, Optional
import casadi as ca
import numpy as np

from .bounds import Bounds
from .variables import Iterate


@dataclass
class VariableInfo:
    """Name and bounds of one component of a variable kind."""
    name: str
    bounds: Bounds = field(default_factory=Bounds)
    initial_bounds: Bounds = field(default_factory=Bounds)
    final_bounds: Bounds = field(default_factory=Bounds)


@dataclass
class ConstraintInfo:
    """A vector-valued constraint lower <= fn(...) <= upper."""
    name: str
    fn: Callable
    lower: object = 0.0
    upper: object = 0.0


def _as_column(value) -> ca.MX:
    if isinstance(value, (list, tuple)):
        value = ca.vertcat(*value)
    return ca.vec(ca.MX(value))


def _broadcast(value, size: int, name: str) -> np.ndarray:
    value = np.asarray(value, dtype=float).ravel()
    if value.size not in (1, size):
        raise ValueError(f"Bounds of constraint '{name}' do not match its size {size}")
    return np.broadcast_to(value, (size,)).copy()


class Problem:
    """Optimal control problem consumed by a transcription scheme."""

    def __init__(self, name: str = 'problem'):
        self.name = name
        self.time_initial_bounds = Bounds()
        self.time_final_bounds = Bounds()
        self.state_infos: list[VariableInfo] = []
        self.control_infos: list[VariableInfo] = []
        self.multiplier_infos: list[VariableInfo] = []
        self.parameter_infos: list[VariableInfo] = []
        self.num_derivatives = 0
        self.num_slacks = 0
        self.derivative_bounds = Bounds()

        self._dynamics: Optional[Callable] = None
        self._quadrature_error: Optional[Callable] = None
        self.num_quadrature_errors = 0
        self._integral_costs: list[tuple[Callable, float]] = []
        self._endpoint_costs: list[tuple[Callable, float]] = []
        self.path_constraints: list[ConstraintInfo] = []
        self.kinematic_constraints: list[ConstraintInfo] = []
        self.endpoint_constraints: list[ConstraintInfo] = []

    # Declarations

    def set_time_bounds(self, initial: Bounds, final: Bounds):
        self.time_initial_bounds = initial
        self.time_final_bounds = final

    def add_state(self, name: str, bounds: Bounds = Bounds(),
                  initial_bounds: Bounds = Bounds(), final_bounds: Bounds = Bounds()):
        self._check_unique(name, self.state_infos)
        self.state_infos.append(VariableInfo(name, bounds, initial_bounds, final_bounds))

    def add_control(self, name: str, bounds: Bounds = Bounds(),
                    initial_bounds: Bounds = Bounds(), final_bounds: Bounds = Bounds()):
        self._check_unique(name, self.control_infos)
        self.control_infos.append(VariableInfo(name, bounds, initial_bounds, final_bounds))

    def add_multiplier(self, name: str, bounds: Bounds = Bounds(),
                       initial_bounds: Bounds = Bounds(), final_bounds: Bounds = Bounds()):
        self._check_unique(name, self.multiplier_infos)
        self.multiplier_infos.append(VariableInfo(name, bounds, initial_bounds, final_bounds))

    def add_parameter(self, name: str, bounds: Bounds = Bounds()):
        self._check_unique(name, self.parameter_infos)
        self.parameter_infos.append(VariableInfo(name, bounds))

    def set_num_derivatives(self, num: int, bounds: Bounds = Bounds()):
        if num < 0:
            raise ValueError("Number of derivatives must be non-negative")
        self.num_derivatives = num
        self.derivative_bounds = bounds

    def set_num_slacks(self, num: int):
        if num < 0:
            raise ValueError("Number of slacks must be non-negative")
        self.num_slacks = num

    def set_dynamics(self, fn: Callable):
        self._dynamics = fn

    def set_quadrature_error(self, fn: Callable, size: int):
        """Residual channels that vanish when the discrete integral matches fn's integral."""
        self._quadrature_error = fn
        self.num_quadrature_errors = size

    def add_integral_cost(self, fn: Callable, weight: float = 1.0):
        self._integral_costs.append((fn, weight))

    def add_endpoint_cost(self, fn: Callable, weight: float = 1.0):
        self._endpoint_costs.append((fn, weight))

    def add_path_constraint(self, name: str, fn: Callable, lower=0.0, upper=0.0):
        self.path_constraints.append(ConstraintInfo(name, fn, lower, upper))

    def add_kinematic_constraint(self, name: str, fn: Callable, lower=0.0, upper=0.0):
        self.kinematic_constraints.append(ConstraintInfo(name, fn, lower, upper))

    def add_endpoint_constraint(self, name: str, fn: Callable, lower=0.0, upper=0.0):
        self.endpoint_constraints.append(ConstraintInfo(name, fn, lower, upper))

    @staticmethod
    def _check_unique(name: str, infos: list[VariableInfo]):
        if any(info.name == name for info in infos):
            raise ValueError(f"Variable '{name}' already exists")

    # Dimensions

    @property
    def num_states(self) -> int:
        return len(self.state_infos)

    @property
    def num_controls(self) -> int:
        return len(self.control_infos)

    @property
    def num_multipliers(self) -> int:
        return len(self.multiplier_infos)

    @property
    def num_parameters(self) -> int:
        return len(self.parameter_infos)

    @property
    def num_path_constraint_equations(self) -> int:
        return sum(self.create_point_constraint_function(c).size1_out(0) for c in self.path_constraints)

    def create_iterate(self, cls=Iterate, **fields):
        """Create an empty Iterate (or Solution) carrying this problem's names."""
        return cls(
            state_names=[info.name for info in self.state_infos],
            control_names=[info.name for info in self.control_infos],
            multiplier_names=[info.name for info in self.multiplier_infos],
            parameter_names=[info.name for info in self.parameter_infos],
            **fields,
        )

    # CasADi functions

    def _point_symbols(self):
        t = ca.MX.sym('time')
        x = ca.MX.sym('states', self.num_states)
        u = ca.MX.sym('controls', self.num_controls)
        m = ca.MX.sym('multipliers', self.num_multipliers)
        d = ca.MX.sym('derivatives', self.num_derivatives)
        s = ca.MX.sym('slacks', self.num_slacks)
        p = ca.MX.sym('parameters', self.num_parameters)
        return t, x, u, m, d, s, p

    def _endpoint_symbols(self):
        t0 = ca.MX.sym('initial_time')
        x0 = ca.MX.sym('initial_states', self.num_states)
        tf = ca.MX.sym('final_time')
        xf = ca.MX.sym('final_states', self.num_states)
        p = ca.MX.sym('parameters', self.num_parameters)
        return t0, x0, tf, xf, p

    def create_dynamics_function(self) -> ca.Function:
        """
        Create a CasADi function for the state derivatives.

        Returns:
            f_dynamics: CasADi Function (t, x, u, m, d, s, p) -> xdot
        """
        if self._dynamics is None:
            raise ValueError(f"Problem '{self.name}' has no dynamics")
        args = self._point_symbols()
        xdot = _as_column(self._dynamics(*args))
        if xdot.numel() != self.num_states:
            raise ValueError(
                f"Dynamics return {xdot.numel()} derivatives but the problem has {self.num_states} states")
        return ca.Function('f_dynamics', list(args), [xdot])

    def create_quadrature_error_function(self) -> ca.Function:
        """CasADi Function (t, x, u, m, d, s, p) -> qerr, or None if not declared."""
        if self._quadrature_error is None:
            return None
        args = self._point_symbols()
        qerr = _as_column(self._quadrature_error(*args))
        return ca.Function('f_quadrature_error', list(args), [qerr])

    def create_integral_cost_function(self) -> ca.Function:
        """CasADi Function (t, x, u, m, d, s, p) -> weighted sum of the integrands."""
        args = self._point_symbols()
        integrand = ca.MX(0)
        for fn, weight in self._integral_costs:
            integrand += weight * ca.sum1(_as_column(fn(*args)))
        return ca.Function('f_integrand', list(args), [integrand])

    def create_endpoint_cost_function(self) -> ca.Function:
        """CasADi Function (t0, x0, tf, xf, p) -> weighted sum of endpoint costs."""
        t0, x0, tf, xf, p = self._endpoint_symbols()
        cost = ca.MX(0)
        for fn, weight in self._endpoint_costs:
            cost += weight * ca.sum1(_as_column(fn(t0, x0, tf, xf, p)))
        return ca.Function('f_endpoint_cost', [t0, x0, tf, xf, p], [cost])

    def create_point_constraint_function(self, info: ConstraintInfo) -> ca.Function:
        args = self._point_symbols()
        g = _as_column(info.fn(*args))
        return ca.Function(f'g_{info.name}', list(args), [g])

    def create_endpoint_constraint_function(self, info: ConstraintInfo) -> ca.Function:
        t0, x0, tf, xf, p = self._endpoint_symbols()
        g = _as_column(info.fn(t0, x0, tf, xf, p))
        return ca.Function(f'g_{info.name}', [t0, x0, tf, xf, p], [g])

    def get_constraint_bounds(self, info: ConstraintInfo, size: int) -> tuple[np.ndarray, np.ndarray]:
        """Lower and upper bound vectors of a constraint, broadcast to its size."""
        lower = _broadcast(info.lower, size, info.name)
        upper = _broadcast(info.upper, size, info.name)
        if np.any(lower > upper):
            raise ValueError(f"Constraint '{info.name}' has a lower bound above its upper bound")
        return lower, upper
