"""
Hermite-Simpson (separated form) direct collocation.

Each mesh interval [k, k+1] gains a midpoint, so the grid alternates mesh
points and midpoints: [m0, c0, m1, c1, ..., m_n]. With i, c, j the grid
indices of an interval's start, midpoint and end and H = duration * h:

    Hermite interpolation:  x[c] - (x[i] + x[j]) / 2 - H / 8 * (f[i] - f[j]) = 0
    Simpson integration:    x[j] - x[i] - H / 6 * (f[i] + 4 f[c] + f[j]) = 0

Kinematic constraints are enforced at mesh points only.
"""

import casadi as ca
import numpy as np

from .config import SolverSettings
from .problem import Problem
from .transcription import Transcription, create_mesh
from .variables import Var


class HermiteSimpsonScheme(Transcription):
    """Hermite-Simpson transcription over a mesh of n points (2n - 1 grid points)."""

    def __init__(self, settings: SolverSettings, problem: Problem, mesh=10,
                 interpolate_control_midpoints: bool = True):
        """
        Args:
            settings: Backend settings
            problem: Optimal control problem
            mesh: Number of uniformly spaced mesh points, or the normalized mesh itself
            interpolate_control_midpoints: Constrain midpoint controls to the mean of
                the neighboring mesh-point controls
        """
        self.mesh = create_mesh(mesh)
        self.interpolate_control_midpoints = interpolate_control_midpoints
        super().__init__(settings, problem, num_grid_points=2 * self.mesh.size - 1)

        grid = np.zeros(self.num_grid_points)
        grid[::2] = self.mesh
        grid[1::2] = 0.5 * (self.mesh[:-1] + self.mesh[1:])
        self.grid = grid
        self._create_variables_and_bounds()

    @property
    def num_mesh_intervals(self) -> int:
        return self.mesh.size - 1

    def _create_quadrature_coefficients_impl(self) -> np.ndarray:
        h = np.diff(self.mesh)
        coefficients = np.zeros(self.num_grid_points)
        coefficients[0:-1:2] += h / 6.0
        coefficients[1::2] += 4.0 * h / 6.0
        coefficients[2::2] += h / 6.0
        return coefficients

    def _create_kinematic_constraint_indices_impl(self) -> np.ndarray:
        indices = np.zeros(self.num_grid_points)
        indices[::2] = 1.0
        return indices

    def _apply_constraints_impl(self):
        num_states = self.problem.num_states
        num_controls = self.problem.num_controls
        states = self.vars[Var.STATES]
        controls = self.vars[Var.CONTROLS]
        h = np.diff(self.mesh)

        xdot = [self._calc_dae(itime, 0)[0] for itime in range(self.num_grid_points)]

        # 1. Defects
        zeros = np.zeros(2 * num_states)
        for k in range(self.num_mesh_intervals):
            i, c, j = 2 * k, 2 * k + 1, 2 * k + 2
            step = float(h[k]) * self.duration
            hermite = (states[:, c] - 0.5 * (states[:, i] + states[:, j])
                       - step / 8.0 * (xdot[i] - xdot[j]))
            simpson = (states[:, j] - states[:, i]
                       - step / 6.0 * (xdot[i] + 4.0 * xdot[c] + xdot[j]))
            self._add_constraints(zeros, zeros, ca.vertcat(hermite, simpson))

        # 2. Control midpoints
        if self.interpolate_control_midpoints and num_controls:
            control_zeros = np.zeros(num_controls)
            for k in range(self.num_mesh_intervals):
                i, c, j = 2 * k, 2 * k + 1, 2 * k + 2
                self._add_constraints(control_zeros, control_zeros,
                                      controls[:, c] - 0.5 * (controls[:, i] + controls[:, j]))

        # 3. Kinematic, path and endpoint constraints
        self._add_kinematic_constraints()
        self._add_path_constraints()
        self._add_endpoint_constraints()
