"""
Trapezoidal direct collocation.

The grid is the mesh itself. Between mesh points k and k+1 (normalized
spacing h_k) the dynamics are enforced with the defect

    x[k+1] - x[k] - duration * h_k / 2 * (f[k] + f[k+1]) = 0

and integral costs use the trapezoid rule.
"""

import numpy as np

from .config import SolverSettings
from .problem import Problem
from .transcription import Transcription, create_mesh
from .variables import Var


class TrapezoidalScheme(Transcription):
    """Trapezoidal transcription over a mesh of n points (n - 1 intervals)."""

    def __init__(self, settings: SolverSettings, problem: Problem, mesh=10):
        """
        Args:
            settings: Backend settings
            problem: Optimal control problem
            mesh: Number of uniformly spaced mesh points, or the normalized mesh itself
        """
        self.mesh = create_mesh(mesh)
        super().__init__(settings, problem, num_grid_points=self.mesh.size)
        self.grid = self.mesh.copy()
        self._create_variables_and_bounds()

    def _create_quadrature_coefficients_impl(self) -> np.ndarray:
        h = np.diff(self.grid)
        coefficients = np.zeros(self.num_grid_points)
        coefficients[:-1] += 0.5 * h
        coefficients[1:] += 0.5 * h
        return coefficients

    def _create_kinematic_constraint_indices_impl(self) -> np.ndarray:
        # Every grid point is a mesh point.
        return np.ones(self.num_grid_points)

    def _apply_constraints_impl(self):
        num_states = self.problem.num_states
        states = self.vars[Var.STATES]
        h = np.diff(self.grid)

        xdot = [self._calc_dae(itime, 0)[0] for itime in range(self.num_grid_points)]

        # 1. Defects
        zeros = np.zeros(num_states)
        for k in range(self.num_grid_points - 1):
            defect = (states[:, k + 1] - states[:, k]
                      - 0.5 * float(h[k]) * self.duration * (xdot[k] + xdot[k + 1]))
            self._add_constraints(zeros, zeros, defect)

        # 2. Kinematic, path and endpoint constraints
        self._add_kinematic_constraints()
        self._add_path_constraints()
        self._add_endpoint_constraints()
