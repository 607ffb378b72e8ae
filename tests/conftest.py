import pytest

from dircol import Bounds, Problem, SolverSettings


@pytest.fixture
def settings():
    return SolverSettings(
        optim_solver='ipopt',
        plugin_options={'print_time': False},
        solver_options={'print_level': 0, 'sb': 'yes', 'tol': 1e-10, 'max_iter': 200},
    )


def make_min_effort_problem() -> Problem:
    """Minimize the integral of u^2 with dx/dt = u, x(0) = 0, x(1) = 1."""
    problem = Problem('min_effort')
    problem.set_time_bounds(Bounds(0.0), Bounds(1.0))
    problem.add_state('x', Bounds(-10.0, 10.0), initial_bounds=Bounds(0.0), final_bounds=Bounds(1.0))
    problem.add_control('u', Bounds(-50.0, 50.0))
    problem.set_dynamics(lambda t, x, u, m, d, s, p: u)
    problem.add_integral_cost(lambda t, x, u, m, d, s, p: u**2)
    return problem


@pytest.fixture
def min_effort_problem():
    return make_min_effort_problem()
