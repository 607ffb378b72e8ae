# test_problem.py

import casadi as ca
import numpy as np
import pytest

from dircol import Bounds, Iterate, Problem, Solution


def test_duplicate_names_are_rejected():
    problem = Problem()
    problem.add_state('x')
    with pytest.raises(ValueError):
        problem.add_state('x')


def test_dimensions_and_container_factory():
    problem = Problem()
    problem.add_state('q')
    problem.add_state('v')
    problem.add_control('tau')
    problem.add_multiplier('lambda')
    problem.add_parameter('mass', Bounds(1.0, 2.0))
    problem.set_num_derivatives(2)
    problem.set_num_slacks(1)
    assert (problem.num_states, problem.num_controls, problem.num_multipliers,
            problem.num_parameters, problem.num_derivatives, problem.num_slacks) == (2, 1, 1, 1, 2, 1)

    iterate = problem.create_iterate()
    assert isinstance(iterate, Iterate)
    assert iterate.state_names == ['q', 'v']
    solution = problem.create_iterate(Solution, stats={'success': True})
    assert solution.parameter_names == ('mass',)
    assert solution.success


def test_dynamics_function_evaluates():
    problem = Problem()
    problem.add_state('q')
    problem.add_state('v')
    problem.add_control('tau')
    problem.add_parameter('mass')
    problem.set_dynamics(lambda t, x, u, m, d, s, p: [x[1], u[0] / p[0]])
    f = problem.create_dynamics_function()
    xdot = f(0.0, [1.0, 2.0], [6.0], ca.DM(0, 1), ca.DM(0, 1), ca.DM(0, 1), [3.0])
    np.testing.assert_allclose(xdot.full().ravel(), [2.0, 2.0])


def test_dynamics_with_multipliers():
    problem = Problem()
    problem.add_state('v')
    problem.add_multiplier('lambda')
    problem.set_dynamics(lambda t, x, u, m, d, s, p: -m[0])
    f = problem.create_dynamics_function()
    xdot = f(0.0, [1.0], ca.DM(0, 1), [4.0], ca.DM(0, 1), ca.DM(0, 1), ca.DM(0, 1))
    assert float(xdot) == -4.0


def test_dynamics_size_mismatch_is_rejected():
    problem = Problem()
    problem.add_state('q')
    problem.add_state('v')
    problem.set_dynamics(lambda t, x, u, m, d, s, p: x[0])
    with pytest.raises(ValueError):
        problem.create_dynamics_function()


def test_missing_dynamics_is_rejected():
    with pytest.raises(ValueError):
        Problem().create_dynamics_function()


def test_costs_are_weighted_and_summed():
    problem = Problem()
    problem.add_state('x')
    problem.add_integral_cost(lambda t, x, u, m, d, s, p: x**2)
    problem.add_integral_cost(lambda t, x, u, m, d, s, p: t, weight=2.0)
    problem.add_endpoint_cost(lambda t0, x0, tf, xf, p: xf - x0, weight=3.0)
    empty = ca.DM(0, 1)

    integrand = problem.create_integral_cost_function()
    assert float(integrand(1.5, [2.0], empty, empty, empty, empty, empty)) == pytest.approx(7.0)
    endpoint = problem.create_endpoint_cost_function()
    assert float(endpoint(0.0, [1.0], 1.0, [4.0], empty)) == pytest.approx(9.0)


def test_constraint_bounds_broadcast():
    problem = Problem()
    problem.add_state('a')
    problem.add_state('b')
    problem.add_path_constraint('box', lambda t, x, u, m, d, s, p: x, -1.0, [2.0, 3.0])
    info = problem.path_constraints[0]
    size = problem.create_point_constraint_function(info).size1_out(0)
    lower, upper = problem.get_constraint_bounds(info, size)
    np.testing.assert_array_equal(lower, [-1.0, -1.0])
    np.testing.assert_array_equal(upper, [2.0, 3.0])
    assert problem.num_path_constraint_equations == 2


@pytest.mark.parametrize("lower,upper", [([0.0, 0.0, 0.0], 1.0), (2.0, 1.0)])
def test_bad_constraint_bounds_are_rejected(lower, upper):
    problem = Problem()
    problem.add_state('a')
    problem.add_state('b')
    problem.add_path_constraint('box', lambda t, x, u, m, d, s, p: x, lower, upper)
    with pytest.raises(ValueError):
        problem.get_constraint_bounds(problem.path_constraints[0], 2)
