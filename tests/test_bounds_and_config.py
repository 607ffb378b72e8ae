# test_bounds_and_config.py

import logging
import math

import pytest

from dircol import Bounds, SolverSettings, configure_logging
from dircol.config import get_default_optim_solver


def test_unset_bounds_are_infinite():
    bounds = Bounds()
    assert not bounds.is_set()
    assert bounds.as_tuple() == (-math.inf, math.inf)


def test_single_value_pins_both_sides():
    bounds = Bounds(2.5)
    assert bounds.is_set()
    assert bounds.as_tuple() == (2.5, 2.5)


def test_lower_keyword_alone_pins_both_sides():
    assert Bounds(lower=0.0).as_tuple() == (0.0, 0.0)
    assert Bounds(0.0, math.inf).as_tuple() == (0.0, math.inf)


@pytest.mark.parametrize("lower,upper", [(1.0, 0.0), (float('nan'), 1.0)])
def test_inconsistent_bounds_are_rejected(lower, upper):
    with pytest.raises(ValueError):
        Bounds(lower, upper)


def test_upper_without_lower_is_rejected():
    with pytest.raises(ValueError):
        Bounds(upper=1.0)


def test_algorithm_options_nested_under_plugin_key():
    settings = SolverSettings(optim_solver='ipopt',
                              plugin_options={'expand': True},
                              solver_options={'max_iter': 5})
    assert settings.create_nlpsol_options() == {'expand': True, 'ipopt': {'max_iter': 5}}


def test_algorithm_options_dropped_without_plugin_options():
    settings = SolverSettings(optim_solver='ipopt', plugin_options={}, solver_options={'max_iter': 5})
    assert settings.create_nlpsol_options() == {}


def test_merge_does_not_modify_settings():
    settings = SolverSettings(plugin_options={'expand': True})
    options = settings.create_nlpsol_options()
    options['expand'] = False
    assert settings.plugin_options == {'expand': True}


def test_default_solver_from_environment(monkeypatch):
    monkeypatch.setenv('DIRCOL_OPTIM_SOLVER', 'sqpmethod')
    assert get_default_optim_solver() == 'sqpmethod'
    assert SolverSettings().optim_solver == 'sqpmethod'


@pytest.mark.parametrize("value", [(1.0, 0.0), (-math.inf, 1.0)])
def test_random_range_must_be_finite_and_ordered(value):
    with pytest.raises(ValueError):
        SolverSettings(random_unbounded_range=value)


def test_configure_logging_from_environment(monkeypatch):
    monkeypatch.setenv('DIRCOL_LOG_LEVEL', 'debug')
    configure_logging()
    assert logging.getLogger('dircol').level == logging.DEBUG
    configure_logging('warning')
    assert logging.getLogger('dircol').level == logging.WARNING
