"""Direct collocation transcription of optimal control problems into NLPs."""

from .bounds import Bounds
from .config import SolverSettings, configure_logging
from .errors import ContractError, DircolError, InfeasibleBoundsError, SolveError
from .hermite_simpson import HermiteSimpsonScheme
from .problem import Problem
from .transcription import Transcription, create_mesh, transcribe
from .trapezoidal import TrapezoidalScheme
from .variables import Iterate, Solution, Var, expand, flatten

__all__ = [
    'Bounds',
    'SolverSettings',
    'configure_logging',
    'ContractError',
    'DircolError',
    'InfeasibleBoundsError',
    'SolveError',
    'HermiteSimpsonScheme',
    'Problem',
    'Transcription',
    'create_mesh',
    'transcribe',
    'TrapezoidalScheme',
    'Iterate',
    'Solution',
    'Var',
    'expand',
    'flatten',
]
