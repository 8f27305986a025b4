"""
ArcRefine Solvers

Continuation algorithms for parametrized nonlinear equilibrium problems.

Solvers
-------
ArcLengthIterator : Predictor-corrector arc-length stepper
    - Methods: load control, Riks, Crisfield, consistent Crisfield, extended iterations
    - Quasi-Newton re-use of the tangent factorization
    - Stability indicator (determinant sign or lowest eigenvalue)

ArcLengthOptions : Solver configuration (dataclass, built from a dict of option names)

DirectSolver : Sparse / dense LU factorizations of the tangent

Plotter : Load-displacement plots of a refined run

Exceptions
----------
ConvergenceError : Raised when a step fails to converge
SingularSystemError : Raised when the tangent is singular
ConfigurationError : Raised on unknown or invalid options

Usage
-----
>>> from ArcRefine.Solvers import ArcLengthIterator
>>>
>>> arc = ArcLengthIterator(problem, F, {'Method': 2, 'Length': 0.1})
>>> converged = arc.step()
"""

from .ArcLength import ArcLengthIterator, IteratorState
from .Errors import ConfigurationError, ConvergenceError, SingularSystemError
from .LinearSolver import DENSE_LU, SPARSE_LU, DirectSolver, Factorization, lowest_eigenvalue
from .Options import (
    ArcLengthOptions,
    CONSISTENT_CRISFIELD,
    CRISFIELD,
    EXTENDED_ITERATIONS,
    LOAD_CONTROL,
    METHOD_NAMES,
    RIKS,
    SolverConstants,
)
from .Plotter import PathStyle, Plotter

__all__ = [
    # Continuation
    'ArcLengthIterator',
    'IteratorState',
    'ArcLengthOptions',
    'SolverConstants',

    # Method codes
    'LOAD_CONTROL',
    'RIKS',
    'CRISFIELD',
    'CONSISTENT_CRISFIELD',
    'EXTENDED_ITERATIONS',
    'METHOD_NAMES',

    # Linear algebra
    'DirectSolver',
    'Factorization',
    'SPARSE_LU',
    'DENSE_LU',
    'lowest_eigenvalue',

    # Visualization
    'Plotter',
    'PathStyle',

    # Exceptions
    'ConvergenceError',
    'SingularSystemError',
    'ConfigurationError',
]
