"""
ArcRefine - Hierarchical Arc-Length Continuation

A Python framework for tracing equilibrium paths of parametrized nonlinear
problems R(U, lambda) = 0 through limit points, with adaptive refinement of
the path where a coarse arc length under-resolves it.

Main Components
---------------
Solvers : Continuation algorithms
    - ArcLengthIterator: Predictor-corrector stepper (load control, Riks,
      Crisfield, consistent Crisfield, extended iterations)
    - ArcLengthOptions: Solver configuration
    - Plotter: Load-displacement plots

Refinement : Hierarchical path refinement
    - HierarchicalContinuation: Coarse path + error-driven refinement levels
    - LevelSolutionStore: Append-only points per level
    - RefinementScheduler: FIFO queue of interval refinements
    - ErrorEstimator: Posterior error of a refined interval

Structures : Equilibrium problems
    - EquilibriumProblem: Residual / Jacobian interface
    - CallbackProblem: Problem from two functions
    - Structure_Truss: Geometrically nonlinear 2D truss

Quick Start
-----------
>>> from ArcRefine import ArcLengthIterator, HierarchicalContinuation, Structure_Truss
>>>
>>> St = Structure_Truss()
>>> St.add_bar([-1.0, 0.0], [0.0, 0.2], E=1.0, A=1.0)
>>> St.add_bar([0.0, 0.2], [1.0, 0.0], E=1.0, A=1.0)
>>> St.make_nodes()
>>> St.fix_node([0, 2], [0, 1])
>>> St.load_node(1, [1], -1.0)
>>>
>>> arc = ArcLengthIterator(St, St.reference_force(), {'Method': 2, 'Length': 0.02})
>>> run = HierarchicalContinuation(arc, steps=20, max_level=2).run()
>>> U, L = run.store.as_arrays(0)
"""

# Version information
__version__ = '1.0.0'

from ArcRefine.Refinement import (
    ErrorEstimator,
    ErrorTable,
    HierarchicalContinuation,
    LevelIndexError,
    LevelSolutionStore,
    RefinementScheduler,
    RefinementTask,
    SolutionPoint,
)
from ArcRefine.Solvers import (
    ArcLengthIterator,
    ArcLengthOptions,
    ConfigurationError,
    ConvergenceError,
    IteratorState,
    Plotter,
    SingularSystemError,
    SolverConstants,
)
from ArcRefine.Structures import (
    CallbackProblem,
    EquilibriumProblem,
    Structure_Truss,
)

__all__ = [
    '__version__',

    # Solvers
    'ArcLengthIterator',
    'ArcLengthOptions',
    'IteratorState',
    'SolverConstants',
    'Plotter',

    # Refinement
    'HierarchicalContinuation',
    'LevelSolutionStore',
    'SolutionPoint',
    'ErrorTable',
    'ErrorEstimator',
    'RefinementScheduler',
    'RefinementTask',

    # Structures
    'EquilibriumProblem',
    'CallbackProblem',
    'Structure_Truss',

    # Exceptions
    'ConvergenceError',
    'SingularSystemError',
    'ConfigurationError',
    'LevelIndexError',
]
