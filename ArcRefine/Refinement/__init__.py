"""
ArcRefine Refinement

Hierarchical, error-driven re-sampling of a continuation path. Level l is
traced with the arc length dL0 / 2^l, only where the coarser level is
under-resolved.
"""

from .Estimator import ErrorEstimator
from .Orchestrator import HierarchicalContinuation
from .Scheduler import RefinementScheduler, RefinementTask, TaskResult
from .Store import ErrorTable, LevelIndexError, LevelSolutionStore, SolutionPoint

__all__ = [
    'SolutionPoint',
    'LevelSolutionStore',
    'ErrorTable',
    'LevelIndexError',
    'ErrorEstimator',
    'RefinementTask',
    'TaskResult',
    'RefinementScheduler',
    'HierarchicalContinuation',
]
