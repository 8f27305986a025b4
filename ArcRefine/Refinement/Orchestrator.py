"""
Hierarchical Continuation
=========================

Drives a full run:

1. Level 0: ``steps`` uniform arc-length steps of length dL0 from the
   reference point.
2. Seed one refinement task per level-0 interval into level 1.
3. Process the task queue (``RefinementScheduler``) until it drains or the
   maximum level is reached.

Example:
    >>> arc = ArcLengthIterator(problem, F, {'Method': 2, 'Length': 0.5})
    >>> run = HierarchicalContinuation(arc, steps=10, max_level=2).run()
    >>> U0, L0 = run.store.as_arrays(0)
"""

import time

from ArcRefine.Refinement.Estimator import ErrorEstimator
from ArcRefine.Refinement.Scheduler import RefinementScheduler, RefinementTask
from ArcRefine.Refinement.Store import ErrorTable, LevelSolutionStore, SolutionPoint
from ArcRefine.Solvers.Errors import ConvergenceError
from ArcRefine.Solvers.Options import SolverConstants


class HierarchicalContinuation:
    """
    Args:
        iterator: Configured ArcLengthIterator
        steps: Number of level-0 steps
        max_level: Deepest refinement level (0 disables refinement)
        tolerance: Refinement threshold of the posterior error
        length: Base arc length dL0 (defaults to the iterator's length)
        max_bisections: Halvings of dL0 tried before a level-0 step is given up
        verbose: Progress output (defaults to the iterator's Verbose option)
    """

    def __init__(self, iterator, steps=10, max_level=2, tolerance=SolverConstants.REFINEMENT_TOLERANCE,
                 length=None, max_bisections=0, verbose=None):
        if steps < 1:
            raise ValueError(f"steps must be at least 1, got {steps}")
        if max_bisections < 0:
            raise ValueError(f"max_bisections must be non-negative, got {max_bisections}")

        self.iterator = iterator
        self.steps = int(steps)
        self.max_level = int(max_level)
        self.length = float(iterator.length() if length is None else length)
        self.max_bisections = int(max_bisections)
        self.verbose = iterator.options.verbose if verbose is None else verbose

        self.store = LevelSolutionStore.zeros(iterator.n)
        self.errors = ErrorTable()
        self.estimator = ErrorEstimator(iterator.force, tolerance)
        self.scheduler = RefinementScheduler(iterator, self.store, self.errors, self.estimator,
                                             self.length, self.max_level, verbose=self.verbose)
        self.elapsed = 0.0

    # ==========================================================================
    # Level 0
    # ==========================================================================

    def build_coarse_level(self):
        """Trace the coarse path: reference point plus ``steps`` converged points."""
        arc = self.iterator
        reference = self.store.reference
        self.store.ensure_level(0)

        arc.set_indicator(0.0)
        arc.set_solution(reference.state, reference.load_factor)
        arc.reset_step()
        arc.set_length(self.length)

        if self.verbose:
            print(f"Level 0: {self.steps} steps with dL = {self.length:.4e}")

        for k in range(self.steps):
            self._coarse_step(k)
            self.store.append(0, SolutionPoint(arc.solution_u(), arc.solution_l()))
            if self.verbose:
                print(f"Step {k + 1} converged after {arc.num_iterations()} iterations "
                      f"(lambda = {arc.solution_l():.6f})")
                if arc.stability_changed():
                    print(f"Bifurcation spotted at step {k + 1}!")
        return self.store.points(0)

    def _coarse_step(self, k):
        arc = self.iterator
        base = arc.length()
        length = base
        for attempt in range(self.max_bisections + 1):
            if arc.step():
                if attempt:
                    arc.set_length(base)
                return
            if attempt == self.max_bisections:
                break
            length /= 2
            arc.set_length(length)
            if self.verbose:
                print(f"Step {k + 1} did not converge ({arc.failure}), retrying with dL = {length:.4e}")

        arc.set_length(base)
        raise ConvergenceError(
            f"Level-0 step {k + 1} did not converge: {arc.failure}",
            iterations=arc.num_iterations(),
            reason=arc.failure,
        )

    # ==========================================================================
    # Refinement
    # ==========================================================================

    def seed_refinement(self):
        """Queue every level-0 interval for refinement into level 1."""
        if self.max_level < 1:
            return 0
        n_intervals = self.store.size(0) - 1
        for p in range(n_intervals):
            self.scheduler.enqueue(RefinementTask(1, 0, p))
        if self.verbose:
            print(f"Refinement: {n_intervals} intervals queued for level 1 (max level {self.max_level})")
        return n_intervals

    def run(self):
        time_start = time.time()
        try:
            self.build_coarse_level()
            self.seed_refinement()
            self.scheduler.run()
        finally:
            self.elapsed = time.time() - time_start

        if self.verbose:
            for level in range(self.store.num_levels):
                print(f"Level {level}: {self.store.size(level)} points")
            hours, rem = divmod(self.elapsed, 3600)
            minutes, seconds = divmod(rem, 60)
            print(f"Continuation done in {int(hours)}h {int(minutes)}m {int(seconds)}s.")
        return self
