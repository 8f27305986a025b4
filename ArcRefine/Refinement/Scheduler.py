"""
Refinement Scheduler
====================

FIFO processing of refinement tasks. A task re-traces one interval of a
coarser level with two steps of half its arc length:

    level t-1:   A ------------------------ B
    level t:     A ---------- M ----------- C

The posterior error compares B (coarse end) with C (fine end). When it exceeds
the tolerance, both halves [A, M] and [M, C] are queued one level deeper.

Tasks targeting a level beyond ``max_level`` are not processed; they are
collected in ``dropped`` and reported once when the queue drains.
"""

import warnings
from collections import deque
from dataclasses import dataclass
from typing import Optional

from ArcRefine.Refinement.Store import SolutionPoint
from ArcRefine.Solvers.Errors import ConvergenceError


@dataclass(frozen=True)
class RefinementTask:
    """Refine the interval from (source_level, source_index) into target_level.

    The interval end defaults to (source_level, source_index + 1).
    """
    target_level: int
    source_level: int
    source_index: int
    end_level: Optional[int] = None
    end_index: Optional[int] = None

    @property
    def start(self):
        return self.source_level, self.source_index

    @property
    def end(self):
        if self.end_level is None:
            return self.source_level, self.source_index + 1
        return self.end_level, self.end_index


@dataclass(frozen=True)
class TaskResult:
    task: RefinementTask
    mid_index: int
    end_index: int
    error: float
    refined: bool


class RefinementScheduler:
    """
    Args:
        iterator: ArcLengthIterator used for every step
        store: LevelSolutionStore receiving the fine points
        errors: ErrorTable receiving the posterior errors
        estimator: ErrorEstimator deciding on further refinement
        length: Base arc length dL0 of level 0
        max_level: Deepest level that may be created
        verbose: Print one line per processed task
    """

    def __init__(self, iterator, store, errors, estimator, length, max_level, verbose=False):
        if length <= 0:
            raise ValueError(f"Base arc length must be positive, got {length}")
        if max_level < 0:
            raise ValueError(f"max_level must be non-negative, got {max_level}")
        self.iterator = iterator
        self.store = store
        self.errors = errors
        self.estimator = estimator
        self.length = float(length)
        self.max_level = int(max_level)
        self.verbose = verbose

        self.pending = deque()
        self.processed = []
        self.dropped = []

    def level_length(self, level):
        return self.length / 2 ** level

    def enqueue(self, task):
        """Queue a task. Its start and end points must already exist."""
        if task.target_level < 1:
            raise ValueError(f"Refinement tasks target level >= 1, got {task.target_level}")
        self.store.at(*task.start)
        self.store.at(*task.end)
        self.pending.append(task)

    def process(self, task):
        """Refine one interval and queue its halves if the error is too large."""
        target = task.target_level
        self.store.ensure_level(target)
        self.errors.ensure_level(target - 1)

        start = self.store.at(*task.start)
        end = self.store.at(*task.end)
        length = self.level_length(target)

        arc = self.iterator
        arc.set_solution(start.state, start.load_factor)
        arc.reset_step()
        arc.set_initial_guess(end.state, end.load_factor)

        indices = []
        for k in range(2):
            # AdaptiveLength rescales after each step; both halves keep the level length
            arc.set_length(length)
            if not arc.step():
                raise ConvergenceError(
                    f"Refinement step {k + 1}/2 of interval {task.start} -> {task.end} "
                    f"on level {target} did not converge: {arc.failure}",
                    iterations=arc.num_iterations(),
                    reason=arc.failure,
                )
            point = SolutionPoint(arc.solution_u(), arc.solution_l())
            indices.append(self.store.append(target, point))
        mid, last = indices

        error = self.estimator.estimate(end, self.store.at(target, last), length)
        self.errors.record(target - 1, task.source_level, task.source_index, error)
        refined = self.estimator.needs_refinement(error)

        if self.verbose:
            print(f"Level {target}: interval {task.start} -> {task.end}, error = {error:.4e}"
                  + (" (refining)" if refined else ""))

        if refined:
            self.enqueue(RefinementTask(target + 1, task.source_level, task.source_index,
                                        end_level=target, end_index=mid))
            self.enqueue(RefinementTask(target + 1, target, mid))

        result = TaskResult(task, mid, last, error, refined)
        self.processed.append(result)
        return result

    def run(self):
        """Process queued tasks until the queue is empty."""
        n_dropped = len(self.dropped)
        while self.pending:
            task = self.pending.popleft()
            if task.target_level > self.max_level:
                self.dropped.append(task)
                continue
            self.process(task)

        if len(self.dropped) > n_dropped:
            warnings.warn(
                f"{len(self.dropped) - n_dropped} interval(s) still exceed the refinement tolerance "
                f"at the maximum level {self.max_level}",
                RuntimeWarning,
            )
        return self.processed
