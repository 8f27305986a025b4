"""
Posterior error estimate of a refined interval.

Compares the coarse end point of an interval with the point reached after two
half-length steps from the same start:

    error = (|lambda_c - lambda_f| * |F| + |U_c - U_f|) / dL

The estimate is relative to the arc length of the refined level, so one
tolerance applies to all levels.
"""

import numpy as np

from ArcRefine.Solvers.Options import SolverConstants


class ErrorEstimator:
    """
    Args:
        force: Reference load vector F (only its norm is used)
        tolerance: Refinement threshold ptol; intervals with a larger error are refined
    """

    def __init__(self, force, tolerance=SolverConstants.REFINEMENT_TOLERANCE):
        if tolerance < 0:
            raise ValueError(f"Refinement tolerance must be non-negative, got {tolerance}")
        self.force_norm = float(np.linalg.norm(np.asarray(force, dtype=float)))
        self.tolerance = float(tolerance)

    def estimate(self, coarse, fine, length):
        if length <= 0:
            raise ValueError(f"Arc length must be positive, got {length}")
        load_error = abs(coarse.load_factor - fine.load_factor) * self.force_norm
        state_error = np.linalg.norm(coarse.state - fine.state)
        return float((load_error + state_error) / length)

    def needs_refinement(self, error):
        return error > self.tolerance
