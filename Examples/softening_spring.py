"""
Softening Spring: Comparison of Continuation Methods
====================================================

Single-DOF spring with internal force f(u) = u - u^3 / 3. The load factor
reaches a maximum of 2/3 at u = 1: load control cannot pass it, arc-length
methods can.

For each method the coarse path is traced and refined; the number of
points per level shows where the coarse arc length was too long.
"""

import sys
from pathlib import Path

import numpy as np
import scipy.sparse as sp

# --- Path Setup ---
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# --- Library Imports ---
from ArcRefine.Refinement.Orchestrator import HierarchicalContinuation
from ArcRefine.Solvers.ArcLength import ArcLengthIterator
from ArcRefine.Solvers.Errors import ConvergenceError
from ArcRefine.Solvers.Options import METHOD_NAMES
from ArcRefine.Structures.Problem import CallbackProblem

# =============================================================================
# Configuration
# =============================================================================

config = {
    'Length': 0.3,
    'Scaling': 1.0,
    'MaxIter': 15,
    'AngleMethod': 0,
}
STEPS = 8
MAX_LEVEL = 2
TOLERANCE = 0.01

spring = CallbackProblem(
    residual=lambda U, L, F: U - U ** 3 / 3 - L * F,
    jacobian=lambda U: sp.csr_matrix(np.diag(1 - U ** 2)),
)
F = np.array([1.0])


# =============================================================================
# Core Functions
# =============================================================================

def trace(method):
    arc = ArcLengthIterator(spring, F, dict(config, Method=method))
    return HierarchicalContinuation(arc, steps=STEPS, max_level=MAX_LEVEL, tolerance=TOLERANCE).run()


def main():
    for method, name in METHOD_NAMES.items():
        try:
            run = trace(method)
        except ConvergenceError as e:
            print(f"{name:<22s} failed: {e}")
            continue

        U, L = run.store.as_arrays(0)
        sizes = ", ".join(str(run.store.size(level)) for level in range(run.store.num_levels))
        print(f"{name:<22s} u_end = {U[0, -1]:.3f}, lambda_max = {L.max():.4f}, "
              f"points per level = [{sizes}], done in {run.elapsed:.2f}s")


if __name__ == "__main__":
    main()
