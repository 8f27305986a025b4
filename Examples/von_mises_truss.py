"""
Snap-Through of a Von Mises Truss
=================================

Two-bar shallow truss loaded at the apex. The load-deflection curve has two
limit points: the apex snaps through to the inverted configuration.

This script:
1. Builds the truss with Structure_Truss (Green-Lagrange bars)
2. Traces the path with Crisfield's arc-length method on a coarse level
3. Refines the intervals where the coarse arc length misses the path
4. Compares the refined points with the analytic equilibrium path
"""

import sys
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

# --- Path Setup ---
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# --- Library Imports ---
from ArcRefine.Refinement.Orchestrator import HierarchicalContinuation
from ArcRefine.Solvers.ArcLength import ArcLengthIterator
from ArcRefine.Solvers.Plotter import Plotter
from ArcRefine.Structures.Structure_Truss import Structure_Truss

# =============================================================================
# Configuration
# =============================================================================

# Geometry
SPAN = 2.0  # Distance between supports
RISE = 0.2  # Apex height

# Material
E = 1.0
A = 1.0

# Continuation
config = {
    'Method': 2,            # Crisfield
    'Length': 0.05,         # Coarse arc length dL0
    'Scaling': 1.0,
    'Tol': 1e-8,
    'MaxIter': 20,
    'BifurcationMethod': 0,
    'Verbose': False,
}
STEPS = 12
MAX_LEVEL = 3
TOLERANCE = 1e-3

OUTPUT_DIR = project_root / "Examples" / "Results" / "von_mises_truss"


# =============================================================================
# Core Functions
# =============================================================================

def create_truss() -> Structure_Truss:
    """Two bars meeting at the apex, pinned supports, unit downward apex load."""
    St = Structure_Truss()
    St.add_bar([-SPAN / 2, 0.0], [0.0, RISE], E=E, A=A)
    St.add_bar([0.0, RISE], [SPAN / 2, 0.0], E=E, A=A)
    St.make_nodes()
    St.fix_node([0, 2], [0, 1])
    St.add_nodal_load(1, np.array([0.0, -1.0]))
    return St


def analytic_load(v):
    """Load factor for an apex deflection v."""
    L0 = np.sqrt((SPAN / 2) ** 2 + RISE ** 2)
    return E * A * v * (2 * RISE - v) * (RISE - v) / L0 ** 3


def main():
    St = create_truss()
    arc = ArcLengthIterator(St, St.reference_force(), config)
    print(arc.options)

    run = HierarchicalContinuation(arc, steps=STEPS, max_level=MAX_LEVEL,
                                   tolerance=TOLERANCE, verbose=True).run()

    print("\nDeviation from the analytic path:")
    for level in range(run.store.num_levels):
        U, L = run.store.as_arrays(level)
        deviation = np.max(np.abs(L - analytic_load(-U[1])))
        print(f"  Level {level}: {run.store.size(level):3d} points, max |lambda - lambda_exact| = {deviation:.2e}")

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    Plotter.plot_levels(run.store, dof=1, save_path=str(OUTPUT_DIR / "levels.png"))
    Plotter.plot_path(run.store, dof=1, save_path=str(OUTPUT_DIR / "path.png"))
    plt.show()


if __name__ == "__main__":
    main()
