"""
Shared fixtures for ArcRefine tests.

Reference problems with closed-form equilibrium paths, so that converged
points can be checked exactly.
"""
import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest
import scipy.sparse as sp

from ArcRefine.Refinement.Estimator import ErrorEstimator
from ArcRefine.Solvers.ArcLength import ArcLengthIterator
from ArcRefine.Structures.Problem import CallbackProblem
from ArcRefine.Structures.Structure_Truss import Structure_Truss


# =============================================================================
# Scalar Problems (1 DOF, F = 1)
# =============================================================================

def cubic_path(u):
    """Hardening spring: lambda = u + u^3."""
    return u + u ** 3


def softening_path(u):
    """Softening spring with a limit point at u = 1, lambda = 2/3."""
    return u - u ** 3 / 3


@pytest.fixture
def unit_force():
    return np.array([1.0])


@pytest.fixture
def cubic_problem():
    return CallbackProblem(
        residual=lambda U, L, F: cubic_path(U) - L * F,
        jacobian=lambda U: sp.csr_matrix(np.diag(1 + 3 * U ** 2)),
    )


@pytest.fixture
def softening_problem():
    return CallbackProblem(
        residual=lambda U, L, F: softening_path(U) - L * F,
        jacobian=lambda U: sp.csr_matrix(np.diag(1 - U ** 2)),
    )


@pytest.fixture
def stalled_problem():
    """Constant residual: Newton corrections never reduce it."""
    return CallbackProblem(
        residual=lambda U, L, F: np.ones_like(U),
        jacobian=lambda U: sp.identity(U.size, format='csr'),
    )


# =============================================================================
# Linear Problem (2 DOF)
# =============================================================================

@pytest.fixture
def linear_stiffness():
    return np.diag([2.0, 4.0])


@pytest.fixture
def linear_problem(linear_stiffness):
    K = sp.csr_matrix(linear_stiffness)
    return CallbackProblem(
        residual=lambda U, L, F: K @ U - L * F,
        jacobian=lambda U: K,
    )


# =============================================================================
# Von Mises Truss
# =============================================================================

TRUSS_HEIGHT = 0.2


def von_mises_path(v, h=TRUSS_HEIGHT, EA=1.0):
    """Apex load factor for an apex deflection v (downwards positive)."""
    L0 = np.sqrt(1.0 + h ** 2)
    return EA * v * (2 * h - v) * (h - v) / L0 ** 3


@pytest.fixture
def von_mises_truss():
    """Two bars of span 2 and rise 0.2, apex loaded downwards."""
    St = Structure_Truss()
    St.add_bar([-1.0, 0.0], [0.0, TRUSS_HEIGHT], E=1.0, A=1.0)
    St.add_bar([0.0, TRUSS_HEIGHT], [1.0, 0.0], E=1.0, A=1.0)
    St.make_nodes()
    St.fix_node([0, 2], [0, 1])
    St.load_node(1, [1], -1.0)
    return St


# =============================================================================
# Iterators & Estimators
# =============================================================================

@pytest.fixture
def make_iterator():
    """Factory: make_iterator(problem, force, **options)."""

    def _make(problem, force, **options):
        return ArcLengthIterator(problem, force, options)

    return _make


class FixedErrorEstimator(ErrorEstimator):
    """Reports the same error for every interval."""

    def __init__(self, force, error, tolerance=0.05):
        super().__init__(force, tolerance)
        self.error = error

    def estimate(self, coarse, fine, length):
        super().estimate(coarse, fine, length)
        return self.error


@pytest.fixture
def fixed_estimator():
    return FixedErrorEstimator
