"""
Tests for the arc-length continuation stepper.

Tests cover:
- Predictor / corrector of every method on problems with known paths
- Limit point traversal and stability indicator
- Divergence handling (state untouched, failure reason)
- Quasi-Newton re-use, adaptive length, initial guess, relaxation
"""
import numpy as np
import pytest
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from ArcRefine.Solvers.ArcLength import ArcLengthIterator, IteratorState
from ArcRefine.Solvers.Options import (
    CONSISTENT_CRISFIELD,
    CRISFIELD,
    EXTENDED_ITERATIONS,
    LOAD_CONTROL,
    RIKS,
)
from ArcRefine.Structures.Problem import CallbackProblem
from conftest import cubic_path, softening_path, von_mises_path

ARC_METHODS = [RIKS, CRISFIELD, CONSISTENT_CRISFIELD, EXTENDED_ITERATIONS]


class CountingProblem(CallbackProblem):
    """Counts Jacobian evaluations."""

    def __init__(self, problem):
        super().__init__(problem.residual, problem.jacobian)
        self.nb_jacobians = 0

    def jacobian(self, U):
        self.nb_jacobians += 1
        return super().jacobian(U)


# =============================================================================
# Basic State Handling
# =============================================================================

@pytest.mark.unit
@pytest.mark.solver
class TestIteratorState:

    def test_initial_state(self, cubic_problem, unit_force):
        arc = ArcLengthIterator(cubic_problem, unit_force)
        assert arc.state == IteratorState.IDLE
        assert not arc.converged()
        np.testing.assert_array_equal(arc.solution_u(), [0.0])
        assert arc.solution_l() == 0.0

    def test_dict_options(self, cubic_problem, unit_force):
        arc = ArcLengthIterator(cubic_problem, unit_force, {'Method': 1, 'Length': 0.3})
        assert arc.options.method == RIKS
        assert arc.length() == 0.3

    def test_set_length(self, cubic_problem, unit_force):
        arc = ArcLengthIterator(cubic_problem, unit_force)
        arc.set_length(0.25)
        assert arc.length() == 0.25

    def test_solution_is_a_copy(self, cubic_problem, unit_force):
        arc = ArcLengthIterator(cubic_problem, unit_force)
        U = arc.solution_u()
        U[0] = 5.0
        assert arc.solution_u()[0] == 0.0

    def test_set_solution(self, cubic_problem, unit_force):
        arc = ArcLengthIterator(cubic_problem, unit_force)
        arc.set_solution(np.array([0.5]), cubic_path(0.5))
        assert arc.solution_u()[0] == 0.5
        assert arc.solution_l() == cubic_path(0.5)

    def test_set_solution_wrong_size(self, cubic_problem, unit_force):
        arc = ArcLengthIterator(cubic_problem, unit_force)
        with pytest.raises(ValueError):
            arc.set_solution(np.zeros(3), 0.0)
        with pytest.raises(ValueError):
            arc.set_initial_guess(np.zeros(2), 0.0)

    def test_converged_state_after_step(self, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, length=0.1)
        assert arc.step()
        assert arc.converged()
        assert arc.state == IteratorState.CONVERGED
        assert arc.failure is None

    def test_reset_step_clears_convergence(self, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, length=0.1)
        arc.step()
        arc.reset_step()
        assert not arc.converged()
        assert arc.state == IteratorState.IDLE
        assert arc.num_iterations() == 0


# =============================================================================
# Methods
# =============================================================================

@pytest.mark.solver
class TestMethods:

    @pytest.mark.parametrize("method", ARC_METHODS)
    def test_cubic_spring_path(self, method, cubic_problem, make_iterator, unit_force):
        """With psi = 0 the arc length is measured on U only: U advances by dL."""
        arc = make_iterator(cubic_problem, unit_force, method=method, length=0.1)
        for k in range(1, 6):
            assert arc.step()
            u = arc.solution_u()[0]
            assert u == pytest.approx(0.1 * k, abs=1e-10)
            assert arc.solution_l() == pytest.approx(cubic_path(u), abs=1e-10)

    @pytest.mark.parametrize("method", ARC_METHODS)
    def test_single_correction_on_scalar_problem(self, method, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, method=method, length=0.2)
        assert arc.step()
        assert arc.num_iterations() == 1

    @pytest.mark.parametrize("method", ARC_METHODS)
    def test_linear_problem(self, method, linear_problem, linear_stiffness, make_iterator):
        F = np.array([1.0, 1.0])
        arc = make_iterator(linear_problem, F, method=method, length=0.5)
        u_t = np.linalg.solve(linear_stiffness, F)
        for k in range(1, 4):
            assert arc.step()
            np.testing.assert_allclose(arc.solution_u(), arc.solution_l() * u_t, atol=1e-10)
            assert np.linalg.norm(arc.solution_u()) == pytest.approx(0.5 * k, rel=1e-10)

    def test_load_control_constant_increment(self, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, method=LOAD_CONTROL, length=0.25, tol=1e-10)
        for k in range(1, 6):
            assert arc.step()
            assert arc.solution_l() == pytest.approx(0.25 * k, abs=1e-12)
            u = arc.solution_u()[0]
            assert cubic_path(u) == pytest.approx(arc.solution_l(), abs=1e-8)

    @pytest.mark.parametrize("method", [CRISFIELD, CONSISTENT_CRISFIELD])
    def test_scaled_constraint(self, method, softening_problem, make_iterator, unit_force):
        """With psi = 1 each converged increment satisfies the spherical constraint."""
        arc = make_iterator(softening_problem, unit_force, method=method, length=0.2,
                            scaling=1.0, tol=1e-12, tol_u=1e-12, tol_f=1e-12)
        U_old, L_old = arc.solution_u(), arc.solution_l()
        for _ in range(4):
            assert arc.step()
            U, L = arc.solution_u(), arc.solution_l()
            assert L == pytest.approx(softening_path(U[0]), abs=1e-10)
            dist = np.sqrt(np.sum((U - U_old) ** 2) + (L - L_old) ** 2)
            assert dist == pytest.approx(0.2, rel=1e-6)
            U_old, L_old = U, L

    @pytest.mark.parametrize("solver", [0, 1])
    def test_dense_and_sparse_agree(self, solver, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, solver=solver, length=0.1)
        for _ in range(3):
            assert arc.step()
        assert arc.solution_u()[0] == pytest.approx(0.3, abs=1e-10)

    def test_dense_jacobian_accepted(self, unit_force):
        problem = CallbackProblem(
            residual=lambda U, L, F: cubic_path(U) - L * F,
            jacobian=lambda U: np.diag(1 + 3 * U ** 2),
        )
        arc = ArcLengthIterator(problem, unit_force, {'Length': 0.1})
        assert arc.step()

    def test_relaxation(self, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, method=LOAD_CONTROL, length=0.5, relaxation=0.5,
                            max_iter=60)
        assert arc.step()
        assert cubic_path(arc.solution_u()[0]) == pytest.approx(0.5, abs=1e-3)
        assert arc.num_iterations() > 1


# =============================================================================
# Limit Points & Stability
# =============================================================================

@pytest.mark.solver
class TestLimitPoint:

    @pytest.mark.parametrize("method", ARC_METHODS)
    def test_passes_limit_point(self, method, softening_problem, make_iterator, unit_force):
        arc = make_iterator(softening_problem, unit_force, method=method, length=0.15)
        loads = []
        for k in range(1, 11):
            assert arc.step()
            u = arc.solution_u()[0]
            assert u == pytest.approx(0.15 * k, abs=1e-10)
            loads.append(arc.solution_l())
        assert max(loads) < 2.0 / 3.0
        assert loads[-1] == pytest.approx(softening_path(1.5), abs=1e-10)
        assert loads[-1] < loads[-2]

    def test_determinant_indicator(self, softening_problem, make_iterator, unit_force):
        arc = make_iterator(softening_problem, unit_force, length=0.15)
        arc.set_indicator(0.0)
        changes = []
        for k in range(1, 9):
            assert arc.step()
            assert arc.indicator() == (1.0 if k <= 6 else -1.0)
            changes.append(arc.stability_changed())
        assert changes == [False] * 6 + [True, False]

    def test_eigenvalue_indicator(self, softening_problem, make_iterator, unit_force):
        arc = make_iterator(softening_problem, unit_force, length=0.15, bifurcation_method=1)
        for _ in range(8):
            assert arc.step()
            u = arc.solution_u()[0]
            assert arc.indicator() == pytest.approx(1 - u ** 2, abs=1e-10)

    def test_no_spurious_change_on_first_step(self, softening_problem, make_iterator, unit_force):
        arc = make_iterator(softening_problem, unit_force, length=0.15)
        arc.set_indicator(0.0)
        assert arc.step()
        assert not arc.stability_changed()

    def test_von_mises_snap_through(self, von_mises_truss, make_iterator):
        arc = make_iterator(von_mises_truss, von_mises_truss.reference_force(), length=0.05)
        loads = []
        for _ in range(10):
            assert arc.step()
            v = -arc.solution_u()[1]
            assert arc.solution_l() == pytest.approx(von_mises_path(v), abs=1e-10)
            loads.append(arc.solution_l())
        assert min(loads) < 0 < max(loads)
        assert -arc.solution_u()[1] > 2 * 0.2


# =============================================================================
# Divergence
# =============================================================================

@pytest.mark.solver
class TestDivergence:

    def test_max_iterations(self, stalled_problem, make_iterator, unit_force):
        arc = make_iterator(stalled_problem, unit_force, max_iter=5)
        U_before, L_before = arc.solution_u(), arc.solution_l()
        assert arc.step() is False
        assert not arc.converged()
        assert arc.state == IteratorState.DIVERGED
        assert "5 iterations" in arc.failure
        assert arc.num_iterations() == 5
        np.testing.assert_array_equal(arc.solution_u(), U_before)
        assert arc.solution_l() == L_before

    def test_singular_tangent(self, make_iterator, unit_force):
        problem = CallbackProblem(
            residual=lambda U, L, F: U - L * F,
            jacobian=lambda U: sp.csr_matrix((1, 1)),
        )
        arc = make_iterator(problem, unit_force)
        assert arc.step() is False
        assert arc.state == IteratorState.DIVERGED
        assert "singular" in arc.failure

    def test_non_finite_residual(self, make_iterator, unit_force):
        problem = CallbackProblem(
            residual=lambda U, L, F: np.where(U < 0.25, cubic_path(U) - L * F, np.nan),
            jacobian=lambda U: sp.csr_matrix(np.diag(1 + 3 * U ** 2)),
        )
        arc = make_iterator(problem, unit_force, length=0.1)
        assert arc.step() and arc.step()
        assert arc.step() is False
        assert "non-finite" in arc.failure
        assert arc.solution_u()[0] == pytest.approx(0.2, abs=1e-10)

    def test_eigenvalue_failure_falls_back_to_zero(self, softening_problem, make_iterator, unit_force,
                                                   monkeypatch):
        def no_convergence(K):
            raise spla.ArpackNoConvergence("ARPACK error -1: No convergence", np.array([]), np.array([]))

        monkeypatch.setattr("ArcRefine.Solvers.ArcLength.lowest_eigenvalue", no_convergence)
        arc = make_iterator(softening_problem, unit_force, length=0.1, bifurcation_method=1)
        arc.set_indicator(1.0)
        with pytest.warns(UserWarning, match="stability indicator set to 0"):
            assert arc.step()
        assert arc.converged()
        assert arc.state == IteratorState.CONVERGED
        assert arc.indicator() == 0.0
        assert arc.solution_u()[0] == pytest.approx(0.1, abs=1e-10)
        assert arc.solution_l() == pytest.approx(softening_path(0.1), abs=1e-10)

    def test_tangent_error_at_converged_point(self, make_iterator, unit_force):
        """Predictor, one correction, then the tangent at the new point fails."""
        calls = []

        def jacobian(U):
            calls.append(U.copy())
            if len(calls) == 3:
                raise RuntimeError("assembly failed")
            return sp.csr_matrix(np.diag(1 + 3 * U ** 2))

        problem = CallbackProblem(residual=lambda U, L, F: cubic_path(U) - L * F, jacobian=jacobian)
        arc = make_iterator(problem, unit_force, length=0.1)
        with pytest.raises(RuntimeError, match="assembly failed"):
            arc.step()
        assert not arc.converged()
        assert arc.state == IteratorState.DIVERGED
        assert "converged point" in arc.failure
        np.testing.assert_array_equal(arc.solution_u(), np.zeros(1))
        assert arc.solution_l() == 0.0

    def test_step_after_divergence(self, make_iterator, unit_force):
        problem = CallbackProblem(
            residual=lambda U, L, F: np.where(U < 0.25, cubic_path(U) - L * F, np.nan),
            jacobian=lambda U: sp.csr_matrix(np.diag(1 + 3 * U ** 2)),
        )
        arc = make_iterator(problem, unit_force, length=0.1)
        arc.step()
        arc.step()
        assert not arc.step()
        arc.set_length(0.03)
        assert arc.step()
        assert arc.state == IteratorState.CONVERGED
        assert arc.solution_u()[0] == pytest.approx(0.23, abs=1e-10)


# =============================================================================
# Step Controls
# =============================================================================

@pytest.mark.solver
class TestStepControls:

    def test_initial_guess_orients_predictor(self, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, length=0.1)
        for _ in range(3):
            arc.step()
        arc.reset_step()
        arc.set_initial_guess(np.array([0.0]), 0.0)
        assert arc.step()
        assert arc.solution_u()[0] == pytest.approx(0.2, abs=1e-10)

    def test_previous_increment_orients_predictor(self, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, length=0.1)
        arc.set_initial_guess(np.array([-1.0]), cubic_path(-1.0))
        assert arc.step()
        assert arc.solution_u()[0] == pytest.approx(-0.1, abs=1e-10)
        assert arc.step()
        assert arc.solution_u()[0] == pytest.approx(-0.2, abs=1e-10)

    def test_adaptive_length(self, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, length=0.1, adaptive_length=True,
                            adaptive_iterations=10)
        assert arc.step()
        assert arc.num_iterations() == 1
        # sqrt(10 / 1) is clipped to 2
        assert arc.length() == pytest.approx(0.2)

    def test_adaptive_length_at_target(self, cubic_problem, make_iterator, unit_force):
        arc = make_iterator(cubic_problem, unit_force, length=0.1, adaptive_length=True,
                            adaptive_iterations=1)
        assert arc.step()
        assert arc.length() == pytest.approx(0.1)

    @pytest.mark.parametrize("window", [-1, 0, 3])
    def test_quasi_newton_reuses_tangent(self, window, cubic_problem, unit_force):
        full = CountingProblem(cubic_problem)
        quasi = CountingProblem(cubic_problem)
        arc_full = ArcLengthIterator(full, unit_force, {'Length': 0.1})
        arc_quasi = ArcLengthIterator(quasi, unit_force, {'Length': 0.1, 'Quasi': True,
                                                          'QuasiIterations': window})
        for _ in range(4):
            assert arc_full.step()
            assert arc_quasi.step()
        np.testing.assert_allclose(arc_quasi.solution_u(), arc_full.solution_u(), atol=1e-10)
        assert arc_quasi.solution_l() == pytest.approx(arc_full.solution_l(), abs=1e-10)
        assert quasi.nb_jacobians < full.nb_jacobians

    def test_explicit_problem_per_step(self, cubic_problem, softening_problem, unit_force):
        arc = ArcLengthIterator(cubic_problem, unit_force, {'Length': 0.1})
        assert arc.step(softening_problem)
        u = arc.solution_u()[0]
        assert arc.solution_l() == pytest.approx(softening_path(u), abs=1e-10)
