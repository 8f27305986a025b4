"""
Arc-Length Continuation
=======================

Predictor-corrector stepper tracing the equilibrium path of

    R(U, lambda) = P_r(U) - lambda * F = 0

where F is the reference load and lambda the load factor. Each step adds an
auxiliary constraint on the increment (Delta U, Delta lambda), so that limit
points (snap-through, snap-back) can be passed:

    Delta U . Delta U + psi^2 * Delta lambda^2 * F . F = dL^2

Key Concepts:
-------------

**Predictor**:
    Tangent direction u_t = K^-1 F at the last converged point. The load
    increment is scaled so that the predictor satisfies the constraint and
    its sign follows the previous increment (or the initial guess).

**Corrector** (Newton iterations at fixed arc length):
    u_bar = -K^-1 R,   u_t = K^-1 F,   du = u_bar + d_lambda * u_t

    d_lambda depends on the method:
    0. Load control:          d_lambda = 0
    1. Riks:                  du orthogonal to the current increment
    2. Crisfield:             quadratic spherical constraint, root chosen by angle
    3. Consistent Crisfield:  linearized spherical constraint with its residual
    4. Extended iterations:   bordered (n+1) system solved directly

**Convergence**:
    (|du| / |Delta U| < TolU  and  |R| / |F| < TolF)  or  |R| < Tol

**Quasi-Newton**:
    With Quasi=True the factorized tangent is re-used for QuasiIterations
    consecutive solves (or for a whole step when QuasiIterations <= 0).

A step that fails (MaxIter exceeded, singular tangent, complex roots) leaves
the committed state untouched; ``step()`` returns False and ``failure``
describes why.
"""

import math
import warnings
from enum import Enum

import numpy as np
import scipy.sparse as sp  # Sparse Matrix Storage
import scipy.sparse.linalg as spla  # Sparse Linear Algebra

from ArcRefine.Solvers.Errors import ConfigurationError, ConvergenceError, SingularSystemError
from ArcRefine.Solvers.LinearSolver import DirectSolver, lowest_eigenvalue
from ArcRefine.Solvers.Options import (
    ArcLengthOptions,
    CONSISTENT_CRISFIELD,
    CRISFIELD,
    EXTENDED_ITERATIONS,
    LOAD_CONTROL,
    METHOD_NAMES,
    RIKS,
)


class IteratorState(Enum):
    IDLE = "idle"
    PREDICTING = "predicting"
    CORRECTING = "correcting"
    CONVERGED = "converged"
    DIVERGED = "diverged"


class ArcLengthIterator:
    """
    Arc-length continuation stepper.

    Parameters
    ----------
    problem : EquilibriumProblem
        Provides ``residual(U, L, force)`` and ``jacobian(U)``
    force : ndarray
        Reference load vector F
    options : ArcLengthOptions or dict, optional
        Solver options (see ``ArcRefine.Solvers.Options``)

    Example
    -------
    >>> arc = ArcLengthIterator(problem, F, {'Method': 2, 'Length': 0.5})
    >>> arc.set_indicator(0.0)
    >>> for k in range(10):
    ...     if not arc.step():
    ...         raise ConvergenceError(arc.failure)
    ...     U, L = arc.solution_u(), arc.solution_l()
    """

    def __init__(self, problem, force, options=None):
        self.problem = problem
        self.force = np.asarray(force, dtype=float).ravel().copy()
        self.n = self.force.size
        self._force_norm = float(np.linalg.norm(self.force))
        if self._force_norm == 0:
            raise ConfigurationError("Reference force vector must be non-zero")

        if options is None:
            options = ArcLengthOptions()
        elif isinstance(options, dict):
            options = ArcLengthOptions.from_dict(options)
        self.options = options

        self.apply_options()
        self.initialize()

    # ==========================================================================
    # Setup
    # ==========================================================================

    def apply_options(self):
        """(Re)read the options. Raises ConfigurationError on invalid values."""
        self.options.validate()
        self._solver = DirectSolver(self.options.solver)
        self._length = float(self.options.length)
        self._phi2FF = self.options.scaling ** 2 * self._force_norm ** 2
        self._clear_cache()

    def initialize(self):
        """Reset the continuation state to the unloaded configuration."""
        self._U = np.zeros(self.n)
        self._L = 0.0
        self._DeltaU_old = np.zeros(self.n)
        self._DeltaL_old = 0.0
        self._has_previous = False
        self._guess = None

        self._indicator = 0.0
        self._indicator_prev = 0.0

        self._converged = False
        self._num_iterations = 0
        self._residual_norm = 0.0
        self._increment_norm = 0.0
        self.failure = None
        self.state = IteratorState.IDLE
        self._clear_cache()

    def _clear_cache(self):
        self._base_factor = None    # factorization of K at the committed U
        self._cache = None          # quasi-Newton factorization
        self._cache_uses = 0

    # ==========================================================================
    # State access
    # ==========================================================================

    def set_length(self, length):
        self._length = float(length)

    def length(self):
        return self._length

    def set_solution(self, U, L):
        """Fix the converged base point of the next predictor."""
        U = np.asarray(U, dtype=float).ravel()
        if U.size != self.n:
            raise ValueError(f"Solution has {U.size} entries, expected {self.n}")
        self._U = U.copy()
        self._L = float(L)
        self._base_factor = None
        self._cache = None
        self._cache_uses = 0
        self.state = IteratorState.IDLE

    def set_initial_guess(self, U, L):
        """Bias the next predictor towards a known nearby point."""
        U = np.asarray(U, dtype=float).ravel()
        if U.size != self.n:
            raise ValueError(f"Initial guess has {U.size} entries, expected {self.n}")
        self._guess = (U.copy(), float(L))

    def reset_step(self):
        """Forget previous increments, guesses and cached tangents."""
        self._DeltaU_old = np.zeros(self.n)
        self._DeltaL_old = 0.0
        self._has_previous = False
        self._guess = None
        self._num_iterations = 0
        self._converged = False
        self.failure = None
        self.state = IteratorState.IDLE
        self._clear_cache()

    def converged(self):
        return self._converged

    def solution_u(self):
        return self._U.copy()

    def solution_l(self):
        return self._L

    def num_iterations(self):
        return self._num_iterations

    def residual_norm(self):
        return self._residual_norm

    def increment_norm(self):
        return self._increment_norm

    def indicator(self):
        return self._indicator

    def set_indicator(self, value):
        """Reset the stability indicator baseline (before the first step)."""
        self._indicator = float(value)
        self._indicator_prev = float(value)

    def stability_changed(self):
        """True if the indicator changed sign over the last converged step."""
        return self._indicator * self._indicator_prev < 0

    # ==========================================================================
    # Problem evaluation
    # ==========================================================================

    def _residual(self, problem, U, L):
        R = np.asarray(problem.residual(U, L, self.force), dtype=float).ravel()
        if R.size != self.n:
            raise ValueError(f"Residual has {R.size} entries, expected {self.n}")
        if not np.all(np.isfinite(R)):
            raise ConvergenceError("Non-finite residual", reason="non-finite residual")
        return R

    def _factorize(self, problem, U):
        return self._solver.factorize(problem.jacobian(U))

    def _predictor_factor(self, problem):
        opts = self.options
        if opts.quasi and opts.quasi_iterations > 0 and self._cache is not None \
                and self._cache_uses < opts.quasi_iterations:
            self._cache_uses += 1
            return self._cache

        if problem is not self.problem:
            lu = self._factorize(problem, self._U)
        else:
            if self._base_factor is None:
                self._base_factor = self._factorize(problem, self._U)
            lu = self._base_factor
        if opts.quasi:
            self._cache = lu
            self._cache_uses = 1
        return lu

    def _corrector_factor(self, problem, U_trial):
        opts = self.options
        if not opts.quasi:
            return self._factorize(problem, U_trial)

        window = opts.quasi_iterations
        if self._cache is None or (window > 0 and self._cache_uses >= window):
            self._cache = self._factorize(problem, U_trial)
            self._cache_uses = 0
        self._cache_uses += 1
        return self._cache

    # ==========================================================================
    # Step
    # ==========================================================================

    def step(self, problem=None):
        """
        Perform one predictor-corrector step.

        Args:
            problem: Optional provider used for this step only (defaults to
                the one given at construction)

        Returns:
            bool: True if the step converged. On failure the committed state
            is unchanged and ``failure`` holds the reason.
        """
        problem = self.problem if problem is None else problem
        self._converged = False
        self._num_iterations = 0
        self.failure = None

        try:
            self.state = IteratorState.PREDICTING
            DeltaU, DeltaL = self._predict(problem)

            self.state = IteratorState.CORRECTING
            DeltaU, DeltaL = self._correct(problem, DeltaU, DeltaL)
        except SingularSystemError as e:
            return self._diverge(f"singular tangent ({e})")
        except ConvergenceError as e:
            return self._diverge(e.reason or str(e))

        try:
            indicator, lu = self._indicator_at(problem, self._U + DeltaU)
        except Exception:
            self._diverge("tangent evaluation failed at the converged point")
            raise

        self._commit(problem, DeltaU, DeltaL, indicator, lu)
        return True

    def _reference_direction(self):
        if self._guess is not None:
            U_g, L_g = self._guess
            return U_g - self._U, L_g - self._L
        if self._has_previous:
            return self._DeltaU_old, self._DeltaL_old
        return None

    def _predict(self, problem):
        lu = self._predictor_factor(problem)
        u_t = lu.solve(self.force)

        if self.options.method == LOAD_CONTROL:
            DeltaL = self._length
            return DeltaL * u_t, DeltaL

        denom = u_t @ u_t + self._phi2FF
        if denom <= 0:
            raise SingularSystemError("Degenerate predictor direction")
        DeltaL = self._length / math.sqrt(denom)

        ref = self._reference_direction()
        if ref is not None:
            ref_U, ref_L = ref
            if DeltaL * (u_t @ ref_U + self._phi2FF * ref_L) < 0:
                DeltaL = -DeltaL

        if self.options.verbose:
            print(f"  Predictor: dL = {self._length:.4e}, Delta lambda = {DeltaL:.4e}")
        return DeltaL * u_t, DeltaL

    def _correct(self, problem, DeltaU, DeltaL):
        opts = self.options
        relax = opts.relaxation

        R = self._residual(problem, self._U + DeltaU, self._L + DeltaL)
        for it in range(1, opts.max_iter + 1):
            self._num_iterations = it
            U_trial = self._U + DeltaU

            if opts.method == EXTENDED_ITERATIONS:
                du, dl = self._extended_correction(problem, U_trial, DeltaU, DeltaL, R)
            else:
                lu = self._corrector_factor(problem, U_trial)
                u_bar = lu.solve(-R)
                if opts.method == LOAD_CONTROL:
                    du, dl = u_bar, 0.0
                else:
                    u_t = lu.solve(self.force)
                    dl = self._load_correction(u_bar, u_t, DeltaU, DeltaL)
                    du = u_bar + dl * u_t

            du = relax * du
            dl = relax * dl
            DeltaU = DeltaU + du
            DeltaL = DeltaL + dl
            if not (np.all(np.isfinite(DeltaU)) and math.isfinite(DeltaL)):
                raise SingularSystemError("Non-finite increment")

            R = self._residual(problem, self._U + DeltaU, self._L + DeltaL)
            self._residual_norm = float(np.linalg.norm(R))
            self._increment_norm = float(np.linalg.norm(du))

            norm_DU = np.linalg.norm(DeltaU)
            res_U = self._increment_norm / norm_DU if norm_DU > 0 else self._increment_norm
            res_F = self._residual_norm / self._force_norm

            if opts.verbose:
                print(f"    Iter {it:3d}  |R|/|F| = {res_F:.3e}  |du|/|DU| = {res_U:.3e}  "
                      f"d_lambda = {dl:.4e}  lambda = {self._L + DeltaL:.6f}")

            if (res_U < opts.tol_u and res_F < opts.tol_f) or self._residual_norm < opts.tol:
                return DeltaU, DeltaL

        raise ConvergenceError(
            "Arc-length step did not converge",
            iterations=opts.max_iter,
            reason=f"no convergence after {opts.max_iter} iterations (|R| = {self._residual_norm:.3e})"
        )

    def _angle_reference(self, DeltaU, DeltaL):
        if self.options.angle_method == 0 and self._has_previous:
            return self._DeltaU_old, self._DeltaL_old
        return DeltaU, DeltaL

    def _load_correction(self, u_bar, u_t, DeltaU, DeltaL):
        """Load-factor correction d_lambda for methods 1-3."""
        phi2FF = self._phi2FF
        method = self.options.method

        if method == RIKS:
            denom = DeltaU @ u_t + phi2FF * DeltaL
            if denom == 0:
                raise SingularSystemError("Riks constraint is degenerate")
            return -(DeltaU @ u_bar) / denom

        if method == CONSISTENT_CRISFIELD:
            g = DeltaU @ DeltaU + phi2FF * DeltaL ** 2 - self._length ** 2
            denom = 2.0 * (DeltaU @ u_t + phi2FF * DeltaL)
            if denom == 0:
                raise SingularSystemError("Linearized arc-length constraint is degenerate")
            return -(g + 2.0 * DeltaU @ u_bar) / denom

        # Crisfield: a * dl^2 + b * dl + c = 0
        w = DeltaU + u_bar
        a = u_t @ u_t + phi2FF
        b = 2.0 * (u_t @ w + phi2FF * DeltaL)
        c = w @ w + phi2FF * DeltaL ** 2 - self._length ** 2
        if a <= 0:
            raise SingularSystemError("Degenerate arc-length constraint")

        disc = b * b - 4.0 * a * c
        if disc < 0:
            raise ConvergenceError("Complex roots", reason="complex roots of the arc-length constraint")

        sqrt_disc = math.sqrt(disc)
        roots = ((-b + sqrt_disc) / (2.0 * a), (-b - sqrt_disc) / (2.0 * a))

        ref_U, ref_L = self._angle_reference(DeltaU, DeltaL)
        scores = [(w + r * u_t) @ ref_U + phi2FF * (DeltaL + r) * ref_L for r in roots]
        return roots[0] if scores[0] >= scores[1] else roots[1]

    def _extended_correction(self, problem, U_trial, DeltaU, DeltaL, R):
        """Solve the bordered system [[K, -F], [2 DU^T, 2 psi^2 DL F.F]] for (du, dl)."""
        K = sp.csr_matrix(problem.jacobian(U_trial), dtype=float)
        g = DeltaU @ DeltaU + self._phi2FF * DeltaL ** 2 - self._length ** 2

        A = sp.bmat([
            [K, sp.csr_matrix(-self.force.reshape(-1, 1))],
            [sp.csr_matrix(2.0 * DeltaU.reshape(1, -1)), sp.csr_matrix([[2.0 * self._phi2FF * DeltaL]])],
        ], format="csc")
        rhs = -np.append(R, g)

        sol = self._solver.solve(A, rhs)
        return sol[:-1], sol[-1]

    def _commit(self, problem, DeltaU, DeltaL, indicator, lu):
        self._U = self._U + DeltaU
        self._L = self._L + DeltaL
        self._DeltaU_old = DeltaU
        self._DeltaL_old = DeltaL
        self._has_previous = True
        self._guess = None
        # Only the iterator's own problem may seed the next predictor
        self._base_factor = lu if problem is self.problem else None

        self._indicator_prev = self._indicator
        self._indicator = indicator

        if self.options.adaptive_length:
            factor = math.sqrt(self.options.adaptive_iterations / max(self._num_iterations, 1))
            self._length *= min(2.0, max(0.5, factor))

        self._converged = True
        self.state = IteratorState.CONVERGED

        if self.options.verbose:
            print(f"  {METHOD_NAMES[self.options.method]} step converged after "
                  f"{self._num_iterations} iterations (lambda = {self._L:.6f}, |U| = {np.linalg.norm(self._U):.4e})")

    def _indicator_at(self, problem, U):
        """Stability indicator at U, with the factorized tangent when it exists."""
        K = problem.jacobian(U)
        try:
            lu = self._solver.factorize(K)
        except SingularSystemError:
            return 0.0, None

        if self.options.bifurcation_method == 0:
            return lu.determinant_sign(), lu
        try:
            return lowest_eigenvalue(K), lu
        except (spla.ArpackNoConvergence, np.linalg.LinAlgError) as e:
            warnings.warn(f"Lowest eigenvalue not available ({e}), stability indicator set to 0")
            return 0.0, lu

    def _diverge(self, reason):
        self._converged = False
        self.failure = reason
        self.state = IteratorState.DIVERGED
        self._cache = None
        self._cache_uses = 0
        if self.options.verbose:
            print(f"  Arc-length step did not converge: {reason}")
        return False
