"""
Direct Linear Solvers and Stability Indicators
==============================================

Factorizations used by the continuation stepper. A factorization is computed
once and back-substituted several times (predictor direction, residual
correction, load correction), the same LU re-use as the optimized
displacement-control routine of a Newton-Raphson solver:

    lu = DirectSolver(kind).factorize(K)
    u_t = lu.solve(F)        # tangent direction
    u_bar = lu.solve(-R)     # residual correction

Two kinds are available:
    0 - Sparse LU (SuperLU through scipy.sparse.linalg.splu)
    1 - Dense LU (LAPACK getrf through scipy.linalg.lu_factor)

Stability indicators:
    - Determinant sign, read from the LU factors (no extra factorization)
    - Lowest eigenvalue of the symmetric part of the tangent
"""

import warnings

import numpy as np
import scipy.linalg as la  # Dense Linear Algebra
import scipy.sparse as sp  # Sparse Matrix Storage
import scipy.sparse.linalg as spla  # Sparse Linear Algebra

from ArcRefine.Solvers.Errors import SingularSystemError
from ArcRefine.Solvers.Options import SolverConstants

SPARSE_LU = 0
DENSE_LU = 1


def _permutation_parity(perm):
    """Sign (+1/-1) of a permutation given as an index array."""
    perm = np.asarray(perm)
    visited = np.zeros(perm.size, dtype=bool)
    sign = 1
    for start in range(perm.size):
        if visited[start]:
            continue
        length = 0
        j = start
        while not visited[j]:
            visited[j] = True
            j = perm[j]
            length += 1
        if length % 2 == 0:
            sign = -sign
    return sign


class Factorization:
    """A factorized tangent matrix, ready for repeated solves."""

    def __init__(self, kind, lu, n):
        self.kind = kind
        self._lu = lu
        self.n = n

    def solve(self, b):
        b = np.asarray(b, dtype=float)
        if self.kind == SPARSE_LU:
            x = self._lu.solve(b)
        else:
            x = la.lu_solve(self._lu, b)
        if not np.all(np.isfinite(x)):
            raise SingularSystemError("Linear solve produced non-finite values")
        return x

    def determinant_sign(self):
        """Sign of det(K): +1, -1 or 0 for an exactly singular pivot."""
        if self.kind == SPARSE_LU:
            # Pr * K * Pc = L * U with unit-diagonal L
            diag = self._lu.U.diagonal()
            sign = np.prod(np.sign(diag))
            sign *= _permutation_parity(self._lu.perm_r) * _permutation_parity(self._lu.perm_c)
        else:
            lu, piv = self._lu
            sign = np.prod(np.sign(np.diag(lu)))
            # getrf pivots: row i swapped with piv[i]
            swaps = np.count_nonzero(piv != np.arange(piv.size))
            sign *= -1 if swaps % 2 else 1
        return float(sign)


class DirectSolver:
    """Factory for direct factorizations of the tangent matrix."""

    def __init__(self, kind=SPARSE_LU):
        if kind not in (SPARSE_LU, DENSE_LU):
            raise ValueError(f"Unknown direct solver kind {kind}")
        self.kind = kind

    def factorize(self, K):
        """LU-factorize K. Raises SingularSystemError if K is singular."""
        n = K.shape[0]
        if K.shape[0] != K.shape[1]:
            raise SingularSystemError(f"Tangent must be square, got shape {K.shape}")

        if self.kind == SPARSE_LU:
            K_csc = sp.csc_matrix(K, dtype=float)
            try:
                lu = spla.splu(K_csc)
            except RuntimeError as e:
                raise SingularSystemError(f"Sparse LU failed: {e}") from e
            if np.any(lu.U.diagonal() == 0):
                raise SingularSystemError("Tangent matrix is exactly singular")
            return Factorization(SPARSE_LU, lu, n)

        K_dense = K.toarray() if sp.issparse(K) else np.asarray(K, dtype=float)
        if not np.all(np.isfinite(K_dense)):
            raise SingularSystemError("Tangent matrix contains non-finite values")
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", la.LinAlgWarning)
            lu, piv = la.lu_factor(K_dense)
        if np.any(np.diag(lu) == 0):
            raise SingularSystemError("Tangent matrix is exactly singular")
        return Factorization(DENSE_LU, (lu, piv), n)

    def solve(self, K, b):
        """One-shot solve K x = b."""
        return self.factorize(K).solve(b)


def lowest_eigenvalue(K):
    """Lowest eigenvalue of the symmetric part of K."""
    n = K.shape[0]
    if sp.issparse(K):
        K_sym = 0.5 * (K + K.T)
        if n <= SolverConstants.DENSE_EIGEN_LIMIT:
            return float(la.eigvalsh(K_sym.toarray(), subset_by_index=[0, 0])[0])
        vals = spla.eigsh(sp.csc_matrix(K_sym), k=1, which="SA", return_eigenvectors=False)
        return float(vals[0])

    K = np.asarray(K, dtype=float)
    return float(la.eigvalsh(0.5 * (K + K.T), subset_by_index=[0, 0])[0])
