"""
Equilibrium Problem Interface
=============================

The continuation core never assembles anything itself. A problem provides,
for a state U and load factor lambda:

    residual(U, L, force) = P_r(U) - L * force      (ndarray, length n)
    jacobian(U)           = dP_r / dU               (sparse or dense, n x n)

Any object with these two methods can be passed to ``ArcLengthIterator``.
``EquilibriumProblem`` is the abstract base used by the structures of this
package; ``CallbackProblem`` wraps two plain functions.

Example:
    >>> problem = CallbackProblem(
    ...     residual=lambda U, L, F: U + U**3 - L * F,
    ...     jacobian=lambda U: sp.diags(1 + 3 * U**2),
    ... )
"""

import copy
from abc import ABC, abstractmethod


class EquilibriumProblem(ABC):

    @abstractmethod
    def residual(self, U, L, force):
        pass

    @abstractmethod
    def jacobian(self, U):
        pass

    def clone(self):
        """Independent copy, e.g. for a worker that must not share assembly buffers."""
        return copy.deepcopy(self)


class CallbackProblem(EquilibriumProblem):
    """Problem defined by a residual function and a Jacobian function."""

    def __init__(self, residual, jacobian):
        if not callable(residual) or not callable(jacobian):
            raise TypeError("residual and jacobian must be callable")
        self._residual = residual
        self._jacobian = jacobian

    def residual(self, U, L, force):
        return self._residual(U, L, force)

    def jacobian(self, U):
        return self._jacobian(U)
