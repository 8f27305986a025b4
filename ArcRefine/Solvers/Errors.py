"""
Solver Exceptions
=================

Error taxonomy shared by the continuation stepper and the refinement driver.

- **ConvergenceError**: a continuation step did not converge. Fatal to the
  step; the refinement driver aborts the run but keeps every point stored so far.
- **SingularSystemError**: the tangent could not be factorized or produced a
  non-finite increment. Inside ``ArcLengthIterator.step()`` this is reported
  as a divergence.
- **ConfigurationError**: unknown option name or out-of-range option value,
  detected before any stepping begins.
"""


class ConvergenceError(RuntimeError):
    """Raised when a predictor-corrector step fails to converge.

    This typically indicates:
    - Arc length too large (reduce the step size)
    - Tangent close to singular (limit or bifurcation point)
    - A residual that cannot be reduced below tolerance

    Attributes
    ----------
    iterations : int
        Number of corrections performed before giving up
    reason : str
        Short description of the failure
    """

    def __init__(self, message, iterations=0, reason=None):
        super().__init__(message)
        self.iterations = iterations
        self.reason = reason


class SingularSystemError(RuntimeError):
    """Raised when the tangent matrix is singular and cannot be solved.

    This typically indicates:
    - Insufficient boundary conditions (rigid body modes)
    - A state exactly on a critical point
    - Numerical breakdown (non-finite values in the solution)
    """
    pass


class ConfigurationError(ValueError):
    """Raised when an option is unknown or outside its admissible range."""
    pass
