"""
Arc-Length Options
==================

Configuration of the continuation stepper. Options can be given either as
attributes of ``ArcLengthOptions`` or as a plain dict using the option names
below:

    =====================  ====================  =======================================
    Option name            Attribute             Meaning
    =====================  ====================  =======================================
    Solver                 solver                0: sparse LU, 1: dense LU
    BifurcationMethod      bifurcation_method    0: determinant sign, 1: lowest eigenvalue
    Method                 method                0: load control, 1: Riks, 2: Crisfield,
                                                 3: consistent Crisfield, 4: extended
    Length                 length                arc length dL
    AngleMethod            angle_method          0: per step, 1: per iteration
    AdaptiveLength         adaptive_length       adapt dL to the iteration count
    AdaptiveIterations     adaptive_iterations   desired iterations per step
    Scaling                scaling               load scaling psi of the constraint
    Tol                    tol                   absolute residual tolerance
    TolU                   tol_u                 relative displacement tolerance
    TolF                   tol_f                 relative force tolerance
    MaxIter                max_iter              maximum corrections per step
    Verbose                verbose               print iteration progress
    Relaxation             relaxation            relaxation of the corrections
    Quasi                  quasi                 reuse the tangent factorization
    QuasiIterations        quasi_iterations      reuse window (<= 0: once per step)
    =====================  ====================  =======================================

Example:
    >>> opts = ArcLengthOptions.from_dict({'Method': 2, 'Length': 0.5, 'MaxIter': 20})
    >>> opts.set_option('Quasi', True)
"""

from dataclasses import dataclass, fields
from typing import ClassVar, Dict

import numpy as np

from ArcRefine.Solvers.Errors import ConfigurationError


# =============================================================================
# SOLVER CONSTANTS
# =============================================================================

class SolverConstants:
    """Defaults for the continuation stepper and the refinement driver.

    These can be overridden through ``ArcLengthOptions`` or explicit arguments.
    """
    ARC_LENGTH = 1e-1                 # Default arc length dL
    TOLERANCE = 1e-6                  # Absolute residual tolerance
    DISPLACEMENT_TOLERANCE = 1e-6     # Relative increment tolerance
    FORCE_TOLERANCE = 1e-3            # Relative residual tolerance
    MAX_ITERATIONS = 25               # Max corrections per step
    ADAPTIVE_ITERATIONS = 10          # Desired corrections per step (adaptive length)
    REFINEMENT_TOLERANCE = 0.05       # ptol of the posterior error estimate
    DENSE_EIGEN_LIMIT = 200           # Below this size, eigenvalues use a dense solver


# Method codes
LOAD_CONTROL = 0
RIKS = 1
CRISFIELD = 2
CONSISTENT_CRISFIELD = 3
EXTENDED_ITERATIONS = 4

METHOD_NAMES = {
    LOAD_CONTROL: "Load control",
    RIKS: "Riks",
    CRISFIELD: "Crisfield",
    CONSISTENT_CRISFIELD: "Consistent Crisfield",
    EXTENDED_ITERATIONS: "Extended iterations",
}


@dataclass
class ArcLengthOptions:
    """Options of ``ArcLengthIterator`` (see module docstring for the names)."""
    solver: int = 0
    bifurcation_method: int = 0
    method: int = CRISFIELD
    length: float = SolverConstants.ARC_LENGTH
    angle_method: int = 0
    adaptive_length: bool = False
    adaptive_iterations: int = SolverConstants.ADAPTIVE_ITERATIONS
    scaling: float = 0.0
    tol: float = SolverConstants.TOLERANCE
    tol_u: float = SolverConstants.DISPLACEMENT_TOLERANCE
    tol_f: float = SolverConstants.FORCE_TOLERANCE
    max_iter: int = SolverConstants.MAX_ITERATIONS
    verbose: bool = False
    relaxation: float = 1.0
    quasi: bool = False
    quasi_iterations: int = -1

    NAMES: ClassVar[Dict[str, str]] = {
        'Solver': 'solver',
        'BifurcationMethod': 'bifurcation_method',
        'Method': 'method',
        'Length': 'length',
        'AngleMethod': 'angle_method',
        'AdaptiveLength': 'adaptive_length',
        'AdaptiveIterations': 'adaptive_iterations',
        'Scaling': 'scaling',
        'Tol': 'tol',
        'TolU': 'tol_u',
        'TolF': 'tol_f',
        'MaxIter': 'max_iter',
        'Verbose': 'verbose',
        'Relaxation': 'relaxation',
        'Quasi': 'quasi',
        'QuasiIterations': 'quasi_iterations',
    }

    @classmethod
    def from_dict(cls, options):
        """Build and validate options from a dict of option names or attribute names."""
        opts = cls()
        for name, value in options.items():
            opts.set_option(name, value, validate=False)
        opts.validate()
        return opts

    @classmethod
    def _attribute(cls, name):
        if name in cls.NAMES:
            return cls.NAMES[name]
        if name in {f.name for f in fields(cls)}:
            return name
        raise ConfigurationError(f"Unknown option '{name}'")

    def set_option(self, name, value, validate=True):
        """Set a single option, e.g. ``set_option('Method', 1)``."""
        attr = self._attribute(name)
        default = getattr(type(self), attr)
        try:
            if isinstance(default, bool):
                # Strings such as "False" would otherwise be truthy
                if not isinstance(value, (bool, int, np.bool_, np.integer)):
                    raise ConfigurationError(f"Option '{name}' expects a boolean, got {value!r}")
                value = bool(value)
            elif isinstance(default, int):
                if isinstance(value, float) and not value.is_integer():
                    raise ConfigurationError(f"Option '{name}' expects an integer, got {value}")
                value = int(value)
            else:
                value = float(value)
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid value {value!r} for option '{name}'") from e
        setattr(self, attr, value)
        if validate:
            self.validate()

    def get_option(self, name):
        return getattr(self, self._attribute(name))

    def validate(self):
        """Check option ranges. Raises ConfigurationError."""
        if self.solver not in (0, 1):
            raise ConfigurationError(f"Solver must be 0 (sparse LU) or 1 (dense LU), got {self.solver}")
        if self.bifurcation_method not in (0, 1):
            raise ConfigurationError(f"BifurcationMethod must be 0 or 1, got {self.bifurcation_method}")
        if self.method not in METHOD_NAMES:
            raise ConfigurationError(f"Unknown Method {self.method}, expected one of {sorted(METHOD_NAMES)}")
        if self.angle_method not in (0, 1):
            raise ConfigurationError(f"AngleMethod must be 0 or 1, got {self.angle_method}")
        if self.length <= 0:
            raise ConfigurationError(f"Length must be positive, got {self.length}")
        if self.scaling < 0:
            raise ConfigurationError(f"Scaling must be non-negative, got {self.scaling}")
        if self.max_iter < 1:
            raise ConfigurationError(f"MaxIter must be at least 1, got {self.max_iter}")
        if self.adaptive_iterations < 1:
            raise ConfigurationError(f"AdaptiveIterations must be at least 1, got {self.adaptive_iterations}")
        if self.relaxation <= 0:
            raise ConfigurationError(f"Relaxation must be positive, got {self.relaxation}")
        for name in ('tol', 'tol_u', 'tol_f'):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"Tolerance '{name}' must be non-negative")
        return self

    def to_dict(self):
        """Options keyed by option name."""
        return {name: getattr(self, attr) for name, attr in self.NAMES.items()}

    def __str__(self):
        lines = [f"  {name:<20s} {getattr(self, attr)}" for name, attr in self.NAMES.items()]
        return "Arc-length options:\n" + "\n".join(lines)
