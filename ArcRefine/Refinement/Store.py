"""
Hierarchical Solution Storage
=============================

Level-indexed, append-only storage of converged continuation points, and the
table of posterior errors recorded while refining.

Level l holds points traced with the nominal arc length dL0 / 2^l. Level 0 is
dense (the coarse path), deeper levels are sparse: they only hold the points
of the intervals that were refined. Every level starts with the reference
point, so index 0 of any level is the unloaded state.

Points are addressed by logical ``(level, index)`` pairs; indices stay valid
for the whole run because levels only grow.
"""

from dataclasses import dataclass

import numpy as np


class LevelIndexError(IndexError):
    """Raised when a (level, index) reference does not exist.

    This typically indicates:
    - A refinement task pointing past the end of a level
    - Reading a level that was never allocated
    """
    pass


@dataclass(frozen=True, eq=False)
class SolutionPoint:
    """Converged state U and load factor lambda (immutable)."""
    state: np.ndarray
    load_factor: float = 0.0

    def __post_init__(self):
        state = np.array(self.state, dtype=float).ravel()
        state.flags.writeable = False
        object.__setattr__(self, 'state', state)
        object.__setattr__(self, 'load_factor', float(self.load_factor))

    @classmethod
    def reference(cls, n):
        """The unloaded reference point (0, 0) with n unknowns."""
        return cls(np.zeros(n), 0.0)

    @property
    def size(self):
        return self.state.size

    def __eq__(self, other):
        if not isinstance(other, SolutionPoint):
            return NotImplemented
        return self.load_factor == other.load_factor and np.array_equal(self.state, other.state)

    __hash__ = None

    def __repr__(self):
        return f"SolutionPoint(|U|={np.linalg.norm(self.state):.4e}, lambda={self.load_factor:.6f})"


class LevelSolutionStore:
    """
    Append-only storage of solution points per refinement level.

    Args:
        reference: SolutionPoint heading every level

    Example:
        >>> store = LevelSolutionStore.zeros(2)
        >>> store.ensure_level(0)
        >>> idx = store.append(0, SolutionPoint([0.1, 0.2], 0.5))
        >>> store.at(0, idx).load_factor
        0.5
    """

    def __init__(self, reference):
        if not isinstance(reference, SolutionPoint):
            raise TypeError("reference must be a SolutionPoint")
        self.reference = reference
        self._levels = []
        self._history = []

    @classmethod
    def zeros(cls, n):
        return cls(SolutionPoint.reference(n))

    @property
    def num_levels(self):
        return len(self._levels)

    def has_level(self, level):
        return 0 <= level < len(self._levels)

    def ensure_level(self, level):
        """Allocate levels up to ``level``, each seeded with the reference point."""
        if level < 0:
            raise LevelIndexError(f"Negative level {level}")
        while len(self._levels) <= level:
            self._levels.append([self.reference])
            self._history.append((len(self._levels) - 1, 0))

    def append(self, level, point):
        """Append a converged point to ``level`` and return its index."""
        if not self.has_level(level):
            raise LevelIndexError(f"Level {level} is not allocated ({self.num_levels} levels)")
        if not isinstance(point, SolutionPoint):
            raise TypeError("point must be a SolutionPoint")
        if point.size != self.reference.size:
            raise ValueError(f"Point has {point.size} unknowns, expected {self.reference.size}")
        self._levels[level].append(point)
        index = len(self._levels[level]) - 1
        self._history.append((level, index))
        return index

    def at(self, level, index):
        if not self.has_level(level):
            raise LevelIndexError(f"Level {level} is not allocated ({self.num_levels} levels)")
        points = self._levels[level]
        if not 0 <= index < len(points):
            raise LevelIndexError(f"Index {index} out of range for level {level} (size {len(points)})")
        return points[index]

    def size(self, level):
        return len(self._levels[level]) if self.has_level(level) else 0

    def points(self, level):
        if not self.has_level(level):
            raise LevelIndexError(f"Level {level} is not allocated ({self.num_levels} levels)")
        return tuple(self._levels[level])

    def history(self):
        """All (level, index) references in insertion order."""
        return list(self._history)

    def as_arrays(self, level):
        """States as columns of an (n, size) array and load factors as a vector."""
        points = self.points(level)
        U = np.column_stack([p.state for p in points])
        L = np.array([p.load_factor for p in points])
        return U, L

    def __len__(self):
        return sum(len(points) for points in self._levels)


class ErrorTable:
    """Posterior errors of refined intervals.

    ``_levels[l]`` maps an interval start ``(source_level, source_index)`` to
    the error measured when that interval was refined into level l + 1.
    """

    def __init__(self):
        self._levels = []

    @property
    def num_levels(self):
        return len(self._levels)

    def ensure_level(self, level):
        if level < 0:
            raise LevelIndexError(f"Negative level {level}")
        while len(self._levels) <= level:
            self._levels.append({})

    def record(self, level, source_level, source_index, error):
        self.ensure_level(level)
        self._levels[level][(source_level, source_index)] = float(error)

    def at(self, level, index):
        """Error of the interval starting at index ``index`` of ``level``."""
        return self.get(level, level, index)

    def get(self, level, source_level, source_index):
        if not 0 <= level < len(self._levels):
            raise LevelIndexError(f"No errors recorded for level {level}")
        try:
            return self._levels[level][(source_level, source_index)]
        except KeyError:
            raise LevelIndexError(
                f"No error recorded for interval ({source_level}, {source_index}) at level {level}"
            ) from None

    def entries(self, level):
        """Recorded errors of ``level`` as a dict keyed by interval start."""
        if not 0 <= level < len(self._levels):
            return {}
        return dict(self._levels[level])

    def __len__(self):
        return sum(len(level) for level in self._levels)
