"""
Tests for the posterior error estimate.
"""
import numpy as np
import pytest

from ArcRefine.Refinement.Estimator import ErrorEstimator
from ArcRefine.Refinement.Store import SolutionPoint


@pytest.mark.unit
class TestErrorEstimator:

    def test_identical_points(self):
        est = ErrorEstimator(np.array([1.0, 2.0]))
        p = SolutionPoint([0.3, 0.4], 0.7)
        assert est.estimate(p, SolutionPoint([0.3, 0.4], 0.7), 0.5) == 0.0

    def test_formula(self):
        est = ErrorEstimator(np.array([3.0, 4.0]))
        coarse = SolutionPoint([0.0, 0.0], 1.0)
        fine = SolutionPoint([0.3, 0.4], 0.9)
        # (|1.0 - 0.9| * 5 + 0.5) / 2
        assert est.estimate(coarse, fine, 2.0) == pytest.approx(0.5)

    def test_symmetric_and_non_negative(self):
        est = ErrorEstimator(np.array([1.0]))
        a = SolutionPoint([0.2], 0.1)
        b = SolutionPoint([-0.4], 0.3)
        assert est.estimate(a, b, 0.1) == est.estimate(b, a, 0.1) > 0

    def test_scales_with_length(self):
        est = ErrorEstimator(np.array([1.0]))
        a = SolutionPoint([0.2], 0.1)
        b = SolutionPoint([0.3], 0.1)
        assert est.estimate(a, b, 0.05) == pytest.approx(2 * est.estimate(a, b, 0.1))

    @pytest.mark.parametrize("length", [0.0, -0.1])
    def test_non_positive_length(self, length):
        est = ErrorEstimator(np.array([1.0]))
        p = SolutionPoint([0.0], 0.0)
        with pytest.raises(ValueError):
            est.estimate(p, p, length)

    def test_threshold_is_strict(self):
        est = ErrorEstimator(np.array([1.0]), tolerance=0.05)
        assert est.needs_refinement(0.10)
        assert not est.needs_refinement(0.05)
        assert not est.needs_refinement(0.0)

    def test_negative_tolerance(self):
        with pytest.raises(ValueError):
            ErrorEstimator(np.array([1.0]), tolerance=-1.0)
