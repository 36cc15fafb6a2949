"""
===============================================================================
ORBIT MANEUVER ENGINE - Root Finder Test Suite
===============================================================================
Tests for the bracketed Brent root finder and the uniform bracket scan:
accuracy, bracket validation, iteration and wall-clock budgets.
===============================================================================
"""

import sys
import os
import time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest

from core.config import RootFinderConfig
from core.exceptions import InvalidBracketError, InvalidInputError, RootFindTimeout
from optimization.root_finding import find_first_bracket, find_root, find_root_with_config


# =============================================================================
# Test: find_root
# =============================================================================

class TestFindRoot:
    """Brent's method within the engine's contract."""

    @pytest.mark.parametrize("c", [-3.5, 0.25, 7.0])
    def test_linear(self, c):
        """x - c has its root at c."""
        assert find_root(lambda x: x - c, -10.0, 10.0, xtol=1e-12) == pytest.approx(c, abs=1e-10)

    def test_cubic(self):
        """Cube root of two."""
        root = find_root(lambda x: x ** 3 - 2.0, 0.0, 10.0, xtol=1e-14)
        assert root == pytest.approx(2.0 ** (1.0 / 3.0), rel=1e-10)

    def test_endpoint_root(self):
        """A zero at an end point is returned directly."""
        assert find_root(lambda x: x - 1.0, 1.0, 3.0) == 1.0
        assert find_root(lambda x: x - 3.0, 1.0, 3.0) == 3.0

    def test_same_sign_rejected(self):
        with pytest.raises(InvalidBracketError):
            find_root(lambda x: x * x + 1.0, -1.0, 1.0)

    def test_invalid_bracket_is_input_error(self):
        """InvalidBracketError refines InvalidInputError."""
        with pytest.raises(InvalidInputError):
            find_root(lambda x: x * x + 1.0, -1.0, 1.0)

    def test_infinite_bracket(self):
        with pytest.raises(InvalidInputError):
            find_root(lambda x: x, -np.inf, 1.0)

    def test_iteration_cap(self):
        """Two iterations are not enough; the last iterate is reported."""
        with pytest.raises(RootFindTimeout) as info:
            find_root(lambda x: x ** 3 - 2.0, 0.0, 10.0, xtol=1e-14, max_iterations=2)
        assert info.value.best_guess is not None
        assert 0.0 <= info.value.best_guess <= 10.0

    def test_time_budget(self):
        """A slow objective exhausts a tiny wall-clock budget."""
        def slow(x):
            time.sleep(0.002)
            return x ** 3 - 2.0

        with pytest.raises(RootFindTimeout):
            find_root(slow, 0.0, 10.0, xtol=1e-14, time_budget=1e-6)


class TestFindRootWithConfig:
    """Settings taken from a RootFinderConfig."""

    def test_default_config(self):
        assert find_root_with_config(lambda x: x - 2.0, 0.0, 5.0) == pytest.approx(2.0, abs=1e-6)

    def test_config_cap(self):
        config = RootFinderConfig(xtol=1e-14, rtol=1e-15, max_iterations=1)
        with pytest.raises(RootFindTimeout):
            find_root_with_config(lambda x: x ** 3 - 2.0, 0.0, 10.0, config)


# =============================================================================
# Test: find_first_bracket
# =============================================================================

class TestFindFirstBracket:
    """Uniform scan for the first sign change."""

    def test_first_of_several(self):
        """sin(x) on [0.5, 10] changes sign first near pi."""
        lo, hi = find_first_bracket(np.sin, 0.5, 10.0, 50)
        assert lo < np.pi < hi
        assert hi - lo == pytest.approx(9.5 / 50)

    def test_no_sign_change(self):
        assert find_first_bracket(lambda x: x * x + 1.0, -1.0, 1.0, 10) is None

    def test_exact_zero_on_grid(self):
        """A grid point with f == 0 closes the bracket."""
        assert find_first_bracket(lambda x: x - 1.0, 0.0, 2.0, 4) == (0.5, 1.0)
        assert find_first_bracket(lambda x: x, 0.0, 2.0, 4) == (0.0, 0.0)

    def test_invalid_divisions(self):
        with pytest.raises(InvalidInputError):
            find_first_bracket(np.sin, 0.0, 1.0, 0)
