"""
===============================================================================
ORBIT MANEUVER ENGINE - Conic Propagator Test Suite
===============================================================================
Tests for the universal-variable propagator: circular quarter orbits,
forward/backward round trips on elliptic, near-parabolic and hyperbolic
conics, conservation of energy and angular momentum, and input validation.
===============================================================================
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest
from numpy.testing import assert_allclose

from core.exceptions import InvalidInputError
from dynamics.orbit import Orbit
from dynamics.propagator import propagate, propagate_state, stumpff_c2, stumpff_c3
from dynamics.state import StateVector

MU = 398600.4418  # km^3/s^2


def _state(e, rp=7000.0, nu=0.3, inc=0.4):
    """Position and velocity on a conic with periapsis radius *rp*."""
    a = rp / (1.0 - e) if abs(1.0 - e) > 1e-12 else np.inf
    orbit = Orbit.from_elements(MU, a, e, inc, 0.7, 1.1, nu)
    s = orbit.reference_state
    return s.position.copy(), s.velocity.copy()


def _energy(r, v):
    return 0.5 * np.dot(v, v) - MU / np.linalg.norm(r)


# =============================================================================
# Test: Stumpff functions
# =============================================================================

class TestStumpff:
    """Series and closed forms agree across the switch-over."""

    @pytest.mark.parametrize("psi", [-1.0 - 1e-9, -0.999999, 0.999999, 1.0 + 1e-9])
    def test_continuity_at_switch(self, psi):
        """c2 and c3 are continuous where the series hands over."""
        assert_allclose(stumpff_c2(psi), stumpff_c2(np.sign(psi) * 1.0), rtol=1e-5)
        assert_allclose(stumpff_c3(psi), stumpff_c3(np.sign(psi) * 1.0), rtol=1e-5)

    def test_zero(self):
        """c2(0) = 1/2, c3(0) = 1/6."""
        assert_allclose(stumpff_c2(0.0), 0.5)
        assert_allclose(stumpff_c3(0.0), 1.0 / 6.0)


# =============================================================================
# Test: Known solutions
# =============================================================================

class TestCircularPropagation:
    """Circular orbits rotate uniformly."""

    def test_quarter_period(self):
        """A quarter period moves +x to +y."""
        r = 7000.0
        v = np.sqrt(MU / r)
        period = 2.0 * np.pi * np.sqrt(r ** 3 / MU)
        r1, v1 = propagate(MU, period / 4.0, [r, 0, 0], [0, v, 0])
        assert_allclose(r1, [0.0, r, 0.0], atol=1e-6)
        assert_allclose(v1, [-v, 0.0, 0.0], atol=1e-9)

    def test_full_periods_reduced(self):
        """Many whole periods return to the start."""
        r = 7000.0
        v = np.sqrt(MU / r)
        period = 2.0 * np.pi * np.sqrt(r ** 3 / MU)
        r1, _ = propagate(MU, 1000.0 * period, [r, 0, 0], [0, v, 0])
        assert_allclose(r1, [r, 0.0, 0.0], atol=1e-5)

    def test_zero_dt_returns_copy(self):
        """dt = 0 gives the initial state back, as new arrays."""
        r0 = np.array([7000.0, 0.0, 0.0])
        v0 = np.array([0.0, 7.5, 0.0])
        r1, v1 = propagate(MU, 0.0, r0, v0)
        assert_allclose(r1, r0)
        assert_allclose(v1, v0)
        r1[0] = 0.0
        assert r0[0] == 7000.0


# =============================================================================
# Test: Round trips
# =============================================================================

class TestRoundTrip:
    """Forward then backward propagation recovers the initial state."""

    @pytest.mark.parametrize("e, dt", [
        (0.0, 3000.0),
        (0.5, 20000.0),
        (0.95, 50000.0),
        (1.0 - 1e-7, 5000.0),
        (1.0 + 1e-7, 5000.0),
        (2.0, 20000.0),
    ])
    def test_round_trip(self, e, dt):
        """propagate(-dt) after propagate(dt) is the identity."""
        r0, v0 = _state(e)
        r1, v1 = propagate(MU, dt, r0, v0)
        r2, v2 = propagate(MU, -dt, r1, v1)
        assert_allclose(r2, r0, rtol=1e-9, atol=1e-9 * np.linalg.norm(r0))
        assert_allclose(v2, v0, rtol=1e-9, atol=1e-9 * np.linalg.norm(v0))

    @pytest.mark.parametrize("dt", [5000.0, 1.0e6, -5000.0, -1.0e6])
    def test_exactly_parabolic(self, dt):
        """Escape speed at periapsis, either direction first."""
        r0 = np.array([7000.0, 0.0, 0.0])
        v0 = np.array([0.0, np.sqrt(2.0 * MU / 7000.0), 0.0])
        r1, v1 = propagate(MU, dt, r0, v0)
        assert np.linalg.norm(r1) > np.linalg.norm(r0)
        assert_allclose(_energy(r1, v1), 0.0, atol=1e-9 * np.dot(v0, v0))
        r2, v2 = propagate(MU, -dt, r1, v1)
        assert_allclose(r2, r0, atol=1e-6 * np.linalg.norm(r0))
        assert_allclose(v2, v0, atol=1e-6 * np.linalg.norm(v0))

    @pytest.mark.parametrize("dt", [1.0e6, 1.0e8, -1.0e8])
    def test_long_hyperbolic_arc(self, dt):
        """Far out on the asymptote and back."""
        r0 = np.array([7000.0, 0.0, 0.0])
        v0 = np.array([0.0, 15.0, 0.0])
        r1, v1 = propagate(MU, dt, r0, v0)
        assert np.all(np.isfinite(r1)) and np.all(np.isfinite(v1))
        r2, v2 = propagate(MU, -dt, r1, v1)
        assert_allclose(r2, r0, atol=1e-6 * np.linalg.norm(r0))
        assert_allclose(v2, v0, atol=1e-6 * np.linalg.norm(v0))

    @pytest.mark.parametrize("e", [0.1, 0.7, 1.5])
    def test_invariants_conserved(self, e):
        """Specific energy and angular momentum are constants of motion."""
        r0, v0 = _state(e)
        r1, v1 = propagate(MU, 7200.0, r0, v0)
        assert_allclose(_energy(r1, v1), _energy(r0, v0), rtol=1e-9)
        assert_allclose(np.cross(r1, v1), np.cross(r0, v0), rtol=1e-9,
                        atol=1e-9 * np.linalg.norm(np.cross(r0, v0)))

    def test_propagate_state_sets_epoch(self):
        """propagate_state advances the epoch by dt."""
        r0, v0 = _state(0.2)
        state = propagate_state(StateVector(r0, v0, 100.0), MU, 500.0)
        assert state.epoch == 600.0
        r1, _ = propagate(MU, 500.0, r0, v0)
        assert_allclose(state.position, r1)


# =============================================================================
# Test: Validation
# =============================================================================

class TestValidation:
    """Invalid inputs raise InvalidInputError."""

    def test_non_positive_mu(self):
        with pytest.raises(InvalidInputError):
            propagate(0.0, 10.0, [7000, 0, 0], [0, 7.5, 0])

    def test_zero_position(self):
        with pytest.raises(InvalidInputError):
            propagate(MU, 10.0, [0, 0, 0], [0, 7.5, 0])

    def test_non_finite_dt(self):
        with pytest.raises(ValueError):
            propagate(MU, np.nan, [7000, 0, 0], [0, 7.5, 0])
