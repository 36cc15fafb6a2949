"""
===============================================================================
ORBIT MANEUVER ENGINE - Lambert Solver Test Suite
===============================================================================
Tests for the universal-variable Lambert solver: consistency with the
propagator, the 180-degree circular case, prograde / retrograde branch
selection, multi-revolution transfers, degenerate geometry, and the
two-burn intercept driver.
===============================================================================
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest
from numpy.testing import assert_allclose

from core.constants import EARTH_MU
from core.exceptions import (
    DegenerateGeometryError,
    InvalidInputError,
    LambertDidNotConverge,
)
from dynamics.lambert import intercept_delta_v, solve_lambert, transfer_angle
from dynamics.propagator import propagate

MU = 398600.4418  # km^3/s^2
R = 7000.0
V_CIRC = np.sqrt(MU / R)
PERIOD = 2.0 * np.pi * np.sqrt(R ** 3 / MU)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def quarter_turn():
    """Departure and arrival positions 90 degrees apart (r2 larger)."""
    r1 = np.array([R, 0.0, 0.0])
    r2 = np.array([0.0, 1.5 * R, 0.0])
    return r1, r2


# =============================================================================
# Test: Transfer angle
# =============================================================================

class TestTransferAngle:
    """Swept angle about the reference normal."""

    def test_prograde_and_retrograde(self, quarter_turn):
        """Retrograde sweeps the complement of the prograde angle."""
        r1, r2 = quarter_turn
        z = np.array([0.0, 0.0, 1.0])
        assert_allclose(transfer_angle(r1, r2, z, True), np.pi / 2)
        assert_allclose(transfer_angle(r1, r2, z, False), 3 * np.pi / 2)

    def test_flipped_normal(self, quarter_turn):
        """Looking from -z the short way is retrograde."""
        r1, r2 = quarter_turn
        assert_allclose(transfer_angle(r1, r2, np.array([0.0, 0.0, -1.0]), True),
                        3 * np.pi / 2)


# =============================================================================
# Test: Solutions satisfy the boundary conditions
# =============================================================================

class TestBoundaryConditions:
    """The Lambert arc reaches r2 after exactly |tof|."""

    @pytest.mark.parametrize("tof", [1500.0, 3000.0, 6000.0, 20000.0])
    def test_prograde_reaches_target(self, quarter_turn, tof):
        """Propagating (r1, v1) for tof lands on r2 with velocity v2."""
        r1, r2 = quarter_turn
        v1, v2 = solve_lambert(MU, r1, r2, tof)
        r_end, v_end = propagate(MU, tof, r1, v1)
        assert_allclose(r_end, r2, atol=1e-6 * R)
        assert_allclose(v_end, v2, atol=1e-6 * V_CIRC)
        assert np.cross(r1, v1)[2] > 0.0

    def test_retrograde_branch(self, quarter_turn):
        """Negative tof selects motion opposite to the reference normal."""
        r1, r2 = quarter_turn
        tof = 4000.0
        v1, _ = solve_lambert(MU, r1, r2, -tof)
        r_end, _ = propagate(MU, tof, r1, v1)
        assert_allclose(r_end, r2, atol=1e-6 * R)
        assert np.cross(r1, v1)[2] < 0.0

    def test_reference_velocity_sets_normal(self, quarter_turn):
        """A departure velocity about -z makes the -z sense prograde."""
        r1, r2 = quarter_turn
        v_ref = np.array([0.0, -V_CIRC, 0.0])
        v1, _ = solve_lambert(MU, r1, r2, 4000.0, v1=v_ref)
        assert np.cross(r1, v1)[2] < 0.0

    def test_three_dimensional(self):
        """Out-of-plane geometry is handled like any other."""
        r1 = np.array([R, 0.0, 0.0])
        r2 = np.array([2000.0, 6000.0, 4000.0])
        tof = 2500.0
        v1, v2 = solve_lambert(MU, r1, r2, tof)
        r_end, v_end = propagate(MU, tof, r1, v1)
        assert_allclose(r_end, r2, atol=1e-6 * R)
        assert_allclose(v_end, v2, atol=1e-6 * V_CIRC)


# =============================================================================
# Test: Half-turn (180 degree) transfers
# =============================================================================

class TestHalfTurn:
    """Colinear opposite positions need a departure velocity."""

    def test_circular_half_period(self):
        """Half a circular period between antipodes is the circular orbit."""
        r1 = np.array([R, 0.0, 0.0])
        r2 = np.array([-R, 0.0, 0.0])
        v_ref = np.array([0.0, V_CIRC, 0.0])
        v1, v2 = solve_lambert(MU, r1, r2, PERIOD / 2.0, v1=v_ref)
        assert_allclose(v1, [0.0, V_CIRC, 0.0], atol=1e-6 * V_CIRC)
        assert_allclose(v2, [0.0, -V_CIRC, 0.0], atol=1e-6 * V_CIRC)

    def test_plane_from_reference_velocity(self):
        """The transfer stays in the plane of r1 and the given velocity."""
        r1 = np.array([R, 0.0, 0.0])
        r2 = np.array([-2.0 * R, 0.0, 0.0])
        v_ref = np.array([0.0, 0.0, V_CIRC])
        v1, _ = solve_lambert(MU, r1, r2, 0.8 * PERIOD, v1=v_ref)
        assert abs(v1[1]) < 1e-9 * V_CIRC
        r_end, _ = propagate(MU, 0.8 * PERIOD, r1, v1)
        assert_allclose(r_end, r2, atol=1e-6 * R)

    def test_half_turn_without_velocity(self):
        """No departure velocity leaves the plane undefined."""
        with pytest.raises(DegenerateGeometryError):
            solve_lambert(MU, [R, 0, 0], [-R, 0, 0], 3000.0)


# =============================================================================
# Test: Multi-revolution transfers
# =============================================================================

class TestMultiRevolution:
    """nrev > 0 solutions wind the requested number of times."""

    def test_one_revolution(self, quarter_turn):
        """Both one-revolution branches satisfy the boundary conditions."""
        r1, r2 = quarter_turn
        tof = 2.5 * PERIOD
        v1, v2 = solve_lambert(MU, r1, r2, tof, nrev=1)
        r_end, v_end = propagate(MU, tof, r1, v1)
        assert_allclose(r_end, r2, atol=1e-5 * R)
        assert_allclose(v_end, v2, atol=1e-5 * V_CIRC)

    def test_branch_closest_to_reference(self):
        """With a circular reference velocity the circular branch is chosen."""
        r1 = np.array([R, 0.0, 0.0])
        r2 = np.array([0.0, R, 0.0])
        v_ref = np.array([0.0, V_CIRC, 0.0])
        v1, _ = solve_lambert(MU, r1, r2, 1.25 * PERIOD, nrev=1, v1=v_ref)
        assert_allclose(v1, v_ref, atol=1e-5 * V_CIRC)

    def test_too_short_for_revolutions(self, quarter_turn):
        """Below the minimum time for nrev revolutions there is no solution."""
        r1, r2 = quarter_turn
        with pytest.raises(LambertDidNotConverge):
            solve_lambert(MU, r1, r2, 0.1 * PERIOD, nrev=1)


# =============================================================================
# Test: Invalid input and degenerate geometry
# =============================================================================

class TestInvalidInput:
    """Errors surface immediately."""

    def test_zero_tof(self, quarter_turn):
        r1, r2 = quarter_turn
        with pytest.raises(InvalidInputError):
            solve_lambert(MU, r1, r2, 0.0)

    def test_negative_nrev(self, quarter_turn):
        r1, r2 = quarter_turn
        with pytest.raises(InvalidInputError):
            solve_lambert(MU, r1, r2, 1000.0, nrev=-1)

    @pytest.mark.parametrize("nrev", [0, 1])
    def test_zero_transfer_angle(self, nrev):
        """Parallel positions define no transfer plane."""
        with pytest.raises(DegenerateGeometryError):
            solve_lambert(MU, [R, 0, 0], [2 * R, 0, 0], 3.0 * PERIOD, nrev=nrev)


class TestVanishingTimeOfFlight:
    """Times of flight far too short for any conic (SI units)."""

    R1 = [2359780.52, 6239685.64, 0.0]
    R2 = [9645122.72, 24758627.76, 0.0]

    def test_retrograde_femtosecond(self):
        with pytest.raises(LambertDidNotConverge):
            solve_lambert(EARTH_MU, self.R1, self.R2, -1e-15)

    @pytest.mark.parametrize("tof", [-2.4e-5, 2.4e-5, -1e-9, 1e-9])
    def test_never_returns_non_finite(self, tof):
        """Either a typed failure or finite velocities, never NaN or inf."""
        try:
            v1, v2 = solve_lambert(EARTH_MU, self.R1, self.R2, tof)
        except LambertDidNotConverge:
            return
        assert np.all(np.isfinite(v1))
        assert np.all(np.isfinite(v2))


# =============================================================================
# Test: Intercept driver
# =============================================================================

class TestInterceptDeltaV:
    """Two-burn intercept between states at a common epoch."""

    def test_burns_close_the_gap(self):
        """After dv1 the vessel meets the target; dv2 matches its velocity."""
        r0 = np.array([R, 0.0, 0.0])
        v0 = np.array([0.0, V_CIRC, 0.0])
        rt = np.array([0.0, 1.5 * R, 0.0])
        vt = np.array([-np.sqrt(MU / (1.5 * R)), 0.0, 0.0])
        offset, tt = 600.0, 3000.0

        dv1, dv2 = intercept_delta_v(MU, r0, v0, rt, vt, offset, tt)

        r_burn, v_burn = propagate(MU, offset, r0, v0)
        r_arr, v_arr = propagate(MU, tt, r_burn, v_burn + dv1)
        rt_arr, vt_arr = propagate(MU, offset + tt, rt, vt)
        assert_allclose(r_arr, rt_arr, atol=1e-5 * R)
        assert_allclose(v_arr + dv2, vt_arr, atol=1e-5 * V_CIRC)
