"""
===============================================================================
ORBIT MANEUVER ENGINE - Bi-Impulsive Optimizer Test Suite
===============================================================================
Tests for the two-burn cost function and its local SLSQP refinement between
a low parking orbit and a phased circular target (SI units).
===============================================================================
"""

import sys
import os
from dataclasses import replace

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest

from core.config import OptimizerConfig, SolverConfig
from core.constants import EARTH_MU, INFEASIBLE_COST
from core.exceptions import OptimizerDidNotConverge
from dynamics.bodies import earth_moon_system
from guidance.maneuver_planner import ManeuverPlanner
from optimization import bi_impulsive
from optimization.bi_impulsive import (
    MIN_TRANSFER_TIME,
    BiImpulsiveOptimizer,
    LambertProblem,
    TransferCandidate,
    evaluate_transfer,
    lambert_cost,
)

PARKING_RADIUS = 6671.0e3
TARGET_RADIUS = 26571.0e3


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="module")
def orbits():
    earth = earth_moon_system()
    parking = earth.circular_orbit(PARKING_RADIUS)
    target = earth.circular_orbit(TARGET_RADIUS, phase=np.radians(60.0))
    return parking, target


@pytest.fixture
def problem(orbits):
    parking, target = orbits
    s = parking.state_at(0.0)
    st = target.state_at(0.0)
    return LambertProblem(EARTH_MU, s.position, s.velocity, st.position, st.velocity)


@pytest.fixture
def hohmann_total():
    return sum(ManeuverPlanner.hohmann_transfer(PARKING_RADIUS, TARGET_RADIUS, EARTH_MU))


# =============================================================================
# Test: Cost function
# =============================================================================

class TestCostFunction:
    """Lambert cost with an infeasibility sentinel."""

    def test_feasible_cost(self, problem, hohmann_total):
        cost, dv1, dv2 = evaluate_transfer([1000.0, 10000.0], problem)
        assert cost == pytest.approx(np.linalg.norm(dv1) + np.linalg.norm(dv2))
        assert cost >= hohmann_total * (1.0 - 1e-6)

    def test_intercept_only(self, problem):
        cost, dv1, _ = evaluate_transfer([1000.0, 10000.0], replace(problem, intercept_only=True))
        assert cost == pytest.approx(np.linalg.norm(dv1))

    def test_zero_transfer_time_infeasible(self, problem):
        cost, dv1, dv2 = evaluate_transfer([1000.0, 0.0], problem)
        assert cost == INFEASIBLE_COST
        assert not np.any(dv1) and not np.any(dv2)

    def test_zero_transfer_angle_infeasible(self, orbits):
        """Source and target on the same orbit, one period apart."""
        parking, _ = orbits
        s = parking.state_at(0.0)
        same = LambertProblem(EARTH_MU, s.position, s.velocity, s.position, s.velocity)
        assert lambert_cost([0.0, parking.period], same) == INFEASIBLE_COST

    def test_sentinel_squares_finitely(self):
        assert np.isfinite(INFEASIBLE_COST ** 2 / 2.0)

    def test_with_branch(self, problem):
        retro = problem.with_branch(False)
        assert retro.prograde is False and problem.prograde is True
        assert retro.mu == problem.mu

    def test_candidate_feasibility(self):
        assert TransferCandidate(0.0, 1.0, 10.0).feasible
        assert not TransferCandidate(0.0, 1.0, INFEASIBLE_COST).feasible

    @pytest.mark.parametrize("error", [
        ValueError("math domain error"),
        ZeroDivisionError("float division by zero"),
        OverflowError("math range error"),
    ])
    def test_numeric_failure_is_infeasible(self, problem, monkeypatch, error):
        """Numeric errors inside the Lambert chain cost the sentinel."""
        def failing(*args, **kwargs):
            raise error
        monkeypatch.setattr(bi_impulsive, "intercept_delta_v", failing)
        cost, dv1, dv2 = evaluate_transfer([1000.0, 10000.0], problem)
        assert cost == INFEASIBLE_COST
        assert not np.any(dv1) and not np.any(dv2)

    def test_vanishing_retrograde_arc_is_infeasible(self):
        """A femtosecond retrograde arc has no conic and costs the sentinel."""
        r1 = np.array([2359780.52, 6239685.64, 0.0])
        v1 = 7.5e3 * np.array([-r1[1], r1[0], 0.0]) / np.linalg.norm(r1)
        r2 = np.array([9645122.72, 24758627.76, 0.0])
        v2 = 3.9e3 * np.array([-r2[1], r2[0], 0.0]) / np.linalg.norm(r2)
        retro = LambertProblem(EARTH_MU, r1, v1, r2, v2, prograde=False)
        assert lambert_cost([0.0, 1e-15], retro) == INFEASIBLE_COST



# =============================================================================
# Test: Local optimizer
# =============================================================================

class TestOptimizer:
    """SLSQP refinement within bounds."""

    BOUNDS = dict(min_offset=0.0, max_offset=9000.0,
                  max_transfer_time=20000.0, max_total_time=25000.0)

    def test_improves_on_start(self, problem, hohmann_total):
        optimizer = BiImpulsiveOptimizer(SolverConfig())
        x0 = (1000.0, 10000.0)
        start_cost = lambert_cost(x0, problem)
        result = optimizer.optimize(problem, *x0, **self.BOUNDS)

        assert result.cost <= start_cost
        assert result.cost >= hohmann_total * (1.0 - 1e-6)
        assert 0.0 <= result.burn_offset <= 9000.0
        assert 0.0 < result.transfer_time <= 20000.0
        assert result.burn_offset + result.transfer_time <= 25000.0 * (1.0 + 1e-9)
        assert result.cost == pytest.approx(
            np.linalg.norm(result.delta_v) + np.linalg.norm(result.arrival_delta_v))

    def test_pinned_offset(self, problem):
        """Equal offset bounds fix the burn time."""
        optimizer = BiImpulsiveOptimizer()
        result = optimizer.optimize(problem, 500.0, 9000.0, min_offset=500.0, max_offset=500.0,
                                    max_transfer_time=20000.0)
        assert result.burn_offset == 500.0
        assert result.cost <= lambert_cost((500.0, 9000.0), problem)

    def test_start_clipped_into_bounds(self, problem):
        result = BiImpulsiveOptimizer().optimize(problem, -100.0, 30000.0, **self.BOUNDS)
        assert result.burn_offset >= 0.0
        assert result.transfer_time <= 20000.0

    def test_require_convergence(self, problem):
        optimizer = BiImpulsiveOptimizer(OptimizerConfig(max_iterations=1))
        with pytest.raises(OptimizerDidNotConverge):
            optimizer.optimize(problem, 8000.0, 3000.0, require_convergence=True, **self.BOUNDS)

    def test_non_convergence_still_returns_best(self, problem):
        optimizer = BiImpulsiveOptimizer(OptimizerConfig(max_iterations=1))
        result = optimizer.optimize(problem, 8000.0, 3000.0, **self.BOUNDS)
        assert result.cost <= lambert_cost((8000.0, 3000.0), problem)

    def test_transfer_time_floor(self, problem):
        """A vanishing starting transfer time is lifted to the floor."""
        result = BiImpulsiveOptimizer().optimize(problem, 1000.0, 1e-15, **self.BOUNDS)
        assert result.transfer_time >= MIN_TRANSFER_TIME

    def test_no_admissible_point(self, problem):
        """A start outside the total-time limit with nothing free is flagged."""
        pinned = dict(min_offset=500.0, max_offset=500.0,
                      max_transfer_time=MIN_TRANSFER_TIME, max_total_time=100.0)
        result = BiImpulsiveOptimizer().optimize(problem, 500.0, 5000.0, **pinned)
        assert not result.converged
        with pytest.raises(OptimizerDidNotConverge):
            BiImpulsiveOptimizer().optimize(problem, 500.0, 5000.0,
                                            require_convergence=True, **pinned)
