"""
===============================================================================
ORBIT MANEUVER ENGINE - Lambert Boundary-Value Solver
===============================================================================
Given two position vectors and a time of flight, find the conic that
connects them and return its velocity at both ends.

Universal-variable formulation (Bate, Mueller & White; Curtis Alg. 5.2):

    A    = sin(dnu) sqrt(r1 r2 / (1 - cos(dnu)))
    y(z) = r1 + r2 + A (z S(z) - 1) / sqrt(C(z))
    F(z) = (y / C)^(3/2) S + A sqrt(y) - sqrt(mu) t

with C, S the Stumpff functions.  The root z of F is found by a Newton
iteration that is kept inside a shrinking bisection bracket, so a poor
Newton step can never leave the physically valid range of z.

Direction of motion is selected by the sign of the time of flight:
positive means motion in the same sense as the reference normal (r1 x v1
when a departure velocity is supplied, the +z axis otherwise), negative the
opposite sense.

Special cases:
    * r1, r2 colinear and pointing the same way -- no transfer plane,
      DegenerateGeometryError.
    * r1, r2 opposite (180 deg) -- the plane is taken from the supplied
      departure velocity; without one, DegenerateGeometryError.
    * nrev > 0 -- z lies in (4 pi^2 n^2, 4 pi^2 (n+1)^2), where the time of
      flight has a minimum.  Both solutions are computed and the one whose
      departure velocity is closest to the supplied v1 is returned.
===============================================================================
"""

import logging
import math
from typing import Callable, Tuple

import numpy as np
from scipy.optimize import minimize_scalar

from core.constants import TWO_PI, Z_HAT
from core.exceptions import (
    DegenerateGeometryError,
    InvalidInputError,
    LambertDidNotConverge,
)
from core.vectors import unit
from dynamics.propagator import propagate, stumpff_c2, stumpff_c3

logger = logging.getLogger(__name__)

# |sin(dnu)| below which r1 and r2 are treated as colinear
_COLINEAR_SIN = 1e-6

# Number of times the hyperbolic side of the bracket may be widened
_MAX_BRACKET_EXPANSIONS = 12


# =============================================================================
# TIME-OF-FLIGHT FUNCTION
# =============================================================================

def _y_of_z(z: float, r1_mag: float, r2_mag: float, A: float) -> Tuple[float, float, float]:
    C = stumpff_c2(z)
    S = stumpff_c3(z)
    y = r1_mag + r2_mag + A * (z * S - 1.0) / math.sqrt(C)
    return C, S, y


def _residual(z: float, r1_mag: float, r2_mag: float, A: float,
              sqrt_mu_t: float) -> Tuple[float, float]:
    """
    F(z) and dF/dz (Curtis eq. 5.40 and 5.43).

    Where y(z) < 0 no conic exists; the residual is reported as -sqrt(mu) t
    (the time of flight there is taken as zero) with an undefined slope,
    which sends the caller to its bisection step.
    """
    C, S, y = _y_of_z(z, r1_mag, r2_mag, A)
    if y < 0.0:
        return -sqrt_mu_t, float('nan')

    x3 = (y / C) ** 1.5
    F = x3 * S + A * math.sqrt(y) - sqrt_mu_t

    if y == 0.0:
        return F, float('nan')
    if abs(z) > 1e-6:
        dF = (x3 * (1.0 / (2.0 * z) * (C - 1.5 * S / C) + 0.75 * S * S / C)
              + A / 8.0 * (3.0 * S / C * math.sqrt(y) + A * math.sqrt(C / y)))
    else:
        dF = (math.sqrt(2.0) / 40.0 * y ** 1.5
              + A / 8.0 * (math.sqrt(y) + A * math.sqrt(0.5 / y)))
    return F, dF


def _safeguarded_newton(
    fn: Callable[[float], Tuple[float, float]],
    lo: float,
    hi: float,
    z0: float,
    scale: float,
    increasing: bool,
    max_iterations: int,
    tolerance: float,
) -> float:
    """
    Newton iteration on fn inside the bracket [lo, hi].

    *increasing* states whether fn crosses zero from below (lo side
    negative) or from above.  Steps leaving the bracket are replaced by
    bisection.  Converged when |F| <= tolerance * scale.
    """
    sign = 1.0 if increasing else -1.0
    z = z0
    for _ in range(max_iterations):
        F, dF = fn(z)
        F *= sign
        dF *= sign
        if abs(F) <= tolerance * scale:
            return z
        if F < 0.0:
            lo = z
        else:
            hi = z

        z_new = z - F / dF if (math.isfinite(dF) and dF > 0.0) else float('nan')
        if not (lo < z_new < hi):
            z_new = 0.5 * (lo + hi)
        if hi - lo <= 1e-15 * max(1.0, abs(z_new)):
            return z_new
        z = z_new

    raise LambertDidNotConverge(
        f"Lambert iteration did not converge in {max_iterations} iterations "
        f"(z = {z:.6e}, bracket = [{lo:.6e}, {hi:.6e}])"
    )


# =============================================================================
# PUBLIC SOLVER
# =============================================================================

def transfer_angle(r1: np.ndarray, r2: np.ndarray, normal: np.ndarray,
                   prograde: bool = True) -> float:
    """
    Angle (rad, in [0, 2 pi)) swept from r1 to r2 moving about *normal*.

    Retrograde motion sweeps the complementary angle.
    """
    cross = np.cross(r1, r2)
    angle = math.atan2(float(np.linalg.norm(cross)), float(np.dot(r1, r2)))
    if np.dot(cross, normal) < 0.0:
        angle = TWO_PI - angle
    if not prograde:
        angle = TWO_PI - angle
    return angle % TWO_PI


def solve_lambert(
    mu: float,
    r1,
    r2,
    tof: float,
    nrev: int = 0,
    v1=None,
    max_iterations: int = 100,
    tolerance: float = 1e-11,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Solve Lambert's problem with the universal-variable method.

    Parameters
    ----------
    mu : float
        Gravitational parameter.
    r1, r2 : array_like
        Departure and arrival position vectors.
    tof : float
        Time of flight.  Its sign selects the direction of motion
        (positive = prograde about the reference normal).
    nrev : int
        Number of complete revolutions before arrival.
    v1 : array_like, optional
        Current velocity at r1.  Fixes the reference normal, the plane of
        a 180 deg transfer and the branch of a multi-revolution transfer.
    max_iterations : int
        Iteration cap of the z iteration.
    tolerance : float
        Convergence tolerance relative to sqrt(mu) |tof|.

    Returns
    -------
    v1, v2 : np.ndarray
        Velocities on the transfer conic at r1 and r2.

    Raises
    ------
    InvalidInputError
        mu <= 0, zero-length positions, zero or non-finite tof, nrev < 0.
    DegenerateGeometryError
        Colinear r1 and r2 with no way to fix the transfer plane.
    LambertDidNotConverge
        Iteration cap reached, or tof shorter than the multi-revolution
        minimum.
    """
    r1 = np.array(r1, dtype=np.float64)
    r2 = np.array(r2, dtype=np.float64)
    r1_mag = float(np.linalg.norm(r1))
    r2_mag = float(np.linalg.norm(r2))

    if not mu > 0.0:
        raise InvalidInputError(f"Gravitational parameter must be positive, got {mu}")
    if r1_mag == 0.0 or r2_mag == 0.0:
        raise InvalidInputError("Lambert positions must be non-zero")
    if not math.isfinite(tof) or tof == 0.0:
        raise InvalidInputError(f"Time of flight must be finite and non-zero, got {tof}")
    if nrev < 0:
        raise InvalidInputError(f"Number of revolutions must be >= 0, got {nrev}")

    prograde = tof > 0.0
    t = abs(tof)
    sqrt_mu = math.sqrt(mu)

    v1_ref = None if v1 is None else np.array(v1, dtype=np.float64)
    normal = Z_HAT
    if v1_ref is not None:
        h = np.cross(r1, v1_ref)
        if np.linalg.norm(h) > 0.0:
            normal = unit(h)

    dnu = transfer_angle(r1, r2, normal, prograde)
    sin_dnu = math.sin(dnu)
    cos_dnu = math.cos(dnu)

    half_turn = abs(sin_dnu) < _COLINEAR_SIN and cos_dnu < 0.0
    if abs(sin_dnu) < _COLINEAR_SIN and cos_dnu > 0.0:
        raise DegenerateGeometryError(
            "Lambert positions are colinear (transfer angle 0): transfer plane undefined"
        )
    if half_turn and (v1_ref is None or np.linalg.norm(np.cross(r1, v1_ref)) == 0.0):
        raise DegenerateGeometryError(
            "180 deg Lambert transfer needs a departure velocity to fix the plane"
        )

    A = 0.0 if half_turn else sin_dnu * math.sqrt(r1_mag * r2_mag / (1.0 - cos_dnu))
    sqrt_mu_t = sqrt_mu * t

    def fn(z):
        return _residual(z, r1_mag, r2_mag, A, sqrt_mu_t)

    if nrev == 0:
        z = _solve_single_revolution(fn, max_iterations, tolerance, sqrt_mu_t)
        return _velocities(mu, r1, r2, r1_mag, r2_mag, A, z, t, half_turn,
                           normal, prograde, dnu)

    solutions = []
    for z in _solve_multi_revolution(fn, nrev, max_iterations, tolerance, sqrt_mu_t):
        solutions.append(_velocities(mu, r1, r2, r1_mag, r2_mag, A, z, t,
                                     half_turn, normal, prograde, dnu))
    if v1_ref is None:
        return solutions[0]
    return min(solutions, key=lambda s: float(np.linalg.norm(s[0] - v1_ref)))


# =============================================================================
# INTERNALS
# =============================================================================

def _solve_single_revolution(fn, max_iterations, tolerance, scale) -> float:
    hi = TWO_PI ** 2
    lo = -TWO_PI ** 2

    # Widen the hyperbolic side until the time of flight there is short enough.
    bracketed = False
    for _ in range(_MAX_BRACKET_EXPANSIONS):
        try:
            F, _ = fn(lo)
        except OverflowError:
            break
        if F < 0.0:
            bracketed = True
            break
        lo *= 4.0
    if not bracketed:
        raise LambertDidNotConverge(
            "Time of flight too short: no hyperbolic transfer bracketed"
        )

    z0 = 0.0 if lo < 0.0 < hi else 0.5 * (lo + hi)
    return _safeguarded_newton(fn, lo, hi, z0, scale, True, max_iterations, tolerance)


def _solve_multi_revolution(fn, nrev, max_iterations, tolerance, scale):
    lo = (TWO_PI * nrev) ** 2
    hi = (TWO_PI * (nrev + 1)) ** 2
    margin = 1e-9 * (hi - lo)

    res = minimize_scalar(
        lambda z: fn(z)[0],
        bounds=(lo + margin, hi - margin),
        method='bounded',
        options={'xatol': 1e-10 * hi},
    )
    z_min = float(res.x)
    if fn(z_min)[0] > 0.0:
        raise LambertDidNotConverge(
            f"Time of flight is below the minimum for {nrev} revolution(s)"
        )
    logger.debug("Multi-rev Lambert: minimum-time z = %.6f", z_min)

    left = _safeguarded_newton(fn, lo, z_min, 0.5 * (lo + z_min), scale,
                               False, max_iterations, tolerance)
    right = _safeguarded_newton(fn, z_min, hi, 0.5 * (z_min + hi), scale,
                                True, max_iterations, tolerance)
    return left, right


def _velocities(mu, r1, r2, r1_mag, r2_mag, A, z, t, half_turn, normal,
                prograde, dnu):
    """
    Terminal velocities from the converged z.

    A bracket that collapsed onto y(z) <= 0 (time of flight too short for
    any conic) has no velocities.
    """
    C, S, y = _y_of_z(z, r1_mag, r2_mag, A)
    if not y > 0.0:
        raise LambertDidNotConverge(
            f"Lambert iteration ended outside the conic range (z = {z:.6e}, y = {y:.6e})"
        )

    if half_turn:
        v1, v2 = _half_turn_velocities(mu, r1, r1_mag, r2_mag, z, C, S, y, t,
                                       normal, prograde, dnu)
    else:
        f = 1.0 - y / r1_mag
        g = A * math.sqrt(y / mu)
        if g == 0.0:
            raise LambertDidNotConverge(f"Lambert solution has g = 0 (z = {z:.6e})")
        g_dot = 1.0 - y / r2_mag
        v1 = (r2 - f * r1) / g
        v2 = (g_dot * r2 - r1) / g

    if not (np.all(np.isfinite(v1)) and np.all(np.isfinite(v2))):
        raise LambertDidNotConverge(f"Lambert velocities are not finite (z = {z:.6e})")
    return v1, v2


def _half_turn_velocities(mu, r1, r1_mag, r2_mag, z, C, S, y, t, normal,
                          prograde, dnu):
    """
    180 deg transfer: plane from the departure velocity, radial speed from
    the universal Kepler equation written at r1.
    """
    sqrt_mu = math.sqrt(mu)
    h_hat = normal if prograde else -normal
    r1_hat = r1 / r1_mag
    chi = math.sqrt(y / C)
    sigma1 = (sqrt_mu * t - chi ** 3 * S - r1_mag * chi * (1.0 - z * S)) / y
    v_radial = sqrt_mu * sigma1 / r1_mag
    p = r1_mag * r2_mag * (1.0 - math.cos(dnu)) / y
    v1 = v_radial * r1_hat + math.sqrt(mu * p) / r1_mag * np.cross(h_hat, r1_hat)

    f_dot = sqrt_mu / (r1_mag * r2_mag) * chi * (z * S - 1.0)
    g_dot = 1.0 - y / r2_mag
    v2 = f_dot * r1 + g_dot * v1
    return v1, v2


# =============================================================================
# INTERCEPT DRIVER
# =============================================================================

def intercept_delta_v(
    mu: float,
    position,
    velocity,
    target_position,
    target_velocity,
    burn_offset: float,
    transfer_time: float,
    prograde: bool = True,
    max_iterations: int = 100,
    tolerance: float = 1e-11,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Two-burn intercept between states given at a common reference epoch.

    The source is propagated *burn_offset* past the reference epoch, the
    target *burn_offset + transfer_time*; a Lambert arc joins the two.

    Returns
    -------
    dv1, dv2 : np.ndarray
        Departure burn and the arrival burn that matches the target velocity.

    Raises
    ------
    InvalidInputError, DegenerateGeometryError, LambertDidNotConverge,
    PropagationDidNotConverge
        Propagated unchanged; optimizers turn them into an infeasible cost.
    """
    r1, v1 = propagate(mu, burn_offset, position, velocity)
    r2, v2 = propagate(mu, burn_offset + transfer_time, target_position, target_velocity)
    tof = transfer_time if prograde else -transfer_time
    transfer_v1, transfer_v2 = solve_lambert(mu, r1, r2, tof, v1=v1,
                                             max_iterations=max_iterations,
                                             tolerance=tolerance)
    return transfer_v1 - v1, v2 - transfer_v2
