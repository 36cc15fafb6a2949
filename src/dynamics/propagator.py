"""
===============================================================================
ORBIT MANEUVER ENGINE - Conic State Propagator
===============================================================================
Two-body propagation of a state vector by an arbitrary signed time of flight
using the universal-variable formulation of Kepler's equation.

Universal Kepler equation (Vallado, Algorithm 8):

    sqrt(mu) dt = chi^3 c3(psi) + sigma0 chi^2 c2(psi) + r0 chi (1 - psi c3(psi))

    psi    = alpha chi^2          alpha = 1/a = 2/r0 - v0^2/mu
    sigma0 = r0 . v0 / sqrt(mu)

chi is the universal anomaly.  The equation is solved by Newton iteration
(its derivative with respect to chi is the radius r), then the Lagrange
coefficients f, g, f_dot, g_dot map (r0, v0) to (r, v).

The same equations hold for elliptic (alpha > 0), parabolic (alpha = 0) and
hyperbolic (alpha < 0) orbits.  The Stumpff functions c2, c3 are evaluated by
their power series near psi = 0 so the parabolic case does not suffer from
cancellation in 1 - cos(sqrt(psi)).

References
----------
    [1] Vallado, "Fundamentals of Astrodynamics and Applications", 4th ed.
    [2] Curtis, "Orbital Mechanics for Engineering Students", 4th ed.
===============================================================================
"""

import logging
import math
from typing import Tuple

import numpy as np

from core.constants import TWO_PI
from core.exceptions import InvalidInputError, PropagationDidNotConverge
from dynamics.state import StateVector

logger = logging.getLogger(__name__)

# Number of series terms used for |psi| < 1 (1/26! is far below eps).
_SERIES_TERMS = 12


# =============================================================================
# STUMPFF FUNCTIONS
# =============================================================================

def stumpff_c2(psi: float) -> float:
    """
    Stumpff function c2(psi).

    c2(psi) = (1 - cos(sqrt(psi))) / psi        if psi > 0   (elliptic)
            = (cosh(sqrt(-psi)) - 1) / (-psi)    if psi < 0   (hyperbolic)
            = 1/2                                 if psi = 0   (parabolic)

    For |psi| < 1 the series  sum_k (-psi)^k / (2k+2)!  is used.
    """
    if abs(psi) < 1.0:
        total = 0.0
        term = 0.5
        for k in range(_SERIES_TERMS):
            total += term
            term *= -psi / ((2 * k + 3) * (2 * k + 4))
        return total
    if psi > 0.0:
        sqrt_psi = math.sqrt(psi)
        return 2.0 * math.sin(0.5 * sqrt_psi) ** 2 / psi
    sqrt_neg_psi = math.sqrt(-psi)
    return 2.0 * math.sinh(0.5 * sqrt_neg_psi) ** 2 / (-psi)


def stumpff_c3(psi: float) -> float:
    """
    Stumpff function c3(psi).

    c3(psi) = (sqrt(psi) - sin(sqrt(psi))) / psi^(3/2)       if psi > 0
            = (sinh(sqrt(-psi)) - sqrt(-psi)) / (-psi)^(3/2)  if psi < 0
            = 1/6                                              if psi = 0

    For |psi| < 1 the series  sum_k (-psi)^k / (2k+3)!  is used.
    """
    if abs(psi) < 1.0:
        total = 0.0
        term = 1.0 / 6.0
        for k in range(_SERIES_TERMS):
            total += term
            term *= -psi / ((2 * k + 4) * (2 * k + 5))
        return total
    if psi > 0.0:
        sqrt_psi = math.sqrt(psi)
        return (sqrt_psi - math.sin(sqrt_psi)) / (psi * sqrt_psi)
    sqrt_neg_psi = math.sqrt(-psi)
    return (math.sinh(sqrt_neg_psi) - sqrt_neg_psi) / ((-psi) * sqrt_neg_psi)


# =============================================================================
# UNIVERSAL-VARIABLE PROPAGATION
# =============================================================================

def _initial_chi(mu: float, alpha: float, r0_mag: float, rdotv: float,
                 dt: float) -> float:
    """Starting guess for the universal anomaly (Vallado, Algorithm 8)."""
    sqrt_mu = math.sqrt(mu)
    if alpha * r0_mag > 1e-8:
        return sqrt_mu * dt * alpha
    if alpha * r0_mag < -1e-8:
        a = 1.0 / alpha
        sign = 1.0 if dt > 0.0 else -1.0
        denom = rdotv + sign * math.sqrt(-mu * a) * (1.0 - r0_mag * alpha)
        arg = (-2.0 * mu * alpha * dt) / denom if denom != 0.0 else -1.0
        if arg > 0.0:
            return sign * math.sqrt(-a) * math.log(arg)
    # Near-parabolic: the first Newton step repairs a crude guess.
    return sqrt_mu * dt / r0_mag


def propagate(
    mu: float,
    dt: float,
    r0,
    v0,
    max_iterations: int = 100,
    tolerance: float = 1e-12,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Advance a two-body state by a signed time of flight.

    Parameters
    ----------
    mu : float
        Gravitational parameter of the central body.  Must be positive.
    dt : float
        Time of flight.  Negative values propagate backwards.
    r0, v0 : array_like
        Initial position and velocity (3-vectors).
    max_iterations : int
        Newton iteration cap.
    tolerance : float
        Relative convergence tolerance on the universal anomaly.

    Returns
    -------
    r1, v1 : np.ndarray
        Position and velocity after *dt*.

    Raises
    ------
    InvalidInputError
        For mu <= 0, a zero position vector or a non-finite dt.
    PropagationDidNotConverge
        If the Kepler iteration exceeds *max_iterations*.
    """
    r0 = np.array(r0, dtype=np.float64)
    v0 = np.array(v0, dtype=np.float64)

    if not mu > 0.0:
        raise InvalidInputError(f"Gravitational parameter must be positive, got {mu}")
    r0_mag = float(np.linalg.norm(r0))
    if r0_mag == 0.0:
        raise InvalidInputError("Position vector has zero length")
    if not math.isfinite(dt):
        raise InvalidInputError(f"Time of flight must be finite, got {dt}")
    if dt == 0.0:
        return r0.copy(), v0.copy()

    sqrt_mu = math.sqrt(mu)
    rdotv = float(np.dot(r0, v0))
    sigma0 = rdotv / sqrt_mu
    alpha = 2.0 / r0_mag - float(np.dot(v0, v0)) / mu

    # Closed orbits repeat every period; keep chi small.
    dt_eff = dt
    if alpha > 0.0:
        period = TWO_PI / (sqrt_mu * alpha ** 1.5)
        dt_eff = math.fmod(dt, period)
        if dt_eff == 0.0:
            return r0.copy(), v0.copy()

    chi = _initial_chi(mu, alpha, r0_mag, rdotv, dt_eff)

    # F(chi) is increasing (dF/dchi = r > 0) and F(0) = -sqrt(mu) dt, so the
    # root lies on the side of zero given by the sign of dt.  Newton steps
    # that leave the bracket are replaced by expansion or bisection.
    lo, hi = (0.0, math.inf) if dt_eff > 0.0 else (-math.inf, 0.0)
    if not lo < chi < hi:
        chi = sqrt_mu * dt_eff / r0_mag

    converged = False
    for iteration in range(max_iterations):
        psi = chi * chi * alpha
        try:
            c2 = stumpff_c2(psi)
            c3 = stumpff_c3(psi)
            r = (chi * chi * c2 + sigma0 * chi * (1.0 - psi * c3)
                 + r0_mag * (1.0 - psi * c2))
            F = (chi ** 3 * c3 + sigma0 * chi * chi * c2
                 + r0_mag * chi * (1.0 - psi * c3) - sqrt_mu * dt_eff)
        except OverflowError:
            r = F = math.nan

        if math.isfinite(F) and math.isfinite(r):
            if F < 0.0:
                lo = chi
            else:
                hi = chi
            chi_new = chi - F / r if r > 0.0 else math.nan
        else:
            # Overshot deep into the hyperbolic range
            if chi > 0.0:
                hi = chi
            else:
                lo = chi
            chi_new = math.nan

        if not lo < chi_new < hi:
            if math.isinf(hi):
                chi_new = 2.0 * lo if lo > 0.0 else 1.0
            elif math.isinf(lo):
                chi_new = 2.0 * hi if hi < 0.0 else -1.0
            else:
                chi_new = 0.5 * (lo + hi)

        if abs(chi_new - chi) <= tolerance * max(1.0, abs(chi_new)):
            chi = chi_new
            converged = True
            break
        chi = chi_new

    if not converged:
        raise PropagationDidNotConverge(
            f"Universal-variable Kepler solve did not converge in "
            f"{max_iterations} iterations (dt = {dt:.6e}, chi = {chi:.6e})"
        )

    psi = chi * chi * alpha
    c2 = stumpff_c2(psi)
    c3 = stumpff_c3(psi)
    chi2_c2 = chi * chi * c2
    r = chi2_c2 + sigma0 * chi * (1.0 - psi * c3) + r0_mag * (1.0 - psi * c2)

    # Lagrange coefficients; g written without the dt - ... cancellation.
    f = 1.0 - chi2_c2 / r0_mag
    g = (sigma0 * chi2_c2 + r0_mag * chi * (1.0 - psi * c3)) / sqrt_mu
    f_dot = sqrt_mu / (r * r0_mag) * chi * (psi * c3 - 1.0)
    g_dot = 1.0 - chi2_c2 / r

    r1 = f * r0 + g * v0
    v1 = f_dot * r0 + g_dot * v0

    logger.debug(
        "Propagated dt=%.3f s in %d iterations (alpha=%.3e, chi=%.6e)",
        dt, iteration + 1, alpha, chi,
    )
    return r1, v1


def propagate_state(state: StateVector, mu: float, dt: float, **kwargs) -> StateVector:
    """Propagate a StateVector by *dt*; the result carries epoch + dt."""
    r1, v1 = propagate(mu, dt, state.position, state.velocity, **kwargs)
    return StateVector(r1, v1, state.epoch + dt)
