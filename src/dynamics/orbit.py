"""
===============================================================================
ORBIT MANEUVER ENGINE - Conic Orbit Model
===============================================================================
Immutable two-body orbit built from a reference state vector (or from
classical elements) around a central body.

The orbit answers every geometric question the maneuver planners ask:
state at an epoch, local frame directions (up, horizontal, north, east,
normal), true anomaly <-> time conversions, apsis and node times, radius
crossings, closest approach to another orbit and the synodic period.

Conventions
-----------
    * Right-handed body-centred inertial frame, +z toward the body's north
      pole; the xy-plane is the equator.
    * Internal elements are radians.  Latitudes and inclinations that leave
      the API through *_deg helpers are degrees.
    * An orbit is never modified.  perturbed() and with_patch() return new
      Orbit objects.

Patch bookkeeping (start/end time and transition kinds) lets the
patched-conic stepper express "this conic is only valid until it leaves the
sphere of influence".
===============================================================================
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
from scipy.optimize import minimize_scalar

from core.config import PropagatorConfig
from core.constants import (
    CIRCULAR_ECCENTRICITY,
    PARABOLIC_BAND,
    PI,
    RAD2DEG,
    TWO_PI,
    Z_HAT,
)
from core.exceptions import InvalidInputError, MissingReferenceNode
from core.vectors import angle_between, exclude, unit
from dynamics.propagator import propagate
from dynamics.state import StateVector

logger = logging.getLogger(__name__)


class PatchTransition(Enum):
    """How a conic patch begins or ends."""
    INITIAL = "initial"
    FINAL = "final"
    ENCOUNTER = "encounter"
    ESCAPE = "escape"
    END_OF_WINDOW = "end_of_window"


class Orbit:
    """
    Two-body conic defined by a reference state.

    Parameters
    ----------
    mu : float
        Gravitational parameter of the central body.
    position, velocity : array_like
        Reference state relative to the central body.
    epoch : float
        Time of the reference state.
    body : CelestialBody, optional
        Central body (needed only by the patched-conic stepper and the
        SOI-aware planners).
    start_time, end_time : float
        Validity window of this patch.
    start_transition, end_transition : PatchTransition
        How the patch begins and ends.
    propagator : PropagatorConfig, optional
        Kepler solver settings used by state_at().
    """

    def __init__(
        self,
        mu: float,
        position,
        velocity,
        epoch: float,
        body=None,
        start_time: float = -math.inf,
        end_time: float = math.inf,
        start_transition: PatchTransition = PatchTransition.INITIAL,
        end_transition: PatchTransition = PatchTransition.FINAL,
        propagator: Optional[PropagatorConfig] = None,
    ) -> None:
        if not mu > 0.0:
            raise InvalidInputError(f"Gravitational parameter must be positive, got {mu}")
        self._state = StateVector(position, velocity, epoch)
        if self._state.r_mag == 0.0:
            raise InvalidInputError("Orbit reference position has zero length")

        self._mu = float(mu)
        self._body = body
        self._start_time = float(start_time)
        self._end_time = float(end_time)
        self._start_transition = start_transition
        self._end_transition = end_transition
        self._propagator = propagator or PropagatorConfig()
        self._compute_elements()

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_state(cls, state: StateVector, mu: float, body=None, **kwargs) -> 'Orbit':
        """Orbit through *state* around a body with parameter *mu*."""
        return cls(mu, state.position, state.velocity, state.epoch, body=body, **kwargs)

    @classmethod
    def from_elements(
        cls,
        mu: float,
        a: float,
        e: float,
        inc: float,
        lan: float,
        argp: float,
        nu: float,
        epoch: float = 0.0,
        body=None,
        **kwargs,
    ) -> 'Orbit':
        """
        Orbit from classical elements (angles in radians).

        a is negative for hyperbolae.  Parabolic orbits must be built with
        from_state because a is undefined.
        """
        p = a * (1.0 - e * e)
        if not p > 0.0:
            raise InvalidInputError(
                f"Elements give a non-positive semi-latus rectum (a={a}, e={e})"
            )
        r_mag = p / (1.0 + e * math.cos(nu))
        if r_mag <= 0.0:
            raise InvalidInputError(
                f"True anomaly {nu:.4f} rad is beyond the asymptote of the hyperbola"
            )

        r_pqw = r_mag * np.array([math.cos(nu), math.sin(nu), 0.0])
        v_pqw = math.sqrt(mu / p) * np.array([-math.sin(nu), e + math.cos(nu), 0.0])

        cos_O, sin_O = math.cos(lan), math.sin(lan)
        cos_i, sin_i = math.cos(inc), math.sin(inc)
        cos_w, sin_w = math.cos(argp), math.sin(argp)
        R = np.array([
            [cos_O * cos_w - sin_O * sin_w * cos_i,
             -cos_O * sin_w - sin_O * cos_w * cos_i,
             sin_O * sin_i],
            [sin_O * cos_w + cos_O * sin_w * cos_i,
             -sin_O * sin_w + cos_O * cos_w * cos_i,
             -cos_O * sin_i],
            [sin_w * sin_i,
             cos_w * sin_i,
             cos_i],
        ])
        return cls(mu, R @ r_pqw, R @ v_pqw, epoch, body=body, **kwargs)

    def _compute_elements(self) -> None:
        r = self._state.position
        v = self._state.velocity
        mu = self._mu
        r_mag = self._state.r_mag

        h = np.cross(r, v)
        h_mag = float(np.linalg.norm(h))
        if h_mag == 0.0:
            raise InvalidInputError("Rectilinear trajectory: position and velocity are parallel")
        self._h = h
        self._h_hat = h / h_mag

        e_vec = np.cross(v, h) / mu - r / r_mag
        self._e_vec = e_vec
        self._e = float(np.linalg.norm(e_vec))
        self._p = h_mag * h_mag / mu

        energy = 0.5 * float(np.dot(v, v)) - mu / r_mag
        self._a = -mu / (2.0 * energy) if energy != 0.0 else math.inf

        self._inc = math.acos(max(-1.0, min(1.0, self._h_hat[2])))

        node = np.cross(Z_HAT, h)
        node_mag = float(np.linalg.norm(node))
        self._lan = math.atan2(node[1], node[0]) % TWO_PI if node_mag > 1e-12 * h_mag else 0.0

        # Perifocal basis: P toward periapsis (node line, then x-axis, when
        # the orbit is circular).
        if self._e > CIRCULAR_ECCENTRICITY:
            p_hat = e_vec / self._e
        elif node_mag > 1e-12 * h_mag:
            p_hat = node / node_mag
        else:
            p_hat = unit(exclude(self._h_hat, np.array([1.0, 0.0, 0.0])))
        self._p_hat = p_hat
        self._q_hat = np.cross(self._h_hat, p_hat)

        if self._e > CIRCULAR_ECCENTRICITY and node_mag > 1e-12 * h_mag:
            argp = angle_between(node, e_vec)
            if e_vec[2] < 0.0:
                argp = TWO_PI - argp
            self._argp = argp
        elif self._e > CIRCULAR_ECCENTRICITY:
            self._argp = math.atan2(e_vec[1], e_vec[0]) % TWO_PI
        else:
            self._argp = 0.0

        self._nu0 = self.true_anomaly_from_vector(r)
        self._time_of_periapsis = self._state.epoch - self._time_from_periapsis(self._nu0)

    # -------------------------------------------------------------------------
    # Elements and patch metadata
    # -------------------------------------------------------------------------

    @property
    def mu(self) -> float:
        return self._mu

    @property
    def body(self):
        return self._body

    @property
    def reference_state(self) -> StateVector:
        return self._state

    @property
    def epoch(self) -> float:
        return self._state.epoch

    @property
    def semi_major_axis(self) -> float:
        """a; negative for hyperbolae, inf for an exact parabola."""
        return self._a

    @property
    def eccentricity(self) -> float:
        return self._e

    @property
    def eccentricity_vector(self) -> np.ndarray:
        return self._e_vec.copy()

    @property
    def semi_latus_rectum(self) -> float:
        return self._p

    @property
    def inclination(self) -> float:
        """Inclination (rad) in [0, pi]."""
        return self._inc

    @property
    def lan(self) -> float:
        """Longitude of the ascending node (rad); 0 for equatorial orbits."""
        return self._lan

    @property
    def argument_of_periapsis(self) -> float:
        return self._argp

    @property
    def normal(self) -> np.ndarray:
        """Unit angular-momentum vector."""
        return self._h_hat.copy()

    @property
    def periapsis_radius(self) -> float:
        return self._p / (1.0 + self._e)

    @property
    def apoapsis_radius(self) -> float:
        """Apoapsis radius; negative for hyperbolae, inf for a parabola."""
        if self.is_parabolic:
            return math.inf
        return self._p / (1.0 - self._e)

    @property
    def is_elliptic(self) -> bool:
        return self._e < 1.0 - PARABOLIC_BAND

    @property
    def is_hyperbolic(self) -> bool:
        return self._e > 1.0 + PARABOLIC_BAND

    @property
    def is_parabolic(self) -> bool:
        return not (self.is_elliptic or self.is_hyperbolic)

    @property
    def period(self) -> float:
        """Orbital period; inf for open orbits."""
        if not self.is_elliptic:
            return math.inf
        return TWO_PI * math.sqrt(self._a ** 3 / self._mu)

    @property
    def mean_motion(self) -> float:
        if self.is_parabolic:
            return 2.0 * math.sqrt(self._mu / self._p ** 3)
        return math.sqrt(self._mu / abs(self._a) ** 3)

    @property
    def start_time(self) -> float:
        return self._start_time

    @property
    def end_time(self) -> float:
        return self._end_time

    @property
    def patch_start_transition(self) -> PatchTransition:
        return self._start_transition

    @property
    def patch_end_transition(self) -> PatchTransition:
        return self._end_transition

    def with_patch(
        self,
        start_time: float,
        end_time: float,
        start_transition: PatchTransition = PatchTransition.INITIAL,
        end_transition: PatchTransition = PatchTransition.FINAL,
    ) -> 'Orbit':
        """Same conic with a new validity window."""
        return Orbit(self._mu, self._state.position, self._state.velocity,
                     self._state.epoch, body=self._body,
                     start_time=start_time, end_time=end_time,
                     start_transition=start_transition,
                     end_transition=end_transition,
                     propagator=self._propagator)

    def __repr__(self) -> str:
        return (f"Orbit(a={self._a:.6g}, e={self._e:.6f}, "
                f"i={self._inc * RAD2DEG:.3f} deg, epoch={self.epoch:.3f})")

    # -------------------------------------------------------------------------
    # State queries
    # -------------------------------------------------------------------------

    def state_at(self, t: float) -> StateVector:
        r, v = propagate(self._mu, t - self._state.epoch,
                         self._state.position, self._state.velocity,
                         max_iterations=self._propagator.max_iterations,
                         tolerance=self._propagator.tolerance)
        return StateVector(r, v, t)

    def position_at(self, t: float) -> np.ndarray:
        return self.state_at(t).position.copy()

    def velocity_at(self, t: float) -> np.ndarray:
        return self.state_at(t).velocity.copy()

    def radius_at(self, t: float) -> float:
        return self.state_at(t).r_mag

    def up(self, t: float) -> np.ndarray:
        """Radial-out unit vector."""
        return unit(self.position_at(t))

    def horizontal(self, t: float) -> np.ndarray:
        """Unit vector of the horizontal component of the velocity."""
        state = self.state_at(t)
        return unit(exclude(state.position, state.velocity))

    def prograde(self, t: float) -> np.ndarray:
        return unit(self.velocity_at(t))

    def north(self, t: float) -> np.ndarray:
        """Local north (toward +z, in the horizontal plane)."""
        return unit(exclude(self.position_at(t), Z_HAT))

    def east(self, t: float) -> np.ndarray:
        return unit(np.cross(Z_HAT, self.position_at(t)))

    def normal_plus(self, t: float) -> np.ndarray:
        """Orbit-normal burn direction at *t* (the angular-momentum direction)."""
        return self.normal

    def latitude_at(self, t: float) -> float:
        """Geocentric latitude (deg) of the position at *t*."""
        r = self.position_at(t)
        return math.degrees(math.asin(max(-1.0, min(1.0, r[2] / np.linalg.norm(r)))))

    def longitude_at(self, t: float) -> float:
        """Inertial longitude (right ascension, deg) of the position at *t*."""
        r = self.position_at(t)
        return math.degrees(math.atan2(r[1], r[0]))

    def separation(self, other: 'Orbit', t: float) -> float:
        return float(np.linalg.norm(self.position_at(t) - other.position_at(t)))

    # -------------------------------------------------------------------------
    # Anomaly and time conversions
    # -------------------------------------------------------------------------

    def true_anomaly_from_vector(self, vec) -> float:
        """True anomaly (rad, [0, 2 pi)) of the direction *vec* projected into the plane."""
        vec = np.asarray(vec, dtype=np.float64)
        return math.atan2(float(np.dot(vec, self._q_hat)),
                          float(np.dot(vec, self._p_hat))) % TWO_PI

    def true_anomaly_at(self, t: float) -> float:
        return self.true_anomaly_from_vector(self.position_at(t))

    def radius_at_true_anomaly(self, nu: float) -> float:
        return self._p / (1.0 + self._e * math.cos(nu))

    def position_at_true_anomaly(self, nu: float) -> np.ndarray:
        r = self.radius_at_true_anomaly(nu)
        return r * (math.cos(nu) * self._p_hat + math.sin(nu) * self._q_hat)

    def max_true_anomaly(self) -> float:
        """Asymptotic true anomaly of an open orbit (pi for closed ones)."""
        if self.is_elliptic:
            return PI
        return math.acos(-1.0 / self._e)

    def _time_from_periapsis(self, nu: float) -> float:
        """Signed time from periapsis passage to true anomaly *nu*."""
        nu = (nu + PI) % TWO_PI - PI
        e = self._e
        if self.is_elliptic:
            E = math.atan2(math.sqrt(1.0 - e * e) * math.sin(nu), e + math.cos(nu))
            M = E - e * math.sin(E)
            return M / self.mean_motion
        if self.is_hyperbolic:
            if abs(nu) >= self.max_true_anomaly():
                raise InvalidInputError(
                    f"True anomaly {nu:.4f} rad is not reached by a hyperbola with e={e:.6f}"
                )
            F = 2.0 * math.atanh(math.sqrt((e - 1.0) / (e + 1.0)) * math.tan(0.5 * nu))
            M = e * math.sinh(F) - F
            return M / self.mean_motion
        # Barker's equation
        D = math.tan(0.5 * nu)
        return 0.5 * math.sqrt(self._p ** 3 / self._mu) * (D + D ** 3 / 3.0)

    def time_of_true_anomaly(self, nu: float, t: float) -> float:
        """
        Time at which the orbit passes true anomaly *nu*.

        For closed orbits, the first such time at or after *t*.  Open orbits
        pass each anomaly once, so that single time is returned (possibly
        before *t*).
        """
        t_nu = self._time_of_periapsis + self._time_from_periapsis(nu)
        if self.is_elliptic:
            period = self.period
            t_nu += math.ceil((t - t_nu) / period) * period
        return t_nu

    def next_periapsis_time(self, t: float) -> float:
        return self.time_of_true_anomaly(0.0, t)

    def next_apoapsis_time(self, t: float) -> float:
        if not self.is_elliptic:
            raise InvalidInputError("Open orbits have no apoapsis")
        return self.time_of_true_anomaly(PI, t)

    def next_time_of_radius(self, t: float, radius: float) -> float:
        """
        First time at or after *t* that the orbit is at *radius*.

        Raises
        ------
        InvalidInputError
            If the orbit never reaches *radius* after *t*.
        """
        if radius < self.periapsis_radius or (self.is_elliptic and radius > self.apoapsis_radius):
            raise InvalidInputError(
                f"Radius {radius:.6g} outside [{self.periapsis_radius:.6g}, "
                f"{self.apoapsis_radius:.6g}]"
            )
        if self._e < CIRCULAR_ECCENTRICITY:
            return t

        cos_nu = (self._p / radius - 1.0) / self._e
        nu = math.acos(max(-1.0, min(1.0, cos_nu)))
        candidates = [self.time_of_true_anomaly(nu, t),
                      self.time_of_true_anomaly(TWO_PI - nu, t)]
        future = [c for c in candidates if c >= t]
        if not future:
            raise InvalidInputError(
                f"Open orbit does not reach radius {radius:.6g} after t={t:.3f}"
            )
        return min(future)

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def _node_time(self, direction: np.ndarray, t: float, label: str) -> float:
        if np.linalg.norm(direction) < 1e-12:
            raise MissingReferenceNode(f"{label}: orbits are coplanar, node undefined")
        nu = self.true_anomaly_from_vector(direction)
        if not self.is_elliptic:
            wrapped = (nu + PI) % TWO_PI - PI
            if abs(wrapped) >= self.max_true_anomaly():
                raise MissingReferenceNode(f"{label}: not reached by this open orbit")
        return self.time_of_true_anomaly(nu, t)

    def _node_exists(self, direction: np.ndarray) -> bool:
        if np.linalg.norm(direction) < 1e-12:
            return False
        if self.is_elliptic:
            return True
        nu = (self.true_anomaly_from_vector(direction) + PI) % TWO_PI - PI
        return abs(nu) < self.max_true_anomaly()

    def ascending_node(self, other: 'Orbit') -> np.ndarray:
        """Direction of the ascending node relative to *other*'s plane."""
        return np.cross(other.normal, self._h_hat)

    def descending_node(self, other: 'Orbit') -> np.ndarray:
        return -self.ascending_node(other)

    def ascending_node_exists(self, other: 'Orbit') -> bool:
        return self._node_exists(self.ascending_node(other))

    def descending_node_exists(self, other: 'Orbit') -> bool:
        return self._node_exists(self.descending_node(other))

    def time_of_ascending_node(self, other: 'Orbit', t: float) -> float:
        return self._node_time(self.ascending_node(other), t, "ascending node")

    def time_of_descending_node(self, other: 'Orbit', t: float) -> float:
        return self._node_time(self.descending_node(other), t, "descending node")

    def ascending_node_equatorial(self) -> np.ndarray:
        return np.cross(Z_HAT, self._h_hat)

    def descending_node_equatorial(self) -> np.ndarray:
        return -self.ascending_node_equatorial()

    def ascending_node_equatorial_exists(self) -> bool:
        return self._node_exists(self.ascending_node_equatorial())

    def descending_node_equatorial_exists(self) -> bool:
        return self._node_exists(self.descending_node_equatorial())

    def time_of_ascending_node_equatorial(self, t: float) -> float:
        return self._node_time(self.ascending_node_equatorial(), t, "equatorial ascending node")

    def time_of_descending_node_equatorial(self, t: float) -> float:
        return self._node_time(self.descending_node_equatorial(), t, "equatorial descending node")

    def relative_inclination(self, other: 'Orbit') -> float:
        """Angle between the two orbital planes (deg)."""
        return math.degrees(angle_between(self._h_hat, other.normal))

    # -------------------------------------------------------------------------
    # Relations to other orbits
    # -------------------------------------------------------------------------

    def synodic_period(self, other: 'Orbit') -> float:
        """
        Time between successive identical alignments with *other*.

        Counter-rotating orbits add their angular rates.  inf when either
        orbit is open or the rates are equal.
        """
        if not (self.is_elliptic and other.is_elliptic):
            return math.inf
        sign = 1.0 if np.dot(self._h_hat, other.normal) > 0.0 else -1.0
        rate = 1.0 / self.period - sign / other.period
        if rate == 0.0:
            return math.inf
        return abs(1.0 / rate)

    def next_closest_approach_time(self, other: 'Orbit', t: float,
                                   samples: int = 20) -> float:
        """
        Time of the next closest approach to *other* within one period.

        Coarse sampling followed by a bounded scalar minimisation around the
        best sample.  Open orbits search 100 / mean motion.
        """
        interval = self.period if self.is_elliptic else 100.0 / self.mean_motion
        if math.isfinite(other.end_time) and other.end_time > t:
            interval = min(interval, other.end_time - t)

        times = np.linspace(t, t + interval, samples + 1)
        distances = [self.separation(other, ti) for ti in times]
        best = int(np.argmin(distances))
        step = interval / samples
        lo = max(t, times[best] - step)
        hi = min(t + interval, times[best] + step)

        res = minimize_scalar(lambda ti: self.separation(other, ti),
                              bounds=(lo, hi), method='bounded',
                              options={'xatol': 1e-6 * max(1.0, step)})
        if res.fun < distances[best]:
            return float(res.x)
        return float(times[best])

    def closest_approach_distance(self, other: 'Orbit', t: float) -> float:
        return self.separation(other, self.next_closest_approach_time(other, t))

    def perturbed(self, t: float, delta_v) -> 'Orbit':
        """
        New orbit after an impulsive *delta_v* at *t*.

        The new patch starts at *t* and keeps this patch's start transition.
        Its end is left open: the burn changes where (and whether) the conic
        leaves the sphere of influence, so the patched-conic stepper
        recomputes it.
        """
        state = self.state_at(t)
        return Orbit(self._mu, state.position,
                     state.velocity + np.asarray(delta_v, dtype=np.float64),
                     t, body=self._body, start_time=t,
                     start_transition=self._start_transition,
                     propagator=self._propagator)


@dataclass(frozen=True)
class Patch:
    """One conic segment of a patched-conic trajectory."""
    orbit: Orbit
    start_time: float
    end_time: float
    transition: PatchTransition

    @property
    def body(self):
        return self.orbit.body

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time
