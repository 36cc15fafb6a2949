"""
===============================================================================
ORBIT MANEUVER ENGINE - Closed-Form Maneuver Library
===============================================================================
Single-burn delta-v for changing one element of an orbit at a chosen epoch:
circularize, set periapsis / apoapsis / eccentricity / semi-major axis,
change inclination, match planes with a target, shift the ascending node
or the body-fixed longitude under the burn point,
match velocities and enter a resonant orbit.

Every method takes an Orbit and an epoch and returns the delta-v vector
(body-centred inertial frame) to apply at that epoch.  Methods whose burn
time is dictated by geometry (the node burns) return a Burn.

Clamping applied to requested elements:
    - periapsis into (0, r) as [1, r - 1] (r = current radius);
    - apoapsis to >= r + 1, except that a negative apoapsis requests a
      hyperbolic result and is passed through;
    - eccentricity to >= 0.

Inclination convention (at a burn latitude where two headings give the
requested inclination):
    - new_inclination > 0: the cheaper burn;
    - new_inclination < 0: the more expensive burn.

Sign conventions and units:
    - Lengths, speeds and mu in any consistent system (SI by default)
    - Inclinations, LANs, latitudes, longitudes and headings in degrees
    - Headings: 0 = north, 90 = east
===============================================================================
"""

import logging
import math
from typing import Tuple

import numpy as np

from core.exceptions import InvalidInputError, MissingReferenceNode
from core.vectors import clamp_degrees_180, clamp_degrees_360, exclude, unit
from dynamics.orbit import Orbit
from dynamics.state import Burn

logger = logging.getLogger(__name__)


def circular_orbit_speed(mu: float, radius: float) -> float:
    """Speed of a circular orbit: v = sqrt(mu / r)."""
    return math.sqrt(mu / radius)


def great_circle_distance(lat_a: float, long_a: float, lat_b: float, long_b: float) -> float:
    """
    Angular distance (deg) between two points on a sphere.

    Uses the atan2 form of the great-circle distance, which stays accurate
    for both very small and nearly antipodal separations.
    """
    phi_a = math.radians(lat_a)
    phi_b = math.radians(lat_b)
    d_lambda = math.radians(long_b - long_a)

    y = math.hypot(
        math.cos(phi_b) * math.sin(d_lambda),
        math.cos(phi_a) * math.sin(phi_b) - math.sin(phi_a) * math.cos(phi_b) * math.cos(d_lambda),
    )
    x = math.sin(phi_a) * math.sin(phi_b) + math.cos(phi_a) * math.cos(phi_b) * math.cos(d_lambda)
    return math.degrees(math.atan2(y, x))


def great_circle_heading(lat_a: float, long_a: float, lat_b: float, long_b: float) -> float:
    """Initial compass heading (deg, [0, 360)) of the great circle from a to b."""
    phi_a = math.radians(lat_a)
    phi_b = math.radians(lat_b)
    d_lambda = math.radians(long_b - long_a)
    heading = math.degrees(math.atan2(
        math.sin(d_lambda),
        math.cos(phi_a) * math.tan(phi_b) - math.sin(phi_a) * math.cos(d_lambda),
    ))
    return clamp_degrees_360(heading)


def heading_for_inclination(inclination: float, latitude: float) -> float:
    """
    Ground-track heading (deg) of an orbit with *inclination* at *latitude*.

    At the equator: inclination 0 -> 90 (east), 90 -> 0 (north),
    -90 -> 180 (south), +/-180 -> 270 (west).  When the latitude is never
    reached by such an orbit the closest heading is returned: 90 if
    |inclination| < 90, else 270.

        cos(angle_from_east) = cos(i) / cos(latitude)
        heading = 90 - angle_from_east     (angle negated for i < 0)
    """
    cos_angle = math.cos(math.radians(inclination)) / math.cos(math.radians(latitude))
    if abs(cos_angle) > 1.0:
        if abs(clamp_degrees_180(inclination)) < 90.0:
            return 90.0
        return 270.0

    angle_from_east = math.degrees(math.acos(cos_angle))
    if inclination < 0.0:
        angle_from_east = -angle_from_east
    return clamp_degrees_360(90.0 - angle_from_east)


class ManeuverPlanner:
    """
    Closed-form single-burn maneuvers.

    The planner is stateless: same inputs, same delta-v.  Nothing is retried
    or iterated, so invalid inputs raise immediately.

    Typical usage:
        planner = ManeuverPlanner()
        dv = planner.delta_v_to_circularize(orbit, orbit.next_apoapsis_time(t))
        new_orbit = orbit.perturbed(t_burn, dv)
    """

    # -------------------------------------------------------------------------
    # Analytic reference values
    # -------------------------------------------------------------------------

    @staticmethod
    def hohmann_transfer(r1: float, r2: float, mu: float) -> Tuple[float, float]:
        """
        Burn magnitudes of an ideal Hohmann transfer between circular orbits.

        Equations:
            a_t = (r1 + r2) / 2
            dv1 = |sqrt(mu (2/r1 - 1/a_t)) - sqrt(mu / r1)|
            dv2 = |sqrt(mu / r2) - sqrt(mu (2/r2 - 1/a_t))|

        Returns:
            (dv1, dv2) at departure and arrival.
        """
        a_transfer = 0.5 * (r1 + r2)
        v_transfer_1 = math.sqrt(mu * (2.0 / r1 - 1.0 / a_transfer))
        v_transfer_2 = math.sqrt(mu * (2.0 / r2 - 1.0 / a_transfer))
        dv1 = abs(v_transfer_1 - circular_orbit_speed(mu, r1))
        dv2 = abs(circular_orbit_speed(mu, r2) - v_transfer_2)
        return dv1, dv2

    # -------------------------------------------------------------------------
    # In-plane shape changes
    # -------------------------------------------------------------------------

    def delta_v_to_circularize(self, o: Orbit, t: float) -> np.ndarray:
        """
        Burn that makes the orbit circular at the current radius.

            v_desired = sqrt(mu / r) * horizontal_hat
        """
        state = o.state_at(t)
        desired = circular_orbit_speed(o.mu, state.r_mag) * o.horizontal(t)
        return desired - state.velocity

    def delta_v_to_ellipticize(self, o: Orbit, t: float, new_pe: float,
                               new_ap: float) -> np.ndarray:
        """
        Burn that sets both periapsis and apoapsis radius.

        Equations (new orbit, per unit mass):
            E  = -mu / (Pe + Ap)
            L  = sqrt(|((E (Ap - Pe))^2 - mu^2) / (2 E)|)
            vh = L / r
            vr = sqrt(|2 (E + mu / r) - vh^2|)   (sign of the current v_r)

        Args:
            o:      Current orbit.
            t:      Burn epoch.
            new_pe: Periapsis radius, clamped to [1, r - 1].
            new_ap: Apoapsis radius, clamped to >= r + 1.
        """
        state = o.state_at(t)
        radius = state.r_mag
        new_pe = min(max(new_pe, 1.0), radius - 1.0)
        new_ap = max(new_ap, radius + 1.0)

        mu = o.mu
        energy = -mu / (new_pe + new_ap)
        ang_momentum = math.sqrt(abs(((energy * (new_ap - new_pe)) ** 2 - mu * mu) / (2.0 * energy)))
        kinetic = energy + mu / radius
        v_horizontal = ang_momentum / radius
        v_vertical = math.sqrt(abs(2.0 * kinetic - v_horizontal * v_horizontal))

        up = o.up(t)
        # Zero radial speed (circular start) counts as outbound
        if np.dot(up, state.velocity) < 0.0:
            v_vertical = -v_vertical
        desired = v_horizontal * o.horizontal(t) + v_vertical * up
        return desired - state.velocity

    def _delta_v_for_apsis(self, o: Orbit, t: float, new_apsis: float) -> np.ndarray:
        """
        Horizontal burn (radial velocity kept) that puts an apsis at *new_apsis*.

        With v_r held fixed and h = r vh, equating the energy at the burn
        point with the energy at the apsis radius R gives

            h^2 = (v_r^2 + 2 mu (1/R - 1/r)) / (1/R^2 - 1/r^2)
        """
        state = o.state_at(t)
        r = state.r_mag
        up = o.up(t)
        v_radial = float(np.dot(state.velocity, up))

        denom = 1.0 / new_apsis ** 2 - 1.0 / r ** 2
        if denom == 0.0:
            raise InvalidInputError(f"Apsis radius {new_apsis:.6g} equals the burn radius")
        h_squared = (v_radial ** 2 + 2.0 * o.mu * (1.0 / new_apsis - 1.0 / r)) / denom
        h = math.sqrt(max(h_squared, 0.0))

        desired = (h / r) * o.horizontal(t) + v_radial * up
        return desired - state.velocity

    def delta_v_to_change_periapsis(self, o: Orbit, t: float, new_pe: float) -> np.ndarray:
        """Burn to periapsis radius *new_pe* (clamped to [1, r - 1])."""
        radius = o.radius_at(t)
        new_pe = min(max(new_pe, 1.0), radius - 1.0)
        return self._delta_v_for_apsis(o, t, new_pe)

    def delta_v_to_change_apoapsis(self, o: Orbit, t: float, new_ap: float) -> np.ndarray:
        """
        Burn to apoapsis radius *new_ap*.

        Positive values are clamped to >= r + 1.  A negative value is the
        "apoapsis" of a hyperbola (a (1 + e) with a < 0) and is used as given.
        """
        radius = o.radius_at(t)
        if new_ap > 0.0:
            new_ap = max(new_ap, radius + 1.0)
        return self._delta_v_for_apsis(o, t, new_ap)

    def delta_v_to_change_eccentricity(self, o: Orbit, t: float, new_ecc: float) -> np.ndarray:
        """
        Horizontal burn (radial velocity kept) to eccentricity *new_ecc*.

        With u = vh^2 the eccentricity condition is the quadratic

            u^2 - 2 u* u + (1 - e^2) mu^2 / r^2 = 0,   u* = mu / r - v_r^2 / 2

        whose root on the same side of u* as the current vh^2 is used.  When
        the requested eccentricity is below the minimum reachable with the
        current v_r, the minimum-eccentricity speed (u = u*) is used.
        """
        new_ecc = max(new_ecc, 0.0)
        state = o.state_at(t)
        r = state.r_mag
        up = o.up(t)
        v_radial = float(np.dot(state.velocity, up))
        v_horizontal = np.linalg.norm(exclude(up, state.velocity))

        u_star = o.mu / r - 0.5 * v_radial ** 2
        disc = u_star ** 2 - (1.0 - new_ecc ** 2) * (o.mu / r) ** 2
        if disc < 0.0:
            u = u_star
        elif v_horizontal ** 2 >= u_star:
            u = u_star + math.sqrt(disc)
        else:
            u = u_star - math.sqrt(disc)
        u = max(u, 0.0)

        desired = math.sqrt(u) * o.horizontal(t) + v_radial * up
        return desired - state.velocity

    def delta_v_for_semi_major_axis(self, o: Orbit, t: float, new_sma: float) -> np.ndarray:
        """
        Prograde burn to semi-major axis *new_sma* (negative for hyperbolae).

            v_desired = sqrt(mu (2/r - 1/a))

        Raises:
            InvalidInputError: *new_sma* cannot be reached from radius r.
        """
        if new_sma == 0.0:
            raise InvalidInputError("Semi-major axis must be non-zero")
        state = o.state_at(t)
        speed_squared = o.mu * (2.0 / state.r_mag - 1.0 / new_sma)
        if speed_squared < 0.0:
            raise InvalidInputError(
                f"Semi-major axis {new_sma:.6g} is unreachable from radius {state.r_mag:.6g}"
            )
        return math.sqrt(speed_squared) * unit(state.velocity) - state.velocity

    def delta_v_to_resonant_orbit(self, o: Orbit, t: float, ratio: float) -> np.ndarray:
        """
        Burn to an orbit whose period is *ratio* times the current one.

        The apsis opposite the burn is moved: for ratio > 1 the apoapsis,
        otherwise the periapsis, to

            x = (ratio^2 (Ap + Pe)^3)^(1/3) - Ap

        A negative x means no such orbit exists; a zero burn is returned.
        """
        ap = o.apoapsis_radius
        pe = o.periapsis_radius
        x = (ratio ** 2 * (ap + pe) ** 3) ** (1.0 / 3.0) - ap
        if x < 0.0:
            logger.debug("Resonant ratio %.4f unreachable; no burn", ratio)
            return np.zeros(3)
        if ratio > 1.0:
            return self.delta_v_to_change_apoapsis(o, t, x)
        return self.delta_v_to_change_periapsis(o, t, x)

    # -------------------------------------------------------------------------
    # Plane changes
    # -------------------------------------------------------------------------

    heading_for_inclination = staticmethod(heading_for_inclination)

    def _horizontal_for_heading(self, o: Orbit, t: float, heading: float):
        """Current horizontal velocity and east/north components at *heading*."""
        state = o.state_at(t)
        actual = exclude(o.up(t), state.velocity)
        speed = np.linalg.norm(actual)
        east = speed * math.sin(math.radians(heading)) * o.east(t)
        north = speed * math.cos(math.radians(heading)) * o.north(t)
        return actual, east, north

    def delta_v_to_change_inclination(self, o: Orbit, t: float,
                                      new_inclination: float) -> np.ndarray:
        """
        Horizontal burn at *t* to inclination *new_inclination* (deg).

        Only the direction of the horizontal velocity changes.  If the burn
        latitude exceeds the requested inclination, the burn reaches the
        lowest inclination possible there (equal to the latitude).

        The north/south sense of the current motion is kept for
        new_inclination > 0 (cheaper burn) and reversed for
        new_inclination < 0 (more expensive burn).
        """
        latitude = o.latitude_at(t)
        heading = heading_for_inclination(new_inclination, latitude)
        actual, east, north = self._horizontal_for_heading(o, t, heading)
        if np.dot(actual, north) < 0.0:
            north = -north
        if clamp_degrees_180(new_inclination) < 0.0:
            north = -north
        return east + north - actual

    def _match_planes_at(self, o: Orbit, target: Orbit, burn_time: float) -> np.ndarray:
        up = o.up(burn_time)
        actual = exclude(up, o.velocity_at(burn_time))
        desired = np.linalg.norm(actual) * unit(np.cross(target.normal, up))
        return desired - actual

    def delta_v_and_time_to_match_planes_ascending(self, o: Orbit, target: Orbit,
                                                   t: float) -> Burn:
        """
        Plane-match burn at the first ascending node (relative to *target*)
        at or after *t*.

        Raises:
            MissingReferenceNode: Coplanar orbits, or an open orbit that
                                  never reaches the node.
        """
        burn_time = o.time_of_ascending_node(target, t)
        return Burn(self._match_planes_at(o, target, burn_time), burn_time)

    def delta_v_and_time_to_match_planes_descending(self, o: Orbit, target: Orbit,
                                                    t: float) -> Burn:
        """Plane-match burn at the first descending node relative to *target*."""
        burn_time = o.time_of_descending_node(target, t)
        return Burn(self._match_planes_at(o, target, burn_time), burn_time)

    def delta_v_to_shift_lan(self, o: Orbit, t: float, new_lan: float) -> np.ndarray:
        """
        Horizontal burn at *t* that moves the longitude of the ascending node
        to *new_lan* (deg).

        The burn steers the ground track along the great circle through the
        node that comes first: when the descending node is reached before
        the ascending one (or only the descending node exists) the target
        point on the equator is new_lan + 180.

        Raises:
            MissingReferenceNode: The orbit crosses the equator nowhere.
        """
        has_an = o.ascending_node_equatorial_exists()
        has_dn = o.descending_node_equatorial_exists()
        if has_an and has_dn:
            if o.time_of_descending_node_equatorial(t) < o.time_of_ascending_node_equatorial(t):
                target_longitude = clamp_degrees_360(new_lan + 180.0)
            else:
                target_longitude = clamp_degrees_360(new_lan)
        elif has_an:
            target_longitude = clamp_degrees_360(new_lan)
        elif has_dn:
            target_longitude = clamp_degrees_360(new_lan + 180.0)
        else:
            raise MissingReferenceNode("Orbit has no equatorial nodes; LAN is undefined")

        heading = great_circle_heading(o.latitude_at(t), o.longitude_at(t),
                                       0.0, target_longitude)
        actual, east, north = self._horizontal_for_heading(o, t, heading)
        return east + north - actual

    def delta_v_to_shift_node_longitude(self, o: Orbit, t: float, new_node_longitude: float,
                                        rotation_period: float, rotation_epoch: float = 0.0,
                                        min_altitude: float = 0.0,
                                        max_rotations: int = 20) -> np.ndarray:
        """
        Prograde burn at *t* after which the burn point next passes over the
        body-fixed longitude *new_node_longitude* (deg).

        The body turns once per *rotation_period*; its body-fixed and inertial
        longitudes agree at *rotation_epoch*.  The new period is chosen so the
        body turns under the orbit by the required offset plus N whole turns:

            T_new = P_rot (offset / 360 + N)
            a_new = (mu T_new^2 / (4 pi^2))^(1/3)

        N starts at 0 and grows until the apsis opposite the burn
        (2 a_new - r) is at least *min_altitude* above the body surface, up
        to *max_rotations*.  Only the smallest such orbit is tried.

        Raises:
            InvalidInputError: Non-positive rotation period, or the chosen
                               semi-major axis is unreachable from radius r.
        """
        if not rotation_period > 0.0:
            raise InvalidInputError(f"Rotation period must be positive, got {rotation_period}")
        radius = o.radius_at(t)
        surface = o.body.radius if o.body is not None else 0.0
        node_longitude = o.longitude_at(t) - 360.0 * (t - rotation_epoch) / rotation_period
        offset = clamp_degrees_360(node_longitude - new_node_longitude)

        sma = 0.0
        opposite = 0.0
        rotations = -1
        while opposite - surface < min_altitude and rotations < max_rotations:
            rotations += 1
            period = rotation_period * (offset / 360.0 + rotations)
            sma = (o.mu * period * period / (4.0 * math.pi ** 2)) ** (1.0 / 3.0)
            opposite = 2.0 * sma - radius
        logger.debug("Node longitude shift of %.3f deg: %d extra rotations, a=%.6g",
                     offset, rotations, sma)
        return self.delta_v_for_semi_major_axis(o, t, sma)

    # -------------------------------------------------------------------------
    # Relative motion
    # -------------------------------------------------------------------------

    def delta_v_to_match_velocities(self, o: Orbit, t: float, target: Orbit) -> np.ndarray:
        """Burn that zeroes the velocity relative to *target* at *t*."""
        return target.velocity_at(t) - o.velocity_at(t)
