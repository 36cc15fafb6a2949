"""
===============================================================================
ORBIT MANEUVER ENGINE - Intercept and Transfer Planner
===============================================================================
Single-burn solvers that aim at another orbit:

    Hohmann window search
        The phase error between vessel and target at the apsis of the
        would-be transfer orbit is a function of burn time.  A coarse scan
        over 1.5 synodic periods brackets its first zero crossing and Brent's
        method refines it.  If the query epoch is already within half a
        degree of the window (and past it), the burn happens immediately.

    Direct intercept
        Lambert arc from the vessel at t0 to the target at t0 + dt; returns
        the departure burn and the matching burn at arrival.

    Course correction
        20-point line search over burn time for the cheapest burn that
        intercepts the target at the next closest approach.  For a
        celestial target the aim point is displaced so that the arrival
        hyperbola has the requested periapsis (energy and angular momentum
        conserved from SOI entry).

    Interplanetary ejection
        Hohmann transfer of the parent planet to the target, converted into
        an ejection burn from a (near-circular) parking orbit.

Lambert failures inside a search are infeasible candidates (sentinel cost),
never errors.
===============================================================================
"""

import logging
import math
from typing import Optional, Tuple

import numpy as np

from core.config import (
    LambertConfig,
    RootFinderConfig,
    SolverConfig,
    TransferSearchConfig,
    section_or_default,
)
from core.constants import INFEASIBLE_COST, PI
from core.exceptions import (
    InvalidInputError,
    ManeuverError,
    NoTransferWindowFound,
    RootFindTimeout,
)
from core.vectors import angle_between, clamp_degrees_180, exclude, rotate_about_axis, unit
from dynamics.lambert import intercept_delta_v, solve_lambert
from dynamics.orbit import Orbit
from dynamics.state import Burn
from guidance.maneuver_planner import ManeuverPlanner
from optimization.root_finding import find_root

logger = logging.getLogger(__name__)


class TransferPlanner:
    """
    Window, intercept and course-correction solvers.

    Args:
        config:      SolverConfig or TransferSearchConfig.
        root_finder: RootFinderConfig (defaults from *config* when it is a
                     SolverConfig).
        lambert:     LambertConfig (likewise).

    Typical usage:
        planner = TransferPlanner(load_config("config/solver_config.yaml"))
        burn = planner.delta_v_and_time_for_hohmann_transfer(leo, target, t)
    """

    def __init__(self, config=None, root_finder=None, lambert=None) -> None:
        self.config = section_or_default(config, TransferSearchConfig)
        if isinstance(config, SolverConfig):
            root_finder = root_finder or config
            lambert = lambert or config
        self.root_config = section_or_default(root_finder, RootFinderConfig)
        self.lambert = section_or_default(lambert, LambertConfig)
        self.maneuvers = ManeuverPlanner()

    # -------------------------------------------------------------------------
    # Hohmann transfer window
    # -------------------------------------------------------------------------

    def delta_v_and_apsis_phase_angle(self, o: Orbit, target: Orbit,
                                      t: float) -> Tuple[np.ndarray, float]:
        """
        Hohmann burn at *t* and the resulting phase error at the transfer apsis.

        The burn raises (or lowers) the apsis opposite the burn point onto
        the target orbit.  The phase error is the target's time offset from
        that apsis, as a fraction of its period, in degrees (-180, 180].
        It is a mean-anomaly style angle, which is all the zero search needs.
        """
        apsis_direction = -o.position_at(t)
        desired_apsis = target.radius_at_true_anomaly(target.true_anomaly_from_vector(apsis_direction))

        if desired_apsis > o.apoapsis_radius:
            dv = self.maneuvers.delta_v_to_change_apoapsis(o, t, desired_apsis)
            transfer = o.perturbed(t, dv)
            apsis_time = transfer.next_apoapsis_time(t)
            apsis_direction = transfer.position_at_true_anomaly(PI)
        else:
            dv = self.maneuvers.delta_v_to_change_periapsis(o, t, desired_apsis)
            transfer = o.perturbed(t, dv)
            apsis_time = transfer.next_periapsis_time(t)
            apsis_direction = transfer.position_at_true_anomaly(0.0)

        nu_target = target.true_anomaly_from_vector(apsis_direction)
        offset = 360.0 * (target.time_of_true_anomaly(nu_target, t) - apsis_time) / target.period
        return dv, clamp_degrees_180(offset)

    def delta_v_and_time_for_hohmann_transfer(self, o: Orbit, target: Orbit, t: float) -> Burn:
        """
        First Hohmann transfer window to *target* at or after *t*.

        Assumes near-coplanar, co-rotating orbits and a near-circular *o*.

        Raises:
            NoTransferWindowFound: No phase-error sign change in the scan
                                   (includes equal periods / open orbits).
        """
        synodic = o.synodic_period(target)
        if not math.isfinite(synodic):
            raise NoTransferWindowFound(
                "Synodic period is infinite; the relative phase never changes"
            )

        immediate_dv, last_angle = self.delta_v_and_apsis_phase_angle(o, target, t)
        min_time = t
        max_time = t + self.config.window_synodic_periods * synodic
        divisions = self.config.window_divisions
        dt = (max_time - min_time) / divisions

        bracket = None
        for i in range(1, divisions + 1):
            ti = min_time + dt * i
            _, angle = self.delta_v_and_apsis_phase_angle(o, target, ti)
            logger.debug("Window scan t=%.3f phase error=%.4f deg", ti, angle)

            if abs(angle) < 90.0 and np.sign(last_angle) != np.sign(angle):
                bracket = (ti - dt, ti)
                break

            if (i == 1 and abs(last_angle) < self.config.immediate_burn_threshold_deg
                    and np.sign(last_angle) == np.sign(angle)):
                # Just past the window centre: burn now
                logger.info("Hohmann window is now (phase error %.4f deg)", last_angle)
                return Burn(immediate_dv, t)

            last_angle = angle

        if bracket is None:
            raise NoTransferWindowFound(
                f"No Hohmann window in [{min_time:.3f}, {max_time:.3f}] "
                f"({divisions} divisions)"
            )

        def phase_error(ti):
            return self.delta_v_and_apsis_phase_angle(o, target, ti)[1]

        try:
            burn_time = find_root(phase_error, bracket[0], bracket[1],
                                  xtol=self.root_config.xtol, rtol=self.root_config.rtol,
                                  max_iterations=self.root_config.max_iterations,
                                  time_budget=self.root_config.time_budget)
        except RootFindTimeout as exc:
            logger.warning("Hohmann window refinement timed out (suppressed): %s", exc)
            burn_time = exc.best_guess if exc.best_guess is not None else 0.5 * (bracket[0] + bracket[1])

        dv, _ = self.delta_v_and_apsis_phase_angle(o, target, burn_time)
        logger.info("Hohmann burn at t=%.3f, |dv|=%.3f", burn_time, np.linalg.norm(dv))
        return Burn(dv, burn_time)

    # -------------------------------------------------------------------------
    # Lambert intercepts
    # -------------------------------------------------------------------------

    def intercept_cost(self, mu: float, position, velocity, target_position, target_velocity,
                       burn_offset: float, transfer_time: float,
                       prograde: bool = True) -> Tuple[np.ndarray, np.ndarray]:
        """Departure and arrival burns between states at a common reference epoch."""
        return intercept_delta_v(mu, position, velocity, target_position, target_velocity,
                                 burn_offset, transfer_time, prograde,
                                 max_iterations=self.lambert.max_iterations,
                                 tolerance=self.lambert.tolerance)

    def delta_v_to_intercept_at_time(self, o: Orbit, t0: float, target: Orbit, dt: float,
                                     offset_distance: float = 0.0,
                                     prograde: bool = True) -> Tuple[Burn, Burn]:
        """
        Burn at *t0* that reaches *target* at *t0 + dt*, plus the arrival burn
        that matches the target's velocity.

        Args:
            offset_distance: Aim this far from the target, perpendicular to
                             its orbit plane (only meaningful at short range).
            prograde:        Lambert branch.

        Raises:
            InvalidInputError, DegenerateGeometryError, LambertDidNotConverge
        """
        start = o.state_at(t0)
        end = target.state_at(t0 + dt)
        tof = dt if prograde else -dt
        rf = end.position

        v_transfer_1, v_transfer_2 = self._lambert(o.mu, start.position, rf, tof, start.velocity)
        if offset_distance != 0.0:
            rf = rf - offset_distance * unit(np.cross(end.velocity, rf))
            v_transfer_1, v_transfer_2 = self._lambert(o.mu, start.position, rf, tof, start.velocity)

        return (Burn(v_transfer_1 - start.velocity, t0),
                Burn(end.velocity - v_transfer_2, t0 + dt))

    def _lambert(self, mu, r1, r2, tof, v1):
        return solve_lambert(mu, r1, r2, tof, v1=v1,
                             max_iterations=self.lambert.max_iterations,
                             tolerance=self.lambert.tolerance)

    # -------------------------------------------------------------------------
    # Course correction
    # -------------------------------------------------------------------------

    def _cheapest_intercept(self, o: Orbit, t: float, target: Orbit) -> Burn:
        closest_time = o.next_closest_approach_time(target, t + 2.0,
                                                    samples=self.config.closest_approach_samples)

        def candidate(burn_time):
            try:
                dv, _ = self.delta_v_to_intercept_at_time(o, burn_time, target,
                                                          closest_time - burn_time)
            except ManeuverError as exc:
                logger.debug("Course correction at t=%.3f infeasible: %s", burn_time, exc)
                return INFEASIBLE_COST, None
            return dv.magnitude, dv

        points = self.config.course_correction_points
        burn_times = [t] + [t + (closest_time - t) * (k + 0.5) / points for k in range(points)]

        best_cost, best = INFEASIBLE_COST, None
        for burn_time in burn_times:
            cost, burn = candidate(burn_time)
            if cost < best_cost:
                best_cost, best = cost, burn

        if best is None:
            raise NoTransferWindowFound(
                f"No feasible course correction before closest approach at t={closest_time:.3f}"
            )
        return best

    def delta_v_and_time_for_cheapest_course_correction(
        self,
        o: Orbit,
        t: float,
        target: Orbit,
        target_body=None,
        final_periapsis: Optional[float] = None,
        closest_approach_distance: Optional[float] = None,
    ) -> Burn:
        """
        Cheapest single burn after *t* that intercepts *target*.

        Args:
            o:                         Current orbit.
            t:                         Earliest burn time.
            target:                    Target orbit (same central body).
            target_body:               Celestial body following *target*;
                                       with *final_periapsis*, aims for that
                                       periapsis radius inside its SOI.
            final_periapsis:           Desired periapsis radius at the body.
            closest_approach_distance: For non-celestial targets, aim this
                                       far off the target along its orbit
                                       normal.

        Raises:
            NoTransferWindowFound: Every candidate burn was infeasible.
        """
        burn = self._cheapest_intercept(o, t, target)
        if target_body is None and closest_approach_distance is None:
            logger.info("Course correction at t=%.3f, |dv|=%.3f", burn.epoch, burn.magnitude)
            return burn

        burn_time = burn.epoch
        collision_orbit = o.perturbed(burn_time, burn.delta_v)
        collision_time = collision_orbit.next_closest_approach_time(
            target, burn_time, samples=self.config.closest_approach_samples)

        if target_body is not None:
            if final_periapsis is None or final_periapsis <= 0.0:
                raise InvalidInputError("final_periapsis must be positive for a celestial target")
            intercept_target = self._impact_point(o, collision_orbit, target, target_body,
                                                  collision_time, final_periapsis)
        else:
            intercept_target = (target.position_at(collision_time)
                                + target.normal_plus(collision_time) * closest_approach_distance)

        state = o.state_at(burn_time)
        v_after, _ = self._lambert(o.mu, state.position, intercept_target,
                                   collision_time - burn_time, state.velocity)
        corrected = Burn(v_after - state.velocity, burn_time)
        logger.info("Course correction at t=%.3f, |dv|=%.3f", burn_time, corrected.magnitude)
        return corrected

    @staticmethod
    def _impact_point(o: Orbit, collision_orbit: Orbit, target: Orbit, body,
                      collision_time: float, final_periapsis: float) -> np.ndarray:
        """
        Aim point displaced from the body by the impact parameter that gives
        *final_periapsis*.

            E     = |v_rel|^2 / 2 - mu_b / r_soi         (at SOI entry)
            v_pe  = sqrt(2 (E + mu_b / r_pe))
            b     = r_pe v_pe / |v_rel|
        """
        collision_position = target.position_at(collision_time)
        collision_rel_vel = collision_orbit.velocity_at(collision_time) - target.velocity_at(collision_time)

        soi_enter_time = collision_time - body.soi_radius / np.linalg.norm(collision_rel_vel)
        soi_rel_vel = collision_orbit.velocity_at(soi_enter_time) - target.velocity_at(soi_enter_time)
        speed = np.linalg.norm(soi_rel_vel)

        energy = 0.5 * speed ** 2 - body.mu / body.soi_radius
        periapsis_speed = math.sqrt(2.0 * (energy + body.mu / final_periapsis))
        impact_parameter = final_periapsis * periapsis_speed / speed

        displacement = unit(np.cross(collision_rel_vel, o.normal))
        return collision_position + impact_parameter * displacement

    # -------------------------------------------------------------------------
    # Interplanetary ejection
    # -------------------------------------------------------------------------

    def delta_v_and_time_for_interplanetary_transfer_ejection(
        self,
        o: Orbit,
        t: float,
        target: Orbit,
        sync_phase_angle: bool = True,
    ) -> Burn:
        """
        Ejection burn from a parking orbit into a Hohmann transfer to *target*.

        The planet's own Hohmann burn (timed to the window when
        *sync_phase_angle*, else an immediate apsis change to the target's
        semi-major axis) gives the hyperbolic excess velocity.  The burn
        point is where the in-plane excess direction, turned back by the
        hyperbola's turning angle and a further 90 deg, meets the parking
        orbit.

        Assumes a near-circular parking orbit in the planet's orbital plane.

        Raises:
            InvalidInputError:     *o* is not around a body with a parent.
            NoTransferWindowFound: No Hohmann window (sync_phase_angle only).
        """
        planet = o.body
        if planet is None or planet.orbit is None:
            raise InvalidInputError("Parking orbit must be around a body that orbits a parent")
        planet_orbit = planet.orbit

        if sync_phase_angle:
            ideal = self.delta_v_and_time_for_hohmann_transfer(planet_orbit, target, t)
        elif target.semi_major_axis < planet_orbit.semi_major_axis:
            ideal = Burn(self.maneuvers.delta_v_to_change_periapsis(
                planet_orbit, t, target.semi_major_axis), t)
        else:
            ideal = Burn(self.maneuvers.delta_v_to_change_apoapsis(
                planet_orbit, t, target.semi_major_axis), t)

        exit_velocity = ideal.delta_v
        in_plane_exit = unit(exclude(o.normal, exit_velocity))

        exit_energy = 0.5 * float(np.dot(exit_velocity, exit_velocity)) - planet.mu / planet.soi_radius
        ejection_radius = o.semi_major_axis
        ejection_speed = math.sqrt(2.0 * (exit_energy + planet.mu / ejection_radius))

        # Sample hyperbola from periapsis out to the SOI
        v_start = np.array([0.0, ejection_speed, 0.0])
        sample = Orbit(planet.mu, [ejection_radius, 0.0, 0.0], v_start, 0.0)
        exit_time = sample.next_time_of_radius(0.0, planet.soi_radius)
        turning_angle = angle_between(v_start, sample.velocity_at(exit_time))

        normal = o.normal
        ejection_point = rotate_about_axis(in_plane_exit, normal, -(0.5 * PI + turning_angle))
        nu = o.true_anomaly_from_vector(ejection_point)
        burn_time = o.time_of_true_anomaly(nu, ideal.epoch - o.period)
        if ideal.epoch - burn_time > 0.5 * o.period or burn_time < t:
            burn_time += o.period

        burn_direction = rotate_about_axis(in_plane_exit, normal, -turning_angle)
        dv = ejection_speed * burn_direction - o.velocity_at(burn_time)
        logger.info("Ejection burn at t=%.3f, |dv|=%.3f (turning angle %.2f deg)",
                    burn_time, np.linalg.norm(dv), math.degrees(turning_angle))
        return Burn(dv, burn_time)
