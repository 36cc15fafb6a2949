"""
===============================================================================
ORBIT MANEUVER ENGINE - Patched-Conic Stepper
===============================================================================
Predicts which body's sphere of influence (SOI) a vehicle is in at future
epochs by chaining two-body conics:

    1. Starting from an orbit around body B, look for the earliest of
         - escape: the radius reaches B's SOI radius (open orbits, or
           ellipses whose apoapsis lies outside the SOI);
         - encounter: the vehicle enters the SOI of one of B's children;
         - end of the prediction window.
    2. At an escape, re-express the state relative to B's parent; at an
       encounter, relative to the child.  Build the next conic and repeat.

The number of patches per query is capped.  Every query builds its own
Orbit values; nothing is shared between queries.
===============================================================================
"""

import logging
import math
from typing import List, Optional, Tuple

import numpy as np
from scipy.optimize import minimize_scalar

from core.config import (
    PatchedConicConfig,
    RootFinderConfig,
    SolverConfig,
    section_or_default,
)
from core.exceptions import (
    InvalidInputError,
    RootFindTimeout,
    SearchHorizonExceeded,
)
from dynamics.orbit import Orbit, Patch, PatchTransition
from optimization.root_finding import find_first_bracket, find_root

logger = logging.getLogger(__name__)


class PatchedConicSolver:
    """
    SOI transition predictor.

    Args:
        config:      SolverConfig or PatchedConicConfig.
        root_finder: SolverConfig or RootFinderConfig for crossing refinement.
    """

    def __init__(self, config=None, root_finder=None) -> None:
        self.config = section_or_default(config, PatchedConicConfig)
        if root_finder is None and isinstance(config, SolverConfig):
            root_finder = config
        self.root_config = section_or_default(root_finder, RootFinderConfig)

    # -------------------------------------------------------------------------
    # Single patch
    # -------------------------------------------------------------------------

    def calculate_patch(self, orbit: Orbit, start_time: float, horizon: float) -> Patch:
        """
        Determine how the conic *orbit*, valid from *start_time*, ends.

        Returns a Patch whose orbit carries the same validity window.
        """
        body = orbit.body
        full_period = orbit.is_elliptic and start_time + orbit.period <= horizon
        window_end = start_time + orbit.period if full_period else horizon

        escape_time = math.inf
        if body is not None and body.parent is not None and (
                not orbit.is_elliptic or orbit.apoapsis_radius > body.soi_radius):
            escape_time = self._escape_time(orbit, start_time, body.soi_radius)

        search_end = min(window_end, escape_time)
        encounter = None
        if body is not None and body.children and search_end > start_time:
            encounter = self._first_encounter(orbit, body, start_time, search_end)

        if encounter is not None:
            end_time, transition = encounter[1], PatchTransition.ENCOUNTER
            logger.debug("Encounter with %s at t=%.3f", encounter[0].name, end_time)
        elif escape_time <= window_end:
            end_time, transition = escape_time, PatchTransition.ESCAPE
            logger.debug("Escape from %s at t=%.3f", body.name, end_time)
        elif full_period:
            end_time, transition = math.inf, PatchTransition.FINAL
        else:
            end_time, transition = horizon, PatchTransition.END_OF_WINDOW

        patched = orbit.with_patch(start_time, end_time,
                                   orbit.patch_start_transition, transition)
        return Patch(patched, start_time, end_time, transition)

    def _escape_time(self, orbit: Orbit, start_time: float, soi_radius: float) -> float:
        state = orbit.state_at(start_time)
        outbound = np.dot(state.position, state.velocity) > 0.0
        if outbound and state.r_mag >= soi_radius:
            return start_time
        # Inbound (e.g. just entered the SOI): only the crossing after
        # periapsis counts.
        t_search = start_time if outbound else max(start_time, orbit.next_periapsis_time(start_time))
        try:
            return orbit.next_time_of_radius(t_search, soi_radius)
        except InvalidInputError:
            # Outbound crossing already behind us
            return math.inf

    def _first_encounter(self, orbit: Orbit, body, start_time: float,
                         end_time: float) -> Optional[Tuple[object, float]]:
        best = None
        for child in body.children:
            t_enter = self._soi_entry(orbit, child, start_time, end_time)
            if t_enter is not None and (best is None or t_enter < best[1]):
                best = (child, t_enter)
        return best

    def _soi_entry(self, orbit: Orbit, child, t0: float, t1: float) -> Optional[float]:
        """Earliest time in [t0, t1] the orbit enters *child*'s SOI, or None."""
        def gap(t):
            return float(np.linalg.norm(orbit.position_at(t) - child.position_at(t))) - child.soi_radius

        times = np.linspace(t0, t1, self.config.encounter_samples + 1)
        values = np.array([gap(t) for t in times])
        if values[0] <= 0.0:
            # Leaving the child's SOI (just escaped from it); ignore.
            inside = np.nonzero(values > 0.0)[0]
            if len(inside) == 0:
                return None
            start = inside[0]
        else:
            start = 0

        bracket = find_first_bracket(gap, times[start], t1, len(times) - 1 - start)
        if bracket is not None:
            return self._refine_crossing(gap, bracket[0], bracket[1])

        # A short pass can fall between samples; check the closest sample.
        i_min = start + int(np.argmin(values[start:]))
        lo = times[max(start, i_min - 1)]
        hi = times[min(len(times) - 1, i_min + 1)]
        if hi <= lo:
            return None
        res = minimize_scalar(gap, bounds=(lo, hi), method='bounded')
        if res.fun < 0.0 and gap(lo) > 0.0:
            return self._refine_crossing(gap, lo, float(res.x))
        return None

    def _refine_crossing(self, fn, lo: float, hi: float) -> float:
        try:
            return find_root(fn, lo, hi, xtol=self.root_config.xtol,
                             rtol=self.root_config.rtol,
                             max_iterations=self.root_config.max_iterations,
                             time_budget=self.root_config.time_budget)
        except RootFindTimeout as exc:
            logger.warning("SOI crossing refinement timed out; using best guess")
            return exc.best_guess if exc.best_guess is not None else hi

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def next_orbit(self, patch: Patch) -> Orbit:
        """Conic that continues *patch* across its SOI transition."""
        orbit = patch.orbit
        body = orbit.body
        t = patch.end_time
        state = orbit.state_at(t)

        if patch.transition == PatchTransition.ESCAPE:
            parent = body.parent
            return Orbit(parent.mu,
                         state.position + body.position_at(t),
                         state.velocity + body.velocity_at(t),
                         t, body=parent, start_time=t,
                         start_transition=PatchTransition.ESCAPE)

        if patch.transition == PatchTransition.ENCOUNTER:
            child = self._encountered_child(orbit, t)
            return Orbit(child.mu,
                         state.position - child.position_at(t),
                         state.velocity - child.velocity_at(t),
                         t, body=child, start_time=t,
                         start_transition=PatchTransition.ENCOUNTER)

        raise InvalidInputError(f"Patch ending in {patch.transition.value} has no successor")

    @staticmethod
    def _encountered_child(orbit: Orbit, t: float):
        r = orbit.position_at(t)
        return min(orbit.body.children,
                   key=lambda c: np.linalg.norm(r - c.position_at(t)) / c.soi_radius)

    def calculate_next_orbit(self, orbit: Orbit, start_time: Optional[float] = None,
                             horizon: float = math.inf) -> Orbit:
        """Return *orbit* with its patch end (time and transition) filled in."""
        start = orbit.epoch if start_time is None else start_time
        if not math.isfinite(horizon):
            horizon = start + self._default_horizon(orbit)
        return self.calculate_patch(orbit, start, horizon).orbit

    @staticmethod
    def _default_horizon(orbit: Orbit) -> float:
        if orbit.is_elliptic:
            return orbit.period
        return 100.0 / orbit.mean_motion

    # -------------------------------------------------------------------------
    # Multi-patch queries
    # -------------------------------------------------------------------------

    def predict_patches(self, initial: Orbit, horizon: float,
                        target_body=None) -> List[Patch]:
        """
        Chain patches from *initial* until *horizon*, a final patch, or
        (when given) arrival in *target_body*'s SOI.
        """
        patches: List[Patch] = []
        orbit = initial
        t = initial.epoch
        while len(patches) < self.config.max_patches:
            patch = self.calculate_patch(orbit, t, horizon)
            patches.append(patch)
            if target_body is not None and patch.body is target_body:
                break
            if patch.transition in (PatchTransition.FINAL, PatchTransition.END_OF_WINDOW):
                break
            orbit = self.next_orbit(patch)
            t = patch.end_time
        else:
            logger.warning("Patch limit (%d) reached before t=%.3f",
                           self.config.max_patches, horizon)

        logger.info("Predicted %d patch(es): %s", len(patches),
                    " -> ".join(p.body.name if p.body else "?" for p in patches))
        return patches

    def intercept_body(self, initial: Orbit, target_body, delta_v, burn_time: float,
                       horizon: float) -> Orbit:
        """
        Apply *delta_v* at *burn_time* and step patches until the vehicle is
        inside *target_body*'s SOI.

        Raises:
            SearchHorizonExceeded: Target SOI not reached before *horizon*.
        """
        perturbed = initial.perturbed(burn_time, delta_v)
        patches = self.predict_patches(perturbed, horizon, target_body=target_body)
        last = patches[-1]
        if last.body is not target_body:
            raise SearchHorizonExceeded(
                f"{target_body.name} SOI not reached within {len(patches)} patch(es) "
                f"before t={horizon:.3f}"
            )
        return last.orbit

    def soi_intercept(self, transfer: Orbit, target_body, t1: float, t2: float) -> float:
        """
        Time in [t1, t2] at which *transfer* enters *target_body*'s SOI.

        Raises:
            InvalidInputError:   transfer is not around the target's parent.
            InvalidBracketError: the SOI boundary is not crossed in [t1, t2].
        """
        if target_body.parent is None or transfer.body is not target_body.parent:
            raise InvalidInputError(
                f"Transfer orbit must be around {target_body.name}'s parent body"
            )

        def gap(t):
            return (float(np.linalg.norm(transfer.position_at(t) - target_body.position_at(t)))
                    - target_body.soi_radius)

        return find_root(gap, t1, t2, xtol=self.root_config.xtol,
                         rtol=self.root_config.rtol,
                         max_iterations=self.root_config.max_iterations,
                         time_budget=self.root_config.time_budget)
