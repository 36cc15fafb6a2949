"""
===============================================================================
ORBIT MANEUVER ENGINE - Annealed Global Transfer Search
===============================================================================
Basin-hopping search over (burn offset, transfer time, Lambert branch) for
the cheapest two-burn transfer between two orbits around the same body.

Each iteration:
    1. Shrink the sampling window around the current point in proportion to
       temperature / initial temperature (clamped to the global bounds).
    2. Draw a candidate uniformly in the window and pick the short-way /
       long-way branch at random.
    3. Refine it with the local bi-impulsive optimizer.
    4. Accept it if it beats the best so far; otherwise accept it as the
       current point with probability exp((current - new) / temperature).
    5. Cool geometrically: temperature *= 1 - cooling_rate.

The search is anytime: it stops at the temperature floor, when its time
budget runs out, or when the callback asks it to, and always returns the
best candidate seen.  The best cost never increases from one iteration to
the next; the per-iteration history is kept for inspection.

A porkchop survey (cost over a departure-offset x transfer-time grid) is
provided for visualising the same cost surface.
===============================================================================
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from core.config import AnnealingConfig, SolverConfig, section_or_default
from core.constants import INFEASIBLE_COST, PI
from core.exceptions import InvalidInputError
from dynamics.orbit import Orbit, PatchTransition
from dynamics.state import Burn
from optimization.bi_impulsive import (
    MIN_TRANSFER_TIME,
    BiImpulsiveOptimizer,
    LambertProblem,
    TransferCandidate,
    evaluate_transfer,
)

logger = logging.getLogger(__name__)

_OPEN_TRANSITIONS = (PatchTransition.FINAL, PatchTransition.INITIAL)


def acceptance_probability(current_cost: float, new_cost: float, temperature: float) -> float:
    """Metropolis acceptance probability of moving from *current_cost* to *new_cost*."""
    if new_cost < current_cost:
        return 1.0
    return math.exp((current_cost - new_cost) / temperature)


@dataclass
class AnnealingResult:
    """
    Outcome of one global search.

    Attributes:
        best:        Best TransferCandidate found.
        burn:        First burn, at reference epoch + best burn offset.
        reference_time: Epoch the offsets are measured from.
        iterations:  Iterations performed.
        elapsed:     Wall-clock time spent (s).
        stop_reason: 'temperature', 'time_budget' or 'callback'.
        history:     One record per iteration.
    """
    best: TransferCandidate
    burn: Burn
    reference_time: float
    iterations: int = 0
    elapsed: float = 0.0
    stop_reason: str = "temperature"
    history: List[Dict[str, float]] = field(default_factory=list)

    @property
    def best_cost(self) -> float:
        return self.best.cost

    def history_frame(self) -> pd.DataFrame:
        """Per-iteration history as a DataFrame (one row per iteration)."""
        columns = ["iteration", "temperature", "burn_offset", "transfer_time",
                   "prograde", "cost", "current_cost", "best_cost", "accepted"]
        return pd.DataFrame(self.history, columns=columns)


class AnnealedTransferSearch:
    """
    Global two-burn transfer search.

    Args:
        config:         SolverConfig or AnnealingConfig.
        optimizer:      Local BiImpulsiveOptimizer (built from *config* if None).
        seed:           Overrides config.seed.  Every search() call draws
                        from its own generator seeded with it (fresh
                        entropy when None).
        patched_conics: PatchedConicSolver used to fill in the patch end of a
                        hyperbolic target (optional).
    """

    def __init__(self, config=None, optimizer: Optional[BiImpulsiveOptimizer] = None,
                 seed: Optional[int] = None, patched_conics=None) -> None:
        self.config = section_or_default(config, AnnealingConfig)
        if optimizer is None:
            optimizer = BiImpulsiveOptimizer(config if isinstance(config, SolverConfig) else None)
        self.optimizer = optimizer
        self.seed = seed if seed is not None else self.config.seed
        self.patched_conics = patched_conics

    # -------------------------------------------------------------------------
    # Problem setup
    # -------------------------------------------------------------------------

    @staticmethod
    def _problem(o: Orbit, target: Orbit, t: float, intercept_only: bool) -> LambertProblem:
        if o.body is not None and target.body is not None and o.body is not target.body:
            raise InvalidInputError("Source and target must orbit the same body")
        if not math.isclose(o.mu, target.mu, rel_tol=1e-12):
            raise InvalidInputError(
                f"Source and target have different central bodies (mu {o.mu} vs {target.mu})"
            )
        s = o.state_at(t)
        ts = target.state_at(t)
        return LambertProblem(o.mu, s.position, s.velocity, ts.position, ts.velocity,
                              prograde=True, intercept_only=intercept_only)

    def search_bounds(self, o: Orbit, target: Orbit, t: float, min_offset: float = 0.0,
                      max_offset: float = math.inf, fixed_time: bool = False) -> Dict[str, float]:
        """
        Global bounds of the search.

        Returns:
            Dict with min_offset, max_offset, max_transfer_time, max_total_time.
        """
        if not math.isfinite(max_offset):
            max_offset = 1.5 * o.synodic_period(target)
            if not math.isfinite(max_offset):
                max_offset = o.period if o.is_elliptic else target.period

        a = 0.5 * (abs(o.semi_major_axis) + abs(target.semi_major_axis))
        max_transfer_time = PI * math.sqrt(a ** 3 / o.mu)
        if not math.isfinite(max_offset):
            max_offset = max_transfer_time
        max_total_time = math.inf

        if target.patch_end_transition not in _OPEN_TRANSITIONS:
            remaining = target.end_time - t
            max_offset = remaining
            max_transfer_time = min(max_transfer_time, remaining)
            max_total_time = min(max_total_time, remaining)

        if o.patch_end_transition not in _OPEN_TRANSITIONS:
            max_offset = min(o.end_time - t, max_total_time)

        if fixed_time:
            min_offset = max_offset = 0.0

        return {
            "min_offset": min_offset,
            "max_offset": max_offset,
            "max_transfer_time": max_transfer_time,
            "max_total_time": max_total_time,
        }

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def search(
        self,
        o: Orbit,
        target: Orbit,
        t: float,
        min_offset: float = 0.0,
        max_offset: float = math.inf,
        intercept_only: bool = False,
        fixed_time: bool = False,
        callback: Optional[Callable[[int, TransferCandidate], bool]] = None,
    ) -> AnnealingResult:
        """
        Search for the cheapest transfer from *o* to *target* after epoch *t*.

        Args:
            o, target:      Source and target orbits around the same body.
            t:              Reference epoch (burn offsets are measured from it).
            min_offset:     Earliest burn offset.
            max_offset:     Latest burn offset (default 1.5 synodic periods).
            intercept_only: Cost counts the first burn only.
            fixed_time:     Pin the burn to *t* (zero-width offset window).
            callback:       Called as callback(iteration, best); returning
                            True stops the search.

        Returns:
            AnnealingResult holding the best candidate and the history.
        """
        if (target.is_hyperbolic and target.patch_end_transition in _OPEN_TRANSITIONS
                and self.patched_conics is not None and target.body is not None):
            target = self.patched_conics.calculate_next_orbit(target, t)

        problem = self._problem(o, target, t, intercept_only)
        bounds = self.search_bounds(o, target, t, min_offset, max_offset, fixed_time)
        min_offset = bounds["min_offset"]
        max_offset = bounds["max_offset"]
        max_tt = bounds["max_transfer_time"]
        max_total = bounds["max_total_time"]
        logger.debug("Annealing bounds: offset [%.3f, %.3f], max TT %.3f, max total %.3f",
                     min_offset, max_offset, max_tt, max_total)

        rng = np.random.default_rng(self.seed)
        cfg = self.config
        temperature = cfg.initial_temperature
        current_offset = 0.5 * max_offset
        current_tt = 0.5 * max_tt
        current_cost = math.inf
        best = TransferCandidate(current_offset, current_tt, INFEASIBLE_COST)
        history: List[Dict[str, float]] = []

        started = time.perf_counter()
        stop_reason = "temperature"
        n = 0
        while temperature > cfg.final_temperature:
            if cfg.time_budget is not None and time.perf_counter() - started > cfg.time_budget:
                stop_reason = "time_budget"
                break

            fraction = temperature / cfg.initial_temperature
            window_offset = fraction * (max_offset - min_offset)
            window_tt = fraction * (max_tt - MIN_TRANSFER_TIME)
            lo_offset = max(current_offset - window_offset, min_offset)
            hi_offset = min(current_offset + window_offset, max_offset)
            lo_tt = max(current_tt - window_tt, MIN_TRANSFER_TIME)
            hi_tt = min(current_tt + window_tt, max_tt)

            next_offset = rng.random() * (hi_offset - lo_offset) + lo_offset
            next_tt = rng.random() * (hi_tt - lo_tt) + lo_tt
            next_tt = max(min(next_tt, max_total - next_offset), MIN_TRANSFER_TIME)
            prograde = bool(rng.random() > 0.5)

            candidate = self.optimizer.optimize(
                problem.with_branch(prograde), next_offset, next_tt,
                min_offset=min_offset, max_offset=max_offset,
                max_transfer_time=max_tt, max_total_time=max_total,
            )

            accepted = False
            if candidate.cost < best.cost:
                best = candidate
                current_offset, current_tt = candidate.burn_offset, candidate.transfer_time
                current_cost = candidate.cost
                accepted = True
            elif acceptance_probability(current_cost, candidate.cost, temperature) > rng.random():
                current_offset, current_tt = candidate.burn_offset, candidate.transfer_time
                current_cost = candidate.cost
                accepted = True

            history.append({
                "iteration": n,
                "temperature": temperature,
                "burn_offset": candidate.burn_offset,
                "transfer_time": candidate.transfer_time,
                "prograde": prograde,
                "cost": candidate.cost,
                "current_cost": current_cost,
                "best_cost": best.cost,
                "accepted": accepted,
            })

            temperature *= 1.0 - cfg.cooling_rate
            n += 1

            if callback is not None and callback(n, best):
                stop_reason = "callback"
                break

        elapsed = time.perf_counter() - started
        logger.info(
            "Annealing: %d iterations in %.2f s (%s); best offset=%.3f TT=%.3f cost=%.6g %s",
            n, elapsed, stop_reason, best.burn_offset, best.transfer_time, best.cost,
            "prograde" if best.prograde else "retrograde",
        )
        return AnnealingResult(
            best=best,
            burn=Burn(best.delta_v, t + best.burn_offset),
            reference_time=t,
            iterations=n,
            elapsed=elapsed,
            stop_reason=stop_reason,
            history=history,
        )

    # -------------------------------------------------------------------------
    # Porkchop survey
    # -------------------------------------------------------------------------

    def porkchop_grid(
        self,
        o: Orbit,
        target: Orbit,
        t: float,
        burn_offsets: np.ndarray,
        transfer_times: np.ndarray,
        intercept_only: bool = False,
    ) -> dict:
        """
        Two-burn cost over a burn-offset x transfer-time grid.

        Each cell is the cheaper of the prograde and retrograde Lambert
        branches; infeasible cells hold NaN.

        Returns:
            Dict with:
                - 'burn_offsets':   the input offsets
                - 'transfer_times': the input transfer times
                - 'cost_grid':      2-D array (n_offsets x n_times)
                - 'prograde_grid':  2-D bool array, branch of each cell
        """
        problem = self._problem(o, target, t, intercept_only)
        lambert = self.optimizer.lambert
        n_dep = len(burn_offsets)
        n_tt = len(transfer_times)
        cost_grid = np.full((n_dep, n_tt), np.nan)
        prograde_grid = np.zeros((n_dep, n_tt), dtype=bool)

        for i, offset in enumerate(burn_offsets):
            for j, tt in enumerate(transfer_times):
                if tt <= 0.0:
                    continue
                costs = [evaluate_transfer((offset, tt), problem.with_branch(branch), lambert)[0]
                         for branch in (True, False)]
                k = int(np.argmin(costs))
                if costs[k] < INFEASIBLE_COST:
                    cost_grid[i, j] = costs[k]
                    prograde_grid[i, j] = (k == 0)

        return {
            "burn_offsets": np.asarray(burn_offsets),
            "transfer_times": np.asarray(transfer_times),
            "cost_grid": cost_grid,
            "prograde_grid": prograde_grid,
        }
