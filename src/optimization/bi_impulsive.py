"""
===============================================================================
ORBIT MANEUVER ENGINE - Bi-Impulsive Transfer Optimizer
===============================================================================
Local refinement of a two-burn transfer.  Free variables:

    x[0] = burn offset     time from the reference epoch to the first burn
    x[1] = transfer time   time from the first burn to arrival

Cost:

    J(x) = |dv1(x)| + |dv2(x)|        (|dv1| alone in intercept-only mode)

where dv1, dv2 come from propagating both states to the burn / arrival
epochs and solving Lambert's problem between them.  A failed Lambert solve
or a non-finite cost is replaced by a large finite sentinel
(sqrt(max float)) so the optimizer can square it without overflowing and
still move away from the infeasible region.

Constraints:
    min_offset <= x[0] <= max_offset
    0 < x[1] <= max_transfer_time
    x[0] + x[1] <= max_total_time     (arrive before a patch ends)

Solved with scipy.optimize.minimize (SLSQP) on scaled variables.  The run is
best-effort: non-convergence is logged and the best candidate evaluated is
still returned (unless the caller asks for a hard failure).
===============================================================================
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from scipy.optimize import minimize

from core.config import LambertConfig, OptimizerConfig, SolverConfig, section_or_default
from core.constants import INFEASIBLE_COST
from core.exceptions import ManeuverError, OptimizerDidNotConverge
from dynamics.lambert import intercept_delta_v

logger = logging.getLogger(__name__)

# Smallest admissible transfer time (s); shorter arcs have no usable conic
MIN_TRANSFER_TIME = 1.0


@dataclass(frozen=True)
class LambertProblem:
    """
    Source and target states at a common reference epoch.

    Attributes:
        mu:              Gravitational parameter of the shared central body.
        position:        Source position at the reference epoch.
        velocity:        Source velocity at the reference epoch.
        target_position: Target position at the reference epoch.
        target_velocity: Target velocity at the reference epoch.
        prograde:        Lambert branch (True = prograde / short way).
        intercept_only:  Omit the arrival burn from the cost.
    """
    mu: float
    position: np.ndarray
    velocity: np.ndarray
    target_position: np.ndarray
    target_velocity: np.ndarray
    prograde: bool = True
    intercept_only: bool = False

    def with_branch(self, prograde: bool) -> 'LambertProblem':
        return LambertProblem(self.mu, self.position, self.velocity,
                              self.target_position, self.target_velocity,
                              prograde, self.intercept_only)


@dataclass
class TransferCandidate:
    """
    One evaluated two-burn transfer.

    Attributes:
        burn_offset:      Time from the reference epoch to the first burn.
        transfer_time:    Time from the first burn to arrival (> 0).
        cost:             Delta-v cost (>= 0; INFEASIBLE_COST when no transfer).
        delta_v:          First-burn delta-v vector.
        prograde:         Lambert branch used.
        arrival_delta_v:  Second-burn delta-v vector.
        converged:        Whether the local optimizer met its tolerance.
    """
    burn_offset: float
    transfer_time: float
    cost: float
    delta_v: np.ndarray = field(default_factory=lambda: np.zeros(3))
    prograde: bool = True
    arrival_delta_v: np.ndarray = field(default_factory=lambda: np.zeros(3))
    converged: bool = True

    @property
    def feasible(self) -> bool:
        return self.cost < INFEASIBLE_COST


def evaluate_transfer(x, problem: LambertProblem,
                      lambert: Optional[LambertConfig] = None) -> Tuple[float, np.ndarray, np.ndarray]:
    """
    Cost and burns of the transfer x = (burn_offset, transfer_time).

    Failures of the underlying propagation / Lambert solve, typed or
    numeric, give the sentinel cost and zero burns.
    """
    lambert = lambert or LambertConfig()
    try:
        dv1, dv2 = intercept_delta_v(
            problem.mu, problem.position, problem.velocity,
            problem.target_position, problem.target_velocity,
            float(x[0]), float(x[1]), problem.prograde,
            max_iterations=lambert.max_iterations, tolerance=lambert.tolerance,
        )
    except (ManeuverError, ArithmeticError, ValueError) as exc:
        logger.debug("Infeasible candidate (%.3f, %.3f): %s", x[0], x[1], exc)
        return INFEASIBLE_COST, np.zeros(3), np.zeros(3)

    cost = float(np.linalg.norm(dv1))
    if not problem.intercept_only:
        cost += float(np.linalg.norm(dv2))
    if not math.isfinite(cost):
        return INFEASIBLE_COST, np.zeros(3), np.zeros(3)
    return cost, dv1, dv2


def lambert_cost(x, problem: LambertProblem, lambert: Optional[LambertConfig] = None) -> float:
    """Scalar cost of x = (burn_offset, transfer_time); never raises, never inf."""
    return evaluate_transfer(x, problem, lambert)[0]


class BiImpulsiveOptimizer:
    """
    Stateless local optimizer for two-burn transfers.

    Args:
        config:  SolverConfig or OptimizerConfig.
        lambert: SolverConfig or LambertConfig (defaults from *config* when it
                 is a SolverConfig).
    """

    def __init__(self, config=None, lambert=None) -> None:
        self.config = section_or_default(config, OptimizerConfig)
        if lambert is None and isinstance(config, SolverConfig):
            lambert = config
        self.lambert = section_or_default(lambert, LambertConfig)

    def optimize(
        self,
        problem: LambertProblem,
        burn_offset: float,
        transfer_time: float,
        min_offset: float = -math.inf,
        max_offset: float = math.inf,
        max_transfer_time: float = math.inf,
        max_total_time: float = math.inf,
        require_convergence: bool = False,
    ) -> TransferCandidate:
        """
        Refine the transfer starting from (burn_offset, transfer_time).

        Returns:
            Best TransferCandidate found.

        Raises:
            OptimizerDidNotConverge: Only when *require_convergence* is set.
        """
        lower = np.array([min_offset, MIN_TRANSFER_TIME])
        upper = np.array([max_offset, max_transfer_time])
        x0 = np.clip(np.array([burn_offset, transfer_time], dtype=np.float64), lower, upper)

        if math.isfinite(max_offset) and math.isfinite(max_transfer_time):
            scale = np.array([max_offset, max_transfer_time])
        else:
            scale = np.array([burn_offset, transfer_time])
        scale = np.where(np.abs(scale) > 1.0, np.abs(scale), 1.0)

        # A pinned burn offset is removed from the free variables.
        free = lower < upper
        def admissible(x: np.ndarray) -> bool:
            slack = 1e-9 * max(1.0, abs(max_total_time)) if math.isfinite(max_total_time) else 0.0
            return (np.all(x >= lower) and np.all(x <= upper)
                    and x[0] + x[1] <= max_total_time + slack)

        best = {"x": x0.copy(), "cost": math.inf}
        if admissible(x0):
            best["cost"] = lambert_cost(x0, problem, self.lambert)

        def full_x(y: np.ndarray) -> np.ndarray:
            x = x0.copy()
            x[free] = y * scale[free]
            return x

        def objective(y: np.ndarray) -> float:
            x = full_x(y)
            cost = lambert_cost(x, problem, self.lambert)
            if cost < best["cost"] and admissible(x):
                best["x"], best["cost"] = x.copy(), cost
            return cost

        bounds = [
            (None if not math.isfinite(lo) else lo / s, None if not math.isfinite(hi) else hi / s)
            for lo, hi, s in zip(lower[free], upper[free], scale[free])
        ]
        constraints: List[dict] = []
        if math.isfinite(max_total_time):
            total_scale = max(abs(max_total_time), 1.0)
            constraints.append({
                "type": "ineq",
                "fun": lambda y: (max_total_time - float(np.sum(full_x(y)))) / total_scale,
            })

        converged = True
        if np.any(free):
            result = minimize(
                objective,
                x0[free] / scale[free],
                method="SLSQP",
                bounds=bounds,
                constraints=constraints,
                options={
                    "maxiter": self.config.max_iterations,
                    "ftol": self.config.eps,
                    "eps": self.config.finite_difference_step,
                    "disp": False,
                },
            )
            converged = bool(result.success)
            logger.debug("SLSQP: %d iterations, status %d (%s)",
                         result.nit, result.status, result.message)
            if not converged:
                logger.warning("Bi-impulsive optimizer did not converge: %s", result.message)
                if require_convergence:
                    raise OptimizerDidNotConverge(
                        f"SLSQP stopped after {result.nit} iterations: {result.message}"
                    )

        if math.isinf(best["cost"]):
            # Neither the start nor any iterate satisfied the bounds
            converged = False
            logger.warning("Bi-impulsive optimizer found no admissible point; "
                           "returning the clipped start (%.3f, %.3f)", x0[0], x0[1])
            if require_convergence:
                raise OptimizerDidNotConverge("No admissible transfer within the bounds")

        x_best = best["x"]
        cost, dv1, dv2 = evaluate_transfer(x_best, problem, self.lambert)
        return TransferCandidate(
            burn_offset=float(x_best[0]),
            transfer_time=float(x_best[1]),
            cost=cost,
            delta_v=dv1,
            prograde=problem.prograde,
            arrival_delta_v=dv2,
            converged=converged,
        )
