"""
===============================================================================
ORBIT MANEUVER ENGINE - Bracketed Scalar Root Finder
===============================================================================
Brent's method (bisection + secant + inverse quadratic interpolation) for
scalar functions of time: transfer-window phase errors, SOI crossings and
similar zero-crossings.

The numerical core is scipy.optimize.brentq.  This module adds the
engine's contract around it:

    * the interval must bracket a sign change, else InvalidBracketError;
    * an iteration cap and an optional wall-clock budget, exhausted ->
      RootFindTimeout carrying the last iterate as a best guess.

A coarse uniform scan (find_first_bracket) is provided for callers that
need to locate a bracket first.
===============================================================================
"""

import logging
import math
import time
from typing import Callable, Optional, Tuple

import numpy as np
from scipy.optimize import brentq

from core.config import RootFinderConfig
from core.exceptions import InvalidBracketError, InvalidInputError, RootFindTimeout

logger = logging.getLogger(__name__)


class _BudgetExhausted(Exception):
    """Raised inside the objective wrapper when the wall-clock budget runs out."""

    def __init__(self, last_x: Optional[float]) -> None:
        super().__init__("time budget exhausted")
        self.last_x = last_x


def find_root(
    f: Callable[[float], float],
    a: float,
    b: float,
    xtol: float = 1e-6,
    rtol: float = 1e-12,
    max_iterations: int = 100,
    time_budget: Optional[float] = None,
) -> float:
    """
    Locate a root of *f* in [a, b].

    Args:
        f:              Scalar function; f(a) and f(b) must differ in sign.
        a, b:           Interval end points.
        xtol, rtol:     Absolute / relative tolerance on the root.
        max_iterations: Iteration cap.
        time_budget:    Wall-clock limit in seconds (None = unlimited).

    Returns:
        x with f(x) ~ 0.

    Raises:
        InvalidBracketError: f(a), f(b) have the same sign.
        InvalidInputError:   Non-finite end points or function values.
        RootFindTimeout:     Iteration or time budget exhausted.
    """
    if not (math.isfinite(a) and math.isfinite(b)):
        raise InvalidInputError(f"Root bracket must be finite, got [{a}, {b}]")

    fa = f(a)
    fb = f(b)
    if not (math.isfinite(fa) and math.isfinite(fb)):
        raise InvalidInputError(f"Non-finite function value at bracket: f(a)={fa}, f(b)={fb}")
    if fa == 0.0:
        return a
    if fb == 0.0:
        return b
    if np.sign(fa) == np.sign(fb):
        raise InvalidBracketError(
            f"Interval [{a:.6g}, {b:.6g}] does not bracket a root "
            f"(f(a)={fa:.6g}, f(b)={fb:.6g})"
        )

    deadline = None if time_budget is None else time.monotonic() + time_budget
    last_x = [None]

    def wrapped(x: float) -> float:
        if deadline is not None and time.monotonic() > deadline:
            raise _BudgetExhausted(last_x[0])
        last_x[0] = x
        return f(x)

    try:
        root, result = brentq(wrapped, a, b, xtol=xtol, rtol=rtol,
                              maxiter=max_iterations, full_output=True, disp=False)
    except _BudgetExhausted as exc:
        raise RootFindTimeout(
            f"Root search exceeded its {time_budget:.3f} s budget",
            best_guess=exc.last_x,
        ) from None

    if not result.converged:
        raise RootFindTimeout(
            f"Root search did not converge in {max_iterations} iterations "
            f"(flag: {result.flag})",
            best_guess=float(root),
        )

    logger.debug("Brent root %.9g after %d iterations", root, result.iterations)
    return float(root)


def find_root_with_config(f: Callable[[float], float], a: float, b: float,
                          config: Optional[RootFinderConfig] = None) -> float:
    """find_root with settings taken from a RootFinderConfig."""
    config = config or RootFinderConfig()
    return find_root(f, a, b, xtol=config.xtol, rtol=config.rtol,
                     max_iterations=config.max_iterations,
                     time_budget=config.time_budget)


def find_first_bracket(
    f: Callable[[float], float],
    a: float,
    b: float,
    divisions: int,
) -> Optional[Tuple[float, float]]:
    """
    Scan [a, b] in *divisions* equal steps and return the first sub-interval
    whose end points differ in sign, or None.
    """
    if divisions < 1:
        raise InvalidInputError(f"divisions must be >= 1, got {divisions}")
    xs = np.linspace(a, b, divisions + 1)
    prev_x = xs[0]
    prev_f = f(prev_x)
    for x in xs[1:]:
        fx = f(x)
        if prev_f == 0.0:
            return float(prev_x), float(prev_x)
        if np.sign(fx) != np.sign(prev_f) and math.isfinite(fx) and math.isfinite(prev_f):
            return float(prev_x), float(x)
        prev_x, prev_f = x, fx
    if prev_f == 0.0:
        return float(prev_x), float(prev_x)
    return None
