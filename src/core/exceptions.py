"""
===============================================================================
ORBIT MANEUVER ENGINE - Error Taxonomy
===============================================================================
Typed failure conditions raised by the propagator, the Lambert solver, the
root finder and the maneuver planners.

Each class also derives from the built-in category it refines (ValueError for
bad inputs, RuntimeError for numerical methods that ran out of budget), so
callers that only know the built-ins keep working.

    ManeuverError
    +-- InvalidInputError (ValueError)
    |   +-- InvalidBracketError
    +-- DegenerateGeometryError (ValueError)
    +-- MissingReferenceNode (ValueError)
    +-- NoConvergenceError (RuntimeError)
    |   +-- PropagationDidNotConverge
    |   +-- LambertDidNotConverge
    |   +-- RootFindTimeout
    |   +-- OptimizerDidNotConverge
    +-- NoTransferWindowFound (RuntimeError)
    +-- SearchHorizonExceeded (RuntimeError)
===============================================================================
"""

from typing import Optional


class ManeuverError(Exception):
    """Base class for every error raised by the engine."""


class InvalidInputError(ManeuverError, ValueError):
    """Malformed or physically invalid input (mu <= 0, zero radius, ...)."""


class InvalidBracketError(InvalidInputError):
    """The interval handed to the root finder does not bracket a sign change."""


class DegenerateGeometryError(ManeuverError, ValueError):
    """Lambert geometry with colinear position vectors (no transfer plane)."""


class MissingReferenceNode(ManeuverError, ValueError):
    """A required ascending/descending node does not exist for the geometry."""


class NoConvergenceError(ManeuverError, RuntimeError):
    """An iterative method exhausted its iteration or time budget."""


class PropagationDidNotConverge(NoConvergenceError):
    """Universal-variable Kepler iteration did not converge."""


class LambertDidNotConverge(NoConvergenceError):
    """Lambert iteration did not converge (or no solution exists)."""


class RootFindTimeout(NoConvergenceError):
    """
    Brent's method ran out of iterations or wall-clock time.

    Attributes:
        best_guess: Last iterate of the search, usable as a degraded answer.
    """

    def __init__(self, message: str, best_guess: Optional[float] = None) -> None:
        super().__init__(message)
        self.best_guess = best_guess


class OptimizerDidNotConverge(NoConvergenceError):
    """The local transfer optimizer stopped before meeting its tolerance."""


class NoTransferWindowFound(ManeuverError, RuntimeError):
    """Window search exhausted its scan without bracketing a root."""


class SearchHorizonExceeded(ManeuverError, RuntimeError):
    """Patched-conic stepping did not reach the target within the horizon."""
