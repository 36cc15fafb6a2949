"""
===============================================================================
ORBIT MANEUVER ENGINE - State and Burn Records
===============================================================================
Immutable value records passed between the propagator, the solvers and the
(external) burn-execution layer.

    StateVector -- position, velocity and epoch in a body-centred inertial
                   frame.
    Burn        -- an impulsive delta-v and the epoch at which to apply it.

Both records convert their vectors to read-only float64 arrays, so a record
handed to another component can never be modified behind its back.
===============================================================================
"""

from dataclasses import dataclass

import numpy as np


def _frozen_vector(v) -> np.ndarray:
    arr = np.array(v, dtype=np.float64)
    if arr.shape != (3,):
        raise ValueError(f"Expected a 3-vector, got shape {arr.shape}")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class StateVector:
    """
    Snapshot of a body's translational state at a single instant.

    Attributes
    ----------
    position : np.ndarray
        3-element position vector relative to the reference body.
    velocity : np.ndarray
        3-element velocity vector relative to the reference body.
    epoch : float
        Time (s) at which this state is valid.
    """
    position: np.ndarray
    velocity: np.ndarray
    epoch: float

    def __post_init__(self):
        object.__setattr__(self, 'position', _frozen_vector(self.position))
        object.__setattr__(self, 'velocity', _frozen_vector(self.velocity))
        object.__setattr__(self, 'epoch', float(self.epoch))

    @property
    def r_mag(self) -> float:
        """Magnitude of the position vector."""
        return float(np.linalg.norm(self.position))

    @property
    def v_mag(self) -> float:
        """Magnitude of the velocity vector."""
        return float(np.linalg.norm(self.velocity))

    def copy(self) -> 'StateVector':
        """Return an independent copy of this state."""
        return StateVector(self.position.copy(), self.velocity.copy(), self.epoch)


@dataclass(frozen=True)
class Burn:
    """
    Impulsive maneuver: delta-v vector applied at *epoch*.

    Attributes
    ----------
    delta_v : np.ndarray
        3-element velocity change in the body-centred inertial frame.
    epoch : float
        Execution time (s).
    """
    delta_v: np.ndarray
    epoch: float

    def __post_init__(self):
        object.__setattr__(self, 'delta_v', _frozen_vector(self.delta_v))
        object.__setattr__(self, 'epoch', float(self.epoch))

    @property
    def magnitude(self) -> float:
        """Delta-v magnitude."""
        return float(np.linalg.norm(self.delta_v))
