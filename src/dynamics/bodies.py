"""
===============================================================================
ORBIT MANEUVER ENGINE - Celestial Body Tree
===============================================================================
Minimal description of the bodies the patched-conic stepper moves between:
gravitational parameter, radius, sphere-of-influence radius, and the conic
each body follows around its parent.

Builders return ready-made systems on circular, equatorial orbits:

    earth_moon_system()      -- Earth (root) with the Moon
    sun_earth_moon_system()  -- Sun (root), Earth with the Moon, and Mars
===============================================================================
"""

import logging
import math
from typing import List, Optional

import numpy as np

from core.constants import (
    EARTH_MU,
    EARTH_RADIUS,
    EARTH_SMA,
    EARTH_SOI_RADIUS,
    MARS_MU,
    MARS_RADIUS,
    MARS_SMA,
    MARS_SOI_RADIUS,
    MOON_MU,
    MOON_RADIUS,
    MOON_SMA,
    MOON_SOI_RADIUS,
    SUN_MU,
    SUN_RADIUS,
)
from core.exceptions import InvalidInputError
from dynamics.orbit import Orbit

logger = logging.getLogger(__name__)


class CelestialBody:
    """
    A gravitating body, optionally orbiting a parent body.

    Attributes:
        name:       Display name.
        mu:         Gravitational parameter.
        radius:     Mean radius.
        soi_radius: Sphere-of-influence radius (inf for the root body).
        orbit:      Conic around the parent (None for the root body).
        parent:     Parent body (None for the root body).
        children:   Bodies orbiting this one.
    """

    def __init__(
        self,
        name: str,
        mu: float,
        radius: float,
        soi_radius: float = math.inf,
        orbit: Optional[Orbit] = None,
        parent: Optional['CelestialBody'] = None,
    ) -> None:
        if not mu > 0.0:
            raise InvalidInputError(f"{name}: gravitational parameter must be positive")
        if (orbit is None) != (parent is None):
            raise InvalidInputError(f"{name}: orbit and parent must be given together")
        self.name = name
        self.mu = float(mu)
        self.radius = float(radius)
        self.soi_radius = float(soi_radius)
        self.orbit = orbit
        self.parent = parent
        self.children: List['CelestialBody'] = []
        if parent is not None:
            parent.children.append(self)

    def add_child(self, name: str, mu: float, radius: float, soi_radius: float,
                  orbit: Orbit) -> 'CelestialBody':
        """Create a body orbiting this one and return it."""
        return CelestialBody(name, mu, radius, soi_radius, orbit=orbit, parent=self)

    def position_at(self, t: float) -> np.ndarray:
        """Position relative to the parent (zero for the root)."""
        if self.orbit is None:
            return np.zeros(3)
        return self.orbit.position_at(t)

    def velocity_at(self, t: float) -> np.ndarray:
        """Velocity relative to the parent (zero for the root)."""
        if self.orbit is None:
            return np.zeros(3)
        return self.orbit.velocity_at(t)

    def circular_orbit(self, radius: float, epoch: float = 0.0,
                       inclination: float = 0.0, lan: float = 0.0,
                       phase: float = 0.0) -> Orbit:
        """Circular orbit around this body (angles in radians)."""
        return Orbit.from_elements(self.mu, radius, 0.0, inclination, lan, 0.0,
                                   phase, epoch, body=self)

    def __repr__(self) -> str:
        parent = self.parent.name if self.parent else None
        return f"CelestialBody({self.name!r}, parent={parent!r})"


def earth_moon_system(moon_phase: float = 0.0) -> CelestialBody:
    """Earth with the Moon on a circular equatorial orbit; returns Earth."""
    earth = CelestialBody("Earth", EARTH_MU, EARTH_RADIUS)
    moon_orbit = earth.circular_orbit(MOON_SMA, phase=moon_phase)
    earth.add_child("Moon", MOON_MU, MOON_RADIUS, MOON_SOI_RADIUS, moon_orbit)
    return earth


def sun_earth_moon_system(earth_phase: float = 0.0, moon_phase: float = 0.0,
                          mars_phase: float = 0.0) -> CelestialBody:
    """Heliocentric system with Earth (and its Moon) and Mars; returns the Sun."""
    sun = CelestialBody("Sun", SUN_MU, SUN_RADIUS)
    earth = sun.add_child("Earth", EARTH_MU, EARTH_RADIUS, EARTH_SOI_RADIUS,
                          sun.circular_orbit(EARTH_SMA, phase=earth_phase))
    earth.add_child("Moon", MOON_MU, MOON_RADIUS, MOON_SOI_RADIUS,
                    earth.circular_orbit(MOON_SMA, phase=moon_phase))
    sun.add_child("Mars", MARS_MU, MARS_RADIUS, MARS_SOI_RADIUS,
                  sun.circular_orbit(MARS_SMA, phase=mars_phase))
    return sun


def find_body(root: CelestialBody, name: str) -> CelestialBody:
    """Depth-first lookup by (case-insensitive) name."""
    stack = [root]
    while stack:
        body = stack.pop()
        if body.name.lower() == name.lower():
            return body
        stack.extend(body.children)
    raise InvalidInputError(f"No body named {name!r} under {root.name}")
