"""
===============================================================================
ORBIT MANEUVER ENGINE - Physical and Numerical Constants
===============================================================================
Central repository for the constants used by the propagator, the Lambert
solver and the maneuver planners. SI units throughout (meters, seconds,
radians) unless a name says otherwise.

Gravitational parameters and radii come from IAU 2012 / IERS values; sphere
of influence radii use the Laplace approximation.
===============================================================================
"""

import sys

import numpy as np


# =============================================================================
# MATHEMATICAL CONSTANTS
# =============================================================================
PI = np.pi
TWO_PI = 2.0 * np.pi
DEG2RAD = PI / 180.0
RAD2DEG = 180.0 / PI

# Unit vector along the inertial pole (north for every body in this engine)
Z_HAT = np.array([0.0, 0.0, 1.0])

# =============================================================================
# NUMERICAL SENTINELS
# =============================================================================
# Cost reported for an infeasible transfer candidate.  sqrt(max float) so a
# least-squares solver can square it without overflowing to infinity.
INFEASIBLE_COST = float(np.sqrt(sys.float_info.max))

# Eccentricity below which an orbit is treated as circular when choosing a
# periapsis direction.
CIRCULAR_ECCENTRICITY = 1e-9

# Band around e = 1 treated as exactly parabolic by the time-of-flight code.
PARABOLIC_BAND = 1e-9

# =============================================================================
# SUN PARAMETERS
# =============================================================================
SUN_MU = 1.32712440018e20             # m^3/s^2
SUN_RADIUS = 6.957e8                  # m
AU = 1.495978707e11                   # Astronomical Unit in meters

# =============================================================================
# EARTH PARAMETERS
# =============================================================================
EARTH_MU = 3.986004418e14             # Gravitational parameter (m^3/s^2)
EARTH_RADIUS = 6371000.0              # Mean radius (m)
EARTH_SMA = AU                        # Heliocentric semi-major axis (m)
EARTH_SOI_RADIUS = 9.24e8             # Sphere of influence radius (m)

# =============================================================================
# MOON PARAMETERS
# =============================================================================
MOON_MU = 4.9048695e12                # m^3/s^2
MOON_RADIUS = 1737400.0               # Mean radius (m)
MOON_SMA = 384400000.0                # Semi-major axis of lunar orbit (m)
MOON_SOI_RADIUS = 6.61e7              # ~66,100 km

# =============================================================================
# MARS PARAMETERS
# =============================================================================
MARS_MU = 4.282837e13                 # m^3/s^2
MARS_RADIUS = 3389500.0               # Mean radius (m)
MARS_SMA = 1.52366231 * AU            # Heliocentric semi-major axis (m)
MARS_SOI_RADIUS = 5.77e8              # m
