"""
===============================================================================
ORBIT MANEUVER ENGINE - Vector and Angle Helpers
===============================================================================
Small NumPy helpers shared by the orbit model and the maneuver planners:
normalisation, projections, rotations about an arbitrary axis, and angle
wrapping in degrees.

All functions operate on NumPy arrays and return new arrays; inputs are never
modified.
===============================================================================
"""

import numpy as np


def unit(v: np.ndarray) -> np.ndarray:
    """Unit vector along *v*; the zero vector is returned unchanged."""
    n = np.linalg.norm(v)
    if n == 0.0:
        return np.zeros(3)
    return v / n


def exclude(normal: np.ndarray, v: np.ndarray) -> np.ndarray:
    """
    Remove the component of *v* along *normal*.

        v_perp = v - (v . n_hat) n_hat
    """
    n_hat = unit(normal)
    return v - np.dot(v, n_hat) * n_hat


def angle_between(a: np.ndarray, b: np.ndarray) -> float:
    """Unsigned angle between two vectors (rad), robust near 0 and pi."""
    return float(np.arctan2(np.linalg.norm(np.cross(a, b)), np.dot(a, b)))


def rotate_about_axis(v: np.ndarray, axis: np.ndarray, angle: float) -> np.ndarray:
    """
    Rotate *v* by *angle* (rad) about *axis* using Rodrigues' formula.

        v_rot = v cos(a) + (k x v) sin(a) + k (k . v)(1 - cos(a))

    Positive angles follow the right-hand rule about *axis*.
    """
    k = unit(axis)
    c = np.cos(angle)
    s = np.sin(angle)
    return v * c + np.cross(k, v) * s + k * np.dot(k, v) * (1.0 - c)


def clamp_degrees_360(angle: float) -> float:
    """Wrap an angle in degrees into [0, 360)."""
    angle = angle % 360.0
    if angle < 0.0:
        angle += 360.0
    return angle


def clamp_degrees_180(angle: float) -> float:
    """Wrap an angle in degrees into (-180, 180]."""
    angle = clamp_degrees_360(angle)
    if angle > 180.0:
        angle -= 360.0
    return angle
