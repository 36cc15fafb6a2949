"""
===============================================================================
ORBIT MANEUVER ENGINE - Dynamics Package
===============================================================================
Two-body motion and the geometry built on it.

Submodules:
    state          -- StateVector and Burn value types
    propagator     -- Universal-variable Kepler propagation (all conics)
    lambert        -- Lambert boundary-value solver and intercept driver
    orbit          -- Immutable Orbit model, patch bookkeeping
    bodies         -- Celestial body tree and ready-made systems
    patched_conics -- Sphere-of-influence transition stepper
===============================================================================
"""
