"""
===============================================================================
ORBIT MANEUVER ENGINE - Core Package
===============================================================================
Shared foundations for every solver.

Modules:
    constants   : Math constants, cost sentinel, body parameters
    exceptions  : Typed error taxonomy (ManeuverError and subclasses)
    vectors     : Vector projections, rotations and angle wrapping
    config      : SolverConfig dataclass tree and YAML loading
===============================================================================
"""
