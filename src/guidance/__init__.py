"""
===============================================================================
ORBIT MANEUVER ENGINE - Guidance Package
===============================================================================
Maneuver planning on top of the dynamics package.

Modules:
    maneuver_planner  : Closed-form single-burn maneuvers (circularize,
                        apsis changes, plane changes, node shifts)
    transfer_planner  : Hohmann windows, Lambert intercepts, course
                        corrections and interplanetary ejection
===============================================================================
"""
