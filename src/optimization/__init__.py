"""
===============================================================================
ORBIT MANEUVER ENGINE - Optimization Package
===============================================================================
Numerical search used by the planners.

Modules:
    root_finding  : Bracketed Brent root finder with iteration/time budgets
    bi_impulsive  : Local two-burn transfer optimizer (SLSQP)
    annealing     : Annealed global transfer search and porkchop survey
===============================================================================
"""
