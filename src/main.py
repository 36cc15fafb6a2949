#!/usr/bin/env python3
"""
===============================================================================
ORBIT MANEUVER ENGINE - MAIN ENTRY POINT
===============================================================================
Command-line driver that loads a solver configuration and runs one of the
demonstration scenarios around an Earth-Moon system.

USAGE:
    python main.py                               # Hohmann window (default)
    python main.py --scenario bi-impulsive       # Annealed two-burn search
    python main.py --scenario patched            # Trans-lunar patch chain
    python main.py --config config/solver_config.yaml --seed 7

SCENARIOS:
    hohmann       LEO (6671 km) -> 26571 km circular target: first window
    bi-impulsive  Same orbits, global two-burn search with its history
    patched       Hohmann burn to the Moon's orbit, then SOI transitions

DEPENDENCIES:
    numpy, scipy, pandas, pyyaml
===============================================================================
"""

import argparse
import logging
import sys
import time
from pathlib import Path

# ---------------------------------------------------------------------------
# Path setup: ensure all project modules are importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.config import SolverConfig, load_config
from core.constants import DEG2RAD
from core.exceptions import ManeuverError
from dynamics.bodies import earth_moon_system, find_body
from dynamics.patched_conics import PatchedConicSolver
from guidance.maneuver_planner import ManeuverPlanner
from guidance.transfer_planner import TransferPlanner
from optimization.annealing import AnnealedTransferSearch

logger = logging.getLogger('MANEUVER_MAIN')

DEFAULT_CONFIG = PROJECT_ROOT.parent / 'config' / 'solver_config.yaml'

# Demonstration geometry (m)
PARKING_RADIUS = 6671.0e3
TARGET_RADIUS = 26571.0e3
TARGET_PHASE_DEG = 60.0


def build_scenario_orbits(earth):
    """Parking orbit and phased circular target orbit around *earth*."""
    parking = earth.circular_orbit(PARKING_RADIUS)
    target = earth.circular_orbit(TARGET_RADIUS, phase=TARGET_PHASE_DEG * DEG2RAD)
    return parking, target


# =============================================================================
# SCENARIOS
# =============================================================================

def run_hohmann(config: SolverConfig) -> None:
    """Find the first Hohmann window and compare with the analytic burn."""
    earth = earth_moon_system()
    parking, target = build_scenario_orbits(earth)

    planner = TransferPlanner(config)
    burn = planner.delta_v_and_time_for_hohmann_transfer(parking, target, 0.0)
    dv1, dv2 = ManeuverPlanner.hohmann_transfer(PARKING_RADIUS, TARGET_RADIUS, earth.mu)

    logger.info("Hohmann window at t = %.1f s", burn.epoch)
    logger.info("  Departure burn: %.2f m/s (analytic %.2f m/s)", burn.magnitude, dv1)
    logger.info("  Arrival burn (analytic): %.2f m/s", dv2)

    transfer = parking.perturbed(burn.epoch, burn.delta_v)
    arrival = transfer.next_apoapsis_time(burn.epoch)
    logger.info("  Miss distance at apoapsis: %.1f km",
                transfer.separation(target, arrival) / 1000.0)


def run_bi_impulsive(config: SolverConfig, seed: int) -> None:
    """Annealed two-burn search between the scenario orbits."""
    earth = earth_moon_system()
    parking, target = build_scenario_orbits(earth)

    search = AnnealedTransferSearch(config, seed=seed)
    result = search.search(parking, target, 0.0)
    best = result.best

    logger.info("Best transfer after %d iterations (%.2f s, stop: %s)",
                result.iterations, result.elapsed, result.stop_reason)
    logger.info("  Burn at t = %.1f s, transfer time %.1f s, %s branch",
                result.burn.epoch, best.transfer_time,
                "prograde" if best.prograde else "retrograde")
    logger.info("  Cost %.2f m/s (departure %.2f m/s)", best.cost, result.burn.magnitude)

    history = result.history_frame()
    if not history.empty:
        accepted = history['accepted'].mean()
        logger.info("  Accepted moves: %.1f%%, final temperature %.1f",
                    100.0 * accepted, history['temperature'].iloc[-1])


def run_patched(config: SolverConfig) -> None:
    """Trans-lunar injection followed by a patched-conic prediction."""
    earth = earth_moon_system()
    moon = find_body(earth, 'Moon')
    parking = earth.circular_orbit(PARKING_RADIUS)

    planner = TransferPlanner(config)
    burn = planner.delta_v_and_time_for_hohmann_transfer(parking, moon.orbit, 0.0)
    logger.info("Trans-lunar injection at t = %.1f s, %.2f m/s", burn.epoch, burn.magnitude)

    solver = PatchedConicSolver(config)
    transfer = parking.perturbed(burn.epoch, burn.delta_v)
    horizon = burn.epoch + 2.0 * transfer.period
    patches = solver.predict_patches(transfer, horizon)

    for i, patch in enumerate(patches):
        periapsis = patch.orbit.periapsis_radius
        logger.info("  Patch %d: %-5s t=[%.1f, %.1f] end=%s Pe=%.1f km",
                    i, patch.body.name, patch.start_time, patch.end_time,
                    patch.transition.value, periapsis / 1000.0)


# =============================================================================
# ENTRY POINT
# =============================================================================

def main():
    """
    Main entry point. Parses command line arguments and runs the requested
    scenario.
    """
    parser = argparse.ArgumentParser(
        description='Orbit Maneuver Engine demonstration scenarios',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                          Hohmann window
  python main.py --scenario bi-impulsive  Annealed two-burn search
  python main.py --scenario patched       Trans-lunar patch chain
        """
    )
    parser.add_argument('--config', type=str, default=None,
                        help='Path to solver config YAML')
    parser.add_argument('--scenario', choices=['hohmann', 'bi-impulsive', 'patched'],
                        default='hohmann', help='Scenario to run (default: hohmann)')
    parser.add_argument('--seed', type=int, default=42,
                        help='Random seed (default: 42)')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    config_path = args.config
    if config_path is None and DEFAULT_CONFIG.exists():
        config_path = str(DEFAULT_CONFIG)
    config = load_config(config_path)

    logger.info("Scenario: %s (seed %d)", args.scenario, args.seed)
    start = time.time()
    try:
        if args.scenario == 'hohmann':
            run_hohmann(config)
        elif args.scenario == 'bi-impulsive':
            run_bi_impulsive(config, args.seed)
        else:
            run_patched(config)
    except ManeuverError as exc:
        logger.error("Scenario failed: %s", exc)
        return 1

    logger.info("Done in %.2f s", time.time() - start)
    return 0


if __name__ == '__main__':
    sys.exit(main())
