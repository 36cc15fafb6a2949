"""
===============================================================================
ORBIT MANEUVER ENGINE - Solver Configuration
===============================================================================
Iteration caps, tolerances and search parameters for every numerical
component, grouped per component.  Defaults reproduce the tuning of the
original maneuver calculator; a YAML file (see config/solver_config.yaml)
can override any subset of them.

Typical usage:
    config = load_config("config/solver_config.yaml")
    planner = TransferPlanner(config)
===============================================================================
"""

import logging
from dataclasses import dataclass, field, fields, is_dataclass, asdict
from typing import Any, Dict, Optional

import yaml

from core.exceptions import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass
class PropagatorConfig:
    """Universal-variable Kepler solver settings."""
    max_iterations: int = 100
    tolerance: float = 1e-12


@dataclass
class LambertConfig:
    """Lambert solver settings (tolerance is relative to the time of flight)."""
    max_iterations: int = 100
    tolerance: float = 1e-11


@dataclass
class RootFinderConfig:
    """Brent root finder budget."""
    xtol: float = 1e-6
    rtol: float = 1e-12
    max_iterations: int = 100
    time_budget: Optional[float] = None


@dataclass
class TransferSearchConfig:
    """Hohmann window scan and course-correction line search."""
    window_divisions: int = 30
    window_synodic_periods: float = 1.5
    immediate_burn_threshold_deg: float = 0.5
    course_correction_points: int = 20
    closest_approach_samples: int = 20


@dataclass
class OptimizerConfig:
    """Bi-impulsive local optimizer settings."""
    eps: float = 1e-9
    max_iterations: int = 100
    finite_difference_step: float = 1e-6


@dataclass
class AnnealingConfig:
    """Basin-hopping / annealing schedule."""
    initial_temperature: float = 10000.0
    final_temperature: float = 1000.0
    cooling_rate: float = 0.01
    time_budget: Optional[float] = None
    seed: Optional[int] = None


@dataclass
class PatchedConicConfig:
    """Patched-conic stepper limits."""
    max_patches: int = 10
    encounter_samples: int = 200


@dataclass
class SolverConfig:
    """
    Complete engine configuration.

    Attributes:
        propagator:      Conic state propagator settings.
        lambert:         Lambert solver settings.
        root_finder:     Brent root finder settings.
        transfer_search: Window / line-search settings.
        optimizer:       Local bi-impulsive optimizer settings.
        annealing:       Global search settings.
        patched_conics:  Patched-conic stepper settings.
    """
    propagator: PropagatorConfig = field(default_factory=PropagatorConfig)
    lambert: LambertConfig = field(default_factory=LambertConfig)
    root_finder: RootFinderConfig = field(default_factory=RootFinderConfig)
    transfer_search: TransferSearchConfig = field(default_factory=TransferSearchConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    annealing: AnnealingConfig = field(default_factory=AnnealingConfig)
    patched_conics: PatchedConicConfig = field(default_factory=PatchedConicConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SolverConfig':
        """
        Build a configuration from a (possibly partial) nested dictionary.

        Missing sections and keys keep their defaults.  Unknown sections or
        keys are rejected so that typos in a YAML file do not pass silently.

        Raises:
            InvalidInputError: On unknown keys or non-mapping sections.
        """
        config = cls()
        if not data:
            return config
        if not isinstance(data, dict):
            raise InvalidInputError(
                f"Configuration must be a mapping, got {type(data).__name__}"
            )

        known = {f.name for f in fields(cls)}
        for section_name, values in data.items():
            if section_name not in known:
                raise InvalidInputError(
                    f"Unknown configuration section '{section_name}'. "
                    f"Valid: {sorted(known)}"
                )
            section = getattr(config, section_name)
            if values is None:
                continue
            if not isinstance(values, dict):
                raise InvalidInputError(
                    f"Section '{section_name}' must be a mapping"
                )
            section_keys = {f.name for f in fields(section)}
            for key, value in values.items():
                if key not in section_keys:
                    raise InvalidInputError(
                        f"Unknown key '{section_name}.{key}'. "
                        f"Valid: {sorted(section_keys)}"
                    )
                setattr(section, key, value)
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Nested dictionary view (the YAML file layout)."""
        return asdict(self)


def load_config(config_path: Optional[str] = None) -> SolverConfig:
    """
    Load solver configuration from a YAML file.

    Args:
        config_path: Path to YAML config.  None returns the defaults.

    Returns:
        SolverConfig with the file's values merged over the defaults.
    """
    if config_path is None:
        return SolverConfig()

    logger.info("Loading configuration from: %s", config_path)
    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)
    return SolverConfig.from_dict(data)


def section_or_default(config, section_type):
    """
    Resolve the constructor argument of a solver class.

    Accepts a full SolverConfig, the matching section, or None.
    """
    if config is None:
        return section_type()
    if isinstance(config, section_type):
        return config
    if isinstance(config, SolverConfig):
        for f in fields(SolverConfig):
            section = getattr(config, f.name)
            if isinstance(section, section_type):
                return section
    if is_dataclass(config):
        raise InvalidInputError(
            f"Expected SolverConfig or {section_type.__name__}, "
            f"got {type(config).__name__}"
        )
    raise InvalidInputError(f"Unsupported configuration object: {config!r}")
