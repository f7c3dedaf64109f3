# mt_generalized_bloch/core/config.py
"""Solver configuration shared by the integrators, the R2sl table builder and the simulators."""
import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Optional

import yaml

from mt_generalized_bloch.core import constants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolverConfig:
    """
    Numerical settings for a simulation run.

    Args:
        method (str): Runge-Kutta scheme used by scipy ('DOP853', 'RK45', ...).
        rtol (float): Relative tolerance of the ODE/DDE integrator.
        atol (float): Absolute tolerance of the ODE/DDE integrator.
        greens_samples (int): Number of samples of an interpolated Green's function.
        r2sl_grid_size (int): Number of grid points per axis of the R2sl table.
        r2sl_workers (int, optional): Worker threads for the R2sl table. None lets
            the executor pick.
        echo_time_rtol (float): Allowed relative deviation of a readout from the echo time.
    """
    method: str = constants.DEFAULT_SOLVER_METHOD
    rtol: float = constants.DEFAULT_RTOL
    atol: float = constants.DEFAULT_ATOL
    greens_samples: int = constants.GREENS_INTERPOLATION_SAMPLES
    r2sl_grid_size: int = constants.DEFAULT_R2SL_GRID_SIZE
    r2sl_workers: Optional[int] = None
    echo_time_rtol: float = constants.ECHO_TIME_RELATIVE_TOLERANCE

    def __post_init__(self):
        if self.rtol <= 0 or self.atol <= 0:
            raise ValueError("rtol and atol must be positive.")
        if self.greens_samples < 1000:
            raise ValueError(f"greens_samples must be at least 1000, got {self.greens_samples}.")
        if self.r2sl_grid_size < constants.MIN_R2SL_GRID_SIZE:
            raise ValueError(
                f"r2sl_grid_size must be at least {constants.MIN_R2SL_GRID_SIZE}, got {self.r2sl_grid_size}.")
        if self.r2sl_workers is not None and self.r2sl_workers < 1:
            raise ValueError("r2sl_workers must be a positive integer or None.")

    def quad_tolerances(self):
        """
        (epsabs, epsrel) of the memory-integral quadrature.

        Follows atol and rtol when they are tighter than the quadrature defaults
        so that the memory terms do not limit the accuracy of the DDE solution.
        """
        return min(constants.QUAD_EPSABS, self.atol), min(constants.QUAD_EPSREL, self.rtol)

    def replace(self, **changes):
        """Returns a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)

DEFAULT_CONFIG = SolverConfig()


def config_from_dict(params: dict) -> SolverConfig:
    """Builds a SolverConfig from a plain dictionary, rejecting unknown keys."""
    known = {f.name for f in dataclasses.fields(SolverConfig)}
    unknown = set(params) - known
    if unknown:
        raise ValueError(f"Unknown solver configuration keys: {sorted(unknown)}")
    return SolverConfig(**params)


def load_config(path: str) -> SolverConfig:
    """
    Loads solver settings from a YAML or JSON file.

    The file holds a flat mapping of SolverConfig field names to values. A
    top-level 'solver' section is also accepted.

    Args:
        path (str): Path to a .yaml/.yml or .json file.

    Returns:
        SolverConfig: The parsed configuration.
    """
    with open(path, 'r') as f:
        if path.endswith('.yaml') or path.endswith('.yml'):
            params = yaml.safe_load(f)
        elif path.endswith('.json'):
            params = json.load(f)
        else:
            raise ValueError(f"Unsupported configuration file type: {path}")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping.")
    if 'solver' in params:
        params = params['solver']
    logger.debug("Loaded solver configuration from %s: %s", path, params)
    return config_from_dict(params)
