# mt_generalized_bloch/core/__init__.py

from .config import SolverConfig, DEFAULT_CONFIG, load_config
from .exceptions import DomainError, IntegrationError, EchoTimeMismatchError, SaturationFitError
from .greens_functions import (
    greens_lorentzian,
    greens_gaussian,
    greens_superlorentzian,
    dG_o_dT2s_x_T2s_lorentzian,
    dG_o_dT2s_x_T2s_gaussian,
    dG_o_dT2s_x_T2s_superlorentzian,
    lineshape_lorentzian,
    lineshape_gaussian,
    lineshape_superlorentzian,
    f_PSD,
    df_PSD,
    InterpolatedGreensFunction,
    interpolate_greens_function,
    greens_function_pair
)
from .history import History, InitialHistory, SolutionHistory
from .integrators import Trajectory, solve_ode, solve_dde
from .gradients import GradKind, ModelContext, add_partial_derivative
from .hamiltonians import (
    PulseType,
    GBlochParameters,
    IsolatedPoolParameters,
    FreePrecessionParameters,
    LinearParameters,
    GrahamParameters,
    SuperLorentzianParameters,
    apply_hamiltonian_gbloch,
    apply_hamiltonian_gbloch_inversion,
    apply_hamiltonian_gbloch_isolated,
    apply_hamiltonian_gbloch_superlorentzian,
    apply_hamiltonian_freeprecession,
    apply_hamiltonian_linear,
    apply_hamiltonian_graham_superlorentzian,
    apply_hamiltonian_graham_superlorentzian_inversionpulse,
    apply_hamiltonian_sled
)

__all__ = [
    # config
    'SolverConfig',
    'DEFAULT_CONFIG',
    'load_config',
    # exceptions
    'DomainError',
    'IntegrationError',
    'EchoTimeMismatchError',
    'SaturationFitError',
    # greens_functions
    'greens_lorentzian',
    'greens_gaussian',
    'greens_superlorentzian',
    'dG_o_dT2s_x_T2s_lorentzian',
    'dG_o_dT2s_x_T2s_gaussian',
    'dG_o_dT2s_x_T2s_superlorentzian',
    'lineshape_lorentzian',
    'lineshape_gaussian',
    'lineshape_superlorentzian',
    'f_PSD',
    'df_PSD',
    'InterpolatedGreensFunction',
    'interpolate_greens_function',
    'greens_function_pair',
    # history / integrators
    'History',
    'InitialHistory',
    'SolutionHistory',
    'Trajectory',
    'solve_ode',
    'solve_dde',
    # gradients
    'GradKind',
    'ModelContext',
    'add_partial_derivative',
    # hamiltonians
    'PulseType',
    'GBlochParameters',
    'IsolatedPoolParameters',
    'FreePrecessionParameters',
    'LinearParameters',
    'GrahamParameters',
    'SuperLorentzianParameters',
    'apply_hamiltonian_gbloch',
    'apply_hamiltonian_gbloch_inversion',
    'apply_hamiltonian_gbloch_isolated',
    'apply_hamiltonian_gbloch_superlorentzian',
    'apply_hamiltonian_freeprecession',
    'apply_hamiltonian_linear',
    'apply_hamiltonian_graham_superlorentzian',
    'apply_hamiltonian_graham_superlorentzian_inversionpulse',
    'apply_hamiltonian_sled'
]
