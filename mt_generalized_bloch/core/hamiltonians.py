# mt_generalized_bloch/core/hamiltonians.py
"""
Right-hand sides of the magnetization-transfer equations of motion.

All evaluators return a new array dm/dt for the state m = [xf, yf, zf, zs, 1]
extended by one block of 5 entries per requested gradient. Memory models take a
read-only history callable history(t, idx) as third argument and can be passed
directly to `solve_dde`; the others are plain ODE right-hand sides for `solve_ode`.
"""
import logging
from enum import Enum
from typing import Callable, NamedTuple, Optional

import numpy as np
from scipy.integrate import dblquad, quad

from mt_generalized_bloch.core.constants import QUAD_EPSABS, QUAD_EPSREL, QUAD_LIMIT
from mt_generalized_bloch.core.greens_functions import df_PSD, f_PSD
from mt_generalized_bloch.core.gradients import (
    INVERSION_GRADIENTS,
    CorrectionTerms,
    GradKind,
    ModelContext,
    add_partial_derivative,
    parse_grad_list,
)

logger = logging.getLogger(__name__)


class PulseType(Enum):
    NORMAL = 'normal'
    INVERSION = 'inversion'


class GBlochParameters(NamedTuple):
    """
    Parameters of the coupled two-pool generalized Bloch model.

    omega1 is the Rabi frequency in rad/s or a callable omega1(t); phase is an
    optional callable phi(t) that replaces omega0 * t for swept pulses.
    quad_atol and quad_rtol are the tolerances of the memory integrals; see
    SolverConfig.quad_tolerances.
    """
    omega1: object
    B1: float
    omega0: float
    m0s: float
    R1f: float
    R2f: float
    Rx: float
    R1s: float
    T2s: float
    g: Callable
    dG_o_dT2s_x_T2s: Optional[Callable] = None
    phase: Optional[Callable] = None
    quad_atol: float = QUAD_EPSABS
    quad_rtol: float = QUAD_EPSREL


class IsolatedPoolParameters(NamedTuple):
    omega1: object
    B1: float
    omega0: float
    R1s: float
    T2s: float
    g: Callable
    phase: Optional[Callable] = None
    quad_atol: float = QUAD_EPSABS
    quad_rtol: float = QUAD_EPSREL


class FreePrecessionParameters(NamedTuple):
    omega0: float
    m0s: float
    R1f: float
    R2f: float
    Rx: float
    R1s: float


class LinearParameters(NamedTuple):
    """Coupled model with the semi-solid saturation replaced by the rate Rrf."""
    omega1: float
    B1: float
    omega0: float
    m0s: float
    R1f: float
    R2f: float
    Rx: float
    R1s: float
    Rrf: float
    dRrf_dB1: float = 0.0
    dRrf_dT2s: float = 0.0


class GrahamParameters(NamedTuple):
    omega1: float
    B1: float
    omega0: float
    TRF: float
    m0s: float
    R1f: float
    R2f: float
    Rx: float
    R1s: float
    T2s: float


class SuperLorentzianParameters(NamedTuple):
    """Coupled model with the super-Lorentzian kernel integrated directly; n_T2s bounds the exact part."""
    omega1: float
    B1: float
    omega0: float
    m0s: float
    R1f: float
    R2f: float
    Rx: float
    R1s: float
    T2s: float
    n_T2s: float
    quad_atol: float = QUAD_EPSABS
    quad_rtol: float = QUAD_EPSREL


def validate_tissue_parameters(m0s, R1f, R2f, Rx, R1s, T2s):
    """Raises ValueError unless 0 <= m0s <= 1 and all rates and T2s are strictly positive."""
    if not 0 <= m0s <= 1:
        raise ValueError(f"m0s must lie in [0, 1], got {m0s}.")
    for name, value in (('R1f', R1f), ('R2f', R2f), ('Rx', Rx), ('R1s', R1s), ('T2s', T2s)):
        if not value > 0:
            raise ValueError(f"{name} must be strictly positive, got {value}.")


# --- Memory integrals ---

def _memory_integral(kernel, weight, zs_of, t, p):
    """int_0^t weight(x) kernel((t - x) / T2s) zs(x) dx, evaluated in the lag kappa = (t - x) / T2s."""
    if t <= 0:
        return 0.0
    T2s = p.T2s

    def integrand(kappa):
        x = t - T2s * kappa
        return kernel(kappa) * weight(x) * zs_of(x)

    value, _ = quad(integrand, 0.0, t / T2s, epsabs=p.quad_atol, epsrel=p.quad_rtol, limit=QUAD_LIMIT)
    return T2s * value


def _rf_amplitude(omega1):
    return omega1 if callable(omega1) else (lambda x: omega1)


def _rf_angle(p):
    """Angle that splits the RF into x and y components, or None on resonance."""
    if p.phase is not None:
        return p.phase
    if p.omega0 != 0:
        omega0 = p.omega0
        return lambda x: omega0 * x
    return None


def _xy_memory(p, kernel, zs_of, t):
    """
    Sum xs + ys of the semi-solid transverse memory terms.

    xs = sin(theta(t)) int omega1(x) sin(theta(x)) G zs dx and
    ys = cos(theta(t)) int omega1(x) cos(theta(x)) G zs dx.
    The saturation rate is B1^2 * omega1(t) * (xs + ys).
    """
    w1 = _rf_amplitude(p.omega1)
    theta = _rf_angle(p)
    if theta is None:
        return _memory_integral(kernel, w1, zs_of, t, p)
    xs = np.sin(theta(t)) * _memory_integral(kernel, lambda x: w1(x) * np.sin(theta(x)), zs_of, t, p)
    ys = np.cos(theta(t)) * _memory_integral(kernel, lambda x: w1(x) * np.cos(theta(x)), zs_of, t, p)
    return xs + ys


def _xy_memory_domega0(p, zs_of, t):
    """Derivative of xs + ys with respect to omega0 (time-weighted memory integrals)."""
    w1 = _rf_amplitude(p.omega1)
    w0 = p.omega0
    ct, st = np.cos(w0 * t), np.sin(w0 * t)
    xs = ct * t * _memory_integral(p.g, lambda x: w1(x) * np.sin(w0 * x), zs_of, t, p)
    xs += st * _memory_integral(p.g, lambda x: w1(x) * np.cos(w0 * x) * x, zs_of, t, p)
    ys = -st * t * _memory_integral(p.g, lambda x: w1(x) * np.cos(w0 * x), zs_of, t, p)
    ys -= ct * _memory_integral(p.g, lambda x: w1(x) * np.sin(w0 * x) * x, zs_of, t, p)
    return xs + ys


def _rf_components(p, t):
    """Returns (omega1(t), omega1x, omega1y) for the current instant."""
    w1 = p.omega1(t) if callable(p.omega1) else p.omega1
    if p.phase is None:
        return w1, w1, 0.0
    phi = p.phase(t)
    return w1, w1 * np.cos(phi), w1 * np.sin(phi)


def _coupled_block(m, omega0, b1w1x, b1w1y, m0s, R1f, R2f, Rx, R1s, saturation):
    """Two-pool Bloch-McConnell block; `saturation` is the loss term of zs due to the RF."""
    xf, yf, zf, zs, one = m
    return np.array([
        -R2f * xf - omega0 * yf + b1w1x * zf,
        omega0 * xf - R2f * yf - b1w1y * zf,
        -b1w1x * xf + b1w1y * yf - (R1f + Rx * m0s) * zf + Rx * (1 - m0s) * zs + (1 - m0s) * R1f * one,
        -saturation + Rx * m0s * zf - (R1s + Rx * (1 - m0s)) * zs + m0s * R1s * one,
        0.0,
    ])


def _check_state(m, grad_list):
    n_blocks = len(grad_list) + 1
    if len(m) != 5 * n_blocks:
        raise ValueError(f"State has {len(m)} entries, expected {5 * n_blocks} for {len(grad_list)} gradients.")


# --- Generalized Bloch ---

def apply_hamiltonian_gbloch(t, m, history, p, grad_list=(), pulse_type=PulseType.NORMAL):
    """
    Generalized Bloch equations of the coupled two-pool system.

    Args:
        t (float): Time in seconds.
        m (np.ndarray): State [xf, yf, zf, zs, 1] followed by one block per gradient.
        history (callable): history(t, idx) returning the solved state component.
        p (GBlochParameters): Model parameters. `dG_o_dT2s_x_T2s` is required for
            a T2s gradient.
        grad_list (sequence, optional): GradKind members (or their values), one per block.
        pulse_type (PulseType, optional): With PulseType.INVERSION only the T2s and
            B1 corrections are added to the gradient blocks.

    Returns:
        np.ndarray: dm/dt with the same length as m.
    """
    grad_list = parse_grad_list(grad_list)
    m = np.asarray(m, dtype=float)
    _check_state(m, grad_list)
    if p.phase is not None and GradKind.OMEGA0 in grad_list:
        raise ValueError("An omega0 gradient is undefined for phase-modulated pulses.")

    w1_t, w1x, w1y = _rf_components(p, t)
    B1 = p.B1
    dm = np.empty_like(m)

    base_zs = lambda x: history(x, 3)
    base_memory = _xy_memory(p, p.g, base_zs, t)
    omega0 = 0.0 if p.phase is not None else p.omega0
    for i in range(len(grad_list) + 1):
        s = slice(5 * i, 5 * i + 5)
        memory = base_memory if i == 0 else _xy_memory(p, p.g, lambda x, idx=5 * i + 3: history(x, idx), t)
        dm[s] = _coupled_block(m[s], omega0, B1 * w1x, B1 * w1y, p.m0s, p.R1f, p.R2f, p.Rx, p.R1s,
                               B1**2 * w1_t * memory)

    for i, kind in enumerate(grad_list, start=1):
        if pulse_type is PulseType.INVERSION and kind not in INVERSION_GRADIENTS:
            continue
        sat = {}
        if kind is GradKind.B1:
            sat['sat_B1'] = 2 * B1 * w1_t * base_memory
        elif kind is GradKind.T2S:
            if p.dG_o_dT2s_x_T2s is None:
                raise ValueError("A T2s gradient requires dG_o_dT2s_x_T2s.")
            sat['sat_T2s'] = B1**2 * w1_t * _xy_memory(p, p.dG_o_dT2s_x_T2s, base_zs, t) / p.T2s
        elif kind is GradKind.OMEGA0:
            sat['sat_omega0'] = B1**2 * w1_t * _xy_memory_domega0(p, base_zs, t)
        terms = CorrectionTerms(ModelContext.GBLOCH, p.m0s, p.R1f, p.R1s, p.Rx, w1x, w1y, **sat)
        add_partial_derivative(dm[5 * i:5 * i + 5], m[:5], kind, terms)
    return dm


def apply_hamiltonian_gbloch_inversion(t, m, history, p, grad_list=()):
    """Generalized Bloch equations of an inversion pulse (gradient corrections for T2s and B1 only)."""
    return apply_hamiltonian_gbloch(t, m, history, p, grad_list, PulseType.INVERSION)


def apply_hamiltonian_gbloch_isolated(t, m, history, p):
    """
    Generalized Bloch equation of an isolated semi-solid pool.

    The state is the single component [zs]; relaxation drives it back to 1.

    Args:
        t (float): Time in seconds.
        m (np.ndarray): [zs].
        history (callable): history(t, idx).
        p (IsolatedPoolParameters): Model parameters.
    """
    w1_t = p.omega1(t) if callable(p.omega1) else p.omega1
    memory = _xy_memory(p, p.g, lambda x: history(x, 0), t)
    return np.array([-p.B1**2 * w1_t * memory + p.R1s * (1 - m[0])])


def apply_hamiltonian_gbloch_superlorentzian(t, m, history, p):
    """
    Generalized Bloch equations with the super-Lorentzian kernel integrated directly.

    The most recent p.n_T2s relaxation times are integrated as a double integral
    over the lag and the orientation cos(theta); older history uses the kernel's
    asymptote sqrt(2 pi / 3) / kappa. Only on-resonance, constant omega1 pulses
    are supported.
    """
    if p.omega0 != 0:
        raise ValueError("The direct super-Lorentzian evaluator only supports omega0 = 0.")
    T2s = p.T2s
    t_near = max(0.0, t - p.n_T2s * T2s)

    near = 0.0
    if t > 0:
        near, _ = dblquad(
            lambda ct, x: np.exp(-((t - x) / T2s)**2 * (3 * ct**2 - 1)**2 / 8) * history(x, 3),
            t_near, t, 0.0, 1.0, epsabs=p.quad_atol, epsrel=p.quad_rtol)
    tail = 0.0
    if t_near > 0:
        tail, _ = quad(lambda x: history(x, 3) / (t - x), 0.0, t_near,
                       epsabs=p.quad_atol, epsrel=p.quad_rtol, limit=QUAD_LIMIT)
        tail *= T2s * np.sqrt(2 * np.pi / 3)

    saturation = p.B1**2 * p.omega1**2 * (near + tail)
    return _coupled_block(np.asarray(m, dtype=float), p.omega0, p.B1 * p.omega1, 0.0,
                          p.m0s, p.R1f, p.R2f, p.Rx, p.R1s, saturation)


# --- Free precession, linear and Graham models ---

def apply_hamiltonian_freeprecession(t, m, p, grad_list=()):
    """Bloch-McConnell free precession of the two-pool system (no RF)."""
    grad_list = parse_grad_list(grad_list)
    m = np.asarray(m, dtype=float)
    _check_state(m, grad_list)
    dm = np.empty_like(m)
    for i in range(len(grad_list) + 1):
        s = slice(5 * i, 5 * i + 5)
        dm[s] = _coupled_block(m[s], p.omega0, 0.0, 0.0, p.m0s, p.R1f, p.R2f, p.Rx, p.R1s, 0.0)
    terms = CorrectionTerms(ModelContext.FREE_PRECESSION, p.m0s, p.R1f, p.R1s, p.Rx)
    for i, kind in enumerate(grad_list, start=1):
        add_partial_derivative(dm[5 * i:5 * i + 5], m[:5], kind, terms)
    return dm


def apply_hamiltonian_linear(t, m, p, grad_list=(), pulse_type=PulseType.NORMAL):
    """
    Coupled two-pool model with a constant semi-solid saturation rate p.Rrf.

    B1 and T2s gradients use p.dRrf_dB1 and p.dRrf_dT2s.
    """
    grad_list = parse_grad_list(grad_list)
    m = np.asarray(m, dtype=float)
    _check_state(m, grad_list)
    b1w1 = p.B1 * p.omega1
    dm = np.empty_like(m)
    for i in range(len(grad_list) + 1):
        s = slice(5 * i, 5 * i + 5)
        dm[s] = _coupled_block(m[s], p.omega0, b1w1, 0.0, p.m0s, p.R1f, p.R2f, p.Rx, p.R1s, p.Rrf * m[5 * i + 3])
    for i, kind in enumerate(grad_list, start=1):
        if pulse_type is PulseType.INVERSION and kind not in INVERSION_GRADIENTS:
            continue
        terms = CorrectionTerms(ModelContext.LINEAR, p.m0s, p.R1f, p.R1s, p.Rx, p.omega1, 0.0,
                                sat_B1=p.dRrf_dB1 * m[3], sat_T2s=p.dRrf_dT2s * m[3])
        add_partial_derivative(dm[5 * i:5 * i + 5], m[:5], kind, terms)
    return dm


def graham_linear_parameters(p):
    """Converts GrahamParameters into LinearParameters with Graham's spectral saturation rate."""
    tau = p.TRF / p.T2s
    f = f_PSD(tau)
    return LinearParameters(
        p.omega1, p.B1, p.omega0, p.m0s, p.R1f, p.R2f, p.Rx, p.R1s,
        Rrf=f * p.B1**2 * p.omega1**2 * p.T2s,
        dRrf_dB1=2 * f * p.B1 * p.omega1**2 * p.T2s,
        dRrf_dT2s=df_PSD(tau) * p.B1**2 * p.omega1**2,
    )


def apply_hamiltonian_graham_superlorentzian(t, m, p, grad_list=(), pulse_type=PulseType.NORMAL):
    """Graham's spectral model: super-Lorentzian saturation rate f_PSD(TRF/T2s) B1^2 omega1^2 T2s."""
    return apply_hamiltonian_linear(t, m, graham_linear_parameters(p), grad_list, pulse_type)


def apply_hamiltonian_graham_superlorentzian_inversionpulse(t, m, p, grad_list=()):
    return apply_hamiltonian_graham_superlorentzian(t, m, p, grad_list, PulseType.INVERSION)


# --- Sled ---

def _unit_zs(x):
    return 1.0


def apply_hamiltonian_sled(t, m, p):
    """
    Sled's model: the semi-solid saturation rate is the memory integral of the
    Green's function alone, so the equations are an ODE.

    Args:
        t (float): Time in seconds.
        m (np.ndarray): [zs] for IsolatedPoolParameters or [xf, yf, zf, zs, 1]
            for GBlochParameters.
        p (IsolatedPoolParameters or GBlochParameters): Model parameters.
    """
    m = np.asarray(m, dtype=float)
    w1_t, w1x, w1y = _rf_components(p, t)
    rate = p.B1**2 * w1_t * _xy_memory(p, p.g, _unit_zs, t)
    if isinstance(p, IsolatedPoolParameters):
        return np.array([-rate * m[0] + p.R1s * (1 - m[0])])
    omega0 = 0.0 if p.phase is not None else p.omega0
    return _coupled_block(m, omega0, p.B1 * w1x, p.B1 * w1y, p.m0s, p.R1f, p.R2f, p.Rx, p.R1s, rate * m[3])
