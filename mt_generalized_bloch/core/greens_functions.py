# mt_generalized_bloch/core/greens_functions.py
"""
Green's functions of the semi-solid spin pool.

The time-domain functions take the dimensionless lag kappa = (t - tau) / T2s and
describe how the longitudinal magnetization at time tau contributes to the
saturation at time t. The frequency-domain lineshapes g(omega0) are used by
Henkelman's steady state and Graham's single-frequency model.
"""
import functools
import logging

import numpy as np
from scipy.integrate import quad
from scipy.interpolate import CubicSpline
from scipy.special import erf

from mt_generalized_bloch.core.constants import (
    DOMAIN_RELATIVE_SLACK,
    GREENS_INTERPOLATION_SAMPLES,
    MAGIC_ANGLE_COS,
    QUAD_EPSABS,
    QUAD_EPSREL,
    QUAD_LIMIT,
)
from mt_generalized_bloch.core.exceptions import DomainError

logger = logging.getLogger(__name__)


def _integrate_over_orientation(integrand):
    """Integrates integrand(ct) over ct in [0, 1], splitting at the magic angle."""
    lower, _ = quad(integrand, 0.0, MAGIC_ANGLE_COS, epsabs=QUAD_EPSABS, epsrel=QUAD_EPSREL, limit=QUAD_LIMIT)
    upper, _ = quad(integrand, MAGIC_ANGLE_COS, 1.0, epsabs=QUAD_EPSABS, epsrel=QUAD_EPSREL, limit=QUAD_LIMIT)
    return lower + upper


def _elementwise(func, x):
    """Applies a scalar function to a scalar or an array, preserving the input's shape."""
    x_arr = np.asarray(x, dtype=float)
    if x_arr.ndim == 0:
        return func(float(x_arr))
    return np.array([func(float(v)) for v in x_arr.ravel()]).reshape(x_arr.shape)


# --- Time domain ---

def greens_lorentzian(kappa):
    return np.exp(-kappa)


def greens_gaussian(kappa):
    return np.exp(-kappa**2 / 2)


def greens_superlorentzian(kappa):
    """Super-Lorentzian Green's function, integral of exp(-kappa^2 (3ct^2-1)^2 / 8) over ct."""
    def scalar(k):
        return _integrate_over_orientation(lambda ct: np.exp(-k**2 * (3 * ct**2 - 1)**2 / 8))
    return _elementwise(scalar, kappa)


def dG_o_dT2s_x_T2s_lorentzian(kappa):
    """T2s * dG/dT2s of the Lorentzian Green's function."""
    return kappa * np.exp(-kappa)


def dG_o_dT2s_x_T2s_gaussian(kappa):
    return kappa**2 * np.exp(-kappa**2 / 2)


def dG_o_dT2s_x_T2s_superlorentzian(kappa):
    def scalar(k):
        return _integrate_over_orientation(
            lambda ct: np.exp(-k**2 * (3 * ct**2 - 1)**2 / 8) * k**2 * (3 * ct**2 - 1)**2 / 4)
    return _elementwise(scalar, kappa)


# --- Frequency domain ---

def lineshape_lorentzian(omega0, T2s):
    return T2s / np.pi / (1 + (T2s * omega0)**2)


def lineshape_gaussian(omega0, T2s):
    return T2s / np.sqrt(2 * np.pi) * np.exp(-(T2s * omega0)**2 / 2)


def lineshape_superlorentzian(omega0, T2s):
    """
    Super-Lorentzian absorption lineshape in s/rad.

    The lineshape diverges on resonance; omega0 = 0 returns inf.
    """
    def scalar(w0):
        if w0 == 0:
            return np.inf
        return np.sqrt(2 / np.pi) * T2s * _integrate_over_orientation(
            lambda ct: np.exp(-2 * (T2s * w0 / abs(3 * ct**2 - 1))**2) / abs(3 * ct**2 - 1))
    return _elementwise(scalar, omega0)


def _f_PSD_integrand(ct, tau):
    u = abs(1 - 3 * ct**2)
    if u * tau < 1e-6:
        return tau / 2  # limit of the integrand at the magic angle
    return (4 / (tau * u) * np.expm1(-tau**2 * u**2 / 8) + np.sqrt(2 * np.pi) * erf(tau * u / (2 * np.sqrt(2)))) / u


def _df_PSD_integrand(ct, tau):
    u = abs(1 - 3 * ct**2)
    if u * tau < 1e-6:
        return 0.0
    return 8 / (tau * u**2) * np.expm1(-tau**2 * u**2 / 8) + np.sqrt(2 * np.pi) * erf(tau * u / np.sqrt(8)) / u


@functools.lru_cache(maxsize=8192)
def _f_PSD(tau):
    return _integrate_over_orientation(lambda ct: _f_PSD_integrand(ct, tau))


@functools.lru_cache(maxsize=8192)
def _df_PSD(tau):
    return _integrate_over_orientation(lambda ct: _df_PSD_integrand(ct, tau))


def f_PSD(tau):
    """
    Super-Lorentzian power spectral density averaged over a rectangular pulse.

    Graham's spectral saturation rate of a pulse of duration TRF is
    Rrf = f_PSD(TRF / T2s) * B1^2 * omega1^2 * T2s.

    Args:
        tau (float or np.ndarray): Dimensionless pulse duration TRF / T2s (> 0).
    """
    if np.any(np.asarray(tau) <= 0):
        raise ValueError("f_PSD requires a positive pulse duration.")
    return _elementwise(_f_PSD, tau)


def df_PSD(tau):
    """f_PSD(tau) - tau * f_PSD'(tau); T2s-derivative of Graham's rate up to the factor B1^2 omega1^2."""
    if np.any(np.asarray(tau) <= 0):
        raise ValueError("df_PSD requires a positive pulse duration.")
    return _elementwise(_df_PSD, tau)


class InterpolatedGreensFunction:
    """
    Cubic-spline surrogate of a Green's function on a bounded lag interval.

    Calls follow the signature of the wrapped function. Querying outside
    [kappa_min, kappa_max] raises DomainError.
    """

    def __init__(self, func, kappa_min, kappa_max, n_samples=GREENS_INTERPOLATION_SAMPLES):
        if not kappa_max > kappa_min:
            raise ValueError(f"kappa_max ({kappa_max}) must exceed kappa_min ({kappa_min}).")
        if n_samples < 1000:
            raise ValueError(f"n_samples must be at least 1000, got {n_samples}.")
        self.func = func
        self.kappa_min = float(kappa_min)
        self.kappa_max = float(kappa_max)
        self.nodes = np.linspace(self.kappa_min, self.kappa_max, n_samples)
        self.values = np.asarray(func(self.nodes), dtype=float)
        self._spline = CubicSpline(self.nodes, self.values)
        self._slack = DOMAIN_RELATIVE_SLACK * max(abs(self.kappa_min), abs(self.kappa_max), 1.0)

    def __call__(self, kappa):
        k = np.asarray(kappa, dtype=float)
        if np.any(k < self.kappa_min - self._slack) or np.any(k > self.kappa_max + self._slack):
            raise DomainError(
                f"Green's function queried at kappa outside its support "
                f"[{self.kappa_min:g}, {self.kappa_max:g}]: min {np.min(k):g}, max {np.max(k):g}.")
        k = np.clip(k, self.kappa_min, self.kappa_max)
        out = self._spline(k)
        return float(out) if out.ndim == 0 else out

    def __repr__(self):
        name = getattr(self.func, '__name__', repr(self.func))
        return f"InterpolatedGreensFunction({name}, [{self.kappa_min:g}, {self.kappa_max:g}], n={len(self.nodes)})"


def interpolate_greens_function(func, kappa_min, kappa_max, n_samples=GREENS_INTERPOLATION_SAMPLES):
    """
    Samples a Green's function and returns a cheap spline surrogate.

    Args:
        func (callable): Exact Green's function of the dimensionless lag.
        kappa_min (float): Lower end of the support.
        kappa_max (float): Upper end of the support, typically TRF_max / T2s_min.
        n_samples (int, optional): Number of equidistant samples.

    Returns:
        InterpolatedGreensFunction: Surrogate valid on [kappa_min, kappa_max].
    """
    logger.debug("Interpolating %s on [%g, %g] with %d samples",
                 getattr(func, '__name__', func), kappa_min, kappa_max, n_samples)
    return InterpolatedGreensFunction(func, kappa_min, kappa_max, n_samples)


GREENS_FUNCTIONS = {
    'lorentzian': (greens_lorentzian, dG_o_dT2s_x_T2s_lorentzian, lineshape_lorentzian),
    'gaussian': (greens_gaussian, dG_o_dT2s_x_T2s_gaussian, lineshape_gaussian),
    'superlorentzian': (greens_superlorentzian, dG_o_dT2s_x_T2s_superlorentzian, lineshape_superlorentzian),
}

# Functions with a closed form do not need to be interpolated
CLOSED_FORM_GREENS = (greens_lorentzian, greens_gaussian,
                      dG_o_dT2s_x_T2s_lorentzian, dG_o_dT2s_x_T2s_gaussian)


def lineshape_for(name):
    try:
        return GREENS_FUNCTIONS[name][2]
    except KeyError:
        raise ValueError(f"Unknown lineshape '{name}'. Choose from {list(GREENS_FUNCTIONS)}.") from None


def greens_function_pair(name, kappa_max, with_derivative=True, n_samples=GREENS_INTERPOLATION_SAMPLES):
    """
    Returns the Green's function (and optionally its T2s-derivative) for a named lineshape.

    Closed-form functions are returned as they are; the super-Lorentzian is
    interpolated on [0, kappa_max].

    Args:
        name (str): 'lorentzian', 'gaussian' or 'superlorentzian'.
        kappa_max (float): Largest lag that will be queried.
        with_derivative (bool, optional): Also build T2s * dG/dT2s. Defaults to True.
        n_samples (int, optional): Samples used for interpolation.

    Returns:
        tuple: (g, dG_o_dT2s_x_T2s); the second entry is None if not requested.
    """
    if name not in GREENS_FUNCTIONS:
        raise ValueError(f"Unknown lineshape '{name}'. Choose from {list(GREENS_FUNCTIONS)}.")
    g, dg, _ = GREENS_FUNCTIONS[name]
    if g not in CLOSED_FORM_GREENS:
        g = interpolate_greens_function(g, 0.0, kappa_max, n_samples)
        dg = interpolate_greens_function(dg, 0.0, kappa_max, n_samples) if with_derivative else None
    elif not with_derivative:
        dg = None
    return g, dg
