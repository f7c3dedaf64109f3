# mt_generalized_bloch/saturation/r2sl.py
"""
Linearized saturation rate R2sl of the semi-solid pool.

The generalized Bloch equation of an isolated semi-solid pool is solved once on
a grid of dimensionless pulse durations tau = TRF/T2s and effective flip angles
B1*alpha. For each cell the relaxation rate rho of a damped-rotation model that
yields the same zs at the end of the pulse is found by root finding, and the
table is fitted with a bicubic spline. Pulse-train simulations then evaluate
R2sl(TRF, alpha, B1, T2s) = f(TRF/T2s, B1*alpha) / T2s and its derivatives
algebraically.
"""
import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from scipy.interpolate import RectBivariateSpline
from scipy.optimize import root_scalar

from mt_generalized_bloch.core.config import DEFAULT_CONFIG
from mt_generalized_bloch.core.constants import (
    DOMAIN_RELATIVE_SLACK,
    MIN_R2SL_GRID_SIZE,
    R2SL_BRACKET_GRID,
    R2SL_ZERO_FLIP_FRACTION,
)
from mt_generalized_bloch.core.exceptions import DomainError, SaturationFitError
from mt_generalized_bloch.core.gradients import GradKind, parse_grad_list
from mt_generalized_bloch.core.greens_functions import (
    CLOSED_FORM_GREENS,
    greens_superlorentzian,
    interpolate_greens_function,
)
from mt_generalized_bloch.core.hamiltonians import IsolatedPoolParameters, apply_hamiltonian_gbloch_isolated
from mt_generalized_bloch.core.integrators import solve_dde

logger = logging.getLogger(__name__)


def rotation_model(a, alpha):
    """
    zs after a rotation by `alpha` damped with the dimensionless rate a = rho * tau.

    Returns:
        tuple: (Z, dZ/da, dZ/dalpha).
    """
    s = np.sqrt(complex(a**2 - 4 * alpha**2))
    if abs(s) < 1e-10:
        s = 1e-10 + 0j  # removable singularity at critical damping
    # exp(-a/2) * cosh(s/2) and exp(-a/2) * sinh(s/2) without overflow for large a
    ep = np.exp((s - a) / 2)
    em = np.exp(-(s + a) / 2)
    ec = (ep + em) / 2
    eh = (ep - em) / 2
    z = ec + a * eh / s
    dz_da = 2 * alpha**2 * (s * ec - 2 * eh) / s**3
    dz_dalpha = -2 * alpha * eh / s - 2 * a * alpha * ec / s**2 + 4 * a * alpha * eh / s**3
    return z.real, dz_da.real, dz_dalpha.real


def _terminal_zs(tau, alpha, g, config):
    """zs at the end of a pulse of duration tau and flip angle alpha (T2s = 1, no relaxation)."""
    quad_atol, quad_rtol = config.quad_tolerances()
    p = IsolatedPoolParameters(omega1=alpha / tau, B1=1.0, omega0=0.0, R1s=0.0, T2s=1.0, g=g,
                               quad_atol=quad_atol, quad_rtol=quad_rtol)
    trajectory = solve_dde(apply_hamiltonian_gbloch_isolated, [1.0], (0.0, tau), args=(p,), config=config)
    return trajectory.final[0]


def _bracket_rate(alpha, z):
    """First interval of a = rho * tau on R2SL_BRACKET_GRID over which the rotation model crosses z."""
    residual = np.array([rotation_model(a, alpha)[0] - z for a in R2SL_BRACKET_GRID])
    crossing = np.nonzero(residual[:-1] * residual[1:] <= 0)[0]
    if len(crossing) == 0:
        return None
    k = crossing[0]
    return R2SL_BRACKET_GRID[k], R2SL_BRACKET_GRID[k + 1]


def _fit_rate(tau, alpha, z):
    """
    Finds rho such that the damped rotation model reproduces z.

    The dimensionless rate a = rho * tau is bracketed on a logarithmic grid and
    refined with Brent's method. If the model crosses z more than once, the
    smallest rate is returned.
    """
    bracket = _bracket_rate(alpha, z)
    if bracket is None:
        raise SaturationFitError(
            f"R2sl root finding failed for tau={tau:g}, alpha={alpha:g}: "
            f"the rotation model never reaches zs={z:g}", tau=tau, alpha=alpha)

    def residual(a):
        return rotation_model(a, alpha)[0] - z

    try:
        sol = root_scalar(residual, bracket=bracket, method='brentq', xtol=1e-14, rtol=1e-12)
    except RuntimeError as e:
        raise SaturationFitError(
            f"R2sl root finding failed for tau={tau:g}, alpha={alpha:g}: {e}", tau=tau, alpha=alpha) from e
    if not sol.converged:
        raise SaturationFitError(
            f"R2sl root finding failed for tau={tau:g}, alpha={alpha:g}: {sol.flag}", tau=tau, alpha=alpha)
    return float(sol.root) / tau


def _compute_cell(tau, alpha, g, config):
    z = _terminal_zs(tau, alpha, g, config)
    rho = _fit_rate(tau, alpha, z)
    logger.debug("R2sl cell tau=%g alpha=%g: zs=%g rho=%g", tau, alpha, z, rho)
    return rho


class R2slTable:
    """
    Bicubic spline f(tau, alpha') of the linearized saturation rate.

    Instances are immutable and may be shared between threads. All methods
    accept scalars or numpy arrays; queries outside the tabulated
    (TRF/T2s, B1*alpha) range raise DomainError.

    Attributes:
        tau (np.ndarray): Grid of TRF/T2s.
        alpha (np.ndarray): Grid of B1*alpha in rad.
        values (np.ndarray): Tabulated rho in units of 1/T2s, shape (len(tau), len(alpha)).
    """

    def __init__(self, tau, alpha, values):
        self.tau = np.array(tau, dtype=float)
        self.alpha = np.array(alpha, dtype=float)
        self.values = np.array(values, dtype=float)
        for arr in (self.tau, self.alpha, self.values):
            arr.setflags(write=False)
        self._spline = RectBivariateSpline(self.tau, self.alpha, self.values, kx=3, ky=3, s=0)

    def _ev(self, tau, alpha, dx=0, dy=0):
        tau = np.asarray(tau, dtype=float)
        alpha = np.asarray(alpha, dtype=float)
        for name, x, grid in (('TRF/T2s', tau, self.tau), ('B1*alpha', alpha, self.alpha)):
            slack = DOMAIN_RELATIVE_SLACK * max(abs(grid[0]), abs(grid[-1]), 1.0)
            if np.any(x < grid[0] - slack) or np.any(x > grid[-1] + slack):
                raise DomainError(f"{name} outside the R2sl table [{grid[0]:g}, {grid[-1]:g}]: {x}")
        out = self._spline.ev(tau, alpha, dx=dx, dy=dy)
        return float(out) if out.ndim == 0 else out

    def f(self, tau, alpha):
        return self._ev(tau, alpha)

    def R2sl(self, TRF, alpha, B1, T2s):
        return self._ev(TRF / T2s, B1 * alpha) / T2s

    __call__ = R2sl

    def dR2sl_dT2s(self, TRF, alpha, B1, T2s):
        tau, a = TRF / T2s, B1 * alpha
        return -self._ev(tau, a, dx=1) * TRF / T2s**3 - self._ev(tau, a) / T2s**2

    def dR2sl_dB1(self, TRF, alpha, B1, T2s):
        return self._ev(TRF / T2s, B1 * alpha, dy=1) * alpha / T2s

    def dR2sl_domega1(self, TRF, alpha, B1, T2s):
        return self._ev(TRF / T2s, B1 * alpha, dy=1) * B1 * TRF / T2s

    def dR2sl_dTRF(self, TRF, alpha, B1, T2s):
        tau, a = TRF / T2s, B1 * alpha
        return self._ev(tau, a, dx=1) / T2s**2 + self._ev(tau, a, dy=1) * B1 * alpha / (TRF * T2s)

    def d2R2sl_dT2s_domega1(self, TRF, alpha, B1, T2s):
        tau, a = TRF / T2s, B1 * alpha
        return (-self._ev(tau, a, dx=1, dy=1) * B1 * TRF**2 / T2s**3
                - self._ev(tau, a, dy=1) * B1 * TRF / T2s**2)

    def d2R2sl_dB1_domega1(self, TRF, alpha, B1, T2s):
        tau, a = TRF / T2s, B1 * alpha
        return (self._ev(tau, a, dy=1) * TRF / T2s
                + self._ev(tau, a, dy=2) * B1 * TRF * alpha / T2s)

    def d2R2sl_dT2s_dTRF(self, TRF, alpha, B1, T2s):
        tau, a = TRF / T2s, B1 * alpha
        return (-self._ev(tau, a, dx=2) * TRF / T2s**4
                - self._ev(tau, a, dx=1, dy=1) * B1 * alpha / T2s**3
                - 2 * self._ev(tau, a, dx=1) / T2s**3
                - self._ev(tau, a, dy=1) * B1 * alpha / (TRF * T2s**2))

    def d2R2sl_dB1_dTRF(self, TRF, alpha, B1, T2s):
        tau, a = TRF / T2s, B1 * alpha
        return (self._ev(tau, a, dx=1, dy=1) * alpha / T2s**2
                + self._ev(tau, a, dy=2) * B1 * alpha**2 / (TRF * T2s)
                + self._ev(tau, a, dy=1) * alpha / (TRF * T2s))

    def saturation_rate(self, TRF, omega1, B1, T2s):
        """
        Equivalent longitudinal saturation rate of the semi-solid pool for one pulse.

        Rrf = -log(Z) / TRF, where Z is zs at the end of the damped rotation with
        rate R2sl. Used by the linear-approximation simulator.

        Args:
            TRF (float): Pulse duration in s.
            omega1 (float): Rabi frequency in rad/s (the sign is irrelevant).
            B1 (float): RF scaling.
            T2s (float): Semi-solid T2 in s.

        Returns:
            tuple: (Rrf, dRrf/dB1, dRrf/dT2s).

        Raises:
            DomainError: If the pulse drives zs through zero, where no
                equivalent saturation rate exists.
        """
        alpha = abs(omega1) * TRF
        tau, a_eff = TRF / T2s, B1 * alpha
        f = self._ev(tau, a_eff)
        f_tau = self._ev(tau, a_eff, dx=1)
        f_alpha = self._ev(tau, a_eff, dy=1)
        z, z_a, z_alpha = rotation_model(f * tau, a_eff)
        if not z > 0:
            raise DomainError(
                f"No saturation rate for TRF={TRF:g}, alpha={alpha:g}, B1={B1:g}: "
                f"the pulse leaves zs={z:g} <= 0.")
        # a = f(tau, alpha') * tau; chain rule through tau = TRF/T2s and alpha' = B1*alpha
        dz_dB1 = (z_a * f_alpha * tau + z_alpha) * alpha
        dz_dT2s = z_a * (f_tau * tau + f) * (-TRF / T2s**2)
        return -np.log(z) / TRF, -dz_dB1 / (z * TRF), -dz_dT2s / (z * TRF)


def precompute_R2sl(TRF_min, TRF_max, T2s_min, T2s_max, alpha_min, alpha_max, B1_min, B1_max,
                    greens=greens_superlorentzian, grid_size=None, n_workers=None, config=None):
    """
    Builds the R2sl table for all pulses inside a bounding box.

    Args:
        TRF_min, TRF_max (float): Range of pulse durations in s.
        T2s_min, T2s_max (float): Range of semi-solid T2 in s.
        alpha_min, alpha_max (float): Range of flip angles in rad.
        B1_min, B1_max (float): Range of RF scaling.
        greens (callable, optional): Green's function G(kappa). Functions without
            a closed form are interpolated on [0, TRF_max/T2s_min] first.
        grid_size (int, optional): Grid points per axis; defaults to config.r2sl_grid_size (64).
        n_workers (int, optional): Worker threads; defaults to config.r2sl_workers.
        config (SolverConfig, optional): Solver settings.

    Returns:
        R2slTable: The fitted table.

    Raises:
        SaturationFitError: If the root finder fails for any grid cell.
    """
    config = config or DEFAULT_CONFIG
    grid_size = grid_size or config.r2sl_grid_size
    n_workers = n_workers or config.r2sl_workers
    if grid_size < MIN_R2SL_GRID_SIZE:
        raise ValueError(f"grid_size must be at least {MIN_R2SL_GRID_SIZE}, got {grid_size}.")
    tau_min, tau_max = TRF_min / T2s_max, TRF_max / T2s_min
    a_min, a_max = B1_min * alpha_min, B1_max * alpha_max
    if not 0 < tau_min < tau_max:
        raise ValueError(f"TRF/T2s range must be positive and non-empty, got [{tau_min}, {tau_max}].")
    if not 0 <= a_min < a_max:
        raise ValueError(f"B1*alpha range must be non-negative and non-empty, got [{a_min}, {a_max}].")

    if greens in CLOSED_FORM_GREENS:
        g = greens
    else:
        g = interpolate_greens_function(greens, 0.0, tau_max, config.greens_samples)

    tau_grid = np.linspace(tau_min, tau_max, grid_size)
    alpha_grid = np.linspace(a_min, a_max, grid_size)
    alpha_floor = R2SL_ZERO_FLIP_FRACTION * (alpha_grid[1] - alpha_grid[0])
    logger.info("Pre-computing R2sl on a %dx%d grid: TRF/T2s in [%g, %g], B1*alpha in [%g, %g]",
                grid_size, grid_size, tau_min, tau_max, a_min, a_max)

    values = np.empty((grid_size, grid_size))
    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        futures = {
            (i, j): executor.submit(_compute_cell, tau, max(alpha, alpha_floor), g, config)
            for i, tau in enumerate(tau_grid)
            for j, alpha in enumerate(alpha_grid)
        }
        for (i, j), future in futures.items():
            values[i, j] = future.result()
    return R2slTable(tau_grid, alpha_grid, values)


def evaluate_R2sl_vector(alpha, TRF, B1, T2s, table, grad_list=()):
    """
    Evaluates R2sl for every pulse of a pulse train.

    Args:
        alpha (np.ndarray): Flip angles in rad.
        TRF (np.ndarray): Pulse durations in s.
        B1 (float): RF scaling.
        T2s (float): Semi-solid T2 in s.
        table (R2slTable): Pre-computed table.
        grad_list (sequence, optional): Derivatives with respect to T2s and B1
            are only evaluated if the corresponding GradKind is requested; the
            other arrays are zero.

    Returns:
        tuple: (R2sl, dR2sl/dT2s, dR2sl/dB1) as arrays shaped like alpha.
    """
    grad_list = parse_grad_list(grad_list)
    alpha = np.asarray(alpha, dtype=float)
    TRF = np.asarray(TRF, dtype=float)
    r2s = np.asarray(table.R2sl(TRF, alpha, B1, T2s), dtype=float)
    dr2s_dT2s = np.zeros_like(r2s)
    dr2s_dB1 = np.zeros_like(r2s)
    if GradKind.T2S in grad_list:
        dr2s_dT2s = np.asarray(table.dR2sl_dT2s(TRF, alpha, B1, T2s), dtype=float)
    if GradKind.B1 in grad_list:
        dr2s_dB1 = np.asarray(table.dR2sl_dB1(TRF, alpha, B1, T2s), dtype=float)
    return r2s, dr2s_dT2s, dr2s_dB1


def evaluate_R2sl_vector_OCT(alpha, TRF, B1, T2s, table, grad_list=()):
    """
    As evaluate_R2sl_vector, plus the derivatives needed for optimal control of
    the pulse train: d/domega1, d/dTRF and the mixed second derivatives with T2s and B1.

    Returns:
        tuple: (R2sl, dT2s, dB1, domega1, dTRF, dT2s_domega1, dB1_domega1, dT2s_dTRF, dB1_dTRF).
    """
    r2s, dr2s_dT2s, dr2s_dB1 = evaluate_R2sl_vector(alpha, TRF, B1, T2s, table, grad_list)
    alpha = np.asarray(alpha, dtype=float)
    TRF = np.asarray(TRF, dtype=float)
    rest = [np.asarray(func(TRF, alpha, B1, T2s), dtype=float) for func in (
        table.dR2sl_domega1, table.dR2sl_dTRF, table.d2R2sl_dT2s_domega1,
        table.d2R2sl_dB1_domega1, table.d2R2sl_dT2s_dTRF, table.d2R2sl_dB1_dTRF)]
    return (r2s, dr2s_dT2s, dr2s_dB1, *rest)
