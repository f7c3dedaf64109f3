# mt_generalized_bloch/saturation/graham.py
"""Graham's spectral saturation rate of the semi-solid pool for rectangular pulses."""
import logging

import numpy as np
from scipy.interpolate import CubicSpline

from mt_generalized_bloch.core.constants import DOMAIN_RELATIVE_SLACK
from mt_generalized_bloch.core.exceptions import DomainError
from mt_generalized_bloch.core.greens_functions import df_PSD, f_PSD

logger = logging.getLogger(__name__)


def graham_saturation_rate(TRF, omega1, B1, T2s):
    """
    Graham's saturation rate for a super-Lorentzian lineshape and its derivatives.

    Args:
        TRF (float): Pulse duration in s.
        omega1 (float): Rabi frequency in rad/s.
        B1 (float): RF scaling.
        T2s (float): Semi-solid T2 in s.

    Returns:
        tuple: (Rrf, dRrf/dB1, dRrf/dT2s) in 1/s.
    """
    tau = TRF / T2s
    f = f_PSD(tau)
    return (f * B1**2 * omega1**2 * T2s,
            2 * f * B1 * omega1**2 * T2s,
            df_PSD(tau) * B1**2 * omega1**2)


class GrahamSaturationTable:
    """
    Graham's saturation rate with f_PSD replaced by a cubic spline on a bounded tau range.

    Implements the same `saturation_rate` interface as R2slTable so that it can
    be injected into the linear-approximation pulse-train simulator.
    """

    def __init__(self, tau_min, tau_max, n_samples=256):
        if not 0 < tau_min < tau_max:
            raise ValueError(f"Require 0 < tau_min < tau_max, got {tau_min}, {tau_max}.")
        self.tau_min = float(tau_min)
        self.tau_max = float(tau_max)
        tau = np.linspace(self.tau_min, self.tau_max, n_samples)
        self._f = CubicSpline(tau, f_PSD(tau))
        self._df = self._f.derivative()
        self._slack = DOMAIN_RELATIVE_SLACK * self.tau_max

    def _check(self, tau):
        if tau < self.tau_min - self._slack or tau > self.tau_max + self._slack:
            raise DomainError(f"TRF/T2s = {tau:g} outside the tabulated range [{self.tau_min:g}, {self.tau_max:g}].")

    def rate(self, TRF, omega1, B1, T2s):
        tau = TRF / T2s
        self._check(tau)
        return float(self._f(tau)) * B1**2 * omega1**2 * T2s

    def saturation_rate(self, TRF, omega1, B1, T2s):
        """Returns (Rrf, dRrf/dB1, dRrf/dT2s)."""
        tau = TRF / T2s
        self._check(tau)
        f = float(self._f(tau))
        return (f * B1**2 * omega1**2 * T2s,
                2 * f * B1 * omega1**2 * T2s,
                (f - float(self._df(tau)) * tau) * B1**2 * omega1**2)


def precompute_saturation_graham(TRF_min, TRF_max, T2s_min, T2s_max, n_samples=256):
    """
    Tabulates Graham's spectral density for all pulses with TRF in [TRF_min, TRF_max]
    and T2s in [T2s_min, T2s_max].

    Returns:
        GrahamSaturationTable: Table with `rate` and `saturation_rate` methods.
    """
    logger.info("Tabulating Graham's f_PSD for TRF/T2s in [%g, %g]", TRF_min / T2s_max, TRF_max / T2s_min)
    return GrahamSaturationTable(TRF_min / T2s_max, TRF_max / T2s_min, n_samples)
