# mt_generalized_bloch/simulators/continuous_wave.py
"""Saturation of an isolated semi-solid spin pool by continuous-wave RF, computed with five models."""
import logging

import numpy as np
import torch

from mt_generalized_bloch.core.config import DEFAULT_CONFIG
from mt_generalized_bloch.core.greens_functions import f_PSD, greens_function_pair, lineshape_for
from mt_generalized_bloch.core.hamiltonians import (
    IsolatedPoolParameters,
    apply_hamiltonian_gbloch_isolated,
    apply_hamiltonian_sled,
)
from mt_generalized_bloch.core.integrators import solve_dde, solve_ode

logger = logging.getLogger(__name__)


class ContinuousWaveSimulator:
    """
    Compares models of the semi-solid pool's longitudinal magnetization zs(t)
    under a constant RF irradiation starting from thermal equilibrium (zs = 1).

    The exact Bloch solution only exists for a Lorentzian lineshape, for which
    all time-dependent models converge to Henkelman's steady state.
    """
    def __init__(self,
                 R1: float,
                 T2s: float,
                 lineshape: str = 'lorentzian',
                 device: str = 'cpu',
                 config=None):
        """
        Initializes the ContinuousWaveSimulator.

        Args:
            R1 (float): Longitudinal relaxation rate of the semi-solid pool in 1/s.
            T2s (float): Transverse relaxation time of the semi-solid pool in s.
            lineshape (str, optional): 'lorentzian', 'gaussian' or 'superlorentzian'.
                Defaults to 'lorentzian'.
            device (str, optional): PyTorch device ('cpu' or 'cuda') for the matrix
                exponential. Defaults to 'cpu'.
            config (SolverConfig, optional): Solver settings for the ODE/DDE models.
        """
        if not R1 > 0 or not T2s > 0:
            raise ValueError("R1 and T2s must be strictly positive.")
        self.R1 = R1
        self.T2s = T2s
        self.lineshape = lineshape
        self.lineshape_fn = lineshape_for(lineshape)
        self.device = torch.device(device)
        self.dtype = torch.float64
        self.config = config or DEFAULT_CONFIG

    def saturation_rate(self, omega1, omega0, B1=1.0):
        """Single-frequency saturation rate pi * B1^2 * omega1^2 * g(omega0)."""
        return np.pi * B1**2 * omega1**2 * self.lineshape_fn(omega0, self.T2s)

    def bloch(self, t, omega1, omega0, B1=1.0):
        """
        Exact solution of the Bloch equations of the semi-solid pool.

        Uses the augmented 4x4 generator acting on [x, y, z, 1] and torch.matrix_exp.

        Args:
            t (float or np.ndarray): Time(s) in s.
            omega1 (float): Rabi frequency in rad/s.
            omega0 (float): Off-resonance frequency in rad/s.
            B1 (float, optional): RF scaling. Defaults to 1.

        Returns:
            float or np.ndarray: zs(t).
        """
        if self.lineshape != 'lorentzian':
            raise ValueError("The Bloch model implies a Lorentzian lineshape.")
        w1 = B1 * omega1
        R2 = 1.0 / self.T2s
        H = torch.tensor([
            [-R2, -omega0, w1, 0.0],
            [omega0, -R2, 0.0, 0.0],
            [-w1, 0.0, -self.R1, self.R1],
            [0.0, 0.0, 0.0, 0.0],
        ], device=self.device, dtype=self.dtype)
        m0 = torch.tensor([0.0, 0.0, 1.0, 1.0], device=self.device, dtype=self.dtype)

        t_arr = np.asarray(t, dtype=float)
        t_tensor = torch.as_tensor(t_arr.reshape(-1), device=self.device, dtype=self.dtype)
        propagators = torch.matrix_exp(H.unsqueeze(0) * t_tensor[:, None, None])
        z = torch.matmul(propagators, m0)[:, 2].cpu().numpy()
        return float(z[0]) if t_arr.ndim == 0 else z.reshape(t_arr.shape)

    def henkelman_steady_state(self, omega1, omega0, B1=1.0):
        """Henkelman's steady state R1 / (R1 + Rrf)."""
        return self.R1 / (self.R1 + self.saturation_rate(omega1, omega0, B1))

    def graham(self, t, omega1, omega0, B1=1.0):
        """Graham's single-frequency approximation: mono-exponential decay towards the steady state."""
        Rrf = self.saturation_rate(omega1, omega0, B1)
        t = np.asarray(t, dtype=float)
        return (Rrf * np.exp(-t * (self.R1 + Rrf)) + self.R1) / (self.R1 + Rrf)

    def graham_spectral(self, TRF, omega1, B1=1.0):
        """
        Graham's spectral model for an on-resonant rectangular pulse of duration TRF.

        Only defined for the super-Lorentzian lineshape.
        """
        if self.lineshape != 'superlorentzian':
            raise ValueError("Graham's spectral model is defined for the super-Lorentzian lineshape.")
        Rrf = f_PSD(TRF / self.T2s) * B1**2 * omega1**2 * self.T2s
        return (Rrf * np.exp(-TRF * (self.R1 + Rrf)) + self.R1) / (self.R1 + Rrf)

    def _parameters(self, TRF, omega1, omega0, B1):
        g, _ = greens_function_pair(self.lineshape, TRF / self.T2s, with_derivative=False,
                                    n_samples=self.config.greens_samples)
        quad_atol, quad_rtol = self.config.quad_tolerances()
        return IsolatedPoolParameters(omega1, B1, omega0, self.R1, self.T2s, g,
                                      quad_atol=quad_atol, quad_rtol=quad_rtol)

    def sled(self, TRF, omega1, omega0, B1=1.0, t_eval=None):
        """
        Sled's model integrated over [0, TRF].

        Returns:
            Trajectory: zs(t); `final` holds zs(TRF).
        """
        p = self._parameters(TRF, omega1, omega0, B1)
        return solve_ode(apply_hamiltonian_sled, [1.0], (0.0, TRF), args=(p,), t_eval=t_eval, config=self.config)

    def generalized_bloch(self, TRF, omega1, omega0, B1=1.0, t_eval=None):
        """
        Generalized Bloch model integrated over [0, TRF] as a delay equation.

        Args:
            TRF (float): Duration of the irradiation in s.
            omega1 (float or callable): Rabi frequency in rad/s, or omega1(t).
            omega0 (float): Off-resonance frequency in rad/s.
            B1 (float, optional): RF scaling. Defaults to 1.
            t_eval (array_like, optional): Times reported in `Trajectory.t`.

        Returns:
            Trajectory: zs(t); `final` holds zs(TRF).
        """
        p = self._parameters(TRF, omega1, omega0, B1)
        logger.debug("gBloch CW solve: TRF=%g, omega0=%g, lineshape=%s", TRF, omega0, self.lineshape)
        return solve_dde(apply_hamiltonian_gbloch_isolated, [1.0], (0.0, TRF), args=(p,), t_eval=t_eval,
                         config=self.config)
