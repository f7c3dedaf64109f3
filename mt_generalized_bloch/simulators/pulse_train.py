# mt_generalized_bloch/simulators/pulse_train.py
"""
Magnetization of a balanced pulse train with an inversion preparation.

The train starts with a preparation pulse of half the amplitude of the second
pulse. Each of the n_iter repetitions consists of an instantaneous inversion
pulse with crusher gradients (followed by the saturation it causes in the
semi-solid pool), then len(TRF) - 1 RF pulses with alternating sign. The
magnetization is sampled at the echo time TE = TR/2 after the center of each
pulse, pulse 0 standing for the inversion.

The returned array has shape (5 * (1 + len(grad_list)), len(TRF)); row blocks of
5 entries hold [xf, yf, zf, zs, 1] and its derivatives.
"""
import logging

import numpy as np

from mt_generalized_bloch.core.config import DEFAULT_CONFIG
from mt_generalized_bloch.core.exceptions import EchoTimeMismatchError
from mt_generalized_bloch.core.gradients import GradKind, parse_grad_list
from mt_generalized_bloch.core.greens_functions import greens_function_pair
from mt_generalized_bloch.core.hamiltonians import (
    FreePrecessionParameters,
    GBlochParameters,
    GrahamParameters,
    LinearParameters,
    PulseType,
    apply_hamiltonian_freeprecession,
    apply_hamiltonian_gbloch,
    apply_hamiltonian_graham_superlorentzian,
    apply_hamiltonian_linear,
    validate_tissue_parameters,
)
from mt_generalized_bloch.core.integrators import solve_dde, solve_ode

logger = logging.getLogger(__name__)


class _PulseTrainSimulator:
    """Sequence bookkeeping shared by all models; subclasses implement `_pulse`."""

    def __init__(self, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, grad_list, config):
        validate_tissue_parameters(m0s, R1f, R2f, Rx, R1s, T2s)
        self.omega0 = omega0
        self.B1 = B1
        self.m0s = m0s
        self.R1f = R1f
        self.R2f = R2f
        self.Rx = Rx
        self.R1s = R1s
        self.T2s = T2s
        self.grad_list = parse_grad_list(grad_list)
        self.config = config or DEFAULT_CONFIG
        self.n_states = 5 * (1 + len(self.grad_list))
        self._fp = FreePrecessionParameters(omega0, m0s, R1f, R2f, Rx, R1s)

    def _pulse(self, u, omega1, TRF, relaxation=True, pulse_type=PulseType.NORMAL):
        """Returns the state at the end of an RF pulse; relaxation=False zeroes all relaxation and exchange."""
        raise NotImplementedError

    def _rates(self, relaxation):
        if relaxation:
            return self.R1f, self.R2f, self.Rx, self.R1s
        return 0.0, 0.0, 0.0, 0.0

    def initial_state(self):
        u0 = np.zeros(self.n_states)
        u0[2] = 1 - self.m0s
        u0[3] = self.m0s
        u0[4] = 1.0
        for i, kind in enumerate(self.grad_list, start=1):
            if kind is GradKind.M0S:
                u0[5 * i + 2] = -1.0
                u0[5 * i + 3] = 1.0
        return u0

    def _free_precession(self, u, T, TE=None):
        """Free precession for T; with TE also returns the state sampled at TE."""
        if T < 0:
            raise ValueError(f"Negative free precession period {T:g}: the pulses do not fit into TR.")
        if TE is None:
            return solve_ode(apply_hamiltonian_freeprecession, u, (0.0, T),
                             args=(self._fp, self.grad_list), config=self.config).final
        if TE > T:
            raise EchoTimeMismatchError(f"Echo time {TE:g} lies beyond the free precession period {T:g}.")
        trajectory = solve_ode(apply_hamiltonian_freeprecession, u, (0.0, T),
                               args=(self._fp, self.grad_list), t_eval=[TE], config=self.config)
        t_sample = trajectory.t[0]
        if abs(t_sample / TE - 1) > self.config.echo_time_rtol:
            raise EchoTimeMismatchError(f"Sample taken at t={t_sample!r} instead of TE={TE!r}.")
        return trajectory.final, trajectory.y[:, 0]

    def _invert(self, u, omega1, TRF, sign):
        """Instantaneous inversion pulse with crusher gradients followed by the semi-solid saturation."""
        a = self.B1 * omega1 * TRF
        u00 = u[:3].copy()
        u = u.copy()
        u[0::5] *= -np.sin(a / 2)**2
        u[1::5] *= np.sin(a / 2)**2
        u[2::5] *= np.cos(a)

        saturated = self._pulse(u, sign * omega1, TRF, relaxation=False, pulse_type=PulseType.INVERSION)
        u[3::5] = saturated[3::5]

        for i, kind in enumerate(self.grad_list, start=1):
            if kind is GradKind.B1:
                u[5 * i] -= u00[0] * np.sin(a / 2) * np.cos(a / 2) * omega1 * TRF
                u[5 * i + 1] += u00[1] * np.sin(a / 2) * np.cos(a / 2) * omega1 * TRF
                u[5 * i + 2] -= u00[2] * np.sin(a) * omega1 * TRF
        return u

    def run(self, omega1, TRF, TR, n_iter):
        omega1 = np.asarray(omega1, dtype=float)
        TRF = np.asarray(TRF, dtype=float)
        n_pulses = len(TRF)
        if len(omega1) != n_pulses:
            raise ValueError("omega1 and TRF must have the same length.")
        if n_pulses < 2:
            raise ValueError("A pulse train needs at least two pulses.")
        if n_iter < 1:
            raise ValueError(f"n_iter must be at least 1, got {n_iter}.")

        s = np.zeros((self.n_states, n_pulses))
        u = self.initial_state()

        # preparation pulse
        u = self._pulse(u, -omega1[1] / 2, TRF[1])
        u = self._free_precession(u, (TR - TRF[1]) / 2 - TRF[0] / 2)

        for ic in range(n_iter):
            sign = (-1)**(1 + ic)
            u = self._free_precession(u, TRF[0] / 2)
            u = self._invert(u, omega1[0], TRF[0], sign)

            u, sample = self._free_precession(u, TR - TRF[1] / 2, TE=TR / 2)
            s[:, 0] = sample
            s[0::5, 0] *= sign
            s[1::5, 0] *= sign

            for ip in range(1, n_pulses):
                sign = (-1)**(ip + 1 + ic)
                u = self._pulse(u, sign * omega1[ip], TRF[ip])
                T_FP = TR - TRF[ip] / 2 - TRF[(ip + 1) % n_pulses] / 2
                u, sample = self._free_precession(u, T_FP, TE=TR / 2 - TRF[ip] / 2)
                s[:, ip] = sample
                s[0::5, ip] *= sign
                s[1::5, ip] *= sign
            logger.debug("Pulse train iteration %d/%d done", ic + 1, n_iter)
        return s


class _GBlochPulseTrain(_PulseTrainSimulator):

    def __init__(self, *args, greens=None, TRF_max=None, **kwargs):
        super().__init__(*args, **kwargs)
        if greens is None:
            greens = greens_function_pair('superlorentzian', TRF_max / self.T2s,
                                          with_derivative=GradKind.T2S in self.grad_list,
                                          n_samples=self.config.greens_samples)
        self.g, self.dG_o_dT2s_x_T2s = greens
        if GradKind.T2S in self.grad_list and self.dG_o_dT2s_x_T2s is None:
            raise ValueError("A T2s gradient requires the Green's function derivative.")

    def _pulse(self, u, omega1, TRF, relaxation=True, pulse_type=PulseType.NORMAL):
        R1f, R2f, Rx, R1s = self._rates(relaxation)
        quad_atol, quad_rtol = self.config.quad_tolerances()
        p = GBlochParameters(omega1, self.B1, self.omega0, self.m0s, R1f, R2f, Rx, R1s, self.T2s,
                             self.g, self.dG_o_dT2s_x_T2s, quad_atol=quad_atol, quad_rtol=quad_rtol)
        return solve_dde(apply_hamiltonian_gbloch, u, (0.0, TRF), args=(p, self.grad_list, pulse_type),
                         config=self.config).final


class _GrahamPulseTrain(_PulseTrainSimulator):

    def _pulse(self, u, omega1, TRF, relaxation=True, pulse_type=PulseType.NORMAL):
        R1f, R2f, Rx, R1s = self._rates(relaxation)
        p = GrahamParameters(omega1, self.B1, self.omega0, TRF, self.m0s, R1f, R2f, Rx, R1s, self.T2s)
        return solve_ode(apply_hamiltonian_graham_superlorentzian, u, (0.0, TRF),
                         args=(p, self.grad_list, pulse_type), config=self.config).final


class _LinearApproxPulseTrain(_PulseTrainSimulator):

    def __init__(self, *args, saturation=None, **kwargs):
        super().__init__(*args, **kwargs)
        if saturation is None:
            raise ValueError("The linear approximation needs a saturation table (R2slTable or GrahamSaturationTable).")
        self.saturation = saturation

    def _pulse(self, u, omega1, TRF, relaxation=True, pulse_type=PulseType.NORMAL):
        R1f, R2f, Rx, R1s = self._rates(relaxation)
        Rrf, dRrf_dB1, dRrf_dT2s = self.saturation.saturation_rate(TRF, omega1, self.B1, self.T2s)
        p = LinearParameters(omega1, self.B1, self.omega0, self.m0s, R1f, R2f, Rx, R1s, Rrf, dRrf_dB1, dRrf_dT2s)
        return solve_ode(apply_hamiltonian_linear, u, (0.0, TRF),
                         args=(p, self.grad_list, pulse_type), config=self.config).final


def gbloch_calculate_magnetization(omega1, TRF, TR, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, n_iter,
                                   grad_list=(), greens=None, config=None):
    """
    Simulates a pulse train with the generalized Bloch model.

    Args:
        omega1 (np.ndarray): Rabi frequency of each pulse in rad/s; omega1[0] is
            the inversion pulse.
        TRF (np.ndarray): Duration of each pulse in s.
        TR (float): Repetition time in s.
        omega0 (float): Off-resonance frequency in rad/s.
        B1 (float): RF scaling.
        m0s (float): Semi-solid fraction.
        R1f, R2f, Rx, R1s (float): Relaxation and exchange rates in 1/s.
        T2s (float): Semi-solid T2 in s.
        n_iter (int): Number of repetitions of the train.
        grad_list (sequence, optional): GradKind members for the derivative blocks.
        greens (tuple, optional): (G, T2s * dG/dT2s). Defaults to the super-Lorentzian
            interpolated on [0, max(TRF)/T2s].
        config (SolverConfig, optional): Solver settings.

    Returns:
        np.ndarray: Magnetization at the echo times, shape (5 * (1 + len(grad_list)), len(TRF)).
    """
    sim = _GBlochPulseTrain(omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, grad_list, config,
                            greens=greens, TRF_max=float(np.max(TRF)))
    return sim.run(omega1, TRF, TR, n_iter)


def graham_calculate_magnetization(omega1, TRF, TR, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, n_iter,
                                   grad_list=(), config=None):
    """Simulates a pulse train with Graham's spectral model; arguments as gbloch_calculate_magnetization."""
    sim = _GrahamPulseTrain(omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, grad_list, config)
    return sim.run(omega1, TRF, TR, n_iter)


def linear_approx_calculate_magnetization(omega1, TRF, TR, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, n_iter,
                                          saturation, grad_list=(), config=None):
    """
    Simulates a pulse train with the semi-solid saturation linearized per pulse.

    Args:
        saturation: Object with saturation_rate(TRF, omega1, B1, T2s) ->
            (Rrf, dRrf/dB1, dRrf/dT2s), e.g. an R2slTable or a GrahamSaturationTable.
        Other arguments as gbloch_calculate_magnetization.
    """
    sim = _LinearApproxPulseTrain(omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, grad_list, config,
                                  saturation=saturation)
    return sim.run(omega1, TRF, TR, n_iter)


def magnetization_to_signal(s, n_grads):
    """xf + i*yf of each block; 1-D for a simulation without gradients."""
    signal = s[0::5] + 1j * s[1::5]
    return signal[0] if n_grads == 0 else signal


def gbloch_calculate_signal(omega1, TRF, TR, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, n_iter,
                            grad_list=(), greens=None, config=None):
    s = gbloch_calculate_magnetization(omega1, TRF, TR, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, n_iter,
                                       grad_list, greens, config)
    return magnetization_to_signal(s, len(grad_list))


def graham_calculate_signal(omega1, TRF, TR, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, n_iter,
                            grad_list=(), config=None):
    s = graham_calculate_magnetization(omega1, TRF, TR, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, n_iter,
                                       grad_list, config)
    return magnetization_to_signal(s, len(grad_list))


def linear_approx_calculate_signal(omega1, TRF, TR, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, n_iter,
                                   saturation, grad_list=(), config=None):
    s = linear_approx_calculate_magnetization(omega1, TRF, TR, omega0, B1, m0s, R1f, R2f, Rx, R1s, T2s, n_iter,
                                              saturation, grad_list, config)
    return magnetization_to_signal(s, len(grad_list))
