# mt_generalized_bloch/core/gradients.py
"""
Partial-derivative corrections for the sensitivity blocks of the state vector.

Every gradient block obeys the base equations of motion plus the derivative of
those equations with respect to one parameter, evaluated on the base block. The
second part is implemented here as a table mapping GradKind to a correction.
"""
from enum import Enum
from typing import NamedTuple


class GradKind(Enum):
    M0S = 'm0s'
    R1F = 'R1f'
    R1S = 'R1s'
    R1A = 'R1a'  # apparent R1, shared by both pools (R1f = R1s)
    R2F = 'R2f'
    RX = 'Rx'
    T2S = 'T2s'
    OMEGA0 = 'omega0'
    B1 = 'B1'


class ModelContext(Enum):
    """Which family of Hamiltonians a correction is added to."""
    GBLOCH = 'gbloch'
    LINEAR = 'linear'
    FREE_PRECESSION = 'free_precession'


# Kinds whose correction must be kept during an instantaneous inversion pulse
INVERSION_GRADIENTS = (GradKind.T2S, GradKind.B1)


class CorrectionTerms(NamedTuple):
    """
    Quantities of the base block needed by the corrections at one instant.

    omega1x / omega1y are the (unscaled) RF components along x and y; for a
    pulse without phase modulation omega1y is 0. The sat_* fields are the
    derivatives of the semi-solid saturation term -dzs/dt|sat with respect to
    B1, T2s and omega0, evaluated on the base block. They are only filled in for
    the kinds that were requested.
    """
    context: ModelContext
    m0s: float
    R1f: float
    R1s: float
    Rx: float
    omega1x: float = 0.0
    omega1y: float = 0.0
    sat_B1: float = 0.0
    sat_T2s: float = 0.0
    sat_omega0: float = 0.0


def parse_grad_list(grad_list):
    """Normalizes a sequence of GradKind members or their string values to a tuple of GradKind."""
    kinds = []
    for g in grad_list:
        if isinstance(g, GradKind):
            kinds.append(g)
        else:
            try:
                kinds.append(GradKind(g))
            except ValueError:
                raise ValueError(
                    f"Unknown gradient '{g}'. Choose from {[k.value for k in GradKind]}.") from None
    return tuple(kinds)


def _m0s(dm, m, c):
    dm[2] -= c.Rx * m[2] + c.Rx * m[3] + c.R1f
    dm[3] += c.Rx * m[2] + c.Rx * m[3] + c.R1s


def _R1a(dm, m, c):
    dm[2] += -m[2] + (1 - c.m0s)
    dm[3] += -m[3] + c.m0s


def _R1f(dm, m, c):
    dm[2] += -m[2] + (1 - c.m0s)


def _R1s(dm, m, c):
    dm[3] += -m[3] + c.m0s


def _R2f(dm, m, c):
    dm[0] -= m[0]
    dm[1] -= m[1]


def _Rx(dm, m, c):
    dm[2] += -c.m0s * m[2] + (1 - c.m0s) * m[3]
    dm[3] += c.m0s * m[2] - (1 - c.m0s) * m[3]


def _T2s(dm, m, c):
    if c.context is ModelContext.FREE_PRECESSION:
        return
    dm[3] -= c.sat_T2s


def _omega0(dm, m, c):
    dm[0] -= m[1]
    dm[1] += m[0]
    if c.context is ModelContext.GBLOCH:
        dm[3] -= c.sat_omega0


def _B1(dm, m, c):
    if c.context is ModelContext.FREE_PRECESSION:
        return
    dm[0] += c.omega1x * m[2]
    dm[1] -= c.omega1y * m[2]
    dm[2] += -c.omega1x * m[0] + c.omega1y * m[1]
    dm[3] -= c.sat_B1


CORRECTIONS = {
    GradKind.M0S: _m0s,
    GradKind.R1A: _R1a,
    GradKind.R1F: _R1f,
    GradKind.R1S: _R1s,
    GradKind.R2F: _R2f,
    GradKind.RX: _Rx,
    GradKind.T2S: _T2s,
    GradKind.OMEGA0: _omega0,
    GradKind.B1: _B1,
}


def add_partial_derivative(dm, m, kind, terms):
    """
    Adds the derivative of the equations of motion with respect to `kind`.

    Args:
        dm (np.ndarray): Time derivative of one gradient block (length 5), updated in place.
        m (np.ndarray): Base block [xf, yf, zf, zs, 1].
        kind (GradKind): Parameter the block is differentiated by.
        terms (CorrectionTerms): Parameters and saturation derivatives of the base block.

    Returns:
        np.ndarray: `dm`.
    """
    CORRECTIONS[kind](dm, m, terms)
    return dm
