# mt_generalized_bloch/core/exceptions.py
"""Errors raised by the simulation core."""


class DomainError(ValueError):
    """An interpolant was queried outside the support it was fitted on."""


class IntegrationError(RuntimeError):
    """The ODE/DDE integrator failed to produce a solution."""


class EchoTimeMismatchError(IntegrationError):
    """A readout sample did not land on the requested echo time."""


class SaturationFitError(RuntimeError):
    """The rotation-model root finder did not converge for an R2sl grid cell.

    Attributes:
        tau (float): Dimensionless pulse duration TRF/T2s of the failed cell.
        alpha (float): Effective flip angle B1*alpha of the failed cell.
    """

    def __init__(self, message, tau=None, alpha=None):
        super().__init__(message)
        self.tau = tau
        self.alpha = alpha
