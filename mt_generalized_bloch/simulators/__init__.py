# mt_generalized_bloch/simulators/__init__.py
from .continuous_wave import ContinuousWaveSimulator
from .pulse_train import (
    gbloch_calculate_magnetization,
    graham_calculate_magnetization,
    linear_approx_calculate_magnetization,
    gbloch_calculate_signal,
    graham_calculate_signal,
    linear_approx_calculate_signal
)

__all__ = [
    'ContinuousWaveSimulator',
    'gbloch_calculate_magnetization',
    'graham_calculate_magnetization',
    'linear_approx_calculate_magnetization',
    'gbloch_calculate_signal',
    'graham_calculate_signal',
    'linear_approx_calculate_signal'
]
