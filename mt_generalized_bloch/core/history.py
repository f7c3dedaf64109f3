# mt_generalized_bloch/core/history.py
"""
History functions for the delay (memory) models.

A history maps a past time to the state vector, or to a single component of it.
Hamiltonians only read from a history; a SolutionHistory is updated exclusively
by the DDE driver in mt_generalized_bloch.core.integrators.
"""
import bisect

import numpy as np


class History:
    """Read-only interface: history(t) returns the state, history(t, idx) one component."""

    def __call__(self, t, idx=None):
        raise NotImplementedError


class InitialHistory(History):
    """Constant history equal to a fixed state vector."""

    def __init__(self, u0):
        self.u0 = np.array(u0, dtype=float)
        self.u0.setflags(write=False)

    def __call__(self, t, idx=None):
        if idx is None:
            return self.u0.copy()
        return self.u0[idx]


class SolutionHistory(History):
    """
    History backed by the dense output of the accepted integration steps.

    Before t0 the initial history is returned. Between t0 and the last accepted
    time the dense output of the step covering t is used. Beyond the last
    accepted time (queries made while a step is being computed) the previous
    step's polynomial is extrapolated and shifted linearly so that it passes
    through the stage value currently being evaluated.
    """

    def __init__(self, initial_history, t0, y0):
        self.initial_history = initial_history
        self.t0 = float(t0)
        self._t_ends = []
        self._segments = []
        self._t_last = self.t0
        self._y_last = np.array(y0, dtype=float)
        self._stage = None

    @property
    def t_last(self):
        return self._t_last

    def append_segment(self, t_start, t_end, dense):
        """Registers the dense output of an accepted step [t_start, t_end]."""
        self._t_ends.append(t_end)
        self._segments.append(dense)
        self._t_last = t_end
        self._y_last = np.asarray(dense(t_end), dtype=float)
        self._stage = None

    def set_stage(self, t, y):
        """Records the (time, state) pair at which the right-hand side is about to be evaluated."""
        self._stage = (t, y) if t > self._t_last else None

    def _extrapolate(self, t):
        if self._segments:
            base = np.asarray(self._segments[-1](t), dtype=float)
        else:
            base = self._y_last
        if self._stage is None:
            return base
        t_stage, y_stage = self._stage
        if self._segments:
            base_at_stage = np.asarray(self._segments[-1](t_stage), dtype=float)
        else:
            base_at_stage = self._y_last
        w = (t - self._t_last) / (t_stage - self._t_last)
        return base + (y_stage - base_at_stage) * w

    def __call__(self, t, idx=None):
        if t <= self.t0:
            return self.initial_history(t, idx)
        if t <= self._t_last:
            i = min(bisect.bisect_left(self._t_ends, t), len(self._segments) - 1)
            y = np.asarray(self._segments[i](t), dtype=float)
        else:
            y = self._extrapolate(t)
        return y if idx is None else y[idx]
