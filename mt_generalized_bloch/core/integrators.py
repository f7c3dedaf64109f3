# mt_generalized_bloch/core/integrators.py
"""ODE and delay-differential-equation drivers built on scipy's Runge-Kutta solvers."""
import logging

import numpy as np
from scipy.integrate import DOP853, RK23, RK45, solve_ivp

from mt_generalized_bloch.core.config import DEFAULT_CONFIG
from mt_generalized_bloch.core.exceptions import IntegrationError
from mt_generalized_bloch.core.history import InitialHistory, SolutionHistory

logger = logging.getLogger(__name__)

_STEPPERS = {'RK23': RK23, 'RK45': RK45, 'DOP853': DOP853}


class Trajectory:
    """
    Continuous solution of an integration.

    Attributes:
        t (np.ndarray): Accepted step times, or the requested evaluation times.
        y (np.ndarray): States at `t`, shape (n_states, len(t)).
        final (np.ndarray): State at the end of the time span.
    """

    def __init__(self, t, y, interpolant, final):
        self.t = np.asarray(t, dtype=float)
        self.y = np.asarray(y, dtype=float)
        self.final = np.asarray(final, dtype=float)
        self._interpolant = interpolant

    def __call__(self, t):
        t_arr = np.asarray(t, dtype=float)
        if t_arr.ndim == 0:
            return np.asarray(self._interpolant(float(t_arr)), dtype=float)
        return np.stack([np.asarray(self._interpolant(float(ti)), dtype=float) for ti in t_arr], axis=-1)


def _constant_trajectory(u0, t0, t_eval):
    u0 = np.array(u0, dtype=float)
    t = np.array([t0] if t_eval is None else t_eval, dtype=float)
    return Trajectory(t, np.repeat(u0[:, None], len(t), axis=1), lambda _: u0.copy(), u0)


def solve_ode(rhs, u0, t_span, args=(), t_eval=None, config=None):
    """
    Integrates m' = rhs(t, m, *args) over t_span.

    Args:
        rhs (callable): Right-hand side returning the time derivative.
        u0 (array_like): Initial state.
        t_span (tuple): (t0, t1).
        args (tuple, optional): Extra arguments passed to rhs.
        t_eval (array_like, optional): Times at which `Trajectory.t`/`Trajectory.y` are reported.
        config (SolverConfig, optional): Method and tolerances.

    Returns:
        Trajectory: The solution.

    Raises:
        IntegrationError: If the solver reports a failure.
    """
    config = config or DEFAULT_CONFIG
    t0, t1 = float(t_span[0]), float(t_span[1])
    if t1 == t0:
        return _constant_trajectory(u0, t0, t_eval)
    sol = solve_ivp(rhs, (t0, t1), np.asarray(u0, dtype=float), method=config.method, args=tuple(args),
                    t_eval=t_eval, dense_output=True, rtol=config.rtol, atol=config.atol)
    if not sol.success:
        raise IntegrationError(f"ODE solve on [{t0:g}, {t1:g}] failed: {sol.message}")
    return Trajectory(sol.t, sol.y, sol.sol, sol.sol(t1))


def solve_dde(rhs, u0, t_span, history=None, args=(), t_eval=None, config=None):
    """
    Integrates the memory equation m' = rhs(t, m, history, *args) by the method of steps.

    The driver owns a SolutionHistory that starts as `history` (the constant
    initial state when None) and is extended with the dense output of every
    accepted step. rhs receives it as a read-only callable.

    Args:
        rhs (callable): Right-hand side rhs(t, m, history, *args).
        u0 (array_like): State at t_span[0].
        t_span (tuple): (t0, t1).
        history (History, optional): State before t0.
        args (tuple, optional): Extra arguments passed to rhs.
        t_eval (array_like, optional): Times at which `Trajectory.t`/`Trajectory.y` are reported.
        config (SolverConfig, optional): Method and tolerances.

    Returns:
        Trajectory: The solution; calling it evaluates the recorded history.

    Raises:
        IntegrationError: If the stepper fails.
    """
    config = config or DEFAULT_CONFIG
    t0, t1 = float(t_span[0]), float(t_span[1])
    u0 = np.asarray(u0, dtype=float)
    if t1 == t0:
        return _constant_trajectory(u0, t0, t_eval)
    try:
        stepper_cls = _STEPPERS[config.method]
    except KeyError:
        raise ValueError(f"Delay equations support the methods {list(_STEPPERS)}, not '{config.method}'.") from None

    solution_history = SolutionHistory(history if history is not None else InitialHistory(u0), t0, u0)

    def fun(t, y):
        solution_history.set_stage(t, y)
        return rhs(t, y, solution_history, *args)

    stepper = stepper_cls(fun, t0, u0, t1, rtol=config.rtol, atol=config.atol)
    ts = [t0]
    ys = [u0.copy()]
    while stepper.status == 'running':
        message = stepper.step()
        if stepper.status == 'failed':
            raise IntegrationError(f"DDE solve on [{t0:g}, {t1:g}] failed at t={stepper.t:g}: {message}")
        solution_history.append_segment(stepper.t_old, stepper.t, stepper.dense_output())
        ts.append(stepper.t)
        ys.append(stepper.y.copy())
    logger.debug("DDE solve on [%g, %g] took %d steps, %d rhs evaluations", t0, t1, len(ts) - 1, stepper.nfev)

    if t_eval is None:
        t_out = np.array(ts)
        y_out = np.array(ys).T
    else:
        t_out = np.asarray(t_eval, dtype=float)
        y_out = np.stack([solution_history(ti) for ti in t_out], axis=-1)
    return Trajectory(t_out, y_out, solution_history, ys[-1])
