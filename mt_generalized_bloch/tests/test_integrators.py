# File: mt_generalized_bloch/tests/test_integrators.py
import unittest
import numpy as np

from mt_generalized_bloch.core.config import SolverConfig
from mt_generalized_bloch.core.history import History, InitialHistory, SolutionHistory
from mt_generalized_bloch.core.integrators import solve_dde, solve_ode


def _decay(t, y, rate):
    return -rate * y


def _unit_delay(t, y, history):
    # y'(t) = -y(t - 1)
    return np.array([-history(t - 1.0, 0)])


class CosineHistory(History):

    def __call__(self, t, idx=None):
        y = np.array([np.cos(2 * np.pi * t)])
        return y if idx is None else y[idx]


class TestSolveODE(unittest.TestCase):

    def test_exponential_decay(self):
        trajectory = solve_ode(_decay, [1.0, 2.0], (0.0, 1.0), args=(3.0,))
        np.testing.assert_allclose(trajectory.final, [np.exp(-3), 2 * np.exp(-3)], rtol=1e-7)
        np.testing.assert_allclose(trajectory(0.5), [np.exp(-1.5), 2 * np.exp(-1.5)], rtol=1e-7)
        self.assertEqual(trajectory(np.array([0.1, 0.2, 0.3])).shape, (2, 3))

    def test_empty_interval(self):
        trajectory = solve_ode(_decay, [1.0], (0.2, 0.2), args=(3.0,))
        np.testing.assert_array_equal(trajectory.final, [1.0])
        np.testing.assert_array_equal(trajectory(0.2), [1.0])


class TestSolveDDE(unittest.TestCase):

    def test_method_of_steps(self):
        # y = 1 - sin(2 pi t) / (2 pi) on [0, 1], then y = 2 - t + (1 - cos(2 pi t)) / (4 pi^2)
        trajectory = solve_dde(_unit_delay, [1.0], (0.0, 2.0), history=CosineHistory(), t_eval=[0.25, 1.5, 2.0])
        expected = [1 - 1 / (2 * np.pi), 0.5 + 1 / (2 * np.pi**2), 0.0]
        np.testing.assert_allclose(trajectory.y[0], expected, atol=1e-6)
        self.assertAlmostEqual(trajectory.final[0], 0.0, delta=1e-6)
        # values before the start come from the history
        self.assertAlmostEqual(trajectory(-0.5)[0], -1.0, places=12)

    def test_explicit_history(self):
        # history 0 before t = 0 with y(0) = 1: y stays 1 until t = 1
        trajectory = solve_dde(_unit_delay, [1.0], (0.0, 1.0), history=InitialHistory([0.0]))
        self.assertAlmostEqual(trajectory.final[0], 1.0, places=10)

    def test_unsupported_method(self):
        with self.assertRaises(ValueError):
            solve_dde(_unit_delay, [1.0], (0.0, 1.0), config=SolverConfig(method='LSODA'))

    def test_empty_interval(self):
        trajectory = solve_dde(_unit_delay, [1.0], (0.0, 0.0))
        np.testing.assert_array_equal(trajectory.final, [1.0])


class TestHistory(unittest.TestCase):

    def test_initial_history_is_read_only(self):
        history = InitialHistory([1.0, 2.0])
        self.assertEqual(history(-1.0, 1), 2.0)
        with self.assertRaises(ValueError):
            history.u0[0] = 3.0
        copy = history(-1.0)
        copy[0] = 3.0
        self.assertEqual(history(-1.0, 0), 1.0)

    def test_solution_history_segments(self):
        history = SolutionHistory(InitialHistory([0.0]), 0.0, [0.0])
        history.append_segment(0.0, 1.0, lambda t: np.array([t]))
        history.append_segment(1.0, 2.0, lambda t: np.array([2 * t - 1]))
        self.assertEqual(history(-0.5, 0), 0.0)
        self.assertEqual(history(0.5, 0), 0.5)
        self.assertEqual(history(1.5, 0), 2.0)
        self.assertEqual(history.t_last, 2.0)
        # beyond the last step the polynomial is extrapolated towards the stage value
        self.assertEqual(history(3.0, 0), 5.0)
        history.set_stage(3.0, np.array([6.0]))
        self.assertEqual(history(3.0, 0), 6.0)
        self.assertEqual(history(2.5, 0), 4.5)


if __name__ == '__main__':
    unittest.main()
