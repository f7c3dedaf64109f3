# File: mt_generalized_bloch/tests/test_greens_functions.py
import unittest
import numpy as np
from scipy.integrate import quad

from mt_generalized_bloch.core import greens_functions as gf
from mt_generalized_bloch.core.exceptions import DomainError


class TestGreensFunctions(unittest.TestCase):

    def test_unit_value_at_zero_lag(self):
        for g in (gf.greens_lorentzian, gf.greens_gaussian, gf.greens_superlorentzian):
            self.assertAlmostEqual(float(g(0.0)), 1.0, places=10)

    def test_superlorentzian_accepts_arrays(self):
        kappa = np.array([[0.0, 1.0], [2.0, 5.0]])
        values = gf.greens_superlorentzian(kappa)
        self.assertEqual(values.shape, kappa.shape)
        self.assertTrue(np.all(np.diff(values.ravel()) < 0))

    def test_superlorentzian_asymptote(self):
        # Far from the origin only the magic angle contributes: G ~ sqrt(2 pi / 3) / kappa
        kappa = 200.0
        self.assertAlmostEqual(gf.greens_superlorentzian(kappa) * kappa / np.sqrt(2 * np.pi / 3), 1.0, places=2)

    def test_T2s_derivatives_match_finite_differences(self):
        # T2s * dG/dT2s = -kappa * dG/dkappa
        h = 1e-3
        pairs = [
            (gf.greens_lorentzian, gf.dG_o_dT2s_x_T2s_lorentzian),
            (gf.greens_gaussian, gf.dG_o_dT2s_x_T2s_gaussian),
            (gf.greens_superlorentzian, gf.dG_o_dT2s_x_T2s_superlorentzian),
        ]
        for g, dg in pairs:
            for kappa in (0.5, 2.0, 7.0):
                fd = -kappa * (g(kappa + h) - g(kappa - h)) / (2 * h)
                self.assertAlmostEqual(float(dg(kappa)), fd, delta=1e-5 * max(1.0, abs(fd)),
                                       msg=f"{dg.__name__} at kappa={kappa}")

    def test_lineshapes_are_normalized(self):
        T2s = 1e-5
        for lineshape in (gf.lineshape_lorentzian, gf.lineshape_gaussian):
            area, _ = quad(lambda x: lineshape(x / T2s, T2s) / T2s, -np.inf, np.inf)
            self.assertAlmostEqual(area, 1.0, places=6)

    def test_superlorentzian_lineshape(self):
        T2s = 12e-6
        self.assertEqual(gf.lineshape_superlorentzian(0.0, T2s), np.inf)
        g = gf.lineshape_superlorentzian(np.array([2 * np.pi * 1e3, 2 * np.pi * 1e4]), T2s)
        self.assertTrue(np.all(g > 0))
        self.assertGreater(g[0], g[1])

    def test_f_PSD_derivative_relation(self):
        # df_PSD(tau) = f_PSD(tau) - tau * f_PSD'(tau)
        for tau in (1.0, 10.0, 50.0):
            h = 1e-3 * tau
            fd = (gf.f_PSD(tau + h) - gf.f_PSD(tau - h)) / (2 * h)
            self.assertAlmostEqual(gf.df_PSD(tau), gf.f_PSD(tau) - tau * fd, delta=1e-5 * gf.f_PSD(tau))

    def test_f_PSD_rejects_non_positive_duration(self):
        with self.assertRaises(ValueError):
            gf.f_PSD(0.0)


class TestInterpolatedGreensFunction(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.kappa_max = 30.0
        cls.G = gf.interpolate_greens_function(gf.greens_superlorentzian, 0.0, cls.kappa_max, 1025)

    def test_reproduces_samples(self):
        np.testing.assert_allclose(self.G(self.G.nodes), self.G.values, rtol=0, atol=1e-12)

    def test_accuracy_between_samples(self):
        kappa = 0.5 * (self.G.nodes[:-1] + self.G.nodes[1:])[::50]
        np.testing.assert_allclose(self.G(kappa), gf.greens_superlorentzian(kappa), rtol=1e-6, atol=1e-9)

    def test_scalar_call_returns_float(self):
        self.assertIsInstance(self.G(1.0), float)

    def test_outside_support_raises(self):
        with self.assertRaises(DomainError):
            self.G(self.kappa_max * 1.01)
        with self.assertRaises(DomainError):
            self.G(np.array([0.5, -0.1]))
        # DomainError is a ValueError
        with self.assertRaises(ValueError):
            self.G(-1.0)

    def test_requires_enough_samples(self):
        with self.assertRaises(ValueError):
            gf.interpolate_greens_function(gf.greens_gaussian, 0.0, 10.0, n_samples=100)

    def test_greens_function_pair(self):
        g, dg = gf.greens_function_pair('lorentzian', 10.0)
        self.assertIs(g, gf.greens_lorentzian)
        self.assertIs(dg, gf.dG_o_dT2s_x_T2s_lorentzian)

        g, dg = gf.greens_function_pair('superlorentzian', 10.0, with_derivative=False, n_samples=1025)
        self.assertIsInstance(g, gf.InterpolatedGreensFunction)
        self.assertIsNone(dg)

        with self.assertRaises(ValueError):
            gf.greens_function_pair('voigt', 10.0)


if __name__ == '__main__':
    unittest.main()
