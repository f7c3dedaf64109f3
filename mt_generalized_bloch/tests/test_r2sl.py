# File: mt_generalized_bloch/tests/test_r2sl.py
import types
import unittest
from unittest import mock

import numpy as np

from mt_generalized_bloch.core import greens_functions as gf
from mt_generalized_bloch.core.config import SolverConfig
from mt_generalized_bloch.core.exceptions import DomainError, SaturationFitError
from mt_generalized_bloch.saturation import r2sl
from mt_generalized_bloch.saturation.graham import (
    GrahamSaturationTable,
    graham_saturation_rate,
    precompute_saturation_graham,
)


def _central_difference(func, x, rel=1e-6):
    h = rel * abs(x)
    return (func(x + h) - func(x - h)) / (2 * h)


class TestRotationModel(unittest.TestCase):

    def test_limits(self):
        # no rotation leaves zs untouched; no damping is a plain rotation
        self.assertAlmostEqual(r2sl.rotation_model(2.0, 0.0)[0], 1.0, places=12)
        for alpha in (0.3, 1.0, 2.5):
            self.assertAlmostEqual(r2sl.rotation_model(0.0, alpha)[0], np.cos(alpha), places=12)

    def test_derivatives(self):
        # under- and over-damped regimes
        for a, alpha in ((1.3, 0.9), (3.0, 0.5), (6.0, 3.2)):
            _, dz_da, dz_dalpha = r2sl.rotation_model(a, alpha)
            fd_a = _central_difference(lambda x: r2sl.rotation_model(x, alpha)[0], a)
            fd_alpha = _central_difference(lambda x: r2sl.rotation_model(a, x)[0], alpha)
            self.assertAlmostEqual(dz_da, fd_a, delta=1e-7)
            self.assertAlmostEqual(dz_dalpha, fd_alpha, delta=1e-7)


class TestR2slTableAlgebra(unittest.TestCase):
    """A table holding a polynomial that the bicubic spline reproduces exactly."""

    @staticmethod
    def poly(tau, alpha):
        return 0.5 + 0.02 * tau + 0.1 * alpha**2 + 0.01 * tau * alpha

    def setUp(self):
        tau = np.linspace(2.0, 20.0, 6)
        alpha = np.linspace(0.2, 3.0, 6)
        self.table = r2sl.R2slTable(tau, alpha, self.poly(tau[:, None], alpha[None, :]))
        self.TRF, self.omega1, self.B1, self.T2s = 1e-4, 1.5 / 1e-4, 0.9, 1e-5

    def R2sl(self, TRF=None, omega1=None, B1=None, T2s=None):
        TRF = self.TRF if TRF is None else TRF
        omega1 = self.omega1 if omega1 is None else omega1
        B1 = self.B1 if B1 is None else B1
        T2s = self.T2s if T2s is None else T2s
        return self.table.R2sl(TRF, omega1 * TRF, B1, T2s)

    def test_values(self):
        tau, a = self.TRF / self.T2s, self.B1 * self.omega1 * self.TRF
        self.assertAlmostEqual(self.table.f(tau, a), self.poly(tau, a), places=10)
        self.assertAlmostEqual(self.R2sl() * self.T2s, self.poly(tau, a), places=10)
        self.assertEqual(self.table(self.TRF, self.omega1 * self.TRF, self.B1, self.T2s), self.R2sl())

    def test_first_derivatives(self):
        args = (self.TRF, self.omega1 * self.TRF, self.B1, self.T2s)
        expected = {
            'dR2sl_dT2s': _central_difference(lambda x: self.R2sl(T2s=x), self.T2s),
            'dR2sl_dB1': _central_difference(lambda x: self.R2sl(B1=x), self.B1),
            'dR2sl_domega1': _central_difference(lambda x: self.R2sl(omega1=x), self.omega1),
            'dR2sl_dTRF': _central_difference(lambda x: self.R2sl(TRF=x), self.TRF),
        }
        for name, fd in expected.items():
            self.assertAlmostEqual(getattr(self.table, name)(*args) / fd, 1.0, places=5, msg=name)

    def test_second_derivatives(self):
        def first(name, **changes):
            p = dict(TRF=self.TRF, omega1=self.omega1, B1=self.B1, T2s=self.T2s)
            p.update(changes)
            return getattr(self.table, name)(p['TRF'], p['omega1'] * p['TRF'], p['B1'], p['T2s'])

        args = (self.TRF, self.omega1 * self.TRF, self.B1, self.T2s)
        expected = {
            'd2R2sl_dT2s_domega1': _central_difference(lambda x: first('dR2sl_domega1', T2s=x), self.T2s),
            'd2R2sl_dB1_domega1': _central_difference(lambda x: first('dR2sl_domega1', B1=x), self.B1),
            'd2R2sl_dT2s_dTRF': _central_difference(lambda x: first('dR2sl_dTRF', T2s=x), self.T2s),
            'd2R2sl_dB1_dTRF': _central_difference(lambda x: first('dR2sl_dTRF', B1=x), self.B1),
        }
        for name, fd in expected.items():
            self.assertAlmostEqual(getattr(self.table, name)(*args) / fd, 1.0, places=5, msg=name)

    def test_saturation_rate_derivatives(self):
        Rrf, dRrf_dB1, dRrf_dT2s = self.table.saturation_rate(self.TRF, self.omega1, self.B1, self.T2s)
        self.assertGreater(Rrf, 0)
        rate = lambda **kw: self.table.saturation_rate(kw.get('TRF', self.TRF), self.omega1,
                                                       kw.get('B1', self.B1), kw.get('T2s', self.T2s))[0]
        self.assertAlmostEqual(dRrf_dB1 / _central_difference(lambda x: rate(B1=x), self.B1), 1.0, places=5)
        self.assertAlmostEqual(dRrf_dT2s / _central_difference(lambda x: rate(T2s=x), self.T2s), 1.0, places=5)
        # the sign of the pulse does not matter
        self.assertEqual(self.table.saturation_rate(self.TRF, -self.omega1, self.B1, self.T2s)[0], Rrf)

    def test_saturation_rate_rejects_zs_through_zero(self):
        # tau = 2, alpha' = 2.9: the damped rotation ends at zs < 0
        TRF, T2s = 2e-5, 1e-5
        self.assertLess(r2sl.rotation_model(self.table.f(2.0, 2.9) * 2.0, 2.9)[0], 0)
        with self.assertRaises(DomainError) as ctx:
            self.table.saturation_rate(TRF, 2.9 / TRF, 1.0, T2s)
        self.assertIn('TRF=2e-05', str(ctx.exception))
        self.assertIn('B1=1', str(ctx.exception))

    def test_outside_table_raises(self):
        with self.assertRaises(DomainError):
            self.table.R2sl(1e-4, 1.5, 1.0, 1e-6)  # TRF/T2s = 100
        with self.assertRaises(DomainError):
            self.table.dR2sl_dB1(1e-4, 5.0, 1.0, 1e-5)  # B1*alpha = 5

    def test_table_is_read_only(self):
        with self.assertRaises(ValueError):
            self.table.values[0, 0] = 1.0

    def test_vector_evaluation(self):
        alpha = np.array([0.5, 1.0, 2.0])
        TRF = np.array([5e-5, 1e-4, 1.5e-4])
        r2s, d_T2s, d_B1 = r2sl.evaluate_R2sl_vector(alpha, TRF, self.B1, self.T2s, self.table)
        self.assertEqual(r2s.shape, alpha.shape)
        np.testing.assert_array_equal(d_T2s, np.zeros(3))
        np.testing.assert_array_equal(d_B1, np.zeros(3))
        np.testing.assert_allclose(r2s[1], self.table.R2sl(1e-4, 1.0, self.B1, self.T2s), rtol=1e-14)

        _, d_T2s, d_B1 = r2sl.evaluate_R2sl_vector(alpha, TRF, self.B1, self.T2s, self.table, ('T2s', 'B1'))
        np.testing.assert_allclose(d_B1, self.table.dR2sl_dB1(TRF, alpha, self.B1, self.T2s), rtol=1e-14)
        self.assertTrue(np.all(d_T2s != 0))

        out = r2sl.evaluate_R2sl_vector_OCT(alpha, TRF, self.B1, self.T2s, self.table, ('B1',))
        self.assertEqual(len(out), 9)
        for arr in out:
            self.assertEqual(np.shape(arr), alpha.shape)
        np.testing.assert_array_equal(out[1], np.zeros(3))


class TestPrecomputeR2sl(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.config = SolverConfig(rtol=1e-9, atol=1e-11)
        # TRF/T2s in [5, 30], B1*alpha in [0.5, 2]
        cls.table = r2sl.precompute_R2sl(5e-5, 3e-4, 1e-5, 1e-5, 0.5, 2.0, 1.0, 1.0,
                                         greens=gf.greens_gaussian, grid_size=5, n_workers=2,
                                         config=cls.config)

    def test_grid(self):
        self.assertEqual(self.table.values.shape, (5, 5))
        self.assertAlmostEqual(self.table.tau[0], 5.0, places=5)
        self.assertAlmostEqual(self.table.tau[-1], 30.0, places=5)
        np.testing.assert_allclose(self.table.alpha, np.linspace(0.5, 2.0, 5))
        self.assertTrue(np.all(self.table.values > 0))

    def test_nodes_reproduce_generalized_bloch(self):
        for i, j in ((0, 0), (2, 3), (4, 4)):
            tau, alpha = self.table.tau[i], self.table.alpha[j]
            z_gbloch = r2sl._terminal_zs(tau, alpha, gf.greens_gaussian, self.config)
            z_model = r2sl.rotation_model(self.table.f(tau, alpha) * tau, alpha)[0]
            self.assertAlmostEqual(z_model, z_gbloch, delta=1e-6)

    def test_invalid_ranges(self):
        with self.assertRaises(ValueError):
            r2sl.precompute_R2sl(5e-5, 3e-4, 1e-5, 1e-5, 0.5, 2.0, 1.0, 1.0, grid_size=3)
        with self.assertRaises(ValueError):
            r2sl.precompute_R2sl(5e-5, 5e-5, 1e-5, 1e-5, 0.5, 2.0, 1.0, 1.0, grid_size=4)

    def test_failed_root_finding_propagates(self):
        # 0.95 lies between cos(alpha) and 1 for every cell, so each cell is bracketed
        failed = types.SimpleNamespace(converged=False, flag='convergence error', root=1.0)
        with mock.patch.object(r2sl, '_terminal_zs', return_value=0.95), \
                mock.patch.object(r2sl, 'root_scalar', return_value=failed):
            with self.assertRaises(SaturationFitError) as ctx:
                r2sl.precompute_R2sl(5e-5, 3e-4, 1e-5, 1e-5, 0.5, 2.0, 1.0, 1.0,
                                     greens=gf.greens_gaussian, grid_size=4)
        self.assertIsNotNone(ctx.exception.tau)
        self.assertIsNotNone(ctx.exception.alpha)

    def test_unreachable_zs_raises(self):
        # the damped rotation never leaves zs above 1
        with mock.patch.object(r2sl, '_terminal_zs', return_value=1.5):
            with self.assertRaises(SaturationFitError):
                r2sl.precompute_R2sl(5e-5, 3e-4, 1e-5, 1e-5, 0.5, 2.0, 1.0, 1.0,
                                     greens=gf.greens_gaussian, grid_size=4)


class TestFitRate(unittest.TestCase):

    def test_rate_far_from_unit_start(self):
        # root at rho ~ 0.2, where a Newton-type solve started at rho = 1 stalls
        tau, alpha, z = 10.7778, 1.5, 0.47289
        rho = r2sl._fit_rate(tau, alpha, z)
        self.assertGreater(rho, 0.15)
        self.assertLess(rho, 0.25)
        self.assertAlmostEqual(r2sl.rotation_model(rho * tau, alpha)[0], z, delta=1e-10)

    def test_flip_angles_beyond_pi(self):
        for alpha, z in ((3.3, -0.3), (3.0, 0.2), (0.05, 0.9995)):
            rho = r2sl._fit_rate(12.0, alpha, z)
            self.assertGreaterEqual(rho, 0.0)
            self.assertAlmostEqual(r2sl.rotation_model(rho * 12.0, alpha)[0], z, delta=1e-10)

    def test_rotation_model_is_finite_for_strong_damping(self):
        z, dz_da, dz_dalpha = r2sl.rotation_model(5e3, 2.0)
        self.assertTrue(np.isfinite([z, dz_da, dz_dalpha]).all())
        self.assertAlmostEqual(z, np.exp(-4.0 / 5e3), places=5)


class TestPrecomputeR2slSuperLorentzian(unittest.TestCase):

    def test_short_pulses(self):
        # TRF/T2s in [8.3, 12], B1*alpha in [1.5, 3.3]
        table = r2sl.precompute_R2sl(1e-4, 1.2e-4, 1e-5, 1.2e-5, 1.5, 3.3, 1.0, 1.0, grid_size=4,
                                     config=SolverConfig(rtol=1e-7, atol=1e-9, greens_samples=1025))
        self.assertEqual(table.values.shape, (4, 4))
        self.assertTrue(np.all(np.isfinite(table.values)))
        self.assertTrue(np.all(table.values >= 0))


class TestGrahamSaturation(unittest.TestCase):

    def test_table_matches_direct_rate(self):
        table = precompute_saturation_graham(3e-4, 5e-4, 10e-6, 14e-6)
        for TRF, T2s in ((3e-4, 14e-6), (4e-4, 12e-6), (5e-4, 10e-6)):
            direct = graham_saturation_rate(TRF, 3e3, 0.9, T2s)
            tabulated = table.saturation_rate(TRF, 3e3, 0.9, T2s)
            np.testing.assert_allclose(tabulated[:2], direct[:2], rtol=1e-5)
            np.testing.assert_allclose(tabulated[2], direct[2], rtol=1e-3)
            self.assertAlmostEqual(table.rate(TRF, 3e3, 0.9, T2s), tabulated[0])

    def test_T2s_derivative(self):
        TRF, omega1, B1, T2s = 4e-4, 3e3, 0.9, 12e-6
        fd = _central_difference(lambda x: graham_saturation_rate(TRF, omega1, B1, x)[0], T2s, rel=1e-3)
        self.assertAlmostEqual(graham_saturation_rate(TRF, omega1, B1, T2s)[2] / fd, 1.0, places=4)

    def test_outside_table_raises(self):
        table = GrahamSaturationTable(10.0, 20.0)
        with self.assertRaises(DomainError):
            table.saturation_rate(1e-4, 1e3, 1.0, 1e-6)
        with self.assertRaises(ValueError):
            GrahamSaturationTable(20.0, 10.0)


if __name__ == '__main__':
    unittest.main()
