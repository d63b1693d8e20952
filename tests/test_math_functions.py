"""
Tests for the iteration engine and view geometry.
Scalar and vectorised iteration must agree point for point.
"""

import unittest
import os
import sys
import math

import numpy as np

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fractal_wallpaper.core.math_functions import (
    ComplexPlane,
    FractalIterator,
    PowerSpec,
    Variant,
    apply_variant,
    complex_power,
    complex_power_array,
    integer_power,
    smooth_escape_index,
)
from fractal_wallpaper.acceleration.numba_backend import is_numba_available


def _grid(nx=13, ny=9):
    xs, ys = np.meshgrid(np.linspace(-2.0, 1.0, nx), np.linspace(-1.2, 1.2, ny))
    return xs, ys


class TestIterate(unittest.TestCase):
    def test_origin_stays_in_set(self):
        result = FractalIterator().iterate(0.0, 0.0, 100)
        self.assertTrue(result.in_set)
        self.assertEqual(result.iteration_count, 100)
        self.assertEqual(result.smooth_index, 100.0)

    def test_escape_iteration_count(self):
        # c = 2+2i: |z1|^2 = 8, |z2|^2 = 104, |z3|^2 = 10600
        result = FractalIterator().iterate(2.0, 2.0, 100)
        self.assertFalse(result.in_set)
        self.assertEqual(result.iteration_count, 3)
        self.assertGreater(result.smooth_index, 0.0)
        self.assertLess(result.smooth_index, 4.0)

    def test_far_point_escapes_immediately(self):
        result = FractalIterator().iterate(20.0, 0.0, 100)
        self.assertEqual(result.iteration_count, 1)
        self.assertEqual(result.smooth_index, 0.0)

    def test_zero_max_iter(self):
        iterator = FractalIterator()
        result = iterator.iterate(0.3, 0.2, 0)
        self.assertTrue(result.in_set)
        self.assertEqual(result.smooth_index, 0.0)

        grid = iterator.iterate_array(*_grid(), 0)
        self.assertTrue(grid.in_set.all())
        self.assertTrue(np.all(grid.smooth == 0.0))

    def test_smooth_index_is_continuous(self):
        # Crossing from n to n+1 iterations barely changes the smooth index
        iterator = FractalIterator()
        xs = np.linspace(0.30, 0.45, 400)
        grid = iterator.iterate_array(xs, np.zeros_like(xs), 200)
        escaped = ~grid.in_set
        jumps = np.abs(np.diff(grid.smooth[escaped]))
        counts = np.diff(grid.iterations[escaped])
        self.assertTrue(np.any(counts != 0))
        self.assertLess(jumps[counts != 0].max(), 1.0)

    def test_smooth_index_never_negative(self):
        self.assertEqual(smooth_escape_index(1, 1e6), 0.0)
        self.assertEqual(smooth_escape_index(3, math.inf), 0.0)
        self.assertEqual(smooth_escape_index(3, 0.0), 0.0)


class TestScalarVectorAgreement(unittest.TestCase):
    def _compare(self, power):
        iterator = FractalIterator(power)
        xs, ys = _grid()
        grid = iterator.iterate_array(xs, ys, 60)
        for (row, col), x in np.ndenumerate(xs):
            scalar = iterator.iterate(float(x), float(ys[row, col]), 60)
            self.assertEqual(scalar.iteration_count, grid.iterations[row, col])
            self.assertEqual(scalar.in_set, bool(grid.in_set[row, col]))
            self.assertAlmostEqual(scalar.smooth_index, float(grid.smooth[row, col]), places=9)

    def test_integer_powers(self):
        for n in (2, 3, 4, 5):
            with self.subTest(power=n):
                self._compare(PowerSpec(n))

    def test_variants(self):
        for variant in (Variant.CONJUGATE, Variant.ABSOLUTE):
            with self.subTest(variant=variant):
                self._compare(PowerSpec(2, 0, variant))

    def test_complex_power_mostly_agrees(self):
        # Transcendental paths may differ in the last bit; chaotic points can diverge
        iterator = FractalIterator(PowerSpec(2.5, 0.75))
        xs, ys = _grid()
        grid = iterator.iterate_array(xs, ys, 40)
        matches = 0
        for (row, col), x in np.ndenumerate(xs):
            scalar = iterator.iterate(float(x), float(ys[row, col]), 40)
            matches += scalar.iteration_count == grid.iterations[row, col]
        self.assertGreaterEqual(matches / xs.size, 0.9)

    def test_shape_is_preserved(self):
        xs = np.zeros((2, 3, 4))
        grid = FractalIterator().iterate_array(xs, xs, 10)
        self.assertEqual(grid.shape, (2, 3, 4))

    @unittest.skipUnless(is_numba_available(), "numba not installed")
    def test_numba_matches_numpy(self):
        xs, ys = _grid()
        for power in (PowerSpec(2), PowerSpec(2, 0, Variant.ABSOLUTE)):
            numpy_grid = FractalIterator(power).iterate_array(xs, ys, 80)
            jit_grid = FractalIterator(power, use_numba=True).iterate_array(xs, ys, 80)
            np.testing.assert_array_equal(numpy_grid.iterations, jit_grid.iterations)
            np.testing.assert_allclose(numpy_grid.smooth, jit_grid.smooth, rtol=1e-9)


class TestPowers(unittest.TestCase):
    def test_integer_power_matches_complex(self):
        z = complex(1.2, 0.7)
        for n in range(7):
            real, imag = integer_power(z.real, z.imag, n)
            expected = z ** n
            self.assertAlmostEqual(real, expected.real, places=9)
            self.assertAlmostEqual(imag, expected.imag, places=9)

    def test_complex_power_matches_principal_branch(self):
        z = complex(1.5, 0.5)
        w = complex(2.5, 0.75)
        real, imag = complex_power(z.real, z.imag, w.real, w.imag)
        expected = z ** w
        self.assertAlmostEqual(real, expected.real, places=9)
        self.assertAlmostEqual(imag, expected.imag, places=9)

    def test_complex_power_at_origin(self):
        self.assertEqual(complex_power(0.0, 0.0, 2.5, 0.75), (0.0, 0.0))
        real, imag = complex_power_array(np.zeros(3), np.zeros(3), 2.5, 0.75)
        self.assertTrue(np.all(real == 0) and np.all(imag == 0))

    def test_complex_power_overflow_escapes(self):
        real, _ = complex_power(1e300, 0.0, 3.0, 0.0)
        self.assertEqual(real, math.inf)
        real, _ = complex_power_array(np.array([1e300]), np.array([0.0]), 3.0, 0.0)
        self.assertTrue(np.isinf(real[0]))

    def test_variants(self):
        self.assertEqual(apply_variant(-1.5, -2.0, Variant.ABSOLUTE), (1.5, 2.0))
        self.assertEqual(apply_variant(-1.5, -2.0, Variant.CONJUGATE), (-1.5, 2.0))
        self.assertEqual(apply_variant(-1.5, -2.0, Variant.STANDARD), (-1.5, -2.0))

    def test_tricorn_is_mirror_symmetric(self):
        iterator = FractalIterator(PowerSpec(2, 0, Variant.CONJUGATE))
        for x, y in ((-0.3, 0.6), (0.2, 0.45), (-1.1, 0.25)):
            self.assertEqual(iterator.iterate(x, y, 100).iteration_count,
                             iterator.iterate(x, -y, 100).iteration_count)


class TestPowerSpec(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(PowerSpec.parse("2.5+0.75i"), PowerSpec(2.5, 0.75))
        self.assertEqual(PowerSpec.parse("2 - 1.5i"), PowerSpec(2.0, -1.5))
        self.assertTrue(PowerSpec.parse("3").is_integer)
        self.assertEqual(PowerSpec.parse("3", "tricorn").variant, Variant.CONJUGATE)

    def test_parse_rejects_garbage(self):
        with self.assertRaises(ValueError):
            PowerSpec.parse("abc")

    def test_str(self):
        self.assertEqual(str(PowerSpec(2.5, -0.75)), "2.5-0.75i")
        self.assertEqual(str(PowerSpec(3)), "3")

    def test_integer_property(self):
        self.assertEqual(PowerSpec(4.0).integer, 4)
        with self.assertRaises(ValueError):
            PowerSpec(2.5).integer

    def test_unknown_variant(self):
        with self.assertRaises(ValueError):
            Variant.parse("spiral")


class TestComplexPlane(unittest.TestCase):
    def test_aspect_aware_bounds(self):
        plane = ComplexPlane(0.0, 0.0, 1.0, 200, 100)
        self.assertEqual(plane.bounds, (-7.0, 7.0, -3.5, 3.5))

        tall = ComplexPlane(0.0, 0.0, 2.0, 100, 200)
        self.assertEqual(tall.bounds, (-1.75, 1.75, -3.5, 3.5))

    def test_invalid_view(self):
        with self.assertRaises(ValueError):
            ComplexPlane(0.0, 0.0, 1.0, 0, 100)
        with self.assertRaises(ValueError):
            ComplexPlane(0.0, 0.0, 0.0, 100, 100)

    def test_coordinate_arrays(self):
        xs, ys = ComplexPlane(0.0, 0.0, 1.0, 8, 4).create_coordinate_arrays()
        self.assertEqual(xs.shape, (4, 8))
        self.assertEqual(xs[0, 0], -7.0)
        self.assertEqual(ys[0, 0], -3.5)
        self.assertTrue(np.all(np.diff(xs[0]) > 0))

    def test_sub_view_of_full_image(self):
        plane = ComplexPlane(0.5, -0.25, 4.0, 200, 100)
        cx, cy, zoom = plane.sub_view(0, 0, 200, 100)
        self.assertAlmostEqual(cx, 0.5)
        self.assertAlmostEqual(cy, -0.25)
        self.assertAlmostEqual(zoom, 4.0)

    def test_sub_view_covers_rectangle(self):
        plane = ComplexPlane(0.0, 0.0, 1.0, 200, 100)
        cx, cy, zoom = plane.sub_view(0, 0, 100, 100)
        sub = ComplexPlane(cx, cy, zoom, 100, 100)
        for got, expected in zip(sub.bounds, (-7.0, 0.0, -3.5, 3.5)):
            self.assertAlmostEqual(got, expected)


if __name__ == '__main__':
    unittest.main()
