"""
Tests for the fractal family, parameter selection and seed regions.
"""

import unittest
import os
import sys
from collections import Counter

import numpy as np

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fractal_wallpaper.core.fractal_types import (
    FractalRegistry,
    ParameterSelection,
    fractal_name,
    is_known,
    resolve_power,
    select_fractal_parameters,
    weighted_choice,
)
from fractal_wallpaper.core.math_functions import PowerSpec, Variant
from fractal_wallpaper.core.regions import (
    COMPLEX_POWER_MIN_EDGE_DENSITY,
    DYNAMIC_ZOOM_STRATEGY,
    RecentRegions,
    RegionAnalysis,
    SeedRegion,
    find_dynamic_regions,
    get_region,
    get_regions,
    quality_for_variance,
    select_region,
)
from fractal_wallpaper.core.search import SearchStrategy

SMALL_ANALYSIS = RegionAnalysis(grid_size=6, subsample_size=4, max_iter=60)


class TestFractalFamily(unittest.TestCase):
    def test_names(self):
        self.assertEqual(fractal_name(PowerSpec(2)), 'Mandelbrot')
        self.assertEqual(fractal_name(PowerSpec(3)), 'Mandelbrot3')
        self.assertEqual(fractal_name(PowerSpec(2, 0, Variant.CONJUGATE)), 'Tricorn')
        self.assertEqual(fractal_name(PowerSpec(2, 0, Variant.ABSOLUTE)), 'BurningShip')
        self.assertEqual(fractal_name(PowerSpec(2.5, -0.75)), 'Power_2.50_m0.75i')
        self.assertEqual(fractal_name(PowerSpec(2.5, 0.75, Variant.CONJUGATE)),
                         'Power_2.50_p0.75i_conjugate')

    def test_known(self):
        self.assertTrue(is_known(PowerSpec(3)))
        self.assertFalse(is_known(PowerSpec(5)))
        self.assertFalse(is_known(PowerSpec(2, 0, Variant.ABSOLUTE)))
        self.assertFalse(is_known(PowerSpec(2.5, 0.5)))

    def test_registry(self):
        self.assertEqual(FractalRegistry.get('burning_ship').name, 'BurningShip')
        self.assertEqual(FractalRegistry.for_power(PowerSpec(2)).name, 'Mandelbrot')
        generic = FractalRegistry.for_power(PowerSpec(2.25, 1.0))
        self.assertEqual(generic.name, 'Power_2.25_p1.00i')
        self.assertFalse(generic.known)
        iterator = generic.create_iterator()
        self.assertEqual(iterator.power, PowerSpec(2.25, 1.0))
        self.assertFalse(iterator.use_integer_path)
        self.assertIn('Tricorn', FractalRegistry.list_fractals())
        with self.assertRaises(ValueError):
            FractalRegistry.get('julia')

    def test_resolve_power(self):
        self.assertIsNone(resolve_power(None))
        self.assertEqual(resolve_power('2.5+0.75i', 'conjugate'),
                         PowerSpec(2.5, 0.75, Variant.CONJUGATE))
        self.assertEqual(resolve_power(PowerSpec(3), 'burning-ship').variant, Variant.ABSOLUTE)


class TestParameterSelection(unittest.TestCase):
    def test_weighted_choice(self):
        rng = np.random.default_rng(8)
        self.assertEqual(weighted_choice({'a': 1.0, 'b': 0.0}, rng), 'a')
        with self.assertRaises(ValueError):
            weighted_choice({'a': 0.0}, rng)

        counts = Counter(weighted_choice({'a': 3.0, 'b': 1.0}, rng) for _ in range(2000))
        self.assertTrue(1350 < counts['a'] < 1650)

    def test_integer_only(self):
        selection = ParameterSelection(integer_power_weight=1.0, complex_power_weight=0.0,
                                       integer_powers={3: 1.0}, variants={'standard': 1.0},
                                       organic_exploration_rate=0.0)
        selected = select_fractal_parameters(selection, np.random.default_rng(9))
        self.assertEqual(selected.power, PowerSpec(3))
        self.assertFalse(selected.use_organic_exploration)

    def test_complex_power_ranges(self):
        selection = ParameterSelection(integer_power_weight=0.0, complex_power_weight=1.0)
        rng = np.random.default_rng(10)
        for _ in range(50):
            power = select_fractal_parameters(selection, rng).power
            self.assertTrue(2.0 <= power.real <= 4.0)
            self.assertTrue(0.2 <= abs(power.imag) <= 2.0)
            self.assertFalse(power.is_integer)

    def test_from_dict(self):
        selection = ParameterSelection.from_dict({
            'integerPowerWeight': 0.5,
            'integerPowers': {'2': 1, '5': 2},
            'variants': {'standard': 1, 'tricorn': 1},
        })
        self.assertEqual(selection.integer_power_weight, 0.5)
        self.assertEqual(selection.integer_powers, {2: 1.0, 5: 2.0})
        with self.assertRaises(ValueError):
            ParameterSelection.from_dict({'variants': {'spiral': 1}})


class TestRegions(unittest.TestCase):
    def test_tables(self):
        self.assertEqual(len(get_regions('Mandelbrot')), 20)
        self.assertEqual(get_regions('Nope'), [])
        region = get_region('Mandelbrot', 'Spiral_Valley')
        self.assertEqual((region.cx, region.cy), (-0.7269, 0.1889))
        with self.assertRaises(ValueError):
            get_region('Mandelbrot', 'Atlantis')

    def test_quartic_regions_carry_strategy(self):
        rng = np.random.default_rng(11)
        for region in get_regions('Mandelbrot4'):
            strategy = SearchStrategy.from_dict(region.zoom_strategy, rng)
            self.assertTrue(6 <= strategy.zoom_steps <= 14)
            self.assertEqual(strategy.search_samples, 200)

    def test_recent_regions_ring_buffer(self):
        recent = RecentRegions(2)
        for name in ('a', 'b', 'c'):
            recent.add(name)
        self.assertEqual(list(recent), ['b', 'c'])
        self.assertNotIn('a', recent)
        self.assertEqual(len(recent), 2)

        disabled = RecentRegions(0)
        disabled.add('a')
        self.assertEqual(len(disabled), 0)

    def test_select_region_avoids_recent(self):
        regions = [SeedRegion('A', 0.0, 0.0), SeedRegion('B', 1.0, 0.0)]
        recent = RecentRegions(2)
        recent.add('A')
        rng = np.random.default_rng(12)
        self.assertEqual(select_region(regions, rng, recent).name, 'B')
        # Every region is recent now, so one is picked anyway
        self.assertIn(select_region(regions, rng, recent).name, ('A', 'B'))
        with self.assertRaises(ValueError):
            select_region([], rng)


class TestDynamicRegions(unittest.TestCase):
    def test_complex_power_regions(self):
        regions = find_dynamic_regions(PowerSpec(2.5, 0.75), analysis=SMALL_ANALYSIS)
        self.assertTrue(1 <= len(regions) <= 5)
        for region in regions:
            self.assertIs(region.zoom_strategy, DYNAMIC_ZOOM_STRATEGY)
            self.assertGreaterEqual(region.quality_overrides['minEdgeDensity'],
                                    COMPLEX_POWER_MIN_EDGE_DENSITY)

        variances = [r.variance for r in regions if r.name.startswith('ComplexPower_Region')]
        self.assertEqual(variances, sorted(variances, reverse=True))

    def test_fallback_when_nothing_varies(self):
        # Far outside the set every point escapes at once
        regions = find_dynamic_regions(PowerSpec(2), center_x=100.0, center_y=100.0, width=1.0,
                                       analysis=SMALL_ANALYSIS)
        self.assertEqual(len(regions), 1)
        self.assertEqual(regions[0].name, 'ComplexPower_Fallback')
        self.assertEqual((regions[0].cx, regions[0].cy), (100.0, 100.0))

    def test_variance_scaled_thresholds(self):
        low = quality_for_variance(0.0)
        high = quality_for_variance(1e9)
        self.assertEqual(low['minVisiblePixels'], 0.9)
        self.assertEqual(low['minActiveCells'], 4)
        self.assertEqual(high['minActiveCells'], 8)
        self.assertAlmostEqual(high['minEdgeDensity'], 0.015)
        self.assertAlmostEqual(high['minGeometryScore'], 0.20)

    def test_discovered_strategy_resolves(self):
        strategy = SearchStrategy.from_dict(DYNAMIC_ZOOM_STRATEGY, np.random.default_rng(13))
        self.assertEqual(strategy.zoom_mult_adaptive_max, 2.0)
        self.assertEqual(strategy.skip_complexity_check_steps, 0)


if __name__ == '__main__':
    unittest.main()
