"""
Tests for the quality gates.
The full check is conjunctive: missing any one threshold rejects the view.
"""

import unittest
import os
import sys

import numpy as np

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fractal_wallpaper.analysis.quality import (
    QualityAnalyzer,
    QualityConfig,
    color_diversity,
    edge_density,
    middle_band,
    spatial_distribution,
)
from fractal_wallpaper.core.math_functions import FractalIterator


def gray_image(lum):
    """RGBA buffer whose brightness equals ``lum``."""
    lum = np.asarray(lum, dtype=np.uint8)
    rgba = np.empty(lum.shape + (4,), dtype=np.uint8)
    rgba[..., :3] = lum[..., np.newaxis]
    rgba[..., 3] = 255
    return rgba


class TestQualityConfig(unittest.TestCase):
    def test_from_dict_accepts_both_spellings(self):
        config = QualityConfig.from_dict({'minVisiblePixels': 0.5, 'min_active_cells': 4})
        self.assertEqual(config.min_visible_pixels, 0.5)
        self.assertEqual(config.min_active_cells, 4)
        self.assertEqual(config.min_edge_density, 0.02)

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            QualityConfig.from_dict({'minVisiblePixels': 1.5})
        with self.assertRaises(ValueError):
            QualityConfig.from_dict({'minSparkle': 0.5})
        with self.assertRaises(ValueError):
            QualityConfig(min_active_cells=26)

    def test_merged_overrides(self):
        base = QualityConfig()
        merged = base.merged({'minGeometryScore': 0.25, 'minActiveCells': 10})
        self.assertEqual(merged.min_geometry_score, 0.25)
        self.assertEqual(merged.min_active_cells, 10)
        self.assertEqual(base.min_geometry_score, 0.15)
        self.assertIs(base.merged(None), base)


class TestMetrics(unittest.TestCase):
    def test_middle_band(self):
        self.assertEqual(middle_band(150), (50, 100))
        self.assertEqual(middle_band(10), (3, 6))

    def test_color_diversity_ignores_rare_buckets(self):
        band = np.full((100, 100), 40.0)
        band[0, 0] = 200.0
        used, diversity = color_diversity(band)
        self.assertEqual(used, 1)
        self.assertAlmostEqual(diversity, 1 / 256)

    def test_edge_density_of_flat_image(self):
        self.assertEqual(edge_density(np.full((60, 60), 100.0)), 0.0)

    def test_edge_density_of_stripes(self):
        # Columns alternate every two pixels, so every sample sees a jump
        lum = np.zeros((60, 64))
        lum[:, 2::4] = 200.0
        lum[:, 3::4] = 200.0
        self.assertEqual(edge_density(lum), 1.0)

    def test_spatial_distribution(self):
        lum = np.zeros((150, 150))
        lum[:, :75] = 100.0
        report = spatial_distribution(lum)
        self.assertEqual(report.active_cells, 15)
        self.assertAlmostEqual(report.distribution_score, 0.6)
        self.assertLess(report.evenness, 1.0)

        full = spatial_distribution(np.full((150, 150), 100.0))
        self.assertEqual(full.active_cells, 25)
        self.assertEqual(full.evenness, 1.0)


class TestQualityAnalyzer(unittest.TestCase):
    def test_black_image_fails(self):
        report = QualityAnalyzer().analyze(gray_image(np.zeros((120, 120))))
        self.assertFalse(report.passes)
        self.assertEqual(report.visible_ratio, 0.0)
        self.assertEqual(report.active_cells, 0)
        self.assertIn('visible_ratio', report.failures(QualityConfig()))

    def test_textured_image_passes(self):
        rng = np.random.default_rng(11)
        lum = rng.integers(16, 256, size=(150, 300))
        report = QualityAnalyzer().analyze(gray_image(lum))
        self.assertTrue(report.passes)
        self.assertEqual(report.visible_ratio, 1.0)
        self.assertEqual(report.active_cells, 25)
        self.assertGreater(report.edge_density, 0.5)
        self.assertEqual(report.failures(QualityConfig()), ())

    def test_gate_is_conjunctive(self):
        # A smooth gradient meets every threshold except edge density
        lum = np.tile(16 + np.arange(300) * 239 / 299, (150, 1))
        report = QualityAnalyzer().analyze(gray_image(lum))
        self.assertGreater(report.color_diversity, 0.5)
        self.assertEqual(report.active_cells, 25)
        self.assertEqual(report.edge_density, 0.0)
        self.assertFalse(report.passes)
        self.assertEqual(report.failures(QualityConfig()), ('edge_density',))

        relaxed = QualityConfig(min_edge_density=0.0)
        self.assertTrue(QualityAnalyzer(config=relaxed).analyze(gray_image(lum)).passes)

    def test_precheck_rejects_interior_view(self):
        analyzer = QualityAnalyzer(FractalIterator())
        sample = analyzer.sample(-0.1, 0.0, 50.0, 200)
        self.assertEqual(sample.visible_ratio, 0.0)
        self.assertFalse(sample.passes)

    def test_precheck_accepts_exterior_view(self):
        analyzer = QualityAnalyzer(FractalIterator())
        sample = analyzer.sample(20.0, 0.0, 10.0, 200)
        self.assertEqual(sample.visible_ratio, 1.0)
        self.assertTrue(sample.passes)

    def test_precheck_needs_iterator(self):
        with self.assertRaises(ValueError):
            QualityAnalyzer().sample(0.0, 0.0, 1.0, 100)


if __name__ == '__main__':
    unittest.main()
