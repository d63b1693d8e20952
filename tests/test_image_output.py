"""
Tests for the render metadata record and the Pillow conversion.
"""

import unittest
import os
import sys
import json

import numpy as np

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fractal_wallpaper.rendering.image_output import RenderMetadata, png_info, rgba_to_image


def sample_metadata():
    return RenderMetadata(
        fractal_name='Mandelbrot',
        power='2',
        variant='standard',
        center=(-0.7269, 0.1889),
        zoom=1.5e4,
        max_iterations=1800,
        palette='Fire_Ice',
        region='Spiral_Valley',
        resolution=(1200, 1200),
        quality={'edge_density': 0.12},
    )


class TestRenderMetadata(unittest.TestCase):
    def test_timestamp_is_filled(self):
        self.assertTrue(sample_metadata().timestamp)

    def test_json_round_trip(self):
        metadata = sample_metadata()
        restored = RenderMetadata.from_json(metadata.to_json())
        self.assertEqual(restored, metadata)
        self.assertEqual(json.loads(metadata.to_json())['region'], 'Spiral_Valley')

    def test_png_info(self):
        info = png_info(sample_metadata())
        chunks = dict((chunk[1].decode('latin-1').split('\0', 1)) for chunk in info.chunks)
        self.assertEqual(chunks['Title'], 'Fractal: Mandelbrot')
        self.assertEqual(json.loads(chunks['FractalMetadata'])['max_iterations'], 1800)


class TestRgbaToImage(unittest.TestCase):
    def test_conversion(self):
        rgba = np.zeros((9, 16, 4), dtype=np.uint8)
        rgba[..., 0] = 200
        rgba[..., 3] = 255
        image = rgba_to_image(rgba)
        self.assertEqual(image.mode, 'RGBA')
        self.assertEqual(image.size, (16, 9))
        self.assertEqual(image.getpixel((0, 0)), (200, 0, 0, 255))

    def test_rejects_rgb(self):
        with self.assertRaises(ValueError):
            rgba_to_image(np.zeros((4, 4, 3), dtype=np.uint8))


if __name__ == '__main__':
    unittest.main()
