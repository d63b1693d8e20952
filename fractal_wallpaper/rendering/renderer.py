"""
Two-pass CDF renderer.

Pass 1 computes the smooth escape index of every pixel (-1 for in-set
pixels). Pass 2 maps the buffer through its cumulative histogram and the
palette, see :func:`fractal_wallpaper.rendering.coloring.colorize`.
"""

import numpy as np
from typing import Any, Dict, Optional
from dataclasses import dataclass
import logging
import time

from ..core.math_functions import ComplexPlane, FractalIterator
from .coloring import (
    ColorSmoothing,
    CycleMode,
    DEFAULT_ANTI_GRAIN_BLEND,
    Palette,
    colorize,
)

logger = logging.getLogger(__name__)


@dataclass
class RenderOptions:
    """Cosmetic options of the color-mapping pass."""

    cycle_mode: CycleMode = CycleMode.CLAMP
    color_smoothing: Optional[ColorSmoothing] = None
    anti_grain: bool = False
    anti_grain_blend: float = DEFAULT_ANTI_GRAIN_BLEND

    def __post_init__(self):
        self.cycle_mode = CycleMode.parse(self.cycle_mode)

    def validate(self):
        """Validate render options."""
        if not 0.0 <= self.anti_grain_blend <= 1.0:
            raise ValueError("anti_grain_blend must be between 0 and 1")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RenderOptions':
        """
        Build options from a flat or nested option bag.

        Accepts ``cycleMode`` (or ``paletteMapping.cycleMode``),
        ``colorSmoothing {enabled, brightness {base, amplitude, frequency}}``
        and ``antiGrain {enabled, blendFactor}``.
        """
        mapping = data.get('paletteMapping', {})
        cycle_mode = data.get('cycle_mode', data.get('cycleMode', mapping.get('cycleMode', 'clamp')))

        smoothing = None
        smoothing_data = data.get('colorSmoothing', data.get('color_smoothing'))
        if isinstance(smoothing_data, ColorSmoothing):
            smoothing = smoothing_data
        elif smoothing_data and smoothing_data.get('enabled', True):
            params = smoothing_data.get('brightness', smoothing_data)
            smoothing = ColorSmoothing(
                base=float(params.get('base', 0.9)),
                amplitude=float(params.get('amplitude', 0.1)),
                frequency=float(params.get('frequency', 0.5)),
            )

        grain = data.get('antiGrain', data.get('anti_grain', {}))
        if isinstance(grain, bool):
            grain = {'enabled': grain}
        options = cls(
            cycle_mode=cycle_mode,
            color_smoothing=smoothing,
            anti_grain=bool(grain.get('enabled', False)),
            anti_grain_blend=float(grain.get('blendFactor', grain.get('blend_factor',
                                                                      DEFAULT_ANTI_GRAIN_BLEND))),
        )
        options.validate()
        return options


@dataclass
class RenderResult:
    """Colored buffer together with the values and view it came from."""

    rgba: np.ndarray
    smooth: np.ndarray
    plane: ComplexPlane
    max_iter: int
    render_time: float = 0.0

    @property
    def width(self) -> int:
        return self.plane.width

    @property
    def height(self) -> int:
        return self.plane.height


def finish_render(smooth: np.ndarray, plane: ComplexPlane, palette: Palette, max_iter: int,
                  options: RenderOptions, start_time: float) -> RenderResult:
    """Run the color pass over a finished smooth-value buffer."""
    rgba = colorize(
        smooth, max_iter, palette,
        cycle_mode=options.cycle_mode,
        color_smoothing=options.color_smoothing,
        anti_grain=options.anti_grain_blend if options.anti_grain else None,
    )
    return RenderResult(rgba, smooth, plane, max_iter, time.time() - start_time)


class CdfRenderer:
    """Renders every pixel through the iteration engine."""

    def __init__(self, iterator: FractalIterator, options: Optional[RenderOptions] = None):
        """
        Initialize renderer.

        Args:
            iterator: Iteration engine
            options: Color-mapping options (defaults if None)
        """
        self.iterator = iterator
        self.options = options or RenderOptions()
        self.options.validate()

    def compute_smooth(self, plane: ComplexPlane, max_iter: int) -> np.ndarray:
        """Pass 1: smooth index per pixel, -1 where the point stays in the set."""
        xs, ys = plane.create_coordinate_arrays()
        result = self.iterator.iterate_array(xs, ys, max_iter)
        return np.where(result.in_set, -1.0, result.smooth)

    def render(self, width: int, height: int, cx: float, cy: float, zoom: float,
               palette: Palette, max_iter: int) -> RenderResult:
        """
        Render a view.

        Args:
            width, height: Output resolution
            cx, cy: View center
            zoom: Magnification
            palette: Palette for the color pass
            max_iter: Iteration cap

        Returns:
            RenderResult with an (height, width, 4) uint8 buffer
        """
        start_time = time.time()
        plane = ComplexPlane(cx, cy, zoom, width, height)
        smooth = self.compute_smooth(plane, max_iter)
        result = finish_render(smooth, plane, palette, max_iter, self.options, start_time)
        logger.info(f"Rendered {width}x{height} at zoom {zoom:.3g} with max_iter {max_iter} "
                    f"in {result.render_time:.2f}s")
        return result
