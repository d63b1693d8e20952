"""
Aspect-ratio crop selection for device wallpapers.

The accepted scan render is searched for the best sub-rectangle of each
target aspect ratio on a fixed 6x6 grid of offsets. Each candidate is scored
with the quality metrics of :mod:`fractal_wallpaper.analysis.quality` and a
slight preference for central placement. The winner is mapped back to
fractal coordinates and re-rendered at the device resolution rather than
upscaled from the scan.
"""

import math
import numpy as np
from typing import Any, Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass
import logging

from .quality import QualityAnalyzer, QualityConfig, QualityReport

logger = logging.getLogger(__name__)

CROP_GRID = 6

# Score weights of the crop metrics
GEOMETRY_WEIGHT = 0.45
EDGE_WEIGHT = 0.30
SPATIAL_WEIGHT = 0.15
VISIBLE_WEIGHT = 0.10


@dataclass(frozen=True)
class DeviceTarget:
    """Output device: aspect ratio and native resolution."""

    name: str
    aspect_width: int
    aspect_height: int
    out_width: int
    out_height: int

    def __post_init__(self):
        if min(self.aspect_width, self.aspect_height, self.out_width, self.out_height) <= 0:
            raise ValueError(f"Device target '{self.name}' needs positive dimensions")

    @property
    def aspect(self) -> float:
        return self.aspect_width / self.aspect_height

    @property
    def pixels(self) -> int:
        return self.out_width * self.out_height

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeviceTarget':
        return cls(
            name=data['name'],
            aspect_width=int(data.get('aspectWidth', data.get('aspect_width'))),
            aspect_height=int(data.get('aspectHeight', data.get('aspect_height'))),
            out_width=int(data.get('outWidth', data.get('out_width'))),
            out_height=int(data.get('outHeight', data.get('out_height'))),
        )


DEFAULT_TARGETS: Tuple[DeviceTarget, ...] = (
    DeviceTarget('desktop', 16, 9, 4096, 2304),
    DeviceTarget('mobile', 9, 16, 2304, 4096),
)


@dataclass(frozen=True)
class CropRectangle:
    """Best crop of one aspect ratio in scan pixel space."""

    x: int
    y: int
    w: int
    h: int
    score: float
    quality: QualityReport

    @property
    def pixels(self) -> int:
        return self.w * self.h


@dataclass(frozen=True)
class CropOverlap:
    """Intersection of two crops, as reported (never resolved)."""

    x: int
    y: int
    w: int
    h: int
    fraction_of_first: float
    fraction_of_second: float

    @property
    def pixels(self) -> int:
        return self.w * self.h


@dataclass
class CropSelection:
    """A target, its crop and the fractal coordinates of the crop."""

    target: DeviceTarget
    crop: CropRectangle
    center_x: float
    center_y: float
    zoom: float


@dataclass
class DeviceRender:
    """Native-resolution render of one crop."""

    selection: CropSelection
    render: Any


def largest_crop_size(width: int, height: int, aspect: float) -> Tuple[int, int]:
    """Largest (w, h) of the given aspect ratio that fits inside width x height."""
    if width / height > aspect:
        return max(1, int(math.floor(height * aspect))), height
    return width, max(1, int(math.floor(width / aspect)))


def rect_overlap(first: CropRectangle, second: CropRectangle) -> Optional[CropOverlap]:
    """Intersection of two rectangles, or None when they are disjoint."""
    x1 = max(first.x, second.x)
    y1 = max(first.y, second.y)
    x2 = min(first.x + first.w, second.x + second.w)
    y2 = min(first.y + first.h, second.y + second.h)
    if x2 <= x1 or y2 <= y1:
        return None

    area = (x2 - x1) * (y2 - y1)
    return CropOverlap(x1, y1, x2 - x1, y2 - y1, area / first.pixels, area / second.pixels)


def crop_score(quality: QualityReport, center_bias: float) -> float:
    score = (GEOMETRY_WEIGHT * quality.geometry_score
             + EDGE_WEIGHT * quality.edge_density
             + SPATIAL_WEIGHT * quality.spatial_distribution
             + VISIBLE_WEIGHT * quality.visible_ratio)
    return score * (0.9 + 0.1 * center_bias)


class CropSelector:
    """Grid search for the best crop per target aspect ratio."""

    def __init__(self, analyzer: Optional[QualityAnalyzer] = None, grid: int = CROP_GRID):
        if grid < 2:
            raise ValueError("Crop grid must be at least 2")
        self.analyzer = analyzer or QualityAnalyzer()
        self.grid = grid

    def _offsets(self, image_size: int, crop_size: int) -> List[int]:
        step = max(1, (image_size - crop_size) // (self.grid - 1))
        return [min(g * step, image_size - crop_size) for g in range(self.grid)]

    def find_best_crop(self, rgba: np.ndarray, crop_w: int, crop_h: int,
                       config: Optional[QualityConfig] = None) -> CropRectangle:
        """
        Best crop_w x crop_h rectangle of the buffer.

        Candidates are ranked by score only; the quality gate is not applied
        because the full buffer has already passed it. Ties keep the first
        candidate in raster order, so the result is deterministic.

        Args:
            rgba: (height, width, 4) scan buffer
            crop_w, crop_h: Crop size in pixels
            config: Thresholds forwarded to the analyzer

        Returns:
            Winning CropRectangle
        """
        height, width = rgba.shape[:2]
        if not (0 < crop_w <= width and 0 < crop_h <= height):
            raise ValueError(f"Crop {crop_w}x{crop_h} does not fit a {width}x{height} buffer")

        best: Optional[CropRectangle] = None
        for y in self._offsets(height, crop_h):
            for x in self._offsets(width, crop_w):
                quality = self.analyzer.analyze(rgba[y:y + crop_h, x:x + crop_w], config)

                dx = (x + crop_w / 2) / width - 0.5
                dy = (y + crop_h / 2) / height - 0.5
                center_bias = 1.0 - min(1.0, math.hypot(dx, dy))

                score = crop_score(quality, center_bias)
                if best is None or score > best.score:
                    best = CropRectangle(x, y, crop_w, crop_h, score, quality)

        return best

    def select_crops(self, render, targets: Sequence[DeviceTarget] = DEFAULT_TARGETS,
                     config: Optional[QualityConfig] = None) -> List[CropSelection]:
        """
        Find the best crop of every target in a render and map it to fractal space.

        Args:
            render: RenderResult of the scan
            targets: Device targets
            config: Thresholds forwarded to the analyzer

        Returns:
            One CropSelection per target, in target order
        """
        selections = []
        for target in targets:
            crop_w, crop_h = largest_crop_size(render.width, render.height, target.aspect)
            crop = self.find_best_crop(render.rgba, crop_w, crop_h, config)
            center_x, center_y, zoom = render.plane.sub_view(crop.x, crop.y, crop.w, crop.h)
            logger.info(f"Best {target.name} crop at ({crop.x}, {crop.y}) {crop.w}x{crop.h}, "
                        f"score {crop.score:.3f}")
            selections.append(CropSelection(target, crop, center_x, center_y, zoom))

        for i, first in enumerate(selections):
            for second in selections[i + 1:]:
                overlap = rect_overlap(first.crop, second.crop)
                if overlap is None:
                    logger.info(f"No overlap between {first.target.name} and {second.target.name}")
                else:
                    logger.info(f"Crop overlap {overlap.w}x{overlap.h}: "
                                f"{overlap.fraction_of_first:.1%} of {first.target.name}, "
                                f"{overlap.fraction_of_second:.1%} of {second.target.name}")
        return selections

    def render_crops(self, render, renderer, palette,
                     targets: Sequence[DeviceTarget] = DEFAULT_TARGETS,
                     config: Optional[QualityConfig] = None) -> List[DeviceRender]:
        """
        Select crops and re-render each one at its native resolution.

        Args:
            render: RenderResult of the scan
            renderer: CdfRenderer or AdaptiveTileRenderer used for the final renders
            palette: Palette of the scan
            targets: Device targets
            config: Thresholds forwarded to the analyzer

        Returns:
            One DeviceRender per target
        """
        outputs = []
        for selection in self.select_crops(render, targets, config):
            target = selection.target
            logger.info(f"Rendering {target.name} at {target.out_width}x{target.out_height}")
            result = renderer.render(target.out_width, target.out_height,
                                     selection.center_x, selection.center_y, selection.zoom,
                                     palette, render.max_iter)
            outputs.append(DeviceRender(selection, result))
        return outputs
