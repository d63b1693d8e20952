"""
Image quality analysis for candidate views.

Two gates decide whether a candidate is worth keeping. The pre-check iterates
a tiny grid directly and only measures how much of the view escapes. The full
check measures a rendered RGBA buffer: brightness diversity, visibility, edge
density and the spread of detail over a 5x5 grid. Both look at the middle
horizontal third only, where wallpaper crops spend most of their area.
"""

import numpy as np
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass, asdict, replace
import logging

from ..core.math_functions import FractalIterator, VIEW_HALF_SIZE

logger = logging.getLogger(__name__)

BRIGHTNESS_BUCKETS = 256
VISIBLE_BRIGHTNESS = 15
BUCKET_OCCUPANCY = 0.001
EDGE_THRESHOLD = 30
EDGE_STRIDE = 4
EDGE_OFFSET = 2
SPATIAL_GRID = 5
SPATIAL_STRIDE = 8
ACTIVE_CELL_RATIO = 0.1

PRECHECK_WIDTH = 48
PRECHECK_HEIGHT = 27

_CAMEL_KEYS = {
    'minVisiblePixels': 'min_visible_pixels',
    'minColorDiversity': 'min_color_diversity',
    'minEdgeDensity': 'min_edge_density',
    'minGeometryScore': 'min_geometry_score',
    'minActiveCells': 'min_active_cells',
    'minComplexityScore': 'min_complexity_score',
}


@dataclass(frozen=True)
class QualityConfig:
    """Acceptance thresholds; every one must be met for a view to pass."""

    min_visible_pixels: float = 0.7
    min_color_diversity: float = 0.1
    min_edge_density: float = 0.02
    min_geometry_score: float = 0.15
    min_active_cells: int = 8
    min_complexity_score: float = 0.0

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Validate thresholds."""
        for name in ('min_visible_pixels', 'min_color_diversity', 'min_edge_density',
                     'min_geometry_score'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if not 0 <= self.min_active_cells <= SPATIAL_GRID * SPATIAL_GRID:
            raise ValueError(f"min_active_cells must be in [0, {SPATIAL_GRID * SPATIAL_GRID}]")
        if self.min_complexity_score < 0:
            raise ValueError("min_complexity_score must be non-negative")

    @staticmethod
    def _normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
        values = {}
        for key, value in data.items():
            name = _CAMEL_KEYS.get(key, key)
            if name not in _CAMEL_KEYS.values():
                raise ValueError(f"Unknown quality option '{key}'")
            values[name] = int(value) if name == 'min_active_cells' else float(value)
        return values

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QualityConfig':
        """Create config from snake_case or camelCase keys."""
        return cls(**cls._normalize_keys(data))

    def merged(self, overrides: Optional[Dict[str, Any]]) -> 'QualityConfig':
        """Return a copy with region-specific overrides applied."""
        if not overrides:
            return self
        return replace(self, **self._normalize_keys(overrides))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SpatialReport:
    """Activity of the 5x5 grid over the middle band."""

    distribution_score: float
    evenness: float
    active_cells: int


@dataclass(frozen=True)
class QualityReport:
    """Metrics of a rendered view and the conjunctive verdict."""

    visible_ratio: float
    color_diversity: float
    used_buckets: int
    edge_density: float
    spatial_distribution: float
    spatial_evenness: float
    active_cells: int
    geometry_score: float
    passes: bool

    def failures(self, config: QualityConfig) -> Tuple[str, ...]:
        """Names of the thresholds this report misses."""
        checks = (
            ('color_diversity', self.color_diversity >= config.min_color_diversity),
            ('visible_ratio', self.visible_ratio >= config.min_visible_pixels),
            ('geometry_score', self.geometry_score >= config.min_geometry_score),
            ('active_cells', self.active_cells >= config.min_active_cells),
            ('edge_density', self.edge_density >= config.min_edge_density),
        )
        return tuple(name for name, ok in checks if not ok)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SampleReport:
    """Outcome of the pre-render visibility check."""

    visible_ratio: float
    passes: bool


def brightness(rgba: np.ndarray) -> np.ndarray:
    """Per-pixel brightness, the mean of the RGB channels."""
    return rgba[..., :3].astype(np.float64).mean(axis=-1)


def middle_band(height: int) -> Tuple[int, int]:
    """Row range [start, end) of the middle horizontal third."""
    return height // 3, (2 * height) // 3


def color_diversity(band: np.ndarray) -> Tuple[int, float]:
    """
    Fraction of brightness buckets with non-trivial occupancy.

    Args:
        band: Brightness values of the analysed rows

    Returns:
        Tuple of (used bucket count, used / 256)
    """
    if band.size == 0:
        return 0, 0.0
    buckets = np.clip(np.floor(band).astype(np.int64), 0, BRIGHTNESS_BUCKETS - 1)
    counts = np.bincount(buckets.ravel(), minlength=BRIGHTNESS_BUCKETS)
    used = int(np.count_nonzero(counts > band.size * BUCKET_OCCUPANCY))
    return used, used / BRIGHTNESS_BUCKETS


def visible_ratio(band: np.ndarray) -> float:
    """Fraction of pixels brighter than the black floor."""
    if band.size == 0:
        return 0.0
    return float(np.count_nonzero(band > VISIBLE_BRIGHTNESS)) / band.size


def edge_density(lum: np.ndarray) -> float:
    """
    Fraction of strided middle-band samples sitting on a brightness edge.

    A sample at (py, px) is an edge when |c - right| + |c - down| exceeds the
    threshold, with right and down taken two pixels away.
    """
    height, width = lum.shape
    start, end = middle_band(height)
    rows = np.arange(start + EDGE_OFFSET, end - EDGE_OFFSET, EDGE_STRIDE)
    cols = np.arange(EDGE_OFFSET, width - EDGE_OFFSET, EDGE_STRIDE)
    if rows.size == 0 or cols.size == 0:
        return 0.0

    center = lum[np.ix_(rows, cols)]
    right = lum[np.ix_(rows, cols + EDGE_OFFSET)]
    down = lum[np.ix_(rows + EDGE_OFFSET, cols)]
    gradient = np.abs(center - right) + np.abs(center - down)
    return float(np.count_nonzero(gradient > EDGE_THRESHOLD)) / center.size


def spatial_distribution(lum: np.ndarray) -> SpatialReport:
    """Split the middle band into a 5x5 grid and measure how evenly detail spreads."""
    height, width = lum.shape
    start, end = middle_band(height)
    cell_w = width // SPATIAL_GRID
    cell_h = (end - start) // SPATIAL_GRID

    activity = np.zeros(SPATIAL_GRID * SPATIAL_GRID)
    for gy in range(SPATIAL_GRID):
        for gx in range(SPATIAL_GRID):
            y0 = start + gy * cell_h
            y1 = min(start + (gy + 1) * cell_h, end)
            x0 = gx * cell_w
            x1 = min((gx + 1) * cell_w, width)
            samples = lum[y0:y1:SPATIAL_STRIDE, x0:x1:SPATIAL_STRIDE]
            if samples.size:
                activity[gy * SPATIAL_GRID + gx] = (
                    np.count_nonzero(samples > VISIBLE_BRIGHTNESS) / samples.size
                )

    active_cells = int(np.count_nonzero(activity > ACTIVE_CELL_RATIO))
    mean = float(activity.mean())
    evenness = 1.0 - min(1.0, float(activity.std()) / mean) if mean > 0 else 0.0
    return SpatialReport(active_cells / activity.size, evenness, active_cells)


def geometry_score(edge: float, distribution: float, evenness: float) -> float:
    return 0.6 * edge + 0.3 * distribution + 0.1 * evenness


class QualityAnalyzer:
    """Pre-render and post-render quality gates."""

    def __init__(self, iterator: Optional[FractalIterator] = None,
                 config: Optional[QualityConfig] = None):
        """
        Initialize analyzer.

        Args:
            iterator: Iteration engine used by the pre-check
            config: Default thresholds
        """
        self.iterator = iterator
        self.config = config or QualityConfig()

    def sample(self, cx: float, cy: float, zoom: float, max_iter: int,
               config: Optional[QualityConfig] = None) -> SampleReport:
        """
        Fast visibility pre-check on a 48x27 grid.

        The grid spans a square of half-size 3.5/zoom around the center and
        is iterated directly, without building a pixel buffer.
        """
        if self.iterator is None:
            raise ValueError("sample() needs an iterator")
        if not zoom > 0:
            raise ValueError("zoom must be positive")
        config = config or self.config

        size = VIEW_HALF_SIZE / zoom
        xs = cx - size + 2 * size * (np.arange(PRECHECK_WIDTH) / PRECHECK_WIDTH)
        ys = cy - size + 2 * size * (np.arange(PRECHECK_HEIGHT) / PRECHECK_HEIGHT)
        grid_x, grid_y = np.meshgrid(xs, ys)

        result = self.iterator.iterate_array(grid_x, grid_y, max_iter)
        ratio = float(np.count_nonzero(~result.in_set)) / result.in_set.size
        passes = ratio >= config.min_visible_pixels
        logger.debug(f"Pre-check visible ratio {ratio:.3f} (min {config.min_visible_pixels})")
        return SampleReport(ratio, passes)

    def analyze(self, rgba: np.ndarray, config: Optional[QualityConfig] = None) -> QualityReport:
        """
        Full quality check of an RGBA buffer of shape (height, width, 4).

        Returns:
            QualityReport whose ``passes`` requires every threshold at once
        """
        if rgba.ndim != 3 or rgba.shape[2] < 3:
            raise ValueError(f"Expected an (h, w, 4) buffer, got shape {rgba.shape}")
        config = config or self.config

        lum = brightness(rgba)
        start, end = middle_band(lum.shape[0])
        band = lum[start:end]

        used, diversity = color_diversity(band)
        visible = visible_ratio(band)
        edges = edge_density(lum)
        spatial = spatial_distribution(lum)
        geometry = geometry_score(edges, spatial.distribution_score, spatial.evenness)

        passes = (
            diversity >= config.min_color_diversity
            and visible >= config.min_visible_pixels
            and geometry >= config.min_geometry_score
            and spatial.active_cells >= config.min_active_cells
            and edges >= config.min_edge_density
        )

        return QualityReport(
            visible_ratio=visible,
            color_diversity=diversity,
            used_buckets=used,
            edge_density=edges,
            spatial_distribution=spatial.distribution_score,
            spatial_evenness=spatial.evenness,
            active_cells=spatial.active_cells,
            geometry_score=geometry,
            passes=bool(passes),
        )
