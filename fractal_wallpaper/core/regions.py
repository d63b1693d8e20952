"""
Seed regions for the zoom search.

Known fractals start from hand-picked coordinates, each optionally carrying
tightened quality thresholds and a zoom-strategy override. Other members of
the family get regions discovered at runtime by measuring the variance of
escape values over a coarse grid: cells with high variance sit on the
boundary, where the interesting structure is.
"""

from collections import deque
import numpy as np
from typing import Any, Deque, Dict, List, Optional, Sequence
from dataclasses import dataclass, field
import logging

from .math_functions import FractalIterator, PowerSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeedRegion:
    """Named starting coordinate for a search."""

    name: str
    cx: float
    cy: float
    quality_overrides: Dict[str, Any] = field(default_factory=dict)
    zoom_strategy: Optional[Dict[str, Any]] = None
    variance: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'cx': self.cx,
            'cy': self.cy,
            'qualityControl': dict(self.quality_overrides),
            'zoomStrategy': self.zoom_strategy,
        }


def _quality(visible, edge, geometry, cells, diversity):
    return {
        'minVisiblePixels': visible,
        'minEdgeDensity': edge,
        'minGeometryScore': geometry,
        'minActiveCells': cells,
        'minColorDiversity': diversity,
        'minComplexityScore': 0,
    }


_QUARTIC_STRATEGY = {
    'complexityWeight': 0.70,
    'avgIterWeight': 0.25,
    'centerBiasWeight': 0.05,
    'zoomSteps': {'min': 6, 'max': 14},
    'zoomMult': {'min': 1.8, 'max': 3.0},
    'searchSamples': 200,
    'minComplexity': 5,
    'skipComplexityCheckSteps': 2,
}

REGIONS: Dict[str, List[SeedRegion]] = {
    'Mandelbrot': [
        SeedRegion('Spiral_Valley', -0.7269, 0.1889, _quality(0.7, 0.02, 0.25, 10, 0.1)),
        SeedRegion('Elephant_Valley', -0.7453, 0.1127, _quality(0.7, 0.02, 0.18, 8, 0.1)),
        SeedRegion('Seahorse_Valley', -0.1607, 1.0376, _quality(0.7, 0.02, 0.18, 8, 0.1)),
        SeedRegion('Double_Hook', -0.7902, 0.1608, _quality(0.7, 0.02, 0.15, 7, 0.1)),
        SeedRegion('Mini_Elephant', -0.7747, 0.1102, _quality(0.7, 0.02, 0.14, 6, 0.1)),
        SeedRegion('Triple_Spiral', 0.2850, 0.0100, _quality(0.7, 0.02, 0.22, 9, 0.1)),
        SeedRegion('Seahorse_Tail', -0.1011, 0.9563, _quality(0.7, 0.005, 0.18, 7, 0.1)),
        SeedRegion('Baby_Elephant', -0.7500, 0.1000, _quality(0.7, 0.02, 0.16, 7, 0.1)),
        SeedRegion('Filament_Region', -0.1600, 1.0405, _quality(0.7, 0.01, 0.08, 4, 0.1)),
        SeedRegion('Deep_Spiral', -0.7746, 0.1102, _quality(0.7, 0.02, 0.23, 9, 0.1)),
        SeedRegion('Tendril_Garden', -0.1592, 1.0317, _quality(0.7, 0.01, 0.12, 6, 0.1)),
        SeedRegion('Eastern_Spiral', 0.3750, 0.2170, _quality(0.7, 0.02, 0.2, 8, 0.1)),
        SeedRegion('Southern_Seahorse', -0.1011, -0.9563, _quality(0.7, 0.005, 0.18, 7, 0.1)),
        SeedRegion('Northern_Arc', -0.1252, 0.7500, _quality(0.7, 0.02, 0.16, 7, 0.1)),
        SeedRegion('Southern_Spiral', -0.7269, -0.1889, _quality(0.7, 0.02, 0.2, 8, 0.1)),
        SeedRegion('Lower_Triple', 0.2850, -0.0100, _quality(0.7, 0.02, 0.21, 9, 0.1)),
        SeedRegion('Western_Formation', -0.5251, 0.5260, _quality(0.7, 0.02, 0.18, 8, 0.1)),
        SeedRegion('Eastern_Edge', 0.3500, 0.0500, _quality(0.7, 0.02, 0.19, 8, 0.1)),
        SeedRegion('Upper_Arc', -0.1000, 0.6557, _quality(0.7, 0.02, 0.16, 7, 0.1)),
        SeedRegion('Upper_Valley', -0.7010, 0.3842, _quality(0.7, 0.02, 0.22, 9, 0.1)),
    ],
    'Mandelbrot3': [
        SeedRegion('Center', 0.0, 0.0, _quality(0.7, 0.02, 0.18, 8, 0.1)),
        SeedRegion('Upper_Lobe', 0.0, 0.8, _quality(0.7, 0.02, 0.20, 8, 0.1)),
        SeedRegion('Side_Detail', -0.5, 0.5, _quality(0.7, 0.02, 0.19, 8, 0.1)),
    ],
    'Mandelbrot4': [
        SeedRegion(name, cx, cy, _quality(0.60, 0.015, 0.15, 6, 0.10), _QUARTIC_STRATEGY)
        for name, cx, cy in (
            ('Eastern_Petal', 0.50, 0.00),
            ('Northern_Petal', 0.00, 0.55),
            ('Western_Petal', -0.60, 0.00),
            ('Southern_Petal', 0.00, -0.58),
            ('Diagonal_Nexus_NE', 0.42, 0.42),
            ('Diagonal_Nexus_NW', -0.44, 0.44),
            ('Diagonal_Nexus_SE', 0.46, -0.46),
            ('Eastern_Lobe_Upper', 0.52, 0.20),
        )
    ],
    'BurningShip': [
        SeedRegion('Ship_Bow', -1.75, -0.03, _quality(0.7, 0.02, 0.20, 8, 0.1)),
        SeedRegion('Ship_Stern', -1.755, 0.03, _quality(0.7, 0.02, 0.18, 8, 0.1)),
        SeedRegion('Antenna', -1.62, -0.05, _quality(0.7, 0.02, 0.22, 9, 0.1)),
    ],
    'Tricorn': [
        SeedRegion('Twisted_Filament_Garden', -0.2, 0.6, _quality(0.5, 0.008, 0.10, 5, 0.08)),
    ],
}


def get_regions(fractal_name: str) -> List[SeedRegion]:
    """Seed regions of a named fractal (empty for unknown names)."""
    return list(REGIONS.get(fractal_name, []))


def get_region(fractal_name: str, region_name: str) -> SeedRegion:
    for region in REGIONS.get(fractal_name, []):
        if region.name == region_name:
            return region
    raise ValueError(f"Region '{region_name}' not found for fractal {fractal_name}")


class RecentRegions:
    """Bounded ring buffer of recently used region names."""

    def __init__(self, capacity: int = 5):
        if capacity < 0:
            raise ValueError("capacity must be non-negative")
        self.capacity = capacity
        self._names: Deque[str] = deque(maxlen=capacity)

    def add(self, name: str) -> None:
        if self.capacity:
            self._names.append(name)

    def __contains__(self, name: str) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self):
        return iter(list(self._names))

    def clear(self) -> None:
        self._names.clear()


def select_region(regions: Sequence[SeedRegion], rng: np.random.Generator,
                  recent: Optional[RecentRegions] = None) -> SeedRegion:
    """
    Pick a random region, avoiding recently used ones while any alternative remains.

    The chosen region is recorded in ``recent``.
    """
    if not regions:
        raise ValueError("No regions to select from")

    pool = list(regions)
    if recent is not None:
        fresh = [r for r in pool if r.name not in recent]
        if fresh:
            pool = fresh

    region = pool[int(rng.integers(len(pool)))]
    if recent is not None:
        recent.add(region.name)
    return region


@dataclass(frozen=True)
class RegionAnalysis:
    """Grid resolution of dynamic region discovery."""

    grid_size: int = 12
    subsample_size: int = 6
    max_iter: int = 300
    min_variance: float = 5.0

    def __post_init__(self):
        if self.grid_size < 1 or self.subsample_size < 2 or self.max_iter < 1:
            raise ValueError("Invalid region analysis resolution")


# Zoom strategy of discovered regions
DYNAMIC_ZOOM_STRATEGY = {
    'complexityWeight': 0.75,
    'avgIterWeight': 0.20,
    'centerBiasWeight': 0.05,
    'zoomSteps': {'min': 8, 'max': 16},
    'searchSamples': 80,
    'zoomMult': {'min': 1.2, 'max': 1.4, 'adaptiveMax': 2.0},
    'minComplexity': 5,
    'highComplexityThreshold': 30,
    'skipComplexityCheckSteps': 0,
}

COMPLEX_POWER_MIN_EDGE_DENSITY = 0.05

# Variance at which discovered thresholds saturate
_VARIANCE_SCALE = 60000.0


def quality_for_variance(variance: float) -> Dict[str, Any]:
    """Thresholds for a discovered region, tightened with its variance."""
    t = min(1.0, variance / _VARIANCE_SCALE)
    return _quality(
        0.90,
        0.005 + t * 0.01,
        0.08 + t * 0.12,
        int(4 + t * 4),
        0.06 + t * 0.04,
    )


def _cell_statistics(iterator: FractalIterator, center_x: float, center_y: float,
                     width: float, analysis: RegionAnalysis):
    grid = analysis.grid_size
    sub = analysis.subsample_size
    cell = width / grid

    cell_x = center_x - width / 2 + (np.arange(grid) + 0.5) * cell
    cell_y = center_y - width / 2 + (np.arange(grid) + 0.5) * cell
    offsets = (np.arange(sub) / (sub - 1) - 0.5) * cell

    # (gy, gx, sy, sx)
    xs = cell_x[np.newaxis, :, np.newaxis, np.newaxis] + offsets[np.newaxis, np.newaxis, np.newaxis, :]
    ys = cell_y[:, np.newaxis, np.newaxis, np.newaxis] + offsets[np.newaxis, np.newaxis, :, np.newaxis]
    xs, ys = np.broadcast_arrays(xs, ys)

    result = iterator.iterate_array(xs, ys, analysis.max_iter)
    smooth = result.smooth.reshape(grid, grid, sub * sub)
    variance = smooth.var(axis=2)
    has_set = result.in_set.reshape(grid, grid, sub * sub).any(axis=2)
    centers_x, centers_y = np.meshgrid(cell_x, cell_y)
    return centers_x.ravel(), centers_y.ravel(), variance.ravel(), has_set.ravel()


def find_dynamic_regions(power: PowerSpec, iterator: Optional[FractalIterator] = None,
                         center_x: float = -0.5, center_y: float = 0.0,
                         width: float = 3.0, num_regions: int = 5,
                         analysis: Optional[RegionAnalysis] = None) -> List[SeedRegion]:
    """
    Discover seed regions for a fractal without a seed table.

    The view is split into grid_size^2 cells; each cell is sampled on a
    subsample_size^2 grid and scored by the variance of its smooth indices.
    Cells need at least ``min_variance`` and an in-set sample (relaxed when
    nothing qualifies); the survivors at or above the top-quartile variance
    become regions, highest variance first.

    Args:
        power: Power and variant of the fractal
        iterator: Iteration engine (built from ``power`` if None)
        center_x, center_y: Center of the analysed square
        width: Side length of the analysed square
        num_regions: Maximum number of regions to return
        analysis: Grid resolution

    Returns:
        Regions with variance-scaled thresholds, or one fallback region at
        the analysed center
    """
    analysis = analysis or RegionAnalysis()
    iterator = iterator or FractalIterator(power)
    complex_power = not power.is_integer

    logger.info(f"Discovering regions for power {power} ({power.variant.value}) "
                f"on a {analysis.grid_size}x{analysis.grid_size} grid")

    xs, ys, variance, has_set = _cell_statistics(iterator, center_x, center_y, width, analysis)

    candidates = (variance >= analysis.min_variance) & has_set
    if not candidates.any():
        logger.debug("No boundary cells found, relaxing the in-set requirement")
        candidates = variance >= analysis.min_variance

    regions: List[SeedRegion] = []
    if candidates.any():
        ranked = np.sort(variance[candidates])[::-1]
        threshold = ranked[int(len(ranked) * 0.25)]
        order = np.argsort(-variance, kind='stable')
        keep = [i for i in order if candidates[i] and variance[i] >= threshold][:num_regions]

        for rank, i in enumerate(keep, start=1):
            regions.append(SeedRegion(
                name=f"ComplexPower_Region_{rank}",
                cx=float(xs[i]),
                cy=float(ys[i]),
                quality_overrides=quality_for_variance(float(variance[i])),
                zoom_strategy=DYNAMIC_ZOOM_STRATEGY,
                variance=float(variance[i]),
            ))

    if not regions:
        logger.warning("No interesting regions found, using fallback center")
        regions.append(SeedRegion(
            name="ComplexPower_Fallback",
            cx=center_x,
            cy=center_y,
            quality_overrides=_quality(0.90, 0.005, 0.10, 4, 0.06),
            zoom_strategy=DYNAMIC_ZOOM_STRATEGY,
        ))

    if complex_power:
        regions = [
            SeedRegion(r.name, r.cx, r.cy,
                       dict(r.quality_overrides, minEdgeDensity=max(
                           r.quality_overrides.get('minEdgeDensity', 0.0),
                           COMPLEX_POWER_MIN_EDGE_DENSITY)),
                       r.zoom_strategy, r.variance)
            for r in regions
        ]

    logger.info(f"Found {len(regions)} candidate regions, top at "
                f"({regions[0].cx:.6f}, {regions[0].cy:.6f})")
    return regions
