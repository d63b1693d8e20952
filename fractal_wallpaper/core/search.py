"""
Boundary-complexity zoom search.

Starting from a seed coordinate, the search repeatedly samples a square
neighbourhood, scores every sample by how much its escape count differs from
its four neighbours, moves the cursor to the best-scoring point and zooms in.
A broad phase with a coarse radius is followed by a deep-focus phase with a
finer radius, more samples and a higher iteration cap.
"""

import math
import numpy as np
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field, replace
import logging

from .math_functions import ComplexPoint, FractalIterator

logger = logging.getLogger(__name__)

# Offsets of the 4-neighbourhood in units of delta
_NEIGHBOUR_OFFSETS = ((1, 0), (-1, 0), (0, 1), (0, -1))

# Search radii of the broad and deep-focus phases, in units of 1/zoom
BROAD_RADIUS = 2.0
DEEP_FOCUS_RADIUS = 0.25


def random_simplex_weights3(rng: np.random.Generator) -> Tuple[float, float, float]:
    """
    Draw three non-negative weights that sum to 1.

    Two uniform cut points on [0, 1] split the unit interval into three
    pieces; the piece lengths are the weights.
    """
    a, b = sorted(rng.random(2))
    return float(a), float(b - a), float(1.0 - b)


@dataclass(frozen=True)
class SearchStrategy:
    """Fully-resolved zoom search parameters."""

    complexity_weight: float = 0.7
    avg_iter_weight: float = 0.25
    center_bias_weight: float = 0.05

    zoom_steps: int = 10
    search_samples: int = 100

    zoom_mult_min: float = 1.8
    zoom_mult_max: float = 2.5
    zoom_mult_adaptive_max: float = 3.5

    min_complexity: float = 5.0
    high_complexity_threshold: float = 30.0
    skip_complexity_check_steps: int = 2

    deep_focus_steps: int = 10
    broad_max_iter: int = 256
    deep_max_iter: int = 512
    min_center_iterations: int = 8

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Validate strategy parameters."""
        weights = (self.complexity_weight, self.avg_iter_weight, self.center_bias_weight)
        if any(w < 0 for w in weights):
            raise ValueError("Scoring weights must be non-negative")
        if abs(sum(weights) - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1, got {sum(weights):.6f}")
        if self.zoom_steps < 0 or self.deep_focus_steps < 0:
            raise ValueError("Step counts must be non-negative")
        if self.search_samples < 2:
            raise ValueError("search_samples must be at least 2")
        if self.zoom_mult_min <= 1.0:
            raise ValueError("zoom_mult_min must be greater than 1")
        if not self.zoom_mult_min <= self.zoom_mult_max <= self.zoom_mult_adaptive_max:
            raise ValueError("Zoom multipliers must satisfy min <= max <= adaptive_max")
        if self.skip_complexity_check_steps < 0:
            raise ValueError("skip_complexity_check_steps must be non-negative")
        if self.broad_max_iter <= 0 or self.deep_max_iter <= 0:
            raise ValueError("Search iteration caps must be positive")

    @property
    def weights(self) -> Tuple[float, float, float]:
        return self.complexity_weight, self.avg_iter_weight, self.center_bias_weight

    @classmethod
    def randomized(cls, rng: np.random.Generator, **kwargs) -> 'SearchStrategy':
        """Default strategy with randomly partitioned scoring weights."""
        complexity, avg_iter, center_bias = random_simplex_weights3(rng)
        return cls(complexity_weight=complexity, avg_iter_weight=avg_iter,
                   center_bias_weight=center_bias, **kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], rng: Optional[np.random.Generator] = None,
                  base: Optional['SearchStrategy'] = None) -> 'SearchStrategy':
        """
        Resolve an option bag into a strategy.

        Keys may be snake_case or the camelCase names used by region tables.
        ``zoomSteps`` may be a ``{"min", "max"}`` range, drawn once with ``rng``.
        Missing keys fall back to ``base`` (or the defaults).

        Args:
            data: Strategy overrides
            rng: Random generator for range-valued options
            base: Strategy to merge over

        Returns:
            New SearchStrategy
        """
        base = base or cls()
        rng = rng if rng is not None else np.random.default_rng()
        values: Dict[str, Any] = {}

        scalar_keys = {
            'complexityWeight': 'complexity_weight',
            'avgIterWeight': 'avg_iter_weight',
            'centerBiasWeight': 'center_bias_weight',
            'searchSamples': 'search_samples',
            'minComplexity': 'min_complexity',
            'highComplexityThreshold': 'high_complexity_threshold',
            'skipComplexityCheckSteps': 'skip_complexity_check_steps',
            'deepFocusSteps': 'deep_focus_steps',
            'broadMaxIter': 'broad_max_iter',
            'deepMaxIter': 'deep_max_iter',
            'minCenterIterations': 'min_center_iterations',
        }
        for camel, snake in scalar_keys.items():
            for key in (camel, snake):
                if key in data:
                    values[snake] = data[key]

        steps = data.get('zoomSteps', data.get('zoom_steps'))
        if isinstance(steps, dict):
            low, high = int(steps['min']), int(steps['max'])
            if low > high:
                raise ValueError(f"Invalid zoomSteps range {low}..{high}")
            values['zoom_steps'] = int(rng.integers(low, high + 1))
        elif steps is not None:
            values['zoom_steps'] = int(steps)

        mult = data.get('zoomMult', data.get('zoom_mult'))
        if mult is not None:
            values['zoom_mult_min'] = float(mult.get('min', base.zoom_mult_min))
            values['zoom_mult_max'] = float(mult.get('max', base.zoom_mult_max))
            adaptive = mult.get('adaptiveMax', mult.get('adaptive_max'))
            if adaptive is None:
                adaptive = max(base.zoom_mult_adaptive_max, values['zoom_mult_max'])
            values['zoom_mult_adaptive_max'] = float(adaptive)

        return replace(base, **values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'complexityWeight': self.complexity_weight,
            'avgIterWeight': self.avg_iter_weight,
            'centerBiasWeight': self.center_bias_weight,
            'zoomSteps': self.zoom_steps,
            'searchSamples': self.search_samples,
            'zoomMult': {
                'min': self.zoom_mult_min,
                'max': self.zoom_mult_max,
                'adaptiveMax': self.zoom_mult_adaptive_max,
            },
            'minComplexity': self.min_complexity,
            'highComplexityThreshold': self.high_complexity_threshold,
            'skipComplexityCheckSteps': self.skip_complexity_check_steps,
        }


@dataclass(frozen=True)
class BoundaryPoint:
    """Best-scoring sample of one search pass."""

    x: float
    y: float
    complexity: float
    score: float


@dataclass
class ZoomState:
    """Search cursor."""

    x: float
    y: float
    zoom: float


@dataclass
class SearchResult:
    """Final cursor of a search plus the zoom after every step taken."""

    x: float
    y: float
    zoom: float
    found_good: bool
    trail: List[ZoomState] = field(default_factory=list)

    @property
    def center(self) -> ComplexPoint:
        return ComplexPoint(self.x, self.y)


def find_best_boundary_point(iterator: FractalIterator, cx: float, cy: float,
                             search_radius: float, samples: int, max_iter: int,
                             min_complexity: float,
                             weights: Tuple[float, float, float],
                             min_center_iterations: int = 8) -> Optional[BoundaryPoint]:
    """
    Score a samples x samples grid around (cx, cy) and return the best point.

    A sample qualifies when it escapes after at least ``min_center_iterations``
    iterations, at least two of its four neighbours escape, and the summed
    absolute iteration difference to the escaped neighbours reaches
    ``min_complexity``. Ties keep the first sample in raster order.

    Args:
        iterator: Iteration engine
        cx, cy: Search center
        search_radius: Half width of the sampled square
        samples: Grid resolution per axis
        max_iter: Iteration cap for scoring
        min_complexity: Complexity floor
        weights: (complexity, average iteration, center bias) weights
        min_center_iterations: Minimum own escape count of a sample

    Returns:
        Best BoundaryPoint, or None if no sample scores above zero
    """
    offsets = (np.arange(samples) / samples - 0.5) * search_radius * 2
    xs = cx + offsets[np.newaxis, :]
    ys = cy + offsets[:, np.newaxis]
    xs, ys = np.broadcast_arrays(xs, ys)
    delta = search_radius / samples

    stack_x = np.stack([xs] + [xs + dx * delta for dx, _ in _NEIGHBOUR_OFFSETS])
    stack_y = np.stack([ys] + [ys + dy * delta for _, dy in _NEIGHBOUR_OFFSETS])
    grid = iterator.iterate_array(stack_x, stack_y, max_iter)

    iterations = grid.iterations.astype(np.float64)
    center_iter = iterations[0]
    center_ok = ~grid.in_set[0] & (center_iter >= min_center_iterations)

    escaped = ~grid.in_set[1:]
    escaped_count = escaped.sum(axis=0)
    neighbour_iter = np.where(escaped, iterations[1:], 0.0)

    complexity = np.where(escaped, np.abs(center_iter - iterations[1:]), 0.0).sum(axis=0)
    avg_iter = (center_iter + neighbour_iter.sum(axis=0)) / (escaped_count + 1)

    distance = np.hypot(xs - cx, ys - cy) / search_radius
    center_bias = 1.0 - np.minimum(1.0, distance)

    complexity_weight, avg_iter_weight, center_bias_weight = weights
    score = (complexity_weight * complexity + avg_iter_weight * avg_iter
             + center_bias_weight * center_bias)

    qualifies = center_ok & (escaped_count >= 2) & (complexity >= min_complexity) & (score > 0)
    if not qualifies.any():
        return None

    masked = np.where(qualifies, score, -np.inf)
    row, col = np.unravel_index(int(np.argmax(masked)), masked.shape)
    return BoundaryPoint(
        x=float(xs[row, col]),
        y=float(ys[row, col]),
        complexity=float(complexity[row, col]),
        score=float(score[row, col]),
    )


class BoundarySearch:
    """Two-phase zoom walk towards high boundary complexity."""

    def __init__(self, iterator: FractalIterator, strategy: Optional[SearchStrategy] = None,
                 rng: Optional[np.random.Generator] = None):
        """
        Initialize the search.

        Args:
            iterator: Iteration engine
            strategy: Resolved strategy; random scoring weights when omitted
            rng: Random generator for zoom multipliers
        """
        self.iterator = iterator
        self.rng = rng if rng is not None else np.random.default_rng()
        self.strategy = strategy or SearchStrategy.randomized(self.rng)

    def _multiplier(self, low: float, high: float) -> float:
        return float(low + self.rng.random() * (high - low))

    def search(self, cx: float, cy: float, zoom: float,
               strategy: Optional[SearchStrategy] = None,
               quality_hints: Optional[Any] = None) -> SearchResult:
        """
        Walk from (cx, cy, zoom) towards a high-complexity boundary point.

        Args:
            cx, cy: Seed coordinate
            zoom: Initial zoom (> 0)
            strategy: Overrides the strategy given at construction
            quality_hints: Object with ``min_complexity_score``; raises the
                complexity floor when larger than the strategy's

        Returns:
            SearchResult; found_good when the zoom more than doubled
        """
        if not zoom > 0:
            raise ValueError("zoom must be positive")

        strategy = strategy or self.strategy
        hint_floor = float(getattr(quality_hints, 'min_complexity_score', 0.0) or 0.0)
        min_complexity = max(strategy.min_complexity, hint_floor)

        state = ZoomState(cx, cy, zoom)
        trail: List[ZoomState] = []

        for step in range(strategy.zoom_steps):
            if step < strategy.skip_complexity_check_steps:
                state.zoom *= self._multiplier(strategy.zoom_mult_min, strategy.zoom_mult_max)
                trail.append(replace(state))
                logger.debug(f"Step {step + 1}: blind zoom -> {state.zoom:.0f}x")
                continue

            boundary = find_best_boundary_point(
                self.iterator, state.x, state.y,
                search_radius=BROAD_RADIUS / state.zoom,
                samples=strategy.search_samples,
                max_iter=strategy.broad_max_iter,
                min_complexity=min_complexity,
                weights=strategy.weights,
                min_center_iterations=strategy.min_center_iterations,
            )
            if boundary is None:
                logger.debug(f"Step {step + 1}: no boundary point above complexity {min_complexity}")
                break

            state.x, state.y = boundary.x, boundary.y
            fast = (boundary.complexity > strategy.high_complexity_threshold
                    and step < strategy.zoom_steps - 3)
            upper = strategy.zoom_mult_adaptive_max if fast else strategy.zoom_mult_max
            state.zoom *= self._multiplier(strategy.zoom_mult_min, upper)
            trail.append(replace(state))
            logger.debug(f"Step {step + 1}: complexity {boundary.complexity:.1f} -> {state.zoom:.0f}x")

        for step in range(strategy.deep_focus_steps):
            boundary = find_best_boundary_point(
                self.iterator, state.x, state.y,
                search_radius=DEEP_FOCUS_RADIUS / state.zoom,
                samples=strategy.search_samples * 2,
                max_iter=strategy.deep_max_iter,
                min_complexity=min_complexity,
                weights=strategy.weights,
                min_center_iterations=strategy.min_center_iterations,
            )
            if boundary is None:
                break

            state.x, state.y = boundary.x, boundary.y
            state.zoom *= self._multiplier(strategy.zoom_mult_min, strategy.zoom_mult_max)
            trail.append(replace(state))

        found_good = state.zoom > zoom * 2
        logger.info(f"Zoom search finished at ({state.x:.10f}, {state.y:.10f}) "
                    f"zoom {state.zoom:.3g} (x{math.log2(state.zoom / zoom):.1f} octaves, "
                    f"found_good={found_good})")
        return SearchResult(state.x, state.y, state.zoom, found_good, trail)
