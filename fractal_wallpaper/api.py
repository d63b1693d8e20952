"""
Main API classes for wallpaper generation.

This module ties the pipeline together: pick a fractal, palette and seed
region, run the boundary search, gate the candidate with the quality checks,
render the scan and hand back the accepted result. Rejected candidates are
retried with fresh random draws until the attempt budget is spent.
"""

import math
import numpy as np
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, field
from enum import Enum
import logging
import time

from .analysis.framing import CropSelector, DEFAULT_TARGETS, DeviceRender, DeviceTarget
from .analysis.quality import QualityAnalyzer, QualityConfig, QualityReport, SampleReport
from .core.fractal_types import (
    FractalRegistry,
    FractalType,
    ParameterSelection,
    is_known,
    resolve_power,
    select_fractal_parameters,
)
from .core.math_functions import FractalIterator, PowerSpec, Variant
from .core.regions import (
    RecentRegions,
    RegionAnalysis,
    SeedRegion,
    find_dynamic_regions,
    get_region,
    get_regions,
    select_region,
)
from .core.search import BoundarySearch, SearchResult, SearchStrategy
from .rendering.adaptive import AdaptiveTileRenderer
from .rendering.coloring import Palette, get_palette, random_palette
from .rendering.image_output import RenderMetadata
from .rendering.renderer import CdfRenderer, RenderOptions, RenderResult

logger = logging.getLogger(__name__)

# Lower bound of any iteration budget
MIN_MAX_ITER = 64


class AttemptOutcome(str, Enum):
    """Result of a single generation attempt."""

    ACCEPTED = 'accepted'
    SEARCH_FAILED = 'search_failed'
    VISIBILITY_FAILED = 'visibility_failed'
    QUALITY_FAILED = 'quality_failed'


class GenerationExhaustedError(RuntimeError):
    """Every attempt was rejected."""

    def __init__(self, attempts: List['AttemptRecord']):
        self.attempts = attempts
        summary = ', '.join(a.outcome.value for a in attempts)
        super().__init__(f"No acceptable wallpaper after {len(attempts)} attempts ({summary})")


@dataclass
class GeneratorConfig:
    """Configuration of the generation loop."""

    # Retry budget
    max_attempts: int = 10

    # Iteration budget
    base_max_iter: int = 1000
    max_iter_multiplier: float = 1.0
    max_total_iterations: float = 1e11
    precheck_max_iter: int = 10000

    # Search
    zoom_range: Tuple[float, float] = (10.0, 100.0)
    zoom_max: float = 1e13
    search_strategy: Optional[Dict[str, Any]] = None

    # Rendering
    scan_resolution: int = 1200
    adaptive_rendering: Optional[bool] = None
    sparse_step: int = 4
    tile_size: int = 32
    verify_samples: int = 8
    use_numba: bool = False
    render: RenderOptions = field(default_factory=RenderOptions)
    targets: Tuple[DeviceTarget, ...] = DEFAULT_TARGETS

    # Selection
    quality: QualityConfig = field(default_factory=QualityConfig)
    parameter_selection: ParameterSelection = field(default_factory=ParameterSelection)
    region_analysis: RegionAnalysis = field(default_factory=RegionAnalysis)
    avoid_recent_regions: int = 5

    # Overrides
    power: Optional[Union[str, PowerSpec]] = None
    variant: Optional[str] = None
    palette: Optional[str] = None
    region: Optional[str] = None
    organic: Optional[bool] = None

    def validate(self):
        """Validate configuration parameters."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_max_iter <= 0 or self.precheck_max_iter <= 0:
            raise ValueError("Iteration caps must be positive")
        if self.max_iter_multiplier <= 0:
            raise ValueError("max_iter_multiplier must be positive")
        if self.max_total_iterations <= 0:
            raise ValueError("max_total_iterations must be positive")
        low, high = self.zoom_range
        if not 0 < low <= high:
            raise ValueError("zoom_range must satisfy 0 < min <= max")
        if self.zoom_max < high:
            raise ValueError("zoom_max must be at least the upper zoom_range")
        if self.scan_resolution < 16:
            raise ValueError("scan_resolution must be >= 16")
        if self.sparse_step < 1 or self.tile_size < 1 or self.verify_samples < 1:
            raise ValueError("Adaptive renderer settings must be positive")
        if self.avoid_recent_regions < 0:
            raise ValueError("avoid_recent_regions must be non-negative")
        if not self.targets:
            raise ValueError("At least one device target is required")
        if self.variant is not None:
            Variant.parse(self.variant)
        self.render.validate()
        self.parameter_selection.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GeneratorConfig':
        """
        Build a config from an option bag.

        Recognises snake_case field names plus the camelCase keys
        ``maxIter``, ``maxIterMultiplier``, ``maxTotalIterations``,
        ``scanResolution``, ``zoomStrategy``, ``qualityControl``,
        ``parameterSelection``, ``avoidRecentRegions``, ``targets`` and
        the rendering keys understood by :meth:`RenderOptions.from_dict`.
        """
        config = cls()
        aliases = {
            'maxAttempts': 'max_attempts',
            'maxIter': 'base_max_iter',
            'maxIterMultiplier': 'max_iter_multiplier',
            'maxTotalIterations': 'max_total_iterations',
            'precheckMaxIter': 'precheck_max_iter',
            'zoomMax': 'zoom_max',
            'scanResolution': 'scan_resolution',
            'adaptiveRendering': 'adaptive_rendering',
            'sparseStep': 'sparse_step',
            'tileSize': 'tile_size',
            'verifySamples': 'verify_samples',
            'useNumba': 'use_numba',
            'avoidRecentRegions': 'avoid_recent_regions',
            'zoomStrategy': 'search_strategy',
        }
        scalar_fields = set(aliases.values()) | {'power', 'variant', 'palette', 'region', 'organic'}

        for key, value in data.items():
            name = aliases.get(key, key)
            if name in scalar_fields:
                setattr(config, name, value)

        zoom_range = data.get('zoomRange', data.get('zoom_range'))
        if isinstance(zoom_range, dict):
            config.zoom_range = (float(zoom_range['min']), float(zoom_range['max']))
        elif zoom_range is not None:
            config.zoom_range = tuple(float(z) for z in zoom_range)

        quality = data.get('qualityControl', data.get('quality'))
        if quality is not None:
            config.quality = quality if isinstance(quality, QualityConfig) else QualityConfig.from_dict(quality)

        selection = data.get('parameterSelection', data.get('parameter_selection'))
        if selection is not None:
            config.parameter_selection = ParameterSelection.from_dict(selection)

        rendering = data.get('rendering', data.get('render'))
        if rendering is not None:
            config.render = rendering if isinstance(rendering, RenderOptions) else RenderOptions.from_dict(rendering)

        targets = data.get('targets')
        if targets is not None:
            config.targets = tuple(t if isinstance(t, DeviceTarget) else DeviceTarget.from_dict(t)
                                   for t in targets)

        config.validate()
        return config


@dataclass
class AttemptRecord:
    """What one attempt tried and how it ended."""

    number: int
    outcome: AttemptOutcome
    fractal: str
    region: str
    palette: str
    detail: str = ""


@dataclass
class CandidateEvaluation:
    """Pre-check, render and full check of one searched coordinate."""

    outcome: AttemptOutcome
    sample: SampleReport
    max_iter: int = 0
    render: Optional[RenderResult] = None
    report: Optional[QualityReport] = None


@dataclass
class GenerationResult:
    """Accepted scan render and everything needed to reproduce it."""

    render: RenderResult
    report: QualityReport
    metadata: RenderMetadata
    fractal: FractalType
    region: SeedRegion
    palette: Palette
    quality: QualityConfig
    strategy: SearchStrategy
    search: SearchResult
    renderer: Any
    attempts: List[AttemptRecord] = field(default_factory=list)


def visibility_scalar(factor: float) -> float:
    """Iteration budget scale x^6 * e^(x - 1) with x clamped to [0, 1]."""
    x = max(0.0, min(1.0, factor))
    return x ** 6 * math.exp(x - 1)


class WallpaperGenerator:
    """Search, gate and render until a candidate is accepted."""

    def __init__(self, config: Optional[GeneratorConfig] = None,
                 rng: Optional[np.random.Generator] = None):
        """
        Initialize generator.

        Args:
            config: Generation configuration (uses defaults if None)
            rng: Random generator shared by every stochastic step
        """
        self.config = config or GeneratorConfig()
        self.config.validate()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.recent_regions = RecentRegions(self.config.avoid_recent_regions)

        logger.info(f"WallpaperGenerator initialized: scan {self.config.scan_resolution}px, "
                    f"{self.config.max_attempts} attempts")

    def compute_max_iter(self, zoom: float, visible_ratio: float,
                         min_visible: float) -> int:
        """
        Iteration budget of a candidate.

        The base budget grows with log10(zoom); it is scaled down for views
        with little visible structure, then capped so the scan plus every
        device render stays under ``max_total_iterations``.
        """
        config = self.config
        min_visible = min_visible or 0.1
        headroom = max(1e-9, 1.0 - min_visible)
        factor = max(0.1, (visible_ratio - min_visible) / headroom)

        base = math.floor(config.base_max_iter * config.max_iter_multiplier
                          * (1 + math.log10(zoom) / 2))
        max_iter = max(MIN_MAX_ITER, int(math.floor(base * visibility_scalar(factor))))

        total_pixels = config.scan_resolution ** 2 + sum(t.pixels for t in config.targets)
        projected = total_pixels * max_iter
        if projected > config.max_total_iterations:
            scale = config.max_total_iterations / projected
            constrained = max(MIN_MAX_ITER, int(math.floor(max_iter * scale)))
            logger.warning(f"Iteration budget constrained: {max_iter} -> {constrained} "
                           f"({scale:.1%} of {projected:.3g} projected iterations)")
            max_iter = constrained

        return max_iter

    def make_renderer(self, iterator: FractalIterator):
        """AdaptiveTileRenderer for non-integer powers (or when forced), CdfRenderer otherwise."""
        adaptive = self.config.adaptive_rendering
        if adaptive is None:
            adaptive = not iterator.power.is_integer
        if adaptive:
            return AdaptiveTileRenderer(
                iterator, self.config.render,
                sparse_step=self.config.sparse_step,
                tile_size=self.config.tile_size,
                verify_samples=self.config.verify_samples,
                rng=self.rng,
            )
        return CdfRenderer(iterator, self.config.render)

    def evaluate_candidate(self, iterator: FractalIterator, cx: float, cy: float, zoom: float,
                           palette: Palette, quality: QualityConfig,
                           renderer=None) -> CandidateEvaluation:
        """
        Gate a searched coordinate.

        The cheap pre-check runs first; only a passing candidate is rendered
        at scan resolution and given the full quality check.
        """
        analyzer = QualityAnalyzer(iterator, quality)
        sample = analyzer.sample(cx, cy, zoom, self.config.precheck_max_iter)
        logger.info(f"Visible ratio: {sample.visible_ratio:.1%} (min {quality.min_visible_pixels:.0%})")
        if not sample.passes:
            return CandidateEvaluation(AttemptOutcome.VISIBILITY_FAILED, sample)

        max_iter = self.compute_max_iter(zoom, sample.visible_ratio, quality.min_visible_pixels)
        logger.info(f"Max iterations: {max_iter} (base {self.config.base_max_iter}, zoom {zoom:.3g})")

        size = self.config.scan_resolution
        renderer = renderer or self.make_renderer(iterator)
        render = renderer.render(size, size, cx, cy, zoom, palette, max_iter)
        report = analyzer.analyze(render.rgba)
        logger.info(f"Quality: diversity {report.color_diversity:.1%}, visible {report.visible_ratio:.1%}, "
                    f"geometry {report.geometry_score:.1%}, edges {report.edge_density:.1%}, "
                    f"active cells {report.active_cells}/25")

        outcome = AttemptOutcome.ACCEPTED if report.passes else AttemptOutcome.QUALITY_FAILED
        return CandidateEvaluation(outcome, sample, max_iter, render, report)

    def _select_fractal(self) -> Tuple[FractalType, bool]:
        config = self.config
        selected = select_fractal_parameters(config.parameter_selection, self.rng)
        power = resolve_power(config.power, config.variant) or selected.power
        if config.power is None and config.variant is not None:
            power = PowerSpec(power.real, power.imag, config.variant)
        organic = selected.use_organic_exploration if config.organic is None else config.organic
        return FractalRegistry.for_power(power), organic

    def _select_region(self, fractal: FractalType, iterator: FractalIterator,
                       organic: bool) -> SeedRegion:
        if self.config.region:
            return get_region(fractal.name, self.config.region)
        if is_known(fractal.power) and not organic:
            regions = get_regions(fractal.name)
        else:
            regions = find_dynamic_regions(fractal.power, iterator,
                                           analysis=self.config.region_analysis)
        return select_region(regions, self.rng, self.recent_regions)

    def _resolve_strategy(self, region: SeedRegion) -> SearchStrategy:
        if self.config.search_strategy is None and region.zoom_strategy is None:
            return SearchStrategy.randomized(self.rng)
        strategy = SearchStrategy()
        if self.config.search_strategy is not None:
            strategy = SearchStrategy.from_dict(self.config.search_strategy, self.rng, strategy)
        if region.zoom_strategy is not None:
            strategy = SearchStrategy.from_dict(region.zoom_strategy, self.rng, strategy)
        return strategy

    def attempt(self, number: int) -> Tuple[AttemptRecord, Optional[GenerationResult]]:
        """Run one independent attempt with fresh random draws."""
        config = self.config
        fractal, organic = self._select_fractal()
        iterator = fractal.create_iterator(use_numba=config.use_numba)
        palette = get_palette(config.palette) if config.palette else random_palette(self.rng)
        region = self._select_region(fractal, iterator, organic)
        quality = config.quality.merged(region.quality_overrides)
        strategy = self._resolve_strategy(region)

        logger.info(f"Attempt {number}: {fractal.name}, palette {palette.name}, region {region.name}")
        record = AttemptRecord(number, AttemptOutcome.SEARCH_FAILED, fractal.name,
                               region.name, palette.name)

        low, high = config.zoom_range
        initial_zoom = low + self.rng.random() * (high - low)
        search = BoundarySearch(iterator, strategy, self.rng).search(
            region.cx, region.cy, initial_zoom, quality_hints=quality)
        if not search.found_good:
            record.detail = f"zoom {initial_zoom:.3g} -> {search.zoom:.3g}"
            return record, None

        center = search.center
        zoom = min(search.zoom, config.zoom_max)
        renderer = self.make_renderer(iterator)
        evaluation = self.evaluate_candidate(iterator, center.real, center.imag, zoom, palette,
                                             quality, renderer)
        record.outcome = evaluation.outcome
        if evaluation.outcome is not AttemptOutcome.ACCEPTED:
            if evaluation.report is not None:
                record.detail = 'failed ' + ', '.join(evaluation.report.failures(quality))
            else:
                record.detail = f"visible {evaluation.sample.visible_ratio:.1%}"
            return record, None

        render = evaluation.render
        metadata = RenderMetadata(
            fractal_name=fractal.name,
            power=str(fractal.power),
            variant=fractal.power.variant.value,
            center=(center.real, center.imag),
            zoom=zoom,
            max_iterations=evaluation.max_iter,
            palette=palette.name,
            region=region.name,
            resolution=(render.width, render.height),
            render_time_seconds=render.render_time,
            adaptive=isinstance(renderer, AdaptiveTileRenderer),
            attempts=number,
            quality=evaluation.report.to_dict(),
        )
        result = GenerationResult(
            render=render,
            report=evaluation.report,
            metadata=metadata,
            fractal=fractal,
            region=region,
            palette=palette,
            quality=quality,
            strategy=strategy,
            search=search,
            renderer=renderer,
        )
        return record, result

    def generate(self) -> GenerationResult:
        """
        Retry attempts until one is accepted.

        Returns:
            GenerationResult of the first accepted attempt

        Raises:
            GenerationExhaustedError: every attempt was rejected
        """
        start_time = time.time()
        attempts: List[AttemptRecord] = []

        for number in range(1, self.config.max_attempts + 1):
            record, result = self.attempt(number)
            attempts.append(record)
            if result is not None:
                result.attempts = attempts
                logger.info(f"Accepted attempt {number} after {time.time() - start_time:.1f}s")
                return result
            logger.info(f"Attempt {number} rejected: {record.outcome.value} {record.detail}")

        raise GenerationExhaustedError(attempts)

    def render_crops(self, result: GenerationResult,
                     targets: Optional[Sequence[DeviceTarget]] = None) -> List[DeviceRender]:
        """
        Find the best crop per device target and re-render each natively.

        Args:
            result: Accepted generation result
            targets: Device targets (the configured ones if None)

        Returns:
            One DeviceRender per target
        """
        selector = CropSelector(QualityAnalyzer(config=result.quality))
        return selector.render_crops(result.render, result.renderer, result.palette,
                                     targets or self.config.targets, result.quality)
