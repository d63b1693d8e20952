"""
Fractal wallpaper generation library.

Generates wallpaper-quality renders of the Mandelbrot family z -> f(z)^w + c:
a boundary search zooms into detailed regions, quality gates reject empty or
flat candidates, and CDF-normalised coloring renders the accepted view, which
is then cropped and re-rendered for each target device.

Key Features:
- Integer and complex powers with standard, conjugate and burning-ship variants
- Hand-picked seed regions plus runtime discovery for arbitrary powers
- Histogram (CDF) coloring with eased palettes and cycle modes
- Adaptive tile rendering that skips solid interior areas
- Optional Numba JIT acceleration

Example usage:
    >>> import numpy as np
    >>> from fractal_wallpaper import WallpaperGenerator, GeneratorConfig
    >>> generator = WallpaperGenerator(GeneratorConfig(scan_resolution=600),
    ...                                rng=np.random.default_rng(7))
    >>> result = generator.generate()
    >>> crops = generator.render_crops(result)
"""

__version__ = "1.0.0"
__author__ = "Fractal Wallpaper Team"

from .core.math_functions import ComplexPlane, ComplexPoint, FractalIterator, PowerSpec, Variant
from .core.fractal_types import FractalRegistry, FractalType, ParameterSelection
from .core.regions import SeedRegion, find_dynamic_regions
from .core.search import BoundarySearch, SearchStrategy
from .analysis.quality import QualityAnalyzer, QualityConfig, QualityReport
from .analysis.framing import CropSelector, DeviceTarget
from .rendering.coloring import CycleMode, Palette, get_palette, list_palettes
from .rendering.renderer import CdfRenderer, RenderOptions, RenderResult
from .rendering.adaptive import AdaptiveTileRenderer
from .rendering.image_output import RenderMetadata, rgba_to_image

# Main API classes
from .api import (
    AttemptOutcome,
    GenerationExhaustedError,
    GenerationResult,
    GeneratorConfig,
    WallpaperGenerator,
)

__all__ = [
    "WallpaperGenerator",
    "GeneratorConfig",
    "GenerationResult",
    "GenerationExhaustedError",
    "AttemptOutcome",
    "FractalIterator",
    "ComplexPlane",
    "ComplexPoint",
    "PowerSpec",
    "Variant",
    "FractalType",
    "FractalRegistry",
    "ParameterSelection",
    "SeedRegion",
    "find_dynamic_regions",
    "SearchStrategy",
    "BoundarySearch",
    "QualityAnalyzer",
    "QualityConfig",
    "QualityReport",
    "CropSelector",
    "DeviceTarget",
    "Palette",
    "CycleMode",
    "get_palette",
    "list_palettes",
    "CdfRenderer",
    "RenderOptions",
    "RenderResult",
    "AdaptiveTileRenderer",
    "RenderMetadata",
    "rgba_to_image",
]
