"""
Palette management and CDF-based color mapping.

Smooth escape indices are not spread evenly: most escaped pixels cluster in
a narrow band of values. Mapping them through their own cumulative histogram
before the palette lookup gives an even spread of palette colors no matter
how the values cluster. This module provides the palettes, the CDF, the
cycle modes applied to the normalized value, and the optional cosmetic
passes (brightness modulation and anti-grain blending).
"""

import numpy as np
from typing import Dict, List, Optional, Sequence, Union
from dataclasses import dataclass
from enum import Enum
import logging

logger = logging.getLogger(__name__)

# Color of pixels that never escape
IN_SET_COLOR = (0, 0, 5, 255)

# Histogram bins per unit of max_iter
HISTOGRAM_OVERSAMPLING = 100

DEFAULT_ANTI_GRAIN_BLEND = 0.45


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


class Palette:
    """Ordered RGB stops with smoothstep easing between neighbours."""

    def __init__(self, colors: Sequence[Sequence[int]], name: str = "Custom"):
        """
        Initialize color palette.

        Args:
            colors: RGB stops with components in 0-255
            name: Human-readable name for the palette
        """
        self.name = name
        self.colors = np.asarray(colors, dtype=np.float64)

        if self.colors.ndim != 2 or self.colors.shape[1] != 3:
            raise ValueError(f"Palette '{name}' needs RGB triples")
        if len(self.colors) < 2:
            raise ValueError("Palette must contain at least 2 colors")
        if self.colors.min() < 0 or self.colors.max() > 255:
            raise ValueError("RGB components must be between 0 and 255")

    def __len__(self) -> int:
        return len(self.colors)

    def interpolate(self, t: Union[float, np.ndarray]) -> np.ndarray:
        """
        Color at normalized position(s) t in [0, 1].

        Position t maps to t * (n - 1) along the stops; the fractional part
        is eased with t^2 (3 - 2t) before blending adjacent stops.

        Args:
            t: Scalar or array of positions

        Returns:
            Float RGB array of shape t.shape + (3,), rounded to integers
        """
        t = np.asarray(t, dtype=np.float64)
        last = len(self.colors) - 1

        position = t * last
        index = np.floor(position).astype(np.int64)
        frac = position - index
        at_end = index >= last
        index = np.clip(index, 0, last - 1)

        ease = (frac * frac * (3 - 2 * frac))[..., np.newaxis]
        low = self.colors[index]
        high = self.colors[index + 1]
        rgb = _round_half_up(low + (high - low) * ease)
        return np.where(at_end[..., np.newaxis], self.colors[last], rgb)

    def to_dict(self) -> Dict:
        return {'name': self.name, 'colors': self.colors.astype(int).tolist()}

    def __repr__(self) -> str:
        return f"Palette({self.name!r}, {len(self.colors)} stops)"


BUILTIN_PALETTES: Dict[str, Palette] = {
    palette.name: palette for palette in (
        Palette([(5, 5, 20), (40, 20, 80), (80, 60, 140), (180, 40, 80),
                 (220, 80, 40), (240, 160, 60), (255, 220, 140)], 'Fire_Ice'),
        Palette([(10, 5, 25), (100, 20, 80), (180, 60, 100), (220, 100, 80),
                 (240, 160, 80), (255, 200, 100), (255, 240, 180)], 'Tropical_Sunset'),
        Palette([(5, 10, 20), (20, 40, 80), (40, 80, 140), (80, 140, 180),
                 (120, 180, 200), (160, 220, 220), (200, 240, 240)], 'Ocean_Depths'),
        Palette([(5, 10, 30), (40, 60, 120), (60, 120, 160), (100, 180, 180),
                 (140, 200, 140), (180, 220, 100), (220, 240, 160)], 'Northern_Lights'),
        Palette([(10, 5, 20), (60, 20, 100), (120, 60, 160), (180, 100, 180),
                 (220, 120, 140), (240, 160, 120), (255, 220, 180)], 'Royal_Spectrum'),
        Palette([(10, 5, 5), (60, 10, 20), (120, 30, 30), (180, 60, 30),
                 (220, 120, 40), (240, 180, 80), (255, 230, 140)], 'Volcanic_Fury'),
        Palette([(10, 5, 30), (80, 40, 140), (140, 60, 180), (180, 80, 140),
                 (200, 120, 100), (220, 160, 100), (240, 200, 140), (255, 240, 200)],
                'Electric_Rainbow'),
        Palette([(10, 15, 20), (40, 60, 80), (60, 100, 120), (100, 140, 120),
                 (140, 180, 100), (180, 200, 100), (220, 220, 140)], 'Mystic_Forest'),
        Palette([(15, 10, 25), (80, 40, 60), (140, 80, 80), (180, 120, 80),
                 (220, 160, 100), (240, 200, 140), (255, 230, 180)], 'Desert_Mirage'),
        Palette([(5, 5, 15), (60, 20, 80), (100, 40, 120), (140, 80, 140),
                 (180, 120, 160), (200, 160, 200), (220, 200, 240)], 'Cosmic_Nebula'),
    )
}


def list_palettes() -> List[str]:
    return list(BUILTIN_PALETTES)


def get_palette(name: str) -> Palette:
    """Look up a built-in palette by name."""
    if name not in BUILTIN_PALETTES:
        available = ', '.join(BUILTIN_PALETTES)
        raise ValueError(f"Palette '{name}' not found. Available: {available}")
    return BUILTIN_PALETTES[name]


def random_palette(rng: np.random.Generator) -> Palette:
    names = list(BUILTIN_PALETTES)
    return BUILTIN_PALETTES[names[int(rng.integers(len(names)))]]


class CycleMode(str, Enum):
    """How normalized values outside [0, 1) are folded before palette lookup."""

    CLAMP = 'clamp'
    REFLECT = 'reflect'
    MODULO = 'modulo'

    @classmethod
    def parse(cls, value: Union[str, 'CycleMode']) -> 'CycleMode':
        try:
            return cls(value)
        except ValueError:
            available = ', '.join(m.value for m in cls)
            raise ValueError(f"Unknown cycle mode '{value}'. Available: {available}") from None


@dataclass(frozen=True)
class ColorSmoothing:
    """Brightness modulation base + amplitude * sin(smooth * frequency)."""

    base: float = 0.9
    amplitude: float = 0.1
    frequency: float = 0.5

    def brightness(self, smooth: np.ndarray) -> np.ndarray:
        return self.base + self.amplitude * np.sin(smooth * self.frequency)


def _bins(values: np.ndarray, max_iter: int, size: int) -> np.ndarray:
    scaled = np.floor(values / max_iter * (size - 1))
    return np.minimum(size - 1, scaled).astype(np.int64)


def build_cdf(values: np.ndarray, max_iter: int) -> np.ndarray:
    """
    Normalized cumulative histogram of the escaped (non-negative) values.

    Args:
        values: Smooth indices, -1 marking in-set pixels
        max_iter: Iteration cap of the render

    Returns:
        Non-decreasing array of max_iter * 100 bins ending at 1.0, or all
        zeros when nothing escaped
    """
    size = max(1, int(max_iter) * HISTOGRAM_OVERSAMPLING)
    escaped = values[values >= 0]
    if escaped.size == 0 or max_iter <= 0:
        return np.zeros(size)

    histogram = np.bincount(_bins(escaped, max_iter, size), minlength=size)
    cumulative = np.cumsum(histogram, dtype=np.float64)
    return cumulative / cumulative[-1]


def normalize_via_cdf(values: np.ndarray, max_iter: int, cdf: np.ndarray) -> np.ndarray:
    """Map non-negative smooth indices through the CDF."""
    if max_iter <= 0:
        return np.zeros_like(values, dtype=np.float64)
    return cdf[_bins(np.maximum(values, 0), max_iter, len(cdf))]


def apply_cycle_mode(normalized: np.ndarray, mode: Union[str, CycleMode]) -> np.ndarray:
    mode = CycleMode.parse(mode)
    if mode is CycleMode.CLAMP:
        return np.minimum(1.0, normalized)
    if mode is CycleMode.REFLECT:
        t = np.mod(normalized, 2.0)
        return np.where(t > 1.0, 2.0 - t, t)
    return np.mod(normalized, 1.0)


def apply_color_smoothing(rgb: np.ndarray, smooth: np.ndarray,
                          smoothing: ColorSmoothing) -> np.ndarray:
    """Scale palette colors by the sinusoidal brightness of their smooth index."""
    factor = smoothing.brightness(smooth)[..., np.newaxis]
    return np.clip(_round_half_up(rgb * factor), 0, 255)


def apply_anti_grain(rgba: np.ndarray, blend: float = DEFAULT_ANTI_GRAIN_BLEND) -> np.ndarray:
    """
    Blend every interior pixel with its four neighbours.

    out = orig * (1 - blend) + (left + right + up + down) * blend / 4, on the
    RGB channels of the original values. Border pixels are left untouched.

    Returns:
        New uint8 RGBA array
    """
    if not 0.0 <= blend <= 1.0:
        raise ValueError("Anti-grain blend factor must be between 0 and 1")

    out = rgba.copy()
    height, width = rgba.shape[:2]
    if height < 3 or width < 3:
        return out

    src = rgba[..., :3].astype(np.float64)
    neighbours = (src[1:-1, :-2] + src[1:-1, 2:] + src[:-2, 1:-1] + src[2:, 1:-1])
    blended = src[1:-1, 1:-1] * (1 - blend) + neighbours * (blend / 4)
    out[1:-1, 1:-1, :3] = np.clip(_round_half_up(blended), 0, 255).astype(np.uint8)
    return out


def colorize(values: np.ndarray, max_iter: int, palette: Palette,
             cycle_mode: Union[str, CycleMode] = CycleMode.CLAMP,
             color_smoothing: Optional[ColorSmoothing] = None,
             anti_grain: Optional[float] = None) -> np.ndarray:
    """
    Second render pass: map a smooth-value buffer to RGBA.

    Args:
        values: (h, w) smooth indices with -1 for in-set pixels
        max_iter: Iteration cap of the render
        palette: Palette to map into
        cycle_mode: Folding applied after CDF normalization
        color_smoothing: Optional brightness modulation
        anti_grain: Optional blend factor for the anti-grain pass

    Returns:
        uint8 array of shape (h, w, 4)
    """
    height, width = values.shape
    rgba = np.empty((height, width, 4), dtype=np.uint8)
    rgba[...] = IN_SET_COLOR

    escaped = values >= 0
    if escaped.any():
        cdf = build_cdf(values, max_iter)
        smooth = values[escaped]
        normalized = apply_cycle_mode(normalize_via_cdf(smooth, max_iter, cdf), cycle_mode)
        rgb = palette.interpolate(normalized)
        if color_smoothing is not None:
            rgb = apply_color_smoothing(rgb, smooth, color_smoothing)
        rgba[escaped, :3] = rgb.astype(np.uint8)

    if anti_grain is not None:
        rgba = apply_anti_grain(rgba, anti_grain)
    return rgba
