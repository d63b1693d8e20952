"""
Core mathematical functions for generalized escape-time iteration.

This module provides the iteration engine shared by every stage of the
pipeline: the integer and general complex power paths, the variant
transforms applied to the running iterate, the smooth (continuous) escape
index, and the view geometry that maps pixels onto the complex plane.
"""

import math
import numpy as np
from typing import Optional, Tuple, Union
from dataclasses import dataclass
from enum import Enum
import logging
import re

logger = logging.getLogger(__name__)

# |z|^2 > 256, i.e. |z| > 16
ESCAPE_RADIUS_SQ = 256.0

# Half extent of the smaller view dimension at zoom 1
VIEW_HALF_SIZE = 3.5

_LN2 = math.log(2.0)
# exp() argument beyond which a float overflows
_MAX_EXP_ARG = 709.0


class Variant(str, Enum):
    """Transform applied to the running iterate before exponentiation."""

    STANDARD = 'standard'
    CONJUGATE = 'conjugate'
    ABSOLUTE = 'burning-ship'

    @classmethod
    def parse(cls, value: Union[str, 'Variant']) -> 'Variant':
        """Resolve a variant from its name or value."""
        if isinstance(value, Variant):
            return value
        key = str(value).strip().lower().replace('_', '-')
        aliases = {
            'standard': cls.STANDARD,
            'conjugate': cls.CONJUGATE,
            'conjugate-negation': cls.CONJUGATE,
            'tricorn': cls.CONJUGATE,
            'burning-ship': cls.ABSOLUTE,
            'absolute': cls.ABSOLUTE,
            'absolute-value': cls.ABSOLUTE,
        }
        if key not in aliases:
            available = ', '.join(v.value for v in cls)
            raise ValueError(f"Unknown variant '{value}'. Available: {available}")
        return aliases[key]


@dataclass(frozen=True)
class ComplexPoint:
    """Immutable point in the complex plane."""

    real: float
    imag: float

    def __complex__(self) -> complex:
        return complex(self.real, self.imag)


_POWER_PATTERN = re.compile(r'^([+-]?[\d.]+)([+-][\d.]+)i$')


@dataclass(frozen=True)
class PowerSpec:
    """Exponent of the iteration z -> f(z)^w + c together with its variant."""

    real: float = 2.0
    imag: float = 0.0
    variant: Variant = Variant.STANDARD

    def __post_init__(self):
        object.__setattr__(self, 'variant', Variant.parse(self.variant))
        if not math.isfinite(self.real) or not math.isfinite(self.imag):
            raise ValueError("power components must be finite")

    @property
    def is_integer(self) -> bool:
        """True when the fast integer path applies."""
        return self.imag == 0 and float(self.real).is_integer() and self.real >= 0

    @property
    def integer(self) -> int:
        if not self.is_integer:
            raise ValueError(f"{self} is not an integer power")
        return int(self.real)

    @classmethod
    def parse(cls, text: str, variant: Union[str, Variant] = Variant.STANDARD) -> 'PowerSpec':
        """
        Parse a power string such as ``"3"``, ``"2.5"`` or ``"2.5+0.75i"``.

        Args:
            text: Power in ``real`` or ``real(+|-)imag i`` form
            variant: Variant to attach to the parsed power

        Returns:
            Parsed PowerSpec
        """
        compact = re.sub(r'\s', '', text)
        match = _POWER_PATTERN.match(compact)
        try:
            if match:
                return cls(float(match.group(1)), float(match.group(2)), variant)
            return cls(float(compact), 0.0, variant)
        except ValueError:
            raise ValueError(f"Invalid power string '{text}'") from None

    def __str__(self) -> str:
        if self.imag == 0:
            return f"{self.real:g}"
        sign = '+' if self.imag >= 0 else '-'
        return f"{self.real:g}{sign}{abs(self.imag):g}i"


@dataclass(frozen=True)
class IterationResult:
    """Outcome of iterating a single point."""

    iteration_count: int
    smooth_index: float
    in_set: bool


@dataclass
class GridResult:
    """Vectorised iteration outcome for an array of points."""

    iterations: np.ndarray
    smooth: np.ndarray
    in_set: np.ndarray

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.iterations.shape


def apply_variant(x, y, variant: Variant):
    """Apply the variant transform to the current iterate (scalars or arrays)."""
    if variant is Variant.CONJUGATE:
        return x, -y
    if variant is Variant.ABSOLUTE:
        return abs(x), abs(y)
    return x, y


def integer_power(x, y, n: int):
    """
    Compute (x + iy)^n by multiplication only.

    Closed forms are used for n <= 4, repeated complex multiplication above.
    Works on Python floats and numpy arrays alike.
    """
    if n == 0:
        return x * 0 + 1.0, y * 0
    if n == 1:
        return x, y
    x2 = x * x
    y2 = y * y
    if n == 2:
        return x2 - y2, 2 * x * y
    if n == 3:
        return x2 * x - 3 * x * y2, 3 * x2 * y - y2 * y
    if n == 4:
        return x2 * x2 - 6 * x2 * y2 + y2 * y2, 4 * x2 * x * y - 4 * x * y2 * y

    real, imag = x, y
    for _ in range(n - 1):
        real, imag = real * x - imag * y, real * y + imag * x
    return real, imag


def complex_power(x: float, y: float, power_real: float, power_imag: float) -> Tuple[float, float]:
    """
    Compute z^w = exp(w * ln z) for a single point.

    Returns (0, 0) at the origin. An exponent large enough to overflow
    yields an infinite real part so the point escapes.
    """
    if x == 0 and y == 0:
        return 0.0, 0.0

    ln_r = math.log(math.hypot(x, y))
    theta = math.atan2(y, x)

    product_real = power_real * ln_r - power_imag * theta
    product_imag = power_real * theta + power_imag * ln_r

    if product_real > _MAX_EXP_ARG:
        return math.inf, 0.0

    magnitude = math.exp(product_real)
    return magnitude * math.cos(product_imag), magnitude * math.sin(product_imag)


def complex_power_array(x: np.ndarray, y: np.ndarray,
                        power_real: float, power_imag: float) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorised :func:`complex_power`."""
    origin = (x == 0) & (y == 0)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        ln_r = np.log(np.hypot(x, y))
        theta = np.arctan2(y, x)

        product_real = power_real * ln_r - power_imag * theta
        product_imag = power_real * theta + power_imag * ln_r

        overflow = product_real > _MAX_EXP_ARG
        magnitude = np.exp(np.minimum(product_real, _MAX_EXP_ARG))
        real = np.where(overflow, np.inf, magnitude * np.cos(product_imag))
        imag = np.where(overflow, 0.0, magnitude * np.sin(product_imag))

    real = np.where(origin, 0.0, real)
    imag = np.where(origin, 0.0, imag)
    return real, imag


def smooth_escape_index(iteration: int, magnitude_sq: float) -> float:
    """Continuous escape index n + 1 - log2(log|z| / log 2), floored at 0."""
    log_zn = math.log(magnitude_sq) / 2 if magnitude_sq > 0 else 0.0
    if log_zn <= 0 or not math.isfinite(log_zn):
        return 0.0
    value = iteration + 1 - math.log(log_zn / _LN2) / _LN2
    if not math.isfinite(value):
        return 0.0
    return max(0.0, value)


def smooth_escape_index_array(iterations: np.ndarray, magnitude_sq: np.ndarray) -> np.ndarray:
    """Vectorised :func:`smooth_escape_index`."""
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        log_zn = np.log(magnitude_sq) / 2
        nu = np.log(log_zn / _LN2) / _LN2
        value = iterations + 1 - nu
    value = np.where(np.isfinite(value), value, 0.0)
    return np.maximum(value, 0.0)


class FractalIterator:
    """Escape-time iteration of z -> f(z)^w + c starting at z = 0."""

    def __init__(self, power: Optional[PowerSpec] = None, use_numba: bool = False):
        """
        Initialize fractal iterator.

        Args:
            power: Exponent and variant (defaults to the classic z^2 + c)
            use_numba: Use the JIT kernel for array iteration when available
        """
        self.power = power or PowerSpec()
        self.variant = self.power.variant
        self.use_integer_path = self.power.is_integer
        self._n = self.power.integer if self.use_integer_path else None
        self._accelerator = None

        if use_numba:
            from ..acceleration.numba_backend import get_numba_accelerator, is_numba_available
            if is_numba_available():
                self._accelerator = get_numba_accelerator()
            else:
                logger.warning("Numba requested but not available - using NumPy iteration")

    @property
    def accelerated(self) -> bool:
        return self._accelerator is not None

    def _power(self, x, y):
        if self.use_integer_path:
            return integer_power(x, y, self._n)
        return complex_power(x, y, self.power.real, self.power.imag)

    def _power_array(self, x, y):
        if self.use_integer_path:
            return integer_power(x, y, self._n)
        return complex_power_array(x, y, self.power.real, self.power.imag)

    def iterate(self, x0: float, y0: float, max_iter: int) -> IterationResult:
        """
        Iterate a single point.

        Args:
            x0, y0: The constant c
            max_iter: Iteration cap

        Returns:
            IterationResult; in_set points carry smooth_index == max_iter
        """
        x = y = 0.0
        n = 0
        while x * x + y * y <= ESCAPE_RADIUS_SQ and n < max_iter:
            vx, vy = apply_variant(x, y, self.variant)
            px, py = self._power(vx, vy)
            x = px + x0
            y = py + y0
            n += 1

        if n >= max_iter:
            return IterationResult(n, float(max_iter), True)

        return IterationResult(n, smooth_escape_index(n, x * x + y * y), False)

    def iterate_array(self, xs, ys, max_iter: int) -> GridResult:
        """
        Iterate every point of matching coordinate arrays.

        Args:
            xs, ys: Real and imaginary parts of c (any matching shape)
            max_iter: Iteration cap

        Returns:
            GridResult with arrays of the input shape
        """
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        if xs.shape != ys.shape:
            xs, ys = np.broadcast_arrays(xs, ys)
        shape = xs.shape

        if self._accelerator is not None:
            iterations, smooth, in_set = self._accelerator.iterate_points(
                xs.ravel(), ys.ravel(), max_iter, self.power
            )
        else:
            iterations, smooth, in_set = self._iterate_numpy(xs.ravel(), ys.ravel(), max_iter)

        return GridResult(iterations.reshape(shape), smooth.reshape(shape), in_set.reshape(shape))

    def _iterate_numpy(self, cr: np.ndarray, ci: np.ndarray, max_iter: int):
        count = cr.size
        zr = np.zeros(count)
        zi = np.zeros(count)
        iterations = np.zeros(count, dtype=np.int32)
        active = np.arange(count)

        with np.errstate(over='ignore', invalid='ignore'):
            for _ in range(max_iter):
                if active.size == 0:
                    break
                x, y = apply_variant(zr[active], zi[active], self.variant)
                px, py = self._power_array(x, y)
                x = px + cr[active]
                y = py + ci[active]
                zr[active] = x
                zi[active] = y
                iterations[active] += 1
                # NaN magnitudes compare False and escape
                active = active[x * x + y * y <= ESCAPE_RADIUS_SQ]

            magnitude_sq = zr * zr + zi * zi

        in_set = iterations >= max_iter
        smooth = smooth_escape_index_array(iterations, magnitude_sq)
        smooth = np.where(in_set, float(max_iter), smooth)
        return iterations, smooth, in_set


class ComplexPlane:
    """Aspect-aware view of the complex plane around a center at a given zoom."""

    def __init__(self, center_x: float, center_y: float, zoom: float,
                 width: int, height: int):
        """
        Initialize the view.

        The smaller image dimension spans +/- VIEW_HALF_SIZE / zoom; the larger
        one is stretched by the aspect ratio so pixels stay square.

        Args:
            center_x, center_y: View center
            zoom: Magnification (> 0)
            width, height: Image resolution in pixels
        """
        if width <= 0 or height <= 0:
            raise ValueError("Width and height must be positive")
        if not zoom > 0:
            raise ValueError("zoom must be positive")

        self.center_x = center_x
        self.center_y = center_y
        self.zoom = zoom
        self.width = width
        self.height = height

        base = VIEW_HALF_SIZE / zoom
        aspect = width / height
        if aspect > 1:
            half_x, half_y = base * aspect, base
        else:
            half_x, half_y = base, base / aspect

        self.xmin = center_x - half_x
        self.xmax = center_x + half_x
        self.ymin = center_y - half_y
        self.ymax = center_y + half_y

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.xmin, self.xmax, self.ymin, self.ymax

    def pixel_to_complex(self, px, py):
        """Map pixel coordinates (scalars or arrays) to the complex plane."""
        x = self.xmin + (self.xmax - self.xmin) * (np.asarray(px, dtype=np.float64) / self.width)
        y = self.ymin + (self.ymax - self.ymin) * (np.asarray(py, dtype=np.float64) / self.height)
        return x, y

    def create_coordinate_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        """Coordinate arrays of shape (height, width) for every pixel."""
        px, py = np.meshgrid(np.arange(self.width), np.arange(self.height))
        return self.pixel_to_complex(px, py)

    def sub_view(self, x: int, y: int, w: int, h: int) -> Tuple[float, float, float]:
        """
        Fractal coordinates of a pixel rectangle.

        Returns (center_x, center_y, zoom) such that a ComplexPlane of aspect
        w:h built from them covers exactly the rectangle.
        """
        x0, y0 = self.pixel_to_complex(x, y)
        x1, y1 = self.pixel_to_complex(x + w, y + h)
        span = min(float(x1 - x0), float(y1 - y0))
        center_x = float(x0 + x1) / 2
        center_y = float(y0 + y1) / 2
        return center_x, center_y, VIEW_HALF_SIZE / (span / 2)

    def __repr__(self) -> str:
        return (f"ComplexPlane(center=({self.center_x}, {self.center_y}), zoom={self.zoom}, "
                f"{self.width}x{self.height})")
