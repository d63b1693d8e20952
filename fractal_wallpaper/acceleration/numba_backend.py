"""
Numba JIT compilation backend for escape-time iteration.

This module provides a JIT-compiled, parallel version of the generalized
iteration z -> f(z)^w + c. Every point owns its own output slot, so the
outer loop runs under ``prange`` with no synchronization. The NumPy path in
:mod:`fractal_wallpaper.core.math_functions` remains the default backend;
this one is used only when Numba is installed and requested.
"""

import math
import numpy as np
from typing import Tuple
import logging

from ..core.math_functions import (
    ESCAPE_RADIUS_SQ,
    PowerSpec,
    Variant,
    smooth_escape_index_array,
)

logger = logging.getLogger(__name__)

try:
    import numba
    from numba import njit, prange
    NUMBA_AVAILABLE = True
    logger.debug(f"Numba available: {numba.__version__}")
except ImportError:
    NUMBA_AVAILABLE = False
    logger.debug("Numba not available - JIT acceleration disabled")

_VARIANT_CODES = {
    Variant.STANDARD: 0,
    Variant.CONJUGATE: 1,
    Variant.ABSOLUTE: 2,
}


def _iterate_points(c_real, c_imag, max_iter, variant_code, integer_power,
                    power_real, power_imag, escape_radius_sq):
    """
    Iterate every point of flat coordinate arrays.

    ``integer_power`` >= 0 selects the multiplication-only path; a negative
    value selects exp(w * ln z) with w = power_real + i * power_imag.

    Returns:
        Tuple of (iterations, final_real, final_imag)
    """
    count = c_real.shape[0]
    iterations = np.zeros(count, dtype=np.int32)
    final_real = np.zeros(count, dtype=np.float64)
    final_imag = np.zeros(count, dtype=np.float64)

    for i in prange(count):
        cr = c_real[i]
        ci = c_imag[i]
        zr = 0.0
        zi = 0.0
        n = 0

        while zr * zr + zi * zi <= escape_radius_sq and n < max_iter:
            if variant_code == 1:
                zi = -zi
            elif variant_code == 2:
                zr = abs(zr)
                zi = abs(zi)

            if integer_power >= 0:
                pr = 1.0
                pi = 0.0
                for _ in range(integer_power):
                    tr = pr * zr - pi * zi
                    pi = pr * zi + pi * zr
                    pr = tr
            elif zr == 0.0 and zi == 0.0:
                pr = 0.0
                pi = 0.0
            else:
                ln_r = 0.5 * math.log(zr * zr + zi * zi)
                theta = math.atan2(zi, zr)
                a = power_real * ln_r - power_imag * theta
                b = power_real * theta + power_imag * ln_r
                if a > 709.0:
                    pr = math.inf
                    pi = 0.0
                else:
                    mag = math.exp(a)
                    pr = mag * math.cos(b)
                    pi = mag * math.sin(b)

            zr = pr + cr
            zi = pi + ci
            n += 1

        iterations[i] = n
        final_real[i] = zr
        final_imag[i] = zi

    return iterations, final_real, final_imag


if NUMBA_AVAILABLE:
    _iterate_kernel = njit(parallel=True, cache=True)(_iterate_points)


class NumbaAccelerator:
    """Numba-accelerated iteration backend."""

    def __init__(self):
        self.available = NUMBA_AVAILABLE
        if not self.available:
            logger.warning("Numba not available - acceleration disabled")

    def iterate_points(self, c_real: np.ndarray, c_imag: np.ndarray, max_iter: int,
                       power: PowerSpec) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Accelerated iteration of flat coordinate arrays.

        Args:
            c_real: Real parts of c
            c_imag: Imaginary parts of c
            max_iter: Iteration cap
            power: Exponent and variant

        Returns:
            Tuple of (iterations, smooth, in_set) flat arrays
        """
        if not self.available:
            raise RuntimeError("Numba not available")

        integer_power = power.integer if power.is_integer else -1
        iterations, final_real, final_imag = _iterate_kernel(
            np.ascontiguousarray(c_real, dtype=np.float64),
            np.ascontiguousarray(c_imag, dtype=np.float64),
            int(max_iter),
            _VARIANT_CODES[power.variant],
            int(integer_power),
            float(power.real),
            float(power.imag),
            ESCAPE_RADIUS_SQ,
        )

        in_set = iterations >= max_iter
        with np.errstate(over='ignore', invalid='ignore'):
            magnitude_sq = final_real * final_real + final_imag * final_imag
        smooth = smooth_escape_index_array(iterations, magnitude_sq)
        smooth = np.where(in_set, float(max_iter), smooth)
        return iterations, smooth, in_set


# Global accelerator instance
_numba_accelerator = None


def get_numba_accelerator():
    """Get the global Numba accelerator instance."""
    global _numba_accelerator
    if _numba_accelerator is None:
        _numba_accelerator = NumbaAccelerator()
    return _numba_accelerator


def is_numba_available():
    """Check if Numba acceleration is available."""
    return NUMBA_AVAILABLE
