"""
Fractal family definitions and parameter selection.

Every fractal of the family is the escape-time iteration z -> f(z)^w + c for
some power w and variant f. A few combinations have established names and
hand-picked seed regions; any other combination is a generic complex-power
fractal whose regions are discovered at runtime.
"""

import numpy as np
from typing import Any, Dict, Mapping, Optional, Union
from dataclasses import dataclass, field
import logging

from .math_functions import FractalIterator, PowerSpec, Variant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FractalType:
    """A named member of the fractal family."""

    name: str
    power: PowerSpec
    description: str = ""

    def create_iterator(self, use_numba: bool = False) -> FractalIterator:
        return FractalIterator(self.power, use_numba=use_numba)

    @property
    def known(self) -> bool:
        """True when hand-picked seed regions exist for this fractal."""
        return is_known(self.power)

    def get_description(self) -> str:
        return self.description or f"{self.name} fractal (z^{self.power} + c, {self.power.variant.value})"


def is_known(power: PowerSpec) -> bool:
    """Standard integer powers 2 to 4 have seed region tables."""
    return power.variant is Variant.STANDARD and power.is_integer and 2 <= power.real <= 4


def fractal_name(power: PowerSpec) -> str:
    """
    Descriptive name of a power/variant combination.

    Standard integer powers are ``Mandelbrot`` / ``Mandelbrot<n>``; the z^2
    conjugate and absolute-value variants are ``Tricorn`` and ``BurningShip``.
    Everything else reads ``Power_<re>_<p|m><|im|>i`` with a ``_<variant>``
    suffix for non-standard variants.
    """
    variant = power.variant
    if variant is Variant.STANDARD and power.is_integer:
        n = power.integer
        return 'Mandelbrot' if n == 2 else f'Mandelbrot{n}'
    if power.real == 2 and power.imag == 0:
        if variant is Variant.CONJUGATE:
            return 'Tricorn'
        if variant is Variant.ABSOLUTE:
            return 'BurningShip'

    sign = 'p' if power.imag >= 0 else 'm'
    name = f"Power_{power.real:.2f}_{sign}{abs(power.imag):.2f}i"
    if variant is not Variant.STANDARD:
        name = f"{name}_{variant.value}"
    return name


class FractalRegistry:
    """Registry of named fractal presets."""

    _fractals: Dict[str, FractalType] = {
        'mandelbrot': FractalType('Mandelbrot', PowerSpec(2), "Classic Mandelbrot set z^2 + c"),
        'mandelbrot3': FractalType('Mandelbrot3', PowerSpec(3), "Cubic Multibrot z^3 + c"),
        'mandelbrot4': FractalType('Mandelbrot4', PowerSpec(4), "Quartic Multibrot z^4 + c"),
        'tricorn': FractalType('Tricorn', PowerSpec(2, 0, Variant.CONJUGATE),
                               "Tricorn (Mandelbar) conj(z)^2 + c"),
        'burningship': FractalType('BurningShip', PowerSpec(2, 0, Variant.ABSOLUTE),
                                   "Burning Ship (|Re z| + i|Im z|)^2 + c"),
    }

    @staticmethod
    def _key(name: str) -> str:
        return name.lower().replace('_', '').replace('-', '')

    @classmethod
    def register(cls, fractal: FractalType) -> None:
        """
        Register a new preset.

        Args:
            fractal: Preset to add under its own name
        """
        cls._fractals[cls._key(fractal.name)] = fractal
        logger.info(f"Registered fractal type: {fractal.name}")

    @classmethod
    def get(cls, name: str) -> FractalType:
        """
        Get a preset by name (case, underscores and dashes are ignored).

        Args:
            name: Fractal identifier

        Returns:
            FractalType preset
        """
        fractal = cls._fractals.get(cls._key(name))
        if fractal is None:
            available = ', '.join(f.name for f in cls._fractals.values())
            raise ValueError(f"Unknown fractal type '{name}'. Available: {available}")
        return fractal

    @classmethod
    def list_fractals(cls) -> Dict[str, str]:
        """Names of the presets and their descriptions."""
        return {f.name: f.get_description() for f in cls._fractals.values()}

    @classmethod
    def for_power(cls, power: PowerSpec) -> FractalType:
        """Preset matching a power/variant, or a generic complex-power fractal."""
        name = fractal_name(power)
        fractal = cls._fractals.get(cls._key(name))
        if fractal is not None and fractal.power == power:
            return fractal
        return FractalType(name, power)


def weighted_choice(weights: Mapping[Any, float], rng: np.random.Generator) -> Any:
    """Pick a key with probability proportional to its weight."""
    entries = [(key, float(w)) for key, w in weights.items() if w is not None and float(w) > 0]
    if not entries:
        raise ValueError("No positive weights for weighted random selection")

    total = sum(w for _, w in entries)
    r = rng.random() * total
    for key, weight in entries:
        r -= weight
        if r <= 0:
            return key
    return entries[-1][0]


@dataclass
class ParameterSelection:
    """Weights that drive the random choice of power and variant."""

    integer_power_weight: float = 0.6
    complex_power_weight: float = 0.4
    integer_powers: Dict[int, float] = field(default_factory=lambda: {2: 1.0, 3: 1.0, 4: 1.0})
    variants: Dict[str, float] = field(default_factory=lambda: {
        'standard': 0.7,
        'conjugate': 0.15,
        'burning-ship': 0.15,
    })
    organic_exploration_rate: float = 0.15

    def validate(self):
        """Validate selection weights."""
        if self.integer_power_weight < 0 or self.complex_power_weight < 0:
            raise ValueError("Power type weights must be non-negative")
        if self.integer_power_weight + self.complex_power_weight <= 0:
            raise ValueError("At least one power type weight must be positive")
        if not any(w > 0 for w in self.integer_powers.values()):
            raise ValueError("integer_powers needs at least one positive weight")
        if any(int(n) < 0 for n in self.integer_powers):
            raise ValueError("Integer powers must be non-negative")
        for name in self.variants:
            Variant.parse(name)
        if not 0.0 <= self.organic_exploration_rate <= 1.0:
            raise ValueError("organic_exploration_rate must be in [0, 1]")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParameterSelection':
        selection = cls()
        if 'integerPowerWeight' in data or 'integer_power_weight' in data:
            selection.integer_power_weight = float(
                data.get('integerPowerWeight', data.get('integer_power_weight')))
        if 'complexPowerWeight' in data or 'complex_power_weight' in data:
            selection.complex_power_weight = float(
                data.get('complexPowerWeight', data.get('complex_power_weight')))
        powers = data.get('integerPowers', data.get('integer_powers'))
        if powers is not None:
            selection.integer_powers = {int(k): float(v) for k, v in powers.items()}
        variants = data.get('variants')
        if variants is not None:
            selection.variants = {str(k): float(v) for k, v in variants.items()}
        if 'organicExplorationRate' in data or 'organic_exploration_rate' in data:
            selection.organic_exploration_rate = float(
                data.get('organicExplorationRate', data.get('organic_exploration_rate')))
        selection.validate()
        return selection


@dataclass(frozen=True)
class SelectedParameters:
    power: PowerSpec
    use_organic_exploration: bool = False


def select_fractal_parameters(selection: Optional[ParameterSelection],
                              rng: np.random.Generator) -> SelectedParameters:
    """
    Draw a random power and variant.

    Integer powers are drawn from ``integer_powers``; complex powers take a
    real part uniform between the smallest and largest integer key and an
    imaginary part of random sign with magnitude in [0.2, 2.0].

    Args:
        selection: Weights (defaults if None)
        rng: Random generator

    Returns:
        SelectedParameters
    """
    selection = selection or ParameterSelection()
    power_type = weighted_choice({
        'integer': selection.integer_power_weight,
        'complex': selection.complex_power_weight,
    }, rng)

    if power_type == 'integer':
        real = float(weighted_choice(selection.integer_powers, rng))
        imag = 0.0
    else:
        keys = [int(n) for n, w in selection.integer_powers.items() if w > 0]
        low, high = min(keys), max(keys)
        real = low + rng.random() * (high - low)
        sign = -1.0 if rng.random() < 0.5 else 1.0
        imag = sign * (0.2 + rng.random() * 1.8)

    variant = Variant.parse(weighted_choice(selection.variants, rng))
    organic = bool(rng.random() < selection.organic_exploration_rate)
    return SelectedParameters(PowerSpec(real, imag, variant), organic)


def resolve_power(power: Union[str, PowerSpec, None],
                  variant: Union[str, Variant, None] = None) -> Optional[PowerSpec]:
    """Turn a power override (string or PowerSpec) plus variant into a PowerSpec."""
    if power is None:
        return None
    if isinstance(power, PowerSpec):
        if variant is None:
            return power
        return PowerSpec(power.real, power.imag, variant)
    return PowerSpec.parse(str(power), variant or Variant.STANDARD)
