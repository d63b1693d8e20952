"""
Output records for accepted renders.

The pipeline hands back an RGBA buffer plus a metadata record; encoding,
naming and saving files belong to the caller. This module provides the
metadata record and the conversion of a buffer to a Pillow image, with the
metadata attached as PNG text chunks for callers that save PNGs.
"""

import numpy as np
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass, asdict, field
import json
import logging
from datetime import datetime

from PIL import Image, PngImagePlugin

logger = logging.getLogger(__name__)

SOFTWARE_VERSION = "1.0.0"


@dataclass
class RenderMetadata:
    """Metadata for an accepted render."""

    # Fractal parameters
    fractal_name: str
    power: str
    variant: str
    center: Tuple[float, float]
    zoom: float
    max_iterations: int

    # Selection
    palette: str
    region: str

    # Rendering
    resolution: Tuple[int, int]  # width, height
    render_time_seconds: float = 0.0
    adaptive: bool = False
    attempts: int = 1

    # Quality report of the scan
    quality: Dict[str, Any] = field(default_factory=dict)

    # Generation info
    timestamp: str = ""
    software_version: str = SOFTWARE_VERSION

    def __post_init__(self):
        """Set default timestamp if not provided."""
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert metadata to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RenderMetadata':
        """Create metadata from dictionary."""
        data = dict(data)
        data['center'] = tuple(data['center'])
        data['resolution'] = tuple(data['resolution'])
        return cls(**data)

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> 'RenderMetadata':
        """Create metadata from JSON string."""
        return cls.from_dict(json.loads(json_str))


def rgba_to_image(rgba: np.ndarray) -> Image.Image:
    """
    Wrap an RGBA buffer in a Pillow image.

    Args:
        rgba: uint8 array of shape (height, width, 4)

    Returns:
        PIL image in RGBA mode
    """
    if rgba.ndim != 3 or rgba.shape[2] != 4:
        raise ValueError(f"Expected RGBA image array (H, W, 4), got {rgba.shape}")
    if rgba.dtype != np.uint8:
        rgba = np.clip(rgba, 0, 255).astype(np.uint8)
    return Image.fromarray(np.ascontiguousarray(rgba))


def png_info(metadata: Optional[RenderMetadata]) -> PngImagePlugin.PngInfo:
    """PNG text chunks describing a render, for ``Image.save(..., pnginfo=...)``."""
    info = PngImagePlugin.PngInfo()
    if metadata:
        info.add_text("Title", f"Fractal: {metadata.fractal_name}")
        info.add_text("Software", f"fractal-wallpaper v{metadata.software_version}")
        info.add_text("Creation Time", metadata.timestamp)
        info.add_text("FractalMetadata", metadata.to_json())
    return info
