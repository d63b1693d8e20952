"""
Adaptive tiled renderer for expensive iteration functions.

Large interior regions cost max_iter iterations per pixel while adding nothing
but a flat color. This renderer samples every k-th pixel (and every tile
border row and column) first, marks tiles whose samples all stay in the set as
candidates, confirms each candidate by iterating its whole perimeter plus a few
random inner pixels at full depth, and only iterates the pixels of tiles that
are not confirmed solid. The resulting buffer goes through the same CDF and
palette pass as :class:`~fractal_wallpaper.rendering.renderer.CdfRenderer`.
"""

import numpy as np
from typing import List, Optional, Tuple
from dataclasses import dataclass
from enum import Enum
import logging
import time

from ..core.math_functions import ComplexPlane, FractalIterator
from .coloring import Palette
from .renderer import RenderOptions, RenderResult, finish_render

logger = logging.getLogger(__name__)


class TileClass(str, Enum):
    UNCLASSIFIED = 'unclassified'
    SOLID_INTERIOR_CANDIDATE = 'solid_interior_candidate'
    SOLID_INTERIOR = 'solid_interior'
    NEEDS_COMPUTE = 'needs_compute'


@dataclass
class Tile:
    """Rectangle of pixels classified as a unit."""

    x: int
    y: int
    w: int
    h: int
    classification: TileClass = TileClass.UNCLASSIFIED

    @property
    def pixels(self) -> int:
        return self.w * self.h


@dataclass
class SparseSamples:
    """In-set flags of the sparse grid; rows and columns are pixel indices."""

    columns: np.ndarray
    rows: np.ndarray
    in_set: np.ndarray


def tile_perimeter(tile: Tile) -> Tuple[np.ndarray, np.ndarray]:
    """Pixel coordinates of every border pixel of a tile."""
    xs = np.arange(tile.x, tile.x + tile.w)
    ys = np.arange(tile.y, tile.y + tile.h)
    left = np.full(ys.size, tile.x)
    right = np.full(ys.size, tile.x + tile.w - 1)
    top = np.full(xs.size, tile.y)
    bottom = np.full(xs.size, tile.y + tile.h - 1)
    return np.concatenate([xs, xs, left, right]), np.concatenate([top, bottom, ys, ys])


@dataclass
class AdaptiveStats:
    """Bookkeeping of one adaptive render."""

    tiles: int = 0
    candidates: int = 0
    verified: int = 0
    rejected: int = 0
    computed_pixels: int = 0
    skipped_pixels: int = 0


class AdaptiveTileRenderer:
    """Sparse-sample, classify, verify, then fill or compute."""

    def __init__(self, iterator: FractalIterator, options: Optional[RenderOptions] = None,
                 sparse_step: int = 4, tile_size: int = 32, verify_samples: int = 8,
                 rng: Optional[np.random.Generator] = None):
        """
        Initialize renderer.

        Args:
            iterator: Iteration engine
            options: Color-mapping options
            sparse_step: Pixel stride of the sparse pre-sample
            tile_size: Edge length of a classification tile
            verify_samples: Random full-depth samples per candidate tile
            rng: Random generator for verification positions
        """
        if sparse_step < 1 or tile_size < 1:
            raise ValueError("sparse_step and tile_size must be positive")
        if verify_samples < 1:
            raise ValueError("verify_samples must be at least 1")

        self.iterator = iterator
        self.options = options or RenderOptions()
        self.options.validate()
        self.sparse_step = sparse_step
        self.tile_size = tile_size
        self.verify_samples = verify_samples
        self.rng = rng if rng is not None else np.random.default_rng()
        self.last_stats = AdaptiveStats()

    def sample_positions(self, size: int) -> np.ndarray:
        """
        Pixel indices sampled along one axis.

        Every sparse_step-th pixel plus the first and last pixel of every
        tile, so each tile's samples reach its own border whatever the tile
        size.
        """
        starts = np.arange(0, size, self.tile_size)
        ends = np.minimum(starts + self.tile_size, size) - 1
        return np.union1d(np.arange(0, size, self.sparse_step), np.concatenate([starts, ends]))

    def sparse_sample(self, plane: ComplexPlane, max_iter: int) -> SparseSamples:
        """Iterate the sparse grid at full depth."""
        columns = self.sample_positions(plane.width)
        rows = self.sample_positions(plane.height)
        xs, ys = plane.pixel_to_complex(columns[np.newaxis, :], rows[:, np.newaxis])
        return SparseSamples(columns, rows, self.iterator.iterate_array(xs, ys, max_iter).in_set)

    def classify_tiles(self, sparse: SparseSamples, width: int, height: int) -> List[Tile]:
        """
        Partition the image into tiles and mark interior candidates.

        A tile is a candidate when every sparse sample inside it stays in the set.
        """
        size = self.tile_size
        tiles = []

        for y in range(0, height, size):
            for x in range(0, width, size):
                tile = Tile(x, y, min(size, width - x), min(size, height - y))
                c0, c1 = np.searchsorted(sparse.columns, [x, x + tile.w])
                r0, r1 = np.searchsorted(sparse.rows, [y, y + tile.h])
                samples = sparse.in_set[r0:r1, c0:c1]
                if samples.size and samples.all():
                    tile.classification = TileClass.SOLID_INTERIOR_CANDIDATE
                else:
                    tile.classification = TileClass.NEEDS_COMPUTE
                tiles.append(tile)

        return tiles

    def verify_tiles(self, tiles: List[Tile], plane: ComplexPlane,
                     max_iter: int) -> Tuple[int, int]:
        """
        Confirm candidates at full depth.

        Every perimeter pixel of a candidate is iterated together with
        verify_samples random pixels from its inside. For the standard
        integer-power family each iterate is a polynomial in c, so by the
        maximum modulus principle a tile whose whole border stays bounded is
        bounded inside too. For the other variants the random samples add coverage.
        A candidate becomes SOLID_INTERIOR only if every checked pixel stays
        in the set; otherwise it reverts to NEEDS_COMPUTE.

        Returns:
            Tuple of (verified, rejected) counts
        """
        candidates = [t for t in tiles if t.classification is TileClass.SOLID_INTERIOR_CANDIDATE]
        if not candidates:
            return 0, 0

        owners, px, py = [], [], []
        for index, tile in enumerate(candidates):
            border_x, border_y = tile_perimeter(tile)
            inner_x = tile.x + np.floor(self.rng.random(self.verify_samples) * tile.w)
            inner_y = tile.y + np.floor(self.rng.random(self.verify_samples) * tile.h)
            tile_x = np.concatenate([border_x, inner_x.astype(np.int64)])
            tile_y = np.concatenate([border_y, inner_y.astype(np.int64)])
            owners.append(np.full(tile_x.size, index))
            px.append(tile_x)
            py.append(tile_y)

        owners = np.concatenate(owners)
        xs, ys = plane.pixel_to_complex(np.concatenate(px), np.concatenate(py))
        in_set = self.iterator.iterate_array(xs, ys, max_iter).in_set
        escaped = np.bincount(owners[~in_set], minlength=len(candidates))

        for tile, count in zip(candidates, escaped):
            tile.classification = (TileClass.SOLID_INTERIOR if count == 0
                                   else TileClass.NEEDS_COMPUTE)

        verified = int(np.count_nonzero(escaped == 0))
        return verified, len(candidates) - verified

    def fill(self, tiles: List[Tile], plane: ComplexPlane, max_iter: int) -> np.ndarray:
        """
        Build the smooth-value buffer.

        Solid tiles are filled without iterating; every pixel of the other
        tiles is computed. In-set pixels carry -1.
        """
        values = np.full((plane.height, plane.width), -1.0)
        compute = np.ones((plane.height, plane.width), dtype=bool)
        for tile in tiles:
            if tile.classification is TileClass.SOLID_INTERIOR:
                compute[tile.y:tile.y + tile.h, tile.x:tile.x + tile.w] = False

        py, px = np.nonzero(compute)
        if py.size:
            xs, ys = plane.pixel_to_complex(px, py)
            result = self.iterator.iterate_array(xs, ys, max_iter)
            values[py, px] = np.where(result.in_set, -1.0, result.smooth)

        self.last_stats.computed_pixels = int(py.size)
        self.last_stats.skipped_pixels = int(compute.size - py.size)
        return values

    def render(self, width: int, height: int, cx: float, cy: float, zoom: float,
               palette: Palette, max_iter: int) -> RenderResult:
        """
        Render a view adaptively.

        Args:
            width, height: Output resolution
            cx, cy: View center
            zoom: Magnification
            palette: Palette for the color pass
            max_iter: Iteration cap

        Returns:
            RenderResult with an (height, width, 4) uint8 buffer
        """
        start_time = time.time()
        plane = ComplexPlane(cx, cy, zoom, width, height)
        self.last_stats = AdaptiveStats()

        sparse = self.sparse_sample(plane, max_iter)
        tiles = self.classify_tiles(sparse, width, height)
        self.last_stats.tiles = len(tiles)
        self.last_stats.candidates = sum(
            t.classification is TileClass.SOLID_INTERIOR_CANDIDATE for t in tiles
        )

        verified, rejected = self.verify_tiles(tiles, plane, max_iter)
        self.last_stats.verified = verified
        self.last_stats.rejected = rejected
        logger.debug(f"Adaptive tiles: {len(tiles)} total, {verified} solid, {rejected} rejected")

        values = self.fill(tiles, plane, max_iter)
        result = finish_render(values, plane, palette, max_iter, self.options, start_time)

        skipped = self.last_stats.skipped_pixels / max(1, width * height)
        logger.info(f"Adaptive render {width}x{height}: skipped {skipped:.1%} of pixels "
                    f"in {result.render_time:.2f}s")
        return result
