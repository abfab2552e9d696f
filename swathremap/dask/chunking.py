"""
Tiling of destination grids for parallel resampling.

This module provides the tiling scheme that splits a destination grid into
rectangular tiles, each of which gets its own resampling map.
"""
import math
from typing import Iterator, List, Sequence, Tuple, Union

import numpy as np
import xarray as xr

from swathremap.exceptions import ValidationError

# Default number of destination pixels per tile
DEFAULT_TILE_PIXELS = 512 * 512

Tile = Tuple[Tuple[int, int], Tuple[int, int]]


class TilingScheme:
    """
    A row-major tiling of a 2-D grid.

    Tiles along the bottom and right edges are truncated to the grid.

    Parameters
    ----------
    dimensions : sequence of int
        The (rows, cols) of the grid.
    tile_dimensions : sequence of int
        The (rows, cols) of a full tile.
    """

    def __init__(self, dimensions: Sequence[int], tile_dimensions: Sequence[int]):
        if len(dimensions) != 2 or len(tile_dimensions) != 2:
            raise ValidationError(
                f"Tiling requires 2-D dimensions, got {tuple(dimensions)} and {tuple(tile_dimensions)}"
            )
        if min(dimensions) <= 0 or min(tile_dimensions) <= 0:
            raise ValidationError(
                f"Dimensions must be positive, got {tuple(dimensions)} and {tuple(tile_dimensions)}"
            )
        self.dimensions = (int(dimensions[0]), int(dimensions[1]))
        self.tile_dimensions = (int(tile_dimensions[0]), int(tile_dimensions[1]))

    @classmethod
    def auto(cls, dimensions: Sequence[int], target_pixels: int = DEFAULT_TILE_PIXELS) -> "TilingScheme":
        """
        Create a tiling with roughly square tiles of about ``target_pixels`` pixels.
        """
        side = max(1, int(math.sqrt(target_pixels)))
        return cls(dimensions, (min(int(dimensions[0]), side), min(int(dimensions[1]), side)))

    @classmethod
    def from_chunks(cls, data: Union[xr.DataArray, np.ndarray]) -> "TilingScheme":
        """
        Create a tiling matching the chunks of a dask backed array.

        Arrays without chunks are covered by a single tile.
        """
        if isinstance(data, xr.DataArray):
            data = data.data
        shape = data.shape
        chunks = getattr(data, "chunks", None)
        if chunks is None:
            return cls(shape, shape)
        return cls(shape, (chunks[0][0], chunks[1][0]))

    @property
    def tile_counts(self) -> Tuple[int, int]:
        """The number of tiles along each axis."""
        return tuple(
            -(-dim // tile) for dim, tile in zip(self.dimensions, self.tile_dimensions)
        )

    def tiles(self) -> Iterator[Tile]:
        """Yield ``(start, length)`` for each tile in row-major order."""
        rows, cols = self.dimensions
        tile_rows, tile_cols = self.tile_dimensions
        for i in range(0, rows, tile_rows):
            for j in range(0, cols, tile_cols):
                yield (i, j), (min(tile_rows, rows - i), min(tile_cols, cols - j))

    def tile_list(self) -> List[Tile]:
        return list(self.tiles())

    def __iter__(self) -> Iterator[Tile]:
        return self.tiles()

    def __len__(self) -> int:
        counts = self.tile_counts
        return counts[0] * counts[1]

    def __repr__(self) -> str:
        return f"TilingScheme(dimensions={self.dimensions}, tile_dimensions={self.tile_dimensions})"
