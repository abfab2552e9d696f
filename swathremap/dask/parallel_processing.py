"""
Parallel tile resampling with Dask.

This module provides utilities for creating resampling maps and copying
data values tile by tile, using Dask's local schedulers or a distributed
client to process the tiles of a destination grid in parallel.
"""
import logging
from typing import List, Optional, Sequence, Union

import dask
import numpy as np
from dask.delayed import delayed
from dask.distributed import Client

from swathremap.dask.chunking import TilingScheme
from swathremap.exceptions import ValidationError
from swathremap.grid import Grid
from swathremap.resampling_map import ResamplingMap, ResamplingMapFactory

logger = logging.getLogger(__name__)


class TileResampler:
    """
    Copies source values into one destination tile using a resampling map.

    Parameters
    ----------
    resampling_map : ResamplingMap
        The map for the destination tile.
    """

    def __init__(self, resampling_map: ResamplingMap):
        self.resampling_map = resampling_map

    def resample(self, source: np.ndarray) -> np.ndarray:
        """
        Get the destination tile values, NaN where there is no mapping.

        Parameters
        ----------
        source : np.ndarray
            The full 2-D source array.

        Returns
        -------
        np.ndarray
            Array with the shape of the tile.
        """
        rmap = self.resampling_map
        valid = rmap.valid
        out = np.full(rmap.length, np.nan)
        out[valid] = np.asarray(source)[rmap.row_map[valid], rmap.col_map[valid]]
        return out


def _resample_tile(factory: ResamplingMapFactory, start, length,
                   sources: Sequence[np.ndarray]) -> Optional[List[np.ndarray]]:
    """Create the map for one tile and copy every source into it."""
    resampling_map = factory.create(start, length)
    if resampling_map is None:
        return None
    tile = TileResampler(resampling_map)
    return [tile.resample(source) for source in sources]


class ParallelProcessor:
    """
    A utility class for parallel tile resampling using Dask.

    Factories are only read during the parallel section, so a single
    factory is shared by all tiles.
    """

    def __init__(self, client: Optional[Client] = None, scheduler: str = "threads"):
        """
        Initialize the parallel processor.

        Parameters
        ----------
        client : dask.distributed.Client, optional
            Dask client for distributed computing. If None, uses the local
            scheduler given by ``scheduler``.
        scheduler : str, optional
            Local Dask scheduler ('threads', 'processes' or 'synchronous').
        """
        self.client = client
        self.scheduler = scheduler

    def resample(self,
                 factory: ResamplingMapFactory,
                 sources: Sequence[Union[np.ndarray, Grid]],
                 tiling: Optional[TilingScheme] = None) -> List[np.ndarray]:
        """
        Resample source arrays to the destination of a factory.

        Parameters
        ----------
        factory : ResamplingMapFactory
            Creates the map for each destination tile.
        sources : sequence of np.ndarray or Grid
            Source arrays with the source transform dimensions.
        tiling : TilingScheme, optional
            Destination tiling, ``TilingScheme.auto`` by default.

        Returns
        -------
        list of np.ndarray
            One destination array per source, NaN where there is no mapping.
        """
        dest_dims = tuple(factory.dest_trans.dimensions)
        source_dims = tuple(factory.source_trans.dimensions)
        arrays = [s.data if isinstance(s, Grid) else np.asarray(s, dtype=float) for s in sources]
        for array in arrays:
            if array.shape != source_dims:
                raise ValidationError(
                    f"Source array has shape {array.shape}, expected {source_dims}"
                )
        if tiling is None:
            tiling = TilingScheme.auto(dest_dims)
        elif tiling.dimensions != dest_dims:
            raise ValidationError(
                f"Tiling covers {tiling.dimensions}, destination is {dest_dims}"
            )

        tiles = tiling.tile_list()
        tasks = [delayed(_resample_tile)(factory, start, length, arrays) for start, length in tiles]
        logger.debug("Resampling %d source array(s) over %d tile(s)", len(arrays), len(tasks))
        if self.client is not None:
            results = self.client.gather(self.client.compute(tasks))
        else:
            results = dask.compute(*tasks, scheduler=self.scheduler)

        outputs = [np.full(dest_dims, np.nan) for _ in arrays]
        empty = 0
        for (start, length), values in zip(tiles, results):
            if values is None:
                empty += 1
                continue
            rows = slice(start[0], start[0] + length[0])
            cols = slice(start[1], start[1] + length[1])
            for output, tile_values in zip(outputs, values):
                output[rows, cols] = tile_values
        logger.debug("%d of %d tile(s) had no mapping", empty, len(tiles))
        return outputs

    def resample_grids(self,
                       factory: ResamplingMapFactory,
                       source_grids: Sequence[Grid],
                       dest_grids: Sequence[Grid],
                       tiling: Optional[TilingScheme] = None) -> None:
        """Resample each source grid into the matching destination grid."""
        if len(source_grids) != len(dest_grids):
            raise ValidationError(
                f"Got {len(source_grids)} source grid(s) and {len(dest_grids)} destination grid(s)"
            )
        outputs = self.resample(factory, source_grids, tiling)
        for dest, output in zip(dest_grids, outputs):
            if tuple(dest.dimensions) != output.shape:
                raise ValidationError(
                    f"Destination grid '{dest.name}' has dimensions {dest.dimensions}, "
                    f"expected {output.shape}"
                )
            dest.data[...] = output
