"""
Dask integration module for swathremap.

This module provides tile based parallel resampling with Dask.
"""
from .chunking import DEFAULT_TILE_PIXELS, TilingScheme
from .parallel_processing import ParallelProcessor, TileResampler

__all__ = ['DEFAULT_TILE_PIXELS', 'TilingScheme', 'TileResampler', 'ParallelProcessor']
