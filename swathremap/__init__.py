"""
swathremap: resampling of satellite swath data onto map projected grids.

This library provides:
- Earth transforms for map projected grids and latitude/longitude swaths
- Grid resampling by exact inverse transform, by piecewise polynomial
  location estimation, or by forward mapping of source rectangles
- Spatial partition trees with persistent encodings
- Nearest neighbour resampling maps with quality diagnostics
- Dask integration for tile parallel resampling

The xarray interface is accessed via the .swathremap accessor.
"""

__version__ = "0.1.0"

from .exceptions import (  # noqa: F401
    EstimatorError,
    GeolocationError,
    PartitionError,
    SwathRemapError,
    ValidationError,
)
from .crs import WGS84, NAD27, NAD83, CRSManager, Datum, crs_manager  # noqa: F401
from .location import DataLocation, EarthLocation  # noqa: F401
from .transforms import EarthTransform, MapTransform, SwathTransform  # noqa: F401
from .grid import Grid  # noqa: F401
from .partition import EarthPartition, PartitionCache, PartitionEncoding  # noqa: F401
from .location_estimator import LocationEstimator  # noqa: F401
from .variable_estimator import VariableEstimator  # noqa: F401
from .area import EarthArea  # noqa: F401
from .core import (  # noqa: F401
    DirectGridResampler,
    GridResampler,
    InverseGridResampler,
    MixedGridResampler,
    create_resampler,
    perform,
)
from .resampling_map import (  # noqa: F401
    DirectResamplingMapFactory,
    GenericSourceImp,
    NearestResamplingMapFactory,
    ResamplingDiagnostic,
    ResamplingMap,
    ResamplingMapFactory,
)
from .dask import ParallelProcessor, TileResampler, TilingScheme  # noqa: F401

# Registers the .swathremap accessor on xarray objects
from .accessors import SwathRemapAccessor  # noqa: F401

__all__ = [
    "SwathRemapError",
    "ValidationError",
    "EstimatorError",
    "PartitionError",
    "GeolocationError",
    "CRSManager",
    "Datum",
    "crs_manager",
    "WGS84",
    "NAD83",
    "NAD27",
    "DataLocation",
    "EarthLocation",
    "EarthTransform",
    "MapTransform",
    "SwathTransform",
    "Grid",
    "EarthPartition",
    "PartitionCache",
    "PartitionEncoding",
    "LocationEstimator",
    "VariableEstimator",
    "EarthArea",
    "GridResampler",
    "DirectGridResampler",
    "InverseGridResampler",
    "MixedGridResampler",
    "create_resampler",
    "perform",
    "ResamplingMap",
    "ResamplingMapFactory",
    "DirectResamplingMapFactory",
    "NearestResamplingMapFactory",
    "GenericSourceImp",
    "ResamplingDiagnostic",
    "TilingScheme",
    "TileResampler",
    "ParallelProcessor",
    "SwathRemapAccessor",
]
