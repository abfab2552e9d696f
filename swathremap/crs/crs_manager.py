"""
Coordinate Reference System (CRS) and datum management for swathremap.

This module provides the geodesy collaborator used by the rest of the package:
- Geodetic datum objects backed by pyproj geographic CRS definitions
- Datum shifts for latitude/longitude arrays
- Cached coordinate transformers between arbitrary CRS
- Coordinate validation and type detection
"""

import logging
from typing import Dict, Optional, Tuple, Union

import numpy as np
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError

from swathremap.exceptions import ValidationError

logger = logging.getLogger(__name__)


class Datum:
    """
    A geodetic datum, identified by a geographic coordinate reference system.

    Two datums are equal when their underlying geographic CRS are equal, so
    datums created independently from the same EPSG code compare equal.
    """

    def __init__(self, crs: Union[str, int, CRS], name: Optional[str] = None):
        """
        Create a datum.

        Args:
            crs: A geographic CRS, or anything ``pyproj.CRS.from_user_input``
                accepts (EPSG code, authority string, WKT, PROJ string).
            name: Optional display name. Defaults to the CRS name.

        Raises:
            ValidationError: If the CRS cannot be parsed or has no datum.
        """
        try:
            crs = CRS.from_user_input(crs)
        except CRSError as e:
            raise ValidationError(f"Cannot create datum from {crs!r}: {e}") from e
        geodetic = crs.geodetic_crs
        if geodetic is None:
            raise ValidationError(f"CRS '{crs.name}' has no geodetic datum")
        self.crs = geodetic
        self.name = name if name is not None else geodetic.name

    @classmethod
    def from_epsg(cls, code: int, name: Optional[str] = None) -> "Datum":
        """Create a datum from an EPSG code of a geographic CRS."""
        return cls(CRS.from_epsg(code), name)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Datum):
            return False
        return self.crs == other.crs

    def __hash__(self) -> int:
        return hash(self.crs.to_wkt())

    def __repr__(self) -> str:
        return f"Datum({self.name!r})"


WGS84 = Datum.from_epsg(4326, "WGS 84")
NAD83 = Datum.from_epsg(4269, "NAD83")
NAD27 = Datum.from_epsg(4267, "NAD27")


class CRSManager:
    """
    A class that handles Coordinate Reference System operations for swathremap.

    Transformers are expensive to create, so the manager caches one per
    (source, target) pair. A manager is cheap to construct; pass one
    explicitly to share its cache between transforms, or use the module level
    ``crs_manager`` instance which is created once at import time.
    """

    def __init__(self):
        """Initialize the CRSManager."""
        self._transformers: Dict[Tuple[str, str], Transformer] = {}

    def detect_coordinate_system_type(self, crs: Optional[CRS]) -> str:
        """
        Detect if the coordinate system is geographic or projected.

        Args:
            crs: The coordinate reference system to analyze

        Returns:
            'geographic', 'projected', 'other', or 'unknown' for None
        """
        if crs is None:
            return "unknown"

        if crs.is_geographic:
            return "geographic"
        elif crs.is_projected:
            return "projected"
        else:
            return "other"

    def validate_coordinate_arrays(self,
                                   lats: np.ndarray,
                                   lons: np.ndarray) -> bool:
        """
        Validate latitude and longitude arrays.

        NaN entries are allowed, since they mark locations with no geolocation,
        but every finite entry must lie in a geographic range and the arrays
        must have the same shape.

        Args:
            lats: Latitude array in degrees
            lons: Longitude array in degrees

        Returns:
            True if coordinates appear valid, False otherwise
        """
        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        if lats.shape != lons.shape:
            return False
        if np.any(np.isinf(lats)) or np.any(np.isinf(lons)):
            return False
        finite = np.isfinite(lats) & np.isfinite(lons)
        if not np.any(finite):
            return False
        if np.any(np.abs(lats[finite]) > 90):
            return False
        if np.any(np.abs(lons[finite]) > 360):
            return False
        return True

    def get_transformer(self,
                        source_crs: Union[CRS, str, int],
                        target_crs: Union[CRS, str, int]) -> Transformer:
        """
        Get a cached transformer between two CRS.

        Transformers always use (x, y) = (longitude/easting, latitude/northing)
        axis order.

        Args:
            source_crs: Source coordinate reference system
            target_crs: Target coordinate reference system

        Returns:
            The pyproj Transformer
        """
        source_crs = CRS.from_user_input(source_crs)
        target_crs = CRS.from_user_input(target_crs)
        key = (source_crs.to_wkt(), target_crs.to_wkt())
        transformer = self._transformers.get(key)
        if transformer is None:
            logger.debug("Creating transformer from '%s' to '%s'",
                         source_crs.name, target_crs.name)
            transformer = Transformer.from_crs(source_crs, target_crs, always_xy=True)
            self._transformers[key] = transformer
        return transformer

    def transform_coordinates(self,
                              x_coords: np.ndarray,
                              y_coords: np.ndarray,
                              source_crs: Union[CRS, str, int],
                              target_crs: Union[CRS, str, int],
                              direction: str = "FORWARD") -> Tuple[np.ndarray, np.ndarray]:
        """
        Transform coordinates from one CRS to another.

        Points that cannot be transformed come back as NaN (pyproj reports
        them as infinity, which is converted here).

        Args:
            x_coords: X coordinate array
            y_coords: Y coordinate array
            source_crs: Source coordinate reference system
            target_crs: Target coordinate reference system
            direction: 'FORWARD' or 'INVERSE'

        Returns:
            Tuple of (transformed_x, transformed_y) coordinate arrays
        """
        transformer = self.get_transformer(source_crs, target_crs)
        x = np.asarray(x_coords, dtype=float)
        y = np.asarray(y_coords, dtype=float)
        x_out, y_out = transformer.transform(x, y, direction=direction, errcheck=False)
        x_out = np.asarray(x_out, dtype=float)
        y_out = np.asarray(y_out, dtype=float)
        bad = ~(np.isfinite(x_out) & np.isfinite(y_out))
        if np.any(bad):
            x_out = np.where(bad, np.nan, x_out)
            y_out = np.where(bad, np.nan, y_out)
        return x_out, y_out

    def shift_datum(self,
                    lats: np.ndarray,
                    lons: np.ndarray,
                    source: Datum,
                    target: Datum) -> Tuple[np.ndarray, np.ndarray]:
        """
        Convert latitude/longitude arrays from one datum to another.

        Args:
            lats: Latitudes in the source datum
            lons: Longitudes in the source datum
            source: The source datum
            target: The target datum

        Returns:
            Tuple of (lats, lons) in the target datum
        """
        if source == target:
            return np.asarray(lats, dtype=float), np.asarray(lons, dtype=float)
        new_lons, new_lats = self.transform_coordinates(
            lons, lats, source.crs, target.crs
        )
        return new_lats, new_lons


# Global instance for convenience
crs_manager = CRSManager()
