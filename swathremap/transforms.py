"""
Geolocation transforms between data (pixel) space and earth locations.

This module provides:
- EarthTransform: the abstract interface used by partitions, estimators
  and resamplers
- MapTransform: a regular grid in any pyproj coordinate reference system
- SwathTransform: a grid described only by 2-D latitude/longitude arrays

All transforms are vectorised over numpy arrays. A NaN coordinate on input or
output marks an invalid location.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from pyproj import CRS
from pyproj.exceptions import CRSError
from scipy.ndimage import map_coordinates
from scipy.spatial import cKDTree

from swathremap.crs.crs_manager import WGS84, CRSManager, Datum, crs_manager
from swathremap.exceptions import ValidationError
from swathremap.location import (
    STD_RADIUS,
    DataLocation,
    EarthLocation,
    great_circle_distance,
    lon_range,
    to_ecf,
)

logger = logging.getLogger(__name__)


class EarthTransform(ABC):
    """
    Abstract base class for 2-D geolocation transforms.

    Subclasses implement the two vectorised methods ``transform_data`` and
    ``transform_earth``; the scalar conveniences, distance and resolution
    are derived from them.
    """

    def __init__(self, dimensions: Sequence[int], datum: Datum = WGS84):
        dimensions = tuple(int(d) for d in dimensions)
        if len(dimensions) != 2:
            raise ValidationError(f"Transforms must be 2-D, got dimensions {dimensions}")
        if min(dimensions) < 1:
            raise ValidationError(f"Dimensions must be positive, got {dimensions}")
        self._dimensions = dimensions
        self._datum = datum

    @property
    def dimensions(self) -> Tuple[int, int]:
        """The (rows, cols) dimensions of the grid."""
        return self._dimensions

    @property
    def datum(self) -> Datum:
        return self._datum

    @abstractmethod
    def transform_data(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Transform data coordinates to earth locations.

        Parameters
        ----------
        rows, cols : np.ndarray
            Row and column coordinates of matching shape.

        Returns
        -------
        tuple of np.ndarray
            Latitudes and longitudes in degrees, NaN where invalid.
        """
        pass

    @abstractmethod
    def transform_earth(self, lats: np.ndarray, lons: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Transform earth locations to data coordinates.

        Parameters
        ----------
        lats, lons : np.ndarray
            Latitudes and longitudes in degrees of matching shape.

        Returns
        -------
        tuple of np.ndarray
            Row and column coordinates, NaN where invalid.
        """
        pass

    def data_to_earth(self, loc: DataLocation) -> EarthLocation:
        """Transform a single data location to an earth location."""
        lats, lons = self.transform_data(np.array([loc.get(0)]), np.array([loc.get(1)]))
        return EarthLocation(lats[0], lons[0], self._datum)

    def earth_to_data(self, earth_loc: EarthLocation) -> DataLocation:
        """Transform a single earth location to a data location."""
        lat, lon = earth_loc.lat, earth_loc.lon
        if earth_loc.datum != self._datum and earth_loc.is_valid():
            lat, lon = crs_manager.shift_datum(lat, lon, earth_loc.datum, self._datum)
        rows, cols = self.transform_earth(np.array([float(lat)]), np.array([float(lon)]))
        return DataLocation(rows[0], cols[0])

    def distance(self, loc_a: DataLocation, loc_b: DataLocation) -> float:
        """Great circle distance in kilometers between two data locations."""
        lats, lons = self.transform_data(
            np.array([loc_a.get(0), loc_b.get(0)]),
            np.array([loc_a.get(1), loc_b.get(1)])
        )
        return great_circle_distance(lats[0], lons[0], lats[1], lons[1])

    def distances(self, rows_a, cols_a, rows_b, cols_b) -> np.ndarray:
        """Vectorised great circle distances between pairs of data coordinates."""
        rows_a = np.asarray(rows_a, dtype=float)
        n = rows_a.size
        lats, lons = self.transform_data(
            np.concatenate([rows_a.ravel(), np.asarray(rows_b, dtype=float).ravel()]),
            np.concatenate([np.asarray(cols_a, dtype=float).ravel(),
                            np.asarray(cols_b, dtype=float).ravel()])
        )
        dist = great_circle_distance(lats[:n], lons[:n], lats[n:], lons[n:])
        return np.asarray(dist).reshape(rows_a.shape)

    def get_resolution(self, loc: DataLocation) -> np.ndarray:
        """
        Get the physical size in kilometers of one pixel along each axis.

        The size along an axis is the distance between the points half a
        pixel either side of the location.
        """
        row, col = loc.get(0), loc.get(1)
        dist = self.distances([row - 0.5, row], [col, col - 0.5],
                              [row + 0.5, row], [col, col + 0.5])
        return np.asarray(dist, dtype=float)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dimensions={self._dimensions}, datum={self._datum.name!r})"


class MapTransform(EarthTransform):
    """
    A regular grid in a pyproj coordinate reference system.

    The grid is located by a GDAL-style affine geotransform
    ``(x_origin, pixel_width, row_rotation, y_origin, col_rotation, pixel_height)``
    referring to the outer corner of pixel (0, 0). Pixel centres are at
    integer data coordinates.
    """

    def __init__(self,
                 crs: Union[str, int, CRS],
                 dimensions: Sequence[int],
                 geotransform: Sequence[float],
                 manager: Optional[CRSManager] = None):
        try:
            self.crs = CRS.from_user_input(crs)
        except CRSError as e:
            raise ValidationError(f"Invalid CRS {crs!r}: {e}") from e
        self._manager = manager if manager is not None else crs_manager
        crs_type = self._manager.detect_coordinate_system_type(self.crs)
        if crs_type not in ("geographic", "projected"):
            raise ValidationError(
                f"Map CRS must be geographic or projected, got {crs_type} CRS {self.crs.name}"
            )
        super().__init__(dimensions, Datum(self.crs))
        if len(geotransform) != 6:
            raise ValidationError(f"Geotransform must have 6 elements, got {len(geotransform)}")
        self.geotransform = tuple(float(v) for v in geotransform)
        x0, a, b, y0, d, e = self.geotransform
        self._forward = np.array([[a, b], [d, e]])
        det = np.linalg.det(self._forward)
        if det == 0:
            raise ValidationError("Geotransform is singular")
        self._inverse = np.linalg.inv(self._forward)
        self._origin = np.array([x0, y0])
        self._geographic = crs_type == "geographic"

    @classmethod
    def from_bounds(cls,
                    crs: Union[str, int, CRS],
                    dimensions: Sequence[int],
                    bounds: Sequence[float]) -> "MapTransform":
        """
        Create a north-up map from its outer bounds ``(xmin, ymin, xmax, ymax)``.
        """
        rows, cols = dimensions
        xmin, ymin, xmax, ymax = bounds
        return cls(crs, dimensions, (xmin, (xmax - xmin) / cols, 0.0,
                                     ymax, 0.0, -(ymax - ymin) / rows))

    def data_to_map(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        rows = np.asarray(rows, dtype=float)
        cols = np.asarray(cols, dtype=float)
        x0, a, b, y0, d, e = self.geotransform
        x = x0 + (cols + 0.5) * a + (rows + 0.5) * b
        y = y0 + (cols + 0.5) * d + (rows + 0.5) * e
        return x, y

    def map_to_data(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        dx = np.asarray(x, dtype=float) - self._origin[0]
        dy = np.asarray(y, dtype=float) - self._origin[1]
        cols = self._inverse[0, 0] * dx + self._inverse[0, 1] * dy - 0.5
        rows = self._inverse[1, 0] * dx + self._inverse[1, 1] * dy - 0.5
        return rows, cols

    def transform_data(self, rows, cols):
        x, y = self.data_to_map(rows, cols)
        if self._geographic:
            lons, lats = x, y
        else:
            lons, lats = self._manager.transform_coordinates(x, y, self.crs, self._datum.crs)
        bad = np.isnan(lats) | np.isnan(lons) | (np.abs(lats) > 90)
        lats = np.where(bad, np.nan, lats)
        lons = np.where(bad, np.nan, lon_range(np.where(bad, 0.0, lons)))
        return lats, lons

    def transform_earth(self, lats, lons):
        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        if not self._geographic:
            x, y = self._manager.transform_coordinates(lons, lats, self._datum.crs, self.crs)
            return self.map_to_data(x, y)

        # Geographic grids may use any longitude convention, so pick the
        # 360 degree shift that lands inside the grid where there is one
        rows, cols = self.map_to_data(lons, lats)
        n_rows, n_cols = self._dimensions
        for shift in (360.0, -360.0):
            outside = (cols < -0.5) | (cols > n_cols - 0.5)
            if not np.any(outside):
                break
            alt_rows, alt_cols = self.map_to_data(lons + shift, lats)
            inside = (alt_cols >= -0.5) & (alt_cols <= n_cols - 0.5)
            use = outside & inside
            rows = np.where(use, alt_rows, rows)
            cols = np.where(use, alt_cols, cols)
        return rows, cols


class SwathTransform(EarthTransform):
    """
    A grid located only by per-pixel latitude and longitude arrays.

    The forward transform interpolates bilinearly in earth-centred
    cartesian space, so it is well behaved across the antimeridian and near
    the poles, and extrapolates linearly up to one pixel beyond the grid
    edges. The inverse transform finds the nearest pixel centre with a k-d
    tree and refines it with Newton steps on the interpolated surface.
    """

    def __init__(self,
                 lats: np.ndarray,
                 lons: np.ndarray,
                 datum: Datum = WGS84,
                 tolerance: Optional[float] = None,
                 newton_steps: int = 3):
        """
        Create a swath transform.

        Parameters
        ----------
        lats, lons : np.ndarray
            2-D arrays of pixel centre latitudes and longitudes in degrees.
            NaN marks pixels without geolocation.
        datum : Datum, optional
            Datum of the coordinates, WGS 84 by default.
        tolerance : float, optional
            Maximum distance in kilometers between an earth location and its
            nearest pixel centre for the inverse transform to be valid.
            Defaults to twice the largest distance between neighbouring
            pixel centres.
        newton_steps : int, optional
            Number of refinement steps in the inverse transform.
        """
        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        if lats.ndim != 2 or lats.shape != lons.shape:
            raise ValidationError(
                f"Latitude and longitude arrays must be 2-D with the same shape, "
                f"got {lats.shape} and {lons.shape}"
            )
        if not crs_manager.validate_coordinate_arrays(lats, lons):
            raise ValidationError("Latitude and longitude arrays contain no valid geographic coordinates")
        if min(lats.shape) < 2:
            raise ValidationError(f"Swath must be at least 2x2 pixels, got {lats.shape}")
        super().__init__(lats.shape, datum)
        self.lats = lats
        self.lons = lons
        self.newton_steps = newton_steps

        ecf = to_ecf(lats, lons)
        # Pad each component by one pixel with linear extrapolation
        self._padded = [
            np.pad(ecf[..., k], 1, mode="reflect", reflect_type="odd") for k in range(3)
        ]

        valid = np.isfinite(lats) & np.isfinite(lons)
        self._valid_index = np.flatnonzero(valid)
        self._tree = cKDTree(ecf.reshape(-1, 3)[self._valid_index])

        if tolerance is None:
            spacing = np.concatenate([
                np.linalg.norm(np.diff(ecf, axis=0), axis=-1).ravel(),
                np.linalg.norm(np.diff(ecf, axis=1), axis=-1).ravel(),
            ])
            chord = 2.0 * np.nanmax(spacing) if np.any(np.isfinite(spacing)) else 0.0
        else:
            chord = tolerance / STD_RADIUS
        self._chord_tolerance = chord
        logger.debug("Created swath transform of %s pixels with %d valid locations",
                     lats.shape, self._valid_index.size)

    def _interpolate_ecf(self, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
        coords = np.stack([rows.ravel() + 1.0, cols.ravel() + 1.0])
        out = np.stack([
            map_coordinates(comp, coords, order=1, mode="nearest", prefilter=False)
            for comp in self._padded
        ], axis=-1)
        return out.reshape(rows.shape + (3,))

    def transform_data(self, rows, cols):
        rows = np.asarray(rows, dtype=float)
        cols = np.asarray(cols, dtype=float)
        n_rows, n_cols = self._dimensions
        inside = (rows >= -1) & (rows <= n_rows) & (cols >= -1) & (cols <= n_cols)
        safe_rows = np.where(inside, rows, 0.0)
        safe_cols = np.where(inside, cols, 0.0)
        xyz = self._interpolate_ecf(safe_rows, safe_cols)
        norm = np.linalg.norm(xyz, axis=-1)
        with np.errstate(invalid="ignore", divide="ignore"):
            lats = np.degrees(np.arcsin(np.clip(xyz[..., 2] / norm, -1.0, 1.0)))
            lons = np.degrees(np.arctan2(xyz[..., 1], xyz[..., 0]))
        bad = ~inside | ~np.isfinite(lats) | ~np.isfinite(lons) | (norm == 0)
        lats = np.where(bad, np.nan, lats)
        lons = np.where(bad, np.nan, lon_range(np.where(bad, 0.0, lons)))
        return lats, lons

    def transform_earth(self, lats, lons):
        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        shape = lats.shape
        rows = np.full(lats.size, np.nan)
        cols = np.full(lats.size, np.nan)
        valid = np.isfinite(lats.ravel()) & np.isfinite(lons.ravel())
        if not np.any(valid) or self._valid_index.size == 0:
            return rows.reshape(shape), cols.reshape(shape)

        target = to_ecf(lats.ravel()[valid], lons.ravel()[valid])
        dist, idx = self._tree.query(target)
        found = dist <= self._chord_tolerance
        flat = self._valid_index[idx[found]]
        r0, c0 = np.unravel_index(flat, self._dimensions)
        r, c = self._refine(target[found], r0.astype(float), c0.astype(float))

        out_rows = np.full(valid.sum(), np.nan)
        out_cols = np.full(valid.sum(), np.nan)
        out_rows[found] = r
        out_cols[found] = c
        rows[valid] = out_rows
        cols[valid] = out_cols
        return rows.reshape(shape), cols.reshape(shape)

    def _refine(self, target: np.ndarray, rows: np.ndarray, cols: np.ndarray):
        """Gauss-Newton refinement of pixel positions for target unit vectors."""
        start_rows, start_cols = rows.copy(), cols.copy()
        h = 0.25
        for _ in range(self.newton_steps):
            f = self._interpolate_ecf(rows, cols)
            j_row = (self._interpolate_ecf(rows + h, cols) - self._interpolate_ecf(rows - h, cols)) / (2 * h)
            j_col = (self._interpolate_ecf(rows, cols + h) - self._interpolate_ecf(rows, cols - h)) / (2 * h)
            resid = target - f
            a11 = np.einsum("ij,ij->i", j_row, j_row)
            a12 = np.einsum("ij,ij->i", j_row, j_col)
            a22 = np.einsum("ij,ij->i", j_col, j_col)
            b1 = np.einsum("ij,ij->i", j_row, resid)
            b2 = np.einsum("ij,ij->i", j_col, resid)
            det = a11 * a22 - a12 * a12
            ok = np.abs(det) > 0
            safe = np.where(ok, det, 1.0)
            rows = rows + np.where(ok, (a22 * b1 - a12 * b2) / safe, 0.0)
            cols = cols + np.where(ok, (a11 * b2 - a12 * b1) / safe, 0.0)

        # A step that leaves the neighbourhood of the nearest centre means
        # the surface is folded there, so keep the nearest centre instead
        wild = ~(np.abs(rows - start_rows) <= 1.0) | ~(np.abs(cols - start_cols) <= 1.0)
        rows = np.where(wild, start_rows, rows)
        cols = np.where(wild, start_cols, cols)
        return rows, cols
