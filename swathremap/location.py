"""
Coordinate primitives.

This module contains the two value types shared by every other module:
- DataLocation: a rank-N coordinate in data (pixel) space
- EarthLocation: a latitude/longitude pair tagged with a geodetic datum

A NaN in any component marks a location invalid. Invalid locations are the
normal "no data here" signal and flow through transforms without raising.
Both classes have mutation methods for use with reusable scratch objects,
so instances shared between callers must not be mutated.
"""

import math
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from swathremap.crs.crs_manager import WGS84, CRSManager, Datum, crs_manager

# Mean earth radius in kilometers used for great circle distances
STD_RADIUS = 6370.997

ArrayLike = Union[float, np.ndarray]


def round_half_up(values: ArrayLike) -> ArrayLike:
    """Round to the nearest integer with halves rounded towards +infinity."""
    return np.floor(np.asarray(values, dtype=float) + 0.5)


def lon_range(lon: ArrayLike) -> ArrayLike:
    """Normalize longitude values to the range [-180, 180)."""
    if np.isscalar(lon):
        if math.isnan(lon):
            return lon
        if -180 <= lon < 180:
            return float(lon)
        return float((lon + 180.0) % 360.0 - 180.0)
    lon = np.asarray(lon, dtype=float)
    return np.where((lon >= -180) & (lon < 180), lon, (lon + 180.0) % 360.0 - 180.0)


def lat_range(lat: ArrayLike) -> ArrayLike:
    """Clamp latitude values to the range [-90, 90]."""
    if np.isscalar(lat):
        return float(min(90.0, max(-90.0, lat))) if not math.isnan(lat) else lat
    return np.clip(np.asarray(lat, dtype=float), -90.0, 90.0)


def haversine_term(lat_a: ArrayLike, lon_a: ArrayLike,
                   lat_b: ArrayLike, lon_b: ArrayLike) -> ArrayLike:
    """
    Compute the haversine term of the great circle distance.

    The term is monotonic in distance, which makes it a cheap proxy for
    nearest location comparisons.
    """
    lat1 = np.radians(lat_a)
    lat2 = np.radians(lat_b)
    dlat = lat2 - lat1
    dlon = np.radians(lon_b) - np.radians(lon_a)
    return np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2


def haversine_to_distance(term: ArrayLike) -> ArrayLike:
    """Convert a haversine term to a distance in kilometers."""
    return 2 * STD_RADIUS * np.arcsin(np.minimum(1.0, np.sqrt(term)))


def great_circle_distance(lat_a: ArrayLike, lon_a: ArrayLike,
                          lat_b: ArrayLike, lon_b: ArrayLike) -> ArrayLike:
    """
    Compute the great circle distance between locations in kilometers.

    Accepts scalars or broadcastable numpy arrays. Any NaN input produces a
    NaN distance.
    """
    dist = haversine_to_distance(haversine_term(lat_a, lon_a, lat_b, lon_b))
    if np.ndim(dist) == 0:
        return float(dist)
    return dist


def to_ecf(lats: ArrayLike, lons: ArrayLike) -> np.ndarray:
    """
    Convert latitude/longitude to unit sphere earth-centred coordinates.

    Returns
    -------
    np.ndarray
        Array of shape ``lats.shape + (3,)``.
    """
    lat = np.radians(np.asarray(lats, dtype=float))
    lon = np.radians(np.asarray(lons, dtype=float))
    cos_lat = np.cos(lat)
    return np.stack([cos_lat * np.cos(lon), cos_lat * np.sin(lon), np.sin(lat)], axis=-1)


class DataLocation:
    """
    A location in data coordinate space, one coordinate per dimension.

    For 2-D data the coordinates are (row, column). Coordinates are real
    valued; integer values are pixel centres.
    """

    __slots__ = ("_coords",)

    def __init__(self, *coords: float):
        """
        Create a data location.

        Parameters
        ----------
        *coords : float
            The coordinate values, or a single sequence / numpy array of
            values.
        """
        if len(coords) == 1 and not np.isscalar(coords[0]):
            values = np.array(coords[0], dtype=float).ravel()
        else:
            values = np.array(coords, dtype=float)
        self._coords = values

    @classmethod
    def of_rank(cls, rank: int) -> "DataLocation":
        """Create a location of the given rank with all coordinates zero."""
        return cls(np.zeros(rank))

    @classmethod
    def invalid(cls, rank: int = 2) -> "DataLocation":
        """Create an invalid location of the given rank."""
        return cls(np.full(rank, np.nan))

    @classmethod
    def from_index(cls, index: int, dims: Sequence[int]) -> "DataLocation":
        """Create a location from a row-major flat index into dims."""
        return cls(np.unravel_index(int(index), tuple(dims)))

    @property
    def rank(self) -> int:
        return self._coords.size

    @property
    def coords(self) -> np.ndarray:
        """A copy of the coordinate values."""
        return self._coords.copy()

    def set_coords(self, coords: Union[Sequence[float], "DataLocation"]) -> None:
        """Copy coordinates in place. A rank mismatch leaves this location unchanged."""
        if isinstance(coords, DataLocation):
            coords = coords._coords
        coords = np.asarray(coords, dtype=float).ravel()
        if coords.size != self._coords.size:
            return
        self._coords[:] = coords

    def get(self, index: int) -> float:
        """Get one coordinate, or NaN if the index is out of range."""
        if index < 0 or index >= self._coords.size:
            return math.nan
        return float(self._coords[index])

    def set(self, index: int, value: float) -> None:
        """Set one coordinate. Out of range indices are ignored."""
        if 0 <= index < self._coords.size:
            self._coords[index] = value

    def __getitem__(self, index: int) -> float:
        return float(self._coords[index])

    def __len__(self) -> int:
        return self._coords.size

    def __iter__(self):
        return iter(self._coords.tolist())

    def is_valid(self) -> bool:
        return not bool(np.any(np.isnan(self._coords)))

    def is_invalid(self) -> bool:
        return bool(np.any(np.isnan(self._coords)))

    def mark_invalid(self) -> None:
        self._coords[:] = np.nan

    def round(self) -> "DataLocation":
        return DataLocation(round_half_up(self._coords))

    def floor(self) -> "DataLocation":
        return DataLocation(np.floor(self._coords))

    def ceil(self) -> "DataLocation":
        return DataLocation(np.ceil(self._coords))

    def copy(self) -> "DataLocation":
        return DataLocation(self._coords)

    __copy__ = copy

    def is_contained(self, min_loc: "DataLocation", max_loc: "DataLocation") -> bool:
        """Check containment in the inclusive box [min_loc, max_loc]."""
        if min_loc.rank != self.rank or max_loc.rank != self.rank:
            return False
        return bool(np.all((self._coords >= min_loc._coords) &
                           (self._coords <= max_loc._coords)))

    def is_contained_dims(self, dims: Sequence[int]) -> bool:
        """Check containment in [0, dims-1] along every axis."""
        if len(dims) != self.rank:
            return False
        upper = np.asarray(dims, dtype=float) - 1
        return bool(np.all((self._coords >= 0) & (self._coords <= upper)))

    def truncate(self, dims: Sequence[int]) -> "DataLocation":
        """Clamp each coordinate to [0, dims-1]."""
        upper = np.asarray(dims, dtype=float) - 1
        return DataLocation(np.minimum(np.maximum(self._coords, 0), upper))

    def get_index(self, dims: Sequence[int]) -> int:
        """
        Get the row-major flat index of the rounded location.

        Returns -1 when the rounded location falls outside dims.
        """
        rounded = self.round()
        if not rounded.is_contained_dims(dims):
            return -1
        return int(np.ravel_multi_index(tuple(rounded._coords.astype(int)), tuple(dims)))

    def translate(self, *offsets: float) -> "DataLocation":
        """Translate by one offset per dimension. A rank mismatch returns a copy."""
        if len(offsets) == 1 and not np.isscalar(offsets[0]):
            offsets = tuple(np.asarray(offsets[0], dtype=float).ravel())
        if len(offsets) != self.rank:
            return self.copy()
        return DataLocation(self._coords + np.asarray(offsets, dtype=float))

    def transform(self, affine: Optional[np.ndarray]) -> "DataLocation":
        """
        Apply a 2-D affine transform given as a 2x3 (or 3x3) matrix.

        Locations of rank other than 2, or a None affine, return a copy.
        """
        if affine is None or self.rank != 2:
            return self.copy()
        matrix = np.asarray(affine, dtype=float)
        return DataLocation(matrix[:2, :2] @ self._coords + matrix[:2, 2])

    def transform_in_place(self, affine: Optional[np.ndarray]) -> None:
        if affine is None or self.rank != 2:
            return
        self._coords[:] = self.transform(affine)._coords

    def increment(self, stride: Sequence[int], start: "DataLocation",
                  end: "DataLocation") -> bool:
        """
        Advance to the next location of a strided walk over the box [start, end].

        The last axis moves fastest. Axes that would step past ``end`` are
        reset to ``start`` and the next slower axis is advanced, like an
        odometer.

        Returns
        -------
        bool
            False once every location in the box has been visited.
        """
        i = self.rank - 1
        while i >= 0 and self._coords[i] + stride[i] > end._coords[i]:
            self._coords[i] = start._coords[i]
            i -= 1
        if i < 0:
            return False
        self._coords[i] += stride[i]
        return True

    def increment_dims(self, stride: Sequence[int], dims: Sequence[int]) -> bool:
        """Advance a strided walk over the box [0, dims-1]; see ``increment``."""
        start = DataLocation(np.zeros(self.rank))
        end = DataLocation(np.asarray(dims, dtype=float) - 1)
        return self.increment(stride, start, end)

    def format(self, do_round: bool = False) -> str:
        if do_round:
            return ", ".join(str(int(v)) for v in round_half_up(self._coords))
        return ", ".join(repr(float(v)) for v in self._coords)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DataLocation):
            return NotImplemented
        return self.rank == other.rank and bool(np.all(self._coords == other._coords))

    def __hash__(self) -> int:
        return hash(self._coords.tobytes())

    def __repr__(self) -> str:
        return "DataLocation[" + ",".join(repr(float(v)) for v in self._coords) + "]"


class EarthLocation:
    """
    A geographic location as latitude and longitude in degrees.

    Longitude is normalized to [-180, 180) whenever it is set. The datum
    defaults to WGS 84.
    """

    __slots__ = ("lat", "lon", "datum")

    def __init__(self, lat: float = 0.0, lon: float = 0.0, datum: Datum = WGS84):
        self.lat = float(lat)
        self.lon = lon_range(float(lon))
        self.datum = datum

    @classmethod
    def invalid(cls, datum: Datum = WGS84) -> "EarthLocation":
        return cls(math.nan, math.nan, datum)

    def set_coords(self, lat: float, lon: float) -> None:
        self.lat = float(lat)
        self.lon = lon_range(float(lon))

    @property
    def coords(self) -> Tuple[float, float]:
        return self.lat, self.lon

    def is_valid(self) -> bool:
        return not (math.isnan(self.lat) or math.isnan(self.lon))

    def mark_invalid(self) -> None:
        self.lat = math.nan
        self.lon = math.nan

    def copy(self) -> "EarthLocation":
        return EarthLocation(self.lat, self.lon, self.datum)

    __copy__ = copy

    def distance(self, other: "EarthLocation") -> float:
        """Great circle distance to another location in kilometers."""
        return great_circle_distance(self.lat, self.lon, other.lat, other.lon)

    def distance_proxy(self, other: "EarthLocation") -> float:
        """
        A value that orders locations by distance without the cost of
        computing it. Convert with ``distance_proxy_to_distance``.
        """
        return float(haversine_term(self.lat, self.lon, other.lat, other.lon))

    @staticmethod
    def distance_proxy_to_distance(proxy: float) -> float:
        return float(haversine_to_distance(proxy))

    def translate(self, lat_inc: float, lon_inc: float) -> "EarthLocation":
        """
        Translate by latitude and longitude increments in degrees.

        Crossing a pole reflects the latitude back into [-90, 90] and moves
        the longitude to the opposite meridian.
        """
        lat = self.lat + lat_inc
        lon = self.lon
        if lat > 90:
            lat = 180 - lat
            lon += 180
        elif lat < -90:
            lat = -180 - lat
            lon += 180
        return EarthLocation(lat, lon + lon_inc, self.datum)

    def is_north(self, other: "EarthLocation") -> bool:
        return self.lat > other.lat

    def is_south(self, other: "EarthLocation") -> bool:
        return self.lat < other.lat

    def is_east(self, other: "EarthLocation") -> bool:
        """True if this location is east of the other, the short way round."""
        diff = abs(self.lon - other.lon)
        if diff < 180:
            return self.lon > other.lon
        elif diff > 180:
            return self.lon < other.lon
        return False

    def is_west(self, other: "EarthLocation") -> bool:
        """True if this location is west of the other, the short way round."""
        diff = abs(self.lon - other.lon)
        if diff < 180:
            return self.lon < other.lon
        elif diff > 180:
            return self.lon > other.lon
        return False

    def compute_ecf(self) -> np.ndarray:
        """Unit sphere earth-centred coordinates (x, y, z)."""
        return to_ecf(self.lat, self.lon)

    def shift_datum(self, datum: Datum, manager: Optional[CRSManager] = None) -> None:
        """Convert this location in place to another datum."""
        if datum == self.datum:
            return
        manager = manager if manager is not None else crs_manager
        if self.is_valid():
            lat, lon = manager.shift_datum(self.lat, self.lon, self.datum, datum)
            self.set_coords(float(lat), float(lon))
        self.datum = datum

    def __eq__(self, other) -> bool:
        if not isinstance(other, EarthLocation):
            return NotImplemented
        return self.lat == other.lat and self.lon == other.lon and self.datum == other.datum

    def __hash__(self) -> int:
        return hash((self.lat, self.lon))

    def __repr__(self) -> str:
        return f"EarthLocation[lat={self.lat},lon={self.lon},datum={self.datum.name}]"
