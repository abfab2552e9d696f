"""
Irregular areas on the earth as sets of 1 degree cells.

An EarthArea marks each cell of a global 1x1 degree grid as present or
absent. The cell with lower-left corner (lat, lon), for integer lat in
[-90, 89] and lon in [-180, 179], has flat index (lat + 90) * 360 + lon + 180.
Areas are typically built by exploring outwards from the centre of a grid
and then expanding by one ring of cells, which gives a cheap and
conservative test of whether a location could be covered by the grid.
"""

import logging
from typing import Iterator, List, Optional, Tuple

import numpy as np

from swathremap.crs.crs_manager import WGS84, crs_manager
from swathremap.exceptions import GeolocationError, ValidationError
from swathremap.location import DataLocation, EarthLocation, lon_range
from swathremap.transforms import EarthTransform

logger = logging.getLogger(__name__)

N_LAT = 180
N_LON = 360
N_CELLS = N_LAT * N_LON

# Probe offsets: the first four are the orthogonal neighbours
PROBE_LAT = np.array([1, 0, -1, 0, 1, -1, -1, 1])
PROBE_LON = np.array([0, 1, 0, -1, 1, 1, -1, -1])


def cell_index(lats, lons) -> np.ndarray:
    """
    Get flat cell indices for locations, -1 for invalid locations.

    Latitude 90 falls in the northernmost row of cells.
    """
    lats = np.atleast_1d(np.asarray(lats, dtype=float))
    lons = np.atleast_1d(np.asarray(lons, dtype=float))
    valid = np.isfinite(lats) & np.isfinite(lons)
    lat = np.floor(np.where(valid, lats, 0.0)).astype(int)
    lon = np.floor(np.where(valid, lons, 0.0)).astype(int)
    lat = np.where(lat == 90, 89, lat)
    ok = valid & (lat >= -90) & (lat <= 89) & (lon >= -180) & (lon <= 179)
    return np.where(ok, (lat + 90) * N_LON + (lon + 180), -1)


def cell_centres(indices) -> Tuple[np.ndarray, np.ndarray]:
    """Get the centre latitudes and longitudes of cells."""
    indices = np.asarray(indices)
    return indices // N_LON - 90 + 0.5, indices % N_LON - 180 + 0.5


def translate(lats, lons, lat_inc, lon_inc) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorised pole-aware translation, see EarthLocation.translate."""
    lat = np.asarray(lats, dtype=float) + lat_inc
    lon = np.asarray(lons, dtype=float)
    north = lat > 90
    south = lat < -90
    lat = np.where(north, 180 - lat, np.where(south, -180 - lat, lat))
    lon = np.where(north | south, lon + 180, lon)
    return lat, lon_range(lon + lon_inc)


class EarthArea:
    """
    A set of 1 degree cells covering part of the earth.

    Create an empty area with ``EarthArea()`` or the area covered by a grid
    with ``EarthArea.from_transform``.
    """

    def __init__(self, cells: Optional[np.ndarray] = None):
        if cells is None:
            self._cells = np.zeros(N_CELLS, dtype=bool)
        else:
            cells = np.asarray(cells, dtype=bool).ravel()
            if cells.size != N_CELLS:
                raise ValidationError(f"Expected {N_CELLS} cells, got {cells.size}")
            self._cells = cells.copy()

    @classmethod
    def from_transform(cls,
                       trans: EarthTransform,
                       min_loc: Optional[DataLocation] = None,
                       max_loc: Optional[DataLocation] = None) -> "EarthArea":
        """
        Create the area covered by a box of data locations.

        The area is explored from the centre of the box and then expanded by
        one cell in every direction.

        Raises
        ------
        GeolocationError
            If the centre of the box has no valid earth location.
        """
        if min_loc is None:
            min_loc = DataLocation(0, 0)
        if max_loc is None:
            max_loc = DataLocation(*(np.array(trans.dimensions) - 1))
        centre = DataLocation((min_loc[0] + max_loc[0]) / 2, (min_loc[1] + max_loc[1]) / 2)
        start = trans.data_to_earth(centre)
        start.shift_datum(WGS84)
        if cell_index(start.lat, start.lon)[0] == -1:
            raise GeolocationError(f"Data center {centre} has no valid earth location")
        area = cls()
        area.explore(trans, min_loc, max_loc, start)
        area.expand()
        logger.debug("Created earth area of %d cells", area.count())
        return area

    def _passes(self, trans: EarthTransform, lats: np.ndarray, lons: np.ndarray,
                min_loc: DataLocation, max_loc: DataLocation) -> np.ndarray:
        """True where locations map into the data box."""
        if trans.datum != WGS84:
            lats, lons = crs_manager.shift_datum(lats, lons, WGS84, trans.datum)
        rows, cols = trans.transform_earth(lats, lons)
        lo = min_loc.coords
        hi = max_loc.coords
        return ((rows >= lo[0]) & (rows <= hi[0]) & (cols >= lo[1]) & (cols <= hi[1]))

    def explore(self,
                trans: EarthTransform,
                min_loc: DataLocation,
                max_loc: DataLocation,
                start: EarthLocation) -> None:
        """
        Add the cells reachable from a start location.

        A cell is added when its centre maps to a data location inside
        ``[min_loc, max_loc]``. Exploration starts from the start cell and its
        8 neighbours and continues through the orthogonal neighbours of each
        cell added, so the result is the connected region of passing cells.
        """
        start_index = int(cell_index(start.lat, start.lon)[0])
        probe_lats, probe_lons = translate(np.full(8, start.lat), np.full(8, start.lon),
                                           PROBE_LAT, PROBE_LON)
        pending = np.unique(np.concatenate([[start_index], cell_index(probe_lats, probe_lons)]))
        pending = pending[pending >= 0]
        tested = np.zeros(N_CELLS, dtype=bool)

        while pending.size:
            pending = pending[~self._cells[pending] & ~tested[pending]]
            if not pending.size:
                break
            tested[pending] = True
            lats, lons = cell_centres(pending)
            added = pending[self._passes(trans, lats, lons, min_loc, max_loc)]
            self._cells[added] = True

            lats, lons = cell_centres(added)
            neighbours = []
            for k in range(4):
                n_lats, n_lons = translate(lats, lons, PROBE_LAT[k], PROBE_LON[k])
                neighbours.append(cell_index(n_lats, n_lons))
            pending = np.unique(np.concatenate(neighbours)) if neighbours else pending[:0]
            pending = pending[pending >= 0]

        if start_index >= 0 and not self._cells[start_index]:
            ok = self._passes(trans, np.array([start.lat]), np.array([start.lon]), min_loc, max_loc)
            if ok[0]:
                self._cells[start_index] = True

    def expand(self) -> None:
        """Add the 8 neighbours of every cell present before the call."""
        present = np.flatnonzero(self._cells)
        lats, lons = cell_centres(present)
        for k in range(8):
            n_lats, n_lons = translate(lats, lons, PROBE_LAT[k], PROBE_LON[k])
            idx = cell_index(n_lats, n_lons)
            self._cells[idx[idx >= 0]] = True

    def contains(self, loc: EarthLocation) -> bool:
        index = cell_index(loc.lat, loc.lon)[0]
        return bool(index >= 0 and self._cells[index])

    def contains_cell(self, cell: Tuple[int, int]) -> bool:
        """Check a cell given by its integer lower-left (lat, lon)."""
        lat, lon = cell
        if not (-90 <= lat <= 89 and -180 <= lon <= 179):
            return False
        return bool(self._cells[(lat + 90) * N_LON + (lon + 180)])

    def contains_many(self, lats, lons) -> np.ndarray:
        """Vectorised containment test for latitude and longitude arrays."""
        idx = cell_index(lats, lons)
        return (idx >= 0) & self._cells[np.maximum(idx, 0)]

    def add(self, loc: EarthLocation) -> None:
        index = cell_index(loc.lat, loc.lon)[0]
        if index >= 0:
            self._cells[index] = True

    def add_many(self, lats, lons) -> None:
        """Add the cells of many locations, skipping invalid ones."""
        idx = cell_index(lats, lons)
        self._cells[idx[idx >= 0]] = True

    def remove(self, loc: EarthLocation) -> None:
        index = cell_index(loc.lat, loc.lon)[0]
        if index >= 0:
            self._cells[index] = False

    def add_all(self) -> None:
        self._cells[:] = True

    def is_empty(self) -> bool:
        return not bool(self._cells.any())

    def count(self) -> int:
        return int(self._cells.sum())

    def intersection(self, other: "EarthArea") -> "EarthArea":
        return EarthArea(self._cells & other._cells)

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        for index in np.flatnonzero(self._cells):
            yield int(index // N_LON - 90), int(index % N_LON - 180)

    def get_extremes(self) -> List[int]:
        """
        Get the bounds of the area as ``[north, south, east, west]`` in degrees.

        When the area touches both -180 and 179 degrees longitude it is
        assumed to cross the antimeridian, and east/west are reported in
        [0, 360) so that west < east still holds. An empty area gives zeros.
        """
        present = np.flatnonzero(self._cells)
        if not present.size:
            return [0, 0, 0, 0]
        lats = present // N_LON - 90
        lons = present % N_LON - 180
        north, south = int(lats.max()), int(lats.min())
        east, west = int(lons.max()), int(lons.min())
        if west == -180 and east == 179:
            lons_mod = np.where(lons < 0, lons + 360, lons)
            east, west = int(lons_mod.max()), int(lons_mod.min())
        return [north + 1, south, east + 1, west]

    def to_bytes(self) -> bytes:
        """Encode the cells as a packed bitset."""
        return np.packbits(self._cells).tobytes()

    @classmethod
    def from_bytes(cls, data: bytes) -> "EarthArea":
        bits = np.unpackbits(np.frombuffer(data, dtype=np.uint8), count=N_CELLS)
        return cls(bits.astype(bool))

    def copy(self) -> "EarthArea":
        return EarthArea(self._cells)

    __copy__ = copy

    def __eq__(self, other) -> bool:
        if not isinstance(other, EarthArea):
            return NotImplemented
        return bool(np.array_equal(self._cells, other._cells))

    def __repr__(self) -> str:
        return f"EarthArea(cells={self.count()})"
