"""
Resampling maps and the factories that create them.

A resampling map stores, for a rectangular block of destination pixels,
the source pixel each destination pixel takes its value from. Maps are
created per block by a factory, so large destinations can be processed
tile by tile and in parallel.

This module contains:
- ResamplingMap: the per-block destination to source lookup table
- DirectResamplingMapFactory: exact inverse transform per pixel
- NearestResamplingMapFactory: geographically nearest source pixel
- GenericSourceImp: source validity and swath edge checks
- ResamplingDiagnostic: compares a factory's choices with the optimal
  source pixel in a local window
"""

import logging
import math
import threading
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

from swathremap.area import EarthArea
from swathremap.crs.crs_manager import crs_manager
from swathremap.exceptions import GeolocationError, ValidationError
from swathremap.location import (
    STD_RADIUS,
    great_circle_distance,
    haversine_term,
    haversine_to_distance,
    to_ecf,
)
from swathremap.transforms import EarthTransform

logger = logging.getLogger(__name__)

# Marks a destination pixel with no source pixel
NO_MAPPING = np.iinfo(np.int32).min

# Fraction of destination pixels sampled by a diagnostic
DEFAULT_DIAGNOSTIC_FACTOR = 0.01


class ResamplingMap:
    """
    Destination to source pixel lookup for one block of destination pixels.

    Parameters
    ----------
    start : sequence of int
        The (row, col) of the first destination pixel in the block.
    length : sequence of int
        The (rows, cols) size of the block.
    row_map, col_map : np.ndarray
        Source row and column for each destination pixel of the block in
        row-major order, ``NO_MAPPING`` where there is no source pixel.
    """

    def __init__(self,
                 start: Sequence[int],
                 length: Sequence[int],
                 row_map: np.ndarray,
                 col_map: np.ndarray):
        self.start = (int(start[0]), int(start[1]))
        self.length = (int(length[0]), int(length[1]))
        entries = self.length[0] * self.length[1]
        row_map = np.asarray(row_map, dtype=np.int32).ravel()
        col_map = np.asarray(col_map, dtype=np.int32).ravel()
        if row_map.size != entries or col_map.size != entries:
            raise ValidationError(
                f"Map arrays must have {entries} entries, got {row_map.size} and {col_map.size}"
            )
        self.row_map = row_map.reshape(self.length)
        self.col_map = col_map.reshape(self.length)

    @property
    def valid(self) -> np.ndarray:
        """Boolean block of destination pixels that have a mapping."""
        return self.row_map != NO_MAPPING

    def map(self, dest_coords: Sequence[int]) -> Optional[Tuple[int, int]]:
        """
        Get the source pixel for a destination pixel.

        Returns None if the destination pixel lies outside the block or has
        no mapping.
        """
        i = int(dest_coords[0]) - self.start[0]
        j = int(dest_coords[1]) - self.start[1]
        if not (0 <= i < self.length[0] and 0 <= j < self.length[1]):
            return None
        row = self.row_map[i, j]
        if row == NO_MAPPING:
            return None
        return int(row), int(self.col_map[i, j])

    def count(self) -> int:
        return int(self.valid.sum())

    def __repr__(self) -> str:
        return f"ResamplingMap(start={self.start}, length={self.length}, mapped={self.count()})"


def _block_coords(start: Sequence[int], length: Sequence[int]) -> Tuple[np.ndarray, np.ndarray]:
    """Row-major row and column coordinates of a block of pixels."""
    rows, cols = np.meshgrid(
        np.arange(start[0], start[0] + length[0], dtype=float),
        np.arange(start[1], start[1] + length[1], dtype=float),
        indexing="ij"
    )
    return rows.ravel(), cols.ravel()


class ResamplingMapFactory(ABC):
    """
    Abstract base class for resampling map factories.

    Factories must be safe to call from several threads once constructed.
    """

    def __init__(self, source_trans: EarthTransform, dest_trans: EarthTransform):
        self.source_trans = source_trans
        self.dest_trans = dest_trans
        self.datum_shift = source_trans.datum != dest_trans.datum
        if self.datum_shift:
            logger.debug("Datum shift detected between source and destination transform")

    @abstractmethod
    def create(self, start: Sequence[int], length: Sequence[int]) -> Optional[ResamplingMap]:
        """
        Create a map for a block of destination pixels.

        Parameters
        ----------
        start : sequence of int
            The (row, col) of the first destination pixel.
        length : sequence of int
            The (rows, cols) size of the block.

        Returns
        -------
        ResamplingMap or None
            None when no destination pixel in the block has a mapping.
        """
        pass

    def _dest_earth(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        lats, lons = self.dest_trans.transform_data(rows, cols)
        if self.datum_shift:
            lats, lons = crs_manager.shift_datum(lats, lons, self.dest_trans.datum,
                                                 self.source_trans.datum)
        return lats, lons

    @staticmethod
    def _finish(start, length, row_map: np.ndarray, col_map: np.ndarray) -> Optional[ResamplingMap]:
        if np.all(row_map == NO_MAPPING):
            return None
        return ResamplingMap(start, length, row_map, col_map)


class DirectResamplingMapFactory(ResamplingMapFactory):
    """
    Maps each destination pixel through the exact inverse source transform.

    The source location must fall inside the source grid, otherwise the
    pixel has no mapping. Mapped locations are rounded half-up.
    """

    def create(self, start, length):
        rows, cols = _block_coords(start, length)
        lats, lons = self._dest_earth(rows, cols)
        s_rows, s_cols = self.source_trans.transform_earth(lats, lons)
        src_rows, src_cols = self.source_trans.dimensions
        ok = ((s_rows >= 0) & (s_rows <= src_rows - 1) &
              (s_cols >= 0) & (s_cols <= src_cols - 1))
        s_rows = np.floor(s_rows + 0.5)
        s_cols = np.floor(s_cols + 0.5)
        row_map = np.full(rows.size, NO_MAPPING, dtype=np.int32)
        col_map = np.full(rows.size, NO_MAPPING, dtype=np.int32)
        row_map[ok] = s_rows[ok].astype(np.int32)
        col_map[ok] = s_cols[ok].astype(np.int32)
        return self._finish(start, length, row_map, col_map)


class GenericSourceImp:
    """
    Source validity and edge checks that work for any source transform.

    Every source pixel is treated as valid. Along the edges of the source
    grid, inward pointing vectors between the edge pixels and their inner
    neighbours are used to reject destination locations that lie outside
    the swath even though an edge pixel is their nearest source pixel.
    """

    window_size = 3

    def __init__(self, source_trans: EarthTransform):
        self.source_trans = source_trans
        rows, cols = source_trans.dimensions
        self.dimensions = (rows, cols)
        col_index = np.arange(cols, dtype=float)
        row_index = np.arange(rows, dtype=float)

        self.top_ecf, self.top_vectors = self._edge(np.zeros(cols), col_index,
                                                    np.ones(cols), col_index)
        self.bottom_ecf, self.bottom_vectors = self._edge(np.full(cols, rows - 1.0), col_index,
                                                          np.full(cols, rows - 2.0), col_index)
        self.left_ecf, self.left_vectors = self._edge(row_index, np.zeros(rows),
                                                      row_index, np.ones(rows))
        self.right_ecf, self.right_vectors = self._edge(row_index, np.full(rows, cols - 1.0),
                                                        row_index, np.full(rows, cols - 2.0))

    def _edge(self, edge_rows, edge_cols, inner_rows, inner_cols):
        """ECF coordinates of edge pixels and the vectors to their inner neighbours."""
        edge = to_ecf(*self.source_trans.transform_data(edge_rows, edge_cols))
        inner = to_ecf(*self.source_trans.transform_data(inner_rows, inner_cols))
        return edge, inner - edge

    def is_valid_location(self, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
        """True for source pixels that may be used for resampling."""
        return np.ones(np.shape(rows), dtype=bool)

    def is_valid_nearest_location(self,
                                  lats: np.ndarray,
                                  lons: np.ndarray,
                                  rows: np.ndarray,
                                  cols: np.ndarray) -> np.ndarray:
        """
        Check that destination locations lie inside the source swath.

        Parameters
        ----------
        lats, lons : np.ndarray
            Destination earth locations in the source datum.
        rows, cols : np.ndarray
            Integer coordinates of the nearest source pixel of each location.

        Returns
        -------
        np.ndarray
            False where the nearest source pixel is on an edge and the
            destination location lies on the outside of that edge.
        """
        rows = np.asarray(rows, dtype=np.intp)
        cols = np.asarray(cols, dtype=np.intp)
        dest = to_ecf(lats, lons)
        ok = np.ones(rows.shape, dtype=bool)
        n_rows, n_cols = self.dimensions

        top = rows == 0
        bottom = (rows == n_rows - 1) & ~top
        left = (cols == 0) & ~top & ~bottom
        right = (cols == n_cols - 1) & ~top & ~bottom & ~left

        edges = ((top, self.top_ecf, self.top_vectors, cols, True),
                 (bottom, self.bottom_ecf, self.bottom_vectors, cols, True),
                 (left, self.left_ecf, self.left_vectors, rows, False),
                 (right, self.right_ecf, self.right_vectors, rows, False))
        for sel, ecf, vectors, index, has_corners in edges:
            if not sel.any():
                continue
            to_dest = dest[sel] - ecf[index[sel]]
            inside = np.einsum("ij,ij->i", to_dest, vectors[index[sel]]) > 0

            # Corners also have to be inside the side edge
            if has_corners:
                sel_rows = rows[sel]
                sel_cols = cols[sel]
                for corner, side_vectors in ((sel_cols == 0, self.left_vectors),
                                             (sel_cols == n_cols - 1, self.right_vectors)):
                    if corner.any():
                        side = np.einsum("ij,ij->i", to_dest[corner],
                                         side_vectors[sel_rows[corner]]) > 0
                        inside[corner] &= side
            ok[sel] = inside
        return ok


class NearestResamplingMapFactory(ResamplingMapFactory):
    """
    Maps each destination pixel to the geographically nearest source pixel.

    Source pixel centres that fall inside the destination area are indexed
    in a k-d tree over unit sphere coordinates. Destination locations
    outside the area covered by the source, or outside the swath edges as
    judged by the source implementation, have no mapping.

    Parameters
    ----------
    source_trans, dest_trans : EarthTransform
        The source and destination transforms.
    source_imp : GenericSourceImp, optional
        Source validity and edge checks, a ``GenericSourceImp`` by default.

    Raises
    ------
    GeolocationError
        If the source resolution cannot be determined at the grid centre.
    """

    def __init__(self,
                 source_trans: EarthTransform,
                 dest_trans: EarthTransform,
                 source_imp: Optional[GenericSourceImp] = None):
        super().__init__(source_trans, dest_trans)
        self.source_imp = source_imp if source_imp is not None else GenericSourceImp(source_trans)
        self.resolution = self._centre_resolution()
        logger.debug("Source resolution %.3f km (%.5f deg)", self.resolution,
                     math.degrees(self.resolution / STD_RADIUS))

        src_rows, src_cols = source_trans.dimensions
        dest_rows, dest_cols = dest_trans.dimensions
        dest_area = EarthArea.from_transform(dest_trans)

        rows, cols = _block_coords((0, 0), (src_rows, src_cols))
        valid = self.source_imp.is_valid_location(rows, cols)
        lats, lons = source_trans.transform_data(rows[valid], cols[valid])
        finite = np.isfinite(lats) & np.isfinite(lons)
        rows = rows[valid][finite]
        cols = cols[valid][finite]
        lats = lats[finite]
        lons = lons[finite]

        self.source_area = EarthArea()
        self.source_area.add_many(lats, lons)
        inside = dest_area.contains_many(lats, lons)
        self._rows = rows[inside].astype(np.int32)
        self._cols = cols[inside].astype(np.int32)
        self._tree = cKDTree(to_ecf(lats[inside], lons[inside])) if inside.any() else None
        logger.info("Indexed %d of %d source locations for %dx%d destination",
                    int(inside.sum()), src_rows * src_cols, dest_rows, dest_cols)

    def _centre_resolution(self) -> float:
        rows, cols = self.source_trans.dimensions
        i, j = rows // 2, cols // 2
        horiz, vert = self.source_trans.distances([i, i - 1], [j - 1, j], [i, i + 1], [j + 1, j]) / 2
        res = [r for r in (horiz, vert) if np.isfinite(r) and r != 0]
        if not res:
            raise GeolocationError("Cannot determine source transform resolution")
        return float(max(res))

    def create(self, start, length):
        rows, cols = _block_coords(start, length)
        row_map = np.full(rows.size, NO_MAPPING, dtype=np.int32)
        col_map = np.full(rows.size, NO_MAPPING, dtype=np.int32)
        if self._tree is None:
            return None

        lats, lons = self._dest_earth(rows, cols)
        candidates = np.flatnonzero(self.source_area.contains_many(lats, lons))
        if not candidates.size:
            return None
        _, nearest = self._tree.query(to_ecf(lats[candidates], lons[candidates]))
        s_rows = self._rows[nearest]
        s_cols = self._cols[nearest]
        ok = self.source_imp.is_valid_nearest_location(lats[candidates], lons[candidates],
                                                       s_rows, s_cols)
        row_map[candidates[ok]] = s_rows[ok]
        col_map[candidates[ok]] = s_cols[ok]
        return self._finish(start, length, row_map, col_map)


@dataclass
class DiagnosticInfo:
    """One sampled destination pixel of a resampling diagnostic."""

    dest_coords: Tuple[int, int]
    source_coords: Tuple[int, int]
    optimal_coords: Optional[Tuple[int, int]] = None
    actual_dist: float = math.nan
    optimal_dist: float = math.nan

    @property
    def is_optimal(self) -> bool:
        return self.source_coords == self.optimal_coords

    @property
    def dist_error(self) -> float:
        return self.actual_dist - self.optimal_dist

    @property
    def omega(self) -> float:
        """Optimality from 0 to 1, where 1 means the actual source pixel is optimal."""
        if self.actual_dist == self.optimal_dist:
            return 1.0
        total = self.actual_dist + self.optimal_dist
        return 1.0 - (self.actual_dist - self.optimal_dist) / total


class ResamplingDiagnostic(ResamplingMapFactory):
    """
    Measures how close a factory's mappings are to the optimal ones.

    The diagnostic wraps another factory. Each map created through it is
    sampled every ``int(sqrt(1 / factor))`` pixels in each direction. Once
    all maps are created, ``complete`` searches a window of source pixels
    around each sample for the one nearest to the destination location and
    computes distance statistics.

    Parameters
    ----------
    source_trans : EarthTransform
        The source transform.
    source_imp : GenericSourceImp
        Source validity checks and search window size.
    dest_trans : EarthTransform
        The destination transform.
    factory : ResamplingMapFactory
        The factory to diagnose.
    factor : float, optional
        Fraction of destination pixels to sample, in (0, 1].
    """

    def __init__(self,
                 source_trans: EarthTransform,
                 source_imp: GenericSourceImp,
                 dest_trans: EarthTransform,
                 factory: ResamplingMapFactory,
                 factor: float = DEFAULT_DIAGNOSTIC_FACTOR):
        super().__init__(source_trans, dest_trans)
        if not 0 < factor <= 1:
            raise ValidationError(f"Sampling factor must be in (0, 1], got {factor}")
        self.source_imp = source_imp
        self.factory = factory
        self.factor = factor
        self.stride = int(math.sqrt(1.0 / factor))
        self._infos: List[DiagnosticInfo] = []
        self._lock = threading.Lock()
        self._completed = False

    def create(self, start, length):
        resampling_map = self.factory.create(start, length)
        if resampling_map is not None:
            infos = []
            for i in range(start[0], start[0] + length[0], self.stride):
                for j in range(start[1], start[1] + length[1], self.stride):
                    source = resampling_map.map((i, j))
                    if source is not None:
                        infos.append(DiagnosticInfo((i, j), source))
            with self._lock:
                self._infos.extend(infos)
        return resampling_map

    def complete(self) -> None:
        """
        Compute the optimal source pixel and distances for every sample.

        Samples with no valid source pixel in their window, or whose actual
        distance cannot be computed, are dropped.
        """
        src_rows, src_cols = self.source_trans.dimensions
        radius = (self.source_imp.window_size - 1) // 2
        kept = []
        for info in self._infos:
            lats, lons = self._dest_earth(np.array([float(info.dest_coords[0])]),
                                          np.array([float(info.dest_coords[1])]))
            lat, lon = lats[0], lons[0]
            s_lats, s_lons = self.source_trans.transform_data(
                np.array([float(info.source_coords[0])]), np.array([float(info.source_coords[1])])
            )
            actual = great_circle_distance(lat, lon, s_lats[0], s_lons[0])

            rows, cols = np.meshgrid(
                np.arange(max(0, info.source_coords[0] - radius),
                          min(src_rows - 1, info.source_coords[0] + radius) + 1),
                np.arange(max(0, info.source_coords[1] - radius),
                          min(src_cols - 1, info.source_coords[1] + radius) + 1),
                indexing="ij"
            )
            rows = rows.ravel()
            cols = cols.ravel()
            valid = self.source_imp.is_valid_location(rows, cols)
            w_lats, w_lons = self.source_trans.transform_data(rows.astype(float), cols.astype(float))
            valid &= np.isfinite(w_lats) & np.isfinite(w_lons)
            if not valid.any() or math.isnan(actual):
                continue

            proxies = np.where(valid, haversine_term(lat, lon, w_lats, w_lons), np.inf)
            best = int(np.argmin(proxies))
            info.optimal_coords = (int(rows[best]), int(cols[best]))
            info.optimal_dist = float(haversine_to_distance(proxies[best]))
            info.actual_dist = actual
            if info.optimal_dist > actual:
                warnings.warn(
                    f"Optimal distance {info.optimal_dist} km exceeds actual distance "
                    f"{actual} km at destination {info.dest_coords}",
                    UserWarning
                )
            kept.append(info)

        logger.debug("Diagnostic kept %d of %d samples", len(kept), len(self._infos))
        self._infos = kept
        self._completed = True

    def _check_completed(self) -> None:
        if not self._completed:
            raise ValidationError("Diagnostic statistics require complete() to be called first")

    def to_dataframe(self) -> pd.DataFrame:
        """Get one row per sample with coordinates, distances and omega."""
        self._check_completed()
        return pd.DataFrame({
            "dest_row": [info.dest_coords[0] for info in self._infos],
            "dest_col": [info.dest_coords[1] for info in self._infos],
            "source_row": [info.source_coords[0] for info in self._infos],
            "source_col": [info.source_coords[1] for info in self._infos],
            "optimal_row": [info.optimal_coords[0] for info in self._infos],
            "optimal_col": [info.optimal_coords[1] for info in self._infos],
            "dist": [info.actual_dist for info in self._infos],
            "dist_error": [info.dist_error for info in self._infos],
            "omega": [info.omega for info in self._infos],
        })

    @property
    def dist_stats(self) -> pd.Series:
        """Summary statistics of the actual source distances in kilometers."""
        return self.to_dataframe()["dist"].describe()

    @property
    def dist_error_stats(self) -> pd.Series:
        """Summary statistics of actual minus optimal distance in kilometers."""
        return self.to_dataframe()["dist_error"].describe()

    @property
    def omega_stats(self) -> pd.Series:
        return self.to_dataframe()["omega"].describe()

    @property
    def sample_count(self) -> int:
        self._check_completed()
        return len(self._infos)

    @property
    def suboptimal_count(self) -> int:
        self._check_completed()
        return sum(not info.is_optimal for info in self._infos)

    def get_suboptimal_list(self) -> List[DiagnosticInfo]:
        self._check_completed()
        return [info for info in self._infos if not info.is_optimal]
