"""
Core swathremap classes.

This module contains the grid resampling strategies:
- DirectGridResampler: exact inverse transform for every destination pixel
- InverseGridResampler: destination to source locations from a
  LocationEstimator built over the destination grid
- MixedGridResampler: forward mapping of source rectangles with local
  polynomials, overwrite policies and single pixel gap closing

and the ``perform`` function that selects a strategy by name.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from swathremap.algorithms.estimators import BivariateEstimator
from swathremap.crs.crs_manager import crs_manager
from swathremap.exceptions import EstimatorError, ValidationError
from swathremap.grid import Grid
from swathremap.location_estimator import LocationEstimator
from swathremap.transforms import EarthTransform

logger = logging.getLogger(__name__)

VALID_METHODS = ["direct", "inverse", "mixed"]
VALID_OVERWRITE_MODES = ["never", "always", "if_closer"]

# Maximum physical size in kilometers of the inverse resampler partitions
DEFAULT_POLY_SIZE = 100.0

# Source rectangle (height, width) in pixels for the mixed resampler
DEFAULT_RECT_SIZE = (50, 50)

SourceFilter = Callable[[np.ndarray, np.ndarray], np.ndarray]


class GridResampler(ABC):
    """
    Abstract base class for grid resampling strategies.

    A resampler holds the source and destination transforms and a list of
    (source, destination) grid pairs. Calling ``perform`` fills every
    destination grid with values copied from its source grid. Resamplers
    keep working state during ``perform`` and must not be shared between
    threads.
    """

    def __init__(self, source_trans: EarthTransform, dest_trans: EarthTransform):
        self.source_trans = source_trans
        self.dest_trans = dest_trans
        self.source_grids: List[Grid] = []
        self.dest_grids: List[Grid] = []

    def add_grid(self, source: Grid, dest: Grid) -> None:
        """Add a pair of grids to resample."""
        if tuple(source.dimensions) != tuple(self.source_trans.dimensions):
            raise ValidationError(
                f"Source grid '{source.name}' has dimensions {source.dimensions}, "
                f"expected {self.source_trans.dimensions}"
            )
        if tuple(dest.dimensions) != tuple(self.dest_trans.dimensions):
            raise ValidationError(
                f"Destination grid '{dest.name}' has dimensions {dest.dimensions}, "
                f"expected {self.dest_trans.dimensions}"
            )
        self.source_grids.append(source)
        self.dest_grids.append(dest)

    def clear_grids(self) -> None:
        self.source_grids = []
        self.dest_grids = []

    @abstractmethod
    def perform(self, verbose: bool = False) -> None:
        """
        Resample all source grids to their destination grids.

        Parameters
        ----------
        verbose : bool, optional
            Log progress at INFO level instead of DEBUG.
        """
        pass

    def _start(self, verbose: bool) -> int:
        """Log the start of a run and return the progress log level."""
        level = logging.INFO if verbose else logging.DEBUG
        logger.log(level, "%s: Found %d grid(s) for resampling",
                   type(self).__name__, len(self.source_grids))
        if self.source_grids:
            dest_rows, dest_cols = self.dest_grids[0].dimensions
            src_rows, src_cols = self.source_grids[0].dimensions
            logger.log(level, "%s: Resampling to %dx%d from %dx%d", type(self).__name__,
                       dest_rows, dest_cols, src_rows, src_cols)
        return level

    @staticmethod
    def _progress(level: int, name: str, done: int, total: int) -> None:
        step = max(1, total // 10)
        if done % step == 0:
            logger.log(level, "%s: %d%% complete", name, int(round(done * 100.0 / total)))

    def _dest_earth(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Destination data locations to earth locations in the source datum."""
        lats, lons = self.dest_trans.transform_data(rows, cols)
        if self.dest_trans.datum != self.source_trans.datum:
            lats, lons = crs_manager.shift_datum(lats, lons, self.dest_trans.datum,
                                                 self.source_trans.datum)
        return lats, lons

    def _copy_row(self, row: int, ok: np.ndarray,
                  source_rows: np.ndarray, source_cols: np.ndarray) -> None:
        """Copy one destination row, writing NaN where ``ok`` is False."""
        r = source_rows[ok].astype(np.intp)
        c = source_cols[ok].astype(np.intp)
        for source, dest in zip(self.source_grids, self.dest_grids):
            values = np.full(ok.shape, np.nan)
            values[ok] = source.data[r, c]
            dest.data[row, :] = values


class DirectGridResampler(GridResampler):
    """
    Resamples using the exact inverse source transform for every pixel.

    Each destination pixel is transformed to an earth location and then to
    a source location, which must lie inside [0, dim - 1] on both axes. The
    nearest source pixel value is copied, or NaN is written.
    """

    def perform(self, verbose=False):
        level = self._start(verbose)
        if not self.source_grids:
            return
        dest_rows, dest_cols = self.dest_grids[0].dimensions
        src_rows, src_cols = self.source_grids[0].dimensions
        nav_grid = self.source_grids[0]
        cols = np.arange(dest_cols, dtype=float)

        for i in range(dest_rows):
            lats, lons = self._dest_earth(np.full(dest_cols, float(i)), cols)
            s_rows, s_cols = self.source_trans.transform_earth(lats, lons)
            s_rows, s_cols = nav_grid.navigate(s_rows, s_cols)
            ok = ((s_rows >= 0) & (s_rows <= src_rows - 1) &
                  (s_cols >= 0) & (s_cols <= src_cols - 1))
            self._copy_row(i, ok, np.floor(s_rows + 0.5), np.floor(s_cols + 0.5))
            self._progress(level, type(self).__name__, i + 1, dest_rows)


class InverseGridResampler(GridResampler):
    """
    Resamples using a location estimator over the destination grid.

    Parameters
    ----------
    source_trans, dest_trans : EarthTransform
        The grid transforms.
    poly_size : float, optional
        Maximum partition size in kilometers for the estimator polynomials.
    mode : str, optional
        Estimator query mode, ``"accurate"`` (default) or ``"fast"``.
    estimator : LocationEstimator, optional
        A previously built estimator, for example one rebuilt from a stored
        encoding. When omitted one is built by ``perform``.
    n_workers : int, optional
        Threads used to fit the estimator polynomials.
    """

    def __init__(self,
                 source_trans: EarthTransform,
                 dest_trans: EarthTransform,
                 poly_size: float = DEFAULT_POLY_SIZE,
                 mode: str = "accurate",
                 estimator: Optional[LocationEstimator] = None,
                 n_workers: int = 1):
        super().__init__(source_trans, dest_trans)
        if poly_size <= 0:
            raise ValidationError(f"Polynomial size must be positive, got {poly_size}")
        self.poly_size = poly_size
        self.mode = mode
        self.estimator = estimator
        self.n_workers = n_workers
        if estimator is not None:
            estimator.mode = mode

    def perform(self, verbose=False):
        level = self._start(verbose)
        if not self.source_grids:
            return
        dest_rows, dest_cols = self.dest_grids[0].dimensions
        src_rows, src_cols = self.source_grids[0].dimensions
        source_nav = self.source_grids[0].navigation if self.source_grids[0].has_navigation() else None

        if self.estimator is None:
            logger.log(level, "%s: Creating location estimators with poly size %s km",
                       type(self).__name__, self.poly_size)
            self.estimator = LocationEstimator(
                self.dest_trans, (dest_rows, dest_cols),
                self.source_trans, (src_rows, src_cols),
                source_nav, self.poly_size, n_workers=self.n_workers
            )
        self.estimator.mode = self.mode
        logger.log(level, "%s: Location estimators complete, starting resampling",
                   type(self).__name__)

        cols = np.arange(dest_cols, dtype=float)
        for i in range(dest_rows):
            rows = np.full(dest_cols, float(i))
            lats, _ = self.dest_trans.transform_data(rows, cols)
            s_rows, s_cols = self.estimator.get_locations(rows, cols)
            ok = (~np.isnan(lats) &
                  (s_rows >= -0.5) & (s_rows <= src_rows - 0.5) &
                  (s_cols >= -0.5) & (s_cols <= src_cols - 0.5))
            # dim - 0.5 rounds up to dim, so clamp to the last pixel
            r = np.clip(np.floor(s_rows + 0.5), 0, src_rows - 1)
            c = np.clip(np.floor(s_cols + 0.5), 0, src_cols - 1)
            self._copy_row(i, ok, r, c)
            self._progress(level, type(self).__name__, i + 1, dest_rows)


def _cross_product_sign(x: np.ndarray, y: np.ndarray, p1: int, p2: int, p3: int) -> int:
    z = (x[p2] - x[p1]) * (y[p3] - y[p1]) - (y[p2] - y[p1]) * (x[p3] - x[p1])
    return 0 if z < 0 else 1


# Sample point triples whose orientation must agree, on a 3x3 grid
# numbered row by row
ORIENTATION_TRIPLES = [(0, 1, 3), (1, 2, 4), (3, 4, 6), (4, 5, 7), (8, 7, 5)]


class MixedGridResampler(GridResampler):
    """
    Resamples by mapping rectangles of source pixels forward.

    The source grid is divided into rectangles. For each rectangle a 3x3
    grid of pixel centres is mapped to the destination, and a rectangle
    whose mapped samples do not all have the same orientation is skipped,
    since the transform folds or wraps there. Otherwise quadratic
    polynomials are fitted for destination to source and source to
    destination locations. Every destination pixel inside the rectangle's
    destination footprint whose estimated source pixel falls inside the
    rectangle receives that source pixel's value.

    After all rectangles, destination pixels that were missed but have all
    8 neighbours filled are set to the median of the neighbours.

    Parameters
    ----------
    source_trans, dest_trans : EarthTransform
        The grid transforms.
    rect_size : tuple of int, optional
        Rectangle (height, width) in source pixels, (50, 50) by default.
    overwrite_mode : str, optional
        What to do when a destination pixel is mapped by more than one
        rectangle: ``"never"`` keeps the first value, ``"always"`` (default)
        keeps the last, ``"if_closer"`` keeps the one whose source estimate
        was closest to a pixel centre.
    source_filter : callable, optional
        Called with integer arrays of source rows and columns, returns a
        boolean array that is False for source pixels never to be copied.
    """

    def __init__(self,
                 source_trans: EarthTransform,
                 dest_trans: EarthTransform,
                 rect_size: Sequence[int] = DEFAULT_RECT_SIZE,
                 overwrite_mode: str = "always",
                 source_filter: Optional[SourceFilter] = None):
        super().__init__(source_trans, dest_trans)
        if overwrite_mode not in VALID_OVERWRITE_MODES:
            raise ValidationError(
                f"Overwrite mode must be one of {VALID_OVERWRITE_MODES}, got '{overwrite_mode}'"
            )
        rect_height, rect_width = (int(v) for v in rect_size)
        if rect_height < 1 or rect_width < 1:
            raise ValidationError(f"Rectangle size must be positive, got {tuple(rect_size)}")
        self.rect_height = rect_height
        self.rect_width = rect_width
        self.overwrite_mode = overwrite_mode
        self.source_filter = source_filter

    def _map_samples(self, rows: np.ndarray, cols: np.ndarray) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """Source to destination locations, None if any is invalid."""
        lats, lons = self.source_trans.transform_data(rows, cols)
        if np.any(np.isnan(lats)) or np.any(np.isnan(lons)):
            return None
        if self.source_trans.datum != self.dest_trans.datum:
            lats, lons = crs_manager.shift_datum(lats, lons, self.source_trans.datum,
                                                 self.dest_trans.datum)
        d_rows, d_cols = self.dest_trans.transform_earth(lats, lons)
        if np.any(np.isnan(d_rows)) or np.any(np.isnan(d_cols)):
            return None
        return d_rows, d_cols

    def perform(self, verbose=False):
        level = self._start(verbose)
        if not self.source_grids:
            return
        name = type(self).__name__
        src_rows, src_cols = self.source_grids[0].dimensions
        dest_rows, dest_cols = self.dest_grids[0].dimensions
        for dest in self.dest_grids:
            dest.data[:] = np.nan

        target = np.zeros((dest_rows, dest_cols), dtype=bool)
        round_dist = None
        if self.overwrite_mode == "if_closer":
            round_dist = np.zeros((dest_rows, dest_cols), dtype=np.float32)

        rectangles = (-(-src_rows // self.rect_height)) * (-(-src_cols // self.rect_width))
        rectangle = 0
        skipped = 0
        for i in range(0, src_rows, self.rect_height):
            for j in range(0, src_cols, self.rect_width):
                rectangle += 1
                self._progress(level, name, rectangle, rectangles)
                if not self._resample_rectangle(i, j, src_rows, src_cols,
                                                dest_rows, dest_cols, target, round_dist):
                    skipped += 1

        logger.log(level, "%s: Skipped %d of %d rectangles", name, skipped, rectangles)
        logger.log(level, "%s: Interpolating single pixel gaps", name)
        self._close_gaps(target)

    def _resample_rectangle(self, i, j, src_rows, src_cols, dest_rows, dest_cols,
                            target, round_dist) -> bool:
        row_min = i
        row_max = min(i + self.rect_height - 1, src_rows - 1)
        col_min = j
        col_max = min(j + self.rect_width - 1, src_cols - 1)
        row_mid = (row_min + row_max) // 2
        col_mid = (col_min + col_max) // 2

        s_rows = np.repeat([row_min, row_mid, row_max], 3).astype(float)
        s_cols = np.tile([col_min, col_mid, col_max], 3).astype(float)
        mapped = self._map_samples(s_rows, s_cols)
        if mapped is None:
            return False
        d_rows, d_cols = mapped

        signs = sum(_cross_product_sign(d_rows, d_cols, *t) for t in ORIENTATION_TRIPLES)
        if signs not in (0, len(ORIENTATION_TRIPLES)):
            logger.debug("Skipping folded rectangle at source (%d, %d)", row_min, col_min)
            return False

        try:
            source_row_est = BivariateEstimator(d_rows, d_cols, s_rows, 2)
            source_col_est = BivariateEstimator(d_rows, d_cols, s_cols, 2)
            dest_row_est = BivariateEstimator(s_rows, s_cols, d_rows, 2)
            dest_col_est = BivariateEstimator(s_rows, s_cols, d_cols, 2)
        except EstimatorError as e:
            logger.debug("Skipping rectangle at source (%d, %d): %s", row_min, col_min, e)
            return False

        # Footprint from the pixel edges, so that neighbouring footprints meet
        e_rows = np.repeat([row_min - 0.5, row_mid, row_max + 0.5], 3)
        e_cols = np.tile([col_min - 0.5, col_mid, col_max + 0.5], 3)
        f_rows = dest_row_est.evaluate_many(e_rows, e_cols)
        f_cols = dest_col_est.evaluate_many(e_rows, e_cols)
        min_row = int(np.floor(f_rows.min())) - 1
        min_col = int(np.floor(f_cols.min())) - 1
        max_row = int(np.ceil(f_rows.max())) + 1
        max_col = int(np.ceil(f_cols.max())) + 1
        if (min_row > dest_rows - 1 or max_row < 0 or
                min_col > dest_cols - 1 or max_col < 0):
            return True
        min_row, min_col = max(min_row, 0), max(min_col, 0)
        max_row, max_col = min(max_row, dest_rows - 1), min(max_col, dest_cols - 1)

        rr, cc = np.meshgrid(np.arange(min_row, max_row + 1),
                             np.arange(min_col, max_col + 1), indexing="ij")
        rr = rr.ravel()
        cc = cc.ravel()
        if self.overwrite_mode == "never":
            keep = ~target[rr, cc]
            rr, cc = rr[keep], cc[keep]

        est_rows = source_row_est.evaluate_many(rr, cc)
        est_cols = source_col_est.evaluate_many(rr, cc)
        sr = np.floor(est_rows + 0.5)
        sc = np.floor(est_cols + 0.5)
        ok = (sr >= row_min) & (sr <= row_max) & (sc >= col_min) & (sc <= col_max)
        rr, cc, sr, sc = rr[ok], cc[ok], sr[ok].astype(np.intp), sc[ok].astype(np.intp)
        est_rows, est_cols = est_rows[ok], est_cols[ok]

        if self.source_filter is not None and rr.size:
            use = np.asarray(self.source_filter(sr, sc), dtype=bool)
            rr, cc, sr, sc = rr[use], cc[use], sr[use], sc[use]
            est_rows, est_cols = est_rows[use], est_cols[use]

        if round_dist is not None:
            delta_row = (est_rows - sr).astype(np.float32)
            delta_col = (est_cols - sc).astype(np.float32)
            dist = delta_row * delta_row + delta_col * delta_col
            closer = ~target[rr, cc] | (dist < round_dist[rr, cc])
            rr, cc, sr, sc, dist = rr[closer], cc[closer], sr[closer], sc[closer], dist[closer]
            round_dist[rr, cc] = dist

        for source, dest in zip(self.source_grids, self.dest_grids):
            dest.data[rr, cc] = source.data[sr, sc]
        target[rr, cc] = True
        return True

    def _close_gaps(self, target: np.ndarray) -> None:
        """Fill interior single pixel holes with the median of their neighbours."""
        rows, cols = target.shape
        if rows < 3 or cols < 3:
            return
        surrounded = np.ones((rows - 2, cols - 2), dtype=bool)
        offsets = [(di, dj) for di in (-1, 0, 1) for dj in (-1, 0, 1) if (di, dj) != (0, 0)]
        for di, dj in offsets:
            surrounded &= target[1 + di:rows - 1 + di, 1 + dj:cols - 1 + dj]
        gaps = surrounded & ~target[1:-1, 1:-1]
        gi, gj = np.nonzero(gaps)
        if not gi.size:
            return
        gi += 1
        gj += 1
        logger.debug("Closing %d single pixel gaps", gi.size)
        for dest in self.dest_grids:
            box = np.stack([dest.data[gi + di, gj + dj] for di, dj in offsets], axis=1)
            # NaN sorts last, so the valid values come first
            box = np.sort(box, axis=1)
            n_valid = np.sum(~np.isnan(box), axis=1)
            dest.data[gi, gj] = box[np.arange(gi.size), n_valid // 2]


def create_resampler(source_trans: EarthTransform,
                     dest_trans: EarthTransform,
                     method: str = "inverse",
                     **kwargs) -> GridResampler:
    """
    Create a resampler by method name.

    Parameters
    ----------
    source_trans, dest_trans : EarthTransform
        The grid transforms.
    method : str, optional
        ``"direct"``, ``"inverse"`` (default) or ``"mixed"``.
    **kwargs
        Keyword arguments for the resampler class.
    """
    if method not in VALID_METHODS:
        raise ValidationError(f"Method must be one of {VALID_METHODS}, got '{method}'")
    if method == "direct":
        return DirectGridResampler(source_trans, dest_trans, **kwargs)
    elif method == "inverse":
        return InverseGridResampler(source_trans, dest_trans, **kwargs)
    return MixedGridResampler(source_trans, dest_trans, **kwargs)


def perform(source_grids: Sequence[Grid],
            dest_grids: Sequence[Grid],
            source_trans: EarthTransform,
            dest_trans: EarthTransform,
            method: str = "inverse",
            verbose: bool = False,
            **kwargs) -> List[Grid]:
    """
    Resample source grids to destination grids.

    Parameters
    ----------
    source_grids, dest_grids : sequence of Grid
        Matching lists of source and destination grids.
    source_trans, dest_trans : EarthTransform
        The grid transforms.
    method : str, optional
        ``"direct"``, ``"inverse"`` (default) or ``"mixed"``.
    verbose : bool, optional
        Log progress at INFO level.
    **kwargs
        Keyword arguments for the resampler class, for example
        ``poly_size`` or ``overwrite_mode``.

    Returns
    -------
    list of Grid
        The destination grids, filled.
    """
    if len(source_grids) != len(dest_grids):
        raise ValidationError(
            f"Got {len(source_grids)} source grids for {len(dest_grids)} destination grids"
        )
    resampler = create_resampler(source_trans, dest_trans, method, **kwargs)
    for source, dest in zip(source_grids, dest_grids):
        resampler.add_grid(source, dest)
    resampler.perform(verbose)
    return list(dest_grids)
