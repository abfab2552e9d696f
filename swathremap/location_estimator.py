"""
Estimation of target data locations from reference data locations.

A LocationEstimator approximates the composed transform

    reference (row, col) -> earth location -> target (row, col)

by a pair of quadratic polynomials in each leaf of a partition built over
the reference grid. Leaves where too few samples have valid target locations
fall back to the exact composed transform, or give invalid locations in fast
mode.
"""

import logging
import warnings
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import dask
import numpy as np

from swathremap.algorithms.estimators import BivariateEstimator
from swathremap.crs.crs_manager import crs_manager
from swathremap.exceptions import EstimatorError, ValidationError
from swathremap.location import DataLocation
from swathremap.partition import EarthPartition, PartitionCache, PartitionEncoding
from swathremap.transforms import EarthTransform

logger = logging.getLogger(__name__)

# Maximum number of sampling intervals along each axis of a leaf
MAX_INTERVALS = 8

# Number of valid samples needed to fit a quadratic in two variables
MIN_FIT_POINTS = 9

# Fewer valid samples than this in the first 3x3 sampling stops the search
MIN_FIRST_ROUND_POINTS = 6

VALID_MODES = ["accurate", "fast"]


@dataclass
class PartitionData:
    """
    The estimator payload of one partition leaf.

    ``valid`` is True when both polynomials exist. ``coverage`` is True when
    at least one sample in the leaf had a valid target location.
    """

    row_est: Optional[BivariateEstimator]
    col_est: Optional[BivariateEstimator]
    valid: bool
    coverage: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row_est.get_encoding().tolist() if self.row_est is not None else None,
            "col": self.col_est.get_encoding().tolist() if self.col_est is not None else None,
            "valid": self.valid,
            "coverage": self.coverage,
        }

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "PartitionData":
        row = obj.get("row")
        col = obj.get("col")
        return cls(
            BivariateEstimator.from_encoding(row) if row is not None else None,
            BivariateEstimator.from_encoding(col) if col is not None else None,
            bool(obj["valid"]),
            bool(obj["coverage"]),
        )


def reference_points(min_loc: np.ndarray, max_loc: np.ndarray,
                     intervals: int) -> Tuple[np.ndarray, np.ndarray]:
    """Rows and columns of an (intervals + 1)^2 sampling grid over a box."""
    s = np.arange(intervals + 1) / intervals
    rows = min_loc[0] * (1 - s) + max_loc[0] * s
    cols = min_loc[1] * (1 - s) + max_loc[1] * s
    grid_rows, grid_cols = np.meshgrid(rows, cols, indexing="ij")
    return grid_rows.ravel(), grid_cols.ravel()


class LocationEstimator:
    """
    Approximates target data locations for reference data locations.

    Parameters
    ----------
    ref_trans : EarthTransform
        The reference grid transform, the independent variable.
    ref_dims : sequence of int
        The reference grid (rows, cols).
    target_trans : EarthTransform
        The target grid transform.
    target_dims : sequence of int
        The target grid (rows, cols).
    target_nav : np.ndarray, optional
        A 2x3 affine navigation correction applied to target locations.
    size : float, optional
        The maximum partition size in kilometers, 100 by default.
    n_workers : int, optional
        Number of threads used to fit the leaf polynomials. The default of 1
        fits them in the calling thread.
    """

    def __init__(self,
                 ref_trans: EarthTransform,
                 ref_dims: Sequence[int],
                 target_trans: EarthTransform,
                 target_dims: Sequence[int],
                 target_nav: Optional[np.ndarray] = None,
                 size: float = 100.0,
                 n_workers: int = 1):
        if len(ref_dims) != 2 or len(target_dims) != 2:
            raise ValidationError(
                f"Unsupported dimension rank: reference {len(ref_dims)}, target {len(target_dims)}"
            )
        self.ref_trans = ref_trans
        self.ref_dims = tuple(int(d) for d in ref_dims)
        self.target_trans = target_trans
        self.target_dims = tuple(int(d) for d in target_dims)
        self.target_nav = None if target_nav is None else np.asarray(target_nav, dtype=float)[:2]
        self._mode = "accurate"

        self.partition = EarthPartition(
            ref_trans, DataLocation(0, 0), DataLocation(*self.ref_dims), size
        )
        self._create_estimators(n_workers)
        self._build_tables()

    @property
    def mode(self) -> str:
        """The query mode, ``"accurate"`` or ``"fast"``."""
        return self._mode

    @mode.setter
    def mode(self, mode: str) -> None:
        if mode not in VALID_MODES:
            raise ValidationError(f"Mode must be one of {VALID_MODES}, got '{mode}'")
        self._mode = mode

    def _exact(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """The exact composed transform, with navigation correction."""
        lats, lons = self.ref_trans.transform_data(rows, cols)
        if self.ref_trans.datum != self.target_trans.datum:
            lats, lons = crs_manager.shift_datum(lats, lons, self.ref_trans.datum,
                                                 self.target_trans.datum)
        t_rows, t_cols = self.target_trans.transform_earth(lats, lons)
        if self.target_nav is not None:
            nav = self.target_nav
            t_rows, t_cols = (nav[0, 0] * t_rows + nav[0, 1] * t_cols + nav[0, 2],
                              nav[1, 0] * t_rows + nav[1, 1] * t_cols + nav[1, 2])
        return t_rows, t_cols

    def _fit_leaves(self, leaves: List[int]) -> List[PartitionData]:
        """Sample and fit a group of leaves. Each call uses its own arrays."""
        results: Dict[int, PartitionData] = {}
        pending = list(leaves)
        intervals = 2
        while pending and intervals <= MAX_INTERVALS:
            refs = [reference_points(self.partition.get_min(leaf).coords,
                                     self.partition.get_max(leaf).coords, intervals)
                    for leaf in pending]
            counts = [r[0].size for r in refs]
            t_rows, t_cols = self._exact(np.concatenate([r[0] for r in refs]),
                                         np.concatenate([r[1] for r in refs]))
            still_pending = []
            offset = 0
            for leaf, (ref_rows, ref_cols), n in zip(pending, refs, counts):
                tr = t_rows[offset:offset + n]
                tc = t_cols[offset:offset + n]
                offset += n
                ok = ~(np.isnan(tr) | np.isnan(tc))
                targets = int(ok.sum())
                done = ((intervals == 2 and targets < MIN_FIRST_ROUND_POINTS) or
                        targets >= MIN_FIT_POINTS or intervals * 2 > MAX_INTERVALS)
                if not done:
                    still_pending.append(leaf)
                    continue
                results[leaf] = self._leaf_data(ref_rows[ok], ref_cols[ok], tr[ok], tc[ok])
            pending = still_pending
            intervals *= 2
        return [results[leaf] for leaf in leaves]

    @staticmethod
    def _leaf_data(x: np.ndarray, y: np.ndarray,
                   f_row: np.ndarray, f_col: np.ndarray) -> PartitionData:
        targets = x.size
        if targets >= MIN_FIT_POINTS:
            try:
                row_est = BivariateEstimator(x, y, f_row, 2)
                col_est = BivariateEstimator(x, y, f_col, 2)
            except EstimatorError as e:
                logger.debug("Leaf fit failed, using exact transform: %s", e)
                return PartitionData(None, None, False, True)
            return PartitionData(row_est, col_est, True, True)
        elif targets > 0:
            return PartitionData(None, None, False, True)
        return PartitionData(None, None, False, False)

    def _create_estimators(self, n_workers: int) -> None:
        leaves = self.partition.leaves()
        if n_workers > 1 and len(leaves) > 1:
            chunks = [leaves[i::n_workers] for i in range(n_workers) if leaves[i::n_workers]]
            tasks = [dask.delayed(self._fit_leaves)(chunk) for chunk in chunks]
            results = dask.compute(*tasks, scheduler="threads", num_workers=n_workers)
            for chunk, data in zip(chunks, results):
                for leaf, item in zip(chunk, data):
                    self.partition.set_data(leaf, item)
        else:
            for leaf, item in zip(leaves, self._fit_leaves(leaves)):
                self.partition.set_data(leaf, item)
        self._log_summary()

    def _log_summary(self) -> None:
        data = [self.partition.get_data(leaf) for leaf in self.partition.leaves()]
        valid = sum(1 for d in data if d.valid)
        fallback = sum(1 for d in data if d.coverage and not d.valid)
        empty = len(data) - valid - fallback
        logger.info("Created location estimator with %d partitions: %d fitted, "
                    "%d exact fallback, %d empty", len(data), valid, fallback, empty)
        if fallback > 0 and fallback > (valid + fallback) // 4:
            warnings.warn(
                f"{fallback} of {valid + fallback} partitions with coverage could not be "
                f"fitted and will use exact transforms",
                UserWarning
            )

    def _build_tables(self) -> None:
        """Gather per-node coefficients and flags into arrays for vectorised queries."""
        n = self.partition.size()
        self._row_coefs = np.zeros((n, 3, 3))
        self._col_coefs = np.zeros((n, 3, 3))
        self._valid = np.zeros(n, dtype=bool)
        self._coverage = np.zeros(n, dtype=bool)
        for node in self.partition.leaves():
            data = self.partition.get_data(node)
            if data is None:
                continue
            self._valid[node] = data.valid
            self._coverage[node] = data.coverage
            if data.valid:
                self._row_coefs[node] = data.row_est.coefficients
                self._col_coefs[node] = data.col_est.coefficients

    def get_location(self, ref_loc: DataLocation,
                     cache: Optional[PartitionCache] = None) -> DataLocation:
        """
        Get the target location for a reference location.

        Parameters
        ----------
        ref_loc : DataLocation
            The reference data location.
        cache : PartitionCache, optional
            Caller-owned lookup cache for scans over nearby locations.

        Returns
        -------
        DataLocation
            The target location, invalid if it cannot be estimated.
        """
        leaf = self.partition.find_partition(ref_loc, cache)
        if leaf is None:
            return DataLocation.invalid(2)
        data = self.partition.get_data(leaf)
        if not data.valid:
            if not data.coverage or self._mode == "fast" or self.ref_trans is None:
                return DataLocation.invalid(2)
            rows, cols = self._exact(np.array([ref_loc.get(0)]), np.array([ref_loc.get(1)]))
            return DataLocation(rows[0], cols[0])
        return DataLocation(data.row_est.evaluate(ref_loc.coords),
                            data.col_est.evaluate(ref_loc.coords))

    def get_locations(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Get target locations for arrays of reference locations.

        Returns
        -------
        tuple of np.ndarray
            Target rows and columns, NaN where they cannot be estimated.
        """
        rows = np.asarray(rows, dtype=float)
        cols = np.asarray(cols, dtype=float)
        shape = rows.shape
        x = rows.ravel()
        y = cols.ravel()
        ids = self.partition.find_partitions(np.stack([x, y], axis=1))
        out_rows = np.full(x.size, np.nan)
        out_cols = np.full(x.size, np.nan)

        found = ids >= 0
        safe_ids = np.where(found, ids, 0)
        valid = found & self._valid[safe_ids]
        if np.any(valid):
            vid = safe_ids[valid]
            out_rows[valid] = _evaluate_quadratic(self._row_coefs[vid], x[valid], y[valid])
            out_cols[valid] = _evaluate_quadratic(self._col_coefs[vid], x[valid], y[valid])

        fallback = found & ~self._valid[safe_ids] & self._coverage[safe_ids]
        if self._mode == "accurate" and self.ref_trans is not None and np.any(fallback):
            out_rows[fallback], out_cols[fallback] = self._exact(x[fallback], y[fallback])
        return out_rows.reshape(shape), out_cols.reshape(shape)

    def get_encoding(self) -> PartitionEncoding:
        """Encode the partition and the leaf polynomials."""
        encoding = self.partition.get_encoding()
        data = tuple(d.to_dict() if d is not None else None for d in encoding.data)
        return replace(encoding, data=data)

    @classmethod
    def from_encoding(cls,
                      encoding: PartitionEncoding,
                      ref_trans: Optional[EarthTransform] = None,
                      target_trans: Optional[EarthTransform] = None,
                      target_nav: Optional[np.ndarray] = None) -> "LocationEstimator":
        """
        Rebuild an estimator from its encoding without refitting.

        The exact fallback in accurate mode needs both transforms; without
        them, leaves that could not be fitted give invalid locations.
        """
        data = tuple(PartitionData.from_dict(d) if d is not None else None
                     for d in encoding.data)
        partition = EarthPartition.from_encoding(replace(encoding, data=data), ref_trans)
        est = cls.__new__(cls)
        est.ref_trans = ref_trans if target_trans is not None else None
        est.target_trans = target_trans
        root_max = partition.get_max(0)
        est.ref_dims = (int(root_max[0]), int(root_max[1]))
        est.target_dims = tuple(target_trans.dimensions) if target_trans is not None else None
        est.target_nav = None if target_nav is None else np.asarray(target_nav, dtype=float)[:2]
        est._mode = "accurate"
        est.partition = partition
        est._build_tables()
        return est


def _evaluate_quadratic(coefs: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Evaluate per-point 3x3 coefficient matrices E[i, j] * x^i * y^j."""
    c = coefs
    return ((c[:, 0, 0] + y * (c[:, 0, 1] + y * c[:, 0, 2])) +
            x * (c[:, 1, 0] + y * (c[:, 1, 1] + y * c[:, 1, 2])) +
            x * x * (c[:, 2, 0] + y * (c[:, 2, 1] + y * c[:, 2, 2])))
