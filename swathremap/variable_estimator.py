"""
Estimation of spatially smooth data variables.

A VariableEstimator replaces a 1-D or 2-D variable, such as a sensor angle
stored at reduced resolution or a slowly varying correction term, by a
quadratic polynomial in each leaf of a partition. Several variables may
share one partition so that the tree is built and stored once.
"""

import logging
from dataclasses import replace
from typing import Callable, List, Optional, Sequence, Union

import numpy as np

from swathremap.algorithms.estimators import (
    BaseEstimator,
    BivariateEstimator,
    UnivariateEstimator,
)
from swathremap.exceptions import EstimatorError, ValidationError
from swathremap.grid import Grid
from swathremap.location import DataLocation, round_half_up
from swathremap.partition import EarthPartition, PartitionEncoding
from swathremap.transforms import EarthTransform

logger = logging.getLogger(__name__)

ValueFilter = Callable[[np.ndarray], np.ndarray]


def _as_array(values: Union[np.ndarray, Grid]) -> np.ndarray:
    if isinstance(values, Grid):
        return values.data
    return np.asarray(values, dtype=float)


class VariableEstimator:
    """
    Approximates a data variable by per-partition quadratic polynomials.

    Parameters
    ----------
    values : np.ndarray or Grid
        The 1-D or 2-D variable values, NaN where missing.
    trans : EarthTransform or None
        The transform used to size the partitions of a 2-D variable. A 1-D
        variable has no transform and is partitioned by ``max_dims`` only.
    max_size : float
        The maximum partition size in kilometers.
    max_dims : sequence of int, optional
        The maximum partition size in pixels along each axis.
    filter : callable, optional
        Applied to each set of sampled values before fitting, for example to
        unwrap angles.
    """

    def __init__(self,
                 values: Union[np.ndarray, Grid],
                 trans: Optional[EarthTransform],
                 max_size: float,
                 max_dims: Optional[Sequence[int]] = None,
                 filter: Optional[ValueFilter] = None):
        values = _as_array(values)
        if values.ndim not in (1, 2):
            raise ValidationError(f"Unsupported variable rank {values.ndim}")
        if values.ndim == 1 and trans is not None:
            raise ValidationError("1-D variables are partitioned by max_dims, not by a transform")
        min_loc = DataLocation.of_rank(values.ndim)
        max_loc = DataLocation(np.array(values.shape, dtype=float) - 1)
        self.partition = EarthPartition(trans, min_loc, max_loc, max_size, max_dims)
        for leaf in self.partition.leaves():
            self.partition.set_data(leaf, [])
        self.share_index = 0
        self._add_variable(values, filter)

    @classmethod
    def sharing(cls,
                values: Union[np.ndarray, Grid],
                other: "VariableEstimator",
                filter: Optional[ValueFilter] = None) -> "VariableEstimator":
        """Create an estimator for another variable on an existing partition."""
        est = cls.__new__(cls)
        est.partition = other.partition
        est.share_index = est._next_share_index()
        est._add_variable(_as_array(values), filter)
        return est

    def _next_share_index(self) -> int:
        first = self.partition.leaves()[0]
        return len(self.partition.get_data(first))

    def _add_variable(self, values: np.ndarray, filter: Optional[ValueFilter]) -> None:
        if values.ndim != self.partition.rank:
            raise ValidationError(
                f"Variable rank {values.ndim} does not match partition rank {self.partition.rank}"
            )
        fitted = 0
        leaves = self.partition.leaves()
        for leaf in leaves:
            func = self._fit_leaf(values, leaf, filter)
            self.partition.get_data(leaf).append(func)
            fitted += func is not None
        logger.info("Created variable estimator %d with %d of %d partitions fitted",
                    self.share_index, fitted, len(leaves))

    def _fit_leaf(self, values: np.ndarray, leaf: int,
                  filter: Optional[ValueFilter]) -> Optional[BaseEstimator]:
        """Fit a leaf from its rounded corner and middle samples."""
        lo = self.partition.get_min(leaf).coords
        hi = self.partition.get_max(leaf).coords
        axes = [round_half_up(np.array([lo[i], (lo[i] + hi[i]) / 2, hi[i]]))
                for i in range(lo.size)]
        for ax in axes:
            if ax[0] == ax[1] or ax[1] == ax[2]:
                return None

        if values.ndim == 1:
            x = axes[0]
            f = values[x.astype(int)]
        else:
            # x varies fastest, matching a 3x3 sample grid listed row by row
            y, x = np.meshgrid(axes[1], axes[0], indexing="ij")
            x = x.ravel()
            y = y.ravel()
            f = values[x.astype(int), y.astype(int)]
        if np.any(np.isnan(f)):
            return None
        if filter is not None:
            f = np.asarray(filter(np.array(f, dtype=float)), dtype=float)

        try:
            if values.ndim == 1:
                return UnivariateEstimator(x, f, 2)
            return BivariateEstimator(x, y, f, 2)
        except EstimatorError as e:
            logger.debug("Variable fit failed for partition %d: %s", leaf, e)
            return None

    def get_value(self, loc: DataLocation) -> float:
        """Estimate the variable at a data location, NaN outside or in unfitted partitions."""
        leaf = self.partition.find_partition(loc)
        if leaf is None:
            return np.nan
        func = self.partition.get_data(leaf)[self.share_index]
        if func is None:
            return np.nan
        return func.evaluate(loc.coords)

    def get_values(self, coords: np.ndarray) -> np.ndarray:
        """
        Estimate the variable at many locations.

        Parameters
        ----------
        coords : np.ndarray
            Array of shape (N, rank).
        """
        coords = np.asarray(coords, dtype=float).reshape(-1, self.partition.rank)
        ids = self.partition.find_partitions(coords)
        out = np.full(ids.size, np.nan)
        for leaf in np.unique(ids[ids >= 0]):
            func = self.partition.get_data(int(leaf))[self.share_index]
            if func is None:
                continue
            sel = ids == leaf
            out[sel] = func.evaluate_many(*coords[sel].T)
        return out

    def get_encoding(self) -> PartitionEncoding:
        """Encode the partition with this variable's coefficients."""
        encoding = self.partition.get_encoding()
        data = tuple(
            None if d is None or d[self.share_index] is None
            else d[self.share_index].get_encoding().tolist()
            for d in encoding.data
        )
        return replace(encoding, data=data)

    @classmethod
    def from_encoding(cls,
                      encoding: PartitionEncoding,
                      share_with: Optional["VariableEstimator"] = None) -> "VariableEstimator":
        """
        Rebuild an estimator from its encoding.

        With ``share_with`` the coefficients are added to that estimator's
        partition, which must have the same structure.
        """
        est = cls.__new__(cls)
        if share_with is None:
            est.partition = EarthPartition.from_encoding(
                replace(encoding, data=(None,) * len(encoding.bits))
            )
            for leaf in est.partition.leaves():
                est.partition.set_data(leaf, [])
        else:
            if len(encoding.bits) != share_with.partition.size():
                raise ValidationError("Encoding does not match the shared partition")
            est.partition = share_with.partition
        est.share_index = est._next_share_index()

        coefs = encoding.data if encoding.data else (None,) * len(encoding.bits)
        order = est.partition.preorder()
        for node, item in zip(order, coefs):
            if not est.partition.is_leaf(node):
                continue
            est.partition.get_data(node).append(_decode_function(item))
        return est


def _decode_function(item: Optional[List[float]]) -> Optional[BaseEstimator]:
    if item is None:
        return None
    if len(item) == 3:
        return UnivariateEstimator.from_encoding(item)
    if len(item) == 9:
        return BivariateEstimator.from_encoding(item)
    return None
