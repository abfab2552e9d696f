"""
Raster storage used by the resamplers.

A Grid wraps a 2-D floating point numpy array with NaN as the missing value,
and an optional navigation correction: a 2-D affine applied to data
locations before the storage is accessed.
"""

from typing import Optional, Sequence, Tuple, Union

import numpy as np
import xarray as xr

from swathremap.exceptions import ValidationError
from swathremap.location import DataLocation, round_half_up

IDENTITY_NAVIGATION = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])


class Grid:
    """
    A named 2-D data variable.

    Parameters
    ----------
    name : str
        The variable name.
    data : np.ndarray or xr.DataArray
        The 2-D values. Integer data is converted to float so that missing
        values can be stored as NaN.
    navigation : np.ndarray, optional
        A 2x3 affine matrix mapping nominal (row, col) to corrected (row, col).
    """

    def __init__(self,
                 name: str,
                 data: Union[np.ndarray, xr.DataArray],
                 navigation: Optional[np.ndarray] = None):
        if isinstance(data, xr.DataArray):
            data = data.values
        data = np.asarray(data)
        if data.ndim != 2:
            raise ValidationError(f"Grid data must be 2-D, got {data.ndim} dimensions")
        if not np.issubdtype(data.dtype, np.floating):
            data = data.astype(float)
        self.name = name
        self.data = data
        self.navigation = navigation

    @classmethod
    def empty(cls, name: str, dimensions: Sequence[int], dtype=float) -> "Grid":
        """Create a grid filled with missing values."""
        return cls(name, np.full(tuple(dimensions), np.nan, dtype=dtype))

    @property
    def dimensions(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def navigation(self) -> np.ndarray:
        return self._navigation.copy()

    @navigation.setter
    def navigation(self, affine: Optional[np.ndarray]) -> None:
        if affine is None:
            self._navigation = IDENTITY_NAVIGATION.copy()
            return
        affine = np.asarray(affine, dtype=float)
        if affine.shape == (3, 3):
            affine = affine[:2]
        if affine.shape != (2, 3):
            raise ValidationError(f"Navigation must be a 2x3 affine matrix, got shape {affine.shape}")
        self._navigation = affine.copy()

    def has_navigation(self) -> bool:
        """True when the navigation correction is not the identity."""
        return not np.array_equal(self._navigation, IDENTITY_NAVIGATION)

    def navigate(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Apply the navigation correction to data coordinates."""
        if not self.has_navigation():
            return rows, cols
        nav = self._navigation
        return (nav[0, 0] * rows + nav[0, 1] * cols + nav[0, 2],
                nav[1, 0] * rows + nav[1, 1] * cols + nav[1, 2])

    def get_value(self, row: int, col: int) -> float:
        """Get a value, or NaN when the location is out of bounds."""
        rows, cols = self.dimensions
        if 0 <= row < rows and 0 <= col < cols:
            return float(self.data[row, col])
        return np.nan

    def set_value(self, row: int, col: int, value: float) -> None:
        self.data[row, col] = value

    def get_values(self, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
        """
        Get values at integer coordinates.

        NaN and out of bounds coordinates give NaN values.
        """
        rows = np.asarray(rows, dtype=float)
        cols = np.asarray(cols, dtype=float)
        n_rows, n_cols = self.dimensions
        ok = (rows >= 0) & (rows <= n_rows - 1) & (cols >= 0) & (cols <= n_cols - 1)
        out = np.full(rows.shape, np.nan, dtype=self.data.dtype)
        out[ok] = self.data[rows[ok].astype(np.intp), cols[ok].astype(np.intp)]
        return out

    def set_values(self, rows: np.ndarray, cols: np.ndarray, values: np.ndarray) -> None:
        self.data[np.asarray(rows, dtype=np.intp), np.asarray(cols, dtype=np.intp)] = values

    def get_value_at(self, loc: DataLocation) -> float:
        """Get the value nearest a data location after navigation correction."""
        nav_loc = loc.transform(self._navigation) if self.has_navigation() else loc
        if nav_loc.is_invalid():
            return np.nan
        row, col = round_half_up(nav_loc.coords)
        return self.get_value(int(row), int(col))

    def to_dataarray(self, **kwargs) -> xr.DataArray:
        """Wrap the values in an xarray DataArray named after the grid."""
        return xr.DataArray(self.data, name=self.name, **kwargs)

    def __repr__(self) -> str:
        return f"Grid(name={self.name!r}, dimensions={self.dimensions})"
