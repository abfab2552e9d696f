"""
swathremap Accessor implementation.

This module implements the xarray accessor that provides the .swathremap interface.
"""

import logging
from typing import List, Tuple, Union

import numpy as np
import xarray as xr

from swathremap.crs.crs_manager import WGS84, Datum
from swathremap.exceptions import ValidationError
from swathremap.grid import Grid
from swathremap.transforms import SwathTransform

logger = logging.getLogger(__name__)

LATITUDE_NAMES = ("lat", "latitude")
LONGITUDE_NAMES = ("lon", "longitude")


@xr.register_dataset_accessor("swathremap")
@xr.register_dataarray_accessor("swathremap")
class SwathRemapAccessor:
    """
    xarray accessor for swathremap functionality.

    This accessor provides methods for:
    - Building a swath transform from latitude/longitude coordinates
    - Resampling data variables onto another object's grid
    """

    def __init__(self, xarray_obj: Union[xr.Dataset, xr.DataArray]):
        self._obj = xarray_obj
        self._name = "swathremap"

    def _find_coord(self, names: Tuple[str, ...]) -> str:
        coords = [str(name) for name in self._obj.coords]
        for name in coords:
            if name.lower() in names:
                return name
        raise ValidationError(
            f"Could not find a coordinate named one of {list(names)}, "
            f"available coordinates: {coords}"
        )

    def coordinate_names(self) -> Tuple[str, str]:
        """Get the names of the latitude and longitude coordinates."""
        return self._find_coord(LATITUDE_NAMES), self._find_coord(LONGITUDE_NAMES)

    def _grid_coordinates(self) -> Tuple[np.ndarray, np.ndarray, Tuple[str, str]]:
        """
        Get 2-D latitude and longitude arrays and the grid dimension names.

        1-D coordinates of a regular grid are expanded to 2-D.
        """
        lat_name, lon_name = self.coordinate_names()
        lat = self._obj.coords[lat_name]
        lon = self._obj.coords[lon_name]
        if lat.ndim == 2 and lon.ndim == 2:
            if lat.dims != lon.dims:
                raise ValidationError(
                    f"Latitude dims {lat.dims} do not match longitude dims {lon.dims}"
                )
            return lat.values, lon.values, (str(lat.dims[0]), str(lat.dims[1]))
        if lat.ndim == 1 and lon.ndim == 1:
            lons, lats = np.meshgrid(lon.values, lat.values)
            return lats, lons, (str(lat.dims[0]), str(lon.dims[0]))
        raise ValidationError(
            f"Latitude and longitude must both be 1-D or 2-D, got {lat.ndim}-D and {lon.ndim}-D"
        )

    def transform(self, datum: Datum = WGS84) -> SwathTransform:
        """
        Build a swath transform from the latitude/longitude coordinates.

        Parameters
        ----------
        datum : Datum, optional
            The datum of the coordinates, WGS 84 by default.
        """
        lats, lons, _ = self._grid_coordinates()
        return SwathTransform(lats, lons, datum=datum)

    def _variables(self, dims: Tuple[str, str]) -> List[xr.DataArray]:
        if isinstance(self._obj, xr.DataArray):
            if tuple(str(d) for d in self._obj.dims) != dims:
                raise ValidationError(
                    f"DataArray dims {self._obj.dims} do not match grid dims {dims}"
                )
            return [self._obj]
        return [var for var in self._obj.data_vars.values()
                if tuple(str(d) for d in var.dims) == dims]

    def resample_to(
        self,
        target: Union[xr.Dataset, xr.DataArray],
        method: str = "inverse",
        verbose: bool = False,
        **kwargs
    ) -> Union[xr.Dataset, xr.DataArray]:
        """
        Resample the current dataset/dataarray to the target's grid.

        Parameters
        ----------
        target : xr.Dataset or xr.DataArray
            Any object with latitude/longitude coordinates describing the
            destination grid
        method : str, optional
            The resampling method to use (default: 'inverse')
            Options: 'direct', 'inverse', 'mixed'
        verbose : bool, optional
            Log progress at INFO level
        **kwargs
            Additional keyword arguments for the resampler

        Returns
        -------
        xr.Dataset or xr.DataArray
            The resampled data on the target's coordinates. Data variables
            that are not on the source grid are left out of a Dataset.
        """
        from swathremap.core import perform

        if not isinstance(target, (xr.Dataset, xr.DataArray)):
            raise TypeError(f"target must be xr.Dataset or xr.DataArray, got {type(target)}")

        _, _, source_dims = self._grid_coordinates()
        source_trans = self.transform()
        target_accessor = target.swathremap
        _, _, target_dims = target_accessor._grid_coordinates()
        dest_trans = target_accessor.transform()

        variables = self._variables(source_dims)
        if self.has_dask():
            logger.info("Loading %d dask backed variable(s) for resampling", len(variables))
            variables = [var.compute() for var in variables]
        names = [str(var.name) if var.name is not None else "data" for var in variables]
        source_grids = [Grid(name, var.values) for name, var in zip(names, variables)]
        dest_grids = [Grid.empty(name, dest_trans.dimensions) for name in names]
        logger.debug("Resampling %d variable(s) with method '%s'", len(variables), method)
        perform(source_grids, dest_grids, source_trans, dest_trans, method=method,
                verbose=verbose, **kwargs)

        lat_name, lon_name = target_accessor.coordinate_names()
        coords = {lat_name: target.coords[lat_name], lon_name: target.coords[lon_name]}
        results = [
            xr.DataArray(grid.data, dims=target_dims, coords=coords, name=var.name, attrs=var.attrs)
            for grid, var in zip(dest_grids, variables)
        ]
        if isinstance(self._obj, xr.DataArray):
            return results[0]
        return xr.Dataset({str(r.name): r for r in results}, attrs=self._obj.attrs)

    def has_dask(self) -> bool:
        """
        Check if the xarray object contains Dask arrays.

        Returns
        -------
        bool
            True if any data variables use Dask arrays, False otherwise
        """
        if isinstance(self._obj, xr.DataArray):
            return hasattr(self._obj.data, 'chunks')
        return any(hasattr(var.data, 'chunks') for var in self._obj.data_vars.values())
