"""
Test fixtures for the swathremap library.

This module contains shared test fixtures: stub transforms with exactly
known geometry, small map grids and xarray objects.
"""

import numpy as np
import pytest
import xarray as xr

from swathremap.transforms import EarthTransform, MapTransform


class LinearTransform(EarthTransform):
    """A stub transform where latitude and longitude are linear in row and column."""

    def __init__(self, dimensions, lat0=0.0, lon0=0.0, dlat=0.1, dlon=0.1):
        super().__init__(dimensions)
        self.lat0 = lat0
        self.lon0 = lon0
        self.dlat = dlat
        self.dlon = dlon

    def transform_data(self, rows, cols):
        rows = np.asarray(rows, dtype=float)
        cols = np.asarray(cols, dtype=float)
        return self.lat0 + rows * self.dlat, self.lon0 + cols * self.dlon

    def transform_earth(self, lats, lons):
        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        return (lats - self.lat0) / self.dlat, (lons - self.lon0) / self.dlon


class ClippedTransform(LinearTransform):
    """A linear transform whose inverse is invalid east of a longitude."""

    def __init__(self, dimensions, max_lon, **kwargs):
        super().__init__(dimensions, **kwargs)
        self.max_lon = max_lon

    def transform_earth(self, lats, lons):
        rows, cols = super().transform_earth(lats, lons)
        bad = np.asarray(lons) > self.max_lon
        return np.where(bad, np.nan, rows), np.where(bad, np.nan, cols)


class InvalidTransform(EarthTransform):
    """A transform with no valid locations at all."""

    def transform_data(self, rows, cols):
        shape = np.shape(rows)
        return np.full(shape, np.nan), np.full(shape, np.nan)

    def transform_earth(self, lats, lons):
        shape = np.shape(lats)
        return np.full(shape, np.nan), np.full(shape, np.nan)


@pytest.fixture
def linear_transform():
    """Factory for linear stub transforms."""
    return LinearTransform


@pytest.fixture
def clipped_transform():
    """Factory for linear stub transforms with a clipped inverse."""
    return ClippedTransform


@pytest.fixture
def invalid_transform():
    """A 20x20 transform with no valid locations."""
    return InvalidTransform((20, 20))


@pytest.fixture
def geo_map():
    """
    A 20x30 geographic grid of 1 degree pixels.

    Pixel (row, col) is centred at latitude 49.5 - row, longitude -9.5 + col.
    """
    return MapTransform.from_bounds("EPSG:4326", (20, 30), (-10.0, 30.0, 20.0, 50.0))


@pytest.fixture
def shifted_geo_map():
    """The geo_map grid moved 5 degrees east."""
    return MapTransform.from_bounds("EPSG:4326", (20, 30), (-5.0, 30.0, 25.0, 50.0))


@pytest.fixture
def source_data():
    """Reproducible 20x30 source values."""
    rng = np.random.default_rng(42)
    return rng.random((20, 30))


@pytest.fixture
def swath_dataarray():
    """A DataArray on a regular 1 degree latitude/longitude grid."""
    lats = np.arange(40.0, 50.0)
    lons = np.arange(-10.0, 5.0)
    rng = np.random.default_rng(7)
    return xr.DataArray(
        rng.random((lats.size, lons.size)),
        dims=['lat', 'lon'],
        coords={'lat': lats, 'lon': lons},
        name='temperature'
    )


@pytest.fixture
def swath_dataset(swath_dataarray):
    """A Dataset with two grid variables and one profile variable."""
    return xr.Dataset({
        'temperature': swath_dataarray,
        'pressure': swath_dataarray * 1000,
        'profile': (['level'], np.arange(3.0)),
    })
