"""
Tests for the map and swath geolocation transforms.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from swathremap.exceptions import ValidationError
from swathremap.location import DataLocation, EarthLocation
from swathremap.transforms import MapTransform, SwathTransform


@pytest.fixture
def swath(geo_map):
    """A swath transform with the same pixel centres as geo_map."""
    rows, cols = np.meshgrid(np.arange(20.0), np.arange(30.0), indexing="ij")
    lats, lons = geo_map.transform_data(rows, cols)
    return SwathTransform(lats, lons)


class TestMapTransform:
    """Test MapTransform."""

    def test_geographic_pixel_centres(self, geo_map):
        lats, lons = geo_map.transform_data(np.array([0.0, 19.0]), np.array([0.0, 29.0]))
        assert_allclose(lats, [49.5, 30.5])
        assert_allclose(lons, [-9.5, 19.5])
        rows, cols = geo_map.transform_earth(lats, lons)
        assert_allclose(rows, [0.0, 19.0])
        assert_allclose(cols, [0.0, 29.0])

    def test_longitude_convention(self, geo_map):
        """Longitudes are matched to the grid modulo 360."""
        rows, cols = geo_map.transform_earth(np.array([40.5]), np.array([350.5]))
        assert_allclose(rows, [9.0])
        assert_allclose(cols, [0.0])

    def test_projected_round_trip(self):
        trans = MapTransform.from_bounds("EPSG:3857", (10, 10), (0.0, 0.0, 1e6, 1e6))
        assert trans.crs.is_projected
        rows, cols = np.meshgrid(np.arange(10.0), np.arange(10.0), indexing="ij")
        lats, lons = trans.transform_data(rows, cols)
        assert np.all(np.isfinite(lats))
        back_rows, back_cols = trans.transform_earth(lats, lons)
        assert_allclose(back_rows, rows, atol=1e-6)
        assert_allclose(back_cols, cols, atol=1e-6)

    def test_scalar_conversions(self, geo_map):
        earth = geo_map.data_to_earth(DataLocation(10, 15))
        assert earth == EarthLocation(39.5, 5.5)
        assert geo_map.earth_to_data(earth) == DataLocation(10, 15)

    def test_resolution(self, geo_map):
        """A 1 degree pixel is about 111 km tall and narrower away from the equator."""
        res = geo_map.get_resolution(DataLocation(10, 15))
        assert_allclose(res, [111.2, 111.2 * np.cos(np.radians(39.5))], rtol=1e-2)

    def test_invalid_arguments(self):
        with pytest.raises(ValidationError):
            MapTransform("not a crs", (10, 10), (0, 1, 0, 0, 0, -1))
        with pytest.raises(ValidationError):
            MapTransform(4326, (10, 10), (0, 1, 0, 0, 0))
        with pytest.raises(ValidationError):
            MapTransform(4326, (10, 10), (0, 1, 1, 0, 1, 1))
        with pytest.raises(ValidationError):
            MapTransform(4326, (10, 10, 2), (0, 1, 0, 0, 0, -1))

    def test_geocentric_crs_rejected(self):
        """Only geographic and projected CRS describe map grids."""
        with pytest.raises(ValidationError, match="geographic or projected"):
            MapTransform("EPSG:4978", (10, 10), (0, 1, 0, 0, 0, -1))


class TestSwathTransform:
    """Test SwathTransform."""

    def test_pixel_centres(self, swath, geo_map):
        """Pixel centres map exactly in both directions."""
        rows, cols = np.meshgrid(np.arange(20.0), np.arange(30.0), indexing="ij")
        lats, lons = swath.transform_data(rows, cols)
        exp_lats, exp_lons = geo_map.transform_data(rows, cols)
        assert_allclose(lats, exp_lats, atol=1e-9)
        assert_allclose(lons, exp_lons, atol=1e-9)
        back_rows, back_cols = swath.transform_earth(lats, lons)
        assert_allclose(back_rows, rows, atol=1e-6)
        assert_allclose(back_cols, cols, atol=1e-6)

    def test_between_centres(self, swath):
        lats, lons = swath.transform_data(np.array([10.0]), np.array([15.5]))
        assert_allclose(lons, [6.0], atol=1e-9)
        rows, cols = swath.transform_earth(lats, lons)
        assert_allclose(rows, [10.0], atol=0.02)
        assert_allclose(cols, [15.5], atol=0.02)

    def test_far_location_is_invalid(self, swath):
        rows, cols = swath.transform_earth(np.array([0.0, np.nan]), np.array([100.0, 0.0]))
        assert np.all(np.isnan(rows)) and np.all(np.isnan(cols))

    def test_extrapolation_limit(self, swath):
        """Locations up to one pixel outside the grid are extrapolated."""
        lats, _ = swath.transform_data(np.array([-1.0, -1.5]), np.array([0.0, 0.0]))
        assert_allclose(lats[0], 50.5, atol=1e-2)
        assert np.isnan(lats[1])

    def test_antimeridian(self):
        """Interpolation is continuous across the antimeridian."""
        rows, cols = np.meshgrid(np.arange(10.0), np.arange(10.0), indexing="ij")
        lons = ((175.0 + cols + 180.0) % 360.0) - 180.0
        trans = SwathTransform(rows, lons)
        lats, mid = trans.transform_data(np.array([5.0, 5.0]), np.array([4.5, 5.5]))
        assert_allclose(mid, [179.5, -179.5], atol=1e-9)
        back_rows, back_cols = trans.transform_earth(lats, mid)
        assert_allclose(back_cols, [4.5, 5.5], atol=0.02)

    def test_missing_geolocation(self, geo_map):
        """Pixels without geolocation are not found by the inverse transform."""
        rows, cols = np.meshgrid(np.arange(20.0), np.arange(30.0), indexing="ij")
        lats, lons = geo_map.transform_data(rows, cols)
        lats[:, :5] = np.nan
        lons[:, :5] = np.nan
        trans = SwathTransform(lats, lons)
        back_rows, _ = trans.transform_earth(np.array([40.5, 40.5]), np.array([10.5, -9.5]))
        assert_allclose(back_rows[0], 9.0, atol=1e-6)
        assert np.isnan(back_rows[1])

    def test_invalid_arrays(self):
        with pytest.raises(ValidationError):
            SwathTransform(np.zeros((3, 3)), np.zeros((3, 4)))
        with pytest.raises(ValidationError):
            SwathTransform(np.full((3, 3), np.nan), np.full((3, 3), np.nan))
        with pytest.raises(ValidationError):
            SwathTransform(np.zeros((1, 3)), np.zeros((1, 3)))
