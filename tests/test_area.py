"""
Tests for earth areas.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from swathremap.area import N_CELLS, EarthArea, cell_index, translate
from swathremap.exceptions import GeolocationError, ValidationError
from swathremap.location import EarthLocation


class TestCellHelpers:
    """Test the cell index helpers."""

    def test_cell_index(self):
        """Cells are indexed by their lower-left corner, invalid locations give -1."""
        assert_array_equal(cell_index([-90.0, 0.5, 90.0, np.nan], [-180.0, 0.5, 179.5, 0.0]),
                           [0, 90 * 360 + 180, 179 * 360 + 359, -1])

    def test_translate_over_pole(self):
        lats, lons = translate(np.array([89.5]), np.array([10.5]), 1, 0)
        assert_allclose(lats, [89.5])
        assert_allclose(lons, [-169.5])


class TestEarthArea:
    """Test EarthArea."""

    def test_from_transform(self, geo_map):
        """The area covers the grid cells plus one ring."""
        area = EarthArea.from_transform(geo_map)
        assert area.contains(EarthLocation(40, 5))
        assert not area.contains(EarthLocation(-40, 100))
        assert area.contains(EarthLocation(50.2, 5))
        assert not area.contains(EarthLocation(51.5, 5))
        assert area.get_extremes() == [51, 29, 21, -11]
        assert area.count() == 22 * 32

    def test_contains_many(self, geo_map):
        area = EarthArea.from_transform(geo_map)
        assert_array_equal(area.contains_many([40.0, 40.0, np.nan], [5.0, 30.0, 5.0]),
                           [True, False, False])

    def test_antimeridian_extremes(self):
        """An area touching both sides of the antimeridian reports east beyond 180."""
        area = EarthArea()
        area.add(EarthLocation(0.5, 179.5))
        area.add(EarthLocation(0.5, -179.5))
        assert area.get_extremes() == [1, 0, 181, 179]

    def test_empty(self):
        area = EarthArea()
        assert area.is_empty()
        assert area.get_extremes() == [0, 0, 0, 0]
        area.add_all()
        assert area.count() == N_CELLS

    def test_add_remove(self):
        area = EarthArea()
        loc = EarthLocation(10.5, 20.5)
        area.add(loc)
        assert area.contains_cell((10, 20))
        assert list(area) == [(10, 20)]
        area.remove(loc)
        assert area.is_empty()
        assert not area.contains_cell((90, 0))

    def test_add_many(self):
        area = EarthArea()
        area.add_many(np.array([10.5, np.nan, 10.7]), np.array([20.5, 0.0, 20.2]))
        assert area.count() == 1

    def test_intersection(self, geo_map, shifted_geo_map):
        a = EarthArea.from_transform(geo_map)
        b = EarthArea.from_transform(shifted_geo_map)
        both = a.intersection(b)
        assert both.count() == 22 * 27
        assert both.get_extremes() == [51, 29, 21, -6]

    def test_bytes_round_trip(self, geo_map):
        area = EarthArea.from_transform(geo_map)
        copy = EarthArea.from_bytes(area.to_bytes())
        assert copy == area
        assert copy is not area

    def test_copy_is_independent(self):
        area = EarthArea()
        copy = area.copy()
        copy.add(EarthLocation(0, 0))
        assert area.is_empty()

    def test_wrong_cell_count(self):
        with pytest.raises(ValidationError):
            EarthArea(np.zeros(10, dtype=bool))

    def test_invalid_centre(self, invalid_transform):
        with pytest.raises(GeolocationError):
            EarthArea.from_transform(invalid_transform)
