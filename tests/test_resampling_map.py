"""
Tests for resampling maps, map factories and the resampling diagnostic.
"""

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from swathremap.exceptions import GeolocationError, ValidationError
from swathremap.resampling_map import (
    NO_MAPPING,
    DirectResamplingMapFactory,
    GenericSourceImp,
    NearestResamplingMapFactory,
    ResamplingDiagnostic,
    ResamplingMap,
    ResamplingMapFactory,
)
from swathremap.transforms import MapTransform


class OffByOneFactory(ResamplingMapFactory):
    """Maps every destination pixel one column to the east of the nearest source pixel."""

    def create(self, start, length):
        rows, cols = np.meshgrid(np.arange(start[0], start[0] + length[0]),
                                 np.arange(start[1], start[1] + length[1]), indexing="ij")
        last = self.source_trans.dimensions[1] - 1
        return ResamplingMap(start, length, rows, np.minimum(cols + 1, last))


@pytest.fixture
def far_map():
    """A small grid far east of geo_map."""
    return MapTransform.from_bounds("EPSG:4326", (5, 5), (100.0, 0.0, 105.0, 5.0))


class TestResamplingMap:
    """Test ResamplingMap."""

    def test_lookup(self):
        rmap = ResamplingMap((2, 3), (2, 2), [1, NO_MAPPING, 3, 4], [5, NO_MAPPING, 7, 8])
        assert rmap.map((2, 3)) == (1, 5)
        assert rmap.map((2, 4)) is None
        assert rmap.map((3, 4)) == (4, 8)
        assert rmap.count() == 3
        assert_array_equal(rmap.valid, [[True, False], [True, True]])

    def test_outside_block(self):
        rmap = ResamplingMap((2, 3), (2, 2), np.zeros(4), np.zeros(4))
        assert rmap.map((1, 3)) is None
        assert rmap.map((2, 5)) is None

    def test_size_mismatch(self):
        with pytest.raises(ValidationError, match="entries"):
            ResamplingMap((0, 0), (2, 2), np.zeros(3), np.zeros(4))


class TestDirectFactory:
    """Test DirectResamplingMapFactory."""

    def test_identity(self, geo_map):
        factory = DirectResamplingMapFactory(geo_map, geo_map)
        assert not factory.datum_shift
        rmap = factory.create((0, 0), (20, 30))
        assert rmap.count() == 600
        rows, cols = np.meshgrid(np.arange(20), np.arange(30), indexing="ij")
        assert_array_equal(rmap.row_map, rows)
        assert_array_equal(rmap.col_map, cols)

    def test_block(self, geo_map, shifted_geo_map):
        factory = DirectResamplingMapFactory(geo_map, shifted_geo_map)
        rmap = factory.create((5, 20), (4, 10))
        assert rmap.start == (5, 20)
        assert rmap.map((6, 22)) == (6, 27)
        assert rmap.map((6, 25)) is None
        assert rmap.map((0, 0)) is None

    def test_no_overlap(self, geo_map, far_map):
        factory = DirectResamplingMapFactory(geo_map, far_map)
        assert factory.create((0, 0), (5, 5)) is None


class TestGenericSourceImp:
    """Test the swath edge checks."""

    def test_all_pixels_valid(self, geo_map):
        imp = GenericSourceImp(geo_map)
        assert imp.window_size == 3
        assert np.all(imp.is_valid_location(np.arange(5), np.arange(5)))

    def test_top_edge(self, geo_map):
        """Locations beyond the top edge pixel are rejected."""
        imp = GenericSourceImp(geo_map)
        ok = imp.is_valid_nearest_location(np.array([49.8, 49.2]), np.array([0.5, 0.5]),
                                           np.array([0, 0]), np.array([10, 10]))
        assert_array_equal(ok, [False, True])

    def test_interior_pixels_not_checked(self, geo_map):
        imp = GenericSourceImp(geo_map)
        ok = imp.is_valid_nearest_location(np.array([10.0]), np.array([100.0]),
                                           np.array([5]), np.array([5]))
        assert_array_equal(ok, [True])

    def test_corner(self, geo_map):
        """Corner pixels check both of their edges."""
        imp = GenericSourceImp(geo_map)
        ok = imp.is_valid_nearest_location(np.array([49.2, 49.2, 49.8]),
                                           np.array([-9.2, -9.8, -9.2]),
                                           np.zeros(3, dtype=int), np.zeros(3, dtype=int))
        assert_array_equal(ok, [True, False, False])

    def test_right_and_bottom_edges(self, geo_map):
        imp = GenericSourceImp(geo_map)
        ok = imp.is_valid_nearest_location(np.array([40.5, 40.5, 30.2, 30.8]),
                                           np.array([19.8, 19.2, 5.5, 5.5]),
                                           np.array([9, 9, 19, 19]), np.array([29, 29, 15, 15]))
        assert_array_equal(ok, [False, True, False, True])

    def test_exact_edge_location_rejected(self, geo_map):
        """A location exactly at an edge pixel centre is not inside the swath."""
        imp = GenericSourceImp(geo_map)
        ok = imp.is_valid_nearest_location(np.array([49.5]), np.array([0.5]),
                                           np.array([0]), np.array([10]))
        assert_array_equal(ok, [False])


class TestNearestFactory:
    """Test NearestResamplingMapFactory."""

    def test_shifted_destination(self, geo_map, shifted_geo_map):
        """Interior destination pixels map to the coincident source pixel."""
        factory = NearestResamplingMapFactory(geo_map, shifted_geo_map)
        assert factory.resolution == pytest.approx(111.2, rel=0.01)
        rmap = factory.create((0, 0), (20, 30))
        for i in range(1, 19):
            for j in range(24):
                assert rmap.map((i, j)) == (i, j + 5)
            for j in range(24, 30):
                assert rmap.map((i, j)) is None
        assert rmap.map((0, 10)) is None
        assert rmap.map((19, 10)) is None

    def test_between_pixels(self, geo_map):
        """Locations between source centres map to the nearest one."""
        dest = MapTransform.from_bounds("EPSG:4326", (10, 10), (-2.0, 38.0, 3.0, 43.0))
        factory = NearestResamplingMapFactory(geo_map, dest)
        rmap = factory.create((0, 0), (10, 10))
        # dest pixel (0, 0) is centred at 42.75N 1.75W
        assert rmap.map((0, 0)) == (7, 8)
        assert rmap.count() == 100

    def test_no_overlap(self, geo_map, far_map):
        factory = NearestResamplingMapFactory(geo_map, far_map)
        assert factory.create((0, 0), (5, 5)) is None

    def test_unknown_resolution(self, invalid_transform, geo_map):
        with pytest.raises(GeolocationError):
            NearestResamplingMapFactory(invalid_transform, geo_map)


class TestResamplingDiagnostic:
    """Test ResamplingDiagnostic."""

    def test_nearest_is_optimal(self, geo_map, shifted_geo_map):
        imp = GenericSourceImp(geo_map)
        factory = NearestResamplingMapFactory(geo_map, shifted_geo_map, imp)
        diag = ResamplingDiagnostic(geo_map, imp, shifted_geo_map, factory, factor=1.0)
        assert diag.stride == 1
        rmap = diag.create((0, 0), (20, 30))
        assert rmap.count() == 18 * 24
        diag.complete()
        assert diag.sample_count == 18 * 24
        assert diag.suboptimal_count == 0
        assert diag.dist_stats["max"] == 0.0
        assert diag.omega_stats["min"] == 1.0

    def test_sampling_stride(self, geo_map):
        imp = GenericSourceImp(geo_map)
        factory = DirectResamplingMapFactory(geo_map, geo_map)
        diag = ResamplingDiagnostic(geo_map, imp, geo_map, factory, factor=0.25)
        assert diag.stride == 2
        diag.create((0, 0), (20, 30))
        diag.complete()
        assert diag.sample_count == 10 * 15
        frame = diag.to_dataframe()
        assert list(frame.columns) == ["dest_row", "dest_col", "source_row", "source_col",
                                       "optimal_row", "optimal_col", "dist", "dist_error", "omega"]
        assert set(frame["dest_row"]) == set(range(0, 20, 2))

    def test_suboptimal_factory(self, geo_map):
        """A factory that picks a neighbouring pixel is reported as suboptimal."""
        imp = GenericSourceImp(geo_map)
        diag = ResamplingDiagnostic(geo_map, imp, geo_map, OffByOneFactory(geo_map, geo_map),
                                    factor=1.0)
        diag.create((0, 0), (20, 15))
        diag.create((0, 15), (20, 15))
        diag.complete()
        assert diag.sample_count == 600
        assert diag.suboptimal_count == 580
        worse = diag.get_suboptimal_list()
        assert all(info.optimal_coords == info.dest_coords for info in worse)
        assert all(info.dist_error > 0 for info in worse)
        assert all(info.omega == 0.0 for info in worse)
        assert diag.dist_error_stats["min"] == 0.0

    def test_invalid_factor(self, geo_map):
        imp = GenericSourceImp(geo_map)
        factory = DirectResamplingMapFactory(geo_map, geo_map)
        for factor in (0, 1.5, -0.5):
            with pytest.raises(ValidationError, match="Sampling factor"):
                ResamplingDiagnostic(geo_map, imp, geo_map, factory, factor=factor)

    def test_statistics_before_complete(self, geo_map):
        imp = GenericSourceImp(geo_map)
        factory = DirectResamplingMapFactory(geo_map, geo_map)
        diag = ResamplingDiagnostic(geo_map, imp, geo_map, factory)
        assert diag.stride == 10
        diag.create((0, 0), (20, 30))
        with pytest.raises(ValidationError, match="complete"):
            diag.sample_count
        with pytest.raises(ValidationError):
            diag.to_dataframe()
