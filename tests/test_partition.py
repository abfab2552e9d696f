"""
Tests for the spatial partition tree.
"""

import json

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from swathremap.exceptions import PartitionError, ValidationError
from swathremap.location import DataLocation
from swathremap.partition import (
    ENCODING_VERSION,
    EarthPartition,
    PartitionCache,
    PartitionEncoding,
)


@pytest.fixture
def partition(linear_transform):
    """A partition of a 60x80 grid of roughly 11 km pixels into 100 km leaves."""
    trans = linear_transform((60, 80))
    return EarthPartition(trans, DataLocation(0, 0), DataLocation(59, 79), 100.0)


class TestEarthPartition:
    """Test EarthPartition construction and queries."""

    def test_leaf_sizes(self, partition):
        """Every leaf is no larger than the maximum size along each axis."""
        trans = partition.trans
        assert partition.partitions() > 1
        for leaf in partition.leaves():
            lo = partition.get_min(leaf).coords
            hi = partition.get_max(leaf).coords
            assert trans.distance(DataLocation(lo), DataLocation(hi[0], lo[1])) <= 100.0
            assert trans.distance(DataLocation(lo), DataLocation(lo[0], hi[1])) <= 100.0

    def test_node_counts(self, partition):
        """A binary tree has one fewer internal node than leaves."""
        assert partition.size() == 2 * partition.partitions() - 1
        assert len(partition.leaves()) == partition.partitions()
        assert partition.preorder()[0] == 0

    def test_leaves_cover_root(self, partition):
        """Every point of the box is found in a leaf."""
        rng = np.random.default_rng(0)
        coords = rng.uniform([0, 0], [59, 79], size=(500, 2))
        ids = partition.find_partitions(coords)
        assert np.all(ids >= 0)
        assert all(partition.is_leaf(int(i)) for i in ids)
        for node, point in zip(ids, coords):
            assert DataLocation(point).is_contained(partition.get_min(int(node)),
                                                    partition.get_max(int(node)))

    def test_outside_point(self, partition):
        assert partition.find_partition(DataLocation(-1, 0)) is None
        assert partition.find_partition(DataLocation(1, 2, 3)) is None
        assert_array_equal(partition.find_partitions(np.array([[0, 80.5]])), [-1])

    def test_cached_lookup_matches_descent(self, partition):
        """A row-major scan with a cache finds the same leaves, split planes included."""
        cache = PartitionCache()
        rows, cols = np.meshgrid(np.arange(60.0), np.arange(80.0), indexing="ij")
        coords = np.stack([rows.ravel(), cols.ravel()], axis=1)
        vectorised = partition.find_partitions(coords)
        for point, expected in zip(coords, vectorised):
            loc = DataLocation(point)
            assert partition.find_partition(loc) == expected
            assert partition.find_partition(loc, cache) == expected
        assert cache.last is not None
        cache.clear()
        assert cache.last is None

    def test_payloads(self, partition):
        leaf = partition.leaves()[0]
        assert partition.get_data(leaf) is None
        partition.set_data(leaf, {"a": 1})
        assert partition.get_data(leaf) == {"a": 1}

    def test_split_by_dims_only(self):
        """Without a transform, boxes are split by pixel extent."""
        part = EarthPartition(None, DataLocation(0), DataLocation(99), 0.0, max_dims=[10])
        assert part.rank == 1
        assert part.partitions() == 16
        for leaf in part.leaves():
            assert part.get_max(leaf)[0] - part.get_min(leaf)[0] <= 10

    def test_max_dims_with_transform(self, linear_transform):
        """Dimension limits apply on top of the size limit."""
        trans = linear_transform((60, 80))
        part = EarthPartition(trans, DataLocation(0, 0), DataLocation(59, 79), 1e6,
                              max_dims=(30, 40))
        assert part.partitions() == 4

    def test_degenerate_box(self, linear_transform):
        """A box narrower than a pixel cannot be partitioned."""
        trans = linear_transform((60, 80))
        with pytest.raises(PartitionError, match="Degenerate partition"):
            EarthPartition(trans, DataLocation(0, 0), DataLocation(0.5, 79), 100.0)

    def test_unknown_size(self, invalid_transform):
        """A box with no valid earth locations cannot be sized."""
        with pytest.raises(PartitionError, match="Cannot determine partition size"):
            EarthPartition(invalid_transform, DataLocation(0, 0), DataLocation(19, 19), 100.0)

    def test_invalid_arguments(self, linear_transform):
        with pytest.raises(ValidationError):
            EarthPartition(None, DataLocation(0, 0), DataLocation(10, 10), 100.0)
        with pytest.raises(ValidationError):
            EarthPartition(linear_transform((10, 10)), DataLocation(0, 0), DataLocation(10), 100.0)


# Leaf size bounds in kilometers, from about 3 pixels up to most of the grid
RANDOM_SIZES = [round(float(s), 1) for s in np.random.default_rng(11).uniform(30.0, 600.0, 5)]


class TestPartitionProperties:
    """Coverage and leaf size checks over a range of size bounds."""

    @pytest.fixture(params=RANDOM_SIZES)
    def sized_partition(self, request, linear_transform):
        trans = linear_transform((60, 80))
        return EarthPartition(trans, DataLocation(0, 0), DataLocation(59, 79), request.param)

    def test_leaf_sizes(self, sized_partition):
        trans = sized_partition.trans
        limit = sized_partition.max_size
        for leaf in sized_partition.leaves():
            lo = sized_partition.get_min(leaf).coords
            hi = sized_partition.get_max(leaf).coords
            assert trans.distance(DataLocation(lo), DataLocation(hi[0], lo[1])) <= limit
            assert trans.distance(DataLocation(lo), DataLocation(lo[0], hi[1])) <= limit

    def test_leaves_tile_root(self, sized_partition):
        """Leaf boxes add up to the root box and every point lies in one of them."""
        areas = []
        for leaf in sized_partition.leaves():
            lo = sized_partition.get_min(leaf).coords
            hi = sized_partition.get_max(leaf).coords
            areas.append(np.prod(hi - lo))
        assert sum(areas) == pytest.approx(59 * 79)

        rng = np.random.default_rng(5)
        coords = rng.uniform([0, 0], [59, 79], size=(300, 2))
        ids = sized_partition.find_partitions(coords)
        assert np.all(ids >= 0)
        for node, point in zip(ids, coords):
            assert DataLocation(point).is_contained(sized_partition.get_min(int(node)),
                                                    sized_partition.get_max(int(node)))

    def test_smaller_bound_gives_more_leaves(self, linear_transform):
        trans = linear_transform((60, 80))
        counts = [EarthPartition(trans, DataLocation(0, 0), DataLocation(59, 79), size).partitions()
                  for size in sorted(RANDOM_SIZES)]
        assert counts == sorted(counts, reverse=True)


class TestPartitionEncoding:
    """Test partition encodings."""

    def test_round_trip_preserves_structure(self, partition):
        """A decoded partition has the same leaves and lookups."""
        for i, leaf in enumerate(partition.leaves()):
            partition.set_data(leaf, i)
        encoding = partition.get_encoding()
        assert encoding.version == ENCODING_VERSION
        assert sum(encoding.bits) == partition.partitions()

        copy = EarthPartition.from_encoding(encoding)
        assert copy.size() == partition.size()
        rng = np.random.default_rng(1)
        coords = rng.uniform([0, 0], [59, 79], size=(200, 2))
        original = partition.find_partitions(coords)
        decoded = copy.find_partitions(coords)
        assert_array_equal([partition.get_data(int(n)) for n in original],
                           [copy.get_data(int(n)) for n in decoded])

    def test_dict_round_trip(self, partition):
        """The dict form survives JSON serialization."""
        encoding = partition.get_encoding()
        obj = json.loads(json.dumps(encoding.to_dict()))
        decoded = PartitionEncoding.from_dict(obj)
        assert decoded.bits == encoding.bits
        assert decoded.coords == encoding.coords

    def test_unknown_version(self, partition):
        obj = partition.get_encoding().to_dict()
        obj["version"] = ENCODING_VERSION + 1
        with pytest.raises(ValidationError, match="version"):
            PartitionEncoding.from_dict(obj)

    def test_truncated_encoding(self, partition):
        """An encoding that stops inside an internal node is rejected."""
        encoding = partition.get_encoding()
        truncated = PartitionEncoding(encoding.version, encoding.bits[:-1], encoding.coords[:-1])
        with pytest.raises(ValidationError):
            EarthPartition.from_encoding(truncated)

    def test_trailing_nodes(self, partition):
        """Nodes after a complete tree are rejected."""
        encoding = partition.get_encoding()
        extended = PartitionEncoding(encoding.version, encoding.bits + (True,),
                                     encoding.coords + (encoding.coords[-1],))
        with pytest.raises(ValidationError):
            EarthPartition.from_encoding(extended)
