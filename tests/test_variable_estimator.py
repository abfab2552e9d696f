"""
Tests for the variable estimator.
"""

import json

import numpy as np
import pytest
from numpy.testing import assert_allclose

from swathremap.exceptions import ValidationError
from swathremap.grid import Grid
from swathremap.location import DataLocation
from swathremap.partition import PartitionEncoding
from swathremap.variable_estimator import VariableEstimator


def smooth(rows, cols):
    return 1.0 + 0.5 * rows + 0.2 * cols + 0.01 * rows * cols + 0.003 * rows * rows


@pytest.fixture
def values():
    rows, cols = np.meshgrid(np.arange(30.0), np.arange(40.0), indexing="ij")
    return smooth(rows, cols)


@pytest.fixture
def points():
    rows, cols = np.meshgrid(np.arange(30.0), np.arange(40.0), indexing="ij")
    return np.stack([rows.ravel(), cols.ravel()], axis=1)


@pytest.fixture
def estimator(values, linear_transform):
    return VariableEstimator(values, linear_transform((30, 40)), 200.0)


class TestVariableEstimator:
    """Test VariableEstimator fitting and queries."""

    def test_quadratic_reproduced(self, estimator, values, points):
        """A variable quadratic in row and column is reproduced in every partition."""
        assert estimator.partition.partitions() > 1
        assert estimator.share_index == 0
        assert_allclose(estimator.get_values(points), values.ravel(), rtol=1e-8)

    def test_single_value(self, estimator):
        assert_allclose(estimator.get_value(DataLocation(12.5, 7.25)), smooth(12.5, 7.25), rtol=1e-8)
        assert np.isnan(estimator.get_value(DataLocation(30.5, 0)))

    def test_from_grid(self, values, linear_transform, points):
        est = VariableEstimator(Grid("angle", values), linear_transform((30, 40)), 200.0)
        assert_allclose(est.get_values(points), values.ravel(), rtol=1e-8)

    def test_missing_sample(self, values, linear_transform):
        """A partition with a missing sample is not fitted."""
        values[0, 0] = np.nan
        est = VariableEstimator(values, linear_transform((30, 40)), 200.0)
        assert np.isnan(est.get_value(DataLocation(1, 1)))
        assert_allclose(est.get_value(DataLocation(28, 38)), smooth(28, 38), rtol=1e-8)

    def test_one_dimensional(self):
        """1-D variables are partitioned by pixel extent."""
        x = np.arange(100.0)
        est = VariableEstimator(2.0 + 0.5 * x - 0.01 * x * x, None, 0.0, max_dims=[20])
        assert est.partition.rank == 1
        assert est.partition.partitions() == 8
        assert_allclose(est.get_values(x), 2.0 + 0.5 * x - 0.01 * x * x, rtol=1e-8)

    def test_one_dimensional_with_transform(self, linear_transform):
        with pytest.raises(ValidationError):
            VariableEstimator(np.arange(10.0), linear_transform((10, 10)), 100.0)

    def test_unsupported_rank(self, linear_transform):
        with pytest.raises(ValidationError):
            VariableEstimator(np.zeros((3, 3, 3)), linear_transform((3, 3)), 100.0)

    def test_filter(self, values, linear_transform, points):
        """The filter is applied to samples before fitting."""
        est = VariableEstimator(values, linear_transform((30, 40)), 200.0,
                                filter=lambda f: f * 2)
        assert_allclose(est.get_values(points), 2 * values.ravel(), rtol=1e-8)


class TestSharedVariables:
    """Test variables sharing one partition."""

    def test_sharing(self, estimator, values, points):
        other = VariableEstimator.sharing(values * 3, estimator)
        assert other.partition is estimator.partition
        assert other.share_index == 1
        assert_allclose(other.get_values(points), 3 * values.ravel(), rtol=1e-8)
        assert_allclose(estimator.get_values(points), values.ravel(), rtol=1e-8)

    def test_sharing_rank_mismatch(self, estimator):
        with pytest.raises(ValidationError):
            VariableEstimator.sharing(np.arange(10.0), estimator)

    def test_encoding_round_trip(self, estimator, values, points):
        """Encodings rebuild each variable, optionally on a shared partition."""
        other = VariableEstimator.sharing(values * 3, estimator)
        first = json.loads(json.dumps(estimator.get_encoding().to_dict()))
        second = other.get_encoding()

        copy = VariableEstimator.from_encoding(PartitionEncoding.from_dict(first))
        shared = VariableEstimator.from_encoding(second, share_with=copy)
        assert shared.partition is copy.partition
        assert shared.share_index == 1
        assert_allclose(copy.get_values(points), values.ravel(), rtol=1e-8)
        assert_allclose(shared.get_values(points), 3 * values.ravel(), rtol=1e-8)

    def test_encoding_structure_mismatch(self, estimator):
        encoding = estimator.get_encoding()
        truncated = PartitionEncoding(encoding.version, encoding.bits[:1],
                                      encoding.coords[:1], encoding.data[:1])
        with pytest.raises(ValidationError, match="shared partition"):
            VariableEstimator.from_encoding(truncated, share_with=estimator)
