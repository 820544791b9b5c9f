"""Tests for trace path records."""

import pytest
import torch

from torchcells.trace_path import TracePath


class TestTracePath:
    def test_empty(self):
        path = TracePath.empty()
        assert path.is_empty
        assert not path.has_sparse_data
        assert not path.has_grid_data
        assert path.total() == 0.0

    def test_from_sparse(self):
        path = TracePath.from_sparse([0, 3, 3], [0.5, 1.0, 0.25])
        assert path.has_sparse_data
        assert not path.has_grid_data
        assert path.indices.dtype == torch.int64
        assert path.total() == pytest.approx(1.75)

    def test_from_sparse_integer_increments(self):
        path = TracePath.from_sparse([1], [2])
        assert torch.is_floating_point(path.increments)

    def test_from_sparse_shape_mismatch(self):
        with pytest.raises(ValueError, match="same shape"):
            TracePath.from_sparse([0, 1], [1.0])

    def test_from_grid(self):
        path = TracePath.from_grid(torch.ones(5))
        assert path.has_grid_data
        assert not path.has_sparse_data
        assert path.total() == pytest.approx(5.0)

    def test_add(self):
        path = TracePath.empty()
        path.add(2, 0.5)
        path.add(2, 0.25)
        assert path.indices.tolist() == [2, 2]
        assert path.increments.tolist() == [0.5, 0.25]
        assert not path.is_empty
