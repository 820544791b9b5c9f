"""Tests for the CellGrid data model."""

import pytest
import torch

from torchcells.errors import FieldSizeError
from torchcells.grid import CellGrid


def unit_squares(n: int = 2) -> CellGrid:
    """``n`` unit quads in a row along x."""
    xs = torch.arange(n + 1, dtype=torch.float64)
    points = torch.cat(
        [
            torch.stack([xs, torch.zeros_like(xs)], dim=1),
            torch.stack([xs, torch.ones_like(xs)], dim=1),
        ]
    )
    i = torch.arange(n)
    cells = torch.stack([i, i + 1, i + n + 2, i + n + 1], dim=1)
    return CellGrid(points=points, cells=cells)


class TestCellGrid:
    def test_properties(self):
        grid = unit_squares(2)
        assert grid.n_spatial_dims == 2
        assert grid.n_points == 6
        assert grid.n_cells == 2
        assert grid.n_nodes_per_cell == 4
        assert grid.cell_min_corners.tolist() == [[0.0, 0.0], [1.0, 0.0]]
        assert grid.cell_centroids.tolist() == [[0.5, 0.5], [1.5, 0.5]]

    def test_wrong_node_count(self):
        with pytest.raises(ValueError, match="nodes"):
            CellGrid(
                points=torch.zeros((4, 2)),
                cells=torch.zeros((1, 3), dtype=torch.int64),
            )

    def test_float_cells_rejected(self):
        with pytest.raises(TypeError):
            CellGrid(points=torch.zeros((4, 2)), cells=torch.zeros((1, 4)))

    def test_field_size_checked_on_construction(self):
        grid = unit_squares(2)
        with pytest.raises(FieldSizeError):
            CellGrid(points=grid.points, cells=grid.cells, cell_data={"f": torch.zeros(3)})

    def test_set_field(self):
        grid = unit_squares(2)
        grid.set_field("f", torch.tensor([1.0, 2.0]))
        assert grid.field_names == ["f"]
        with pytest.raises(FieldSizeError):
            grid.set_field("g", torch.zeros(5))
        with pytest.raises(FieldSizeError):
            grid.set_field("h", torch.tensor(1.0))

    def test_internal_fields_hidden(self):
        grid = unit_squares(2)
        grid.set_field("_hidden", torch.zeros(2))
        grid.set_field("visible", torch.zeros(2))
        assert grid.field_names == ["visible"]

    def test_slice_cells_lock_step(self):
        grid = unit_squares(3)
        grid.set_field("f", torch.tensor([1.0, 2.0, 3.0]))
        sliced = grid.slice_cells(torch.tensor([True, False, True]))

        assert sliced.n_cells == 2
        assert sliced.points.data_ptr() == grid.points.data_ptr()
        assert sliced.cell_data["f"].tolist() == [1.0, 3.0]
        assert torch.equal(sliced.cells, grid.cells[[0, 2]])
