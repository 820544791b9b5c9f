"""Tests for voxelization of surface stacks."""

import pytest
import torch

from torchcells.errors import CellSetError, EmptySurfaceStackError
from torchcells.surfaces import BoundaryCondition, ImplicitSurface
from torchcells.voxelize import (
    BOUNDS_EPS,
    MATERIAL_KEY,
    VOXEL_INDEX_KEY,
    classify_points,
    probe_plane_position,
    surface_index_bounds,
    voxelize,
)


class TestVoxelize2D:
    """Voxelization of a 6 x 6 lattice with layer tops at 2 and 4."""

    def test_counts_and_materials(self, stack_2d):
        result = voxelize(stack_2d)
        grid = result.grid

        assert grid.n_cells == 24
        assert grid.n_points == 35
        assert grid.cells.shape == (24, 4)
        material = grid.cell_data[MATERIAL_KEY]
        assert material[:12].tolist() == [0] * 12
        assert material[12:].tolist() == [1] * 12

    def test_cell_ordering(self, stack_2d):
        """Vertical axis slowest, x fastest."""
        voxel_index = voxelize(stack_2d).grid.cell_data[VOXEL_INDEX_KEY]
        assert voxel_index[:7].tolist() == [
            [0, 0], [1, 0], [2, 0], [3, 0], [4, 0], [5, 0], [0, 1],
        ]

    def test_node_order_min_corner_first(self, stack_2d):
        grid = voxelize(stack_2d).grid
        corners = grid.points[grid.cells]  # (n_cells, 4, 2)
        expected = torch.tensor([[0, 0], [1, 0], [1, 1], [0, 1]], dtype=torch.float64)
        assert torch.allclose(corners - corners[:, :1], expected.expand_as(corners))

    def test_bounding_box_padded(self, stack_2d):
        result = voxelize(stack_2d)
        assert torch.allclose(
            result.aabb_min, torch.tensor([-BOUNDS_EPS, -BOUNDS_EPS], dtype=torch.float64)
        )
        assert torch.allclose(
            result.aabb_max, torch.tensor([6 + BOUNDS_EPS, 6 + BOUNDS_EPS], dtype=torch.float64)
        )

    def test_above_surface(self, stack_2d):
        """Cells between the stack and the probe plane get id len(surfaces)."""
        result = voxelize(stack_2d, depth=2.0, above_surface=True)
        material = result.grid.cell_data[MATERIAL_KEY]

        assert result.depth_plane_position == pytest.approx(7.0)
        assert result.lattice_max == (6, 7)
        assert result.grid.n_cells == 42
        assert torch.bincount(material).tolist() == [12, 12, 18]

    def test_below_surface(self, stack_2d):
        """The probe layer merges into the bottom material."""
        result = voxelize(stack_2d, depth=2.0, above_surface=False)
        material = result.grid.cell_data[MATERIAL_KEY]

        assert result.depth_plane_position == pytest.approx(-1.0)
        assert result.lattice_min == (0, -2)
        assert result.grid.n_cells == 36
        assert material[:24].tolist() == [0] * 24
        assert material[24:].tolist() == [1] * 12

    def test_deterministic(self, stack_2d):
        first = voxelize(stack_2d, depth=2.0, above_surface=True).grid
        second = voxelize(stack_2d, depth=2.0, above_surface=True).grid

        assert torch.equal(first.points, second.points)
        assert torch.equal(first.cells, second.cells)
        assert torch.equal(first.cell_data[MATERIAL_KEY], second.cell_data[MATERIAL_KEY])


class TestVoxelize3D:
    def test_counts_and_materials(self, stack_3d):
        grid = voxelize(stack_3d).grid

        assert grid.n_cells == 27
        assert grid.cells.shape == (27, 8)
        assert grid.n_points == 4 * 4 * 4
        assert torch.bincount(grid.cell_data[MATERIAL_KEY]).tolist() == [9, 18]

    def test_float32(self, stack_3d):
        grid = voxelize(stack_3d, dtype=torch.float32).grid
        assert grid.points.dtype == torch.float32


class TestStackValidation:
    def test_empty_stack(self):
        with pytest.raises(EmptySurfaceStackError):
            voxelize([])

    def test_empty_stack_is_value_error(self):
        with pytest.raises(ValueError):
            voxelize([])
        with pytest.raises(CellSetError):
            voxelize([])

    def test_mixed_dimensions(self, stack_2d, stack_3d):
        with pytest.raises(ValueError, match="same dimension"):
            voxelize([stack_3d[0], stack_2d[1]])

    def test_mixed_grid_delta(self, make_layers):
        coarse = make_layers([2.0], (0, 0), (4, 4), grid_delta=1.0)
        fine = make_layers([3.0], (0, 0), (8, 8), grid_delta=0.5)
        with pytest.raises(ValueError, match="grid spacing"):
            voxelize(coarse + fine)


class TestHelpers:
    def test_infinite_axis_uses_data_bounds(self):
        surface = ImplicitSurface(
            sdf=lambda p: p[..., -1] - 1.0,
            grid_delta=1.0,
            min_index=(0, -100),
            max_index=(4, 100),
            boundary_conditions=(BoundaryCondition.REFLECTIVE, BoundaryCondition.INFINITE),
            data_min_index=(0, -2),
            data_max_index=(4, 3),
        )
        assert surface_index_bounds(surface) == ([0, -2], [4, 3])
        assert probe_plane_position(surface, 1.0, above_surface=True) == pytest.approx(3.0)
        assert probe_plane_position(surface, 1.0, above_surface=False) == pytest.approx(-2.0)

    def test_classify_points_first_match(self):
        boundaries = [lambda p: p[:, 0] - 1.0, lambda p: p[:, 0] - 2.0]
        points = torch.tensor([[0.5], [1.5], [2.5]])
        assert classify_points(boundaries, points).tolist() == [1, 2, 0]
