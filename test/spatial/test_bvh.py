"""Tests for the BVH point-location index.

Tests validate hierarchy depth, leaf filling and candidate queries on voxel
grids in 2D and 3D.
"""

import pytest
import torch

from torchcells.spatial import BVH, NOT_FOUND, compute_n_layers
from torchcells.voxelize import voxelize


### Helper Functions ###


def build_bvh(surfaces):
    result = voxelize(surfaces)
    bvh = BVH.from_grid(
        result.grid, result.aabb_min, result.aabb_max, surfaces[-1].grid_delta
    )
    return result.grid, bvh


class TestComputeNLayers:
    @pytest.mark.parametrize(
        "extent, expected",
        [
            ([8.0, 8.0], 2),
            ([8.0, 2.0], 0),
            ([6.0002, 6.0002], 2),
            ([1.0, 1.0], 0),
        ],
    )
    def test_halving(self, extent, expected):
        aabb_min = torch.zeros(2, dtype=torch.float64)
        aabb_max = torch.tensor(extent, dtype=torch.float64)
        assert compute_n_layers(aabb_min, aabb_max, 1.0) == expected


class TestBVHConstruction:
    def test_structure_2d(self, stack_2d):
        _, bvh = build_bvh(stack_2d)

        assert bvh.n_layers == 2
        assert bvh.n_leaves == 16
        assert bvh.n_nodes == 1 + 4 + 16
        assert bvh.node_first_child[0].item() == 1
        assert (bvh.node_first_child[-16:] == -1).all()

    def test_structure_3d(self, stack_3d):
        _, bvh = build_bvh(stack_3d)

        assert bvh.n_layers == 1
        assert bvh.n_leaves == 8
        assert bvh.n_nodes == 9

    def test_children_tile_parent(self, stack_2d):
        _, bvh = build_bvh(stack_2d)
        first = bvh.node_first_child[0].item()
        children_min = bvh.node_aabb_min[first : first + 4]
        children_max = bvh.node_aabb_max[first : first + 4]

        assert torch.allclose(children_min.min(dim=0).values, bvh.aabb_min)
        assert torch.allclose(children_max.max(dim=0).values, bvh.aabb_max)

    def test_every_cell_in_leaf_of_each_node(self, stack):
        grid, bvh = build_bvh(stack)
        node_leaves = bvh.find_leaves(grid.points)

        for cell_id in range(grid.n_cells):
            for leaf in node_leaves[grid.cells[cell_id]].tolist():
                assert cell_id in bvh.leaf_cells.get(leaf).tolist()

    def test_leaf_contents_sorted_unique(self, stack_2d):
        _, bvh = build_bvh(stack_2d)
        for cells in bvh.leaf_cells.to_list():
            assert cells == sorted(set(cells))


class TestBVHQueries:
    def test_find_leaves(self, stack_2d):
        _, bvh = build_bvh(stack_2d)
        points = torch.tensor([[0.5, 0.5], [5.5, 0.5]], dtype=torch.float64)
        assert bvh.find_leaves(points).tolist() == [0, 5]

    def test_outside_point_not_found(self, stack_2d):
        """A query far outside the box yields the sentinel and no candidates."""
        _, bvh = build_bvh(stack_2d)
        outside = torch.tensor([[100.0, 100.0]], dtype=torch.float64)

        assert bvh.find_leaves(outside).tolist() == [NOT_FOUND]
        assert not bvh.contains(outside).any()
        assert bvh.find_candidate_cells(outside)[0].numel() == 0
        assert (bvh.candidate_matrix(outside) == NOT_FOUND).all()

    def test_cell_center_candidates_include_cell(self, stack):
        grid, bvh = build_bvh(stack)
        candidates = bvh.candidate_matrix(grid.cell_centroids)
        cell_ids = torch.arange(grid.n_cells).unsqueeze(1)

        assert (candidates == cell_ids).any(dim=1).all()

    def test_candidate_matrix_matches_lists(self, stack_2d):
        grid, bvh = build_bvh(stack_2d)
        points = grid.cell_centroids[::5]
        matrix = bvh.candidate_matrix(points)
        lists = bvh.find_candidate_cells(points)

        for row, expected in zip(matrix, lists):
            assert torch.equal(row[row != NOT_FOUND], expected)
