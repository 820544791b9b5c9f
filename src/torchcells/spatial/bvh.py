"""Bounding Volume Hierarchy (BVH) for point-to-cell lookup in voxel grids.

The hierarchy is a uniform subdivision of the padded grid bounding box: every
internal node splits its box at the center into 2**D children, and the depth
is chosen so that the leaves are about one grid spacing wide along the
shortest axis. Nodes are stored level by level in flat tensors, and each leaf
holds the ids of every cell having a node inside it, so a query returns a
small candidate set that the caller narrows down with a containment test.
"""

from typing import TYPE_CHECKING

import torch
from tensordict import tensorclass

from torchcells.neighbors import Adjacency

if TYPE_CHECKING:
    from torchcells.grid import CellGrid

NOT_FOUND = -1


def compute_n_layers(aabb_min: torch.Tensor, aabb_max: torch.Tensor, grid_delta: float) -> int:
    """Number of box halvings until the shortest extent reaches the grid spacing."""
    min_extent = float((aabb_max - aabb_min).min().item())
    n_layers = 0
    while min_extent / 2 > grid_delta:
        n_layers += 1
        min_extent /= 2
    return n_layers


def _level_start(level: int, n_children: int) -> int:
    """Index of the first node of ``level`` in level-ordered storage."""
    return (n_children**level - 1) // (n_children - 1)


def _decode_morton(codes: torch.Tensor, level: int, n_dims: int) -> torch.Tensor:
    """Per-axis box index of nodes at ``level`` from their child-code path.

    Each base-2**D digit of ``codes`` (most significant first) is the child
    chosen at one level; bit ``a`` of a digit is the half along axis ``a``.
    """
    n_children = 2**n_dims
    axis_index = torch.zeros((codes.shape[0], n_dims), dtype=torch.int64, device=codes.device)
    remaining = codes.clone()
    for bit in range(level):
        digit = remaining % n_children
        remaining = remaining // n_children
        for axis in range(n_dims):
            axis_index[:, axis] |= ((digit >> axis) & 1) << bit
    return axis_index


@tensorclass
class BVH:
    """Uniform bounding volume hierarchy over a voxel grid.

    Attributes:
        node_aabb_min: Minimum corner of each node's box, shape (n_nodes, n_spatial_dims).
        node_aabb_max: Maximum corner of each node's box, shape (n_nodes, n_spatial_dims).
        node_first_child: Index of the first of the 2**D contiguous children of
            each node, shape (n_nodes,). Value is -1 for leaf nodes.
        leaf_cells: Cell ids per leaf, in leaf order.

    Example:
        >>> bvh = BVH.from_grid(grid, aabb_min, aabb_max, grid_delta=1.0)
        >>> leaves = bvh.find_leaves(torch.tensor([[0.5, 0.5]]))
        >>> candidates = bvh.find_candidate_cells(torch.tensor([[0.5, 0.5]]))
    """

    node_aabb_min: torch.Tensor  # shape: (n_nodes, n_spatial_dims)
    node_aabb_max: torch.Tensor  # shape: (n_nodes, n_spatial_dims)
    node_first_child: torch.Tensor  # shape: (n_nodes,), dtype: int64
    leaf_cells: Adjacency

    @property
    def n_nodes(self) -> int:
        return self.node_aabb_min.shape[0]

    @property
    def n_spatial_dims(self) -> int:
        return self.node_aabb_min.shape[1]

    @property
    def n_leaves(self) -> int:
        return self.leaf_cells.n_sources

    @property
    def n_layers(self) -> int:
        n_children = 2**self.n_spatial_dims
        level = 0
        while n_children**level < self.n_leaves:
            level += 1
        return level

    @property
    def aabb_min(self) -> torch.Tensor:
        return self.node_aabb_min[0]

    @property
    def aabb_max(self) -> torch.Tensor:
        return self.node_aabb_max[0]

    @property
    def device(self) -> torch.device:
        return self.node_aabb_min.device

    @classmethod
    def from_grid(
        cls,
        grid: "CellGrid",
        aabb_min: torch.Tensor,
        aabb_max: torch.Tensor,
        grid_delta: float,
    ) -> "BVH":
        """Build the hierarchy over a padded bounding box and fill its leaves.

        Args:
            grid: Voxel grid whose cells are inserted.
            aabb_min: Padded minimum corner of the grid, shape (n_spatial_dims,).
            aabb_max: Padded maximum corner of the grid, shape (n_spatial_dims,).
            grid_delta: Grid spacing, the target leaf extent.

        Returns:
            BVH ready for queries.
        """
        n_dims = aabb_min.shape[0]
        n_children = 2**n_dims
        n_layers = compute_n_layers(aabb_min, aabb_max, grid_delta)
        extent = aabb_max - aabb_min

        ### Node boxes, level by level
        mins, maxs, first_children = [], [], []
        for level in range(n_layers + 1):
            n_level = n_children**level
            codes = torch.arange(n_level, dtype=torch.int64, device=aabb_min.device)
            axis_index = _decode_morton(codes, level, n_dims)
            box_extent = extent / 2**level
            level_min = aabb_min + axis_index.to(aabb_min.dtype) * box_extent
            mins.append(level_min)
            maxs.append(level_min + box_extent)
            if level < n_layers:
                first_children.append(_level_start(level + 1, n_children) + codes * n_children)
            else:
                first_children.append(torch.full_like(codes, -1))

        bvh = cls(
            node_aabb_min=torch.cat(mins, dim=0),
            node_aabb_max=torch.cat(maxs, dim=0),
            node_first_child=torch.cat(first_children, dim=0),
            leaf_cells=Adjacency.empty(n_children**n_layers, device=aabb_min.device),
        )
        bvh.leaf_cells = bvh._collect_leaf_cells(grid)
        return bvh

    def _collect_leaf_cells(self, grid: "CellGrid") -> Adjacency:
        """Insert every cell into the leaf of each of its nodes."""
        device = self.device
        if grid.n_cells == 0:
            return Adjacency.empty(self.n_leaves, device=device)

        node_leaves = self.find_leaves(grid.points.to(self.node_aabb_min.dtype))
        cell_leaves = node_leaves[grid.cells]  # (n_cells, n_nodes_per_cell)
        cell_ids = torch.arange(grid.n_cells, dtype=torch.int64, device=device)
        cell_ids = cell_ids.unsqueeze(1).expand_as(cell_leaves)

        inside = cell_leaves >= 0
        keys = torch.unique(cell_leaves[inside] * grid.n_cells + cell_ids[inside])
        return Adjacency.from_sorted_pairs(
            sources=keys // grid.n_cells,
            targets=keys % grid.n_cells,
            n_sources=self.n_leaves,
        )

    def contains(self, points: torch.Tensor) -> torch.Tensor:
        """Boolean mask of points inside the root box, shape (n_points,)."""
        return ((points >= self.aabb_min) & (points <= self.aabb_max)).all(dim=-1)

    def find_leaves(self, points: torch.Tensor) -> torch.Tensor:
        """Descend the hierarchy to the leaf containing each point.

        Args:
            points: Query points, shape (n_points, n_spatial_dims).

        Returns:
            Leaf id per point, shape (n_points,), ``NOT_FOUND`` for points
            outside the root box.
        """
        n_dims = self.n_spatial_dims
        axis_bits = torch.arange(n_dims, device=self.device)
        node = torch.zeros(points.shape[0], dtype=torch.int64, device=self.device)

        first_child = self.node_first_child[node]
        while points.shape[0] > 0 and bool((first_child >= 0).any()):
            center = (self.node_aabb_min[node] + self.node_aabb_max[node]) / 2
            code = ((points >= center).long() << axis_bits).sum(dim=-1)
            node = first_child + code
            first_child = self.node_first_child[node]

        leaves = node - (self.n_nodes - self.n_leaves)
        return torch.where(self.contains(points), leaves, torch.full_like(leaves, NOT_FOUND))

    def find_candidate_cells(self, query_points: torch.Tensor) -> list[torch.Tensor]:
        """Candidate cells that may contain each query point.

        Returns:
            List of length n_queries; empty tensors for points outside the box.
        """
        leaves = self.find_leaves(query_points).tolist()
        empty = torch.zeros(0, dtype=torch.int64, device=self.device)
        return [self.leaf_cells.get(leaf) if leaf >= 0 else empty for leaf in leaves]

    def candidate_matrix(self, query_points: torch.Tensor) -> torch.Tensor:
        """Padded candidate cells per query point.

        Returns:
            Tensor of shape (n_queries, max_candidates_per_leaf), padded with
            ``NOT_FOUND``. Points outside the box get an all-``NOT_FOUND`` row.
        """
        leaves = self.find_leaves(query_points)
        n_entries = self.leaf_cells.n_total_neighbors
        if n_entries == 0:
            return torch.full(
                (leaves.shape[0], 1), NOT_FOUND, dtype=torch.int64, device=self.device
            )

        counts = self.leaf_cells.counts
        width = int(counts.max().item())
        slot = torch.arange(width, device=self.device)
        safe_leaves = leaves.clamp(min=0)

        ### Gather each leaf's id list into a fixed-width row
        start = self.leaf_cells.offsets[safe_leaves].unsqueeze(1)
        valid = (slot < counts[safe_leaves].unsqueeze(1)) & (leaves >= 0).unsqueeze(1)
        candidates = self.leaf_cells.indices[(start + slot).clamp(max=n_entries - 1)]
        return torch.where(valid, candidates, torch.full_like(candidates, NOT_FOUND))
