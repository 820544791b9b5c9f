"""Node-to-cells incidence of a voxel grid."""

from typing import TYPE_CHECKING

import torch

from torchcells.neighbors._adjacency import Adjacency

if TYPE_CHECKING:
    from torchcells.grid import CellGrid


def get_point_to_cells_adjacency(grid: "CellGrid") -> Adjacency:
    """Compute the cells incident to each grid node.

    Args:
        grid: Voxel cell grid.

    Returns:
        Adjacency where ``to_list()[i]`` holds the ids of every cell having
        node i as a corner, in ascending order. Unused nodes have empty lists.

    Example:
        >>> # Two quads sharing the edge (1, 4)
        >>> adj = get_point_to_cells_adjacency(grid)
        >>> adj.to_list()
        [[0], [0, 1], [1], [0], [0, 1], [1]]
    """
    device = grid.cells.device
    if grid.n_cells == 0 or grid.n_points == 0:
        return Adjacency.empty(grid.n_points, device=device)

    n_cells, n_nodes_per_cell = grid.cells.shape
    point_ids = grid.cells.reshape(-1)
    cell_ids = torch.arange(n_cells, dtype=torch.int64, device=device).repeat_interleave(
        n_nodes_per_cell
    )

    ### Sort by (point, cell) and group by point
    order = torch.argsort(point_ids * (n_cells + 1) + cell_ids)
    return Adjacency.from_sorted_pairs(
        sources=point_ids[order],
        targets=cell_ids[order],
        n_sources=grid.n_points,
    )
