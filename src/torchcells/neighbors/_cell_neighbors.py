"""Cell-to-cell adjacency of a voxel grid.

Two cells are neighbors when they share at least one grid node. For a full
interior voxel this gives 3**D - 1 neighbors. The face-adjacent subset is also
tabulated per direction, which the transport stencils need.
"""

from typing import TYPE_CHECKING

import torch
from tensordict import tensorclass

from torchcells.neighbors._adjacency import Adjacency
from torchcells.neighbors._point_neighbors import get_point_to_cells_adjacency

if TYPE_CHECKING:
    from torchcells.grid import CellGrid

NO_NEIGHBOR = -1


def get_cell_to_cells_adjacency(grid: "CellGrid") -> Adjacency:
    """Compute cell-to-cells adjacency based on shared nodes.

    Args:
        grid: Voxel cell grid.

    Returns:
        Adjacency where ``to_list()[i]`` contains, in ascending order and
        without duplicates, every other cell sharing a node with cell i. The
        relation is symmetric and has no self loops.
    """
    device = grid.cells.device
    n_cells = grid.n_cells
    if n_cells == 0:
        return Adjacency.empty(0, device=device)

    point_to_cells = get_point_to_cells_adjacency(grid)
    counts = point_to_cells.counts
    max_cells_per_point = int(counts.max().item())

    ### Scatter the ragged node stars into a dense (n_points, max_k) table
    position_in_star = (
        torch.arange(point_to_cells.n_total_neighbors, device=device)
        - point_to_cells.offsets[:-1].repeat_interleave(counts)
    )
    stars = torch.full(
        (grid.n_points, max_cells_per_point), -1, dtype=torch.int64, device=device
    )
    stars[point_to_cells.sources, position_in_star] = point_to_cells.indices

    ### All ordered pairs of distinct cells within each star
    # Shape: (n_points, max_k, max_k)
    first = stars.unsqueeze(2).expand(-1, max_cells_per_point, max_cells_per_point)
    second = stars.unsqueeze(1).expand(-1, max_cells_per_point, max_cells_per_point)
    valid = (first >= 0) & (second >= 0) & (first != second)

    ### Deduplicate; sorted keys group by source, then target
    pair_keys = torch.unique(first[valid] * n_cells + second[valid])
    return Adjacency.from_sorted_pairs(
        sources=pair_keys // n_cells,
        targets=pair_keys % n_cells,
        n_sources=n_cells,
    )


def get_face_neighbors(grid: "CellGrid", adjacency: Adjacency) -> torch.Tensor:
    """Tabulate face-adjacent neighbors per direction.

    Args:
        grid: Voxel cell grid carrying ``_voxel_index`` cell data.
        adjacency: Node-sharing adjacency of the same grid.

    Returns:
        Tensor of shape (n_cells, 2 * n_spatial_dims). Column ``2 * axis``
        holds the neighbor in the negative ``axis`` direction, column
        ``2 * axis + 1`` the one in the positive direction; ``NO_NEIGHBOR``
        where the face lies on the grid boundary.
    """
    from torchcells.voxelize import VOXEL_INDEX_KEY

    n_dims = grid.n_spatial_dims
    device = grid.cells.device
    table = torch.full(
        (grid.n_cells, 2 * n_dims), NO_NEIGHBOR, dtype=torch.int64, device=device
    )
    if adjacency.n_total_neighbors == 0:
        return table
    if VOXEL_INDEX_KEY not in grid.cell_data.keys():
        raise ValueError(
            f"Face neighbors require lattice coordinates in cell_data[{VOXEL_INDEX_KEY!r}]."
        )

    voxel_index = grid.cell_data[VOXEL_INDEX_KEY]
    sources = adjacency.sources
    targets = adjacency.indices
    delta = voxel_index[targets] - voxel_index[sources]

    is_face = delta.abs().sum(dim=-1) == 1
    axis = delta.abs().argmax(dim=-1)
    slot = 2 * axis + (delta.sum(dim=-1) > 0).long()
    table[sources[is_face], slot[is_face]] = targets[is_face]
    return table


@tensorclass
class NeighborhoodGraph:
    """Node-sharing adjacency plus the directional face-neighbor table."""

    adjacency: Adjacency
    face_neighbors: torch.Tensor  # shape: (n_cells, 2 * n_spatial_dims)

    @classmethod
    def from_grid(cls, grid: "CellGrid") -> "NeighborhoodGraph":
        adjacency = get_cell_to_cells_adjacency(grid)
        return cls(
            adjacency=adjacency,
            face_neighbors=get_face_neighbors(grid, adjacency),
        )

    @property
    def n_cells(self) -> int:
        return self.adjacency.n_sources

    def neighbors(self, cell_index: int) -> set[int]:
        """Set of cells sharing a node with ``cell_index``."""
        if not 0 <= cell_index < self.n_cells:
            raise IndexError(f"{cell_index=} out of range for {self.n_cells} cells")
        return set(self.adjacency.get(cell_index).tolist())

    def face_neighbor(self, cell_index: int, axis: int, positive: bool) -> int:
        return int(self.face_neighbors[cell_index, 2 * axis + int(positive)].item())
