"""Neighbor and incidence relationships of voxel cell grids.

All relationships are Adjacency objects (offset/indices encoding) holding
plain integer ids into the owning grid.
"""

from torchcells.neighbors._adjacency import Adjacency
from torchcells.neighbors._cell_neighbors import (
    NO_NEIGHBOR,
    NeighborhoodGraph,
    get_cell_to_cells_adjacency,
    get_face_neighbors,
)
from torchcells.neighbors._point_neighbors import get_point_to_cells_adjacency

__all__ = [
    "Adjacency",
    "NO_NEIGHBOR",
    "NeighborhoodGraph",
    "get_point_to_cells_adjacency",
    "get_cell_to_cells_adjacency",
    "get_face_neighbors",
]
