"""Conversion of voxel cell grids to PyVista unstructured grids."""

from typing import TYPE_CHECKING

import numpy as np
import torch

if TYPE_CHECKING:
    import pyvista as pv

    from torchcells.grid import CellGrid


def to_pyvista(grid: "CellGrid") -> "pv.UnstructuredGrid":
    """Convert a CellGrid to a PyVista UnstructuredGrid.

    2D grids become quad cells in the z=0 plane and 3D grids become
    hexahedra. Every public per-cell field is attached as cell data, in cell
    order; internal fields (names starting with ``_``) are skipped.

    Args:
        grid: Voxel cell grid.

    Returns:
        UnstructuredGrid with one VTK cell per grid cell.

    Example:
        >>> pv_grid = to_pyvista(cell_set.cell_grid)
        >>> pv_grid.save("cells.vtu")
    """
    import pyvista as pv

    points = grid.points.detach().cpu().numpy()
    if grid.n_spatial_dims == 2:
        points = np.column_stack([points, np.zeros(points.shape[0], dtype=points.dtype)])
        cell_type = pv.CellType.QUAD
    else:
        cell_type = pv.CellType.HEXAHEDRON

    cells = grid.cells.detach().cpu().numpy().astype(np.int64)
    pv_grid = pv.UnstructuredGrid({cell_type: cells}, points)

    for name in grid.field_names:
        values: torch.Tensor = grid.cell_data[name]
        pv_grid.cell_data[name] = values.detach().cpu().numpy()

    return pv_grid
