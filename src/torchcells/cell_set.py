"""Dense voxel cell set built from a stack of boundary surfaces.

The cell set owns the voxel grid and its per-cell fields. The spatial index
and the neighborhood graph only hold integer ids into that grid and are
rebuilt together whenever the set of cells changes.
"""

import logging
import numbers
import warnings
from typing import Optional, Sequence

import torch

from torchcells.config import DEFAULT_CONTEXT, SimulationContext
from torchcells.errors import CellSetError, FieldSizeError
from torchcells.grid import CellGrid
from torchcells.neighbors import NeighborhoodGraph
from torchcells.spatial import BVH, NOT_FOUND
from torchcells.surfaces import BoundarySurface
from torchcells.trace_path import TracePath
from torchcells.voxelize import MATERIAL_KEY, make_probe_plane, voxelize
from torchcells.warnings import TopologyMismatchWarning

logger = logging.getLogger(__name__)

FILLING_FRACTION_KEY = "filling_fraction"


class DenseCellSet:
    """Cell-based voxel representation of the volume around a surface stack.

    The grid extends ``depth`` beyond the stack, either above the top surface
    (to hold the gas phase) or below the bottom of the stack. Every rebuild
    creates the ``material`` field (zero-based surface index) and a
    ``filling_fraction`` field initialized to zero.

    Args:
        surfaces: Boundary surfaces, innermost first. The list is kept by
            reference: replacing its last entry and calling
            :meth:`update_surface` or :meth:`update_materials` picks up the
            change.
        depth: Extent of the probing half-space beyond the stack.
        above_surface: Place the probing half-space above (True) or below
            (False) the stack.
        context: Device, dtype and threading settings.

    Example:
        >>> cell_set = DenseCellSet(surfaces, depth=10.0, above_surface=True)
        >>> cell_set.add_scalar_data("byproduct_sum", 0.0)
        >>> idx = cell_set.find_index([0.5, 3.5])
        >>> if idx != NOT_FOUND:
        ...     cell_set.add_filling_fraction(idx, 0.1)
    """

    def __init__(
        self,
        surfaces: Optional[Sequence[BoundarySurface]] = None,
        depth: float = 0.0,
        above_surface: bool = False,
        context: Optional[SimulationContext] = None,
    ):
        self.context = (context or DEFAULT_CONTEXT).apply()
        self._surfaces: Optional[Sequence[BoundarySurface]] = None
        self._reference_surface: Optional[BoundarySurface] = None
        self._grid: Optional[CellGrid] = None
        self._bvh: Optional[BVH] = None
        self._neighborhood: Optional[NeighborhoodGraph] = None
        self._depth = float(depth)
        self._above_surface = bool(above_surface)
        self._depth_plane_position = 0.0
        self._grid_delta = 0.0
        self._aabb_min: Optional[torch.Tensor] = None
        self._aabb_max: Optional[torch.Tensor] = None

        if surfaces is not None:
            self.from_surfaces(surfaces, depth)

    ### Construction and refresh ###

    def from_surfaces(
        self, surfaces: Sequence[BoundarySurface], depth: Optional[float] = None
    ) -> int:
        """Rebuild the whole cell set from a surface stack.

        All previous fields are discarded. The spatial index and the
        neighborhood graph are rebuilt.

        Returns:
            The number of cells, which later material refreshes must preserve.
        """
        if depth is not None:
            self._depth = float(depth)

        result = voxelize(
            surfaces,
            depth=self._depth,
            above_surface=self._above_surface,
            device=self.context.torch_device,
            dtype=self.context.torch_dtype,
        )
        grid = result.grid
        grid.set_field(
            FILLING_FRACTION_KEY,
            torch.zeros(grid.n_cells, dtype=self.context.torch_dtype, device=grid.points.device),
        )

        self._surfaces = surfaces
        self._reference_surface = surfaces[-1]
        self._grid = grid
        self._grid_delta = float(surfaces[-1].grid_delta)
        self._depth_plane_position = result.depth_plane_position
        self._aabb_min = result.aabb_min
        self._aabb_max = result.aabb_max
        self._rebuild_indices()

        logger.debug(
            "Built cell set with %d cells (depth=%g, above_surface=%s)",
            grid.n_cells,
            self._depth,
            self._above_surface,
        )
        return grid.n_cells

    def _rebuild_indices(self) -> None:
        self._bvh = BVH.from_grid(self._grid, self._aabb_min, self._aabb_max, self._grid_delta)
        self._neighborhood = NeighborhoodGraph.from_grid(self._grid)

    def build_neighborhood(self) -> NeighborhoodGraph:
        """Recompute the neighborhood graph of the current grid."""
        self._neighborhood = NeighborhoodGraph.from_grid(self.cell_grid)
        return self._neighborhood

    def update_materials(self) -> bool:
        """Refresh the material ids after the surfaces changed without moving the top.

        The stack is voxelized again with the same parameters. If the number of
        cells differs, the top surface moved in a way that changes the cell set;
        the refresh is then rejected, the previous state is kept untouched and
        :meth:`update_surface` should be used instead.

        Returns:
            True if the material field was replaced, False on a topology mismatch.
        """
        grid = self.cell_grid
        result = voxelize(
            self._surfaces,
            depth=self._depth,
            above_surface=self._above_surface,
            device=grid.points.device,
            dtype=grid.points.dtype,
        )
        if result.grid.n_cells != grid.n_cells:
            message = (
                f"Number of cells changed in material update ({grid.n_cells} -> "
                f"{result.grid.n_cells}); the surface top might have moved. "
                f"Update rejected."
            )
            logger.warning(message)
            warnings.warn(message, TopologyMismatchWarning, stacklevel=2)
            return False

        grid.set_field(MATERIAL_KEY, result.grid.cell_data[MATERIAL_KEY])
        return True

    def update_surface(self) -> int:
        """Remove the cells that the top surface no longer covers.

        Cells inside the previous top surface but outside the current one (and
        outside the probing half-space) are deleted from the grid and from
        every field in lock-step. The surface may only have receded: cells are
        never added.

        Returns:
            The number of removed cells.
        """
        grid = self.cell_grid
        top = self._surfaces[-1]
        centers = grid.cell_centroids

        inside_new = top.signed_distance(centers) <= 0
        if self._depth != 0.0:
            plane = make_probe_plane(self._depth_plane_position)
            inside_new |= plane(centers) <= 0
        inside_old = self._reference_surface.signed_distance(centers) <= 0
        removed = inside_old & ~inside_new

        n_removed = int(removed.sum().item())
        if n_removed > 0:
            self._grid = grid.slice_cells(~removed)
            self._rebuild_indices()
        self._reference_surface = top

        logger.debug("Surface update removed %d cells, %d remain", n_removed, self.n_cells)
        return n_removed

    def set_cell_set_position(self, above_surface: bool) -> None:
        """Choose the side of the probing half-space for the next rebuild."""
        self._above_surface = bool(above_surface)

    ### Accessors ###

    def _require_built(self) -> None:
        if self._grid is None:
            raise CellSetError("The cell set has not been built; call from_surfaces first.")

    @property
    def cell_grid(self) -> CellGrid:
        self._require_built()
        return self._grid

    @property
    def surfaces(self) -> Optional[Sequence[BoundarySurface]]:
        return self._surfaces

    @property
    def bvh(self) -> BVH:
        self._require_built()
        return self._bvh

    @property
    def neighborhood(self) -> NeighborhoodGraph:
        self._require_built()
        return self._neighborhood

    @property
    def n_cells(self) -> int:
        return self.cell_grid.n_cells

    @property
    def n_spatial_dims(self) -> int:
        return self.cell_grid.n_spatial_dims

    @property
    def nodes(self) -> torch.Tensor:
        return self.cell_grid.points

    @property
    def elements(self) -> torch.Tensor:
        return self.cell_grid.cells

    @property
    def cell_centers(self) -> torch.Tensor:
        return self.cell_grid.cell_centroids

    @property
    def grid_delta(self) -> float:
        return self._grid_delta

    @property
    def depth(self) -> float:
        return self._depth

    @property
    def above_surface(self) -> bool:
        return self._above_surface

    @property
    def depth_plane_position(self) -> float:
        return self._depth_plane_position

    @property
    def bounding_box(self) -> tuple[torch.Tensor, torch.Tensor]:
        """Padded (min, max) corners of the grid."""
        self._require_built()
        return self._aabb_min, self._aabb_max

    @property
    def material_ids(self) -> torch.Tensor:
        return self.cell_grid.cell_data[MATERIAL_KEY]

    @property
    def filling_fractions(self) -> torch.Tensor:
        return self.cell_grid.cell_data[FILLING_FRACTION_KEY]

    def get_neighbors(self, cell_index: int) -> set[int]:
        """Cells sharing at least one node with ``cell_index``."""
        return self.neighborhood.neighbors(cell_index)

    ### Field store ###

    @property
    def scalar_data_names(self) -> list[str]:
        return self.cell_grid.field_names

    def add_scalar_data(self, name: str, init_value: float = 0.0) -> torch.Tensor:
        """Create a new per-cell field with ``init_value`` in every cell."""
        grid = self.cell_grid
        if name in grid.cell_data.keys():
            raise ValueError(f"Field {name!r} already exists.")
        values = torch.full(
            (grid.n_cells,), init_value, dtype=self.context.torch_dtype, device=grid.points.device
        )
        grid.set_field(name, values)
        return values

    def get_scalar_data(self, name: str) -> torch.Tensor:
        """The field tensor itself; in-place edits modify the cell set."""
        grid = self.cell_grid
        if name not in grid.cell_data.keys():
            raise KeyError(f"No field named {name!r}; available: {grid.field_names}")
        return grid.cell_data[name]

    def set_scalar_data(self, name: str, values) -> None:
        """Insert or replace a field. Raises FieldSizeError on a length mismatch."""
        grid = self.cell_grid
        values = torch.as_tensor(values, device=grid.points.device)
        grid.set_field(name, values)

    def get_scalar_value(self, name: str, where) -> Optional[float]:
        """Value of a field at a cell index or at the cell containing a point.

        Returns None when no cell contains the point.
        """
        idx = self._resolve_index(where)
        if idx == NOT_FOUND:
            return None
        return float(self.get_scalar_data(name)[idx].item())

    ### Point location ###

    def find_indices(self, points) -> torch.Tensor:
        """Cell containing each point, ``NOT_FOUND`` where no cell does.

        Args:
            points: Shape (n_points, >=n_spatial_dims) or a single point.
                Extra trailing coordinates are ignored.

        Returns:
            Tensor of shape (n_points,), dtype int64.
        """
        grid = self.cell_grid
        n_dims = grid.n_spatial_dims
        points = torch.as_tensor(points, dtype=grid.points.dtype, device=grid.points.device)
        if points.ndim == 1:
            points = points.unsqueeze(0)
        points = points[:, :n_dims]
        if grid.n_cells == 0:
            return torch.full((points.shape[0],), NOT_FOUND, dtype=torch.int64, device=points.device)

        ### Candidates from the spatial index, then the voxel containment test
        candidates = self._bvh.candidate_matrix(points)  # (n_points, max_candidates)
        cell_min = grid.cell_min_corners[candidates.clamp(min=0)]
        query = points.unsqueeze(1)
        inside = (
            (query >= cell_min) & (query < cell_min + self._grid_delta)
        ).all(dim=-1) & (candidates >= 0)

        first = inside.long().argmax(dim=-1, keepdim=True)
        found = candidates.gather(1, first).squeeze(1)
        return torch.where(inside.any(dim=-1), found, torch.full_like(found, NOT_FOUND))

    def find_index(self, point) -> int:
        """Cell containing a single point, or ``NOT_FOUND``."""
        return int(self.find_indices(point)[0].item())

    def _resolve_index(self, where) -> int:
        if isinstance(where, numbers.Integral) or (isinstance(where, torch.Tensor) and where.ndim == 0):
            idx = int(where)
            if idx >= self.n_cells:
                raise IndexError(f"Cell index {idx} out of range for {self.n_cells} cells")
            return idx if idx >= 0 else NOT_FOUND
        return self.find_index(where)

    ### Filling fractions ###

    def get_filling_fraction(self, where) -> float:
        """Filling fraction at a cell index or point; -1.0 if no cell is found."""
        idx = self._resolve_index(where)
        if idx == NOT_FOUND:
            return -1.0
        return float(self.filling_fractions[idx].item())

    def set_filling_fraction(self, where, fill: float) -> bool:
        idx = self._resolve_index(where)
        if idx == NOT_FOUND:
            return False
        self.filling_fractions[idx] = fill
        return True

    def add_filling_fraction(self, where, fill: float) -> bool:
        idx = self._resolve_index(where)
        if idx == NOT_FOUND:
            return False
        self.filling_fractions[idx] += fill
        return True

    def add_filling_fraction_in_material(self, point, fill: float, material_id: int) -> bool:
        """Add to the filling fraction only if the located cell has ``material_id``."""
        idx = self._resolve_index(point)
        if idx == NOT_FOUND or int(self.material_ids[idx].item()) != material_id:
            return False
        self.filling_fractions[idx] += fill
        return True

    def add_filling_fractions(self, points, fills) -> torch.Tensor:
        """Accumulate values at the cells containing many points.

        Several points in the same cell all contribute.

        Returns:
            Boolean mask of the points for which a cell was found.
        """
        indices = self.find_indices(points)
        ff = self.filling_fractions
        fills = torch.as_tensor(fills, dtype=ff.dtype, device=ff.device)
        fills = fills.expand(indices.shape)
        found = indices != NOT_FOUND
        ff.index_add_(0, indices[found], fills[found])
        return found

    def clear(self) -> None:
        """Reset all filling fractions to zero."""
        self.filling_fractions.zero_()

    def merge_path(self, path: TracePath, factor: float = 1.0) -> None:
        """Add the increments of a trace path, divided by ``factor``."""
        ff = self.filling_fractions
        if path.has_sparse_data:
            ff.index_add_(
                0,
                path.indices.to(ff.device),
                path.increments.to(device=ff.device, dtype=ff.dtype) / factor,
            )
        if path.has_grid_data:
            if path.grid_increments.shape[0] != self.n_cells:
                raise FieldSizeError(
                    f"Trace path grid data has {path.grid_increments.shape[0]} entries "
                    f"but the cell set has {self.n_cells} cells."
                )
            ff += path.grid_increments.to(device=ff.device, dtype=ff.dtype) / factor

    ### Export ###

    def to_pyvista(self):
        """Unstructured VTK grid with every public field as cell data."""
        from torchcells.io import to_pyvista

        return to_pyvista(self.cell_grid)

    def write_vtu(self, path) -> None:
        self.to_pyvista().save(str(path))
