"""Conversion of a nested surface stack into a dense voxel cell grid.

Every voxel of the lattice spanned by the top surface is classified by testing
its center against the boundaries in insertion order. The first boundary that
contains the center determines the material; voxels outside every boundary
are dropped. An optional probing half-space, offset from the top or bottom of
the stack by ``depth``, extends the grid above or below the surfaces.
"""

import logging
import math
from typing import Callable, NamedTuple, Sequence

import torch

from torchcells.errors import EmptySurfaceStackError
from torchcells.grid import CellGrid
from torchcells.surfaces import BoundaryCondition, BoundarySurface

logger = logging.getLogger(__name__)

BOUNDS_EPS = 1e-4
MATERIAL_KEY = "material"
VOXEL_INDEX_KEY = "_voxel_index"

_CORNER_OFFSETS = {
    2: [(0, 0), (1, 0), (1, 1), (0, 1)],
    3: [
        (0, 0, 0),
        (1, 0, 0),
        (1, 1, 0),
        (0, 1, 0),
        (0, 0, 1),
        (1, 0, 1),
        (1, 1, 1),
        (0, 1, 1),
    ],
}


class VoxelizationResult(NamedTuple):
    grid: CellGrid
    aabb_min: torch.Tensor  # shape: (n_spatial_dims,), padded by BOUNDS_EPS
    aabb_max: torch.Tensor  # shape: (n_spatial_dims,)
    depth_plane_position: float
    lattice_min: tuple[int, ...]
    lattice_max: tuple[int, ...]


def corner_offsets(n_spatial_dims: int, device=None) -> torch.Tensor:
    """Lattice offsets of the voxel nodes in VTK quad/hexahedron order."""
    return torch.tensor(_CORNER_OFFSETS[n_spatial_dims], dtype=torch.int64, device=device)


def surface_index_bounds(surface: BoundarySurface) -> tuple[list[int], list[int]]:
    """Lattice bounds of a surface, using the data extent along infinite axes."""
    min_bounds, max_bounds = [], []
    for axis, condition in enumerate(surface.boundary_conditions):
        if condition == BoundaryCondition.INFINITE:
            min_bounds.append(int(surface.data_min_index[axis]))
            max_bounds.append(int(surface.data_max_index[axis]))
        else:
            min_bounds.append(int(surface.min_index[axis]))
            max_bounds.append(int(surface.max_index[axis]))
    return min_bounds, max_bounds


def probe_plane_position(
    surface: BoundarySurface, depth: float, above_surface: bool
) -> float:
    """Height of the probing half-space for a given depth and side."""
    h = surface.grid_delta
    min_bounds, max_bounds = surface_index_bounds(surface)
    if above_surface:
        return max_bounds[-1] * h + depth - h
    return min_bounds[-1] * h - depth + h


def make_probe_plane(position: float) -> Callable[[torch.Tensor], torch.Tensor]:
    """Implicit function of the half-space below ``position`` on the vertical axis."""

    def plane(points: torch.Tensor) -> torch.Tensor:
        return points[..., -1] - position

    return plane


def _validate_stack(surfaces: Sequence[BoundarySurface]) -> None:
    if len(surfaces) == 0:
        raise EmptySurfaceStackError(
            "Cannot build a cell set from an empty surface stack."
        )
    top = surfaces[-1]
    for i, surface in enumerate(surfaces):
        if surface.n_spatial_dims != top.n_spatial_dims:
            raise ValueError(
                f"All surfaces must have the same dimension, but surface {i} has "
                f"{surface.n_spatial_dims=} and the top surface has {top.n_spatial_dims=}."
            )
        if not math.isclose(surface.grid_delta, top.grid_delta):
            raise ValueError(
                f"All surfaces must share the grid spacing, but surface {i} has "
                f"{surface.grid_delta=} and the top surface has {top.grid_delta=}."
            )


def classify_points(
    boundaries: Sequence[Callable[[torch.Tensor], torch.Tensor]],
    points: torch.Tensor,
) -> torch.Tensor:
    """One-based index of the first boundary containing each point, 0 if none.

    Args:
        boundaries: Implicit functions, non-positive inside, in insertion order.
        points: Query points, shape (n_points, n_spatial_dims).

    Returns:
        Tensor of shape (n_points,), dtype int64.
    """
    raw_ids = torch.zeros(points.shape[0], dtype=torch.int64, device=points.device)
    for k, boundary in enumerate(boundaries):
        inside = (boundary(points) <= 0) & (raw_ids == 0)
        raw_ids[inside] = k + 1
    return raw_ids


def _lattice(lo: Sequence[int], hi: Sequence[int], device) -> torch.Tensor:
    """All lattice coordinates in [lo, hi), vertical axis slowest, axis 0 fastest."""
    ranges = [
        torch.arange(lo[axis], hi[axis], dtype=torch.int64, device=device)
        for axis in reversed(range(len(lo)))
    ]
    grids = torch.meshgrid(*ranges, indexing="ij")
    return torch.stack([g.reshape(-1) for g in reversed(grids)], dim=-1)


def voxelize(
    surfaces: Sequence[BoundarySurface],
    depth: float = 0.0,
    above_surface: bool = False,
    device: torch.device | str | None = None,
    dtype: torch.dtype = torch.float64,
) -> VoxelizationResult:
    """Convert a stack of nested boundary surfaces into a voxel cell grid.

    Args:
        surfaces: Boundary surfaces, innermost first and outermost last.
        depth: Offset of the probing half-space from the extreme vertical
            grid bound of the top surface. No half-space is inserted for 0.
        above_surface: Whether the probing half-space extends the grid above
            the stack (cells between the stack and the plane get the id
            ``len(surfaces)``) or below it (cells in the probe layer merge
            into material 0).
        device: Device of the resulting tensors.
        dtype: Floating point dtype of the node coordinates.

    Returns:
        VoxelizationResult with the grid (carrying ``material`` and
        ``_voxel_index`` cell data), the padded bounding box, the probe plane
        position and the lattice range.

    Raises:
        EmptySurfaceStackError: If ``surfaces`` is empty.
        ValueError: If the surfaces do not share dimension and grid spacing.
    """
    _validate_stack(surfaces)
    top = surfaces[-1]
    h = top.grid_delta
    n_dims = top.n_spatial_dims

    ### Lattice range and probing plane
    lattice_min, lattice_max = surface_index_bounds(top)
    plane_position = probe_plane_position(top, depth, above_surface)
    use_plane = depth > 0.0
    if use_plane:
        if above_surface:
            lattice_max[-1] = math.ceil(plane_position / h - 1e-6)
        else:
            lattice_min[-1] = math.floor(plane_position / h + 1e-6) - 1

    boundaries: list[Callable[[torch.Tensor], torch.Tensor]] = [
        s.signed_distance for s in surfaces
    ]
    if use_plane:
        plane = make_probe_plane(plane_position)
        if above_surface:
            boundaries.append(plane)
        else:
            boundaries.insert(0, plane)

    ### Classify voxel centers
    lattice = _lattice(lattice_min, lattice_max, device)
    centers = (lattice.to(dtype) + 0.5) * h
    raw_ids = classify_points(boundaries, centers)
    keep = raw_ids > 0
    voxel_index = lattice[keep]
    material_ids = raw_ids[keep] - 1
    # Only the probe layer is folded into the bottom material; without a probe
    # plane (depth 0) the ids stay as classified.
    if use_plane and not above_surface:
        material_ids = (material_ids - 1).clamp(min=0)

    ### Build nodes, numbered in lattice order (vertical axis slowest)
    node_lo = torch.tensor(lattice_min, dtype=torch.int64, device=lattice.device)
    node_shape = [hi - lo + 1 for lo, hi in zip(lattice_min, lattice_max)]
    strides = [1]
    for size in node_shape[:-1]:
        strides.append(strides[-1] * size)
    strides_t = torch.tensor(strides, dtype=torch.int64, device=lattice.device)

    # Shape: (n_cells, 2 ** n_dims, n_dims)
    corners = voxel_index.unsqueeze(1) + corner_offsets(n_dims, lattice.device)
    corner_keys = ((corners - node_lo) * strides_t).sum(dim=-1)
    unique_keys, inverse = torch.unique(corner_keys.reshape(-1), return_inverse=True)

    node_shape_t = torch.tensor(node_shape, dtype=torch.int64, device=lattice.device)
    node_lattice = (unique_keys.unsqueeze(-1) // strides_t) % node_shape_t + node_lo
    points = node_lattice.to(dtype) * h
    cells = inverse.reshape(-1, 2**n_dims)

    grid = CellGrid(
        points=points,
        cells=cells,
        cell_data={
            MATERIAL_KEY: material_ids,
            VOXEL_INDEX_KEY: voxel_index,
        },
    )

    aabb_min = torch.tensor(lattice_min, dtype=dtype, device=lattice.device) * h - BOUNDS_EPS
    aabb_max = torch.tensor(lattice_max, dtype=dtype, device=lattice.device) * h + BOUNDS_EPS

    logger.debug(
        "Voxelized %d surfaces into %d cells and %d nodes (lattice %s to %s)",
        len(surfaces),
        grid.n_cells,
        grid.n_points,
        lattice_min,
        lattice_max,
    )

    return VoxelizationResult(
        grid=grid,
        aabb_min=aabb_min,
        aabb_max=aabb_max,
        depth_plane_position=plane_position,
        lattice_min=tuple(lattice_min),
        lattice_max=tuple(lattice_max),
    )
