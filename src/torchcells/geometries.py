"""Procedural surface stacks.

Dimensional: 2D (trench) or 3D (cylindrical hole).
"""

import math
from typing import NamedTuple, Optional

import torch

from torchcells.surfaces import BoundaryCondition, ImplicitSurface


class StackGeometry(NamedTuple):
    surfaces: list[ImplicitSurface]
    oxide_materials: tuple[int, ...]
    nitride_materials: tuple[int, ...]
    gas_material: int
    height: float
    mask_material: Optional[int] = None


def make_stack(
    grid_delta: float,
    x_extent: float,
    y_extent: float = 0.0,
    num_layers: int = 11,
    layer_height: float = 2.0,
    substrate_height: float = 4.0,
    hole_radius: float = 0.0,
    mask_height: float = 0.0,
    n_spatial_dims: int = 2,
    periodic: bool = False,
) -> StackGeometry:
    """Create a substrate with alternating oxide/nitride layers on top.

    The substrate comes first and each layer above it follows; even layers
    (counted from the bottom, zero-based) are oxide and odd layers nitride.
    With ``hole_radius > 0`` a trench (2D) or cylindrical hole (3D) of that
    half-width is cut at the lateral origin, from ``z = 0`` to one grid
    spacing above the stack top.

    With ``mask_height > 0`` a mask of that thickness is put on top of the
    stack instead. The hole is then opened in the mask only, and the mask
    becomes material 0, shifting the substrate and the layers up by one.

    Args:
        grid_delta: Grid spacing.
        x_extent: Domain width along x, centered at 0.
        y_extent: Domain width along y (3D only), centered at 0.
        num_layers: Number of layers above the substrate.
        layer_height: Thickness of each layer.
        substrate_height: Height of the substrate top.
        hole_radius: Half-width of the trench or radius of the hole.
        mask_height: Thickness of the mask on top of the stack; 0 for none.
        n_spatial_dims: 2 or 3.
        periodic: Use periodic instead of reflective lateral boundaries.

    Returns:
        StackGeometry with the surfaces (innermost first), the oxide and
        nitride material ids, the material id of the gas above the stack,
        the stack height (without the mask) and the mask material id.
    """
    if n_spatial_dims not in (2, 3):
        raise ValueError(f"Only 2D and 3D stacks are supported, got {n_spatial_dims=}")

    height = substrate_height + num_layers * layer_height
    top = height + max(mask_height, 0.0)
    lateral_extents = [x_extent, y_extent][: n_spatial_dims - 1]
    min_index = tuple(math.floor(-e / 2 / grid_delta) for e in lateral_extents) + (-1,)
    max_index = tuple(math.ceil(e / 2 / grid_delta) for e in lateral_extents) + (
        math.ceil(top / grid_delta) + 1,
    )
    lateral_condition = BoundaryCondition.PERIODIC if periodic else BoundaryCondition.REFLECTIVE
    boundary_conditions = (lateral_condition,) * (n_spatial_dims - 1) + (
        BoundaryCondition.INFINITE,
    )

    normal = [0.0] * (n_spatial_dims - 1) + [1.0]
    origin = [0.0] * n_spatial_dims

    def from_sdf(sdf) -> ImplicitSurface:
        return ImplicitSurface(
            sdf=sdf,
            grid_delta=grid_delta,
            min_index=min_index,
            max_index=max_index,
            boundary_conditions=boundary_conditions,
        )

    def plane_at(z: float) -> ImplicitSurface:
        return ImplicitSurface.plane(
            origin=origin[:-1] + [z],
            normal=normal,
            grid_delta=grid_delta,
            min_index=min_index,
            max_index=max_index,
            boundary_conditions=boundary_conditions,
        )

    def hole_between(z_min: float, z_max: float) -> ImplicitSurface:
        def sdf(points: torch.Tensor) -> torch.Tensor:
            z = points[..., -1]
            radial = points[..., :-1].norm(dim=-1) - hole_radius
            return torch.maximum(radial, torch.maximum(z_min - z, z - z_max))

        return from_sdf(sdf)

    surfaces = [plane_at(substrate_height)]
    for i in range(num_layers):
        surfaces.append(plane_at(substrate_height + layer_height * (i + 1)))

    offset = 0
    if mask_height > 0.0:
        def slab(points: torch.Tensor) -> torch.Tensor:
            z = points[..., -1]
            return torch.maximum(z - top, height - z)

        mask = from_sdf(slab)
        if hole_radius > 0.0:
            mask = mask.difference(hole_between(height - grid_delta, top + grid_delta))
        surfaces = [mask] + [surface.union(mask) for surface in surfaces]
        offset = 1
    elif hole_radius > 0.0:
        ### Cut out the middle
        cut = hole_between(0.0, height + grid_delta)
        surfaces = [surface.difference(cut) for surface in surfaces]

    return StackGeometry(
        surfaces=surfaces,
        oxide_materials=tuple(i + 1 + offset for i in range(0, num_layers, 2)),
        nitride_materials=tuple(i + 1 + offset for i in range(1, num_layers, 2)),
        gas_material=num_layers + 1 + offset,
        height=height,
        mask_material=0 if offset else None,
    )
