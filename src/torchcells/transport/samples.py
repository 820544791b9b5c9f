"""Surface sample points handed to the transport hooks."""

from typing import TYPE_CHECKING

import torch
from tensordict import tensorclass

from torchcells.neighbors import NO_NEIGHBOR

if TYPE_CHECKING:
    from torchcells.cell_set import DenseCellSet


@tensorclass
class SurfaceSamples:
    """Points on the material surface with the material they belong to.

    Attributes:
        points: Sample coordinates, shape (n_samples, n_coords) with
            n_coords >= n_spatial_dims. Only the leading n_spatial_dims
            components are used for point location.
        material_ids: Zero-based material id at each sample, shape (n_samples,).
    """

    points: torch.Tensor  # shape: (n_samples, n_coords)
    material_ids: torch.Tensor  # shape: (n_samples,), dtype: int64

    def __post_init__(self):
        if self.points.ndim != 2:
            raise ValueError(
                f"`points` must have shape (n_samples, n_coords), but got {self.points.shape=}."
            )
        if self.material_ids.shape != self.points.shape[:1]:
            raise ValueError(
                f"Expected one material id per sample, but got "
                f"{self.points.shape=} and {self.material_ids.shape=}."
            )

    @property
    def n_samples(self) -> int:
        return self.points.shape[0]

    @classmethod
    def from_cell_set(cls, cell_set: "DenseCellSet", gas_material: int) -> "SurfaceSamples":
        """Samples at the exposed faces of the solid cells.

        Every face shared by a solid cell and a gas cell contributes one
        sample at the face center, tagged with the solid cell's material.

        Args:
            cell_set: Built cell set.
            gas_material: Material id of the open phase.

        Returns:
            SurfaceSamples in (cell, face direction) order.
        """
        material = cell_set.material_ids
        faces = cell_set.neighborhood.face_neighbors  # (n_cells, 2 * n_dims)
        n_dims = cell_set.n_spatial_dims
        h = cell_set.grid_delta

        ### Faces of solid cells that open onto gas
        has_neighbor = faces != NO_NEIGHBOR
        neighbor_is_gas = has_neighbor & (material[faces.clamp(min=0)] == gas_material)
        exposed = neighbor_is_gas & (material != gas_material).unsqueeze(1)
        cell_idx, slot = torch.nonzero(exposed, as_tuple=True)

        ### Face centers: cell center moved half a spacing towards the gas cell
        offsets = torch.zeros((2 * n_dims, n_dims), dtype=cell_set.nodes.dtype, device=faces.device)
        for axis in range(n_dims):
            offsets[2 * axis, axis] = -h / 2
            offsets[2 * axis + 1, axis] = h / 2
        points = cell_set.cell_centers[cell_idx] + offsets[slot]

        return cls(
            points=points,
            material_ids=material[cell_idx],
        )
