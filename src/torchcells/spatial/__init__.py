"""Spatial acceleration structures for point location in cell grids."""

from torchcells.spatial.bvh import BVH, NOT_FOUND, compute_n_layers

__all__ = ["BVH", "NOT_FOUND", "compute_n_layers"]
