"""Transient per-cell increments recorded by a particle tracer."""

import torch
from tensordict import tensorclass


@tensorclass
class TracePath:
    """Increments collected along traced particle paths.

    A path holds sparse ``(cell index, increment)`` pairs, a dense per-cell
    increment array, or both. It is merged once into the filling fraction
    field of a cell set by :meth:`DenseCellSet.merge_path`.

    Attributes:
        indices: Cell ids of the sparse entries, shape (n_entries,), int64.
            Repeated ids are allowed and accumulate.
        increments: Increment of each sparse entry, shape (n_entries,).
        grid_increments: Dense increments, shape (n_cells,), or empty when
            the path is sparse only.
    """

    indices: torch.Tensor  # shape: (n_entries,), dtype: int64
    increments: torch.Tensor  # shape: (n_entries,)
    grid_increments: torch.Tensor  # shape: (n_cells,) or (0,)

    @classmethod
    def empty(cls, dtype: torch.dtype = torch.float64, device=None) -> "TracePath":
        return cls(
            indices=torch.zeros(0, dtype=torch.int64, device=device),
            increments=torch.zeros(0, dtype=dtype, device=device),
            grid_increments=torch.zeros(0, dtype=dtype, device=device),
        )

    @classmethod
    def from_sparse(cls, indices, increments) -> "TracePath":
        """Path from cell ids and their increments."""
        increments = torch.as_tensor(increments)
        if not torch.is_floating_point(increments):
            increments = increments.to(torch.float64)
        indices = torch.as_tensor(indices, dtype=torch.int64, device=increments.device)
        if indices.shape != increments.shape:
            raise ValueError(
                f"`indices` and `increments` must have the same shape, but got "
                f"{indices.shape=} and {increments.shape=}."
            )
        return cls(
            indices=indices,
            increments=increments,
            grid_increments=torch.zeros(0, dtype=increments.dtype, device=increments.device),
        )

    @classmethod
    def from_grid(cls, grid_increments) -> "TracePath":
        """Path from a dense per-cell increment array."""
        grid_increments = torch.as_tensor(grid_increments)
        if not torch.is_floating_point(grid_increments):
            grid_increments = grid_increments.to(torch.float64)
        return cls(
            indices=torch.zeros(0, dtype=torch.int64, device=grid_increments.device),
            increments=torch.zeros(0, dtype=grid_increments.dtype, device=grid_increments.device),
            grid_increments=grid_increments,
        )

    @property
    def has_sparse_data(self) -> bool:
        return self.indices.shape[0] > 0

    @property
    def has_grid_data(self) -> bool:
        return self.grid_increments.shape[0] > 0

    @property
    def is_empty(self) -> bool:
        return not (self.has_sparse_data or self.has_grid_data)

    def add(self, index: int, increment: float) -> None:
        """Append one sparse entry."""
        self.indices = torch.cat(
            [self.indices, torch.tensor([index], dtype=torch.int64, device=self.indices.device)]
        )
        self.increments = torch.cat(
            [
                self.increments,
                torch.tensor(
                    [increment], dtype=self.increments.dtype, device=self.increments.device
                ),
            ]
        )

    def total(self) -> float:
        """Sum of all increments, sparse and dense."""
        return float(self.increments.sum().item() + self.grid_increments.sum().item())
