"""Offset/indices storage for ragged index relationships.

Neighbor lists and spatial-index leaves both map a source (a cell, node or
leaf) to a variable number of cell ids. They are stored as two flat integer
arrays rather than as per-source containers, so every relationship is a plain
index into the owning grid.
"""

import torch
from tensordict import tensorclass


@tensorclass
class Adjacency:
    """Ragged mapping from sources to integer ids in CSR encoding.

    Attributes:
        offsets: Start of each source's id list within ``indices``.
            Shape (n_sources + 1,), dtype int64. The ids of source i are
            ``indices[offsets[i]:offsets[i+1]]``.
        indices: All ids, grouped by source. Shape (total_entries,), dtype int64.

    Example:
        >>> adj = Adjacency(
        ...     offsets=torch.tensor([0, 2, 2, 3]),
        ...     indices=torch.tensor([1, 2, 0]),
        ... )
        >>> adj.to_list()
        [[1, 2], [], [0]]
    """

    offsets: torch.Tensor  # shape: (n_sources + 1,), dtype: int64
    indices: torch.Tensor  # shape: (total_entries,), dtype: int64

    def __post_init__(self):
        if len(self.offsets) < 1:
            raise ValueError(
                f"Offsets must have length n_sources + 1 >= 1, but got {len(self.offsets)=}."
            )
        if self.offsets[0].item() != 0:
            raise ValueError(f"First offset must be 0, but got {self.offsets[0].item()=}.")
        last_offset = self.offsets[-1].item()
        if last_offset != len(self.indices):
            raise ValueError(
                f"Last offset must equal the number of indices, but got "
                f"{last_offset=} != {len(self.indices)=}."
            )

    @classmethod
    def empty(cls, n_sources: int, device=None) -> "Adjacency":
        """Adjacency with ``n_sources`` empty lists."""
        return cls(
            offsets=torch.zeros(n_sources + 1, dtype=torch.int64, device=device),
            indices=torch.zeros(0, dtype=torch.int64, device=device),
        )

    @classmethod
    def from_sorted_pairs(
        cls, sources: torch.Tensor, targets: torch.Tensor, n_sources: int
    ) -> "Adjacency":
        """Build from (source, target) pairs already sorted by source."""
        offsets = torch.zeros(n_sources + 1, dtype=torch.int64, device=sources.device)
        offsets[1:] = torch.cumsum(torch.bincount(sources, minlength=n_sources), dim=0)
        return cls(offsets=offsets, indices=targets)

    @property
    def n_sources(self) -> int:
        return len(self.offsets) - 1

    @property
    def n_total_neighbors(self) -> int:
        return len(self.indices)

    @property
    def counts(self) -> torch.Tensor:
        """Number of ids per source, shape (n_sources,)."""
        return self.offsets[1:] - self.offsets[:-1]

    @property
    def sources(self) -> torch.Tensor:
        """Source of every entry of ``indices``, shape (total_entries,)."""
        return torch.arange(
            self.n_sources, dtype=torch.int64, device=self.offsets.device
        ).repeat_interleave(self.counts)

    def get(self, source: int) -> torch.Tensor:
        """Ids of a single source."""
        return self.indices[self.offsets[source] : self.offsets[source + 1]]

    def to_list(self) -> list[list[int]]:
        """Ragged list-of-lists view, preserving stored order."""
        offsets = self.offsets.cpu().tolist()
        indices = self.indices.cpu().tolist()
        return [indices[offsets[i] : offsets[i + 1]] for i in range(len(offsets) - 1)]
