import torch
from tensordict import TensorDict, tensorclass

from torchcells.errors import FieldSizeError


@tensorclass
class CellGrid:
    """Dense voxel grid of hexahedral (3D) or quad (2D) cells.

    Node 0 of every cell is its minimum corner; the remaining nodes follow VTK
    ordering, so a grid can be exported as an unstructured VTK mesh directly.
    Per-cell fields live in ``cell_data`` whose batch size is the cell count,
    which keeps every field the same length as ``cells``. Keys starting with
    ``_`` are internal bookkeeping (e.g. ``_voxel_index``, the integer lattice
    coordinates of each cell).
    """

    points: torch.Tensor  # shape: (n_points, n_spatial_dims)
    cells: torch.Tensor  # shape: (n_cells, 2 ** n_spatial_dims)
    cell_data: TensorDict = None  # accepts dict/None, converted to TensorDict in __post_init__  # ty: ignore

    def __post_init__(self):
        ### Validate shapes
        if self.points.ndim != 2:
            raise ValueError(
                f"`points` must have shape (n_points, n_spatial_dims), but got {self.points.shape=}."
            )
        if self.cells.ndim != 2:
            raise ValueError(
                f"`cells` must have shape (n_cells, 2 ** n_spatial_dims), but got {self.cells.shape=}."
            )
        if self.cells.shape[1] != 2**self.n_spatial_dims:
            raise ValueError(
                f"Voxel cells in {self.n_spatial_dims}D have {2 ** self.n_spatial_dims} nodes, "
                f"but got {self.cells.shape=}."
            )

        ### Validate dtypes
        if torch.is_floating_point(self.cells):
            raise TypeError(
                f"`cells` must have an int-like dtype, but got {self.cells.dtype=}."
            )

        ### Initialize data TensorDict
        if self.cell_data is None:
            self.cell_data = {}

        if not isinstance(self.cell_data, TensorDict):
            for key, value in dict(self.cell_data).items():
                if value.shape[0] != self.n_cells:
                    raise FieldSizeError(
                        f"Field {key!r} has {value.shape[0]} entries but the grid has {self.n_cells} cells."
                    )
            self.cell_data = TensorDict(
                dict(self.cell_data),
                batch_size=torch.Size([self.n_cells]),
                device=self.points.device,
            )

    @property
    def n_spatial_dims(self) -> int:
        return self.points.shape[-1]

    @property
    def n_points(self) -> int:
        return self.points.shape[0]

    @property
    def n_cells(self) -> int:
        return self.cells.shape[0]

    @property
    def n_nodes_per_cell(self) -> int:
        return self.cells.shape[-1]

    @property
    def cell_min_corners(self) -> torch.Tensor:
        """Minimum corner of each cell, shape (n_cells, n_spatial_dims)."""
        return self.points[self.cells[:, 0]]

    @property
    def cell_centroids(self) -> torch.Tensor:
        """Geometric center of each cell, shape (n_cells, n_spatial_dims)."""
        return self.points[self.cells].mean(dim=1)

    @property
    def field_names(self) -> list[str]:
        """Names of the public (non-underscore) per-cell fields, in insertion order."""
        return [
            key
            for key in self.cell_data.keys()
            if isinstance(key, str) and not key.startswith("_")
        ]

    def set_field(self, name: str, values: torch.Tensor) -> None:
        """Insert or replace a per-cell field, checking its length first."""
        if values.ndim == 0 or values.shape[0] != self.n_cells:
            raise FieldSizeError(
                f"Field {name!r} must have {self.n_cells} entries, but got {tuple(values.shape)=}."
            )
        self.cell_data[name] = values

    def slice_cells(self, indices: int | slice | torch.Tensor) -> "CellGrid":
        """Returns a new CellGrid with a subset of the cells.

        All cell data is sliced in lock-step; the node array is shared.

        Args:
            indices: Indices or mask to select cells.
        """
        new_cell_data: TensorDict = self.cell_data[indices]  # type: ignore
        return CellGrid(
            points=self.points,
            cells=self.cells[indices],
            cell_data=new_cell_data,
        )
