"""Boundary surfaces consumed by the voxelizer.

The surface evolution engine is an external collaborator. Anything that
satisfies :class:`BoundarySurface` can be voxelized: a uniform grid spacing,
per-axis grid bounds and boundary conditions, and an implicit function that is
non-positive inside the material region.

:class:`ImplicitSurface` is an analytic implementation of the protocol built
from signed distance functions. Surfaces of a stack are nested: each surface
contains every surface below it, and the outermost material comes last.
"""

import dataclasses
import enum
from typing import Callable, Protocol, Sequence, runtime_checkable

import torch


class BoundaryCondition(enum.Enum):
    REFLECTIVE = "reflective"
    PERIODIC = "periodic"
    INFINITE = "infinite"


@runtime_checkable
class BoundarySurface(Protocol):
    """Narrow interface of a boundary surface as seen by the cell set."""

    grid_delta: float
    boundary_conditions: tuple[BoundaryCondition, ...]
    min_index: tuple[int, ...]
    max_index: tuple[int, ...]
    data_min_index: tuple[int, ...]
    data_max_index: tuple[int, ...]

    @property
    def n_spatial_dims(self) -> int: ...

    def signed_distance(self, points: torch.Tensor) -> torch.Tensor: ...


def _default_boundary_conditions(n_dims: int) -> tuple[BoundaryCondition, ...]:
    return (BoundaryCondition.REFLECTIVE,) * (n_dims - 1) + (
        BoundaryCondition.INFINITE,
    )


@dataclasses.dataclass(frozen=True)
class ImplicitSurface:
    """Analytic boundary surface defined by a signed distance function.

    Attributes:
        sdf: Callable mapping points of shape (n, D) to values of shape (n,),
            negative inside the material.
        grid_delta: Grid spacing shared by the whole surface stack.
        min_index: Lower grid bound per axis, in units of ``grid_delta``.
        max_index: Upper grid bound per axis, in units of ``grid_delta``.
        boundary_conditions: One condition per axis. Defaults to reflective
            lateral axes and an infinite vertical axis.
        data_min_index: Extent of the surface data, used for infinite axes.
            Defaults to ``min_index``.
        data_max_index: Defaults to ``max_index``.

    Example:
        >>> substrate = ImplicitSurface.plane(
        ...     origin=[0.0, 4.0], normal=[0.0, 1.0], grid_delta=1.0,
        ...     min_index=(-5, 0), max_index=(5, 10),
        ... )
        >>> layer = ImplicitSurface.plane(
        ...     origin=[0.0, 6.0], normal=[0.0, 1.0], grid_delta=1.0,
        ...     min_index=(-5, 0), max_index=(5, 10),
        ... ).union(substrate)
    """

    sdf: Callable[[torch.Tensor], torch.Tensor]
    grid_delta: float
    min_index: tuple[int, ...]
    max_index: tuple[int, ...]
    boundary_conditions: tuple[BoundaryCondition, ...] = None  # ty: ignore
    data_min_index: tuple[int, ...] = None  # ty: ignore
    data_max_index: tuple[int, ...] = None  # ty: ignore

    def __post_init__(self):
        if len(self.min_index) != len(self.max_index):
            raise ValueError(
                f"`min_index` and `max_index` must have the same length, but got "
                f"{self.min_index=} and {self.max_index=}."
            )
        if len(self.min_index) not in (2, 3):
            raise ValueError(f"Only 2D and 3D surfaces are supported, got {self.min_index=}")
        if self.grid_delta <= 0:
            raise ValueError(f"`grid_delta` must be positive, got {self.grid_delta=}")

        object.__setattr__(self, "min_index", tuple(int(i) for i in self.min_index))
        object.__setattr__(self, "max_index", tuple(int(i) for i in self.max_index))
        if self.boundary_conditions is None:
            object.__setattr__(
                self,
                "boundary_conditions",
                _default_boundary_conditions(len(self.min_index)),
            )
        if self.data_min_index is None:
            object.__setattr__(self, "data_min_index", self.min_index)
        if self.data_max_index is None:
            object.__setattr__(self, "data_max_index", self.max_index)

    @property
    def n_spatial_dims(self) -> int:
        return len(self.min_index)

    def signed_distance(self, points: torch.Tensor) -> torch.Tensor:
        """Evaluate the implicit function at points of shape (n, >=D)."""
        return self.sdf(points[..., : self.n_spatial_dims])

    def contains(self, points: torch.Tensor) -> torch.Tensor:
        """Boolean mask of points lying inside (or on) the surface."""
        return self.signed_distance(points) <= 0

    def _with_sdf(self, sdf: Callable[[torch.Tensor], torch.Tensor]) -> "ImplicitSurface":
        return dataclasses.replace(self, sdf=sdf)

    ### Boolean operations ###

    def union(self, other: "ImplicitSurface") -> "ImplicitSurface":
        a, b = self.sdf, other.sdf
        return self._with_sdf(lambda p: torch.minimum(a(p), b(p)))

    def intersect(self, other: "ImplicitSurface") -> "ImplicitSurface":
        a, b = self.sdf, other.sdf
        return self._with_sdf(lambda p: torch.maximum(a(p), b(p)))

    def difference(self, other: "ImplicitSurface") -> "ImplicitSurface":
        """Relative complement: the region of ``self`` outside ``other``."""
        a, b = self.sdf, other.sdf
        return self._with_sdf(lambda p: torch.maximum(a(p), -b(p)))

    ### Constructors ###

    @classmethod
    def plane(
        cls,
        origin: Sequence[float],
        normal: Sequence[float],
        grid_delta: float,
        min_index: Sequence[int],
        max_index: Sequence[int],
        boundary_conditions: Sequence[BoundaryCondition] | None = None,
    ) -> "ImplicitSurface":
        """Half-space whose interior lies opposite to ``normal``."""
        origin_t = torch.as_tensor(origin, dtype=torch.float64)
        normal_t = torch.as_tensor(normal, dtype=torch.float64)
        normal_t = normal_t / normal_t.norm()

        def sdf(points: torch.Tensor) -> torch.Tensor:
            o = origin_t.to(device=points.device, dtype=points.dtype)
            n = normal_t.to(device=points.device, dtype=points.dtype)
            return (points - o) @ n

        return cls(
            sdf=sdf,
            grid_delta=grid_delta,
            min_index=tuple(min_index),
            max_index=tuple(max_index),
            boundary_conditions=(
                tuple(boundary_conditions) if boundary_conditions is not None else None
            ),
        )

    @classmethod
    def box(
        cls,
        min_point: Sequence[float],
        max_point: Sequence[float],
        grid_delta: float,
        min_index: Sequence[int],
        max_index: Sequence[int],
        boundary_conditions: Sequence[BoundaryCondition] | None = None,
    ) -> "ImplicitSurface":
        """Axis-aligned box."""
        lo = torch.as_tensor(min_point, dtype=torch.float64)
        hi = torch.as_tensor(max_point, dtype=torch.float64)

        def sdf(points: torch.Tensor) -> torch.Tensor:
            center = ((lo + hi) / 2).to(device=points.device, dtype=points.dtype)
            half = ((hi - lo) / 2).to(device=points.device, dtype=points.dtype)
            q = (points - center).abs() - half
            outside = q.clamp(min=0).norm(dim=-1)
            inside = q.max(dim=-1).values.clamp(max=0)
            return outside + inside

        return cls(
            sdf=sdf,
            grid_delta=grid_delta,
            min_index=tuple(min_index),
            max_index=tuple(max_index),
            boundary_conditions=(
                tuple(boundary_conditions) if boundary_conditions is not None else None
            ),
        )
