"""Velocity fields consumed by the external surface advection engine.

The advection engine only needs a scalar normal velocity (and optionally a
vector velocity) at surface points. Two variants exist: a selective etch
with a constant rate per material, and a redeposition field that returns
the rate of the nearest surface sample.
"""

import dataclasses
import enum
from typing import ClassVar, Mapping, Optional, Protocol, runtime_checkable

import torch


class VelocityKind(enum.Enum):
    SELECTIVE_ETCHING = "selective_etching"
    REDEPOSITION = "redeposition"


@runtime_checkable
class VelocityField(Protocol):
    kind: VelocityKind

    def get_scalar_velocity(
        self,
        points: torch.Tensor,
        material_ids: torch.Tensor,
        normals: Optional[torch.Tensor] = None,
    ) -> torch.Tensor: ...

    def get_vector_velocity(
        self,
        points: torch.Tensor,
        material_ids: torch.Tensor,
        normals: Optional[torch.Tensor] = None,
    ) -> torch.Tensor: ...


@dataclasses.dataclass(frozen=True)
class SelectiveEtchingVelocityField:
    """Constant etch rate per material; materials without a rate are static.

    Attributes:
        rates: Mapping from material id to etch rate. Positive rates remove
            material, so the returned scalar velocity is ``-rate``.

    Example:
        >>> field = SelectiveEtchingVelocityField(rates={2: 1.0, 1: 0.1})
        >>> field.get_scalar_velocity(points, torch.tensor([0, 1, 2]))
        tensor([ 0.0000, -0.1000, -1.0000])
    """

    rates: Mapping[int, float]
    kind: ClassVar[VelocityKind] = VelocityKind.SELECTIVE_ETCHING

    def get_scalar_velocity(self, points, material_ids, normals=None) -> torch.Tensor:
        velocity = torch.zeros(material_ids.shape[0], dtype=points.dtype, device=points.device)
        for material, rate in self.rates.items():
            velocity[material_ids == material] = -rate
        return velocity

    def get_vector_velocity(self, points, material_ids, normals=None) -> torch.Tensor:
        return torch.zeros_like(points)


@dataclasses.dataclass(frozen=True)
class RedepositionVelocityField:
    """Deposition rate of the nearest surface sample.

    Attributes:
        velocities: Rate per sample, shape (n_samples,).
        points: Sample coordinates, shape (n_samples, n_coords).
    """

    velocities: torch.Tensor
    points: torch.Tensor
    kind: ClassVar[VelocityKind] = VelocityKind.REDEPOSITION

    def __post_init__(self):
        if self.velocities.shape[0] != self.points.shape[0]:
            raise ValueError(
                f"Expected one velocity per sample point, but got "
                f"{self.velocities.shape=} and {self.points.shape=}."
            )

    def nearest_sample(self, points: torch.Tensor) -> torch.Tensor:
        """Index of the closest sample to each query point."""
        n_coords = min(points.shape[-1], self.points.shape[-1])
        distances = torch.cdist(
            points[:, :n_coords].to(self.points.dtype), self.points[:, :n_coords]
        )
        return distances.argmin(dim=-1)

    def get_scalar_velocity(self, points, material_ids, normals=None) -> torch.Tensor:
        if self.points.shape[0] == 0:
            return torch.zeros(points.shape[0], dtype=self.velocities.dtype, device=points.device)
        return self.velocities[self.nearest_sample(points)]

    def get_vector_velocity(self, points, material_ids, normals=None) -> torch.Tensor:
        return torch.zeros_like(points)


def make_velocity_field(kind: VelocityKind | str, **kwargs) -> VelocityField:
    """Construct a velocity field variant by kind.

    Args:
        kind: A :class:`VelocityKind` or its string value.
        **kwargs: Forwarded to the variant's constructor.

    Raises:
        ValueError: If ``kind`` is unknown.
    """
    kind = VelocityKind(kind)
    if kind == VelocityKind.SELECTIVE_ETCHING:
        return SelectiveEtchingVelocityField(**kwargs)
    return RedepositionVelocityField(**kwargs)
