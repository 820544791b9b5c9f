"""Byproduct transport through the gas phase of a cell set."""

from torchcells.transport.byproduct import (
    BYPRODUCT_SUM_KEY,
    ByproductDynamics,
    StepState,
    time_step,
)
from torchcells.transport.oxide_regrowth import OxideRegrowthModel
from torchcells.transport.samples import SurfaceSamples
from torchcells.transport.velocity import (
    RedepositionVelocityField,
    SelectiveEtchingVelocityField,
    VelocityField,
    VelocityKind,
    make_velocity_field,
)

__all__ = [
    "BYPRODUCT_SUM_KEY",
    "ByproductDynamics",
    "OxideRegrowthModel",
    "RedepositionVelocityField",
    "SelectiveEtchingVelocityField",
    "StepState",
    "SurfaceSamples",
    "VelocityField",
    "VelocityKind",
    "make_velocity_field",
    "time_step",
]
