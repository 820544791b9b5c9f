"""Configuration models for cell sets and byproduct transport.

All configuration is explicit: a :class:`SimulationContext` carries the
ambient settings (device, dtype, thread count, log verbosity) and is threaded
through the entry points, while :class:`TransportParameters` holds the
structural parameters of the convection-diffusion model.
"""

import logging
from typing import Literal, Optional, Tuple

import torch
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from torchcells.errors import ConfigurationError

logger = logging.getLogger(__name__)

_DTYPES = {
    "float32": torch.float32,
    "float64": torch.float64,
}


class SimulationContext(BaseModel):
    """Ambient settings shared by every cell set operation."""

    model_config = ConfigDict(frozen=True)

    device: str = Field("cpu", description="torch device for all tensors")
    dtype: Literal["float32", "float64"] = Field(
        "float64", description="Floating point precision of coordinates and fields"
    )
    num_threads: Optional[int] = Field(
        None, gt=0, description="Intra-op thread count; None keeps the torch default"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"

    @property
    def torch_device(self) -> torch.device:
        return torch.device(self.device)

    @property
    def torch_dtype(self) -> torch.dtype:
        return _DTYPES[self.dtype]

    def apply(self) -> "SimulationContext":
        """Apply thread count and log level to torch and the package logger."""
        if self.num_threads is not None:
            torch.set_num_threads(self.num_threads)
        logging.getLogger("torchcells").setLevel(self.log_level)
        return self


DEFAULT_CONTEXT = SimulationContext()


class TransportParameters(BaseModel):
    """Parameters of the byproduct convection-diffusion model.

    Lengths are in the units of the grid spacing, times in process time units.
    Material ids refer to the zero-based ids stored in the cell set.
    """

    model_config = ConfigDict(frozen=True)

    diffusion_coefficient: float = Field(1.0, gt=0)
    sink_strength: float = Field(1.0, ge=0)
    sink_height: Optional[float] = Field(
        None, description="Height of the sink; None uses the top of the cell set"
    )
    scallop_velocity: float = Field(1.0, ge=0)
    hole_velocity: float = Field(1.0, ge=0)
    top_height: float = Field(..., description="Top of the processed stack")
    hole_radius: float = Field(0.0, ge=0)
    etch_rate: float = Field(0.0, ge=0)
    redeposition_factor: float = Field(1.0, ge=0)
    redeposition_threshold: float = Field(0.1, ge=0)
    redeposition_interval: float = Field(60.0, gt=0)
    stability_factor: float = Field(
        0.245, gt=0, le=0.25, description="Fraction of h^2/D used as time step in 2D"
    )
    gas_material: int = Field(..., ge=0)
    etched_materials: Tuple[int, ...] = ()
    receiving_materials: Tuple[int, ...] = ()
    strict: bool = Field(
        False, description="Raise instead of clamping negative concentrations"
    )

    @field_validator("etched_materials", "receiving_materials")
    @classmethod
    def _non_negative_ids(cls, value: Tuple[int, ...]) -> Tuple[int, ...]:
        if any(v < 0 for v in value):
            raise ConfigurationError(f"material ids must be >= 0, got {value}")
        return value

    @model_validator(mode="after")
    def _gas_not_etched(self) -> "TransportParameters":
        if self.gas_material in self.etched_materials:
            raise ConfigurationError(
                f"gas material {self.gas_material} cannot be an etched material"
            )
        return self

    def check_stability(self, grid_delta: float) -> float:
        """Check the grid Peclet condition for the convective terms.

        Returns the stability length ``2 D / max(v)`` and raises
        :class:`ConfigurationError` if half of it does not exceed the grid
        spacing.
        """
        max_velocity = max(self.hole_velocity, self.scallop_velocity)
        if max_velocity == 0.0:
            return float("inf")
        stability = 2 * self.diffusion_coefficient / max_velocity
        logger.info("Stability length: %g (grid delta %g)", stability, grid_delta)
        if 0.5 * stability <= grid_delta:
            raise ConfigurationError(
                f"Unstable parameters: 0.5 * {stability=} <= {grid_delta=}. "
                f"Reduce the grid spacing."
            )
        return stability
