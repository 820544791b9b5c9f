"""Selective etching of a nitride/oxide stack with oxide redeposition."""

import logging
from typing import TYPE_CHECKING, Optional

from torchcells.config import SimulationContext, TransportParameters
from torchcells.transport.byproduct import ByproductDynamics
from torchcells.transport.samples import SurfaceSamples
from torchcells.transport.velocity import SelectiveEtchingVelocityField

if TYPE_CHECKING:
    from torchcells.cell_set import DenseCellSet

logger = logging.getLogger(__name__)


class OxideRegrowthModel:
    """Process model bundling the etch velocity field and the byproduct dynamics.

    The etched materials recede at ``params.etch_rate`` and the receiving
    materials at ``oxide_etch_rate``. Byproducts released by the etch diffuse
    through the gas and are redeposited on the receiving materials.

    Args:
        cell_set: Cell set built above the surface stack.
        params: Transport parameters. Their stability is checked against the
            grid spacing of ``cell_set``.
        oxide_etch_rate: Etch rate of the receiving materials.
        context: Ambient settings; defaults to the cell set's context.

    Raises:
        ConfigurationError: If the convective velocities are too large for
            the grid spacing.
    """

    process_name = "OxideRegrowth"

    def __init__(
        self,
        cell_set: "DenseCellSet",
        params: TransportParameters,
        oxide_etch_rate: float = 0.0,
        context: Optional[SimulationContext] = None,
    ):
        params.check_stability(cell_set.grid_delta)

        rates = {material: oxide_etch_rate for material in params.receiving_materials}
        rates.update({material: params.etch_rate for material in params.etched_materials})
        self.velocity_field = SelectiveEtchingVelocityField(rates=rates)
        self.dynamics = ByproductDynamics(cell_set, params, context=context)
        logger.info(
            "%s model: etch rates %s, %d cells",
            self.process_name,
            rates,
            cell_set.n_cells,
        )

    @property
    def cell_set(self) -> "DenseCellSet":
        return self.dynamics.cell_set

    def pre_advect(self, process_time: float, samples: SurfaceSamples) -> bool:
        return self.dynamics.pre_advect(process_time, samples)

    def post_advect(self, advected_time: float) -> bool:
        return self.dynamics.post_advect(advected_time)
