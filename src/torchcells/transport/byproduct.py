"""Convection-diffusion of etch byproducts through the gas phase of a cell set.

:class:`ByproductDynamics` is driven by an outer process loop through two
hooks per surface advection increment:

1. :meth:`ByproductDynamics.pre_advect` records the surface samples on etched
   materials and, on a fixed process-time cadence, turns the accumulated
   byproduct field into a redeposition velocity field.
2. :meth:`ByproductDynamics.post_advect` refreshes the materials, injects the
   etched mass under the recorded samples, and integrates the
   convection-diffusion equation over the elapsed advection time.

Concentrations live in the ``filling_fraction`` field; their time integral
is accumulated in ``byproduct_sum``.
"""

import enum
import logging
import warnings
from typing import TYPE_CHECKING, Optional

import torch

from torchcells.config import SimulationContext, TransportParameters
from torchcells.errors import NegativeConcentrationError, StepOrderError
from torchcells.spatial import NOT_FOUND
from torchcells.transport.samples import SurfaceSamples
from torchcells.transport.velocity import RedepositionVelocityField
from torchcells.warnings import NumericalWarning

if TYPE_CHECKING:
    from torchcells.cell_set import DenseCellSet

logger = logging.getLogger(__name__)

BYPRODUCT_SUM_KEY = "byproduct_sum"


class StepState(enum.Enum):
    IDLE = "idle"
    PRE_STEP_DONE = "pre_step_done"
    POST_STEP_DONE = "post_step_done"
    STOPPED = "stopped"


def time_step(
    grid_delta: float,
    diffusion_coefficient: float,
    stability_factor: float,
    n_spatial_dims: int,
) -> float:
    """Explicit diffusion time step, capped at 1.

    ``stability_factor`` is the 2D fraction of ``h**2 / D``; in 3D it is
    scaled by 2/3 to account for the extra pair of face neighbors.
    """
    factor = stability_factor if n_spatial_dims == 2 else stability_factor * 2 / 3
    return min(grid_delta * grid_delta / diffusion_coefficient * factor, 1.0)


class ByproductDynamics:
    """Two-phase transport hooks over a :class:`DenseCellSet`.

    Args:
        cell_set: Built cell set; a ``byproduct_sum`` field is added if absent.
        params: Transport parameters.
        context: Ambient settings; defaults to the cell set's context.

    Attributes:
        state: Current :class:`StepState`.
        etched_points: Sample points on etched materials recorded by the last
            pre-step, shape (n_points, n_coords).
        redeposition_field: Redeposition velocity computed by the last pre-step,
            or None if that pre-step was off the redeposition cadence.
        redeposition_time: Advection time over which ``redeposition_field``
            should be applied by the surface engine.

    Example:
        >>> dynamics = ByproductDynamics(cell_set, params)
        >>> for t in range(n_steps):
        ...     if not dynamics.pre_advect(t * dt, samples):
        ...         break
        ...     # advect the surfaces externally
        ...     if not dynamics.post_advect(dt):
        ...         break
    """

    def __init__(
        self,
        cell_set: "DenseCellSet",
        params: TransportParameters,
        context: Optional[SimulationContext] = None,
    ):
        self.cell_set = cell_set
        self.params = params
        self.context = context or cell_set.context
        if BYPRODUCT_SUM_KEY not in cell_set.scalar_data_names:
            cell_set.add_scalar_data(BYPRODUCT_SUM_KEY, 0.0)

        self.state = StepState.IDLE
        self.etched_points = torch.zeros(
            (0, cell_set.n_spatial_dims), dtype=cell_set.nodes.dtype, device=cell_set.nodes.device
        )
        self.redeposition_field: Optional[RedepositionVelocityField] = None
        self.redeposition_time = 0.0
        self._previous_redeposition_time = 0.0
        self._redeposition_counter = 0

    def _enter(self, hook: str, allowed: tuple[StepState, ...]) -> None:
        if self.state not in allowed:
            raise StepOrderError(
                f"{hook} called in state {self.state.name}; "
                f"expected one of {[s.name for s in allowed]}."
            )

    ### Hooks ###

    def pre_advect(self, process_time: float, samples: SurfaceSamples) -> bool:
        """Record etched samples and update the redeposition field on cadence.

        Args:
            process_time: Elapsed process time before this advection increment.
            samples: Current surface samples.

        Returns:
            True to continue the process loop.

        Raises:
            StepOrderError: If called twice without a post-step in between,
                or after the dynamics stopped.
        """
        self._enter("pre_advect", (StepState.IDLE, StepState.POST_STEP_DONE))

        etched = torch.isin(
            samples.material_ids,
            torch.tensor(self.params.etched_materials, dtype=torch.int64, device=samples.material_ids.device),
        )
        self.etched_points = samples.points[etched]

        self.redeposition_field = None
        interval = self.params.redeposition_interval
        if process_time - interval * (self._redeposition_counter + 1) > -1:
            rates = self.redeposition_rates(process_time, samples)
            self.redeposition_field = RedepositionVelocityField(
                velocities=rates, points=samples.points
            )
            self.redeposition_time = process_time - self._previous_redeposition_time
            self._previous_redeposition_time = process_time
            self._redeposition_counter += 1
            logger.debug(
                "Redeposition update %d at t=%g: %d of %d samples receive material",
                self._redeposition_counter,
                process_time,
                int((rates > 0).sum().item()),
                samples.n_samples,
            )

        self.state = StepState.PRE_STEP_DONE
        return True

    def post_advect(self, advected_time: float) -> bool:
        """Refresh materials, inject etched mass and diffuse.

        Returns:
            False if the material refresh was rejected because the cell
            topology changed; the dynamics then stop.
        """
        self._enter("post_advect", (StepState.PRE_STEP_DONE,))
        cell_set = self.cell_set

        if not cell_set.update_materials():
            logger.warning("Stopping byproduct dynamics: cell set no longer matches the surfaces")
            self.state = StepState.STOPPED
            return False

        if self.etched_points.shape[0] > 0:
            cells = self.injection_cells(self.etched_points)
            cells = cells[cells != NOT_FOUND]
            ff = cell_set.filling_fractions
            amount = self.params.etch_rate * advected_time / cell_set.grid_delta
            ff.index_add_(0, cells, torch.full(cells.shape, amount, dtype=ff.dtype, device=ff.device))

        self.diffuse(advected_time)
        self.state = StepState.POST_STEP_DONE
        return True

    def injection_cells(self, points: torch.Tensor) -> torch.Tensor:
        """Gas cell receiving the etched mass of each surface point.

        Cells are half-open, so a point on a face between a gas cell below
        and a solid cell above (along any axis) is located in the solid
        cell. Such points are moved to the gas face neighbor on that side.

        Returns:
            Cell index per point, ``NOT_FOUND`` where neither the containing
            cell nor its lower face neighbors are gas.
        """
        cell_set = self.cell_set
        n_dims = cell_set.n_spatial_dims
        gas = cell_set.material_ids == self.params.gas_material
        cells = cell_set.find_indices(points)
        if cell_set.n_cells == 0:
            return cells
        found = cells != NOT_FOUND
        safe_cells = cells.clamp(min=0)
        if not bool((found & ~gas[safe_cells]).any()):
            return torch.where(found & gas[safe_cells], cells, torch.full_like(cells, NOT_FOUND))

        ### Lower faces the point lies on, shape (n_points, n_dims)
        lower = cell_set.cell_grid.cell_min_corners[safe_cells]
        coords = torch.as_tensor(points, dtype=lower.dtype, device=lower.device)[:, :n_dims]
        on_face = (coords - lower).abs() <= 1e-6 * cell_set.grid_delta
        below = cell_set.neighborhood.face_neighbors[safe_cells][:, 0::2]
        usable = on_face & (below >= 0) & gas[below.clamp(min=0)]

        first = usable.long().argmax(dim=-1, keepdim=True)
        shifted = below.gather(1, first).squeeze(1)
        resolved = torch.where(gas[safe_cells], cells, shifted)
        resolved_ok = found & (gas[safe_cells] | usable.any(dim=-1))
        return torch.where(resolved_ok, resolved, torch.full_like(cells, NOT_FOUND))

    ### Redeposition ###

    def redeposition_rates(self, process_time: float, samples: SurfaceSamples) -> torch.Tensor:
        """Deposition rate per sample from the accumulated byproduct field.

        Only samples on receiving materials below ``top_height`` get a rate:
        the mean of ``byproduct_sum`` over the gas cell containing the sample
        and its gas neighbors, per unit process time, zeroed below the
        threshold and scaled by the redeposition factor.
        """
        cell_set = self.cell_set
        params = self.params
        n_dims = cell_set.n_spatial_dims
        byproduct_sum = cell_set.get_scalar_data(BYPRODUCT_SUM_KEY)
        rates = torch.zeros(samples.n_samples, dtype=byproduct_sum.dtype, device=byproduct_sum.device)
        if process_time <= 0:
            return rates

        receiving = torch.isin(
            samples.material_ids,
            torch.tensor(params.receiving_materials, dtype=torch.int64, device=samples.material_ids.device),
        ) & (samples.points[:, n_dims - 1] < params.top_height)
        cells = cell_set.find_indices(samples.points)
        active = receiving & (cells != NOT_FOUND)
        if not bool(active.any()):
            return rates
        cells = cells[active]

        ### Gas-neighbor sums per cell
        gas = cell_set.material_ids == params.gas_material
        adjacency = cell_set.neighborhood.adjacency
        neighbor_is_gas = gas[adjacency.indices]
        neighbor_sum = torch.zeros_like(byproduct_sum).index_add_(
            0, adjacency.sources, torch.where(neighbor_is_gas, byproduct_sum[adjacency.indices], 0.0)
        )
        neighbor_count = torch.zeros(cell_set.n_cells, dtype=torch.int64, device=gas.device).index_add_(
            0, adjacency.sources, neighbor_is_gas.long()
        )

        total = torch.where(gas[cells], byproduct_sum[cells], 0.0) + neighbor_sum[cells]
        n = gas[cells].long() + neighbor_count[cells]
        mean = torch.where(n > 1, total / n.clamp(min=1), total)

        rate = mean / process_time
        rate = torch.where(rate < params.redeposition_threshold, 0.0, rate)
        rates[active] = rate * params.redeposition_factor
        return rates

    ### Diffusion ###

    def diffuse(self, time: float) -> int:
        """Integrate the convection-diffusion equation over ``time``.

        Each substep reads the previous substep's values only. Non-gas cells
        hold zero concentration afterwards.

        Returns:
            The number of substeps taken.

        Raises:
            NegativeConcentrationError: If a substep produced a negative
                concentration and ``params.strict`` is set. Otherwise negative
                values are clamped to zero and a warning is logged.
        """
        cell_set = self.cell_set
        params = self.params
        n_dims = cell_set.n_spatial_dims
        h = cell_set.grid_delta

        dt = time_step(h, params.diffusion_coefficient, params.stability_factor, n_dims)
        n_steps = int(time / dt)
        c_diffusion = dt * params.diffusion_coefficient / (h * h)
        c_hole = dt / h * params.hole_velocity
        c_scallop = dt / h * params.scallop_velocity

        ### Static stencil data
        gas = cell_set.material_ids == params.gas_material
        faces = cell_set.neighborhood.face_neighbors  # (n_cells, 2 * n_dims)
        safe_faces = faces.clamp(min=0)
        gas_faces = (faces >= 0) & gas[safe_faces]
        n_gas_faces = gas_faces.sum(dim=-1)

        left, right = safe_faces[:, 0], safe_faces[:, 1]
        up = safe_faces[:, 2 * (n_dims - 1) + 1]
        left_is_gas, right_is_gas = gas_faces[:, 0], gas_faces[:, 1]
        up_is_gas = gas_faces[:, 2 * (n_dims - 1) + 1]

        centers = cell_set.cell_centers
        height = centers[:, -1]
        lateral = centers[:, :-1].norm(dim=-1)
        sink_height = params.sink_height
        if sink_height is None:
            sink_height = float(cell_set.nodes[:, -1].max().item())

        in_sink = gas & (height > sink_height - h)
        in_hole = gas & ~in_sink & (lateral < params.hole_radius)
        on_left = gas & ~in_sink & ~in_hole & (centers[:, 0] < 0)
        on_right = gas & ~in_sink & ~in_hole & (centers[:, 0] >= 0)
        hole_up_scale = (height - h) / params.top_height
        hole_self_scale = height / params.top_height

        concentration = cell_set.filling_fractions
        values = torch.where(gas, concentration, 0.0)
        n_negative = 0

        for _ in range(n_steps):
            neighbor_sum = (values[safe_faces] * gas_faces).sum(dim=-1)
            new = values + c_diffusion * (neighbor_sum - n_gas_faces * values)

            new = torch.where(in_sink, (new - params.sink_strength).clamp(min=0.0), new)
            new = torch.where(
                in_hole & up_is_gas,
                new - c_hole * (hole_up_scale * values[up] - hole_self_scale * values),
                new,
            )
            new = torch.where(on_left & right_is_gas, new - c_scallop * (values[right] - values), new)
            new = torch.where(on_right & left_is_gas, new + c_scallop * (values - values[left]), new)
            new = torch.where(gas, new, 0.0)

            negative = new < 0
            if bool(negative.any()):
                n_negative += int(negative.sum().item())
                if params.strict:
                    raise NegativeConcentrationError(
                        f"Diffusion produced {int(negative.sum().item())} negative concentrations "
                        f"(minimum {float(new.min().item()):g})."
                    )
                new = new.clamp(min=0.0)
            values = new

        if n_negative > 0:
            message = f"Clamped {n_negative} negative concentrations to zero during diffusion"
            logger.warning(message)
            warnings.warn(message, NumericalWarning, stacklevel=2)

        concentration.copy_(values)
        byproduct_sum = cell_set.get_scalar_data(BYPRODUCT_SUM_KEY)
        byproduct_sum += torch.where(gas, values * time, 0.0)

        logger.debug("Diffused over t=%g in %d substeps of dt=%g", time, n_steps, dt)
        return n_steps
