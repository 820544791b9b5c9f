"""Tests for surface sample extraction."""

import pytest
import torch

from torchcells.cell_set import DenseCellSet
from torchcells.geometries import make_stack
from torchcells.transport import SurfaceSamples


class TestSurfaceSamples:
    def test_shape_validation(self):
        with pytest.raises(ValueError, match="one material id per sample"):
            SurfaceSamples(points=torch.zeros((3, 2)), material_ids=torch.zeros(2, dtype=torch.int64))

    def test_flat_stack(self, stack_2d):
        cell_set = DenseCellSet(stack_2d, depth=2.0, above_surface=True)
        samples = SurfaceSamples.from_cell_set(cell_set, gas_material=2)

        assert samples.n_samples == 6
        assert (samples.material_ids == 1).all()
        assert samples.points[:, 1].tolist() == [4.0] * 6
        assert samples.points[:, 0].tolist() == [0.5, 1.5, 2.5, 3.5, 4.5, 5.5]

    def test_trench_walls(self):
        geometry = make_stack(
            grid_delta=1.0,
            x_extent=10.0,
            num_layers=3,
            layer_height=2.0,
            substrate_height=2.0,
            hole_radius=2.0,
        )
        cell_set = DenseCellSet(geometry.surfaces, depth=4.0, above_surface=True)
        samples = SurfaceSamples.from_cell_set(cell_set, gas_material=geometry.gas_material)

        on_walls = samples.points[:, 0].abs() == 2.0
        assert on_walls.any()
        # nitride layer 2 spans z in (4, 6]
        nitride_walls = on_walls & (samples.material_ids == 2)
        assert sorted(samples.points[nitride_walls, 1].tolist()) == [4.5, 4.5, 5.5, 5.5]
