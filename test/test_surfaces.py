"""Tests for analytic boundary surfaces."""

import pytest
import torch

from torchcells.surfaces import BoundaryCondition, BoundarySurface, ImplicitSurface


def make_plane(height: float = 2.0) -> ImplicitSurface:
    return ImplicitSurface.plane(
        origin=[0.0, height],
        normal=[0.0, 1.0],
        grid_delta=1.0,
        min_index=(0, 0),
        max_index=(4, 4),
    )


class TestImplicitSurface:
    """Tests for ImplicitSurface construction and evaluation."""

    def test_satisfies_protocol(self):
        assert isinstance(make_plane(), BoundarySurface)

    def test_default_boundary_conditions(self):
        surface = make_plane()
        assert surface.boundary_conditions == (
            BoundaryCondition.REFLECTIVE,
            BoundaryCondition.INFINITE,
        )
        assert surface.data_min_index == surface.min_index
        assert surface.data_max_index == surface.max_index

    def test_plane_interior_opposite_normal(self):
        surface = make_plane(2.0)
        points = torch.tensor([[0.5, 1.5], [0.5, 2.0], [0.5, 2.5]], dtype=torch.float64)

        assert surface.contains(points).tolist() == [True, True, False]
        assert torch.allclose(
            surface.signed_distance(points),
            torch.tensor([-0.5, 0.0, 0.5], dtype=torch.float64),
        )

    def test_extra_coordinates_ignored(self):
        """Points with a third coordinate are evaluated on their first two."""
        surface = make_plane(2.0)
        points = torch.tensor([[0.5, 1.5, 100.0]], dtype=torch.float64)
        assert surface.contains(points).item()

    def test_box(self):
        box = ImplicitSurface.box(
            min_point=[1.0, 1.0],
            max_point=[3.0, 2.0],
            grid_delta=1.0,
            min_index=(0, 0),
            max_index=(4, 4),
        )
        points = torch.tensor([[2.0, 1.5], [0.5, 1.5], [2.0, 2.5]], dtype=torch.float64)
        assert box.contains(points).tolist() == [True, False, False]

    def test_boolean_operations(self):
        lower = make_plane(2.0)
        upper = make_plane(3.0)
        points = torch.tensor([[0.5, 1.5], [0.5, 2.5], [0.5, 3.5]], dtype=torch.float64)

        assert upper.union(lower).contains(points).tolist() == [True, True, False]
        assert upper.intersect(lower).contains(points).tolist() == [True, False, False]
        assert upper.difference(lower).contains(points).tolist() == [False, True, False]

    @pytest.mark.parametrize(
        "kwargs",
        [
            dict(min_index=(0,), max_index=(4,)),
            dict(min_index=(0, 0), max_index=(4, 4, 4)),
            dict(min_index=(0, 0), max_index=(4, 4), grid_delta=0.0),
        ],
    )
    def test_invalid_construction(self, kwargs):
        params = dict(sdf=lambda p: p[..., -1], grid_delta=1.0)
        params.update(kwargs)
        with pytest.raises(ValueError):
            ImplicitSurface(**params)
