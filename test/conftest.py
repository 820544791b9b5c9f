"""Pytest configuration and shared fixtures for torchcells tests.

This module provides common fixtures (surface stacks, built cell sets) and
helpers used across the test suite. All functions and fixtures defined here
are automatically available to all test files without explicit imports.
"""

import pytest
import torch

from torchcells.surfaces import ImplicitSurface


### Pytest Hooks ###


def pytest_collection_modifyitems(config, items):
    """Skip tests marked with 'cuda' if CUDA is not available."""
    if torch.cuda.is_available():
        return  # CUDA available, run all tests

    skip_cuda = pytest.mark.skip(reason="CUDA not available")
    for item in items:
        if "cuda" in item.keywords:
            item.add_marker(skip_cuda)


### Surface Generators (Standalone Functions) ###


def horizontal_plane(
    height: float,
    min_index: tuple[int, ...],
    max_index: tuple[int, ...],
    grid_delta: float = 1.0,
) -> ImplicitSurface:
    """Half-space below ``height`` along the last axis."""
    n_dims = len(min_index)
    return ImplicitSurface.plane(
        origin=[0.0] * (n_dims - 1) + [height],
        normal=[0.0] * (n_dims - 1) + [1.0],
        grid_delta=grid_delta,
        min_index=min_index,
        max_index=max_index,
    )


def layered_stack(
    heights: list[float],
    min_index: tuple[int, ...],
    max_index: tuple[int, ...],
    grid_delta: float = 1.0,
) -> list[ImplicitSurface]:
    """Flat layers with tops at ``heights``, innermost first."""
    return [horizontal_plane(h, min_index, max_index, grid_delta) for h in heights]


def gas_column(n_cells: int = 10, grid_delta: float = 1.0) -> list[ImplicitSurface]:
    """Single-surface stack voxelizing to a one-cell-wide 2D column."""
    return [
        horizontal_plane(
            n_cells * grid_delta, (0, 0), (1, n_cells), grid_delta=grid_delta
        )
    ]


### Pytest Fixtures ###


@pytest.fixture(
    params=[
        "cpu",
        pytest.param("cuda", marks=pytest.mark.cuda),
    ]
)
def device(request):
    """Parametrize tests over all available devices (CPU, CUDA)."""
    return request.param


@pytest.fixture
def make_layers():
    """Factory for flat layered stacks: ``make_layers(heights, min_index, max_index)``."""
    return layered_stack


@pytest.fixture
def make_column():
    """Factory for one-cell-wide gas columns: ``make_column(n_cells)``."""
    return gas_column


@pytest.fixture
def stack_2d():
    """Two flat layers (tops at 2 and 4) on a 6 x 6 lattice."""
    return layered_stack([2.0, 4.0], (0, 0), (6, 6))


@pytest.fixture
def stack_3d():
    """Two flat layers (tops at 1 and 3) on a 3 x 3 x 4 lattice."""
    return layered_stack([1.0, 3.0], (0, 0, 0), (3, 3, 4))


@pytest.fixture(params=[2, 3])
def stack(request, stack_2d, stack_3d):
    """Parametrize over the 2D and 3D stacks."""
    return stack_2d if request.param == 2 else stack_3d
