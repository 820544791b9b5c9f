from torchcells.cell_set import FILLING_FRACTION_KEY, DenseCellSet
from torchcells.config import DEFAULT_CONTEXT, SimulationContext, TransportParameters
from torchcells.geometries import StackGeometry, make_stack
from torchcells.grid import CellGrid
from torchcells.neighbors import NO_NEIGHBOR, Adjacency, NeighborhoodGraph
from torchcells.spatial import BVH, NOT_FOUND
from torchcells.surfaces import BoundaryCondition, BoundarySurface, ImplicitSurface
from torchcells.trace_path import TracePath
from torchcells.transport import (
    ByproductDynamics,
    OxideRegrowthModel,
    StepState,
    SurfaceSamples,
)
from torchcells.voxelize import BOUNDS_EPS, MATERIAL_KEY, voxelize
