from torchcells.io._pyvista import to_pyvista

__all__ = ["to_pyvista"]
