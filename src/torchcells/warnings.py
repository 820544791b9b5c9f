"""Structured warning classes for the :mod:`torchcells` package."""


class CellSetWarning(UserWarning):
    """Base warning class for torchcells."""


class TopologyMismatchWarning(CellSetWarning):
    """A material refresh produced a different number of cells and was rejected."""


class NumericalWarning(CellSetWarning):
    """Numerical stability or accuracy warnings."""


__all__ = [
    "CellSetWarning",
    "TopologyMismatchWarning",
    "NumericalWarning",
]
