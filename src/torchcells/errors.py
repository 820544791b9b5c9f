"""Custom exceptions for the :mod:`torchcells` package."""


class CellSetError(Exception):
    """Base exception for cell set errors."""


class ConfigurationError(CellSetError, ValueError):
    """Invalid construction or transport parameters."""


class EmptySurfaceStackError(CellSetError, ValueError):
    """A cell set was requested from a stack without any boundary surface."""


class FieldSizeError(CellSetError, ValueError):
    """A per-cell field does not match the number of cells."""


class StepOrderError(CellSetError, RuntimeError):
    """The pre/post advection hooks were called out of order."""


class NegativeConcentrationError(CellSetError, RuntimeError):
    """A transport step produced a negative concentration."""


__all__ = [
    "CellSetError",
    "ConfigurationError",
    "EmptySurfaceStackError",
    "FieldSizeError",
    "StepOrderError",
    "NegativeConcentrationError",
]
