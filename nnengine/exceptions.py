"""
exceptions.py
~~~~~~~~~~~~~

Error kinds raised by the matrix engine and the network.

Every error is also a ``ValueError`` so callers that only care about
"bad input" can catch that.
"""


class NNEngineError(Exception):
    """Base class for all engine errors."""


class ShapeMismatch(NNEngineError, ValueError):
    """Operands or data do not have compatible dimensions."""


class AddSubShapeMismatch(ShapeMismatch):
    pass


class MulShapeMismatch(ShapeMismatch):
    pass


class HadamardShapeMismatch(ShapeMismatch):
    pass


class BroadcastShapeMismatch(ShapeMismatch):
    pass


class DeserializationError(NNEngineError, ValueError):
    """A matrix or network record is malformed."""


class InvalidConfig(NNEngineError, ValueError):
    """Training configuration, topology or settings value is invalid."""


class UnknownActivation(NNEngineError, ValueError):
    """No builtin activation is registered under the requested name."""
