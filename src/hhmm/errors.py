"""Exceptions raised by the bridge.

Callers can tell a refused operation (`InvalidArgument`, `InvalidHandle`)
from one that was attempted and failed (`ModelFitError`, `FormatError`)
and from an unavailable resource (`ModelIOError`).
"""

__all__ = [
    'BridgeError',
    'InvalidArgument',
    'InvalidHandle',
    'ModelFitError',
    'ModelIOError',
    'FormatError',
]


class BridgeError(Exception):
    """Base class of every error raised by the bridge."""


class InvalidArgument(BridgeError, ValueError):
    """Malformed shapes, dimensionality mismatch, negative lengths, or a
    model in the wrong state for the requested operation."""


class InvalidHandle(BridgeError, LookupError):
    """Unknown, destroyed or wrongly-typed handle."""


class ModelFitError(BridgeError, RuntimeError):
    """Training failed inside the sequence model."""


class ModelIOError(BridgeError, OSError):
    """Persisted document could not be read or written."""


class FormatError(BridgeError, ValueError):
    """Persisted document is malformed."""
