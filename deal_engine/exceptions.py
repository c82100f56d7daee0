"""
Engine exceptions.
"""


class DealEngineError(Exception):
    """Base class for all engine errors."""


class InvalidParameter(DealEngineError, ValueError):
    """Raised when a caller supplies a parameter the engine cannot work with."""
