"""
errors.py
~~~~~~~~~

Exceptions raised by the network core.

They all signal caller misuse or corrupt input, so they propagate to the
caller instead of being retried.
"""


class NetworkError(ValueError):
    """Base class for every error raised by the network core."""


class ShapeMismatch(NetworkError):
    """Two matrices (or a matrix and a layer size) have incompatible shapes."""


class FormatError(NetworkError):
    """A serialized network buffer is truncated or internally inconsistent."""


class InvalidArgument(NetworkError):
    """An argument is outside the range the operation accepts."""
