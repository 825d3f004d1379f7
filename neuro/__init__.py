"""
neuro package
~~~~~~~~~~~~~

Feed-forward neural network trainer for MNIST digit recognition.
Contains the network core with its binary parameter format, data loading
utilities, model persistence, and API server.
"""

from neuro.errors import FormatError, InvalidArgument, NetworkError, ShapeMismatch
from neuro.network import Network
from neuro.random_source import RandomSource
from neuro.sample import Sample

__version__ = "1.0.0"

__all__ = [
    'FormatError',
    'InvalidArgument',
    'Network',
    'NetworkError',
    'RandomSource',
    'Sample',
    'ShapeMismatch',
]
