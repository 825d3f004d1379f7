"""
codec.py
~~~~~~~~

Fixed binary layout for a network's parameters.

Layout, in native byte order::

    int32      L                               number of layers
    int32[L]   sizes
    float64    biases[i]  (sizes[i+1] x 1)       for i in 0..L-2, row-major
    float64    weights[i] (sizes[i+1] x sizes[i]) for i in 0..L-2, row-major

Native order makes the bytes a same-machine save format, not a portable
exchange format.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from neuro.errors import FormatError, ShapeMismatch

logger = logging.getLogger(__name__)

INT_DTYPE = np.dtype('=i4')
FLOAT_DTYPE = np.dtype('=f8')


def check_shapes(
    sizes: Sequence[int],
    biases: Sequence[np.ndarray],
    weights: Sequence[np.ndarray]
) -> None:
    if len(biases) != len(sizes) - 1 or len(weights) != len(sizes) - 1:
        raise ShapeMismatch(
            f"Expected {len(sizes) - 1} bias and weight matrices for "
            f"sizes {list(sizes)}, got {len(biases)} and {len(weights)}"
        )
    for i, (b, w) in enumerate(zip(biases, weights)):
        if np.shape(b) != (sizes[i + 1], 1):
            raise ShapeMismatch(
                f"biases[{i}] has shape {np.shape(b)}, "
                f"expected {(sizes[i + 1], 1)}"
            )
        if np.shape(w) != (sizes[i + 1], sizes[i]):
            raise ShapeMismatch(
                f"weights[{i}] has shape {np.shape(w)}, "
                f"expected {(sizes[i + 1], sizes[i])}"
            )


def encode(
    sizes: Sequence[int],
    biases: Sequence[np.ndarray],
    weights: Sequence[np.ndarray]
) -> bytes:
    """
    Serialize network parameters to bytes.

    Args:
        sizes: Layer sizes, input layer first
        biases: One ``(sizes[i+1], 1)`` column per layer boundary
        weights: One ``(sizes[i+1], sizes[i])`` matrix per layer boundary

    Returns:
        The encoded parameters

    Raises:
        ShapeMismatch: If a matrix does not match the layer sizes
    """
    check_shapes(sizes, biases, weights)

    chunks = [
        np.array([len(sizes)], dtype=INT_DTYPE).tobytes(),
        np.asarray(sizes, dtype=INT_DTYPE).tobytes(),
    ]
    for b in biases:
        chunks.append(np.asarray(b, dtype=FLOAT_DTYPE).tobytes(order='C'))
    for w in weights:
        chunks.append(np.asarray(w, dtype=FLOAT_DTYPE).tobytes(order='C'))

    data = b''.join(chunks)
    logger.debug(f"Encoded network {list(sizes)} into {len(data)} bytes")
    return data


class _Reader(object):
    """Sequential reader that refuses to run past the end of the buffer."""

    def __init__(self, data: bytes):
        self.buffer = memoryview(bytes(data))
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.buffer) - self.offset

    def read(self, dtype: np.dtype, count: int, what: str) -> np.ndarray:
        nbytes = dtype.itemsize * count
        if nbytes > self.remaining:
            raise FormatError(
                f"Buffer ended while reading {what}: need {nbytes} bytes "
                f"at offset {self.offset}, only {self.remaining} left"
            )
        values = np.frombuffer(
            self.buffer, dtype=dtype, count=count, offset=self.offset
        ).copy()
        self.offset += nbytes
        return values

    def read_matrix(self, rows: int, cols: int, what: str) -> np.ndarray:
        return self.read(FLOAT_DTYPE, rows * cols, what).reshape(rows, cols)


def decode(
    data: bytes
) -> Tuple[List[int], List[np.ndarray], List[np.ndarray]]:
    """
    Parse bytes produced by :func:`encode`.

    Args:
        data: Encoded parameters

    Returns:
        tuple: (sizes, biases, weights)

    Raises:
        FormatError: If the buffer is truncated, declares an invalid
            architecture, or has bytes left over after the last matrix
    """
    reader = _Reader(data)

    num_layers = int(reader.read(INT_DTYPE, 1, 'layer count')[0])
    if num_layers < 2:
        raise FormatError(
            f"A network needs at least 2 layers, buffer declares {num_layers}"
        )

    sizes = [int(s) for s in reader.read(INT_DTYPE, num_layers, 'layer sizes')]
    if any(s <= 0 for s in sizes):
        raise FormatError(f"Layer sizes must be positive, got {sizes}")

    biases = [
        reader.read_matrix(y, 1, f"biases[{i}]")
        for i, y in enumerate(sizes[1:])
    ]
    weights = [
        reader.read_matrix(y, x, f"weights[{i}]")
        for i, (x, y) in enumerate(zip(sizes[:-1], sizes[1:]))
    ]

    if reader.remaining:
        raise FormatError(
            f"{reader.remaining} unexpected trailing bytes after the "
            f"parameters of network {sizes}"
        )

    return sizes, biases, weights
