"""
matrix_ops.py
~~~~~~~~~~~~~

Shape-checked dense matrix primitives used by the network.

Every function takes and returns 2-D numpy arrays. Column vectors are
``(n, 1)`` matrices. Incompatible shapes raise :class:`ShapeMismatch`
instead of relying on numpy broadcasting, which would silently produce
a result of the wrong shape.
"""

from typing import Sequence

import numpy as np

from neuro.errors import ShapeMismatch


def _as_matrix(a: np.ndarray, name: str) -> np.ndarray:
    a = np.asarray(a, dtype=np.float64)
    if a.ndim != 2:
        raise ShapeMismatch(
            f"{name} must be a 2-D matrix, got shape {a.shape}"
        )
    return a


def _same_shape(a: np.ndarray, b: np.ndarray, op: str):
    a = _as_matrix(a, 'left operand')
    b = _as_matrix(b, 'right operand')
    if a.shape != b.shape:
        raise ShapeMismatch(
            f"{op} requires identical shapes, got {a.shape} and {b.shape}"
        )
    return a, b


def multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Matrix product; ``a.cols`` must equal ``b.rows``."""
    a = _as_matrix(a, 'left operand')
    b = _as_matrix(b, 'right operand')
    if a.shape[1] != b.shape[0]:
        raise ShapeMismatch(
            f"Cannot multiply {a.shape} by {b.shape}"
        )
    return np.dot(a, b)


def add(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    a, b = _same_shape(a, b, 'add')
    return a + b


def subtract(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    a, b = _same_shape(a, b, 'subtract')
    return a - b


def hadamard(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Elementwise product of two equally shaped matrices."""
    a, b = _same_shape(a, b, 'hadamard')
    return a * b


def scale(a: np.ndarray, s: float) -> np.ndarray:
    return _as_matrix(a, 'operand') * s


def transpose(a: np.ndarray) -> np.ndarray:
    return _as_matrix(a, 'operand').transpose()


def zeros_like(a: np.ndarray) -> np.ndarray:
    return np.zeros(_as_matrix(a, 'operand').shape)


def sigmoid(z: np.ndarray) -> np.ndarray:
    """The logistic function, elementwise."""
    z = _as_matrix(z, 'operand')
    # exp overflows to inf for very negative z, which still yields 0.0
    with np.errstate(over='ignore'):
        return 1.0 / (1.0 + np.exp(-z))


def sigmoid_prime(z: np.ndarray) -> np.ndarray:
    """Derivative of the sigmoid function."""
    s = sigmoid(z)
    return s * (1 - s)


def argmax(a: np.ndarray) -> int:
    """
    Index of the largest entry of a column vector.

    Ties go to the lowest index.
    """
    a = _as_matrix(a, 'operand')
    if a.shape[1] != 1:
        raise ShapeMismatch(
            f"argmax expects a single-column matrix, got shape {a.shape}"
        )
    return int(np.argmax(a[:, 0]))


def column(values: Sequence[float]) -> np.ndarray:
    """Wrap a flat sequence of numbers as an ``(n, 1)`` column matrix."""
    values = np.asarray(values, dtype=np.float64)
    if values.ndim == 2 and values.shape[1] == 1:
        return values
    if values.ndim != 1:
        raise ShapeMismatch(
            f"Expected a flat vector or a column, got shape {values.shape}"
        )
    return values.reshape(-1, 1)
