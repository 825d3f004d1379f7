"""
sample.py
~~~~~~~~~

Labelled input record used for training and evaluation.
"""

from dataclasses import dataclass
from typing import Iterator, Union

import numpy as np

from neuro import matrix_ops as ops
from neuro.errors import InvalidArgument, ShapeMismatch


@dataclass(frozen=True, eq=False)
class Sample:
    """
    One input column and its integer class label.

    The input is stored as an ``(n, 1)`` float matrix; a flat vector is
    reshaped on construction. Samples unpack like pairs::

        for x, y in training_data:
            ...
    """

    input: np.ndarray
    label: int

    def __post_init__(self):
        try:
            x = ops.column(self.input)
        except ShapeMismatch as e:
            raise InvalidArgument(f"Invalid sample input: {e}") from e
        object.__setattr__(self, 'input', x)
        object.__setattr__(self, 'label', _check_label(self.label))

    def __iter__(self) -> Iterator[Union[np.ndarray, int]]:
        yield self.input
        yield self.label


def _check_label(label) -> int:
    if isinstance(label, (bool, np.bool_)):
        raise InvalidArgument(f"Label must be an integer, got {label!r}")
    if isinstance(label, (int, np.integer)):
        value = int(label)
    elif isinstance(label, (float, np.floating)) and float(label).is_integer():
        value = int(label)
    else:
        raise InvalidArgument(f"Label must be an integer, got {label!r}")
    if value < 0:
        raise InvalidArgument(f"Label must be non-negative, got {value}")
    return value
