"""
random_source.py
~~~~~~~~~~~~~~~~

Randomness owned by a network: parameter initialization and shuffling.
"""

from typing import MutableSequence, Optional, Tuple, Union

import numpy as np


class RandomSource(object):
    """
    Seedable source of uniform samples, standard normals and shuffles.

    Each network owns one instance, so two networks built with the same
    seed are initialized and trained identically.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def uniform(
        self,
        size: Union[None, int, Tuple[int, ...]] = None
    ) -> Union[float, np.ndarray]:
        """
        Draw uniform samples from (0, 1].

        Zero is excluded so the values are safe to pass to ``log``.
        """
        return 1.0 - self._rng.random(size)

    def standard_normal(self, shape: Tuple[int, ...]) -> np.ndarray:
        """
        Draw independent N(0, 1) values with the Box-Muller transform.

        Args:
            shape: Shape of the returned array

        Returns:
            Array of the requested shape filled with standard normals
        """
        u1 = self.uniform(shape)
        u2 = self.uniform(shape)
        return np.sqrt(-2.0 * np.log(u1)) * np.sin(2.0 * np.pi * u2)

    def shuffle(self, samples: MutableSequence) -> None:
        """Permute ``samples`` uniformly at random, in place."""
        self._rng.shuffle(samples)
