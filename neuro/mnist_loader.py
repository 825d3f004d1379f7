"""
mnist_loader.py
~~~~~~~~~~~~~~~

Load the MNIST digits from the compressed ``.npz`` archive.

The archive holds six arrays: ``train_images``, ``train_labels``,
``val_images``, ``val_labels``, ``test_images`` and ``test_labels``.
Images are flattened 28x28 grayscale values in [0, 1].
"""

import os
import logging
from typing import List, Optional, Tuple

import numpy as np

from neuro.config import get_settings
from neuro.sample import Sample

logger = logging.getLogger(__name__)

Split = Tuple[np.ndarray, np.ndarray]

IMAGE_SIZE = 784


def load_data(path: Optional[str] = None) -> Tuple[Split, Split, Split]:
    """
    Return the raw MNIST splits.

    Args:
        path: Archive path, defaults to the configured data path

    Returns:
        tuple: (training, validation, test), each an ``(images, labels)``
        pair of numpy arrays

    Raises:
        FileNotFoundError: If the archive does not exist
    """
    path = path or get_settings().data_path
    if not os.path.exists(path):
        raise FileNotFoundError(f"MNIST archive not found: {path}")

    with np.load(path) as data:
        training = (data['train_images'], data['train_labels'])
        validation = (data['val_images'], data['val_labels'])
        test = (data['test_images'], data['test_labels'])

    logger.debug(f"Read MNIST archive {path}")
    return training, validation, test


def _to_samples(split: Split) -> List[Sample]:
    images, labels = split
    return [
        Sample(np.reshape(image, (IMAGE_SIZE, 1)), int(label))
        for image, label in zip(images, labels)
    ]


def load_data_wrapper(
    path: Optional[str] = None
) -> Tuple[List[Sample], List[Sample], List[Sample]]:
    """
    Return the MNIST splits as lists of samples ready for training.

    Every sample holds a ``(784, 1)`` input column and its digit label.

    Args:
        path: Archive path, defaults to the configured data path

    Returns:
        tuple: (training_data, validation_data, test_data)
    """
    training, validation, test = load_data(path)
    return _to_samples(training), _to_samples(validation), _to_samples(test)
