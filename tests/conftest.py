"""
conftest.py
~~~~~~~~~~~

Shared fixtures. The environment is prepared before any ``neuro`` module
reads its settings, so the API server never touches the working directory.
"""

import os
import tempfile

import numpy as np
import pytest

os.environ.setdefault('NEURO_MODEL_DIR', tempfile.mkdtemp(prefix='neuro-models-'))
os.environ.setdefault(
    'NEURO_DATA_PATH', os.path.join(tempfile.gettempdir(), 'neuro-missing', 'mnist.npz')
)
os.environ.setdefault('NEURO_CLEANUP_TASK', '0')

from neuro.network import Network
from neuro.random_source import RandomSource
from neuro.sample import Sample


@pytest.fixture
def rng():
    """Seeded random source so every test sees the same parameters."""
    return RandomSource(seed=1234)


@pytest.fixture
def simple_network(rng):
    """Create a simple 3-layer network for testing."""
    return Network([3, 4, 2], rng)


@pytest.fixture
def training_samples():
    """Ten random samples for a network with 3 inputs and 2 outputs."""
    generator = np.random.default_rng(7)
    return [
        Sample(generator.standard_normal((3, 1)), i % 2)
        for i in range(10)
    ]


@pytest.fixture
def trained_network(simple_network, training_samples):
    """A simple network with some training applied."""
    simple_network.SGD(training_samples, epochs=1, mini_batch_size=5, eta=0.1)
    return simple_network
