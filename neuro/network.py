"""
network.py
~~~~~~~~~~

A fully-connected feed-forward network trained with mini-batch stochastic
gradient descent. Gradients are computed with backpropagation, the cost is
one-half squared error and every layer uses the sigmoid activation.
"""

import logging
import time
from typing import (
    Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
)

import numpy as np

from neuro import codec
from neuro import matrix_ops as ops
from neuro.errors import InvalidArgument, ShapeMismatch
from neuro.random_source import RandomSource

logger = logging.getLogger(__name__)

Gradient = Tuple[List[np.ndarray], List[np.ndarray]]


class Network(object):

    def __init__(
        self,
        sizes: Sequence[int],
        random_source: Optional[RandomSource] = None,
        biases: Optional[Sequence[np.ndarray]] = None,
        weights: Optional[Sequence[np.ndarray]] = None
    ):
        """
        Build a network with the given layer sizes.

        ``sizes`` lists the number of neurons per layer, input layer first;
        ``[784, 30, 10]`` is a network with 784 inputs, one hidden layer
        of 30 neurons and 10 outputs. Unless ``biases`` and ``weights`` are
        given, every parameter is drawn from a standard normal
        distribution. The input layer has no biases.

        Args:
            sizes: Layer sizes, at least two, all positive
            random_source: Randomness for initialization and shuffling
            biases: Explicit biases, one column per layer boundary
            weights: Explicit weights, one matrix per layer boundary

        Raises:
            InvalidArgument: If ``sizes`` does not describe a network
            ShapeMismatch: If explicit parameters do not fit ``sizes``
        """
        self.sizes = _check_sizes(sizes)
        self.num_layers = len(self.sizes)
        self.random = random_source if random_source is not None else RandomSource()

        if (biases is None) != (weights is None):
            raise InvalidArgument(
                "biases and weights must be given together"
            )

        if biases is None:
            self.biases = [
                self.random.standard_normal((y, 1)) for y in self.sizes[1:]
            ]
            self.weights = [
                self.random.standard_normal((y, x))
                for x, y in zip(self.sizes[:-1], self.sizes[1:])
            ]
        else:
            self.biases = [np.array(b, dtype=np.float64) for b in biases]
            self.weights = [np.array(w, dtype=np.float64) for w in weights]
            codec.check_shapes(self.sizes, self.biases, self.weights)

    def __repr__(self) -> str:
        return f"Network({self.sizes})"

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        random_source: Optional[RandomSource] = None
    ) -> 'Network':
        """
        Rebuild a network from :meth:`to_bytes` output.

        Raises:
            FormatError: If the buffer is truncated or inconsistent
        """
        sizes, biases, weights = codec.decode(data)
        return cls(sizes, random_source, biases=biases, weights=weights)

    def to_bytes(self) -> bytes:
        """Encode sizes, biases and weights in the binary parameter format."""
        return codec.encode(self.sizes, self.biases, self.weights)

    def save(self, path: str) -> None:
        with open(path, 'wb') as f:
            f.write(self.to_bytes())
        logger.info(f"Saved network {self.sizes} to {path}")

    @classmethod
    def load(
        cls,
        path: str,
        random_source: Optional[RandomSource] = None
    ) -> 'Network':
        with open(path, 'rb') as f:
            net = cls.from_bytes(f.read(), random_source)
        logger.info(f"Loaded network {net.sizes} from {path}")
        return net

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def feedforward(self, a: np.ndarray) -> np.ndarray:
        """Return the output of the network if ``a`` is input."""
        for b, w in zip(self.biases, self.weights):
            a = ops.sigmoid(ops.add(ops.multiply(w, a), b))
        return a

    def evaluate(self, test_data: Iterable) -> int:
        """
        Count the test inputs the network classifies correctly.

        The prediction is the index of the most activated output neuron,
        the lowest index on ties.

        Args:
            test_data: Samples (or ``(x, y)`` pairs) with integer labels

        Returns:
            int: Number of correct predictions
        """
        test_results = [
            (ops.argmax(self.feedforward(x)), y) for (x, y) in test_data
        ]
        return sum(int(x == y) for (x, y) in test_results)

    def custom_test(self, vector: Sequence[float]) -> int:
        """Classify a single flat input vector."""
        return ops.argmax(self.feedforward(ops.column(vector)))

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def SGD(
        self,
        training_data: List,
        epochs: int,
        mini_batch_size: int,
        eta: float,
        test_data: Optional[Sequence] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> List[Dict[str, Any]]:
        """
        Train the network using mini-batch stochastic gradient descent.

        Each epoch shuffles ``training_data`` in place and splits it into
        consecutive mini-batches of exactly ``mini_batch_size`` samples.
        When the data does not divide evenly the trailing remainder is
        skipped for that epoch; it gets another chance after the next
        shuffle.

        Args:
            training_data: List of samples, shuffled in place
            epochs: Number of passes over the training data
            mini_batch_size: Samples per gradient step
            eta: Learning rate
            test_data: If given, the network is evaluated after each epoch
            callback: Called with the epoch metrics after each epoch
            yield_func: Called after each mini-batch, lets a cooperative
                scheduler run other work during training

        Returns:
            list: One metrics dict per epoch

        Raises:
            InvalidArgument: If ``epochs`` or ``mini_batch_size`` is invalid
        """
        if epochs < 0:
            raise InvalidArgument(f"epochs must be non-negative, got {epochs}")
        if mini_batch_size <= 0:
            raise InvalidArgument(
                f"mini_batch_size must be positive, got {mini_batch_size}"
            )

        n = len(training_data)
        n_test = len(test_data) if test_data is not None else None
        dropped = n % mini_batch_size
        if dropped:
            logger.debug(
                f"{n} samples do not divide into batches of "
                f"{mini_batch_size}; {dropped} skipped per epoch"
            )
        if n < mini_batch_size:
            logger.warning(
                f"Training set ({n}) is smaller than one mini-batch "
                f"({mini_batch_size}); no updates will be made"
            )

        history = []
        start_time = time.time()

        for j in range(epochs):
            self.random.shuffle(training_data)

            mini_batches = [
                training_data[k:k + mini_batch_size]
                for k in range(0, n - mini_batch_size + 1, mini_batch_size)
            ]
            for mini_batch in mini_batches:
                self.update_mini_batch(mini_batch, eta)
                if yield_func is not None:
                    yield_func()

            metrics = {
                'epoch': j + 1,
                'total_epochs': epochs,
                'correct': None,
                'total': None,
                'accuracy': None,
                'elapsed_time': time.time() - start_time,
            }

            if test_data is not None:
                correct = self.evaluate(test_data)
                metrics['correct'] = correct
                metrics['total'] = n_test
                metrics['accuracy'] = correct / n_test if n_test else 0.0
                logger.info(f"Epoch {j + 1}/{epochs}: {correct} / {n_test}")
            else:
                logger.info(f"Epoch {j + 1}/{epochs} complete")

            history.append(metrics)
            if callback is not None:
                callback(metrics)

        return history

    def update_mini_batch(self, mini_batch: Sequence, eta: float) -> None:
        """
        Apply one gradient descent step averaged over ``mini_batch``.

        Weights and biases are updated in place.

        Raises:
            InvalidArgument: If the mini-batch is empty
        """
        if len(mini_batch) == 0:
            raise InvalidArgument("Cannot update from an empty mini-batch")

        nabla_b = [ops.zeros_like(b) for b in self.biases]
        nabla_w = [ops.zeros_like(w) for w in self.weights]
        for x, y in mini_batch:
            delta_nabla_b, delta_nabla_w = self.backprop(x, y)
            nabla_b = [ops.add(nb, dnb) for nb, dnb in zip(nabla_b, delta_nabla_b)]
            nabla_w = [ops.add(nw, dnw) for nw, dnw in zip(nabla_w, delta_nabla_w)]

        step = eta / len(mini_batch)
        for b, nb in zip(self.biases, nabla_b):
            b[...] = ops.subtract(b, ops.scale(nb, step))
        for w, nw in zip(self.weights, nabla_w):
            w[...] = ops.subtract(w, ops.scale(nw, step))

    def backprop(self, x: np.ndarray, y: int) -> Gradient:
        """
        Gradient of the cost for a single sample.

        Args:
            x: Input column of shape ``(sizes[0], 1)``
            y: Index of the correct output neuron

        Returns:
            tuple: ``(nabla_b, nabla_w)``, layer-by-layer lists shaped
            like ``self.biases`` and ``self.weights``

        Raises:
            InvalidArgument: If ``y`` is not a valid output index
            ShapeMismatch: If ``x`` does not fit the input layer
        """
        self._check_label(y)
        if np.shape(x) != (self.sizes[0], 1):
            raise ShapeMismatch(
                f"Input has shape {np.shape(x)}, expected {(self.sizes[0], 1)}"
            )

        nabla_b = [None] * len(self.biases)
        nabla_w = [None] * len(self.weights)

        # feedforward
        activation = x
        activations = [x]  # activations, layer by layer
        zs = []  # weighted inputs, layer by layer
        for b, w in zip(self.biases, self.weights):
            z = ops.add(ops.multiply(w, activation), b)
            zs.append(z)
            activation = ops.sigmoid(z)
            activations.append(activation)

        # backward pass
        delta = ops.hadamard(
            self.cost_derivative(activations[-1], y),
            ops.sigmoid_prime(zs[-1])
        )
        nabla_b[-1] = delta
        nabla_w[-1] = ops.multiply(delta, ops.transpose(activations[-2]))

        # l = 1 is the last layer, l = 2 the second-last and so on, so
        # activations[-l - 1] is always the input side of boundary -l.
        for l in range(2, self.num_layers):
            sp = ops.sigmoid_prime(zs[-l])
            delta = ops.hadamard(
                ops.multiply(ops.transpose(self.weights[-l + 1]), delta), sp
            )
            nabla_b[-l] = delta
            nabla_w[-l] = ops.multiply(delta, ops.transpose(activations[-l - 1]))

        return (nabla_b, nabla_w)

    def cost_derivative(self, output_activations: np.ndarray, y: int) -> np.ndarray:
        """
        Partial derivatives of the cost with respect to the output
        activations, for a target one-hot encoded at index ``y``.
        """
        self._check_label(y)
        return ops.subtract(output_activations, self._one_hot(y))

    def _one_hot(self, y: int) -> np.ndarray:
        e = np.zeros((self.sizes[-1], 1))
        e[y] = 1.0
        return e

    def _check_label(self, y) -> None:
        if (isinstance(y, (bool, np.bool_))
                or not isinstance(y, (int, np.integer))
                or not 0 <= y < self.sizes[-1]):
            raise InvalidArgument(
                f"Label must be an integer in [0, {self.sizes[-1]}), got {y!r}"
            )


def _check_sizes(sizes: Sequence[int]) -> List[int]:
    sizes = list(sizes)
    if len(sizes) < 2:
        raise InvalidArgument(
            f"A network needs at least 2 layers, got {sizes}"
        )
    for s in sizes:
        if isinstance(s, (bool, np.bool_)) or not isinstance(s, (int, np.integer)) or s <= 0:
            raise InvalidArgument(
                f"Layer sizes must be positive integers, got {sizes}"
            )
    return [int(s) for s in sizes]
