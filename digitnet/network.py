"""
network.py
~~~~~~~~~~

A fully-connected feed-forward network trained with mini-batch stochastic
gradient descent.

Layers are stored the usual way for this kind of network: ``weights[i]`` has
shape ``(n_out, n_in)`` and ``biases[i]`` has shape ``(n_out,)``. Inputs are
row vectors, so a batch is a ``(batch, n_in)`` array and a layer computes
``a @ w.T + b``.

Hidden layers share one activation; the output layer is selected by the
network *mode*:

- ``binary``:      sigmoid outputs, binary cross-entropy loss
- ``multi_class``: softmax outputs, cross-entropy loss
- ``regression``:  linear outputs, mean squared error

For all three the error at the output layer is ``output - target``.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

_EPSILON = 1e-12


def sigmoid(z: np.ndarray) -> np.ndarray:
    """The sigmoid function, clipped to keep exp() finite."""
    return 1.0 / (1.0 + np.exp(-np.clip(z, -500, 500)))


def softmax(z: np.ndarray) -> np.ndarray:
    shifted = z - np.max(z, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


# Activation and its derivative, expressed in terms of the activation output
ACTIVATIONS: Dict[str, Tuple[Callable, Callable]] = {
    'sigmoid': (sigmoid, lambda a: a * (1.0 - a)),
    'tanh': (np.tanh, lambda a: 1.0 - a ** 2),
    'relu': (lambda z: np.maximum(z, 0.0), lambda a: (a > 0).astype(a.dtype)),
    'linear': (lambda z: z, np.ones_like),
}


def _binary_cross_entropy(output: np.ndarray, target: np.ndarray) -> float:
    output = np.clip(output, _EPSILON, 1.0 - _EPSILON)
    return float(-np.mean(
        target * np.log(output) + (1.0 - target) * np.log(1.0 - output)
    ))


def _cross_entropy(output: np.ndarray, target: np.ndarray) -> float:
    output = np.clip(output, _EPSILON, 1.0)
    return float(-np.mean(np.sum(target * np.log(output), axis=-1)))


def _mean_squared_error(output: np.ndarray, target: np.ndarray) -> float:
    return float(np.mean((output - target) ** 2))


# Output activation and loss per mode
MODES: Dict[str, Tuple[Callable, Callable]] = {
    'binary': (sigmoid, _binary_cross_entropy),
    'multi_class': (softmax, _cross_entropy),
    'regression': (lambda z: z, _mean_squared_error),
}


@dataclass(frozen=True)
class Topology:
    """
    Shape and kind of a network.

    Attributes:
        inputs: Number of input features
        layout: Neurons per layer, hidden layers first, output layer last
        activation: Hidden layer activation, a key of ACTIVATIONS
        mode: Output mode, a key of MODES
        bias: Whether each neuron has a trainable bias
    """

    inputs: int
    layout: Tuple[int, ...]
    activation: str = 'sigmoid'
    mode: str = 'binary'
    bias: bool = True

    def __post_init__(self):
        if self.inputs < 1:
            raise ValueError(f"inputs must be positive, got {self.inputs}")
        if not self.layout or any(size < 1 for size in self.layout):
            raise ValueError(
                f"layout must be a non-empty list of positive sizes, "
                f"got {self.layout}"
            )
        if self.activation not in ACTIVATIONS:
            raise ValueError(f"Unknown activation '{self.activation}'")
        if self.mode not in MODES:
            raise ValueError(f"Unknown mode '{self.mode}'")

    @property
    def sizes(self) -> List[int]:
        """Layer sizes including the input layer, e.g. [784, 512, 512, 10]."""
        return [self.inputs] + list(self.layout)


def uniform(rng: np.random.Generator, shape, std: float, mean: float):
    """Uniform weights of width ``std`` centred on ``mean``."""
    return (rng.random(shape) - 0.5) * std + mean


class SGD:
    """
    Stochastic gradient descent with momentum, time-based learning rate
    decay and optional Nesterov look-ahead.
    """

    def __init__(
        self,
        learning_rate: float = 0.01,
        momentum: float = 0.0,
        decay: float = 0.0,
        nesterov: bool = False
    ):
        self.learning_rate = learning_rate
        self.momentum = momentum
        self.decay = decay
        self.nesterov = nesterov
        self.iterations = 0
        self._moments: Dict[int, np.ndarray] = {}

    @property
    def current_learning_rate(self) -> float:
        return self.learning_rate / (1.0 + self.decay * self.iterations)

    def update(
        self,
        params: Sequence[np.ndarray],
        grads: Sequence[np.ndarray]
    ) -> None:
        """
        Apply one update step to ``params`` in place.

        Args:
            params: Parameter arrays, always passed in the same order
            grads: Gradients matching params
        """
        lr = self.current_learning_rate

        for i, (param, grad) in enumerate(zip(params, grads)):
            moment = self._moments.get(i)
            if moment is None:
                moment = np.zeros_like(param)
                self._moments[i] = moment

            moment *= self.momentum
            moment -= lr * grad

            if self.nesterov:
                param += self.momentum * moment - lr * grad
            else:
                param += moment

        self.iterations += 1


class Network:
    """A feed-forward network with a fixed :class:`Topology`."""

    def __init__(
        self,
        topology: Topology,
        weights: Optional[List[np.ndarray]] = None,
        biases: Optional[List[np.ndarray]] = None,
        weight_std: float = 1.0,
        weight_mean: float = 0.0,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Build a network, either from existing parameters or freshly
        initialized.

        Args:
            topology: Network shape and kind
            weights: Existing weight matrices, one (n_out, n_in) per layer
            biases: Existing bias vectors, one (n_out,) per layer
            weight_std: Width of the uniform initializer
            weight_mean: Centre of the uniform initializer
            rng: Random generator used for initialization

        Raises:
            ValueError: If weights/biases are given but do not fit topology
        """
        self.topology = topology
        self.sizes = topology.sizes
        pairs = list(zip(self.sizes[:-1], self.sizes[1:]))

        if weights is None:
            rng = rng if rng is not None else np.random.default_rng()
            self.weights = [
                uniform(rng, (n_out, n_in), weight_std, weight_mean)
                for n_in, n_out in pairs
            ]
            # Bias is initialized like any other weight
            self.biases = [
                uniform(rng, n_out, weight_std, weight_mean)
                if topology.bias else np.zeros(n_out)
                for _, n_out in pairs
            ]
        else:
            if biases is None:
                biases = [np.zeros(n_out) for _, n_out in pairs]
            self.weights = [np.array(w, dtype=np.float64) for w in weights]
            self.biases = [np.array(b, dtype=np.float64) for b in biases]
            self._check_shapes(pairs)

        self._hidden, self._hidden_prime = ACTIVATIONS[topology.activation]
        self._output, self._loss = MODES[topology.mode]

    def _check_shapes(self, pairs: List[Tuple[int, int]]) -> None:
        if len(self.weights) != len(pairs) or len(self.biases) != len(pairs):
            raise ValueError(
                f"Expected {len(pairs)} layers, got {len(self.weights)} "
                f"weight and {len(self.biases)} bias arrays"
            )
        for layer, ((n_in, n_out), w, b) in enumerate(
                zip(pairs, self.weights, self.biases)):
            if w.shape != (n_out, n_in):
                raise ValueError(
                    f"Layer {layer}: weight shape {w.shape}, "
                    f"expected {(n_out, n_in)}"
                )
            if b.shape != (n_out,):
                raise ValueError(
                    f"Layer {layer}: bias shape {b.shape}, expected {(n_out,)}"
                )

    def num_weights(self) -> int:
        """Number of trainable parameters."""
        total = sum(w.size for w in self.weights)
        if self.topology.bias:
            total += sum(b.size for b in self.biases)
        return total

    def _forward(self, x: np.ndarray) -> List[np.ndarray]:
        activations = [x]
        last = len(self.weights) - 1
        for layer, (w, b) in enumerate(zip(self.weights, self.biases)):
            z = activations[-1] @ w.T + b
            activations.append(
                self._output(z) if layer == last else self._hidden(z)
            )
        return activations

    def feedforward(self, x: np.ndarray) -> np.ndarray:
        """Return the output for a single input or a (batch, n_in) array."""
        return self._forward(np.asarray(x, dtype=np.float64))[-1]

    def predict(self, x: Sequence[float]) -> np.ndarray:
        """Return the output vector for one input vector."""
        x = np.asarray(x, dtype=np.float64).reshape(-1)
        if x.shape[0] != self.topology.inputs:
            raise ValueError(
                f"Expected {self.topology.inputs} inputs, got {x.shape[0]}"
            )
        return self.feedforward(x)

    def backprop(
        self,
        x: np.ndarray,
        y: np.ndarray
    ) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        """
        Gradients of the loss averaged over a batch.

        Args:
            x: Inputs, shape (batch, n_in)
            y: Targets, shape (batch, n_out)

        Returns:
            tuple: (nabla_b, nabla_w), layer by layer
        """
        activations = self._forward(x)
        n = x.shape[0]
        nabla_b = [None] * len(self.weights)
        nabla_w = [None] * len(self.weights)

        delta = activations[-1] - y
        for layer in reversed(range(len(self.weights))):
            nabla_w[layer] = delta.T @ activations[layer] / n
            nabla_b[layer] = delta.mean(axis=0)
            if layer > 0:
                delta = (delta @ self.weights[layer]) * \
                    self._hidden_prime(activations[layer])

        return nabla_b, nabla_w

    def loss(self, x: np.ndarray, y: np.ndarray) -> float:
        """Mean loss of the network over a batch."""
        return self._loss(self.feedforward(x), y)

    def evaluate(self, x: np.ndarray, y: np.ndarray) -> int:
        """Number of inputs whose arg-max output matches the target's."""
        if len(x) == 0:
            return 0
        output = self.feedforward(x)
        return int(np.sum(np.argmax(output, axis=1) == np.argmax(y, axis=1)))

    def _parameters(self) -> List[np.ndarray]:
        if self.topology.bias:
            return self.weights + self.biases
        return list(self.weights)

    def train(
        self,
        training_data: Tuple[np.ndarray, np.ndarray],
        epochs: int,
        batch_size: int,
        optimizer: SGD,
        validation_data: Optional[Tuple[np.ndarray, np.ndarray]] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        verbosity: int = 1,
        rng: Optional[np.random.Generator] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> List[Dict[str, Any]]:
        """
        Train with mini-batch gradient descent.

        The training set is shuffled at the start of every epoch. After each
        epoch the network is scored on ``validation_data`` (if given), the
        statistics are logged every ``verbosity`` epochs and passed to
        ``callback``.

        Args:
            training_data: (inputs, targets) arrays
            epochs: Number of passes over the training data
            batch_size: Examples per update step
            optimizer: Optimizer applying the gradients
            validation_data: Optional (inputs, targets) arrays to score on
            callback: Called with the statistics dict after each epoch
            verbosity: Log every N epochs, 0 to stay quiet
            rng: Random generator used for shuffling
            yield_func: Called after each batch to let other tasks run

        Returns:
            list: One statistics dict per epoch
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        rng = rng if rng is not None else np.random.default_rng()
        x_train, y_train = training_data
        n = len(x_train)
        history = []
        start_time = time.time()

        for epoch in range(1, epochs + 1):
            order = rng.permutation(n)
            for start in range(0, n, batch_size):
                batch = order[start:start + batch_size]
                nabla_b, nabla_w = self.backprop(x_train[batch], y_train[batch])
                grads = nabla_w + nabla_b if self.topology.bias else nabla_w
                optimizer.update(self._parameters(), grads)
                if yield_func:
                    yield_func()

            stats: Dict[str, Any] = {
                'epoch': epoch,
                'total_epochs': epochs,
                'elapsed_time': time.time() - start_time,
                'loss': None,
                'accuracy': None,
                'correct': None,
                'total': None
            }
            if validation_data is not None and len(validation_data[0]):
                x_val, y_val = validation_data
                correct = self.evaluate(x_val, y_val)
                stats.update(
                    loss=self.loss(x_val, y_val),
                    accuracy=correct / len(x_val),
                    correct=correct,
                    total=len(x_val)
                )

            if verbosity and epoch % verbosity == 0:
                if stats['loss'] is None:
                    logger.info(
                        f"Epoch {epoch}/{epochs} "
                        f"({stats['elapsed_time']:.1f}s)"
                    )
                else:
                    logger.info(
                        f"Epoch {epoch}/{epochs} "
                        f"({stats['elapsed_time']:.1f}s) "
                        f"loss={stats['loss']:.4f} "
                        f"accuracy={stats['accuracy']:.2%} "
                        f"({stats['correct']}/{stats['total']})"
                    )

            history.append(stats)
            if callback:
                callback(stats)

        return history
