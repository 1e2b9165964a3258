"""
network.py
~~~~~~~~~~

Fully-connected feed-forward neural network trained with mini-batch
stochastic gradient descent.

Hidden layers share one activation function; the output layer is always
softmax, trained against cross-entropy loss. Gradients are computed by
backpropagation, one sample at a time, and accumulated per mini-batch
before the weights and biases are updated.
"""

import json
import logging
import math
import numbers
import time
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Union

import numpy as np

from nnengine.activations import Activation, get_activation
from nnengine.exceptions import DeserializationError, InvalidConfig, ShapeMismatch, UnknownActivation
from nnengine.initializers import xavier_uniform
from nnengine.matrix import Matrix
from nnengine.output_head import softmax, cross_entropy_loss

# Configure module logger
logger = logging.getLogger(__name__)

RandomSource = Union[None, int, np.random.Generator]


class Sample(NamedTuple):
    """A training example: input column vector and target column vector."""
    input: Matrix
    target: Matrix


class ForwardTrace(NamedTuple):
    """Pre-activations ``zs`` and activations (``activations[0]`` is the input)."""
    zs: List[Matrix]
    activations: List[Matrix]


class Gradients(NamedTuple):
    """Per-layer gradients for one sample, with its loss and network output."""
    dw: List[Matrix]
    db: List[Matrix]
    loss: float
    output: Matrix


class Network:
    """
    Feed-forward network with a softmax output layer.

    Args:
        layer_sizes: Neurons per layer, input first, e.g. ``[2, 8, 2]``
        hidden_activation: Builtin activation name or ``Activation`` instance
        rng: Seed or ``numpy.random.Generator`` used for weight
            initialization and shuffling; OS entropy when omitted

    Raises:
        InvalidConfig: If the topology has fewer than two layers or a
            non-positive layer size
        UnknownActivation: If the activation name is not a builtin
    """

    def __init__(
        self,
        layer_sizes: Sequence[int],
        hidden_activation: Union[str, Activation] = 'relu',
        rng: RandomSource = None
    ):
        try:
            layer_sizes = list(layer_sizes)
        except TypeError as e:
            raise InvalidConfig(f"Layer sizes must be a list of integers, got {layer_sizes!r}") from e
        if len(layer_sizes) < 2:
            raise InvalidConfig(
                f"Network needs at least 2 layers, got {layer_sizes}"
            )
        for size in layer_sizes:
            if isinstance(size, bool) or not isinstance(size, numbers.Integral) or size < 1:
                raise InvalidConfig(
                    f"Layer sizes must be positive integers, got {layer_sizes}"
                )

        self.layer_sizes = [int(size) for size in layer_sizes]
        self.activation = get_activation(hidden_activation)
        self.rng = np.random.default_rng(rng)

        # weights[i] maps layer i to layer i+1
        self.weights = [
            xavier_uniform(n_out, n_in, self.rng)
            for n_in, n_out in zip(self.layer_sizes[:-1], self.layer_sizes[1:])
        ]
        self.biases = [Matrix.zeros(n_out, 1) for n_out in self.layer_sizes[1:]]

    @property
    def hidden_activation(self) -> str:
        """Identifier of the hidden activation, as written by ``save``."""
        return self.activation.name

    @property
    def num_layers(self) -> int:
        return len(self.layer_sizes)

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def forward(self, x: Matrix) -> ForwardTrace:
        """
        Run the input through every layer, keeping the full trace.

        Returns:
            ForwardTrace with one ``z`` per layer transition and
            ``len(weights) + 1`` activations

        Raises:
            ShapeMismatch: If ``x`` is not an ``(n0, 1)`` column vector
        """
        _check_column('input', x, self.layer_sizes[0])
        zs = []
        activations = [x]
        a = x
        last = len(self.weights) - 1

        for i, (w, b) in enumerate(zip(self.weights, self.biases)):
            z = w.mul(a).add_column(b)
            zs.append(z)
            if i == last:
                a = softmax(z)
            else:
                a = z.map(self.activation.forward)
            activations.append(a)

        return ForwardTrace(zs, activations)

    def predict(self, x: Matrix) -> Matrix:
        """Return the output distribution for a single input column vector."""
        return self.forward(x).activations[-1]

    def evaluate(self, samples: Sequence) -> int:
        """
        Count the samples whose predicted class matches the target's.

        The class of a vector is the index of its largest entry (the first
        one on ties).
        """
        return sum(
            int(self.predict(x).argmax() == y.argmax())
            for x, y in samples
        )

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def backward(self, x: Matrix, target: Matrix) -> Gradients:
        """
        Backpropagate one sample.

        The output delta is ``a_L - target``: the derivative of
        cross-entropy through softmax. It does not hold for any other
        output activation or loss.

        Returns:
            Gradients with ``dw[i]``/``db[i]`` shaped like
            ``weights[i]``/``biases[i]``, the sample's loss and the output

        Raises:
            ShapeMismatch: If ``x`` or ``target`` is not a column vector of
                the input or output layer size
        """
        _check_column('target', target, self.layer_sizes[-1])
        zs, activations = self.forward(x)
        n_transitions = len(self.weights)
        dw = [None] * n_transitions
        db = [None] * n_transitions

        output = activations[-1]
        delta = output.sub(target)

        for i in range(n_transitions - 1, -1, -1):
            dw[i] = delta.mul(activations[i].transpose())
            db[i] = delta.clone()

            if i > 0:
                derivative = zs[i - 1].map(self.activation.derivative)
                delta = self.weights[i].transpose().mul(delta).hadamard(derivative)

        return Gradients(dw, db, cross_entropy_loss(output, target), output)

    def train(
        self,
        samples: Sequence,
        learning_rate: float = 0.01,
        epochs: int = 1,
        batch_size: int = 16,
        shuffle: bool = True,
        on_epoch: Optional[Callable[[Dict[str, Any]], None]] = None,
        rng: RandomSource = None
    ) -> List[Dict[str, Any]]:
        """
        Train with mini-batch stochastic gradient descent.

        Each mini-batch's gradients are summed, then applied once, scaled by
        ``learning_rate / len(batch)``. The last batch of an epoch may be
        smaller than ``batch_size`` and is averaged over its real size.

        Args:
            samples: ``Sample``/``(input, target)`` pairs of column vectors
            learning_rate: Step size, must be positive
            epochs: Passes over the data, at least 1
            batch_size: Samples per update, at least 1
            shuffle: Reorder samples randomly at the start of each epoch
            on_epoch: Called with each epoch's ``{epoch, loss, accuracy}``
                record; the only point where training can be interrupted
            rng: Random source for shuffling; defaults to the network's

        Returns:
            One ``{epoch, loss, accuracy}`` record per epoch; ``loss`` is
            the mean sample loss and ``accuracy`` the fraction classified
            correctly, both measured while training

        Raises:
            InvalidConfig: For a non-positive ``learning_rate``, ``epochs``
                or ``batch_size``, or an empty sample list
        """
        validate_training_config(learning_rate, epochs, batch_size)
        samples = list(samples)
        if not samples:
            raise InvalidConfig("Cannot train on an empty sample list")

        shuffle_rng = self.rng if rng is None else np.random.default_rng(rng)
        n = len(samples)
        history = []

        logger.info(
            f"Training {self.layer_sizes} ({self.hidden_activation}) on {n} "
            f"samples: epochs={epochs}, batch_size={batch_size}, "
            f"lr={learning_rate}, shuffle={shuffle}"
        )
        start_time = time.time()

        for epoch in range(epochs):
            order = np.arange(n)
            if shuffle:
                shuffle_rng.shuffle(order)

            total_loss = 0.0
            correct = 0

            for start in range(0, n, batch_size):
                batch = [samples[k] for k in order[start:start + batch_size]]
                batch_loss, batch_correct = self.update_mini_batch(batch, learning_rate)
                total_loss += batch_loss
                correct += batch_correct

            record = {
                'epoch': epoch,
                'loss': total_loss / n,
                'accuracy': correct / n
            }
            history.append(record)
            logger.debug(
                f"Epoch {epoch + 1}/{epochs}: loss={record['loss']:.6f}, "
                f"accuracy={record['accuracy']:.2%}"
            )

            if on_epoch is not None:
                on_epoch(dict(record))

        logger.info(
            f"Training finished in {time.time() - start_time:.2f}s: "
            f"loss={history[-1]['loss']:.6f}, "
            f"accuracy={history[-1]['accuracy']:.2%}"
        )
        return history

    def update_mini_batch(self, batch: Sequence, learning_rate: float):
        """
        Accumulate gradients over one mini-batch, then apply them.

        Returns:
            ``(summed loss, number of correctly classified samples)``
        """
        acc_dw = [Matrix.zeros(w.rows, w.cols) for w in self.weights]
        acc_db = [Matrix.zeros(b.rows, b.cols) for b in self.biases]
        batch_loss = 0.0
        correct = 0

        for x, y in batch:
            grads = self.backward(x, y)
            batch_loss += grads.loss
            if grads.output.argmax() == y.argmax():
                correct += 1
            for i in range(len(acc_dw)):
                acc_dw[i] = acc_dw[i].add(grads.dw[i])
                acc_db[i] = acc_db[i].add(grads.db[i])

        step = learning_rate / len(batch)
        for i in range(len(self.weights)):
            self.weights[i] = self.weights[i].sub(acc_dw[i].scale(step))
            self.biases[i] = self.biases[i].sub(acc_db[i].scale(step))

        return batch_loss, correct

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def save(self) -> Dict[str, Any]:
        """
        Snapshot topology, activation and parameters as plain data.

        Returns:
            ``{layerSizes, hiddenActivation, weights, biases}`` where the
            last two are lists of ``{rows, cols, data}`` records
        """
        return {
            'layerSizes': list(self.layer_sizes),
            'hiddenActivation': self.hidden_activation,
            'weights': [w.to_dict() for w in self.weights],
            'biases': [b.to_dict() for b in self.biases]
        }

    def to_json(self) -> str:
        return json.dumps(self.save())

    @classmethod
    def load(
        cls,
        record: Mapping[str, Any],
        activations: Optional[Mapping[str, Activation]] = None,
        rng: RandomSource = None
    ) -> 'Network':
        """
        Rebuild a network from a ``save()`` snapshot.

        Args:
            record: Snapshot produced by ``save``
            activations: Custom activations by name, for snapshots whose
                hidden activation is not a builtin
            rng: Random source for later training

        Raises:
            DeserializationError: If a field is missing, a matrix record is
                invalid, or parameter shapes disagree with the topology
        """
        if not isinstance(record, Mapping):
            raise DeserializationError(
                f"Network snapshot must be a mapping, got {type(record).__name__}"
            )
        missing = [
            key for key in ('layerSizes', 'hiddenActivation', 'weights', 'biases')
            if key not in record
        ]
        if missing:
            raise DeserializationError(
                f"Network snapshot is missing field(s): {', '.join(missing)}"
            )

        name = record['hiddenActivation']
        try:
            activation = (activations or {}).get(name, name)
            net = cls(record['layerSizes'], activation, rng=rng)
        except (InvalidConfig, UnknownActivation, TypeError) as e:
            raise DeserializationError(f"Invalid network snapshot: {e}") from e

        for key in ('weights', 'biases'):
            if not isinstance(record[key], (list, tuple)):
                raise DeserializationError(f"Snapshot field {key!r} must be a list")

        weights = [Matrix.from_dict(w) for w in record['weights']]
        biases = [Matrix.from_dict(b) for b in record['biases']]
        _check_parameter_shapes('weights', weights, [w.shape for w in net.weights])
        _check_parameter_shapes('biases', biases, [b.shape for b in net.biases])

        net.weights = weights
        net.biases = biases
        return net

    @classmethod
    def from_json(
        cls,
        text: str,
        activations: Optional[Mapping[str, Activation]] = None,
        rng: RandomSource = None
    ) -> 'Network':
        try:
            record = json.loads(text)
        except json.JSONDecodeError as e:
            raise DeserializationError(f"Network snapshot is not valid JSON: {e}") from e
        return cls.load(record, activations=activations, rng=rng)

    def __repr__(self) -> str:
        return f"Network({self.layer_sizes!r}, {self.hidden_activation!r})"


def validate_training_config(learning_rate: float, epochs: int, batch_size: int) -> None:
    """
    Check SGD hyperparameters.

    Raises:
        InvalidConfig: If any value is non-positive or of the wrong type
    """
    if (isinstance(learning_rate, bool)
            or not isinstance(learning_rate, numbers.Real)
            or not math.isfinite(learning_rate)
            or learning_rate <= 0):
        raise InvalidConfig(
            f"learning_rate must be a positive number, got {learning_rate!r}"
        )
    if isinstance(epochs, bool) or not isinstance(epochs, numbers.Integral) or epochs < 1:
        raise InvalidConfig(f"epochs must be a positive integer, got {epochs!r}")
    if isinstance(batch_size, bool) or not isinstance(batch_size, numbers.Integral) or batch_size < 1:
        raise InvalidConfig(
            f"batch_size must be a positive integer, got {batch_size!r}"
        )


def _check_parameter_shapes(kind: str, matrices: List[Matrix], expected: List) -> None:
    if len(matrices) != len(expected):
        raise DeserializationError(
            f"Snapshot has {len(matrices)} {kind} matrices, topology needs "
            f"{len(expected)}"
        )
    for i, (m, shape) in enumerate(zip(matrices, expected)):
        if m.shape != shape:
            raise DeserializationError(
                f"{kind}[{i}] has shape {m.shape}, topology needs {shape}"
            )


def _check_column(kind: str, vec: Matrix, size: int) -> None:
    if vec.shape != (size, 1):
        raise ShapeMismatch(
            f"{kind} must be a {size}x1 column vector, got {vec.rows}x{vec.cols}"
        )
