"""
activations.py
~~~~~~~~~~~~~~

Hidden-layer activation functions.

Each activation is a small class exposing a scalar ``forward`` and its
``derivative`` with respect to the pre-activation ``z``. The network only
talks to the ``Activation`` interface, so new activations can be added by
subclassing or by wrapping a function pair in ``Custom``.
"""

import math
from typing import Callable, Union

from nnengine.exceptions import InvalidConfig, UnknownActivation

# Sigmoid input is clamped to this range before exponentiating
SIGMOID_CLAMP = 500.0


class Activation:
    """Interface for a scalar activation function and its derivative."""

    name = ''

    def forward(self, x: float) -> float:
        raise NotImplementedError

    def derivative(self, x: float) -> float:
        raise NotImplementedError

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Activation):
            return NotImplemented
        return type(self) is type(other) and self.name == other.name

    def __hash__(self) -> int:
        return hash((type(self), self.name))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ReLU(Activation):
    name = 'relu'

    def forward(self, x: float) -> float:
        return max(0.0, x)

    def derivative(self, x: float) -> float:
        # Zero counts as inactive: relu'(0) == 0
        return 1.0 if x > 0 else 0.0


class Sigmoid(Activation):
    name = 'sigmoid'

    def forward(self, x: float) -> float:
        x = min(max(x, -SIGMOID_CLAMP), SIGMOID_CLAMP)
        return 1.0 / (1.0 + math.exp(-x))

    def derivative(self, x: float) -> float:
        s = self.forward(x)
        return s * (1.0 - s)


class Tanh(Activation):
    name = 'tanh'

    def forward(self, x: float) -> float:
        return math.tanh(x)

    def derivative(self, x: float) -> float:
        t = math.tanh(x)
        return 1.0 - t * t


class Custom(Activation):
    """
    Caller-supplied activation.

    Args:
        name: Identifier written into saved networks
        forward: Scalar activation function
        derivative: Its derivative with respect to the pre-activation
    """

    def __init__(
        self,
        name: str,
        forward: Callable[[float], float],
        derivative: Callable[[float], float]
    ):
        if not name:
            raise InvalidConfig("Custom activation needs a non-empty name")
        self.name = name
        self._forward = forward
        self._derivative = derivative

    def forward(self, x: float) -> float:
        return self._forward(x)

    def derivative(self, x: float) -> float:
        return self._derivative(x)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Custom):
            return NotImplemented
        return (
            self.name == other.name
            and self._forward is other._forward
            and self._derivative is other._derivative
        )

    def __hash__(self) -> int:
        return hash((Custom, self.name))

    def __repr__(self) -> str:
        return f"Custom({self.name!r})"


BUILTIN_ACTIVATIONS = (ReLU, Sigmoid, Tanh)


def get_activation(activation: Union[str, Activation]) -> Activation:
    """
    Resolve an activation from a builtin name or pass an instance through.

    Args:
        activation: ``'relu'``, ``'sigmoid'``, ``'tanh'`` or an ``Activation``

    Returns:
        Activation instance

    Raises:
        UnknownActivation: If ``activation`` names no builtin activation
    """
    if isinstance(activation, Activation):
        return activation

    for activation_class in BUILTIN_ACTIVATIONS:
        if activation_class.name == activation:
            return activation_class()

    known = ', '.join(cls.name for cls in BUILTIN_ACTIVATIONS)
    raise UnknownActivation(
        f"Unknown activation {activation!r}; expected one of: {known}"
    )
