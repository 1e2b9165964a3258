"""
nnengine package
~~~~~~~~~~~~~~~~

Dense-matrix engine and fully-connected feed-forward neural network.
Contains the matrix type, activations, the softmax/cross-entropy output
head, the network with its training loop, model persistence, and the
training API server.
"""

from nnengine.exceptions import (
    NNEngineError,
    ShapeMismatch,
    AddSubShapeMismatch,
    MulShapeMismatch,
    HadamardShapeMismatch,
    BroadcastShapeMismatch,
    DeserializationError,
    InvalidConfig,
    UnknownActivation,
)
from nnengine.matrix import Matrix
from nnengine.activations import Activation, ReLU, Sigmoid, Tanh, Custom, get_activation
from nnengine.output_head import softmax, cross_entropy_loss
from nnengine.initializers import xavier_uniform
from nnengine.network import Network, Sample

__version__ = "1.0.0"
