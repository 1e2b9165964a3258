"""
output_head.py
~~~~~~~~~~~~~~

Softmax output activation and cross-entropy loss.

The network's backward pass relies on these two being used together: the
gradient of cross-entropy through softmax collapses to
``predicted - target``.
"""

import math

import numpy as np

from nnengine.matrix import Matrix

# Floor applied to predicted probabilities before taking the log
LOG_FLOOR = 1e-15


def softmax(vec: Matrix) -> Matrix:
    """
    Numerically stable softmax over a column vector.

    The maximum is subtracted before exponentiating so large inputs
    cannot overflow.
    """
    exps = np.exp(vec.data - np.max(vec.data))
    return Matrix(vec.rows, vec.cols, exps / np.sum(exps))


def cross_entropy_loss(predicted: Matrix, target: Matrix) -> float:
    """
    Cross-entropy between a predicted distribution and a target.

    Only entries with a positive target contribute. Predictions are floored
    at ``LOG_FLOOR`` so an underflowed probability gives a large finite loss
    instead of infinity.
    """
    loss = 0.0
    for p, t in zip(predicted.data, target.data):
        if t > 0:
            loss -= t * math.log(max(p, LOG_FLOOR))
    return float(loss)
