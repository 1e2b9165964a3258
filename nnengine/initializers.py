"""
initializers.py
~~~~~~~~~~~~~~~

Weight initialization.
"""

import math

import numpy as np

from nnengine.matrix import Matrix


def xavier_uniform(rows: int, cols: int, rng: np.random.Generator) -> Matrix:
    """
    Xavier/Glorot uniform initialization.

    Draws every entry from ``U(-limit, limit)`` with
    ``limit = sqrt(6 / (rows + cols))``.

    Args:
        rows: Fan-out (size of the next layer)
        cols: Fan-in (size of the previous layer)
        rng: Random source
    """
    limit = math.sqrt(6.0 / (rows + cols))
    return Matrix(rows, cols, rng.uniform(-limit, limit, size=rows * cols))
