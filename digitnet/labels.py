"""
labels.py
~~~~~~~~~

One-hot encoding of digit labels and its inverse.
"""

from numbers import Integral
from typing import Sequence

import numpy as np

from digitnet.errors import InvalidLabel

NUM_CLASSES = 10


def encode(label: int) -> np.ndarray:
    """
    One-hot encode a digit label.

    Args:
        label: Class label in [0, 9]

    Returns:
        numpy.ndarray: 10 floats, 1.0 at ``label`` and 0.0 elsewhere

    Raises:
        InvalidLabel: If label is not an integer in [0, 9]
    """
    if isinstance(label, bool) or not isinstance(label, Integral):
        raise InvalidLabel(f"Label must be an integer, got {label!r}")
    if not 0 <= label < NUM_CLASSES:
        raise InvalidLabel(
            f"Label {label} outside [0, {NUM_CLASSES - 1}]"
        )

    target = np.zeros(NUM_CLASSES)
    target[label] = 1.0
    return target


def index_of_max(values: Sequence[float]) -> int:
    """
    Index of the largest value; the lowest index wins ties.

    Raises:
        ValueError: If values is empty
    """
    values = np.asarray(values, dtype=np.float64).reshape(-1)
    if values.size == 0:
        raise ValueError("index_of_max() of an empty sequence")
    return int(np.argmax(values))
