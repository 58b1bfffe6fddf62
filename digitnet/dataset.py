"""
dataset.py
~~~~~~~~~~

Builds labeled training examples from manifest entries.

Examples come out in the same order as the manifest entries that produced
them, so a given manifest always yields the same dataset.
"""

import os
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Tuple

import numpy as np

from digitnet.featurizer import NUM_FEATURES, featurize_path
from digitnet.labels import NUM_CLASSES, encode
from digitnet.manifest import ManifestEntry

logger = logging.getLogger(__name__)

DEFAULT_ORIGIN = 'mnist'


@dataclass
class LabeledExample:
    """
    A featurized image and its one-hot target.

    Attributes:
        input: 784 features in [0, 1]
        target: One-hot vector of 10 floats
        source_path: Image file the features came from
    """

    input: np.ndarray
    target: np.ndarray
    source_path: str


def build_dataset(
    entries: Iterable[ManifestEntry],
    image_dir: str,
    origin: str = DEFAULT_ORIGIN,
    loader: Callable[[str], np.ndarray] = featurize_path
) -> List[LabeledExample]:
    """
    Featurize and label every manifest entry from ``origin``.

    Any unreadable image or invalid label aborts the whole build.

    Args:
        entries: Manifest entries, visited in order
        image_dir: Directory entry file names are relative to
        origin: Origin tag selecting which entries to use
        loader: Maps an image path to its feature vector

    Returns:
        list: LabeledExample per selected entry, in entry order

    Raises:
        ImageReadError: If an image is missing
        ImageDecodeError: If an image cannot be decoded
        InvalidLabel: If an entry's label is out of range
    """
    examples = []
    for entry in entries:
        if entry.origin != origin:
            continue

        path = os.path.join(image_dir, entry.file)
        examples.append(LabeledExample(
            input=loader(path),
            target=encode(entry.label),
            source_path=path
        ))

    logger.info(f"Built {len(examples)} '{origin}' examples from {image_dir}")
    return examples


def to_arrays(examples: List[LabeledExample]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Stack examples into (inputs, targets) arrays.

    Returns:
        tuple: inputs of shape (n, 784) and targets of shape (n, 10)
    """
    if not examples:
        return np.empty((0, NUM_FEATURES)), np.empty((0, NUM_CLASSES))
    inputs = np.stack([example.input for example in examples])
    targets = np.stack([example.target for example in examples])
    return inputs, targets
