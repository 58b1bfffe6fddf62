"""
inference.py
~~~~~~~~~~~~

Classifies a single image with the saved network.

Unlike training, inference has no fallback when there is no model dump:
a missing dump is an error.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from digitnet.config import Config
from digitnet.errors import ModelNotFoundError
from digitnet.featurizer import featurize_path
from digitnet.labels import index_of_max
from digitnet.model_persistence import load_network
from digitnet.network import Network
from digitnet.training import check_topology

logger = logging.getLogger(__name__)


def load_model(config: Optional[Config] = None) -> Network:
    """
    Load the saved network for inference.

    Raises:
        ModelNotFoundError: If there is no dump at config.dump_path
        CorruptionError: If the dump cannot be decoded
        TopologyMismatchError: If the dump holds a different topology
    """
    config = config or Config()
    network = load_network(config.dump_path)
    if network is None:
        raise ModelNotFoundError(
            f"No trained model at {config.dump_path}; run training first"
        )
    check_topology(network, config)
    return network


def predict_proba(
    image_path: str,
    config: Optional[Config] = None,
    network: Optional[Network] = None
) -> Tuple[int, np.ndarray]:
    """
    Classify an image and return the raw network output as well.

    Args:
        image_path: Image to classify
        config: Paths and topology (defaults to Config())
        network: Already loaded network; loaded from the dump if omitted

    Returns:
        tuple: (digit, output vector of 10 floats)
    """
    if network is None:
        network = load_model(config)

    output = network.predict(featurize_path(image_path))
    digit = index_of_max(output)
    logger.info(f"Prediction for {image_path}: {digit} (output {output.tolist()})")
    return digit, output


def predict(
    image_path: str,
    config: Optional[Config] = None,
    network: Optional[Network] = None
) -> int:
    """Classify an image as a digit 0-9."""
    return predict_proba(image_path, config, network)[0]
