"""
training.py
~~~~~~~~~~~

The training run: load or initialize the network, train it for a fixed
number of epochs, save it, and log a few sample predictions.

The network is saved on the way out of the training step whether or not the
epochs completed, so weight progress is never lost to an exception.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from digitnet.config import Config
from digitnet.dataset import LabeledExample, build_dataset, to_arrays
from digitnet.errors import TopologyMismatchError
from digitnet.manifest import read_manifest
from digitnet.model_persistence import ModelDump
from digitnet.network import SGD, Network

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]


@dataclass
class TrainingResult:
    """
    Outcome of a training run.

    Attributes:
        network: The trained network
        history: Per-epoch statistics from the trainer
        resumed: True if training continued from an existing dump
        dump_path: Where the network was saved
        samples: Logged sample predictions, (source path, label, output)
    """

    network: Network
    history: List[Dict[str, Any]]
    resumed: bool
    dump_path: str
    samples: List[tuple] = field(default_factory=list)

    @property
    def accuracy(self) -> Optional[float]:
        if not self.history:
            return None
        return self.history[-1]['accuracy']


def check_topology(network: Network, config: Config) -> None:
    """
    Raises:
        TopologyMismatchError: If the network's topology is not config's
    """
    if network.topology != config.topology:
        raise TopologyMismatchError(config.topology, network.topology)


def new_network(config: Config) -> Network:
    """Build a freshly initialized network from config."""
    rng = np.random.default_rng(config.seed)
    return Network(
        config.topology,
        weight_std=config.weight_std,
        weight_mean=config.weight_mean,
        rng=rng
    )


def load_or_init(config: Config):
    """
    Load the network from the dump, or create a new one if there is none.

    Returns:
        tuple: (network, metadata); metadata is None for a new network

    Raises:
        CorruptionError: If the dump exists but cannot be decoded
        TopologyMismatchError: If the dump holds a different topology
    """
    result = ModelDump(config.dump_path).read()
    if result is None:
        logger.info("No model dump found, initializing a new network")
        return new_network(config), None

    network, metadata = result
    check_topology(network, config)
    logger.info(f"Resuming from model dump {config.dump_path}")
    return network, metadata


def report(
    network: Network,
    examples: List[LabeledExample],
    indices
) -> List[tuple]:
    """Log the network's output for selected examples."""
    samples = []
    for index in indices:
        if not 0 <= index < len(examples):
            logger.debug(f"No example at index {index} to report")
            continue
        example = examples[index]
        output = network.predict(example.input)
        label = int(np.argmax(example.target))
        logger.info(
            f"{example.source_path} {example.target.tolist()} => "
            f"{np.round(output, 4).tolist()}"
        )
        samples.append((example.source_path, label, output))
    return samples


def train(
    examples: List[LabeledExample],
    config: Optional[Config] = None,
    callback: Optional[ProgressCallback] = None,
    yield_func: Optional[Callable[[], None]] = None
) -> TrainingResult:
    """
    Train on prepared examples and save the result.

    The same examples are used for training and for the per-epoch
    validation pass.

    Args:
        examples: Labeled examples, in training order
        config: Paths and hyper-parameters (defaults to Config())
        callback: Receives per-epoch statistics
        yield_func: Called between batches

    Returns:
        TrainingResult

    Raises:
        CorruptionError: If an existing dump cannot be decoded
        TopologyMismatchError: If an existing dump has another topology
    """
    config = config or Config()
    network, metadata = load_or_init(config)
    previous = metadata or {}
    previous_epochs = previous.get('epochs', 0)

    logger.info(f"Number of weights: {network.num_weights()}")

    data = to_arrays(examples)
    optimizer = SGD(
        learning_rate=config.learning_rate,
        momentum=config.momentum,
        decay=config.decay,
        nesterov=config.nesterov
    )
    history: List[Dict[str, Any]] = []

    def on_epoch(stats: Dict[str, Any]) -> None:
        history.append(stats)
        if callback:
            callback(stats)

    try:
        network.train(
            data,
            config.epochs,
            config.batch_size,
            optimizer,
            validation_data=data,
            callback=on_epoch,
            verbosity=config.verbosity,
            rng=np.random.default_rng(config.seed),
            yield_func=yield_func
        )
    finally:
        # A run that stops before its first epoch keeps the previous record
        ModelDump(config.dump_path).save(
            network,
            trained=bool(history) or bool(previous.get('trained')),
            accuracy=history[-1]['accuracy'] if history else previous.get('accuracy'),
            epochs=previous_epochs + len(history)
        )

    samples = report(network, examples, config.report_indices)
    return TrainingResult(
        network=network,
        history=history,
        resumed=metadata is not None,
        dump_path=config.dump_path,
        samples=samples
    )


def run_training(
    config: Optional[Config] = None,
    callback: Optional[ProgressCallback] = None,
    yield_func: Optional[Callable[[], None]] = None
) -> TrainingResult:
    """
    Full training run: read the manifest, build the dataset and train.

    Raises:
        ManifestError: If the manifest is missing or malformed
        ImageReadError, ImageDecodeError: If an image cannot be used
        InvalidLabel: If the manifest holds an out-of-range label
        CorruptionError: If an existing dump cannot be decoded
    """
    config = config or Config()
    entries = read_manifest(config.manifest_path, origin=config.origin)
    examples = build_dataset(entries, config.image_dir, origin=config.origin)
    return train(examples, config, callback=callback, yield_func=yield_func)
