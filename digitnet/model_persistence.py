"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

File-based persistence for the trained network.

A model dump is a numpy ``.npz`` container holding named arrays: a format
marker and version, every topology field, one ``weights_<i>`` and
``biases_<i>`` array per layer, and a JSON metadata record. The container is
self-describing, so a network can be rebuilt from the file alone, and it is
loaded with ``allow_pickle=False``.

Writes go to a temporary file in the destination directory which then
replaces the old dump in one ``os.replace``; readers see either the previous
dump or the new one, never a partial file.
"""

import os
import json
import zlib
import zipfile
import logging
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import numpy as np

from digitnet.errors import CorruptionError
from digitnet.network import Network, Topology

# Configure module logger
logger = logging.getLogger(__name__)

FORMAT_NAME = 'digitnet-dump'
FORMAT_VERSION = 1

# Everything np.load and the array accessors raise for damaged containers
_DECODE_ERRORS = (
    ValueError, KeyError, TypeError, EOFError, OSError,
    zipfile.BadZipFile, zlib.error
)


class NetworkEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy scalars and arrays."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


class ModelDump:
    """
    A model dump file on disk.

    The object only remembers the path; every call reads or writes the file
    afresh.
    """

    def __init__(self, path: str = './dump.bin'):
        """
        Args:
            path: Location of the dump file
        """
        self.path = path

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def _ensure_directory(self) -> str:
        """Create the dump directory if it doesn't exist."""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        return directory

    @staticmethod
    def _encode(network: Network, metadata: Dict[str, Any]) -> Dict[str, np.ndarray]:
        topology = network.topology
        arrays = {
            'format': np.array(FORMAT_NAME),
            'version': np.array(FORMAT_VERSION),
            'inputs': np.array(topology.inputs),
            'layout': np.array(topology.layout, dtype=np.int64),
            'activation': np.array(topology.activation),
            'mode': np.array(topology.mode),
            'bias': np.array(topology.bias),
            'metadata': np.array(json.dumps(metadata, cls=NetworkEncoder)),
        }
        for i, (w, b) in enumerate(zip(network.weights, network.biases)):
            arrays[f'weights_{i}'] = w
            arrays[f'biases_{i}'] = b
        return arrays

    def save(
        self,
        network: Network,
        trained: bool = True,
        accuracy: Optional[float] = None,
        epochs: int = 0
    ) -> str:
        """
        Write the network, replacing any previous dump.

        Args:
            network: Network to save
            trained: Whether the network has been trained
            accuracy: Accuracy of the last validation pass (0.0 to 1.0)
            epochs: Total epochs the network has been trained for

        Returns:
            str: The dump path

        Raises:
            ValueError: If accuracy is out of valid range
            OSError: If the file cannot be written
        """
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        metadata = {
            'architecture': network.sizes,
            'trained': trained,
            'accuracy': accuracy,
            'epochs': epochs,
            'num_weights': network.num_weights(),
            'updated_at': datetime.now(timezone.utc).isoformat()
        }
        arrays = self._encode(network, metadata)

        directory = self._ensure_directory()
        fd, tmp_path = tempfile.mkstemp(
            prefix=f'.{os.path.basename(self.path)}.', suffix='.tmp',
            dir=directory
        )
        try:
            with os.fdopen(fd, 'wb') as f:
                np.savez_compressed(f, **arrays)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)

        logger.info(
            f"Saved network to {self.path}: architecture {network.sizes}, "
            f"trained={trained}, accuracy={accuracy}, epochs={epochs}"
        )
        return self.path

    def read(self) -> Optional[Tuple[Network, Dict[str, Any]]]:
        """
        Read the network and its metadata.

        Returns:
            tuple: (network, metadata), or None if there is no dump

        Raises:
            CorruptionError: If the file exists but is not a valid dump
        """
        if not os.path.exists(self.path):
            logger.warning(f"No model dump at {self.path}")
            return None

        try:
            data = np.load(self.path, allow_pickle=False)
        except _DECODE_ERRORS as e:
            raise CorruptionError(f"Cannot read model dump {self.path}: {e}") from e

        if not hasattr(data, 'files'):
            raise CorruptionError(f"{self.path} is not a model dump container")

        try:
            if str(data['format']) != FORMAT_NAME:
                raise CorruptionError(f"{self.path} is not a {FORMAT_NAME} file")
            version = int(data['version'])
            if version != FORMAT_VERSION:
                raise CorruptionError(
                    f"Unsupported dump version {version} in {self.path}"
                )

            topology = Topology(
                inputs=int(data['inputs']),
                layout=tuple(int(size) for size in data['layout']),
                activation=str(data['activation']),
                mode=str(data['mode']),
                bias=bool(data['bias'])
            )
            layers = len(topology.layout)
            network = Network(
                topology,
                weights=[data[f'weights_{i}'] for i in range(layers)],
                biases=[data[f'biases_{i}'] for i in range(layers)]
            )
            metadata = json.loads(str(data['metadata']))
            if not isinstance(metadata, dict):
                raise CorruptionError(f"Bad metadata record in {self.path}")
        except _DECODE_ERRORS as e:
            raise CorruptionError(f"Cannot decode model dump {self.path}: {e}") from e
        finally:
            data.close()

        logger.info(f"Loaded network from {self.path}: architecture {network.sizes}")
        return network, metadata

    def delete(self) -> bool:
        """
        Remove the dump.

        Returns:
            bool: True if deleted, False if there was nothing to delete
        """
        try:
            os.remove(self.path)
        except FileNotFoundError:
            logger.warning(f"Could not delete {self.path}: not found")
            return False
        logger.info(f"Deleted model dump {self.path}")
        return True


def save_network(
    network: Network,
    path: str,
    trained: bool = True,
    accuracy: Optional[float] = None,
    epochs: int = 0
) -> str:
    """
    Save a network to a dump file, atomically replacing any previous one.

    Args:
        network: The network to save
        path: Dump file path
        trained: Boolean indicating if the network has been trained
        accuracy: The accuracy of the trained network (0.0 to 1.0)
        epochs: Total epochs the network has been trained for

    Returns:
        str: The dump path

    Example:
        >>> net = Network(Topology(784, (512, 512, 10)))
        >>> save_network(net, './dump.bin', trained=False)
        './dump.bin'
    """
    return ModelDump(path).save(
        network, trained=trained, accuracy=accuracy, epochs=epochs
    )


def load_network(path: str) -> Optional[Network]:
    """
    Load a network from a dump file.

    Args:
        path: Dump file path

    Returns:
        The loaded network, or None if the file does not exist

    Raises:
        CorruptionError: If the file exists but cannot be decoded

    Example:
        >>> net = load_network('./dump.bin')
        >>> if net:
        ...     print(f"Loaded network with {len(net.sizes)} layers")
    """
    result = ModelDump(path).read()
    return None if result is None else result[0]


def get_network_metadata(path: str) -> Optional[Dict[str, Any]]:
    """
    Get the metadata record of a dump.

    Args:
        path: Dump file path

    Returns:
        dict: architecture, trained, accuracy, epochs, num_weights and
        updated_at; None if the file does not exist

    Raises:
        CorruptionError: If the file exists but cannot be decoded
    """
    result = ModelDump(path).read()
    return None if result is None else result[1]


def delete_network(path: str) -> bool:
    """
    Delete a dump file.

    Returns:
        bool: True if deleted, False if it did not exist
    """
    return ModelDump(path).delete()
