"""
config.py
~~~~~~~~~

Runtime configuration and logging setup.

Every path and training hyper-parameter lives on :class:`Config` with the
defaults the classifier has always used. Values can be overridden through
``DIGITNET_*`` environment variables, e.g.::

    DIGITNET_DUMP_PATH=/tmp/dump.bin DIGITNET_EPOCHS=1 digitnet train
"""

import os
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Tuple

from digitnet.network import Topology

ENV_PREFIX = 'DIGITNET_'


def configure_logging() -> None:
    """
    Configure logging based on environment.

    LOG_LEVEL selects the level (default INFO). With FLASK_ENV=production
    the chatty socketio/engineio/werkzeug loggers are limited to warnings.
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('digitnet').setLevel(logging.INFO)


def _parse_ints(value: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in value.split(',') if part.strip())


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class Config:
    """
    Paths and hyper-parameters for training and inference.

    Attributes:
        manifest_path: CSV manifest with origin, group, label, file columns
        image_dir: Directory the manifest's file column is relative to
        dump_path: Location of the binary model dump
        origin: Manifest origin tag selecting rows for this pipeline
        inputs: Number of input features (28 * 28)
        layout: Neurons per layer, hidden layers first, output last
        activation: Hidden layer activation
        mode: Output layer mode (activation and loss)
        bias: Whether neurons have a bias term
        weight_std: Width of the uniform weight initializer
        weight_mean: Centre of the uniform weight initializer
        epochs: Passes over the example set per training run
        batch_size: Mini-batch size
        learning_rate: SGD learning rate
        momentum: SGD momentum
        decay: Learning rate decay per update step
        nesterov: Use Nesterov look-ahead updates
        verbosity: Log training progress every N epochs (0 disables)
        seed: Optional seed for weight init and shuffling
        report_indices: Examples whose predictions are logged after training
    """

    manifest_path: str = './data/numbers.csv'
    image_dir: str = './data/numbers'
    dump_path: str = './dump.bin'
    origin: str = 'mnist'

    inputs: int = 784
    layout: Tuple[int, ...] = (512, 512, 10)
    activation: str = 'sigmoid'
    mode: str = 'binary'
    bias: bool = True
    weight_std: float = 1.0
    weight_mean: float = 0.0

    epochs: int = 5
    batch_size: int = 128
    learning_rate: float = 0.001
    momentum: float = 0.9
    decay: float = 1e-6
    nesterov: bool = True
    verbosity: int = 1
    seed: Optional[int] = None
    report_indices: Tuple[int, ...] = field(default=(0, 5))

    def __post_init__(self):
        """
        Raises:
            ValueError: If the topology fields or batch size are invalid
        """
        self.topology
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    @property
    def topology(self) -> Topology:
        """Topology every loaded or freshly built network must have."""
        return Topology(
            inputs=self.inputs,
            layout=tuple(self.layout),
            activation=self.activation,
            mode=self.mode,
            bias=self.bias
        )

    def with_overrides(self, **changes) -> 'Config':
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ=None) -> 'Config':
        """
        Build a Config from DIGITNET_* environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Config with overrides applied on top of the defaults

        Raises:
            ValueError: If a variable cannot be parsed for its field
        """
        environ = os.environ if environ is None else environ
        overrides = {}

        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue

            default = f.default
            if f.name in ('layout', 'report_indices'):
                value = _parse_ints(raw)
            elif f.name == 'seed':
                value = int(raw) if raw.strip() else None
            elif isinstance(default, bool):
                value = _parse_bool(raw)
            elif isinstance(default, int):
                value = int(raw)
            elif isinstance(default, float):
                value = float(raw)
            else:
                value = raw
            overrides[f.name] = value

        return cls(**overrides)
