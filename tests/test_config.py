"""
test_config.py
~~~~~~~~~~~~~~

Unit tests for configuration defaults and environment overrides.
"""

import logging

import pytest

from digitnet.config import Config, configure_logging


@pytest.mark.unit
class TestConfig:

    def test_defaults(self):
        config = Config()

        assert config.manifest_path == './data/numbers.csv'
        assert config.image_dir == './data/numbers'
        assert config.dump_path == './dump.bin'
        assert config.epochs == 5
        assert config.batch_size == 128
        assert config.learning_rate == 0.001
        assert config.momentum == 0.9
        assert config.decay == 1e-6
        assert config.nesterov is True
        assert config.report_indices == (0, 5)

    def test_from_env_without_variables(self):
        assert Config.from_env({}) == Config()

    def test_from_env_overrides(self):
        config = Config.from_env({
            'DIGITNET_DUMP_PATH': '/tmp/model.bin',
            'DIGITNET_EPOCHS': '2',
            'DIGITNET_LEARNING_RATE': '0.05',
            'DIGITNET_NESTEROV': 'false',
            'DIGITNET_BIAS': '0',
            'DIGITNET_LAYOUT': '64, 10',
            'DIGITNET_REPORT_INDICES': '1,2,3',
            'DIGITNET_SEED': '42',
            'DIGITNET_ACTIVATION': 'relu',
        })

        assert config.dump_path == '/tmp/model.bin'
        assert config.epochs == 2
        assert config.learning_rate == 0.05
        assert config.nesterov is False
        assert config.bias is False
        assert config.layout == (64, 10)
        assert config.report_indices == (1, 2, 3)
        assert config.seed == 42
        assert config.activation == 'relu'

    def test_from_env_ignores_other_variables(self):
        config = Config.from_env({'EPOCHS': '9', 'DIGITNET_UNKNOWN': 'x'})
        assert config == Config()

    def test_empty_seed_means_unseeded(self):
        assert Config.from_env({'DIGITNET_SEED': ''}).seed is None

    def test_invalid_number(self):
        with pytest.raises(ValueError):
            Config.from_env({'DIGITNET_EPOCHS': 'five'})

    def test_from_env_reads_os_environ(self, no_digitnet_env, monkeypatch):
        monkeypatch.setenv('DIGITNET_BATCH_SIZE', '32')
        assert Config.from_env().batch_size == 32

    def test_topology(self):
        topology = Config(layout=(32, 10), activation='tanh').topology

        assert topology.sizes == [784, 32, 10]
        assert topology.activation == 'tanh'
        assert topology.mode == 'binary'

    @pytest.mark.parametrize("changes", [
        {'layout': ()},
        {'layout': (16, 0)},
        {'activation': 'swish'},
        {'mode': 'ranking'},
        {'inputs': 0},
        {'batch_size': 0},
    ])
    def test_invalid_values_rejected_on_construction(self, changes):
        with pytest.raises(ValueError):
            Config(**changes)

    def test_invalid_override_rejected(self):
        with pytest.raises(ValueError):
            Config().with_overrides(activation='swish')

    def test_invalid_topology_from_env(self):
        with pytest.raises(ValueError):
            Config.from_env({'DIGITNET_ACTIVATION': 'swish'})

    def test_with_overrides_returns_copy(self):
        config = Config()
        changed = config.with_overrides(epochs=1)

        assert changed.epochs == 1
        assert config.epochs == 5


@pytest.mark.unit
def test_configure_logging_production(monkeypatch):
    monkeypatch.setenv('FLASK_ENV', 'production')
    configure_logging()

    assert logging.getLogger('werkzeug').level == logging.WARNING
    assert logging.getLogger('digitnet').level == logging.INFO
