"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for the model dump file.
"""

import os

import numpy as np
import pytest

from digitnet import model_persistence
from digitnet.errors import CorruptionError
from digitnet.model_persistence import (
    ModelDump,
    delete_network,
    get_network_metadata,
    load_network,
    save_network,
)
from digitnet.network import SGD, Network, Topology


@pytest.fixture
def dump_path(tmp_path):
    """Path for the dump inside a not yet existing directory."""
    return str(tmp_path / "models" / "dump.bin")


@pytest.fixture
def simple_network(tiny_topology):
    """Create a simple 3-layer network for testing."""
    return Network(tiny_topology, rng=np.random.default_rng(0))


@pytest.fixture
def trained_network(simple_network):
    """Create a simple network with some training applied."""
    rng = np.random.default_rng(1)
    x = rng.normal(size=(10, 3))
    y = np.eye(2)[np.arange(10) % 2]
    simple_network.train((x, y), epochs=1, batch_size=5,
                         optimizer=SGD(0.1, momentum=0.9), verbosity=0)
    return simple_network


def write_arrays(path, network, **changes):
    """Write a dump with some arrays replaced or removed (value None)."""
    arrays = ModelDump._encode(network, {'trained': False})
    for key, value in changes.items():
        if value is None:
            del arrays[key]
        else:
            arrays[key] = value
    with open(path, 'wb') as f:
        np.savez(f, **arrays)


@pytest.mark.unit
class TestModelPersistence:
    """Test basic model persistence operations."""

    def test_save_network_creates_file(self, simple_network, dump_path):
        result = save_network(simple_network, dump_path, trained=False)

        assert result == dump_path
        assert os.path.exists(dump_path)
        assert os.path.getsize(dump_path) > 0

    def test_save_network_with_metadata(self, trained_network, dump_path):
        save_network(trained_network, dump_path, trained=True,
                     accuracy=0.85, epochs=3)

        metadata = get_network_metadata(dump_path)
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85
        assert metadata['epochs'] == 3
        assert metadata['architecture'] == [3, 4, 2]
        assert metadata['num_weights'] == trained_network.num_weights()
        assert 'updated_at' in metadata

    def test_load_network_returns_network(self, simple_network, dump_path):
        save_network(simple_network, dump_path)
        loaded_network = load_network(dump_path)

        assert isinstance(loaded_network, Network)
        assert loaded_network.sizes == simple_network.sizes
        assert loaded_network.topology == simple_network.topology

    def test_load_nonexistent_network(self, dump_path):
        assert load_network(dump_path) is None
        assert get_network_metadata(dump_path) is None

    def test_load_preserves_weights_exactly(self, trained_network, dump_path):
        save_network(trained_network, dump_path)
        loaded_network = load_network(dump_path)

        for original_w, loaded_w in zip(trained_network.weights, loaded_network.weights):
            assert np.array_equal(original_w, loaded_w)
        for original_b, loaded_b in zip(trained_network.biases, loaded_network.biases):
            assert np.array_equal(original_b, loaded_b)

    @pytest.mark.parametrize("topology", [
        Topology(784, (512, 512, 10)),
        Topology(5, (3,), activation='relu', mode='regression', bias=False),
        Topology(4, (6, 6, 3), activation='tanh', mode='multi_class'),
    ])
    def test_round_trip_topologies(self, topology, dump_path):
        network = Network(topology, rng=np.random.default_rng(4))

        save_network(network, dump_path)
        loaded = load_network(dump_path)

        assert loaded.topology == topology
        x = np.linspace(0, 1, topology.inputs)
        assert np.array_equal(loaded.predict(x), network.predict(x))

    def test_save_replaces_previous_dump(self, tiny_topology, dump_path):
        first = Network(tiny_topology, rng=np.random.default_rng(1))
        second = Network(tiny_topology, rng=np.random.default_rng(2))

        save_network(first, dump_path, trained=False)
        save_network(second, dump_path, trained=True, accuracy=0.5)

        loaded = load_network(dump_path)
        assert np.array_equal(loaded.weights[0], second.weights[0])
        assert get_network_metadata(dump_path)['trained'] is True

    def test_save_leaves_no_temporary_files(self, simple_network, dump_path):
        save_network(simple_network, dump_path)
        save_network(simple_network, dump_path)

        assert os.listdir(os.path.dirname(dump_path)) == ['dump.bin']

    def test_failed_save_keeps_previous_dump(
        self,
        simple_network,
        dump_path,
        monkeypatch
    ):
        save_network(simple_network, dump_path, trained=False)
        before = open(dump_path, 'rb').read()

        def broken_savez(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(model_persistence.np, 'savez_compressed', broken_savez)

        with pytest.raises(OSError):
            save_network(simple_network, dump_path, trained=True)

        assert open(dump_path, 'rb').read() == before
        assert os.listdir(os.path.dirname(dump_path)) == ['dump.bin']

    def test_invalid_accuracy(self, simple_network, dump_path):
        with pytest.raises(ValueError) as exc_info:
            save_network(simple_network, dump_path, accuracy=1.5)
        assert "between 0.0 and 1.0" in str(exc_info.value)
        assert not os.path.exists(dump_path)

    def test_delete_network(self, simple_network, dump_path):
        save_network(simple_network, dump_path)

        assert delete_network(dump_path) is True
        assert load_network(dump_path) is None
        assert delete_network(dump_path) is False

    def test_model_dump_exists(self, simple_network, dump_path):
        dump = ModelDump(dump_path)
        assert dump.exists() is False

        dump.save(simple_network)
        assert dump.exists() is True


@pytest.mark.unit
class TestCorruptDumps:
    """Bytes that exist but are not a dump raise CorruptionError."""

    @pytest.mark.parametrize("content", [
        b"",
        b"\x00",
        b"garbage bytes that are not a model",
        os.urandom(4096),
    ])
    def test_garbage(self, tmp_path, content):
        path = tmp_path / "dump.bin"
        path.write_bytes(content)

        with pytest.raises(CorruptionError):
            load_network(str(path))

    def test_truncated_dump(self, trained_network, tmp_path):
        path = str(tmp_path / "dump.bin")
        save_network(trained_network, path)
        data = open(path, 'rb').read()
        with open(path, 'wb') as f:
            f.write(data[:len(data) // 2])

        with pytest.raises(CorruptionError):
            load_network(path)

    def test_plain_npy_file(self, tmp_path):
        path = tmp_path / "dump.bin"
        with open(path, 'wb') as f:
            np.save(f, np.arange(10))

        with pytest.raises(CorruptionError):
            load_network(str(path))

    def test_wrong_format_marker(self, simple_network, tmp_path):
        path = str(tmp_path / "dump.bin")
        write_arrays(path, simple_network, format=np.array('something-else'))

        with pytest.raises(CorruptionError):
            load_network(path)

    def test_unsupported_version(self, simple_network, tmp_path):
        path = str(tmp_path / "dump.bin")
        write_arrays(path, simple_network, version=np.array(99))

        with pytest.raises(CorruptionError, match="version"):
            load_network(path)

    def test_missing_weights(self, simple_network, tmp_path):
        path = str(tmp_path / "dump.bin")
        write_arrays(path, simple_network, weights_1=None)

        with pytest.raises(CorruptionError):
            load_network(path)

    def test_weights_do_not_match_topology(self, simple_network, tmp_path):
        path = str(tmp_path / "dump.bin")
        write_arrays(path, simple_network, weights_0=np.zeros((5, 3)))

        with pytest.raises(CorruptionError):
            load_network(path)

    def test_unknown_activation(self, simple_network, tmp_path):
        path = str(tmp_path / "dump.bin")
        write_arrays(path, simple_network, activation=np.array('swish'))

        with pytest.raises(CorruptionError):
            load_network(path)

    def test_bad_metadata(self, simple_network, tmp_path):
        path = str(tmp_path / "dump.bin")
        write_arrays(path, simple_network, metadata=np.array('{not json'))

        with pytest.raises(CorruptionError):
            load_network(path)

    def test_pickled_arrays_rejected(self, simple_network, tmp_path):
        path = str(tmp_path / "dump.bin")
        write_arrays(path, simple_network,
                     metadata=np.array([{'a': 1}], dtype=object))

        with pytest.raises(CorruptionError):
            load_network(path)


@pytest.mark.integration
class TestPersistenceIntegration:
    """Integration tests for model persistence."""

    def test_save_load_train_cycle(self, simple_network, dump_path):
        """Test complete cycle: save, load, train, save again."""
        save_network(simple_network, dump_path, trained=False)
        loaded_network = load_network(dump_path)

        rng = np.random.default_rng(3)
        x = rng.normal(size=(10, 3))
        y = np.eye(2)[np.arange(10) % 2]
        loaded_network.train((x, y), epochs=1, batch_size=5,
                             optimizer=SGD(0.1), verbosity=0)

        save_network(loaded_network, dump_path, trained=True,
                     accuracy=0.85, epochs=1)

        final_network = load_network(dump_path)
        metadata = get_network_metadata(dump_path)

        assert final_network is not None
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85
        assert np.array_equal(final_network.weights[0], loaded_network.weights[0])
        assert not np.array_equal(final_network.weights[0], simple_network.weights[0])
