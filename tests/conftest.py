"""
conftest.py
~~~~~~~~~~~

Shared fixtures: PNG files written with Pillow, small configurations and
hand-built networks.
"""

import os

import numpy as np
import pytest
from PIL import Image

from digitnet.config import Config
from digitnet.network import Network, Topology


def write_png(path, color=(0, 0, 0, 255), size=(28, 28), mode='RGBA',
              pixels=None):
    """Write a solid image, optionally with some pixels overridden."""
    image = Image.new(mode, size, color)
    for (x, y), value in (pixels or {}).items():
        image.putpixel((x, y), value)
    image.save(path, format='PNG')
    return str(path)


@pytest.fixture
def png_factory(tmp_path):
    """Create PNG files inside a temporary image directory."""
    image_dir = tmp_path / "images"
    image_dir.mkdir()

    def factory(name, **kwargs):
        return write_png(image_dir / name, **kwargs)

    factory.image_dir = str(image_dir)
    return factory


@pytest.fixture
def small_config(tmp_path):
    """A quick-to-train configuration writing into tmp_path."""
    return Config(
        manifest_path=str(tmp_path / "numbers.csv"),
        image_dir=str(tmp_path / "images"),
        dump_path=str(tmp_path / "dump.bin"),
        layout=(16, 10),
        epochs=2,
        batch_size=4,
        seed=0
    )


@pytest.fixture
def digit_files(png_factory, small_config):
    """
    Six images and a manifest listing them, with one non-mnist row.

    Digit d is drawn as a white column at x == d on a black background.
    """
    rows = ["origin,group,label,file"]
    for digit in range(6):
        name = f"img{digit}.png"
        png_factory(
            name,
            pixels={(digit, y): (255, 255, 255, 255) for y in range(28)}
        )
        rows.append(f"mnist,train,{digit},{name}")
    rows.insert(3, "emnist,train,7,img0.png")

    with open(small_config.manifest_path, 'w') as f:
        f.write("\n".join(rows) + "\n")
    return small_config


def make_output_network(config, bias_values):
    """
    A single-layer network whose output is fixed by its biases.

    All weights are zero, so every input maps to sigmoid(bias_values).
    """
    topology = config.topology
    assert len(topology.layout) == 1
    return Network(
        topology,
        weights=[np.zeros((topology.layout[0], topology.inputs))],
        biases=[np.asarray(bias_values, dtype=np.float64)]
    )


@pytest.fixture
def tiny_topology():
    return Topology(inputs=3, layout=(4, 2))


@pytest.fixture
def no_digitnet_env(monkeypatch):
    """Remove DIGITNET_* variables so defaults apply."""
    for key in list(os.environ):
        if key.startswith('DIGITNET_'):
            monkeypatch.delenv(key)
