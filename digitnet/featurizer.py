"""
featurizer.py
~~~~~~~~~~~~~

Turns raster images into the 784-value feature vectors the network reads.

Only the top-left 28x28 block of an image is used. Channel intensities are
scaled to [0, 1]; each pixel becomes the mean of its colour channels, which
is the premultiplied colour divided by alpha, or exactly 0 when the pixel is
fully transparent or its colour channels are all zero.
Features are emitted column by column (x outer, y inner), which is the
order existing trained weights expect.
"""

import os
import logging
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from digitnet.errors import ImageDecodeError, ImageReadError

logger = logging.getLogger(__name__)

IMAGE_SIZE = 28
NUM_FEATURES = IMAGE_SIZE * IMAGE_SIZE
CHANNEL_MAX = 255.0

PathLike = Union[str, os.PathLike]


def load_image(path: PathLike) -> Image.Image:
    """
    Open and fully decode an image file.

    Args:
        path: Image file path

    Returns:
        The decoded image

    Raises:
        ImageReadError: If the file is missing or cannot be read
        ImageDecodeError: If the file is not a decodable image
    """
    try:
        image = Image.open(path)
        # Pillow decodes lazily; force it so truncated files fail here
        image.load()
    except FileNotFoundError as e:
        raise ImageReadError(f"Image file not found: {path}") from e
    except UnidentifiedImageError as e:
        raise ImageDecodeError(f"Not a recognised image: {path}") from e
    except IsADirectoryError as e:
        raise ImageReadError(f"Image path is a directory: {path}") from e
    except PermissionError as e:
        raise ImageReadError(f"Cannot read image {path}: {e}") from e
    except (OSError, SyntaxError, ValueError) as e:
        # Pillow reports corrupt or truncated image data as OSError
        raise ImageDecodeError(f"Cannot decode image {path}: {e}") from e
    return image


def featurize(image: Image.Image) -> np.ndarray:
    """
    Convert an image into a normalized feature vector.

    Args:
        image: Decoded image, at least 28x28 pixels

    Returns:
        numpy.ndarray: 784 float64 values in [0, 1]

    Raises:
        ImageDecodeError: If the image is smaller than 28x28
    """
    width, height = image.size
    if width < IMAGE_SIZE or height < IMAGE_SIZE:
        raise ImageDecodeError(
            f"Image is {width}x{height}, need at least "
            f"{IMAGE_SIZE}x{IMAGE_SIZE}"
        )

    block = image.crop((0, 0, IMAGE_SIZE, IMAGE_SIZE))
    if block.mode != 'RGBA':
        block = block.convert('RGBA')
    pixels = np.asarray(block, dtype=np.float64) / CHANNEL_MAX

    # (y, x, channel) -> (x, y, channel) so flattening runs x outer, y inner
    pixels = pixels.transpose(1, 0, 2)
    red, green, blue, alpha = (pixels[..., c] for c in range(4))

    # Premultiplying by alpha and dividing by it again leaves the straight
    # colour, except that fully transparent pixels premultiply to black
    features = (red + green + blue) / 3
    features[(alpha == 0) | ((red == 0) & (green == 0) & (blue == 0))] = 0.0
    return features.reshape(NUM_FEATURES)


def featurize_path(path: PathLike) -> np.ndarray:
    """Load an image file and featurize it."""
    logger.debug(f"Featurizing {path}")
    return featurize(load_image(path))
