"""
errors.py
~~~~~~~~~

Exception hierarchy shared by the featurizer, dataset builder, model
persistence and the train/predict orchestrators.
"""


class DigitNetError(Exception):
    """Base class for every error raised by digitnet."""


class ModelNotFoundError(DigitNetError):
    """No model dump exists at the configured path."""


class CorruptionError(DigitNetError):
    """A model dump exists but cannot be decoded into a network."""


class TopologyMismatchError(DigitNetError):
    """A decoded network does not have the expected topology."""

    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Model topology {actual} does not match expected {expected}"
        )


class ImageError(DigitNetError):
    """Base class for image loading failures."""


class ImageReadError(ImageError):
    """An image file is missing or cannot be read."""


class ImageDecodeError(ImageError):
    """An image file was read but is not a usable raster image."""


class InvalidLabel(DigitNetError, ValueError):
    """A class label is outside the supported range."""


class ManifestError(DigitNetError):
    """The label manifest is missing or malformed."""
