"""
digitnet package
~~~~~~~~~~~~~~~~

Handwritten digit classifier: image featurization, a feed-forward network
trained with SGD, a binary model dump, train/predict orchestration, a command
line interface and an HTTP API.
"""

__version__ = "1.0.0"
