"""
cli.py
~~~~~~

Command line entry point.

Usage:
    digitnet train
    digitnet predict path/to/digit.png
    digitnet serve --port 8000

Paths default to the ``DIGITNET_*`` environment configuration and can be
overridden with ``--dump-path``, ``--manifest`` and ``--image-dir``.
"""

import sys
import argparse
import logging
from typing import List, Optional

from digitnet.config import Config, configure_logging
from digitnet.errors import DigitNetError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='digitnet',
        description='Train and run a handwritten digit classifier.'
    )
    parser.add_argument('--dump-path', help='Model dump file')
    parser.add_argument('--manifest', dest='manifest_path',
                        help='Label manifest CSV')
    parser.add_argument('--image-dir', help='Directory of manifest images')

    commands = parser.add_subparsers(dest='command', required=True)

    train_parser = commands.add_parser(
        'train', help='Train on the manifest images and save the model'
    )
    train_parser.add_argument('--epochs', type=int,
                              help='Override the number of epochs')

    predict_parser = commands.add_parser(
        'predict', help='Classify one image with the saved model'
    )
    predict_parser.add_argument('image', help='Image file to classify')

    serve_parser = commands.add_parser('serve', help='Run the HTTP API')
    serve_parser.add_argument('--host', default='0.0.0.0')
    serve_parser.add_argument('--port', type=int, default=None)
    serve_parser.add_argument('--debug', action='store_true', default=None,
                              help='Run Flask in debug mode')

    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    """Environment configuration with command line overrides applied."""
    config = Config.from_env()
    overrides = {
        name: getattr(args, name)
        for name in ('dump_path', 'manifest_path', 'image_dir', 'epochs')
        if getattr(args, name, None) is not None
    }
    return config.with_overrides(**overrides) if overrides else config


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the command line interface.

    Returns:
        int: Process exit status
    """
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        config = config_from_args(args)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        if args.command == 'train':
            from digitnet.training import run_training

            result = run_training(config)
            logger.info(
                f"Training finished after {len(result.history)} epoch(s), "
                f"model saved to {result.dump_path}"
            )
        elif args.command == 'predict':
            from digitnet.inference import predict

            print(predict(args.image, config))
        elif args.command == 'serve':
            from digitnet.api_server import run_server

            run_server(config, host=args.host, port=args.port, debug=args.debug)
    except DigitNetError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
