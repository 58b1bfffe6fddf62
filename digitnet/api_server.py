"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for the digit classifier.

This module provides endpoints for:
- Checking server and model status
- Training the model in the background with real-time progress updates
- Classifying uploaded digit images
- Inspecting and deleting the saved model dump

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent as the default async mode for background training
- Matplotlib to render the features the network saw for a prediction
"""

import os
import uuid
import base64
import logging
import threading
from io import BytesIO
from typing import Any, Dict, Optional

import numpy as np
from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from digitnet.config import Config, configure_logging
from digitnet.errors import (
    CorruptionError,
    ImageError,
    ModelNotFoundError,
    TopologyMismatchError,
)
from digitnet.featurizer import IMAGE_SIZE, featurize, load_image
from digitnet.inference import load_model
from digitnet.labels import index_of_max
from digitnet.model_persistence import delete_network, get_network_metadata
from digitnet.training import run_training

logger = logging.getLogger(__name__)


# ============================================================================
# SERVER STATE
# ============================================================================

class ServerState:
    """
    Per-app state: configuration, the loaded network and training jobs.

    Only one training job runs at a time since they all write the same dump.
    """

    def __init__(self, config: Config, socketio: SocketIO):
        self.config = config
        self.socketio = socketio
        self.network = None
        # Training jobs being tracked: {job_id: job_info}
        self.training_jobs: Dict[str, Dict[str, Any]] = {}
        self.lock = threading.Lock()

    def active_job(self) -> Optional[str]:
        for job_id, job in self.training_jobs.items():
            if job.get('status') in ('pending', 'training'):
                return job_id
        return None

    def cleanup_finished_training_jobs(self) -> None:
        """Remove completed or failed training jobs from memory."""
        finished = [
            job_id for job_id, job in self.training_jobs.items()
            if job.get('status') in ('completed', 'failed')
        ]
        for job_id in finished:
            del self.training_jobs[job_id]
        if finished:
            logger.info(f"Cleaned up {len(finished)} finished training job(s)")

    def get_network(self):
        if self.network is None:
            self.network = load_model(self.config)
        return self.network


def _state() -> ServerState:
    return current_app.extensions['digitnet']


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def create_digit_image(features: np.ndarray, predicted: int) -> str:
    """
    Create a base64-encoded PNG image of the network's input.

    Args:
        features: 784 features in x-outer order
        predicted: The digit the network predicted (0-9)

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(3, 3))
    # Features run x outer, y inner; transpose back to rows of pixels
    plt.imshow(features.reshape(IMAGE_SIZE, IMAGE_SIZE).T, cmap='gray')
    plt.title(f"Predicted: {predicted}")
    plt.axis('off')

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


def json_float(value) -> Optional[float]:
    """A float for JSON output; NaN and infinities become None."""
    if value is None or not np.isfinite(value):
        return None
    return float(value)


def _model_error_response(e: Exception):
    if isinstance(e, ModelNotFoundError):
        return jsonify({'error': str(e)}), 404
    logger.error(f"Model dump unusable: {e}")
    return jsonify({'error': f'Model dump unusable: {e}'}), 500


# ============================================================================
# BACKGROUND TRAINING
# ============================================================================

def train_model_task(state: ServerState, job_id: str, config: Config) -> None:
    """
    Background task that runs a training job.

    Sends progress updates via WebSocket as training progresses.
    """
    socketio = state.socketio
    job = state.training_jobs[job_id]

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (data['epoch'] / data['total_epochs']) * 100
        job['status'] = 'training'
        job['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'loss': json_float(data['loss']),
            'accuracy': data['accuracy'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress,
            'correct': data.get('correct'),
            'total': data.get('total')
        })
        # Let the async backend send the message immediately
        socketio.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        result = run_training(
            config,
            callback=on_epoch_complete,
            yield_func=lambda: socketio.sleep(0)
        )

        state.network = result.network
        job['status'] = 'completed'
        job['progress'] = 100
        job['accuracy'] = result.accuracy

        logger.info(f"Training completed for job {job_id}: accuracy {result.accuracy}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'status': 'completed',
            'accuracy': result.accuracy,
            'progress': 100
        })
        socketio.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        job['status'] = 'failed'
        job['error'] = str(e)
        # A failed run may still have saved new weights
        state.network = None

        socketio.emit('training_error', {
            'job_id': job_id,
            'status': 'failed',
            'error': str(e)
        })
        socketio.sleep(0)


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    config: Optional[Config] = None,
    async_mode: Optional[str] = None
) -> Flask:
    """
    Create the Flask app and its SocketIO server.

    Args:
        config: Paths and hyper-parameters (defaults to Config.from_env())
        async_mode: SocketIO async mode (defaults to SOCKETIO_ASYNC_MODE,
            then 'gevent')

    Returns:
        Flask: The app; its SocketIO server is app.extensions['socketio']
    """
    config = config or Config.from_env()
    async_mode = async_mode or os.getenv('SOCKETIO_ASYNC_MODE', 'gevent')
    is_production = os.getenv('FLASK_ENV') == 'production'

    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})

    # SocketIO enables real-time communication (WebSockets) for training updates
    socketio = SocketIO(
        app,
        cors_allowed_origins="*",
        async_mode=async_mode,
        logger=not is_production,
        engineio_logger=not is_production,
        ping_timeout=60,
        ping_interval=25
    )
    app.extensions['digitnet'] = ServerState(config, socketio)

    _register_routes(app)
    return app


def _register_routes(app: Flask) -> None:

    @app.route('/api/status', methods=['GET'])
    def get_status():
        """Return server status and whether a model is available."""
        state = _state()
        active_training = sum(
            1 for job in state.training_jobs.values()
            if job.get('status') in ('pending', 'training')
        )
        return jsonify({
            'status': 'online',
            'model_available': os.path.isfile(state.config.dump_path),
            'training_jobs': active_training
        }), 200

    @app.route('/api/model', methods=['GET'])
    def get_model():
        """Return the saved model's metadata."""
        state = _state()
        try:
            metadata = get_network_metadata(state.config.dump_path)
        except CorruptionError as e:
            return _model_error_response(e)

        if metadata is None:
            return jsonify({'error': 'No trained model'}), 404
        return jsonify(metadata), 200

    @app.route('/api/model', methods=['DELETE'])
    def delete_model():
        """Delete the saved model so the next training run starts fresh."""
        state = _state()
        if state.active_job():
            return jsonify({'error': 'Training in progress'}), 409

        state.network = None
        if not delete_network(state.config.dump_path):
            return jsonify({'error': 'No trained model'}), 404
        return jsonify({'deleted': True}), 200

    @app.route('/api/train', methods=['POST'])
    def train_model():
        """
        Start a training run in the background.

        Request body (optional):
            {'epochs': 5}

        Returns:
            JSON with job_id and status
        """
        state = _state()
        data = request.get_json(silent=True) or {}
        config = state.config

        if 'epochs' in data:
            epochs = data['epochs']
            if isinstance(epochs, bool) or not isinstance(epochs, int) or epochs < 1:
                return jsonify({'error': 'epochs must be a positive integer'}), 400
            config = config.with_overrides(epochs=epochs)

        with state.lock:
            if state.active_job():
                return jsonify({'error': 'Training already in progress'}), 409

            state.cleanup_finished_training_jobs()
            job_id = str(uuid.uuid4())
            state.training_jobs[job_id] = {
                'job_id': job_id,
                'status': 'pending',
                'progress': 0,
                'epochs': config.epochs
            }

        logger.info(f"Created training job {job_id}: epochs={config.epochs}")

        # Run training in background so we can return immediately
        state.socketio.start_background_task(
            train_model_task, state, job_id, config
        )

        return jsonify({'job_id': job_id, 'status': 'training_started'}), 202

    @app.route('/api/training/<job_id>', methods=['GET'])
    def get_training_status(job_id: str):
        """Get the current status of a training job."""
        job = _state().training_jobs.get(job_id)
        if job is None:
            logger.warning(f"Status requested for non-existent job: {job_id}")
            return jsonify({'error': 'Training job not found'}), 404
        return jsonify(job), 200

    @app.route('/api/predict', methods=['POST'])
    def predict_image():
        """
        Classify an uploaded image.

        Request: multipart form with an 'image' file.

        Returns:
            JSON with the predicted digit, the network output and a
            rendering of the network input
        """
        state = _state()
        upload = request.files.get('image')
        if upload is None:
            return jsonify({'error': "Missing 'image' file"}), 400

        try:
            network = state.get_network()
        except (ModelNotFoundError, CorruptionError, TopologyMismatchError) as e:
            return _model_error_response(e)

        try:
            features = featurize(load_image(upload.stream))
        except ImageError as e:
            logger.warning(f"Rejected upload {upload.filename}: {e}")
            return jsonify({'error': str(e)}), 400

        output = network.predict(features)
        digit = index_of_max(output)
        logger.info(f"Predicted {digit} for upload {upload.filename}")

        return jsonify({
            'predicted_digit': digit,
            'network_output': [json_float(value) for value in output],
            'image_data': create_digit_image(features, digit)
        }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

def run_server(
    config: Optional[Config] = None,
    host: str = '0.0.0.0',
    port: Optional[int] = None,
    debug: Optional[bool] = None
) -> None:
    """
    Start the API server with WebSocket support.

    Args:
        config: Paths and hyper-parameters (defaults to Config.from_env())
        host: Interface to bind
        port: Port to bind (defaults to PORT, then 8000)
        debug: Flask debug mode (defaults to FLASK_ENV=development)
    """
    configure_logging()
    app = create_app(config)
    port = port or int(os.environ.get('PORT', 8000))
    if debug is None:
        debug = os.getenv('FLASK_ENV') == 'development'

    logger.info(f"Starting server at http://{host}:{port}/ (debug={debug})")
    app.extensions['socketio'].run(
        app,
        host=host,
        port=port,
        debug=debug,
        use_reloader=False,
        allow_unsafe_werkzeug=True
    )


if __name__ == '__main__':
    run_server()
