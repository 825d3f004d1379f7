"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for neural network training.

This module provides endpoints for:
- Creating, importing and exporting neural networks
- Training networks with real-time progress updates via WebSockets
- Classifying inputs and browsing MNIST test predictions
- Persisting networks to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- SQLite for network persistence
"""

import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional

import gevent
import numpy as np
from flask import Flask, Response, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from neuro import matrix_ops as ops
from neuro import mnist_loader
from neuro.config import configure_logging, get_settings
from neuro.errors import NetworkError
from neuro.network import Network
from neuro.random_source import RandomSource
from neuro.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not settings.is_production,
    engineio_logger=not settings.is_production,
    ping_timeout=60,
    ping_interval=25
)

DEFAULT_LAYER_SIZES = [784, 30, 10]

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# MNIST dataset - loaded once at startup, lists of Sample
training_data: Optional[List] = None
validation_data: Optional[List] = None
test_data: Optional[List] = None


# ============================================================================
# DATA LOADING
# ============================================================================

def load_mnist_data() -> None:
    """
    Load MNIST dataset into global variables.

    Called once at startup to avoid reloading data for each training run.
    Without the archive the server still runs; training and the example
    endpoints answer with an error until data is available.
    """
    global training_data, validation_data, test_data

    logger.info("Loading MNIST data...")
    try:
        training_data, validation_data, test_data = (
            mnist_loader.load_data_wrapper(settings.data_path)
        )
    except FileNotFoundError as e:
        logger.warning(f"MNIST data unavailable: {e}")
        return

    logger.info(
        f"Data loaded: {len(training_data)} training, "
        f"{len(validation_data)} validation, {len(test_data)} test"
    )


def register_network(
    network_id: str,
    net: Network,
    trained: bool = False,
    accuracy: Optional[float] = None
) -> None:
    """Make a network available to the endpoints."""
    active_networks[network_id] = {
        'network': net,
        'architecture': net.sizes,
        'trained': trained,
        'accuracy': accuracy
    }


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the database into memory.

    Called at startup to restore networks that were saved before the
    application was restarted.
    """
    saved_networks = list_saved_networks()

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id)
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue
        register_network(
            network_id, net, net_info['trained'], net_info['accuracy']
        )
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


load_mnist_data()
reload_saved_networks()


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False

CLEANUP_INTERVAL = 86400  # 24 hours
CLEANUP_RETRY_INTERVAL = 3600


def sync_active_networks() -> None:
    """Drop in-memory networks whose database row no longer exists."""
    saved_ids = {net['network_id'] for net in list_saved_networks()}
    busy_ids = {
        job['network_id'] for job in training_jobs.values()
        if job.get('status') in ('pending', 'training')
    }
    networks_to_remove = [
        nid for nid, info in active_networks.items()
        if info['trained'] and nid not in saved_ids and nid not in busy_ids
    ]
    for nid in networks_to_remove:
        del active_networks[nid]
        logger.info(f"Removed network {nid} from memory (deleted from database)")


def cleanup_old_networks_task() -> None:
    """
    Background task that runs immediately on startup, then every 24 hours to:
    - Delete networks older than the configured age from the database
    - Sync in-memory networks with the database
    - Remove completed/failed training jobs from memory
    """
    logger.info("Cleanup task started")

    while True:
        try:
            deleted_count = delete_old_networks(days=settings.cleanup_days)

            if deleted_count > 0:
                logger.info(f"Cleanup completed: deleted {deleted_count} network(s)")
                sync_active_networks()
            elif deleted_count == 0:
                logger.info("Cleanup completed: no old networks found to delete")
            else:
                logger.error("Cleanup returned error code")

            cleanup_finished_training_jobs()

            logger.info("Next cleanup scheduled in 24 hours")
            gevent.sleep(CLEANUP_INTERVAL)

        except Exception as e:
            logger.exception(f"Error during network cleanup: {e}")
            gevent.sleep(CLEANUP_RETRY_INTERVAL)


def cleanup_finished_training_jobs() -> None:
    """
    Remove completed or failed training jobs from memory.

    Only removes jobs that are no longer active (completed or failed).
    """
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def start_cleanup_task() -> None:
    """
    Start the background cleanup task.

    Uses gevent.spawn() directly so it works both when running directly
    and under gunicorn. Calling it more than once has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_networks_task)


if settings.cleanup_task:
    start_cleanup_task()


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.errorhandler(NetworkError)
def handle_network_error(e: NetworkError):
    """Shape, format and argument errors are caller mistakes."""
    logger.warning(f"Rejected request: {e}")
    return jsonify({'error': str(e)}), 400


@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and statistics."""
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in ('pending', 'training')
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training,
        'data_loaded': test_data is not None
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new neural network.

    Request body (optional):
        {'layer_sizes': [784, 30, 10], 'seed': 42}

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    layer_sizes = data.get('layer_sizes', DEFAULT_LAYER_SIZES)
    seed = data.get('seed')

    if not isinstance(layer_sizes, list):
        logger.warning(f"Invalid architecture requested: {layer_sizes}")
        return jsonify({'error': 'layer_sizes must be a list'}), 400
    if seed is not None and (
        isinstance(seed, bool) or not isinstance(seed, int) or seed < 0
    ):
        return jsonify({'error': 'seed must be a non-negative integer'}), 400

    net = Network(layer_sizes, RandomSource(seed))
    network_id = str(uuid.uuid4())
    register_network(network_id, net)

    logger.info(f"Created network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'status': 'created'
    }), 201


@app.route('/api/networks/import', methods=['POST'])
def import_network():
    """
    Register a network from its binary parameter encoding.

    The request body is the raw output of the export endpoint.
    """
    payload = request.get_data()
    if not payload:
        return jsonify({'error': 'Request body is empty'}), 400

    net = Network.from_bytes(payload)
    network_id = str(uuid.uuid4())
    register_network(network_id, net)

    logger.info(f"Imported network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'status': 'imported'
    }), 201


@app.route('/api/networks/<network_id>/export', methods=['GET'])
def export_network(network_id: str):
    """Download a network's parameters in the binary format."""
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    net = active_networks[network_id]['network']
    return Response(
        net.to_bytes(),
        mimetype='application/octet-stream',
        headers={
            'Content-Disposition': f'attachment; filename={network_id}.bin'
        }
    )


def find_active_job(network_id: str) -> Optional[str]:
    """Return the id of a pending or running job for the network, if any."""
    for job_id, job in training_jobs.items():
        if job['network_id'] == network_id and job.get('status') in ('pending', 'training'):
            return job_id
    return None


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {
            'epochs': 5,
            'mini_batch_size': 10,
            'learning_rate': 3.0
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    if find_active_job(network_id) is not None:
        logger.warning(f"Training already running for network: {network_id}")
        return jsonify({'error': 'Network is already being trained'}), 409

    if training_data is None:
        logger.error("Training data not loaded")
        return jsonify({'error': 'Training data not available'}), 500

    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', 5)
    mini_batch_size = data.get('mini_batch_size', 10)
    learning_rate = data.get('learning_rate', 3.0)

    if isinstance(epochs, bool) or not isinstance(epochs, int) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if (
        isinstance(mini_batch_size, bool)
        or not isinstance(mini_batch_size, int)
        or mini_batch_size < 1
    ):
        return jsonify({'error': 'mini_batch_size must be a positive integer'}), 400
    if (
        isinstance(learning_rate, bool)
        or not isinstance(learning_rate, (int, float))
        or learning_rate <= 0
    ):
        return jsonify({'error': 'learning_rate must be a positive number'}), 400

    if active_networks[network_id]['network'].sizes[-1] != 10:
        return jsonify({
            'error': 'MNIST training needs a network with 10 outputs'
        }), 400

    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, batch_size={mini_batch_size}, lr={learning_rate}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, epochs, mini_batch_size, learning_rate
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    epochs: int,
    mini_batch_size: int,
    learning_rate: float
) -> None:
    """
    Background task that trains a neural network.

    Sends progress updates via WebSocket as training progresses.
    """
    net = active_networks[network_id]['network']

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (data['epoch'] / data['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'accuracy': data['accuracy'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress,
            'correct': data['correct'],
            'total': data['total']
        })

        # Let gevent send the message immediately
        gevent.sleep(0)

    # Lets HTTP requests be served between mini-batches
    def yield_to_other_tasks():
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")

        net.SGD(
            training_data,
            epochs,
            mini_batch_size,
            learning_rate,
            test_data=test_data,
            callback=on_epoch_complete,
            yield_func=yield_to_other_tasks
        )

        accuracy = net.evaluate(test_data) / len(test_data) if test_data else 0.0

        active_networks[network_id]['trained'] = True
        active_networks[network_id]['accuracy'] = accuracy

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['accuracy'] = accuracy
        training_jobs[job_id]['progress'] = 100

        save_network(net, network_id, trained=True, accuracy=accuracy)

        logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': float(accuracy),
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        job = training_jobs[job_id]
        return jsonify({'job_id': job_id, **job}), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List networks held in memory and networks only present on disk."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'status': 'loaded'
        }
        for nid, info in active_networks.items()
    ]
    saved_only = [
        {**net, 'status': 'saved'}
        for net in list_saved_networks()
        if net['network_id'] not in active_networks
    ]

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")
    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from memory and from the database."""
    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")
    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete every network from memory and from the database."""
    ids = set(active_networks) | {
        net['network_id'] for net in list_saved_networks()
    }
    active_networks.clear()
    deleted_from_disk = sum(1 for nid in ids if delete_network(nid))

    logger.info(
        f"Deleted all networks: {len(ids)} total, {deleted_from_disk} from disk"
    )
    return jsonify({
        'deleted': len(ids),
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Delete saved networks older than ``days`` (default: configured age).

    Request body (optional):
        {'days': 2}
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', settings.cleanup_days)

    if isinstance(days, bool) or not isinstance(days, (int, float)) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_networks(days=days)
    if deleted_count < 0:
        return jsonify({'error': 'Cleanup failed'}), 500

    sync_active_networks()
    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")
    return jsonify({'deleted': deleted_count, 'days': days}), 200


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Classify one input vector.

    Request body:
        {'input': [0.0, 0.5, ...]}  # sizes[0] numbers

    Returns:
        JSON with the predicted index and the raw output activations
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    vector = data.get('input')
    if not isinstance(vector, list) or not vector:
        return jsonify({'error': 'input must be a non-empty list of numbers'}), 400

    net = active_networks[network_id]['network']
    try:
        x = ops.column(vector)
    except (TypeError, ValueError):
        return jsonify({'error': 'input must be a non-empty list of numbers'}), 400

    output = net.feedforward(x)
    return jsonify({
        'network_id': network_id,
        'prediction': ops.argmax(output),
        'network_output': array_to_float_list(output)
    }), 200


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in array.flatten()]


def create_digit_image(image_data: np.ndarray, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        image_data: 784-element array representing the 28x28 digit image
        predicted: The digit the network predicted (0-9)
        actual: The correct digit (0-9)

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(3, 3))
    plt.imshow(np.reshape(image_data, (28, 28)), cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


def find_example(network_id: str, successful: bool, max_attempts: int):
    """
    Return a random test example the network got right (or wrong).

    Shared body of the successful/unsuccessful example endpoints.
    """
    if network_id not in active_networks:
        logger.warning(f"Example requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    if test_data is None:
        logger.error("Test data not loaded")
        return jsonify({'error': 'Test data not available'}), 500

    net = active_networks[network_id]['network']
    if net.sizes[0] != mnist_loader.IMAGE_SIZE:
        return jsonify({
            'error': f'Examples need a network with {mnist_loader.IMAGE_SIZE} inputs'
        }), 400

    for attempt in range(max_attempts):
        index = np.random.randint(0, len(test_data))
        x, y = test_data[index]

        output = net.feedforward(x)
        predicted_digit = ops.argmax(output)

        if (predicted_digit == y) == successful:
            logger.debug(f"Found example on attempt {attempt + 1}")

            return jsonify({
                'network_id': network_id,
                'example_index': index,
                'predicted_digit': predicted_digit,
                'actual_digit': y,
                'image_data': create_digit_image(x, predicted_digit, y),
                'output_weights': net.weights[-1].tolist(),
                'network_output': array_to_float_list(output)
            }), 200

    kind = 'successful' if successful else 'unsuccessful'
    logger.warning(f"No {kind} example found after {max_attempts} attempts")
    return jsonify({
        'error': f'No {kind} example found after {max_attempts} attempts'
    }), 404


# ============================================================================
# EXAMPLE ENDPOINTS
# ============================================================================

@app.route('/api/networks/<network_id>/successful_example', methods=['GET'])
def get_successful_example(network_id: str):
    """Find and return a random example where the network predicted correctly."""
    return find_example(network_id, successful=True, max_attempts=100)


@app.route('/api/networks/<network_id>/unsuccessful_example', methods=['GET'])
def get_unsuccessful_example(network_id: str):
    """Find and return a random example where the network predicted incorrectly."""
    return find_example(network_id, successful=False, max_attempts=200)


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    port = settings.port

    if settings.is_production:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    start_cleanup_task()

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not settings.is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise


if __name__ == '__main__':
    main()
