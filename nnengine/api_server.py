"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for network training.

This module provides endpoints for:
- Creating, importing and exporting networks
- Training networks on posted samples with real-time progress via WebSockets
- Running predictions
- Persisting networks to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for background training tasks
- Matplotlib for training-history plots
- SQLite for network persistence
"""

import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional

import gevent
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from nnengine.exceptions import NNEngineError
from nnengine.matrix import Matrix
from nnengine.network import Network, Sample, validate_training_config
from nnengine.settings import load_settings
from nnengine.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: silence noisy third-party loggers, keep ours at INFO
    - In development: show socket traffic as well
    """
    settings = load_settings()
    log_level = getattr(logging, settings.log_level, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if settings.is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('nnengine').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

is_production = load_settings().is_production

socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}


def reload_saved_networks() -> None:
    """Load every saved network from the database into memory."""
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

        active_networks[network_id] = {
            'network': net,
            'architecture': net_info['architecture'],
            'hidden_activation': net_info['hidden_activation'],
            'trained': net_info['trained'],
            'accuracy': net_info['accuracy'],
            'history': []
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

_cleanup_task_started = False


def cleanup_old_networks_task() -> None:
    """
    Delete old networks now and then every 24 hours.

    Networks removed from the database are also dropped from memory.
    """
    days = load_settings().cleanup_days

    while True:
        try:
            logger.info(f"Starting automatic cleanup of networks older than {days} day(s)")
            deleted_count = delete_old_networks(days=days)

            if deleted_count > 0:
                saved_ids = {net['network_id'] for net in list_saved_networks()}
                for nid in [n for n in active_networks if n not in saved_ids]:
                    del active_networks[nid]
                    logger.info(f"Removed network {nid} from memory (deleted from database)")
            elif deleted_count < 0:
                logger.error("Cleanup returned error code")

            cleanup_finished_training_jobs()

            logger.info("Next cleanup scheduled in 24 hours")
            gevent.sleep(86400)

        except Exception as e:
            logger.exception(f"Error during network cleanup: {e}")
            gevent.sleep(3600)


def cleanup_finished_training_jobs() -> None:
    """Remove completed or failed training jobs from memory."""
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
    """Spawn the cleanup task once; later calls do nothing."""
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_networks_task)


def bootstrap() -> Flask:
    """
    Restore saved networks and start background cleanup.

    Use as the WSGI entry point: ``gunicorn 'nnengine.api_server:bootstrap()'``.
    """
    reload_saved_networks()
    training_jobs.clear()
    start_cleanup_task()
    return app


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

class RequestError(Exception):
    """Bad request payload, reported to the client as HTTP 400."""


def parse_vector(values: Any, expected_size: int, field: str) -> Matrix:
    """Turn a JSON list of numbers into a column vector of a given size."""
    if not isinstance(values, list) or not all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in values
    ):
        raise RequestError(f'{field} must be a list of numbers')
    if len(values) != expected_size:
        raise RequestError(
            f'{field} must have {expected_size} values, got {len(values)}'
        )
    return Matrix.from_column(values)


def parse_samples(payload: Any, net: Network) -> List[Sample]:
    """Parse ``[{'input': [...], 'target': [...]}, ...]`` for ``net``."""
    if not isinstance(payload, list) or not payload:
        raise RequestError('samples must be a non-empty list')

    samples = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise RequestError(f'samples[{index}] must be an object')
        samples.append(Sample(
            parse_vector(item.get('input'), net.layer_sizes[0], f'samples[{index}].input'),
            parse_vector(item.get('target'), net.layer_sizes[-1], f'samples[{index}].target')
        ))
    return samples


def register_network(network_id: str, net: Network, trained: bool = False,
                     accuracy: Optional[float] = None) -> None:
    active_networks[network_id] = {
        'network': net,
        'architecture': net.layer_sizes,
        'hidden_activation': net.hidden_activation,
        'trained': trained,
        'accuracy': accuracy,
        'history': []
    }


def create_history_image(history: List[Dict[str, Any]]) -> str:
    """
    Plot loss and accuracy per epoch.

    Returns:
        Base64-encoded PNG image string
    """
    epochs = [record['epoch'] + 1 for record in history]

    fig, (loss_ax, acc_ax) = plt.subplots(1, 2, figsize=(8, 3))
    loss_ax.plot(epochs, [record['loss'] for record in history])
    loss_ax.set_title('Loss')
    loss_ax.set_xlabel('Epoch')
    acc_ax.plot(epochs, [record['accuracy'] for record in history])
    acc_ax.set_title('Accuracy')
    acc_ax.set_xlabel('Epoch')
    acc_ax.set_ylim(0, 1)
    fig.tight_layout()

    buffer = BytesIO()
    fig.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close(fig)

    return img_base64


@app.errorhandler(RequestError)
def handle_request_error(e: RequestError):
    return jsonify({'error': str(e)}), 400


@app.errorhandler(NNEngineError)
def handle_engine_error(e: NNEngineError):
    logger.warning(f"Rejected request: {type(e).__name__}: {e}")
    return jsonify({'error': str(e), 'kind': type(e).__name__}), 400


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and counts of networks and active training jobs."""
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new neural network.

    Request body (optional):
        {'layer_sizes': [2, 8, 2], 'hidden_activation': 'relu'}
    """
    data = request.get_json(silent=True) or {}
    layer_sizes = data.get('layer_sizes', [2, 8, 2])
    hidden_activation = data.get('hidden_activation', 'relu')

    net = Network(layer_sizes, hidden_activation)
    network_id = str(uuid.uuid4())
    register_network(network_id, net)

    logger.info(f"Created network {network_id} with architecture {layer_sizes} ({hidden_activation})")

    return jsonify({
        'network_id': network_id,
        'architecture': net.layer_sizes,
        'hidden_activation': net.hidden_activation,
        'status': 'created'
    }), 201


@app.route('/api/networks/import', methods=['POST'])
def import_network():
    """
    Register a network from a snapshot produced by ``Network.save``.

    Request body:
        {'snapshot': {...}, 'trained': true}
    """
    data = request.get_json(silent=True) or {}
    if 'snapshot' not in data:
        raise RequestError('snapshot is required')

    net = Network.load(data['snapshot'])
    trained = bool(data.get('trained', True))
    network_id = str(uuid.uuid4())
    register_network(network_id, net, trained=trained)
    save_network(net, network_id, trained=trained)

    logger.info(f"Imported network {network_id} with architecture {net.layer_sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.layer_sizes,
        'hidden_activation': net.hidden_activation,
        'status': 'imported'
    }), 201


@app.route('/api/networks/<network_id>/export', methods=['GET'])
def export_network(network_id: str):
    """Return the network's snapshot."""
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    return jsonify({
        'network_id': network_id,
        'snapshot': active_networks[network_id]['network'].save()
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body:
        {
            'samples': [{'input': [0, 1], 'target': [0, 1]}, ...],
            'epochs': 5,
            'batch_size': 16,
            'learning_rate': 0.01,
            'shuffle': true
        }
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    settings = load_settings()
    data = request.get_json(silent=True) or {}
    net = active_networks[network_id]['network']

    samples = parse_samples(data.get('samples'), net)
    epochs = data.get('epochs', settings.default_epochs)
    batch_size = data.get('batch_size', settings.default_batch_size)
    learning_rate = data.get('learning_rate', settings.default_learning_rate)
    shuffle = bool(data.get('shuffle', True))

    # Reject bad hyperparameters before a job is created
    validate_training_config(learning_rate, epochs, batch_size)

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"samples={len(samples)}, epochs={epochs}, batch_size={batch_size}, "
        f"lr={learning_rate}"
    )

    socketio.start_background_task(
        train_network_task,
        network_id, job_id, samples, epochs, batch_size, learning_rate, shuffle
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    samples: List[Sample],
    epochs: int,
    batch_size: int,
    learning_rate: float,
    shuffle: bool = True
) -> None:
    """
    Background task that trains a network.

    Sends progress updates via WebSocket after every epoch and yields to
    other greenlets there, so HTTP requests are served while training.
    """
    net = active_networks[network_id]['network']

    def on_epoch_complete(record: Dict[str, Any]) -> None:
        progress = ((record['epoch'] + 1) / epochs) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': record['epoch'],
            'total_epochs': epochs,
            'loss': record['loss'],
            'accuracy': record['accuracy'],
            'progress': progress
        })
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")

        history = net.train(
            samples,
            learning_rate=learning_rate,
            epochs=epochs,
            batch_size=batch_size,
            shuffle=shuffle,
            on_epoch=on_epoch_complete
        )
        accuracy = net.evaluate(samples) / len(samples)

        active_networks[network_id]['trained'] = True
        active_networks[network_id]['accuracy'] = accuracy
        active_networks[network_id]['history'] = history

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['accuracy'] = accuracy
        training_jobs[job_id]['loss'] = history[-1]['loss']
        training_jobs[job_id]['progress'] = 100

        save_network(net, network_id, trained=True, accuracy=accuracy)

        logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': accuracy,
            'loss': history[-1]['loss'],
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
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Run a forward pass.

    Request body:
        {'input': [0.0, 1.0]}
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    net = active_networks[network_id]['network']
    data = request.get_json(silent=True) or {}
    x = parse_vector(data.get('input'), net.layer_sizes[0], 'input')

    output = net.predict(x)

    return jsonify({
        'network_id': network_id,
        'output': output.to_list(),
        'predicted_class': output.argmax()
    }), 200


@app.route('/api/networks/<network_id>/history_plot', methods=['GET'])
def get_history_plot(network_id: str):
    """Return a PNG plot of the last training run's loss and accuracy."""
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    history = active_networks[network_id]['history']
    if not history:
        return jsonify({'error': 'Network has no training history'}), 404

    return jsonify({
        'network_id': network_id,
        'epochs': len(history),
        'image_data': create_history_image(history)
    }), 200


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'hidden_activation': info['hidden_activation'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    saved_only = []
    for net in list_saved_networks():
        if net['network_id'] not in active_networks:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
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
    """Delete all networks from both memory and disk."""
    saved_ids = [net['network_id'] for net in list_saved_networks()]
    all_network_ids = set(active_networks) | set(saved_ids)

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0

    for network_id in all_network_ids:
        if active_networks.pop(network_id, None) is not None:
            deleted_from_memory_count += 1
        if delete_network(network_id):
            deleted_from_disk_count += 1

    logger.info(
        f"Deleted all networks: {len(all_network_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )

    return jsonify({
        'deleted_count': len(all_network_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Delete networks older than the given number of days.

    Request body (optional):
        {'days': 2}
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', load_settings().cleanup_days)

    if not isinstance(days, (int, float)) or isinstance(days, bool) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_networks(days=int(days))
    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")

    return jsonify({
        'deleted_count': deleted_count,
        'days': days
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    settings = load_settings()
    bootstrap()

    logger.info(f"Starting server at http://localhost:{settings.port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=settings.port,
            debug=not settings.is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {settings.port} is already in use.")
            sys.exit(1)
        raise
