# core/data_processor.py
import logging
import queue

from typing import Dict, Any

from core.app_state import AppState
from core.constants import DEFAULT_QUEUE_GET_TIMEOUT

logger = logging.getLogger(__name__)

STATE_READING = "state"

def process_committed_readings(app_state: AppState, data_queue: queue.Queue):
    """
    Main data processing loop that runs in a dedicated thread.

    Consumes the committed ReadingSets that the poll threads put on the
    plugin data queue. For every report it:

    1.  **Cache Update**: Stores the snapshot as the latest data of that instance.
        A snapshot always replaces the previous one completely, so readings a
        failed cycle deleted disappear from the cache as well.
    2.  **Dispatch**: Puts a per-device package on the dispatch queue for the
        consumer services (MQTT).
    """
    logger.info("Data Processing thread started. Waiting for data from plugins...")

    while app_state.running:
        try:
            report = data_queue.get(timeout=DEFAULT_QUEUE_GET_TIMEOUT)
        except queue.Empty:
            continue

        instance_id = report['instance_id']
        snapshot = report.get('data')
        if snapshot is None:
            logger.warning(f"DataProcessor: Received empty data packet for '{instance_id}'. Ignoring.")
            continue

        with app_state.data_lock:
            app_state.per_plugin_data_cache[instance_id] = dict(snapshot)

        dispatch_package = {
            'instance_id': instance_id,
            'data': dict(snapshot),
        }
        _dispatch(app_state.processed_data_dispatch_queue, dispatch_package)
        logger.info(f"DataProcessor: '{instance_id}' state '{snapshot.get(STATE_READING)}' with {len(snapshot)} readings.")

    logger.info("Data Processing thread stopped.")

def _dispatch(dispatch_queue: queue.Queue, package: Dict[str, Any]):
    """Queues a package for the consumers, dropping the oldest one when the queue is full."""
    try:
        dispatch_queue.put_nowait(package)
    except queue.Full:
        try:
            dropped = dispatch_queue.get_nowait()
            logger.warning(f"Services dispatch queue is full. Dropped an older packet for '{dropped.get('instance_id')}'.")
        except queue.Empty:
            pass
        try:
            dispatch_queue.put_nowait(package)
        except queue.Full:
            logger.warning("Services dispatch queue is full. A data packet was dropped.")
