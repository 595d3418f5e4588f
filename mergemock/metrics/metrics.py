"""Prometheus metrics for mergemock."""

import logging
import threading
from typing import Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

logger = logging.getLogger(__name__)

# Slot metrics
current_slot = Gauge(
    "mergemock_slot",
    "Latest slot handled by the consensus mock",
)

slots_handled = Counter(
    "mergemock_slots_total",
    "Slots handled by the consensus mock, by outcome",
    ["outcome"],
)

# Chain metrics
blocks_produced = Counter(
    "mergemock_blocks_produced_total",
    "Blocks built by the consensus mock, by source",
    ["source"],
)

reorgs = Counter(
    "mergemock_reorgs_total",
    "Slots that built on an ancestor instead of the head",
)

head_block_number = Gauge(
    "mergemock_head_block_number",
    "Block number of the mock chain head",
)

background_task_failures = Counter(
    "mergemock_background_task_failures_total",
    "Background slot tasks that raised",
)

# Engine API metrics
engine_api_requests = Counter(
    "mergemock_engine_api_requests_total",
    "Total Engine API requests",
    ["method"],
)

engine_api_errors = Counter(
    "mergemock_engine_api_errors_total",
    "Total Engine API errors",
    ["method", "error_type"],
)

engine_api_latency = Histogram(
    "mergemock_engine_api_latency_seconds",
    "Engine API request latency",
    ["method"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Relay metrics
relay_requests = Counter(
    "mergemock_relay_requests_total",
    "Builder relay requests served",
    ["endpoint", "status"],
)

relay_cache_entries = Gauge(
    "mergemock_relay_cache_entries",
    "Payloads held by the relay caches",
    ["cache"],
)


_server_started = False
_server_lock = threading.Lock()


def start_metrics_server(port: int) -> bool:
    """Start the Prometheus metrics HTTP server.

    Returns:
        True if server started successfully, False if already running
    """
    global _server_started

    with _server_lock:
        if _server_started:
            logger.warning("Metrics server already running")
            return False

        try:
            start_http_server(port)
            _server_started = True
            logger.info(f"Prometheus metrics server started on port {port}")
            return True
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False


def record_slot(slot: int, outcome: str) -> None:
    """Record how a slot was handled."""
    current_slot.set(slot)
    slots_handled.labels(outcome=outcome).inc()


def record_block_produced(source: str, number: int) -> None:
    """Record a block added to the mock chain."""
    blocks_produced.labels(source=source).inc()
    head_block_number.set(number)


def record_reorg() -> None:
    reorgs.inc()


def record_background_failure() -> None:
    background_task_failures.inc()


def record_engine_api_call(method: str, latency: float, error: Optional[str] = None) -> None:
    """Record an Engine API call.

    Args:
        method: API method name (e.g., 'engine_newPayloadV1')
        latency: Request latency in seconds
        error: Error type if the call failed, None if successful
    """
    engine_api_requests.labels(method=method).inc()
    engine_api_latency.labels(method=method).observe(latency)
    if error:
        engine_api_errors.labels(method=method, error_type=error).inc()


def record_relay_request(endpoint: str, status: int) -> None:
    """Record a builder relay request."""
    relay_requests.labels(endpoint=endpoint, status=str(status)).inc()


def update_cache_size(cache: str, size: int) -> None:
    relay_cache_entries.labels(cache=cache).set(size)
