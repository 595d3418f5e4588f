"""Prometheus metrics."""

from .metrics import (
    start_metrics_server,
    record_slot,
    record_block_produced,
    record_reorg,
    record_background_failure,
    record_engine_api_call,
    record_relay_request,
    update_cache_size,
)

__all__ = [
    "start_metrics_server",
    "record_slot",
    "record_block_produced",
    "record_reorg",
    "record_background_failure",
    "record_engine_api_call",
    "record_relay_request",
    "update_cache_size",
]
