"""Metrics module."""

from . import registry
from .registry import (
    record_connection_state,
    record_malformed_message,
    record_message_recv,
    record_publish,
    record_snapshot_applied,
    start_metrics_server,
)

__all__ = [
    "record_connection_state",
    "record_malformed_message",
    "record_message_recv",
    "record_publish",
    "record_snapshot_applied",
    "registry",
    "start_metrics_server",
]
