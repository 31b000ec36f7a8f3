"""Prometheus metrics registry for the device sync engine."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

CONNECTION_STATES: Final = ("disconnected", "connecting", "connected", "reconnecting", "failed")

# Transport
yoto_sync_connection_state: Final = Gauge(  # type: ignore[assignment]
    "yoto_sync_connection_state",
    "Current MQTT session state (1 for the active state)",
    ["client_id", "state"],
)

yoto_sync_connect_total: Final = Counter(  # type: ignore[assignment]
    "yoto_sync_connect_total",
    "Total MQTT connect attempts",
    ["client_id", "outcome"],
)

yoto_sync_reconnection_total: Final = Counter(  # type: ignore[assignment]
    "yoto_sync_reconnection_total",
    "Total reconnection attempts",
    ["client_id", "attempt_number"],
)

yoto_sync_publish_total: Final = Counter(  # type: ignore[assignment]
    "yoto_sync_publish_total",
    "Total command publishes",
    ["command", "outcome"],
)

yoto_sync_publish_latency_seconds: Final = Histogram(  # type: ignore[assignment]
    "yoto_sync_publish_latency_seconds",
    "Time until the transport confirmed a publish",
    ["command"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

# Inbound
yoto_sync_message_recv_total: Final = Counter(  # type: ignore[assignment]
    "yoto_sync_message_recv_total",
    "Total inbound MQTT messages",
    ["category"],
)

yoto_sync_malformed_message_total: Final = Counter(  # type: ignore[assignment]
    "yoto_sync_malformed_message_total",
    "Total inbound messages dropped as malformed",
    ["category"],
)

# Reconciliation and fan-out
yoto_sync_snapshot_applied_total: Final = Counter(  # type: ignore[assignment]
    "yoto_sync_snapshot_applied_total",
    "Total snapshots applied to the reconciler",
    ["group", "source", "changed"],
)

yoto_sync_listener_error_total: Final = Counter(  # type: ignore[assignment]
    "yoto_sync_listener_error_total",
    "Total exceptions raised by event listeners",
    ["event"],
)

yoto_sync_devices_online: Final = Gauge(  # type: ignore[assignment]
    "yoto_sync_devices_online",
    "Number of devices currently considered online",
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9401) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_connection_state(client_id: str, state: str) -> None:
    """Record session state change (1 for the given state, 0 for the rest)."""
    for s in CONNECTION_STATES:
        value = 1 if s == state else 0
        yoto_sync_connection_state.labels(client_id=client_id, state=s).set(value)  # type: ignore[no-untyped-call]


def record_connect(client_id: str, outcome: str) -> None:
    yoto_sync_connect_total.labels(client_id=client_id, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_reconnection(client_id: str, attempt_number: int) -> None:
    yoto_sync_reconnection_total.labels(
        client_id=client_id,
        attempt_number=str(attempt_number),
    ).inc()  # type: ignore[no-untyped-call]


def record_publish(command: str, outcome: str) -> None:
    yoto_sync_publish_total.labels(command=command, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_publish_latency(command: str, latency_seconds: float) -> None:
    yoto_sync_publish_latency_seconds.labels(command=command).observe(latency_seconds)  # type: ignore[no-untyped-call]


def record_message_recv(category: str) -> None:
    yoto_sync_message_recv_total.labels(category=category).inc()  # type: ignore[no-untyped-call]


def record_malformed_message(category: str) -> None:
    yoto_sync_malformed_message_total.labels(category=category).inc()  # type: ignore[no-untyped-call]


def record_snapshot_applied(group: str, source: str, changed: bool) -> None:
    yoto_sync_snapshot_applied_total.labels(
        group=group,
        source=source,
        changed=str(changed).lower(),
    ).inc()  # type: ignore[no-untyped-call]


def record_listener_error(event: str) -> None:
    yoto_sync_listener_error_total.labels(event=event).inc()  # type: ignore[no-untyped-call]


def record_devices_online(count: int) -> None:
    yoto_sync_devices_online.set(count)  # type: ignore[no-untyped-call]
