"""DeviceSyncEngine: the outward API of the sync core.

Inbound data flows transport -> subscriptions -> normalize -> reconciler ->
watchdog -> emitter. Outbound commands flow caller -> CommandPublisher ->
transport. Everything runs on one event loop; the reconciler and watchdog
are only written from the message delivery path and from ingest_poll.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from yoto_sync.cloud_api import YotoCloudAPI
from yoto_sync.events import EventType, Listener, NotificationEmitter
from yoto_sync.logging_abstraction import get_logger
from yoto_sync.mqtt.commands import CommandPublisher
from yoto_sync.mqtt.subscriptions import DeviceCallbacks, SubscriptionRegistry
from yoto_sync.settings import EngineSettings
from yoto_sync.state.fields import SnapshotGroup
from yoto_sync.state.normalize import (
    GroupedFields,
    normalize_http_config,
    normalize_http_status,
    normalize_mqtt_events,
    normalize_mqtt_status,
)
from yoto_sync.state.reconciler import ChangeSet, GroupSnapshot, StateReconciler
from yoto_sync.state.watchdog import LivenessMonitor, LivenessWatchdog
from yoto_sync.transport.connection_manager import ConnectionManager, ConnectionState, Session
from yoto_sync.transport.exceptions import ConnectionFailedError

logger = get_logger(__name__)

_POLL_NORMALIZERS: dict[SnapshotGroup, Callable[[dict[str, Any]], GroupedFields]] = {
    SnapshotGroup.STATUS: normalize_http_status,
    SnapshotGroup.CONFIG: normalize_http_config,
}


class DeviceSyncEngine:
    """Keeps one MQTT session and a reconciled, versioned state per device.

    Example:
        engine = DeviceSyncEngine()
        engine.on(EventType.STATUS_CHANGED, lambda device_id, changes: ...)
        await engine.connect(access_token, device_id)
        await engine.subscribe_to_device(device_id)
        await engine.commands.set_volume(device_id, 8)

    """

    lp: str = "engine:"

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        connection: ConnectionManager | None = None,
        api: YotoCloudAPI | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or EngineSettings()
        s = self.settings
        self.api = api
        self.connection = connection or ConnectionManager(
            s.mqtt_host,
            s.mqtt_port,
            transport=s.mqtt_transport,
            websocket_path=s.mqtt_ws_path,
            keepalive=s.keepalive,
            connect_timeout=s.connect_timeout,
            auth_name=s.mqtt_auth_name,
            reconnect_policy=s.reconnect_policy(),
        )
        self.subscriptions = SubscriptionRegistry(self.connection, settle_delay=s.settle_delay)
        self.commands = CommandPublisher(self.connection, self.subscriptions, publish_timeout=s.publish_timeout)
        self.reconciler = StateReconciler(clock=clock)
        self.watchdog = LivenessWatchdog(stale_timeout=s.stale_timeout, clock=monotonic)
        self.emitter = NotificationEmitter()
        self.liveness = LivenessMonitor(
            self.watchdog,
            on_transition=self._on_liveness_transition,
            interval=s.liveness_interval,
        )
        self._last_responses: dict[str, Any] = {}
        self._extra_callbacks: dict[str, DeviceCallbacks] = {}

        self.connection.set_message_handler(self.subscriptions.dispatch)
        self.connection.add_connect_hook(self.subscriptions.resubscribe_all)
        self.connection.add_disconnect_hook(self.subscriptions.clear)
        self.connection.add_error_listener(self.emitter.emit_transport_error)
        self.subscriptions.set_baseline_requester(self.commands.request_baseline)
        self.subscriptions.set_error_reporter(self.emitter.emit_transport_error)

    # ------------------------------------------------------------- lifecycle

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def terminal_error(self) -> ConnectionFailedError | None:
        return self.connection.terminal_error

    async def connect(self, credential: str, identity: str) -> Session:
        session = await self.connection.connect(credential, identity)
        self.liveness.start()
        return session

    async def disconnect(self) -> None:
        await self.liveness.stop()
        await self.connection.disconnect()

    # ---------------------------------------------------------- subscriptions

    def subscribed_devices(self) -> tuple[str, ...]:
        return self.subscriptions.subscribed_devices()

    async def subscribe_to_device(self, device_id: str, callbacks: DeviceCallbacks | None = None) -> None:
        """Subscribe a device and route its pushes into the reconciler.

        ``callbacks`` optionally receive the raw decoded payloads after the
        engine has processed them. Subscribing an already subscribed device
        changes nothing, including its callbacks.
        """
        registered = await self.subscriptions.subscribe_to_device(
            device_id,
            DeviceCallbacks(
                on_status=self._handle_status,
                on_events=self._handle_events,
                on_response=self._handle_response,
            ),
        )
        if registered and callbacks is not None:
            self._extra_callbacks[device_id] = callbacks

    async def unsubscribe_from_device(self, device_id: str) -> None:
        await self.subscriptions.unsubscribe_from_device(device_id)
        _ = self._extra_callbacks.pop(device_id, None)
        _ = self._last_responses.pop(device_id, None)
        self.liveness.forget(device_id)
        self.watchdog.forget(device_id)
        self.reconciler.forget(device_id)

    # ---------------------------------------------------------------- inbound

    def _ingest(self, device_id: str, grouped: GroupedFields, source: str) -> list[ChangeSet]:
        changes = [
            self.reconciler.apply_snapshot(device_id, group, fields, source=source)
            for group, fields in grouped.items()
        ]
        if not changes:
            return changes
        self.watchdog.touch(device_id)
        _ = self.liveness.check(device_id, f"{source} update")
        for change in changes:
            self.emitter.emit_change(change)
        return changes

    def _forward(self, device_id: str, attr: str, payload: Any) -> None:
        extra = self._extra_callbacks.get(device_id)
        callback = getattr(extra, attr, None) if extra is not None else None
        if callback is not None:
            callback(device_id, payload)

    def _handle_status(self, device_id: str, payload: dict[str, Any]) -> None:
        _ = self._ingest(device_id, normalize_mqtt_status(payload), "mqtt")
        self._forward(device_id, "on_status", payload)

    def _handle_events(self, device_id: str, payload: dict[str, Any]) -> None:
        _ = self._ingest(device_id, normalize_mqtt_events(payload), "mqtt")
        self._forward(device_id, "on_events", payload)

    def _handle_response(self, device_id: str, payload: Any) -> None:
        # Responses carry no request id: keep only the latest one per device
        self._last_responses[device_id] = payload
        self.watchdog.touch(device_id)
        _ = self.liveness.check(device_id, "command response")
        logger.debug("%s Command response from %s: %s", self.lp, device_id, payload)
        self._forward(device_id, "on_response", payload)

    def ingest_poll(self, device_id: str, group: SnapshotGroup | str, payload: dict[str, Any]) -> list[ChangeSet]:
        """Apply an HTTP snapshot (status or config) with source ``poll``."""
        group = SnapshotGroup(group)
        normalizer = _POLL_NORMALIZERS.get(group)
        if normalizer is None:
            raise ValueError(f"HTTP snapshots are not accepted for the {group.value} group")
        return self._ingest(device_id, normalizer(payload), "poll")

    async def update_device_config(self, device_id: str, config: dict[str, Any]) -> list[ChangeSet]:
        """Write device settings through the cloud API and reconcile the returned config.

        Raises:
            RuntimeError: The engine was built without a cloud API
            YotoApiError: The API rejected the write
            aiohttp.ClientError: Network failure

        """
        if self.api is None:
            raise RuntimeError("update_device_config needs an engine built with api=YotoCloudAPI(...)")
        updated = await self.api.update_device_config(device_id, config)
        if not updated:
            logger.debug("%s Config write for %s returned no body", self.lp, device_id)
            return []
        return self.ingest_poll(device_id, SnapshotGroup.CONFIG, updated)

    def _on_liveness_transition(self, device_id: str, online: bool, reason: str) -> None:
        if online:
            self.emitter.emit_online(device_id, reason)
        else:
            self.emitter.emit_offline(device_id, reason)

    # ------------------------------------------------------------------ views

    def is_online(self, device_id: str) -> bool:
        return self.watchdog.is_online(device_id)

    def get_snapshot(self, device_id: str, group: SnapshotGroup | str) -> GroupSnapshot | None:
        return self.reconciler.get_snapshot(device_id, group)

    def last_response(self, device_id: str) -> Any:
        """Most recent command response from a device (not matched to a request)."""
        return self._last_responses.get(device_id)

    # -------------------------------------------------------------- listeners

    def on(self, event: EventType | str, listener: Listener) -> None:
        self.emitter.on(event, listener)

    def off(self, event: EventType | str, listener: Listener) -> None:
        self.emitter.off(event, listener)
