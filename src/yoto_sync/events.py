"""Typed fan-out of device events to registered listeners.

Delivery is synchronous and in registration order. Each listener call is
isolated: an exception is logged with its traceback, counted, and the next
listener still runs.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Any

from yoto_sync.logging_abstraction import get_logger
from yoto_sync.metrics import registry
from yoto_sync.state.fields import SnapshotGroup
from yoto_sync.state.reconciler import ChangeSet

logger = get_logger(__name__)

Listener = Callable[..., Any]


class EventType(StrEnum):
    STATUS_CHANGED = "status_changed"
    CONFIG_CHANGED = "config_changed"
    PLAYBACK_CHANGED = "playback_changed"
    ONLINE = "online"
    OFFLINE = "offline"
    TRANSPORT_ERROR = "transport_error"


_CHANGE_EVENTS: dict[SnapshotGroup, EventType] = {
    SnapshotGroup.STATUS: EventType.STATUS_CHANGED,
    SnapshotGroup.CONFIG: EventType.CONFIG_CHANGED,
    SnapshotGroup.PLAYBACK: EventType.PLAYBACK_CHANGED,
}


class NotificationEmitter:
    """Listener signatures by event:

    - status_changed / config_changed / playback_changed: (device_id, ChangeSet)
    - online / offline: (device_id, reason)
    - transport_error: (device_id | None, error)
    """

    lp: str = "events:"

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = {event: [] for event in EventType}

    def on(self, event: EventType | str, listener: Listener) -> None:
        self._listeners[EventType(event)].append(listener)

    def off(self, event: EventType | str, listener: Listener) -> None:
        listeners = self._listeners[EventType(event)]
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: EventType | str) -> int:
        return len(self._listeners[EventType(event)])

    def emit(self, event: EventType | str, *args: Any) -> None:
        event = EventType(event)
        for listener in tuple(self._listeners[event]):
            try:
                listener(*args)
            except Exception:
                registry.record_listener_error(event.value)
                logger.exception("%s Listener %r for %s raised", self.lp, listener, event.value)

    def emit_change(self, changes: ChangeSet) -> None:
        """Emit the group's *_changed event; empty ChangeSets emit nothing."""
        if not changes:
            return
        self.emit(_CHANGE_EVENTS[changes.group], changes.device_id, changes)

    def emit_online(self, device_id: str, reason: str) -> None:
        self.emit(EventType.ONLINE, device_id, reason)

    def emit_offline(self, device_id: str, reason: str) -> None:
        self.emit(EventType.OFFLINE, device_id, reason)

    def emit_transport_error(self, device_id: str | None, error: BaseException) -> None:
        self.emit(EventType.TRANSPORT_ERROR, device_id, error)
