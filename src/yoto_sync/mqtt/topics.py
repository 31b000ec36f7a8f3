"""Topic templates and parsing for the per-device MQTT namespace."""

from __future__ import annotations

import re
from enum import StrEnum

# Push (device -> engine)
STATUS_TOPIC = "device/{device_id}/data/status"
EVENTS_TOPIC = "device/{device_id}/data/events"
RESPONSE_TOPIC = "device/{device_id}/response"

# Commands (engine -> device)
STATUS_REQUEST_TOPIC = "device/{device_id}/command/status/request"
EVENTS_REQUEST_TOPIC = "device/{device_id}/command/events/request"
VOLUME_SET_TOPIC = "device/{device_id}/command/volume/set"
CARD_START_TOPIC = "device/{device_id}/command/card/start"
CARD_PAUSE_TOPIC = "device/{device_id}/command/card/pause"
CARD_RESUME_TOPIC = "device/{device_id}/command/card/resume"
CARD_STOP_TOPIC = "device/{device_id}/command/card/stop"
SLEEP_TIMER_SET_TOPIC = "device/{device_id}/command/sleep-timer/set"
AMBIENTS_SET_TOPIC = "device/{device_id}/command/ambients/set"

_DEVICE_ID_RE = re.compile(r"^/?device/([^/]+)/")
_FORBIDDEN_ID_CHARS = frozenset("/+#")


class MessageCategory(StrEnum):
    STATUS = "status"
    EVENTS = "events"
    RESPONSE = "response"
    UNKNOWN = "unknown"


def build_topic(template: str, device_id: str) -> str:
    """Fill a topic template with a device id.

    Raises:
        ValueError: Empty id, or an id containing a topic separator or wildcard

    """
    if not device_id:
        raise ValueError("device_id must not be empty")
    if _FORBIDDEN_ID_CHARS.intersection(device_id):
        raise ValueError(f"device_id {device_id!r} contains a reserved topic character")
    return template.format(device_id=device_id)


def extract_device_id(topic: str) -> str | None:
    match = _DEVICE_ID_RE.match(topic)
    return match.group(1) if match else None


def classify_topic(topic: str) -> MessageCategory:
    path = topic.removeprefix("/")
    parts = path.split("/")
    if len(parts) < 3 or parts[0] != "device":
        return MessageCategory.UNKNOWN
    tail = "/".join(parts[2:])
    if tail == "data/status":
        return MessageCategory.STATUS
    if tail == "data/events":
        return MessageCategory.EVENTS
    if tail == "response":
        return MessageCategory.RESPONSE
    return MessageCategory.UNKNOWN


def device_topics(device_id: str) -> tuple[str, ...]:
    """Subscription topics for one device: status, events, response."""
    return (
        build_topic(STATUS_TOPIC, device_id),
        build_topic(EVENTS_TOPIC, device_id),
        build_topic(RESPONSE_TOPIC, device_id),
    )
