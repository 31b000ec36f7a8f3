"""Vendor payload -> canonical per-group fields.

Field authority between the two sources:

- MQTT ``data/status`` feeds the status group (battery, charging, temperature,
  firmware, card insertion, day mode, display and audio outputs).
- MQTT ``data/events`` feeds the playback group. ``volume`` and ``volumeMax``
  in events go to the status group: events are the authoritative source for
  the current volume, so volume keys in the status push are ignored.
- HTTP ``/status`` feeds the status group using the API's own field names.
- HTTP ``/config`` feeds the config group.

Vendor keys with no canonical mapping pass through unchanged and show up as
unmapped in the resulting ChangeSet. Keys that are known diagnostics with no
consumer are dropped here, explicitly.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from yoto_sync.state.fields import ConfigField, PlaybackField, SnapshotGroup, StatusField

GroupedFields = dict[SnapshotGroup, dict[str, Any]]

_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?\d+\.\d+$")

_CARD_INSERTION_STATES = {0: "none", 1: "physical", 2: "remote"}
_DAY_MODES = {0: "night", 1: "day", -1: "unknown"}


def coerce_value(value: Any) -> Any:
    """Convert transport-encoded scalars ("true", "42", "1.5") to bool/int/float."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    return value


def _as_bool(value: Any) -> bool:
    value = coerce_value(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value != 0
    return bool(value)


def _lookup(table: Mapping[int, str], default: str) -> Callable[[Any], str]:
    def convert(value: Any) -> str:
        value = coerce_value(value)
        if isinstance(value, int) and not isinstance(value, bool):
            return table.get(value, default)
        return str(value)

    return convert


def _temperature(value: Any) -> float | int | None:
    """Celsius from the status push's ``temp`` triple (e.g. '1014:23:318')."""
    if isinstance(value, int | float) and not isinstance(value, bool):
        return value
    if not isinstance(value, str) or value == "notSupported":
        return None
    parts = value.split(":")
    candidate = parts[1] if len(parts) >= 2 else parts[0]
    converted = coerce_value(candidate)
    if isinstance(converted, int | float) and not isinstance(converted, bool):
        return converted
    return None


def _active_card(value: Any) -> str | None:
    if value in (None, "", "none"):
        return None
    return str(value)


# raw key -> (canonical key, converter)
_MQTT_STATUS_KEYS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "batteryLevel": (StatusField.BATTERY_LEVEL_PERCENTAGE, coerce_value),
    "charging": (StatusField.IS_CHARGING, _as_bool),
    "fwVersion": (StatusField.FIRMWARE_VERSION, str),
    "temp": (StatusField.TEMPERATURE_CELSIUS, _temperature),
    "nightlightMode": (StatusField.NIGHTLIGHT_MODE, str),
    "day": (StatusField.DAY_MODE, _lookup(_DAY_MODES, "unknown")),
    "cardInserted": (StatusField.CARD_INSERTION_STATE, _lookup(_CARD_INSERTION_STATES, "none")),
    "activeCard": (StatusField.ACTIVE_CARD_ID, _active_card),
    "headphones": (StatusField.IS_AUDIO_DEVICE_CONNECTED, _as_bool),
    "bluetoothHp": (StatusField.IS_BLUETOOTH_AUDIO_CONNECTED, _as_bool),
    "dnowBrightness": (StatusField.DISPLAY_BRIGHTNESS, coerce_value),
    "als": (StatusField.AMBIENT_LIGHT_SENSOR_READING, coerce_value),
    "freeDisk": (StatusField.FREE_DISK_SPACE_BYTES, coerce_value),
    "upTime": (StatusField.UPTIME, coerce_value),
    "timeFormat": (StatusField.TIME_FORMAT, str),
    "wifiStrength": (StatusField.WIFI_STRENGTH, coerce_value),
    "powerSource": (StatusField.POWER_SOURCE, coerce_value),
}

# Present in the status push but owned elsewhere (events, config) or diagnostics only
_MQTT_STATUS_DROPPED = frozenset(
    {
        "volume",
        "userVolume",
        "playingStatus",
        "dayBright",
        "nightBright",
        "shutdownTimeout",
        "battery",
        "batteryTemp",
        "batteryData",
        "batteryLevelRaw",
        "powerCaps",
        "free",
        "freeDMA",
        "free32",
        "utcTime",
        "aliveTime",
        "accelTemp",
        "qiOtp",
        "errorsLogged",
        "statusVersion",
        "productType",
        "dbatTimeout",
    },
)

_MQTT_EVENT_STATUS_KEYS: dict[str, str] = {
    "volume": StatusField.VOLUME,
    "volumeMax": StatusField.MAX_VOLUME,
}

_MQTT_EVENT_PLAYBACK_RENAMES: dict[str, str] = {
    "eventUtc": PlaybackField.UPDATED_AT,
}

_MQTT_EVENTS_DROPPED = frozenset({"cardUpdatedAt"})

_HTTP_STATUS_DROPPED = frozenset({"deviceId"})

_CONFIG_KEYS = frozenset(field.value for field in ConfigField)


def _unwrap(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    """Accept both a bare payload and one wrapped as {key: {...}}."""
    inner = payload.get(key)
    if len(payload) == 1 and isinstance(inner, Mapping):
        return inner
    return payload


def normalize_mqtt_status(payload: Mapping[str, Any]) -> GroupedFields:
    status: dict[str, Any] = {}
    for key, value in _unwrap(payload, "status").items():
        if key in _MQTT_STATUS_DROPPED:
            continue
        mapping = _MQTT_STATUS_KEYS.get(key)
        if mapping is None:
            status[key] = coerce_value(value)
            continue
        canonical, convert = mapping
        status[str(canonical)] = convert(value)
    return {SnapshotGroup.STATUS: status}


def normalize_mqtt_events(payload: Mapping[str, Any]) -> GroupedFields:
    status: dict[str, Any] = {}
    playback: dict[str, Any] = {}
    for key, value in _unwrap(payload, "events").items():
        if key in _MQTT_EVENTS_DROPPED:
            continue
        if key in _MQTT_EVENT_STATUS_KEYS:
            status[str(_MQTT_EVENT_STATUS_KEYS[key])] = coerce_value(value)
            continue
        playback[str(_MQTT_EVENT_PLAYBACK_RENAMES.get(key, key))] = coerce_value(value)

    grouped: GroupedFields = {}
    if playback:
        grouped[SnapshotGroup.PLAYBACK] = playback
    if status:
        grouped[SnapshotGroup.STATUS] = status
    return grouped


def normalize_http_status(payload: Mapping[str, Any]) -> GroupedFields:
    status = {
        key: coerce_value(value)
        for key, value in _unwrap(payload, "status").items()
        if key not in _HTTP_STATUS_DROPPED
    }
    return {SnapshotGroup.STATUS: status}


def normalize_http_config(payload: Mapping[str, Any]) -> GroupedFields:
    """Config group from ``/config``, which nests settings under device.config."""
    body: Mapping[str, Any] = payload
    device = body.get("device")
    if isinstance(device, Mapping):
        body = device
    settings = body.get("config")
    if not isinstance(settings, Mapping):
        settings = {key: value for key, value in body.items() if key in _CONFIG_KEYS}
    return {SnapshotGroup.CONFIG: {key: coerce_value(value) for key, value in settings.items()}}
