"""Snapshot groups and the closed set of canonical field names per group.

Every key the reconciler stores is checked against its group's enum. Keys
outside the enum are still stored and diffed, but are reported separately
as unmapped so a new vendor field is visible instead of silently ignored.
"""

from __future__ import annotations

from enum import StrEnum


class SnapshotGroup(StrEnum):
    STATUS = "status"
    CONFIG = "config"
    PLAYBACK = "playback"


class StatusField(StrEnum):
    """Device health and hardware state."""

    VOLUME = "volume"
    MAX_VOLUME = "maxVolume"
    BATTERY_LEVEL_PERCENTAGE = "batteryLevelPercentage"
    IS_CHARGING = "isCharging"
    IS_ONLINE = "isOnline"
    FIRMWARE_VERSION = "firmwareVersion"
    TEMPERATURE_CELSIUS = "temperatureCelsius"
    NIGHTLIGHT_MODE = "nightlightMode"
    DAY_MODE = "dayMode"
    CARD_INSERTION_STATE = "cardInsertionState"
    ACTIVE_CARD_ID = "activeCardId"
    POWER_SOURCE = "powerSource"
    WIFI_STRENGTH = "wifiStrength"
    FREE_DISK_SPACE_BYTES = "freeDiskSpaceBytes"
    TOTAL_DISK_SPACE_BYTES = "totalDiskSpaceBytes"
    IS_AUDIO_DEVICE_CONNECTED = "isAudioDeviceConnected"
    IS_BLUETOOTH_AUDIO_CONNECTED = "isBluetoothAudioConnected"
    AMBIENT_LIGHT_SENSOR_READING = "ambientLightSensorReading"
    DISPLAY_BRIGHTNESS = "displayBrightness"
    TIME_FORMAT = "timeFormat"
    UPTIME = "uptime"
    UPDATED_AT = "updatedAt"
    SOURCE = "source"


class ConfigField(StrEnum):
    """User-configurable device settings."""

    ALARMS = "alarms"
    AMBIENT_COLOUR = "ambientColour"
    NIGHT_AMBIENT_COLOUR = "nightAmbientColour"
    BLUETOOTH_ENABLED = "bluetoothEnabled"
    BT_HEADPHONES_ENABLED = "btHeadphonesEnabled"
    CLOCK_FACE = "clockFace"
    DAY_DISPLAY_BRIGHTNESS = "dayDisplayBrightness"
    NIGHT_DISPLAY_BRIGHTNESS = "nightDisplayBrightness"
    DAY_TIME = "dayTime"
    NIGHT_TIME = "nightTime"
    DAY_YOTO_DAILY = "dayYotoDaily"
    NIGHT_YOTO_DAILY = "nightYotoDaily"
    DAY_YOTO_RADIO = "dayYotoRadio"
    NIGHT_YOTO_RADIO = "nightYotoRadio"
    DAY_SOUNDS_OFF = "daySoundsOff"
    NIGHT_SOUNDS_OFF = "nightSoundsOff"
    DISPLAY_DIM_BRIGHTNESS = "displayDimBrightness"
    DISPLAY_DIM_TIMEOUT = "displayDimTimeout"
    HEADPHONES_VOLUME_LIMITED = "headphonesVolumeLimited"
    HOUR_FORMAT = "hourFormat"
    LOCALE = "locale"
    LOG_LEVEL = "logLevel"
    MAX_VOLUME_LIMIT = "maxVolumeLimit"
    NIGHT_MAX_VOLUME_LIMIT = "nightMaxVolumeLimit"
    PAUSE_POWER_BUTTON = "pausePowerButton"
    PAUSE_VOLUME_DOWN = "pauseVolumeDown"
    REPEAT_ALL = "repeatAll"
    SHOW_DIAGNOSTICS = "showDiagnostics"
    SHUTDOWN_TIMEOUT = "shutdownTimeout"
    SYSTEM_VOLUME = "systemVolume"
    TIMEZONE = "timezone"
    VOLUME_LEVEL = "volumeLevel"


class PlaybackField(StrEnum):
    """Transport state of the current card."""

    PLAYBACK_STATUS = "playbackStatus"
    CARD_ID = "cardId"
    SOURCE = "source"
    TRACK_TITLE = "trackTitle"
    TRACK_KEY = "trackKey"
    CHAPTER_TITLE = "chapterTitle"
    CHAPTER_KEY = "chapterKey"
    POSITION = "position"
    TRACK_LENGTH = "trackLength"
    STREAMING = "streaming"
    REPEAT_ALL = "repeatAll"
    PLAYBACK_WAIT = "playbackWait"
    SLEEP_TIMER_ACTIVE = "sleepTimerActive"
    SLEEP_TIMER_SECONDS = "sleepTimerSeconds"
    UPDATED_AT = "updatedAt"


FIELDS_BY_GROUP: dict[SnapshotGroup, type[StrEnum]] = {
    SnapshotGroup.STATUS: StatusField,
    SnapshotGroup.CONFIG: ConfigField,
    SnapshotGroup.PLAYBACK: PlaybackField,
}


def resolve_field(group: SnapshotGroup, key: str) -> StrEnum | None:
    """Enum member for a key in a group, or None when the key is unmapped."""
    field_enum = FIELDS_BY_GROUP[group]
    try:
        return field_enum(key)
    except ValueError:
        return None
