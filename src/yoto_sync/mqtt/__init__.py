"""Topic addressing, per-device subscriptions and command publishing."""

from .commands import (
    AmbientCommand,
    CardStartCommand,
    CommandKind,
    CommandPublisher,
    SleepTimerCommand,
    VolumeCommand,
)
from .subscriptions import DeviceCallbacks, SubscriptionRegistry
from .topics import MessageCategory, build_topic, classify_topic, device_topics, extract_device_id

__all__ = [
    "AmbientCommand",
    "CardStartCommand",
    "CommandKind",
    "CommandPublisher",
    "DeviceCallbacks",
    "MessageCategory",
    "SleepTimerCommand",
    "SubscriptionRegistry",
    "VolumeCommand",
    "build_topic",
    "classify_topic",
    "device_topics",
    "extract_device_id",
]
