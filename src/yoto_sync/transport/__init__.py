"""MQTT session management: state machine, reconnect policy and errors."""

from .connection_manager import ConnectionManager, ConnectionState, Session
from .exceptions import (
    ConnectionFailedError,
    MalformedMessageError,
    NotConnectedError,
    PartialSubscriptionError,
    PublishTimeoutError,
    SubscriptionError,
    YotoConnectionError,
    YotoSyncError,
)
from .retry_policy import ReconnectPolicy

__all__ = [
    "ConnectionFailedError",
    "ConnectionManager",
    "ConnectionState",
    "MalformedMessageError",
    "NotConnectedError",
    "PartialSubscriptionError",
    "PublishTimeoutError",
    "ReconnectPolicy",
    "Session",
    "SubscriptionError",
    "YotoConnectionError",
    "YotoSyncError",
]
