"""Exception hierarchy for the transport, subscription and command layers.

Transport failures during a running session are absorbed by the reconnect
loop up to its budget; everything else here propagates to the caller of the
operation that failed. MalformedMessageError never leaves the delivery
pipeline: it is logged and the message is dropped.
"""

from __future__ import annotations


class YotoSyncError(Exception):
    """Base class for all yoto-sync errors."""


class YotoConnectionError(YotoSyncError):
    """Handshake or authentication failure for a single connect attempt.

    Named YotoConnectionError to avoid shadowing Python's built-in
    ConnectionError.

    Attributes:
        reason: Specific failure reason
        state: Connection state when the error occurred

    """

    def __init__(self, reason: str, state: str = "unknown") -> None:
        self.reason: str = reason
        self.state: str = state
        super().__init__(f"Connection error: {reason} (state: {state})")


class ConnectionFailedError(YotoSyncError):
    """Reconnect budget exhausted. Terminal: no further automatic retry.

    Attributes:
        attempts: Number of consecutive failed reconnect attempts
        last_error: The error from the final attempt, if any

    """

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        self.attempts: int = attempts
        self.last_error: BaseException | None = last_error
        super().__init__(f"Connection failed after {attempts} reconnect attempts")


class NotConnectedError(YotoSyncError):
    """Operation attempted without an active session.

    Attributes:
        operation: What was attempted
        state: Connection state at the time

    """

    def __init__(self, operation: str, state: str = "disconnected") -> None:
        self.operation: str = operation
        self.state: str = state
        super().__init__(f"Cannot {operation}: not connected (state: {state})")


class PublishTimeoutError(YotoSyncError):
    """No transport-level confirmation of a publish within the budget.

    Attributes:
        topic: Topic the publish targeted
        timeout_seconds: Budget that was exceeded

    """

    def __init__(self, topic: str, timeout_seconds: float) -> None:
        self.topic: str = topic
        self.timeout_seconds: float = timeout_seconds
        super().__init__(f"Publish to {topic} not confirmed within {timeout_seconds}s")


class MalformedMessageError(YotoSyncError):
    """Inbound payload could not be parsed.

    Attributes:
        topic: Topic the payload arrived on
        reason: Why parsing failed

    """

    def __init__(self, topic: str, reason: str) -> None:
        self.topic: str = topic
        self.reason: str = reason
        super().__init__(f"Malformed message on {topic}: {reason}")


class SubscriptionError(YotoSyncError):
    """Subscribing a device failed; nothing was registered.

    Attributes:
        device_id: Device whose subscription failed

    """

    def __init__(self, device_id: str, reason: str) -> None:
        self.device_id: str = device_id
        self.reason: str = reason
        super().__init__(f"Subscription for device {device_id} failed: {reason}")


class PartialSubscriptionError(SubscriptionError):
    """Broker refused some of a device's topics.

    The granted topics are rolled back, so the device is left unsubscribed.

    Attributes:
        failed_topics: Topics the broker refused

    """

    def __init__(self, device_id: str, failed_topics: tuple[str, ...]) -> None:
        self.failed_topics: tuple[str, ...] = failed_topics
        super().__init__(device_id, f"broker refused {len(failed_topics)} topic(s): {', '.join(failed_topics)}")
