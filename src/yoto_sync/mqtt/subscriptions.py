"""Per-device topic subscriptions, callback routing and replay after reconnect."""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from yoto_sync.const import YOTO_SETTLE_DELAY
from yoto_sync.logging_abstraction import get_logger
from yoto_sync.metrics import registry
from yoto_sync.mqtt.topics import MessageCategory, classify_topic, device_topics, extract_device_id
from yoto_sync.transport.connection_manager import ConnectionManager
from yoto_sync.transport.exceptions import (
    MalformedMessageError,
    NotConnectedError,
    PartialSubscriptionError,
    SubscriptionError,
    YotoConnectionError,
    YotoSyncError,
)

logger = get_logger(__name__)

Callback = Callable[[str, Any], None]
BaselineRequester = Callable[[str], Awaitable[None]]
ErrorReporter = Callable[[str | None, BaseException], None]


@dataclass(frozen=True)
class DeviceCallbacks:
    """Handlers for one device's inbound topics, called with (device_id, decoded payload)."""

    on_status: Callback | None = None
    on_events: Callback | None = None
    on_response: Callback | None = None

    def for_category(self, category: MessageCategory) -> Callback | None:
        if category is MessageCategory.STATUS:
            return self.on_status
        if category is MessageCategory.EVENTS:
            return self.on_events
        if category is MessageCategory.RESPONSE:
            return self.on_response
        return None


@dataclass
class DeviceSubscription:
    device_id: str
    topics: tuple[str, ...]
    callbacks: DeviceCallbacks
    stale: bool = False
    baseline_task: asyncio.Task[None] | None = field(default=None, repr=False)

    def cancel_baseline(self) -> None:
        if self.baseline_task is not None and not self.baseline_task.done():
            _ = self.baseline_task.cancel()
        self.baseline_task = None


def decode_payload(topic: str, category: MessageCategory, payload: bytes) -> Any:
    """Parse a JSON payload; status and events must be JSON objects.

    Raises:
        MalformedMessageError: Payload is not valid UTF-8 JSON of the expected shape

    """
    try:
        decoded = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedMessageError(topic, f"invalid JSON: {exc}") from exc
    if category in (MessageCategory.STATUS, MessageCategory.EVENTS) and not isinstance(decoded, dict):
        raise MalformedMessageError(topic, f"expected a JSON object, got {type(decoded).__name__}")
    return decoded


class SubscriptionRegistry:
    """Owns every DeviceSubscription of the current session.

    Registration order is preserved and used when subscriptions are replayed
    after a reconnect. A device is only registered once the broker granted
    all of its topics.
    """

    lp: str = "subscriptions:"

    def __init__(self, connection: ConnectionManager, settle_delay: float = YOTO_SETTLE_DELAY) -> None:
        self.connection = connection
        self.settle_delay = settle_delay
        self.subscriptions: dict[str, DeviceSubscription] = {}
        self._lock = asyncio.Lock()
        self._baseline_requester: BaselineRequester | None = None
        self._error_reporter: ErrorReporter | None = None

    def set_baseline_requester(self, requester: BaselineRequester) -> None:
        self._baseline_requester = requester

    def set_error_reporter(self, reporter: ErrorReporter) -> None:
        self._error_reporter = reporter

    def is_subscribed(self, device_id: str) -> bool:
        return device_id in self.subscriptions

    def is_stale(self, device_id: str) -> bool:
        sub = self.subscriptions.get(device_id)
        return sub is not None and sub.stale

    def subscribed_devices(self) -> tuple[str, ...]:
        return tuple(self.subscriptions)

    async def _subscribe_topics(self, device_id: str, topics: tuple[str, ...]) -> None:
        """Subscribe all topics or none of them."""
        lp = f"{self.lp}{device_id}:"
        try:
            refused = await self.connection.subscribe(topics)
        except YotoConnectionError as exc:
            raise SubscriptionError(device_id, exc.reason) from exc

        if not refused:
            return

        granted = tuple(topic for topic in topics if topic not in refused)
        logger.warning("%s Broker refused %s, rolling back %d granted topic(s)", lp, refused, len(granted))
        if granted:
            try:
                await self.connection.unsubscribe(granted)
            except (YotoConnectionError, NotConnectedError) as exc:
                logger.warning("%s Rollback unsubscribe failed: %s", lp, exc)
        raise PartialSubscriptionError(device_id, refused)

    async def subscribe_to_device(self, device_id: str, callbacks: DeviceCallbacks) -> bool:
        """Subscribe to a device's status, events and response topics.

        Returns:
            True if the device was registered, False if it already was

        Raises:
            NotConnectedError: No connected session
            SubscriptionError: The SUBSCRIBE failed; nothing was registered
            PartialSubscriptionError: Some topics were refused; nothing was registered

        """
        lp = f"{self.lp}subscribe:"
        async with self._lock:
            if device_id in self.subscriptions:
                logger.info("%s Already subscribed to %s", lp, device_id)
                return False
            if not self.connection.is_connected():
                raise NotConnectedError("subscribe", self.connection.state.value)

            topics = device_topics(device_id)
            await self._subscribe_topics(device_id, topics)
            sub = DeviceSubscription(device_id=device_id, topics=topics, callbacks=callbacks)
            self.subscriptions[device_id] = sub
            logger.info("%s Subscribed to %s (%d topics)", lp, device_id, len(topics))
            self._schedule_baseline(sub)
            return True

    async def unsubscribe_from_device(self, device_id: str) -> None:
        lp = f"{self.lp}unsubscribe:"
        async with self._lock:
            sub = self.subscriptions.pop(device_id, None)
            if sub is None:
                logger.debug("%s %s was not subscribed", lp, device_id)
                return
            sub.cancel_baseline()
            if not self.connection.is_connected():
                logger.debug("%s Not connected, dropped %s locally", lp, device_id)
                return
            try:
                await self.connection.unsubscribe(sub.topics)
            except (YotoConnectionError, NotConnectedError) as exc:
                logger.warning("%s Unsubscribe for %s failed: %s", lp, device_id, exc)
            else:
                logger.info("%s Unsubscribed from %s", lp, device_id)

    async def resubscribe_all(self) -> None:
        """Replay every subscription in registration order (on-connect hook).

        A device whose replay fails is marked stale and reported; the others
        continue.
        """
        lp = f"{self.lp}resubscribe:"
        if not self.subscriptions:
            return
        logger.info("%s Replaying %d subscription(s)", lp, len(self.subscriptions))
        for device_id, sub in tuple(self.subscriptions.items()):
            sub.cancel_baseline()
            try:
                await self._subscribe_topics(device_id, sub.topics)
            except (SubscriptionError, NotConnectedError) as exc:
                sub.stale = True
                logger.warning("%s %s marked stale: %s", lp, device_id, exc)
                self._report_error(device_id, exc)
                continue
            sub.stale = False
            self._schedule_baseline(sub)

    def _report_error(self, device_id: str | None, error: BaseException) -> None:
        if self._error_reporter is not None:
            self._error_reporter(device_id, error)

    # -------------------------------------------------------------- baseline

    def _schedule_baseline(self, sub: DeviceSubscription) -> None:
        if self._baseline_requester is None:
            return
        sub.baseline_task = asyncio.create_task(self._baseline_after_settle(sub.device_id))

    async def _baseline_after_settle(self, device_id: str) -> None:
        await asyncio.sleep(self.settle_delay)
        assert self._baseline_requester is not None, "baseline requester must be set"
        try:
            await self._baseline_requester(device_id)
        except YotoSyncError as exc:
            logger.debug("%s Baseline pull for %s failed: %s", self.lp, device_id, exc)

    # -------------------------------------------------------------- dispatch

    async def dispatch(self, topic: str, payload: bytes) -> None:
        """Route one inbound message to its device's callback."""
        lp = f"{self.lp}dispatch:"
        category = classify_topic(topic)
        registry.record_message_recv(category.value)
        device_id = extract_device_id(topic)
        if device_id is None or category is MessageCategory.UNKNOWN:
            logger.debug("%s Ignoring message on unrecognised topic %s", lp, topic)
            return

        sub = self.subscriptions.get(device_id)
        if sub is None:
            logger.debug("%s No subscription for device %s, dropping", lp, device_id)
            return

        try:
            decoded = decode_payload(topic, category, payload)
        except MalformedMessageError as exc:
            registry.record_malformed_message(category.value)
            logger.warning("%s %s", lp, exc, extra={"device_id": device_id, "payload_bytes": len(payload)})
            return

        callback = sub.callbacks.for_category(category)
        if callback is None:
            return
        callback(device_id, decoded)

    def clear(self) -> None:
        """Drop every subscription without touching the broker (disconnect hook)."""
        for sub in self.subscriptions.values():
            sub.cancel_baseline()
        count = len(self.subscriptions)
        self.subscriptions.clear()
        if count:
            logger.debug("%s Cleared %d subscription(s)", self.lp, count)

    async def aclose(self) -> None:
        """Cancel pending baseline pulls and wait for them to finish."""
        tasks = [sub.baseline_task for sub in self.subscriptions.values() if sub.baseline_task is not None]
        self.clear()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
