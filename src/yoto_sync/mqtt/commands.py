"""Typed device commands and the serialized publisher that sends them."""

from __future__ import annotations

import asyncio
import json
import time
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from yoto_sync.const import YOTO_MQTT_PUBLISH_TIMEOUT
from yoto_sync.instrumentation import timed_async
from yoto_sync.logging_abstraction import get_logger
from yoto_sync.metrics import registry
from yoto_sync.mqtt import topics
from yoto_sync.mqtt.subscriptions import SubscriptionRegistry
from yoto_sync.transport.connection_manager import ConnectionManager
from yoto_sync.transport.exceptions import NotConnectedError, PublishTimeoutError

logger = get_logger(__name__)


class CommandKind(StrEnum):
    REQUEST_STATUS = "status/request"
    REQUEST_EVENTS = "events/request"
    SET_VOLUME = "volume/set"
    CARD_START = "card/start"
    CARD_PAUSE = "card/pause"
    CARD_RESUME = "card/resume"
    CARD_STOP = "card/stop"
    SET_SLEEP_TIMER = "sleep-timer/set"
    SET_AMBIENTS = "ambients/set"

    @property
    def template(self) -> str:
        return _TEMPLATES[self]


_TEMPLATES: dict[CommandKind, str] = {
    CommandKind.REQUEST_STATUS: topics.STATUS_REQUEST_TOPIC,
    CommandKind.REQUEST_EVENTS: topics.EVENTS_REQUEST_TOPIC,
    CommandKind.SET_VOLUME: topics.VOLUME_SET_TOPIC,
    CommandKind.CARD_START: topics.CARD_START_TOPIC,
    CommandKind.CARD_PAUSE: topics.CARD_PAUSE_TOPIC,
    CommandKind.CARD_RESUME: topics.CARD_RESUME_TOPIC,
    CommandKind.CARD_STOP: topics.CARD_STOP_TOPIC,
    CommandKind.SET_SLEEP_TIMER: topics.SLEEP_TIMER_SET_TOPIC,
    CommandKind.SET_AMBIENTS: topics.AMBIENTS_SET_TOPIC,
}


class CommandPayload(BaseModel):
    """Base for command bodies; serialized with the vendor's camelCase keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)


class VolumeCommand(CommandPayload):
    volume: int = Field(ge=0, le=100)


class CardStartCommand(CommandPayload):
    uri: str = Field(min_length=1)
    chapter_key: str | None = None
    track_key: str | None = None
    seconds_in: int | None = Field(default=None, ge=0)
    cut_off: int | None = Field(default=None, ge=0)
    any_button_stop: bool | None = None


class SleepTimerCommand(CommandPayload):
    """Sleep timer duration; 0 disables it."""

    seconds: int = Field(ge=0)


class AmbientCommand(CommandPayload):
    r: int = Field(ge=0, le=255)
    g: int = Field(ge=0, le=255)
    b: int = Field(ge=0, le=255)


class CommandPublisher:
    """Publishes commands over the session, one at a time.

    The send resolves once the transport confirmed it; this is not a device
    acknowledgement. There is no retry: a NotConnectedError or
    PublishTimeoutError goes straight back to the caller.
    """

    lp: str = "commands:"

    def __init__(
        self,
        connection: ConnectionManager,
        subscriptions: SubscriptionRegistry | None = None,
        publish_timeout: float = YOTO_MQTT_PUBLISH_TIMEOUT,
    ) -> None:
        self.connection = connection
        self.subscriptions = subscriptions
        self.publish_timeout = publish_timeout
        self._lock = asyncio.Lock()

    def _check_ready(self, device_id: str, command: CommandKind) -> None:
        if not self.connection.is_connected():
            raise NotConnectedError(f"publish {command.value}", self.connection.state.value)
        if self.subscriptions is not None and self.subscriptions.is_stale(device_id):
            raise NotConnectedError(f"publish {command.value} to stale device {device_id}", "stale")

    @timed_async("mqtt_publish")
    async def publish(
        self,
        device_id: str,
        command: CommandKind,
        payload: CommandPayload | None = None,
    ) -> None:
        """Send one command.

        Raises:
            NotConnectedError: No connected session, or the device's subscription is stale
            PublishTimeoutError: Transport did not confirm within the publish timeout
            ValueError: Invalid device id

        """
        lp = f"{self.lp}publish:"
        command = CommandKind(command)
        topic = topics.build_topic(command.template, device_id)
        body = json.dumps(payload.to_wire() if payload is not None else {}).encode()

        self._check_ready(device_id, command)
        start = time.perf_counter()
        try:
            # One deadline per call, covering the wait for earlier publishes
            async with asyncio.timeout(self.publish_timeout), self._lock:
                # State may have changed while waiting for the lock
                self._check_ready(device_id, command)
                logger.debug("%s %s <- %s", lp, topic, body, extra={"device_id": device_id, "command": command.value})
                await self.connection.publish(topic, body, timeout=self.publish_timeout)
        except PublishTimeoutError:
            self._record_timeout(lp, command, topic)
            raise
        except TimeoutError as exc:
            self._record_timeout(lp, command, topic)
            raise PublishTimeoutError(topic, self.publish_timeout) from exc
        except NotConnectedError:
            registry.record_publish(command.value, "not_connected")
            raise
        registry.record_publish(command.value, "success")
        registry.record_publish_latency(command.value, time.perf_counter() - start)

    def _record_timeout(self, lp: str, command: CommandKind, topic: str) -> None:
        registry.record_publish(command.value, "timeout")
        logger.warning("%s %s timed out after %.1fs", lp, topic, self.publish_timeout)

    async def request_status(self, device_id: str) -> None:
        await self.publish(device_id, CommandKind.REQUEST_STATUS)

    async def request_events(self, device_id: str) -> None:
        await self.publish(device_id, CommandKind.REQUEST_EVENTS)

    async def request_baseline(self, device_id: str) -> None:
        """Ask the device for its current status, then its playback events."""
        await self.request_status(device_id)
        await self.request_events(device_id)

    async def set_volume(self, device_id: str, volume: float) -> None:
        await self.publish(device_id, CommandKind.SET_VOLUME, VolumeCommand(volume=round(volume)))

    async def start_card(
        self,
        device_id: str,
        uri: str,
        *,
        chapter_key: str | None = None,
        track_key: str | None = None,
        seconds_in: int | None = None,
        cut_off: int | None = None,
        any_button_stop: bool | None = None,
    ) -> None:
        payload = CardStartCommand(
            uri=uri,
            chapter_key=chapter_key,
            track_key=track_key,
            seconds_in=seconds_in,
            cut_off=cut_off,
            any_button_stop=any_button_stop,
        )
        await self.publish(device_id, CommandKind.CARD_START, payload)

    async def pause_card(self, device_id: str) -> None:
        await self.publish(device_id, CommandKind.CARD_PAUSE)

    async def resume_card(self, device_id: str) -> None:
        await self.publish(device_id, CommandKind.CARD_RESUME)

    async def stop_card(self, device_id: str) -> None:
        await self.publish(device_id, CommandKind.CARD_STOP)

    async def set_sleep_timer(self, device_id: str, seconds: int) -> None:
        await self.publish(device_id, CommandKind.SET_SLEEP_TIMER, SleepTimerCommand(seconds=seconds))

    async def set_ambient_light(self, device_id: str, r: int, g: int, b: int) -> None:
        await self.publish(device_id, CommandKind.SET_AMBIENTS, AmbientCommand(r=r, g=g, b=b))
