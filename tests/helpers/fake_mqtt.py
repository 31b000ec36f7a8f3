"""In-memory stand-ins for an aiomqtt client and its message stream."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiomqtt

_END = object()


class FakeMessageStream:
    """Async iterator fed by the test: push messages, then drop or end the stream."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[object] = asyncio.Queue()

    def __aiter__(self) -> FakeMessageStream:
        return self

    async def __anext__(self) -> object:
        item = await self.queue.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    def push(self, topic: str, payload: object) -> None:
        if isinstance(payload, dict | list):
            payload = json.dumps(payload).encode()
        self.queue.put_nowait(SimpleNamespace(topic=SimpleNamespace(value=topic), payload=payload))

    def drop(self, error: BaseException | None = None) -> None:
        self.queue.put_nowait(error or aiomqtt.MqttError("Disconnected during message iteration"))

    def end(self) -> None:
        self.queue.put_nowait(_END)


def make_fake_client(
    *,
    connect_error: BaseException | None = None,
    suback: list[int] | None = None,
) -> MagicMock:
    """MagicMock shaped like aiomqtt.Client.

    Args:
        connect_error: Raised from __aenter__ to simulate a failed handshake
        suback: Return codes for every subscribe call (default: all granted)

    """
    client = MagicMock()
    client.messages = FakeMessageStream()
    client.__aenter__ = AsyncMock(side_effect=connect_error, return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    client.publish = AsyncMock()
    client.unsubscribe = AsyncMock()

    async def _subscribe(topic_qos: list[tuple[str, int]], *_args: object, **_kwargs: object) -> list[int]:
        if suback is not None:
            return list(suback)
        return [0] * len(topic_qos)

    client.subscribe = AsyncMock(side_effect=_subscribe)
    return client


class ClientFactory:
    """Side effect for a patched aiomqtt.Client, handing out queued fake clients."""

    def __init__(self, *clients: MagicMock, default: Callable[[], MagicMock] = make_fake_client) -> None:
        self.pending: list[MagicMock] = list(clients)
        self.default = default
        self.created: list[MagicMock] = []
        self.kwargs: list[dict[str, object]] = []

    def __call__(self, *_args: object, **kwargs: object) -> MagicMock:
        client = self.pending.pop(0) if self.pending else self.default()
        self.created.append(client)
        self.kwargs.append(kwargs)
        return client


async def wait_for_condition(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            message = "condition not met before timeout"
            raise AssertionError(message)
        await asyncio.sleep(0.001)


async def never_completes(*_args: object, **_kwargs: object) -> None:
    _ = await asyncio.Event().wait()
