"""Periodic HTTP pull of status and config for every subscribed device."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable
from typing import Any, Protocol

import aiohttp

from yoto_sync.cloud_api import YotoApiError, YotoAuthenticationError, YotoCloudAPI
from yoto_sync.const import YOTO_POLL_INTERVAL
from yoto_sync.correlation import correlation_context
from yoto_sync.logging_abstraction import get_logger
from yoto_sync.state.fields import SnapshotGroup

logger = get_logger(__name__)


class PollTarget(Protocol):
    def subscribed_devices(self) -> Iterable[str]: ...

    def ingest_poll(self, device_id: str, group: SnapshotGroup, payload: dict[str, Any]) -> None: ...


class StatePoller:
    """Feeds HTTP snapshots into the engine with source ``poll``.

    A failure for one device is logged and the remaining devices are still
    polled. An authentication failure ends the cycle early, since every
    further request would fail the same way.
    """

    lp: str = "poller:"

    def __init__(self, api: YotoCloudAPI, target: PollTarget, interval: float = YOTO_POLL_INTERVAL) -> None:
        self.api = api
        self.target = target
        self.interval = interval
        self.task: asyncio.Task[None] | None = None

    async def poll_device(self, device_id: str) -> None:
        status = await self.api.get_device_status(device_id)
        self.target.ingest_poll(device_id, SnapshotGroup.STATUS, status)
        config = await self.api.get_device_config(device_id)
        self.target.ingest_poll(device_id, SnapshotGroup.CONFIG, config)

    async def poll_once(self) -> int:
        """Poll every subscribed device once; returns how many succeeded."""
        lp = f"{self.lp}poll_once:"
        succeeded = 0
        with correlation_context():
            for device_id in tuple(self.target.subscribed_devices()):
                try:
                    await self.poll_device(device_id)
                except YotoAuthenticationError as exc:
                    logger.warning("%s Access token rejected, skipping this cycle: %s", lp, exc)
                    break
                except (YotoApiError, aiohttp.ClientError, TimeoutError) as exc:
                    logger.warning("%s Poll for %s failed: %s", lp, device_id, exc, extra={"device_id": device_id})
                    continue
                succeeded += 1
        return succeeded

    async def _run(self) -> None:
        while True:
            try:
                _ = await self.poll_once()
            except Exception:
                logger.exception("%s Poll cycle failed", self.lp)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.task is not None and not self.task.done():
            return
        logger.info("%s Polling every %.0fs", self.lp, self.interval)
        self.task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self.task = self.task, None
        if task is None:
            return
        _ = task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
