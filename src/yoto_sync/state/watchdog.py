"""Liveness derived from update recency.

LivenessWatchdog is a pure function of the last update time and now.
LivenessMonitor is the external sampler that turns the boolean into
online/offline transitions.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable

from yoto_sync.const import YOTO_LIVENESS_INTERVAL, YOTO_STALE_TIMEOUT
from yoto_sync.logging_abstraction import get_logger
from yoto_sync.metrics import registry

logger = get_logger(__name__)

TransitionCallback = Callable[[str, bool, str], None]


class LivenessWatchdog:
    """Tracks the last update per device; a device is online while it is recent."""

    def __init__(
        self,
        stale_timeout: float = YOTO_STALE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if stale_timeout <= 0:
            raise ValueError("stale_timeout must be positive")
        self.stale_timeout = stale_timeout
        self._clock = clock
        self._last_update: dict[str, float] = {}

    def touch(self, device_id: str) -> None:
        self._last_update[device_id] = self._clock()

    def last_update(self, device_id: str) -> float | None:
        return self._last_update.get(device_id)

    def is_online(self, device_id: str) -> bool:
        last = self._last_update.get(device_id)
        if last is None:
            return False
        return (self._clock() - last) < self.stale_timeout

    def seconds_since_update(self, device_id: str) -> float | None:
        last = self._last_update.get(device_id)
        return None if last is None else self._clock() - last

    def forget(self, device_id: str) -> None:
        _ = self._last_update.pop(device_id, None)


class LivenessMonitor:
    """Samples the watchdog and reports online/offline transitions.

    The first observation of a device reports only if it is online; a device
    that was never heard from starts offline without an event. Sampling covers
    every device last observed online, whether or not it is still subscribed,
    so a session that gave up still reports its devices going offline.
    """

    lp: str = "liveness:"

    def __init__(
        self,
        watchdog: LivenessWatchdog,
        on_transition: TransitionCallback,
        interval: float = YOTO_LIVENESS_INTERVAL,
    ) -> None:
        self.watchdog = watchdog
        self.interval = interval
        self._on_transition = on_transition
        self._observed: dict[str, bool] = {}
        self.task: asyncio.Task[None] | None = None

    def check(self, device_id: str, reason: str) -> bool | None:
        """Evaluate one device now.

        Returns:
            The new online state if it changed, otherwise None

        """
        online = self.watchdog.is_online(device_id)
        previous = self._observed.get(device_id)
        self._observed[device_id] = online
        if previous is online or (previous is None and not online):
            return None

        logger.info(
            "%s %s is now %s (%s)",
            self.lp,
            device_id,
            "online" if online else "offline",
            reason,
            extra={"device_id": device_id, "online": online},
        )
        registry.record_devices_online(sum(self._observed.values()))
        self._on_transition(device_id, online, reason)
        return online

    def sample(self) -> None:
        """One pass over every device currently observed online."""
        for device_id in [d for d, online in self._observed.items() if online]:
            elapsed = self.watchdog.seconds_since_update(device_id)
            reason = "no update received" if elapsed is None else f"no update for {elapsed:.0f}s"
            _ = self.check(device_id, reason)

    def forget(self, device_id: str) -> None:
        _ = self._observed.pop(device_id, None)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sample()
            except Exception:
                logger.exception("%s Liveness sample failed", self.lp)

    def start(self) -> None:
        if self.task is not None and not self.task.done():
            return
        self.task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self.task = self.task, None
        if task is None:
            return
        _ = task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
