"""
Shared polling loop for host signal sources.

Desktop and server hosts expose battery, thermal and network state as values
to poll rather than change notifications, so each source samples its reader
on a fixed cadence and publishes only when the reading changes. The first
reading is published during `start` so consumers subscribed beforehand see
the current state immediately.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ...core.contracts import BaseModule, BasePayload, HealthStatus, ModuleConfig

logger = logging.getLogger(__name__)

Reader = Callable[[], BasePayload | None | Awaitable[BasePayload | None]]


class PollingSignalSource(BaseModule):
    """Base class for sources that turn periodic reads into change events."""

    topic: str

    def __init__(
        self,
        *,
        reader: Reader | None = None,
        poll_interval_seconds: float = 5.0,
    ) -> None:
        super().__init__()
        self._reader = reader
        self._interval = poll_interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._active = False
        self._last: BasePayload | None = None
        self._published_total = 0

    @property
    def last_reading(self) -> BasePayload | None:
        return self._last

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        self._interval = float(config.options.get("poll_interval_seconds", self._interval))

    def default_reader(self) -> BasePayload | None:
        raise NotImplementedError

    async def read(self) -> BasePayload | None:
        reader = self._reader or self.default_reader
        if inspect.iscoroutinefunction(reader):
            return await reader()
        # psutil sensor reads hit sysfs; keep them off the coordination loop.
        result: Any = await asyncio.to_thread(reader)
        if inspect.isawaitable(result):
            result = await result
        return result

    def has_changed(self, previous: BasePayload | None, current: BasePayload) -> bool:
        return previous is None or previous != current

    async def start(self) -> None:
        if not self._config.enabled:
            logger.info("%s disabled; no readings will be published.", self.name)
            return
        self._active = True
        await self._poll_once()
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-poller")
        logger.info("%s publishing on %s every %.1fs", self.name, self.topic, self._interval)

    async def stop(self) -> None:
        self._active = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._last = None

    async def _run(self) -> None:
        while self._active:
            await asyncio.sleep(self._interval)
            if self._active:
                await self._poll_once()

    async def _poll_once(self) -> None:
        try:
            reading = await self.read()
        except Exception:  # pragma: no cover - a broken sensor must not kill the poller
            logger.exception("%s reader failed; keeping previous reading.", self.name)
            return
        if reading is None or not self.has_changed(self._last, reading):
            return
        self._last = reading
        self._published_total += 1
        logger.debug("%s reading changed: %s", self.name, reading)
        await self.bus.publish(self.topic, reading)

    async def health(self) -> HealthStatus:
        status = "healthy" if self._active else "degraded"
        return HealthStatus(
            status=status,
            details={
                "active": self._active,
                "published_total": self._published_total,
                "last_reading": self._last.model_dump(mode="json") if self._last else None,
            },
        )


__all__ = ["PollingSignalSource", "Reader"]
