"""Device orientation source; sensorless hosts report a configured value."""

from __future__ import annotations

from ...core.contracts import (
    ORIENTATION_TOPIC,
    DeviceOrientation,
    ModuleConfig,
    OrientationStatus,
)
from .base import PollingSignalSource, Reader


class OrientationSource(PollingSignalSource):
    name = "modules.signals.orientation"
    topic = ORIENTATION_TOPIC

    def __init__(self, *, reader: Reader | None = None, poll_interval_seconds: float = 5.0) -> None:
        super().__init__(reader=reader, poll_interval_seconds=poll_interval_seconds)
        self._fixed = DeviceOrientation.UNKNOWN

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        self._fixed = DeviceOrientation.parse(config.options.get("fixed", self._fixed))

    def default_reader(self) -> OrientationStatus:
        return OrientationStatus(orientation=self._fixed)


__all__ = ["OrientationSource"]
