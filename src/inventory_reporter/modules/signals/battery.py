"""Battery level/state source backed by psutil."""

from __future__ import annotations

import logging
from typing import Any

import psutil

from ...core.contracts import BATTERY_TOPIC, BatteryState, BatteryStatus
from .base import PollingSignalSource

logger = logging.getLogger(__name__)


def battery_status_from(battery: Any | None) -> BatteryStatus:
    """Map a psutil `sbattery` tuple (or its absence) onto a BatteryStatus."""
    if battery is None or battery.percent is None:
        return BatteryStatus(level=-1.0, state=BatteryState.UNKNOWN)
    percent = float(battery.percent)
    level = max(0.0, min(percent / 100.0, 1.0))
    if battery.power_plugged is None:
        state = BatteryState.UNKNOWN
    elif battery.power_plugged:
        state = BatteryState.FULL if percent >= 100.0 else BatteryState.CHARGING
    else:
        state = BatteryState.UNPLUGGED
    return BatteryStatus(level=level, state=state)


def read_battery() -> BatteryStatus:
    try:
        battery = psutil.sensors_battery()
    except (AttributeError, NotImplementedError, OSError) as exc:
        logger.debug("Battery sensor unavailable: %s", exc)
        battery = None
    return battery_status_from(battery)


class BatterySource(PollingSignalSource):
    name = "modules.signals.battery"
    topic = BATTERY_TOPIC

    def default_reader(self) -> BatteryStatus:
        return read_battery()


__all__ = ["BatterySource", "battery_status_from", "read_battery"]
