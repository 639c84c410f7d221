"""
Thermal state source.

Hosts report raw sensor temperatures, not a pressure level, so the hottest
sensor is ranked against its own `high`/`critical` thresholds (or defaults
when the driver publishes none).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import psutil

from ...core.contracts import THERMAL_TOPIC, ThermalState, ThermalStatus
from .base import PollingSignalSource

logger = logging.getLogger(__name__)

DEFAULT_HIGH_C = 85.0
DEFAULT_CRITICAL_C = 100.0
FAIR_MARGIN_C = 10.0

_SEVERITY = [ThermalState.NOMINAL, ThermalState.FAIR, ThermalState.SERIOUS, ThermalState.CRITICAL]


def classify_reading(current: float, high: float | None, critical: float | None) -> ThermalState:
    high = high or DEFAULT_HIGH_C
    critical = critical or DEFAULT_CRITICAL_C
    if current >= critical:
        return ThermalState.CRITICAL
    if current >= high:
        return ThermalState.SERIOUS
    if current >= high - FAIR_MARGIN_C:
        return ThermalState.FAIR
    return ThermalState.NOMINAL


def classify_temperatures(temps: Mapping[str, Iterable[Any]] | None) -> ThermalState:
    """Return the worst state across all sensors, UNKNOWN when nothing is readable."""
    worst: ThermalState | None = None
    for entries in (temps or {}).values():
        for entry in entries:
            if entry.current is None:
                continue
            state = classify_reading(float(entry.current), entry.high, entry.critical)
            if worst is None or _SEVERITY.index(state) > _SEVERITY.index(worst):
                worst = state
    return worst or ThermalState.UNKNOWN


def read_thermal() -> ThermalStatus:
    try:
        temps = psutil.sensors_temperatures()
    except (AttributeError, NotImplementedError, OSError) as exc:
        logger.debug("Temperature sensors unavailable: %s", exc)
        temps = None
    return ThermalStatus(state=classify_temperatures(temps))


class ThermalSource(PollingSignalSource):
    name = "modules.signals.thermal"
    topic = THERMAL_TOPIC

    def default_reader(self) -> ThermalStatus:
        return read_thermal()


__all__ = ["ThermalSource", "classify_reading", "classify_temperatures", "read_thermal"]
